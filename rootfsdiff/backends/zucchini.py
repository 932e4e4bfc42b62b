# Copyright Red Hat
#
# rootfsdiff/backends/zucchini.py - Chromium zucchini delta backend
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Executable-aware delta generation with Chromium's ``zucchini``, run from a
container image.
"""
from . import CommandBackend


class ZucchiniBackend(CommandBackend):
    """
    Generate deltas with ``zucchini -gen FROM TO PATCH``.
    """

    name = "zucchini"
    extension = "zucchini"
    compressible = True

    container = "docker.io/library/deltatools"
    command = ["zucchini", "-gen", "$from", "$to", "$diff"]


__all__ = ["ZucchiniBackend"]
