# Copyright Red Hat
#
# rootfsdiff/backends/courgette.py - Chromium courgette delta backend
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Executable-aware delta generation with Chromium's ``courgette``, run from a
container image.
"""
from . import CommandBackend


class CourgetteBackend(CommandBackend):
    """
    Generate deltas with ``courgette -gen FROM TO PATCH``.

    The container image may be overridden with the ``Image`` setting and the
    container engine with the ``Engine`` setting of the ``[courgette]``
    configuration section.
    """

    name = "courgette"
    extension = "courgette"
    compressible = True

    container = "docker.io/library/courgette"
    command = ["/build/out/courgette", "-gen", "$from", "$to", "$diff"]


__all__ = ["CourgetteBackend"]
