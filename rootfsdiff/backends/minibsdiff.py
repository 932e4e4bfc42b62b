# Copyright Red Hat
#
# rootfsdiff/backends/minibsdiff.py - minibsdiff delta backend
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Binary delta generation with ``minibsdiff``.
"""
from . import CommandBackend


class MiniBsdiffBackend(CommandBackend):
    """
    Generate uncompressed bsdiff format deltas with
    ``minibsdiff gen FROM TO PATCH``.
    """

    name = "minibsdiff"
    extension = "minibsdiff"
    compressible = True

    command = ["minibsdiff", "gen", "$from", "$to", "$diff"]
    probe_args = []
    probe_pattern = r"usage:"


__all__ = ["MiniBsdiffBackend"]
