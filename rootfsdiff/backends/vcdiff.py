# Copyright Red Hat
#
# rootfsdiff/backends/vcdiff.py - open-vcdiff delta backend
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
VCDIFF (RFC 3284) delta generation with the open-vcdiff ``vcdiff`` tool.
"""
from . import CommandBackend


class VcdiffBackend(CommandBackend):
    """
    Generate VCDIFF deltas with
    ``vcdiff encode -dictionary FROM --target TO --delta PATCH``.
    """

    name = "vcdiff"
    extension = "vcdiff"
    compressible = True

    command = [
        "vcdiff",
        "encode",
        "-dictionary",
        "$from",
        "--target",
        "$to",
        "--delta",
        "$diff",
    ]
    probe_args = ["--help"]
    probe_pattern = r"vcdiff:\s*\{encode"


__all__ = ["VcdiffBackend"]
