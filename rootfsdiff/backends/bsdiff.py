# Copyright Red Hat
#
# rootfsdiff/backends/bsdiff.py - bsdiff delta backend
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Binary delta generation with ``bsdiff``.
"""
from . import CommandBackend


class BsdiffBackend(CommandBackend):
    """
    Generate binary deltas with ``bsdiff FROM TO PATCH``.
    """

    name = "bsdiff"
    extension = "bsdiff"
    # bsdiff output is already bzip2 compressed.
    compressible = False

    command = ["bsdiff", "$from", "$to", "$diff"]
    probe_args = []
    # Run without arguments bsdiff exits non-zero and prints its usage.
    probe_pattern = r"bsdiff: usage:"


__all__ = ["BsdiffBackend"]
