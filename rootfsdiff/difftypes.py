# Copyright Red Hat
#
# rootfsdiff/difftypes.py - Root file system diff pairing types
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Root file system diff pairing types
"""
from enum import Enum


class PairingType(Enum):
    """
    Enum for the classification of a file between two trees.
    """

    NEW = "new"
    REMOVED = "removed"
    SAME = "same"
    UPDATED = "updated"


class BackendKind(Enum):
    """
    Enum for the kinds of diff and compression backend.
    """

    DELTA = "delta"
    COMPRESS = "compress"
    REPORT = "report"
