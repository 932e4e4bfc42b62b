# Copyright Red Hat
#
# rootfsdiff/__init__.py - Root file system diff package initialisation
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Rootfsdiff top-level package.
"""
from ._rootfsdiff import *  # noqa: F401, F403
from ._rootfsdiff import __all__  # noqa: F401

__version__ = "1.5.0"
