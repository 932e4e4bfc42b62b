# Copyright Red Hat
#
# rootfsdiff/backends/gzip.py - gzip compression backend
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Compression with the ``gzip`` command line tool.
"""
from . import CompressBackend

#: Default gzip compression level
GZIP_DEFAULT_LEVEL = 9


class GzipBackend(CompressBackend):
    """
    Compress files with ``gzip -LEVEL -c FILE > OUT``.
    """

    name = "gzip"
    extension = "gz"
    default_level = GZIP_DEFAULT_LEVEL

    command = ["gzip", "-$level", "-c", "$to"]
    probe_args = ["--help"]
    capture_stdout = True


__all__ = ["GzipBackend"]
