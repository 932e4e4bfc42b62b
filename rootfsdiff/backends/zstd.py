# Copyright Red Hat
#
# rootfsdiff/backends/zstd.py - zstd compression backend
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Compression with the ``zstd`` command line tool.
"""
from . import CompressBackend

#: Default zstd compression level
ZSTD_DEFAULT_LEVEL = 17


class ZstdBackend(CompressBackend):
    """
    Compress files with ``zstd -LEVEL FILE -o OUT``.
    """

    name = "zstd"
    extension = "zstd"
    default_level = ZSTD_DEFAULT_LEVEL

    command = ["zstd", "-q", "-$level", "$to", "-o", "$diff"]
    probe_args = ["--help"]


__all__ = ["ZstdBackend"]
