# Copyright Red Hat
#
# rootfsdiff/image.py - Root file system diff image preparation
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Preparation of root file system images for comparison.

A directory argument is compared as-is. An image file is decompressed (zstd
or gzip) and unpacked (squashfs or cpio) into the cache directory, keyed by
the digest of the image file, so that repeated comparisons of the same image
reuse the unpacked tree.
"""
from subprocess import run, PIPE
from enum import Enum
from shutil import which, copyfileobj, rmtree
from typing import Optional, Tuple
import logging
import gzip
import stat
import os

import magic
import zstandard as zstd

from ._rootfsdiff import RootfsDiffImageError
from .cache import DiffCache, temp_name
from .treewalk import ContentHasher, TreeWalker

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: Cache extension for unpacked image trees
ROOTFS_EXTENSION = "rootfs"

_UNSQUASHFS_CMD = "unsquashfs"
_CPIO_CMD = "cpio"


class ImageFormat(Enum):
    """
    Enum for supported image file formats.
    """

    SQUASHFS = "squashfs"
    CPIO = "cpio"
    ZSTD = "zstd"
    GZIP = "gzip"


#: Container formats that can be unpacked to a tree
_ARCHIVE_FORMATS = (ImageFormat.SQUASHFS, ImageFormat.CPIO)

_EXTENSION_FORMATS = {
    ".squashfs": ImageFormat.SQUASHFS,
    ".sqsh": ImageFormat.SQUASHFS,
    ".sfs": ImageFormat.SQUASHFS,
    ".cpio": ImageFormat.CPIO,
    ".zst": ImageFormat.ZSTD,
    ".zstd": ImageFormat.ZSTD,
    ".gz": ImageFormat.GZIP,
}

_MIME_FORMATS = {
    "application/zstd": ImageFormat.ZSTD,
    "application/gzip": ImageFormat.GZIP,
    "application/x-gzip": ImageFormat.GZIP,
    "application/x-cpio": ImageFormat.CPIO,
}

_DESCRIPTION_FORMATS = (
    ("squashfs filesystem", ImageFormat.SQUASHFS),
    ("cpio archive", ImageFormat.CPIO),
    ("zstandard compressed", ImageFormat.ZSTD),
    ("gzip compressed", ImageFormat.GZIP),
)


def format_from_extension(file_name: str) -> Optional[ImageFormat]:
    """
    Guess an image format from the extension of ``file_name``.

    :param file_name: The file name to examine.
    :type file_name: ``str``
    :rtype: ``Optional[ImageFormat]``
    """
    _, ext = os.path.splitext(file_name)
    return _EXTENSION_FORMATS.get(ext.lower())


def detect_format(file_path: str) -> ImageFormat:
    """
    Detect the format of the image file at ``file_path`` using libmagic,
    falling back to the file extension.

    :param file_path: The image file path.
    :type file_path: ``str``
    :returns: The detected format.
    :rtype: ``ImageFormat``
    :raises ``RootfsDiffImageError``: If the format is not recognised.
    """
    # Some file-magic builds do not have magic.error
    if hasattr(magic, "error"):
        magic_errors = (magic.error, OSError, ValueError)
    else:
        magic_errors = (OSError, ValueError)

    try:
        fm = magic.detect_from_filename(file_path)
        if fm.mime_type in _MIME_FORMATS:
            return _MIME_FORMATS[fm.mime_type]
        description = (fm.name or "").lower()
        for text, image_format in _DESCRIPTION_FORMATS:
            if text in description:
                return image_format
        _log_debug("Unrecognised image type for %s: %s", file_path, fm.name)
    except magic_errors as err:
        _log_warn("Error detecting file type for %s: %s", file_path, err)

    image_format = format_from_extension(file_path)
    if image_format is None:
        raise RootfsDiffImageError(f"Unknown image format: {file_path}")
    return image_format


def fix_permissions(root: str) -> int:
    """
    Add owner read permission to every regular file below ``root`` that
    lacks it.

    :param root: The tree to fix.
    :type root: ``str``
    :returns: The number of files changed.
    :rtype: ``int``
    """
    fixed = 0
    for entry in TreeWalker(quiet=True).walk_tree(root).regular_files():
        if entry.mode & stat.S_IRUSR:
            continue
        os.chmod(entry.full_path, stat.S_IMODE(entry.mode) | stat.S_IRUSR)
        fixed += 1
    if fixed:
        _log_debug("Added owner read permission to %d files in %s", fixed, root)
    return fixed


def _decompress(image_format: ImageFormat, src: str, dest: str):
    """
    Decompress ``src`` to ``dest``.
    """
    _log_info("Decompressing %s image %s", image_format.value, src)
    try:
        with open(src, "rb") as fin, open(dest, "wb") as fout:
            if image_format == ImageFormat.ZSTD:
                dctx = zstd.ZstdDecompressor()
                with dctx.stream_reader(fin) as reader:
                    copyfileobj(reader, fout)
            else:
                with gzip.GzipFile(fileobj=fin, mode="rb") as reader:
                    copyfileobj(reader, fout)
    except (OSError, EOFError, zstd.ZstdError) as err:
        raise RootfsDiffImageError(f"Error decompressing {src}: {err}") from err


def _check_tool(cmd: str):
    if not which(cmd):
        raise RootfsDiffImageError(f"{cmd} not installed")


def _unpack(image_format: ImageFormat, image_path: str, dest: str):
    """
    Unpack the archive at ``image_path`` into the new directory ``dest``.
    """
    _log_info("Unpacking %s image %s", image_format.value, image_path)
    if image_format == ImageFormat.SQUASHFS:
        _check_tool(_UNSQUASHFS_CMD)
        args = [_UNSQUASHFS_CMD, "-no-progress", "-d", dest, image_path]
        result = run(args, capture_output=True, check=False)
    else:
        _check_tool(_CPIO_CMD)
        os.mkdir(dest, 0o755)
        args = [_CPIO_CMD, "-i", "-d", "--quiet", "--no-absolute-filenames"]
        with open(image_path, "rb") as archive:
            result = run(args, stdin=archive, stdout=PIPE, stderr=PIPE, cwd=dest,
                         check=False)
    if result.returncode != 0:
        stderr = result.stderr.decode("utf8", errors="replace").strip()
        raise RootfsDiffImageError(
            f"Error unpacking {image_path} with {args[0]} "
            f"(status={result.returncode}): {stderr}"
        )


class ImagePreparer:
    """
    Turn comparison arguments into tree roots.
    """

    def __init__(self, cache: DiffCache, hasher: Optional[ContentHasher] = None):
        """
        Initialise a new ``ImagePreparer``.

        :param cache: The cache holding decompressed and unpacked images.
        :type cache: ``DiffCache``
        :param hasher: The hasher used to key images.
        :type hasher: ``Optional[ContentHasher]``
        """
        self.cache: DiffCache = cache
        self.hasher: ContentHasher = hasher or ContentHasher()

    def _decompressed(
        self, image_path: str, image_format: ImageFormat, digest: str
    ) -> Tuple[str, ImageFormat]:
        """
        Return the path and format of the decompressed archive for a
        compressed image.
        """
        stripped = os.path.splitext(os.path.basename(image_path))[0]
        inner = format_from_extension(stripped) or ImageFormat.SQUASHFS
        if inner not in _ARCHIVE_FORMATS:
            raise RootfsDiffImageError(
                f"Unsupported nested image format in {image_path}"
            )
        entry = self.cache.get_or_compute(
            inner.value,
            digest,
            compute=lambda out_path: _decompress(image_format, image_path, out_path),
        )
        return entry.path, inner

    def prepare(self, path: str) -> str:
        """
        Return a directory tree root for the comparison argument ``path``.

        :param path: A directory or an image file.
        :type path: ``str``
        :returns: The path of a directory to compare.
        :rtype: ``str``
        :raises ``RootfsDiffImageError``: If ``path`` is neither a directory
            nor a supported image, or the image cannot be unpacked.
        """
        if os.path.isdir(path):
            return path
        if not os.path.isfile(path):
            raise RootfsDiffImageError(f"No such directory or image file: {path}")

        self.cache.check()
        digest = self.hasher.hash_file(path)
        root = os.path.join(self.cache.cache_dir, f"{digest}.{ROOTFS_EXTENSION}")
        if os.path.isdir(root):
            _log_debug("Using cached image tree %s for %s", root, path)
            return root

        image_path, image_format = path, detect_format(path)
        if image_format not in _ARCHIVE_FORMATS:
            image_path, image_format = self._decompressed(path, image_format, digest)

        tmp_root = temp_name(root)
        try:
            _unpack(image_format, image_path, tmp_root)
            fix_permissions(tmp_root)
            os.rename(tmp_root, root)
        except OSError as err:
            rmtree(tmp_root, ignore_errors=True)
            if os.path.isdir(root):
                # Unpacked concurrently by another run.
                return root
            raise RootfsDiffImageError(f"Error unpacking {path}: {err}") from err
        except RootfsDiffImageError:
            rmtree(tmp_root, ignore_errors=True)
            raise
        _log_info("Unpacked %s to %s", path, root)
        return root


__all__ = [
    "ImageFormat",
    "ImagePreparer",
    "detect_format",
    "fix_permissions",
    "format_from_extension",
]
