# Copyright Red Hat
#
# tests/test_image.py - Image preparation tests
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
import tempfile
import gzip
import stat
import os
from collections import namedtuple
from subprocess import CompletedProcess
from unittest.mock import patch

import zstandard as zstd

from rootfsdiff import RootfsDiffImageError
from rootfsdiff.cache import DiffCache
from rootfsdiff.image import (
    ImageFormat,
    ImagePreparer,
    detect_format,
    fix_permissions,
    format_from_extension,
)
from rootfsdiff.treewalk import ContentHasher

from ._util import make_tree

FileMagic = namedtuple("FileMagic", ["mime_type", "encoding", "name"])


def _magic(mime_type="application/octet-stream", name="data"):
    return FileMagic(mime_type, "binary", name)


def _fake_unpack(args, **kwargs):
    """Stand in for unsquashfs and cpio: create a small tree."""
    if args[0] == "unsquashfs":
        dest = args[args.index("-d") + 1]
        os.mkdir(dest)
    else:
        dest = kwargs["cwd"]
        kwargs["stdin"].read()
    make_tree(dest, files={"etc/os-release": "ID=test\n", "secret": "s"})
    os.chmod(os.path.join(dest, "secret"), 0o000)
    return CompletedProcess(args, 0, stdout=b"", stderr=b"")


class TestDetectFormat(unittest.TestCase):
    def test_format_from_extension(self):
        self.assertEqual(format_from_extension("a.squashfs"), ImageFormat.SQUASHFS)
        self.assertEqual(format_from_extension("a.CPIO"), ImageFormat.CPIO)
        self.assertEqual(format_from_extension("a.squashfs.zst"), ImageFormat.ZSTD)
        self.assertEqual(format_from_extension("a.cpio.gz"), ImageFormat.GZIP)
        self.assertIsNone(format_from_extension("a.img"))

    @patch("rootfsdiff.image.magic.detect_from_filename")
    def test_detect_mime(self, mock_detect):
        mock_detect.return_value = _magic("application/zstd", "Zstandard compressed data")
        self.assertEqual(detect_format("/x/image"), ImageFormat.ZSTD)
        mock_detect.return_value = _magic("application/x-gzip", "gzip compressed data")
        self.assertEqual(detect_format("/x/image"), ImageFormat.GZIP)

    @patch("rootfsdiff.image.magic.detect_from_filename")
    def test_detect_description(self, mock_detect):
        mock_detect.return_value = _magic(
            "application/octet-stream",
            "Squashfs filesystem, little endian, version 4.0, zstd compressed",
        )
        self.assertEqual(detect_format("/x/image"), ImageFormat.SQUASHFS)
        mock_detect.return_value = _magic(
            "application/octet-stream", "ASCII cpio archive (SVR4 with no CRC)"
        )
        self.assertEqual(detect_format("/x/image"), ImageFormat.CPIO)

    @patch("rootfsdiff.image.magic.detect_from_filename", side_effect=OSError("no db"))
    def test_detect_falls_back_to_extension(self, _mock_detect):
        self.assertEqual(detect_format("/x/rootfs.squashfs"), ImageFormat.SQUASHFS)

    @patch("rootfsdiff.image.magic.detect_from_filename")
    def test_detect_unknown(self, mock_detect):
        mock_detect.return_value = _magic()
        with self.assertRaisesRegex(RootfsDiffImageError, "Unknown image format"):
            detect_format("/x/rootfs.img")


class TestFixPermissions(unittest.TestCase):
    def test_fix_permissions(self):
        with tempfile.TemporaryDirectory() as tmp:
            make_tree(tmp, files={"a": "1", "b": "2"})
            os.chmod(os.path.join(tmp, "a"), 0o040)
            self.assertEqual(fix_permissions(tmp), 1)
            mode = stat.S_IMODE(os.stat(os.path.join(tmp, "a")).st_mode)
            self.assertEqual(mode, 0o440)


class TestImagePreparer(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.cache = DiffCache(os.path.join(self._tmp.name, "cache"))
        self.preparer = ImagePreparer(self.cache, ContentHasher())

    def _image(self, name, data):
        path = os.path.join(self._tmp.name, name)
        with open(path, "wb") as f:
            f.write(data)
        return path

    def test_directory_used_as_is(self):
        root = make_tree(os.path.join(self._tmp.name, "tree"), files={"a": "1"})
        self.assertEqual(self.preparer.prepare(root), root)
        self.assertFalse(os.path.exists(self.cache.cache_dir))

    def test_missing_path(self):
        with self.assertRaises(RootfsDiffImageError):
            self.preparer.prepare(os.path.join(self._tmp.name, "nope"))

    @patch("rootfsdiff.image.which", return_value=None)
    @patch("rootfsdiff.image.magic.detect_from_filename", side_effect=OSError("no db"))
    def test_missing_tool(self, _detect, _which):
        image = self._image("rootfs.squashfs", b"hsqs")
        with self.assertRaisesRegex(RootfsDiffImageError, "unsquashfs not installed"):
            self.preparer.prepare(image)

    @patch("rootfsdiff.image.run", side_effect=_fake_unpack)
    @patch("rootfsdiff.image.which", return_value="/usr/bin/unsquashfs")
    @patch("rootfsdiff.image.magic.detect_from_filename", side_effect=OSError("no db"))
    def test_squashfs(self, _detect, _which, mock_run):
        image = self._image("rootfs.squashfs", b"hsqs")
        digest = ContentHasher().hash_file(image)

        root = self.preparer.prepare(image)
        self.assertEqual(root, os.path.join(self.cache.cache_dir, f"{digest}.rootfs"))
        self.assertTrue(os.path.isfile(os.path.join(root, "etc", "os-release")))
        mode = stat.S_IMODE(os.stat(os.path.join(root, "secret")).st_mode)
        self.assertTrue(mode & stat.S_IRUSR)
        self.assertEqual([n for n in os.listdir(self.cache.cache_dir) if ".tmp." in n], [])

        # A second preparation reuses the unpacked tree.
        self.assertEqual(self.preparer.prepare(image), root)
        mock_run.assert_called_once()

    @patch("rootfsdiff.image.run", side_effect=_fake_unpack)
    @patch("rootfsdiff.image.which", return_value="/usr/bin/cpio")
    @patch("rootfsdiff.image.magic.detect_from_filename", side_effect=OSError("no db"))
    def test_gzip_cpio(self, _detect, _which, mock_run):
        image = self._image("initrd.cpio.gz", gzip.compress(b"070701 cpio data"))
        digest = ContentHasher().hash_file(image)

        root = self.preparer.prepare(image)
        self.assertTrue(os.path.isdir(root))
        decompressed = os.path.join(self.cache.cache_dir, f"{digest}.cpio")
        with open(decompressed, "rb") as f:
            self.assertEqual(f.read(), b"070701 cpio data")
        self.assertEqual(mock_run.call_args[0][0][0], "cpio")

    @patch("rootfsdiff.image.run", side_effect=_fake_unpack)
    @patch("rootfsdiff.image.which", return_value="/usr/bin/unsquashfs")
    @patch("rootfsdiff.image.magic.detect_from_filename")
    def test_zstd_squashfs(self, mock_detect, _which, mock_run):
        mock_detect.return_value = _magic("application/zstd", "Zstandard compressed data")
        data = zstd.ZstdCompressor().compress(b"hsqs squashfs data")
        image = self._image("rootfs.zst", data)
        digest = ContentHasher().hash_file(image)

        self.preparer.prepare(image)
        decompressed = os.path.join(self.cache.cache_dir, f"{digest}.squashfs")
        with open(decompressed, "rb") as f:
            self.assertEqual(f.read(), b"hsqs squashfs data")
        self.assertIn(decompressed, mock_run.call_args[0][0])

    @patch("rootfsdiff.image.which", return_value="/usr/bin/unsquashfs")
    @patch("rootfsdiff.image.magic.detect_from_filename", side_effect=OSError("no db"))
    def test_corrupt_zstd(self, _detect, _which):
        image = self._image("rootfs.squashfs.zst", b"not zstd data at all")
        with self.assertRaisesRegex(RootfsDiffImageError, "Error decompressing"):
            self.preparer.prepare(image)
        self.assertEqual([n for n in os.listdir(self.cache.cache_dir) if ".tmp." in n], [])

    @patch("rootfsdiff.image.run")
    @patch("rootfsdiff.image.which", return_value="/usr/bin/unsquashfs")
    @patch("rootfsdiff.image.magic.detect_from_filename", side_effect=OSError("no db"))
    def test_unpack_failure(self, _detect, _which, mock_run):
        mock_run.return_value = CompletedProcess([], 1, stdout=b"", stderr=b"bad superblock\n")
        image = self._image("rootfs.squashfs", b"junk")
        with self.assertRaisesRegex(RootfsDiffImageError, "bad superblock"):
            self.preparer.prepare(image)
        self.assertEqual(os.listdir(self.cache.cache_dir), [])
