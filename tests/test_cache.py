# Copyright Red Hat
#
# tests/test_cache.py - Artifact cache tests
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
import tempfile
import stat
import os
from unittest.mock import patch

from rootfsdiff import RootfsDiffSystemError
from rootfsdiff.cache import (
    TEMP_INFIX,
    DiffCache,
    check_cache_dir,
    temp_name,
)


def _write(data):
    def compute(path):
        with open(path, "wb") as f:
            f.write(data)
    return compute


class TestCheckCacheDir(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)

    def test_creates_directory(self):
        path = os.path.join(self._tmp.name, "a", "cache")
        self.assertEqual(check_cache_dir(path), path)
        st = os.stat(path)
        self.assertTrue(stat.S_ISDIR(st.st_mode))
        self.assertEqual(stat.S_IMODE(st.st_mode) & 0o077, 0)

    def test_symlink_error(self):
        target = os.path.join(self._tmp.name, "real")
        os.mkdir(target)
        link = os.path.join(self._tmp.name, "link")
        os.symlink(target, link)
        with self.assertRaisesRegex(RootfsDiffSystemError, "is a symlink"):
            check_cache_dir(link)

    def test_not_dir_error(self):
        path = os.path.join(self._tmp.name, "file")
        with open(path, "w", encoding="utf8") as f:
            f.write("x")
        with self.assertRaisesRegex(RootfsDiffSystemError, "is not a directory"):
            check_cache_dir(path)

    @patch("rootfsdiff.cache.os.makedirs", side_effect=PermissionError(13, "denied"))
    def test_create_error(self, _mock_makedirs):
        with self.assertRaisesRegex(RootfsDiffSystemError, "Failed to create"):
            check_cache_dir(os.path.join(self._tmp.name, "new"))


class TestDiffCache(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.cache_dir = os.path.join(self._tmp.name, "cache")
        self.cache = DiffCache(self.cache_dir)

    def _leftovers(self):
        return [name for name in os.listdir(self.cache_dir) if TEMP_INFIX in name]

    def test_temp_name(self):
        name = temp_name("/c/abc.zstd")
        self.assertTrue(name.startswith("/c/abc.zstd.tmp."))
        self.assertNotEqual(name, temp_name("/c/abc.zstd"))

    def test_key(self):
        self.assertEqual(DiffCache.key("zstd", "aa"), "aa.zstd")
        self.assertEqual(DiffCache.key("bsdiff", "aa", "bb"), "aa-bb.bsdiff")
        self.assertEqual(
            DiffCache.key("courgette.zstd", "aa", "bb"), "aa-bb.courgette.zstd"
        )
        with self.assertRaises(ValueError):
            DiffCache.key("", "aa")
        with self.assertRaises(ValueError):
            DiffCache.key("zstd", "")

    def test_directory_created_lazily(self):
        self.assertFalse(os.path.exists(self.cache_dir))
        self.cache.check()
        self.assertTrue(os.path.isdir(self.cache_dir))

    def test_get_or_compute_miss_then_hit(self):
        calls = []

        def compute(path):
            calls.append(path)
            _write(b"12345")(path)

        entry = self.cache.get_or_compute("zstd", "aa", compute=compute)
        self.assertFalse(entry.cached)
        self.assertEqual(entry.size, 5)
        self.assertEqual(entry.path, os.path.join(self.cache_dir, "aa.zstd"))
        self.assertEqual(len(calls), 1)
        self.assertIn(TEMP_INFIX, calls[0])
        self.assertEqual(os.path.dirname(calls[0]), self.cache_dir)

        again = self.cache.get_or_compute("zstd", "aa", compute=compute)
        self.assertTrue(again.cached)
        self.assertEqual(again.size, 5)
        self.assertEqual(len(calls), 1)

    def test_get_or_compute_shared_across_instances(self):
        self.cache.get_or_compute("bsdiff", "aa", "bb", compute=_write(b"xy"))
        other = DiffCache(self.cache_dir)

        def fail(_path):
            raise AssertionError("compute called on cache hit")

        entry = other.get_or_compute("bsdiff", "aa", "bb", compute=fail)
        self.assertTrue(entry.cached)
        self.assertEqual(entry.size, 2)

    def test_get_or_compute_failure_cleans_up(self):
        class ToolFailed(Exception):
            pass

        def compute(path):
            _write(b"partial")(path)
            raise ToolFailed()

        with self.assertRaises(ToolFailed):
            self.cache.get_or_compute("zstd", "aa", compute=compute)
        self.assertEqual(self._leftovers(), [])
        self.assertIsNone(self.cache.lookup("zstd", "aa"))

    def test_get_or_compute_requires_compute(self):
        with self.assertRaises(ValueError):
            self.cache.get_or_compute("zstd", "aa")

    def test_lookup(self):
        self.assertIsNone(self.cache.lookup("zstd", "aa"))
        self.cache.get_or_compute("zstd", "aa", compute=_write(b""))
        entry = self.cache.lookup("zstd", "aa")
        self.assertTrue(entry.cached)
        self.assertEqual(entry.size, 0)
