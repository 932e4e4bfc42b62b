# Copyright Red Hat
#
# tests/test_differ.py - Root file system differ tests
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
import tempfile
import os
from unittest.mock import patch

from rootfsdiff import RootfsDiffConfigurationError, RootfsDiffImageError
from rootfsdiff.cache import DiffCache
from rootfsdiff.differ import RootfsDiffer
from rootfsdiff.difftypes import PairingType
from rootfsdiff.options import DiffOptions
from rootfsdiff.registry import BackendRegistry
from rootfsdiff.treewalk import TreeWalker

from ._util import FAKE_BACKENDS, make_tree, reset_fake_calls


class TestRootfsDiffer(unittest.TestCase):
    def setUp(self):
        reset_fake_calls()
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.from_root = make_tree(
            os.path.join(self._tmp.name, "from"),
            files={
                "etc/hostname": "host\n",
                "usr/lib/libfoo.so.1": "foo version one",
                "usr/share/doc/old.txt": "old",
            },
        )
        self.to_root = make_tree(
            os.path.join(self._tmp.name, "to"),
            files={
                "etc/hostname": "host\n",
                "usr/lib/libfoo.so.2": "foo version one and two",
                "usr/bin/tool": "new tool",
            },
        )
        self.cache_dir = os.path.join(self._tmp.name, "cache")

    def _differ(self, names, patterns=()):
        options = DiffOptions(
            backends=tuple(names),
            group_patterns=tuple(patterns),
            cache_dir=self.cache_dir,
            quiet=True,
        )
        registry = BackendRegistry(
            DiffCache(self.cache_dir), names, backend_classes=FAKE_BACKENDS
        )
        return RootfsDiffer(options, registry=registry)

    def test_compare_directories(self):
        differ = self._differ(["fakez", "fakedelta"], patterns=["^usr/lib/"])
        results, report = differ.compare(self.from_root, self.to_root)

        self.assertEqual([r.path for r in results.same], ["etc/hostname"])
        self.assertEqual([r.path for r in results.new], ["usr/bin/tool"])
        self.assertEqual([r.path for r in results.removed], ["usr/share/doc/old.txt"])
        # The versioned library is paired across the rename.
        updated = results.updated
        self.assertEqual(len(updated), 1)
        self.assertEqual(updated[0].path, "usr/lib/libfoo.so.2")
        self.assertIn("fakedelta", updated[0].backend_results)

        self.assertEqual(
            [r.path for r in report.groups[0].results], ["usr/lib/libfoo.so.2"]
        )
        self.assertEqual(report.overall.category(PairingType.UPDATED).count, 1)
        self.assertEqual(report.overall.category(PairingType.NEW).count, 1)
        self.assertTrue(os.path.isdir(self.cache_dir))

    def test_unknown_backend_before_walk(self):
        options = DiffOptions(backends=("nosuch",), cache_dir=self.cache_dir, quiet=True)
        with patch.object(TreeWalker, "walk_tree") as mock_walk:
            with self.assertRaises(RootfsDiffConfigurationError):
                RootfsDiffer(options)
            mock_walk.assert_not_called()

    def test_compare_missing_input(self):
        differ = self._differ([])
        with self.assertRaises(RootfsDiffImageError):
            differ.compare(os.path.join(self._tmp.name, "nope"), self.to_root)

    def test_compare_no_backends(self):
        results, report = self._differ([]).compare(self.from_root, self.to_root)
        self.assertEqual(len(results), 4)
        self.assertEqual(report.backend_names, [])
        self.assertEqual(report.groups, [])
