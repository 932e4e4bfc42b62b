# Copyright Red Hat
#
# tests/test_reconcile.py - File pairing and classification tests
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
import tempfile
import os
from unittest.mock import patch

from rootfsdiff import RootfsDiffIOError
from rootfsdiff.difftypes import PairingType
from rootfsdiff.reconcile import (
    NewFile,
    Reconciler,
    RemovedFile,
    SameFile,
    UpdatedFile,
    libexec_normalise,
    so_base_name,
    versioned_so_match,
)
from rootfsdiff.treewalk import ContentHasher, TreeWalker

from ._util import make_entry, make_tree


class TestMatchingRules(unittest.TestCase):
    def test_so_base_name(self):
        self.assertEqual(so_base_name("libfoo.so.1"), "libfoo")
        self.assertEqual(so_base_name("libfoo.so.1.2.3"), "libfoo")
        self.assertEqual(so_base_name("libfoo-1.2.so"), "libfoo")
        self.assertIsNone(so_base_name("libfoo.so"))
        self.assertIsNone(so_base_name("libfoo.a"))

    def test_versioned_so_match(self):
        self.assertTrue(versioned_so_match("libfoo.so.1", "libfoo.so.3"))
        self.assertTrue(versioned_so_match("libfoo-1.0.so", "libfoo.so.2"))
        self.assertFalse(versioned_so_match("libfoobar.so.1", "libfoo.so.3"))
        self.assertFalse(versioned_so_match("libfoo.so", "libfoo.so.3"))
        self.assertFalse(versioned_so_match("libfoo.so.1", "libfoo"))

    def test_libexec_normalise(self):
        self.assertEqual(libexec_normalise("usr/libexec/foo"), "usr/lib/foo")
        self.assertEqual(
            libexec_normalise("usr/libexec/libexec/foo"), "usr/lib/libexec/foo"
        )
        self.assertEqual(libexec_normalise("usr/bin/foo"), "usr/bin/foo")


class TestResults(unittest.TestCase):
    def test_updated_size_delta(self):
        result = UpdatedFile(
            make_entry("a", size=10), make_entry("a", size=4), "f", "t"
        )
        self.assertEqual(result.size_delta, -6)
        self.assertEqual(result.from_size, 10)
        self.assertEqual(result.size, 4)
        self.assertEqual(result.pairing_type, PairingType.UPDATED)
        self.assertEqual(result.to_dict()["size_delta"], -6)

    def test_removed_subject(self):
        entry = make_entry("gone", size=3)
        result = RemovedFile(entry, "d")
        self.assertEqual(result.path, "gone")
        self.assertEqual(result.subject, (entry, "d"))
        self.assertIsNone(result.backend_size("zstd"))
        self.assertEqual(result.to_dict()["type"], "removed")

    def test_to_dict_variants(self):
        old, new = make_entry("a", size=1), make_entry("a", size=2)
        new_dict = NewFile(new, "t").to_dict()
        self.assertEqual(new_dict["to_digest"], "t")
        self.assertNotIn("from", new_dict)

        removed_dict = RemovedFile(old, "f").to_dict()
        self.assertEqual(removed_dict["from"]["path"], "a")
        self.assertNotIn("to", removed_dict)

        same_dict = SameFile(old, old, "f", "f").to_dict()
        self.assertEqual(same_dict["type"], "same")
        self.assertEqual((same_dict["from_digest"], same_dict["to_digest"]), ("f", "f"))
        self.assertNotIn("size_delta", same_dict)

        updated_dict = UpdatedFile(old, new, "f", "t").to_dict()
        self.assertEqual(updated_dict["from"]["size"], 1)
        self.assertEqual(updated_dict["to"]["size"], 2)
        self.assertEqual(updated_dict["size_delta"], 1)
        self.assertEqual(updated_dict["backends"], {})



class TestReconciler(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.from_root = os.path.join(self._tmp.name, "from")
        self.to_root = os.path.join(self._tmp.name, "to")

    def _reconcile(self, from_files, to_files, from_links=None, to_links=None):
        make_tree(self.from_root, from_files, from_links)
        make_tree(self.to_root, to_files, to_links)
        walker = TreeWalker(quiet=True)
        reconciler = Reconciler(ContentHasher(), quiet=True)
        return reconciler.reconcile(
            walker.walk_tree(self.from_root), walker.walk_tree(self.to_root)
        )

    @staticmethod
    def _by_type(reconciliation):
        found = {}
        for result in reconciliation.results:
            found.setdefault(result.pairing_type, []).append(result)
        return found

    def test_classification(self):
        rec = self._reconcile(
            {"same": "abc", "changed": "old", "gone": "xx"},
            {"same": "abc", "changed": "newer", "added": "y"},
        )
        by_type = self._by_type(rec)
        self.assertEqual([r.path for r in by_type[PairingType.SAME]], ["same"])
        self.assertEqual([r.path for r in by_type[PairingType.UPDATED]], ["changed"])
        self.assertEqual([r.path for r in by_type[PairingType.NEW]], ["added"])
        self.assertEqual([r.path for r in by_type[PairingType.REMOVED]], ["gone"])
        updated = by_type[PairingType.UPDATED][0]
        self.assertIsInstance(updated, UpdatedFile)
        self.assertEqual(updated.size_delta, 2)
        self.assertEqual(rec.ambiguous, [])

    def test_partition(self):
        rec = self._reconcile(
            {"a": "1", "b": "2", "lib/libx.so.1": "x1", "c": "3"},
            {"a": "1", "b": "22", "lib/libx.so.2": "x2", "d": "4"},
        )
        to_sides = sorted(
            r.to.path for r in rec.results if not isinstance(r, RemovedFile)
        )
        from_sides = sorted(
            r.from_entry.path for r in rec.results if not isinstance(r, NewFile)
        )
        self.assertEqual(to_sides, ["a", "b", "d", "lib/libx.so.2"])
        self.assertEqual(from_sides, ["a", "b", "c", "lib/libx.so.1"])

    def test_versioned_library_moved(self):
        rec = self._reconcile(
            {"a/libfoo.so.1": "version one"},
            {"b/libfoo.so.3": "version three"},
        )
        self.assertEqual(len(rec.results), 1)
        result = rec.results[0]
        self.assertIsInstance(result, UpdatedFile)
        self.assertEqual(result.from_entry.path, "a/libfoo.so.1")
        self.assertEqual(result.to.path, "b/libfoo.so.3")

    def test_versioned_library_same_content(self):
        rec = self._reconcile({"libbar-1.2.so": "same"}, {"libbar.so.2": "same"})
        self.assertIsInstance(rec.results[0], SameFile)

    def test_libexec_move(self):
        rec = self._reconcile(
            {"usr/libexec/helper": "v1"}, {"usr/lib/helper": "v2"}
        )
        self.assertEqual(len(rec.results), 1)
        self.assertIsInstance(rec.results[0], UpdatedFile)
        self.assertEqual(rec.results[0].from_entry.path, "usr/libexec/helper")

    def test_alias_in_from_tree(self):
        # cansend was a link to cansend.can-utils and is now a real file.
        rec = self._reconcile(
            {"usr/bin/cansend.can-utils": "can v1"},
            {"usr/bin/cansend": "can v2"},
            from_links={"usr/bin/cansend": "cansend.can-utils"},
        )
        self.assertEqual(len(rec.results), 1)
        result = rec.results[0]
        self.assertIsInstance(result, UpdatedFile)
        self.assertEqual(result.from_entry.path, "usr/bin/cansend.can-utils")

    def test_alias_in_to_tree(self):
        # The old file is now a link to its renamed successor.
        rec = self._reconcile(
            {"usr/bin/tool": "tool v1"},
            {"usr/bin/tool.real": "tool v1"},
            to_links={"usr/bin/tool": "tool.real"},
        )
        self.assertEqual(len(rec.results), 1)
        result = rec.results[0]
        self.assertIsInstance(result, SameFile)
        self.assertEqual(result.from_entry.path, "usr/bin/tool")
        self.assertEqual(result.to.path, "usr/bin/tool.real")

    def test_ambiguous_match(self):
        rec = self._reconcile(
            {"a/libfoo.so.1": "one", "b/libfoo.so.2": "two"},
            {"c/libfoo.so.3": "three"},
        )
        self.assertEqual(len(rec.ambiguous), 1)
        match = rec.ambiguous[0]
        self.assertEqual(match.to.path, "c/libfoo.so.3")
        self.assertEqual(
            [c.path for c in match.candidates], ["a/libfoo.so.1", "b/libfoo.so.2"]
        )
        by_type = self._by_type(rec)
        self.assertEqual([r.path for r in by_type[PairingType.NEW]], ["c/libfoo.so.3"])
        self.assertEqual(
            sorted(r.path for r in by_type[PairingType.REMOVED]),
            ["a/libfoo.so.1", "b/libfoo.so.2"],
        )

    def test_ambiguous_match_warns(self):
        with self.assertLogs("rootfsdiff.reconcile", level="WARNING") as logs:
            self._reconcile(
                {"a/libfoo.so.1": "one", "b/libfoo.so.2": "two"},
                {"c/libfoo.so.3": "three"},
            )
        self.assertIn("Found more than one predecessor", logs.output[0])

    def test_exact_path_reserved(self):
        # libfoo.so.1 exists in both trees: libfoo.so.2 must not take it.
        rec = self._reconcile(
            {"lib/libfoo.so.1": "one"},
            {"lib/libfoo.so.2": "two", "lib/libfoo.so.1": "one"},
        )
        by_type = self._by_type(rec)
        self.assertEqual([r.path for r in by_type[PairingType.SAME]], ["lib/libfoo.so.1"])
        self.assertEqual([r.path for r in by_type[PairingType.NEW]], ["lib/libfoo.so.2"])
        self.assertNotIn(PairingType.REMOVED, by_type)

    def test_greedy_claiming(self):
        # The first "to" file in listing order claims the single predecessor.
        rec = self._reconcile(
            {"old/libz.so.1": "z1"},
            {"a/libz.so.2": "z2", "b/libz.so.3": "z3"},
        )
        by_type = self._by_type(rec)
        self.assertEqual([r.path for r in by_type[PairingType.UPDATED]], ["a/libz.so.2"])
        self.assertEqual([r.path for r in by_type[PairingType.NEW]], ["b/libz.so.3"])
        self.assertEqual(rec.ambiguous, [])

    def test_empty_trees(self):
        rec = self._reconcile({}, {})
        self.assertEqual(rec.results, [])

    def test_hash_error_aborts(self):
        make_tree(self.from_root, {"etc/passwd": "root:x:0:0"})
        make_tree(self.to_root, {"etc/passwd": "root:x:0:0:root"})
        walker = TreeWalker(quiet=True)
        from_tree = walker.walk_tree(self.from_root)
        to_tree = walker.walk_tree(self.to_root)
        reconciler = Reconciler(ContentHasher(), quiet=True)
        err = RootfsDiffIOError("Error reading etc/passwd for hashing")
        with patch.object(ContentHasher, "hash_file", side_effect=err):
            with self.assertRaisesRegex(RootfsDiffIOError, "etc/passwd"):
                reconciler.reconcile(from_tree, to_tree)
