# Copyright Red Hat
#
# rootfsdiff/treewalk.py - Root file system diff tree walk
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Tree walking, content hashing and symlink alias support for rootfsdiff.
"""
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, Iterator, List, Optional, Set
from threading import Lock
import hashlib
import logging
import stat
import os

from ._rootfsdiff import ROOTFSDIFF_SUBSYSTEM_TREEWALK, RootfsDiffIOError
from .progress import ProgressFactory

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_treewalk(msg, *args, **kwargs):
    """A wrapper for treewalk subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": ROOTFSDIFF_SUBSYSTEM_TREEWALK}, **kwargs)


#: Read size for content hashing.
_HASH_CHUNK_SIZE = 65536


@dataclass(frozen=True)
class FileEntry:
    """
    Representation of a single regular file or symbolic link in a tree.
    """

    #: The path relative to the tree root
    path: str
    #: The absolute path on the host
    full_path: str
    #: File size returned by ``lstat()``
    size: int
    #: File mode returned by ``lstat()``
    mode: int
    #: ``True`` if this entry is a symbolic link
    is_symlink: bool
    #: ``True`` if this entry is a regular file
    is_file: bool
    #: The tree-relative link target for symbolic links, or ``""``
    symlink_target: str = ""

    @property
    def name(self) -> str:
        """
        The final path component of this entry.

        :rtype: ``str``
        """
        return os.path.basename(self.path)

    def to_dict(self):
        """
        Return a dictionary representation of this ``FileEntry``.

        :returns: A dictionary mapping field names to values.
        :rtype: ``dict``
        """
        entry = {
            "path": self.path,
            "size": self.size,
            "mode": oct(stat.S_IMODE(self.mode)),
            "type": "symlink" if self.is_symlink else "file",
        }
        if self.is_symlink:
            entry["symlink_target"] = self.symlink_target
        return entry


class FileTree:
    """
    An ordered, flat listing of the regular files and symbolic links found
    beneath one root directory.
    """

    def __init__(self, root: str, entries: Optional[List[FileEntry]] = None):
        """
        Initialise a new ``FileTree``.

        :param root: The absolute path of the tree root.
        :type root: ``str``
        :param entries: The entries of this tree, in listing order.
        :type entries: ``Optional[List[FileEntry]]``
        """
        self.root: str = root
        self._entries: List[FileEntry] = list(entries or [])

    def __iter__(self) -> Iterator[FileEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index: int) -> FileEntry:
        return self._entries[index]

    def __repr__(self) -> str:
        return f"FileTree({self.root!r}, {len(self._entries)} entries)"

    def regular_files(self) -> List[FileEntry]:
        """
        Return the regular files in this tree, in listing order.

        :rtype: ``List[FileEntry]``
        """
        return [entry for entry in self._entries if entry.is_file]

    def symlinks(self) -> List[FileEntry]:
        """
        Return the symbolic links in this tree, in listing order.

        :rtype: ``List[FileEntry]``
        """
        return [entry for entry in self._entries if entry.is_symlink]


class AliasTable:
    """
    Index of symbolic link aliases for one tree: maps a resolved link target
    path to the set of link paths that point at it. Read-only once built.
    """

    def __init__(self, tree: FileTree):
        """
        Build an ``AliasTable`` from the symbolic links in ``tree``.

        :param tree: The tree to index.
        :type tree: ``FileTree``
        """
        table: Dict[str, Set[str]] = {}
        self._targets: Dict[str, str] = {}
        for link in tree.symlinks():
            table.setdefault(link.symlink_target, set()).add(link.path)
            self._targets[link.path] = link.symlink_target
        self._table: Dict[str, FrozenSet[str]] = {
            target: frozenset(links) for target, links in table.items()
        }

    def __len__(self) -> int:
        return len(self._table)

    def __contains__(self, target: str) -> bool:
        return target in self._table

    def aliases(self, path: str) -> FrozenSet[str]:
        """
        Return the set of link paths pointing at ``path``.

        :param path: A tree-relative target path.
        :type path: ``str``
        :returns: A possibly empty set of tree-relative link paths.
        :rtype: ``FrozenSet[str]``
        """
        return self._table.get(path, frozenset())

    def is_alias(self, alias: str, target: str) -> bool:
        """
        Test whether ``alias`` is a symbolic link pointing at ``target``.

        :param alias: The candidate link path.
        :type alias: ``str``
        :param target: The target path.
        :type target: ``str``
        :rtype: ``bool``
        """
        return alias in self.aliases(target)

    def target_of(self, alias: str) -> Optional[str]:
        """
        Return the resolved target of the link at ``alias``.

        :param alias: A tree-relative link path.
        :type alias: ``str``
        :returns: The tree-relative target, or ``None`` if ``alias`` is not
                  a known link.
        :rtype: ``Optional[str]``
        """
        return self._targets.get(alias)


class ContentHasher:
    """
    Streaming content hasher with per-path memoisation.
    """

    def __init__(self, hash_algorithm: str = "sha1"):
        """
        Initialise a new ``ContentHasher``.

        :param hash_algorithm: The ``hashlib`` algorithm name to use.
        :type hash_algorithm: ``str``
        :raises ``ValueError``: If ``hash_algorithm`` is not known to
                                ``hashlib``.
        """
        if hash_algorithm not in hashlib.algorithms_available:
            raise ValueError(f"Unknown hash algorithm: {hash_algorithm}")
        self.hash_algorithm: str = hash_algorithm
        self._digests: Dict[str, str] = {}
        self._lock = Lock()

    def hash_file(self, file_path: str) -> str:
        """
        Return the hex digest of the content of ``file_path``.

        Digests are memoised by absolute path for the lifetime of this
        ``ContentHasher``.

        :param file_path: The path to the file to hash.
        :type file_path: ``str``
        :returns: A hex digest string.
        :rtype: ``str``
        :raises ``RootfsDiffIOError``: If the file cannot be read.
        """
        file_path = os.path.abspath(file_path)
        with self._lock:
            if file_path in self._digests:
                return self._digests[file_path]

        hasher = hashlib.new(self.hash_algorithm, usedforsecurity=False)
        try:
            with open(file_path, "rb") as f:
                for chunk in iter(lambda: f.read(_HASH_CHUNK_SIZE), b""):
                    hasher.update(chunk)
        except OSError as err:
            raise RootfsDiffIOError(
                f"Error reading {file_path} for hashing: {err}"
            ) from err

        digest = hasher.hexdigest()
        with self._lock:
            self._digests[file_path] = digest
        _log_debug_treewalk("Hashed %s: %s", file_path, digest)
        return digest

    def digest(self, entry: FileEntry) -> str:
        """
        Return the content digest of ``entry``.

        :param entry: The entry to hash.
        :type entry: ``FileEntry``
        :rtype: ``str``
        """
        return self.hash_file(entry.full_path)


def normalise_link_target(root: str, link_dir: str, raw_target: str) -> str:
    """
    Convert a raw symbolic link target into a tree-relative path.

    Absolute targets are interpreted relative to ``root``; relative targets
    are resolved against the directory containing the link.

    :param root: The absolute tree root.
    :type root: ``str``
    :param link_dir: The absolute directory containing the link.
    :type link_dir: ``str``
    :param raw_target: The value returned by ``os.readlink()``.
    :type raw_target: ``str``
    :returns: The normalised tree-relative target.
    :rtype: ``str``
    """
    if os.path.isabs(raw_target):
        return os.path.normpath(raw_target.lstrip(os.sep) or ".")
    resolved = os.path.normpath(os.path.join(link_dir, raw_target))
    return os.path.relpath(resolved, root)


class TreeWalker:
    """
    Breadth first file system tree walker.
    """

    def __init__(self, quiet: bool = False):
        """
        Initialise a new ``TreeWalker`` object.

        :param quiet: Suppress progress output.
        :type quiet: ``bool``
        """
        self.quiet: bool = quiet

    def _make_entry(
        self, root: str, dir_path: str, name: str, st: os.stat_result
    ) -> Optional[FileEntry]:
        full_path = os.path.join(dir_path, name)
        rel_path = os.path.relpath(full_path, root)
        is_symlink = stat.S_ISLNK(st.st_mode)
        target = ""
        if is_symlink:
            try:
                raw_target = os.readlink(full_path)
            except OSError as err:
                _log_debug_treewalk("Skipping unreadable link %s: %s", full_path, err)
                return None
            target = normalise_link_target(root, dir_path, raw_target)
            if target == ".." or target.startswith(".." + os.sep):
                _log_debug_treewalk(
                    "Skipping link %s with target outside tree: %s",
                    rel_path,
                    raw_target,
                )
                return None
            if not os.path.lexists(os.path.join(root, target)):
                _log_debug_treewalk(
                    "Skipping dangling link %s -> %s", rel_path, raw_target
                )
                return None
        return FileEntry(
            path=rel_path,
            full_path=full_path,
            size=st.st_size,
            mode=st.st_mode,
            is_symlink=is_symlink,
            is_file=stat.S_ISREG(st.st_mode),
            symlink_target=target,
        )

    def walk_tree(self, root: str) -> FileTree:
        """
        Walk the tree below ``root`` and return a flat ``FileTree``.

        Directories are traversed breadth first, with the entries of each
        directory visited in sorted name order. Regular files and symbolic
        links are emitted; other file types are ignored.

        :param root: The path of the tree root.
        :type root: ``str``
        :returns: The listing of ``root``.
        :rtype: ``FileTree``
        :raises ``RootfsDiffIOError``: If ``root`` is missing, not a
            directory, or cannot be read.
        """
        root = os.path.abspath(root)
        if not os.path.isdir(root):
            raise RootfsDiffIOError(f"Tree root {root} is not a directory")

        _log_info("Listing files in %s", root)
        start_time = datetime.now()

        entries: List[FileEntry] = []
        to_visit = deque([root])

        progress = ProgressFactory.get_progress(
            f"Listing {os.path.basename(root) or root}", quiet=self.quiet
        )
        progress.start(1)
        dirs_seen = 0
        try:
            while to_visit:
                dir_path = to_visit.popleft()
                try:
                    names = sorted(os.listdir(dir_path))
                except OSError as err:
                    if dir_path == root:
                        raise RootfsDiffIOError(
                            f"Error reading tree root {root}: {err}"
                        ) from err
                    _log_warn("Skipping unreadable directory %s: %s", dir_path, err)
                    continue
                dirs_seen += 1
                # The total is unknown until the walk ends: grow it as
                # directories are discovered.
                progress.total = dirs_seen + len(to_visit)
                progress.progress(dirs_seen, os.path.relpath(dir_path, root))
                for name in names:
                    full_path = os.path.join(dir_path, name)
                    try:
                        st = os.lstat(full_path)
                    except OSError:
                        _log_debug_treewalk("Skipping vanished path %s", full_path)
                        continue
                    if stat.S_ISDIR(st.st_mode):
                        to_visit.append(full_path)
                    elif stat.S_ISREG(st.st_mode) or stat.S_ISLNK(st.st_mode):
                        entry = self._make_entry(root, dir_path, name, st)
                        if entry is not None:
                            entries.append(entry)
                    else:
                        _log_debug_treewalk("Ignoring special file %s", full_path)
        except (KeyboardInterrupt, SystemExit, RootfsDiffIOError):
            progress.cancel("Quit!")
            raise

        progress.total = dirs_seen
        progress.end()
        _log_debug_treewalk(
            "Listed %d entries from %s in %s",
            len(entries),
            root,
            datetime.now() - start_time,
        )
        return FileTree(root, entries)


__all__ = [
    "AliasTable",
    "ContentHasher",
    "FileEntry",
    "FileTree",
    "TreeWalker",
    "normalise_link_target",
]
