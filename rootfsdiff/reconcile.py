# Copyright Red Hat
#
# rootfsdiff/reconcile.py - Root file system diff file reconciliation
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Pairing of files between two trees.

Every regular file in the "to" tree is matched against the regular files of
the "from" tree to find its most plausible predecessor. A predecessor may
share the same path, may be an earlier version of a versioned shared object,
may have moved between ``libexec`` and ``lib``, or may be linked to the new
path by a symbolic link in either tree.
"""
from dataclasses import dataclass, field
from typing import ClassVar, Dict, List, Optional, Tuple, TYPE_CHECKING
from datetime import datetime
import logging
import re

from ._rootfsdiff import ROOTFSDIFF_SUBSYSTEM_RECONCILE, RootfsDiffError
from .difftypes import PairingType
from .progress import ProgressFactory
from .treewalk import AliasTable, ContentHasher, FileEntry, FileTree

if TYPE_CHECKING:
    from .backends import BackendResult

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_reconcile(msg, *args, **kwargs):
    """A wrapper for reconcile subsystem debug logs."""
    _log.debug(
        msg, *args, extra={"subsystem": ROOTFSDIFF_SUBSYSTEM_RECONCILE}, **kwargs
    )


#: Versioned shared object suffix: ``-1.2.so`` or ``.so.1.2``
SO_ENDING = r"(?:-\d+(?:\.\d+){0,3}\.so|\.so(?:\.\d+){1,3})"

_SO_BASE_NAME_RE = re.compile(rf"^(.+){SO_ENDING}$")
_SO_ENDING_STRICT_RE = re.compile(rf"^{SO_ENDING}$")

_LIBEXEC = "/libexec/"
_LIB = "/lib/"


def so_base_name(name: str) -> Optional[str]:
    """
    Return the base name of a versioned shared object file name.

    :param name: A file name, for example ``libfoo.so.1.2``.
    :type name: ``str``
    :returns: The name with the version suffix removed, or ``None`` if
              ``name`` is not a versioned shared object name.
    :rtype: ``Optional[str]``
    """
    match = _SO_BASE_NAME_RE.match(name)
    return match.group(1) if match else None


def versioned_so_match(from_name: str, to_name: str) -> bool:
    """
    Test whether ``from_name`` is another version of the shared object
    ``to_name``.

    :param from_name: The candidate predecessor file name.
    :type from_name: ``str``
    :param to_name: The successor file name.
    :type to_name: ``str``
    :rtype: ``bool``
    """
    base = so_base_name(to_name)
    if base is None or not from_name.startswith(base):
        return False
    return _SO_ENDING_STRICT_RE.match(from_name[len(base) :]) is not None


def libexec_normalise(path: str) -> str:
    """
    Replace the first ``/libexec/`` component of ``path`` with ``/lib/``.

    :param path: A tree-relative path.
    :type path: ``str``
    :rtype: ``str``
    """
    return path.replace(_LIBEXEC, _LIB, 1)


def _pair_dict(result) -> Dict[str, object]:
    """Both sides of a paired result, as dictionary items."""
    return {
        "from": result.from_entry.to_dict(),
        "from_digest": result.from_digest,
        "to": result.to.to_dict(),
        "to_digest": result.to_digest,
    }


class PairingResult:
    """
    Base class for the classification of one file between two trees.
    """

    pairing_type: ClassVar[PairingType]

    @property
    def path(self) -> str:
        """The path used to group this result."""
        raise NotImplementedError

    @property
    def size(self) -> int:
        """The raw size of the file this result describes."""
        raise NotImplementedError

    @property
    def subject(self) -> Tuple[FileEntry, str]:
        """
        The entry and digest used as input to compression backends.

        :rtype: ``Tuple[FileEntry, str]``
        """
        raise NotImplementedError

    def backend_size(self, backend_name: str) -> Optional[int]:
        """
        Return the artifact size produced by ``backend_name`` for this
        result, or ``None`` if the backend did not run.

        :param backend_name: The backend name.
        :type backend_name: ``str``
        :rtype: ``Optional[int]``
        """
        result = self.backend_results.get(backend_name)
        return result.artifact_size if result is not None else None

    def to_dict(self):
        """
        Return a dictionary representation of this result.

        :rtype: ``dict``
        """
        return {
            "type": self.pairing_type.value,
            "path": self.path,
            "size": self.size,
            "backends": {
                name: result.to_dict()
                for name, result in self.backend_results.items()
            },
        }


@dataclass
class NewFile(PairingResult):
    """A "to" file with no predecessor."""

    pairing_type: ClassVar[PairingType] = PairingType.NEW

    to: FileEntry
    to_digest: str
    backend_results: Dict[str, "BackendResult"] = field(default_factory=dict)

    @property
    def path(self) -> str:
        return self.to.path

    @property
    def size(self) -> int:
        return self.to.size

    @property
    def subject(self) -> Tuple[FileEntry, str]:
        return self.to, self.to_digest

    def to_dict(self):
        value = super().to_dict()
        value.update({"to": self.to.to_dict(), "to_digest": self.to_digest})
        return value


@dataclass
class RemovedFile(PairingResult):
    """A "from" file with no successor."""

    pairing_type: ClassVar[PairingType] = PairingType.REMOVED

    from_entry: FileEntry
    from_digest: str
    backend_results: Dict[str, "BackendResult"] = field(default_factory=dict)

    @property
    def path(self) -> str:
        return self.from_entry.path

    @property
    def size(self) -> int:
        return self.from_entry.size

    @property
    def subject(self) -> Tuple[FileEntry, str]:
        return self.from_entry, self.from_digest

    def to_dict(self):
        value = super().to_dict()
        value.update(
            {"from": self.from_entry.to_dict(), "from_digest": self.from_digest}
        )
        return value


@dataclass
class SameFile(PairingResult):
    """A paired file with identical content."""

    pairing_type: ClassVar[PairingType] = PairingType.SAME

    from_entry: FileEntry
    to: FileEntry
    from_digest: str
    to_digest: str
    backend_results: Dict[str, "BackendResult"] = field(default_factory=dict)

    @property
    def path(self) -> str:
        return self.to.path

    @property
    def size(self) -> int:
        return self.to.size

    @property
    def subject(self) -> Tuple[FileEntry, str]:
        return self.to, self.to_digest

    def to_dict(self):
        value = super().to_dict()
        value.update(_pair_dict(self))
        return value


@dataclass
class UpdatedFile(PairingResult):
    """A paired file whose content changed."""

    pairing_type: ClassVar[PairingType] = PairingType.UPDATED

    from_entry: FileEntry
    to: FileEntry
    from_digest: str
    to_digest: str
    backend_results: Dict[str, "BackendResult"] = field(default_factory=dict)
    #: Signed size change: ``to.size - from_entry.size``
    size_delta: int = field(init=False)

    def __post_init__(self):
        self.size_delta = self.to.size - self.from_entry.size

    @property
    def path(self) -> str:
        return self.to.path

    @property
    def size(self) -> int:
        return self.to.size

    @property
    def from_size(self) -> int:
        """The raw size of the predecessor file."""
        return self.from_entry.size

    @property
    def subject(self) -> Tuple[FileEntry, str]:
        return self.to, self.to_digest

    def to_dict(self):
        value = super().to_dict()
        value.update(_pair_dict(self))
        value["size_delta"] = self.size_delta
        return value


@dataclass(frozen=True)
class AmbiguousMatch:
    """
    A "to" file for which more than one predecessor candidate was found.
    The file is classified as new.
    """

    #: The "to" file
    to: FileEntry
    #: The candidate predecessors, in "from" listing order
    candidates: Tuple[FileEntry, ...]

    def to_dict(self):
        """
        Return a dictionary representation of this ``AmbiguousMatch``.

        :rtype: ``dict``
        """
        return {
            "path": self.to.path,
            "candidates": [candidate.path for candidate in self.candidates],
        }


@dataclass
class Reconciliation:
    """
    The output of a reconciliation pass.
    """

    #: Classified results: one per "to" regular file, in "to" listing
    #: order, followed by removed files in "from" listing order.
    results: List[PairingResult] = field(default_factory=list)
    #: Ambiguous match warnings
    ambiguous: List[AmbiguousMatch] = field(default_factory=list)


class _FromIndex:
    """
    Lookup tables over the regular files of the "from" tree.
    """

    def __init__(self, from_files: List[FileEntry]):
        self.order: Dict[str, int] = {}
        self.by_path: Dict[str, FileEntry] = {}
        self.by_so_base: Dict[str, List[FileEntry]] = {}
        self.by_libexec: Dict[str, List[FileEntry]] = {}
        for index, entry in enumerate(from_files):
            self.order[entry.path] = index
            self.by_path[entry.path] = entry
            base = so_base_name(entry.name)
            if base is not None:
                self.by_so_base.setdefault(base, []).append(entry)
            self.by_libexec.setdefault(libexec_normalise(entry.path), []).append(
                entry
            )


class Reconciler:
    """
    Heuristic file pairing between a "from" tree and a "to" tree.
    """

    def __init__(self, hasher: ContentHasher, quiet: bool = False):
        """
        Initialise a new ``Reconciler``.

        :param hasher: The content hasher used to compare paired files.
        :type hasher: ``ContentHasher``
        :param quiet: Suppress progress output.
        :type quiet: ``bool``
        """
        self.hasher: ContentHasher = hasher
        self.quiet: bool = quiet

    # pylint: disable=too-many-arguments,too-many-positional-arguments
    def find_candidates(
        self,
        to_entry: FileEntry,
        index: _FromIndex,
        from_aliases: AliasTable,
        to_aliases: AliasTable,
        claimed: set,
    ) -> List[FileEntry]:
        """
        Return the unclaimed heuristic predecessor candidates for
        ``to_entry`` in "from" listing order.

        :param to_entry: The "to" file to match.
        :type to_entry: ``FileEntry``
        :param index: Lookup tables for the "from" tree.
        :type index: ``_FromIndex``
        :param from_aliases: The "from" tree alias table.
        :type from_aliases: ``AliasTable``
        :param to_aliases: The "to" tree alias table.
        :type to_aliases: ``AliasTable``
        :param claimed: "From" paths already paired.
        :type claimed: ``set``
        :returns: A list of candidate ``FileEntry`` objects.
        :rtype: ``List[FileEntry]``
        """
        found: Dict[str, FileEntry] = {}

        base = so_base_name(to_entry.name)
        if base is not None:
            for entry in index.by_so_base.get(base, []):
                if versioned_so_match(entry.name, to_entry.name):
                    found[entry.path] = entry

        for entry in index.by_libexec.get(libexec_normalise(to_entry.path), []):
            found[entry.path] = entry

        # The "to" path was a link to the "from" file in the old tree.
        target = from_aliases.target_of(to_entry.path)
        if target is not None and target in index.by_path:
            found[target] = index.by_path[target]

        # The "from" path is a link to the "to" file in the new tree.
        for alias in to_aliases.aliases(to_entry.path):
            if alias in index.by_path:
                found[alias] = index.by_path[alias]

        candidates = [
            entry for path, entry in found.items() if path not in claimed
        ]
        return sorted(candidates, key=lambda entry: index.order[entry.path])

    def _classify(self, from_entry: FileEntry, to_entry: FileEntry) -> PairingResult:
        from_digest = self.hasher.digest(from_entry)
        to_digest = self.hasher.digest(to_entry)
        if from_digest == to_digest:
            return SameFile(from_entry, to_entry, from_digest, to_digest)
        return UpdatedFile(from_entry, to_entry, from_digest, to_digest)

    # pylint: disable=too-many-locals
    def reconcile(self, from_tree: FileTree, to_tree: FileTree) -> Reconciliation:
        """
        Pair the regular files of ``to_tree`` with predecessors in
        ``from_tree`` and classify every regular file of both trees.

        Exact path matches are reserved before any heuristic matching. The
        remaining "to" files are matched greedily in listing order, and a
        "from" file claimed by one "to" file is not offered to later ones.
        A "to" file with more than one remaining candidate is recorded as an
        ``AmbiguousMatch`` and classified as new.

        :param from_tree: The older tree.
        :type from_tree: ``FileTree``
        :param to_tree: The newer tree.
        :type to_tree: ``FileTree``
        :returns: The classified results and ambiguity warnings.
        :rtype: ``Reconciliation``
        :raises ``RootfsDiffIOError``: If a file cannot be hashed.
        """
        from_files = from_tree.regular_files()
        to_files = to_tree.regular_files()
        index = _FromIndex(from_files)
        from_aliases = AliasTable(from_tree)
        to_aliases = AliasTable(to_tree)

        _log_info(
            "Reconciling %d files from %s with %d files from %s",
            len(from_files),
            from_tree.root,
            len(to_files),
            to_tree.root,
        )
        start_time = datetime.now()

        claimed = {entry.path for entry in to_files if entry.path in index.by_path}
        reconciliation = Reconciliation()

        progress = ProgressFactory.get_progress("Reconciling", quiet=self.quiet)
        progress.start(len(to_files) + len(from_files))
        try:
            for i, to_entry in enumerate(to_files):
                progress.progress(i, to_entry.path)
                if to_entry.path in index.by_path:
                    from_entry = index.by_path[to_entry.path]
                    _log_debug_reconcile("Exact match: %s", to_entry.path)
                    reconciliation.results.append(
                        self._classify(from_entry, to_entry)
                    )
                    continue

                candidates = self.find_candidates(
                    to_entry, index, from_aliases, to_aliases, claimed
                )
                if len(candidates) > 1:
                    _log_warn(
                        "Found more than one predecessor for %s: %s",
                        to_entry.path,
                        ", ".join(candidate.path for candidate in candidates),
                    )
                    reconciliation.ambiguous.append(
                        AmbiguousMatch(to_entry, tuple(candidates))
                    )
                if len(candidates) != 1:
                    reconciliation.results.append(
                        NewFile(to_entry, self.hasher.digest(to_entry))
                    )
                    continue

                from_entry = candidates[0]
                claimed.add(from_entry.path)
                _log_debug_reconcile(
                    "Paired %s with predecessor %s", to_entry.path, from_entry.path
                )
                reconciliation.results.append(self._classify(from_entry, to_entry))

            for i, from_entry in enumerate(from_files):
                progress.progress(len(to_files) + i, from_entry.path)
                if from_entry.path in claimed:
                    continue
                reconciliation.results.append(
                    RemovedFile(from_entry, self.hasher.digest(from_entry))
                )
        except (KeyboardInterrupt, SystemExit, RootfsDiffError):
            progress.cancel("Quit!")
            raise

        progress.end()
        _log_debug_reconcile(
            "Reconciled %d results (%d ambiguous) in %s",
            len(reconciliation.results),
            len(reconciliation.ambiguous),
            datetime.now() - start_time,
        )
        return reconciliation


__all__ = [
    "SO_ENDING",
    "AmbiguousMatch",
    "NewFile",
    "PairingResult",
    "Reconciler",
    "Reconciliation",
    "RemovedFile",
    "SameFile",
    "UpdatedFile",
    "libexec_normalise",
    "so_base_name",
    "versioned_so_match",
]
