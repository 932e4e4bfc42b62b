# Copyright Red Hat
#
# rootfsdiff/engine.py - Root file system diff engine
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Diff engine: reconcile two trees and attach backend results.
"""
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Iterator, List, Optional
import logging
import json

from ._rootfsdiff import ROOTFSDIFF_SUBSYSTEM_BACKEND, RootfsDiffError
from .difftypes import PairingType
from .options import DiffOptions
from .progress import ProgressFactory
from .reconcile import AmbiguousMatch, PairingResult, Reconciler, UpdatedFile
from .registry import BackendRegistry
from .treewalk import ContentHasher, FileTree

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_backend(msg, *args, **kwargs):
    """A wrapper for backend subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": ROOTFSDIFF_SUBSYSTEM_BACKEND}, **kwargs)


class RootfsDiffResults:
    """Container for root file system comparison results."""

    def __init__(
        self,
        results: List[PairingResult],
        ambiguous: Optional[List[AmbiguousMatch]] = None,
        options: Optional[DiffOptions] = None,
        timestamp: Optional[int] = None,
    ):
        self._results = results
        self.ambiguous: List[AmbiguousMatch] = list(ambiguous or [])
        self.options = options or DiffOptions()
        self.timestamp = timestamp or int(datetime.now().timestamp())

    def __repr__(self) -> str:
        return f"RootfsDiffResults([...], {self.options!r}, {self.timestamp})"

    # List-like interface
    def __iter__(self) -> Iterator[PairingResult]:
        return iter(self._results)

    def __len__(self):
        return len(self._results)

    def __getitem__(self, index: int) -> PairingResult:
        return self._results[index]

    def _of_type(self, pairing_type: PairingType) -> List[PairingResult]:
        return [r for r in self._results if r.pairing_type == pairing_type]

    @property
    def new(self) -> List[PairingResult]:
        """
        Return the new files in this ``RootfsDiffResults`` instance.

        :rtype: ``List[NewFile]``
        """
        return self._of_type(PairingType.NEW)

    @property
    def removed(self) -> List[PairingResult]:
        """
        Return the removed files in this ``RootfsDiffResults`` instance.

        :rtype: ``List[RemovedFile]``
        """
        return self._of_type(PairingType.REMOVED)

    @property
    def same(self) -> List[PairingResult]:
        """
        Return the unchanged files in this ``RootfsDiffResults`` instance.

        :rtype: ``List[SameFile]``
        """
        return self._of_type(PairingType.SAME)

    @property
    def updated(self) -> List[PairingResult]:
        """
        Return the changed files in this ``RootfsDiffResults`` instance.

        :rtype: ``List[UpdatedFile]``
        """
        return self._of_type(PairingType.UPDATED)

    def paths(self) -> List[str]:
        """
        Return the grouping path of every result.

        :rtype: ``List[str]``
        """
        return [result.path for result in self._results]

    def to_dict(self):
        """
        Return a dictionary representation of these results.

        :rtype: ``dict``
        """
        return {
            "timestamp": self.timestamp,
            "results": [result.to_dict() for result in self._results],
            "ambiguous": [match.to_dict() for match in self.ambiguous],
        }

    def json(self, pretty: bool = False) -> str:
        """
        Return a JSON representation of these results.

        :param pretty: Indent the output.
        :type pretty: ``bool``
        :rtype: ``str``
        """
        return json.dumps(self.to_dict(), indent=4 if pretty else None)


class DiffEngine:
    """
    Core class for generating root file system comparisons.
    """

    def __init__(
        self,
        registry: BackendRegistry,
        hasher: Optional[ContentHasher] = None,
        options: Optional[DiffOptions] = None,
    ):
        """
        Initialise a new ``DiffEngine`` instance.

        :param registry: The enabled backends.
        :type registry: ``BackendRegistry``
        :param hasher: The content hasher to use; a new ``ContentHasher``
                       for the configured algorithm if unset.
        :type hasher: ``Optional[ContentHasher]``
        :param options: Comparison options.
        :type options: ``Optional[DiffOptions]``
        """
        self.options: DiffOptions = options or DiffOptions()
        self.registry: BackendRegistry = registry
        self.hasher: ContentHasher = hasher or ContentHasher(
            self.options.hash_algorithm
        )
        self.reconciler = Reconciler(self.hasher, quiet=self.options.quiet)

    def attach_results(self, result: PairingResult) -> PairingResult:
        """
        Run the applicable backends for ``result`` and store their results
        in ``result.backend_results``.

        Compression backends run on the subject file of every result;
        delta, chained and report backends run on updated files.

        :param result: The result to process.
        :type result: ``PairingResult``
        :returns: ``result``
        :rtype: ``PairingResult``
        """
        entry, digest = result.subject
        backend_results = self.registry.compress(entry, digest)
        if isinstance(result, UpdatedFile):
            backend_results.update(
                self.registry.delta(
                    result.from_entry,
                    result.from_digest,
                    result.to,
                    result.to_digest,
                )
            )
        result.backend_results.update(backend_results)
        return result

    def _run_backends(self, results: List[PairingResult]):
        if not results or not any(self.registry.probe().values()):
            _log_debug_backend("No available backends: skipping backend pass")
            return

        progress = ProgressFactory.get_progress(
            "Running backends", quiet=self.options.quiet
        )
        progress.start(len(results))
        try:
            if self.options.jobs > 1:
                with ThreadPoolExecutor(max_workers=self.options.jobs) as executor:
                    futures = [
                        executor.submit(self.attach_results, result)
                        for result in results
                    ]
                    for done, future in enumerate(as_completed(futures), 1):
                        progress.progress(done, future.result().path)
            else:
                for done, result in enumerate(results, 1):
                    self.attach_results(result)
                    progress.progress(done, result.path)
        except (KeyboardInterrupt, SystemExit, RootfsDiffError):
            progress.cancel("Quit!")
            raise
        progress.end()

    def compute(self, from_tree: FileTree, to_tree: FileTree) -> RootfsDiffResults:
        """
        Reconcile ``from_tree`` with ``to_tree`` and run the enabled
        backends over the classified results.

        :param from_tree: The older tree.
        :type from_tree: ``FileTree``
        :param to_tree: The newer tree.
        :type to_tree: ``FileTree``
        :returns: The classified results with backend results attached.
        :rtype: ``RootfsDiffResults``
        """
        start_time = datetime.now()
        reconciliation = self.reconciler.reconcile(from_tree, to_tree)
        self._run_backends(reconciliation.results)

        results = RootfsDiffResults(
            reconciliation.results, reconciliation.ambiguous, options=self.options
        )
        _log_info(
            "Compared %d files in %s: %d new, %d removed, %d updated, %d same",
            len(results),
            datetime.now() - start_time,
            len(results.new),
            len(results.removed),
            len(results.updated),
            len(results.same),
        )
        return results


__all__ = [
    "DiffEngine",
    "RootfsDiffResults",
]
