# Copyright Red Hat
#
# rootfsdiff/registry.py - Root file system diff backend registry
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Registry of enabled diff and compression backends.

The registry instantiates the enabled backends, probes their availability
once per run and routes every backend invocation through the ``DiffCache``.
"""
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Type
import logging
import time

from ._rootfsdiff import (
    ROOTFSDIFF_SUBSYSTEM_BACKEND,
    RootfsDiffBackendUnavailableError,
    RootfsDiffConfigurationError,
)
from ._loader import load_backends
from .backends import Backend, BackendResult
from .cache import CacheEntry, DiffCache
from .difftypes import BackendKind
from .treewalk import FileEntry

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_backend(msg, *args, **kwargs):
    """A wrapper for backend subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": ROOTFSDIFF_SUBSYSTEM_BACKEND}, **kwargs)


def chain_name(delta: Backend, compress: Backend) -> str:
    """
    Return the result name of ``compress`` applied to ``delta`` output.

    :rtype: ``str``
    """
    return f"{delta.name}-{compress.name}"


def chain_extension(delta: Backend, compress: Backend) -> str:
    """
    Return the cache extension of ``compress`` applied to ``delta`` output,
    for example ``courgette.zstd``.

    :rtype: ``str``
    """
    return f"{delta.extension}.{compress.extension}"


class BackendRegistry:
    """
    The enabled backends for one comparison run.
    """

    def __init__(
        self,
        cache: DiffCache,
        names: Sequence[str],
        settings: Optional[Mapping[str, Mapping[str, str]]] = None,
        backend_classes: Optional[Mapping[str, Type[Backend]]] = None,
    ):
        """
        Initialise a new ``BackendRegistry``.

        :param cache: The artifact cache.
        :type cache: ``DiffCache``
        :param names: The names of the backends to enable, in order.
        :type names: ``Sequence[str]``
        :param settings: Optional per-backend settings keyed by name.
        :type settings: ``Optional[Mapping[str, Mapping[str, str]]]``
        :param backend_classes: Optional mapping of name to backend class.
                                Defaults to the backends found by
                                ``load_backends()``.
        :type backend_classes: ``Optional[Mapping[str, Type[Backend]]]``
        :raises ``RootfsDiffConfigurationError``: If a name does not
            correspond to a known backend.
        """
        classes = backend_classes if backend_classes is not None else load_backends()
        unknown = [name for name in names if name not in classes]
        if unknown:
            raise RootfsDiffConfigurationError(
                f"Unknown backend(s): {', '.join(unknown)} "
                f"(known backends: {', '.join(sorted(classes))})"
            )

        settings = settings or {}
        self.cache: DiffCache = cache
        self.backends: List[Backend] = []
        for name in names:
            if any(backend.name == name for backend in self.backends):
                continue
            self.backends.append(classes[name](settings.get(name)))
        self._available: Optional[Dict[str, bool]] = None

    def __len__(self) -> int:
        return len(self.backends)

    def __iter__(self):
        return iter(self.backends)

    @property
    def names(self) -> List[str]:
        """The enabled backend names, in order."""
        return [backend.name for backend in self.backends]

    def probe(self) -> Dict[str, bool]:
        """
        Probe the availability of every enabled backend. Each backend is
        probed at most once per registry.

        :returns: A dictionary mapping backend names to availability.
        :rtype: ``Dict[str, bool]``
        """
        if self._available is None:
            available = {}
            for backend in self.backends:
                available[backend.name] = bool(backend.available())
                if available[backend.name]:
                    _log_info("Using backend %s", backend.name)
                else:
                    _log_warn(
                        "Backend %s is not available: results will be omitted",
                        backend.name,
                    )
            self._available = available
        return dict(self._available)

    def is_available(self, name: str) -> bool:
        """
        Test whether the backend or chained result ``name`` is available.

        :param name: A backend name or chained ``DELTA-COMPRESS`` name.
        :type name: ``str``
        :rtype: ``bool``
        """
        available = self.probe()
        if name in available:
            return available[name]
        return any(chain_name(d, c) == name for d, c in self.chains())

    def require(self, name: str) -> Backend:
        """
        Return the available backend ``name``.

        :raises ``RootfsDiffBackendUnavailableError``: If the backend is not
            enabled or is not available.
        """
        for backend in self.backends:
            if backend.name == name:
                if not self.probe()[name]:
                    raise RootfsDiffBackendUnavailableError(
                        f"Backend {name} is not available"
                    )
                return backend
        raise RootfsDiffBackendUnavailableError(f"Backend {name} is not enabled")

    def _of_kind(self, kind: BackendKind, only_available: bool = True) -> List[Backend]:
        available = self.probe() if only_available else {}
        return [
            backend
            for backend in self.backends
            if backend.kind == kind
            and (not only_available or available[backend.name])
        ]

    def compressors(self, only_available: bool = True) -> List[Backend]:
        """The compression backends, in order."""
        return self._of_kind(BackendKind.COMPRESS, only_available)

    def deltas(self, only_available: bool = True) -> List[Backend]:
        """The delta backends, in order."""
        return self._of_kind(BackendKind.DELTA, only_available)

    def reports(self, only_available: bool = True) -> List[Backend]:
        """The report backends, in order."""
        return self._of_kind(BackendKind.REPORT, only_available)

    def chains(self, only_available: bool = True) -> List[Tuple[Backend, Backend]]:
        """
        Return the ``(delta, compress)`` pairs whose chained results are
        computed for updated files.

        :rtype: ``List[Tuple[Backend, Backend]]``
        """
        return [
            (delta, compress)
            for delta in self.deltas(only_available)
            if delta.compressible
            for compress in self.compressors(only_available)
        ]

    def primary_compressor(self) -> Optional[Backend]:
        """
        Return the first available compression backend, if any.

        :rtype: ``Optional[Backend]``
        """
        compressors = self.compressors()
        return compressors[0] if compressors else None

    def _cached_run(
        self,
        result_name: str,
        extension: str,
        digests: Tuple[str, Optional[str]],
        compute,
    ) -> BackendResult:
        start = time.perf_counter_ns()
        entry: CacheEntry = self.cache.get_or_compute(
            extension, digests[0], digests[1], compute=compute
        )
        elapsed_micros = (time.perf_counter_ns() - start) // 1000
        _log_debug_backend(
            "%s: %s (%d bytes, %s)",
            result_name,
            entry.path,
            entry.size,
            "cached" if entry.cached else f"{elapsed_micros}us",
        )
        return BackendResult(
            backend_name=result_name,
            artifact_size=entry.size,
            elapsed_micros=elapsed_micros,
            artifact_path=entry.path,
            cached=entry.cached,
        )

    def compress(self, entry: FileEntry, digest: str) -> Dict[str, BackendResult]:
        """
        Run every available compression backend on ``entry``.

        :param entry: The file to compress.
        :type entry: ``FileEntry``
        :param digest: The content digest of ``entry``.
        :type digest: ``str``
        :returns: A dictionary mapping backend names to results.
        :rtype: ``Dict[str, BackendResult]``
        """
        results = {}
        for backend in self.compressors():
            results[backend.name] = self._cached_run(
                backend.name,
                backend.extension,
                (digest, None),
                lambda out_path, b=backend: b.run(None, entry.full_path, out_path),
            )
        return results

    def delta(
        self,
        from_entry: FileEntry,
        from_digest: str,
        to_entry: FileEntry,
        to_digest: str,
    ) -> Dict[str, BackendResult]:
        """
        Run every available delta and report backend on a file pair, and
        compress the output of each compressible delta backend with every
        available compression backend.

        Each chained result is computed after, and from the cached artifact
        of, the delta result it compresses.

        :param from_entry: The predecessor file.
        :type from_entry: ``FileEntry``
        :param from_digest: The content digest of ``from_entry``.
        :type from_digest: ``str``
        :param to_entry: The successor file.
        :type to_entry: ``FileEntry``
        :param to_digest: The content digest of ``to_entry``.
        :type to_digest: ``str``
        :returns: A dictionary mapping backend and chain names to results.
        :rtype: ``Dict[str, BackendResult]``
        """
        results = {}
        digests = (from_digest, to_digest)
        for backend in self.deltas() + self.reports():
            results[backend.name] = self._cached_run(
                backend.name,
                backend.extension,
                digests,
                lambda out_path, b=backend: b.run(
                    from_entry.full_path, to_entry.full_path, out_path
                ),
            )

        for delta, compress in self.chains():
            delta_path = results[delta.name].artifact_path
            name = chain_name(delta, compress)
            results[name] = self._cached_run(
                name,
                chain_extension(delta, compress),
                digests,
                lambda out_path, c=compress, p=delta_path: c.run(None, p, out_path),
            )
        return results


__all__ = [
    "BackendRegistry",
    "chain_extension",
    "chain_name",
]
