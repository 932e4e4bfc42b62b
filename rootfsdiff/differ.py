# Copyright Red Hat
#
# rootfsdiff/differ.py - Root file system diff top-level interface
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Top-level interface for root file system comparisons.
"""
from typing import Mapping, Optional, Tuple
from datetime import datetime
import logging

from .aggregate import AggregateReport, Aggregator
from .cache import DiffCache
from .engine import DiffEngine, RootfsDiffResults
from .image import ImagePreparer
from .options import DiffOptions
from .registry import BackendRegistry
from .treewalk import ContentHasher, TreeWalker

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


class RootfsDiffer:
    """
    Top-level interface for generating root file system comparisons.
    """

    def __init__(
        self,
        options: Optional[DiffOptions] = None,
        backend_settings: Optional[Mapping[str, Mapping[str, str]]] = None,
        registry: Optional[BackendRegistry] = None,
    ):
        """
        Initialise a new ``RootfsDiffer``.

        Backend names are validated here so that configuration errors are
        reported before any tree is walked.

        :param options: Options to control this ``RootfsDiffer`` instance.
        :type options: ``Optional[DiffOptions]``
        :param backend_settings: Per-backend settings keyed by backend name.
        :type backend_settings: ``Optional[Mapping[str, Mapping[str, str]]]``
        :param registry: An optional pre-built backend registry. A registry
                         for ``options.backends`` is created if unset.
        :type registry: ``Optional[BackendRegistry]``
        :raises ``RootfsDiffConfigurationError``: If a backend name is
            unknown.
        """
        self.options: DiffOptions = options or DiffOptions()
        self.cache: DiffCache = DiffCache(self.options.cache_dir)
        self.registry: BackendRegistry = registry or BackendRegistry(
            self.cache, self.options.backends, settings=backend_settings
        )
        self.hasher: ContentHasher = ContentHasher(self.options.hash_algorithm)
        self.tree_walker: TreeWalker = TreeWalker(quiet=self.options.quiet)
        self.preparer: ImagePreparer = ImagePreparer(self.cache, self.hasher)
        self.engine: DiffEngine = DiffEngine(
            self.registry, hasher=self.hasher, options=self.options
        )

    def compare(
        self, from_path: str, to_path: str
    ) -> Tuple[RootfsDiffResults, AggregateReport]:
        """
        Compare the root file systems at ``from_path`` and ``to_path``.

        Each argument may be a directory or a squashfs, cpio, zstd or gzip
        image file.

        :param from_path: The older tree or image.
        :type from_path: ``str``
        :param to_path: The newer tree or image.
        :type to_path: ``str``
        :returns: A tuple of the classified results and aggregated totals.
        :rtype: ``Tuple[RootfsDiffResults, AggregateReport]``
        """
        start_time = datetime.now()
        _log_debug("Comparing %s to %s with options:\n%s", from_path, to_path,
                   self.options)

        self.cache.check()

        from_root = self.preparer.prepare(from_path)
        to_root = self.preparer.prepare(to_path)

        from_tree = self.tree_walker.walk_tree(from_root)
        to_tree = self.tree_walker.walk_tree(to_root)

        results = self.engine.compute(from_tree, to_tree)

        aggregator = Aggregator(self.options.patterns, self.registry)
        report = aggregator.aggregate(list(results))

        _log_info(
            "Compared %s to %s in %s", from_path, to_path, datetime.now() - start_time
        )
        return results, report


__all__ = ["RootfsDiffer"]
