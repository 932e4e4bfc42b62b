# Copyright Red Hat
#
# rootfsdiff/aggregate.py - Root file system diff result aggregation
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Aggregation of classified results into per-group and per-backend totals.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern, Sequence
import logging

from ._rootfsdiff import ROOTFSDIFF_SUBSYSTEM_AGGREGATE
from .difftypes import PairingType
from .reconcile import PairingResult
from .registry import BackendRegistry, chain_name

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_aggregate(msg, *args, **kwargs):
    """A wrapper for aggregate subsystem debug logs."""
    _log.debug(
        msg, *args, extra={"subsystem": ROOTFSDIFF_SUBSYSTEM_AGGREGATE}, **kwargs
    )


def _add(left: Optional[int], right: Optional[int]) -> Optional[int]:
    if left is None or right is None:
        return None
    return left + right


@dataclass
class CategoryTotals:
    """
    Totals for the results of one pairing type.
    """

    #: Number of results
    count: int = 0
    #: Sum of raw sizes ("to" size, or "from" size for removed files)
    size: int = 0
    #: Sum of predecessor sizes (updated files only)
    from_size: int = 0
    #: Sum of signed size changes (updated files only)
    size_delta: int = 0
    #: Sum of artifact sizes per backend, ``None`` if unavailable
    backend_sizes: Dict[str, Optional[int]] = field(default_factory=dict)

    def to_dict(self):
        """
        Return a dictionary representation of these totals.

        :rtype: ``dict``
        """
        return {
            "count": self.count,
            "size": self.size,
            "from_size": self.from_size,
            "size_delta": self.size_delta,
            "backends": dict(self.backend_sizes),
        }


@dataclass
class GroupReport:
    """
    Totals for one group of results.
    """

    #: The grouping pattern, or ``None`` for the ungrouped or overall report
    pattern: Optional[str]
    #: Member results, ordered by descending raw size
    results: List[PairingResult] = field(default_factory=list)
    #: Per pairing type totals
    categories: Dict[PairingType, CategoryTotals] = field(default_factory=dict)
    #: Baseline total diff size: new sizes plus updated "to" sizes
    total_size: int = 0
    #: Per backend total diff size, ``None`` if any input is unavailable
    totals: Dict[str, Optional[int]] = field(default_factory=dict)

    def __len__(self):
        return len(self.results)

    def category(self, pairing_type: PairingType) -> CategoryTotals:
        """
        Return the totals for ``pairing_type``.

        :rtype: ``CategoryTotals``
        """
        return self.categories[pairing_type]

    def of_type(self, pairing_type: PairingType) -> List[PairingResult]:
        """
        Return the member results of ``pairing_type``, largest first.

        :rtype: ``List[PairingResult]``
        """
        return [r for r in self.results if r.pairing_type == pairing_type]

    def to_dict(self):
        """
        Return a dictionary representation of this group.

        :rtype: ``dict``
        """
        return {
            "pattern": self.pattern,
            "files": [result.path for result in self.results],
            "categories": {
                ptype.value: totals.to_dict()
                for ptype, totals in self.categories.items()
            },
            "total_size": self.total_size,
            "totals": dict(self.totals),
        }


@dataclass
class AggregateReport:
    """
    The aggregated totals of one comparison.
    """

    #: One report per grouping pattern, in pattern order
    groups: List[GroupReport] = field(default_factory=list)
    #: Results matched by no pattern
    ungrouped: Optional[GroupReport] = None
    #: All results
    overall: Optional[GroupReport] = None
    #: Result names with totals, in report order
    backend_names: List[str] = field(default_factory=list)

    def to_dict(self):
        """
        Return a dictionary representation of this report.

        :rtype: ``dict``
        """
        return {
            "backends": list(self.backend_names),
            "groups": [group.to_dict() for group in self.groups],
            "ungrouped": self.ungrouped.to_dict() if self.ungrouped else None,
            "overall": self.overall.to_dict() if self.overall else None,
        }


class Aggregator:
    """
    Group classified results by path patterns and sum their sizes.
    """

    def __init__(self, patterns: Sequence[Pattern], registry: BackendRegistry):
        """
        Initialise a new ``Aggregator``.

        :param patterns: Compiled grouping patterns, in order.
        :type patterns: ``Sequence[Pattern]``
        :param registry: The backend registry used for the run.
        :type registry: ``BackendRegistry``
        """
        self.patterns: List[Pattern] = list(patterns)
        self.registry: BackendRegistry = registry

        self.compress_names = [b.name for b in registry.compressors(False)]
        self.delta_names = [b.name for b in registry.deltas(False)]
        self.report_names = [b.name for b in registry.reports(False)]
        self.chain_names = {
            chain_name(d, c): (d.name, c.name) for d, c in registry.chains(False)
        }
        primary = registry.primary_compressor()
        self.primary: Optional[str] = primary.name if primary else None

    @property
    def result_names(self) -> List[str]:
        """All backend and chained result names, in report order."""
        return (
            self.compress_names
            + self.delta_names
            + list(self.chain_names)
            + self.report_names
        )

    def _applicable(self, pairing_type: PairingType) -> List[str]:
        if pairing_type == PairingType.UPDATED:
            return self.result_names
        return list(self.compress_names)

    def _category_totals(
        self, pairing_type: PairingType, results: List[PairingResult]
    ) -> CategoryTotals:
        totals = CategoryTotals()
        for result in results:
            totals.count += 1
            totals.size += result.size
            if pairing_type == PairingType.UPDATED:
                totals.from_size += result.from_size
                totals.size_delta += result.size_delta

        for name in self._applicable(pairing_type):
            if not self.registry.is_available(name):
                totals.backend_sizes[name] = None
                continue
            totals.backend_sizes[name] = sum(
                result.backend_size(name) or 0 for result in results
            )
        return totals

    def _backend_totals(self, group: GroupReport) -> Dict[str, Optional[int]]:
        new = group.category(PairingType.NEW)
        updated = group.category(PairingType.UPDATED)

        if self.primary is not None:
            new_baseline = new.backend_sizes[self.primary]
        else:
            new_baseline = new.size

        totals: Dict[str, Optional[int]] = {}
        for name in self.compress_names:
            totals[name] = _add(new.backend_sizes[name], updated.backend_sizes[name])
        for name in self.delta_names:
            totals[name] = _add(
                new_baseline if self.registry.is_available(name) else None,
                updated.backend_sizes[name],
            )
        for name, (_, compress) in self.chain_names.items():
            totals[name] = _add(
                new.backend_sizes[compress], updated.backend_sizes[name]
            )
        for name in self.report_names:
            totals[name] = updated.backend_sizes[name]
        return totals

    def summarise(
        self, results: Sequence[PairingResult], pattern: Optional[str] = None
    ) -> GroupReport:
        """
        Build a ``GroupReport`` for ``results``.

        :param results: The member results.
        :type results: ``Sequence[PairingResult]``
        :param pattern: The group's pattern string, if any.
        :type pattern: ``Optional[str]``
        :rtype: ``GroupReport``
        """
        group = GroupReport(
            pattern, sorted(results, key=lambda result: result.size, reverse=True)
        )
        for pairing_type in PairingType:
            group.categories[pairing_type] = self._category_totals(
                pairing_type, group.of_type(pairing_type)
            )
        group.total_size = (
            group.category(PairingType.NEW).size
            + group.category(PairingType.UPDATED).size
        )
        group.totals = self._backend_totals(group)
        return group

    def aggregate(self, results: Sequence[PairingResult]) -> AggregateReport:
        """
        Partition ``results`` by the grouping patterns and compute totals.

        Each result belongs to the first pattern that matches its path
        (``re.search`` semantics) or to the ungrouped remainder.

        :param results: The classified results of a comparison.
        :type results: ``Sequence[PairingResult]``
        :returns: The aggregated report.
        :rtype: ``AggregateReport``
        """
        report = AggregateReport(backend_names=self.result_names)
        seen = set()
        for pattern in self.patterns:
            members = []
            for index, result in enumerate(results):
                if index in seen or not pattern.search(result.path):
                    continue
                seen.add(index)
                members.append(result)
            _log_debug_aggregate(
                "Group %s: %d results", pattern.pattern, len(members)
            )
            report.groups.append(self.summarise(members, pattern.pattern))

        ungrouped = [r for index, r in enumerate(results) if index not in seen]
        _log_debug_aggregate("Ungrouped: %d results", len(ungrouped))
        report.ungrouped = self.summarise(ungrouped)
        report.overall = self.summarise(results)
        return report


__all__ = [
    "AggregateReport",
    "Aggregator",
    "CategoryTotals",
    "GroupReport",
]
