# Copyright Red Hat
#
# rootfsdiff/command.py - Root file system diff command interface
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""The ``rootfsdiff.command`` module provides the ``rootfs-diff`` command
line interface, and a simple procedural interface to the ``rootfsdiff``
library modules.

The procedural interface is used by the ``rootfs-diff`` command line tool,
and may be used by application programs, or interactively in the Python
shell by users who do not require all the features of the object API.
"""
from argparse import ArgumentParser
from typing import List, Optional, TextIO, Tuple
from os.path import basename
from json import dumps
import logging
import sys

from rootfsdiff import (
    ROOTFSDIFF_DEBUG_TREEWALK,
    ROOTFSDIFF_DEBUG_RECONCILE,
    ROOTFSDIFF_DEBUG_CACHE,
    ROOTFSDIFF_DEBUG_BACKEND,
    ROOTFSDIFF_DEBUG_AGGREGATE,
    ROOTFSDIFF_DEBUG_COMMAND,
    ROOTFSDIFF_DEBUG_ALL,
    ROOTFSDIFF_SUBSYSTEM_COMMAND,
    SubsystemFilter,
    set_debug_mask,
    size_fmt,
    ProgressAwareHandler,
    __version__,
)
from .aggregate import AggregateReport, GroupReport
from .config import DEFAULT_CONFIG_FILE, RootfsDiffConfig
from .differ import RootfsDiffer
from .difftypes import PairingType
from .engine import RootfsDiffResults
from .options import DiffOptions, split_names

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_command(msg, *args, **kwargs):
    """A wrapper for command subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": ROOTFSDIFF_SUBSYSTEM_COMMAND}, **kwargs)


_DEFAULT_LOG_LEVEL = logging.WARNING
_CONSOLE_HANDLER = None

#: Backends enabled by the legacy ``--use-*`` flags
_LEGACY_BACKEND_FLAGS = (
    ("use_bsdiff", "bsdiff"),
    ("use_courgette", "courgette"),
    ("use_zstd", "zstd"),
)


def diff_roots(
    from_path: str,
    to_path: str,
    options: Optional[DiffOptions] = None,
    config: Optional[RootfsDiffConfig] = None,
) -> Tuple[RootfsDiffResults, AggregateReport]:
    """
    Compare two root file systems.

    :param from_path: The older tree or image.
    :type from_path: ``str``
    :param to_path: The newer tree or image.
    :type to_path: ``str``
    :param options: Comparison options.
    :type options: ``Optional[DiffOptions]``
    :param config: Configuration file settings supplying backend settings.
    :type config: ``Optional[RootfsDiffConfig]``
    :returns: The classified results and aggregated totals.
    :rtype: ``Tuple[RootfsDiffResults, AggregateReport]``
    """
    config = config or RootfsDiffConfig()
    differ = RootfsDiffer(options, backend_settings=config.backend_settings)
    return differ.compare(from_path, to_path)


def _fmt_size(value: Optional[int]) -> str:
    return "n/a" if value is None else str(value)


def _fmt_backends(names: List[str], sizes) -> str:
    return "".join(f", {name}: {_fmt_size(sizes.get(name))}" for name in names)


def _print_group_members(
    groups: List[GroupReport],
    pairing_type: PairingType,
    names: List[str],
    out: TextIO,
):
    for group in groups:
        members = group.of_type(pairing_type)
        if not members:
            continue
        totals = group.category(pairing_type)
        print(
            f"  {group.pattern}: (size: {totals.size}"
            f"{_fmt_backends(names, totals.backend_sizes)})",
            file=out,
        )
        for result in members:
            sizes = {name: result.backend_size(name) for name in names}
            print(
                f"    {result.path}: (size: {result.size}"
                f"{_fmt_backends(names, sizes)})",
                file=out,
            )


def _print_singles(
    ungrouped: GroupReport, pairing_type: PairingType, names: List[str], out: TextIO
):
    for result in ungrouped.of_type(pairing_type):
        sizes = {name: result.backend_size(name) for name in names}
        print(
            f"  {result.path}: (size: {result.size}{_fmt_backends(names, sizes)})",
            file=out,
        )


def print_report(
    results: RootfsDiffResults,
    report: AggregateReport,
    out: Optional[TextIO] = None,
):
    """
    Print a text report of a comparison.

    :param results: The classified results.
    :type results: ``RootfsDiffResults``
    :param report: The aggregated totals for ``results``.
    :type report: ``AggregateReport``
    :param out: The stream to write to, ``sys.stdout`` if unset.
    :type out: ``Optional[TextIO]``
    """
    out = out or sys.stdout
    overall = report.overall
    ungrouped = report.ungrouped
    compress_names = [
        name
        for name in report.backend_names
        if name in overall.category(PairingType.NEW).backend_sizes
    ]

    for match in results.ambiguous:
        print(
            f"Ambiguous predecessors for {match.to.path}: "
            f"{', '.join(entry.path for entry in match.candidates)}",
            file=out,
        )

    print("Grouped new files:", file=out)
    _print_group_members(report.groups, PairingType.NEW, compress_names, out)
    print("Single new files:", file=out)
    _print_singles(ungrouped, PairingType.NEW, compress_names, out)

    print("Grouped removed files:", file=out)
    _print_group_members(report.groups, PairingType.REMOVED, compress_names, out)
    print("Single removed files:", file=out)
    _print_singles(ungrouped, PairingType.REMOVED, compress_names, out)

    print("Updated files:", file=out)
    for result in overall.of_type(PairingType.UPDATED):
        from_path = ""
        if result.from_entry.path != result.path:
            from_path = f"({result.from_entry.path})"
        sizes = {name: result.backend_size(name) for name in report.backend_names}
        print(
            f"  {result.path}{from_path}: {result.from_size} -> {result.size} "
            f"(size-diff: {result.size_delta}"
            f"{_fmt_backends(report.backend_names, sizes)})",
            file=out,
        )

    print("Grouped files:", file=out)
    for group in report.groups:
        if not group.results:
            continue
        print(
            f"  {group.pattern}: (size: {group.total_size}"
            f"{_fmt_backends(report.backend_names, group.totals)})",
            file=out,
        )

    new = overall.category(PairingType.NEW)
    removed = overall.category(PairingType.REMOVED)
    updated = overall.category(PairingType.UPDATED)
    same = overall.category(PairingType.SAME)
    single_new = ungrouped.category(PairingType.NEW)
    single_removed = ungrouped.category(PairingType.REMOVED)

    print("Totals:", file=out)
    print(f" unchanged files size   : {same.size} ({same.count} files)", file=out)
    print(
        f" new files size         : {new.size} ({new.count} files"
        f"{_fmt_backends(compress_names, new.backend_sizes)})",
        file=out,
    )
    print(f"   grouped : {new.size - single_new.size}", file=out)
    print(f"   single  : {single_new.size}", file=out)
    print(
        f" removed files size     : {removed.size} ({removed.count} files"
        f"{_fmt_backends(compress_names, removed.backend_sizes)})",
        file=out,
    )
    print(f"   grouped : {removed.size - single_removed.size}", file=out)
    print(f"   single  : {single_removed.size}", file=out)
    print(
        f" updated files size     : {updated.from_size} -> {updated.size} "
        f"(diff: {updated.size_delta}"
        f"{_fmt_backends(report.backend_names, updated.backend_sizes)})",
        file=out,
    )
    print(
        f" total diff size        : {overall.total_size}"
        f"{_fmt_backends(report.backend_names, overall.totals)}",
        file=out,
    )


def _load_config(cmd_args) -> RootfsDiffConfig:
    if cmd_args.config:
        return RootfsDiffConfig.from_file(cmd_args.config, required=True)
    return RootfsDiffConfig.from_file(DEFAULT_CONFIG_FILE)


def _merge_config(cmd_args, config: RootfsDiffConfig):
    """
    Fill unset command line values from the configuration file. Values given
    on the command line take precedence.
    """
    backends = list(cmd_args.backends or [])
    for flag, name in _LEGACY_BACKEND_FLAGS:
        if getattr(cmd_args, flag):
            backends.append(name)
    cmd_args.backends = list(split_names(backends)) or config.backends
    cmd_args.group_patterns = cmd_args.group_patterns or config.groups
    if cmd_args.cache_dir is None:
        cmd_args.cache_dir = config.cache_dir
    if cmd_args.jobs is None:
        cmd_args.jobs = config.jobs


def _diff_cmd(cmd_args) -> int:
    """
    Diff root file systems command handler.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    if cmd_args.diff_from == cmd_args.diff_to:
        _log_error("Cannot compare '%s' to itself.", cmd_args.diff_from)
        return 1

    config = _load_config(cmd_args)
    _merge_config(cmd_args, config)
    options = DiffOptions.from_cmd_args(cmd_args)
    _log_info("Using cache folder: %s", options.cache_dir)

    results, report = diff_roots(
        cmd_args.diff_from, cmd_args.diff_to, options=options, config=config
    )
    _log_info("Total diff size: %s", size_fmt(report.overall.total_size))

    if cmd_args.json:
        data = {"results": results.to_dict(), "report": report.to_dict()}
        print(dumps(data, indent=4 if cmd_args.pretty else None))
    else:
        print_report(results, report)
    return 0


def setup_logging(cmd_args):
    """
    Set up rootfsdiff logging.
    """
    # pylint: disable=global-statement
    global _CONSOLE_HANDLER
    level = _DEFAULT_LOG_LEVEL
    if cmd_args.verbose and cmd_args.verbose > 1:
        level = logging.DEBUG
    elif cmd_args.verbose and cmd_args.verbose > 0:
        level = logging.INFO

    rootfsdiff_log = logging.getLogger("rootfsdiff")
    formatter = logging.Formatter("%(levelname)s - %(message)s")
    rootfsdiff_log.setLevel(level)
    if rootfsdiff_log.hasHandlers():
        rootfsdiff_log.handlers.clear()

    # Subsystem log filtering
    _rootfsdiff_subsystem_filter = SubsystemFilter("rootfsdiff")

    # Main console handler
    _CONSOLE_HANDLER = ProgressAwareHandler()

    _CONSOLE_HANDLER.setLevel(level)
    _CONSOLE_HANDLER.setFormatter(formatter)
    _CONSOLE_HANDLER.addFilter(_rootfsdiff_subsystem_filter)

    rootfsdiff_log.addHandler(_CONSOLE_HANDLER)


def shutdown_logging():
    """
    Shut down rootfsdiff logging.
    """
    logging.shutdown()


def set_debug(debug_arg):
    """
    Set debugging mask from command line argument.
    """
    if not debug_arg:
        return

    mask_map = {
        "treewalk": ROOTFSDIFF_DEBUG_TREEWALK,
        "reconcile": ROOTFSDIFF_DEBUG_RECONCILE,
        "cache": ROOTFSDIFF_DEBUG_CACHE,
        "backend": ROOTFSDIFF_DEBUG_BACKEND,
        "aggregate": ROOTFSDIFF_DEBUG_AGGREGATE,
        "command": ROOTFSDIFF_DEBUG_COMMAND,
        "all": ROOTFSDIFF_DEBUG_ALL,
    }

    mask = 0
    for name in debug_arg.split(","):
        if name not in mask_map:
            raise ValueError(f"Unknown debug option: {name}")
        mask |= mask_map[name]
    set_debug_mask(mask)


def _add_diff_args(parser):
    parser.add_argument(
        "diff_from",
        metavar="FROM",
        help="The older root file system directory or image",
    )
    parser.add_argument(
        "diff_to",
        metavar="TO",
        help="The newer root file system directory or image",
    )
    parser.add_argument(
        "-b",
        "--backend",
        dest="backends",
        metavar="NAME",
        action="append",
        help="Enable a diff or compression backend (may be repeated or "
        "given as a comma separated list)",
    )
    parser.add_argument(
        "--use-bsdiff",
        action="store_true",
        help="Use bsdiff for deltas",
    )
    parser.add_argument(
        "--use-courgette",
        action="store_true",
        help="Use courgette for deltas",
    )
    parser.add_argument(
        "--use-zstd",
        action="store_true",
        help="Use zstd for compressing files and deltas",
    )
    parser.add_argument(
        "-g",
        "--group",
        dest="group_patterns",
        metavar="REGEX",
        action="append",
        help="Group files by regular expression (may be repeated)",
    )
    parser.add_argument(
        "-c",
        "--cache-dir",
        metavar="DIR",
        type=str,
        default=None,
        help="Location to store cache files",
    )
    parser.add_argument(
        "-C",
        "--config",
        metavar="FILE",
        type=str,
        default=None,
        help=f"Configuration file (default: {DEFAULT_CONFIG_FILE})",
    )
    parser.add_argument(
        "-j",
        "--jobs",
        metavar="N",
        type=int,
        default=None,
        help="Number of concurrent backend jobs",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output results as JSON",
    )
    parser.add_argument(
        "-p",
        "--pretty",
        action="store_true",
        help="Indent JSON output",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=None,
        help="Do not output progress or status updates",
    )


def main(args):
    """
    Main entry point for rootfs-diff.
    """
    parser = ArgumentParser(
        description="Compare root file system images", prog=basename(args[0])
    )

    # Global arguments
    parser.add_argument(
        "-d",
        "--debug",
        metavar="DEBUGOPTS",
        type=str,
        help="A list of debug options to enable",
    )
    parser.add_argument("-v", "--verbose", help="Enable verbose output", action="count")
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        help="Report the version number of rootfs-diff",
        version=__version__,
    )
    _add_diff_args(parser)

    cmd_args = parser.parse_args(args[1:])

    if cmd_args.pretty and not cmd_args.json:
        parser.error("option --pretty is only supported with --json")

    try:
        set_debug(cmd_args.debug)
    except ValueError as err:
        print(err)
        parser.print_help()
        return 2

    setup_logging(cmd_args)

    _log_debug_command("Parsed %s", " ".join(args[1:]))

    status = 1
    if cmd_args.debug:
        status = _diff_cmd(cmd_args)
    else:
        try:
            status = _diff_cmd(cmd_args)
        # pylint: disable=broad-except
        except KeyboardInterrupt:  # pragma: no cover
            _log_info("Exiting on user cancel")
        except Exception as err:
            _log_error("Command failed: %s", err)

    shutdown_logging()
    return status


def run():
    """
    Console script entry point for rootfs-diff.
    """
    sys.exit(main(sys.argv))


__all__ = [
    "diff_roots",
    "main",
    "print_report",
    "run",
    "set_debug",
    "setup_logging",
    "shutdown_logging",
]
