# Copyright Red Hat
#
# rootfsdiff/_rootfsdiff.py - Root file system diff global definitions
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Global definitions for the top-level rootfsdiff package.
"""
from typing import Optional, TextIO, Union, TYPE_CHECKING
import logging
import weakref
import math
import sys

if TYPE_CHECKING:
    from .progress import ProgressBase

_log = logging.getLogger("rootfsdiff")

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

# Rootfsdiff debugging subsystem mask
ROOTFSDIFF_DEBUG_TREEWALK = 1
ROOTFSDIFF_DEBUG_RECONCILE = 2
ROOTFSDIFF_DEBUG_CACHE = 4
ROOTFSDIFF_DEBUG_BACKEND = 8
ROOTFSDIFF_DEBUG_AGGREGATE = 16
ROOTFSDIFF_DEBUG_COMMAND = 32
ROOTFSDIFF_DEBUG_ALL = (
    ROOTFSDIFF_DEBUG_TREEWALK
    | ROOTFSDIFF_DEBUG_RECONCILE
    | ROOTFSDIFF_DEBUG_CACHE
    | ROOTFSDIFF_DEBUG_BACKEND
    | ROOTFSDIFF_DEBUG_AGGREGATE
    | ROOTFSDIFF_DEBUG_COMMAND
)

# Subsystem names for debug filtering
ROOTFSDIFF_SUBSYSTEM_TREEWALK = "rootfsdiff.treewalk"
ROOTFSDIFF_SUBSYSTEM_RECONCILE = "rootfsdiff.reconcile"
ROOTFSDIFF_SUBSYSTEM_CACHE = "rootfsdiff.cache"
ROOTFSDIFF_SUBSYSTEM_BACKEND = "rootfsdiff.backend"
ROOTFSDIFF_SUBSYSTEM_AGGREGATE = "rootfsdiff.aggregate"
ROOTFSDIFF_SUBSYSTEM_COMMAND = "rootfsdiff.command"

_DEBUG_MASK_TO_SUBSYSTEM = {
    ROOTFSDIFF_DEBUG_TREEWALK: ROOTFSDIFF_SUBSYSTEM_TREEWALK,
    ROOTFSDIFF_DEBUG_RECONCILE: ROOTFSDIFF_SUBSYSTEM_RECONCILE,
    ROOTFSDIFF_DEBUG_CACHE: ROOTFSDIFF_SUBSYSTEM_CACHE,
    ROOTFSDIFF_DEBUG_BACKEND: ROOTFSDIFF_SUBSYSTEM_BACKEND,
    ROOTFSDIFF_DEBUG_AGGREGATE: ROOTFSDIFF_SUBSYSTEM_AGGREGATE,
    ROOTFSDIFF_DEBUG_COMMAND: ROOTFSDIFF_SUBSYSTEM_COMMAND,
}

# Set of enabled debug subsystems
_debug_subsystems = set()

# Progress instances currently drawing to a terminal
_active_progress = weakref.WeakSet()


class SubsystemFilter(logging.Filter):
    """
    Filters DEBUG records based on a set of enabled subsystem names.
    Non-DEBUG records or DEBUG records without a 'subsystem' attribute
    are always passed through.
    """

    def __init__(self, name=""):
        super().__init__(name)
        self.enabled_subsystems = set(_debug_subsystems)

    def filter(self, record):
        if record.levelno != logging.DEBUG:
            return True

        if not hasattr(record, "subsystem"):
            return True

        return record.subsystem in self.enabled_subsystems

    def set_debug_subsystems(self, subsystems):
        """Sets the collection of subsystems to allow."""
        self.enabled_subsystems = set(subsystems)


def get_debug_mask():
    """
    Return the current debug mask for the ``rootfsdiff`` package.

    :returns: The current debug mask value
    :rtype: int
    """
    enabled_subsystems = set(_debug_subsystems)
    rootfsdiff_log = logging.getLogger("rootfsdiff")

    for handler in rootfsdiff_log.handlers:
        for f in handler.filters:
            if isinstance(f, SubsystemFilter):
                enabled_subsystems.update(f.enabled_subsystems)

    mask_map = {v: k for k, v in _DEBUG_MASK_TO_SUBSYSTEM.items()}
    mask = 0
    for subsystem_name in enabled_subsystems:
        mask |= mask_map.get(subsystem_name, 0)
    return mask


def set_debug_mask(mask):
    """
    Set the debug mask for the ``rootfsdiff`` package.

    :param mask: the logical OR of the ``ROOTFSDIFF_DEBUG_*``
                 values to log.
    :rtype: None
    """
    # pylint: disable=global-statement
    global _debug_subsystems

    if mask < 0 or mask > ROOTFSDIFF_DEBUG_ALL:
        raise ValueError(f"Invalid rootfsdiff debug mask: {mask}")

    enabled_subsystems = [
        subsystem_name
        for flag, subsystem_name in _DEBUG_MASK_TO_SUBSYSTEM.items()
        if mask & flag
    ]

    rootfsdiff_log = logging.getLogger("rootfsdiff")
    for handler in rootfsdiff_log.handlers:
        for f in handler.filters:
            if isinstance(f, SubsystemFilter):
                f.set_debug_subsystems(enabled_subsystems)

    _debug_subsystems = set(enabled_subsystems)


def register_progress(progress: "ProgressBase"):
    """Register a progress instance for log coordination."""
    _active_progress.add(progress)
    progress.registered = True


def unregister_progress(progress: "ProgressBase"):
    """Unregister a progress instance."""
    _active_progress.discard(progress)
    progress.registered = False


def notify_log_output(stream: TextIO):
    """
    Notify progress instances that log output occurred on stream.

    :param stream: The stream that received output.
    :type stream: ``TextIO``
    """
    if stream not in (sys.stdout, sys.stderr):
        return
    for progress in list(_active_progress):
        progress.reset_position()


class ProgressAwareHandler(logging.StreamHandler):
    """
    A logging handler that coordinates with active Progress instances.

    After emitting a log record, notifies any Progress instances writing
    to the same stream so they can avoid erasing the log message.
    """

    def __init__(self, stream: Optional[TextIO] = None, **kwargs):
        super().__init__(stream=stream or sys.stderr, **kwargs)

    def emit(self, record):
        try:
            msg = self.format(record)
            self.stream.write(msg + "\n")
            self.stream.flush()
            notify_log_output(self.stream)
        except Exception:  # pylint: disable=broad-exception-caught
            self.handleError(record)


#
# Rootfsdiff exception types
#


class RootfsDiffError(Exception):
    """
    Base class for root file system diff errors.
    """


class RootfsDiffConfigurationError(RootfsDiffError):
    """
    An invalid configuration value was given: a malformed grouping pattern,
    an unknown backend name or a bad configuration file entry.
    """


class RootfsDiffIOError(RootfsDiffError):
    """
    An error reading a tree root or a file's content.
    """


class RootfsDiffSystemError(RootfsDiffError):
    """
    An error when calling the operating system.
    """


class RootfsDiffBackendUnavailableError(RootfsDiffError):
    """
    A diff or compression backend is not installed or cannot be run.
    """


class RootfsDiffBackendError(RootfsDiffError):
    """
    An external diff or compression tool ran but failed.
    """

    def __init__(self, backend: str, status: Union[int, str], stderr: str):
        """
        Initialise a new ``RootfsDiffBackendError`` exception.

        :param backend: The name of the failing backend.
        :param status: The exit status of the backend program or a short
                       description of the failure.
        :param stderr: The error output from the backend program.
        """
        self.backend, self.status, self.stderr = backend, status, stderr
        msg = f"Backend {backend} failed (status={status}): {stderr}"
        super().__init__(msg)


class RootfsDiffImageError(RootfsDiffError):
    """
    An image could not be identified or unpacked.
    """


def size_fmt(value):
    """
    Format a size in bytes as a human readable string.

    :param value: The integer value to format.
    :returns: A human readable string reflecting value.
    """
    suffixes = ["B", "KiB", "MiB", "GiB", "TiB", "PiB", "EiB", "ZiB"]
    if value == 0:
        return "0B"
    magnitude = math.floor(math.log(abs(value), 1024))
    val = value / math.pow(1024, magnitude)
    if magnitude > 7:
        return f"{val:.1f}YiB"
    return f"{val:3.1f}{suffixes[magnitude]}"


__all__ = [
    "ROOTFSDIFF_DEBUG_TREEWALK",
    "ROOTFSDIFF_DEBUG_RECONCILE",
    "ROOTFSDIFF_DEBUG_CACHE",
    "ROOTFSDIFF_DEBUG_BACKEND",
    "ROOTFSDIFF_DEBUG_AGGREGATE",
    "ROOTFSDIFF_DEBUG_COMMAND",
    "ROOTFSDIFF_DEBUG_ALL",
    # Debug logging - subsystem name interface
    "SubsystemFilter",
    "ROOTFSDIFF_SUBSYSTEM_TREEWALK",
    "ROOTFSDIFF_SUBSYSTEM_RECONCILE",
    "ROOTFSDIFF_SUBSYSTEM_CACHE",
    "ROOTFSDIFF_SUBSYSTEM_BACKEND",
    "ROOTFSDIFF_SUBSYSTEM_AGGREGATE",
    "ROOTFSDIFF_SUBSYSTEM_COMMAND",
    "set_debug_mask",
    "get_debug_mask",
    # Progress log callbacks
    "register_progress",
    "unregister_progress",
    "notify_log_output",
    "ProgressAwareHandler",
    "RootfsDiffError",
    "RootfsDiffConfigurationError",
    "RootfsDiffIOError",
    "RootfsDiffSystemError",
    "RootfsDiffBackendUnavailableError",
    "RootfsDiffBackendError",
    "RootfsDiffImageError",
    "size_fmt",
]
