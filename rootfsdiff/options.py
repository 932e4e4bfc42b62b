# Copyright Red Hat
#
# rootfsdiff/options.py - Root file system diff options
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Root file system diff options.
"""
from dataclasses import dataclass, field, fields
from typing import List, Optional, Pattern, Tuple, Union
from argparse import Namespace
import tempfile
import hashlib
import logging
import os
import re

from ._rootfsdiff import RootfsDiffConfigurationError

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: Default directory for cached artifacts and extracted images.
DEFAULT_CACHE_DIR = os.path.join(tempfile.gettempdir(), "rootfs-diff")

#: Default content hash algorithm.
DEFAULT_HASH_ALGORITHM = "sha1"


def split_names(values: Optional[List[str]]) -> Tuple[str, ...]:
    """
    Flatten a list of possibly comma separated names into a tuple,
    dropping empty items and duplicates while preserving order.

    :param values: A list of name strings, each of which may contain a
                   comma separated list of names.
    :type values: ``Optional[List[str]]``
    :returns: A tuple of individual names.
    :rtype: ``Tuple[str, ...]``
    """
    names = []
    for value in values or []:
        for name in value.split(","):
            name = name.strip()
            if name and name not in names:
                names.append(name)
    return tuple(names)


@dataclass(frozen=True)
class DiffOptions:
    """
    Root file system comparison options.
    """

    #: Names of the diff and compression backends to enable, in order
    backends: Tuple[str, ...] = field(default_factory=tuple)
    #: Ordered regular expressions used to group result paths
    group_patterns: Tuple[str, ...] = field(default_factory=tuple)
    #: Directory holding cached artifacts and extracted images
    cache_dir: str = DEFAULT_CACHE_DIR
    #: Number of concurrent backend worker threads
    jobs: int = 1
    #: Content hash algorithm used for equality and cache keys
    hash_algorithm: str = DEFAULT_HASH_ALGORITHM
    #: Do not output progress or status updates
    quiet: bool = False
    #: Compiled ``group_patterns``
    _compiled: Tuple[Pattern, ...] = field(
        init=False, repr=False, compare=False, default=()
    )

    def __post_init__(self):
        """
        Validate option values and compile grouping patterns.

        :raises ``RootfsDiffConfigurationError``: If a grouping pattern is
            not a valid regular expression, ``jobs`` is not positive or the
            hash algorithm is unknown.
        """
        compiled = []
        for pattern in self.group_patterns:
            try:
                compiled.append(re.compile(pattern))
            except re.error as err:
                raise RootfsDiffConfigurationError(
                    f"Invalid group pattern '{pattern}': {err}"
                ) from err
        object.__setattr__(self, "_compiled", tuple(compiled))

        if not isinstance(self.jobs, int) or self.jobs < 1:
            raise RootfsDiffConfigurationError(
                f"Invalid job count: {self.jobs} (must be a positive integer)"
            )

        if self.hash_algorithm not in hashlib.algorithms_available:
            raise RootfsDiffConfigurationError(
                f"Unknown hash algorithm: {self.hash_algorithm}"
            )

        if not self.cache_dir:
            raise RootfsDiffConfigurationError("Cache directory cannot be empty")

    @property
    def patterns(self) -> Tuple[Pattern, ...]:
        """
        The compiled grouping patterns, in the order given.

        :returns: A tuple of compiled regular expressions.
        :rtype: ``Tuple[Pattern, ...]``
        """
        return self._compiled

    def __str__(self):
        """
        Return a human readable string representation of this
        ``DiffOptions`` instance.

        :returns: A human readable string.
        :rtype: ``str``
        """
        items = [
            (f.name, getattr(self, f.name)) for f in fields(self) if f.init
        ]
        return "\n".join(
            f"{key}={' '.join(val) if isinstance(val, tuple) else val}"
            for key, val in items
        )

    @classmethod
    def from_cmd_args(cls, cmd_args: Namespace) -> "DiffOptions":
        """
        Initialise DiffOptions from command line arguments.

        Construct a new ``DiffOptions`` object from the command line
        arguments in ``cmd_args``. List values are converted to tuples and
        comma separated backend lists are split. Arguments that are absent
        or ``None`` take the field default.

        :param cmd_args: The command line selection arguments.
        :type cmd_args: ``Namespace``
        :returns: A new ``DiffOptions`` instance
        :rtype: ``DiffOptions``
        """

        def get_value(name: str) -> Union[bool, int, str, Tuple[str, ...]]:
            attr = getattr(cmd_args, name)
            if name == "backends":
                return split_names(attr)
            if isinstance(attr, list):
                return tuple(attr)
            return attr

        field_names = {f.name for f in fields(cls) if f.init}
        kwargs = {
            name: get_value(name)
            for name in field_names
            if getattr(cmd_args, name, None) is not None
        }
        options = cls(**kwargs)
        _log_debug("Initialised DiffOptions from arguments: %s", repr(options))
        return options


__all__ = [
    "DEFAULT_CACHE_DIR",
    "DEFAULT_HASH_ALGORITHM",
    "DiffOptions",
    "split_names",
]
