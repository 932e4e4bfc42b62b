# Copyright Red Hat
#
# rootfsdiff/backends/__init__.py - Root file system diff backend base classes
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Diff and compression backend interface.

A backend wraps one external program that turns one or two input files into
an artifact whose size is the measurement of interest. Each backend module in
this package defines a single public ``Backend`` subclass, discovered at run
time by ``rootfsdiff._loader.load_backends()``.
"""
from dataclasses import dataclass
from subprocess import run, CompletedProcess, PIPE, TimeoutExpired
from shutil import which
from typing import Dict, List, Mapping, Optional, Tuple
import logging
import time
import os
import re

from .._rootfsdiff import (
    ROOTFSDIFF_SUBSYSTEM_BACKEND,
    RootfsDiffBackendError,
    RootfsDiffConfigurationError,
)
from ..difftypes import BackendKind

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_backend(msg, *args, **kwargs):
    """A wrapper for backend subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": ROOTFSDIFF_SUBSYSTEM_BACKEND}, **kwargs)


#: Default container engine for containerised backends
DEFAULT_CONTAINER_ENGINE = "docker"

#: Configuration key for the container image name
CFG_IMAGE = "Image"

#: Configuration key for the container engine command
CFG_ENGINE = "Engine"

#: Configuration key for compression levels
CFG_LEVEL = "Level"

#: Time limit for availability probes in seconds
_PROBE_TIMEOUT = 30

_FROM_VAR = "$from"
_TO_VAR = "$to"
_OUT_VAR = "$diff"


def _decode_output(data: Optional[bytes]) -> str:
    """
    Decode and strip captured process output.

    :param data: Captured ``stdout`` or ``stderr`` bytes.
    :type data: ``Optional[bytes]``
    :returns: A stripped string.
    :rtype: ``str``
    """
    if not data:
        return ""
    return data.decode("utf8", errors="replace").strip()


@dataclass(frozen=True)
class BackendResult:
    """
    The outcome of running one backend for one file.
    """

    #: The producing backend's name
    backend_name: str
    #: The artifact size in bytes
    artifact_size: int
    #: Wall clock time spent obtaining the artifact in microseconds
    elapsed_micros: int
    #: The cached artifact path
    artifact_path: str
    #: ``True`` if the artifact was served from the cache
    cached: bool

    def to_dict(self):
        """
        Return a dictionary representation of this ``BackendResult``.

        :rtype: ``dict``
        """
        return {
            "backend": self.backend_name,
            "size": self.artifact_size,
            "elapsed_micros": self.elapsed_micros,
            "path": self.artifact_path,
            "cached": self.cached,
        }


class Backend:
    """
    Base class for diff and compression backends.
    """

    #: Backend name used on the command line and in reports
    name: str = "backend"
    #: Cache file extension for this backend's artifacts
    extension: str = ""
    #: The kind of backend
    kind: BackendKind = BackendKind.DELTA
    #: Whether this backend's output benefits from further compression
    compressible: bool = False

    def __init__(self, settings: Optional[Mapping[str, str]] = None):
        """
        Initialise a new ``Backend``.

        :param settings: Optional configuration file settings for this
                         backend.
        :type settings: ``Optional[Mapping[str, str]]``
        """
        self.settings: Dict[str, str] = dict(settings or {})

    def __repr__(self):
        return f"{self.__class__.__name__}(settings={self.settings!r})"

    def _get_int(self, key: str, default: int) -> int:
        """
        Return integer setting ``key`` or ``default``.

        :raises ``RootfsDiffConfigurationError``: If the value is not an
            integer.
        """
        if key not in self.settings:
            return default
        try:
            return int(self.settings[key])
        except ValueError as err:
            raise RootfsDiffConfigurationError(
                f"Invalid {key} value for backend {self.name}: {self.settings[key]}"
            ) from err

    def _get_str(self, key: str, default: Optional[str]) -> Optional[str]:
        value = self.settings.get(key, "").strip()
        return value or default

    def available(self) -> bool:
        """
        Probe whether this backend can be run on this host.

        :returns: ``True`` if the backend is usable.
        :rtype: ``bool``
        """
        raise NotImplementedError

    def generate(self, from_path: Optional[str], to_path: str, out_path: str):
        """
        Write this backend's artifact for the given inputs to ``out_path``.

        :param from_path: The first input, or ``None`` for compression
                          backends.
        :type from_path: ``Optional[str]``
        :param to_path: The second (or only) input.
        :type to_path: ``str``
        :param out_path: The path to write the artifact to.
        :type out_path: ``str``
        :raises ``RootfsDiffBackendError``: If the external tool fails.
        """
        raise NotImplementedError

    def run(
        self, from_path: Optional[str], to_path: str, out_path: str
    ) -> Tuple[int, int]:
        """
        Run this backend and return the artifact size and elapsed time.

        :param from_path: The first input, or ``None`` for compression
                          backends.
        :type from_path: ``Optional[str]``
        :param to_path: The second (or only) input.
        :type to_path: ``str``
        :param out_path: The path to write the artifact to.
        :type out_path: ``str``
        :returns: A tuple of ``(artifact_size, elapsed_micros)``.
        :rtype: ``Tuple[int, int]``
        :raises ``RootfsDiffBackendError``: If the external tool fails or
            does not produce an artifact.
        """
        if self.kind == BackendKind.COMPRESS:
            if from_path is not None:
                raise ValueError(f"Compression backend {self.name} takes one input")
        elif from_path is None:
            raise ValueError(f"Backend {self.name} requires two inputs")

        start = time.perf_counter_ns()
        self.generate(from_path, to_path, out_path)
        elapsed_micros = (time.perf_counter_ns() - start) // 1000

        try:
            size = os.stat(out_path).st_size
        except OSError as err:
            raise RootfsDiffBackendError(
                self.name, "no output", f"{out_path}: {err}"
            ) from err

        _log_debug_backend(
            "Backend %s wrote %d bytes to %s in %dus",
            self.name,
            size,
            out_path,
            elapsed_micros,
        )
        return size, elapsed_micros


class CommandBackend(Backend):
    """
    A backend implemented by running an external command.

    The ``command`` template may contain the variables ``$from``, ``$to``
    and ``$diff``, replaced with the first input, the second input and the
    output path. When ``container`` is set the command is run inside that
    container image with the input and output directories mounted at
    ``/from``, ``/to`` and ``/diff``.
    """

    #: Command template
    command: List[str] = []
    #: Arguments used to probe for the command
    probe_args: List[str] = ["--help"]
    #: Pattern to search for in the probe output, or ``None`` to accept a
    #: zero exit status.
    probe_pattern: Optional[str] = None
    #: Default container image, or ``None`` to run on the host
    container: Optional[str] = None
    #: Exit status values that indicate success
    ok_status: Tuple[int, ...] = (0,)
    #: Write the command's standard output to the artifact
    capture_stdout: bool = False

    @property
    def image(self) -> Optional[str]:
        """The container image to run in, if any."""
        return self._get_str(CFG_IMAGE, self.container)

    @property
    def engine(self) -> str:
        """The container engine command."""
        return self._get_str(CFG_ENGINE, DEFAULT_CONTAINER_ENGINE)

    def build_args(self, from_path: Optional[str], to_path: str, out_path: str):
        """
        Build the argument vector for one invocation.

        :returns: A list of program arguments.
        :rtype: ``List[str]``
        """
        mounts = []
        if self.image:
            paths = {}
            for var, path, mount in (
                (_FROM_VAR, from_path, "/from"),
                (_TO_VAR, to_path, "/to"),
                (_OUT_VAR, out_path, "/diff"),
            ):
                if path is None:
                    continue
                mounts.append(f"-v{os.path.dirname(path)}:{mount}")
                paths[var] = f"{mount}/{os.path.basename(path)}"
        else:
            paths = {_FROM_VAR: from_path, _TO_VAR: to_path, _OUT_VAR: out_path}

        args = []
        for item in self.command:
            for var, path in paths.items():
                if path is not None:
                    item = item.replace(var, path)
            args.append(item)

        if self.image:
            return [self.engine, "run", "--rm", *mounts, self.image, *args]
        return args

    def _probe(self) -> Optional[CompletedProcess]:
        if self.image:
            probe_cmd = [self.engine, "inspect", "--type=image", self.image]
        else:
            probe_cmd = [self.command[0], *self.probe_args]
        if not which(probe_cmd[0]):
            _log_debug_backend("Backend %s: %s not found", self.name, probe_cmd[0])
            return None
        try:
            return run(
                probe_cmd,
                capture_output=True,
                check=False,
                timeout=_PROBE_TIMEOUT,
            )
        except (OSError, TimeoutExpired) as err:
            _log_debug_backend("Backend %s probe failed: %s", self.name, err)
            return None

    def available(self) -> bool:
        result = self._probe()
        if result is None:
            return False
        if self.image or self.probe_pattern is None:
            return result.returncode == 0
        output = _decode_output(result.stdout) + "\n" + _decode_output(result.stderr)
        return re.search(self.probe_pattern, output) is not None

    def generate(self, from_path: Optional[str], to_path: str, out_path: str):
        args = self.build_args(from_path, to_path, out_path)
        _log_debug_backend("Running backend %s: %s", self.name, " ".join(args))
        try:
            if self.capture_stdout:
                with open(out_path, "wb") as out_file:
                    result = run(args, stdout=out_file, stderr=PIPE, check=False)
            else:
                result = run(args, capture_output=True, check=False)
        except OSError as err:
            raise RootfsDiffBackendError(self.name, "exec failed", str(err)) from err

        if result.returncode not in self.ok_status:
            raise RootfsDiffBackendError(
                self.name, result.returncode, _decode_output(result.stderr)
            )


class CompressBackend(CommandBackend):
    """
    A command backend that compresses a single input file at a configurable
    level.
    """

    kind = BackendKind.COMPRESS
    #: Default compression level
    default_level: int = 9

    @property
    def level(self) -> int:
        """The configured compression level."""
        return self._get_int(CFG_LEVEL, self.default_level)

    def build_args(self, from_path: Optional[str], to_path: str, out_path: str):
        return [
            item.replace("$level", str(self.level))
            for item in super().build_args(from_path, to_path, out_path)
        ]


__all__ = [
    "Backend",
    "BackendResult",
    "CommandBackend",
    "CompressBackend",
]
