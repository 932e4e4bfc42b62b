# Copyright Red Hat
#
# rootfsdiff/cache.py - Root file system diff artifact cache
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Content addressed on-disk cache of backend artifacts.

Artifacts are named by the digests of their inputs and the producing
backend's extension::

    <cache_dir>/<from_digest>.<extension>
    <cache_dir>/<from_digest>-<to_digest>.<extension>

The existence of the final file is the only proof of validity: artifacts are
always written to a private temporary name and renamed into place once the
backend has succeeded.
"""
from dataclasses import dataclass
from stat import S_ISDIR, S_ISLNK
from threading import Lock
from typing import Callable, Dict, Optional
import logging
import os

from ._rootfsdiff import ROOTFSDIFF_SUBSYSTEM_CACHE, RootfsDiffSystemError

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_cache(msg, *args, **kwargs):
    """A wrapper for cache subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": ROOTFSDIFF_SUBSYSTEM_CACHE}, **kwargs)


#: Permissions for a newly created cache directory
_CACHE_DIR_MODE: int = 0o700

#: Infix for temporary artifact names
TEMP_INFIX = ".tmp."


def temp_name(final_path: str) -> str:
    """
    Return a unique temporary name for ``final_path`` in the same directory.

    :param final_path: The final artifact path.
    :type final_path: ``str``
    :returns: ``<final_path>.tmp.<random hex>``
    :rtype: ``str``
    """
    return f"{final_path}{TEMP_INFIX}{os.urandom(4).hex()}"


def check_cache_dir(dirpath: str) -> str:
    """
    Check for the presence of the cache directory and create it if necessary.

    :param dirpath: Path to the directory.
    :type dirpath: ``str``
    :returns: The directory path.
    :rtype: ``str``
    :raises ``RootfsDiffSystemError``: If the path is a symbolic link, is not
        a directory, or cannot be created.
    """
    if os.path.lexists(dirpath):
        try:
            st = os.lstat(dirpath)
        except OSError as err:
            raise RootfsDiffSystemError(
                f"Failed to stat cache directory {dirpath}: {err}"
            ) from err
        if S_ISLNK(st.st_mode):
            raise RootfsDiffSystemError(
                f"Cache directory {dirpath} is a symlink (not secure)"
            )
        if not S_ISDIR(st.st_mode):
            raise RootfsDiffSystemError(
                f"Cache directory {dirpath} exists but is not a directory"
            )
        return dirpath

    try:
        os.makedirs(dirpath, mode=_CACHE_DIR_MODE, exist_ok=True)
    except OSError as err:
        raise RootfsDiffSystemError(
            f"Failed to create cache directory {dirpath}: {err}"
        ) from err
    _log_debug_cache("Created cache directory %s", dirpath)
    return dirpath


@dataclass(frozen=True)
class CacheEntry:
    """
    A cached artifact.
    """

    #: The final artifact path
    path: str
    #: The artifact size in bytes
    size: int
    #: ``True`` if the artifact was already present
    cached: bool


class DiffCache:
    """
    Content addressed artifact cache rooted at ``cache_dir``.
    """

    def __init__(self, cache_dir: str):
        """
        Initialise a new ``DiffCache``.

        The directory is not created until ``check()`` or the first
        ``get_or_compute()`` call.

        :param cache_dir: The cache directory path.
        :type cache_dir: ``str``
        """
        self.cache_dir: str = os.path.abspath(cache_dir)
        self._checked: bool = False
        self._lock = Lock()
        self._key_locks: Dict[str, Lock] = {}

    def check(self) -> str:
        """
        Validate and if necessary create the cache directory.

        :returns: The cache directory path.
        :rtype: ``str``
        """
        with self._lock:
            if not self._checked:
                check_cache_dir(self.cache_dir)
                self._checked = True
        return self.cache_dir

    @staticmethod
    def key(extension: str, from_digest: str, to_digest: Optional[str] = None) -> str:
        """
        Return the artifact file name for a cache key.

        :param extension: The producing backend's extension.
        :type extension: ``str``
        :param from_digest: The digest of the first (or only) input.
        :type from_digest: ``str``
        :param to_digest: The digest of the second input, if any.
        :type to_digest: ``Optional[str]``
        :rtype: ``str``
        """
        if not extension or not from_digest:
            raise ValueError("Cache keys require an extension and a digest")
        digests = f"{from_digest}-{to_digest}" if to_digest else from_digest
        return f"{digests}.{extension}"

    def path_for(
        self, extension: str, from_digest: str, to_digest: Optional[str] = None
    ) -> str:
        """
        Return the final artifact path for a cache key.

        :rtype: ``str``
        """
        return os.path.join(self.cache_dir, self.key(extension, from_digest, to_digest))

    def _key_lock(self, path: str) -> Lock:
        with self._lock:
            return self._key_locks.setdefault(path, Lock())

    def lookup(
        self, extension: str, from_digest: str, to_digest: Optional[str] = None
    ) -> Optional[CacheEntry]:
        """
        Return the ``CacheEntry`` for a key if the artifact exists.

        :rtype: ``Optional[CacheEntry]``
        """
        path = self.path_for(extension, from_digest, to_digest)
        try:
            st = os.stat(path)
        except FileNotFoundError:
            return None
        except OSError as err:
            raise RootfsDiffSystemError(
                f"Failed to stat cache entry {path}: {err}"
            ) from err
        return CacheEntry(path, st.st_size, True)

    def get_or_compute(
        self,
        extension: str,
        from_digest: str,
        to_digest: Optional[str] = None,
        compute: Optional[Callable[[str], object]] = None,
    ) -> CacheEntry:
        """
        Return the artifact for a key, computing it if it is not present.

        If the artifact does not exist ``compute`` is called with a private
        temporary path in the cache directory; on success the temporary file
        is renamed to the final name. On failure the temporary file is
        removed and the exception propagates.

        :param extension: The producing backend's extension.
        :type extension: ``str``
        :param from_digest: The digest of the first (or only) input.
        :type from_digest: ``str``
        :param to_digest: The digest of the second input, if any.
        :type to_digest: ``Optional[str]``
        :param compute: A callable that writes the artifact to the path it is
                        given.
        :type compute: ``Callable[[str], object]``
        :returns: The cache entry.
        :rtype: ``CacheEntry``
        """
        if compute is None:
            raise ValueError("get_or_compute() requires a compute callable")

        self.check()
        final_path = self.path_for(extension, from_digest, to_digest)

        with self._key_lock(final_path):
            entry = self.lookup(extension, from_digest, to_digest)
            if entry is not None:
                _log_debug_cache("Cache hit: %s", os.path.basename(final_path))
                return entry

            tmp_path = temp_name(final_path)
            _log_debug_cache("Cache miss: %s", os.path.basename(final_path))
            try:
                compute(tmp_path)
                os.replace(tmp_path, final_path)
            except BaseException:
                if os.path.lexists(tmp_path):
                    os.unlink(tmp_path)
                raise

            try:
                size = os.stat(final_path).st_size
            except OSError as err:
                raise RootfsDiffSystemError(
                    f"Failed to stat new cache entry {final_path}: {err}"
                ) from err
            return CacheEntry(final_path, size, False)


__all__ = [
    "CacheEntry",
    "DiffCache",
    "TEMP_INFIX",
    "check_cache_dir",
    "temp_name",
]
