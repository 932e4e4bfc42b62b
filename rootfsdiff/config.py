# Copyright Red Hat
#
# rootfsdiff/config.py - Root file system diff configuration file
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Root file system diff configuration file support.

The configuration file is an INI-style file with a ``[Global]`` section and
an optional section per backend::

    [Global]
    CacheDir = /var/cache/rootfs-diff
    Backends = bsdiff, zstd
    Jobs = 4
    Groups =
        ^usr/lib/firmware/
        ^usr/share/locale/

    [zstd]
    Level = 19
"""
from configparser import ConfigParser, Error as ConfigParserError
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from os.path import exists
import logging

from ._rootfsdiff import RootfsDiffConfigurationError

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: Default configuration file location
DEFAULT_CONFIG_FILE = "/etc/rootfsdiff/rootfsdiff.conf"

_CFG_GLOBAL = "Global"
_CFG_CACHE_DIR = "CacheDir"
_CFG_BACKENDS = "Backends"
_CFG_GROUPS = "Groups"
_CFG_JOBS = "Jobs"


@dataclass
class RootfsDiffConfig:
    """
    Configuration file settings.
    """

    #: Cache directory path
    cache_dir: Optional[str] = None
    #: Enabled backend names
    backends: List[str] = field(default_factory=list)
    #: Grouping patterns, in order
    groups: List[str] = field(default_factory=list)
    #: Number of backend worker threads
    jobs: Optional[int] = None
    #: Per-backend settings, keyed by backend name
    backend_settings: Dict[str, Dict[str, str]] = field(default_factory=dict)

    def settings_for(self, backend_name: str) -> Dict[str, str]:
        """
        Return the settings for ``backend_name``, or an empty dictionary.

        :param backend_name: The backend to look up.
        :type backend_name: ``str``
        :returns: A dictionary of option name to string value.
        :rtype: ``Dict[str, str]``
        """
        return self.backend_settings.get(backend_name, {})

    @classmethod
    def from_file(
        cls, config_file: str, required: bool = False
    ) -> "RootfsDiffConfig":
        """
        Load ``RootfsDiffConfig`` from an INI-style configuration file located
        at ``config_file``.

        :param config_file: path to rootfsdiff.conf
        :type config_file: ``str``.
        :param required: Raise an error if ``config_file`` does not exist
                         instead of returning the default configuration.
        :type required: ``bool``
        :returns: A ``RootfsDiffConfig`` instance initialised from
                  ``config_file``.
        :rtype: ``RootfsDiffConfig``
        :raises ``RootfsDiffConfigurationError``: If the file cannot be parsed
            or contains an invalid value.
        """
        if not exists(config_file):
            if required:
                raise RootfsDiffConfigurationError(
                    f"Configuration file not found: {config_file}"
                )
            return RootfsDiffConfig()

        _log_debug("Loading configuration from '%s'", config_file)
        cfg = ConfigParser()
        # Preserve option name case for backend sections.
        cfg.optionxform = str
        try:
            cfg.read([config_file])
        except ConfigParserError as err:
            raise RootfsDiffConfigurationError(
                f"Error parsing configuration file {config_file}: {err}"
            ) from err

        config = RootfsDiffConfig()
        if cfg.has_section(_CFG_GLOBAL):
            glob = cfg[_CFG_GLOBAL]
            if _CFG_CACHE_DIR in glob:
                config.cache_dir = glob[_CFG_CACHE_DIR].strip() or None
            if _CFG_BACKENDS in glob:
                config.backends = [
                    name.strip()
                    for name in glob[_CFG_BACKENDS].split(",")
                    if name.strip()
                ]
            if _CFG_GROUPS in glob:
                # One pattern per line: patterns may contain commas.
                config.groups = [
                    line.strip()
                    for line in glob[_CFG_GROUPS].splitlines()
                    if line.strip()
                ]
            if _CFG_JOBS in glob:
                try:
                    config.jobs = cfg.getint(_CFG_GLOBAL, _CFG_JOBS)
                except ValueError as err:
                    raise RootfsDiffConfigurationError(
                        f"Invalid {_CFG_JOBS} value in {config_file}: "
                        f"{glob[_CFG_JOBS]}"
                    ) from err

        for section in cfg.sections():
            if section == _CFG_GLOBAL:
                continue
            config.backend_settings[section] = dict(cfg[section])

        return config


__all__ = [
    "DEFAULT_CONFIG_FILE",
    "RootfsDiffConfig",
]
