# Copyright Red Hat
#
# rootfsdiff/_loader.py - Root file system diff backend loader
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Backend loader logic for rootfsdiff.
"""
import inspect
import importlib
import logging
from pathlib import Path
from importlib.util import find_spec
from typing import Dict, List, Type

from rootfsdiff.backends import Backend
import rootfsdiff.backends as backend_pkg

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _find_backend_modules(path: Path):
    for file in sorted(path.glob("[a-zA-Z]*.py")):
        if file.name != "__init__.py":
            yield file.stem


def _import_backend_module(fqname: str):
    if not find_spec(fqname):
        return None  # pragma: no cover
    try:
        _log_debug("Importing backend module %s", fqname)
        return importlib.import_module(fqname)
    except (ImportError, SyntaxError) as err:  # pragma: no cover
        _log_error("Error importing backend %s: %s", fqname, err)
        return None


def _find_backends_in_module(module, base_class) -> List[Type[Backend]]:
    members = inspect.getmembers(module, inspect.isclass)
    names_to_check = getattr(module, "__all__", [name for name, _ in members])

    return [
        cls
        for name, cls in members
        if name in names_to_check
        and not name.startswith("_")
        and issubclass(cls, base_class)
        and cls is not base_class
        and cls.__module__ == module.__name__
    ]


def load_backends(base_class=Backend) -> Dict[str, Type[Backend]]:
    """
    Load the backend classes defined in the ``rootfsdiff.backends`` package.

    :param base_class: The base class that backends must derive from.
    :returns: A dictionary mapping backend names to backend classes.
    :rtype: ``Dict[str, Type[Backend]]``
    """
    found: Dict[str, Type[Backend]] = {}

    for path in map(Path, backend_pkg.__path__):
        for module_name in _find_backend_modules(path):
            fqname = f"{backend_pkg.__name__}.{module_name}"
            module = _import_backend_module(fqname)
            if not module:
                continue  # pragma: no cover
            for cls in _find_backends_in_module(module, base_class):
                if cls.name in found:
                    _log_warn(
                        "Ignoring duplicate backend name %s (%s)",
                        cls.name,
                        cls.__name__,
                    )
                    continue
                found[cls.name] = cls

    return dict(sorted(found.items()))


__all__ = ["load_backends"]
