"""Deterministic store key derivation."""

import re
from pathlib import PurePath
from typing import Union

_SUFFIX = re.compile(r"[_-]?(?:key|secret|token|password)$", re.IGNORECASE)
_UNSAFE = re.compile(r"[^a-zA-Z0-9_-]")


def clean_identifier(identifier: str) -> str:
    """Strip a credential suffix, replace unsafe characters and lower-case."""
    return _UNSAFE.sub("_", _SUFFIX.sub("", identifier)).lower()


def derive_key(file_path: Union[str, PurePath], identifier: str) -> str:
    """Build the store key ``<dir>_<file>_<identifier>`` for a detection.

    Pure function of its inputs: the same path and identifier always give
    the same key. Two identifiers of one file that clean to the same string
    share a key, and the later write wins.

    >>> derive_key("proj/config/.env", "API_KEY")
    'config__env_api'
    """
    path = PurePath(file_path)
    dir_name = _UNSAFE.sub("_", path.parent.name)
    file_name = _UNSAFE.sub("_", path.name)
    return f"{dir_name}_{file_name}_{clean_identifier(identifier)}"
