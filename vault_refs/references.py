"""Reference token codec.

A reference token names a secret by store path and key::

    {{vault:secret/windsurf-projects/myproj/api_key:config__env_api}}

The store path may not contain ``:`` or ``}``; the key may not contain ``}``.
Text that does not follow this grammar is simply not a token.
"""

import logging
import re
from typing import Iterator, NamedTuple

from .exceptions import ReferenceValidationError, StoreError
from .store.base import StoreClient

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "{{vault:"
TOKEN_SUFFIX = "}}"

REFERENCE_PATTERN = re.compile(r"\{\{vault:([^:}]+):([^}]+)\}\}")


class ReferenceToken(NamedTuple):
    """A decoded token and where it sits in the content."""

    store_path: str
    key: str
    span: tuple[int, int]

    @property
    def token(self) -> str:
        return encode(self.store_path, self.key)


def encode(store_path: str, key: str) -> str:
    """Render ``{{vault:<store_path>:<key>}}``.

    Raises:
        ValueError: If the pair could not be decoded back unchanged.
    """
    if not store_path or ":" in store_path or "}" in store_path:
        raise ValueError(f"Invalid store path for a reference token: {store_path!r}")
    if not key or "}" in key:
        raise ValueError(f"Invalid key for a reference token: {key!r}")
    return f"{TOKEN_PREFIX}{store_path}:{key}{TOKEN_SUFFIX}"


def decode(content: str) -> Iterator[ReferenceToken]:
    """Lazily yield every reference token in ``content``, in order.

    Each call returns a fresh iterator, so decoding the same content again
    yields the same sequence.
    """
    for match in REFERENCE_PATTERN.finditer(content):
        yield ReferenceToken(match.group(1), match.group(2), match.span())


def resolve_references(content: str, store: StoreClient, strict: bool = False) -> str:
    """Replace every token in ``content`` with the value held in the store.

    Args:
        content: Text containing reference tokens.
        store: Store client used to look the values up.
        strict: Raise instead of leaving unresolved tokens in place.

    Returns:
        The content with resolvable tokens substituted.

    Raises:
        ReferenceValidationError: If ``strict`` and a token does not resolve.
    """
    parts = []
    position = 0
    for reference in decode(content):
        start, end = reference.span
        try:
            value = store.get(reference.store_path, reference.key)
        except StoreError as e:
            if strict:
                raise ReferenceValidationError(reference.store_path, reference.key) from e
            logger.warning(f"Leaving unresolved reference {reference.token}: {e}")
            continue
        parts.append(content[position:start])
        parts.append(value)
        position = end
    parts.append(content[position:])
    return "".join(parts)
