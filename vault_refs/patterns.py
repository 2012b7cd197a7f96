"""Secret pattern registry.

Every secret type is described by the same generic descriptor: a compiled
regular expression plus the indices of the groups holding the identifier
and the value. One matcher evaluates all of them; there is no per-type code.
"""

import logging
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterator, Mapping, Optional

from .config import PatternEntry, RuleConfig
from .exceptions import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatternMatch:
    """A single regex hit, before a key is derived for it."""

    identifier: str
    value: str
    match_text: str
    span: tuple[int, int]
    value_span: tuple[int, int]


@dataclass(frozen=True)
class PatternDescriptor:
    """A matching rule with an identifier capture and a value capture."""

    regex: re.Pattern
    identifier_group: int = 1
    value_group: int = 2

    def finditer(self, content: str, fallback_identifier: str) -> Iterator[PatternMatch]:
        """Yield every non-overlapping match in ``content``.

        The identifier falls back to ``fallback_identifier`` and the value to
        the whole match when the group is absent or did not participate.
        """
        for match in self.regex.finditer(content):
            identifier = self._group(match, self.identifier_group)
            value_span = self._group_span(match, self.value_group)
            if value_span is None:
                value_span = match.span()
            value = content[value_span[0]:value_span[1]]
            if not value:
                continue
            yield PatternMatch(
                identifier=identifier or fallback_identifier,
                value=value,
                match_text=match.group(0),
                span=match.span(),
                value_span=value_span,
            )

    def _group(self, match: re.Match, index: int) -> Optional[str]:
        if index == 0 or index > self.regex.groups:
            return None
        return match.group(index)

    def _group_span(self, match: re.Match, index: int) -> Optional[tuple[int, int]]:
        if index == 0 or index > self.regex.groups or match.group(index) is None:
            return None
        return match.span(index)


@dataclass(frozen=True)
class SecretPattern:
    """All descriptors of one secret type and where its values are stored."""

    type_name: str
    descriptors: tuple[PatternDescriptor, ...]
    vault_path: str


def _compile(type_name: str, entry, index: int) -> PatternDescriptor:
    if isinstance(entry, str):
        entry = PatternEntry(regex=entry)

    flags = 0
    for flag_name in entry.flags:
        flag = getattr(re, flag_name.upper(), None)
        if not isinstance(flag, re.RegexFlag):
            raise ConfigError(
                f"Unknown regex flag '{flag_name}' in pattern {index} of '{type_name}'"
            )
        flags |= flag

    try:
        regex = re.compile(entry.regex, flags)
    except re.error as e:
        raise ConfigError(
            f"Invalid regex in pattern {index} of '{type_name}': {e}",
            details={"pattern": entry.regex},
        ) from e

    return PatternDescriptor(
        regex=regex,
        identifier_group=entry.identifier_group,
        value_group=entry.value_group,
    )


class PatternRegistry:
    """Read-only table of secret types, built once per run."""

    def __init__(self, patterns: Mapping[str, SecretPattern]):
        self._patterns = MappingProxyType(dict(patterns))

    @classmethod
    def load(cls, config: RuleConfig) -> "PatternRegistry":
        """Compile every configured pattern.

        Raises:
            ConfigError: If a regex does not compile or a type has no patterns.
        """
        patterns = {}
        for type_name, type_config in config.secret_patterns.items():
            if not type_config.patterns:
                raise ConfigError(f"Secret type '{type_name}' has no patterns")
            descriptors = tuple(
                _compile(type_name, entry, index)
                for index, entry in enumerate(type_config.patterns)
            )
            patterns[type_name] = SecretPattern(
                type_name=type_name,
                descriptors=descriptors,
                vault_path=type_config.vault_path or type_name,
            )
        logger.debug(f"Compiled {len(patterns)} secret types")
        return cls(patterns)

    @property
    def patterns(self) -> Mapping[str, SecretPattern]:
        return self._patterns

    def __iter__(self) -> Iterator[SecretPattern]:
        return iter(self._patterns.values())

    def __len__(self) -> int:
        return len(self._patterns)

    def __getitem__(self, type_name: str) -> SecretPattern:
        return self._patterns[type_name]
