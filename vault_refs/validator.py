"""Vault reference validator.

Finds files that may hold reference tokens, decodes every token and checks
that the secret it names exists in the store. Meant to run in CI: the run
fails if a single reference does not resolve.
"""

import fnmatch
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, Union

from .exceptions import FileReadError, ReferenceValidationError, StoreError
from .references import decode
from .scanner import line_number_at, read_text, should_visit
from .store.base import StoreClient

logger = logging.getLogger(__name__)


class ValidatorState(Enum):
    """Validator run states."""
    IDLE = "idle"
    DISCOVERING_FILES = "discovering_files"
    VALIDATING_REFERENCES = "validating_references"
    DONE_VALID = "done_valid"
    DONE_INVALID = "done_invalid"


@dataclass
class ReferenceCheck:
    """Outcome of resolving one reference token."""
    store_path: str
    key: str
    valid: bool
    line_number: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        result = {
            "path": self.store_path,
            "key": self.key,
            "valid": self.valid,
            "line_number": self.line_number,
        }
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class FileValidationResult:
    """References found in one file."""
    file: str
    references: list[ReferenceCheck] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def valid_count(self) -> int:
        return sum(1 for ref in self.references if ref.valid)

    @property
    def invalid_count(self) -> int:
        return sum(1 for ref in self.references if not ref.valid)

    @property
    def valid(self) -> bool:
        return not self.errors and self.invalid_count == 0

    def to_dict(self) -> dict:
        return {
            "file": self.file,
            "valid": self.valid,
            "references": [ref.to_dict() for ref in self.references],
            "errors": list(self.errors),
        }


@dataclass
class ValidationReport:
    """Run-wide validation results."""
    total_files: int = 0
    files_with_references: int = 0
    valid_references: int = 0
    invalid_references: int = 0
    file_results: list[FileValidationResult] = field(default_factory=list)
    unreadable_files: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.invalid_references == 0

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "summary": {
                "total_files": self.total_files,
                "files_with_references": self.files_with_references,
                "valid_references": self.valid_references,
                "invalid_references": self.invalid_references,
                "unreadable_files": list(self.unreadable_files),
                "success": self.success,
            },
            "files": [result.to_dict() for result in self.file_results],
        }


def matches_file_pattern(relative_path: str, pattern: str) -> bool:
    """Match a POSIX relative path against a glob pattern.

    ``*`` matches across directories and dotfiles, and a leading ``**/`` also
    matches files at the top level.
    """
    if fnmatch.fnmatchcase(relative_path, pattern):
        return True
    return pattern.startswith("**/") and fnmatch.fnmatchcase(relative_path, pattern[3:])


class ReferenceValidator:
    """Validates vault references against a secret store."""

    def __init__(self, store: StoreClient, file_patterns: Iterable[str]):
        """Initialize the validator.

        Args:
            store: Store the references must resolve in.
            file_patterns: Glob patterns selecting the files to check.
        """
        self.store = store
        self.file_patterns = tuple(file_patterns)
        self.state = ValidatorState.IDLE

    def find_files(self, directory: Union[str, Path]) -> list[Path]:
        """Find files matching the configured patterns, skipping hidden directories."""
        root = Path(directory)
        files = []
        for current, dirs, names in os.walk(root):
            dirs[:] = sorted(d for d in dirs if should_visit(Path(current) / d, True))
            for name in sorted(names):
                file_path = Path(current) / name
                relative = file_path.relative_to(root).as_posix()
                if any(matches_file_pattern(relative, p) for p in self.file_patterns):
                    files.append(file_path)
        return files

    def check_reference(self, store_path: str, key: str) -> Optional[str]:
        """Return None when the reference resolves, else the lookup error message."""
        try:
            self.store.get(store_path, key)
        except StoreError as e:
            return str(ReferenceValidationError(store_path, key, f"Secret not found in vault: {e}"))
        return None

    def validate_file(self, file_path: Union[str, Path]) -> FileValidationResult:
        """Validate every reference token in one file.

        Raises:
            FileReadError: If the file cannot be read.
        """
        content = read_text(file_path)
        result = FileValidationResult(file=str(file_path))
        for reference in decode(content):
            error = self.check_reference(reference.store_path, reference.key)
            result.references.append(
                ReferenceCheck(
                    store_path=reference.store_path,
                    key=reference.key,
                    valid=error is None,
                    line_number=line_number_at(content, reference.span[0]),
                    error=error,
                )
            )
            if error:
                result.errors.append(f"Invalid reference: {reference.token} - {error}")
        return result

    def validate_files(self, files: Iterable[Union[str, Path]]) -> ValidationReport:
        """Validate references in an explicit file set."""
        files = list(files)
        self.state = ValidatorState.VALIDATING_REFERENCES
        report = ValidationReport(total_files=len(files))

        for file_path in files:
            try:
                result = self.validate_file(file_path)
            except FileReadError as e:
                logger.warning(f"Warning: {e}")
                report.unreadable_files.append(str(file_path))
                continue
            if not result.references:
                continue

            report.files_with_references += 1
            report.file_results.append(result)
            report.valid_references += result.valid_count
            report.invalid_references += result.invalid_count

            if result.valid:
                logger.info(f"{file_path}: {result.valid_count} valid references")
            else:
                logger.error(
                    f"{file_path}: {result.valid_count} valid references, "
                    f"{result.invalid_count} invalid references"
                )
                for error in result.errors:
                    logger.error(f"  - {error}")

        self.state = ValidatorState.DONE_VALID if report.success else ValidatorState.DONE_INVALID
        return report

    def validate(self, directory: Union[str, Path]) -> ValidationReport:
        """Discover files below ``directory`` and validate their references."""
        logger.info(f"Validating vault references in {directory}...")
        self.state = ValidatorState.DISCOVERING_FILES
        files = self.find_files(directory)
        logger.info(f"Found {len(files)} files to check for vault references.")
        return self.validate_files(files)
