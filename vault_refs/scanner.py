"""Secret scanner for detecting hardcoded secrets in a project tree.

The scanner walks a directory, keeps the candidate files selected by
``should_visit`` and runs every configured pattern over each file. Files
are independent, so they are scanned on a bounded thread pool; results are
collected in traversal order so repeated scans give identical reports.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path, PurePath
from typing import Union

from .exceptions import FileReadError
from .keys import derive_key
from .patterns import PatternRegistry
from .references import decode

logger = logging.getLogger(__name__)

# File extensions to scan
CANDIDATE_EXTENSIONS = frozenset(
    {".env", ".json", ".yaml", ".yml", ".js", ".ts", ".py", ".php", ".rb", ".go"}
)

# Hidden files scanned regardless of extension (.env, .env.local, ...)
ALLOWED_DOTFILE_PREFIX = ".env"


def should_visit(path: Union[str, PurePath], is_dir: bool) -> bool:
    """Decide whether the walk enters a directory or scans a file.

    Hidden directories are never entered. Files are candidates when their
    extension is in CANDIDATE_EXTENSIONS or they are environment files.
    """
    name = PurePath(path).name
    if is_dir:
        return not name.startswith(".")
    if name.startswith(ALLOWED_DOTFILE_PREFIX):
        return True
    return PurePath(name).suffix.lower() in CANDIDATE_EXTENSIONS


@dataclass(frozen=True)
class DetectedSecret:
    """A secret found in a file, with everything needed to store and replace it."""

    type: str
    key: str
    value: str = field(repr=False)
    file_path: str
    line_number: int
    match: str = field(repr=False)
    span: tuple[int, int]
    value_span: tuple[int, int]
    vault_path: str

    def to_dict(self) -> dict:
        """Serializable form; the secret value itself is never included."""
        return {
            "type": self.type,
            "key": self.key,
            "file_path": self.file_path,
            "line_number": self.line_number,
            "vault_path": self.vault_path,
        }


@dataclass
class ScanReport:
    """Result of scanning a directory tree."""

    root: str
    files_scanned: int = 0
    findings: list[DetectedSecret] = field(default_factory=list)
    unreadable_files: list[str] = field(default_factory=list)

    @property
    def secrets_found(self) -> int:
        return len(self.findings)

    def by_file(self) -> dict[str, list[DetectedSecret]]:
        """Group findings by file, in scan order."""
        grouped: dict[str, list[DetectedSecret]] = {}
        for finding in self.findings:
            grouped.setdefault(finding.file_path, []).append(finding)
        return grouped

    def by_type(self) -> dict[str, list[DetectedSecret]]:
        """Group findings by secret type, in scan order."""
        grouped: dict[str, list[DetectedSecret]] = {}
        for finding in self.findings:
            grouped.setdefault(finding.type, []).append(finding)
        return grouped

    def to_dict(self) -> dict:
        """Convert scan report to dictionary for JSON serialization."""
        return {
            "summary": {
                "root": self.root,
                "files_scanned": self.files_scanned,
                "secrets_found": self.secrets_found,
                "secrets_by_type": {t: len(s) for t, s in self.by_type().items()},
                "unreadable_files": list(self.unreadable_files),
            },
            "files": [
                {"file": file_path, "secrets": [s.to_dict() for s in secrets]}
                for file_path, secrets in self.by_file().items()
            ],
        }


def read_text(file_path: Union[str, Path]) -> str:
    """Read a file as UTF-8, keeping its line endings untouched.

    Raises:
        FileReadError: If the file cannot be read or is not valid UTF-8.
    """
    try:
        with open(file_path, "r", encoding="utf-8", newline="") as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise FileReadError(str(file_path), f"Could not scan {file_path}: {e}") from e


def line_number_at(content: str, offset: int) -> int:
    """Return the 1-based line number of ``offset`` in ``content``."""
    return content.count("\n", 0, offset) + 1


class Scanner:
    """Scanner applying a PatternRegistry to every candidate file of a tree."""

    def __init__(self, registry: PatternRegistry, max_workers: int = 4):
        """Initialize the scanner.

        Args:
            registry: Compiled secret patterns.
            max_workers: Upper bound on files scanned concurrently.
        """
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.registry = registry
        self.max_workers = max_workers

    def iter_candidate_files(self, root: Union[str, Path]) -> list[Path]:
        """List candidate files below ``root`` in a stable order."""
        candidates = []
        for current, dirs, files in os.walk(root):
            dirs[:] = sorted(d for d in dirs if should_visit(Path(current) / d, True))
            for name in sorted(files):
                file_path = Path(current) / name
                if should_visit(file_path, False):
                    candidates.append(file_path)
        return candidates

    def detect(self, content: str, file_path: Union[str, Path]) -> list[DetectedSecret]:
        """Apply every pattern to ``content`` and return the detections.

        Values lying inside an existing reference token are not secrets, so a
        rewritten file scans clean.
        """
        token_spans = [reference.span for reference in decode(content)]
        detections = []
        for pattern in self.registry:
            for descriptor in pattern.descriptors:
                for hit in descriptor.finditer(content, fallback_identifier=pattern.type_name):
                    start, end = hit.value_span
                    if any(start < t_end and t_start < end for t_start, t_end in token_spans):
                        continue
                    detections.append(
                        DetectedSecret(
                            type=pattern.type_name,
                            key=derive_key(file_path, hit.identifier),
                            value=hit.value,
                            file_path=str(file_path),
                            line_number=line_number_at(content, hit.span[0]),
                            match=hit.match_text,
                            span=hit.span,
                            value_span=hit.value_span,
                            vault_path=pattern.vault_path,
                        )
                    )
        return detections

    def scan_file(self, file_path: Union[str, Path]) -> list[DetectedSecret]:
        """Scan a single file.

        Raises:
            FileReadError: If the file cannot be read.
        """
        return self.detect(read_text(file_path), file_path)

    def _scan_one(self, file_path: Path):
        try:
            return self.scan_file(file_path)
        except FileReadError as e:
            return e

    def scan(self, root: Union[str, Path]) -> ScanReport:
        """Scan a directory tree for secrets.

        Args:
            root: Directory to scan.

        Returns:
            ScanReport with every detection, grouped in traversal order.
        """
        logger.info(f"Scanning {root} for secrets...")
        report = ScanReport(root=str(root))
        files = self.iter_candidate_files(root)

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            outcomes = list(executor.map(self._scan_one, files))

        for file_path, outcome in zip(files, outcomes):
            if isinstance(outcome, FileReadError):
                logger.warning(f"Warning: {outcome}")
                report.unreadable_files.append(str(file_path))
                continue
            report.files_scanned += 1
            if outcome:
                logger.info(f"{file_path}: {len(outcome)} potential secrets")
                report.findings.extend(outcome)

        logger.info(
            f"Scan completed. Found {report.secrets_found} secrets "
            f"in {report.files_scanned} files."
        )
        return report
