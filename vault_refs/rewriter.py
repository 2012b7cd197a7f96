"""Replace stored secrets in files with vault reference tokens.

A file is only ever overwritten after a byte-identical backup of its
current content has been written and read back. Substitutions happen at
the exact offsets of each detected value, never by searching for the value
elsewhere in the file.
"""

import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Union

from .exceptions import FileWriteError
from .references import encode
from .scanner import DetectedSecret

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".bak"
BACKUP_MANIFEST = "manifest.json"


@dataclass
class RewriteResult:
    """Outcome of rewriting one file."""

    file_path: str
    backup_path: str
    replaced: int = 0
    skipped: int = 0

    def to_dict(self) -> dict:
        return {
            "file_path": self.file_path,
            "backup_path": self.backup_path,
            "replaced": self.replaced,
            "skipped": self.skipped,
        }


class Rewriter:
    """Backs up files and substitutes reference tokens for raw values."""

    def __init__(self, backup_dir: Union[str, Path], store_root: str):
        """Initialize the rewriter.

        Args:
            backup_dir: Directory receiving ``<basename>.bak`` backups.
            store_root: ``mount/base/project`` prefix of every store path.
        """
        self.backup_dir = Path(backup_dir)
        self.store_root = store_root.strip("/")

    def store_path_for(self, detection: DetectedSecret) -> str:
        """Full store path a detection is written to."""
        return f"{self.store_root}/{detection.vault_path}"

    def reference_for(self, detection: DetectedSecret) -> str:
        """Reference token replacing a detection's value."""
        return encode(self.store_path_for(detection), detection.key)

    def _manifest_path(self) -> Path:
        return self.backup_dir / BACKUP_MANIFEST

    def _load_manifest(self) -> dict[str, str]:
        """Map of backup file name to the absolute path of the file it copies."""
        path = self._manifest_path()
        if not path.is_file():
            return {}
        try:
            with open(path, "r", encoding="utf-8") as f:
                manifest = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise FileWriteError(str(path), f"Unreadable backup manifest {path}: {e}") from e
        return manifest if isinstance(manifest, dict) else {}

    def _save_manifest(self, manifest: dict[str, str]) -> None:
        path = self._manifest_path()
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=self.backup_dir, prefix=f".{path.name}.", delete=False
        ) as tmp:
            json.dump(manifest, tmp, indent=2, sort_keys=True)
        os.replace(tmp.name, path)

    @staticmethod
    def _source_id(file_path: Path) -> str:
        return str(file_path.resolve())

    def _backup_candidates(self, file_path: Path) -> list[Path]:
        """Backups recorded for exactly this file."""
        source = self._source_id(file_path)
        return [
            self.backup_dir / name
            for name, owner in self._load_manifest().items()
            if owner == source and (self.backup_dir / name).is_file()
        ]

    def _backup_path(self, file_path: Path, content: bytes, manifest: dict[str, str]) -> Path:
        """Pick the backup location for ``content``.

        An existing backup is reused only when it belongs to the same file and
        holds exactly ``content``; otherwise the next free ``<name>.<n>.bak``
        is used.
        """
        source = self._source_id(file_path)
        n = 0
        while True:
            suffix = f".{n}" if n else ""
            candidate = self.backup_dir / f"{file_path.name}{suffix}{BACKUP_SUFFIX}"
            if not candidate.exists():
                return candidate
            if manifest.get(candidate.name) == source and candidate.read_bytes() == content:
                return candidate
            n += 1

    def backup(self, file_path: Union[str, Path], content: bytes) -> Path:
        """Write ``content`` as the backup of ``file_path`` and verify it.

        The backup is recorded in the manifest against the file's absolute
        path, so ``restore`` never mixes up files sharing a base name.

        Raises:
            FileWriteError: If the backup cannot be written or read back identical.
        """
        file_path = Path(file_path)
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            manifest = self._load_manifest()
            backup_path = self._backup_path(file_path, content, manifest)
            with open(backup_path, "wb") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            if backup_path.read_bytes() != content:
                raise FileWriteError(str(file_path), f"Backup {backup_path} does not match {file_path}")
            manifest[backup_path.name] = self._source_id(file_path)
            self._save_manifest(manifest)
        except OSError as e:
            raise FileWriteError(str(file_path), f"Could not back up {file_path}: {e}") from e
        logger.debug(f"Backup created: {backup_path}")
        return backup_path

    def substitute(self, content: str, detections: Iterable[DetectedSecret]) -> tuple[str, int, int]:
        """Apply every detection to ``content`` in memory.

        Returns:
            Tuple of (new content, replaced count, skipped count).

        Raises:
            FileWriteError: If a value is no longer where the scan found it,
                or its store path cannot be written as a reference token.
        """
        ordered = sorted(detections, key=lambda d: d.value_span, reverse=True)
        tokens = []
        for detection in ordered:
            start, end = detection.value_span
            if content[start:end] != detection.value:
                raise FileWriteError(
                    detection.file_path,
                    f"{detection.file_path} changed since it was scanned "
                    f"(line {detection.line_number}, key {detection.key})",
                )
            try:
                tokens.append(self.reference_for(detection))
            except ValueError as e:
                raise FileWriteError(detection.file_path, str(e)) from e

        replaced = skipped = 0
        boundary = len(content) + 1
        for detection, token in zip(ordered, tokens):
            start, end = detection.value_span
            if end > boundary:
                # Another pattern already replaced an overlapping value
                skipped += 1
                logger.debug(f"Skipping overlapping match for {detection.key}")
                continue
            content = content[:start] + token + content[end:]
            boundary = start
            replaced += 1
        return content, replaced, skipped

    def rewrite(self, file_path: Union[str, Path], detections: Iterable[DetectedSecret]) -> RewriteResult:
        """Back up ``file_path`` and replace each detection with its token.

        Raises:
            FileWriteError: If reading, backing up, substituting or writing fails.
                The original file and any backup are left intact.
        """
        file_path = Path(file_path)
        detections = list(detections)
        try:
            raw = file_path.read_bytes()
            content = raw.decode("utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise FileWriteError(str(file_path), f"Could not read {file_path}: {e}") from e

        backup_path = self.backup(file_path, raw)
        updated, replaced, skipped = self.substitute(content, detections)
        self._replace_content(file_path, updated.encode("utf-8"))

        logger.info(f"Updated file with vault references: {file_path}")
        return RewriteResult(
            file_path=str(file_path),
            backup_path=str(backup_path),
            replaced=replaced,
            skipped=skipped,
        )

    def _replace_content(self, file_path: Path, data: bytes) -> None:
        """Write through a temporary file so a failure never truncates the original."""
        tmp_name: Optional[str] = None
        try:
            with tempfile.NamedTemporaryFile(
                dir=file_path.parent, prefix=f".{file_path.name}.", delete=False
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            shutil.copymode(file_path, tmp_name)
            os.replace(tmp_name, file_path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise FileWriteError(str(file_path), f"Failed to update file {file_path}: {e}") from e

    def restore(self, file_path: Union[str, Path]) -> Path:
        """Copy the most recent backup of ``file_path`` back over it.

        Raises:
            FileWriteError: If there is no backup or it cannot be copied.
        """
        file_path = Path(file_path)
        candidates = self._backup_candidates(file_path)
        if not candidates:
            raise FileWriteError(str(file_path), f"No backup found for {file_path}")
        latest = max(candidates, key=lambda p: p.stat().st_mtime_ns)
        if file_path.exists():
            try:
                data = latest.read_bytes()
            except OSError as e:
                raise FileWriteError(str(file_path), f"Could not read backup {latest}: {e}") from e
            self._replace_content(file_path, data)
        else:
            try:
                shutil.copyfile(latest, file_path)
            except OSError as e:
                raise FileWriteError(str(file_path), f"Could not restore {file_path}: {e}") from e
        logger.info(f"Restored {file_path} from {latest}")
        return latest
