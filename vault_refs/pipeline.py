"""Vault manager orchestrating the find, store and replace pipeline.

The pipeline runs in phases:
1. Verify the store is reachable and unsealed (abort otherwise)
2. Scan the project for secrets
3. Store every detected secret (optional)
4. Replace stored secrets with reference tokens (optional)

Only secrets whose store write succeeded are ever replaced, so a rewrite
never leaves a dangling reference behind.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from .config import RuleConfig
from .exceptions import ConnectivityError, FileWriteError, StoreError
from .patterns import PatternRegistry
from .rewriter import Rewriter, RewriteResult
from .scanner import DetectedSecret, ScanReport, Scanner
from .store.base import StoreClient

logger = logging.getLogger(__name__)


class PipelineState(Enum):
    """Pipeline states."""
    IDLE = "idle"
    SCANNING = "scanning"
    STORING_SECRETS = "storing_secrets"
    REWRITING_FILES = "rewriting_files"
    ABORTED = "aborted"


@dataclass
class StoreResult:
    """Result of writing detections to the store."""
    stored: list[DetectedSecret] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)
    collisions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "stored": [{"key": s.key, "file_path": s.file_path, "line_number": s.line_number}
                       for s in self.stored],
            "failed": list(self.failed),
            "collisions": list(self.collisions),
        }


@dataclass
class PipelineResult:
    """Everything a pipeline run produced."""
    scan: Optional[ScanReport] = None
    store: Optional[StoreResult] = None
    rewritten: list[RewriteResult] = field(default_factory=list)
    rewrite_failures: list[dict] = field(default_factory=list)
    dry_run: bool = False

    @property
    def secrets_found(self) -> int:
        return self.scan.secrets_found if self.scan else 0

    @property
    def secrets_stored(self) -> int:
        return len(self.store.stored) if self.store else 0

    @property
    def secrets_replaced(self) -> int:
        return sum(r.replaced for r in self.rewritten)

    def to_dict(self) -> dict:
        return {
            "dry_run": self.dry_run,
            "summary": {
                "files_scanned": self.scan.files_scanned if self.scan else 0,
                "secrets_found": self.secrets_found,
                "secrets_stored": self.secrets_stored,
                "secrets_replaced": self.secrets_replaced,
                "files_rewritten": len(self.rewritten),
                "rewrite_failures": len(self.rewrite_failures),
            },
            "scan": self.scan.to_dict() if self.scan else None,
            "store": self.store.to_dict() if self.store else None,
            "rewritten": [r.to_dict() for r in self.rewritten],
            "rewrite_failures": list(self.rewrite_failures),
        }


class VaultManager:
    """Detects secrets in a project, stores them and replaces them with references."""

    def __init__(
        self,
        config: RuleConfig,
        store: StoreClient,
        project_dir: Union[str, Path],
        registry: Optional[PatternRegistry] = None,
        max_workers: int = 4,
    ):
        """Initialize the vault manager.

        Args:
            config: Validated configuration rule.
            store: Secret store client.
            project_dir: Directory to scan and rewrite.
            registry: Precompiled patterns (default: compiled from ``config``).
            max_workers: Scanner thread pool size.

        Raises:
            ConfigError: If a configured pattern is invalid or the project name
                cannot appear in a reference token.
        """
        self.config = config
        self.store = store
        self.project_dir = Path(project_dir)
        self.registry = registry or PatternRegistry.load(config)
        self.scanner = Scanner(self.registry, max_workers=max_workers)
        self.store_root = config.vault_config.store_root(self.project_dir)

        backup_dir = Path(config.backup_dir)
        if not backup_dir.is_absolute():
            backup_dir = self.project_dir / backup_dir
        self.rewriter = Rewriter(backup_dir, self.store_root)

        self.state = PipelineState.IDLE
        self.transitions: list[PipelineState] = [self.state]
        logger.info(f"Vault Manager initialized for project: {self.project_dir.resolve().name}")
        logger.info(
            f"Using vault backend: {config.vault_config.backend} at {config.vault_config.address}"
        )

    def _enter(self, state: PipelineState) -> None:
        self.state = state
        self.transitions.append(state)
        logger.debug(f"Pipeline state: {state.value}")

    def verify_connection(self) -> None:
        """Ensure the store is usable before any work starts.

        Raises:
            ConnectivityError: If the store is sealed or unreachable.
        """
        try:
            self.store.verify_connection()
        except StoreError as e:
            self._enter(PipelineState.ABORTED)
            logger.error(f"Failed to connect to Vault server: {e}")
            if isinstance(e, ConnectivityError):
                raise
            raise ConnectivityError(str(e)) from e

    def scan(self) -> ScanReport:
        """Scan the project directory for secrets."""
        return self.scanner.scan(self.project_dir)

    def ensure_paths(self, detections: list[DetectedSecret]) -> dict[str, bool]:
        """Check every target store path; missing ones are created by the first write."""
        existing = {}
        for path in dict.fromkeys(self.rewriter.store_path_for(d) for d in detections):
            try:
                existing[path] = self.store.path_exists(path)
            except StoreError as e:
                logger.warning(f"Could not check path {path}: {e}")
                existing[path] = False
                continue
            if existing[path]:
                logger.info(f"Path already exists: {path}")
            else:
                logger.info(f"Creating path: {path}")
        return existing

    def store_secrets(self, detections: list[DetectedSecret], dry_run: bool = False) -> StoreResult:
        """Write detections to the store one at a time, in scan order.

        A failed write is logged and skipped. When two detections share a
        store key the later one is written last and wins.
        """
        result = StoreResult()
        if not detections:
            logger.info("No secrets to store.")
            return result

        logger.info(f"Storing {len(detections)} secrets in vault...")
        if not dry_run:
            self.ensure_paths(detections)

        seen: dict[tuple[str, str], DetectedSecret] = {}
        for detection in detections:
            path = self.rewriter.store_path_for(detection)
            previous = seen.get((path, detection.key))
            if previous is not None and previous.value != detection.value:
                logger.warning(
                    f"Key collision for {path}/{detection.key}: "
                    f"{previous.file_path}:{previous.line_number} is overwritten by "
                    f"{detection.file_path}:{detection.line_number}"
                )
                result.collisions.append(f"{path}/{detection.key}")

            if dry_run:
                logger.info(f"[DRY RUN] Would store secret: {path}/{detection.key}")
                result.stored.append(detection)
                seen[(path, detection.key)] = detection
                continue

            metadata = {
                "file": detection.file_path,
                "line": detection.line_number,
                "detected_at": datetime.now(timezone.utc).isoformat(),
                "type": detection.type,
            }
            try:
                self.store.put(path, detection.key, detection.value, metadata)
            except StoreError as e:
                logger.error(f"Failed to store secret {detection.key}: {e}")
                result.failed.append({"path": path, "key": detection.key, "error": str(e)})
                continue

            seen[(path, detection.key)] = detection
            result.stored.append(detection)
            logger.info(f"Stored secret: {path}/{detection.key}")

        logger.info("Secret storage completed.")
        return result

    def replace_secrets(
        self,
        stored: list[DetectedSecret],
        dry_run: bool = False,
    ) -> tuple[list[RewriteResult], list[dict]]:
        """Rewrite each file holding stored secrets; one failing file does not stop the rest."""
        rewritten: list[RewriteResult] = []
        failures: list[dict] = []
        if not stored:
            logger.info("No secrets to replace.")
            return rewritten, failures

        by_file: dict[str, list[DetectedSecret]] = {}
        for detection in stored:
            by_file.setdefault(detection.file_path, []).append(detection)

        logger.info(f"Replacing {len(stored)} secrets with vault references...")
        for file_path, detections in by_file.items():
            if dry_run:
                for detection in detections:
                    logger.info(
                        f"[DRY RUN] Would replace {file_path}:{detection.line_number} "
                        f"with {self.rewriter.reference_for(detection)}"
                    )
                rewritten.append(RewriteResult(file_path, "", replaced=len(detections)))
                continue
            try:
                rewritten.append(self.rewriter.rewrite(file_path, detections))
            except FileWriteError as e:
                logger.error(f"Failed to update file {file_path}: {e}")
                failures.append({"file": file_path, "error": str(e)})

        logger.info("Secret replacement completed.")
        return rewritten, failures

    def run(
        self,
        scan: bool = True,
        auto_store: bool = False,
        replace: bool = False,
        dry_run: bool = False,
    ) -> PipelineResult:
        """Run the pipeline.

        Args:
            scan: Scan the project for secrets.
            auto_store: Store found secrets in the vault.
            replace: Replace stored secrets with reference tokens.
            dry_run: Report what would be stored and replaced without writing.

        Returns:
            PipelineResult of the run.

        Raises:
            ConnectivityError: If the store is sealed or unreachable.
        """
        result = PipelineResult(dry_run=dry_run)
        self.verify_connection()

        if not scan:
            return result

        self._enter(PipelineState.SCANNING)
        result.scan = self.scan()

        if result.scan.secrets_found == 0 or not auto_store:
            if replace and not auto_store:
                logger.warning("--replace requires --auto-store; no file was changed")
            self._enter(PipelineState.IDLE)
            return result

        self._enter(PipelineState.STORING_SECRETS)
        result.store = self.store_secrets(result.scan.findings, dry_run=dry_run)

        if replace:
            self._enter(PipelineState.REWRITING_FILES)
            result.rewritten, result.rewrite_failures = self.replace_secrets(
                result.store.stored, dry_run=dry_run
            )

        self._enter(PipelineState.IDLE)
        return result

    def rollback(self, files: list[Union[str, Path]]) -> list[Path]:
        """Restore files from their most recent backups."""
        restored = []
        for file_path in files:
            try:
                restored.append(self.rewriter.restore(file_path))
            except FileWriteError as e:
                logger.error(f"Rollback failed for {file_path}: {e}")
        return restored
