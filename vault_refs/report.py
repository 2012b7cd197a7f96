"""Console reports for pipeline and validator runs."""

import json
import logging
from pathlib import Path
from typing import Union

from .pipeline import PipelineResult
from .validator import ValidationReport

logger = logging.getLogger(__name__)


def format_pipeline_report(result: PipelineResult) -> str:
    """Render a pipeline result as text. Secret values are never printed."""
    title = "SECRET SCAN REPORT (DRY RUN)" if result.dry_run else "SECRET SCAN REPORT"
    lines = ["=" * 60, title, "=" * 60]

    scan = result.scan
    if scan is None:
        lines.append("Scan not requested.")
    else:
        lines.extend([
            f"Base Path: {scan.root}",
            f"Files Scanned: {scan.files_scanned}",
            f"Secrets Found: {scan.secrets_found}",
        ])
        if scan.unreadable_files:
            lines.append(f"Unreadable Files: {len(scan.unreadable_files)}")
        lines.append("-" * 60)

        if scan.findings:
            for secret_type, secrets in scan.by_type().items():
                lines.append(f"\n{secret_type.upper()} ({len(secrets)}):")
                lines.append("-" * 40)
                for secret in secrets:
                    lines.append(f"  File: {secret.file_path}")
                    lines.append(f"  Line: {secret.line_number}")
                    lines.append(f"  Key: {secret.key}")
                    lines.append("")
        else:
            lines.append("\nNo secrets found!")

    if result.store is not None:
        lines.append("-" * 60)
        lines.append(f"Secrets Stored: {result.secrets_stored}")
        if result.store.failed:
            lines.append(f"Secrets Failed: {len(result.store.failed)}")
            for failure in result.store.failed:
                lines.append(f"  - {failure['path']}/{failure['key']}: {failure['error']}")
        if result.store.collisions:
            lines.append(f"Key Collisions: {len(result.store.collisions)}")

    if result.rewritten or result.rewrite_failures:
        lines.append(f"Files Rewritten: {len(result.rewritten)}")
        lines.append(f"Secrets Replaced: {result.secrets_replaced}")
        for failure in result.rewrite_failures:
            lines.append(f"  - {failure['file']}: {failure['error']}")

    lines.extend(["=" * 60, "END OF REPORT", "=" * 60])
    return "\n".join(lines)


def format_validation_report(report: ValidationReport) -> str:
    """Render a validation report as text."""
    lines = [
        "",
        "Validation Summary:",
        f"Total files checked: {report.total_files}",
        f"Files with references: {report.files_with_references}",
        f"Valid references: {report.valid_references}",
        f"Invalid references: {report.invalid_references}",
    ]
    if report.unreadable_files:
        lines.append(f"Unreadable files: {len(report.unreadable_files)}")
    for result in report.file_results:
        if result.valid:
            continue
        lines.append(f"\n{result.file}:")
        for error in result.errors:
            lines.append(f"  - {error}")
    return "\n".join(lines)


def write_json(data: dict, output_path: Union[str, Path]) -> None:
    """Write a report dictionary as indented JSON."""
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    logger.info(f"JSON report written to: {output_path}")
