"""Command-line entry points.

Usage:
    vault-manager --scan [--auto-store [--replace]] [--project DIR] [--config PATH]
    vault-validate [--path DIR] [--config PATH]

Example:
    # Scan, store and replace in one go
    vault-manager --scan --auto-store --replace --project ./myproj

    # Check every reference resolves (CI)
    vault-validate --path ./myproj
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from .config import DEFAULT_CONFIG_PATH, load_config
from .exceptions import ConfigError, ConnectivityError, StoreError
from .pipeline import VaultManager
from .report import format_pipeline_report, format_validation_report, write_json
from .store import create_store_client
from .validator import ReferenceValidator

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=log_level, format="%(levelname)s: %(message)s")


def build_manager_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vault-manager",
        description="Detect hardcoded secrets, store them in Vault and replace them with references",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Report secrets only
    vault-manager --scan --project ./myproj

    # Preview storing and replacing
    vault-manager --scan --auto-store --replace --dry-run

    # Undo a rewrite
    vault-manager --rollback config/.env
        """,
    )
    parser.add_argument("--scan", action="store_true", help="Scan the project for secrets")
    parser.add_argument(
        "--auto-store",
        action="store_true",
        help="Store detected secrets in Vault",
    )
    parser.add_argument(
        "--replace",
        action="store_true",
        help="Replace stored secrets with vault references (requires --auto-store)",
    )
    parser.add_argument(
        "--project",
        default=None,
        help="Project directory (default: current working directory)",
    )
    parser.add_argument(
        "--config", "-c",
        default=str(DEFAULT_CONFIG_PATH),
        help=f"Configuration file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--dry-run", "-n",
        action="store_true",
        help="Preview changes without writing to Vault or files",
    )
    parser.add_argument(
        "--rollback",
        nargs="+",
        metavar="FILE",
        default=None,
        help="Restore files from their latest backups",
    )
    parser.add_argument("--json", default=None, help="Output file path for JSON report")
    parser.add_argument(
        "--workers",
        type=int,
        default=4,
        help="Number of files scanned concurrently (default: 4)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    return parser


def manager_main(argv: Optional[list[str]] = None) -> int:
    """Entry point of ``vault-manager``. Returns the process exit code."""
    args = build_manager_parser().parse_args(argv)
    _configure_logging(args.verbose)

    project_dir = Path(args.project) if args.project else Path.cwd()
    try:
        config = load_config(args.config)
        store = create_store_client(config.vault_config)
        manager = VaultManager(config, store, project_dir, max_workers=args.workers)
    except (ConfigError, ValueError) as e:
        logger.error(f"Error loading configuration: {e}")
        return 1

    with store:
        if args.rollback:
            restored = manager.rollback(args.rollback)
            print(f"Restored {len(restored)} of {len(args.rollback)} files.")
            return 0 if len(restored) == len(args.rollback) else 1

        try:
            result = manager.run(
                scan=args.scan,
                auto_store=args.auto_store,
                replace=args.replace,
                dry_run=args.dry_run,
            )
        except ConnectivityError:
            logger.error("Aborting due to vault connection failure.")
            return 1

    print(format_pipeline_report(result))
    if args.json:
        write_json(result.to_dict(), args.json)
    return 0


def build_validator_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vault-validate",
        description="Validate that every vault reference resolves to a stored secret",
    )
    parser.add_argument(
        "--path", "-p",
        default=None,
        help="Directory to validate (default: current working directory)",
    )
    parser.add_argument(
        "--config", "-c",
        default=str(DEFAULT_CONFIG_PATH),
        help=f"Configuration file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--json", default=None, help="Output file path for JSON report")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    return parser


def validator_main(argv: Optional[list[str]] = None) -> int:
    """Entry point of ``vault-validate``. Returns 0 only if every reference resolves."""
    args = build_validator_parser().parse_args(argv)
    _configure_logging(args.verbose)

    directory = Path(args.path) if args.path else Path.cwd()
    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error(f"Error loading configuration: {e}")
        return 1

    with create_store_client(config.vault_config) as store:
        try:
            store.verify_connection()
        except StoreError as e:
            logger.error(f"Failed to connect to Vault server: {e}")
            logger.error("Aborting due to vault connection failure.")
            return 1

        validator = ReferenceValidator(store, config.trigger.file_patterns)
        report = validator.validate(directory)

    print(format_validation_report(report))
    if args.json:
        write_json(report.to_dict(), args.json)

    if not report.success:
        print(f"\nFound {report.invalid_references} invalid vault references.")
        return 1
    print(f"\nAll {report.valid_references} vault references are valid.")
    return 0


if __name__ == "__main__":
    sys.exit(manager_main())
