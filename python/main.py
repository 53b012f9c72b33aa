"""
Harbor discovery and Harbor -> ECR migration in one command.

Without --mode, the flags decide: --migrate-from, --harbor-user or
--harbor-pass select migration, anything else is a discovery run.
"""

import argparse
import os
import sys
from enum import Enum
from typing import List, Optional

from scripts.discover_artifacts import add_discovery_arguments, run_discovery
from scripts.migrate_to_ecr import add_migration_arguments, run_migration
from utils.config_manager import ConfigManager, ConfigValidationError
from utils.error_utils import ActionableError
from utils.logging_utils import get_logger, log_exception, parse_log_level, setup_logging

logger = get_logger(__name__)

MIGRATION_SELECTORS = ("migrate_from", "harbor_user", "harbor_pass")
MIGRATION_ONLY_FLAGS = ("migrate_from", "ecr", "harbor_user", "harbor_pass", "skip_untagged", "resume", "dry_run")
DISCOVERY_ONLY_FLAGS = ("project", "token")


class RunMode(Enum):
    DISCOVER = "discover"
    MIGRATE = "migrate"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Discover Harbor project artifacts and migrate them to AWS ECR",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Discovery: write harbor_artifacts_<project>.ndjson/.csv
  python main.py --project onboarding --token "$(echo -n 'user:pass' | base64)"

  # Migration: copy every tag of every CSV row to ECR
  python main.py --migrate-from harbor-reports/harbor_artifacts_onboarding.csv \\
    --ecr 1234567890.dkr.ecr.ap-south-1.amazonaws.com --harbor-user robot --harbor-pass secret

  # Plan a migration without copying
  python main.py --mode migrate --migrate-from artifacts.csv \\
    --ecr 1234567890.dkr.ecr.ap-south-1.amazonaws.com --dry-run
        """,
    )
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in RunMode],
        help="Run mode (default: inferred from the flags given)",
    )
    parser.add_argument("--config", help="Path to config.yaml (default: CONFIG_FILE env var or ./config.yaml)")
    parser.add_argument("--log-file", help="Also append log lines to this file")
    parser.add_argument("--log-level", help="Log level: DEBUG, INFO, WARNING, ERROR (default: INFO)")
    add_discovery_arguments(parser)
    add_migration_arguments(parser)
    return parser


def _given(args: argparse.Namespace, names) -> List[str]:
    return [name for name in names if getattr(args, name, None)]


def _flag(name: str) -> str:
    return "--" + name.replace("_", "-")


def resolve_mode(args: argparse.Namespace) -> RunMode:
    """Pick the run mode from --mode or, failing that, from the flags present."""
    if args.mode:
        return RunMode(args.mode)
    if _given(args, MIGRATION_SELECTORS):
        return RunMode.MIGRATE
    return RunMode.DISCOVER


def validate_args(args: argparse.Namespace, mode: RunMode, config_manager) -> List[str]:
    """Return every problem with the arguments for the chosen mode."""
    errors = []

    for name in ("artifacts", "page_size", "max_workers"):
        value = getattr(args, name, None)
        if value is not None and value < 1:
            errors.append(f"{_flag(name)} must be a positive integer, got: {value}")

    if mode == RunMode.DISCOVER:
        mixed = _given(args, MIGRATION_ONLY_FLAGS)
        if mixed:
            errors.append(
                f"Migration flags cannot be used in discovery mode: {', '.join(_flag(n) for n in mixed)}"
            )
        if not args.project:
            errors.append("--project is required for discovery")
        if not (args.token or config_manager.get_harbor_token()):
            errors.append("--token (or HARBOR_TOKEN) is required for discovery")
    else:
        mixed = _given(args, DISCOVERY_ONLY_FLAGS)
        if mixed:
            errors.append(
                f"Discovery flags cannot be used in migration mode: {', '.join(_flag(n) for n in mixed)}"
            )
        if not args.migrate_from:
            errors.append("--migrate-from is required for migration")
        elif not os.path.isfile(args.migrate_from):
            errors.append(f"CSV file not found: {args.migrate_from}")
        if not (args.ecr or config_manager.get_ecr_registry()):
            errors.append("--ecr (or ECR_REGISTRY) is required for migration")

    return errors


def load_config(config_file: Optional[str]):
    if config_file:
        return ConfigManager(config_file=config_file)
    from utils.config_manager import config_manager

    return config_manager


def run(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, dispatch to discovery or migration and return the exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config_manager = load_config(args.config)
        log_level = parse_log_level(args.log_level or config_manager.get_log_level())
        setup_logging(level=log_level, log_file=args.log_file or config_manager.get_log_file())
    except ConfigValidationError as e:
        setup_logging()
        logger.error(str(e))
        return 1

    mode = resolve_mode(args)
    errors = validate_args(args, mode, config_manager)
    if errors:
        for error in errors:
            logger.error(error)
        parser.print_usage(sys.stderr)
        return 1

    logger.info(f"Mode: {mode.value}")
    try:
        if mode == RunMode.DISCOVER:
            return run_discovery(
                project=args.project,
                token=args.token or config_manager.get_harbor_token(),
                config_manager=config_manager,
                artifacts=args.artifacts,
                page_size=args.page_size,
                out_dir=args.out,
                insecure=args.insecure,
                api_url=args.harbor_api,
                max_workers=args.max_workers,
                skip_health_checks=args.skip_health_checks,
            )

        return run_migration(
            csv_path=args.migrate_from,
            ecr_registry=args.ecr or config_manager.get_ecr_registry(),
            config_manager=config_manager,
            harbor_user=args.harbor_user,
            harbor_pass=args.harbor_pass,
            harbor_host=args.harbor_host,
            skip_untagged=args.skip_untagged,
            resume=args.resume,
            dry_run=args.dry_run,
            report_path=args.report,
        )
    except ActionableError as e:
        logger.error(e.format_message())
        return 1
    except ConfigValidationError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 1
    except Exception as e:
        log_exception(logger, f"{mode.value} failed", e)
        return 1


def main():
    sys.exit(run())


if __name__ == "__main__":
    main()
