#!/usr/bin/env python3
"""
Migrate the images listed in a discovery CSV from Harbor to AWS ECR.

Each CSV row names one artifact by digest together with its tags. For every
tag, the artifact is copied with ``skopeo copy --all`` so multi-architecture
manifest lists arrive intact:

  <harbor_host>/<project>/<repository>@<digest>  ->  <ecr_registry>/<repository>:<tag>

Workflow:
1. Verify skopeo is installed and the ECR registry is well formed
2. Log in to ECR (boto3 token + skopeo login)
3. Copy every (row, tag) pair, recording failures without stopping the batch
4. Save a JSON migration report and a checkpoint for --resume

An untagged row aborts the run by default, since it has no destination name.
Use --skip-untagged to record such rows as failed and continue.

Usage examples:
  # Migrate a discovery CSV
  python migrate_to_ecr.py --migrate-from harbor-reports/harbor_artifacts_onboarding.csv \\
    --ecr 1234567890.dkr.ecr.ap-south-1.amazonaws.com --harbor-user robot --harbor-pass secret

  # Show the plan without copying
  python migrate_to_ecr.py --migrate-from artifacts.csv --ecr 1234567890.dkr.ecr.ap-south-1.amazonaws.com --dry-run

  # Continue an interrupted migration
  python migrate_to_ecr.py --migrate-from artifacts.csv --ecr 1234567890.dkr.ecr.ap-south-1.amazonaws.com --resume
"""

import argparse
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

# Add parent directory to path for imports
_parent_dir = Path(__file__).parent.parent.absolute()
if str(_parent_dir) not in sys.path:
    sys.path.insert(0, str(_parent_dir))

from utils.artifact_record import ArtifactRecord, MigrationTask
from utils.auth import authenticate_ecr, parse_ecr_region
from utils.checkpoint import CheckpointManager
from utils.config_manager import config_manager as default_config_manager
from utils.error_utils import (
    ActionableError,
    ErrorCategory,
    MissingTagsError,
    create_config_error,
    create_missing_tags_error,
    create_registry_auth_error,
)
from utils.logging_utils import get_logger, log_exception, parse_log_level, setup_logging
from utils.report_utils import iter_csv_rows, save_json
from utils.script_base import BaseScript
from utils.skopeo_client import SkopeoClient

logger = get_logger(__name__)

OPERATION_TYPE = "migrate_to_ecr"


@dataclass
class MigrationResult:
    """Outcome of one migration run."""

    copied: int = 0
    failed: int = 0
    skipped: int = 0
    rows: int = 0
    failed_tasks: List[str] = field(default_factory=list)
    failed_rows: List[str] = field(default_factory=list)
    aborted: bool = False
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return not self.aborted and self.failed == 0 and not self.failed_rows

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rows": self.rows,
            "copied": self.copied,
            "failed": self.failed,
            "skipped": self.skipped,
            "failed_tasks": self.failed_tasks,
            "failed_rows": self.failed_rows,
            "aborted": self.aborted,
            "error": self.error,
        }


def normalize_harbor_host(host: str) -> str:
    """Drop any scheme and trailing slash so the host can prefix an image reference."""
    return host.split("://", 1)[-1].rstrip("/")


class ECRMigrator(BaseScript):
    """Copies discovery CSV rows from Harbor to ECR."""

    def __init__(
        self,
        ecr_registry: str,
        harbor_host: Optional[str] = None,
        harbor_user: Optional[str] = None,
        harbor_pass: Optional[str] = None,
        config_manager=None,
        on_missing_tags: Optional[str] = None,
        dry_run: bool = False,
        skopeo_client: Optional[SkopeoClient] = None,
        checkpoint_manager: Optional[CheckpointManager] = None,
    ):
        super().__init__(config_manager=config_manager)
        self.ecr_registry = ecr_registry.rstrip("/")
        self.harbor_host = normalize_harbor_host(harbor_host or self.config_manager.get_harbor_host())
        self.harbor_user = harbor_user or self.config_manager.get_harbor_user()
        self.harbor_pass = harbor_pass or self.config_manager.get_harbor_password()
        self.on_missing_tags = (on_missing_tags or self.config_manager.get_on_missing_tags()).lower()
        self.dry_run = dry_run
        self.skopeo_client = skopeo_client or SkopeoClient(self.config_manager)
        self.checkpoint_manager = checkpoint_manager or CheckpointManager(
            Path(self.config_manager.get_output_dir()) / "checkpoints"
        )

    @staticmethod
    def ecr_region(ecr_registry: str) -> str:
        """Region of an ECR registry prefix (4th dot-separated field).

        Raises:
            ActionableError: If the prefix has too few fields
        """
        try:
            return parse_ecr_region(ecr_registry)
        except ValueError as e:
            raise create_config_error("ecr", ecr_registry, str(e))

    @property
    def src_creds(self) -> Optional[str]:
        if self.harbor_user and self.harbor_pass:
            return f"{self.harbor_user}:{self.harbor_pass}"
        return None

    def plan_tasks(self, record: ArtifactRecord) -> List[MigrationTask]:
        """One copy task per tag of the record.

        Raises:
            MissingTagsError: If the record has no tags
        """
        if not record.tags:
            raise create_missing_tags_error(f"{self.harbor_host}/{record.source_path}")
        return [MigrationTask.for_tag(record, tag, self.harbor_host, self.ecr_registry) for tag in record.tags]

    def login(self) -> None:
        """Authenticate skopeo against ECR unless disabled or dry-running."""
        if self.dry_run or not self.config_manager.is_ecr_login_enabled():
            return
        region = self.ecr_region(self.ecr_registry)
        try:
            authenticate_ecr(self.ecr_registry, self.skopeo_client.auth_file, region=region)
        except Exception as e:
            raise create_registry_auth_error(self.ecr_registry, e)

    def _handle_schema_violation(self, result: MigrationResult, row_ref: str, error: ActionableError) -> bool:
        """Apply the missing-tags policy. Returns True when the run must stop."""
        result.failed_rows.append(row_ref)
        if self.on_missing_tags == "skip":
            self.logger.warning(f"{error.message}; skipping row")
            return False
        self.logger.error(error.format_message())
        result.aborted = True
        result.error = error.message
        return True

    def copy_task(self, task: MigrationTask, label: str) -> bool:
        if self.dry_run:
            self.logger.info(f"  [{label}] Would copy {task.source} -> {task.destination}")
            return True

        self.logger.info(f"  [{label}] Copying {task.source} -> {task.destination}")
        return self.skopeo_client.copy_image(
            src_ref=task.source,
            dest_ref=task.destination,
            src_creds=self.src_creds,
        )

    def migrate(self, csv_path: str, resume: bool = False) -> MigrationResult:
        """Copy every tag of every CSV row.

        Args:
            csv_path: Discovery CSV
            resume: Skip destinations recorded as copied by a previous run

        Returns:
            MigrationResult with per-task counts
        """
        result = MigrationResult()
        operation_id = Path(csv_path).stem
        if not resume and not self.dry_run:
            self.checkpoint_manager.delete(OPERATION_TYPE, operation_id)
        checkpoint = self.checkpoint_manager.load_or_start(
            OPERATION_TYPE, operation_id, metadata={"ecr_registry": self.ecr_registry, "csv": str(csv_path)}
        )

        task_index = 0
        for line_num, row in iter_csv_rows(csv_path):
            result.rows += 1
            row_ref = f"{csv_path}:{line_num}"

            try:
                record = ArtifactRecord.from_csv_row(row)
                tasks = self.plan_tasks(record)
            except MissingTagsError as e:
                if self._handle_schema_violation(result, row_ref, e):
                    break
                continue
            except ValueError as e:
                # Rows that cannot form a record fall under the same policy
                error = ActionableError(f"Invalid CSV row {row_ref}: {e}", category=ErrorCategory.SCHEMA)
                if self._handle_schema_violation(result, row_ref, error):
                    break
                continue

            destinations = [t.destination for t in tasks]
            remaining = set(checkpoint.remaining(destinations) if resume else destinations)

            copied, failed = [], []
            for tag_index, task in enumerate(tasks, 1):
                task_index += 1
                label = f"row {result.rows} tag {tag_index}/{len(tasks)}"
                if task.destination not in remaining:
                    self.logger.info(f"  [{label}] Already copied {task.destination}, skipping")
                    result.skipped += 1
                    continue

                if self.copy_task(task, label):
                    result.copied += 1
                    copied.append(task.destination)
                else:
                    self.logger.error(f"  Failed to copy {task.source} -> {task.destination}")
                    result.failed += 1
                    result.failed_tasks.append(task.destination)
                    failed.append(task.destination)

            if not self.dry_run and (copied or failed):
                checkpoint.record(completed=copied, failed=failed, total_items=task_index)
                self.checkpoint_manager.save(checkpoint, operation_id)

        if result.success and not self.dry_run:
            self.checkpoint_manager.delete(OPERATION_TYPE, operation_id)
        return result


def run_migration(
    csv_path: str,
    ecr_registry: str,
    config_manager=None,
    harbor_user: Optional[str] = None,
    harbor_pass: Optional[str] = None,
    harbor_host: Optional[str] = None,
    skip_untagged: bool = False,
    resume: bool = False,
    dry_run: bool = False,
    report_path: Optional[str] = None,
    skip_health_checks: bool = False,
) -> int:
    """Run a migration with CLI values layered over configuration.

    Returns:
        Process exit code
    """
    config_manager = config_manager or default_config_manager
    migrator = ECRMigrator(
        ecr_registry=ecr_registry,
        harbor_host=harbor_host,
        harbor_user=harbor_user,
        harbor_pass=harbor_pass,
        config_manager=config_manager,
        on_missing_tags="skip" if skip_untagged else None,
        dry_run=dry_run,
    )

    logger.info("=" * 60)
    if dry_run:
        logger.info("   HARBOR -> ECR MIGRATION - DRY RUN MODE")
        logger.info("   No images will be copied.")
    else:
        logger.info("   HARBOR -> ECR MIGRATION")
    logger.info("=" * 60)
    logger.info(f"Source CSV:        {csv_path}")
    logger.info(f"Source registry:   {migrator.harbor_host}")
    logger.info(f"ECR registry:      {migrator.ecr_registry}")
    logger.info(f"ECR region:        {migrator.ecr_region(migrator.ecr_registry)}")
    logger.info(f"Untagged rows:     {migrator.on_missing_tags}")
    if not migrator.src_creds:
        logger.warning("No Harbor pull credentials provided (--harbor-user/--harbor-pass)")

    if not dry_run and not skip_health_checks:
        if not migrator.run_health_checks("migrate", ecr_registry=migrator.ecr_registry):
            logger.error("Health checks failed, aborting migration")
            return 1

    migrator.login()
    result = migrator.migrate(csv_path, resume=resume)

    report = {
        "summary": result.to_dict(),
        "metadata": {
            "csv": str(csv_path),
            "source_registry": migrator.harbor_host,
            "ecr_registry": migrator.ecr_registry,
            "on_missing_tags": migrator.on_missing_tags,
            "dry_run": dry_run,
            "timestamp": datetime.now().isoformat(),
        },
    }
    saved_report = save_json(report_path or config_manager.get_migration_report_path(), report)

    migrator.log_summary(
        "Migration Summary",
        {
            "total": result.copied + result.failed + result.skipped,
            "copied": result.copied,
            "failed": result.failed,
            "skipped": result.skipped,
            "results_file": saved_report,
        },
        dry_run=dry_run,
    )
    for destination in result.failed_tasks:
        logger.error(f"  failed: {destination}")
    for row_ref in result.failed_rows:
        logger.error(f"  untagged or invalid row: {row_ref}")

    if result.aborted:
        logger.error(f"Migration aborted: {result.error}")
    elif result.success:
        logger.info("Migration completed successfully")
    else:
        logger.error("Migration completed with failures")
    return result.exit_code


def add_migration_arguments(parser: argparse.ArgumentParser) -> None:
    """Register the migration flags on a parser."""
    group = parser.add_argument_group("migration")
    group.add_argument("--migrate-from", help="Discovery CSV to migrate")
    group.add_argument("--ecr", help="ECR registry prefix, e.g. 1234567890.dkr.ecr.ap-south-1.amazonaws.com")
    group.add_argument("--harbor-user", help="Harbor pull user (default: HARBOR_USER env var)")
    group.add_argument("--harbor-pass", help="Harbor pull password (default: HARBOR_PASS env var)")
    group.add_argument("--harbor-host", help="Harbor registry host used in source references")
    group.add_argument(
        "--skip-untagged",
        action="store_true",
        help="Record untagged rows as failed and continue instead of aborting",
    )
    group.add_argument("--resume", action="store_true", help="Skip tags copied by a previous, interrupted run")
    group.add_argument("--dry-run", action="store_true", help="Plan and log the copies without running them")
    group.add_argument("--report", help="Migration report path (default: <out>/migration-report.json)")


def parse_arguments():
    parser = argparse.ArgumentParser(
        description="Copy the images of a Harbor discovery CSV into AWS ECR",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Migrate a discovery CSV
  python migrate_to_ecr.py --migrate-from artifacts.csv --ecr 1234567890.dkr.ecr.ap-south-1.amazonaws.com \\
    --harbor-user robot --harbor-pass secret

  # Keep going past untagged rows
  python migrate_to_ecr.py --migrate-from artifacts.csv --ecr 1234567890.dkr.ecr.ap-south-1.amazonaws.com \\
    --skip-untagged
        """,
    )
    add_migration_arguments(parser)
    parser.add_argument("--log-file", help="Also append log lines to this file")
    parser.add_argument("--log-level", help="Log level (default: INFO)")
    return parser.parse_args()


def main():
    args = parse_arguments()
    setup_logging(
        level=parse_log_level(args.log_level or default_config_manager.get_log_level()),
        log_file=args.log_file or default_config_manager.get_log_file(),
    )

    ecr_registry = args.ecr or default_config_manager.get_ecr_registry()
    if not args.migrate_from or not os.path.isfile(args.migrate_from):
        logger.error(f"CSV file not found: {args.migrate_from}")
        sys.exit(1)
    if not ecr_registry:
        logger.error("--ecr is required")
        sys.exit(1)

    try:
        exit_code = run_migration(
            csv_path=args.migrate_from,
            ecr_registry=ecr_registry,
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
        sys.exit(1)
    except KeyboardInterrupt:
        logger.warning("\nMigration interrupted by user")
        sys.exit(1)
    except Exception as e:
        log_exception(logger, "Migration failed", e)
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
