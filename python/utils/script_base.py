"""
Base class for the discovery and migration scripts.

This module provides common functionality for both scripts including:
- Configuration access
- Pre-flight health checks
- Standardized summary logging
"""

from typing import Any, Dict, Optional

from utils.health_checks import HealthChecker
from utils.logging_utils import get_logger
from utils.report_utils import sizeof_fmt


class BaseScript:
    """Base class for scripts with common functionality"""

    def __init__(self, config_manager=None, harbor_client=None):
        """Initialize base script

        Args:
            config_manager: ConfigManager instance (default: module-level instance)
            harbor_client: HarborClient used by connectivity checks, if any
        """
        if config_manager is None:
            from utils.config_manager import config_manager as default_config_manager

            config_manager = default_config_manager

        self.config_manager = config_manager
        self.logger = get_logger(self.__class__.__name__)
        self.health_checker = HealthChecker(config_manager, harbor_client=harbor_client)

    def run_health_checks(self, mode: str, ecr_registry: Optional[str] = None) -> bool:
        """Run health checks before doing any work

        Args:
            mode: "discover" or "migrate"
            ecr_registry: Destination registry (migration only)

        Returns:
            True if all required checks passed, False otherwise
        """
        self.logger.info("Running health checks...")
        results = self.health_checker.run_all_checks(mode, ecr_registry=ecr_registry)

        if not self.health_checker.required_checks_passed(mode, results):
            self.logger.error("Health checks failed - required services are not accessible")
            self.health_checker.print_health_report(results)
            return False

        self.logger.info("All required health checks passed")
        return True

    def log_summary(self, title: str, summary: Dict[str, Any], dry_run: bool = False) -> None:
        """Log a standardized run summary

        Args:
            title: Summary heading, e.g. "Migration Summary"
            summary: Dictionary with summary information
            dry_run: Whether this was a dry run
        """
        mode = "DRY RUN: " if dry_run else ""
        self.logger.info(f"{mode}{title}:")

        if "repositories" in summary:
            self.logger.info(f"   Repositories: {summary['repositories']}")
        if "artifacts" in summary:
            self.logger.info(f"   Artifacts: {summary['artifacts']}")
        if "total" in summary:
            self.logger.info(f"   Total tasks: {summary['total']}")
        if "copied" in summary:
            self.logger.info(f"   {'Would copy' if dry_run else 'Copied'}: {summary['copied']}")
        if "failed" in summary:
            self.logger.info(f"   Failed: {summary['failed']}")
        if "skipped" in summary:
            self.logger.info(f"   Skipped: {summary['skipped']}")
        if "size_bytes" in summary:
            self.logger.info(f"   Total size: {sizeof_fmt(summary['size_bytes'])}")
        if "results_file" in summary:
            self.logger.info(f"   Results saved to: {summary['results_file']}")
