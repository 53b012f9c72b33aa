#!/usr/bin/env python3
"""
Discover the most recent artifacts of every repository in a Harbor project.

The Harbor v2.0 API is walked page by page to list the project's repositories,
then the newest N artifacts of each repository are collected with their tags
and, for image indexes, the platforms they reference. Results are written as:
- <out>/harbor_artifacts_<project>.ndjson  (one JSON record per artifact)
- <out>/harbor_artifacts_<project>.csv     (summary rebuilt from the NDJSON)

The CSV is the input of migrate_to_ecr.py.

Usage examples:
  # Discover the 5 newest artifacts of every repository in "onboarding"
  python discover_artifacts.py --project onboarding --token "$(echo -n 'user:pass' | base64)"

  # Keep 10 artifacts per repository and write into ./reports
  python discover_artifacts.py --project onboarding --token TOKEN --artifacts 10 --out ./reports

  # Self-signed Harbor certificate
  python discover_artifacts.py --project onboarding --token TOKEN --insecure
"""

import argparse
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Tuple
from urllib.parse import quote

# Add parent directory to path for imports
_parent_dir = Path(__file__).parent.parent.absolute()
if str(_parent_dir) not in sys.path:
    sys.path.insert(0, str(_parent_dir))

from utils.artifact_record import ArtifactRecord, strip_project_prefix
from utils.config_manager import config_manager as default_config_manager
from utils.harbor_client import HarborClient
from utils.logging_utils import get_logger, log_exception, parse_log_level, setup_logging
from utils.report_utils import format_discovery_table, write_artifact_reports
from utils.script_base import BaseScript

logger = get_logger(__name__)


def encode_repository_path(repository: str) -> str:
    """Double-URL-encode a repository name for use in an API path.

    Harbor decodes the path once before routing, so "team/app" must be sent
    as "team%252Fapp".
    """
    return quote(quote(repository, safe=""), safe="")


def repositories_path(project: str, page: int, page_size: int) -> str:
    return f"projects/{project}/repositories?page={page}&page_size={page_size}"


def artifacts_path(project: str, repository: str, limit: int) -> str:
    return (
        f"projects/{project}/repositories/{encode_repository_path(repository)}/artifacts"
        f"?with_tag=true&sort=-push_time&page=1&page_size={limit}"
    )


class HarborDiscoverer(BaseScript):
    """Collects artifact records for a Harbor project."""

    def __init__(
        self,
        harbor_client: HarborClient,
        config_manager=None,
        page_size: Optional[int] = None,
        max_workers: Optional[int] = None,
    ):
        super().__init__(config_manager=config_manager, harbor_client=harbor_client)
        self.harbor_client = harbor_client
        self.page_size = page_size or self.config_manager.get_page_size()
        self.max_workers = max_workers or self.config_manager.get_max_workers()

    def list_repositories(self, project: str) -> List[str]:
        """List every repository name of a project, in API order.

        Pages are requested until the API returns no data or a page shorter
        than the page size. Names are neither sorted nor de-duplicated.
        """
        names: List[str] = []
        page = 1

        while True:
            response = self.harbor_client.get_json(repositories_path(project, page, self.page_size))
            if not response:
                break

            if not isinstance(response, list):
                self.logger.warning(f"Unexpected repository listing for project '{project}' on page {page}")
                break

            for item in response:
                name = item.get("name") if isinstance(item, dict) else None
                if name:
                    names.append(name)

            # A short page is the last one
            if len(response) < self.page_size:
                break
            page += 1

        return names

    def collect_artifacts(self, project: str, repository: str, limit: int) -> List[ArtifactRecord]:
        """Collect up to ``limit`` of the newest artifacts of one repository.

        Args:
            project: Harbor project name
            repository: Repository name, with or without the "<project>/" prefix
            limit: Maximum number of artifacts (newest push first)

        Returns:
            Records in API order; [] when the repository has no data
        """
        name = strip_project_prefix(project, repository)
        response = self.harbor_client.get_json(artifacts_path(project, name, limit))
        if not response:
            self.logger.info(f"No artifacts returned for {project}/{name}")
            return []

        if not isinstance(response, list):
            self.logger.warning(f"Unexpected artifact listing for {project}/{name}")
            return []

        records = []
        for item in response:
            try:
                records.append(ArtifactRecord.from_api_item(project, name, item))
            except ValueError as e:
                self.logger.warning(f"Skipping malformed artifact in {project}/{name}: {e}")
        return records

    def _collect_safely(self, project: str, repository: str, limit: int) -> List[ArtifactRecord]:
        self.logger.info(f"Processing repo: {repository}")
        try:
            return self.collect_artifacts(project, repository, limit)
        except Exception as e:
            log_exception(self.logger, f"Failed to collect artifacts for {repository}", e)
            return []

    def discover(self, project: str, limit: int) -> List[ArtifactRecord]:
        """Enumerate repositories and collect their artifacts.

        A failure in one repository is logged and does not affect the others.
        Records are returned in repository enumeration order.
        """
        repositories = self.list_repositories(project)
        if not repositories:
            self.logger.warning(f"No repositories found in project '{project}'.")
            return []

        self.logger.info(
            f"Found {len(repositories)} repositories. Collecting up to {limit} artifacts per repo..."
        )

        if self.max_workers > 1 and len(repositories) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                per_repo = list(executor.map(lambda repo: self._collect_safely(project, repo, limit), repositories))
        else:
            per_repo = [self._collect_safely(project, repo, limit) for repo in repositories]

        records: List[ArtifactRecord] = []
        for repo_records in per_repo:
            records.extend(repo_records)
        return records

    def run(self, project: str, limit: int, out_dir: str) -> Tuple[Path, Path, List[ArtifactRecord]]:
        """Discover a project and write its NDJSON and CSV reports."""
        self.logger.info(f"Discovering repositories for project '{project}' from {self.harbor_client.api_url}")
        records = self.discover(project, limit)
        ndjson_path, csv_path = write_artifact_reports(records, out_dir, project)

        if records:
            self.logger.info("\n" + format_discovery_table(records))
        self.log_summary(
            "Discovery Summary",
            {
                "repositories": len({r.repository for r in records}),
                "artifacts": len(records),
                "size_bytes": sum(r.size for r in records),
            },
        )
        self.logger.info(f"NDJSON: {ndjson_path}")
        self.logger.info(f"CSV:    {csv_path}")
        return ndjson_path, csv_path, records


def run_discovery(
    project: str,
    token: str,
    config_manager=None,
    artifacts: Optional[int] = None,
    page_size: Optional[int] = None,
    out_dir: Optional[str] = None,
    insecure: Optional[bool] = None,
    api_url: Optional[str] = None,
    max_workers: Optional[int] = None,
    skip_health_checks: bool = False,
) -> int:
    """Run a discovery with CLI values layered over configuration.

    Returns:
        Process exit code
    """
    config_manager = config_manager or default_config_manager
    client = HarborClient.from_config(config_manager, token, api_url=api_url, insecure=insecure)
    try:
        discoverer = HarborDiscoverer(
            client,
            config_manager=config_manager,
            page_size=page_size,
            max_workers=max_workers,
        )
        if not skip_health_checks and not discoverer.run_health_checks("discover"):
            logger.error("Health checks failed, aborting discovery")
            return 1

        discoverer.run(
            project,
            artifacts or config_manager.get_artifacts_per_repo(),
            out_dir or config_manager.get_output_dir(),
        )
        return 0
    finally:
        client.close()


def add_discovery_arguments(parser: argparse.ArgumentParser) -> None:
    """Register the discovery flags on a parser."""
    group = parser.add_argument_group("discovery")
    group.add_argument("--project", help="Harbor project name")
    group.add_argument(
        "--token",
        help="Harbor API token: base64 of 'user:password' (default: HARBOR_TOKEN env var)",
    )
    group.add_argument("--artifacts", type=int, help="Artifacts to keep per repository (default: 5)")
    group.add_argument("--page-size", type=int, help="Repository listing page size (default: 100)")
    group.add_argument("--out", help="Output directory (default: ./harbor-reports)")
    group.add_argument(
        "--insecure",
        action="store_true",
        default=None,
        help="Do not verify Harbor's TLS certificate",
    )
    group.add_argument("--harbor-api", help="Harbor API base URL (default: https://<harbor host>/api/v2.0)")
    group.add_argument("--max-workers", type=int, help="Repositories fetched in parallel (default: 1)")
    group.add_argument(
        "--skip-health-checks",
        action="store_true",
        help="Do not ping Harbor before discovery",
    )


def parse_arguments():
    parser = argparse.ArgumentParser(
        description="Discover recent artifacts of a Harbor project and write NDJSON/CSV reports",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Discover the 5 newest artifacts per repository
  python discover_artifacts.py --project onboarding --token TOKEN

  # Parallel fetch, 10 artifacts per repository
  python discover_artifacts.py --project onboarding --token TOKEN --artifacts 10 --max-workers 4
        """,
    )
    add_discovery_arguments(parser)
    parser.add_argument("--log-file", help="Also append log lines to this file")
    parser.add_argument("--log-level", help="Log level (default: INFO)")
    return parser.parse_args()


def main():
    args = parse_arguments()
    setup_logging(
        level=parse_log_level(args.log_level or default_config_manager.get_log_level()),
        log_file=args.log_file or default_config_manager.get_log_file(),
    )

    token = args.token or default_config_manager.get_harbor_token()
    if not args.project or not token:
        logger.error("--project and --token are required")
        sys.exit(1)

    try:
        exit_code = run_discovery(
            project=args.project,
            token=token,
            artifacts=args.artifacts,
            page_size=args.page_size,
            out_dir=args.out,
            insecure=args.insecure,
            api_url=args.harbor_api,
            max_workers=args.max_workers,
            skip_health_checks=args.skip_health_checks,
        )
    except KeyboardInterrupt:
        logger.warning("\nDiscovery interrupted by user")
        sys.exit(1)
    except Exception as e:
        log_exception(logger, "Discovery failed", e)
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
