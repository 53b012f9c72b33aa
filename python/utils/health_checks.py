"""
Pre-flight checks run before discovery or migration starts.

Discovery needs a valid configuration and a Harbor API that answers /ping.
Migration needs a valid configuration, skopeo on PATH and a well formed ECR
registry. A failing required check stops the run before any work is done.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from tabulate import tabulate

from utils.config_manager import ConfigValidationError
from utils.error_utils import ActionableError, create_missing_tool_error, create_registry_connection_error
from utils.logging_utils import get_logger
from utils.skopeo_client import SkopeoClient

logger = get_logger(__name__)

REQUIRED_CHECKS = {
    "discover": ["configuration", "harbor_connectivity"],
    "migrate": ["configuration", "skopeo_available", "ecr_registry"],
}


@dataclass
class HealthCheckResult:
    name: str
    status: bool  # True if healthy
    message: str
    details: Optional[Dict] = None

    @classmethod
    def passed(cls, name: str, message: str, **details) -> "HealthCheckResult":
        return cls(name=name, status=True, message=message, details=details or None)

    @classmethod
    def failed(cls, name: str, message: str, **details) -> "HealthCheckResult":
        return cls(name=name, status=False, message=message, details=details or None)

    @classmethod
    def from_error(cls, name: str, error: ActionableError, **details) -> "HealthCheckResult":
        return cls.failed(name, error.message, suggestions=error.suggestions, **details)


class HealthChecker:
    """Runs the checks for one run mode against a ConfigManager."""

    def __init__(self, config_manager, harbor_client=None):
        self.config_manager = config_manager
        self.harbor_client = harbor_client
        self.logger = get_logger(self.__class__.__name__)

    def check_configuration(self) -> HealthCheckResult:
        try:
            self.config_manager.validate_config()
        except ConfigValidationError as e:
            return HealthCheckResult.failed("configuration", f"Configuration is invalid: {e}")
        return HealthCheckResult.passed(
            "configuration",
            "Configuration is valid",
            harbor_api=self.config_manager.get_harbor_api_url(),
            output_dir=self.config_manager.get_output_dir(),
        )

    def check_harbor_connectivity(self) -> HealthCheckResult:
        """Harbor answers GET /ping with Pong."""
        if self.harbor_client is None:
            return HealthCheckResult.failed("harbor_connectivity", "No Harbor client configured")

        api_url = self.harbor_client.api_url
        self.logger.info(f"Checking Harbor connectivity at {api_url}")
        if self.harbor_client.ping():
            return HealthCheckResult.passed(
                "harbor_connectivity", f"Successfully connected to Harbor at {api_url}", api_url=api_url
            )
        error = create_registry_connection_error(api_url, ConnectionError("ping did not return Pong"))
        return HealthCheckResult.from_error("harbor_connectivity", error, api_url=api_url)

    def check_skopeo_available(self) -> HealthCheckResult:
        if SkopeoClient.is_available():
            return HealthCheckResult.passed("skopeo_available", "skopeo found in PATH")
        return HealthCheckResult.from_error("skopeo_available", create_missing_tool_error("skopeo"))

    def check_ecr_registry(self, ecr_registry: Optional[str] = None) -> HealthCheckResult:
        """The destination looks like <account>.dkr.ecr.<region>.amazonaws.com[/namespace]."""
        registry = ecr_registry or self.config_manager.get_ecr_registry()
        if not registry:
            return HealthCheckResult.failed("ecr_registry", "ECR registry is not configured")
        if not self.config_manager._is_valid_ecr_registry(registry):
            return HealthCheckResult.failed(
                "ecr_registry", f"'{registry}' does not look like an ECR registry", registry=registry
            )
        return HealthCheckResult.passed("ecr_registry", f"ECR registry {registry} is well formed", registry=registry)

    def run_all_checks(self, mode: str, ecr_registry: Optional[str] = None) -> List[HealthCheckResult]:
        """Run the checks for ``mode`` ("discover" or "migrate")."""
        checks = {
            "configuration": self.check_configuration,
            "harbor_connectivity": self.check_harbor_connectivity,
            "skopeo_available": self.check_skopeo_available,
            "ecr_registry": lambda: self.check_ecr_registry(ecr_registry),
        }
        return [checks[name]() for name in REQUIRED_CHECKS.get(mode, ["configuration"])]

    def required_checks_passed(self, mode: str, results: List[HealthCheckResult]) -> bool:
        required = REQUIRED_CHECKS.get(mode, [])
        return all(r.status for r in results if r.name in required)

    def print_health_report(self, results: List[HealthCheckResult]) -> bool:
        """Print a table of results followed by the details of failures.

        Returns:
            True if every check passed
        """
        rows = [
            [r.name.replace("_", " ").upper(), "HEALTHY" if r.status else "UNHEALTHY", r.message] for r in results
        ]
        print("\nHealth Check Report")
        print(tabulate(rows, headers=["Check", "Status", "Message"], tablefmt="simple"))

        for result in results:
            if result.status or not result.details:
                continue
            print(f"\n{result.name}:")
            for key, value in result.details.items():
                if key == "suggestions":
                    for n, suggestion in enumerate(value, 1):
                        print(f"   {n}. {suggestion}")
                else:
                    print(f"   {key}: {value}")

        all_healthy = all(r.status for r in results)
        print("\nAll health checks passed\n" if all_healthy else "\nSome health checks failed - see above\n")
        return all_healthy
