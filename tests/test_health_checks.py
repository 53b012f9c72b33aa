"""Unit tests for utils/health_checks.py"""

import os
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

_python_dir = Path(__file__).parent.parent / "python"
if str(_python_dir.absolute()) not in sys.path:
    sys.path.insert(0, str(_python_dir.absolute()))

# Set SKIP_CONFIG_VALIDATION before importing to avoid validation errors
os.environ["SKIP_CONFIG_VALIDATION"] = "true"

ECR = "1234567890.dkr.ecr.ap-south-1.amazonaws.com"


def make_config():
    from utils.config_manager import ConfigManager

    return ConfigManager(config_file="/nonexistent/config.yaml", validate=False)


class TestHealthCheckResult:
    """Tests for HealthCheckResult dataclass"""

    def test_health_check_result_creation(self):
        """Test creating a HealthCheckResult"""
        from utils.health_checks import HealthCheckResult

        result = HealthCheckResult(
            name="test_check",
            status=True,
            message="Test passed",
            details={"key": "value"},
        )

        assert result.name == "test_check"
        assert result.status is True
        assert result.details == {"key": "value"}

    def test_health_check_result_without_details(self):
        from utils.health_checks import HealthCheckResult

        result = HealthCheckResult(name="test_check", status=False, message="Test failed")

        assert result.details is None


class TestCheckConfiguration:
    def test_valid_configuration(self):
        from utils.health_checks import HealthChecker

        result = HealthChecker(make_config()).check_configuration()

        assert result.name == "configuration"
        assert result.status is True
        assert result.details["harbor_api"] == "https://registry.mydbops.com/api/v2.0"

    def test_invalid_configuration(self):
        from utils.config_manager import ConfigValidationError
        from utils.health_checks import HealthChecker

        mock_cm = MagicMock()
        mock_cm.validate_config.side_effect = ConfigValidationError("page_size must be positive")

        result = HealthChecker(mock_cm).check_configuration()

        assert result.status is False
        assert "page_size must be positive" in result.message


class TestCheckHarborConnectivity:
    """Tests for HealthChecker Harbor connectivity checks"""

    def test_pong(self):
        from utils.health_checks import HealthChecker

        client = MagicMock(api_url="https://harbor.example.com/api/v2.0")
        client.ping.return_value = True

        result = HealthChecker(make_config(), harbor_client=client).check_harbor_connectivity()

        assert result.name == "harbor_connectivity"
        assert result.status is True
        assert "Successfully connected" in result.message

    def test_no_pong(self):
        from utils.health_checks import HealthChecker

        client = MagicMock(api_url="https://harbor.example.com/api/v2.0")
        client.ping.return_value = False

        result = HealthChecker(make_config(), harbor_client=client).check_harbor_connectivity()

        assert result.status is False
        assert "harbor.example.com" in result.message
        assert result.details["suggestions"]

    def test_without_client(self):
        from utils.health_checks import HealthChecker

        result = HealthChecker(make_config()).check_harbor_connectivity()

        assert result.status is False


class TestCheckSkopeoAvailable:
    def test_available(self):
        from utils.health_checks import HealthChecker

        with patch("utils.health_checks.SkopeoClient.is_available", return_value=True):
            result = HealthChecker(make_config()).check_skopeo_available()

        assert result.status is True

    def test_missing(self):
        from utils.health_checks import HealthChecker

        with patch("utils.health_checks.SkopeoClient.is_available", return_value=False):
            result = HealthChecker(make_config()).check_skopeo_available()

        assert result.status is False
        assert "skopeo" in result.message


class TestCheckEcrRegistry:
    def test_well_formed(self):
        from utils.health_checks import HealthChecker

        result = HealthChecker(make_config()).check_ecr_registry(ECR)

        assert result.status is True
        assert result.details == {"registry": ECR}

    def test_not_configured(self):
        from utils.health_checks import HealthChecker

        result = HealthChecker(make_config()).check_ecr_registry()

        assert result.status is False
        assert "not configured" in result.message

    def test_malformed(self):
        from utils.health_checks import HealthChecker

        result = HealthChecker(make_config()).check_ecr_registry("registry.example.com")

        assert result.status is False


class TestRunAllChecks:
    def test_discover_checks(self):
        from utils.health_checks import HealthChecker

        client = MagicMock(api_url="https://harbor.example.com/api/v2.0")
        client.ping.return_value = True
        checker = HealthChecker(make_config(), harbor_client=client)

        results = checker.run_all_checks("discover")

        assert [r.name for r in results] == ["configuration", "harbor_connectivity"]
        assert checker.required_checks_passed("discover", results) is True

    def test_migrate_checks(self):
        from utils.health_checks import HealthChecker

        checker = HealthChecker(make_config())
        with patch("utils.health_checks.SkopeoClient.is_available", return_value=False):
            results = checker.run_all_checks("migrate", ecr_registry=ECR)

        assert [r.name for r in results] == ["configuration", "skopeo_available", "ecr_registry"]
        assert checker.required_checks_passed("migrate", results) is False

    def test_print_health_report(self, capsys):
        from utils.health_checks import HealthChecker, HealthCheckResult

        results = [
            HealthCheckResult(name="configuration", status=True, message="ok"),
            HealthCheckResult(name="skopeo_available", status=False, message="skopeo is not installed"),
        ]

        all_healthy = HealthChecker(make_config()).print_health_report(results)

        out = capsys.readouterr().out
        assert all_healthy is False
        assert "SKOPEO AVAILABLE" in out
        assert "UNHEALTHY" in out
        assert "Some health checks failed" in out

    def test_failure_suggestions_printed(self, capsys):
        from utils.error_utils import create_missing_tool_error
        from utils.health_checks import HealthChecker, HealthCheckResult

        results = [HealthCheckResult.from_error("skopeo_available", create_missing_tool_error("skopeo"))]

        HealthChecker(make_config()).print_health_report(results)

        assert "   1. Install skopeo" in capsys.readouterr().out
