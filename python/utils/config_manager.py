#!/usr/bin/env python3
"""
Configuration Manager for Harbor discovery and ECR migration

This module handles loading and managing configuration from config.yaml
and environment variables. Command-line flags take precedence over both;
scripts pass them in explicitly.
"""

import logging
import os
import re
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

ON_MISSING_TAGS_CHOICES = ("abort", "skip")
HARBOR_MAX_PAGE_SIZE = 100


class ConfigValidationError(Exception):
    """Raised when configuration validation fails"""


class ConfigManager:
    """Manages configuration for the Harbor discovery and migration tooling"""

    def __init__(self, config_file: str = None, validate: bool = True):
        """Initialize ConfigManager

        Args:
            config_file: Path to configuration YAML file (defaults to config.yaml or CONFIG_FILE env var)
            validate: If True, validate configuration on initialization
        """
        if config_file is None:
            config_file = os.environ.get("CONFIG_FILE", "config.yaml")
        self.config_file = config_file
        self.config = self._load_config()

        if validate:
            self.validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file with defaults"""
        default_config = {
            "harbor": {
                "host": "registry.mydbops.com",
                "api_url": "",  # empty -> https://<host>/api/v2.0
                "page_size": 100,
                "artifacts_per_repo": 5,
                "insecure": False,
                "timeout": 30,
                "max_retries": 0,
            },
            "discovery": {"output_dir": "./harbor-reports", "max_workers": 1},
            "ecr": {"registry": "", "login": True},
            "migration": {
                "on_missing_tags": "abort",
                "copy_all": True,  # skopeo copy --all keeps manifest lists intact
                "report": "migration-report.json",
            },
            "retry": {
                "max_retries": 3,
                "initial_delay": 1.0,
                "max_delay": 60.0,
                "exponential_base": 2.0,
                "jitter": True,
                "timeout": 1800,  # Timeout for skopeo subprocess calls in seconds
            },
            "logging": {"level": "INFO", "file": ""},
        }

        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r") as f:
                    user_config = yaml.safe_load(f) or {}
                return self._merge_config(default_config, user_config)
            else:
                logger.warning(f"Config file {self.config_file} not found, using defaults")
                return default_config
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Error loading config file: {e}")
            return default_config

    def _merge_config(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge user config with defaults"""
        result = default.copy()
        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result

    def _section(self, name: str) -> Dict[str, Any]:
        return self.config.get(name) or {}

    def _get_int(self, section: str, key: str, default: int) -> int:
        value = self._section(section).get(key, default)
        try:
            return int(value)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"{section}.{key} must be an integer, got: {value} (type: {type(value).__name__})"
            )

    def _get_float(self, section: str, key: str, default: float) -> float:
        value = self._section(section).get(key, default)
        try:
            return float(value)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"{section}.{key} must be a number, got: {value} (type: {type(value).__name__})"
            )

    # Harbor configuration
    def get_harbor_host(self) -> str:
        """Get the Harbor registry host used in image references"""
        return os.environ.get("HARBOR_HOST") or self._section("harbor").get("host", "")

    def get_harbor_api_url(self) -> str:
        """Get the Harbor API base URL; derived from the host when not set"""
        api_url = os.environ.get("HARBOR_API") or self._section("harbor").get("api_url")
        if api_url:
            return api_url
        return f"https://{self.get_harbor_host()}/api/v2.0"

    def get_harbor_token(self) -> Optional[str]:
        """Get the base64 basic-auth token for the Harbor API"""
        return os.environ.get("HARBOR_TOKEN") or None

    def get_harbor_user(self) -> Optional[str]:
        return os.environ.get("HARBOR_USER") or None

    def get_harbor_password(self) -> Optional[str]:
        return os.environ.get("HARBOR_PASS") or None

    def get_page_size(self) -> int:
        return self._get_int("harbor", "page_size", 100)

    def get_artifacts_per_repo(self) -> int:
        return self._get_int("harbor", "artifacts_per_repo", 5)

    def is_insecure(self) -> bool:
        """Whether TLS verification is disabled for Harbor (explicit opt-in)"""
        return bool(self._section("harbor").get("insecure", False))

    def get_harbor_timeout(self) -> float:
        return self._get_float("harbor", "timeout", 30)

    def get_harbor_max_retries(self) -> int:
        return self._get_int("harbor", "max_retries", 0)

    # Discovery configuration
    def get_output_dir(self) -> str:
        """Get output directory from environment or config"""
        return os.environ.get("OUTPUT_DIR") or self._section("discovery").get("output_dir", "./harbor-reports")

    def get_max_workers(self) -> int:
        return self._get_int("discovery", "max_workers", 1)

    # ECR configuration
    def get_ecr_registry(self) -> str:
        return os.environ.get("ECR_REGISTRY") or self._section("ecr").get("registry", "")

    def is_ecr_login_enabled(self) -> bool:
        return bool(self._section("ecr").get("login", True))

    # Migration configuration
    def get_on_missing_tags(self) -> str:
        return str(self._section("migration").get("on_missing_tags", "abort")).lower()

    def get_copy_all(self) -> bool:
        return bool(self._section("migration").get("copy_all", True))

    def get_migration_report_path(self) -> str:
        """Get migration report path, resolved under output_dir when it is a bare filename"""
        path = self._section("migration").get("report", "migration-report.json")
        if os.path.isabs(path) or os.path.basename(path) != path:
            return path
        return os.path.join(self.get_output_dir(), path)

    # Retry configuration
    def get_max_retries(self) -> int:
        return self._get_int("retry", "max_retries", 3)

    def get_retry_initial_delay(self) -> float:
        return self._get_float("retry", "initial_delay", 1.0)

    def get_retry_max_delay(self) -> float:
        return self._get_float("retry", "max_delay", 60.0)

    def get_retry_exponential_base(self) -> float:
        return self._get_float("retry", "exponential_base", 2.0)

    def get_retry_jitter(self) -> bool:
        return bool(self._section("retry").get("jitter", True))

    def get_retry_timeout(self) -> int:
        """Get timeout for subprocess calls from config, with type coercion"""
        return self._get_int("retry", "timeout", 1800)

    # Logging configuration
    def get_log_level(self) -> str:
        return str(self._section("logging").get("level", "INFO"))

    def get_log_file(self) -> Optional[str]:
        return self._section("logging").get("file") or None

    def validate_config(self) -> None:
        """Validate configuration values

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        errors = []
        warnings = []

        try:
            api_url = self.get_harbor_api_url()
            if not self._is_valid_api_url(api_url):
                errors.append(f"Harbor API URL '{api_url}' is invalid (expected http(s)://host[:port]/path)")

            page_size = self.get_page_size()
            if page_size < 1:
                errors.append(f"harbor.page_size must be a positive integer, got: {page_size}")
            elif page_size > HARBOR_MAX_PAGE_SIZE:
                warnings.append(
                    f"harbor.page_size ({page_size}) exceeds Harbor's maximum of {HARBOR_MAX_PAGE_SIZE}; "
                    "the server may clamp it"
                )

            artifacts = self.get_artifacts_per_repo()
            if artifacts < 1:
                errors.append(f"harbor.artifacts_per_repo must be a positive integer, got: {artifacts}")

            if self.get_harbor_timeout() <= 0:
                errors.append("harbor.timeout must be a positive number of seconds")

            if self.get_harbor_max_retries() < 0:
                errors.append("harbor.max_retries must be a non-negative integer")

            if self.is_insecure():
                warnings.append("harbor.insecure is enabled; TLS certificates will not be verified")

            output_dir = self.get_output_dir()
            if not output_dir or not str(output_dir).strip():
                errors.append("discovery.output_dir is required and cannot be empty")

            max_workers = self.get_max_workers()
            if max_workers < 1:
                errors.append(f"discovery.max_workers must be a positive integer, got: {max_workers}")
            elif max_workers > 32:
                warnings.append(f"discovery.max_workers is very high ({max_workers}), Harbor may rate limit")

            ecr_registry = self.get_ecr_registry()
            if ecr_registry and not self._is_valid_ecr_registry(ecr_registry):
                errors.append(
                    f"ECR registry '{ecr_registry}' is invalid "
                    "(expected <account>.dkr.ecr.<region>.amazonaws.com)"
                )

            on_missing_tags = self.get_on_missing_tags()
            if on_missing_tags not in ON_MISSING_TAGS_CHOICES:
                errors.append(
                    f"migration.on_missing_tags must be one of {', '.join(ON_MISSING_TAGS_CHOICES)}, "
                    f"got: {on_missing_tags}"
                )

            max_retries = self.get_max_retries()
            if max_retries < 0:
                errors.append(f"retry.max_retries must be a non-negative integer, got: {max_retries}")
            elif max_retries > 10:
                warnings.append(f"max_retries is very high ({max_retries}), operations may take a long time")

            initial_delay = self.get_retry_initial_delay()
            max_delay = self.get_retry_max_delay()
            if initial_delay < 0:
                errors.append(f"retry.initial_delay must be a non-negative number, got: {initial_delay}")
            if max_delay < 0:
                errors.append(f"retry.max_delay must be a non-negative number, got: {max_delay}")
            elif max_delay < initial_delay:
                errors.append(f"retry.max_delay ({max_delay}) must be >= retry.initial_delay ({initial_delay})")

            if self.get_retry_exponential_base() < 1.0:
                errors.append(f"retry.exponential_base must be >= 1.0, got: {self.get_retry_exponential_base()}")

            if self.get_retry_timeout() < 1:
                errors.append(f"retry.timeout must be a positive integer (seconds), got: {self.get_retry_timeout()}")
        except ConfigValidationError as e:
            errors.append(str(e))

        for warning in warnings:
            logger.warning(f"Configuration warning: {warning}")

        if errors:
            error_msg = "Configuration validation failed:\n  " + "\n  ".join(errors)
            logger.error(error_msg)
            raise ConfigValidationError(error_msg)

    def _is_valid_api_url(self, url: str) -> bool:
        """Validate Harbor API URL format"""
        if not url:
            return False
        pattern = r"^https?://[a-zA-Z0-9]([a-zA-Z0-9\-\.]*[a-zA-Z0-9])?(:[0-9]{1,5})?(/.*)?$"
        return bool(re.match(pattern, url))

    def _is_valid_ecr_registry(self, registry: str) -> bool:
        """Validate ECR registry prefix: <account>.dkr.ecr.<region>.amazonaws.com[/namespace]"""
        host = registry.split("/", 1)[0]
        pattern = r"^[0-9]+\.dkr\.ecr\.[a-z0-9\-]+\.amazonaws\.com(\.cn)?$"
        return bool(re.match(pattern, host))


# Global config manager instance
# Validation can be disabled by setting SKIP_CONFIG_VALIDATION=true environment variable
config_manager = ConfigManager(
    validate=os.environ.get("SKIP_CONFIG_VALIDATION", "").lower() not in ("true", "1", "yes")
)
