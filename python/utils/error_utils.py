"""
Errors that tell the operator what to do next.

Every ``ActionableError`` carries a category, a numbered list of things to
try and the context it was raised in. ``str(error)`` is the full report, so
logging the exception is enough to surface the guidance.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(Enum):
    CONNECTION = "connection"
    AUTHENTICATION = "authentication"
    CONFIGURATION = "configuration"
    SCHEMA = "schema"  # malformed or incomplete report rows
    TOOLING = "tooling"  # external commands such as skopeo
    NETWORK = "network"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class ActionableError(Exception):
    """An error with a category, suggested fixes and context"""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        suggestions: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.category = category
        self.suggestions = list(suggestions or [])
        self.details = dict(details or {})
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Render the message followed by the suggestions and the context."""
        sections = [self.message]
        if self.suggestions:
            sections.append(
                "What to try:\n" + "\n".join(f"   {n}. {text}" for n, text in enumerate(self.suggestions, 1))
            )
        if self.details:
            sections.append("Context:\n" + "\n".join(f"   {key}: {value}" for key, value in self.details.items()))
        return "\n\n".join(sections)


class MissingTagsError(ActionableError):
    """Raised when an artifact selected for migration carries no tag.

    Destination references are named <ecr>/<repository>:<tag>, so an untagged
    digest has no address in the destination registry.
    """


def _failure_details(registry_url: str, error: Exception) -> Dict[str, Any]:
    return {"registry_url": registry_url, "cause": f"{type(error).__name__}: {error}"}


def create_registry_connection_error(registry_url: str, error: Exception) -> ActionableError:
    """Harbor (or ECR) could not be reached at all."""
    cause = str(error).lower()
    suggestions = [
        f"Check that {registry_url} is the right address (--harbor-api or harbor.api_url)",
        "Check that this machine can reach the registry (proxy, VPN, security groups)",
        "Check that the registry is up, e.g. by opening <api>/ping in a browser",
    ]

    if "timeout" in cause or "timed out" in cause:
        suggestions.insert(0, "The registry is slow to answer; raise harbor.timeout in config.yaml")
    if "name resolution" in cause or "dns" in cause or "resolve" in cause:
        suggestions.insert(0, "The hostname does not resolve; check DNS or /etc/hosts")
    if "certificate" in cause or "ssl" in cause:
        suggestions.insert(
            0, "TLS verification failed; install the registry CA or pass --insecure if the path is trusted"
        )

    return ActionableError(
        message=f"Cannot reach registry at {registry_url}",
        category=ErrorCategory.CONNECTION,
        suggestions=suggestions,
        details=_failure_details(registry_url, error),
    )


def create_registry_auth_error(registry_url: str, error: Exception) -> ActionableError:
    """Credentials were rejected by Harbor or the ECR login failed."""
    if "amazonaws.com" in registry_url:
        suggestions = [
            "Check that AWS credentials are available (AWS_PROFILE, environment or instance role)",
            "Check the IAM policy allows ecr:GetAuthorizationToken and pushes to the target repositories",
            "Check that the region in the registry host is the one the repositories live in",
        ]
    else:
        suggestions = [
            "For discovery, --token must be base64 of 'user:password'",
            "For migration, check --harbor-user/--harbor-pass (or HARBOR_USER/HARBOR_PASS)",
            "Make sure the account, ideally a robot account, can read the project",
        ]

    return ActionableError(
        message=f"Authentication with {registry_url} failed",
        category=ErrorCategory.AUTHENTICATION,
        suggestions=suggestions,
        details=_failure_details(registry_url, error),
    )


def create_config_error(field: str, value: Any, reason: str) -> ActionableError:
    """A command-line or config.yaml value cannot be used."""
    name = field.lower()
    if "ecr" in name:
        hint = "ECR registries look like <account>.dkr.ecr.<region>.amazonaws.com"
    elif "url" in name or "api" in name:
        hint = "Harbor API URLs look like https://<host>/api/v2.0"
    elif "timeout" in name or "delay" in name:
        hint = "Durations are positive numbers of seconds"
    else:
        hint = "See config-example.yaml for accepted values"

    return ActionableError(
        message=f"Invalid value for '{field}': {reason}",
        category=ErrorCategory.CONFIGURATION,
        suggestions=[hint, f"Fix '{field}' on the command line or in config.yaml"],
        details={"field": field, "value": value},
    )


def create_missing_tool_error(tool: str) -> ActionableError:
    return ActionableError(
        message=f"'{tool}' is not installed or not on PATH",
        category=ErrorCategory.TOOLING,
        suggestions=[
            f"Install {tool} with the system package manager (apt, dnf or brew)",
            "Run the migration from the same shell and user that has it on PATH",
            "Use --dry-run to plan the migration without copying",
        ],
        details={"tool": tool},
    )


def create_missing_tags_error(source_ref: str) -> MissingTagsError:
    """Raised for an untagged artifact when migration plans its copies."""
    return MissingTagsError(
        message=f"TAG Not Found for {source_ref}",
        category=ErrorCategory.SCHEMA,
        suggestions=[
            "Re-run discovery to refresh the CSV report",
            "Remove untagged rows from the CSV",
            "Use --skip-untagged to record the row as failed and continue",
        ],
        details={"source": source_ref},
    )


def create_rate_limit_error(operation: str, retry_after: Optional[float] = None) -> ActionableError:
    """The registry throttled us; the retry layer treats this as temporary."""
    suggestions = ["Lower --max-workers for discovery", "Raise retry.initial_delay in config.yaml"]
    if retry_after:
        suggestions.insert(0, f"Wait at least {retry_after:.1f}s before the next attempt")

    return ActionableError(
        message=f"Rate limit exceeded for operation: {operation}",
        category=ErrorCategory.NETWORK,
        suggestions=suggestions,
        details={"operation": operation, "retry_after": retry_after},
    )
