"""Exponential backoff for Harbor API calls and skopeo copies.

A ``BackoffPolicy`` carries the retry settings from config.yaml; the
decorator and the plain-function form both re-raise the last error once the
policy gives up, so callers keep their own error handling.
"""

import logging
import random
import subprocess
import time
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Callable, Iterable, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


# Substrings of transport failures as reported by requests and skopeo
TRANSIENT_MARKERS = (
    "connection",
    "timeout",
    "timed out",
    "network",
    "dns",
    "resolve",
    "refused",
    "unreachable",
    "reset",
    "broken pipe",
    "no route to host",
    "temporary failure",
    "eof",
)
DENIED_MARKERS = ("401", "403", "unauthorized", "forbidden", "denied")
MISSING_MARKERS = ("404", "not found", "manifest unknown", "name unknown")
THROTTLED_MARKERS = ("429", "rate limit", "too many requests", "toomanyrequests")
SERVER_ERROR_CODES = ("500", "502", "503", "504")


class RetryableErrorType(Enum):
    NETWORK = "network"  # transport failures
    TEMPORARY = "temporary"  # 5xx, throttling, unexplained subprocess exits
    PERMANENT = "permanent"  # auth failures, missing images, other 4xx


@dataclass(frozen=True)
class BackoffPolicy:
    """How often and how patiently to retry."""

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True

    @classmethod
    def from_config(cls, config_manager, max_retries: Optional[int] = None) -> "BackoffPolicy":
        """Read the retry section of config.yaml; max_retries may be overridden per client."""
        return cls(
            max_retries=config_manager.get_max_retries() if max_retries is None else max_retries,
            initial_delay=config_manager.get_retry_initial_delay(),
            max_delay=config_manager.get_retry_max_delay(),
            exponential_base=config_manager.get_retry_exponential_base(),
            jitter=config_manager.get_retry_jitter(),
        )

    @property
    def attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given zero-based failed attempt."""
        delay = min(self.initial_delay * (self.exponential_base**attempt), self.max_delay)
        if self.jitter:
            spread = delay * 0.1
            delay = max(0.1, delay + random.uniform(-spread, spread))
        return delay


def _contains_any(text: str, markers: Iterable[str]) -> bool:
    return any(marker in text for marker in markers)


def _error_text(error: Exception) -> str:
    """What the error says, without a subprocess's argv.

    ``str()`` of a CalledProcessError or TimeoutExpired embeds the full
    command line, which holds ``--src-creds user:password`` and image digests.
    """
    if isinstance(error, subprocess.SubprocessError):
        stderr = getattr(error, "stderr", None) or ""
        if isinstance(stderr, bytes):
            stderr = stderr.decode(errors="replace")
        if isinstance(error, subprocess.TimeoutExpired):
            return f"command timed out after {error.timeout}s {stderr.strip()}".strip()
        returncode = getattr(error, "returncode", None)
        return stderr.strip() or f"command exited with status {returncode}"
    return str(error)


def is_retryable_error(error: Exception, error_message: str = "") -> Tuple[bool, RetryableErrorType]:
    """Classify an error as worth retrying or not.

    Args:
        error: The exception raised by the operation
        error_message: Extra text to inspect, typically skopeo's stderr

    Returns:
        (retryable, error_type)
    """
    text = f"{_error_text(error)} {error_message}".lower()

    if _contains_any(text, DENIED_MARKERS) or _contains_any(text, MISSING_MARKERS):
        return False, RetryableErrorType.PERMANENT
    if _contains_any(text, THROTTLED_MARKERS) or _contains_any(text, SERVER_ERROR_CODES):
        return True, RetryableErrorType.TEMPORARY
    if _contains_any(text, TRANSIENT_MARKERS):
        return True, RetryableErrorType.NETWORK

    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    if isinstance(status, int) and 400 <= status < 500:
        return False, RetryableErrorType.PERMANENT

    return True, RetryableErrorType.TEMPORARY


def retry_operation(
    operation: Callable[[], T],
    policy: Optional[BackoffPolicy] = None,
    operation_name: str = "operation",
    retry_on: Iterable[RetryableErrorType] = (RetryableErrorType.NETWORK, RetryableErrorType.TEMPORARY),
) -> T:
    """Call ``operation`` until it succeeds or the policy is exhausted.

    Non-retryable errors are raised at once; otherwise the last error is
    raised after ``policy.attempts`` calls.
    """
    policy = policy or BackoffPolicy()
    retry_on = tuple(retry_on)

    for attempt in range(policy.attempts):
        try:
            result = operation()
        except Exception as e:
            retryable, error_type = is_retryable_error(e)
            reason = _error_text(e)
            if not retryable or error_type not in retry_on:
                logger.debug(f"{operation_name} failed with {error_type.value} error: {reason}")
                raise
            if attempt + 1 >= policy.attempts:
                if policy.max_retries:
                    logger.error(f"{operation_name} gave up after {policy.attempts} attempts: {reason}")
                raise

            delay = policy.delay_for(attempt)
            logger.warning(
                f"{operation_name} failed ({error_type.value}), attempt {attempt + 1}/{policy.attempts}; "
                f"retrying in {delay:.2f}s: {reason}"
            )
            time.sleep(delay)
        else:
            if attempt:
                logger.info(f"{operation_name} succeeded on attempt {attempt + 1}")
            return result


def retry_with_backoff(policy: Optional[BackoffPolicy] = None, **retry_kwargs) -> Callable:
    """Decorator form of :func:`retry_operation`."""

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            return retry_operation(
                lambda: func(*args, **kwargs), policy, operation_name=func.__name__, **retry_kwargs
            )

        return wrapper

    return decorator
