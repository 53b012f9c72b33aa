"""
Harbor v2.0 API client.

Requests are authenticated with a precomputed basic-auth token and ask for
JSON. Failures never raise to the caller: a transport error or a non-2xx
response is logged and returned as ``None``, and callers treat ``None``, an
empty body and the literal ``null`` body alike as "no data".
"""

import json
import logging
from typing import Any, Optional

import requests

from utils.error_utils import create_registry_auth_error, create_registry_connection_error
from utils.retry_utils import BackoffPolicy, retry_operation

logger = logging.getLogger(__name__)

NO_DATA_BODIES = ("", "null")


def is_absolute_url(path_or_url: str) -> bool:
    return path_or_url.startswith("http://") or path_or_url.startswith("https://")


def resolve_url(api_base: str, path_or_url: str) -> str:
    """Join a relative API path to the base, leaving absolute URLs untouched."""
    if is_absolute_url(path_or_url):
        return path_or_url
    return f"{api_base.rstrip('/')}/{path_or_url.lstrip('/')}"


def is_no_data(body: Optional[str]) -> bool:
    return body is None or body.strip() in NO_DATA_BODIES


class HarborClient:
    """Authenticated, synchronous access to a Harbor API base URL."""

    def __init__(
        self,
        api_url: str,
        token: str,
        insecure: bool = False,
        timeout: float = 30,
        max_retries: int = 0,
        session: Optional[requests.Session] = None,
        backoff: Optional[BackoffPolicy] = None,
    ):
        """Initialize HarborClient.

        Args:
            api_url: API base, e.g. "https://harbor.example.com/api/v2.0"
            token: base64 of "user:password", sent as a Basic credential
            insecure: Disable TLS verification (explicit opt-in)
            timeout: Per-request timeout in seconds
            max_retries: Retries for transport errors and 5xx/429 responses
            session: Optional pre-built requests session
            backoff: Delay settings for those retries; overrides max_retries
        """
        self.api_url = api_url
        self.insecure = insecure
        self.timeout = timeout
        self.backoff = backoff or BackoffPolicy(max_retries=max_retries)
        self.max_retries = self.backoff.max_retries
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "authorization": f"Basic {token}",
                "Accept": "application/json",
            }
        )
        self.session.verify = not insecure

        if insecure:
            requests.packages.urllib3.disable_warnings(requests.packages.urllib3.exceptions.InsecureRequestWarning)
            logger.warning(f"TLS verification disabled for {api_url}")

    @classmethod
    def from_config(cls, config_manager, token: str, api_url: Optional[str] = None, insecure: Optional[bool] = None):
        """Build a client from ConfigManager values, with explicit overrides."""
        return cls(
            api_url=api_url or config_manager.get_harbor_api_url(),
            token=token,
            insecure=config_manager.is_insecure() if insecure is None else insecure,
            timeout=config_manager.get_harbor_timeout(),
            backoff=BackoffPolicy.from_config(config_manager, max_retries=config_manager.get_harbor_max_retries()),
        )

    def _get(self, url: str) -> requests.Response:
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        return response

    def call(self, path_or_url: str) -> Optional[str]:
        """GET a path (relative to the API base) or an absolute URL.

        Returns:
            Raw response body, or None on transport failure / non-2xx status
        """
        url = resolve_url(self.api_url, path_or_url)
        logger.debug(f"GET {url}")

        try:
            response = retry_operation(lambda: self._get(url), self.backoff, operation_name=f"GET {url}")
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status in (401, 403):
                logger.error(create_registry_auth_error(self.api_url, e).format_message())
            else:
                logger.warning(f"Harbor API returned {status} for {url}")
            return None
        except requests.exceptions.RequestException as e:
            logger.error(create_registry_connection_error(self.api_url, e).format_message())
            return None

        return response.text

    def get_json(self, path_or_url: str) -> Optional[Any]:
        """GET and decode JSON; empty, "null" and undecodable bodies yield None."""
        body = self.call(path_or_url)
        if is_no_data(body):
            return None
        try:
            return json.loads(body)
        except ValueError as e:
            logger.warning(f"Could not parse JSON from {path_or_url}: {e}")
            return None

    def ping(self) -> bool:
        """True when the API answers GET /ping."""
        body = self.call("ping")
        return body is not None and body.strip().strip('"').lower() == "pong"

    def close(self) -> None:
        self.session.close()
