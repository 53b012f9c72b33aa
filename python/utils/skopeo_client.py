"""
Skopeo client for registry-to-registry image copies.

This module wraps ``skopeo copy`` with retries, credential redaction in logs,
and an auth file shared with the ECR login helper.
"""

import logging
import os
import shutil
import subprocess
from typing import List, Optional

from utils.error_utils import create_rate_limit_error
from utils.retry_utils import BackoffPolicy, retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_AUTH_FILE_NAME = ".registry-auth.json"


class SkopeoClient:
    """Copies images between registries with skopeo."""

    def __init__(self, config_manager, auth_file: Optional[str] = None):
        """Initialize SkopeoClient.

        Args:
            config_manager: ConfigManager instance for accessing configuration
            auth_file: Auth file holding destination credentials
                (defaults to <output_dir>/.registry-auth.json)
        """
        self.config_manager = config_manager
        self.copy_all = config_manager.get_copy_all()
        self.auth_file = auth_file or os.path.join(config_manager.get_output_dir(), DEFAULT_AUTH_FILE_NAME)

    @staticmethod
    def is_available() -> bool:
        """True when a skopeo binary is on PATH."""
        return shutil.which("skopeo") is not None

    @staticmethod
    def _redact_command_for_logging(cmd: List[str]) -> List[str]:
        """Return a copy of the command with any credentials redacted."""
        redacted = list(cmd)

        creds_flags = ("--creds", "--src-creds", "--dest-creds")
        token_flags = ("--password", "--src-registry-token", "--dest-registry-token")

        for i, token in enumerate(redacted):
            if token in creds_flags and i + 1 < len(redacted):
                value = redacted[i + 1]
                if isinstance(value, str) and ":" in value:
                    user, _ = value.split(":", 1)
                    redacted[i + 1] = f"{user}:****"
            if token in token_flags and i + 1 < len(redacted):
                redacted[i + 1] = "****"

        return redacted

    def build_copy_command(
        self,
        src_ref: str,
        dest_ref: str,
        src_creds: Optional[str] = None,
        src_tls_verify: bool = True,
        dest_tls_verify: bool = True,
    ) -> List[str]:
        """Assemble the skopeo copy argv; refs get the docker:// transport if missing."""
        cmd = ["skopeo", "copy"]
        if self.copy_all:
            cmd.append("--all")

        cmd.append(f"--src-tls-verify={'true' if src_tls_verify else 'false'}")
        if src_creds:
            cmd.extend(["--src-creds", src_creds])

        cmd.append(f"--dest-tls-verify={'true' if dest_tls_verify else 'false'}")
        if self.auth_file and os.path.exists(self.auth_file):
            cmd.extend(["--dest-authfile", self.auth_file])

        cmd.extend([_with_transport(src_ref), _with_transport(dest_ref)])
        return cmd

    def copy_image(
        self,
        src_ref: str,
        dest_ref: str,
        src_creds: Optional[str] = None,
        src_tls_verify: bool = True,
        dest_tls_verify: bool = True,
    ) -> bool:
        """Copy an image (every platform of an index) from source to destination.

        Args:
            src_ref: Source reference, e.g. "harbor.example.com/proj/app@sha256:..."
            dest_ref: Destination reference, e.g. "1234.dkr.ecr.us-east-1.amazonaws.com/app:v1"
            src_creds: Source credentials in "user:password" format
            src_tls_verify: Whether to verify TLS for the source registry
            dest_tls_verify: Whether to verify TLS for the destination registry

        Returns:
            True if copy succeeded, False otherwise
        """
        timeout = self.config_manager.get_retry_timeout()
        cmd = self.build_copy_command(src_ref, dest_ref, src_creds, src_tls_verify, dest_tls_verify)
        log_cmd = " ".join(self._redact_command_for_logging(cmd))
        logger.debug(f"Running: {log_cmd}")

        @retry_with_backoff(BackoffPolicy.from_config(self.config_manager))
        def skopeo_copy():
            try:
                subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=timeout)
                return True
            except subprocess.CalledProcessError as e:
                error_str = (e.stderr or "").lower()
                if "429" in error_str or "rate limit" in error_str or "too many requests" in error_str:
                    raise create_rate_limit_error("skopeo copy", retry_after=1.0)
                raise

        try:
            return skopeo_copy()
        except subprocess.TimeoutExpired:
            logger.error(f"Skopeo copy timed out after {timeout}s: {log_cmd}")
            return False
        except subprocess.CalledProcessError as e:
            logger.error(f"Skopeo copy failed: {log_cmd}")
            if e.stderr:
                logger.error(f"Error: {e.stderr.strip()}")
            return False
        except OSError as e:
            logger.error(f"Could not run skopeo: {e}")
            return False
        except Exception as e:
            logger.error(f"Skopeo copy failed: {e}")
            return False


def _with_transport(ref: str) -> str:
    if "://" in ref:
        return ref
    return f"docker://{ref}"
