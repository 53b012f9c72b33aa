"""
Authentication provider implementations for container registries.

This module contains the actual authentication logic for the registry the
migration pushes to: AWS ECR (token exchange piped into skopeo login).
"""

import base64
import logging
import os
import subprocess
from typing import Optional


def parse_ecr_region(registry_url: str) -> str:
    """Extract the region from an ECR registry host.

    ECR hosts look like <account>.dkr.ecr.<region>.amazonaws.com; the region
    is the fourth dot-separated field.

    Raises:
        ValueError: If the host has fewer than four fields
    """
    host = registry_url.split("://", 1)[-1].split("/", 1)[0]
    parts = host.split(".")
    if len(parts) < 4 or not parts[3]:
        raise ValueError(f"Cannot determine AWS region from ECR registry '{registry_url}'")
    return parts[3]


def authenticate_ecr(registry_url: str, auth_file: str, region: Optional[str] = None) -> None:
    """Authenticate with AWS ECR using boto3.

    Uses boto3 to get an ECR authorization token and logs in via skopeo.

    Args:
        registry_url: ECR registry URL (e.g., '123456789.dkr.ecr.us-west-2.amazonaws.com')
        auth_file: Path to skopeo auth file for storing credentials
        region: AWS region (derived from registry_url when omitted)

    Raises:
        subprocess.CalledProcessError: If skopeo login fails
        Exception: For other authentication errors
    """
    try:
        region = region or parse_ecr_region(registry_url)
        logging.info(f"Authenticating with ECR in region: {region}")

        auth_dir = os.path.dirname(auth_file)
        if auth_dir:
            os.makedirs(auth_dir, exist_ok=True)

        # Get ECR login password via boto3 (no aws CLI or shell needed)
        import boto3

        client = boto3.client("ecr", region_name=region)
        response = client.get_authorization_token()
        token_b64 = response["authorizationData"][0]["authorizationToken"]
        token = base64.b64decode(token_b64).decode("utf-8")
        _, password = token.split(":", 1)

        # Run skopeo login with password on stdin (no shell)
        subprocess.run(
            [
                "skopeo",
                "login",
                "--authfile",
                auth_file,
                "--username",
                "AWS",
                "--password-stdin",
                registry_url,
            ],
            input=password,
            capture_output=True,
            text=True,
            check=True,
        )
        logging.info("ECR authentication successful")

    except subprocess.CalledProcessError as e:
        logging.error(f"ECR authentication failed: {e}")
        if e.stderr:
            logging.error(f"  stderr: {e.stderr}")
        raise
    except Exception as e:
        logging.error(f"Unexpected error during ECR authentication: {e}")
        raise
