"""Unit tests for utils/skopeo_client.py"""

import os
import subprocess
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

_python_dir = Path(__file__).parent.parent / "python"
if str(_python_dir.absolute()) not in sys.path:
    sys.path.insert(0, str(_python_dir.absolute()))

from utils.skopeo_client import SkopeoClient

SRC = "registry.example.com/onboarding/nagios@sha256:abc"
DEST = "1234567890.dkr.ecr.ap-south-1.amazonaws.com/nagios:v1"


def fail_with(make_error):
    """subprocess.run stand-in raising an error built from the real argv."""

    def run(cmd, **kwargs):
        raise make_error(cmd)

    return run


@pytest.fixture(autouse=True)
def patch_environment():
    """Patch environment for all tests"""
    with patch.dict(os.environ, {"SKIP_CONFIG_VALIDATION": "true"}):
        yield


@pytest.fixture
def mock_config(tmp_path):
    config = MagicMock()
    config.get_output_dir.return_value = str(tmp_path)
    config.get_copy_all.return_value = True
    config.get_max_retries.return_value = 0
    config.get_retry_initial_delay.return_value = 0.1
    config.get_retry_max_delay.return_value = 1.0
    config.get_retry_exponential_base.return_value = 2.0
    config.get_retry_jitter.return_value = False
    config.get_retry_timeout.return_value = 300
    return config


@pytest.fixture
def skopeo_client(mock_config):
    return SkopeoClient(mock_config)


class TestSkopeoClientInit:
    def test_default_auth_file_under_output_dir(self, skopeo_client, tmp_path):
        assert skopeo_client.auth_file == os.path.join(str(tmp_path), ".registry-auth.json")

    def test_explicit_auth_file(self, mock_config):
        client = SkopeoClient(mock_config, auth_file="/tmp/auth.json")
        assert client.auth_file == "/tmp/auth.json"


class TestIsAvailable:
    def test_found(self):
        with patch("utils.skopeo_client.shutil.which", return_value="/usr/bin/skopeo"):
            assert SkopeoClient.is_available() is True

    def test_missing(self):
        with patch("utils.skopeo_client.shutil.which", return_value=None):
            assert SkopeoClient.is_available() is False


class TestCopyImage:
    """Tests for SkopeoClient.copy_image method"""

    def test_copy_image_success(self, skopeo_client):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0)
            result = skopeo_client.copy_image(SRC, DEST, src_creds="robot:secret")

        assert result is True
        mock_run.assert_called_once()
        cmd = mock_run.call_args[0][0]
        assert cmd[:3] == ["skopeo", "copy", "--all"]
        assert cmd[-2:] == [f"docker://{SRC}", f"docker://{DEST}"]
        idx = cmd.index("--src-creds")
        assert cmd[idx + 1] == "robot:secret"
        assert "--src-tls-verify=true" in cmd
        assert "--dest-tls-verify=true" in cmd
        assert mock_run.call_args.kwargs["timeout"] == 300

    def test_copy_all_disabled(self, mock_config):
        mock_config.get_copy_all.return_value = False
        client = SkopeoClient(mock_config)
        cmd = client.build_copy_command(SRC, DEST)
        assert "--all" not in cmd

    def test_dest_authfile_used_when_present(self, skopeo_client):
        Path(skopeo_client.auth_file).write_text("{}")
        cmd = skopeo_client.build_copy_command(SRC, DEST)
        idx = cmd.index("--dest-authfile")
        assert cmd[idx + 1] == skopeo_client.auth_file

    def test_dest_authfile_omitted_when_missing(self, skopeo_client):
        cmd = skopeo_client.build_copy_command(SRC, DEST)
        assert "--dest-authfile" not in cmd

    def test_transport_prefix_not_duplicated(self, skopeo_client):
        cmd = skopeo_client.build_copy_command(f"docker://{SRC}", DEST)
        assert cmd[-2] == f"docker://{SRC}"

    def test_insecure_source(self, skopeo_client):
        cmd = skopeo_client.build_copy_command(SRC, DEST, src_tls_verify=False)
        assert "--src-tls-verify=false" in cmd

    def test_copy_image_failure(self, skopeo_client):
        with patch("subprocess.run") as mock_run:
            mock_run.side_effect = subprocess.CalledProcessError(1, "skopeo", stderr="manifest unknown")
            assert skopeo_client.copy_image(SRC, DEST) is False

    def test_copy_image_timeout(self, skopeo_client):
        with patch("subprocess.run") as mock_run:
            mock_run.side_effect = subprocess.TimeoutExpired("skopeo", 300)
            assert skopeo_client.copy_image(SRC, DEST) is False

    def test_copy_image_missing_binary(self, skopeo_client):
        with patch("subprocess.run", side_effect=FileNotFoundError("skopeo")):
            assert skopeo_client.copy_image(SRC, DEST) is False

    def test_retries_transient_failure(self, mock_config):
        mock_config.get_max_retries.return_value = 2
        client = SkopeoClient(mock_config)
        with patch("subprocess.run") as mock_run, patch("utils.retry_utils.time.sleep"):
            mock_run.side_effect = [
                subprocess.CalledProcessError(1, "skopeo", stderr="connection reset by peer"),
                MagicMock(returncode=0),
            ]
            assert client.copy_image(SRC, DEST) is True
        assert mock_run.call_count == 2

    def test_rate_limit_retried(self, mock_config):
        mock_config.get_max_retries.return_value = 1
        client = SkopeoClient(mock_config)
        with patch("subprocess.run") as mock_run, patch("utils.retry_utils.time.sleep"):
            mock_run.side_effect = [
                subprocess.CalledProcessError(1, "skopeo", stderr="429 Too Many Requests"),
                MagicMock(returncode=0),
            ]
            assert client.copy_image(SRC, DEST) is True

    def test_not_found_not_retried(self, mock_config):
        mock_config.get_max_retries.return_value = 3
        client = SkopeoClient(mock_config)
        with patch("subprocess.run") as mock_run, patch("utils.retry_utils.time.sleep"):
            mock_run.side_effect = subprocess.CalledProcessError(1, "skopeo", stderr="manifest unknown")
            assert client.copy_image(SRC, DEST) is False
        assert mock_run.call_count == 1


class TestRedaction:
    def test_src_creds_redacted(self):
        cmd = ["skopeo", "copy", "--src-creds", "robot:secretpassword", "docker://a", "docker://b"]
        redacted = SkopeoClient._redact_command_for_logging(cmd)
        assert "secretpassword" not in " ".join(redacted)
        assert redacted[3] == "robot:****"

    def test_password_flag_redacted(self):
        cmd = ["skopeo", "login", "--password", "hunter2", "registry"]
        assert SkopeoClient._redact_command_for_logging(cmd)[3] == "****"

    def test_original_not_modified(self):
        cmd = ["skopeo", "copy", "--src-creds", "u:p"]
        SkopeoClient._redact_command_for_logging(cmd)
        assert cmd[3] == "u:p"


class TestCopyFailureLogging:
    """Failed copies must not leak the source credentials or be misread from the digest."""

    def test_retry_logs_omit_credentials(self, mock_config, caplog):
        mock_config.get_max_retries.return_value = 1
        client = SkopeoClient(mock_config)
        with patch("subprocess.run") as mock_run, patch("utils.retry_utils.time.sleep"):
            mock_run.side_effect = fail_with(lambda cmd: subprocess.CalledProcessError(1, cmd, stderr="unexpected EOF"))
            with caplog.at_level("DEBUG"):
                assert client.copy_image(SRC, DEST, src_creds="robot:S3cretPW") is False

        assert mock_run.call_count == 2
        assert "S3cretPW" not in caplog.text
        assert "unexpected EOF" in caplog.text
        assert "robot:****" in caplog.text

    def test_timeout_logs_omit_credentials(self, mock_config, caplog):
        mock_config.get_max_retries.return_value = 1
        client = SkopeoClient(mock_config)
        with patch("subprocess.run") as mock_run, patch("utils.retry_utils.time.sleep"):
            mock_run.side_effect = fail_with(lambda cmd: subprocess.TimeoutExpired(cmd, 300))
            with caplog.at_level("DEBUG"):
                assert client.copy_image(SRC, DEST, src_creds="robot:S3cretPW") is False

        assert mock_run.call_count == 2
        assert "S3cretPW" not in caplog.text

    def test_digest_resembling_not_found_still_retried(self, mock_config):
        mock_config.get_max_retries.return_value = 1
        client = SkopeoClient(mock_config)
        src = "registry.example.com/onboarding/nagios@sha256:1111404"
        with patch("subprocess.run") as mock_run, patch("utils.retry_utils.time.sleep"):
            mock_run.side_effect = fail_with(lambda cmd: subprocess.CalledProcessError(1, cmd, stderr="unexpected EOF"))
            assert client.copy_image(src, DEST) is False
        assert mock_run.call_count == 2
