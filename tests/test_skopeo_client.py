"""Unit tests for cloud_deploy/skopeo_client.py"""

import json
import os
import subprocess
from unittest.mock import MagicMock

import pytest

from cloud_deploy.context import OperationContext
from cloud_deploy.error_utils import (
    AuthenticationError,
    ConfigurationError,
    NotFoundError,
    OperationCancelledError,
    TransientNetworkError,
)
from cloud_deploy.registry.protocol import Authenticator
from cloud_deploy.skopeo_client import LoadedImage, SkopeoClient

INSPECT_OUTPUT = json.dumps(
    {"Digest": "sha256:" + "b" * 64, "Layers": ["sha256:" + "1" * 64, "sha256:" + "2" * 64]}
)


def make_process(stdout="", stderr="", returncode=0):
    process = MagicMock()
    process.communicate.return_value = (stdout, stderr)
    process.returncode = returncode
    return process


@pytest.fixture
def popen():
    return MagicMock(return_value=make_process())


@pytest.fixture
def client(mock_config, popen):
    return SkopeoClient(mock_config, popen=popen, poll_interval=0.01)


class TestRedactCommandForLogging:
    """Tests for _redact_command_for_logging"""

    def test_redacts_dest_creds_password(self):
        """Test that only the password half of --dest-creds is hidden"""
        cmd = ["skopeo", "copy", "--dest-creds", "AWS:eyJwYXlsb2Fk", "oci:/tmp/x:image", "docker://r/app:1"]
        redacted = SkopeoClient._redact_command_for_logging(cmd)
        assert redacted[3] == "AWS:****"
        assert cmd[3] == "AWS:eyJwYXlsb2Fk"

    def test_redacts_token_flags(self):
        redacted = SkopeoClient._redact_command_for_logging(["skopeo", "login", "--password", "hunter2"])
        assert redacted[-1] == "****"


class TestSourceReference:
    """Tests for source_reference"""

    def test_docker_daemon_transport(self, client):
        assert client.source_reference("myapp:1.0") == "docker-daemon:myapp:1.0"

    def test_docker_transport(self, client):
        client.source_transport = "docker"
        assert client.source_reference("quay.io/org/app:2") == "docker://quay.io/org/app:2"

    def test_other_transports_pass_through(self, client):
        client.source_transport = "docker-archive"
        assert client.source_reference("/tmp/app.tar") == "docker-archive:/tmp/app.tar"


class TestRun:
    """Tests for SkopeoClient.run"""

    def test_returns_stdout(self, client, popen):
        popen.return_value = make_process(stdout="ok")
        assert client.run(["inspect", "oci:/x:image"], "local", "inspect") == "ok"
        cmd = popen.call_args[0][0]
        assert cmd == ["skopeo", "inspect", "oci:/x:image"]

    def test_missing_binary_is_configuration_error(self, client, popen):
        popen.side_effect = FileNotFoundError("skopeo")
        with pytest.raises(ConfigurationError):
            client.run(["inspect", "oci:/x:image"], "local", "inspect")

    def test_unauthorized_is_authentication_error(self, client, popen):
        popen.return_value = make_process(stderr="unauthorized: authentication required", returncode=1)
        with pytest.raises(AuthenticationError):
            client.run(["copy"], "123.dkr.ecr.us-east-1.amazonaws.com", "push")

    def test_manifest_unknown_is_not_found(self, client, popen):
        popen.return_value = make_process(stderr="manifest unknown: manifest unknown", returncode=1)
        with pytest.raises(NotFoundError):
            client.run(["copy"], "myregistry.azurecr.io", "push")

    def test_other_failure_is_transient(self, client, popen):
        popen.return_value = make_process(stderr="connection reset by peer", returncode=1)
        with pytest.raises(TransientNetworkError):
            client.run(["copy"], "myregistry.azurecr.io", "push")

    def test_cancelled_before_start(self, client, popen):
        """Test that a cancelled context never starts skopeo"""
        ctx = OperationContext()
        ctx.cancel()
        with pytest.raises(OperationCancelledError):
            client.run(["copy"], "registry", "push", ctx)
        popen.assert_not_called()

    def test_cancel_while_running_kills_process(self, client, popen):
        """Test that cancelling mid-copy kills the subprocess"""
        ctx = OperationContext()
        process = make_process()
        calls = []

        def communicate(timeout=None):
            calls.append(timeout)
            if len(calls) == 1:
                ctx.cancel()
                raise subprocess.TimeoutExpired("skopeo", timeout)
            return ("", "")

        process.communicate.side_effect = communicate
        popen.return_value = process

        with pytest.raises(OperationCancelledError):
            client.run(["copy"], "registry", "push", ctx)
        process.kill.assert_called_once()

    def test_timeout_kills_process(self, client, popen):
        """Test that the per-call timeout kills skopeo and reports a connection error"""
        client.timeout = 0
        process = make_process()
        process.communicate.side_effect = [subprocess.TimeoutExpired("skopeo", 0.01), ("", "")]
        popen.return_value = process

        with pytest.raises(TransientNetworkError) as exc_info:
            client.run(["copy"], "myregistry.azurecr.io", "push")
        process.kill.assert_called_once()
        assert exc_info.value.details["registry_url"] == "myregistry.azurecr.io"


class TestLoadImage:
    """Tests for SkopeoClient.load_image"""

    def test_copies_into_layout_and_inspects(self, client, popen, mock_config):
        popen.side_effect = [make_process(), make_process(stdout=INSPECT_OUTPUT)]

        loaded = client.load_image("myapp:1.0")

        copy_cmd = popen.call_args_list[0][0][0]
        inspect_cmd = popen.call_args_list[1][0][0]
        assert copy_cmd == ["skopeo", "copy", "docker-daemon:myapp:1.0", loaded.oci_reference]
        assert inspect_cmd == ["skopeo", "inspect", loaded.oci_reference]
        assert loaded.digest == "sha256:" + "b" * 64
        assert loaded.layers == 2
        assert os.path.dirname(loaded.layout_dir) == mock_config.get_work_dir.return_value
        assert os.path.isdir(loaded.layout_dir)

    def test_failure_removes_layout(self, client, popen, mock_config):
        popen.return_value = make_process(stderr="no such image: myapp:1.0", returncode=1)

        with pytest.raises(NotFoundError):
            client.load_image("myapp:1.0")

        assert os.listdir(mock_config.get_work_dir.return_value) == []

    def test_failure_names_source_reference(self, client, popen):
        popen.return_value = make_process(stderr="connection refused", returncode=1)

        with pytest.raises(TransientNetworkError) as exc_info:
            client.load_image("myapp:1.0")

        assert exc_info.value.details["registry_url"] == "docker-daemon:myapp:1.0"
        assert "docker-daemon:myapp:1.0" in exc_info.value.message

    def test_invalid_source_reference(self, client, popen):
        with pytest.raises(ConfigurationError):
            client.load_image("Not A Reference")
        popen.assert_not_called()


class TestPushImage:
    """Tests for SkopeoClient.push_image"""

    def test_push_command(self, client, popen, tmp_path):
        loaded = LoadedImage(source="myapp:1.0", layout_dir=str(tmp_path / "layout"))
        auth = Authenticator(username="AWS", password="token-123")

        client.push_image(loaded, "123456789012.dkr.ecr.us-east-1.amazonaws.com/myapp:1.0", auth)

        cmd = popen.call_args[0][0]
        assert cmd == [
            "skopeo",
            "copy",
            "--dest-tls-verify=true",
            "--dest-creds",
            "AWS:token-123",
            f"oci:{tmp_path / 'layout'}:image",
            "docker://123456789012.dkr.ecr.us-east-1.amazonaws.com/myapp:1.0",
        ]

    def test_tls_verify_disabled(self, client, popen, tmp_path):
        client.dest_tls_verify = False
        loaded = LoadedImage(source="myapp:1.0", layout_dir=str(tmp_path))
        client.push_image(loaded, "localhost:5000/myapp:1.0", Authenticator("u", "p"))
        assert "--dest-tls-verify=false" in popen.call_args[0][0]

    def test_cleanup_removes_layout(self, client, tmp_path):
        layout = tmp_path / "layout"
        layout.mkdir()
        client.cleanup(LoadedImage(source="myapp:1.0", layout_dir=str(layout)))
        assert not layout.exists()
