"""
Skopeo client for image distribution.

The source image is copied once into an OCI layout under the configured work
directory; every destination registry is then fed from that layout with
``skopeo copy --dest-creds``. Subprocesses are polled so a cancelled context
or an expired deadline kills the running copy.
"""

import json
import logging
import os
import shutil
import subprocess
import tempfile
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from cloud_deploy.context import OperationContext, ensure_context
from cloud_deploy.error_utils import (
    ActionableError,
    ConfigurationError,
    NotFoundError,
    create_registry_auth_error,
    create_registry_connection_error,
)
from cloud_deploy.image_reference import ImageReference, parse_image_reference

# Transports whose source names are registry-style image references
_REFERENCE_TRANSPORTS = ("docker-daemon", "docker")

_AUTH_INDICATORS = ("unauthorized", "authentication required", "denied", "401", "403", "forbidden")
_NOT_FOUND_INDICATORS = ("manifest unknown", "name unknown", "not found", "no such image", "404")

LAYOUT_TAG = "image"


@dataclass
class LoadedImage:
    """A source image materialized in a local OCI layout"""

    source: str
    layout_dir: str
    digest: str = ""
    layers: int = 0

    @property
    def oci_reference(self) -> str:
        return f"oci:{self.layout_dir}:{LAYOUT_TAG}"


class SkopeoClient:
    """Skopeo client for loading a source image and pushing it to registries."""

    def __init__(
        self,
        config_manager,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        poll_interval: float = 0.5,
    ):
        """Initialize SkopeoClient.

        Args:
            config_manager: ConfigManager instance for accessing configuration
            popen: Process factory (injectable for tests)
            poll_interval: Seconds between cancellation checks while skopeo runs
        """
        self.config_manager = config_manager
        self.binary = config_manager.get_skopeo_binary()
        self.source_transport = config_manager.get_source_transport()
        self.dest_tls_verify = config_manager.get_dest_tls_verify()
        self.timeout = config_manager.get_distribution_timeout()
        self.work_dir = config_manager.get_work_dir()
        self._popen = popen
        self.poll_interval = poll_interval

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

    def source_reference(self, source: str) -> str:
        """Build the skopeo source argument for the configured transport."""
        if self.source_transport in _REFERENCE_TRANSPORTS:
            ref = parse_image_reference(source)
            if self.source_transport == "docker":
                return f"docker://{ref}"
            return f"docker-daemon:{ref}"
        return f"{self.source_transport}:{source}"

    def run(self, args: List[str], registry_url: str, operation: str, ctx: Optional[OperationContext] = None) -> str:
        """Run one skopeo command, returning stdout.

        Raises:
            OperationCancelledError: The context was cancelled or its deadline passed
            AuthenticationError: The registry rejected the credentials
            NotFoundError: The image or repository does not exist
            TransientNetworkError: Any other failure, including the per-call timeout
        """
        ctx = ensure_context(ctx)
        ctx.check(operation)

        cmd = [self.binary] + args
        log_cmd = " ".join(self._redact_command_for_logging(cmd))
        logging.debug(f"Running: {log_cmd}")

        timeout = ctx.remaining(self.timeout)
        try:
            process = self._popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
        except OSError as e:
            raise ConfigurationError(
                f"could not run skopeo ({self.binary}): {e}",
                suggestions=["Install skopeo or set skopeo.binary in config.yaml"],
                details={"binary": self.binary},
            ) from e

        deadline = time.monotonic() + timeout
        while True:
            try:
                stdout, stderr = process.communicate(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if not (ctx.cancelled or ctx.expired or time.monotonic() >= deadline):
                    continue
                process.kill()
                process.communicate()
                ctx.check(operation)
                logging.error(f"Skopeo command timed out after {timeout}s: {log_cmd}")
                raise create_registry_connection_error(
                    registry_url, subprocess.TimeoutExpired(self._redact_command_for_logging(cmd), timeout)
                ) from None

        if process.returncode != 0:
            logging.error(f"Skopeo command failed: {log_cmd}")
            logging.error(f"Error: {stderr}")
            raise self._classify_failure(operation, registry_url, stderr, process.returncode)
        return stdout

    @staticmethod
    def _classify_failure(operation: str, registry_url: str, stderr: str, returncode: int) -> ActionableError:
        message = (stderr or "").strip() or f"skopeo exited with status {returncode}"
        error_str = message.lower()
        failure = RuntimeError(message)
        if any(indicator in error_str for indicator in _AUTH_INDICATORS):
            return create_registry_auth_error(registry_url, failure)
        if any(indicator in error_str for indicator in _NOT_FOUND_INDICATORS):
            return NotFoundError(
                f"{operation} failed: image not found: {message}",
                details={"registry_url": registry_url},
            )
        return create_registry_connection_error(registry_url, failure)

    def load_image(self, source: str, ctx: Optional[OperationContext] = None) -> LoadedImage:
        """Copy the source image into a fresh OCI layout and inspect it.

        Args:
            source: Image name in the configured source transport (e.g. "myapp:1.0" for docker-daemon)

        Returns:
            LoadedImage describing the layout; pass it to cleanup() when done
        """
        src_ref = self.source_reference(source)
        os.makedirs(self.work_dir, exist_ok=True)
        loaded = LoadedImage(source=source, layout_dir=tempfile.mkdtemp(prefix="layout-", dir=self.work_dir))

        logging.info(f"Loading {src_ref} into {loaded.layout_dir}")
        try:
            self.run(["copy", src_ref, loaded.oci_reference], src_ref, f"load of {source}", ctx)
            output = self.run(["inspect", loaded.oci_reference], loaded.oci_reference, f"inspect of {source}", ctx)
            try:
                inspected = json.loads(output)
            except json.JSONDecodeError as e:
                raise ActionableError(
                    f"failed to parse skopeo inspect output for {source}: {e}",
                    details={"source": source},
                ) from e
        except BaseException:
            self.cleanup(loaded)
            raise

        loaded.digest = inspected.get("Digest", "")
        loaded.layers = len(inspected.get("Layers") or [])
        logging.info(f"Loaded {source} ({loaded.digest or 'unknown digest'}, {loaded.layers} layers)")
        return loaded

    def push_image(
        self,
        loaded: LoadedImage,
        target: Union[ImageReference, str],
        authenticator,
        ctx: Optional[OperationContext] = None,
    ) -> None:
        """Copy a loaded image to a registry reference using the authenticator's credentials."""
        if isinstance(target, str):
            target = parse_image_reference(target)

        cmd = [
            "copy",
            f"--dest-tls-verify={'true' if self.dest_tls_verify else 'false'}",
            "--dest-creds",
            f"{authenticator.username}:{authenticator.password}",
            loaded.oci_reference,
            f"docker://{target}",
        ]
        logging.info(f"Pushing {loaded.source} to {target}")
        self.run(cmd, target.registry, f"push to {target}", ctx)

    def cleanup(self, loaded: LoadedImage) -> None:
        """Remove the OCI layout created by load_image()."""
        shutil.rmtree(loaded.layout_dir, ignore_errors=True)
