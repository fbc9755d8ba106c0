#!/usr/bin/env python3
"""
Configuration Manager for cloud-deploy

This module handles loading and managing configuration from config.yaml
and environment variables.
"""

import logging
import os
import re
from typing import Any, Dict, Optional

import yaml

from cloud_deploy.credentials import CredentialSource
from cloud_deploy.error_utils import ConfigurationError
from cloud_deploy.vault import AuthConfig, AuthMethod, VaultConfig


class ConfigValidationError(ConfigurationError):
    """Raised when configuration validation fails"""


_ENV_REFERENCE = re.compile(r"\$\{([^}]+)\}")


def expand_env_vars(value: Optional[str]) -> str:
    """Expand ${VAR_NAME} references from the process environment (unset variables become empty)"""
    if not value:
        return ""
    return _ENV_REFERENCE.sub(lambda match: os.environ.get(match.group(1), ""), str(value))


class ConfigManager:
    """Manages configuration for credential resolution and image distribution"""

    def __init__(self, config_file: str = None, validate: bool = True):
        """Initialize ConfigManager

        Args:
            config_file: Path to configuration YAML file (defaults to ../config.yaml or CONFIG_FILE env var)
            validate: If True, validate configuration on initialization
        """
        # Allow override via environment variable for containerized deployments
        if config_file is None:
            config_file = os.environ.get("CONFIG_FILE", "../config.yaml")
        self.config_file = config_file
        self.config = self._load_config()

        if validate:
            self.validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file with defaults"""
        default_config = {
            "credentials": {
                "source": "environment",
                "secrets": {},  # provider -> secrets-store identifier (name or ARN)
                "secrets_region": "us-east-1",
            },
            "vault": {
                "address": "",
                "tls_skip_verify": False,
                "timeout": 30,
                "kv_mount": "secret",
                "app_path": "cloud-deploy",
                "auth": {"method": "token", "token": "", "role_id": "", "secret_id": "", "role": ""},
            },
            "distribution": {
                "source_transport": "docker-daemon",
                "dest_tls_verify": True,
                "timeout": 1800,  # Timeout for each skopeo call in seconds
                "work_dir": "/tmp/cloud-deploy",
            },
            "skopeo": {"binary": "skopeo"},
            "logging": {"level": "INFO"},
        }

        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r") as f:
                    user_config = yaml.safe_load(f) or {}
                return self._merge_config(default_config, user_config)
            else:
                logging.warning(f"Config file {self.config_file} not found, using defaults")
                return default_config
        except (OSError, yaml.YAMLError) as e:
            logging.error(f"Error loading config file: {e}")
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

    # Credential configuration
    def get_credential_source(self) -> str:
        """Get credential source from environment or config"""
        source = os.environ.get("CREDENTIALS_SOURCE") or self.config["credentials"]["source"]
        return str(source).strip().lower()

    def get_secrets_mapping(self) -> Dict[str, str]:
        """Get provider -> secrets-store identifier mapping"""
        secrets = self.config.get("credentials", {}).get("secrets") or {}
        return {str(provider).lower(): str(secret_id) for provider, secret_id in secrets.items()}

    def get_secrets_region(self) -> str:
        """Get region of the managed secrets store from environment or config"""
        return os.environ.get("SECRETS_REGION") or self.config.get("credentials", {}).get("secrets_region", "us-east-1")

    # Vault configuration
    def get_vault_address(self) -> str:
        """Get Vault address from environment or config"""
        return os.environ.get("VAULT_ADDR") or self.config.get("vault", {}).get("address", "")

    def get_vault_timeout(self) -> int:
        """Get Vault HTTP timeout from config, with type coercion"""
        timeout = self.config.get("vault", {}).get("timeout", 30)
        try:
            return int(timeout)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"vault.timeout must be an integer, got: {timeout} (type: {type(timeout).__name__})"
            )

    def get_vault_config(self) -> Optional[VaultConfig]:
        """Build the Vault connection descriptor, or None when no address is configured"""
        address = self.get_vault_address()
        if not address:
            return None

        vault = self.config.get("vault", {})
        auth = vault.get("auth") or {}
        method = os.environ.get("VAULT_AUTH_METHOD") or auth.get("method", "token")

        return VaultConfig(
            address=address,
            auth=AuthConfig(
                method=AuthMethod.from_value(method),
                token=os.environ.get("VAULT_TOKEN") or expand_env_vars(auth.get("token")),
                role_id=os.environ.get("VAULT_ROLE_ID") or expand_env_vars(auth.get("role_id")),
                secret_id=os.environ.get("VAULT_SECRET_ID") or expand_env_vars(auth.get("secret_id")),
                role=expand_env_vars(auth.get("role")),
            ),
            tls_skip_verify=bool(vault.get("tls_skip_verify", False)),
            timeout=self.get_vault_timeout(),
            kv_mount=vault.get("kv_mount", "secret"),
            app_path=vault.get("app_path", "cloud-deploy"),
        )

    # Distribution configuration
    def get_source_transport(self) -> str:
        """Get the skopeo transport the source image is read from (docker-daemon, docker, oci-archive, ...)"""
        return self.config.get("distribution", {}).get("source_transport", "docker-daemon")

    def get_dest_tls_verify(self) -> bool:
        """Get whether to verify TLS for destination registries"""
        return bool(self.config.get("distribution", {}).get("dest_tls_verify", True))

    def get_distribution_timeout(self) -> int:
        """Get timeout for each skopeo call from config, with type coercion"""
        timeout = self.config.get("distribution", {}).get("timeout", 1800)
        try:
            return int(timeout)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"distribution.timeout must be an integer, got: {timeout} (type: {type(timeout).__name__})"
            )

    def get_work_dir(self) -> str:
        """Get directory where the source image is materialized"""
        return os.environ.get("CLOUD_DEPLOY_WORK_DIR") or self.config.get("distribution", {}).get(
            "work_dir", "/tmp/cloud-deploy"
        )

    def get_skopeo_binary(self) -> str:
        """Get skopeo executable name or path"""
        return os.environ.get("SKOPEO_BINARY") or self.config.get("skopeo", {}).get("binary", "skopeo")

    # Logging configuration
    def get_log_level(self) -> int:
        """Get log level; CLOUD_DEPLOY_DEBUG=true forces DEBUG"""
        if os.environ.get("CLOUD_DEPLOY_DEBUG", "").lower() == "true":
            return logging.DEBUG
        level = str(self.config.get("logging", {}).get("level", "INFO")).upper()
        return getattr(logging, level, logging.INFO)

    def validate_config(self) -> None:
        """Validate configuration values

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        errors = []
        warnings = []

        # Validate credential configuration
        source = self.get_credential_source()
        try:
            credential_source = CredentialSource.from_value(source)
        except ConfigurationError:
            valid = ", ".join(s.value for s in CredentialSource)
            errors.append(f"credentials.source '{source}' is invalid (expected one of: {valid})")
        else:
            if credential_source is CredentialSource.SECRETS_STORE and not self.get_secrets_mapping():
                warnings.append("credentials.source is secrets-store but credentials.secrets maps no providers")
            elif credential_source is CredentialSource.VAULT and not self.get_vault_address():
                errors.append("vault.address (or VAULT_ADDR) is required when credentials.source is vault")
            elif credential_source is CredentialSource.ENCRYPTED_FILE:
                warnings.append("credentials.source encrypted-file is not implemented; resolution will fail")

        # Validate Vault configuration
        vault_address = self.get_vault_address()
        if vault_address:
            if not vault_address.startswith(("http://", "https://")):
                errors.append(f"vault.address must start with http:// or https://, got: {vault_address}")
            try:
                vault_config = self.get_vault_config()
            except ConfigurationError as e:
                errors.append(e.message)
            else:
                if vault_config.tls_skip_verify:
                    warnings.append("vault.tls_skip_verify is enabled (not recommended for production)")
                if vault_config.auth.method is AuthMethod.TOKEN and not vault_config.auth.token:
                    warnings.append("vault.auth.method is token but no token is configured (set VAULT_TOKEN)")

            vault_timeout = self.get_vault_timeout()
            if vault_timeout < 1:
                errors.append(f"vault.timeout must be a positive integer (seconds), got: {vault_timeout}")

        # Validate distribution configuration
        timeout = self.get_distribution_timeout()
        if timeout < 1:
            errors.append(f"distribution.timeout must be a positive integer (seconds), got: {timeout}")
        elif timeout > 7200:
            warnings.append(f"distribution.timeout is very high ({timeout}s), pushes may hang for a long time")

        work_dir = self.get_work_dir()
        if not work_dir or not str(work_dir).strip():
            errors.append("distribution.work_dir is required and cannot be empty")

        if not self.get_dest_tls_verify():
            warnings.append("distribution.dest_tls_verify is disabled")

        # Log warnings
        for warning in warnings:
            logging.warning(f"Configuration warning: {warning}")

        # Raise error if there are validation errors
        if errors:
            error_msg = "Configuration validation failed:\n  " + "\n  ".join(errors)
            logging.error(error_msg)
            raise ConfigValidationError(error_msg, details={"errors": errors})

    def print_config(self):
        """Print current configuration"""
        print("Current Configuration:")
        print(f"  Credential Source: {self.get_credential_source()}")
        mapping = self.get_secrets_mapping()
        if mapping:
            for provider, secret_id in sorted(mapping.items()):
                print(f"  Secrets Store [{provider}]: {secret_id}")
        print(f"  Secrets Region: {self.get_secrets_region()}")
        print(f"  Source Transport: {self.get_source_transport()}")
        print(f"  Destination TLS Verify: {self.get_dest_tls_verify()}")
        print(f"  Distribution Timeout: {self.get_distribution_timeout()}")
        print(f"  Work Directory: {self.get_work_dir()}")

        vault_config = self.get_vault_config()
        if vault_config is None:
            print("  Vault: Not configured")
            return
        print(f"  Vault Address: {vault_config.address}")
        print(f"  Vault Auth Method: {vault_config.auth.method.value}")
        print(f"  Vault KV Mount: {vault_config.kv_mount}")
        token = vault_config.auth.token
        if token:
            print(f"  Vault Token: {'*' * len(token)}")
        else:
            print("  Vault Token: Not set")


# Global config manager instance
# Validation can be disabled by setting SKIP_CONFIG_VALIDATION=true environment variable
# This is useful for testing or when you know the config is valid
config_manager = ConfigManager(
    validate=os.environ.get("SKIP_CONFIG_VALIDATION", "").lower() not in ("true", "1", "yes")
)
