"""
HashiCorp Vault integration for secret management.

A VaultSession authenticates with one of the supported methods (token or
AppRole; AWS IAM and GCP IAM are reserved extension points) and reads string
values from the KV v2 secrets engine, where each secret's values are nested
under a ``data`` wrapper at the requested path.

Usage:
    config = VaultConfig(address="http://127.0.0.1:8200", auth=AuthConfig(AuthMethod.TOKEN, token="hvs.xxx"))
    with VaultSession(config) as session:
        session.authenticate()
        url = session.get_secret("secret/data/myapp/database", "url")
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Mapping, Optional

import hvac
from hvac import exceptions as hvac_exceptions
import requests

from cloud_deploy.context import OperationContext, ensure_context
from cloud_deploy.error_utils import (
    ActionableError,
    AuthenticationError,
    BackendError,
    ConfigurationError,
    NotFoundError,
    SecretValueTypeError,
    UnsupportedError,
    create_config_error,
    create_vault_connection_error,
)

logger = logging.getLogger(__name__)


class AuthMethod(Enum):
    """Vault authentication methods"""

    TOKEN = "token"
    APPROLE = "approle"
    AWS_IAM = "aws-iam"
    GCP_IAM = "gcp-iam"

    @classmethod
    def from_value(cls, value: str) -> "AuthMethod":
        """Parse a configured method name, raising ConfigurationError for unknown names"""
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            raise create_config_error("vault.auth.method", value, "unsupported auth method") from None


@dataclass(frozen=True)
class AuthConfig:
    method: AuthMethod
    token: str = field(default="", repr=False)
    role_id: str = ""
    secret_id: str = field(default="", repr=False)
    # Role name for AWS IAM / GCP IAM authentication
    role: str = ""


@dataclass(frozen=True)
class VaultConfig:
    """Vault connection descriptor"""

    address: str
    auth: AuthConfig
    tls_skip_verify: bool = False
    timeout: int = 30
    kv_mount: str = "secret"
    app_path: str = "cloud-deploy"


@dataclass(frozen=True)
class SecretReference:
    """Pointer to one key of a KV v2 secret (e.g. path="secret/data/myapp/database", key="url")"""

    path: str
    key: str


class VaultSession:
    """One authenticated Vault token lifetime, owned by a single resolution.

    Sessions are never shared or pooled: construct one, authenticate it, fetch
    what you need, then close it.
    """

    def __init__(self, config: VaultConfig, client_factory: Callable[..., hvac.Client] = hvac.Client):
        """Initialize VaultSession (no network calls are made here)

        Args:
            config: Vault connection descriptor
            client_factory: Factory for the underlying hvac client (injectable for tests)

        Raises:
            ConfigurationError: If the Vault address is not configured
        """
        if not config.address:
            raise ConfigurationError(
                "Vault address is required",
                suggestions=["Set VAULT_ADDR or vault.address in config.yaml"],
            )
        self.config = config
        self._client = client_factory(
            url=config.address,
            verify=not config.tls_skip_verify,
            timeout=config.timeout,
        )
        self._authenticated = False

    def __enter__(self) -> "VaultSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def is_authenticated(self) -> bool:
        return self._authenticated

    def authenticate(self, ctx: Optional[OperationContext] = None) -> None:
        """Authenticate using the configured method. Must be called before fetching secrets.

        Raises:
            ConfigurationError: Token or AppRole ids are missing
            AuthenticationError: The AppRole exchange was rejected or returned no token
            UnsupportedError: aws-iam / gcp-iam
        """
        ctx = ensure_context(ctx)
        ctx.check("vault authentication")
        method = self.config.auth.method

        if method is AuthMethod.TOKEN:
            self._authenticate_with_token()
        elif method is AuthMethod.APPROLE:
            self._authenticate_with_approle(ctx)
        elif method in (AuthMethod.AWS_IAM, AuthMethod.GCP_IAM):
            raise UnsupportedError(
                f"{method.value} authentication is not implemented",
                suggestions=["Use the token or approle auth method"],
                details={"method": method.value},
            )
        else:
            raise create_config_error("vault.auth.method", method, "unsupported auth method")

        self._authenticated = True
        logger.info(f"Authenticated to Vault at {self.config.address} using {method.value}")

    def _authenticate_with_token(self) -> None:
        if not self.config.auth.token:
            raise ConfigurationError(
                "Vault token is required for token authentication",
                suggestions=["Set VAULT_TOKEN or vault.auth.token in config.yaml"],
            )
        self._client.token = self.config.auth.token

    def _authenticate_with_approle(self, ctx: OperationContext) -> None:
        auth = self.config.auth
        if not auth.role_id:
            raise ConfigurationError(
                "role_id is required for approle authentication",
                suggestions=["Set VAULT_ROLE_ID or vault.auth.role_id in config.yaml"],
            )
        if not auth.secret_id:
            raise ConfigurationError(
                "secret_id is required for approle authentication",
                suggestions=["Set VAULT_SECRET_ID or vault.auth.secret_id in config.yaml"],
            )

        ctx.check("vault approle login")
        try:
            response = self._client.auth.approle.login(
                role_id=auth.role_id,
                secret_id=auth.secret_id,
                use_token=False,
            )
        except requests.exceptions.RequestException as e:
            raise create_vault_connection_error(self.config.address, "approle login", e) from e
        except hvac_exceptions.VaultError as e:
            raise AuthenticationError(
                f"approle login failed: {e}",
                suggestions=["Verify the role_id/secret_id pair", "Check whether the secret_id has expired"],
                details={"address": self.config.address, "role_id": auth.role_id},
            ) from e

        client_token = ((response or {}).get("auth") or {}).get("client_token")
        if not client_token:
            raise AuthenticationError(
                "approle login returned no auth token",
                details={"address": self.config.address, "role_id": auth.role_id},
            )
        self._client.token = client_token

    def get_secret(self, path: str, key: str, ctx: Optional[OperationContext] = None) -> str:
        """Fetch one string value from the KV v2 engine.

        Args:
            path: Full KV v2 path including the data segment (e.g. "secret/data/myapp/database")
            key: Key within the secret's data (e.g. "url")

        Returns:
            The secret value

        Raises:
            NotFoundError: Path missing, response lacks the data wrapper, or key absent
            SecretValueTypeError: The value is not a string
        """
        ctx = ensure_context(ctx)
        details = {"path": path, "key": key}
        if not self._authenticated:
            raise AuthenticationError("Vault session is not authenticated", details=details)

        ctx.check(f"vault read {path}")
        try:
            secret = self._client.read(path)
        except requests.exceptions.RequestException as e:
            raise create_vault_connection_error(self.config.address, f"read of {path}", e) from e
        except hvac_exceptions.Forbidden as e:
            raise AuthenticationError(f"permission denied reading secret at {path}", details=details) from e
        except hvac_exceptions.VaultError as e:
            raise BackendError(f"failed to read secret at {path}: {e}", details=details) from e

        if not secret:
            raise NotFoundError(f"secret not found at path: {path}", details=details)

        # KV v2 nests the values one level down under "data"
        data = (secret.get("data") or {}).get("data") if isinstance(secret, dict) else None
        if not isinstance(data, dict):
            raise NotFoundError(
                f"unexpected secret format at path: {path}",
                suggestions=["KV v2 paths must include /data/ after the mount (secret/data/app, not secret/app)"],
                details=details,
            )

        if key not in data:
            raise NotFoundError(f"key {key} not found in secret at path: {path}", details=details)

        value = data[key]
        if not isinstance(value, str):
            raise SecretValueTypeError(
                f"value for key {key} is not a string at path: {path}",
                details={**details, "value_type": type(value).__name__},
            )
        return value

    def get_secrets(
        self, references: Mapping[str, SecretReference], ctx: Optional[OperationContext] = None
    ) -> Dict[str, str]:
        """Fetch several secrets; all-or-nothing.

        Returns:
            Mapping of logical name to secret value

        Raises:
            The first failure, re-raised with the failing logical name in its message and details
        """
        ctx = ensure_context(ctx)
        values = {}
        for name, ref in references.items():
            try:
                values[name] = self.get_secret(ref.path, ref.key, ctx)
            except ActionableError as e:
                raise e.with_context(f"failed to fetch secret {name}", name=name) from e
        return values

    def close(self) -> None:
        """Drop the session token."""
        if self._authenticated:
            self._client.token = None
        self._authenticated = False


def fetch_vault_secrets(
    config: Optional[VaultConfig],
    secrets: Mapping[str, SecretReference],
    ctx: Optional[OperationContext] = None,
    session_factory: Callable[[VaultConfig], VaultSession] = VaultSession,
) -> Dict[str, str]:
    """Resolve named secrets (e.g. application environment variables) through a fresh session.

    Returns an empty mapping without contacting Vault when there is nothing to fetch.
    """
    if not secrets:
        return {}
    if config is None:
        raise ConfigurationError(
            "Vault configuration is required to fetch secrets",
            suggestions=["Add a vault section to config.yaml or set VAULT_ADDR"],
        )

    with session_factory(config) as session:
        logger.info("Authenticating to Vault...")
        session.authenticate(ctx)
        logger.info(f"Fetching {len(secrets)} secrets from Vault...")
        values = session.get_secrets(secrets, ctx)

    logger.info(f"Successfully retrieved {len(values)} secrets from Vault")
    return values
