"""
Provider credential resolution.

A CredentialManager resolves one provider's credential bundle from exactly one
configured source:

- environment: provider-specific environment variables (AWS_ACCESS_KEY_ID, ...)
- secrets-store: a JSON blob in AWS Secrets Manager, looked up by provider
- vault: fixed KV v2 paths of the form <mount>/data/<app>/<provider>/credentials
- encrypted-file: reserved, always raises UnsupportedError

Resolution either returns a bundle whose required fields are all non-empty or
raises; partial bundles are never returned.
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from cloud_deploy.context import OperationContext, ensure_context
from cloud_deploy.error_utils import (
    ActionableError,
    BackendError,
    ConfigurationError,
    MissingCredentialsError,
    NotFoundError,
    UnsupportedError,
    create_config_error,
)
from cloud_deploy.vault import VaultConfig, VaultSession

logger = logging.getLogger(__name__)


class CredentialSource(Enum):
    ENVIRONMENT = "environment"
    SECRETS_STORE = "secrets-store"
    VAULT = "vault"
    ENCRYPTED_FILE = "encrypted-file"

    @classmethod
    def from_value(cls, value: str) -> "CredentialSource":
        """Parse a configured source tag ("secrets-manager" is accepted as an alias of secrets-store)"""
        normalized = (value or "").strip().lower()
        if normalized == "secrets-manager":
            normalized = cls.SECRETS_STORE.value
        try:
            return cls(normalized)
        except ValueError:
            raise create_config_error("credentials.source", value, "unknown credentials source") from None


class Provider(Enum):
    AWS = "aws"
    GCP = "gcp"
    AZURE = "azure"
    CLOUDFLARE = "cloudflare"

    @classmethod
    def from_value(cls, value) -> "Provider":
        if isinstance(value, cls):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            raise ConfigurationError(
                f"unknown provider: {value}",
                suggestions=[f"Valid providers: {', '.join(p.value for p in cls)}"],
                details={"provider": value},
            ) from None


@dataclass
class AWSCredentials:
    access_key_id: str = ""
    secret_access_key: str = field(default="", repr=False)
    session_token: str = field(default="", repr=False)


@dataclass
class GCPCredentials:
    project_id: str = ""
    # JSON key content, not a file path
    service_account_key: str = field(default="", repr=False)
    service_account_email: str = ""


@dataclass
class AzureCredentials:
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = field(default="", repr=False)
    subscription_id: str = ""


@dataclass
class CloudflareCredentials:
    api_token: str = field(default="", repr=False)
    account_id: str = ""
    email: str = ""


@dataclass(frozen=True)
class _ProviderSpec:
    record: type
    required: Tuple[str, ...]
    optional: Tuple[str, ...]
    env_prefix: str

    def env_var(self, field_name: str) -> str:
        return f"{self.env_prefix}_{field_name.upper()}"


PROVIDER_SPECS = {
    Provider.AWS: _ProviderSpec(
        AWSCredentials, ("access_key_id", "secret_access_key"), ("session_token",), "AWS"
    ),
    Provider.GCP: _ProviderSpec(
        GCPCredentials, ("project_id", "service_account_key"), ("service_account_email",), "GCP"
    ),
    Provider.AZURE: _ProviderSpec(
        AzureCredentials, ("tenant_id", "client_id", "client_secret"), ("subscription_id",), "AZURE"
    ),
    Provider.CLOUDFLARE: _ProviderSpec(
        CloudflareCredentials, ("api_token",), ("account_id", "email"), "CLOUDFLARE"
    ),
}


@dataclass
class ProviderCredentials:
    """Credential bundle with at most one populated sub-record per provider"""

    aws: Optional[AWSCredentials] = None
    gcp: Optional[GCPCredentials] = None
    azure: Optional[AzureCredentials] = None
    cloudflare: Optional[CloudflareCredentials] = None

    def for_provider(self, provider) -> Optional[Any]:
        return getattr(self, Provider.from_value(provider).value)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProviderCredentials":
        """Build a bundle from decoded JSON such as {"aws": {"access_key_id": "...", ...}}.

        Unknown providers and unknown keys are ignored; present values must be strings.
        """
        if not isinstance(data, Mapping):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")

        bundle = cls()
        for provider, spec in PROVIDER_SPECS.items():
            section = data.get(provider.value)
            if section is None:
                continue
            if not isinstance(section, Mapping):
                raise ValueError(f"'{provider.value}' must be a JSON object")
            values = {}
            for record_field in fields(spec.record):
                value = section.get(record_field.name)
                if value is None:
                    continue
                if not isinstance(value, str):
                    raise ValueError(f"'{provider.value}.{record_field.name}' must be a string")
                values[record_field.name] = value
            setattr(bundle, provider.value, spec.record(**values))
        return bundle


def missing_fields(bundle: ProviderCredentials, provider) -> Tuple[str, ...]:
    """Required fields of the provider's sub-record that are absent or empty"""
    provider = Provider.from_value(provider)
    spec = PROVIDER_SPECS[provider]
    record = bundle.for_provider(provider) if bundle is not None else None
    if record is None:
        return spec.required
    return tuple(name for name in spec.required if not getattr(record, name, ""))


def validate_credentials(bundle: ProviderCredentials, provider) -> None:
    """Check that the provider's required credential fields are all non-empty.

    Depends only on the bundle's contents, never on how it was obtained.

    Raises:
        ConfigurationError: Unknown provider
        MissingCredentialsError: Any required field is empty
    """
    provider = Provider.from_value(provider)
    missing = missing_fields(bundle, provider)
    if missing:
        raise MissingCredentialsError(
            f"{provider.value} credentials are incomplete",
            suggestions=[f"Provide a non-empty value for: {', '.join(missing)}"],
            details={"provider": provider.value, "missing": list(missing)},
        )


def _default_secrets_client(region: str):
    return boto3.client("secretsmanager", region_name=region)


class CredentialManager:
    """Resolves provider credentials from the configured source"""

    def __init__(
        self,
        source,
        secrets: Optional[Mapping[str, str]] = None,
        vault_config: Optional[VaultConfig] = None,
        secrets_region: str = "us-east-1",
        environ: Optional[Mapping[str, str]] = None,
        secrets_client_factory: Callable[[str], Any] = _default_secrets_client,
        vault_session_factory: Callable[[VaultConfig], VaultSession] = VaultSession,
    ):
        """Initialize CredentialManager (no network calls are made here)

        Args:
            source: CredentialSource or its tag ("environment", "secrets-store", "vault", "encrypted-file")
            secrets: Provider -> secrets-store identifier (name or ARN)
            vault_config: Vault connection descriptor, required for the vault source
            secrets_region: Region of the managed secrets store
            environ: Mapping used for environment lookups (defaults to os.environ)
            secrets_client_factory: Builds a secretsmanager client for a region
            vault_session_factory: Builds a VaultSession from a VaultConfig
        """
        self.source = source if isinstance(source, CredentialSource) else CredentialSource.from_value(source)
        self.secrets = {str(k).lower(): v for k, v in (secrets or {}).items()}
        self.vault_config = vault_config
        self.secrets_region = secrets_region
        self.environ = environ if environ is not None else os.environ
        self._secrets_client_factory = secrets_client_factory
        self._vault_session_factory = vault_session_factory

    @classmethod
    def from_config(cls, config_manager, environ: Optional[Mapping[str, str]] = None) -> "CredentialManager":
        """Build a manager from a ConfigManager's credentials and vault sections"""
        return cls(
            source=CredentialSource.from_value(config_manager.get_credential_source()),
            secrets=config_manager.get_secrets_mapping(),
            vault_config=config_manager.get_vault_config(),
            secrets_region=config_manager.get_secrets_region(),
            environ=environ,
        )

    def get_credentials(self, provider, ctx: Optional[OperationContext] = None) -> ProviderCredentials:
        """Resolve the credential bundle for one provider.

        Raises:
            ConfigurationError: Unknown provider, unmapped secret or missing Vault configuration
            MissingCredentialsError: A required field is absent from the source
            BackendError: The secrets store could not be read or decoded
            UnsupportedError: encrypted-file source
        """
        ctx = ensure_context(ctx)
        provider = Provider.from_value(provider)
        ctx.check(f"{provider.value} credential resolution")

        resolvers = {
            CredentialSource.ENVIRONMENT: self._from_environment,
            CredentialSource.SECRETS_STORE: self._from_secrets_store,
            CredentialSource.VAULT: self._from_vault,
            CredentialSource.ENCRYPTED_FILE: self._from_encrypted_file,
        }
        logger.info(f"Resolving {provider.value} credentials from {self.source.value}")
        bundle = resolvers[self.source](provider, ctx)
        validate_credentials(bundle, provider)
        return bundle

    def _from_environment(self, provider: Provider, ctx: OperationContext) -> ProviderCredentials:
        spec = PROVIDER_SPECS[provider]
        values = {}
        for name in spec.required + spec.optional:
            values[name] = self.environ.get(spec.env_var(name)) or ""

        missing = [spec.env_var(name) for name in spec.required if not values[name]]
        if missing:
            raise MissingCredentialsError(
                f"{provider.value} credentials not found in environment",
                suggestions=[f"Set {', '.join(missing)}"],
                details={"provider": provider.value, "missing": missing},
            )

        bundle = ProviderCredentials()
        setattr(bundle, provider.value, spec.record(**values))
        return bundle

    def _from_secrets_store(self, provider: Provider, ctx: OperationContext) -> ProviderCredentials:
        secret_id = self.secrets.get(provider.value)
        if not secret_id:
            raise ConfigurationError(
                f"no secret configured for provider: {provider.value}",
                suggestions=[f"Add credentials.secrets.{provider.value} to config.yaml"],
                details={"provider": provider.value},
            )

        details = {"provider": provider.value, "secret_id": secret_id}
        ctx.check(f"secrets-store read of {secret_id}")
        try:
            client = self._secrets_client_factory(self.secrets_region)
            response = client.get_secret_value(SecretId=secret_id)
        except (ClientError, BotoCoreError) as e:
            raise BackendError(f"failed to retrieve secret {secret_id}: {e}", details=details) from e

        secret_string = response.get("SecretString")
        if not secret_string:
            raise BackendError(f"secret {secret_id} has no string value", details=details)

        try:
            decoded = ProviderCredentials.from_dict(json.loads(secret_string))
        except ValueError as e:
            # json.JSONDecodeError is a ValueError
            raise BackendError(f"failed to parse secret JSON for {secret_id}: {e}", details=details) from e

        bundle = ProviderCredentials()
        setattr(bundle, provider.value, decoded.for_provider(provider))
        return bundle

    def _from_vault(self, provider: Provider, ctx: OperationContext) -> ProviderCredentials:
        if self.vault_config is None:
            raise ConfigurationError(
                "vault configuration is required when using vault credentials",
                suggestions=["Set VAULT_ADDR or vault.address in config.yaml"],
                details={"provider": provider.value},
            )

        spec = PROVIDER_SPECS[provider]
        path = self.vault_path(provider)
        values = {}
        with self._vault_session_factory(self.vault_config) as session:
            try:
                session.authenticate(ctx)
            except ActionableError as e:
                raise e.with_context("failed to authenticate to vault", provider=provider.value) from e

            for name in spec.required:
                try:
                    values[name] = session.get_secret(path, name, ctx)
                except ActionableError as e:
                    raise e.with_context(
                        f"failed to fetch {provider.value} {name} from vault", provider=provider.value
                    ) from e

            for name in spec.optional:
                try:
                    values[name] = session.get_secret(path, name, ctx)
                except NotFoundError:
                    logger.debug(f"Optional {provider.value} field {name} not set in vault")
                    values[name] = ""

        bundle = ProviderCredentials()
        setattr(bundle, provider.value, spec.record(**values))
        return bundle

    def _from_encrypted_file(self, provider: Provider, ctx: OperationContext) -> ProviderCredentials:
        raise UnsupportedError(
            "encrypted file integration not yet implemented",
            suggestions=["Use the environment, secrets-store or vault credentials source"],
            details={"provider": provider.value},
        )

    def vault_path(self, provider) -> str:
        """KV v2 path holding a provider's credentials"""
        provider = Provider.from_value(provider)
        mount = self.vault_config.kv_mount if self.vault_config else "secret"
        app = self.vault_config.app_path if self.vault_config else "cloud-deploy"
        return f"{mount}/data/{app}/{provider.value}/credentials"
