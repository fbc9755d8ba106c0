"""
Azure Container Registry.

The registry resource itself is provisioned (Basic SKU, admin user enabled);
its login server becomes the registry URL and the admin user is used to push.
"""

import logging
from typing import Callable, Optional

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.identity import ClientSecretCredential, DefaultAzureCredential
from azure.mgmt.containerregistry import ContainerRegistryManagementClient
from azure.mgmt.containerregistry.models import Registry as RegistryResource
from azure.mgmt.containerregistry.models import Sku

from cloud_deploy.context import OperationContext, ensure_context
from cloud_deploy.credentials import AzureCredentials
from cloud_deploy.error_utils import (
    AuthenticationError,
    ConfigurationError,
    NotFoundError,
    classify_sdk_error,
)
from cloud_deploy.registry.protocol import Authenticator
from cloud_deploy.registry.provisioning import ensure_exists


class ACRRegistry:
    """ACR registry in a resource group"""

    def __init__(
        self,
        resource_group: str,
        registry_name: str,
        location: str,
        image_name: str,
        image_tag: str,
        credentials: Optional[AzureCredentials] = None,
        subscription_id: Optional[str] = None,
        client_factory: Callable[..., ContainerRegistryManagementClient] = ContainerRegistryManagementClient,
    ):
        """Initialize ACRRegistry (no network calls are made here)

        Args:
            resource_group: Resource group holding the registry
            registry_name: ACR registry name (globally unique, alphanumeric)
            location: Azure region used when the registry has to be created
            image_name: Repository inside the registry
            image_tag: Tag pushed to the repository
            credentials: Service principal; DefaultAzureCredential is used when omitted
            subscription_id: Overrides credentials.subscription_id
        """
        self.resource_group = resource_group
        self.registry_name = registry_name
        self.location = location
        self.image_name = image_name
        self.image_tag = image_tag
        self.credentials = credentials
        self.subscription_id = subscription_id or (credentials.subscription_id if credentials else "")
        self._client_factory = client_factory
        self.login_server = ""

    def __repr__(self) -> str:
        return f"ACRRegistry(resource_group={self.resource_group!r}, registry={self.registry_name!r})"

    def _credential(self):
        if self.credentials is None:
            return DefaultAzureCredential()
        return ClientSecretCredential(
            tenant_id=self.credentials.tenant_id,
            client_id=self.credentials.client_id,
            client_secret=self.credentials.client_secret,
        )

    def registry_url(self) -> str:
        return self.login_server

    def authenticate(self, ctx: Optional[OperationContext] = None) -> Authenticator:
        """Ensure the registry exists and fetch its admin credentials."""
        ctx = ensure_context(ctx)
        details = {"provider": "azure", "resource_group": self.resource_group, "registry": self.registry_name}
        if not self.subscription_id:
            raise ConfigurationError(
                "Azure subscription id is required for ACR",
                suggestions=["Set AZURE_SUBSCRIPTION_ID or store subscription_id with the Azure credentials"],
                details=details,
            )

        client = self._client_factory(self._credential(), self.subscription_id)
        registries = client.registries

        def create():
            poller = registries.begin_create(
                self.resource_group,
                self.registry_name,
                RegistryResource(location=self.location, sku=Sku(name="Basic"), admin_user_enabled=True),
            )
            resource = poller.result(timeout=ctx.remaining())
            ctx.check(f"creation of ACR registry {self.registry_name}")
            return resource

        registry = ensure_exists(
            f"ACR registry {self.registry_name}",
            get=lambda: registries.get(self.resource_group, self.registry_name),
            create=create,
            is_not_found=lambda e: isinstance(e, ResourceNotFoundError),
            ctx=ctx,
            **details,
        )

        if not getattr(registry, "login_server", None):
            raise NotFoundError(f"ACR registry {self.registry_name} has no login server", details=details)
        self.login_server = registry.login_server

        ctx.check("ACR admin credential retrieval")
        try:
            creds = registries.list_credentials(self.resource_group, self.registry_name)
        except AzureError as e:
            raise classify_sdk_error("ACR admin credential retrieval", e, **details) from e

        passwords = [p.value for p in (creds.passwords or []) if p.value]
        if not creds.username or not passwords:
            raise AuthenticationError(
                "no admin credentials available for ACR",
                suggestions=[f"Enable the admin user: az acr update -n {self.registry_name} --admin-enabled true"],
                details=details,
            )

        logging.info(f"ACR authentication successful: {self.login_server}")
        return Authenticator(username=creds.username, password=passwords[0])

    def image_reference(self) -> str:
        if not self.login_server:
            raise RuntimeError(f"{self!r} must be authenticated before its image reference is known")
        return f"{self.login_server}/{self.image_name}:{self.image_tag}"

    def image_uri(self) -> str:
        return self.image_reference()
