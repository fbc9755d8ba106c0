"""
Cloud container registries for image distribution.

This package provides the registry variants and the distributor:
- AWS ECR (account discovered through STS)
- Azure ACR (login server discovered from the provisioned registry)
- Google Artifact Registry (fixed URL template)
"""

from typing import Optional

from cloud_deploy.registry.protocol import Authenticator, Registry
from cloud_deploy.registry.provisioning import ensure_exists
from cloud_deploy.registry.ecr import ECRRegistry, ecr_registry_url
from cloud_deploy.registry.acr import ACRRegistry
from cloud_deploy.registry.gcr import GCRRegistry, artifact_registry_url
from cloud_deploy.registry.distributor import Distributor

from cloud_deploy.credentials import Provider, ProviderCredentials
from cloud_deploy.error_utils import ConfigurationError, UnsupportedError


def build_registry(
    provider,
    credentials: Optional[ProviderCredentials],
    region: str,
    repository: str,
    tag: str,
    image_name: Optional[str] = None,
    project_id: Optional[str] = None,
    resource_group: Optional[str] = None,
    registry_name: Optional[str] = None,
    subscription_id: Optional[str] = None,
) -> Registry:
    """Create the registry variant for a provider from resolved credentials.

    Args:
        provider: "aws", "gcp" or "azure"
        credentials: Resolved bundle; None falls back to each SDK's default credential chain
        region: Region / location of the registry
        repository: Repository (ECR, Artifact Registry) or image name (ACR)
        tag: Image tag to push
        image_name: Image inside an Artifact Registry repository or ACR registry
        project_id: GCP project (defaults to the credentials' project)
        resource_group: Azure resource group (required for azure)
        registry_name: ACR registry name (defaults to the repository)
        subscription_id: Azure subscription (defaults to the credentials' subscription)
    """
    provider = Provider.from_value(provider)
    if provider is Provider.AWS:
        return ECRRegistry(region, repository, tag, credentials.aws if credentials else None)
    if provider is Provider.GCP:
        return GCRRegistry(
            project_id or "",
            region,
            repository,
            tag,
            credentials=credentials.gcp if credentials else None,
            image_name=image_name,
        )
    if provider is Provider.AZURE:
        if not resource_group:
            raise ConfigurationError(
                "resource group is required for Azure Container Registry",
                suggestions=["Pass --resource-group for azure targets"],
            )
        return ACRRegistry(
            resource_group,
            registry_name or repository.replace("-", "").replace("_", ""),
            region,
            image_name or repository,
            tag,
            credentials=credentials.azure if credentials else None,
            subscription_id=subscription_id,
        )
    raise UnsupportedError(
        f"provider {provider.value} has no container registry",
        details={"provider": provider.value},
    )


__all__ = [
    "ACRRegistry",
    "Authenticator",
    "Distributor",
    "ECRRegistry",
    "GCRRegistry",
    "Registry",
    "artifact_registry_url",
    "build_registry",
    "ecr_registry_url",
    "ensure_exists",
]
