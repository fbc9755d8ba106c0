"""
Google Artifact Registry (Docker format).

The registry URL follows a fixed template and is known before any remote
call; the push credential is a short-lived OAuth2 access token.
"""

import json
import logging
from typing import Any, Callable, Dict, Optional

import google.auth
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from cloud_deploy.context import OperationContext, ensure_context
from cloud_deploy.credentials import GCPCredentials
from cloud_deploy.error_utils import AuthenticationError, ConfigurationError
from cloud_deploy.registry.protocol import Authenticator
from cloud_deploy.registry.provisioning import ensure_exists

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"

# Artifact Registry expects this fixed username with an access token as password
OAUTH2_USERNAME = "oauth2accesstoken"

# google.rpc.Code -> HTTP status for failed long-running operations
_RPC_STATUS = {5: 404, 6: 409, 7: 403, 16: 401}

OPERATION_POLL_INTERVAL = 2.0


def artifact_registry_url(region: str, project: str, repository: str) -> str:
    return f"{region}-docker.pkg.dev/{project}/{repository}"


class OperationFailedError(Exception):
    """A long-running Artifact Registry operation finished with an error"""

    def __init__(self, name: str, error: Dict[str, Any]):
        self.operation = name
        self.status_code = _RPC_STATUS.get(error.get("code"))
        super().__init__(f"operation {name} failed: {error.get('message', 'unknown error')}")


def _default_service(credentials):
    return build("artifactregistry", "v1", credentials=credentials, cache_discovery=False)


def _is_not_found(error: Exception) -> bool:
    return isinstance(error, HttpError) and error.resp.status == 404


class GCRRegistry:
    """Artifact Registry Docker repository"""

    def __init__(
        self,
        project_id: str,
        region: str,
        repository_name: str,
        image_tag: str,
        credentials: Optional[GCPCredentials] = None,
        image_name: Optional[str] = None,
        service_factory: Callable[[Any], Any] = _default_service,
    ):
        """Initialize GCRRegistry (no network calls are made here)

        Args:
            project_id: GCP project id
            region: Artifact Registry location (e.g. "us-central1")
            repository_name: Docker repository name
            image_tag: Tag pushed to the repository
            credentials: Service account key; application default credentials are used when omitted
            image_name: Image inside the repository (defaults to the repository name)
        """
        self.project_id = project_id or (credentials.project_id if credentials else "")
        self.region = region
        self.repository_name = repository_name
        self.image_tag = image_tag
        self.credentials = credentials
        self.image_name = image_name or repository_name
        self._service_factory = service_factory
        self._registry_url = ""

    def __repr__(self) -> str:
        return f"GCRRegistry(project={self.project_id!r}, region={self.region!r}, repository={self.repository_name!r})"

    def _google_credentials(self):
        if self.credentials is None or not self.credentials.service_account_key:
            try:
                credentials, _ = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])
            except GoogleAuthError as e:
                raise ConfigurationError(
                    f"no Google credentials available: {e}",
                    suggestions=["Set GCP_SERVICE_ACCOUNT_KEY or configure application default credentials"],
                ) from e
            return credentials

        try:
            info = json.loads(self.credentials.service_account_key)
            return service_account.Credentials.from_service_account_info(info, scopes=[CLOUD_PLATFORM_SCOPE])
        except ValueError as e:
            raise ConfigurationError(
                f"invalid GCP service account key: {e}",
                suggestions=["service_account_key must hold the JSON key file contents, not a path"],
                details={"project": self.project_id},
            ) from e

    def registry_url(self) -> str:
        return self._registry_url

    def authenticate(self, ctx: Optional[OperationContext] = None) -> Authenticator:
        """Ensure the repository exists and exchange the service account for an access token."""
        ctx = ensure_context(ctx)
        if not self.project_id:
            raise ConfigurationError("GCP project id is required for Artifact Registry")
        details = {"provider": "gcp", "project": self.project_id, "repository": self.repository_name}

        self._registry_url = artifact_registry_url(self.region, self.project_id, self.repository_name)
        credentials = self._google_credentials()
        service = self._service_factory(credentials)
        repositories = service.projects().locations().repositories()

        parent = f"projects/{self.project_id}/locations/{self.region}"
        name = f"{parent}/repositories/{self.repository_name}"

        def create():
            operation = repositories.create(
                parent=parent,
                repositoryId=self.repository_name,
                body={"format": "DOCKER", "description": f"Repository for {self.repository_name}"},
            ).execute()
            return self._wait_for_operation(service, operation, ctx)

        ensure_exists(
            f"Artifact Registry repository {self.repository_name}",
            get=lambda: repositories.get(name=name).execute(),
            create=create,
            is_not_found=_is_not_found,
            ctx=ctx,
            **details,
        )

        ctx.check("Google OAuth2 token exchange")
        try:
            credentials.refresh(Request())
        except GoogleAuthError as e:
            raise AuthenticationError(f"failed to get OAuth2 token: {e}", details=details) from e
        if not credentials.token:
            raise AuthenticationError("OAuth2 token exchange returned no access token", details=details)

        logging.info(f"Retrieved Artifact Registry credentials for {self._registry_url}")
        return Authenticator(username=OAUTH2_USERNAME, password=credentials.token)

    @staticmethod
    def _wait_for_operation(service, operation: Dict[str, Any], ctx: OperationContext) -> Dict[str, Any]:
        operations = service.projects().locations().operations()
        while not operation.get("done"):
            ctx.wait(OPERATION_POLL_INTERVAL)
            ctx.check(f"operation {operation.get('name')}")
            operation = operations.get(name=operation["name"]).execute()
        if operation.get("error"):
            raise OperationFailedError(operation.get("name", ""), operation["error"])
        return operation.get("response", {})

    def image_reference(self) -> str:
        if not self._registry_url:
            raise RuntimeError(f"{self!r} must be authenticated before its image reference is known")
        return f"{self._registry_url}/{self.image_name}:{self.image_tag}"

    def image_uri(self) -> str:
        return self.image_reference()
