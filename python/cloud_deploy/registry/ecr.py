"""
AWS Elastic Container Registry.

The account id is discovered with STS GetCallerIdentity, so the registry URL
is only known once authenticate() has run.
"""

import base64
import binascii
import logging
from typing import Callable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from cloud_deploy.context import OperationContext, ensure_context
from cloud_deploy.credentials import AWSCredentials
from cloud_deploy.error_utils import AuthenticationError, classify_sdk_error
from cloud_deploy.registry.protocol import Authenticator
from cloud_deploy.registry.provisioning import ensure_exists


def ecr_registry_url(account_id: str, region: str) -> str:
    return f"{account_id}.dkr.ecr.{region}.amazonaws.com"


def _is_repository_not_found(error: Exception) -> bool:
    return (
        isinstance(error, ClientError)
        and error.response.get("Error", {}).get("Code") == "RepositoryNotFoundException"
    )


class ECRRegistry:
    """ECR repository in the caller's account"""

    def __init__(
        self,
        region: str,
        repository_name: str,
        image_tag: str,
        credentials: Optional[AWSCredentials] = None,
        session_factory: Callable[..., boto3.Session] = boto3.Session,
    ):
        """Initialize ECRRegistry (no network calls are made here)

        Args:
            region: AWS region (e.g. "us-east-1")
            repository_name: ECR repository, also used as the image name
            image_tag: Tag pushed to the repository
            credentials: Explicit access keys; the default boto3 credential chain is used when omitted
        """
        self.region = region
        self.repository_name = repository_name
        self.image_tag = image_tag
        self.credentials = credentials
        self._session_factory = session_factory
        self.account_id = ""
        self._registry_url = ""

    def __repr__(self) -> str:
        return f"ECRRegistry(region={self.region!r}, repository={self.repository_name!r})"

    def _session(self) -> boto3.Session:
        if self.credentials is None:
            return self._session_factory(region_name=self.region)
        return self._session_factory(
            aws_access_key_id=self.credentials.access_key_id,
            aws_secret_access_key=self.credentials.secret_access_key,
            aws_session_token=self.credentials.session_token or None,
            region_name=self.region,
        )

    def registry_url(self) -> str:
        return self._registry_url

    def authenticate(self, ctx: Optional[OperationContext] = None) -> Authenticator:
        """Resolve the account id, ensure the repository exists and fetch push credentials."""
        ctx = ensure_context(ctx)
        details = {"provider": "aws", "region": self.region, "repository": self.repository_name}
        session = self._session()

        ctx.check("AWS account id lookup")
        try:
            identity = session.client("sts").get_caller_identity()
        except (ClientError, BotoCoreError) as e:
            raise classify_sdk_error("AWS account id lookup", e, **details) from e
        self.account_id = identity["Account"]
        self._registry_url = ecr_registry_url(self.account_id, self.region)
        logging.info(f"Resolved ECR registry: {self._registry_url}")

        ecr = session.client("ecr")
        ensure_exists(
            f"ECR repository {self.repository_name}",
            get=lambda: ecr.describe_repositories(repositoryNames=[self.repository_name])["repositories"][0],
            create=lambda: ecr.create_repository(repositoryName=self.repository_name)["repository"],
            is_not_found=_is_repository_not_found,
            ctx=ctx,
            **details,
        )

        ctx.check("ECR authorization token request")
        try:
            response = ecr.get_authorization_token()
        except (ClientError, BotoCoreError) as e:
            raise classify_sdk_error("ECR authorization token request", e, **details) from e

        authorization = response.get("authorizationData") or []
        if not authorization:
            raise AuthenticationError("no authorization data returned from ECR", details=details)

        # Token is base64 "AWS:password"
        try:
            token = base64.b64decode(authorization[0]["authorizationToken"]).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError, KeyError) as e:
            raise AuthenticationError(f"failed to decode ECR authorization token: {e}", details=details) from e
        username, sep, password = token.partition(":")
        if not sep or not username or not password:
            raise AuthenticationError("invalid ECR authorization token format", details=details)

        logging.info("ECR authentication successful")
        return Authenticator(username=username, password=password)

    def image_reference(self) -> str:
        if not self._registry_url:
            raise RuntimeError(f"{self!r} must be authenticated before its image reference is known")
        return f"{self._registry_url}/{self.repository_name}:{self.image_tag}"

    def image_uri(self) -> str:
        return self.image_reference()
