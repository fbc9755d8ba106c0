"""Structural types shared by the registry variants and the distributor."""

from dataclasses import dataclass, field
from typing import Optional, Protocol, runtime_checkable

from cloud_deploy.context import OperationContext


@dataclass(frozen=True)
class Authenticator:
    """Push credentials for one registry (handed to skopeo as --dest-creds)"""

    username: str
    password: str = field(repr=False)


@runtime_checkable
class Registry(Protocol):
    """Capability set every cloud registry variant provides.

    image_reference() and image_uri() are only meaningful after a successful
    authenticate(), which resolves the registry URL as a side effect.
    """

    def registry_url(self) -> str:
        ...

    def authenticate(self, ctx: Optional[OperationContext] = None) -> Authenticator:
        ...

    def image_reference(self) -> str:
        ...

    def image_uri(self) -> str:
        ...
