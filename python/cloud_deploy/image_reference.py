"""
Parsing of container image references.

Accepts the usual ``[registry/]repository[:tag][@digest]`` form. The first
path component is treated as a registry host when it contains a dot or a
port, or is ``localhost``.
"""

import re
from dataclasses import dataclass
from typing import Optional

from cloud_deploy.error_utils import ConfigurationError

DEFAULT_TAG = "latest"

_COMPONENT = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
_DIGEST = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[A-Fa-f0-9]{32,}$")
_HOST = re.compile(r"^[A-Za-z0-9.-]+(?::[0-9]+)?$")


@dataclass(frozen=True)
class ImageReference:
    registry: str
    repository: str
    tag: str = DEFAULT_TAG
    digest: Optional[str] = None

    @property
    def name(self) -> str:
        """registry/repository, or just the repository for local images"""
        return f"{self.registry}/{self.repository}" if self.registry else self.repository

    def __str__(self) -> str:
        ref = f"{self.name}:{self.tag}"
        if self.digest:
            ref = f"{ref}@{self.digest}"
        return ref


def _invalid(ref: str, reason: str) -> ConfigurationError:
    return ConfigurationError(
        f"invalid image reference '{ref}': {reason}",
        suggestions=["Use the form [registry/]repository[:tag][@digest], e.g. myapp:1.0"],
        details={"reference": ref},
    )


def parse_image_reference(ref: str) -> ImageReference:
    """Split an image reference into registry, repository, tag and digest.

    Raises:
        ConfigurationError: If the reference is empty or malformed
    """
    value = (ref or "").strip()
    if not value:
        raise _invalid(ref, "reference is empty")

    digest = None
    if "@" in value:
        value, digest = value.split("@", 1)
        if not _DIGEST.match(digest):
            raise _invalid(ref, f"malformed digest '{digest}'")

    tag = DEFAULT_TAG
    last_slash = value.rfind("/")
    last_colon = value.rfind(":")
    # A colon after the last slash separates the tag; before it, it is a registry port
    if last_colon > last_slash:
        value, tag = value[:last_colon], value[last_colon + 1:]
        if not _TAG.match(tag):
            raise _invalid(ref, f"malformed tag '{tag}'")

    registry = ""
    parts = value.split("/")
    if len(parts) > 1 and ("." in parts[0] or ":" in parts[0] or parts[0] == "localhost"):
        registry = parts.pop(0)
        if not _HOST.match(registry):
            raise _invalid(ref, f"malformed registry host '{registry}'")

    if not parts or not all(_COMPONENT.match(part) for part in parts):
        raise _invalid(ref, "repository must be lowercase path components")

    return ImageReference(registry=registry, repository="/".join(parts), tag=tag, digest=digest)
