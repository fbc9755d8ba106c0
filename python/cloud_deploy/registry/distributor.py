"""
Distribution of one source image to several registries.

Registries are processed strictly in the order they were added. The first
failure aborts the run: later registries are not attempted, earlier pushes
stay in place, and no result map is returned.
"""

import logging
from typing import Dict, List, Optional, Tuple

from cloud_deploy.context import OperationContext, ensure_context
from cloud_deploy.error_utils import classify_sdk_error
from cloud_deploy.image_reference import parse_image_reference
from cloud_deploy.registry.protocol import Registry
from cloud_deploy.skopeo_client import SkopeoClient


class Distributor:
    """Single-use builder: add registries, then call distribute() once."""

    def __init__(self, source_image: str, skopeo_client: SkopeoClient):
        self.source_image = source_image
        self.skopeo_client = skopeo_client
        self._registries: List[Registry] = []
        self._consumed = False

    @property
    def registries(self) -> Tuple[Registry, ...]:
        return tuple(self._registries)

    def add_registry(self, registry: Registry) -> None:
        if self._consumed:
            raise RuntimeError("cannot add a registry after distribute() has been called")
        if not isinstance(registry, Registry):
            raise TypeError(f"{registry!r} does not implement the Registry protocol")
        self._registries.append(registry)

    def distribute(self, ctx: Optional[OperationContext] = None) -> Dict[str, str]:
        """Push the source image to every registry.

        Returns:
            Mapping of registry URL to the pushed image URI, one entry per registry

        Raises:
            The first failure, with the failing registry in its message and details
        """
        if self._consumed:
            raise RuntimeError("distribute() can only be called once per Distributor")
        self._consumed = True
        ctx = ensure_context(ctx)

        try:
            loaded = self.skopeo_client.load_image(self.source_image, ctx)
        except Exception as e:
            raise classify_sdk_error(f"load of source image {self.source_image}", e, source=self.source_image) from e

        image_uris = {}
        try:
            for registry in self._registries:
                label = repr(registry)
                logging.info(f"=== Distributing {self.source_image} to {label} ===")

                try:
                    authenticator = registry.authenticate(ctx)
                except Exception as e:
                    raise classify_sdk_error(f"authentication with registry {label}", e, registry=label) from e

                try:
                    target = parse_image_reference(registry.image_reference())
                except Exception as e:
                    raise classify_sdk_error(f"image reference for registry {label}", e, registry=label) from e

                try:
                    self.skopeo_client.push_image(loaded, target, authenticator, ctx)
                except Exception as e:
                    raise classify_sdk_error(
                        f"push to registry {registry.registry_url()}", e, registry=label
                    ) from e

                logging.info(f"Successfully pushed to {registry.registry_url()}")
                image_uris[registry.registry_url()] = registry.image_uri()
        finally:
            self.skopeo_client.cleanup(loaded)

        return image_uris
