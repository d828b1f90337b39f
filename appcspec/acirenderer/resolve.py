"""Flatten the dependency tree of an image into an ordered list."""

from __future__ import annotations

from dataclasses import dataclass
from typing import IO, Any, Mapping, Optional, Protocol, Sequence


@dataclass
class Image:
    """An image manifest, the provider key of its image and its depth in the tree."""

    manifest: dict[str, Any]
    key: str
    level: int = 0


class ACIProvider(Protocol):
    """Gives access to image contents by key."""

    def read_stream(self, key: str) -> IO[bytes]:
        """Return a binary stream of the image stored under ``key``."""
        ...

    def resolve_key(self, key: str) -> str:
        """Return the provider key for an image ID."""
        ...

    def hash_to_key(self, digest: Any) -> str:
        """Return the provider key matching a full SHA-512 hash object."""
        ...


class ACIRegistry(ACIProvider, Protocol):
    """An ACIProvider that can also look images up by name and give manifests."""

    def get_image_manifest(self, key: str) -> dict[str, Any]:
        """Return the manifest of the image stored under ``key``."""
        ...

    def get_aci(self, name: str, labels: Optional[Sequence[Mapping[str, str]]]) -> str:
        """Return the key of the best image matching ``name`` and ``labels``."""
        ...


def _dependency_key(dependency: Mapping[str, Any], registry: ACIRegistry) -> str:
    image_id = dependency.get("imageID")
    if image_id:
        return registry.resolve_key(str(image_id))
    name = dependency.get("imageName", dependency.get("app", ""))
    return registry.get_aci(name, dependency.get("labels"))


def create_dep_list(key: str, registry: ACIRegistry) -> list[Image]:
    """Return the flat dependency tree of the image stored under ``key``.

    The image itself comes first at level 0. The dependencies of each image
    are placed right after it, the last listed dependency first.
    """
    images = [Image(registry.get_image_manifest(key), key, 0)]
    pos = 0
    while pos < len(images):
        image = images[pos]
        for dependency in image.manifest.get("dependencies") or []:
            dep_key = _dependency_key(dependency, registry)
            dep_manifest = registry.get_image_manifest(dep_key)
            images.insert(pos + 1, Image(dep_manifest, dep_key, image.level + 1))
        pos += 1
    return images


def create_dep_list_from_image_id(image_id: str, registry: ACIRegistry) -> list[Image]:
    """Return the flat dependency tree of the image with ``image_id``."""
    return create_dep_list(registry.resolve_key(str(image_id)), registry)


def create_dep_list_from_name_labels(
    name: str, labels: Optional[Sequence[Mapping[str, str]]], registry: ACIRegistry
) -> list[Image]:
    """Return the flat dependency tree of the best image matching ``name`` and ``labels``."""
    return create_dep_list(registry.get_aci(name, labels), registry)