"""Work out which files of which image make up a rendered image."""

from __future__ import annotations

import hashlib
import posixpath
import tarfile
from contextlib import closing
from dataclasses import dataclass, field
from typing import IO, Any, Iterable, Iterator, Mapping, Optional, Sequence

from appcspec.acirenderer.resolve import (
    ACIProvider,
    ACIRegistry,
    Image,
    create_dep_list_from_image_id,
    create_dep_list_from_name_labels,
)

_CHUNK = 64 * 1024


@dataclass
class ACIFiles:
    """The paths to take from the image stored under ``key``."""

    key: str = ""
    file_map: set[str] = field(default_factory=set)


class _HashingReader:
    """Pass reads through while feeding every byte read to a hash."""

    def __init__(self, stream: IO[bytes], hasher: Any) -> None:
        self._stream = stream
        self._hasher = hasher

    def read(self, size: int = -1) -> bytes:
        data = self._stream.read(size)
        self._hasher.update(data)
        return data


def get_rendered_aci_with_image_id(image_id: str, registry: ACIRegistry) -> list[ACIFiles]:
    """Render the image with ``image_id`` and its dependencies."""
    return get_rendered_aci_from_list(create_dep_list_from_image_id(image_id, registry), registry)


def get_rendered_aci(
    name: str, labels: Optional[Sequence[Mapping[str, str]]], registry: ACIRegistry
) -> list[ACIFiles]:
    """Render the best image matching ``name`` and ``labels`` and its dependencies."""
    images = create_dep_list_from_name_labels(name, labels, registry)
    return get_rendered_aci_from_list(images, registry)


def get_rendered_aci_from_list(images: Sequence[Image], provider: ACIProvider) -> list[ACIFiles]:
    """Return, per image, the files it contributes; the manifest comes from the first."""
    if not images:
        raise ValueError("image list empty")
    all_files: set[str] = set()
    rendered = []
    for pos, image in enumerate(images):
        files = _get_aci_files(image, provider, all_files, get_upper_pwlm(images, pos))
        if pos == 0:
            files.file_map.add("manifest")
        rendered.append(files)
    return rendered


def get_upper_pwlm(images: Sequence[Image], pos: int) -> Optional[set[str]]:
    """Return the path whitelist of the highest ancestor on the branch of ``images[pos]``."""
    pwlm = None
    current = images[pos].level
    for image in reversed(images[: pos + 1]):
        pwl = image.manifest.get("pathWhitelist") or []
        if image.level < current and pwl:
            pwlm = pwl_to_map(pwl)
        current = image.level
    return pwlm


def pwl_to_map(pwl: Iterable[str]) -> Optional[set[str]]:
    """Turn whitelist paths into archive names under rootfs; None for an empty list."""
    paths = {posixpath.normpath(f"rootfs/{name}") for name in pwl}
    return paths or None


def walk(tar: tarfile.TarFile) -> Iterator[tarfile.TarInfo]:
    """Yield the members of ``tar`` in order."""
    try:
        yield from tar
    except tarfile.TarError as err:
        raise ValueError(f"Error reading tar entry: {err}") from err


def _get_aci_files(
    image: Image,
    provider: ACIProvider,
    all_files: set[str],
    pwlm: Optional[set[str]],
) -> ACIFiles:
    pwl = image.manifest.get("pathWhitelist") or []
    own_pwlm = pwl_to_map(pwl)
    result = ACIFiles()
    hasher = hashlib.sha512()
    with closing(provider.read_stream(image.key)) as stream:
        reader = _HashingReader(stream, hasher)
        try:
            tar = tarfile.open(fileobj=reader, mode="r|")
        except tarfile.TarError as err:
            raise ValueError(f"Error reading tar entry: {err}") from err
        with tar:
            for member in walk(tar):
                name = posixpath.normpath(member.name)
                if not name.startswith("rootfs/"):
                    continue
                if not member.isdir() and pwl and name not in (own_pwlm or ()):
                    continue
                if pwlm is not None and name not in pwlm:
                    continue
                if name in all_files:
                    continue
                result.file_map.add(name)
                all_files.add(name)
        try:
            while reader.read(_CHUNK):
                pass
        except OSError as err:
            raise ValueError(f"error reading ACI: {err}") from err

    got = provider.hash_to_key(hasher)
    if got != image.key:
        raise ValueError(f"image hash does not match expected ({got} != {image.key})")
    result.key = image.key
    return result