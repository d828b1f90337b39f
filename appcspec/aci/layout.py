"""Validate App Container Image layouts on disk and in tar archives.

A layout holds a ``manifest`` file and a ``rootfs`` directory; every other
path must live under ``rootfs``.
"""

from __future__ import annotations

import json
import os
import posixpath
import stat
import tarfile
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Optional

MANIFEST_FILE = "manifest"
ROOTFS_DIR = "rootfs"


class LayoutError(Exception):
    """An image layout does not meet the image format."""


class NoManifestError(LayoutError):
    """The layout has no image manifest."""

    def __init__(self) -> None:
        super().__init__("no image manifest found in layout")


class NoRootFSError(LayoutError):
    """The layout has no rootfs directory."""

    def __init__(self) -> None:
        super().__init__("no rootfs found in layout")


def _walk(root: str) -> Iterator[os.DirEntry[str]]:
    """Yield every entry below ``root`` in lexical order, without following symlinks."""
    with os.scandir(root) as it:
        entries = sorted(it, key=lambda entry: entry.name)
    for entry in entries:
        yield entry
        if entry.is_dir(follow_symlinks=False):
            yield from _walk(entry.path)


def validate_layout(directory: str | os.PathLike[str]) -> dict[str, Any]:
    """Check the layout under ``directory`` and return its decoded manifest.

    Raises LayoutError (or a subclass) on the first problem found.
    """
    try:
        st = os.stat(directory)
    except OSError as err:
        raise LayoutError(f"error accessing layout: {err}") from err
    if not stat.S_ISDIR(st.st_mode):
        raise LayoutError(f'given path "{os.fspath(directory)}" is not a directory')

    root = os.fspath(directory)
    manifest_path: Optional[str] = None
    has_rootfs = False
    files = []
    for entry in _walk(root):
        rel = os.path.relpath(entry.path, root)
        if rel == MANIFEST_FILE:
            manifest_path = entry.path
        elif rel == ROOTFS_DIR:
            if not entry.is_dir(follow_symlinks=False):
                raise LayoutError("rootfs is not a directory")
            has_rootfs = True
        else:
            files.append(rel)

    loader = None
    if manifest_path is not None:
        found = manifest_path

        def loader() -> bytes:
            return Path(found).read_bytes()

    return _validate(loader, has_rootfs, files)


def validate_archive(tar: tarfile.TarFile) -> dict[str, Any]:
    """Check the layout held in ``tar`` and return its decoded manifest.

    Raises LayoutError (or a subclass) on the first problem found.
    """
    seen: dict[str, None] = {}
    manifest_parts = []
    has_manifest = False
    has_rootfs = False
    for member in tar:
        name = posixpath.normpath(member.name)
        if name == ".":
            continue
        if name == MANIFEST_FILE:
            extracted = tar.extractfile(member)
            manifest_parts.append(extracted.read() if extracted is not None else b"")
            has_manifest = True
        elif name == ROOTFS_DIR:
            if not member.isdir():
                raise LayoutError("rootfs is not a directory")
            has_rootfs = True
        else:
            if name in seen:
                raise LayoutError(f"duplicate file entry in archive: {name}")
            seen[name] = None

    data = b"".join(manifest_parts)
    loader = (lambda: data) if has_manifest else None
    return _validate(loader, has_rootfs, seen)


def _validate(
    load_manifest: Optional[Callable[[], bytes]],
    has_rootfs: bool,
    files: Iterable[str],
) -> dict[str, Any]:
    if load_manifest is None:
        raise NoManifestError()
    if not has_rootfs:
        raise NoRootFSError()
    try:
        data = load_manifest()
    except OSError as err:
        raise LayoutError(f"error reading image manifest: {err}") from err
    try:
        manifest = json.loads(data)
        if not isinstance(manifest, dict):
            raise ValueError("manifest is not a JSON object")
    except ValueError as err:
        raise LayoutError(f"image manifest validation failed: {err}") from err
    for path in files:
        if not path.startswith(ROOTFS_DIR):
            raise LayoutError(f'unrecognized file path in layout: "{path}"')
    return manifest