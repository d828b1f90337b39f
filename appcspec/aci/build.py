"""Build an App Container Image from a layout directory."""

from __future__ import annotations

import os
import stat
import tarfile
from typing import Iterator

from appcspec.aci.layout import MANIFEST_FILE
from appcspec.aci.writer import ImageWriter
from appcspec.tarheader import populate


def _walk(root: str) -> Iterator[tuple[str, str, os.stat_result]]:
    """Yield (relative path, path, lstat) below ``root`` in lexical order."""

    def visit(path: str, rel: str) -> Iterator[tuple[str, str, os.stat_result]]:
        for name in sorted(os.listdir(path)):
            child = os.path.join(path, name)
            child_rel = f"{rel}/{name}" if rel else name
            st = os.lstat(child)
            yield child_rel, child, st
            if stat.S_ISDIR(st.st_mode):
                yield from visit(child, child_rel)

    yield from visit(root, "")


def build_from_layout(root: str | os.PathLike[str], writer: ImageWriter) -> None:
    """Add every entry of the layout at ``root`` except its manifest to ``writer``.

    Sockets are skipped, and files sharing an inode are stored as hard links
    to the first one seen.
    """
    root = os.fspath(root)
    seen: dict[int, str] = {}
    for rel, path, st in _walk(root):
        if rel == MANIFEST_FILE:
            continue
        mode = st.st_mode
        if stat.S_ISSOCK(mode):
            continue

        info = tarfile.TarInfo(rel)
        info.mode = stat.S_IMODE(mode)
        info.mtime = int(st.st_mtime)
        info.size = 0
        if stat.S_ISDIR(mode):
            info.type = tarfile.DIRTYPE
        elif stat.S_ISLNK(mode):
            info.type = tarfile.SYMTYPE
            info.linkname = os.readlink(path)
        elif stat.S_ISFIFO(mode):
            info.type = tarfile.FIFOTYPE
        elif stat.S_ISCHR(mode):
            info.type = tarfile.CHRTYPE
        elif stat.S_ISBLK(mode):
            info.type = tarfile.BLKTYPE
        else:
            info.type = tarfile.REGTYPE
            info.size = st.st_size

        populate(info, st, seen)

        if info.type == tarfile.REGTYPE:
            with open(path, "rb") as contents:
                writer.add_file(info, contents)
        else:
            info.size = 0
            writer.add_file(info, None)