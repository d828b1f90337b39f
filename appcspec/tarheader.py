"""Fill tar headers with ownership, device and link details from file status."""

from __future__ import annotations

import os
import stat
import tarfile
from typing import Any, MutableMapping

_NANOSECONDS = 1_000_000_000


def populate(info: tarfile.TarInfo, st: Any, seen: MutableMapping[int, str]) -> None:
    """Complete ``info`` from the stat result ``st``.

    Copies owner ids and device numbers and records the change time. A file
    whose inode is already in ``seen`` becomes a hard link to the name stored
    there; otherwise its inode is recorded under ``info.name``.
    """
    info.uid = int(st.st_uid)
    info.gid = int(st.st_gid)

    mode = st.st_mode
    if stat.S_ISBLK(mode) or stat.S_ISCHR(mode):
        info.devmajor = os.major(st.st_rdev)
        info.devminor = os.minor(st.st_rdev)

    ctime_ns = getattr(st, "st_ctime_ns", None)
    if ctime_ns is not None:
        seconds, nanoseconds = divmod(int(ctime_ns), _NANOSECONDS)
        info.pax_headers["ctime"] = f"{seconds}.{nanoseconds:09d}"

    inode = int(st.st_ino)
    first_name = seen.get(inode)
    if first_name is not None:
        info.linkname = first_name
        info.type = tarfile.LNKTYPE
    else:
        seen[inode] = info.name