"""Write App Container Images into tar archives."""

from __future__ import annotations

import io
import json
import tarfile
import time
from typing import IO, Any, Optional

from appcspec.aci.layout import MANIFEST_FILE


class ImageWriter:
    """Adds files to a tar archive and writes the image manifest when closed."""

    def __init__(self, manifest: dict[str, Any], tar: tarfile.TarFile) -> None:
        self.manifest = manifest
        self._tar = tar
        self._closed = False

    def add_file(self, info: tarfile.TarInfo, fileobj: Optional[IO[bytes]] = None) -> None:
        """Write the header ``info`` followed by the contents of ``fileobj``."""
        self._tar.addfile(info, fileobj)

    def close(self) -> None:
        """Append the manifest and finish the archive."""
        if self._closed:
            return
        data = json.dumps(self.manifest, separators=(",", ":")).encode("utf-8")
        info = tarfile.TarInfo(MANIFEST_FILE)
        info.size = len(data)
        info.mode = 0o644
        info.uid = 0
        info.gid = 0
        info.uname = "root"
        info.gname = "root"
        info.mtime = int(time.time())
        info.type = tarfile.REGTYPE
        self.add_file(info, io.BytesIO(data))
        self._tar.close()
        self._closed = True

    def __enter__(self) -> "ImageWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self._tar.close()
            self._closed = True