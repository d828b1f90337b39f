"""Detect and open App Container Image files in their various compressions."""

from __future__ import annotations

import bz2
import enum
import gzip
import json
import lzma
import posixpath
import tarfile
from typing import IO, Any

from appcspec.aci.layout import MANIFEST_FILE


class FileType(str, enum.Enum):
    """Kinds of file recognised by their leading bytes."""

    GZIP = "gz"
    BZIP2 = "bz2"
    XZ = "xz"
    TAR = "tar"
    TEXT = "text"
    UNKNOWN = "unknown"


_READ_LEN = 512

_GZIP_MAGIC = bytes.fromhex("1f8b")
_BZIP2_MAGIC = bytes.fromhex("425a68")
_XZ_MAGIC = bytes.fromhex("fd377a585a00")
_TAR_MAGIC = bytes.fromhex("7573746172")
_TAR_OFFSET = 257
_TAR_END = _TAR_OFFSET + len(_TAR_MAGIC)

_WHITESPACE = b"\t\n\x0c\r "
_HTML_TAGS = (
    b"<!DOCTYPE HTML", b"<HTML", b"<HEAD", b"<SCRIPT", b"<IFRAME", b"<H1",
    b"<DIV", b"<FONT", b"<TABLE", b"<A", b"<STYLE", b"<TITLE", b"<B",
    b"<BODY", b"<BR", b"<P", b"<!--",
)
_NON_TEXT_PREFIXES = (
    b"%PDF-", b"%!PS-Adobe-", b"\xfe\xff", b"\xff\xfe", b"GIF87a", b"GIF89a",
    b"\x89PNG\r\n\x1a\n", b"\xff\xd8\xff", b"BM", b"OggS\x00", b"ID3",
    b"PK\x03\x04", b"Rar!\x1a\x07", b"\x1aE\xdf\xa3", b"\x00asm",
)
_BINARY_BYTES = frozenset([*range(0x00, 0x09), 0x0B, *range(0x0E, 0x1B), *range(0x1C, 0x20)])


def _read_up_to(stream: IO[bytes], size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _is_plain_text(data: bytes) -> bool:
    """Return True when content sniffing would call ``data`` UTF-8 plain text."""
    if data.startswith(b"\xef\xbb\xbf"):
        return True
    stripped = data.lstrip(_WHITESPACE)
    upper = stripped.upper()
    for tag in _HTML_TAGS:
        if upper.startswith(tag) and len(stripped) > len(tag) and stripped[len(tag)] in b" >":
            return False
    if stripped.startswith(b"<?xml"):
        return False
    if data.startswith(_NON_TEXT_PREFIXES):
        return False
    if data.startswith(b"RIFF") and data[8:12] in (b"WEBP", b"WAVE", b"AVI "):
        return False
    return not any(byte in _BINARY_BYTES for byte in data)


def detect_file_type(stream: IO[bytes]) -> FileType:
    """Guess the type of ``stream`` from its first bytes, consuming up to 512 of them."""
    data = _read_up_to(stream, _READ_LEN)
    if data.startswith(_GZIP_MAGIC):
        return FileType.GZIP
    if data.startswith(_BZIP2_MAGIC):
        return FileType.BZIP2
    if data.startswith(_XZ_MAGIC):
        return FileType.XZ
    if len(data) > _TAR_END and data[_TAR_OFFSET:_TAR_END] == _TAR_MAGIC:
        return FileType.TAR
    if _is_plain_text(data):
        return FileType.TEXT
    return FileType.UNKNOWN


def xz_reader(stream: IO[bytes]) -> IO[bytes]:
    """Return a reader that decompresses the xz data in ``stream``."""
    return lzma.LZMAFile(stream, mode="rb", format=lzma.FORMAT_XZ)


def new_compressed_reader(stream: IO[bytes]) -> IO[bytes]:
    """Return a reader of the uncompressed tar data of the image in ``stream``."""
    stream.seek(0)
    ftype = detect_file_type(stream)
    stream.seek(0)
    if ftype is FileType.GZIP:
        return gzip.GzipFile(fileobj=stream, mode="rb")
    if ftype is FileType.BZIP2:
        return bz2.BZ2File(stream, mode="rb")
    if ftype is FileType.XZ:
        return xz_reader(stream)
    if ftype is FileType.TAR:
        return stream
    if ftype is FileType.UNKNOWN:
        raise ValueError("unknown image filetype")
    raise ValueError(f"image filetype {ftype.value!r} is not an archive")


def new_compressed_tar_reader(stream: IO[bytes]) -> tarfile.TarFile:
    """Open the image in ``stream`` as a sequential tar archive."""
    return tarfile.open(fileobj=new_compressed_reader(stream), mode="r|")


def manifest_from_image(stream: IO[bytes]) -> dict[str, Any]:
    """Return the decoded image manifest stored in the image in ``stream``."""
    with new_compressed_tar_reader(stream) as tar:
        try:
            for member in tar:
                if posixpath.normpath(member.name) != MANIFEST_FILE:
                    continue
                extracted = tar.extractfile(member)
                data = extracted.read() if extracted is not None else b""
                manifest = json.loads(data)
                if not isinstance(manifest, dict):
                    raise ValueError("image manifest is not a JSON object")
                return manifest
        except (tarfile.TarError, OSError, EOFError, lzma.LZMAError) as err:
            raise ValueError(f"error extracting tarball: {err}") from err
    raise ValueError("missing manifest")