"""The ``validate`` command: check images, layouts and manifests."""

from __future__ import annotations

import argparse
import bz2
import contextlib
import gzip
import json
import lzma
import os
import stat
import sys
import tarfile
import zlib
from typing import IO, Optional, Sequence

from appcspec.aci.file import FileType, detect_file_type, xz_reader
from appcspec.aci.layout import LayoutError, validate_archive, validate_layout
from appcspec.discovery.parse import _check_ac_name

TYPE_APP_IMAGE = "appimage"
TYPE_IMAGE_LAYOUT = "layout"
TYPE_MANIFEST = "manifest"
VALIDATE_TYPES = [TYPE_APP_IMAGE, TYPE_IMAGE_LAYOUT, TYPE_MANIFEST]

_MANIFEST_KINDS = ("ImageManifest", "PodManifest")


class _FlagError(Exception):
    """The command line could not be parsed."""


class _Abort(Exception):
    """Validation cannot go on; the message is reported and the command fails."""


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        raise _FlagError(message)


def _stderr(message: str) -> None:
    print(message.rstrip("\n"), file=sys.stderr)


def detect_val_type(stream: IO[bytes]) -> str:
    """Return the validation type suited to ``stream``, or "" if unknown; rewinds it."""
    typ = detect_file_type(stream)
    stream.seek(0)
    if typ in (FileType.XZ, FileType.GZIP, FileType.BZIP2, FileType.TAR):
        return TYPE_APP_IMAGE
    if typ is FileType.TEXT:
        return TYPE_MANIFEST
    return ""


def maybe_decompress(stream: IO[bytes]) -> IO[bytes]:
    """Return a reader of the tar data in ``stream``, decompressing it if needed."""
    typ = detect_file_type(stream)
    stream.seek(0)
    if typ is FileType.GZIP:
        return gzip.GzipFile(fileobj=stream, mode="rb")
    if typ is FileType.BZIP2:
        return bz2.BZ2File(stream, mode="rb")
    if typ is FileType.XZ:
        return xz_reader(stream)
    if typ is FileType.TAR:
        return stream
    if typ is FileType.UNKNOWN:
        raise ValueError("unknown filetype")
    raise ValueError(f"bad type returned from DetectFileType: {typ.value}")


def _check_layout(path: str, debug: bool) -> bool:
    try:
        validate_layout(path)
    except LayoutError as err:
        _stderr(f"{path}: invalid image layout: {err}")
        return False
    if debug:
        _stderr(f"{path}: valid image layout")
    return True


def _check_app_image(path: str, fh: IO[bytes], debug: bool) -> bool:
    try:
        reader = maybe_decompress(fh)
    except (ValueError, OSError) as err:
        raise _Abort(f"{path}: error decompressing file: {err}") from err
    try:
        with tarfile.open(fileobj=reader, mode="r|") as tar:
            validate_archive(tar)
    except (LayoutError, tarfile.TarError, OSError, EOFError, lzma.LZMAError, zlib.error) as err:
        _stderr(f"{path}: error validating: {err}")
        return False
    if debug:
        _stderr(f"{path}: valid app container image")
    return True


def _check_manifest(path: str, fh: IO[bytes], debug: bool) -> bool:
    try:
        data = fh.read()
    except OSError as err:
        raise _Abort(f"{path}: unable to read file {err}") from err
    try:
        document = json.loads(data)
        if not isinstance(document, dict):
            raise ValueError("manifest is not a JSON object")
        kind = document.get("acKind")
        if kind not in _MANIFEST_KINDS:
            raise ValueError(f"bad acKind: {kind!r}")
    except ValueError as err:
        raise _Abort(f"{path}: error unmarshaling manifest: {err}") from err

    try:
        if kind == "ImageManifest":
            _check_ac_name(str(document.get("name", "")))
    except ValueError as err:
        _stderr(f"{path}: invalid {kind}: {err}")
        return False
    if debug:
        _stderr(f"{path}: valid {kind}")
    return True


def _validate_one(path: str, vt: str, debug: bool) -> bool:
    try:
        st = os.stat(path)
    except OSError as err:
        raise _Abort(f"unable to access {path}: {err}") from err

    with contextlib.ExitStack() as stack:
        fh: Optional[IO[bytes]] = None
        if stat.S_ISDIR(st.st_mode):
            if vt == "":
                vt = TYPE_IMAGE_LAYOUT
            elif vt in (TYPE_MANIFEST, TYPE_APP_IMAGE):
                raise _Abort(f"{path} is a directory (wrong --type?)")
            elif vt != TYPE_IMAGE_LAYOUT:
                raise ValueError(f"unexpected type: {vt}")
        else:
            try:
                fh = stack.enter_context(open(path, "rb"))
            except OSError as err:
                raise _Abort(f"{path}: unable to open: {err}") from err

        if vt == "" and fh is not None:
            try:
                vt = detect_val_type(fh)
            except OSError as err:
                raise _Abort(f"{path}: error detecting file type: {err}") from err

        if vt == TYPE_IMAGE_LAYOUT:
            return _check_layout(path, debug)
        if vt == TYPE_APP_IMAGE and fh is not None:
            return _check_app_image(path, fh, debug)
        if vt == TYPE_MANIFEST and fh is not None:
            return _check_manifest(path, fh, debug)
        raise _Abort(f"{path}: unable to detect filetype (try --type)")


def run_validate(argv: Optional[Sequence[str]] = None, debug: bool = False) -> int:
    """Validate every file named in ``argv``; return the exit status."""
    parser = _Parser(prog="validate", add_help=False, allow_abbrev=False)
    parser.add_argument(
        "--type", "-type", dest="type", default="",
        help="Type of file to validate. If unset, the type is detected. "
        f'One of "{",".join(VALIDATE_TYPES)}"',
    )
    parser.add_argument("paths", nargs="*")
    try:
        opts = parser.parse_args(list(argv or []))
    except _FlagError as err:
        _stderr(str(err))
        return 2

    if not opts.paths:
        _stderr("must pass one or more files")
        return 1

    exit_code = 0
    for path in opts.paths:
        try:
            if not _validate_one(path, opts.type, debug):
                exit_code = 1
        except _Abort as err:
            _stderr(str(err))
            return 1
    return exit_code