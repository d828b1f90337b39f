"""The ``patch-manifest`` and ``cat-manifest`` commands."""

from __future__ import annotations

import argparse
import contextlib
import copy
import io
import json
import lzma
import os
import posixpath
import sys
import tarfile
import tempfile
import zlib
from dataclasses import dataclass
from typing import IO, Any, Optional, Sequence, Union

from appcspec.aci.file import new_compressed_tar_reader
from appcspec.aci.layout import MANIFEST_FILE
from appcspec.discovery.parse import _check_ac_name

ACI_EXTENSION = ".aci"
CAPABILITIES_RETAIN_SET = "os/linux/capabilities-retain-set"

_TRUE = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE = frozenset({"0", "f", "F", "FALSE", "false", "False"})
_READ_ERRORS = (
    ValueError, OSError, EOFError, tarfile.TarError, zlib.error, lzma.LZMAError,
)


@dataclass
class PatchOptions:
    """Manifest edits; empty strings leave the matching field alone."""

    name: str = ""
    exec: str = ""
    user: str = ""
    group: str = ""
    capability: str = ""
    mounts: str = ""

    def any_set(self) -> bool:
        """Return True when at least one edit is requested."""
        return any((self.name, self.exec, self.user, self.group, self.capability, self.mounts))


class _FlagError(Exception):
    """The command line could not be parsed."""


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        raise _FlagError(message)


def _stderr(message: str) -> None:
    print(message.rstrip("\n"), file=sys.stderr)


def _parse_bool(text: str) -> bool:
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"invalid boolean {text!r}")


def _mount_point_from_string(text: str) -> dict[str, Any]:
    name, *pairs = text.split(",")
    mount: dict[str, Any] = {"name": _check_ac_name(name), "path": "", "readOnly": False}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise ValueError(f"invalid mount point parameter {pair!r}")
        if key == "path":
            mount["path"] = value
        elif key == "readOnly":
            mount["readOnly"] = _parse_bool(value)
        else:
            raise ValueError(f"unknown mount point parameter {key!r}")
    if not mount["path"]:
        raise ValueError("mount point has no path")
    return mount


def _require_app(manifest: dict[str, Any]) -> dict[str, Any]:
    app = manifest.get("app")
    if not isinstance(app, dict):
        raise ValueError("no app in the manifest")
    return app


def patch_manifest(manifest: dict[str, Any], options: PatchOptions) -> dict[str, Any]:
    """Apply ``options`` to ``manifest`` in place and return it.

    Raises ValueError when an edit cannot be applied.
    """
    if options.name:
        manifest["name"] = _check_ac_name(options.name)
    if options.exec:
        _require_app(manifest)["exec"] = options.exec.split(" ")
    if options.user:
        _require_app(manifest)["user"] = options.user
    if options.group:
        _require_app(manifest)["group"] = options.group

    if options.capability:
        app = _require_app(manifest)
        isolators = app.get("isolators") or []
        if any(iso.get("name") == CAPABILITIES_RETAIN_SET for iso in isolators):
            raise ValueError("isolator already exists")
        isolators.append(
            {"name": CAPABILITIES_RETAIN_SET, "value": {"set": options.capability.split(",")}}
        )
        app["isolators"] = isolators

    if options.mounts:
        app = _require_app(manifest)
        mount_points = app.get("mountPoints") or []
        for text in options.mounts.split(":"):
            try:
                mount_points.append(_mount_point_from_string(text))
            except ValueError as err:
                raise ValueError(f'cannot parse mount point "{text}"') from err
        app["mountPoints"] = mount_points
    return manifest


def _decode_manifest(data: bytes) -> dict[str, Any]:
    manifest = json.loads(data)
    if not isinstance(manifest, dict):
        raise ValueError("image manifest is not a JSON object")
    return manifest


def extract_manifest(
    tar_in: tarfile.TarFile,
    tar_out: Optional[tarfile.TarFile],
    print_manifest: bool,
    new_manifest: Union[bytes, PatchOptions, None],
    pretty: bool,
) -> Optional[dict[str, Any]]:
    """Find the manifest in ``tar_in``, printing, replacing or patching it.

    Every entry is copied to ``tar_out`` when one is given. A non-empty bytes
    ``new_manifest`` replaces the manifest; otherwise it is patched with the
    PatchOptions given (none means unchanged). Returns the decoded original
    manifest, or None when the archive has none.
    """
    found: Optional[dict[str, Any]] = None
    try:
        for member in tar_in:
            if posixpath.normpath(member.name) == MANIFEST_FILE:
                extracted = tar_in.extractfile(member)
                data = extracted.read() if extracted is not None else b""
                if print_manifest and not pretty:
                    print(data.decode("utf-8", errors="replace"))
                manifest = _decode_manifest(data)
                if print_manifest and pretty:
                    print(json.dumps(manifest, indent=4))
                found = copy.deepcopy(manifest)
                if tar_out is None:
                    return found
                if isinstance(new_manifest, (bytes, bytearray)) and new_manifest:
                    out_bytes = bytes(new_manifest)
                else:
                    options = new_manifest if isinstance(new_manifest, PatchOptions) else PatchOptions()
                    patch_manifest(manifest, options)
                    out_bytes = json.dumps(manifest, separators=(",", ":")).encode("utf-8")
                header = copy.copy(member)
                header.size = len(out_bytes)
                tar_out.addfile(header, io.BytesIO(out_bytes))
            elif tar_out is not None:
                contents = tar_in.extractfile(member) if member.isfile() else None
                tar_out.addfile(member, contents)
    except tarfile.TarError as err:
        raise ValueError(f"error reading tarball: {err}") from err
    return found


def _patch_parser() -> _Parser:
    parser = _Parser(prog="patch-manifest", add_help=False, allow_abbrev=False)
    for flag, help_text in (
        ("overwrite", "Overwrite target file if it already exists"),
        ("no-compression", "Do not gzip-compress the produced ACI"),
        ("replace", "Replace the input file"),
    ):
        parser.add_argument(f"--{flag}", f"-{flag}", action="store_true", help=help_text)
    for flag, help_text in (
        ("manifest", "Replace image manifest with this file."),
        ("name", "Replace name"),
        ("exec", "Replace the command line to launch the executable"),
        ("user", "Replace user"),
        ("group", "Replace group"),
        ("capability", "Replace capability"),
        ("mounts", "Replace mount points"),
    ):
        parser.add_argument(f"--{flag}", f"-{flag}", default="", help=help_text)
    parser.add_argument("args", nargs="*")
    return parser


def _copy_patched(input_file: str, tar_out: tarfile.TarFile, manifest_file: str,
                  options: PatchOptions) -> int:
    try:
        source: IO[bytes] = open(input_file, "rb")
    except OSError as err:
        _stderr(f"patch-manifest: Cannot open {input_file}: {err}")
        return 1
    with source:
        try:
            tar_in = new_compressed_tar_reader(source)
        except _READ_ERRORS as err:
            _stderr(f"patch-manifest: Cannot extract {input_file}: {err}")
            return 1
        with tar_in:
            replacement = b""
            if manifest_file:
                try:
                    with open(manifest_file, "rb") as mf:
                        replacement = mf.read()
                except OSError as err:
                    _stderr(f"patch-manifest: Cannot open {manifest_file}: {err}")
                    return 1
            try:
                extract_manifest(tar_in, tar_out, False, replacement or options, False)
            except _READ_ERRORS as err:
                _stderr(f"patch-manifest: Unable to read {input_file}: {err}")
                return 1
    return 0


def run_patch_manifest(argv: Optional[Sequence[str]] = None) -> int:
    """Copy an image with its manifest patched; return the exit status."""
    try:
        opts = _patch_parser().parse_args(list(argv or []))
    except _FlagError as err:
        _stderr(str(err))
        return 2
    options = PatchOptions(
        name=opts.name, exec=opts.exec, user=opts.user, group=opts.group,
        capability=opts.capability, mounts=opts.mounts,
    )
    args = opts.args

    if opts.replace and opts.overwrite:
        _stderr("patch-manifest: Cannot use both --replace and --overwrite")
        return 1
    if not opts.replace and len(args) != 2:
        _stderr("patch-manifest: Must provide input and output files (or use --replace)")
        return 1
    if opts.replace and len(args) != 1:
        _stderr("patch-manifest: Must provide one file")
        return 1
    if opts.manifest and options.any_set():
        _stderr("patch-manifest: --manifest is incompatible with other manifest editing options")
        return 1

    input_file = args[0]
    if opts.replace:
        try:
            fd, out_path = tempfile.mkstemp(
                prefix=".actool-tmp." + os.path.basename(input_file) + "-",
                dir=os.path.dirname(input_file) or ".",
            )
        except OSError as err:
            _stderr(f"patch-manifest: Cannot create temporary file: {err}")
            return 1
    else:
        out_path = args[1]
        ext = os.path.splitext(out_path)[1]
        if ext != ACI_EXTENSION:
            _stderr(f"patch-manifest: Extension must be {ACI_EXTENSION} (given {ext})")
            return 1
        flags = os.O_CREAT | os.O_WRONLY | (os.O_TRUNC if opts.overwrite else os.O_EXCL)
        try:
            fd = os.open(out_path, flags, 0o644)
        except FileExistsError:
            _stderr("patch-manifest: Output file exists (try --overwrite)")
            return 1
        except OSError as err:
            _stderr(f"patch-manifest: Unable to open output {out_path}: {err}")
            return 1

    exit_code = 1
    try:
        with os.fdopen(fd, "wb") as fh:
            tar_out = tarfile.open(fileobj=fh, mode="w" if opts.no_compression else "w:gz")
            try:
                exit_code = _copy_patched(input_file, tar_out, opts.manifest, options)
            finally:
                tar_out.close()
        if exit_code == 0 and opts.replace:
            try:
                os.replace(out_path, input_file)
            except OSError as err:
                _stderr(f'patch-manifest: Cannot rename "{out_path}" to "{input_file}": {err}')
                exit_code = 1
    finally:
        if exit_code != 0 and not opts.overwrite:
            with contextlib.suppress(OSError):
                os.remove(out_path)
    return exit_code


def run_cat_manifest(argv: Optional[Sequence[str]] = None) -> int:
    """Print the manifest of an image; return the exit status."""
    parser = _Parser(prog="cat-manifest", add_help=False, allow_abbrev=False)
    parser.add_argument("--pretty-print", "-pretty-print", dest="pretty", action="store_true",
                        help="Print with better style")
    parser.add_argument("args", nargs="*")
    try:
        opts = parser.parse_args(list(argv or []))
    except _FlagError as err:
        _stderr(str(err))
        return 2
    if len(opts.args) != 1:
        _stderr("cat-manifest: Must provide one file")
        return 1

    input_file = opts.args[0]
    try:
        source: IO[bytes] = open(input_file, "rb")
    except OSError as err:
        _stderr(f"cat-manifest: Cannot open {input_file}: {err}")
        return 1
    with source:
        try:
            tar_in = new_compressed_tar_reader(source)
        except _READ_ERRORS as err:
            _stderr(f"cat-manifest: Cannot extract {input_file}: {err}")
            return 1
        with tar_in:
            try:
                extract_manifest(tar_in, None, True, None, opts.pretty)
            except _READ_ERRORS as err:
                _stderr(f"cat-manifest: Unable to read {input_file}: {err}")
                return 1
    return 0