"""The ``build`` command: turn an image layout directory into an image file."""

from __future__ import annotations

import argparse
import contextlib
import os
import sys
import tarfile
from typing import Optional, Sequence

from appcspec.aci.build import build_from_layout
from appcspec.aci.layout import LayoutError, validate_layout
from appcspec.aci.writer import ImageWriter

ACI_EXTENSION = ".aci"


class _FlagError(Exception):
    """The command line could not be parsed."""


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        raise _FlagError(message)


def _stderr(message: str) -> None:
    print(message.rstrip("\n"), file=sys.stderr)


def _parser() -> _Parser:
    parser = _Parser(prog="build", add_help=False, allow_abbrev=False)
    parser.add_argument(
        "--overwrite", "-overwrite", action="store_true",
        help="Overwrite target file if it already exists",
    )
    parser.add_argument(
        "--no-compression", "-no-compression", dest="no_compression", action="store_true",
        help="Do not gzip-compress the produced ACI",
    )
    parser.add_argument("args", nargs="*")
    return parser


def _write_image(root: str, target: str, tar: tarfile.TarFile) -> int:
    try:
        manifest = validate_layout(root)
    except LayoutError as err:
        _stderr(f"build: Layout failed validation: {err}")
        return 1
    writer = ImageWriter(manifest, tar)
    try:
        build_from_layout(root, writer)
    except (OSError, tarfile.TarError, ValueError) as err:
        _stderr(f"build: Error walking rootfs: {err}")
        return 1
    try:
        writer.close()
    except (OSError, tarfile.TarError, ValueError) as err:
        _stderr(f"build: Unable to close image {target}: {err}")
        return 1
    return 0


def run_build(argv: Optional[Sequence[str]] = None) -> int:
    """Build an image from ``DIRECTORY`` into ``OUTPUT_FILE``; return the exit status."""
    try:
        opts = _parser().parse_args(list(argv or []))
    except _FlagError as err:
        _stderr(str(err))
        return 2

    if len(opts.args) != 2:
        _stderr("build: Must provide directory and output file")
        return 1
    root, target = opts.args
    ext = os.path.splitext(target)[1]
    if ext != ACI_EXTENSION:
        _stderr(f"build: Extension must be {ACI_EXTENSION} (given {ext})")
        return 1

    flags = os.O_CREAT | os.O_WRONLY | (os.O_TRUNC if opts.overwrite else os.O_EXCL)
    try:
        fd = os.open(target, flags, 0o644)
    except FileExistsError:
        _stderr("build: Target file exists (try --overwrite)")
        return 1
    except OSError as err:
        _stderr(f"build: Unable to open target {target}: {err}")
        return 1

    exit_code = 1
    try:
        with os.fdopen(fd, "wb") as fh:
            tar = tarfile.open(fileobj=fh, mode="w" if opts.no_compression else "w:gz")
            try:
                exit_code = _write_image(root, target, tar)
            finally:
                tar.close()
    finally:
        if exit_code != 0 and not opts.overwrite:
            with contextlib.suppress(OSError):
                os.remove(target)
    return exit_code