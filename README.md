# appcspec

A library for working with App Container Images (ACIs): building an image
from an on-disk layout, validating layouts, archives and manifests, patching
or printing the manifest inside an image, parsing app names with labels,
fetching discovery documents, and working out which files of an image and its
dependencies make up the rendered root filesystem. It also ships the
`ace-validator` command, which checks a container environment from inside.

It needs nothing beyond the standard library; gzip, bzip2 and xz images are
all read with the standard library's decompressors.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## The `ace-validator` command

```
ace-validator main|sidekick|preStart|postStop
```

Meant to run inside a container started by an App Container Executor. The
mode is matched case-insensitively. It checks the environment the executor
set up (`PATH`, working directory, environment variables, mount points, the
`AC_APP_NAME` variable, the metadata service named by `AC_METADATA_URL`) and
the marker files (`/prestart`, `/main`, `/poststop`, `/db/main`,
`/db/sidekick`) left by the other lifecycle stages. It prints `<mode> OK` and
exits 0, or prints `<mode> FAIL`, lists the problems on standard error and
exits 1. A missing or unknown mode exits 64.

The single checks are available as functions in `appcspec.ace`
(`validate_path`, `validate_working_directory`, `validate_environment`,
`validate_app_name_env`, `validate_mountpoints`, `check_mount`,
`assert_exists`, `assert_not_exists`, `assert_not_exists_and_create`,
`wait_for_file`), each returning a list of problem descriptions.

## Image tool subcommands

The `appcspec.actool` modules hold the image subcommands as functions taking
an argument list and returning an exit status:

- `build_cmd.run_build(["[--overwrite]", "[--no-compression]", DIRECTORY, OUTPUT_FILE])`
  validates a layout (a directory holding a `manifest` file and a `rootfs/`
  directory) and writes it as an image. The output must end in `.aci` and is
  gzip-compressed unless `--no-compression` is given.
- `validate_cmd.run_validate([--type=appimage|layout|manifest, FILE...], debug=False)`
  checks images, layouts or manifests; without `--type` the kind of each file
  is detected with `detect_val_type`.
- `manifest_cmd.run_cat_manifest([--pretty-print, ACI_FILE])` prints the
  manifest of an image.
- `manifest_cmd.run_patch_manifest([...options, INPUT_ACI_FILE, OUTPUT_ACI_FILE])`
  copies an image with its manifest changed: `--manifest=FILE` replaces it
  outright, or `--name`, `--exec`, `--user`, `--group`, `--capability` and
  `--mounts` edit single fields (see `PatchOptions` and `patch_manifest`).
  `--replace` rewrites the input file in place; `--overwrite` and
  `--no-compression` act as for building.

## Library use

- `appcspec.aci.file`: `detect_file_type(stream)` sniffs gzip, bzip2, xz,
  tar or text and returns a `FileType`; `new_compressed_reader`,
  `new_compressed_tar_reader` and `manifest_from_image` open an image whatever
  its compression.
- `appcspec.aci.layout`: `validate_layout(directory)` and
  `validate_archive(tar)` return the decoded manifest, or raise a
  `LayoutError` (`NoManifestError`, `NoRootFSError`, ...) when a layout or
  archive is not a valid image.
- `appcspec.aci.writer`: `ImageWriter` writes an image to a tar archive and
  adds the manifest when it is closed; it is also a context manager.
- `appcspec.aci.build`: `build_from_layout(root, writer)` adds the entries of
  a layout to an `ImageWriter`, skipping sockets and keeping hard links.
- `appcspec.tarheader`: `populate(info, st, seen)` fills a `TarInfo` with
  owner ids, device numbers and change time, and turns repeated inodes into
  hard links.
- `appcspec.discovery.parse`: `app_from_string(text)` parses names such as
  `example.com/reduce-worker:1.0.0` or
  `example.com/reduce-worker,channel=alpha` into an `App`; `str(app)` gives
  the name back.
- `appcspec.discovery.http`: `https_or_http(name, insecure, http_get)` fetches
  the discovery document for a name over HTTPS, falling back to HTTP when
  `insecure` is set, and returns its URL and body.
- `appcspec.acirenderer.resolve`: `create_dep_list(key, registry)` flattens an
  image's dependency tree into `Image` entries; `ACIProvider` and
  `ACIRegistry` describe the store it reads from.
- `appcspec.acirenderer.renderer`: `get_rendered_aci_from_list(images, provider)`
  decides which files each image contributes, honouring path whitelists and
  checking each image's SHA-512 key.

## What it does not do

There is no single `actool` command-line front end, no `help` or `version`
subcommand, and no image discovery: the package does not read `ac-discovery`
meta tags from discovery documents or walk up an app name to find download
URLs and public keys. `https_or_http` only fetches the document.