"""Check, from inside a running container, that the executor set it up correctly.

Each mode (main, sidekick, prestart, poststop) runs its own checks and
returns a list of problem descriptions; an empty list means success.
"""

from __future__ import annotations

import json
import os
import sys
import time
import urllib.error
import urllib.parse
import urllib.request
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Sequence

from appcspec.discovery.parse import _check_ac_name

STANDARD_PATH = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"
APP_NAME_ENV = "AC_APP_NAME"
METADATA_URL_ENV = "AC_METADATA_URL"
METADATA_PATH_BASE = "/acMetadata/v1"

PRESTART_FILE = "/prestart"
MAIN_FILE = "/main"
POSTSTOP_FILE = "/poststop"
MAIN_VOL_FILE = "/db/main"
SIDEKICK_VOL_FILE = "/db/sidekick"

TIMEOUT = 5.0

_METADATA_TIMEOUT = 0.1
_POLL_INTERVAL = 0.001
_SIGNING_PLAINTEXT = "Old MacDonald Had A Farm"


@dataclass(frozen=True)
class MountPoint:
    """A named path that must be a mount point, read-only or not."""

    name: str
    path: str
    read_only: bool = False


WORKING_DIRECTORY = "/opt/acvalidator"
ENVIRONMENT = {
    "IN_ACE_VALIDATOR": "correct",
    "HOME": "/root",
    "USER": "root",
    "LOGNAME": "root",
    "SHELL": "/bin/sh",
}
MOUNT_POINTS = {"database": MountPoint("database", "/db", False)}
APP_NAME = "coreos.com/ace-validator-main"


class _MetadataError(Exception):
    """A request to the metadata service failed."""


def _q(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def validate_path(wanted: str) -> list[str]:
    """Check that PATH is exactly ``wanted``."""
    got = os.environ.get("PATH", "")
    if got != wanted:
        return [f"PATH not set appropriately (need {_q(wanted)}, got {_q(got)})"]
    return []


def validate_working_directory(wanted: str) -> list[str]:
    """Check that the process runs in ``wanted``."""
    try:
        got = os.getcwd()
    except OSError as err:
        return [f"error getting working directory: {err}"]
    if got != wanted:
        return [f"working directory not set appropriately (need {_q(wanted)}, got {got})"]
    return []


def validate_environment(wanted: Mapping[str, str]) -> list[str]:
    """Check that every variable in ``wanted`` has its expected value."""
    errors = []
    for key, value in wanted.items():
        got = os.environ.get(key, "")
        if got != value:
            errors.append(
                f"environment variable {_q(key)} not set appropriately "
                f"(need {_q(value)}, got {_q(got)})"
            )
    return errors


def validate_app_name_env(wanted: str) -> list[str]:
    """Check that the app name variable names ``wanted``."""
    got = os.environ.get(APP_NAME_ENV, "")
    if got != wanted:
        return [f"{APP_NAME_ENV} not set appropriately (need {_q(wanted)}, got {_q(got)})"]
    return []


def validate_mountpoints(mountpoints: Mapping[str, MountPoint]) -> list[str]:
    """Check that each mount point is mounted as described."""
    errors = []
    for mount in mountpoints.values():
        problem = check_mount(mount.path, mount.read_only)
        if problem is not None:
            errors.append(problem)
    return errors


def check_mount(path: str, readonly: bool) -> Optional[str]:
    """Return a problem description unless ``path`` is a mount point with the given read-only state."""
    try:
        own = os.statvfs(path)
    except OSError as err:
        return f"error calling statfs on {_q(path)}: {err}"
    try:
        parent = os.statvfs(os.path.dirname(path))
    except OSError as err:
        return f"error calling statfs on {_q(path)}: {err}"
    if own.f_fsid == parent.f_fsid:
        return f"{_q(path)} is not a mount point"
    ro = bool(own.f_flag & os.ST_RDONLY)
    if ro != readonly:
        return f"{_q(path)} mounted ro={str(ro).lower()}, want {str(readonly).lower()}"
    return None


def _file_exists(path: str) -> bool:
    try:
        os.stat(path)
    except FileNotFoundError:
        return False
    return True


def assert_not_exists(path: str) -> list[str]:
    """Report a problem if a file exists at ``path``."""
    try:
        exists = _file_exists(path)
    except OSError as err:
        return [f"error checking {_q(path)} exists: {err}"]
    if exists:
        return [f"file {_q(path)} exists unexpectedly"]
    return []


def assert_exists(path: str) -> list[str]:
    """Report a problem unless a file exists at ``path``."""
    try:
        exists = _file_exists(path)
    except OSError as err:
        return [
            f"error checking {_q(path)} exists: {err}",
            f"file {_q(path)} does not exist as expected",
        ]
    if not exists:
        return [f"file {_q(path)} does not exist as expected"]
    return []


def assert_not_exists_and_create(path: str) -> list[str]:
    """Report a problem if ``path`` exists, then create it as an empty file."""
    errors = assert_not_exists(path)
    try:
        with open(path, "wb"):
            pass
    except OSError as err:
        errors.append(f"error touching file {_q(path)}: {err}")
    return errors


def wait_for_file(path: str, timeout: float) -> list[str]:
    """Wait up to ``timeout`` seconds for ``path`` to appear."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            if _file_exists(path):
                return []
        except OSError:
            pass
        time.sleep(_POLL_INTERVAL)
    return [f"timed out waiting for {path}"]


_OPENER = urllib.request.build_opener(urllib.request.ProxyHandler({}))


def _metadata_request(request: urllib.request.Request) -> bytes:
    request.add_header("Metadata-Flavor", "AppContainer")
    url = request.full_url
    try:
        resp = _OPENER.open(request, timeout=_METADATA_TIMEOUT)
    except urllib.error.HTTPError as err:
        err.close()
        raise _MetadataError(f"Get {url} failed with {err.code}") from err
    except OSError as err:
        raise _MetadataError(f"Get {url}: {err}") from err
    with resp:
        if resp.status != 200:
            raise _MetadataError(f"Get {url} failed with {resp.status}")
        try:
            return resp.read()
        except OSError as err:
            raise _MetadataError(f"Get {url} failed on body read: {err}") from err


def _metadata_get(metadata_url: str, path: str) -> str:
    request = urllib.request.Request(metadata_url + METADATA_PATH_BASE + path, method="GET")
    return _metadata_request(request).decode("utf-8", errors="replace")


def _metadata_post_form(metadata_url: str, path: str, data: Mapping[str, str]) -> str:
    body = urllib.parse.urlencode(sorted(data.items())).encode("ascii")
    request = urllib.request.Request(
        metadata_url + METADATA_PATH_BASE + path, data=body, method="POST"
    )
    request.add_header("Content-Type", "application/x-www-form-urlencoded")
    return _metadata_request(request).decode("utf-8", errors="replace")


def _annotations_dict(annotations: Optional[Sequence[Mapping[str, Any]]]) -> dict[str, str]:
    return {str(a.get("name", "")): str(a.get("value", "")) for a in annotations or []}


def _fetch_annotations(metadata_url: str, base: str, errors: list[str]) -> Optional[dict[str, str]]:
    try:
        listing = _metadata_get(metadata_url, base)
    except _MetadataError as err:
        errors.append(str(err))
        return None
    actual: dict[str, str] = {}
    for key in listing.split("\n"):
        if not key:
            continue
        try:
            value = _metadata_get(metadata_url, base + key)
        except _MetadataError as err:
            errors.append(str(err))
            value = ""
        try:
            name = _check_ac_name(key)
        except ValueError as err:
            errors.append(f"invalid annotation label: {err}")
            continue
        actual[name] = value
    return actual


def _validate_pod_metadata(metadata_url: str, pod: Mapping[str, Any]) -> list[str]:
    try:
        pod_uuid = _metadata_get(metadata_url, "/pod/uuid")
    except _MetadataError as err:
        return [str(err)]
    try:
        uuid.UUID(pod_uuid)
    except ValueError as err:
        return [f"malformed UUID returned ({pod_uuid}): {err}"]
    errors: list[str] = []
    actual = _fetch_annotations(metadata_url, "/pod/annotations/", errors)
    if actual is None:
        return errors
    expected = _annotations_dict(pod.get("annotations"))
    if actual != expected:
        errors.append(f"pod annotations mismatch: {actual} vs {expected}")
    return errors


def _validate_app_metadata(
    metadata_url: str, pod: Mapping[str, Any], app: Mapping[str, Any]
) -> list[str]:
    app_name = str(app.get("name", ""))
    base = f"/apps/{app_name}"
    try:
        raw_manifest = _metadata_get(metadata_url, base + "/image/manifest")
    except _MetadataError as err:
        return [str(err)]
    try:
        image_manifest = json.loads(raw_manifest)
        if not isinstance(image_manifest, dict):
            raise ValueError("manifest is not a JSON object")
    except ValueError as err:
        return [f"failed to JSON-decode {_q(app_name)} manifest: {err}"]

    errors: list[str] = []
    try:
        image_id = _metadata_get(metadata_url, base + "/image/id")
    except _MetadataError as err:
        errors.append(str(err))
        image_id = ""
    wanted_id = str((app.get("image") or {}).get("id", ""))
    if image_id != wanted_id:
        errors.append(f"{_q(app_name)}'s image id mismatch: {image_id} vs {wanted_id}")

    expected = _annotations_dict(image_manifest.get("annotations"))
    expected.update(_annotations_dict(app.get("annotations")))
    actual = _fetch_annotations(metadata_url, base + "/annotations/", errors)
    if actual is None:
        return errors
    if actual != expected:
        errors.append(
            f"{image_manifest.get('name', '')} annotations mismatch: {actual} vs {expected}"
        )
    return errors


def _validate_signing(metadata_url: str) -> list[str]:
    try:
        pod_uuid = _metadata_get(metadata_url, "/pod/uuid")
        signature = _metadata_post_form(
            metadata_url, "/pod/hmac/sign", {"content": _SIGNING_PLAINTEXT}
        )
        _metadata_post_form(
            metadata_url,
            "/pod/hmac/verify",
            {"content": _SIGNING_PLAINTEXT, "uid": pod_uuid, "signature": signature},
        )
    except _MetadataError as err:
        return [str(err)]
    return []


def _validate_metadata_svc() -> list[str]:
    metadata_url = os.environ.get(METADATA_URL_ENV, "")
    if not metadata_url:
        return [f"{METADATA_URL_ENV} is not set"]
    try:
        raw_pod = _metadata_get(metadata_url, "/pod/manifest")
    except _MetadataError as err:
        return [str(err)]
    try:
        pod = json.loads(raw_pod)
        if not isinstance(pod, dict):
            raise ValueError("manifest is not a JSON object")
    except ValueError as err:
        return [f"failed to JSON-decode pod manifest: {err}"]

    errors = _validate_pod_metadata(metadata_url, pod)
    for app in pod.get("apps") or []:
        errors.extend(_validate_app_metadata(metadata_url, pod, app))
    errors.extend(_validate_signing(metadata_url))
    return errors


def validate_main() -> list[str]:
    """Run the checks of the main app."""
    return [
        *assert_exists(PRESTART_FILE),
        *assert_not_exists_and_create(MAIN_FILE),
        *assert_not_exists(POSTSTOP_FILE),
        *validate_path(STANDARD_PATH),
        *validate_working_directory(WORKING_DIRECTORY),
        *validate_environment(ENVIRONMENT),
        *validate_mountpoints(MOUNT_POINTS),
        *validate_app_name_env(APP_NAME),
        *_validate_metadata_svc(),
        *wait_for_file(SIDEKICK_VOL_FILE, TIMEOUT),
        *assert_not_exists_and_create(MAIN_VOL_FILE),
    ]


def validate_sidekick() -> list[str]:
    """Run the checks of the sidekick app."""
    return [
        *assert_not_exists_and_create(SIDEKICK_VOL_FILE),
        *wait_for_file(MAIN_VOL_FILE, TIMEOUT),
    ]


def validate_prestart() -> list[str]:
    """Run the checks of the pre-start hook."""
    return [
        *assert_not_exists_and_create(PRESTART_FILE),
        *assert_not_exists(MAIN_FILE),
        *assert_not_exists(POSTSTOP_FILE),
    ]


def validate_poststop() -> list[str]:
    """Run the checks of the post-stop hook."""
    return [
        *assert_exists(PRESTART_FILE),
        *assert_exists(MAIN_FILE),
        *assert_not_exists_and_create(POSTSTOP_FILE),
    ]


def _stderr(message: str) -> None:
    print(message.rstrip("\n"), file=sys.stderr)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the checks of the mode named in ``argv`` and return the exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) != 1:
        prog = os.path.basename(sys.argv[0]) if sys.argv and sys.argv[0] else "ace-validator"
        _stderr(f"usage: {prog} [main|sidekick|preStart|postStop]")
        return 64
    mode = args[0]
    validators: dict[str, Callable[[], list[str]]] = {
        "main": validate_main,
        "sidekick": validate_sidekick,
        "prestart": validate_prestart,
        "poststop": validate_poststop,
    }
    validator = validators.get(mode.lower())
    if validator is None:
        _stderr(f"unrecognized mode: {mode}")
        return 64
    errors = validator()
    if not errors:
        print(f"{mode} OK")
        return 0
    print(f"{mode} FAIL")
    for error in errors:
        print("==>", error, file=sys.stderr)
    return 1