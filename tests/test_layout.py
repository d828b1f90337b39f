import io
import os
import tarfile

import pytest

from appcspec.aci.layout import (
    LayoutError,
    NoManifestError,
    NoRootFSError,
    validate_archive,
    validate_layout,
)

MANIFEST_BODY = '{"acKind":"ImageManifest","acVersion":"0.3.0","name":"example.com/app"}'


def _make_layout(tmp_path):
    (tmp_path / "rootfs" / "dir" / "rootfs").mkdir(parents=True)
    (tmp_path / "rootfs" / "manifest").write_text("malformedManifest")
    (tmp_path / "manifest").write_text(MANIFEST_BODY)
    return tmp_path


def _archive(entries):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for name, data in entries:
            info = tarfile.TarInfo(name)
            if data is None:
                info.type = tarfile.DIRTYPE
                tar.addfile(info)
            else:
                info.size = len(data)
                tar.addfile(info, io.BytesIO(data))
    buf.seek(0)
    return tarfile.open(fileobj=buf, mode="r")


def test_validate_layout(tmp_path):
    manifest = validate_layout(_make_layout(tmp_path))
    assert manifest["name"] == "example.com/app"


def test_layout_with_stray_file(tmp_path):
    layout = _make_layout(tmp_path)
    (layout / "extra").write_text("x")
    with pytest.raises(LayoutError, match='unrecognized file path in layout: "extra"'):
        validate_layout(layout)


def test_layout_without_manifest(tmp_path):
    (tmp_path / "rootfs").mkdir()
    with pytest.raises(NoManifestError, match="no image manifest found in layout"):
        validate_layout(tmp_path)


def test_layout_without_rootfs(tmp_path):
    (tmp_path / "manifest").write_text(MANIFEST_BODY)
    with pytest.raises(NoRootFSError, match="no rootfs found in layout"):
        validate_layout(tmp_path)


def test_empty_layout_reports_manifest_first(tmp_path):
    with pytest.raises(NoManifestError):
        validate_layout(tmp_path)


def test_rootfs_file_is_rejected(tmp_path):
    (tmp_path / "manifest").write_text(MANIFEST_BODY)
    (tmp_path / "rootfs").write_text("not a dir")
    with pytest.raises(LayoutError, match="rootfs is not a directory"):
        validate_layout(tmp_path)


def test_rootfs_symlink_is_rejected(tmp_path):
    (tmp_path / "manifest").write_text(MANIFEST_BODY)
    (tmp_path / "real").mkdir()
    os.symlink(tmp_path / "real", tmp_path / "rootfs")
    with pytest.raises(LayoutError, match="rootfs is not a directory"):
        validate_layout(tmp_path)


def test_malformed_manifest(tmp_path):
    (tmp_path / "rootfs").mkdir()
    (tmp_path / "manifest").write_text("malformedManifest")
    with pytest.raises(LayoutError, match="image manifest validation failed"):
        validate_layout(tmp_path)


def test_layout_path_is_a_file(tmp_path):
    target = tmp_path / "file"
    target.write_text("x")
    with pytest.raises(LayoutError, match="is not a directory"):
        validate_layout(target)


def test_layout_path_missing(tmp_path):
    with pytest.raises(LayoutError, match="error accessing layout"):
        validate_layout(tmp_path / "missing")


def test_validate_archive():
    tar = _archive(
        [
            ("manifest", MANIFEST_BODY.encode()),
            ("rootfs", None),
            ("rootfs/manifest", b"malformedManifest"),
            ("./rootfs/dir", None),
        ]
    )
    assert validate_archive(tar)["acVersion"] == "0.3.0"


def test_archive_duplicate_entry():
    tar = _archive(
        [
            ("manifest", MANIFEST_BODY.encode()),
            ("rootfs", None),
            ("rootfs/a", b"1"),
            ("./rootfs/a", b"2"),
        ]
    )
    with pytest.raises(LayoutError, match="duplicate file entry in archive: rootfs/a"):
        validate_archive(tar)


def test_archive_rootfs_not_directory():
    tar = _archive([("manifest", MANIFEST_BODY.encode()), ("rootfs", b"x")])
    with pytest.raises(LayoutError, match="rootfs is not a directory"):
        validate_archive(tar)


def test_archive_without_manifest():
    with pytest.raises(NoManifestError):
        validate_archive(_archive([("rootfs", None)]))


def test_archive_without_rootfs():
    with pytest.raises(NoRootFSError):
        validate_archive(_archive([("manifest", MANIFEST_BODY.encode())]))


def test_archive_stray_file():
    tar = _archive([("manifest", MANIFEST_BODY.encode()), ("rootfs", None), ("etc/x", b"x")])
    with pytest.raises(LayoutError, match="unrecognized file path"):
        validate_archive(tar)