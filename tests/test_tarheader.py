import os
import stat
import tarfile
from types import SimpleNamespace

from appcspec.tarheader import populate


def _stat(**overrides):
    values = {
        "st_mode": stat.S_IFREG | 0o644,
        "st_uid": 1000,
        "st_gid": 1001,
        "st_rdev": 0,
        "st_ino": 1,
        "st_ctime_ns": 0,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_block_device_numbers():
    info = tarfile.TarInfo("./dev/test0")
    info.type = tarfile.BLKTYPE
    st = _stat(st_mode=stat.S_IFBLK | 0o644, st_rdev=os.makedev(233, 5))
    populate(info, st, {})
    assert info.devminor == 5
    assert info.devmajor == 233


def test_char_device_numbers():
    info = tarfile.TarInfo("dev/tty9")
    info.type = tarfile.CHRTYPE
    st = _stat(st_mode=stat.S_IFCHR | 0o600, st_rdev=os.makedev(4, 9))
    populate(info, st, {})
    assert (info.devmajor, info.devminor) == (4, 9)


def test_regular_file_has_no_device_numbers():
    info = tarfile.TarInfo("rootfs/file")
    populate(info, _stat(st_rdev=os.makedev(233, 5)), {})
    assert (info.devmajor, info.devminor) == (0, 0)


def test_owner_ids_are_copied():
    info = tarfile.TarInfo("rootfs/file")
    populate(info, _stat(st_uid=42, st_gid=43), {})
    assert (info.uid, info.gid) == (42, 43)


def test_first_sighting_records_inode():
    seen = {}
    info = tarfile.TarInfo("rootfs/a")
    populate(info, _stat(st_ino=77), seen)
    assert seen == {77: "rootfs/a"}
    assert info.type == tarfile.REGTYPE


def test_second_sighting_becomes_hard_link():
    seen = {}
    first = tarfile.TarInfo("rootfs/a")
    second = tarfile.TarInfo("rootfs/b")
    populate(first, _stat(st_ino=9), seen)
    populate(second, _stat(st_ino=9), seen)
    assert second.type == tarfile.LNKTYPE
    assert second.linkname == "rootfs/a"
    assert seen == {9: "rootfs/a"}


def test_change_time_is_recorded():
    info = tarfile.TarInfo("rootfs/a")
    populate(info, _stat(st_ctime_ns=1_500_000_000_123_456_789), {})
    assert info.pax_headers["ctime"] == "1500000000.123456789"


def test_real_file_status(tmp_path):
    path = tmp_path / "file"
    path.write_bytes(b"data")
    st = os.lstat(path)
    info = tarfile.TarInfo("file")
    seen = {}
    populate(info, st, seen)
    assert info.uid == st.st_uid
    assert info.gid == st.st_gid
    assert seen[st.st_ino] == "file"