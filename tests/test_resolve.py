import pytest

from appcspec.acirenderer.resolve import (
    Image,
    create_dep_list,
    create_dep_list_from_image_id,
    create_dep_list_from_name_labels,
)


def _manifest(name, deps=()):
    m = {"acKind": "ImageManifest", "acVersion": "0.1.1", "name": name}
    if deps:
        m["dependencies"] = list(deps)
    return m


class _Registry:
    def __init__(self, manifests, ids=None):
        self.manifests = manifests
        self.ids = ids or {}
        self.label_requests = []

    def get_image_manifest(self, key):
        return self.manifests[key]

    def get_aci(self, name, labels):
        self.label_requests.append((name, labels))
        for key, manifest in self.manifests.items():
            if manifest["name"] == name:
                return key
        raise LookupError("aci not found")

    def resolve_key(self, key):
        return self.ids[key]


def test_single_image():
    ma = _manifest("example.com/a")
    reg = _Registry({"a": ma})
    assert create_dep_list("a", reg) == [Image(ma, "a", 0)]


def test_tree_order_and_levels():
    reg = _Registry(
        {
            "a": _manifest(
                "example.com/a",
                [{"imageName": "example.com/b"}, {"imageName": "example.com/c"}],
            ),
            "b": _manifest("example.com/b"),
            "c": _manifest("example.com/c", [{"imageName": "example.com/d"}]),
            "d": _manifest("example.com/d"),
        }
    )
    images = create_dep_list("a", reg)
    assert [(i.key, i.level) for i in images] == [("a", 0), ("c", 1), ("d", 2), ("b", 1)]


def test_image_id_preferred_over_name():
    reg = _Registry(
        {
            "a": _manifest(
                "example.com/a",
                [{"imageName": "example.com/c", "imageID": "sha512-b"}],
            ),
            "b": _manifest("example.com/b"),
            "c": _manifest("example.com/c"),
        },
        ids={"sha512-b": "b"},
    )
    assert [i.key for i in create_dep_list("a", reg)] == ["a", "b"]
    assert reg.label_requests == []


def test_empty_image_id_uses_name_and_labels():
    labels = [{"name": "version", "value": "1.0.0"}]
    reg = _Registry(
        {
            "a": _manifest(
                "example.com/a",
                [{"imageName": "example.com/b", "imageID": "", "labels": labels}],
            ),
            "b": _manifest("example.com/b"),
        }
    )
    assert [i.key for i in create_dep_list("a", reg)] == ["a", "b"]
    assert reg.label_requests == [("example.com/b", labels)]


def test_from_image_id():
    mb = _manifest("example.com/b")
    reg = _Registry({"b": mb}, ids={"sha512-b": "b"})
    assert create_dep_list_from_image_id("sha512-b", reg) == [Image(mb, "b", 0)]


def test_from_name_labels():
    mb = _manifest("example.com/b")
    reg = _Registry({"b": mb})
    assert create_dep_list_from_name_labels("example.com/b", None, reg) == [Image(mb, "b", 0)]


def test_missing_dependency_raises():
    reg = _Registry({"a": _manifest("example.com/a", [{"imageName": "example.com/x"}])})
    with pytest.raises(LookupError):
        create_dep_list("a", reg)


def test_missing_manifest_raises():
    with pytest.raises(KeyError):
        create_dep_list("nope", _Registry({}))