"""Parse image names with labels as given on a command line."""

from __future__ import annotations

import re
import urllib.parse
from dataclasses import dataclass, field
from typing import Mapping, Optional

_AC_NAME = re.compile(r"[a-z0-9]+(?:[-._~/][a-z0-9]+)*")
_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_QUERY_SEPARATORS = re.compile(r"[&;]")


def _check_ac_name(name: str) -> str:
    if not name:
        raise ValueError("ACName cannot be empty")
    if not _AC_NAME.fullmatch(name):
        raise ValueError(
            f"invalid ACName {name!r}: must be lowercase alphanumerics "
            "separated by one of -._~/"
        )
    return name


def _unescape(text: str) -> str:
    bad = _BAD_ESCAPE.search(text)
    if bad is not None:
        raise ValueError(f"invalid URL escape {text[bad.start():bad.start() + 3]!r}")
    return urllib.parse.unquote_plus(text)


def _parse_query(query: str) -> dict[str, list[str]]:
    values: dict[str, list[str]] = {}
    for pair in _QUERY_SEPARATORS.split(query):
        if not pair:
            continue
        key, _, value = pair.partition("=")
        values.setdefault(_unescape(key), []).append(_unescape(value))
    return values


@dataclass
class App:
    """An image name together with the labels that select a variant of it."""

    name: str
    labels: dict[str, str] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.name + "".join(f",{key}={value}" for key, value in self.labels.items())


def new_app(name: str, labels: Optional[Mapping[str, str]] = None) -> App:
    """Return an App after checking that ``name`` is a valid AC name."""
    return App(_check_ac_name(name), dict(labels) if labels is not None else {})


def app_from_string(text: str) -> App:
    """Parse a parameter such as ``example.com/app:1.0.0`` or ``example.com/app,channel=alpha``."""
    query = "name=" + text.replace(":", ",version=")
    values = _parse_query(query.replace(",", "&"))
    name = ""
    labels: dict[str, str] = {}
    for key, vals in values.items():
        if len(vals) > 1:
            raise ValueError(f"label {key} with multiple values {vals!r}")
        if key == "name":
            name = vals[0]
            continue
        labels[_check_ac_name(key)] = vals[0]
    return new_app(name, labels)