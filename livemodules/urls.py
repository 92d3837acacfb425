"""Helpers for module ids and package urls.

Ids are absolute urls (``file:///work/app/index.py``, ``mem://pkgs/lib/index.py``).
Plain absolute paths are accepted wherever a url is and are turned into
``file://`` urls by :func:`from_path`.
"""

import posixpath
import re
from pathlib import Path

SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")


def is_url(value: str) -> bool:
    """Check whether ``value`` starts with a ``scheme://`` prefix."""
    return bool(SCHEME_RE.match(value))


def is_absolute(value: str) -> bool:
    return value.startswith("/") or is_url(value)


def split_scheme(url: str) -> tuple[str, str]:
    """Split ``url`` into its ``scheme://`` prefix and the path part."""
    match = SCHEME_RE.match(url)
    if not match:
        return "", url
    return match.group(0), url[match.end() :]


def normalize(url: str) -> str:
    """Collapse ``.``, ``..`` and duplicate slashes in the path part of ``url``."""
    scheme, path = split_scheme(url)
    if not path:
        return url
    normalized = posixpath.normpath(path)
    if normalized == ".":
        normalized = ""
    # normpath keeps a leading "//"
    if normalized.startswith("//"):
        normalized = "/" + normalized.lstrip("/")
    return scheme + normalized


def join(base: str, *parts: str) -> str:
    """Join path segments onto ``base`` and normalize the result."""
    url = base
    for part in parts:
        if not part:
            continue
        if is_url(part):
            url = part
            continue
        url = url.rstrip("/") + "/" + part.lstrip("/")
    return normalize(url)


def dirname(url: str) -> str:
    scheme, path = split_scheme(url.rstrip("/"))
    head = path.rsplit("/", 1)[0] if "/" in path else ""
    if not head and path.startswith("/"):
        head = "/"
    return scheme + head


def basename(url: str) -> str:
    return url.rstrip("/").rsplit("/", 1)[-1]


def has_extension(url: str) -> bool:
    name = basename(url)
    return "." in name.lstrip(".")


def is_within(url: str, parent: str) -> bool:
    """Path-boundary prefix check: ``parent`` equals ``url`` or is one of its directories."""
    parent = parent.rstrip("/")
    return url == parent or url.startswith(parent + "/")


def relative_to(url: str, parent: str) -> str:
    if not is_within(url, parent):
        return url
    return url[len(parent.rstrip("/")) :].lstrip("/")


def from_path(path: str | Path) -> str:
    """Turn a file system path into a ``file://`` url."""
    if isinstance(path, str):
        if is_url(path):
            return normalize(path)
        path = Path(path)
    return "file://" + path.expanduser().resolve().as_posix()


def to_path(url: str) -> Path:
    """Turn a ``file://`` url or a plain path into a :class:`Path`."""
    # Handle file:// prefix
    if url.startswith("file://"):
        url = url[7:]
    return Path(url)
