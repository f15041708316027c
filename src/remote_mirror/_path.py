"""Remote path helpers for normalization, joining and wire escaping."""

from __future__ import annotations

from urllib.parse import quote

from remote_mirror._errors import InvalidPath

ROOT = "/"

# Characters kept verbatim when escaping a path for a protocol address.
_SAFE_CHARS = "/-._~!$&'()*+,;=:"


def normalize_remote(raw: str) -> str:
    """Return ``raw`` as an absolute, forward-slash remote path.

    Backslashes are treated as separators, empty and ``.`` segments are
    dropped. The root is ``"/"``.

    :raises InvalidPath: If the path contains ``..`` or a null byte.
    """
    if "\0" in raw:
        raise InvalidPath("Path contains null byte", path=raw)
    parts: list[str] = []
    for segment in raw.replace("\\", "/").split("/"):
        if segment == "" or segment == ".":
            continue
        if segment == "..":
            raise InvalidPath("Path contains '..' segment", path=raw)
        parts.append(segment)
    return ROOT + "/".join(parts)


def check_name(name: str) -> str:
    """Validate a single directory entry name.

    :raises InvalidPath: If the name could escape its parent directory.
    """
    if name in ("", ".", ".."):
        raise InvalidPath(f"Unusable entry name {name!r}", path=name)
    if "/" in name or "\\" in name or "\0" in name:
        raise InvalidPath(f"Entry name contains a separator: {name!r}", path=name)
    return name


def join_remote(parent: str, name: str) -> str:
    """Join a directory path and a child name.

    Example: ``join_remote("/", "@CBA")`` returns ``"/@CBA"``.
    """
    return parent.rstrip("/") + "/" + name


def parent_of(path: str) -> str:
    """Parent directory of ``path``; the root is its own parent."""
    if path == ROOT:
        return ROOT
    head = path.rsplit("/", 1)[0]
    return head or ROOT


def is_within(root: str, path: str) -> bool:
    """Return ``True`` if ``path`` is ``root`` or lies below it."""
    if root == ROOT:
        return path.startswith(ROOT)
    return path == root or path.startswith(root.rstrip("/") + "/")


def relative_parts(root: str, path: str) -> tuple[str, ...]:
    """Path components of ``path`` relative to ``root``.

    :raises InvalidPath: If ``path`` is not below ``root``.
    """
    if not is_within(root, path):
        raise InvalidPath(f"Path {path!r} is not under {root!r}", path=path)
    rest = path[len(root) :] if root != ROOT else path
    return tuple(part for part in rest.split("/") if part)


def quote_remote(path: str) -> str:
    """Percent-escape ``path`` for use inside a protocol address.

    Characters with wire meaning such as ``@``, ``#``, ``?``, ``%`` and
    spaces are escaped; ``/`` separators are kept.
    """
    return quote(path, safe=_SAFE_CHARS)


def remote_url(host: str, port: int, path: str) -> str:
    """Build the ``ftp://`` address of a remote path."""
    return f"ftp://{host}:{port}{quote_remote(normalize_remote(path))}"
