"""Remote path handling.

Every path handed to a session is a sub-path relative to the configured root.
A leading slash never makes a sub-path absolute, and backslashes coming from
local Windows paths are treated as separators.
"""

from __future__ import annotations

from typing import Tuple

from .errors import SafetyViolation


def normalize(sub_path: str) -> str:
    """Return ``sub_path`` with forward slashes only, no leading, trailing or
    repeated separators and no ``.`` or ``..`` segments.
    ``normalize(normalize(p)) == normalize(p)``.

    ``..`` is resolved against the previous segment; climbing above the root
    raises ``SafetyViolation``.
    """
    parts: list[str] = []
    for part in sub_path.replace("\\", "/").split("/"):
        if not part or part == ".":
            continue
        if part == "..":
            if not parts:
                raise SafetyViolation(f"remote path {sub_path!r} climbs above the root")
            parts.pop()
            continue
        parts.append(part)
    return "/".join(parts)


def is_root(sub_path: str) -> bool:
    return normalize(sub_path) == ""


def split(sub_path: str) -> Tuple[str, str]:
    """Split into ``(parent, leaf)``; the root's parent and leaf are both empty."""
    parent, _, leaf = normalize(sub_path).rpartition("/")
    return parent, leaf


def child(sub_path: str, name: str) -> str:
    return normalize(f"{sub_path}/{name}")


def _base(root: str) -> str:
    # The front of the root is left alone; it may be absolute or relative to
    # the login directory.
    base = root.replace("\\", "/")
    if base.endswith("/"):
        return base.rstrip("/") + "/"
    return base + "/" if base else ""


def dir_path(root: str, sub_path: str) -> str:
    """Full remote path of a directory, with a trailing slash.

    The login directory itself (empty root, empty sub-path) is ``""``.
    """
    sub = normalize(sub_path)
    base = _base(root)
    return f"{base}{sub}/" if sub else base


def file_path(root: str, sub_path: str) -> str:
    """Full remote path of a file, without a trailing slash."""
    sub = normalize(sub_path)
    if not sub:
        raise ValueError("a file path needs a non-empty sub-path")
    return f"{_base(root)}{sub}"
