"""Validation of worktree names and custom worktree paths.

Rules are checked for every platform, so a name accepted here is portable
to Windows filesystems as well.
"""

import re

from git_workers.constants import (
    GIT_RESERVED_NAMES,
    INVALID_FILESYSTEM_CHARS,
    MAX_WORKTREE_NAME_LENGTH,
    WINDOWS_RESERVED_CHARS,
)
from git_workers.errors import InvalidName, InvalidPath

_WHITESPACE = re.compile(r"\s")
_WINDOWS_DRIVE = re.compile(r"^[A-Za-z]:")


def has_path_separator(value: str) -> bool:
    return "/" in value or "\\" in value


def validate_worktree_name(name: str) -> str:
    """Validate a bare worktree name and return it with outer whitespace stripped."""
    trimmed = name.strip()

    if not trimmed:
        raise InvalidName(name, "name cannot be empty")
    if len(trimmed) > MAX_WORKTREE_NAME_LENGTH:
        raise InvalidName(name, f"name cannot exceed {MAX_WORKTREE_NAME_LENGTH} characters")
    if _WHITESPACE.search(trimmed):
        raise InvalidName(name, "name cannot contain whitespace")
    if trimmed.lower() in {r.lower() for r in GIT_RESERVED_NAMES}:
        raise InvalidName(name, f"'{trimmed}' is a reserved git name")
    for ch in INVALID_FILESYSTEM_CHARS:
        if ch in trimmed:
            raise InvalidName(name, f"name cannot contain {ch!r}")
    for ch in WINDOWS_RESERVED_CHARS:
        if ch in trimmed:
            raise InvalidName(name, f"name cannot contain {ch!r} (Windows incompatible)")
    if trimmed.startswith("."):
        raise InvalidName(name, "name cannot start with '.'")
    if not trimmed.isascii():
        raise InvalidName(name, "name must contain only ASCII characters")
    return trimmed


def validate_custom_path(path: str) -> str:
    """Validate a custom worktree path and return it stripped.

    Relative paths are anchored at the main worktree and may climb at most
    one level above it. The final component must itself be a valid name.
    """
    trimmed = path.strip()

    if not trimmed:
        raise InvalidPath(path, "path cannot be empty")
    if trimmed.startswith("\\\\"):
        raise InvalidPath(path, "UNC paths are not supported")
    if _WINDOWS_DRIVE.match(trimmed):
        raise InvalidPath(path, "drive-letter paths are not supported")
    if trimmed.endswith(("/", "\\")):
        raise InvalidPath(path, "path cannot end with a separator")

    components = re.split(r"[/\\]", trimmed)
    is_absolute = trimmed.startswith("/")

    if not is_absolute:
        depth = 0
        for component in components:
            if component == "..":
                depth -= 1
                if depth < -1:
                    raise InvalidPath(path, "excessive directory traversal ('..')")
            elif component not in (".", ""):
                depth += 1

    for component in components:
        if component in ("", ".", ".."):
            continue
        if component in GIT_RESERVED_NAMES:
            raise InvalidPath(path, f"component '{component}' is a reserved git name")
        if "\0" in component:
            raise InvalidPath(path, "path cannot contain null bytes")
        for ch in WINDOWS_RESERVED_CHARS:
            if ch in component:
                raise InvalidPath(path, f"component '{component}' contains {ch!r}")
        if len(component) > MAX_WORKTREE_NAME_LENGTH:
            raise InvalidPath(
                path, f"component '{component}' exceeds {MAX_WORKTREE_NAME_LENGTH} characters"
            )

    last = components[-1]
    if last in (".", ".."):
        raise InvalidPath(path, "path must end with a worktree name")
    try:
        validate_worktree_name(last)
    except InvalidName as e:
        raise InvalidPath(path, e.reason) from e
    return trimmed
