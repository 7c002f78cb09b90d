"""Branch naming for new tasks."""

from __future__ import annotations

MAX_SLUG_LEN = 72
DEFAULT_BRANCH_PREFIX = "task"


def slug(name: str) -> str:
    """Lowercase ``name`` keeping ASCII letters and digits; other runs become one ``-``."""

    chars: list[str] = []
    prev_was_hyphen = False
    for char in name.lower():
        if len(chars) >= MAX_SLUG_LEN:
            break
        if char.isascii() and char.isalnum():
            chars.append(char)
            prev_was_hyphen = False
        elif not prev_was_hyphen:
            chars.append("-")
            prev_was_hyphen = True
    return "".join(chars).strip("-")


def sanitize_branch_prefix(prefix: str | None) -> str:
    parts = [slug(part) for part in (prefix or "").split("/")]
    parts = [part for part in parts if part]
    return "/".join(parts) if parts else DEFAULT_BRANCH_PREFIX


def build_branch_name(prefix: str | None, name: str) -> str:
    """``<prefix>/<slug(name)>``; raises ``ValueError`` if the name has nothing usable."""

    task_slug = slug(name)
    if not task_slug:
        raise ValueError(f"Task name '{name}' does not contain any letters or digits")
    return f"{sanitize_branch_prefix(prefix)}/{task_slug}"


__all__ = [
    "DEFAULT_BRANCH_PREFIX",
    "MAX_SLUG_LEN",
    "build_branch_name",
    "sanitize_branch_prefix",
    "slug",
]
