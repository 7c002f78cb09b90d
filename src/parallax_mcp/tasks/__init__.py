"""Task naming helpers."""

from .naming import DEFAULT_BRANCH_PREFIX, build_branch_name, sanitize_branch_prefix, slug

__all__ = ["DEFAULT_BRANCH_PREFIX", "build_branch_name", "sanitize_branch_prefix", "slug"]
