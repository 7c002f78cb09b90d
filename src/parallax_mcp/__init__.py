"""Parallax MCP: isolated worktrees and merge orchestration for parallel agent tasks."""

__version__ = "0.1.0"

__all__ = ["__version__"]
