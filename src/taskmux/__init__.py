"""Parallel coding-agent task orchestration over tmux and git worktrees."""

__version__ = "0.3.0"
