"""Task lifecycle and status reconciliation for tmux-hosted coding agents.

Why observe the pane instead of asking the agent?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Interactive agent CLIs (claude, codex, gemini) expose no structured status
API while they run inside a terminal.  The only signals available are:

- the bytes the agent prints into its own pane (completion/waiting markers,
  interactive prompt shapes),
- short lines written by stop/completion hooks,
- whether the tmux window, its pane process and the git worktree still exist.

This package turns those signals into a task status, keeps the on-disk task
registry and the live tmux session consistent, and serialises merges into the
shared integration branch with a filesystem lock, because every CLI
invocation is an independent short-lived process.
"""
