"""Conventional-commit style merge messages derived from task names."""

from __future__ import annotations

import re
from dataclasses import dataclass

MAX_SUBJECT_LEN = 72
ELLIPSIS = "..."

_WORD_SPLIT = re.compile(r"[-_\s/]+")

# (commit type, keywords inferring it, keywords dropped from the subject)
_TYPE_RULES: tuple[tuple[str, frozenset[str], frozenset[str]], ...] = (
    (
        "fix",
        frozenset({"fix", "bugfix", "hotfix", "bug", "repair", "patch"}),
        frozenset({"fix", "bugfix", "hotfix"}),
    ),
    (
        "docs",
        frozenset({"docs", "doc", "documentation", "readme"}),
        frozenset({"docs", "doc"}),
    ),
    (
        "refactor",
        frozenset(
            {"refactor", "improve", "cleanup", "clean", "simplify", "restructure", "optimize"},
        ),
        frozenset({"refactor"}),
    ),
    (
        "feat",
        frozenset({"feat", "feature", "add", "implement", "support", "introduce"}),
        frozenset({"feat", "feature", "add"}),
    ),
)
DEFAULT_COMMIT_TYPE = "feat"


@dataclass(slots=True, frozen=True)
class CommitInfo:
    """One commit on a task branch."""

    hash: str
    subject: str


def infer_commit_type(task_name: str) -> str:
    """Leading keyword decides; otherwise the first keyword found anywhere."""

    words = _words(task_name)
    if words:
        for commit_type, keywords, _ in _TYPE_RULES:
            if words[0] in keywords:
                return commit_type
    for word in words:
        for commit_type, keywords, _ in _TYPE_RULES:
            if word in keywords:
                return commit_type
    return DEFAULT_COMMIT_TYPE


def generate_merge_commit_message(task_name: str, commits: list[CommitInfo] | None = None) -> str:
    commit_type = infer_commit_type(task_name)
    words = _words(task_name)
    drop = next(rule[2] for rule in _TYPE_RULES if rule[0] == commit_type)
    if len(words) > 1 and words[0] in drop:
        words = words[1:]
    description = " ".join(words) or task_name.strip()
    message = f"{commit_type}: {description}"

    subjects = [commit.subject.strip() for commit in commits or [] if commit.subject.strip()]
    if subjects:
        body = "\n".join(f"- {truncate_subject(subject)}" for subject in subjects)
        message += f"\n\nChanges:\n{body}"
    return message


def truncate_subject(subject: str, *, limit: int = MAX_SUBJECT_LEN) -> str:
    if len(subject) <= limit:
        return subject
    return subject[: limit - len(ELLIPSIS)].rstrip() + ELLIPSIS


def _words(task_name: str) -> list[str]:
    return [word.lower() for word in _WORD_SPLIT.split(task_name.strip()) if word]
