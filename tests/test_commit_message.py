from __future__ import annotations

import allure
import pytest

from taskmux.tasks.commit_message import (
    MAX_SUBJECT_LEN,
    CommitInfo,
    generate_merge_commit_message,
    infer_commit_type,
    truncate_subject,
)

pytestmark = [
    allure.epic("Task Lifecycle"),
    allure.feature("Merge Commit Message"),
]


@pytest.mark.parametrize(
    ("task_name", "subject"),
    [
        ("fix-login-bug", "fix: login bug"),
        ("add-dark-mode", "feat: dark mode"),
        ("update-readme", "docs: update readme"),
        ("refactor-payments", "refactor: payments"),
        ("cleanup-logging", "refactor: cleanup logging"),
        ("login_page", "feat: login page"),
        ("hotfix/payment timeout", "fix: payment timeout"),
    ],
)
def test_subject_from_task_name(task_name: str, subject: str) -> None:
    assert generate_merge_commit_message(task_name) == subject


def test_leading_keyword_decides_commit_type() -> None:
    assert infer_commit_type("docs-for-bugfix") == "docs"
    assert infer_commit_type("payments-bug") == "fix"
    assert infer_commit_type("payments") == "feat"


def test_changes_body_lists_commit_subjects() -> None:
    commits = [
        CommitInfo(hash="a1", subject="Handle empty password"),
        CommitInfo(hash="b2", subject="   "),
        CommitInfo(hash="c3", subject="Add regression test"),
    ]

    message = generate_merge_commit_message("fix-login-bug", commits)

    assert message == (
        "fix: login bug\n\nChanges:\n- Handle empty password\n- Add regression test"
    )


def test_long_commit_subjects_are_truncated() -> None:
    subject = "word " * 30

    truncated = truncate_subject(subject)

    assert len(truncated) <= MAX_SUBJECT_LEN
    assert truncated.endswith("...")
    assert truncate_subject("short") == "short"
