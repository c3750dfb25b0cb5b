from __future__ import annotations

import allure
import pytest

from taskmux.config import ClassifierSettings
from taskmux.tasks.classifier import (
    CLASSIFIER_VERSION,
    REASON_ASK_USER,
    REASON_MARKER,
    REASON_NO_SIGNAL,
    REASON_PROMPT_UI,
    MarkerMatcher,
    classify_hook_output,
    classify_pane,
    detect_done,
    detect_waiting,
    last_segment,
    split_lines,
)
from taskmux.tasks.models import TaskStatus

pytestmark = [
    allure.epic("Task Status"),
    allure.feature("Pane Classifier"),
]

SHORT_MARKERS = ClassifierSettings(done_marker="DONE", waiting_marker="WAITING")


def _join(*lines: str) -> str:
    return "\n".join(lines)


def test_classifier_version_is_stable() -> None:
    assert CLASSIFIER_VERSION == 1


@pytest.mark.parametrize(
    "content",
    [
        "Work finished\nDONE\n",
        "Work finished\n⏺ DONE\n",
        "Work finished\n   DONE   \n\n\n",
        "⏺DONE",
    ],
)
def test_done_marker_as_last_line_is_done(content: str) -> None:
    result = classify_pane(content, settings=SHORT_MARKERS)

    assert result.status == TaskStatus.DONE
    assert result.reason == REASON_MARKER
    assert result.matched_rule == "done_marker"


def test_done_marker_in_earlier_segment_does_not_leak_into_new_turn() -> None:
    content = _join(
        "⏺ First response",
        "All done!",
        "DONE",
        "Ready for review.",
        "⏺ New task started",
        "Working on the new task...",
    )

    assert classify_pane(content, settings=SHORT_MARKERS).status is None
    assert detect_done(content, settings=SHORT_MARKERS) is False


def test_waiting_marker_beats_done_marker_in_same_segment() -> None:
    result = classify_pane("⏺ DONE\nReady.\n\n...\n  WAITING\n☐ Question\n", settings=SHORT_MARKERS)

    assert result.status == TaskStatus.WAITING
    assert result.reason == REASON_MARKER
    assert result.matched_rule == "waiting_marker"
    assert result.line_index == 4


def test_stale_done_marker_is_ignored() -> None:
    result = classify_pane("DONE\n" + "noise\n" * 200, settings=SHORT_MARKERS)

    assert result.status is None
    assert result.reason == REASON_NO_SIGNAL


def test_done_marker_distance_boundary() -> None:
    at_limit = "DONE\n" + "noise\n" * 20
    past_limit = "DONE\n" + "noise\n" * 21

    assert classify_pane(at_limit, settings=SHORT_MARKERS).status == TaskStatus.DONE
    assert classify_pane(past_limit, settings=SHORT_MARKERS).status is None


@pytest.mark.parametrize(
    "content",
    [
        "DONE_EXTRA\nstill working\n",
        "Text DONE text\n",
        "UNDONE\n",
    ],
)
def test_substring_never_matches_done(content: str) -> None:
    assert classify_pane(content, settings=SHORT_MARKERS).status != TaskStatus.DONE


def test_default_markers_use_taskmux_tokens() -> None:
    assert classify_pane("Tests pass.\nTASKMUX_DONE\n").status == TaskStatus.DONE
    assert classify_pane("Need input.\nTASKMUX_WAITING\n").status == TaskStatus.WAITING
    assert classify_pane("Tests pass.\nDONE\n").status is None


def test_empty_buffer_has_no_opinion() -> None:
    result = classify_pane("\n\n  \n")

    assert result.status is None
    assert result.matched_rule == "empty_buffer"
    assert result.to_event_details() == {
        "classifier_version": CLASSIFIER_VERSION,
        "status": None,
        "reason": REASON_NO_SIGNAL,
        "matched_rule": "empty_buffer",
        "line_index": None,
    }


def test_prompt_ui_is_waiting() -> None:
    content = _join(
        "Which fruit would you like to pick?",
        "> 1. Orange",
        "  A citrus fruit",
        "2. Apple",
        "  A classic fruit",
        "3. Type something.",
        "",
        "Enter to select - Tab/Arrow keys to navigate - Esc to cancel",
    )

    result = classify_pane(content)

    assert result.status == TaskStatus.WAITING
    assert result.reason == REASON_PROMPT_UI
    assert result.matched_rule == "prompt_ui"
    assert detect_waiting(content) == (True, REASON_PROMPT_UI)


def test_prompt_ui_outranks_done_marker() -> None:
    content = _join(
        "TASKMUX_DONE",
        "Pick one:",
        "❯ 1. Ship it",
        "  2. Keep going",
        "Enter to confirm · ↑/↓ to navigate",
    )

    assert classify_pane(content).status == TaskStatus.WAITING


def test_prompt_hint_far_from_bottom_is_ignored() -> None:
    lines = ["Pick one:", "1. Yes", "2. No", "Enter to select"]
    lines += [f"log line {index}" for index in range(12)]

    assert classify_pane("\n".join(lines)).status is None


def test_single_numbered_line_is_not_a_prompt() -> None:
    content = _join("Steps:", "1. Read the code", "Press enter to select")

    assert classify_pane(content).status is None


def test_ask_user_call_is_waiting() -> None:
    content = _join(
        "⏺ I need to clarify the scope.",
        "",
        "⏺ AskUserQuestion",
        "  ⎿ questions: [{question: 'Which database?', options: ['sqlite', 'postgres']}]",
    )

    result = classify_pane(content)

    assert result.status == TaskStatus.WAITING
    assert result.reason == REASON_ASK_USER
    assert result.matched_rule == "ask_user_call"
    assert result.line_index == 2


def test_ask_user_header_without_fields_is_not_waiting() -> None:
    content = _join("⏺ Next I will call AskUserQuestion if needed.", "Reading files...")

    assert classify_pane(content).status is None


def test_waiting_marker_reason_when_no_prompt() -> None:
    assert detect_waiting("Working on it...\nTASKMUX_WAITING") == (True, REASON_MARKER)
    assert detect_waiting("Working on it...") == (False, "")
    assert detect_waiting("") == (False, "")


@pytest.mark.parametrize(
    ("content", "expected"),
    [
        (_join("All tests passed.", "TASKMUX_DONE", "Ready for review."), True),
        (_join("Task completed.", "  TASKMUX_DONE  "), True),
        (_join("Task completed.", "⏺ TASKMUX_DONE", "Ready for review."), True),
        (_join("Still working on it...", "Running tests..."), False),
        ("", False),
        (_join("TASKMUX_DONE_NOT", "still working"), False),
        (
            _join(
                "⏺ First response",
                "TASKMUX_DONE",
                "⏺ Second response after new task",
                "Working on it...",
                "TASKMUX_DONE",
                "Done again.",
            ),
            True,
        ),
        (
            _join(
                "⏺ First response",
                "TASKMUX_DONE",
                "⏺ Second response",
                "TASKMUX_DONE",
                "⏺ Third response (new task)",
                "Working on new task...",
            ),
            False,
        ),
        (_join("No segment markers here", "TASKMUX_DONE", "Ready for review."), True),
    ],
)
def test_detect_done(content: str, expected: bool) -> None:
    assert detect_done(content) is expected


def test_custom_turn_marker() -> None:
    settings = ClassifierSettings(turn_marker="●")
    content = _join("● old turn", "TASKMUX_DONE", "● new turn", "thinking")

    assert classify_pane(content, settings=settings).status is None


def test_marker_matcher_honours_prefix_glyph_and_distance() -> None:
    matcher = MarkerMatcher(token="DONE", prefix_glyph="⏺", max_distance=1)

    assert matcher.matches("  ⏺   DONE ")
    assert not matcher.matches("⏺ DONE!")
    assert matcher.find_last(["DONE", "x"]) == 0
    assert matcher.find_last(["DONE", "x", "y"]) is None


def test_segments_split_on_last_turn_marker() -> None:
    lines = split_lines("⏺ one\na\n  ⏺ two\nb\n\n")
    segment = last_segment(lines, "⏺")

    assert lines == ["⏺ one", "a", "  ⏺ two", "b"]
    assert segment.offset == 2
    assert segment.lines == ["  ⏺ two", "b"]


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        ("working", TaskStatus.WORKING),
        ("WORKING\n", TaskStatus.WORKING),
        ("waiting", TaskStatus.WORKING),
        ("Warning", TaskStatus.WAITING),
        ("warn", TaskStatus.WAITING),
        ("corrupted", TaskStatus.WAITING),
        ("done", TaskStatus.DONE),
        ("the task is done now", TaskStatus.DONE),
        ("agent still waiting for input", TaskStatus.WORKING),
        ("WARN: tests flaky", TaskStatus.WAITING),
        ("Result: WAITING_FOR_INPUT", TaskStatus.WORKING),
        ("WARNINGS", TaskStatus.WAITING),
        ("status=corrupted_worktree", TaskStatus.WAITING),
        ("task_done", TaskStatus.DONE),
        ("still working...", TaskStatus.WORKING),
        ("", None),
        ("something else", None),
    ],
)
def test_classify_hook_output(output: str, expected: TaskStatus | None) -> None:
    assert classify_hook_output(output) == expected
