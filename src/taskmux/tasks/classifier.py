"""Deterministic task status classification from captured pane text and hook output."""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass

from taskmux.config import ClassifierSettings
from taskmux.tasks.models import TaskStatus

CLASSIFIER_VERSION = 1

REASON_MARKER = "marker"
REASON_PROMPT_UI = "AskUserQuestionUI"
REASON_ASK_USER = "AskUserQuestion"
REASON_NO_SIGNAL = "no_signal"

_OPTION_LINE = re.compile(r"^\s*(?:[>❯›▶→]\s*)?\d+[.)]\s+\S")
_PROMPT_HINT_LINE = re.compile(
    r"\benter\b.*\b(?:select|confirm|submit|choose)\b|\barrow keys\b|↑\s*/?\s*↓",
    re.IGNORECASE,
)
_ASK_USER_FIELD = re.compile(
    r"^\s+(?:⎿\s*)?(?:questions?|options|header|multiSelect)\s*[:=]",
    re.IGNORECASE,
)
_ASK_USER_FIELD_WINDOW = 6
_MIN_PROMPT_OPTIONS = 2


@dataclass(slots=True, frozen=True)
class PaneClassification:
    """Classifier verdict for one pane buffer; ``status=None`` means no opinion."""

    status: TaskStatus | None
    reason: str
    matched_rule: str
    line_index: int | None = None

    def to_event_details(self) -> dict[str, object]:
        return {
            "classifier_version": CLASSIFIER_VERSION,
            "status": self.status.value if self.status is not None else None,
            "reason": self.reason,
            "matched_rule": self.matched_rule,
            "line_index": self.line_index,
        }


@dataclass(slots=True, frozen=True)
class MarkerMatcher:
    """Whole-line matcher for a literal marker token.

    A line matches when, after trimming whitespace and one optional leading
    ``prefix_glyph``, it equals ``token`` exactly.  ``max_distance`` bounds how
    many lines the match may sit above the last line searched.
    """

    token: str
    prefix_glyph: str = ""
    max_distance: int | None = None

    def matches(self, line: str) -> bool:
        stripped = line.strip()
        if self.prefix_glyph and stripped.startswith(self.prefix_glyph):
            stripped = stripped[len(self.prefix_glyph) :].strip()
        return stripped == self.token.strip()

    def find_last(self, lines: list[str]) -> int | None:
        last_index = len(lines) - 1
        for index in range(last_index, -1, -1):
            if self.max_distance is not None and last_index - index > self.max_distance:
                return None
            if self.matches(lines[index]):
                return index
        return None


@dataclass(slots=True, frozen=True)
class Segment:
    """Last conversation turn of a buffer: its lines and offset in the buffer."""

    lines: list[str]
    offset: int


WaitingPredicate = Callable[[Segment, ClassifierSettings], int | None]


def split_lines(content: str) -> list[str]:
    """Split buffer into lines with trailing blank lines removed."""

    lines = content.splitlines()
    while lines and not lines[-1].strip():
        lines.pop()
    return lines


def last_segment(lines: list[str], turn_marker: str) -> Segment:
    """Return lines from the last turn-start line to the end.

    Without any turn-start line the whole buffer is one segment.
    """

    start = 0
    if turn_marker:
        for index, line in enumerate(lines):
            if line.lstrip().startswith(turn_marker):
                start = index
    return Segment(lines=lines[start:], offset=start)


def detect_prompt_ui(segment: Segment, settings: ClassifierSettings) -> int | None:
    """Numbered options followed by an Enter/arrow-keys hint near the bottom."""

    lines = segment.lines
    last_index = len(lines) - 1
    floor = max(0, last_index - settings.prompt_hint_max_distance)
    for hint_index in range(last_index, floor - 1, -1):
        if not _PROMPT_HINT_LINE.search(lines[hint_index]):
            continue
        window_start = max(0, hint_index - settings.prompt_options_window)
        options = [
            index
            for index in range(window_start, hint_index)
            if _OPTION_LINE.match(lines[index])
        ]
        if len(options) >= _MIN_PROMPT_OPTIONS:
            return hint_index
    return None


def detect_waiting_marker(segment: Segment, settings: ClassifierSettings) -> int | None:
    matcher = MarkerMatcher(token=settings.waiting_marker, prefix_glyph=settings.turn_marker)
    return matcher.find_last(segment.lines)


def detect_ask_user_call(segment: Segment, settings: ClassifierSettings) -> int | None:
    """``AskUserQuestion`` tool header followed by indented question/options fields."""

    header = re.compile(
        r"^\s*(?:" + re.escape(settings.turn_marker) + r"\s*)?AskUserQuestion\b"
        if settings.turn_marker
        else r"^\s*AskUserQuestion\b",
    )
    lines = segment.lines
    for index in range(len(lines) - 1, -1, -1):
        if not header.match(lines[index]):
            continue
        following = lines[index + 1 : index + 1 + _ASK_USER_FIELD_WINDOW]
        if any(_ASK_USER_FIELD.match(line) for line in following):
            return index
    return None


# Ordered: the first predicate that fires names the waiting reason.
WAITING_PREDICATES: tuple[tuple[str, str, WaitingPredicate], ...] = (
    ("prompt_ui", REASON_PROMPT_UI, detect_prompt_ui),
    ("waiting_marker", REASON_MARKER, detect_waiting_marker),
    ("ask_user_call", REASON_ASK_USER, detect_ask_user_call),
)


def classify_pane(
    content: str,
    *,
    settings: ClassifierSettings | None = None,
) -> PaneClassification:
    """Classify captured pane text into a task status.

    Only the last segment is searched.  Waiting signals outrank a done marker,
    which outranks no signal at all.
    """

    effective = settings or ClassifierSettings()
    lines = split_lines(content)
    if not lines:
        return PaneClassification(
            status=None,
            reason=REASON_NO_SIGNAL,
            matched_rule="empty_buffer",
        )

    segment = last_segment(lines, effective.turn_marker)

    for rule, reason, predicate in WAITING_PREDICATES:
        index = predicate(segment, effective)
        if index is not None:
            return PaneClassification(
                status=TaskStatus.WAITING,
                reason=reason,
                matched_rule=rule,
                line_index=segment.offset + index,
            )

    done_index = _find_done_marker(segment, effective)
    if done_index is not None:
        return PaneClassification(
            status=TaskStatus.DONE,
            reason=REASON_MARKER,
            matched_rule="done_marker",
            line_index=segment.offset + done_index,
        )

    return PaneClassification(
        status=None,
        reason=REASON_NO_SIGNAL,
        matched_rule="no_marker",
    )


def detect_done(content: str, *, settings: ClassifierSettings | None = None) -> bool:
    """True when the last segment carries a fresh done marker."""

    effective = settings or ClassifierSettings()
    lines = split_lines(content)
    if not lines:
        return False
    return _find_done_marker(last_segment(lines, effective.turn_marker), effective) is not None


def detect_waiting(
    content: str,
    *,
    settings: ClassifierSettings | None = None,
) -> tuple[bool, str]:
    """Return ``(waiting, reason)`` for the last segment of ``content``."""

    effective = settings or ClassifierSettings()
    lines = split_lines(content)
    if not lines:
        return False, ""
    segment = last_segment(lines, effective.turn_marker)
    for _, reason, predicate in WAITING_PREDICATES:
        if predicate(segment, effective) is not None:
            return True, reason
    return False, ""


def _find_done_marker(segment: Segment, settings: ClassifierSettings) -> int | None:
    matcher = MarkerMatcher(
        token=settings.done_marker,
        prefix_glyph=settings.turn_marker,
        max_distance=settings.done_marker_max_distance,
    )
    return matcher.find_last(segment.lines)


_HOOK_EXACT: dict[str, TaskStatus] = {
    "working": TaskStatus.WORKING,
    # Hook "waiting" is legacy; the live pane is authoritative for waiting.
    "waiting": TaskStatus.WORKING,
    "done": TaskStatus.DONE,
    # Corrupted is not a distinct state on the hook path.
    "warning": TaskStatus.WAITING,
    "warn": TaskStatus.WAITING,
    "corrupted": TaskStatus.WAITING,
}
# Substring fallback, checked in order after the exact table.
_HOOK_FALLBACK: tuple[tuple[str, TaskStatus], ...] = (
    ("waiting", TaskStatus.WORKING),
    ("warn", TaskStatus.WAITING),
    ("corrupted", TaskStatus.WAITING),
    ("done", TaskStatus.DONE),
    ("working", TaskStatus.WORKING),
)


def classify_hook_output(output: str) -> TaskStatus | None:
    """Map a stop/completion hook output line to a status.

    Returns ``None`` for unrecognized text; callers treat that as no opinion.
    """

    normalized = output.strip().lower()
    if not normalized:
        return None
    exact = _HOOK_EXACT.get(normalized)
    if exact is not None:
        return exact
    for needle, status in _HOOK_FALLBACK:
        if needle in normalized:
            return status
    return None
