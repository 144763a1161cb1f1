"""
Resolve free-form model output to a class label.

Resolution order, stopping at the first hit:
    1. The first standalone number, if it is a valid class
    2. Generic keyword mapping (binary words, or severity words for
       multi-class tasks)
    3. The task's own keyword parser, with a clamped first-number fallback
    4. The task's default label

Every response resolves to a label in ``task.class_names``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable

from .tasks import TaskConfig, TaskType

logger = logging.getLogger(__name__)

_STANDALONE_NUMBER = re.compile(r"\b([0-9]+)\b")
_ANY_NUMBER = re.compile(r"\d+")

_BINARY_NEGATIVE = ("no", "low", "minimal", "supportive")
_BINARY_POSITIVE = ("yes", "high", "severe", "present")

# Severity words mapped to the class at the same index
_SEVERITY_LEVELS: tuple[tuple[str, ...], ...] = (
    ("minimal", "none", "supportive"),
    ("mild", "low", "indicator"),
    ("moderate", "ideation"),
    ("severe", "behavior"),
    ("critical", "attempt"),
)


def is_valid_label(response: str, task: TaskConfig) -> bool:
    """True when the trimmed response is exactly one of the task's classes."""
    return response.strip() in task.class_names


def _first_number(text: str, default: int) -> int:
    match = _ANY_NUMBER.search(text)
    return int(match.group()) if match else default


def _contains_any(text: str, keywords: tuple[str, ...]) -> bool:
    return any(k in text for k in keywords)


def clean_response(response: str, task: TaskConfig) -> str | None:
    """Steps 1 and 2 of the resolution order; None when neither applies."""
    cleaned = response.strip()
    match = _STANDALONE_NUMBER.search(cleaned)
    if match and match.group(1) in task.class_names:
        return match.group(1)

    lowered = cleaned.lower()
    if task.is_binary:
        if _contains_any(lowered, _BINARY_NEGATIVE):
            return task.class_names[0]
        if _contains_any(lowered, _BINARY_POSITIVE):
            return task.class_names[1]
        return None

    for level, words in enumerate(_SEVERITY_LEVELS):
        if _contains_any(lowered, words):
            return task.class_names[min(level, len(task.class_names) - 1)]
    return None


def _binary_parser(positive: tuple[str, ...], negative: tuple[str, ...]) -> Callable[[str], int]:
    def parse(text: str) -> int:
        if _contains_any(text, positive):
            return 1
        if _contains_any(text, negative):
            return 0
        return _first_number(text, 0)

    return parse


def _parse_depression_severity(text: str) -> int:
    if _contains_any(text, ("0", "minimal", "minimum")):
        return 0
    if _contains_any(text, ("1", "mild")):
        return 1
    if _contains_any(text, ("2", "moderate")):
        return 2
    if _contains_any(text, ("3", "severe")):
        return 3
    return max(0, min(3, _first_number(text, 1)))


def _parse_risk_severity(text: str) -> int:
    for level, words in enumerate(
        (("1", "supportive"), ("2", "indicator"), ("3", "ideation"), ("4", "behavior"), ("5", "attempt")),
        start=1,
    ):
        if _contains_any(text, words):
            return level
    return max(1, min(5, _first_number(text, 2)))


_TASK_PARSERS: dict[TaskType, Callable[[str], int]] = {
    TaskType.STRESS: _binary_parser(
        ("1", "stressed", "stress", "yes", "overwhelmed", "pressure"),
        ("0", "no", "not stressed", "calm", "relaxed"),
    ),
    TaskType.DEPRESSION_BINARY: _binary_parser(
        ("1", "depressed", "depression", "yes", "sad", "hopeless"),
        ("0", "no", "not depressed", "happy", "fine"),
    ),
    TaskType.DEPRESSION_SEVERITY: _parse_depression_severity,
    TaskType.SUICIDE_IDEATION: _binary_parser(
        ("1", "suicidal", "ideation", "yes", "kill myself", "end it"),
        ("0", "no", "not suicidal", "safe"),
    ),
    TaskType.SUICIDE_RISK_BINARY: _binary_parser(
        ("1", "risk", "suicide", "yes", "indicator", "danger"),
        ("0", "no", "supportive", "safe"),
    ),
    TaskType.SUICIDE_RISK_SEVERITY: _parse_risk_severity,
}


def parse_task_keywords(response: str, task: TaskConfig) -> int:
    """Task-specific keyword parse of ``response``; always returns an int."""
    return _TASK_PARSERS[task.task_type](response.lower().strip())


def parse_prediction(response: str, task: TaskConfig) -> str:
    """Resolve ``response`` to one of ``task.class_names``."""
    label = clean_response(response, task)
    if label is not None:
        return label

    value = str(parse_task_keywords(response, task))
    if value in task.class_names:
        return value

    logger.debug("No valid class in response %r, using default %r", response, task.default_value)
    return task.default_value
