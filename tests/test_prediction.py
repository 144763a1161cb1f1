"""Tests for task registry and response-to-label resolution."""

import pytest

from menta_bench.errors import ConfigError
from menta_bench.prediction import clean_response, is_valid_label, parse_prediction, parse_task_keywords
from menta_bench.tasks import TaskType, all_tasks, get_task

STRESS = get_task(TaskType.STRESS)
DEP_BIN = get_task(TaskType.DEPRESSION_BINARY)
DEP_SEV = get_task(TaskType.DEPRESSION_SEVERITY)
IDEATION = get_task(TaskType.SUICIDE_IDEATION)
RISK_BIN = get_task(TaskType.SUICIDE_RISK_BINARY)
RISK_SEV = get_task(TaskType.SUICIDE_RISK_SEVERITY)


class TestTaskRegistry:
    def test_six_tasks(self):
        assert [t.task_type.value for t in all_tasks()] == [
            "task1_stress",
            "task2_depression_binary",
            "task3_depression_severity",
            "task4_suicide_ideation",
            "task5_suicide_risk_binary",
            "task6_suicide_risk_severity",
        ]

    def test_lookup_by_name(self):
        assert get_task("task3_depression_severity") is DEP_SEV
        with pytest.raises(ConfigError):
            get_task("task7_unknown")

    def test_prompt_contains_post(self):
        prompt = STRESS.build_prompt("exams are crushing me")
        assert prompt.task_id is TaskType.STRESS
        assert "Post to analyze: exams are crushing me" in prompt.text
        assert "{text}" not in prompt.text

    @pytest.mark.parametrize("task", all_tasks(), ids=lambda t: t.task_type.value)
    def test_task_invariants(self, task):
        assert task.default_value in task.class_names
        assert task.max_tokens == 8
        assert "{text}" in task.prompt_template

    def test_severity_default_and_weights(self):
        assert RISK_SEV.class_names == ("1", "2", "3", "4", "5")
        assert RISK_SEV.default_value == "1"
        assert RISK_SEV.weight == 1.5
        assert DEP_SEV.weight == 1.2
        assert STRESS.weight == 1.0

    @pytest.mark.parametrize(
        "task,raw,expected",
        [
            (DEP_BIN, "minimum", "0"),
            (DEP_BIN, "Moderate", "1"),
            (DEP_SEV, "severe", "3"),
            (DEP_SEV, "unknown", "0"),
            (RISK_BIN, "Supportive", "0"),
            (RISK_BIN, "Attempt", "1"),
            (RISK_SEV, "Behavior", "4"),
            (RISK_SEV, None, "1"),
            (STRESS, "1", "1"),
            (STRESS, "1.0", "1"),
            (IDEATION, "7", "0"),
        ],
    )
    def test_label_mapping(self, task, raw, expected):
        assert task.map_label(raw) == expected


class TestCleanResponse:
    def test_first_valid_number_wins(self):
        assert clean_response("  1\n", STRESS) == "1"
        assert clean_response("Severity level: 3", DEP_SEV) == "3"

    def test_number_outside_classes_is_ignored(self):
        assert clean_response("7", STRESS) is None
        assert clean_response("0", RISK_SEV) is None

    def test_binary_keywords(self):
        assert clean_response("No.", STRESS) == "0"
        assert clean_response("Yes", STRESS) == "1"
        assert clean_response("high risk", RISK_BIN) == "1"

    def test_severity_keywords(self):
        assert clean_response("moderate", DEP_SEV) == "2"
        assert clean_response("Attempt", RISK_SEV) == "5"
        assert clean_response("Ideation", RISK_SEV) == "3"

    def test_no_match(self):
        assert clean_response("", STRESS) is None
        assert clean_response("unclear", DEP_SEV) is None


class TestParsePrediction:
    @pytest.mark.parametrize("task", all_tasks(), ids=lambda t: t.task_type.value)
    @pytest.mark.parametrize("response", ["", "???", "42", "the answer is", "1", "severe"])
    def test_always_resolves_to_a_class(self, task, response):
        assert parse_prediction(response, task) in task.class_names

    def test_empty_response_uses_parser_fallback(self):
        assert parse_prediction("", STRESS) == "0"
        assert parse_prediction("", DEP_SEV) == "1"
        assert parse_prediction("", RISK_SEV) == "2"

    def test_task_keywords_after_generic_mapping(self):
        # no standalone number or generic keyword, but a stress keyword
        assert parse_prediction("overwhelmed", STRESS) == "1"
        assert parse_prediction("hopeless", DEP_BIN) == "1"
        assert parse_prediction("kill myself", IDEATION) == "1"
        assert parse_prediction("danger", RISK_BIN) == "1"

    def test_out_of_range_number_clamped_for_severity(self):
        assert parse_task_keywords("level 9", DEP_SEV) == 3
        assert parse_task_keywords("level 9", RISK_SEV) == 5
        assert parse_prediction("level 9", DEP_SEV) == "3"

    def test_severity_fallback_defaults(self):
        assert parse_task_keywords("unclear", DEP_SEV) == 1
        assert parse_task_keywords("unclear", RISK_SEV) == 2

    def test_is_valid_label(self):
        assert is_valid_label(" 1 ", STRESS)
        assert not is_valid_label("1.", STRESS)
        assert not is_valid_label("0", RISK_SEV)
