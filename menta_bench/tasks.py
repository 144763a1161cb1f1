"""
Classification task registry.

Each task binds a prompt template, the valid class labels, the generation
budget and the dataset columns/label mapping used to build samples.

Usage:
    from menta_bench.tasks import TaskType, get_task

    task = get_task(TaskType.STRESS)
    prompt = task.render_prompt(post_text)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .errors import ConfigError


class TaskType(Enum):
    STRESS = "task1_stress"
    DEPRESSION_BINARY = "task2_depression_binary"
    DEPRESSION_SEVERITY = "task3_depression_severity"
    SUICIDE_IDEATION = "task4_suicide_ideation"
    SUICIDE_RISK_BINARY = "task5_suicide_risk_binary"
    SUICIDE_RISK_SEVERITY = "task6_suicide_risk_severity"

    @classmethod
    def from_name(cls, name: str) -> TaskType:
        try:
            return cls(name)
        except ValueError as exc:
            raise ConfigError(f"Unknown task: {name!r}") from exc


@dataclass(frozen=True)
class Prompt:
    """A rendered classification prompt for one post."""

    text: str
    task_id: TaskType


@dataclass(frozen=True)
class TaskConfig:
    """Static description of one classification task.

    Attributes:
        task_type: Registry key
        name: Display name
        class_names: Valid labels, in severity order
        prompt_template: Template with a ``{text}`` placeholder
        max_tokens: Generation budget per sample
        weight: Relative weight when combining task scores
        default_value: Label used when a response cannot be resolved
        dataset_file: Conventional dataset filename
        text_columns: Dataset columns joined (blank line apart) into the post text
        label_column: Dataset column holding the raw label
        label_map: Raw label (lower-cased) to class label; empty means the
            raw label is used as is
    """

    task_type: TaskType
    name: str
    class_names: tuple[str, ...]
    prompt_template: str
    max_tokens: int = 8
    weight: float = 1.0
    default_value: str = "0"
    dataset_file: str = ""
    text_columns: tuple[str, ...] = ("text",)
    label_column: str = "label"
    label_map: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.default_value not in self.class_names:
            raise ConfigError(
                f"default_value {self.default_value!r} is not a class of {self.task_type.value}"
            )
        if "{text}" not in self.prompt_template:
            raise ConfigError(f"prompt template of {self.task_type.value} has no {{text}} slot")

    @property
    def is_binary(self) -> bool:
        return len(self.class_names) == 2

    def render_prompt(self, text: str) -> str:
        return self.prompt_template.replace("{text}", text)

    def build_prompt(self, text: str) -> Prompt:
        return Prompt(text=self.render_prompt(text), task_id=self.task_type)

    def map_label(self, raw: str | None) -> str:
        """Convert a dataset label to a class label, defaulting when unknown."""
        if raw is None:
            return self.default_value
        value = str(raw).strip()
        if self.label_map:
            return self.label_map.get(value.lower(), self.default_value)
        if value in self.class_names:
            return value
        # numeric labels exported as floats, e.g. "1.0"
        try:
            as_int = str(int(float(value)))
        except ValueError:
            return self.default_value
        return as_int if as_int in self.class_names else self.default_value


_BINARY_INSTRUCTION = "Respond with ONLY the number 0 or 1. No explanations."

_STRESS_PROMPT = f"""You are an expert mental health analyst. Decide whether the author of this Reddit post is under stress.

1 = stressed: explicit stress, anxiety, feeling overwhelmed, pressure, sleep problems, crisis language.
0 = not stressed: neutral or positive tone, problem-solving, casual or informational posts.

{_BINARY_INSTRUCTION}

Post to analyze: {{text}}

Classification:"""

_DEPRESSION_BINARY_PROMPT = f"""You are a clinical psychologist screening social media posts for depression.

1 = depression: persistent sadness, hopelessness, loss of interest, worthlessness, fatigue, isolation.
0 = no depression: stable mood, engagement with life, temporary setbacks, constructive help-seeking.

{_BINARY_INSTRUCTION}

Post to analyze: {{text}}

Classification:"""

_DEPRESSION_SEVERITY_PROMPT = """You are a clinical psychologist rating depression severity in a Reddit post.

0 = minimal: no significant symptoms.
1 = mild: a few symptoms, little functional impairment.
2 = moderate: several symptoms, noticeable impact on daily life.
3 = severe: many symptoms, major impairment, possible suicidal thoughts.

Respond with ONLY the number 0, 1, 2, or 3. No explanations.

Post to analyze: {text}

Severity level:"""

_SUICIDE_IDEATION_PROMPT = f"""You are a crisis intervention specialist. Decide whether this Reddit post expresses suicidal ideation.

1 = ideation present: wishes to die, thoughts of ending one's life, feeling like a burden, "can't go on".
0 = no ideation: sadness or stress without death-related thoughts, help-seeking.

{_BINARY_INSTRUCTION}

Post to analyze: {{text}}

Classification:"""

_SUICIDE_RISK_BINARY_PROMPT = f"""You are a suicide prevention specialist assessing risk in a Reddit post.

1 = at risk: ideation, hopelessness, isolation, plans or previous attempts.
0 = low risk: seeking support, protective factors, coping strategies.

{_BINARY_INSTRUCTION}

Post to analyze: {{text}}

Risk assessment:"""

_SUICIDE_RISK_SEVERITY_PROMPT = """You are a suicide prevention expert stratifying risk in a Reddit post.

1 = supportive: seeking or offering support, no risk indicators.
2 = indicator: early warning signs, distress without ideation.
3 = ideation: explicit suicidal thoughts.
4 = behavior: plans, preparation or methods mentioned.
5 = attempt: evidence of a past attempt.

Respond with ONLY the number 1, 2, 3, 4, or 5. No explanations.

Post to analyze: {text}

Severity level:"""

_DEPRESSION_BINARY_LABELS = {"minimum": "0", "mild": "1", "moderate": "1", "severe": "1"}
_DEPRESSION_SEVERITY_LABELS = {"minimum": "0", "mild": "1", "moderate": "2", "severe": "3"}
_RISK_BINARY_LABELS = {
    "supportive": "0",
    "indicator": "1",
    "ideation": "1",
    "behavior": "1",
    "attempt": "1",
}
_RISK_SEVERITY_LABELS = {
    "supportive": "1",
    "indicator": "2",
    "ideation": "3",
    "behavior": "4",
    "attempt": "5",
}

_TASKS: dict[TaskType, TaskConfig] = {
    TaskType.STRESS: TaskConfig(
        task_type=TaskType.STRESS,
        name="Task 1: Stress Detection",
        class_names=("0", "1"),
        prompt_template=_STRESS_PROMPT,
        dataset_file="dreaddit_StressAnalysis.csv",
    ),
    TaskType.DEPRESSION_BINARY: TaskConfig(
        task_type=TaskType.DEPRESSION_BINARY,
        name="Task 2: Depression Detection (Binary)",
        class_names=("0", "1"),
        prompt_template=_DEPRESSION_BINARY_PROMPT,
        dataset_file="Reddit_depression_dataset.csv",
        label_map=_DEPRESSION_BINARY_LABELS,
    ),
    TaskType.DEPRESSION_SEVERITY: TaskConfig(
        task_type=TaskType.DEPRESSION_SEVERITY,
        name="Task 3: Depression Severity Detection",
        class_names=("0", "1", "2", "3"),
        prompt_template=_DEPRESSION_SEVERITY_PROMPT,
        weight=1.2,
        dataset_file="Reddit_depression_dataset.csv",
        label_map=_DEPRESSION_SEVERITY_LABELS,
    ),
    TaskType.SUICIDE_IDEATION: TaskConfig(
        task_type=TaskType.SUICIDE_IDEATION,
        name="Task 4: Suicide Ideation Detection",
        class_names=("0", "1"),
        prompt_template=_SUICIDE_IDEATION_PROMPT,
        weight=1.2,
        dataset_file="SDCNL.csv",
        text_columns=("title", "selftext"),
        label_column="is_suicide",
    ),
    TaskType.SUICIDE_RISK_BINARY: TaskConfig(
        task_type=TaskType.SUICIDE_RISK_BINARY,
        name="Task 5: Suicide Risk Detection (Binary)",
        class_names=("0", "1"),
        prompt_template=_SUICIDE_RISK_BINARY_PROMPT,
        weight=1.5,
        dataset_file="500_Reddit_user_posts_labels.csv",
        text_columns=("Post",),
        label_column="Label",
        label_map=_RISK_BINARY_LABELS,
    ),
    TaskType.SUICIDE_RISK_SEVERITY: TaskConfig(
        task_type=TaskType.SUICIDE_RISK_SEVERITY,
        name="Task 6: Suicide Risk Severity Detection",
        class_names=("1", "2", "3", "4", "5"),
        prompt_template=_SUICIDE_RISK_SEVERITY_PROMPT,
        weight=1.5,
        default_value="1",
        dataset_file="500_Reddit_user_posts_labels.csv",
        text_columns=("Post",),
        label_column="Label",
        label_map=_RISK_SEVERITY_LABELS,
    ),
}


def get_task(task: TaskType | str) -> TaskConfig:
    if isinstance(task, str):
        task = TaskType.from_name(task)
    return _TASKS[task]


def all_tasks() -> list[TaskConfig]:
    return [_TASKS[t] for t in TaskType]
