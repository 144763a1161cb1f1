"""menta-bench: on-device mental-health classification benchmark.

Drives a local autoregressive inference backend to classify social-media
posts into mental-health categories and reports accuracy and latency.

Key exports:
- Evaluator: Batched evaluation run yielding progress events and a summary
- GenerationSession / SessionHandle: Decode/sample loop with retry and OOM detection
- Sampler: Temperature / presence-penalty / top-k / min-p / top-p sampling
- TokenCodec: Fail-closed tokenization and incremental UTF-8 decoding
- BatchOrchestrator / MetricsAggregator: Batch scheduling and run metrics
- HAS_LLAMA_CPP: Feature flag for the llama.cpp backend
"""

from ._compat import HAS_LLAMA_CPP
from .backend import BackendExecutor, InferenceBackend, LlamaCppBackend, load_llama_backend
from .batching import BatchOrchestrator
from .benchmark_report import diagnose, format_summary
from .config import BatchConfig, ModelProfile, ModelProfileConfig, SamplingConfig
from .datasets import DatasetItem, load_dataset
from .errors import (
    BackendUnavailableError,
    ConfigError,
    DecodeError,
    MentaBenchError,
    ModelLoadError,
    SessionStateError,
    TokenizeError,
)
from .evaluator import Evaluator, ProgressEvent, ReclaimEvent, SampleEvent
from .generate import GenerationOutcome, GenerationSession, SessionHandle, StepResult
from .metrics import EvaluationSummary, MetricsAggregator, SampleMetrics
from .prediction import parse_prediction
from .sampler import Sampler
from .tasks import Prompt, TaskConfig, TaskType, get_task
from .tokenizer import TokenCodec

__version__ = "0.1.0"

__all__ = [
    "HAS_LLAMA_CPP",
    "BackendExecutor",
    "BackendUnavailableError",
    "BatchConfig",
    "BatchOrchestrator",
    "ConfigError",
    "DatasetItem",
    "DecodeError",
    "EvaluationSummary",
    "Evaluator",
    "GenerationOutcome",
    "GenerationSession",
    "InferenceBackend",
    "LlamaCppBackend",
    "MentaBenchError",
    "MetricsAggregator",
    "ModelLoadError",
    "ModelProfile",
    "ModelProfileConfig",
    "ProgressEvent",
    "Prompt",
    "ReclaimEvent",
    "SampleEvent",
    "SampleMetrics",
    "Sampler",
    "SamplingConfig",
    "SessionHandle",
    "SessionStateError",
    "StepResult",
    "TaskConfig",
    "TaskType",
    "TokenCodec",
    "TokenizeError",
    "diagnose",
    "format_summary",
    "get_task",
    "load_dataset",
    "parse_prediction",
]
