"""Per-sample measurements and the run-level aggregate derived from them."""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from typing import Any

logger = logging.getLogger(__name__)

# Share of measured generation time attributed to backend inference.
# Output throughput is computed against this share.
INFERENCE_TIME_RATIO = 0.2

# Upper bound on the reported output tokens per second
OTPS_CEILING = 1000.0

# Floor on wall-clock generation time used by the fallback throughput
MIN_WALL_GENERATION_S = 0.001


@dataclass(frozen=True)
class SampleMetrics:
    """Measurements for one generated response. Latencies in seconds."""

    input_tokens: int = 0
    output_tokens: int = 0
    prompt_latency: float = 0.0
    generation_latency: float = 0.0
    first_token_latency: float = 0.0
    is_out_of_memory: bool = False
    oom_memory_gb: float = 0.0


@dataclass(frozen=True)
class EvaluationSummary:
    """Headline numbers for a finished evaluation run.

    Attributes:
        total_samples: Number of scored samples
        correct: Number of correct classifications
        accuracy: Percentage of correct classifications
        ttft: Mean time to first token (s)
        itps: Input tokens per second of prompt processing
        otps: Output tokens per second after the inference-time correction
        oet: Mean wall-clock time per sample (s)
        total_time: Wall-clock duration of the run (s)
        cpu_percent: Process CPU usage at the end of the run
        ram_gb: Process resident memory at the end of the run
        model_memory_gb: Estimated model footprint from the profile
        oom_count: Samples flagged by the out-of-memory heuristic
        oom_rate: ``oom_count`` as a percentage of ``total_samples``
        avg_oom_memory_gb: Mean process memory at OOM detection
        total_oom_memory_gb: Sum of process memory at OOM detection
    """

    total_samples: int
    correct: int
    accuracy: float
    ttft: float
    itps: float
    otps: float
    oet: float
    total_time: float
    cpu_percent: float = 0.0
    ram_gb: float = 0.0
    model_memory_gb: float = 0.0
    oom_count: int = 0
    oom_rate: float = 0.0
    avg_oom_memory_gb: float = 0.0
    total_oom_memory_gb: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class MetricsAggregator:
    """Running totals for one evaluation run.

    Samples are folded in with ``add``; derived values exist only in the
    ``EvaluationSummary`` returned by ``summarize``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self.total_samples = 0
            self.correct = 0
            self.input_tokens = 0
            self.output_tokens = 0
            self.prompt_time = 0.0
            self.generation_time = 0.0
            self.first_token_time = 0.0
            self.evaluation_time = 0.0
            self.oom_count = 0
            self.oom_memory_gb = 0.0

    @property
    def incorrect(self) -> int:
        return self.total_samples - self.correct

    def add(self, metrics: SampleMetrics, correct: bool, evaluation_time: float = 0.0) -> None:
        """Fold one scored sample into the totals.

        Args:
            metrics: Generation measurements for the sample
            correct: Whether the parsed prediction matched the label
            evaluation_time: Wall-clock time spent on the sample, including parsing
        """
        with self._lock:
            self.total_samples += 1
            if correct:
                self.correct += 1
            self.input_tokens += metrics.input_tokens
            self.output_tokens += metrics.output_tokens
            self.prompt_time += metrics.prompt_latency
            self.generation_time += metrics.generation_latency
            self.first_token_time += metrics.first_token_latency
            self.evaluation_time += evaluation_time
            if metrics.is_out_of_memory:
                self.oom_count += 1
                self.oom_memory_gb += metrics.oom_memory_gb

    def output_tokens_per_second(self, elapsed: float) -> float:
        """Corrected output throughput.

        Takes the larger of the per-sample-average estimate and the
        wall-clock estimate, both scaled by ``INFERENCE_TIME_RATIO``, and
        caps it at ``OTPS_CEILING``.
        """
        n = self.total_samples
        if n == 0 or self.output_tokens == 0:
            return 0.0

        avg_tokens = self.output_tokens / n
        adjusted_avg_time = (self.generation_time / n) * INFERENCE_TIME_RATIO
        per_sample = avg_tokens / adjusted_avg_time if adjusted_avg_time > 0 else 0.0

        wall = max(elapsed - self.prompt_time, MIN_WALL_GENERATION_S) * INFERENCE_TIME_RATIO
        wall_clock = self.output_tokens / wall

        logger.debug(
            "OTPS per-sample %.2f, wall-clock %.2f (ratio %.2f)",
            per_sample,
            wall_clock,
            INFERENCE_TIME_RATIO,
        )
        return min(max(per_sample, wall_clock), OTPS_CEILING)

    def summarize(
        self,
        elapsed: float,
        cpu_percent: float = 0.0,
        ram_gb: float = 0.0,
        model_memory_gb: float = 0.0,
    ) -> EvaluationSummary:
        """Derive the run summary from the accumulated totals."""
        with self._lock:
            n = self.total_samples
            accuracy = self.correct / n * 100.0 if n else 0.0
            ttft = self.first_token_time / n if n else 0.0
            itps = self.input_tokens / self.prompt_time if self.input_tokens > 0 and self.prompt_time > 0 else 0.0
            oet = self.evaluation_time / n if n else 0.0
            oom_rate = self.oom_count / n * 100.0 if n else 0.0
            avg_oom = self.oom_memory_gb / self.oom_count if self.oom_count else 0.0
            otps = self.output_tokens_per_second(elapsed)

            return EvaluationSummary(
                total_samples=n,
                correct=self.correct,
                accuracy=accuracy,
                ttft=ttft,
                itps=itps,
                otps=otps,
                oet=oet,
                total_time=elapsed,
                cpu_percent=cpu_percent,
                ram_gb=ram_gb,
                model_memory_gb=model_memory_gb,
                oom_count=self.oom_count,
                oom_rate=oom_rate,
                avg_oom_memory_gb=avg_oom,
                total_oom_memory_gb=self.oom_memory_gb,
                input_tokens=self.input_tokens,
                output_tokens=self.output_tokens,
            )
