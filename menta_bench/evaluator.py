"""
Batched evaluation of one task against one model.

``Evaluator.run_evaluation`` is a generator: it loads the model, walks the
dataset batch by batch, generates and scores one sample at a time, and
yields progress/sample/reclamation events followed by the terminal
``EvaluationSummary``. The caller drives it from its own thread; every
backend call runs on the evaluator's ``BackendExecutor``.

Only ``ModelLoadError`` escapes. Any other failure is logged to the
message log and the affected sample is scored with its resolved (or
default) label.

Usage:
    from menta_bench.evaluator import Evaluator

    evaluator = Evaluator()
    for event in evaluator.run_evaluation("task1_stress", "menta.gguf", max_samples=50,
                                          dataset="dreaddit.csv"):
        ...
    print(evaluator.message_log)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from .backend import BackendExecutor, BackendLoader, load_llama_backend
from .batching import BatchOrchestrator
from .benchmark_report import diagnose, format_summary
from .config import DEFAULT_PROFILE, BatchConfig, ModelProfile, SamplingConfig
from .datasets import DatasetItem, load_dataset
from .errors import BackendUnavailableError, MentaBenchError, ModelLoadError
from .generate import GenerationOutcome, GenerationSession, SessionHandle
from .memory import MemoryPressureMonitor, cpu_percent, current_memory_gb, log_memory_usage
from .metrics import EvaluationSummary, MetricsAggregator, SampleMetrics
from .prediction import is_valid_label, parse_prediction
from .sampler import Sampler
from .tasks import TaskConfig, TaskType, get_task

logger = logging.getLogger(__name__)

DEFAULT_DATASET_DIR = "datasets"


@dataclass(frozen=True)
class ProgressEvent:
    """Emitted after every batch."""

    current_batch: int
    total_batches: int
    completed: int
    total: int
    message: str

    @property
    def percentage(self) -> float:
        return self.completed / self.total * 100.0 if self.total else 100.0


@dataclass(frozen=True)
class SampleEvent:
    """Emitted after every scored sample."""

    index: int
    item_id: str
    expected: str
    predicted: str
    correct: bool
    response: str
    metrics: SampleMetrics
    aborted: bool = False


@dataclass(frozen=True)
class ReclaimEvent:
    """Emitted after a between-batch reclamation pass."""

    batch_index: int
    memory_mb: float


EvaluationEvent = Union[ProgressEvent, SampleEvent, ReclaimEvent, EvaluationSummary]


class Evaluator:
    """
    Runs classification evaluations and keeps the user-visible log.

    Attributes:
        loader: Backend loader ``(path, profile_config, threads) -> backend``
        batch_config: Batch size / cleanup cadence
        sampling_config: Sampler parameters
        seed: Seed for the sampler's generator (None for OS entropy)
        summary: Summary of the last finished run
        message_log: Running plain-text log of progress, samples and errors
    """

    def __init__(
        self,
        loader: BackendLoader | None = None,
        batch_config: BatchConfig | None = None,
        sampling_config: SamplingConfig | None = None,
        seed: int | None = None,
        threads: int | None = None,
        dataset_dir: str | Path = DEFAULT_DATASET_DIR,
        clock: Callable[[], float] = time.perf_counter,
        sleep: Callable[[float], None] = time.sleep,
        memory_probe: Callable[[], float] = current_memory_gb,
        monitor: MemoryPressureMonitor | None = None,
    ):
        self.loader = loader if loader is not None else load_llama_backend
        self.batch_config = batch_config if batch_config is not None else BatchConfig.default()
        self.sampling_config = sampling_config if sampling_config is not None else SamplingConfig()
        self.seed = seed
        self.threads = threads
        self.dataset_dir = Path(dataset_dir)
        self.summary: EvaluationSummary | None = None
        self.message_log = ""

        self._clock = clock
        self._sleep = sleep
        self._memory_probe = memory_probe
        self._monitor = monitor if monitor is not None else MemoryPressureMonitor()
        self._current_input = ""

    @property
    def current_input(self) -> str:
        """Text of the post currently being classified."""
        return self._current_input

    def log(self, message: str) -> None:
        self.message_log += "\n" + message

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _resolve_dataset(
        self,
        task: TaskConfig,
        dataset: Sequence[DatasetItem] | str | Path | None,
        max_samples: int | None,
    ) -> list[DatasetItem]:
        if dataset is None:
            dataset = self.dataset_dir / task.dataset_file
        if isinstance(dataset, (str, Path)):
            try:
                return load_dataset(dataset, task, max_samples)
            except (MentaBenchError, OSError, ValueError) as exc:
                logger.error("Failed to load dataset %s: %s", dataset, exc)
                self.log(f"ERROR: Failed to load dataset {dataset}: {exc}")
                return []
        items = list(dataset)
        return items[:max_samples] if max_samples is not None else items

    def _load_backend(self, model_path: str, profile: ModelProfile, executor: BackendExecutor):
        try:
            raw = executor.call(self.loader, model_path, profile.config, self.threads)
        except BackendUnavailableError as exc:
            raise ModelLoadError(model_path, str(exc)) from exc
        except ModelLoadError as exc:
            self.log(f"ERROR: {exc}")
            raise
        logger.info("Model loaded: %s", raw.describe())
        self.log(f"Loaded model {raw.describe()} ({profile.config.name})")
        return executor.bind(raw)

    # ------------------------------------------------------------------
    # Per-sample work
    # ------------------------------------------------------------------

    def _generate(self, handle: SessionHandle, task: TaskConfig, item: DatasetItem) -> GenerationOutcome:
        prompt = task.build_prompt(item.text)
        try:
            with handle.checkout() as session:
                return session.generate(
                    prompt.text,
                    max_new_tokens=task.max_tokens,
                    stop_when=lambda response: is_valid_label(response, task),
                )
        except Exception as exc:
            logger.exception("Generation failed for %s", item.id)
            self.log(f"ERROR: Generation failed for {item.id}: {exc}")
            return GenerationOutcome(
                text="",
                input_tokens=0,
                output_tokens=0,
                prompt_latency=0.0,
                generation_latency=0.0,
                first_token_latency=0.0,
                aborted=True,
            )

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    def run_evaluation(
        self,
        task: TaskType | str,
        model_path: str,
        max_samples: int | None = 10,
        profile: ModelProfile | None = None,
        dataset: Sequence[DatasetItem] | str | Path | None = None,
        model_name: str | None = None,
    ) -> Iterator[EvaluationEvent]:
        """Evaluate ``model_path`` on ``task``.

        Args:
            task: Task type or its name (e.g. ``"task1_stress"``)
            model_path: Path handed to the backend loader
            max_samples: Cap on the number of samples (None for all)
            profile: Model variant settings. Defaults to ``DEFAULT_PROFILE``.
            dataset: Items, a dataset file, or None for
                ``dataset_dir / task.dataset_file``
            model_name: Name used in the diagnosis. Defaults to the file stem.

        Yields:
            ProgressEvent, SampleEvent and ReclaimEvent values, then the
            EvaluationSummary.

        Raises:
            ModelLoadError: If the backend could not be loaded.
        """
        task_config = get_task(task)
        profile = profile if profile is not None else DEFAULT_PROFILE
        model_name = model_name or Path(model_path).stem
        self.summary = None
        self.message_log = ""
        self._current_input = ""

        items = self._resolve_dataset(task_config, dataset, max_samples)
        self.log(f"Starting {task_config.name} with {model_name}: {len(items)} samples")

        cpu_percent()  # first reading only primes the counter
        aggregator = MetricsAggregator()

        executor = BackendExecutor()
        try:
            backend = self._load_backend(model_path, profile, executor)
            try:
                session = GenerationSession(
                    backend,
                    sampler=Sampler(self.sampling_config, seed=self.seed),
                    max_new_tokens=task_config.max_tokens,
                    sleep=self._sleep,
                    clock=self._clock,
                    memory_probe=self._memory_probe,
                )
                handle = SessionHandle(session)
                orchestrator = BatchOrchestrator(self.batch_config, backend, self._monitor)

                started = self._clock()
                yield from self._run_batches(task_config, items, handle, orchestrator, aggregator)

                elapsed = self._clock() - started
                summary = aggregator.summarize(
                    elapsed,
                    cpu_percent=cpu_percent(),
                    ram_gb=current_memory_gb(),
                    model_memory_gb=profile.config.memory_gb,
                )
                log_memory_usage("Final ")
                self.log("\n" + format_summary(summary))
                self.log("\n" + orchestrator.report(len(items), elapsed))
                self.log("\n=== DIAGNOSIS ===")
                self.log(diagnose(summary.accuracy, model_name, task_config.name))
                logger.info(
                    "Task completed - Accuracy: %.1f%% (%d/%d)",
                    summary.accuracy,
                    summary.correct,
                    summary.total_samples,
                )
                self.summary = summary
                yield summary
            finally:
                backend.free()
        finally:
            executor.shutdown()

    def _run_batches(
        self,
        task: TaskConfig,
        items: list[DatasetItem],
        handle: SessionHandle,
        orchestrator: BatchOrchestrator,
        aggregator: MetricsAggregator,
    ) -> Iterator[EvaluationEvent]:
        total = len(items)
        batch_count, _ = orchestrator.compute_batches(total)
        logger.info("Starting batch processing: %d batches, %d samples", batch_count, total)
        log_memory_usage("Initial ")

        for batch_index, indices in orchestrator.iter_batches(total):
            logger.info(
                "Processing batch %d/%d (samples %d-%d)",
                batch_index + 1,
                batch_count,
                indices.start + 1,
                indices.stop,
            )
            for index in indices:
                yield self._score(task, index, items[index], handle, aggregator)

            if orchestrator.should_reclaim(batch_index):
                result = orchestrator.reclaim(batch_index)
                yield ReclaimEvent(batch_index=batch_index, memory_mb=result.memory_mb)

            message = orchestrator.progress(batch_index + 1, batch_count, indices.stop, total)
            logger.info(message)
            if orchestrator.config.show_progress:
                self.log(message)
            yield ProgressEvent(
                current_batch=batch_index + 1,
                total_batches=batch_count,
                completed=indices.stop,
                total=total,
                message=message,
            )

    def _score(
        self,
        task: TaskConfig,
        index: int,
        item: DatasetItem,
        handle: SessionHandle,
        aggregator: MetricsAggregator,
    ) -> SampleEvent:
        self._current_input = item.text
        sample_start = self._clock()

        outcome = self._generate(handle, task, item)
        predicted = parse_prediction(outcome.text, task)
        correct = predicted == item.expected
        metrics = outcome.to_metrics()
        aggregator.add(metrics, correct, evaluation_time=self._clock() - sample_start)

        if metrics.is_out_of_memory:
            logger.warning(
                "Sample %d experienced OOM at memory usage: %.2f GB", index + 1, metrics.oom_memory_gb
            )
        if outcome.aborted:
            self.log(f"WARNING: Example {index + 1} aborted, scored with {predicted!r}")
        logger.debug("Sample %d: %r -> %s (expected %s)", index + 1, outcome.text, predicted, item.expected)
        self.log(
            f"Example {index + 1} - Expected: {item.expected}, "
            f"Predicted: {predicted}, Correct: {correct}"
        )
        return SampleEvent(
            index=index,
            item_id=item.id,
            expected=item.expected,
            predicted=predicted,
            correct=correct,
            response=outcome.text,
            metrics=metrics,
            aborted=outcome.aborted,
        )
