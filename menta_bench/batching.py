"""
Batch scheduling for evaluation runs.

Samples are processed strictly one at a time; batches only group them for
progress reporting and for periodic memory reclamation between groups.

Usage:
    from menta_bench.batching import BatchOrchestrator
    from menta_bench.config import BatchConfig

    orchestrator = BatchOrchestrator(BatchConfig.default(), backend=backend)
    for batch_index, indices in orchestrator.iter_batches(len(dataset)):
        ...
        if orchestrator.should_reclaim(batch_index):
            orchestrator.reclaim()
"""

from __future__ import annotations

import gc
import logging
from collections.abc import Iterator
from dataclasses import dataclass

from .backend import InferenceBackend
from .config import BatchConfig
from .memory import MemoryPressureMonitor, current_memory_mb

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReclaimResult:
    """Outcome of one reclamation pass."""

    batch_index: int
    collected_objects: int
    memory_mb: float
    is_warning: bool = False
    is_critical: bool = False
    trend: str = "stable"


class BatchOrchestrator:
    """Splits a dataset into batches and reclaims memory between them.

    Attributes:
        config: Batch size, cleanup interval and verbosity
        backend: Backend whose cache is force-cleared on reclamation, if any
        monitor: Memory pressure monitor consulted on reclamation and in the report
        reclaim_count: Number of reclamation passes run so far
    """

    def __init__(
        self,
        config: BatchConfig | None = None,
        backend: InferenceBackend | None = None,
        monitor: MemoryPressureMonitor | None = None,
    ) -> None:
        self.config = config if config is not None else BatchConfig.default()
        self.backend = backend
        self.monitor = monitor
        self.reclaim_count = 0

    def compute_batches(self, total: int) -> tuple[int, int]:
        """Return ``(batch_count, last_batch_size)`` for ``total`` samples.

        ``last_batch_size`` is the full batch size when ``total`` divides
        evenly. An empty dataset has no batches: ``(0, 0)``.
        """
        if total <= 0:
            return 0, 0
        size = self.config.batch_size
        batch_count = (total + size - 1) // size
        remainder = total % size
        return batch_count, remainder if remainder else size

    def batch_range(self, batch_index: int, total: int) -> range:
        start = batch_index * self.config.batch_size
        return range(start, min(start + self.config.batch_size, total))

    def iter_batches(self, total: int) -> Iterator[tuple[int, range]]:
        batch_count, _ = self.compute_batches(total)
        for batch_index in range(batch_count):
            yield batch_index, self.batch_range(batch_index, total)

    def should_reclaim(self, batch_index: int) -> bool:
        """True after every ``cleanup_interval``-th batch (0-indexed)."""
        return (batch_index + 1) % self.config.cleanup_interval == 0

    def reclaim(self, batch_index: int = -1) -> ReclaimResult:
        """Run a forced reclamation pass.

        Collects garbage, force-clears the backend cache and logs the
        process footprint. Independent of the per-sample session clear.
        """
        collected = gc.collect()
        if self.backend is not None:
            self.backend.clear_cache(force=True)
        self.reclaim_count += 1

        memory_mb = current_memory_mb()
        is_warning = is_critical = False
        trend = "stable"
        if self.monitor is not None:
            is_warning, is_critical = self.monitor.check_pressure()
            stats = self.monitor.get_stats()
            trend = stats["trend"]
            logger.info("Memory pressure %s, trend %s", stats["pressure_level"], trend)
            if is_critical:
                logger.warning("Memory pressure critical after cleanup: %.2f MB", memory_mb)
            elif is_warning:
                logger.warning("Memory pressure high after cleanup: %.2f MB", memory_mb)

        logger.info(
            "Memory cleanup after batch %d: collected %d objects, memory usage %.2f MB",
            batch_index + 1,
            collected,
            memory_mb,
        )
        return ReclaimResult(
            batch_index=batch_index,
            collected_objects=collected,
            memory_mb=memory_mb,
            is_warning=is_warning,
            is_critical=is_critical,
            trend=trend,
        )

    @staticmethod
    def progress(current_batch: int, total_batches: int, current_sample: int, total_samples: int) -> str:
        percentage = current_sample / total_samples * 100.0 if total_samples else 100.0
        return (
            f"Batch {current_batch}/{total_batches} "
            f"({percentage:.1f}% - {current_sample}/{total_samples} samples)"
        )

    def report(self, total_samples: int, total_time: float) -> str:
        """Plain-text batch processing report."""
        speed = total_samples / total_time if total_time > 0 else 0.0
        cleanups = total_samples // (self.config.batch_size * self.config.cleanup_interval)
        lines = [
            "Batch Processing Report:",
            f"- Total samples: {total_samples}",
            f"- Batch size: {self.config.batch_size}",
            f"- Total time: {total_time:.2f}s",
            f"- Speed: {speed:.2f} samples/sec",
            f"- Memory cleanups: {cleanups}",
        ]
        if self.monitor is not None:
            stats = self.monitor.get_stats()
            lines.append(
                f"- Memory trend: {stats['trend']} "
                f"({stats['pressure_level']}, {stats['process_memory_mb']:.2f} MB)"
            )
        return "\n".join(lines)
