import logging
import threading
import time
from dataclasses import dataclass
from typing import Any

import psutil

logger = logging.getLogger(__name__)

_BYTES_PER_MB = 1024 * 1024
_BYTES_PER_GB = 1024 * 1024 * 1024


def current_memory_gb() -> float:
    """Resident memory of this process in GB (0.0 if it cannot be read)."""
    try:
        return psutil.Process().memory_info().rss / _BYTES_PER_GB
    except psutil.Error as exc:
        logger.warning("Failed to read process memory: %s", exc)
        return 0.0


def current_memory_mb() -> float:
    return current_memory_gb() * 1024.0


def cpu_percent(interval: float | None = None) -> float:
    """CPU usage of this process since the previous call, in percent."""
    try:
        return float(psutil.Process().cpu_percent(interval=interval))
    except psutil.Error as exc:
        logger.warning("Failed to read CPU usage: %s", exc)
        return 0.0


def log_memory_usage(prefix: str = "") -> float:
    usage = current_memory_mb()
    logger.info("%sMemory usage: %.2f MB", prefix, usage)
    return usage


@dataclass
class MemoryPressureConfig:
    """Configuration for memory pressure detection.

    Attributes:
        warning_threshold_mb: Process RSS above which the state is "warning"
        critical_threshold_mb: Process RSS above which the state is "critical"
        check_interval_seconds: Minimum time between two psutil reads
        enable_monitoring: Disable to freeze the last reading
        pressure_history_window: Number of checks to keep for trend analysis
    """
    warning_threshold_mb: int = 800
    critical_threshold_mb: int = 4096
    check_interval_seconds: float = 0.5
    enable_monitoring: bool = True
    pressure_history_window: int = 10


@dataclass
class MemoryPressureStats:
    """Statistics for memory pressure monitoring."""
    process_memory_mb: float = 0.0
    available_memory_mb: int = 0
    pressure_level: str = "normal"  # normal, warning, critical
    is_warning: bool = False
    is_critical: bool = False
    trend: str = "stable"  # increasing, decreasing, stable
    last_check_time: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "process_memory_mb": self.process_memory_mb,
            "available_memory_mb": self.available_memory_mb,
            "pressure_level": self.pressure_level,
            "is_warning": self.is_warning,
            "is_critical": self.is_critical,
            "trend": self.trend,
            "last_check_time": self.last_check_time,
        }


class MemoryPressureMonitor:
    """Tracks this process's memory footprint between evaluation batches.

    - Periodic process RSS and system availability reads via psutil
    - Warning/Critical state detection
    - Trend analysis over the last few checks (growing footprint)
    - Thread-safe status queries

    The batch orchestrator consults it after each reclamation pass so a
    steadily growing footprint shows up in the log before the backend
    starts failing decodes.
    """

    def __init__(self, config: MemoryPressureConfig | None = None) -> None:
        self.config = config or MemoryPressureConfig()
        self._stats = MemoryPressureStats()
        self._lock = threading.RLock()

        self._history: list[float] = []  # History of process RSS
        self._last_check_time = 0.0

        self._update_stats()

    def check_pressure(self) -> tuple[bool, bool]:
        """Check current memory pressure state.

        Returns:
            Tuple of (is_warning, is_critical)
        """
        self._update_stats_if_needed()
        with self._lock:
            return self._stats.is_warning, self._stats.is_critical

    def get_stats(self) -> dict[str, Any]:
        """Get current memory pressure statistics."""
        self._update_stats_if_needed()
        with self._lock:
            return self._stats.to_dict()

    def _update_stats_if_needed(self) -> None:
        now = time.time()
        if now - self._last_check_time >= self.config.check_interval_seconds:
            self._update_stats()

    def _update_stats(self) -> None:
        if not self.config.enable_monitoring:
            return

        try:
            rss_mb = psutil.Process().memory_info().rss / _BYTES_PER_MB
            available_mb = psutil.virtual_memory().available // _BYTES_PER_MB
        except psutil.Error as exc:
            logger.warning("Memory pressure check failed: %s", exc)
            return

        with self._lock:
            self._last_check_time = time.time()

            self._history.append(rss_mb)
            if len(self._history) > self.config.pressure_history_window:
                self._history.pop(0)

            is_critical = rss_mb > self.config.critical_threshold_mb
            is_warning = rss_mb > self.config.warning_threshold_mb

            pressure_level = "normal"
            if is_critical:
                pressure_level = "critical"
            elif is_warning:
                pressure_level = "warning"

            trend = "stable"
            if len(self._history) >= 3:
                recent = self._history[-3:]
                if recent[0] < recent[1] < recent[2]:
                    trend = "increasing"
                elif recent[0] > recent[1] > recent[2]:
                    trend = "decreasing"

            self._stats = MemoryPressureStats(
                process_memory_mb=rss_mb,
                available_memory_mb=int(available_mb),
                pressure_level=pressure_level,
                is_warning=is_warning,
                is_critical=is_critical,
                trend=trend,
                last_check_time=self._last_check_time,
            )
