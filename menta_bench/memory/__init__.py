"""Process memory and CPU readings for the evaluation loop."""

from .memory_pressure import (
    MemoryPressureConfig,
    MemoryPressureMonitor,
    MemoryPressureStats,
    cpu_percent,
    current_memory_gb,
    current_memory_mb,
    log_memory_usage,
)

__all__ = [
    "MemoryPressureConfig",
    "MemoryPressureMonitor",
    "MemoryPressureStats",
    "cpu_percent",
    "current_memory_gb",
    "current_memory_mb",
    "log_memory_usage",
]
