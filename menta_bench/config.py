"""Configuration records for model variants, batching and sampling.

Every model variant the benchmark knows about gets an explicit
``ModelProfileConfig`` record. Callers select one by passing a
``ModelProfile`` value; unknown variants use ``ModelProfile.QUANTIZED``.

Usage:
    from menta_bench.config import BatchConfig, ModelProfile, SamplingConfig

    profile = ModelProfile.FALCON_1B.config
    batch = BatchConfig.low_memory()
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum

from .errors import ConfigError


@dataclass(frozen=True)
class ModelProfileConfig:
    """Backend resource settings for one model variant.

    Attributes:
        name: Human-readable variant name.
        gpu_layers: Number of layers offloaded to the accelerator.
        context_size: Context window (KV-cache length) in tokens.
        batch_size: Maximum tokens per submitted batch.
        memory_gb: Estimated resident memory for weights plus KV cache.
    """

    name: str
    gpu_layers: int
    context_size: int
    batch_size: int
    memory_gb: float

    def __post_init__(self) -> None:
        if self.gpu_layers < 0:
            raise ConfigError(f"gpu_layers must be >= 0, got {self.gpu_layers}")
        if self.context_size <= 0:
            raise ConfigError(f"context_size must be > 0, got {self.context_size}")
        if not 0 < self.batch_size <= self.context_size:
            raise ConfigError(
                f"batch_size must be in (0, context_size], got {self.batch_size}"
            )
        if self.memory_gb <= 0:
            raise ConfigError(f"memory_gb must be > 0, got {self.memory_gb}")


class ModelProfile(Enum):
    """Known model variants."""

    QUANTIZED = "quantized"
    F32 = "f32"
    STABLELM_3B = "stablelm-3b"
    FALCON_1B = "falcon-1b"
    SIMULATOR = "simulator"

    @property
    def config(self) -> ModelProfileConfig:
        return _PROFILES[self]

    @classmethod
    def from_name(cls, name: str | None) -> ModelProfile:
        """Look up a profile by its value, falling back to the default."""
        if not name:
            return DEFAULT_PROFILE
        try:
            return cls(name.lower())
        except ValueError as exc:
            raise ConfigError(f"Unknown model profile: {name!r}") from exc

    @classmethod
    def guess(cls, model_path: str) -> ModelProfile:
        """Best-effort profile from a model filename.

        Only used by the command line when no ``--profile`` is given.
        """
        lowered = os.path.basename(model_path).lower()
        if "stableslm" in lowered or "stablelm" in lowered:
            return cls.STABLELM_3B
        if "falcon" in lowered:
            return cls.FALCON_1B
        if "f32" in lowered:
            return cls.F32
        return DEFAULT_PROFILE


_PROFILES: dict[ModelProfile, ModelProfileConfig] = {
    ModelProfile.QUANTIZED: ModelProfileConfig(
        name="Q4_K_M quantized", gpu_layers=35, context_size=4096, batch_size=2048, memory_gb=1.5
    ),
    ModelProfile.F32: ModelProfileConfig(
        name="F32", gpu_layers=25, context_size=3072, batch_size=1024, memory_gb=16.4
    ),
    ModelProfile.STABLELM_3B: ModelProfileConfig(
        name="StableSLM-3B f16", gpu_layers=20, context_size=2048, batch_size=512, memory_gb=5.3
    ),
    ModelProfile.FALCON_1B: ModelProfileConfig(
        name="Falcon-1.3B", gpu_layers=30, context_size=4096, batch_size=1024, memory_gb=1.5
    ),
    ModelProfile.SIMULATOR: ModelProfileConfig(
        name="CPU only", gpu_layers=0, context_size=4096, batch_size=2048, memory_gb=1.5
    ),
}

DEFAULT_PROFILE = ModelProfile.QUANTIZED


@dataclass(frozen=True)
class BatchConfig:
    """Batch scheduling for an evaluation run.

    Attributes:
        batch_size: Samples per batch.
        cleanup_interval: Run a reclamation pass after every N batches.
        show_progress: Emit a progress line after every batch.
    """

    batch_size: int = 20
    cleanup_interval: int = 5
    show_progress: bool = True

    def __post_init__(self) -> None:
        if self.batch_size <= 0:
            raise ConfigError(f"batch_size must be > 0, got {self.batch_size}")
        if self.cleanup_interval <= 0:
            raise ConfigError(f"cleanup_interval must be > 0, got {self.cleanup_interval}")

    @classmethod
    def default(cls) -> BatchConfig:
        return cls(batch_size=20, cleanup_interval=5, show_progress=True)

    @classmethod
    def fast(cls) -> BatchConfig:
        return cls(batch_size=50, cleanup_interval=10, show_progress=False)

    @classmethod
    def low_memory(cls) -> BatchConfig:
        return cls(batch_size=10, cleanup_interval=2, show_progress=True)

    @classmethod
    def preset(cls, name: str) -> BatchConfig:
        presets = {"default": cls.default, "fast": cls.fast, "low-memory": cls.low_memory}
        try:
            return presets[name]()
        except KeyError as exc:
            raise ConfigError(f"Unknown batch preset: {name!r}") from exc


@dataclass(frozen=True)
class SamplingConfig:
    """Configuration for token sampling."""

    temperature: float = 0.7
    top_p: float = 0.8
    top_k: int = 20
    min_p: float = 0.0
    presence_penalty: float = 0.1
    fallback_width: int = 10

    def __post_init__(self) -> None:
        if self.temperature <= 0:
            raise ConfigError(f"temperature must be > 0, got {self.temperature}")
        if not 0.0 < self.top_p <= 1.0:
            raise ConfigError(f"top_p must be in (0, 1], got {self.top_p}")
        if self.top_k <= 0:
            raise ConfigError(f"top_k must be > 0, got {self.top_k}")
        if not 0.0 <= self.min_p < 1.0:
            raise ConfigError(f"min_p must be in [0, 1), got {self.min_p}")
        if self.fallback_width <= 0:
            raise ConfigError(f"fallback_width must be > 0, got {self.fallback_width}")


def default_thread_count() -> int:
    """Worker threads for the backend: leave two cores free, cap at 8."""
    return max(1, min(8, (os.cpu_count() or 1) - 2))
