from unittest.mock import patch

import pytest

from menta_bench.config import (
    DEFAULT_PROFILE,
    ModelProfile,
    ModelProfileConfig,
    SamplingConfig,
    default_thread_count,
)
from menta_bench.errors import ConfigError


@pytest.mark.parametrize("profile", list(ModelProfile), ids=lambda p: p.value)
def test_every_profile_has_a_valid_record(profile):
    config = profile.config
    assert config.batch_size <= config.context_size
    assert config.memory_gb > 0


def test_profile_lookup():
    assert ModelProfile.from_name("falcon-1b") is ModelProfile.FALCON_1B
    assert ModelProfile.from_name("F32") is ModelProfile.F32
    assert ModelProfile.from_name(None) is DEFAULT_PROFILE
    with pytest.raises(ConfigError):
        ModelProfile.from_name("gpt-9")


@pytest.mark.parametrize(
    "path,expected",
    [
        ("models/StableSLM-3B-f16.gguf", ModelProfile.STABLELM_3B),
        ("falcon-1.3b-q4.gguf", ModelProfile.FALCON_1B),
        ("/tmp/menta-f32.gguf", ModelProfile.F32),
        ("menta-q4_k_m.gguf", ModelProfile.QUANTIZED),
    ],
)
def test_guess_from_filename(path, expected):
    assert ModelProfile.guess(path) is expected


@pytest.mark.parametrize(
    "kwargs",
    [
        {"gpu_layers": -1},
        {"context_size": 0},
        {"batch_size": 8192},
        {"memory_gb": 0.0},
    ],
)
def test_invalid_profile_record(kwargs):
    values = dict(name="x", gpu_layers=1, context_size=4096, batch_size=512, memory_gb=1.0)
    values.update(kwargs)
    with pytest.raises(ConfigError):
        ModelProfileConfig(**values)


@pytest.mark.parametrize(
    "kwargs",
    [{"temperature": 0.0}, {"top_p": 0.0}, {"top_p": 1.5}, {"top_k": 0}, {"min_p": 1.0}, {"fallback_width": 0}],
)
def test_invalid_sampling_config(kwargs):
    with pytest.raises(ConfigError):
        SamplingConfig(**kwargs)


@pytest.mark.parametrize("cores,expected", [(None, 1), (1, 1), (4, 2), (10, 8), (64, 8)])
def test_default_thread_count(cores, expected):
    with patch("menta_bench.config.os.cpu_count", return_value=cores):
        assert default_thread_count() == expected
