"""Pytest configuration for menta-bench tests.

No model weights are needed: generation and evaluation run against the
scripted ``FakeBackend`` in ``helpers``, and the llama.cpp adapter is
tested against a mocked ``llama_cpp.Llama``.

Usage:
    pytest tests/                             # Full suite
    pytest tests/ -m "not requires_llama_cpp" # Skip tests needing llama-cpp-python
"""

from __future__ import annotations

import numpy as np
import pytest

from helpers import FakeBackend, script_for
from menta_bench._compat import HAS_LLAMA_CPP

requires_llama_cpp = pytest.mark.requires_llama_cpp


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "requires_llama_cpp: mark test as requiring llama-cpp-python")


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if HAS_LLAMA_CPP:
        return
    skip_llama = pytest.mark.skip(reason="Requires llama-cpp-python")
    for item in items:
        if "requires_llama_cpp" in item.keywords:
            item.add_marker(skip_llama)


# ==============================================================================
# Random state fixtures
# ==============================================================================


@pytest.fixture
def seed() -> int:
    """Fixed seed for reproducible tests."""
    return 42


@pytest.fixture
def rng(seed: int) -> np.random.Generator:
    """NumPy random generator with fixed seed."""
    return np.random.default_rng(seed)


# ==============================================================================
# Backend fixtures
# ==============================================================================


@pytest.fixture
def make_backend():
    """Factory fixture for scripted backends.

    Returns a function: (labels, **failure_kwargs) -> FakeBackend
    """

    def _make(labels=(), **kwargs) -> FakeBackend:
        return FakeBackend(scripts=script_for(labels), **kwargs)

    return _make
