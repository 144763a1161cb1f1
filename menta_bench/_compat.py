"""Centralized optional dependency handling for menta_bench.

This module provides:
- Feature flag (HAS_LLAMA_CPP) for runtime detection of llama-cpp-python
- A typed module reference that works with type checkers
- Logit vector conversion for whatever a backend hands back

Usage:
    from menta_bench._compat import HAS_LLAMA_CPP, llama_cpp, as_logit_vector
"""

from __future__ import annotations

from types import ModuleType
from typing import TYPE_CHECKING, Any

import numpy as np
from numpy.typing import NDArray

from .errors import BackendUnavailableError

if TYPE_CHECKING:
    import llama_cpp  # type: ignore[import-not-found]


HAS_LLAMA_CPP: bool

# Module reference (None when unavailable)
llama_cpp: ModuleType | None = None  # type: ignore[no-redef]

# Try importing llama-cpp-python
try:
    import llama_cpp as _llama_cpp_module  # type: ignore[import-not-found]

    llama_cpp = _llama_cpp_module
    HAS_LLAMA_CPP = True
except ImportError:
    llama_cpp = None
    HAS_LLAMA_CPP = False


def as_logit_vector(arr: Any) -> NDArray[np.float64] | None:
    """Convert a backend logit row to a 1-D float64 numpy array.

    Args:
        arr: numpy array, list, ctypes-backed buffer or None

    Returns:
        Flattened float64 copy, or None when the backend gave no logits.
    """
    if arr is None:
        return None
    vec = np.asarray(arr, dtype=np.float64).reshape(-1)
    if vec.size == 0:
        return None
    return vec


def require_llama_cpp(feature: str = "this operation") -> None:
    """Raise BackendUnavailableError if llama-cpp-python is not available.

    Args:
        feature: Description of what requires llama.cpp for the error message.

    Raises:
        BackendUnavailableError: If llama-cpp-python is not installed.
    """
    if not HAS_LLAMA_CPP:
        raise BackendUnavailableError(
            f"llama-cpp-python is required for {feature}. "
            "Install with: pip install 'menta-bench[llama]'"
        )
