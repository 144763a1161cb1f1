"""Narrow interface to the external inference backend.

The core never loads weights, runs forward passes or reads logits itself;
it talks to an ``InferenceBackend``. Accelerator work may only happen on
one designated thread, so every call is funneled through a
``BackendExecutor`` and the caller blocks until it completes.

Usage:
    from menta_bench.backend import BackendExecutor, load_llama_backend

    executor = BackendExecutor()
    backend = executor.bind(load_llama_backend("model.gguf", ModelProfile.QUANTIZED.config))
    backend.submit_batch([1, 2, 3], [0, 1, 2], logits_for_last=True)
"""

from __future__ import annotations

import logging
import os
import re
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Protocol, TypeVar, runtime_checkable

import numpy as np
from numpy.typing import NDArray

from ._compat import as_logit_vector, llama_cpp, require_llama_cpp
from .config import ModelProfileConfig, default_thread_count
from .errors import ModelLoadError, TokenizeError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@runtime_checkable
class InferenceBackend(Protocol):
    """Protocol for inference engines driven by the generation session."""

    @property
    def vocab_size(self) -> int: ...

    @property
    def batch_capacity(self) -> int: ...

    def count_tokens(self, text: str, add_bos: bool) -> int: ...
    def tokenize(self, text: str, add_bos: bool) -> list[int]: ...
    def submit_batch(
        self, token_ids: Sequence[int], positions: Sequence[int], logits_for_last: bool
    ) -> int: ...
    def get_logits(self, index: int) -> NDArray[np.float64] | None: ...
    def is_end_of_generation(self, token_id: int) -> bool: ...
    def token_to_piece(self, token_id: int) -> bytes: ...
    def clear_cache(self, force: bool = True) -> None: ...
    def free(self) -> None: ...
    def describe(self) -> str: ...


BackendLoader = Callable[[str, ModelProfileConfig, int], InferenceBackend]


# ---------------------------------------------------------------------------
# Designated execution context
# ---------------------------------------------------------------------------


class BackendExecutor:
    """Single-thread execution context for accelerator calls.

    ``call`` submits work to the worker thread and waits for the result.
    Calls made from the worker thread itself run inline so nested calls
    cannot deadlock.
    """

    def __init__(self, name: str = "menta-backend") -> None:
        self._pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        self._worker_ident: int | None = None
        self._lock = threading.Lock()
        self._closed = False
        self._calls = 0
        self._pool.submit(self._record_worker).result()

    def _record_worker(self) -> None:
        self._worker_ident = threading.get_ident()

    @property
    def calls(self) -> int:
        """Number of calls funneled through the executor."""
        return self._calls

    def on_worker_thread(self) -> bool:
        return threading.get_ident() == self._worker_ident

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``fn`` on the designated thread and block for its result."""
        with self._lock:
            if self._closed:
                raise RuntimeError("BackendExecutor is shut down")
            self._calls += 1
        if self.on_worker_thread():
            return fn(*args, **kwargs)
        return self._pool.submit(fn, *args, **kwargs).result()

    def bind(self, backend: InferenceBackend) -> ExecutorBoundBackend:
        return ExecutorBoundBackend(backend, self)

    def shutdown(self) -> None:
        with self._lock:
            self._closed = True
        self._pool.shutdown(wait=True)

    def __enter__(self) -> BackendExecutor:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()


class ExecutorBoundBackend:
    """Backend proxy that routes every call through a ``BackendExecutor``."""

    def __init__(self, backend: InferenceBackend, executor: BackendExecutor) -> None:
        self._backend = backend
        self._executor = executor

    @property
    def inner(self) -> InferenceBackend:
        return self._backend

    @property
    def vocab_size(self) -> int:
        return self._backend.vocab_size

    @property
    def batch_capacity(self) -> int:
        return self._backend.batch_capacity

    def count_tokens(self, text: str, add_bos: bool) -> int:
        return self._executor.call(self._backend.count_tokens, text, add_bos)

    def tokenize(self, text: str, add_bos: bool) -> list[int]:
        return self._executor.call(self._backend.tokenize, text, add_bos)

    def submit_batch(
        self, token_ids: Sequence[int], positions: Sequence[int], logits_for_last: bool
    ) -> int:
        return self._executor.call(
            self._backend.submit_batch, list(token_ids), list(positions), logits_for_last
        )

    def get_logits(self, index: int) -> NDArray[np.float64] | None:
        return self._executor.call(self._backend.get_logits, index)

    def is_end_of_generation(self, token_id: int) -> bool:
        return self._executor.call(self._backend.is_end_of_generation, token_id)

    def token_to_piece(self, token_id: int) -> bytes:
        return self._executor.call(self._backend.token_to_piece, token_id)

    def clear_cache(self, force: bool = True) -> None:
        self._executor.call(self._backend.clear_cache, force)

    def free(self) -> None:
        self._executor.call(self._backend.free)

    def describe(self) -> str:
        return self._executor.call(self._backend.describe)


# ---------------------------------------------------------------------------
# llama.cpp adapter
# ---------------------------------------------------------------------------

_DECODE_CODE_RE = re.compile(r"returned (-?\d+)")


class LlamaCppBackend:
    """``InferenceBackend`` over a ``llama_cpp.Llama`` instance.

    Attributes:
        llm: The wrapped llama-cpp-python model/context
        batch_capacity: Maximum tokens accepted by one ``submit_batch``
    """

    def __init__(self, llm: Any, batch_capacity: int, model_path: str = "") -> None:
        self.llm = llm
        self._batch_capacity = batch_capacity
        self._model_path = model_path
        self._last_batch_len = 0
        self._last_ok = False

    @property
    def vocab_size(self) -> int:
        return int(self.llm.n_vocab())

    @property
    def batch_capacity(self) -> int:
        return self._batch_capacity

    def count_tokens(self, text: str, add_bos: bool) -> int:
        return len(self.tokenize(text, add_bos))

    def tokenize(self, text: str, add_bos: bool) -> list[int]:
        try:
            return list(self.llm.tokenize(text.encode("utf-8"), add_bos=add_bos, special=False))
        except (RuntimeError, ValueError) as exc:
            raise TokenizeError(str(exc)) from exc

    def submit_batch(
        self, token_ids: Sequence[int], positions: Sequence[int], logits_for_last: bool
    ) -> int:
        if not token_ids:
            return -1
        if len(token_ids) > self._batch_capacity:
            logger.warning(
                "Batch of %d tokens exceeds capacity %d", len(token_ids), self._batch_capacity
            )
            return -2
        start = int(positions[0]) if positions else self.llm.n_tokens
        if start != self.llm.n_tokens:
            # llama-cpp-python places a batch at n_tokens; realign to the caller's positions
            logger.debug("Realigning n_tokens %d -> %d", self.llm.n_tokens, start)
            self.llm.n_tokens = start
        try:
            self.llm.eval(list(token_ids))
        except RuntimeError as exc:
            self._last_ok = False
            match = _DECODE_CODE_RE.search(str(exc))
            return int(match.group(1)) if match else -1
        self._last_batch_len = len(token_ids)
        self._last_ok = logits_for_last
        return 0

    def get_logits(self, index: int) -> NDArray[np.float64] | None:
        """Logits of batch position ``index``, read from the llama context.

        With ``logits_all=False`` only the last position of a batch has
        logits, and ``Llama.scores`` is never filled, so the row is copied
        straight out of the context buffer.
        """
        if not self._last_ok or index != self._last_batch_len - 1:
            return None
        ptr = llama_cpp.llama_get_logits_ith(self.llm.ctx, index)
        if not ptr:
            return None
        return as_logit_vector(np.ctypeslib.as_array(ptr, shape=(self.vocab_size,)))

    def is_end_of_generation(self, token_id: int) -> bool:
        return token_id == self.llm.token_eos()

    def token_to_piece(self, token_id: int) -> bytes:
        return bytes(self.llm.detokenize([token_id]))

    def clear_cache(self, force: bool = True) -> None:
        ctx = getattr(self.llm, "_ctx", None)
        if ctx is not None and hasattr(ctx, "memory_clear"):
            ctx.memory_clear(force)
        elif ctx is not None and hasattr(ctx, "kv_cache_clear"):
            ctx.kv_cache_clear()
        self.llm.reset()
        self._last_ok = False
        self._last_batch_len = 0

    def free(self) -> None:
        close = getattr(self.llm, "close", None)
        if callable(close):
            close()

    def describe(self) -> str:
        metadata = getattr(self.llm, "metadata", None) or {}
        return str(metadata.get("general.name", os.path.basename(self._model_path)))


def load_llama_backend(
    path: str,
    profile: ModelProfileConfig,
    threads: int | None = None,
) -> LlamaCppBackend:
    """Load a GGUF model with llama-cpp-python using a model profile.

    Args:
        path: Path to the .gguf weights
        profile: Resource settings (GPU layers, context, batch size)
        threads: Worker threads. Defaults to ``default_thread_count()``.

    Returns:
        Ready-to-use LlamaCppBackend

    Raises:
        ModelLoadError: If the file is missing or llama.cpp rejects it.
    """
    require_llama_cpp("loading GGUF models")
    if not os.path.isfile(path):
        raise ModelLoadError(path, "file not found")

    n_threads = threads if threads is not None else default_thread_count()
    logger.info(
        "Loading %s (profile=%s, gpu_layers=%d, n_ctx=%d, n_batch=%d, threads=%d)",
        path,
        profile.name,
        profile.gpu_layers,
        profile.context_size,
        profile.batch_size,
        n_threads,
    )
    try:
        llm = llama_cpp.Llama(
            model_path=path,
            n_gpu_layers=profile.gpu_layers,
            n_ctx=profile.context_size,
            n_batch=profile.batch_size,
            n_threads=n_threads,
            n_threads_batch=n_threads,
            logits_all=False,
            verbose=False,
        )
    except (ValueError, RuntimeError, OSError) as exc:
        raise ModelLoadError(path, str(exc)) from exc

    return LlamaCppBackend(llm, batch_capacity=profile.batch_size, model_path=path)
