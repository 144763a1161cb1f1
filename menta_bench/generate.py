"""
Token generation loop for one prompt at a time.

A ``GenerationSession`` owns the position counters and the backend's
KV-cache for a single sequence:

    INIT -> PRIMED (prompt submitted) -> STEPPING (decode + sample) -> DONE

with ERROR_RETRY entered while a follow-up decode is being retried, and
FAILED when the backend rejected the prompt batch. ``clear()`` must run
between prompts; starting a dirty session raises ``SessionStateError``
rather than silently decoding against a stale cache.

Usage:
    from menta_bench.generate import GenerationSession, SessionHandle

    handle = SessionHandle(GenerationSession(backend, max_new_tokens=8))
    with handle.checkout() as session:
        outcome = session.generate(prompt_text)
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum

from .backend import InferenceBackend
from .errors import DecodeError, SessionStateError
from .memory import current_memory_gb
from .metrics import SampleMetrics
from .sampler import Sampler
from .tokenizer import TokenCodec

logger = logging.getLogger(__name__)

MAX_DECODE_ATTEMPTS = 3
RETRY_DELAY_S = 0.1
DEFAULT_MAX_NEW_TOKENS = 64

# OOM heuristic: empty termination within this many steps, or this many
# consecutive empty steps, with nothing produced
OOM_EARLY_STEPS = 3
MAX_CONSECUTIVE_EMPTY = 3


class SessionPhase(Enum):
    INIT = "init"
    PRIMED = "primed"
    STEPPING = "stepping"
    ERROR_RETRY = "error_retry"
    DONE = "done"
    FAILED = "failed"


@dataclass
class GenerationState:
    """Per-sequence counters. Reset before every prompt, never shared."""

    current_position: int = 0
    sequence_start: int = 0
    decoded_token_count: int = 0
    pending_bytes: bytearray = field(default_factory=bytearray)

    def reset(self) -> None:
        self.current_position = 0
        self.sequence_start = 0
        self.decoded_token_count = 0
        self.pending_bytes.clear()


@dataclass(frozen=True)
class StepResult:
    """Outcome of one decode/sample step.

    ``aborted`` distinguishes a failed generation (no logits, retries
    exhausted) from a model that legitimately finished.
    """

    text: str
    done: bool
    aborted: bool = False
    token_id: int | None = None


@dataclass(frozen=True)
class GenerationOutcome:
    """Everything measured while generating a response for one prompt."""

    text: str
    input_tokens: int
    output_tokens: int
    prompt_latency: float
    generation_latency: float
    first_token_latency: float
    is_out_of_memory: bool = False
    oom_memory_gb: float = 0.0
    aborted: bool = False
    steps: int = 0

    def to_metrics(self) -> SampleMetrics:
        return SampleMetrics(
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            prompt_latency=self.prompt_latency,
            generation_latency=self.generation_latency,
            first_token_latency=self.first_token_latency,
            is_out_of_memory=self.is_out_of_memory,
            oom_memory_gb=self.oom_memory_gb,
        )


class GenerationSession:
    """
    Drives the decode/sample loop for one sequence against a backend.

    Attributes:
        backend: Inference backend (usually bound to a BackendExecutor)
        sampler: Token sampler
        codec: Text/token converter
        max_new_tokens: Default generation budget per prompt
        state: Position and byte-buffer state for the current sequence
        phase: Current state-machine phase
    """

    def __init__(
        self,
        backend: InferenceBackend,
        sampler: Sampler | None = None,
        codec: TokenCodec | None = None,
        max_new_tokens: int = DEFAULT_MAX_NEW_TOKENS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.perf_counter,
        memory_probe: Callable[[], float] = current_memory_gb,
    ):
        if max_new_tokens <= 0:
            raise ValueError(f"max_new_tokens must be > 0, got {max_new_tokens}")
        self.backend = backend
        self.sampler = sampler if sampler is not None else Sampler()
        self.codec = codec if codec is not None else TokenCodec(backend)
        self.max_new_tokens = max_new_tokens
        self.state = GenerationState()
        self._budget = max_new_tokens
        self.phase = SessionPhase.INIT
        self.prompt_tokens: list[int] = []
        self.last_step_attempts = 0
        self.total_retries = 0

        self._sleep = sleep
        self._clock = clock
        self._memory_probe = memory_probe
        self._dirty = False
        self._recent: set[int] = set()
        self._last_batch_len = 0

    @property
    def is_dirty(self) -> bool:
        """True once a prompt has been started and ``clear()`` has not run since."""
        return self._dirty

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def start(self, prompt_text: str, max_new_tokens: int | None = None) -> list[int]:
        """Tokenize ``prompt_text`` and submit it to the backend in one batch.

        Only the last prompt position requests logits. ``max_new_tokens``
        caps this prompt only; the session default is left untouched.

        Returns:
            The prompt token ids.

        Raises:
            SessionStateError: If ``clear()`` was not called since the last prompt.
            DecodeError: If the backend rejected the batch. The session is
                left FAILED until ``clear()``.
        """
        if self._dirty:
            raise SessionStateError("clear() must be called before start() on a used session")
        self._dirty = True
        self.state.reset()
        self._budget = max_new_tokens if max_new_tokens is not None else self.max_new_tokens

        tokens = self.codec.encode(prompt_text, add_bos=True)
        self.prompt_tokens = tokens
        self._recent = set(tokens)

        positions = list(range(len(tokens)))
        code = self._submit(tokens, positions)
        if code != 0:
            self.phase = SessionPhase.FAILED
            logger.error("Prompt batch of %d tokens rejected by backend (code %d)", len(tokens), code)
            raise DecodeError(code, f"prompt batch rejected with code {code}")

        self._last_batch_len = len(tokens)
        self.state.sequence_start = len(tokens)
        self.state.current_position = self.state.sequence_start
        self.phase = SessionPhase.PRIMED
        return tokens

    def step(self) -> StepResult:
        """Sample the next token and submit it for the following decode.

        Returns:
            StepResult. ``done`` is set on end-of-generation, on reaching
            ``max_new_tokens``, on missing logits and on exhausted retries;
            the last two also set ``aborted``.
        """
        if self.phase not in (SessionPhase.PRIMED, SessionPhase.STEPPING):
            raise SessionStateError(f"step() called in phase {self.phase.value}")

        logits = self.backend.get_logits(self._last_batch_len - 1)
        token_id = self.sampler.select(logits, self._recent)
        if token_id is None:
            logger.error("Logits unavailable at position %d, stopping", self.state.current_position)
            self.phase = SessionPhase.DONE
            return StepResult("", done=True, aborted=True)

        if (
            self.backend.is_end_of_generation(token_id)
            or self.state.decoded_token_count >= self._budget
        ):
            self.phase = SessionPhase.DONE
            return StepResult(self.codec.flush(self.state.pending_bytes), done=True, token_id=token_id)

        text = self.codec.decode_piece(self.state.pending_bytes, token_id)

        if not self._submit_with_retry(token_id):
            self.phase = SessionPhase.DONE
            return StepResult("", done=True, aborted=True, token_id=token_id)

        self.state.decoded_token_count += 1
        self.state.current_position += 1
        self._recent.add(token_id)
        self.phase = SessionPhase.STEPPING
        return StepResult(text, done=False, token_id=token_id)

    def clear(self) -> None:
        """Reset counters, force KV-cache eviction and drop pending bytes."""
        self.state.reset()
        self.prompt_tokens = []
        self._recent = set()
        self._last_batch_len = 0
        self.last_step_attempts = 0
        self.backend.clear_cache(force=True)
        self.phase = SessionPhase.INIT
        self._dirty = False
        logger.debug("KV cache and batch cleared (force clear enabled)")

    # ------------------------------------------------------------------
    # Backend submission
    # ------------------------------------------------------------------

    def _submit(self, tokens: list[int], positions: list[int]) -> int:
        try:
            return int(self.backend.submit_batch(tokens, positions, True))
        except DecodeError as exc:
            return exc.code if exc.code != 0 else -1

    def _submit_with_retry(self, token_id: int) -> bool:
        self.last_step_attempts = 0
        position = self.state.current_position
        for attempt in range(1, MAX_DECODE_ATTEMPTS + 1):
            self.last_step_attempts = attempt
            code = self._submit([token_id], [position])
            if code == 0:
                self._last_batch_len = 1
                return True

            self.phase = SessionPhase.ERROR_RETRY
            logger.warning(
                "Decode failed with code %d, attempt %d/%d", code, attempt, MAX_DECODE_ATTEMPTS
            )
            if attempt < MAX_DECODE_ATTEMPTS:
                self.total_retries += 1
                self.backend.clear_cache(force=True)
                logger.debug("Cleared accelerator cache after decode error")
                self._sleep(RETRY_DELAY_S)

        logger.error(
            "Decode failed after %d attempts - accelerator may be out of memory",
            MAX_DECODE_ATTEMPTS,
        )
        return False

    # ------------------------------------------------------------------
    # Full generation with metrics
    # ------------------------------------------------------------------

    def generate(
        self,
        prompt_text: str,
        max_new_tokens: int | None = None,
        stop_when: Callable[[str], bool] | None = None,
    ) -> GenerationOutcome:
        """Run start + step loop for one prompt and measure it.

        Applies the out-of-memory heuristic: the sample is flagged when
        generation ends empty within the first ``OOM_EARLY_STEPS`` steps,
        or after ``MAX_CONSECUTIVE_EMPTY`` empty steps, with no text
        produced. Process memory is recorded at detection.

        Args:
            prompt_text: Fully rendered prompt
            max_new_tokens: Budget for this prompt. Defaults to the session's.
            stop_when: Called with the accumulated response after every
                non-empty piece; returning True ends generation early.

        Returns:
            GenerationOutcome with raw (uncorrected) latencies.
        """
        budget = max_new_tokens if max_new_tokens is not None else self.max_new_tokens

        prompt_start = self._clock()
        primed = True
        try:
            self.start(prompt_text, max_new_tokens=budget)
        except DecodeError:
            primed = False
        prompt_end = self._clock()
        input_tokens = len(self.prompt_tokens)

        response = ""
        produced = 0
        consecutive_empty = 0
        first_token_latency = 0.0
        is_oom = False
        oom_memory_gb = 0.0
        aborted = False
        steps = 0

        generation_start = self._clock()
        for i in range(budget):
            result = self.step() if primed else StepResult("", done=True, aborted=True)
            steps += 1

            if not result.text and result.done and produced == 0 and i < OOM_EARLY_STEPS:
                is_oom = True
                aborted = result.aborted
                oom_memory_gb = self._memory_probe()
                logger.warning(
                    "OOM suspected - early termination with no tokens at step %d (%.2f GB)",
                    i,
                    oom_memory_gb,
                )
                break

            if result.text:
                produced += 1
                consecutive_empty = 0
                if produced == 1:
                    first_token_latency = self._clock() - prompt_end
                response += result.text
                logger.debug("Generated token %d: %r, done=%s", i, result.text, result.done)
                if stop_when is not None and stop_when(response):
                    break
                if result.done:
                    break
                continue

            if result.done:
                aborted = result.aborted
                break

            consecutive_empty += 1
            logger.debug("Empty token (%d/%d)", consecutive_empty, MAX_CONSECUTIVE_EMPTY)
            if consecutive_empty >= MAX_CONSECUTIVE_EMPTY:
                if produced == 0:
                    is_oom = True
                    oom_memory_gb = self._memory_probe()
                    logger.warning(
                        "OOM suspected - %d consecutive empty tokens with no output (%.2f GB)",
                        consecutive_empty,
                        oom_memory_gb,
                    )
                break

        # budget ran out mid character
        tail = self.codec.flush(self.state.pending_bytes)
        if tail:
            response += tail

        generation_latency = self._clock() - generation_start

        return GenerationOutcome(
            text=response.strip(),
            input_tokens=input_tokens,
            output_tokens=self.state.decoded_token_count,
            prompt_latency=prompt_end - prompt_start,
            generation_latency=generation_latency,
            first_token_latency=first_token_latency,
            is_out_of_memory=is_oom,
            oom_memory_gb=oom_memory_gb,
            aborted=aborted,
            steps=steps,
        )


class SessionHandle:
    """Exclusive-access wrapper around a GenerationSession.

    At most one caller holds the session at a time; every checkout clears
    it first so no KV-cache state crosses prompts.
    """

    def __init__(self, session: GenerationSession) -> None:
        self._session = session
        self._lock = threading.Lock()

    @property
    def checked_out(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def checkout(self, blocking: bool = False) -> Iterator[GenerationSession]:
        if not self._lock.acquire(blocking=blocking):
            raise SessionStateError("session is already checked out")
        try:
            self._session.clear()
            yield self._session
        finally:
            self._lock.release()
