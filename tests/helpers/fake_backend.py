"""Scripted in-memory backend for exercising the generation and evaluation loops.

Each prompt submission advances to the next token plan; ``get_logits``
puts a dominant logit on the next planned token so sampling is effectively
deterministic. Failures can be injected per prompt.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence

import numpy as np

BOS = 1
EOS = 2
VOCAB_SIZE = 32
DOMINANT_LOGIT = 50.0

PIECES: dict[int, bytes] = {
    3: b"0",
    4: b"1",
    5: b"2",
    6: b"3",
    7: b"4",
    8: b"5",
    9: b" ",
    10: b"yes",
    11: b"no",
    # U+2713 split across two tokens
    12: b"\xe2\x9c",
    13: b"\x93",
}

TOKEN_FOR_LABEL = {"0": 3, "1": 4, "2": 5, "3": 6, "4": 7, "5": 8}


class FakeBackend:
    """
    Attributes:
        scripts: Token plan per prompt, in submission order
        fail_prompts: Prompt indices whose prompt batch is rejected
        step_failures: Prompt index -> number of one-token submissions to reject
        missing_logits: Prompt indices for which ``get_logits`` returns None
    """

    def __init__(
        self,
        scripts: Sequence[Sequence[int]] = (),
        batch_capacity: int = 512,
        fail_prompts: Sequence[int] = (),
        step_failures: dict[int, int] | None = None,
        missing_logits: Sequence[int] = (),
    ) -> None:
        self.scripts = [list(s) for s in scripts]
        self._batch_capacity = batch_capacity
        self.fail_prompts = set(fail_prompts)
        self.step_failures = dict(step_failures or {})
        self.missing_logits = set(missing_logits)

        self.prompt_index = -1
        self.cursor = 0
        self.submissions: list[tuple[list[int], list[int]]] = []
        self.clear_calls = 0
        self.freed = False
        self.thread_ids: set[int] = set()

    def _touch(self) -> None:
        self.thread_ids.add(threading.get_ident())

    @property
    def vocab_size(self) -> int:
        return VOCAB_SIZE

    @property
    def batch_capacity(self) -> int:
        return self._batch_capacity

    def tokenize(self, text: str, add_bos: bool) -> list[int]:
        self._touch()
        tokens = [BOS] if add_bos else []
        tokens.extend(14 + len(word) % 16 for word in text.split())
        return tokens

    def count_tokens(self, text: str, add_bos: bool) -> int:
        return len(self.tokenize(text, add_bos))

    def submit_batch(self, token_ids, positions, logits_for_last) -> int:
        self._touch()
        token_ids, positions = list(token_ids), list(positions)
        self.submissions.append((token_ids, positions))
        if positions and positions[0] == 0:
            self.prompt_index += 1
            self.cursor = 0
            return -1 if self.prompt_index in self.fail_prompts else 0

        remaining = self.step_failures.get(self.prompt_index, 0)
        if remaining > 0:
            self.step_failures[self.prompt_index] = remaining - 1
            return -3
        self.cursor += 1
        return 0

    def next_planned(self) -> int:
        plan = self.scripts[self.prompt_index] if 0 <= self.prompt_index < len(self.scripts) else []
        return plan[self.cursor] if self.cursor < len(plan) else EOS

    def get_logits(self, index: int):
        self._touch()
        if self.prompt_index in self.missing_logits:
            return None
        logits = np.zeros(VOCAB_SIZE, dtype=np.float64)
        logits[self.next_planned()] = DOMINANT_LOGIT
        return logits

    def is_end_of_generation(self, token_id: int) -> bool:
        return token_id == EOS

    def token_to_piece(self, token_id: int) -> bytes:
        self._touch()
        return PIECES.get(token_id, b"")

    def clear_cache(self, force: bool = True) -> None:
        self._touch()
        self.clear_calls += 1

    def free(self) -> None:
        self.freed = True

    def describe(self) -> str:
        return "fake-backend"


def script_for(labels: Sequence[str]) -> list[list[int]]:
    """One single-token plan per label."""
    return [[TOKEN_FOR_LABEL[label]] for label in labels]
