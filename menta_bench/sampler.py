"""
Token sampling for autoregressive generation.

Turns one logit vector into one token id with a fixed pipeline:
    1. Temperature scaling
    2. Presence penalty on recently seen tokens
    3. Stable descending sort
    4. Top-k filtering
    5. Numerically stable softmax over the top-k set
    6. Min-p filtering
    7. Top-p (nucleus) prefix, falling back to the head of the top-k set
    8. Weighted random draw over the surviving candidates

Selection is a weighted draw, not argmax. Pass a seeded generator to make
it reproducible.

Usage:
    from menta_bench.sampler import Sampler

    sampler = Sampler(seed=0)
    token_id = sampler.select(logits, recent_tokens={1, 2, 3})
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike, NDArray

from ._compat import as_logit_vector
from .config import SamplingConfig


@dataclass(frozen=True)
class Candidate:
    """One scored vocabulary entry."""

    token_id: int
    logit: float
    probability: float


@dataclass
class CandidateSet:
    """Candidates surviving the filter pipeline, in descending probability.

    Attributes:
        token_ids: Vocabulary ids
        logits: Scaled and penalized logits
        probs: Probabilities renormalized over the retained candidates
        top_k_mass: Share of the top-k softmax mass the retained candidates held
    """

    token_ids: NDArray[np.int64]
    logits: NDArray[np.float64]
    probs: NDArray[np.float64]
    top_k_mass: float = 1.0

    def __len__(self) -> int:
        return int(self.token_ids.shape[0])

    @property
    def mass(self) -> float:
        """Accumulated probability of the set."""
        return float(self.probs.sum())

    def as_candidates(self) -> list[Candidate]:
        return [
            Candidate(int(t), float(lg), float(p))
            for t, lg, p in zip(self.token_ids, self.logits, self.probs)
        ]


def softmax_stable(logits: NDArray[np.float64]) -> NDArray[np.float64]:
    """Softmax with the max logit subtracted before exponentiation."""
    if logits.size == 0:
        return logits.astype(np.float64)
    shifted = np.exp(logits - np.max(logits))
    return shifted / shifted.sum()


class Sampler:
    """
    Temperature / penalty / top-k / min-p / top-p sampler.

    Attributes:
        config: Sampling parameters
        rng: Random generator used for the weighted draw
    """

    def __init__(
        self,
        config: SamplingConfig | None = None,
        rng: np.random.Generator | None = None,
        seed: int | None = None,
    ):
        """Initialize the sampler.

        Args:
            config: Sampling parameters. Defaults to ``SamplingConfig()``.
            rng: Optional generator. Takes precedence over ``seed``.
            seed: Seed for a fresh generator. If None, uses OS entropy.
        """
        self.config = config if config is not None else SamplingConfig()
        self.rng = rng if rng is not None else np.random.default_rng(seed)

    def filter_candidates(
        self,
        logits: ArrayLike | None,
        recent_tokens: Iterable[int] = (),
    ) -> CandidateSet | None:
        """Run pipeline steps 1-7 and return the final candidate set.

        Args:
            logits: Logit vector [vocab_size], or None when the backend gave none
            recent_tokens: Token ids that receive the presence penalty

        Returns:
            Non-empty CandidateSet, or None if there are no logits.
        """
        vec = as_logit_vector(logits)
        if vec is None:
            return None
        cfg = self.config
        vocab = vec.shape[0]

        scaled = vec / cfg.temperature

        if cfg.presence_penalty > 0:
            seen = np.fromiter(
                (t for t in set(recent_tokens) if 0 <= t < vocab), dtype=np.int64
            )
            if seen.size:
                scaled[seen] -= cfg.presence_penalty

        order = np.argsort(-scaled, kind="stable")
        top_ids = order[: min(cfg.top_k, vocab)]
        top_logits = scaled[top_ids]
        top_probs = softmax_stable(top_logits)

        keep = top_probs >= cfg.min_p
        ids, lgs, probs = top_ids[keep], top_logits[keep], top_probs[keep]

        if ids.size:
            cumulative = np.cumsum(probs)
            n_keep = min(int(np.searchsorted(cumulative, cfg.top_p, side="left")) + 1, ids.size)
            ids, lgs, probs = ids[:n_keep], lgs[:n_keep], probs[:n_keep]
        else:
            width = min(cfg.fallback_width, top_ids.size)
            ids, lgs, probs = top_ids[:width], top_logits[:width], top_probs[:width]

        mass = float(probs.sum())
        return CandidateSet(
            token_ids=ids.astype(np.int64), logits=lgs, probs=probs / mass, top_k_mass=mass
        )

    def select(
        self,
        logits: ArrayLike | None,
        recent_tokens: Iterable[int] = (),
    ) -> int | None:
        """Sample one token id.

        Args:
            logits: Logit vector [vocab_size], or None
            recent_tokens: Token ids that receive the presence penalty

        Returns:
            Selected token id, or None to signal that generation must stop.
        """
        candidates = self.filter_candidates(logits, recent_tokens)
        if candidates is None or len(candidates) == 0:
            return None

        draw = self.rng.random() * candidates.mass
        cumulative = np.cumsum(candidates.probs)
        index = min(int(np.searchsorted(cumulative, draw, side="left")), len(candidates) - 1)
        return int(candidates.token_ids[index])
