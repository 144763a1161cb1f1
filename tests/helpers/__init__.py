"""Test helpers for menta-bench tests."""

from __future__ import annotations

from .fake_backend import BOS, EOS, PIECES, TOKEN_FOR_LABEL, VOCAB_SIZE, FakeBackend, script_for

__all__ = [
    "BOS",
    "EOS",
    "PIECES",
    "TOKEN_FOR_LABEL",
    "VOCAB_SIZE",
    "FakeBackend",
    "script_for",
]
