"""Text <-> token conversion against the backend vocabulary.

``TokenCodec.encode`` fails closed: when the backend cannot tokenize a text
inside the safety envelope it returns a deterministic synthetic sequence
instead of raising.
Before tokenizing, overly long texts are truncated (prefix kept) in a
bounded number of passes.

Decoding is incremental: pieces are raw bytes that may split a multi-byte
character, so they are buffered until they form valid UTF-8.
"""

from __future__ import annotations

import logging

from .backend import InferenceBackend
from .errors import MentaBenchError

logger = logging.getLogger(__name__)

MAX_TRUNCATION_ATTEMPTS = 5
MAX_TEXT_CHARS = 6000
LONG_TEXT_TOKEN_TARGET = 800
CHARS_PER_TOKEN = 5.0
MAX_TEXT_BYTES = 100_000
MAX_TOKEN_COUNT = 10_000

# Fraction of batch capacity that triggers truncation, and the target after it
BATCH_LIMIT_RATIO = 0.75
BATCH_TARGET_RATIO = 0.66

FALLBACK_BOS_TOKEN = 1
FALLBACK_PAD_TOKEN = 2
FALLBACK_MAX_WORDS = 50
FALLBACK_MAX_TOKENS = 80
FALLBACK_ID_BASE = 1000
FALLBACK_ID_SPREAD = 5000

_MASK64 = (1 << 64) - 1


def truncate_text(text: str, max_tokens: int, chars_per_token: float = CHARS_PER_TOKEN) -> str:
    """Keep the prefix of ``text`` that fits roughly ``max_tokens`` tokens.

    Texts already within the limit are returned unchanged.
    """
    max_chars = int(max_tokens * chars_per_token)
    if len(text) <= max_chars:
        return text
    logger.info("Truncated text from %d to %d chars (%d tokens max)", len(text), max_chars, max_tokens)
    return text[:max_chars]


def _word_hash(word: str) -> int:
    """Signed 64-bit wrapping ``h * 31 + byte`` hash over the UTF-8 bytes."""
    h = 0
    for byte in word.encode("utf-8"):
        h = (h * 31 + byte) & _MASK64
    if h >= 1 << 63:
        h -= 1 << 64
    return h


def synthetic_tokens(text: str) -> list[int]:
    """Deterministic stand-in token sequence derived from the words of ``text``.

    Args:
        text: Original (untruncated) input text

    Returns:
        Between 2 and ``FALLBACK_MAX_TOKENS`` token ids, starting with BOS.
    """
    tokens = [FALLBACK_BOS_TOKEN]
    counter = FALLBACK_ID_BASE
    for word in text.split()[:FALLBACK_MAX_WORDS]:
        tokens.append(abs(_word_hash(word)) % FALLBACK_ID_SPREAD + counter)
        counter += 1
    if len(tokens) < 2:
        tokens.append(FALLBACK_PAD_TOKEN)
    return tokens[:FALLBACK_MAX_TOKENS]


def drain_utf8(pending: bytearray) -> str:
    """Decode the valid UTF-8 prefix of ``pending`` in place.

    An incomplete multi-byte sequence at the end stays in ``pending``;
    invalid bytes elsewhere are replaced with U+FFFD.
    """
    out: list[str] = []
    while pending:
        try:
            out.append(pending.decode("utf-8"))
            pending.clear()
        except UnicodeDecodeError as exc:
            if exc.reason == "unexpected end of data":
                out.append(pending[: exc.start].decode("utf-8"))
                del pending[: exc.start]
                break
            out.append(pending[: exc.start].decode("utf-8") + "\ufffd")
            del pending[: exc.end]
    return "".join(out)


class TokenCodec:
    """Converts prompts to token ids and sampled ids back to text.

    Attributes:
        backend: Inference backend providing the vocabulary
        fallback_count: Number of encodes that used the synthetic sequence
        truncation_count: Number of truncation passes performed
    """

    def __init__(self, backend: InferenceBackend) -> None:
        self.backend = backend
        self.fallback_count = 0
        self.truncation_count = 0

    def encode(self, text: str, add_bos: bool = True) -> list[int]:
        """Tokenize ``text``; never raises.

        Args:
            text: Prompt text
            add_bos: Prepend the backend's leading marker token

        Returns:
            Token ids from the backend, or a synthetic fallback sequence.
        """
        working = text
        batch = self.backend.batch_capacity
        batch_limit = int(batch * BATCH_LIMIT_RATIO)
        batch_target = int(batch * BATCH_TARGET_RATIO)

        for _ in range(MAX_TRUNCATION_ATTEMPTS):
            if len(working) > MAX_TEXT_CHARS:
                logger.warning("Extremely long text (%d chars), truncating", len(working))
                working = truncate_text(working, LONG_TEXT_TOKEN_TARGET)
                self.truncation_count += 1
                continue

            n_bytes = len(working.encode("utf-8"))
            if not 0 < n_bytes < MAX_TEXT_BYTES:
                logger.error("Invalid text length: %d bytes", n_bytes)
                return self._fallback(text)

            try:
                need = abs(int(self.backend.count_tokens(working, add_bos)))
            except MentaBenchError as exc:
                logger.warning("Token count failed: %s", exc)
                need = abs(getattr(exc, "required_length", None) or 0)
            logger.debug("Backend reports %d tokens", need)

            if need >= batch_limit:
                logger.warning(
                    "Text approaching batch limit (%d tokens >= %d), truncating for batch size %d",
                    need,
                    batch_limit,
                    batch,
                )
                shorter = truncate_text(working, batch_target)
                self.truncation_count += 1
                if shorter == working:
                    # character estimate already fits; nothing left to cut
                    break
                working = shorter
                continue

            if not 0 < need < MAX_TOKEN_COUNT:
                logger.error("Invalid token count: %d", need)
                return self._fallback(text)

            try:
                tokens = self.backend.tokenize(working, add_bos)
            except MentaBenchError as exc:
                logger.warning("Backend tokenization failed: %s", exc)
                break
            if not tokens:
                logger.debug("Backend tokenization returned no tokens")
                break
            return list(tokens[:need])

        logger.warning("Tokenization attempts exhausted, using safe fallback")
        return self._fallback(text)

    def _fallback(self, text: str) -> list[int]:
        self.fallback_count += 1
        tokens = synthetic_tokens(text)
        logger.debug("Fallback tokenization generated %d tokens: %s...", len(tokens), tokens[:5])
        return tokens

    def decode_piece(self, pending: bytearray, token_id: int) -> str:
        """Append the bytes of ``token_id`` to ``pending`` and emit ready text."""
        pending.extend(self.backend.token_to_piece(token_id))
        return drain_utf8(pending)

    @staticmethod
    def flush(pending: bytearray) -> str:
        """Emit everything still pending, replacing incomplete sequences."""
        text = bytes(pending).decode("utf-8", errors="replace")
        pending.clear()
        return text
