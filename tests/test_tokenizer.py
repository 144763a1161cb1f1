"""Tests for TokenCodec: truncation, fail-closed encoding and UTF-8 decoding."""

from unittest.mock import MagicMock

import pytest

from menta_bench.errors import TokenizeError
from menta_bench.tokenizer import (
    FALLBACK_BOS_TOKEN,
    FALLBACK_ID_BASE,
    FALLBACK_ID_SPREAD,
    FALLBACK_MAX_TOKENS,
    FALLBACK_PAD_TOKEN,
    TokenCodec,
    drain_utf8,
    synthetic_tokens,
    truncate_text,
)

from helpers import FakeBackend


def make_mock_backend(batch_capacity=512, count=5, tokens=(1, 2, 3, 4, 5)):
    backend = MagicMock()
    backend.batch_capacity = batch_capacity
    backend.count_tokens.return_value = count
    backend.tokenize.return_value = list(tokens)
    return backend


class TestTruncation:
    def test_short_text_unchanged(self):
        assert truncate_text("hello world", 100) == "hello world"

    def test_truncation_keeps_prefix(self):
        text = "a" * 1000
        assert truncate_text(text, 10) == "a" * 50

    def test_truncation_is_idempotent(self):
        text = "word " * 500
        once = truncate_text(text, 40)
        assert truncate_text(once, 40) == once


class TestSyntheticTokens:
    def test_deterministic(self):
        assert synthetic_tokens("I feel fine today") == synthetic_tokens("I feel fine today")

    def test_structure(self):
        tokens = synthetic_tokens("one two three")
        assert tokens[0] == FALLBACK_BOS_TOKEN
        assert len(tokens) == 4
        for offset, token in enumerate(tokens[1:]):
            base = FALLBACK_ID_BASE + offset
            assert base <= token < base + FALLBACK_ID_SPREAD

    def test_empty_text_padded(self):
        assert synthetic_tokens("") == [FALLBACK_BOS_TOKEN, FALLBACK_PAD_TOKEN]
        assert synthetic_tokens("   \n ") == [FALLBACK_BOS_TOKEN, FALLBACK_PAD_TOKEN]

    def test_word_limit(self):
        tokens = synthetic_tokens(" ".join(["w"] * 500))
        assert len(tokens) <= FALLBACK_MAX_TOKENS
        assert len(tokens) == 51


class TestEncode:
    def test_backend_tokens_returned(self):
        backend = make_mock_backend()
        codec = TokenCodec(backend)
        assert codec.encode("some post") == [1, 2, 3, 4, 5]
        assert codec.fallback_count == 0
        backend.tokenize.assert_called_once_with("some post", True)

    def test_result_capped_to_counted_length(self):
        backend = make_mock_backend(count=3, tokens=(1, 2, 3, 4, 5))
        assert TokenCodec(backend).encode("x y z") == [1, 2, 3]

    def test_tokenize_error_falls_back(self):
        backend = make_mock_backend()
        backend.tokenize.side_effect = TokenizeError("boom", required_length=-12)
        codec = TokenCodec(backend)
        assert codec.encode("post text") == synthetic_tokens("post text")
        assert codec.fallback_count == 1

    def test_count_error_uses_required_length(self):
        backend = make_mock_backend()
        backend.count_tokens.side_effect = TokenizeError("too long", required_length=-7)
        backend.tokenize.return_value = list(range(1, 10))
        assert TokenCodec(backend).encode("post") == list(range(1, 8))

    def test_empty_tokenization_falls_back(self):
        backend = make_mock_backend()
        backend.tokenize.return_value = []
        codec = TokenCodec(backend)
        assert codec.encode("post") == synthetic_tokens("post")

    def test_empty_text_falls_back(self):
        codec = TokenCodec(make_mock_backend())
        assert codec.encode("") == [FALLBACK_BOS_TOKEN, FALLBACK_PAD_TOKEN]
        assert codec.fallback_count == 1

    def test_invalid_token_count_falls_back(self):
        backend = make_mock_backend(batch_capacity=100_000, count=20_000)
        codec = TokenCodec(backend)
        assert codec.encode("post") == synthetic_tokens("post")
        backend.tokenize.assert_not_called()

    def test_very_long_text_truncated_before_counting(self):
        backend = make_mock_backend()
        codec = TokenCodec(backend)
        codec.encode("x" * 10_000)
        counted = backend.count_tokens.call_args[0][0]
        assert len(counted) == 4000
        assert codec.truncation_count == 1

    def test_near_batch_limit_truncates_then_retries(self):
        backend = make_mock_backend(batch_capacity=100)
        # 75 >= 0.75 * 100 triggers truncation to 66 tokens (330 chars)
        backend.count_tokens.side_effect = [80, 40]
        codec = TokenCodec(backend)
        codec.encode("y" * 1000)
        second_text = backend.count_tokens.call_args_list[1][0][0]
        assert len(second_text) == 330
        assert codec.truncation_count == 1

    def test_attempts_exhausted_falls_back(self):
        backend = make_mock_backend(batch_capacity=100)
        backend.count_tokens.return_value = 99
        codec = TokenCodec(backend)
        text = "z" * 5000
        assert codec.encode(text) == synthetic_tokens(text)
        assert backend.count_tokens.call_count <= 5

    def test_with_fake_backend(self):
        backend = FakeBackend()
        tokens = TokenCodec(backend).encode("I am ok")
        assert tokens == backend.tokenize("I am ok", True)


class TestDecode:
    def test_ascii_piece_emitted(self):
        backend = make_mock_backend()
        backend.token_to_piece.return_value = b"1"
        pending = bytearray()
        assert TokenCodec(backend).decode_piece(pending, 4) == "1"
        assert pending == bytearray()

    def test_split_multibyte_sequence_buffered(self):
        backend = FakeBackend()
        codec = TokenCodec(backend)
        pending = bytearray()
        assert codec.decode_piece(pending, 12) == ""
        assert pending == bytearray(b"\xe2\x9c")
        assert codec.decode_piece(pending, 13) == "✓"
        assert pending == bytearray()

    def test_invalid_bytes_replaced(self):
        pending = bytearray(b"a\xffb")
        assert drain_utf8(pending) == "a�b"
        assert pending == bytearray()

    def test_flush_emits_incomplete_tail(self):
        pending = bytearray(b"ok\xe2\x9c")
        assert TokenCodec.flush(pending) == "ok�"
        assert pending == bytearray()

    @pytest.mark.parametrize("text", ["plain", "café", "✓ done", "\U0001f600"])
    def test_bytewise_feed_reassembles(self, text):
        pending = bytearray()
        out = []
        for byte in text.encode("utf-8"):
            pending.append(byte)
            out.append(drain_utf8(pending))
        assert "".join(out) == text
