"""Custom exceptions for the menta-bench evaluation engine."""


class MentaBenchError(Exception):
    """Base exception for benchmark errors."""
    error_type: str = "menta_bench_error"


class ModelLoadError(MentaBenchError):
    """Raised when the backend cannot load model weights or create a context."""
    error_type = "model_load_failure"

    def __init__(self, path: str, reason: str = "could not initialize context"):
        super().__init__(f"Failed to load model at {path}: {reason}")
        self.path = path
        self.reason = reason


class TokenizeError(MentaBenchError):
    """Raised by a backend when a text cannot be tokenized.

    ``required_length`` carries the token count the backend asked for, or
    ``None`` when it could not report one.
    """
    error_type = "tokenize_failure"

    def __init__(self, message: str = "tokenization failed", required_length: int | None = None):
        super().__init__(message)
        self.required_length = required_length


class DecodeError(MentaBenchError):
    """Raised when the backend rejects a batch submission."""
    error_type = "decode_failure"

    def __init__(self, code: int, message: str | None = None):
        super().__init__(message or f"backend decode failed with code {code}")
        self.code = code


class SessionStateError(MentaBenchError):
    """Raised when a generation session is driven out of order."""
    error_type = "session_state"


class BackendUnavailableError(MentaBenchError):
    """Raised when an optional inference library is not installed."""
    error_type = "backend_unavailable"


class ConfigError(MentaBenchError):
    """Raised for invalid configuration values."""
    error_type = "invalid_config"
