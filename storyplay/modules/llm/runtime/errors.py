from __future__ import annotations


class LLMUnavailableError(RuntimeError):
    """Raised when the story model could not produce any text for a request.

    Surfaced once to the caller; the engine never retries on its own.
    """

    def __init__(self, message: str, *, error_kind: str):
        super().__init__(message)
        self.error_kind = str(error_kind)


TransientNetworkError = LLMUnavailableError


class ParseRecoveryExhausted(ValueError):
    """Raised inside the recovery pipeline when no tier produced story text."""

    def __init__(self, message: str, *, failures: tuple[str, ...] = ()):
        super().__init__(message)
        self.failures = failures


NARRATIVE_ERROR_TIMEOUT = "NARRATIVE_TIMEOUT"
NARRATIVE_ERROR_NETWORK = "NARRATIVE_NETWORK"
NARRATIVE_ERROR_HTTP_STATUS = "NARRATIVE_HTTP_STATUS"
NARRATIVE_ERROR_EMPTY = "NARRATIVE_EMPTY"
NARRATIVE_ERROR_PROVIDER = "NARRATIVE_PROVIDER"
