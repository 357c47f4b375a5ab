from __future__ import annotations


class SessionValidationError(ValueError):
    """Raised when a stored session record is malformed or cannot be written."""


class PersistenceError(RuntimeError):
    """Raised when the session store rejects an explicit read, write or delete."""


class SessionFlowError(RuntimeError):
    """Raised when an operation is not allowed in the session's current phase."""

    def __init__(self, message: str, *, phase: str):
        super().__init__(message)
        self.phase = phase
