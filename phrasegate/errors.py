"""
Exceptions for the phrase form, each carrying a message fit to show in the form.
"""

from typing import Optional


class PhraseGateError(Exception):
    """Base exception for form and store errors."""
    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        self.user_message = user_message or message


class LocalValidationError(PhraseGateError):
    """Raised when the phrase or username fails the local check."""
    def __init__(self, message: str, error_count: int = 0):
        super().__init__(message)
        self.error_count = error_count


class RemoteWriteError(PhraseGateError):
    """Raised when the store refuses or fails a submission write."""


class RemoteReadError(PhraseGateError):
    """Raised when the store fails a leaderboard read."""


class InitializationError(PhraseGateError):
    """Raised when the store never became ready."""
    def __init__(self, attempts: int, details: Optional[str] = None):
        super().__init__(
            f"Store not ready after {attempts} attempt(s): {details}",
            "Leaderboard unavailable. Reload the page to try again."
        )
        self.attempts = attempts
