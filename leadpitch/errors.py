"""Shared error types for the import and outreach workflows."""

from __future__ import annotations

__all__ = [
    "LeadPitchError",
    "ParseError",
    "EmptyFileError",
    "UnsupportedFileError",
    "ValidationError",
    "QuotaExceededError",
    "ProviderError",
    "PersistenceError",
    "PitchStateError",
]


class LeadPitchError(Exception):
    """Base class for every error raised by leadpitch."""


class ParseError(LeadPitchError):
    """Uploaded file could not be decoded into a table. The user must re-upload."""


class EmptyFileError(ParseError):
    """File decoded fine but holds no data rows below the header."""


class UnsupportedFileError(ParseError):
    pass


class ValidationError(LeadPitchError):
    """Invalid column selection or template placeholders."""


class QuotaExceededError(LeadPitchError):
    """Dispatch would exceed the user's remaining daily allowance."""

    def __init__(self, remaining: int, requested: int) -> None:
        self.remaining = remaining
        self.requested = requested
        super().__init__(
            f"You can only send {remaining} more emails today. Selected: {requested}"
        )


class ProviderError(LeadPitchError):
    """Text generation or email delivery call failed."""


class PersistenceError(LeadPitchError):
    """Storage write failed. Partial batches are not rolled back."""


class PitchStateError(LeadPitchError):
    """Illegal GeneratedPitch status transition."""
