"""Typed exceptions for configuration, input and blocking failures."""

from __future__ import annotations


class ResolutionError(Exception):
    """Base class for entity resolution errors."""


class ConfigurationError(ResolutionError, ValueError):
    """Raised when options are invalid. Always surfaced before processing starts."""

    def __init__(self, message: str, config_key: str | None = None) -> None:
        super().__init__(message)
        self.config_key = config_key


class InputError(ResolutionError, ValueError):
    """Raised for a malformed record or field value.

    Engines catch this per record, skip the record and keep going.
    """

    def __init__(self, message: str, record_id: str | None = None) -> None:
        super().__init__(message)
        self.record_id = record_id


class DegenerateBlockingError(ResolutionError):
    """Raised when blocking cannot restrict the comparison space at all."""


class OperationCancelled(ResolutionError):
    """Raised when a caller sets the cancellation event mid-run."""
