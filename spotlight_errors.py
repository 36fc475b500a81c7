#!/usr/bin/env python3
"""
Spotlight Downloader - Error Taxonomy

Batch-level failures (transport, data format) are RECOVERABLE and retried by
the orchestrator. Configuration failures are FATAL and never retried.
Item-level problems are never raised: they are reported as ItemSkipWarning.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorCategory(Enum):
    """Classification of errors by recoverability."""
    FATAL = "fatal"              # Cannot continue, retrying will not help
    RECOVERABLE = "recoverable"  # Retried within the attempt budget


class SpotlightError(Exception):
    """Base class for all Spotlight API client errors."""
    category: ErrorCategory = ErrorCategory.RECOVERABLE


class TransportError(SpotlightError):
    """Network or HTTP failure (connection error, timeout, non-2xx status)."""

    def __init__(self, message: str, status: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.url = url


class DataFormatError(SpotlightError):
    """Outer or nested JSON is malformed or missing a required structural field."""


class ConfigurationError(SpotlightError):
    """System locale or region cannot be determined."""
    category = ErrorCategory.FATAL


def is_retryable(error: BaseException) -> bool:
    """Everything except FATAL errors is retried; unknown exceptions count as recoverable."""
    return getattr(error, "category", ErrorCategory.RECOVERABLE) is not ErrorCategory.FATAL


@dataclass(frozen=True)
class ItemSkipWarning:
    """A single item dropped from a batch, with the reason it was dropped."""
    index: int
    reason: str
    api_version: str
