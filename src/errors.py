"""
Centralized, typed exceptions for installer-digest.

Every failure of a digest computation surfaces as one of these types, never
as an empty or partial digest string. Callers (CLI, packaging scripts) can
branch on the type:
- InvalidArgumentError: caller bug, raised before any file I/O.
- NotFoundError / AccessDeniedError / NotARegularFileError: the file cannot
  be opened for reading.
- DigestIOError: the read failed part-way through the stream.
"""

from __future__ import annotations


class DigestError(Exception):
    """Base class for all custom errors in installer-digest."""


class InvalidArgumentError(DigestError, ValueError):
    """Raised for an unsupported algorithm, encoding, chunk size or empty path."""


class NotFoundError(DigestError):
    """Raised when the file to digest does not exist."""


class AccessDeniedError(DigestError):
    """Raised when the file to digest exists but cannot be opened for reading."""


class NotARegularFileError(DigestError):
    """Raised when the path names a directory instead of a file."""


class DigestIOError(DigestError):
    """Raised when reading the file fails while streaming it."""


class ChecksumMismatchError(DigestError):
    """Raised when a file no longer matches its recorded digest."""


class ConfigLoadError(DigestError):
    """Raised when a configuration file is missing, unreadable, or invalid."""


class InternalError(DigestError):
    """Raised for unexpected internal failures to be reported gracefully."""
