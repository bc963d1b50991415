"""Error taxonomy for payload building, encoding and decoding."""

from __future__ import annotations

from enum import Enum


class QRSuiteError(Exception):
    """Base class for all errors raised by qrsuite."""


class ValidationError(QRSuiteError, ValueError):
    """Raised when structured input (e.g. Wi-Fi credentials) is invalid."""


class PayloadTooLargeError(QRSuiteError, ValueError):
    """Raised when no supported symbol version can hold a payload."""

    def __init__(self, length: int, mode: str, ec_level: str, max_version: int) -> None:
        super().__init__(
            f"Payload of length {length} does not fit in version {max_version} "
            f"at EC level {ec_level} ({mode} mode)."
        )
        self.length = length
        self.mode = mode
        self.ec_level = ec_level
        self.max_version = max_version


class UnsupportedCharacterError(QRSuiteError, ValueError):
    """Raised when a payload cannot be represented in the requested mode."""


class ReedSolomonError(QRSuiteError):
    """Raised when a Reed-Solomon block has more errors than it can correct."""


class DecodeError(Enum):
    """Reasons a frame did not yield a payload."""

    NOT_FOUND = "not_found"
    UNREADABLE_FORMAT_INFO = "unreadable_format_info"
    UNCORRECTABLE_BLOCK = "uncorrectable_block"
    CHECKSUM_MISMATCH = "checksum_mismatch"
