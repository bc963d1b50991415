"""Symbol capability tables and version selection.

All tables are immutable module-level constants indexed by version (index 0
is unused) and are safe to share between threads.
"""

from __future__ import annotations

import logging
from enum import Enum

from qrsuite.codec.errors import PayloadTooLargeError
from qrsuite.constants import MAX_VERSION, MIN_VERSION

logger = logging.getLogger(__name__)


class ErrorCorrectionLevel(Enum):
    """Error correction level and its 2-bit format information code."""

    L = 1
    M = 0
    Q = 3
    H = 2

    @property
    def format_bits(self) -> int:
        return self.value

    @property
    def ordinal(self) -> int:
        """Position in ascending robustness order (L=0 .. H=3)."""
        return _EC_ORDER.index(self)

    @classmethod
    def from_label(cls, value: ErrorCorrectionLevel | str) -> ErrorCorrectionLevel:
        """Accept an enum member or a label such as ``"h"``."""
        if isinstance(value, cls):
            return value
        try:
            return cls[str(value).strip().upper()]
        except KeyError as exc:
            raise ValueError(f"Unknown error correction level: {value!r}") from exc

    @classmethod
    def from_format_bits(cls, bits: int) -> ErrorCorrectionLevel:
        return cls(bits & 0b11)


_EC_ORDER = (
    ErrorCorrectionLevel.L,
    ErrorCorrectionLevel.M,
    ErrorCorrectionLevel.Q,
    ErrorCorrectionLevel.H,
)


class EncodingMode(Enum):
    """Segment mode indicator and character count widths per version range."""

    NUMERIC = (0b0001, (10, 12, 14))
    ALPHANUMERIC = (0b0010, (9, 11, 13))
    BYTE = (0b0100, (8, 16, 16))

    @property
    def indicator(self) -> int:
        return self.value[0]

    def count_bits(self, version: int) -> int:
        """Width of the character count indicator for ``version``."""
        return self.value[1][(version + 7) // 17]


# Error correction codewords per block, by level ordinal then version.
ECC_CODEWORDS_PER_BLOCK = (
    (-1, 7, 10, 15, 20, 26, 18, 20, 24, 30, 18, 20, 24, 26, 30, 22, 24, 28, 30, 28,
     28, 28, 28, 30, 30, 26, 28, 30, 30, 30, 30, 30, 30, 30, 30, 30, 30, 30, 30, 30, 30),
    (-1, 10, 16, 26, 18, 24, 16, 18, 22, 22, 26, 30, 22, 22, 24, 24, 28, 28, 26, 26,
     26, 26, 28, 28, 28, 28, 28, 28, 28, 28, 28, 28, 28, 28, 28, 28, 28, 28, 28, 28, 28),
    (-1, 13, 22, 18, 26, 18, 24, 18, 22, 20, 24, 28, 26, 24, 20, 30, 24, 28, 28, 26,
     30, 28, 30, 30, 30, 30, 28, 30, 30, 30, 30, 30, 30, 30, 30, 30, 30, 30, 30, 30, 30),
    (-1, 17, 28, 22, 16, 22, 28, 26, 26, 24, 28, 24, 28, 22, 24, 24, 30, 28, 28, 26,
     28, 30, 24, 30, 30, 30, 30, 30, 30, 30, 30, 30, 30, 30, 30, 30, 30, 30, 30, 30, 30),
)

# Number of error correction blocks, by level ordinal then version.
NUM_ERROR_CORRECTION_BLOCKS = (
    (-1, 1, 1, 1, 1, 1, 2, 2, 2, 2, 4, 4, 4, 4, 4, 6, 6, 6, 6, 7,
     8, 8, 9, 9, 10, 12, 12, 12, 13, 14, 15, 16, 17, 18, 19, 19, 20, 21, 22, 24, 25),
    (-1, 1, 1, 1, 2, 2, 4, 4, 4, 5, 5, 5, 8, 9, 9, 10, 10, 11, 13, 14,
     16, 17, 17, 18, 20, 21, 23, 25, 26, 28, 29, 31, 33, 35, 37, 38, 40, 43, 45, 47, 49),
    (-1, 1, 1, 2, 2, 4, 4, 6, 6, 8, 8, 8, 10, 12, 16, 12, 17, 16, 18, 21,
     20, 23, 23, 25, 27, 29, 34, 34, 35, 38, 40, 43, 45, 48, 51, 53, 56, 59, 62, 65, 68),
    (-1, 1, 1, 2, 4, 4, 4, 5, 6, 8, 8, 11, 11, 16, 16, 18, 16, 19, 21, 25,
     25, 25, 34, 30, 32, 35, 37, 40, 42, 45, 48, 51, 54, 57, 60, 63, 66, 70, 74, 77, 81),
)


def symbol_size(version: int) -> int:
    """Modules per side for ``version``."""
    return 17 + 4 * version


def _alignment_positions(version: int) -> tuple[int, ...]:
    if version == 1:
        return ()
    count = version // 7 + 2
    step = (version * 8 + count * 3 + 5) // (count * 4 - 4) * 2
    size = symbol_size(version)
    positions = [size - 7 - i * step for i in range(count - 1)] + [6]
    return tuple(reversed(positions))


ALIGNMENT_POSITIONS = tuple(
    () if version == 0 else _alignment_positions(version)
    for version in range(MAX_VERSION + 1)
)


def _raw_data_modules(version: int) -> int:
    """Data-capable modules after removing all function patterns."""
    result = (16 * version + 128) * version + 64
    if version >= 2:
        count = version // 7 + 2
        result -= (25 * count - 10) * count - 55
        if version >= 7:
            result -= 36
    return result


RAW_CODEWORDS = tuple(
    0 if version == 0 else _raw_data_modules(version) // 8
    for version in range(MAX_VERSION + 1)
)


def _check_version(version: int) -> None:
    if not MIN_VERSION <= version <= MAX_VERSION:
        raise ValueError(f"Version out of range: {version}")


def ec_codewords_per_block(version: int, ec_level: ErrorCorrectionLevel) -> int:
    _check_version(version)
    return ECC_CODEWORDS_PER_BLOCK[ec_level.ordinal][version]


def block_count(version: int, ec_level: ErrorCorrectionLevel) -> int:
    _check_version(version)
    return NUM_ERROR_CORRECTION_BLOCKS[ec_level.ordinal][version]


def data_codewords(version: int, ec_level: ErrorCorrectionLevel) -> int:
    """Total data codewords available in a symbol."""
    return RAW_CODEWORDS[version] - (
        ec_codewords_per_block(version, ec_level) * block_count(version, ec_level)
    )


def block_layout(version: int, ec_level: ErrorCorrectionLevel) -> tuple[list[int], int]:
    """Return the data length of every block (short blocks first) and the EC length."""
    blocks = block_count(version, ec_level)
    ec_length = ec_codewords_per_block(version, ec_level)
    raw = RAW_CODEWORDS[version]
    short_blocks = blocks - raw % blocks
    short_length = raw // blocks - ec_length
    lengths = [
        short_length if index < short_blocks else short_length + 1
        for index in range(blocks)
    ]
    return lengths, ec_length


def segment_bit_length(length: int, mode: EncodingMode, version: int) -> int:
    """Bits needed for a single segment of ``length`` characters (or bytes)."""
    if mode is EncodingMode.NUMERIC:
        data_bits = 10 * (length // 3) + (0, 4, 7)[length % 3]
    elif mode is EncodingMode.ALPHANUMERIC:
        data_bits = 11 * (length // 2) + 6 * (length % 2)
    else:
        data_bits = 8 * length
    return 4 + mode.count_bits(version) + data_bits


def capacity(version: int, mode: EncodingMode, ec_level: ErrorCorrectionLevel) -> int:
    """Maximum characters (bytes in byte mode) one segment can hold."""
    available = data_codewords(version, ec_level) * 8 - 4 - mode.count_bits(version)
    if mode is EncodingMode.NUMERIC:
        result = (available // 10) * 3
        remainder = available % 10
        if remainder >= 7:
            result += 2
        elif remainder >= 4:
            result += 1
    elif mode is EncodingMode.ALPHANUMERIC:
        result = (available // 11) * 2 + (1 if available % 11 >= 6 else 0)
    else:
        result = available // 8
    return min(result, (1 << mode.count_bits(version)) - 1)


def select_version(
    payload_length: int,
    mode: EncodingMode,
    ec_level: ErrorCorrectionLevel,
    min_version: int = MIN_VERSION,
    max_version: int = MAX_VERSION,
) -> int:
    """Return the smallest version in range that holds the payload."""
    _check_version(min_version)
    _check_version(max_version)
    for version in range(min_version, max_version + 1):
        if capacity(version, mode, ec_level) >= payload_length:
            logger.debug(
                "Selected version %d for %d chars (%s, EC %s)",
                version,
                payload_length,
                mode.name,
                ec_level.name,
            )
            return version
    raise PayloadTooLargeError(payload_length, mode.name, ec_level.name, max_version)
