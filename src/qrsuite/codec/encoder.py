"""QR symbol encoder: payload text or bytes to a finished ``SymbolMatrix``."""

from __future__ import annotations

import logging

import numpy as np

from qrsuite.codec.capability import (
    EncodingMode,
    ErrorCorrectionLevel,
    block_layout,
    data_codewords,
    select_version,
)
from qrsuite.codec.errors import PayloadTooLargeError
from qrsuite.codec.matrix import (
    MASK_COUNT,
    SymbolMatrix,
    apply_mask,
    draw_format_bits,
    function_template,
    penalty_score,
    place_codewords,
)
from qrsuite.codec.reed_solomon import compute_ec_codewords
from qrsuite.codec.segments import BitBuffer, append_segment, prepare_payload
from qrsuite.constants import DEFAULT_EC_LEVEL, MAX_VERSION, MIN_VERSION

logger = logging.getLogger(__name__)

PAD_BYTES = (0xEC, 0x11)


def build_data_codewords(
    mode: EncodingMode, data: str | bytes, version: int, ec_level: ErrorCorrectionLevel
) -> list[int]:
    """Assemble the padded data codeword sequence for one segment."""
    capacity_bits = data_codewords(version, ec_level) * 8
    buffer = BitBuffer()
    append_segment(buffer, mode, data, version)
    if len(buffer) > capacity_bits:
        raise PayloadTooLargeError(len(data), mode.name, ec_level.name, version)

    buffer.append_bits(0, min(4, capacity_bits - len(buffer)))
    buffer.append_bits(0, (8 - len(buffer) % 8) % 8)
    codewords = buffer.to_bytes()
    pad_index = 0
    while len(codewords) < capacity_bits // 8:
        codewords.append(PAD_BYTES[pad_index % 2])
        pad_index += 1
    return codewords


def add_error_correction(
    codewords: list[int], version: int, ec_level: ErrorCorrectionLevel
) -> list[int]:
    """Split into blocks, append RS codewords and interleave."""
    lengths, ec_length = block_layout(version, ec_level)
    data_blocks: list[list[int]] = []
    ec_blocks: list[list[int]] = []
    offset = 0
    for length in lengths:
        block = codewords[offset:offset + length]
        offset += length
        data_blocks.append(block)
        ec_blocks.append(compute_ec_codewords(block, ec_length))

    result = []
    for index in range(max(lengths)):
        for block in data_blocks:
            if index < len(block):
                result.append(block[index])
    for index in range(ec_length):
        for block in ec_blocks:
            result.append(block[index])
    return result


def _resolve_version(
    mode: EncodingMode,
    data: str | bytes,
    ec_level: ErrorCorrectionLevel,
    version: int | None,
) -> int:
    if version is None:
        return select_version(len(data), mode, ec_level, MIN_VERSION, MAX_VERSION)
    return select_version(len(data), mode, ec_level, version, version)


def _masked(
    base: np.ndarray, function: np.ndarray, level: ErrorCorrectionLevel, mask: int
) -> np.ndarray:
    modules = apply_mask(base, function, mask)
    draw_format_bits(modules, level, mask)
    return modules


def _build(
    payload: str | bytes,
    ec_level: ErrorCorrectionLevel | str,
    mode: EncodingMode | None,
    version: int | None,
    mask: int | None,
) -> SymbolMatrix:
    level = ErrorCorrectionLevel.from_label(ec_level)
    resolved_mode, data = prepare_payload(payload, mode)
    resolved_version = _resolve_version(resolved_mode, data, level, version)

    codewords = add_error_correction(
        build_data_codewords(resolved_mode, data, resolved_version, level),
        resolved_version,
        level,
    )
    template, function = function_template(resolved_version)
    base = template.copy()
    place_codewords(base, resolved_version, codewords)

    if mask is None:
        candidates = [_masked(base, function, level, candidate) for candidate in range(MASK_COUNT)]
        scores = [penalty_score(candidate) for candidate in candidates]
        # min() keeps the first (lowest id) mask on ties.
        mask = min(range(MASK_COUNT), key=lambda candidate: scores[candidate])
        modules = candidates[mask]
        logger.debug("Selected mask %d (penalty %d)", mask, scores[mask])
    else:
        if not 0 <= mask < MASK_COUNT:
            raise ValueError(f"Mask out of range: {mask}")
        modules = _masked(base, function, level, mask)

    return SymbolMatrix(
        version=resolved_version,
        ec_level=level,
        mask=mask,
        modules=modules,
        function=function.copy(),
    )


def encode(
    payload: str | bytes,
    ec_level: ErrorCorrectionLevel | str = DEFAULT_EC_LEVEL,
    mode: EncodingMode | None = None,
    version: int | None = None,
) -> SymbolMatrix:
    """Encode a payload into a QR symbol.

    The smallest version that fits is used unless ``version`` is given, and
    the mask with the lowest penalty wins (lowest id on ties), so identical
    inputs always give identical symbols.

    Raises ``PayloadTooLargeError`` when the payload does not fit and
    ``UnsupportedCharacterError`` when it cannot be expressed in ``mode``.
    """
    return _build(payload, ec_level, mode, version, None)


def encode_with_mask(
    payload: str | bytes,
    ec_level: ErrorCorrectionLevel | str,
    mask: int,
    mode: EncodingMode | None = None,
    version: int | None = None,
) -> SymbolMatrix:
    """Encode with a fixed mask instead of penalty-based selection."""
    return _build(payload, ec_level, mode, version, mask)
