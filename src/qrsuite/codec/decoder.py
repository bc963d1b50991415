"""QR symbol decoder: raster frame or module grid to payload text.

Decoding never raises on a bad frame; every failure comes back as a
``DecodeResult`` carrying a ``DecodeError`` so a capture loop can simply try
the next frame.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from PIL import Image

from qrsuite.codec.capability import RAW_CODEWORDS, ErrorCorrectionLevel, block_layout
from qrsuite.codec.detector import (
    MAX_DIMENSION,
    MIN_DIMENSION,
    binarize,
    find_finder_candidates,
    rank_finder_triples,
    sample_symbols,
    to_grayscale,
)
from qrsuite.codec.errors import DecodeError, ReedSolomonError
from qrsuite.codec.matrix import (
    FORMAT_CODEWORDS,
    apply_mask,
    format_positions,
    function_template,
    read_codewords,
)
from qrsuite.codec.reed_solomon import correct_errors
from qrsuite.codec.segments import parse_segments
from qrsuite.constants import FORMAT_MAX_BIT_ERRORS

logger = logging.getLogger(__name__)

MAX_TRIPLES = 12

# Later entries mean the attempt got further through the pipeline.
_ERROR_PROGRESS = (
    DecodeError.NOT_FOUND,
    DecodeError.UNREADABLE_FORMAT_INFO,
    DecodeError.UNCORRECTABLE_BLOCK,
    DecodeError.CHECKSUM_MISMATCH,
)


@dataclass(frozen=True)
class DecodeResult:
    """Outcome of decoding one frame: either ``text`` or ``error`` is set."""

    text: str | None = None
    error: DecodeError | None = None
    version: int | None = None
    ec_level: ErrorCorrectionLevel | None = None
    mask: int | None = None
    corrected: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(
        cls,
        error: DecodeError,
        version: int | None = None,
        ec_level: ErrorCorrectionLevel | None = None,
        mask: int | None = None,
    ) -> DecodeResult:
        return cls(error=error, version=version, ec_level=ec_level, mask=mask)


def read_format(grid: np.ndarray) -> tuple[ErrorCorrectionLevel, int] | None:
    """Recover EC level and mask from the nearest valid format word.

    Both copies are read; the candidate closest to either copy wins, with the
    combined distance breaking ties.
    """
    words = []
    for copy in format_positions(grid.shape[0]):
        words.append(sum(int(grid[row, col]) << i for i, (row, col) in enumerate(copy)))

    best = None
    best_key = None
    for codeword, level, mask in FORMAT_CODEWORDS:
        distances = [bin(word ^ codeword).count("1") for word in words]
        key = (min(distances), sum(distances))
        if best_key is None or key < best_key:
            best_key, best = key, (level, mask)
    if best_key is None or best_key[0] > FORMAT_MAX_BIT_ERRORS:
        return None
    return best


def _deinterleave(codewords: list[int], lengths: list[int], ec_length: int) -> list[list[int]]:
    blocks: list[list[int]] = [[] for _ in lengths]
    index = 0
    for position in range(max(lengths)):
        for block, length in zip(blocks, lengths):
            if position < length:
                block.append(codewords[index])
                index += 1
    for _ in range(ec_length):
        for block in blocks:
            block.append(codewords[index])
            index += 1
    return blocks


def decode_matrix(grid: np.ndarray | list[list[bool]]) -> DecodeResult:
    """Decode an already sampled module grid (True or 1 for dark modules)."""
    try:
        modules = np.asarray(grid, dtype=bool)
    except (TypeError, ValueError) as exc:
        logger.debug("Grid rejected: %s", exc)
        return DecodeResult.failure(DecodeError.NOT_FOUND)
    if modules.ndim != 2 or modules.shape[0] != modules.shape[1]:
        return DecodeResult.failure(DecodeError.NOT_FOUND)
    size = modules.shape[0]
    if not MIN_DIMENSION <= size <= MAX_DIMENSION or (size - 17) % 4:
        return DecodeResult.failure(DecodeError.NOT_FOUND)
    version = (size - 17) // 4

    format_info = read_format(modules)
    if format_info is None:
        return DecodeResult.failure(DecodeError.UNREADABLE_FORMAT_INFO, version)
    ec_level, mask = format_info

    _, function = function_template(version)
    unmasked = apply_mask(modules, function, mask)
    codewords = read_codewords(unmasked, version)[:RAW_CODEWORDS[version]]
    lengths, ec_length = block_layout(version, ec_level)

    data: list[int] = []
    corrected = 0
    for index, (block, length) in enumerate(
        zip(_deinterleave(codewords, lengths, ec_length), lengths)
    ):
        try:
            fixed, count = correct_errors(block, ec_length)
        except ReedSolomonError as exc:
            logger.debug("Block %d of version %d uncorrectable: %s", index, version, exc)
            return DecodeResult.failure(DecodeError.UNCORRECTABLE_BLOCK, version, ec_level, mask)
        corrected += count
        data.extend(fixed[:length])

    try:
        text = parse_segments(data, version)
    except ValueError as exc:
        logger.debug("Bit stream of version %d rejected: %s", version, exc)
        return DecodeResult.failure(DecodeError.CHECKSUM_MISMATCH, version, ec_level, mask)

    return DecodeResult(
        text=text, version=version, ec_level=ec_level, mask=mask, corrected=corrected
    )


def decode(frame: Image.Image | np.ndarray) -> DecodeResult:
    """Find and decode a QR symbol in a captured frame.

    ``frame`` is a Pillow image or a numpy array (grayscale, RGB or RGBA).
    Returns the payload text, or the furthest-reaching ``DecodeError`` over
    all candidate symbol placements. A frame type that is not an image at
    all raises ``TypeError``.
    """
    try:
        gray = to_grayscale(frame)
    except ValueError as exc:
        logger.debug("Frame rejected: %s", exc)
        return DecodeResult.failure(DecodeError.NOT_FOUND)
    if min(gray.shape) < MIN_DIMENSION:
        return DecodeResult.failure(DecodeError.NOT_FOUND)

    binary = binarize(gray)
    triples = rank_finder_triples(find_finder_candidates(binary))
    if not triples:
        return DecodeResult.failure(DecodeError.NOT_FOUND)

    best_failure = DecodeResult.failure(DecodeError.NOT_FOUND)
    for triple in triples[:MAX_TRIPLES]:
        for grid in sample_symbols(binary, triple):
            # The transpose covers symbols seen in a mirror.
            for candidate in (grid, grid.T):
                result = decode_matrix(candidate)
                if result.ok:
                    logger.debug(
                        "Decoded version %d symbol, %d codewords corrected",
                        result.version,
                        result.corrected,
                    )
                    return result
                if _ERROR_PROGRESS.index(result.error) > _ERROR_PROGRESS.index(
                    best_failure.error
                ):
                    best_failure = result
    return best_failure
