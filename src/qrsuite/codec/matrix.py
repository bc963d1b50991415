"""Symbol matrix layout: function patterns, codeword placement and masking."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from qrsuite.codec.capability import ALIGNMENT_POSITIONS, ErrorCorrectionLevel, symbol_size

MASK_COUNT = 8
FORMAT_GENERATOR = 0x537
FORMAT_XOR_MASK = 0x5412
VERSION_GENERATOR = 0x1F25

PENALTY_RUN = 3
PENALTY_BLOCK = 3
PENALTY_FINDER_LIKE = 40
PENALTY_BALANCE = 10

_FINDER_LIKE = np.array([1, 0, 1, 1, 1, 0, 1, 0, 0, 0, 0], dtype=bool)
_FINDER_LIKE_REVERSED = _FINDER_LIKE[::-1].copy()

_MASK_FUNCTIONS = (
    lambda r, c: (r + c) % 2 == 0,
    lambda r, c: r % 2 == 0,
    lambda r, c: c % 3 == 0,
    lambda r, c: (r + c) % 3 == 0,
    lambda r, c: (r // 2 + c // 3) % 2 == 0,
    lambda r, c: (r * c) % 2 + (r * c) % 3 == 0,
    lambda r, c: ((r * c) % 2 + (r * c) % 3) % 2 == 0,
    lambda r, c: ((r + c) % 2 + (r * c) % 3) % 2 == 0,
)


@dataclass(frozen=True, eq=False)
class SymbolMatrix:
    """A finished QR symbol; ``modules`` is True where a module is dark."""

    version: int
    ec_level: ErrorCorrectionLevel
    mask: int
    modules: np.ndarray
    function: np.ndarray

    def __post_init__(self) -> None:
        self.modules.setflags(write=False)
        self.function.setflags(write=False)

    @property
    def size(self) -> int:
        return int(self.modules.shape[0])

    def is_dark(self, row: int, col: int) -> bool:
        return bool(self.modules[row, col])

    def is_function(self, row: int, col: int) -> bool:
        return bool(self.function[row, col])

    def to_rows(self) -> list[list[bool]]:
        return self.modules.tolist()

    def to_text(self, dark: str = "##", light: str = "  ") -> str:
        """Render as text, one line per module row."""
        return "\n".join(
            "".join(dark if module else light for module in row) for row in self.to_rows()
        )


def format_bits(ec_level: ErrorCorrectionLevel, mask: int) -> int:
    """15-bit format information word for an EC level and mask."""
    data = (ec_level.format_bits << 3) | mask
    remainder = data
    for _ in range(10):
        remainder = (remainder << 1) ^ ((remainder >> 9) * FORMAT_GENERATOR)
    return ((data << 10) | remainder) ^ FORMAT_XOR_MASK


def version_bits(version: int) -> int:
    """18-bit version information word (versions 7 and up)."""
    remainder = version
    for _ in range(12):
        remainder = (remainder << 1) ^ ((remainder >> 11) * VERSION_GENERATOR)
    return (version << 12) | remainder


FORMAT_CODEWORDS = tuple(
    (format_bits(level, mask), level, mask)
    for level in ErrorCorrectionLevel
    for mask in range(MASK_COUNT)
)

VERSION_CODEWORDS = tuple((version_bits(version), version) for version in range(7, 41))


def format_positions(size: int) -> tuple[list[tuple[int, int]], list[tuple[int, int]]]:
    """(row, col) of format bit ``i`` for the primary and the secondary copy."""
    primary = [(i, 8) for i in range(6)] + [(7, 8), (8, 8), (8, 7)]
    primary += [(8, 14 - i) for i in range(9, 15)]
    secondary = [(8, size - 1 - i) for i in range(8)]
    secondary += [(size - 15 + i, 8) for i in range(8, 15)]
    return primary, secondary


def version_positions(size: int) -> tuple[list[tuple[int, int]], list[tuple[int, int]]]:
    """(row, col) of version bit ``i`` for the top-right and bottom-left blocks."""
    top_right = [(i // 3, size - 11 + i % 3) for i in range(18)]
    bottom_left = [(size - 11 + i % 3, i // 3) for i in range(18)]
    return top_right, bottom_left


def draw_format_bits(modules: np.ndarray, ec_level: ErrorCorrectionLevel, mask: int) -> None:
    bits = format_bits(ec_level, mask)
    size = modules.shape[0]
    for copy in format_positions(size):
        for i, (row, col) in enumerate(copy):
            modules[row, col] = bool((bits >> i) & 1)
    modules[size - 8, 8] = True


@lru_cache(maxsize=None)
def function_template(version: int) -> tuple[np.ndarray, np.ndarray]:
    """Modules and function flags with every function pattern drawn.

    Format areas are reserved (light); the arrays returned are read-only.
    """
    size = symbol_size(version)
    modules = np.zeros((size, size), dtype=bool)
    function = np.zeros((size, size), dtype=bool)

    def put(row: int, col: int, dark: bool) -> None:
        modules[row, col] = dark
        function[row, col] = True

    for i in range(size):
        put(6, i, i % 2 == 0)
        put(i, 6, i % 2 == 0)

    for center_row, center_col in ((3, 3), (3, size - 4), (size - 4, 3)):
        for dr in range(-4, 5):
            for dc in range(-4, 5):
                row, col = center_row + dr, center_col + dc
                if 0 <= row < size and 0 <= col < size:
                    put(row, col, max(abs(dr), abs(dc)) not in (2, 4))

    positions = ALIGNMENT_POSITIONS[version]
    last = len(positions) - 1
    for i, row in enumerate(positions):
        for j, col in enumerate(positions):
            if (i, j) in ((0, 0), (0, last), (last, 0)):
                continue
            for dr in range(-2, 3):
                for dc in range(-2, 3):
                    put(row + dr, col + dc, max(abs(dr), abs(dc)) != 1)

    for copy in format_positions(size):
        for row, col in copy:
            put(row, col, False)
    put(size - 8, 8, True)

    if version >= 7:
        bits = version_bits(version)
        for copy in version_positions(size):
            for i, (row, col) in enumerate(copy):
                put(row, col, bool((bits >> i) & 1))

    modules.setflags(write=False)
    function.setflags(write=False)
    return modules, function


@lru_cache(maxsize=None)
def data_module_order(version: int) -> tuple[np.ndarray, np.ndarray]:
    """Rows and columns of data modules in zig-zag placement order."""
    _, function = function_template(version)
    size = function.shape[0]
    rows: list[int] = []
    cols: list[int] = []
    right = size - 1
    while right >= 1:
        if right == 6:
            right = 5
        upward = ((right + 1) & 2) == 0
        for vertical in range(size):
            row = size - 1 - vertical if upward else vertical
            for col in (right, right - 1):
                if not function[row, col]:
                    rows.append(row)
                    cols.append(col)
        right -= 2
    row_array = np.array(rows, dtype=np.intp)
    col_array = np.array(cols, dtype=np.intp)
    row_array.setflags(write=False)
    col_array.setflags(write=False)
    return row_array, col_array


def place_codewords(modules: np.ndarray, version: int, codewords: list[int]) -> None:
    """Write codeword bits into data modules; leftover remainder bits stay light."""
    rows, cols = data_module_order(version)
    bits = np.unpackbits(np.array(codewords, dtype=np.uint8)).astype(bool)
    if len(bits) > len(rows):
        raise ValueError("Too many codewords for symbol version")
    modules[rows[:len(bits)], cols[:len(bits)]] = bits
    modules[rows[len(bits):], cols[len(bits):]] = False


def read_codewords(modules: np.ndarray, version: int) -> list[int]:
    """Read whole codewords back from data modules in placement order."""
    rows, cols = data_module_order(version)
    bits = modules[rows, cols].astype(np.uint8)
    usable = len(bits) - len(bits) % 8
    return np.packbits(bits[:usable]).tolist()


@lru_cache(maxsize=None)
def mask_pattern(mask: int, size: int) -> np.ndarray:
    """Boolean grid that is True where ``mask`` inverts a module."""
    rows, cols = np.indices((size, size))
    pattern = np.asarray(_MASK_FUNCTIONS[mask](rows, cols), dtype=bool)
    pattern.setflags(write=False)
    return pattern


def apply_mask(modules: np.ndarray, function: np.ndarray, mask: int) -> np.ndarray:
    """Return a copy with ``mask`` applied to data modules only."""
    size = modules.shape[0]
    return modules ^ (mask_pattern(mask, size) & ~function)


def _run_penalty(line: np.ndarray) -> int:
    changes = np.flatnonzero(line[1:] != line[:-1])
    bounds = np.concatenate(([-1], changes, [len(line) - 1]))
    runs = np.diff(bounds)
    long_runs = runs[runs >= 5]
    return int(np.sum(long_runs - 5 + PENALTY_RUN))


def _finder_like_count(grid: np.ndarray) -> int:
    windows = sliding_window_view(grid, len(_FINDER_LIKE), axis=1)
    forward = np.all(windows == _FINDER_LIKE, axis=-1)
    backward = np.all(windows == _FINDER_LIKE_REVERSED, axis=-1)
    return int(np.count_nonzero(forward) + np.count_nonzero(backward))


def penalty_score(modules: np.ndarray) -> int:
    """Sum of the four standard mask penalty rules."""
    grid = np.asarray(modules, dtype=bool)
    size = grid.shape[0]

    score = sum(_run_penalty(grid[i, :]) + _run_penalty(grid[:, i]) for i in range(size))

    top_left = grid[:-1, :-1]
    blocks = (top_left == grid[1:, :-1]) & (top_left == grid[:-1, 1:]) & (top_left == grid[1:, 1:])
    score += PENALTY_BLOCK * int(np.count_nonzero(blocks))

    score += PENALTY_FINDER_LIKE * (_finder_like_count(grid) + _finder_like_count(grid.T))

    total = size * size
    dark = int(np.count_nonzero(grid))
    score += PENALTY_BALANCE * (abs(dark * 100 - total * 50) // (total * 5))
    return score
