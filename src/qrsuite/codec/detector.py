"""Locate a QR symbol in a raster frame and sample its module grid.

The pipeline is: grayscale, block-adaptive binarization, a run-length scan for
the 1:1:3:1:1 finder signature with vertical and horizontal cross checks,
ranking of finder triples, then a perspective transform from module space to
pixel space through which module centres are sampled.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from itertools import combinations
from typing import Iterator

import numpy as np
from PIL import Image

from qrsuite.codec.matrix import VERSION_CODEWORDS, version_positions
from qrsuite.constants import (
    BINARIZER_BLOCK_SIZE,
    BINARIZER_MIN_DYNAMIC_RANGE,
    BINARIZER_NEIGHBORHOOD,
    FINDER_MAX_CANDIDATES,
    FINDER_MODULE_SIZE_TOLERANCE,
    MAX_VERSION,
    VERSION_MAX_BIT_ERRORS,
)

logger = logging.getLogger(__name__)

MIN_DIMENSION = 21
MAX_DIMENSION = 17 + 4 * MAX_VERSION
ALIGNMENT_MIN_MATCHES = 22
SAMPLE_OFFSET = 0.2  # Extra sample points, in modules, around each centre

_FINDER_TEMPLATE = np.array(
    [[max(abs(r), abs(c)) != 2 and max(abs(r), abs(c)) != 4 for c in range(-3, 4)]
     for r in range(-3, 4)],
    dtype=bool,
)
_ALIGNMENT_OFFSETS = [(r, c) for r in range(-2, 3) for c in range(-2, 3)]
_ALIGNMENT_EXPECTED = np.array([max(abs(r), abs(c)) != 1 for r, c in _ALIGNMENT_OFFSETS])


@dataclass
class FinderCandidate:
    """Estimated finder centre in pixels, with its module size and hit count."""

    x: float
    y: float
    module_size: float
    count: int = 1

    def matches(self, x: float, y: float, module_size: float) -> bool:
        if abs(x - self.x) > self.module_size or abs(y - self.y) > self.module_size:
            return False
        difference = abs(module_size - self.module_size)
        return difference <= 1.0 or difference <= self.module_size * 0.5

    def merge(self, x: float, y: float, module_size: float) -> None:
        total = self.count + 1
        self.x = (self.count * self.x + x) / total
        self.y = (self.count * self.y + y) / total
        self.module_size = (self.count * self.module_size + module_size) / total
        self.count = total


@dataclass(frozen=True)
class FinderTriple:
    top_left: FinderCandidate
    top_right: FinderCandidate
    bottom_left: FinderCandidate
    score: float

    @property
    def module_size(self) -> float:
        return (
            self.top_left.module_size + self.top_right.module_size + self.bottom_left.module_size
        ) / 3.0


def to_grayscale(frame: Image.Image | np.ndarray) -> np.ndarray:
    """Convert a Pillow image or numpy array to a float luminance array."""
    if isinstance(frame, Image.Image):
        if frame.mode in ("RGBA", "LA") or "transparency" in frame.info:
            background = Image.new("RGBA", frame.size, "white")
            frame = Image.alpha_composite(background, frame.convert("RGBA"))
        return np.asarray(frame.convert("L"), dtype=np.float32)

    if not isinstance(frame, np.ndarray):
        raise TypeError(f"Unsupported frame type: {type(frame).__name__}")
    array = frame.astype(np.float32)
    if array.ndim == 3:
        if array.shape[2] == 1:
            array = array[:, :, 0]
        elif array.shape[2] >= 3:
            rgb = array[:, :, :3]
            if array.shape[2] == 4:
                alpha = array[:, :, 3:4] / 255.0
                rgb = rgb * alpha + 255.0 * (1.0 - alpha)
            array = rgb[:, :, 0] * 0.299 + rgb[:, :, 1] * 0.587 + rgb[:, :, 2] * 0.114
        else:
            raise ValueError(f"Unsupported channel count: {array.shape[2]}")
    if array.ndim != 2:
        raise ValueError(f"Unsupported frame shape: {frame.shape}")
    return array


def _neighborhood_mean(values: np.ndarray, radius: int) -> np.ndarray:
    """Mean over a (2r+1)x(2r+1) window with edge replication."""
    padded = np.pad(values, radius, mode="edge")
    summed = np.cumsum(np.cumsum(padded, axis=0), axis=1)
    summed = np.pad(summed, ((1, 0), (1, 0)))
    width = 2 * radius + 1
    window = (
        summed[width:, width:] - summed[:-width, width:] - summed[width:, :-width]
        + summed[:-width, :-width]
    )
    return window / (width * width)


def binarize(gray: np.ndarray) -> np.ndarray:
    """Return a boolean array that is True for dark pixels.

    Thresholds come from 8x8 pixel blocks averaged over their neighbours, so
    uneven lighting across the frame does not flip whole regions. Blocks with
    too little contrast fall back to a frame-wide threshold.
    """
    height, width = gray.shape
    low, high = np.percentile(gray, (1, 99))
    global_threshold = (low + high) / 2.0

    size = BINARIZER_BLOCK_SIZE
    pad_rows = (-height) % size
    pad_cols = (-width) % size
    padded = np.pad(gray, ((0, pad_rows), (0, pad_cols)), mode="edge")
    rows, cols = padded.shape[0] // size, padded.shape[1] // size
    blocks = padded.reshape(rows, size, cols, size)
    block_min = blocks.min(axis=(1, 3))
    block_max = blocks.max(axis=(1, 3))
    block_mean = blocks.mean(axis=(1, 3))

    thresholds = np.where(
        block_max - block_min >= BINARIZER_MIN_DYNAMIC_RANGE, block_mean, global_threshold
    )
    thresholds = _neighborhood_mean(thresholds, BINARIZER_NEIGHBORHOOD)
    pixel_thresholds = np.repeat(np.repeat(thresholds, size, axis=0), size, axis=1)
    return gray < pixel_thresholds[:height, :width]


def _ratio_ok(counts: list[int]) -> bool:
    total = sum(counts)
    if total < 7 or min(counts) == 0:
        return False
    module = total / 7.0
    variance = module / 2.0
    return (
        abs(module - counts[0]) < variance
        and abs(module - counts[1]) < variance
        and abs(3.0 * module - counts[2]) < 3.0 * variance
        and abs(module - counts[3]) < variance
        and abs(module - counts[4]) < variance
    )


def _cross_check(
    line: np.ndarray, start: int, max_count: int, original_total: int
) -> tuple[float, int] | None:
    """Walk out from ``start`` along ``line`` and re-measure the finder runs."""
    length = len(line)
    if not line[start]:
        return None
    counts = [0, 0, 0, 0, 0]

    i = start
    while i >= 0 and line[i]:
        counts[2] += 1
        i -= 1
    if i < 0:
        return None
    while i >= 0 and not line[i] and counts[1] <= max_count:
        counts[1] += 1
        i -= 1
    if i < 0 or counts[1] > max_count:
        return None
    while i >= 0 and line[i] and counts[0] <= max_count:
        counts[0] += 1
        i -= 1
    if counts[0] > max_count:
        return None

    i = start + 1
    while i < length and line[i]:
        counts[2] += 1
        i += 1
    if i == length:
        return None
    while i < length and not line[i] and counts[3] <= max_count:
        counts[3] += 1
        i += 1
    if i == length or counts[3] > max_count:
        return None
    while i < length and line[i] and counts[4] <= max_count:
        counts[4] += 1
        i += 1
    if counts[4] > max_count:
        return None

    total = sum(counts)
    if 5 * abs(total - original_total) >= 2 * original_total:
        return None
    if not _ratio_ok(counts):
        return None
    return i - counts[4] - counts[3] - counts[2] / 2.0, total


def _row_hits(row: np.ndarray) -> Iterator[tuple[float, int, int]]:
    """Yield (centre x, centre run length, total) for finder-like run windows."""
    changes = np.flatnonzero(row[1:] != row[:-1]) + 1
    starts = np.concatenate(([0], changes))
    ends = np.concatenate((changes, [len(row)]))
    if len(starts) < 5:
        return
    lengths = (ends - starts).astype(np.float64)
    values = row[starts]

    windows = [lengths[k:len(lengths) - 4 + k] for k in range(5)]
    total = sum(windows)
    module = total / 7.0
    variance = module / 2.0
    ok = values[:len(lengths) - 4] & (total >= 7)
    for k, expected in enumerate((1.0, 1.0, 3.0, 1.0, 1.0)):
        ok &= np.abs(module * expected - windows[k]) < variance * expected
    for index in np.flatnonzero(ok):
        centre_start = starts[index + 2]
        centre_run = int(lengths[index + 2])
        yield centre_start + centre_run / 2.0, centre_run, int(total[index])


def find_finder_candidates(binary: np.ndarray) -> list[FinderCandidate]:
    """Scan rows for finder signatures and confirm them along both axes."""
    height, width = binary.shape
    step = max(1, height // 240)
    candidates: list[FinderCandidate] = []

    for y in range(0, height, step):
        for centre_x, centre_run, total in _row_hits(binary[y]):
            column = int(centre_x)
            vertical = _cross_check(binary[:, column], y, centre_run, total)
            if vertical is None:
                continue
            centre_y, vertical_total = vertical
            horizontal = _cross_check(binary[int(centre_y)], column, centre_run, total)
            if horizontal is None:
                continue
            centre_x, horizontal_total = horizontal
            module_size = (vertical_total + horizontal_total) / 14.0
            for candidate in candidates:
                if candidate.matches(centre_x, centre_y, module_size):
                    candidate.merge(centre_x, centre_y, module_size)
                    break
            else:
                candidates.append(FinderCandidate(centre_x, centre_y, module_size))

    candidates.sort(key=lambda candidate: candidate.count, reverse=True)
    logger.debug("Found %d finder candidates", len(candidates))
    return candidates[:FINDER_MAX_CANDIDATES]


def _distance(a: FinderCandidate, b: FinderCandidate) -> float:
    return math.hypot(a.x - b.x, a.y - b.y)


def rank_finder_triples(candidates: list[FinderCandidate]) -> list[FinderTriple]:
    """Order plausible (top-left, top-right, bottom-left) triples, best first."""
    triples = []
    for combo in combinations(candidates, 3):
        sizes = [candidate.module_size for candidate in combo]
        if (max(sizes) - min(sizes)) > max(sizes) * FINDER_MODULE_SIZE_TOLERANCE:
            continue
        pairs = [(combo[1], combo[2], combo[0]), (combo[0], combo[2], combo[1]),
                 (combo[0], combo[1], combo[2])]
        # The corner is opposite the longest side.
        first, second, corner = max(pairs, key=lambda pair: _distance(pair[0], pair[1]))
        side_a = _distance(corner, first)
        side_b = _distance(corner, second)
        module = sum(sizes) / 3.0
        if min(side_a, side_b) < 10 * module:
            continue
        skew = abs(side_a - side_b) / max(side_a, side_b)
        if skew > 0.3:
            continue
        dot = (first.x - corner.x) * (second.x - corner.x) + (first.y - corner.y) * (
            second.y - corner.y
        )
        cosine = abs(dot) / (side_a * side_b)
        if cosine > 0.3:
            continue
        cross = (first.x - corner.x) * (second.y - corner.y) - (first.y - corner.y) * (
            second.x - corner.x
        )
        top_right, bottom_left = (first, second) if cross > 0 else (second, first)
        score = skew + cosine - 0.01 * min(candidate.count for candidate in combo)
        triples.append(FinderTriple(corner, top_right, bottom_left, score))
    triples.sort(key=lambda triple: triple.score)
    return triples


def estimate_dimensions(triple: FinderTriple) -> list[int]:
    """Candidate symbol sizes, most likely first."""
    module = triple.module_size
    across = (
        _distance(triple.top_left, triple.top_right) + _distance(triple.top_left, triple.bottom_left)
    ) / (2.0 * module)
    dimension = int(round(across)) + 7
    remainder = dimension % 4
    if remainder == 0:
        primary = [dimension + 1]
    elif remainder == 2:
        primary = [dimension - 1]
    elif remainder == 3:
        primary = [dimension + 2, dimension - 2]
    else:
        primary = [dimension]
    ordered = primary + [primary[0] - 4, primary[0] + 4]
    result = []
    for value in ordered:
        if MIN_DIMENSION <= value <= MAX_DIMENSION and value not in result:
            result.append(value)
    return result


def solve_homography(source: np.ndarray, target: np.ndarray) -> np.ndarray:
    """3x3 projective transform mapping four source points onto four targets."""
    system = []
    values = []
    for (u, v), (x, y) in zip(source, target):
        system.append([u, v, 1, 0, 0, 0, -u * x, -v * x])
        system.append([0, 0, 0, u, v, 1, -u * y, -v * y])
        values.extend((x, y))
    solution = np.linalg.solve(np.array(system, dtype=np.float64), np.array(values))
    return np.append(solution, 1.0).reshape(3, 3)


def project(transform: np.ndarray, u: np.ndarray, v: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    denominator = transform[2, 0] * u + transform[2, 1] * v + transform[2, 2]
    x = (transform[0, 0] * u + transform[0, 1] * v + transform[0, 2]) / denominator
    y = (transform[1, 0] * u + transform[1, 1] * v + transform[1, 2]) / denominator
    return x, y


def _lookup(binary: np.ndarray, x: np.ndarray, y: np.ndarray) -> np.ndarray:
    height, width = binary.shape
    cols = np.clip(np.rint(x).astype(np.intp), 0, width - 1)
    rows = np.clip(np.rint(y).astype(np.intp), 0, height - 1)
    return binary[rows, cols]


def find_alignment(
    binary: np.ndarray, estimate: tuple[float, float], step_x: np.ndarray, step_y: np.ndarray,
    module: float,
) -> tuple[float, float] | None:
    """Search around ``estimate`` for the 5x5 bottom-right alignment pattern."""
    radius = max(2, min(int(round(module * 6)), 60))
    offsets = np.arange(-radius, radius + 1, dtype=np.float64)
    dx, dy = np.meshgrid(offsets, offsets)
    dx = dx.ravel()
    dy = dy.ravel()
    pattern_rows = np.array([r for r, _ in _ALIGNMENT_OFFSETS], dtype=np.float64)
    pattern_cols = np.array([c for _, c in _ALIGNMENT_OFFSETS], dtype=np.float64)
    xs = estimate[0] + dx[:, None] + pattern_cols * step_x[0] + pattern_rows * step_y[0]
    ys = estimate[1] + dy[:, None] + pattern_cols * step_x[1] + pattern_rows * step_y[1]
    matches = np.count_nonzero(_lookup(binary, xs, ys) == _ALIGNMENT_EXPECTED, axis=1)

    best = int(matches.max())
    if best < ALIGNMENT_MIN_MATCHES:
        return None
    chosen = np.flatnonzero(matches == best)
    nearest = chosen[np.argmin(dx[chosen] ** 2 + dy[chosen] ** 2)]
    return estimate[0] + dx[nearest], estimate[1] + dy[nearest]


def build_transform(
    binary: np.ndarray, triple: FinderTriple, dimension: int, use_alignment: bool = True
) -> np.ndarray:
    """Module-space (col, row) to pixel-space (x, y) transform for ``dimension``.

    Without a located alignment pattern the fourth point completes the
    parallelogram of the finder centres, which is an affine fit.
    """
    top_left = np.array([triple.top_left.x, triple.top_left.y])
    top_right = np.array([triple.top_right.x, triple.top_right.y])
    bottom_left = np.array([triple.bottom_left.x, triple.bottom_left.y])
    span = dimension - 7.0
    step_x = (top_right - top_left) / span
    step_y = (bottom_left - top_left) / span

    source = [(3.5, 3.5), (dimension - 3.5, 3.5), (3.5, dimension - 3.5)]
    target = [tuple(top_left), tuple(top_right), tuple(bottom_left)]

    alignment = None
    if use_alignment and dimension > MIN_DIMENSION:
        offset = dimension - 10.0  # Alignment centre sits 3 modules inside the finder centres.
        estimate = top_left + step_x * offset + step_y * offset
        alignment = find_alignment(
            binary, (float(estimate[0]), float(estimate[1])), step_x, step_y, triple.module_size
        )
    if alignment is not None:
        source.append((dimension - 6.5, dimension - 6.5))
        target.append(alignment)
    else:
        corner = top_left + step_x * span + step_y * span
        source.append((dimension - 3.5, dimension - 3.5))
        target.append((float(corner[0]), float(corner[1])))
    return solve_homography(np.array(source), np.array(target))


def sample_grid(binary: np.ndarray, transform: np.ndarray, dimension: int) -> np.ndarray:
    """Majority vote of five samples around every module centre."""
    centres = np.arange(dimension, dtype=np.float64) + 0.5
    u, v = np.meshgrid(centres, centres)
    votes = np.zeros((dimension, dimension), dtype=np.int32)
    for du, dv in ((0, 0), (-SAMPLE_OFFSET, 0), (SAMPLE_OFFSET, 0), (0, -SAMPLE_OFFSET),
                   (0, SAMPLE_OFFSET)):
        x, y = project(transform, u + du, v + dv)
        votes += _lookup(binary, x, y)
    return votes >= 3


def read_version(grid: np.ndarray) -> int | None:
    """Decode version information from either copy, if readable."""
    size = grid.shape[0]
    best_version = None
    best_distance = VERSION_MAX_BIT_ERRORS + 1
    for copy in version_positions(size):
        word = sum(int(grid[row, col]) << i for i, (row, col) in enumerate(copy))
        for codeword, version in VERSION_CODEWORDS:
            distance = bin(word ^ codeword).count("1")
            if distance < best_distance:
                best_distance, best_version = distance, version
    return best_version


def looks_like_symbol(grid: np.ndarray) -> bool:
    """Check that the finder and timing patterns were sampled where expected."""
    size = grid.shape[0]
    for row, col in ((0, 0), (0, size - 7), (size - 7, 0)):
        region = grid[row:row + 7, col:col + 7]
        if np.count_nonzero(region == _FINDER_TEMPLATE) < 43:
            return False
    expected = np.arange(8, size - 8) % 2 == 0
    timing = np.count_nonzero(grid[6, 8:size - 8] == expected) + np.count_nonzero(
        grid[8:size - 8, 6] == expected
    )
    return timing >= 0.8 * 2 * len(expected)


def _sample(
    binary: np.ndarray, triple: FinderTriple, dimension: int, use_alignment: bool
) -> np.ndarray | None:
    try:
        transform = build_transform(binary, triple, dimension, use_alignment)
    except np.linalg.LinAlgError:
        return None
    return sample_grid(binary, transform, dimension)


def sample_symbols(binary: np.ndarray, triple: FinderTriple) -> Iterator[np.ndarray]:
    """Yield sampled module grids for each plausible symbol size.

    Each size is sampled through the alignment-corrected transform first and
    the affine one second. For versions 7 and up a readable version block
    overrides the size estimated from the finder spacing.
    """
    pending = estimate_dimensions(triple)
    tried: set[int] = set()
    while pending:
        dimension = pending.pop(0)
        if dimension in tried:
            continue
        tried.add(dimension)
        for use_alignment in (True, False) if dimension > MIN_DIMENSION else (False,):
            grid = _sample(binary, triple, dimension, use_alignment)
            if grid is None:
                continue
            if dimension >= 45:
                version = read_version(grid)
                if version is not None and 17 + 4 * version != dimension:
                    pending.insert(0, 17 + 4 * version)
                    break
            if looks_like_symbol(grid):
                yield grid
