"""Reed-Solomon coding over GF(256) as used by QR symbols.

Codewords are byte lists in transmission order; the first byte is the
coefficient of the highest power. The generator polynomial for ``n`` error
correction codewords has the roots alpha^0 .. alpha^(n-1).
"""

from __future__ import annotations

from functools import lru_cache

from qrsuite.codec.errors import ReedSolomonError
from qrsuite.codec.galois import EXP_TABLE, divide, multiply, poly_eval, power


@lru_cache(maxsize=None)
def generator_polynomial(degree: int) -> tuple[int, ...]:
    """Return the monic generator polynomial of ``degree`` without its leading 1."""
    if not 1 <= degree <= 255:
        raise ValueError(f"Generator degree out of range: {degree}")
    result = [0] * (degree - 1) + [1]
    root = 1
    for _ in range(degree):
        for j in range(degree):
            result[j] = multiply(result[j], root)
            if j + 1 < degree:
                result[j] ^= result[j + 1]
        root = multiply(root, 0x02)
    return tuple(result)


def compute_ec_codewords(data: list[int] | bytes, ec_count: int) -> list[int]:
    """Compute the error correction codewords for one data block."""
    divisor = generator_polynomial(ec_count)
    remainder = [0] * ec_count
    for byte in data:
        factor = byte ^ remainder.pop(0)
        remainder.append(0)
        for i, coefficient in enumerate(divisor):
            remainder[i] ^= multiply(coefficient, factor)
    return remainder


def syndromes(codeword: list[int], ec_count: int) -> list[int]:
    """Evaluate the received word at each generator root."""
    return [poly_eval(codeword, EXP_TABLE[i]) for i in range(ec_count)]


def _error_locator(synd: list[int]) -> list[int]:
    """Berlekamp-Massey; returns the locator lowest-degree coefficient first."""
    locator = [1]
    previous = [1]
    length = 0
    shift = 1
    last_discrepancy = 1
    for n, syndrome in enumerate(synd):
        discrepancy = syndrome
        for i in range(1, min(length, len(locator) - 1) + 1):
            discrepancy ^= multiply(locator[i], synd[n - i])
        if discrepancy == 0:
            shift += 1
            continue
        coefficient = divide(discrepancy, last_discrepancy)
        updated = locator + [0] * max(0, len(previous) + shift - len(locator))
        for i, value in enumerate(previous):
            updated[i + shift] ^= multiply(coefficient, value)
        if 2 * length <= n:
            previous = locator
            length = n + 1 - length
            last_discrepancy = discrepancy
            shift = 1
        else:
            shift += 1
        locator = updated
    return (locator + [0] * (length + 1))[:length + 1]


def _eval_low_first(coefficients: list[int], x: int) -> int:
    result = 0
    for coefficient in reversed(coefficients):
        result = multiply(result, x) ^ coefficient
    return result


def correct_errors(codeword: list[int], ec_count: int) -> tuple[list[int], int]:
    """Correct up to ``ec_count // 2`` symbol errors in a received block.

    Returns the corrected codeword and the number of corrected symbols.
    Raises ``ReedSolomonError`` when the block is uncorrectable.
    """
    received = list(codeword)
    synd = syndromes(received, ec_count)
    if not any(synd):
        return received, 0

    locator = _error_locator(synd)
    error_count = len(locator) - 1
    if error_count == 0 or 2 * error_count > ec_count:
        raise ReedSolomonError("Too many errors in block")

    n = len(received)
    positions = []
    for index in range(n):
        # Position ``index`` carries the power x^(n - 1 - index).
        x_inverse = power(0x02, -(n - 1 - index))
        if _eval_low_first(locator, x_inverse) == 0:
            positions.append(index)
    if len(positions) != error_count:
        raise ReedSolomonError("Error locator roots do not match error count")

    # Omega(x) = S(x) * Lambda(x) mod x^ec_count, lowest degree first.
    evaluator = [0] * ec_count
    for i, syndrome in enumerate(synd):
        if syndrome == 0:
            continue
        for j, coefficient in enumerate(locator):
            if i + j < ec_count:
                evaluator[i + j] ^= multiply(syndrome, coefficient)
    derivative = [locator[i] if i % 2 == 1 else 0 for i in range(1, len(locator))]

    for index in positions:
        x = power(0x02, n - 1 - index)
        x_inverse = divide(1, x)
        denominator = _eval_low_first(derivative, x_inverse)
        if denominator == 0:
            raise ReedSolomonError("Zero derivative while computing error magnitude")
        magnitude = multiply(x, divide(_eval_low_first(evaluator, x_inverse), denominator))
        received[index] ^= magnitude

    if any(syndromes(received, ec_count)):
        raise ReedSolomonError("Residual syndrome after correction")
    return received, error_count
