"""GF(256) arithmetic over the QR primitive polynomial x^8 + x^4 + x^3 + x^2 + 1."""

from __future__ import annotations

PRIMITIVE_POLYNOMIAL = 0x11D
FIELD_SIZE = 256


def _build_tables() -> tuple[tuple[int, ...], tuple[int, ...]]:
    """Build the antilog (exp) and log tables for the field."""
    exp = [0] * (FIELD_SIZE * 2)
    log = [0] * FIELD_SIZE
    value = 1
    for power in range(FIELD_SIZE - 1):
        exp[power] = value
        log[value] = power
        value <<= 1
        if value & 0x100:
            value ^= PRIMITIVE_POLYNOMIAL
    # Doubled so products of two logs never need a modulo.
    for power in range(FIELD_SIZE - 1, FIELD_SIZE * 2):
        exp[power] = exp[power - (FIELD_SIZE - 1)]
    return tuple(exp), tuple(log)


EXP_TABLE, LOG_TABLE = _build_tables()


def multiply(a: int, b: int) -> int:
    """Multiply two field elements."""
    if a == 0 or b == 0:
        return 0
    return EXP_TABLE[LOG_TABLE[a] + LOG_TABLE[b]]


def divide(a: int, b: int) -> int:
    """Divide ``a`` by ``b``."""
    if b == 0:
        raise ZeroDivisionError("Division by zero in GF(256)")
    if a == 0:
        return 0
    return EXP_TABLE[(LOG_TABLE[a] - LOG_TABLE[b]) % (FIELD_SIZE - 1)]


def power(a: int, exponent: int) -> int:
    """Raise ``a`` to an integer power (negative exponents allowed)."""
    if a == 0:
        return 0 if exponent else 1
    return EXP_TABLE[(LOG_TABLE[a] * exponent) % (FIELD_SIZE - 1)]


def inverse(a: int) -> int:
    """Return the multiplicative inverse of ``a``."""
    return divide(1, a)


def poly_eval(coefficients: list[int], x: int) -> int:
    """Evaluate a polynomial given highest-degree coefficient first."""
    result = 0
    for coefficient in coefficients:
        result = multiply(result, x) ^ coefficient
    return result
