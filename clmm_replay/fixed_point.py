"""
Fixed-point integer helpers

Python integers never overflow, so every width that matters on chain is checked
explicitly. A value out of its width raises FixedPointOverflowError instead of
wrapping.
"""
from .errors import FixedPointOverflowError, InvariantError

Q96 = 2 ** 96
Q128 = 2 ** 128
RESOLUTION = 96

MAX_UINT128 = 2 ** 128 - 1
MAX_UINT160 = 2 ** 160 - 1
MAX_UINT256 = 2 ** 256 - 1


def _check_width(value: int, maximum: int, label: str) -> int:
    if value < 0 or value > maximum:
        raise FixedPointOverflowError(f"{label} out of bounds: {value}")
    return value


def check_uint128(value: int) -> int:
    return _check_width(value, MAX_UINT128, "uint128")


def check_uint160(value: int) -> int:
    return _check_width(value, MAX_UINT160, "uint160")


def check_uint256(value: int) -> int:
    return _check_width(value, MAX_UINT256, "uint256")


def mul_div(a: int, b: int, denominator: int) -> int:
    """floor(a * b / denominator) with a full-width intermediate product"""
    if denominator == 0:
        raise ZeroDivisionError("mul_div by zero")
    return check_uint256((a * b) // denominator)


def div_rounding_up(a: int, b: int) -> int:
    if b == 0:
        raise ZeroDivisionError("div_rounding_up by zero")
    result = a // b
    if a % b > 0:
        result += 1
    return result


def mul_div_rounding_up(a: int, b: int, denominator: int) -> int:
    """ceil(a * b / denominator)"""
    return check_uint256(div_rounding_up(a * b, denominator))


def add_delta(liquidity: int, delta: int) -> int:
    """Apply a signed liquidity delta, refusing to go negative"""
    result = liquidity + delta
    if result < 0:
        raise InvariantError(
            f"liquidity underflow: {liquidity} + ({delta}) < 0"
        )
    return check_uint128(result)
