"""Rational musical time helpers.

Musical positions and durations are kept as ``fractions.Fraction`` values,
which are always reduced with a positive denominator and compare exactly.
These helpers cover the textual ``num/den`` form used by the score
artifacts and the quantization of the engraver's floating point values.
"""

from fractions import Fraction
from typing import Optional, Tuple

from scorealign.core.errors import MalformedNoteError

# Encodes an open score range endpoint on the plugin boundary
OPEN_ENDPOINT: Tuple[int, int] = (-1, -1)


def parse_fraction(value) -> Fraction:
    """
    Parse a Fraction from a ``num/den`` string, a (num, den) pair or a number.

    Raises:
        MalformedNoteError: If the value cannot be parsed or has a zero denominator
    """
    if isinstance(value, Fraction):
        return value
    try:
        if isinstance(value, str):
            parts = value.strip().split("/")
            if len(parts) == 2:
                return Fraction(int(parts[0]), int(parts[1]))
            return Fraction(value.strip())
        if isinstance(value, (list, tuple)) and len(value) == 2:
            return Fraction(int(value[0]), int(value[1]))
        if isinstance(value, (int, float)):
            return Fraction(value)
    except (ValueError, ZeroDivisionError, OverflowError) as e:
        raise MalformedNoteError(f"Cannot parse fraction from {value!r}: {e}")
    raise MalformedNoteError(f"Cannot parse fraction from {value!r}")


def format_fraction(value: Fraction) -> str:
    """Format a Fraction as ``num/den`` (zero is ``0/1``)."""
    return f"{value.numerator}/{value.denominator}"


def closest_fraction(value: float, max_denominator: int = 256) -> Fraction:
    """
    Closest rational approximation of a float on the quantization grid.

    The engraver reports times as single precision floats, so 1/3 of a
    quarter arrives as 0.0833333358. The same float always maps to the same
    Fraction.
    """
    return Fraction(value).limit_denominator(max_denominator)


def fraction_pair(value: Optional[Fraction]) -> Tuple[int, int]:
    """Numerator/denominator pair, or (-1, -1) for an open endpoint."""
    if value is None:
        return OPEN_ENDPOINT
    return value.numerator, value.denominator
