"""Tests for rational musical time helpers."""

from fractions import Fraction
from math import gcd

import pytest

from scorealign.core.errors import MalformedNoteError
from scorealign.core.fraction import (
    OPEN_ENDPOINT,
    closest_fraction,
    format_fraction,
    fraction_pair,
    parse_fraction,
)


def test_parse_fraction_forms():
    """Strings, pairs and numbers all parse to reduced fractions."""
    assert parse_fraction("2/8") == Fraction(1, 4)
    assert parse_fraction(" 3/4 ") == Fraction(3, 4)
    assert parse_fraction((6, 8)) == Fraction(3, 4)
    assert parse_fraction([1, 2]) == Fraction(1, 2)
    assert parse_fraction(2) == Fraction(2)
    assert parse_fraction("0.5") == Fraction(1, 2)


def test_parse_fraction_normalizes_sign():
    value = parse_fraction("1/-2")
    assert value == Fraction(-1, 2)
    assert value.denominator == 2


@pytest.mark.parametrize(
    "value", ["1/0", "abc", "1/2/3", (1, 0), None, {"n": 1}, float("inf"), float("-inf"), float("nan")]
)
def test_parse_fraction_rejects_malformed(value):
    with pytest.raises(MalformedNoteError):
        parse_fraction(value)


@pytest.mark.parametrize(
    "a, b",
    [
        ("1/4", "1/4"),
        ("3/8", "5/12"),
        ("-1/2", "1/3"),
        ("7/16", "-7/16"),
        ("2/8", "6/4"),
        ("0/1", "9/10"),
        ("1/-3", "1/6"),
    ],
)
def test_fraction_arithmetic_laws(a, b):
    """Sums stay in lowest terms with a positive denominator and subtraction undoes addition."""
    a = parse_fraction(a)
    b = parse_fraction(b)

    total = a + b

    assert total.denominator > 0
    assert gcd(total.numerator, total.denominator) == 1
    assert total - b == a
    assert a + b == b + a
    assert format_fraction(total) == f"{total.numerator}/{total.denominator}"


def test_format_fraction():
    assert format_fraction(Fraction(3, 4)) == "3/4"
    assert format_fraction(Fraction(0)) == "0/1"
    assert format_fraction(Fraction(2, 4)) == "1/2"


def test_closest_fraction_snaps_single_precision_values():
    """Engraver floats land on the intended grid position."""
    assert closest_fraction(0.0833333358) == Fraction(1, 12)
    assert closest_fraction(0.25) == Fraction(1, 4)
    assert closest_fraction(1 / 3) == Fraction(1, 3)


def test_closest_fraction_is_deterministic():
    assert closest_fraction(0.1234567) == closest_fraction(0.1234567)


def test_closest_fraction_respects_grid():
    assert closest_fraction(0.26, max_denominator=4) == Fraction(1, 4)
    assert closest_fraction(0.3).denominator <= 256


def test_fraction_pair():
    assert fraction_pair(Fraction(3, 8)) == (3, 8)
    assert fraction_pair(Fraction(0)) == (0, 1)
    assert fraction_pair(None) == OPEN_ENDPOINT == (-1, -1)
