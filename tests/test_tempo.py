"""Tests for tempo curve computation."""

from fractions import Fraction

import pytest

from scorealign.schemas.alignment import AlignmentEntry
from scorealign.services.tempo import TempoCurveBuilder

QUARTER = Fraction(1, 4)


def _entries(*frames):
    return [AlignmentEntry(label=f"e{i}", frame=frame) for i, frame in enumerate(frames)]


def test_steady_tempo():
    """Quarter notes half a second apart are 120 BPM."""
    builder = TempoCurveBuilder(sample_rate=1000)

    samples = builder.build(_entries(0, 500, 1000), [QUARTER] * 3)

    assert [(s.frame, s.tempo) for s in samples] == [(0, 120.0), (500, 120.0)]


def test_duration_scales_tempo():
    builder = TempoCurveBuilder(sample_rate=44100)

    samples = builder.build(_entries(0, 44100), [Fraction(1, 2), QUARTER])

    # A half note lasting one second
    assert samples[0].tempo == pytest.approx(120.0)


def test_unaligned_pairs_are_skipped():
    builder = TempoCurveBuilder(sample_rate=1000)

    samples = builder.build(_entries(0, -1, 1000, 1250), [QUARTER] * 4)

    assert [(s.frame, s.tempo) for s in samples] == [(1000, 240.0)]


def test_zero_delta_is_skipped():
    builder = TempoCurveBuilder(sample_rate=1000)

    samples = builder.build(_entries(0, 0, 500), [QUARTER] * 3)

    assert [s.frame for s in samples] == [0]


def test_too_few_entries():
    builder = TempoCurveBuilder(sample_rate=1000)

    assert builder.build(_entries(0), [QUARTER]) == []
    assert builder.build([], []) == []
