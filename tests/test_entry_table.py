"""Tests for the alignment entry table."""

import pytest

from scorealign.core.errors import IntegrityError
from scorealign.schemas.alignment import Onset
from scorealign.services.entry_table import AlignmentEntryTable


@pytest.fixture
def table(quarter_timeline):
    table = AlignmentEntryTable()
    table.reset(quarter_timeline.onsets())
    return table


def test_reset(table, quarter_labels):
    """Every onset label appears once, unaligned."""
    assert table.labels() == quarter_labels
    assert table.frames() == [-1] * 8
    assert len(table) == 8
    assert "1+1/4" in table
    assert "3+0/1" not in table


def test_reset_collapses_chords(builder, make_record):
    timeline = builder.build(
        [
            make_record("n1", onset=0.0, pitch=60, meter="4/4"),
            make_record("n2", onset=0.0, pitch=64),
            make_record("n3", onset=1.0, pitch=67),
        ]
    )
    table = AlignmentEntryTable()
    table.reset(timeline.onsets())

    assert table.labels() == ["1+0/1", "1+1/4"]


def test_synchronize(table):
    table.synchronize([Onset(frame=100, label="1+0/1"), Onset(frame=900, label="2+0/1")])

    assert table.frames() == [100, -1, -1, -1, 900, -1, -1, -1]
    assert table.entries[0].is_aligned
    assert not table.entries[1].is_aligned


def test_synchronize_unknown_label_leaves_table_untouched(table):
    """A single bad label fails the whole update."""
    table.synchronize([Onset(frame=50, label="1+0/1")])

    with pytest.raises(IntegrityError) as exc_info:
        table.synchronize([Onset(frame=100, label="1+1/4"), Onset(frame=200, label="9+0/1")])

    assert exc_info.value.label == "9+0/1"
    assert table.frames() == [50, -1, -1, -1, -1, -1, -1, -1]


def test_reset_frames(table):
    table.synchronize([Onset(frame=100, label="1+0/1")])
    table.reset_frames()

    assert table.frames() == [-1] * 8
    assert len(table) == 8
