"""Tests for score timeline construction."""

from fractions import Fraction

from scorealign.schemas.timeline import MeterChange
from scorealign.services.timeline_builder import ScoreTimelineBuilder


def _summary(timeline):
    return [(e.label, e.cumulative, e.pitch, e.is_onset) for e in timeline.events]


def test_two_quarter_notes(builder, make_record):
    """Onsets and releases come out in score order, releases first."""
    records = [
        make_record("n1", onset=0.0, pitch=60, meter="4/4"),
        make_record("n2", onset=1.0, pitch=64),
    ]

    timeline = builder.build(records)

    assert _summary(timeline) == [
        ("1+0/1", Fraction(0), 60, True),
        ("1+1/4", Fraction(1, 4), 60, False),
        ("1+1/4", Fraction(1, 4), 64, True),
        ("1+1/2", Fraction(1, 2), 64, False),
    ]
    assert timeline.meter_changes == [MeterChange(measure_index=1, signature=Fraction(1))]
    assert timeline.skipped_notes == []
    assert timeline.has_pickup is False


def test_chord_sorted_by_pitch(builder, make_record):
    records = [
        make_record("n1", onset=0.0, pitch=64, meter="4/4"),
        make_record("n2", onset=0.0, pitch=60),
    ]

    timeline = builder.build(records)

    assert [(e.pitch, e.is_onset) for e in timeline.events] == [
        (60, True),
        (64, True),
        (60, False),
        (64, False),
    ]


def test_quarter_notes_across_measures(quarter_timeline, quarter_labels):
    onsets = quarter_timeline.onsets()

    assert [o.label for o in onsets] == quarter_labels
    assert onsets[4].cumulative == Fraction(1)
    assert quarter_timeline.measure_starts == [Fraction(0), Fraction(1), Fraction(2)]


def test_release_on_final_barline_stays_in_last_measure(quarter_timeline):
    """The last release sits at the end of measure 2, not at the start of measure 3."""
    last = quarter_timeline.events[-1]

    assert last.is_onset is False
    assert last.measure_index == 2
    assert last.label == "2+1/1"
    assert last.cumulative == Fraction(2)


def test_release_on_inner_barline_starts_next_measure(builder, make_record):
    records = [
        make_record("n1", onset=2.0, duration=2.0, meter="4/4"),
        make_record("n2", onset=0.0, duration=4.0, measure=2),
    ]

    timeline = builder.build(records)

    release = [e for e in timeline.events if not e.is_onset and e.note_id == "n1"][0]
    assert release.label == "2+0/1"


def test_tied_notes_fold_into_leading_note(builder, make_record):
    """The continuation of a tie is dropped and its length added to the leading note."""
    records = [
        make_record("n1", onset=0.0, duration=1.0, tied=1.0, meter="4/4"),
        make_record("n2", onset=1.0, duration=1.0, tied=-1),
    ]

    timeline = builder.build(records)

    assert _summary(timeline) == [
        ("1+0/1", Fraction(0), 60, True),
        ("1+1/2", Fraction(1, 2), 60, False),
    ]
    assert timeline.events[0].duration == Fraction(1, 2)
    assert timeline.skipped_notes == []


def test_malformed_notes_are_skipped(builder, make_record):
    records = [
        make_record("ok", onset=0.0, meter="4/4"),
        make_record("low", onset=1.0, pitch=20),
        make_record("high", onset=1.0, pitch=109),
        make_record("badtie", onset=2.0, tied=-0.5),
        make_record("empty", onset=2.0, duration=0.0),
        make_record("nan", onset=float("nan")),
    ]

    timeline = builder.build(records)

    assert [e.note_id for e in timeline.events] == ["ok", "ok"]
    assert timeline.skipped_notes == ["low", "high", "badtie", "empty", "nan"]


def test_custom_pitch_range(make_record):
    builder = ScoreTimelineBuilder(min_pitch=0, max_pitch=127)

    timeline = builder.build([make_record("low", onset=0.0, pitch=20, meter="4/4")])

    assert len(timeline.onsets()) == 1


def test_meter_changes(builder, make_record):
    records = [
        make_record("n1", onset=0.0, duration=4.0, meter="4/4"),
        make_record("n2", onset=0.0, duration=3.0, measure=2, meter="3/4"),
        make_record("n3", onset=0.0, duration=3.0, measure=3),
    ]

    timeline = builder.build(records)

    assert timeline.meter_changes == [
        MeterChange(measure_index=1, signature=Fraction(1)),
        MeterChange(measure_index=2, signature=Fraction(3, 4)),
    ]
    assert timeline.measure_starts == [Fraction(0), Fraction(1), Fraction(7, 4), Fraction(5, 2)]
    assert [e.label for e in timeline.events if e.note_id == "n3"] == ["3+0/1", "3+3/4"]


def test_repeated_meter_is_not_a_change(builder, make_record):
    records = [
        make_record("n1", onset=0.0, duration=4.0, meter="4/4"),
        make_record("n2", onset=0.0, duration=4.0, measure=2, meter="4/4"),
    ]

    assert len(builder.build(records).meter_changes) == 1


def test_meter_with_count_prefix(builder, make_record):
    records = [make_record("n1", onset=0.0, duration=2.0, meter="2 2/4")]

    timeline = builder.build(records)

    assert timeline.meter_changes[0].signature == Fraction(1, 2)


def test_missing_meter_uses_default(make_record):
    builder = ScoreTimelineBuilder(default_meter="3/4")

    timeline = builder.build([make_record("n1", onset=0.0)])

    assert timeline.meter_changes == [MeterChange(measure_index=1, signature=Fraction(3, 4))]


def test_empty_timemap(builder):
    timeline = builder.build([])

    assert timeline.events == []
    assert timeline.meter_changes == []


def test_pickup_is_renumbered_to_measure_zero(builder, make_record):
    """A one-beat anacrusis becomes measure 0 and measure 1 starts after it."""
    records = [
        make_record("n1", onset=0.0, duration=1.0, meter="4/4"),
        make_record("n2", onset=0.0, duration=4.0, measure=2, pitch=62),
    ]

    timeline = builder.build(records, has_pickup=True)

    assert _summary(timeline) == [
        ("0+3/4", Fraction(0), 60, True),
        ("1+0/1", Fraction(1, 4), 60, False),
        ("1+0/1", Fraction(1, 4), 62, True),
        ("1+1/1", Fraction(5, 4), 62, False),
    ]
    assert timeline.has_pickup is True
    assert timeline.meter_changes == [MeterChange(measure_index=0, signature=Fraction(1))]
    assert timeline.measure_starts == [Fraction(0), Fraction(1, 4), Fraction(5, 4)]


def test_full_length_pickup_keeps_cumulative_positions(builder, make_record):
    records = [make_record(f"a{i}", onset=float(i), meter="4/4" if i == 0 else None) for i in range(4)]
    records.append(make_record("b", onset=0.0, duration=4.0, measure=2))

    plain = builder.build(records)
    timeline = builder.build(records, has_pickup=True)

    assert [e.cumulative for e in timeline.events] == [e.cumulative for e in plain.events]
    onsets = timeline.onsets()
    assert [o.label for o in onsets] == ["0+0/1", "0+1/4", "0+1/2", "0+3/4", "1+0/1"]


def test_pickup_ignored_for_single_measure(builder, make_record):
    records = [make_record("n1", onset=0.0, meter="4/4")]

    timeline = builder.build(records, has_pickup=True)

    assert timeline.onsets()[0].label == "1+0/1"


def test_musical_events_group_chords(builder, make_record):
    """A chord is one musical event lasting until the next position."""
    records = [
        make_record("n1", onset=0.0, duration=1.0, pitch=60, meter="4/4"),
        make_record("n2", onset=0.0, duration=2.0, pitch=64),
        make_record("n3", onset=2.0, duration=1.0, pitch=67),
    ]

    events = builder.build(records).musical_events()

    assert [(e.label, e.cumulative, e.duration) for e in events] == [
        ("1+0/1", Fraction(0), Fraction(1, 2)),
        ("1+1/2", Fraction(1, 2), Fraction(1, 4)),
    ]


def test_every_onset_has_one_matching_release(builder, make_record):
    """Ties, chords, a meter change and a pickup still pair each onset with its release."""
    records = [
        make_record("pickup", onset=0.0, pitch=67, meter="3/4"),
        make_record("c1", onset=0.0, measure=2, pitch=60),
        make_record("c2", onset=0.0, measure=2, pitch=64),
        make_record("c3", onset=0.0, measure=2, pitch=67),
        make_record("tie-start", onset=1.0, duration=2.0, measure=2, pitch=62, tied=1.0),
        make_record("tie-end", onset=0.0, measure=3, pitch=62, meter="2/4", tied=-1),
        make_record("d1", onset=1.0, measure=3, pitch=65),
        make_record("d2", onset=1.0, measure=3, pitch=69),
    ]

    timeline = builder.build(records, has_pickup=True)

    onsets = [e for e in timeline.events if e.is_onset]
    releases = [e for e in timeline.events if not e.is_onset]
    assert sorted(e.note_id for e in onsets) == ["c1", "c2", "c3", "d1", "d2", "pickup", "tie-start"]
    assert len(releases) == len(onsets)
    for onset in onsets:
        matches = [e for e in releases if e.note_id == onset.note_id]
        assert len(matches) == 1
        assert matches[0].pitch == onset.pitch
        assert matches[0].cumulative == onset.cumulative + onset.duration
    assert timeline.meter_changes == [
        MeterChange(measure_index=0, signature=Fraction(3, 4)),
        MeterChange(measure_index=2, signature=Fraction(1, 2)),
    ]
