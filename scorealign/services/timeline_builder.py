"""Build the exact score timeline from an engraving timemap."""

import logging
from bisect import bisect_left
from fractions import Fraction
from typing import Iterable, List, Optional, Tuple

from scorealign.core.errors import MalformedNoteError
from scorealign.core.fraction import closest_fraction, parse_fraction
from scorealign.schemas.timeline import MeterChange, NoteEvent, ScoreTimeline, TimemapRecord

logger = logging.getLogger(__name__)

# scoreTimeTiedDuration value of a note continuing a tie
MID_TIE = -1


def _event_order(event: NoteEvent) -> Tuple[Fraction, bool, int]:
    # Releases sort before onsets at the same position
    return event.cumulative, event.is_onset, event.pitch


class ScoreTimelineBuilder:
    """
    Turn engraver timemap records into ordered note events and a meter map.

    The engraver reports times as floats in quarter notes relative to the
    measure. They are quantized to Fractions of a whole note, ties are
    folded into their leading note, a release is synthesized for every
    onset, and a pickup measure is renumbered to measure 0.
    """

    def __init__(
        self,
        max_denominator: int = 256,
        min_pitch: int = 21,
        max_pitch: int = 108,
        default_meter: str = "4/4",
    ):
        """
        Args:
            max_denominator: Quantization grid for timemap values
            min_pitch: Lowest accepted MIDI pitch
            max_pitch: Highest accepted MIDI pitch
            default_meter: Signature assumed when the first measure has none
        """
        self.max_denominator = max_denominator
        self.min_pitch = min_pitch
        self.max_pitch = max_pitch
        self.default_meter = parse_fraction(default_meter)

    def build(self, records: Iterable[TimemapRecord], has_pickup: bool = False) -> ScoreTimeline:
        """
        Build the score timeline.

        Args:
            records: Timemap records in engraver order
            has_pickup: Whether measure 1 is an anacrusis

        Returns:
            ScoreTimeline with meter changes, sorted events and measure starts
        """
        records = list(records)
        meters = self._meters_by_measure(records)
        logger.info(f"Building timeline from {len(records)} timemap records, {len(meters)} measures")

        meter_changes = self._meter_changes(meters, has_pickup)
        measure_starts = self._measure_starts(meters)

        onsets, skipped = self._extract_onsets(records, measure_starts)
        releases = [self._release_for(onset, measure_starts) for onset in onsets]
        events = sorted(onsets + releases, key=_event_order)

        if has_pickup and len(meters) > 1:
            events, measure_starts = self._remap_pickup(events, measure_starts, meters[0])

        if skipped:
            logger.warning(f"Skipped {len(skipped)} malformed notes")
        logger.info(f"Timeline complete: {len(onsets)} notes, {len(meter_changes)} meter changes")

        return ScoreTimeline(
            meter_changes=meter_changes,
            events=events,
            measure_starts=measure_starts,
            has_pickup=has_pickup,
            skipped_notes=skipped,
        )

    def _meters_by_measure(self, records: List[TimemapRecord]) -> List[Fraction]:
        """Signature in effect for each measure, index 0 being measure 1."""
        if not records:
            return []

        explicit = {}
        for record in records:
            if record.meter_signature is None or record.measure_index in explicit:
                continue
            # Verovio may prefix the count, e.g. "4 4/4"
            text = record.meter_signature.strip().split(" ")[-1]
            try:
                explicit[record.measure_index] = parse_fraction(text)
            except MalformedNoteError as e:
                logger.warning(f"Ignoring meter signature in measure {record.measure_index}: {e}")

        measure_count = max(max(r.measure_index for r in records), 1)
        if 1 not in explicit:
            logger.warning(f"No meter signature in measure 1, assuming {self.default_meter}")

        meters = []
        current = self.default_meter
        for measure in range(1, measure_count + 1):
            current = explicit.get(measure, current)
            meters.append(current)
        return meters

    def _meter_changes(self, meters: List[Fraction], has_pickup: bool) -> List[MeterChange]:
        offset = 1 if has_pickup else 0
        changes = []
        for m, signature in enumerate(meters):
            if m == 0 or signature != meters[m - 1]:
                changes.append(MeterChange(measure_index=m + 1 - offset, signature=signature))
        return changes

    def _measure_starts(self, meters: List[Fraction]) -> List[Fraction]:
        """Cumulative position of each measure start, plus the end of the piece."""
        starts = [Fraction(0)]
        for signature in meters:
            starts.append(starts[-1] + signature)
        return starts

    def _extract_onsets(
        self, records: List[TimemapRecord], measure_starts: List[Fraction]
    ) -> Tuple[List[NoteEvent], List[str]]:
        onsets = []
        skipped = []
        for record in records:
            if record.tied_duration == MID_TIE:
                continue
            try:
                onsets.append(self._onset_for(record, measure_starts))
            except MalformedNoteError as e:
                logger.warning(f"Skipping note {record.note_id}: {e}")
                skipped.append(record.note_id)
        return onsets, skipped

    def _onset_for(self, record: TimemapRecord, measure_starts: List[Fraction]) -> NoteEvent:
        if not self.min_pitch <= record.pitch <= self.max_pitch:
            raise MalformedNoteError(
                f"pitch {record.pitch} outside {self.min_pitch}-{self.max_pitch}", record.note_id
            )
        if not 1 <= record.measure_index < len(measure_starts):
            raise MalformedNoteError(f"measure {record.measure_index} out of range", record.note_id)
        if record.tied_duration < 0:
            raise MalformedNoteError(f"tied duration {record.tied_duration}", record.note_id)

        beat = self._quantize(record.raw_onset_time / 4.0, record.note_id)
        duration = self._quantize((record.tied_duration + record.raw_duration) / 4.0, record.note_id)
        if beat < 0 or duration <= 0:
            raise MalformedNoteError(f"onset {beat}, duration {duration}", record.note_id)

        return NoteEvent(
            measure_index=record.measure_index,
            beat=beat,
            cumulative=measure_starts[record.measure_index - 1] + beat,
            duration=duration,
            pitch=record.pitch,
            note_id=record.note_id,
            is_onset=True,
        )

    def _quantize(self, value: float, note_id: Optional[str] = None) -> Fraction:
        try:
            return closest_fraction(value, self.max_denominator)
        except (ValueError, OverflowError) as e:
            raise MalformedNoteError(f"unusable timing value {value}: {e}", note_id)

    def _release_for(self, onset: NoteEvent, measure_starts: List[Fraction]) -> NoteEvent:
        end = onset.cumulative + onset.duration
        last = len(measure_starts) - 1
        m = bisect_left(measure_starts, end)
        if m < last and measure_starts[m] == end:
            measure_index = m + 1
            beat = Fraction(0)
        else:
            # At or past the final barline the release stays in the last measure
            m = min(m, last)
            measure_index = m
            beat = end - measure_starts[m - 1]

        return NoteEvent(
            measure_index=measure_index,
            beat=beat,
            cumulative=end,
            duration=onset.duration,
            pitch=onset.pitch,
            note_id=onset.note_id,
            is_onset=False,
        )

    def _remap_pickup(
        self, events: List[NoteEvent], measure_starts: List[Fraction], nominal: Fraction
    ) -> Tuple[List[NoteEvent], List[Fraction]]:
        """
        Renumber an anacrusis as measure 0 and close the gap it leaves.

        The engraver lays the pickup out from beat 0 of a full measure 1.
        Afterwards measure 1 is the first full measure, starting at the
        actual pickup length.
        """
        actual = self._pickup_length(events, nominal)
        shift = nominal - actual
        logger.info(f"Remapping pickup measure: nominal {nominal}, actual {actual}")

        starts = [measure_starts[0]] + [start - shift for start in measure_starts[1:]]

        remapped = []
        for event in events:
            if event.measure_index > 1:
                update = {
                    "measure_index": event.measure_index - 1,
                    "cumulative": event.cumulative - shift,
                }
            elif event.measure_index == 1 and event.cumulative == actual:
                update = {"measure_index": 1, "beat": Fraction(0)}
            elif event.measure_index == 1:
                update = {"measure_index": 0, "beat": shift + event.cumulative}
            else:
                update = {}
            remapped.append(event.model_copy(update=update))
        return remapped, starts

    def _pickup_length(self, events: List[NoteEvent], nominal: Fraction) -> Fraction:
        """Latest point sounded by a note starting in measure 1, at most a full measure."""
        ends = [e.end for e in events if e.is_onset and e.measure_index == 1]
        if not ends:
            return nominal
        return min(nominal, max(ends))
