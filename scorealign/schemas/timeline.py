"""Score timeline models: timemap input, meter changes and note events."""

from fractions import Fraction
from typing import Annotated, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer

from scorealign.core.errors import MalformedNoteError
from scorealign.core.fraction import format_fraction, parse_fraction


def _validate_fraction(value) -> Fraction:
    """Parse Fraction from string, tuple or number."""
    try:
        return parse_fraction(value)
    except MalformedNoteError as e:
        raise ValueError(str(e))


# Exact musical time, serialized as "num/den"
RationalTime = Annotated[
    Fraction,
    BeforeValidator(_validate_fraction),
    PlainSerializer(format_fraction, return_type=str),
]


def measure_label(measure_index: int, beat: Fraction) -> str:
    """Canonical label for a score position, e.g. '3+1/4'."""
    return f"{measure_index}+{beat.numerator}/{beat.denominator}"


class TimemapRecord(BaseModel):
    """
    One note as reported by the engraving toolkit, before quantization.

    Times are in quarter notes relative to the start of the measure.
    """

    raw_onset_time: float
    raw_duration: float
    tied_duration: float = Field(
        default=0.0,
        description="-1 marks the non-leading half of a tie, otherwise added to the duration",
    )
    measure_index: int = Field(..., description="Measure number (1-indexed)")
    meter_signature: Optional[str] = Field(default=None, description="e.g. '3/4'")
    pitch: int = Field(..., description="MIDI note number")
    note_id: str


class MeterChange(BaseModel):
    """Time signature in effect from a measure onwards."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    measure_index: int
    signature: RationalTime


class NoteEvent(BaseModel):
    """
    Onset or release of a note on the exact score timeline.

    ``beat`` is the position inside the measure and ``cumulative`` the
    position from the start of the piece, both in whole notes.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    measure_index: int = Field(..., ge=0)
    beat: RationalTime
    cumulative: RationalTime
    duration: RationalTime
    pitch: int = Field(..., ge=0, le=127)
    note_id: str
    is_onset: bool = True

    @property
    def label(self) -> str:
        return measure_label(self.measure_index, self.beat)

    @property
    def end(self) -> Fraction:
        return self.cumulative + self.duration


class MusicalEvent(BaseModel):
    """All onsets sharing one score position, as seen by the aligner."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    label: str
    cumulative: RationalTime
    duration: RationalTime = Field(..., description="Score time until the next musical event")


class ScoreTimeline(BaseModel):
    """Result of building a score: meter map plus ordered note events."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    meter_changes: List[MeterChange] = Field(default_factory=list)
    events: List[NoteEvent] = Field(default_factory=list)
    measure_starts: List[RationalTime] = Field(default_factory=list)
    has_pickup: bool = False
    skipped_notes: List[str] = Field(default_factory=list)

    def onsets(self) -> List[NoteEvent]:
        return [e for e in self.events if e.is_onset]

    def musical_events(self) -> List[MusicalEvent]:
        """
        Collapse onsets into one event per label, in score order.

        The duration of each event is the score time to the next one. The
        last event lasts as long as its longest note.
        """
        groups: Dict[str, List[NoteEvent]] = {}
        for onset in self.onsets():
            groups.setdefault(onset.label, []).append(onset)

        labels = list(groups)
        musical_events = []
        for i, label in enumerate(labels):
            notes = groups[label]
            cumulative = notes[0].cumulative
            if i + 1 < len(labels):
                duration = groups[labels[i + 1]][0].cumulative - cumulative
            else:
                duration = max(n.duration for n in notes)
            musical_events.append(
                MusicalEvent(label=label, cumulative=cumulative, duration=duration)
            )
        return musical_events
