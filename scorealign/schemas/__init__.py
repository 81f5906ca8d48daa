"""Pydantic schemas for timelines, alignments and the HTTP surface."""

from scorealign.schemas.timeline import (
    MeterChange,
    MusicalEvent,
    NoteEvent,
    ScoreTimeline,
    TimemapRecord,
    measure_label,
)
from scorealign.schemas.alignment import AlignmentEntry, AlignmentRequest, Onset, TempoSample

__all__ = [
    "MeterChange",
    "MusicalEvent",
    "NoteEvent",
    "ScoreTimeline",
    "TimemapRecord",
    "measure_label",
    "AlignmentEntry",
    "AlignmentRequest",
    "Onset",
    "TempoSample",
]
