"""Request and response bodies of the HTTP surface."""

from typing import List, Optional

from pydantic import BaseModel, Field

from scorealign.schemas.alignment import AlignmentEntry, Onset, TempoSample
from scorealign.schemas.timeline import MeterChange, TimemapRecord


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str
    version: str
    alignment_transforms: List[str] = Field(default_factory=list)


class TimelineBuildRequest(BaseModel):
    """Timemap records of a score, as produced by the engraving toolkit."""

    records: List[TimemapRecord]
    has_pickup: bool = False


class MeiBuildRequest(BaseModel):
    """An MEI document to read through Verovio."""

    mei: str = Field(..., min_length=1)
    has_pickup: bool = False


class TimelineBuildResponse(BaseModel):
    """Summary of a built and persisted score timeline."""

    score_id: str
    note_count: int
    event_count: int
    meter_changes: List[MeterChange]
    has_pickup: bool
    skipped_notes: List[str]


class AudioRequest(BaseModel):
    audio_id: str = Field(..., min_length=1)
    sample_rate: float = Field(..., gt=0)


class PartialAlignmentRequest(BaseModel):
    """
    Bounds of a partial alignment.

    Score positions are whole-note offsets from the start of the piece as
    ``num/den`` strings; omitted positions and frames of -1 are open.
    """

    score_start: Optional[str] = None
    score_end: Optional[str] = None
    audio_frame_start: int = Field(default=-1, ge=-1)
    audio_frame_end: int = Field(default=-1, ge=-1)


class AlignmentStarted(BaseModel):
    model_id: str
    state: str


class SessionResponse(BaseModel):
    """Snapshot of the alignment session."""

    state: str
    score_id: str
    audio_id: Optional[str] = None
    sample_rate: Optional[float] = None
    displayed: List[Onset] = Field(default_factory=list)
    tempo: List[TempoSample] = Field(default_factory=list)
    entries: List[AlignmentEntry] = Field(default_factory=list)
    integrity_error: Optional[str] = Field(
        default=None, description="Displayed label missing from the score, if any"
    )


class MoveOnsetRequest(BaseModel):
    label: str = Field(..., description="Score label, e.g. '3+1/4'")
    frame: int = Field(..., ge=0)
