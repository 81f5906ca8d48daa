"""Alignment models shared by the session, the plugins and the CSV format."""

from typing import Any, Dict, Tuple

from pydantic import BaseModel, ConfigDict, Field

# Frame value of an entry that has not been aligned yet
UNALIGNED = -1

# Audio time passed to the plugin for an unbounded endpoint
UNBOUNDED_TIME = -1.0


class Onset(BaseModel):
    """A time instant in the audio carrying a score label."""

    model_config = ConfigDict(frozen=True)

    frame: int = Field(..., description="Audio sample frame")
    label: str = Field(..., description="Score position, e.g. '3+1/4'")


class AlignmentEntry(BaseModel):
    """One expected score label and the frame it was aligned to."""

    label: str
    frame: int = UNALIGNED

    @property
    def is_aligned(self) -> bool:
        return self.frame >= 0


class TempoSample(BaseModel):
    """Tempo in quarter notes per minute, starting at a frame."""

    frame: int
    tempo: float


class AlignmentRequest(BaseModel):
    """
    Input handed to an alignment plugin.

    Open score endpoints are encoded as (-1, -1) and unbounded audio
    endpoints as -1.0 seconds.
    """

    score_program: str
    score_range_start: Tuple[int, int] = (-1, -1)
    score_range_end: Tuple[int, int] = (-1, -1)
    audio_time_start: float = UNBOUNDED_TIME
    audio_time_end: float = UNBOUNDED_TIME

    def to_parameters(self) -> Dict[str, Any]:
        """Flatten into the plugin parameter map."""
        return {
            "score-position-start-numerator": self.score_range_start[0],
            "score-position-start-denominator": self.score_range_start[1],
            "score-position-end-numerator": self.score_range_end[0],
            "score-position-end-denominator": self.score_range_end[1],
            "audio-start": self.audio_time_start,
            "audio-end": self.audio_time_end,
        }
