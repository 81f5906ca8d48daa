"""Core application modules."""

from scorealign.core.errors import (
    ArtifactWriteError,
    FatalInitError,
    IntegrityError,
    InvalidTransitionError,
    MalformedNoteError,
    MissingAudioError,
    PluginDispatchError,
    ScoreAlignError,
)
from scorealign.core.fraction import closest_fraction, format_fraction, fraction_pair, parse_fraction
from scorealign.core.state_machine import SessionEvent, SessionState, validate_transition

__all__ = [
    "ArtifactWriteError",
    "FatalInitError",
    "IntegrityError",
    "InvalidTransitionError",
    "MalformedNoteError",
    "MissingAudioError",
    "PluginDispatchError",
    "ScoreAlignError",
    "closest_fraction",
    "format_fraction",
    "fraction_pair",
    "parse_fraction",
    "SessionEvent",
    "SessionState",
    "validate_transition",
]
