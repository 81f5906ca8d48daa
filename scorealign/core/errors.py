"""Exception types raised by the score alignment core."""


class ScoreAlignError(Exception):
    """Base class for all score alignment errors."""


class FatalInitError(ScoreAlignError):
    """The engraving toolkit or its resources could not be initialised."""


class MalformedNoteError(ScoreAlignError):
    """A single note or timing value could not be used.

    Raised per note and handled locally: the note is skipped and the
    rest of the batch carries on.
    """

    def __init__(self, message: str, note_id: str | None = None):
        super().__init__(message)
        self.note_id = note_id


class IntegrityError(ScoreAlignError):
    """A displayed alignment label has no counterpart in the score."""

    def __init__(self, label: str):
        super().__init__(f"Alignment label {label!r} not found in score")
        self.label = label


class PluginDispatchError(ScoreAlignError):
    """An alignment computation could not be started."""


class ArtifactWriteError(ScoreAlignError):
    """Score artifacts could not be written; nothing was left behind."""


class InvalidTransitionError(ScoreAlignError):
    """An alignment session operation was called in the wrong state."""


class MissingAudioError(ScoreAlignError):
    """An operation needs a recording and none is loaded."""
