"""Alignment session: run, review, accept and reject score alignments."""

import asyncio
import logging
from concurrent.futures import CancelledError, Future
from dataclasses import dataclass
from fractions import Fraction
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, List, NoReturn, Optional, Tuple

from scorealign.core.errors import (
    IntegrityError,
    InvalidTransitionError,
    MissingAudioError,
    PluginDispatchError,
)
from scorealign.core.fraction import fraction_pair
from scorealign.core.state_machine import SessionEvent, SessionState, validate_transition
from scorealign.schemas.alignment import UNALIGNED, UNBOUNDED_TIME, AlignmentRequest, Onset, TempoSample
from scorealign.schemas.timeline import MusicalEvent, ScoreTimeline
from scorealign.services import alignment_csv
from scorealign.services.entry_table import AlignmentEntryTable
from scorealign.services.onset_timeline import OnsetTimeline
from scorealign.services.plugins import (
    AlignmentPlugin,
    AlignmentTransformCache,
    InitError,
    PluginRegistry,
    StartFailure,
    WrongShape,
)
from scorealign.services.tempo import TempoCurveBuilder

logger = logging.getLogger(__name__)

Listener = Callable[[SessionEvent, Dict[str, Any]], None]


@dataclass
class CompletionMessage:
    """Outcome of a plugin computation, delivered to the session."""

    model_id: str
    onsets: Optional[List[Onset]] = None
    error: Optional[str] = None


class AlignmentSession:
    """
    Alignment of one score against one recording.

    A computation is started with begin_alignment or
    begin_partial_alignment. While it runs the session is AWAITING_RESULT;
    once the plugin completes, the candidate onsets are pending in
    READY_FOR_REVIEW and can be accepted (merged into the accepted
    timeline) or rejected. Only one computation may be outstanding.

    Session methods are not thread-safe. Completions arriving on worker
    threads are handed to ``loop`` when one is given, otherwise applied
    in the calling thread.
    """

    def __init__(
        self,
        registry: PluginRegistry,
        cache: Optional[AlignmentTransformCache] = None,
        transform_id: str = "",
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.registry = registry
        self.cache = cache or AlignmentTransformCache(registry)
        self.transform_id = transform_id
        self.loop = loop
        self._listeners: List[Listener] = []

        self.score_id = ""
        self.musical_events: List[MusicalEvent] = []
        self.entries = AlignmentEntryTable()
        self._clear()

    def _clear(self) -> None:
        self.state = SessionState.IDLE
        self.audio_id: Optional[str] = None
        self.sample_rate: Optional[float] = None

        self.accepted: Optional[OnsetTimeline] = None
        self.pending: Optional[OnsetTimeline] = None
        self.pending_model_id: Optional[str] = None
        self.overlap_start = -1
        self.overlap_end = -1

        self.tempo_curve: List[TempoSample] = []
        self.integrity_error: Optional[str] = None
        self.entries.reset_frames()

    # Listeners

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _emit(self, event: SessionEvent, **payload: Any) -> None:
        for listener in list(self._listeners):
            listener(event, payload)

    # Setup

    @property
    def displayed(self) -> Optional[OnsetTimeline]:
        """The pending timeline while one exists, otherwise the accepted one."""
        return self.pending if self.pending is not None else self.accepted

    def set_audio(self, audio_id: str, sample_rate: float) -> None:
        """Set the recording that alignments are made against."""
        if sample_rate <= 0:
            raise ValueError(f"Invalid sample rate {sample_rate}")
        logger.info(f"Session audio set to {audio_id} at {sample_rate} Hz")
        self.audio_id = audio_id
        self.sample_rate = sample_rate
        self._recalculate_tempo()

    def unset_audio(self) -> None:
        """Drop the recording and every alignment made against it."""
        had_pending = self.pending is not None
        self._clear()
        if had_pending:
            self._emit(SessionEvent.REJECTED)

    def set_score(self, score_id: str, timeline: ScoreTimeline) -> None:
        """Set the score and rebuild the canonical label table from it."""
        logger.info(f"Session score set to {score_id}")
        self.score_id = score_id
        self.musical_events = timeline.musical_events()
        self.entries.reset(timeline.onsets())
        self._recalculate_tempo()

    def set_transform_id(self, transform_id: str) -> None:
        logger.info(f"Alignment transform set to {transform_id!r}")
        self.transform_id = transform_id

    # State

    def _transition(self, next_state: SessionState) -> None:
        is_valid, error = validate_transition(self.state.value, next_state.value)
        if not is_valid:
            raise InvalidTransitionError(error)
        logger.debug(f"Session state {self.state.value} -> {next_state.value}")
        self.state = next_state

    def _require_state(self, state: SessionState, operation: str) -> None:
        if self.state is not state:
            raise InvalidTransitionError(
                f"{operation} requires state {state.value}, session is {self.state.value}"
            )

    # Alignment runs

    def begin_alignment(self) -> str:
        """Align the whole score against the whole recording."""
        return self.begin_partial_alignment(None, None, -1, -1)

    def begin_partial_alignment(
        self,
        score_start: Optional[Fraction],
        score_end: Optional[Fraction],
        audio_frame_start: int = -1,
        audio_frame_end: int = -1,
    ) -> str:
        """
        Start aligning part of the score against part of the recording.

        Args:
            score_start: Score position to start from, None for the beginning
            score_end: Score position to stop at, None for the end
            audio_frame_start: First audio frame, -1 for the beginning
            audio_frame_end: Last audio frame, -1 for the end

        Returns:
            Model id of the pending computation

        Raises:
            MissingAudioError: If no audio is loaded
            PluginDispatchError: If the plugin cannot run
            InvalidTransitionError: If a computation is already outstanding
        """
        transform_id, plugin = self._resolve_plugin()
        return self._dispatch(transform_id, plugin, score_start, score_end, audio_frame_start, audio_frame_end)

    async def begin_checked_alignment(
        self,
        score_start: Optional[Fraction] = None,
        score_end: Optional[Fraction] = None,
        audio_frame_start: int = -1,
        audio_frame_end: int = -1,
    ) -> str:
        """Like begin_partial_alignment, awaiting the plugin's readiness check before dispatch."""
        transform_id, plugin = self._resolve_plugin()
        failure = await plugin.check_ready()
        if failure is not None:
            self._report_start_failure(transform_id, failure)

        # Another request may have started while the check was running
        self._check_can_start()
        return self._dispatch(transform_id, plugin, score_start, score_end, audio_frame_start, audio_frame_end)

    def _check_can_start(self) -> None:
        if self.sample_rate is None:
            raise MissingAudioError("No audio loaded; one should have been set first")
        self._require_state(SessionState.IDLE, "Starting an alignment")

    def _resolve_plugin(self) -> Tuple[str, AlignmentPlugin]:
        self._check_can_start()

        transform_id = self.transform_id or self.cache.default_choice()
        if not transform_id:
            self._fail_to_run("No suitable score alignment plugin found")

        plugin = self.registry.create(transform_id)
        if plugin is None:
            self._fail_to_run(f"Score alignment plugin {transform_id!r} not found")
        return transform_id, plugin

    def _dispatch(
        self,
        transform_id: str,
        plugin: AlignmentPlugin,
        score_start: Optional[Fraction],
        score_end: Optional[Fraction],
        audio_frame_start: int,
        audio_frame_end: int,
    ) -> str:
        request = AlignmentRequest(
            score_program=self.score_id,
            score_range_start=fraction_pair(score_start),
            score_range_end=fraction_pair(score_end),
            audio_time_start=self._frame_to_time(audio_frame_start),
            audio_time_end=self._frame_to_time(audio_frame_end),
        )
        logger.info(
            f"Beginning alignment with {transform_id}: score {request.score_range_start} to "
            f"{request.score_range_end}, audio {request.audio_time_start} to {request.audio_time_end}"
        )

        result = plugin.start(request)
        if isinstance(result, (InitError, WrongShape)):
            self._report_start_failure(transform_id, result)

        self.overlap_start = audio_frame_start
        self.overlap_end = audio_frame_end
        self.pending = OnsetTimeline()
        self.pending_model_id = result.model_id
        self._transition(SessionState.AWAITING_RESULT)

        result.future.add_done_callback(partial(self._deliver, result.model_id))
        return result.model_id

    def _report_start_failure(self, transform_id: str, failure: StartFailure) -> NoReturn:
        if isinstance(failure, InitError):
            self._fail_to_run(f"Unable to initialise score alignment plugin {transform_id!r}: {failure.message}")
        self._fail_to_run(
            f"Score alignment plugin {transform_id!r} did not produce the expected output format: "
            f"{failure.message}"
        )

    def _fail_to_run(self, message: str) -> NoReturn:
        logger.error(message)
        self._emit(SessionEvent.FAILED_TO_RUN, message=message)
        raise PluginDispatchError(message)

    def _frame_to_time(self, frame: int) -> float:
        if frame == -1:
            return UNBOUNDED_TIME
        return frame / self.sample_rate

    def _deliver(self, model_id: str, future: Future) -> None:
        """Future callback, possibly on a worker thread."""
        try:
            message = CompletionMessage(model_id=model_id, onsets=future.result())
        except CancelledError:
            message = CompletionMessage(model_id=model_id, error="Alignment computation was cancelled")
        except Exception as e:
            message = CompletionMessage(model_id=model_id, error=str(e))

        if self.loop is None:
            self.handle_completion(message)
            return
        try:
            self.loop.call_soon_threadsafe(self.handle_completion, message)
        except RuntimeError:
            # The loop closed during shutdown
            logger.info(f"Dropping completion of alignment model {model_id}: event loop is closed")

    def handle_completion(self, message: CompletionMessage) -> None:
        """Apply a finished computation. Must run in the session's thread."""
        if self.state is not SessionState.AWAITING_RESULT or message.model_id != self.pending_model_id:
            logger.info(f"Ignoring completion of stale alignment model {message.model_id}")
            return

        if message.error is not None:
            logger.error(f"Alignment computation {message.model_id} failed: {message.error}")
            self.pending = None
            self.pending_model_id = None
            self._transition(SessionState.IDLE)
            self._recalculate_tempo()
            self._emit(SessionEvent.FAILED_TO_RUN, message=message.error)
            return

        self.pending.replace_all(message.onsets or [])
        self._transition(SessionState.READY_FOR_REVIEW)
        logger.info(f"Alignment {message.model_id} ready for review: {len(self.pending)} onsets")

        self._recalculate_tempo()
        self._emit(SessionEvent.READY_FOR_REVIEW, model_id=message.model_id)

    def accept_alignment(self) -> None:
        """Make the pending alignment the accepted one."""
        self._require_state(SessionState.READY_FOR_REVIEW, "Accepting an alignment")

        if self.accepted is not None and self.overlap_end >= 0:
            merge_timelines(self.accepted, self.pending, self.overlap_start, self.overlap_end)

        self.accepted = self.pending
        self.pending = None
        self.pending_model_id = None
        self._transition(SessionState.IDLE)

        self._recalculate_tempo()
        self._emit(SessionEvent.ACCEPTED)

    def reject_alignment(self) -> None:
        """
        Discard the pending alignment and restore the accepted one.

        The plugin's work is not stopped; only its result is dropped.
        """
        self._require_state(SessionState.READY_FOR_REVIEW, "Rejecting an alignment")

        self.pending = None
        self.pending_model_id = None
        self._transition(SessionState.IDLE)

        self._recalculate_tempo()
        self._emit(SessionEvent.REJECTED)

    # Editing

    def move_onset(self, label: str, frame: int) -> None:
        """Move (or add) the accepted onset for a label."""
        self._require_state(SessionState.IDLE, "Editing an alignment")
        if label not in self.entries:
            raise IntegrityError(label)

        if self.accepted is None:
            self.accepted = OnsetTimeline()
        existing = self.accepted.find(label)
        if existing is not None:
            self.accepted.remove(existing)
        self.accepted.add(Onset(frame=frame, label=label))

        self._recalculate_tempo()
        self._emit(SessionEvent.MODIFIED, label=label, frame=frame)

    # Entries and tempo

    def synchronize_entries(self) -> None:
        """
        Bring entry frames in line with the displayed timeline.

        Raises:
            IntegrityError: If a displayed label is not in the score
        """
        displayed = self.displayed
        onsets = displayed.all() if displayed is not None else []
        self.entries.synchronize(onsets)

        # Entries the displayed timeline no longer covers are unaligned
        labels = {onset.label for onset in onsets}
        for entry in self.entries.entries:
            if entry.label not in labels:
                entry.frame = UNALIGNED

    def _recalculate_tempo(self) -> None:
        self.tempo_curve = []
        if self.sample_rate is None:
            return

        try:
            self.synchronize_entries()
            self.integrity_error = None
        except IntegrityError as e:
            logger.error(f"Cannot compute tempo: {e}")
            self.integrity_error = e.label
            return

        durations = [event.duration for event in self.musical_events]
        self.tempo_curve = TempoCurveBuilder(self.sample_rate).build(self.entries.entries, durations)

    # Import and export

    def _require_audio(self) -> float:
        if self.sample_rate is None:
            raise MissingAudioError("No audio loaded, nothing for the alignment to be against")
        return self.sample_rate

    def export_alignment(self, path: Path) -> Path:
        """
        Export the displayed alignment as CSV.

        Raises:
            MissingAudioError: If no audio is loaded
            IntegrityError: If the displayed alignment does not match the score
        """
        sample_rate = self._require_audio()
        self.synchronize_entries()
        return alignment_csv.export_alignment(self.entries.entries, sample_rate, path)

    def export_alignment_text(self) -> str:
        sample_rate = self._require_audio()
        self.synchronize_entries()
        return alignment_csv.format_alignment_csv(self.entries.entries, sample_rate)

    def import_alignment(self, path: Path) -> None:
        """Replace the accepted alignment with one read from a CSV file."""
        sample_rate = self._require_audio()
        self.load_onsets(alignment_csv.import_alignment(path, sample_rate))

    def import_alignment_text(self, text: str) -> None:
        sample_rate = self._require_audio()
        self.load_onsets(alignment_csv.parse_alignment_csv(text, sample_rate))

    def load_onsets(self, onsets: List[Onset]) -> None:
        """
        Replace the accepted alignment with the given onsets.

        Raises:
            InvalidTransitionError: If an alignment is running or under review
            IntegrityError: If an onset's label is not in the score
        """
        self._require_state(SessionState.IDLE, "Importing an alignment")
        for onset in onsets:
            if onset.label not in self.entries:
                raise IntegrityError(onset.label)

        if self.accepted is None:
            self.accepted = OnsetTimeline()
        self.accepted.replace_all(onsets)

        self._recalculate_tempo()
        self._emit(SessionEvent.ACCEPTED)


def merge_timelines(source: OnsetTimeline, target: OnsetTimeline, overlap_start: int, overlap_end: int) -> None:
    """
    Copy onsets outside [overlap_start, overlap_end) from source into target.

    ``target`` holds only the newly computed onsets for the overlap; the
    frame ``overlap_end`` itself belongs to the region after it.
    """
    for onset in source:
        if onset.frame < overlap_start or onset.frame >= overlap_end:
            target.add(onset)
