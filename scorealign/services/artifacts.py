"""Persisted score timeline artifacts (.meter and .solo files)."""

import logging
import os
import tempfile
from fractions import Fraction
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from scorealign.core.errors import ArtifactWriteError, MalformedNoteError
from scorealign.core.fraction import format_fraction, parse_fraction
from scorealign.schemas.timeline import MeterChange, NoteEvent, ScoreTimeline
from scorealign.services.timeline_builder import ScoreTimelineBuilder
from scorealign.services.timemap_reader import TimemapReader

logger = logging.getLogger(__name__)

METER_SUFFIX = "meter"
SOLO_SUFFIX = "solo"

# Fixed columns of the solo format
SOLO_VELOCITY = 90
ONSET_MARK = 80
RELEASE_MARK = 0


def artifact_paths(directory: Path, score_name: str) -> Tuple[Path, Path]:
    """Paths of the meter and solo files for a score."""
    directory = Path(directory)
    return (
        directory / f"{score_name}.{METER_SUFFIX}",
        directory / f"{score_name}.{SOLO_SUFFIX}",
    )


def format_meter_lines(meter_changes: List[MeterChange]) -> str:
    return "".join(
        f"{change.measure_index}\t{format_fraction(change.signature)}\n" for change in meter_changes
    )


def format_solo_lines(events: List[NoteEvent]) -> str:
    lines = []
    for event in events:
        mark = ONSET_MARK if event.is_onset else RELEASE_MARK
        lines.append(
            f"{event.label}\t{format_fraction(event.cumulative)}\t{SOLO_VELOCITY}\t"
            f"{event.pitch}\t{mark}\t{event.note_id}\n"
        )
    return "".join(lines)


def write_score_artifacts(directory: Path, score_name: str, timeline: ScoreTimeline) -> Tuple[Path, Path]:
    """
    Write the meter and solo files for a score, both or neither.

    Each file is written to a temporary sibling and then moved into place.
    Existing artifacts are moved aside first and only deleted once both
    new files are in place. On any failure, temporaries and any artifact
    already moved into place are removed and the previous pair restored.

    Returns:
        (meter_path, solo_path)

    Raises:
        ArtifactWriteError: If either file could not be written
    """
    directory = Path(directory)
    meter_path, solo_path = artifact_paths(directory, score_name)
    contents = [
        (meter_path, format_meter_lines(timeline.meter_changes)),
        (solo_path, format_solo_lines(timeline.events)),
    ]

    temporaries: List[str] = []
    placed: List[Path] = []
    backups: List[Tuple[Path, Path]] = []
    try:
        directory.mkdir(parents=True, exist_ok=True)
        for target, text in contents:
            fd, temp_name = tempfile.mkstemp(dir=directory, prefix=f".{target.name}.", suffix=".tmp")
            temporaries.append(temp_name)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
        for target, _ in contents:
            if target.exists():
                backup = target.with_name(f".{target.name}.bak")
                os.replace(target, backup)
                backups.append((target, backup))
        for (target, _), temp_name in zip(contents, temporaries):
            os.replace(temp_name, target)
            placed.append(target)
    except OSError as e:
        logger.error(f"Failed to write artifacts for {score_name}: {e}")
        for path in list(placed) + [Path(t) for t in temporaries]:
            try:
                path.unlink()
            except FileNotFoundError:
                pass
        for target, backup in backups:
            try:
                os.replace(backup, target)
            except OSError as restore_error:
                logger.error(f"Failed to restore {target} from {backup}: {restore_error}")
        raise ArtifactWriteError(f"Failed to write artifacts for {score_name}: {e}")

    for _, backup in backups:
        backup.unlink()
    logger.info(f"Wrote meter data to {meter_path} and solo data to {solo_path}")
    return meter_path, solo_path


def read_meter_file(path: Path) -> List[MeterChange]:
    """Parse a .meter file, skipping malformed lines."""
    changes = []
    for number, line in enumerate(Path(path).read_text(encoding="utf-8").splitlines(), 1):
        if not line.strip():
            continue
        try:
            measure, signature = line.split("\t")
            changes.append(MeterChange(measure_index=int(measure), signature=parse_fraction(signature)))
        except (ValueError, MalformedNoteError) as e:
            logger.warning(f"{path}:{number}: skipping malformed meter line: {e}")
    return changes


def _parse_solo_line(line: str) -> Tuple[int, str, str, int, bool, str]:
    label, cumulative, _velocity, pitch, mark, note_id = line.split("\t")
    measure, beat = label.split("+", 1)
    return int(measure), beat, cumulative, int(pitch), int(mark) != RELEASE_MARK, note_id


def read_solo_file(path: Path) -> List[NoteEvent]:
    """
    Parse a .solo file back into note events.

    The file holds no durations; they are recovered by pairing each onset
    with the release of the same note id.
    """
    rows = []
    for number, line in enumerate(Path(path).read_text(encoding="utf-8").splitlines(), 1):
        if not line.strip():
            continue
        try:
            measure, beat, cumulative, pitch, is_onset, note_id = _parse_solo_line(line)
            rows.append(
                (measure, parse_fraction(beat), parse_fraction(cumulative), pitch, is_onset, note_id)
            )
        except (ValueError, MalformedNoteError) as e:
            logger.warning(f"{path}:{number}: skipping malformed solo line: {e}")

    onset_at: Dict[str, Fraction] = {}
    release_at: Dict[str, Fraction] = {}
    for measure, beat, cumulative, pitch, is_onset, note_id in rows:
        (onset_at if is_onset else release_at)[note_id] = cumulative

    events = []
    for measure, beat, cumulative, pitch, is_onset, note_id in rows:
        if note_id not in onset_at or note_id not in release_at:
            logger.warning(f"{path}: note {note_id} lacks an onset or release, skipping")
            continue
        events.append(
            NoteEvent(
                measure_index=measure,
                beat=beat,
                cumulative=cumulative,
                duration=release_at[note_id] - onset_at[note_id],
                pitch=pitch,
                note_id=note_id,
                is_onset=is_onset,
            )
        )
    return events


def load_score_timeline(directory: Path, score_name: str) -> ScoreTimeline:
    """
    Load a previously generated score timeline.

    Raises:
        FileNotFoundError: If either artifact is missing
    """
    meter_path, solo_path = artifact_paths(directory, score_name)
    for path in (meter_path, solo_path):
        if not path.exists():
            raise FileNotFoundError(f"Score artifact not found: {path}")

    meter_changes = read_meter_file(meter_path)
    events = read_solo_file(solo_path)
    return ScoreTimeline(
        meter_changes=meter_changes,
        events=events,
        has_pickup=any(e.measure_index == 0 for e in events),
    )


def generate_score_files(
    directory: Path,
    score_name: str,
    mei_file: str,
    has_pickup: bool = False,
    reader: Optional[TimemapReader] = None,
    builder: Optional[ScoreTimelineBuilder] = None,
) -> ScoreTimeline:
    """
    Read an MEI score, build its timeline and write its artifacts.

    Raises:
        FatalInitError: If Verovio cannot be set up or cannot load the score
        ArtifactWriteError: If the artifacts could not be written
    """
    reader = reader or TimemapReader()
    builder = builder or ScoreTimelineBuilder()

    records = reader.read_file(mei_file)
    timeline = builder.build(records, has_pickup=has_pickup)
    write_score_artifacts(directory, score_name, timeline)
    return timeline
