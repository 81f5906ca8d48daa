"""Alignment export and import in CSV form.

Two layouts are understood:

* ``LABEL,TIME,FRAME`` as exported here. FRAME is the authoritative audio
  sample frame; TIME is derived from it and is not read back.
* ``LABEL,TIME``, with TIME in seconds converted to a frame on import.

Unaligned entries are exported with ``N`` in both the TIME and FRAME
columns.
"""

import csv
import io
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, List

from scorealign.schemas.alignment import AlignmentEntry, Onset

logger = logging.getLogger(__name__)

HEADER = ["LABEL", "TIME", "FRAME"]
PLACEHOLDER = "N"


def format_alignment_csv(entries: Iterable[AlignmentEntry], sample_rate: float) -> str:
    out = io.StringIO()
    writer = csv.writer(out, lineterminator="\n")
    writer.writerow(HEADER)
    for entry in entries:
        if entry.is_aligned:
            writer.writerow([entry.label, f"{entry.frame / sample_rate:g}", entry.frame])
        else:
            writer.writerow([entry.label, PLACEHOLDER, PLACEHOLDER])
    return out.getvalue()


def export_alignment(entries: Iterable[AlignmentEntry], sample_rate: float, path: Path) -> Path:
    """
    Write alignment entries to a CSV file.

    The file is written to a temporary sibling and moved into place, so an
    existing file is never left half-written. A path without suffix gets
    ``.csv``.

    Returns:
        The path written
    """
    path = Path(path)
    if path.suffix == "":
        path = path.with_suffix(".csv")

    text = format_alignment_csv(entries, sample_rate)
    fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(text)
        os.replace(temp_name, path)
    except OSError:
        logger.error(f"Failed to export alignment to {path}")
        Path(temp_name).unlink(missing_ok=True)
        raise

    logger.info(f"Exported alignment to {path}")
    return path


def parse_alignment_csv(text: str, sample_rate: float) -> List[Onset]:
    """
    Parse alignment CSV text into onsets.

    Rows without a numeric time (such as unaligned placeholders) are skipped.
    """
    rows = [row for row in csv.reader(io.StringIO(text)) if row]
    if not rows:
        return []

    header, body = rows[0], rows[1:]
    have_frame = len(header) > 2
    if have_frame:
        logger.debug("Have 3 columns, using label and authoritative frame")
    else:
        logger.debug("Have fewer than 3 columns, using label and time in seconds")

    onsets = []
    for row in body:
        label = row[0].strip()
        try:
            if have_frame:
                frame = int(row[2])
            else:
                frame = int(round(float(row[1]) * sample_rate))
        except (IndexError, ValueError):
            continue
        onsets.append(Onset(frame=frame, label=label))
    return onsets


def import_alignment(path: Path, sample_rate: float) -> List[Onset]:
    """Read onsets from an alignment CSV file."""
    text = Path(path).read_text(encoding="utf-8")
    onsets = parse_alignment_csv(text, sample_rate)
    logger.info(f"Imported {len(onsets)} onsets from {path}")
    return onsets
