"""Canonical score labels and the audio frames they are aligned to."""

import logging
from typing import Dict, Iterable, List

from scorealign.core.errors import IntegrityError
from scorealign.schemas.alignment import UNALIGNED, AlignmentEntry, Onset
from scorealign.schemas.timeline import NoteEvent

logger = logging.getLogger(__name__)


class AlignmentEntryTable:
    """
    Ordered score labels with their aligned frames.

    Entries follow the score order of the onsets they were built from;
    onsets sharing a position (a chord) share one entry.
    """

    def __init__(self) -> None:
        self.entries: List[AlignmentEntry] = []
        self._index: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self.entries)

    def reset(self, onset_events: Iterable[NoteEvent]) -> None:
        """Rebuild the table from onset events, all unaligned."""
        self.entries = []
        self._index = {}
        for event in onset_events:
            label = event.label
            if label in self._index:
                continue
            self._index[label] = len(self.entries)
            self.entries.append(AlignmentEntry(label=label, frame=UNALIGNED))
        logger.info(f"Reset alignment entries: {len(self.entries)} labels")

    def reset_frames(self) -> None:
        for entry in self.entries:
            entry.frame = UNALIGNED

    def synchronize(self, displayed: Iterable[Onset]) -> None:
        """
        Copy frames from the displayed onsets into the matching entries.

        Every label is checked before any frame is written, so a failure
        leaves the table untouched.

        Raises:
            IntegrityError: If a displayed label is not in the table
        """
        displayed = list(displayed)
        for onset in displayed:
            if onset.label not in self._index:
                logger.error(f"Alignment label {onset.label} not found in score")
                raise IntegrityError(onset.label)

        for onset in displayed:
            self.entries[self._index[onset.label]].frame = onset.frame

    def labels(self) -> List[str]:
        return [entry.label for entry in self.entries]

    def frames(self) -> List[int]:
        return [entry.frame for entry in self.entries]

    def __contains__(self, label: str) -> bool:
        return label in self._index
