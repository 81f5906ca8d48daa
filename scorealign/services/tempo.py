"""Tempo curve derived from aligned score entries."""

import logging
from fractions import Fraction
from typing import List, Sequence

from scorealign.schemas.alignment import AlignmentEntry, TempoSample

logger = logging.getLogger(__name__)


class TempoCurveBuilder:
    """Compute tempo between consecutive aligned entries."""

    def __init__(self, sample_rate: float):
        self.sample_rate = sample_rate

    def build(self, entries: Sequence[AlignmentEntry], durations: Sequence[Fraction]) -> List[TempoSample]:
        """
        Build tempo samples.

        Args:
            entries: Alignment entries in score order
            durations: Score duration (whole notes) from each entry to the next

        Returns:
            One sample per adjacent aligned pair with a non-zero time delta,
            at the first entry's frame, in quarter notes per minute
        """
        samples = []
        for i in range(len(entries) - 1):
            this_entry, next_entry = entries[i], entries[i + 1]
            if not (this_entry.is_aligned and next_entry.is_aligned):
                continue

            this_sec = this_entry.frame / self.sample_rate
            next_sec = next_entry.frame / self.sample_rate
            delta = next_sec - this_sec
            if delta == 0:
                continue

            tempo = 4.0 * float(durations[i]) * 60.0 / delta
            samples.append(TempoSample(frame=this_entry.frame, tempo=tempo))

        logger.debug(f"Computed {len(samples)} tempo samples from {len(entries)} entries")
        return samples
