"""Read note timing from an MEI score using Verovio."""

import json
import logging
from typing import Any, List, Optional

import verovio

from scorealign.core.errors import FatalInitError
from scorealign.schemas.timeline import TimemapRecord

logger = logging.getLogger(__name__)


def _as_json(value: Any) -> Any:
    """Verovio returns JSON either parsed or as a string depending on version."""
    if isinstance(value, str):
        return json.loads(value) if value else {}
    return value


class TimemapReader:
    """
    Extract per-note timemap records from an engraved score.

    Verovio renders the score's timemap; each note id it reports is then
    queried for its score times and MIDI pitch.
    """

    TIMEMAP_OPTIONS = {"includeMeasures": True}

    def __init__(self, resource_path: Optional[str] = None):
        """
        Args:
            resource_path: Verovio data directory, None for the bundled one

        Raises:
            FatalInitError: If the toolkit or its resources cannot be set up
        """
        try:
            self.toolkit = verovio.toolkit()
        except Exception as e:
            raise FatalInitError(f"Failed to initialise Verovio toolkit: {e}")

        if resource_path is not None and not self.toolkit.setResourcePath(resource_path):
            raise FatalInitError(f"Failed to set Verovio resource path {resource_path!r}")

    def read_file(self, mei_path: str) -> List[TimemapRecord]:
        """Load an MEI file and return its timemap records."""
        logger.info(f"Loading score file {mei_path}")
        if not self.toolkit.loadFile(str(mei_path)):
            raise FatalInitError(f"Verovio could not load {mei_path}")
        return self._read_loaded()

    def read_data(self, mei_data: str) -> List[TimemapRecord]:
        """Load MEI (or any Verovio input format) from a string."""
        if not self.toolkit.loadData(mei_data):
            raise FatalInitError("Verovio could not load score data")
        return self._read_loaded()

    def _read_loaded(self) -> List[TimemapRecord]:
        timemap = _as_json(self.toolkit.renderToTimemap(self.TIMEMAP_OPTIONS))

        records = []
        measure_index = 0
        meter_signature = None
        for event in timemap:
            if "measureOn" in event:
                measure_index += 1
                meter_signature = None
            if "meterSig" in event:
                meter_signature = event["meterSig"]

            for note_id in event.get("on", []):
                times = _as_json(self.toolkit.getTimesForElement(note_id))
                midi = _as_json(self.toolkit.getMIDIValuesForElement(note_id))
                records.append(
                    TimemapRecord(
                        raw_onset_time=times["scoreTimeOnset"][0],
                        raw_duration=times["scoreTimeDuration"][0],
                        tied_duration=times["scoreTimeTiedDuration"][0],
                        measure_index=max(measure_index, 1),
                        meter_signature=meter_signature,
                        pitch=midi["pitch"],
                        note_id=note_id,
                    )
                )
                # Only the first note of a measure carries its signature
                meter_signature = None

        logger.info(f"Read {len(records)} notes across {measure_index} measures")
        return records
