"""Tests for reading timemaps through Verovio."""

import json
from unittest.mock import MagicMock, patch

import pytest

from scorealign.core.errors import FatalInitError
from scorealign.services.timemap_reader import TimemapReader

TIMEMAP = [
    {"tstamp": 0, "qstamp": 0.0, "measureOn": "m1", "meterSig": "3/4", "on": ["n1", "n2"]},
    {"tstamp": 500, "qstamp": 1.0, "on": ["n3"], "off": ["n1", "n2"]},
    {"tstamp": 2000, "qstamp": 4.0, "measureOn": "m2", "on": ["n4"], "off": ["n3"]},
]

TIMES = {
    "n1": (0.0, 1.0, 0.0),
    "n2": (0.0, 1.0, 0.0),
    "n3": (1.0, 3.0, 0.0),
    "n4": (0.0, 4.0, 0.0),
}

PITCHES = {"n1": 60, "n2": 64, "n3": 67, "n4": 72}


def _mock_toolkit(as_strings: bool = False):
    toolkit = MagicMock()
    toolkit.loadFile.return_value = True
    toolkit.loadData.return_value = True
    toolkit.setResourcePath.return_value = True

    def encode(value):
        return json.dumps(value) if as_strings else value

    toolkit.renderToTimemap.return_value = encode(TIMEMAP)

    def times_for(note_id):
        onset, duration, tied = TIMES[note_id]
        return encode(
            {
                "scoreTimeOnset": [onset],
                "scoreTimeDuration": [duration],
                "scoreTimeTiedDuration": [tied],
            }
        )

    toolkit.getTimesForElement.side_effect = times_for
    toolkit.getMIDIValuesForElement.side_effect = lambda note_id: encode({"pitch": PITCHES[note_id]})
    return toolkit


@pytest.fixture
def toolkit():
    toolkit = _mock_toolkit()
    with patch("scorealign.services.timemap_reader.verovio.toolkit", return_value=toolkit):
        yield toolkit


def test_read_file(toolkit):
    """Test reading records from an MEI file."""
    reader = TimemapReader()
    records = reader.read_file("score.mei")

    toolkit.loadFile.assert_called_once_with("score.mei")
    toolkit.renderToTimemap.assert_called_once_with({"includeMeasures": True})
    assert [r.note_id for r in records] == ["n1", "n2", "n3", "n4"]
    assert [r.measure_index for r in records] == [1, 1, 1, 2]
    assert [r.pitch for r in records] == [60, 64, 67, 72]
    assert records[2].raw_onset_time == 1.0
    assert records[2].raw_duration == 3.0


def test_meter_signature_on_first_note_only(toolkit):
    records = TimemapReader().read_file("score.mei")

    assert records[0].meter_signature == "3/4"
    assert [r.meter_signature for r in records[1:]] == [None, None, None]


def test_read_data(toolkit):
    records = TimemapReader().read_data("<mei/>")

    toolkit.loadData.assert_called_once_with("<mei/>")
    assert len(records) == 4


def test_json_strings_are_parsed():
    """Older Verovio releases return JSON text instead of parsed values."""
    toolkit = _mock_toolkit(as_strings=True)
    with patch("scorealign.services.timemap_reader.verovio.toolkit", return_value=toolkit):
        records = TimemapReader().read_file("score.mei")

    assert [r.pitch for r in records] == [60, 64, 67, 72]


def test_resource_path(toolkit):
    TimemapReader(resource_path="/opt/verovio/data")

    toolkit.setResourcePath.assert_called_once_with("/opt/verovio/data")


def test_bad_resource_path(toolkit):
    toolkit.setResourcePath.return_value = False

    with pytest.raises(FatalInitError):
        TimemapReader(resource_path="/nowhere")


def test_toolkit_construction_failure():
    with patch("scorealign.services.timemap_reader.verovio.toolkit", side_effect=RuntimeError("no data")):
        with pytest.raises(FatalInitError):
            TimemapReader()


def test_unloadable_score(toolkit):
    toolkit.loadFile.return_value = False

    with pytest.raises(FatalInitError):
        TimemapReader().read_file("broken.mei")
    toolkit.renderToTimemap.assert_not_called()
