"""Pytest configuration and fixtures."""

from concurrent.futures import Future
from typing import List, Optional

import pytest

from scorealign.schemas.alignment import AlignmentRequest, Onset
from scorealign.schemas.timeline import TimemapRecord
from scorealign.services.plugins import (
    AlignmentPlugin,
    OnsetStream,
    PluginDescriptor,
    PluginRegistry,
    PluginResult,
    StartFailure,
)
from scorealign.services.session import AlignmentSession
from scorealign.services.timeline_builder import ScoreTimelineBuilder

SAMPLE_RATE = 1000.0

# Labels of the two-measure quarter note fixture score
QUARTER_LABELS = [
    "1+0/1", "1+1/4", "1+1/2", "1+3/4",
    "2+0/1", "2+1/4", "2+1/2", "2+3/4",
]


class FakeAlignmentPlugin(AlignmentPlugin):
    """Plugin returning canned onsets, or a canned result."""

    def __init__(self, onsets: Optional[List[Onset]] = None, complete: bool = True):
        self.onsets = onsets or []
        self.complete = complete
        self.result: Optional[PluginResult] = None
        self.ready: Optional[StartFailure] = None
        self.requests: List[AlignmentRequest] = []
        self.futures: List[Future] = []

    def start(self, request: AlignmentRequest) -> PluginResult:
        self.requests.append(request)
        if self.result is not None:
            return self.result

        future: Future = Future()
        self.futures.append(future)
        if self.complete:
            future.set_result(list(self.onsets))
        return OnsetStream(model_id=f"model-{len(self.requests)}", future=future)

    async def check_ready(self) -> Optional[StartFailure]:
        return self.ready


@pytest.fixture
def make_record():
    """Factory for timemap records; times are in quarter notes."""

    def _make(
        note_id: str,
        onset: float,
        duration: float = 1.0,
        measure: int = 1,
        pitch: int = 60,
        meter: Optional[str] = None,
        tied: float = 0.0,
    ) -> TimemapRecord:
        return TimemapRecord(
            raw_onset_time=onset,
            raw_duration=duration,
            tied_duration=tied,
            measure_index=measure,
            meter_signature=meter,
            pitch=pitch,
            note_id=note_id,
        )

    return _make


@pytest.fixture
def builder() -> ScoreTimelineBuilder:
    return ScoreTimelineBuilder()


@pytest.fixture
def quarter_records(make_record) -> List[TimemapRecord]:
    """Two measures of 4/4, eight quarter notes rising from middle C."""
    records = []
    for i in range(8):
        measure = i // 4 + 1
        records.append(
            make_record(
                f"n{i + 1}",
                onset=float(i % 4),
                measure=measure,
                pitch=60 + i,
                meter="4/4" if i == 0 else None,
            )
        )
    return records


@pytest.fixture
def quarter_timeline(builder, quarter_records):
    return builder.build(quarter_records)


@pytest.fixture
def fake_plugin() -> FakeAlignmentPlugin:
    return FakeAlignmentPlugin()


@pytest.fixture
def registry(fake_plugin) -> PluginRegistry:
    registry = PluginRegistry()
    registry.register(
        PluginDescriptor(identifier="fake-aligner", output="chordonsets", name="Fake aligner"),
        lambda: fake_plugin,
    )
    return registry


@pytest.fixture
def session(registry, quarter_timeline) -> AlignmentSession:
    """Session with the quarter note score and an audio recording set."""
    session = AlignmentSession(registry)
    session.set_score("quarters", quarter_timeline)
    session.set_audio("take-1", SAMPLE_RATE)
    return session


@pytest.fixture
def events(session):
    """Record session notifications."""
    received = []
    session.subscribe(lambda event, payload: received.append((event, payload)))
    return received


@pytest.fixture
def quarter_labels() -> List[str]:
    return list(QUARTER_LABELS)
