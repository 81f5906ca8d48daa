"""Score alignment services."""

from scorealign.services.timeline_builder import ScoreTimelineBuilder
from scorealign.services.entry_table import AlignmentEntryTable
from scorealign.services.tempo import TempoCurveBuilder
from scorealign.services.plugins import AlignmentTransformCache, HttpAlignmentPlugin, PluginRegistry
from scorealign.services.session import AlignmentSession

__all__ = [
    "ScoreTimelineBuilder",
    "AlignmentEntryTable",
    "TempoCurveBuilder",
    "AlignmentTransformCache",
    "HttpAlignmentPlugin",
    "PluginRegistry",
    "AlignmentSession",
]
