"""
Everything that happens after a run: recommendations, analytics and rendering.

Public entrypoints: Recommendations.derive, Reporter.render, Assemble.build
"""

from .assembler import Assemble
from .recommendations import Recommendations, derive
from .reporter import Reporter, render
from .sinks import ConsoleSink, FileSink, StreamSink

__all__ = [
    "Assemble",
    "ConsoleSink",
    "FileSink",
    "Recommendations",
    "Reporter",
    "StreamSink",
    "derive",
    "render",
]
