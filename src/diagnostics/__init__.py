"""
Diagnostic orchestration engine.

Probes are declared in a ProbeRegistry, run by the Executor against live
collaborators, and collected by the ResultAggregator into a frozen Report.

Public entrypoints: ProbeRegistry, Executor, run
"""

from .aggregator import ResultAggregator
from .cancellation import CancelToken
from .executor import Executor, run
from .models import (
    Category,
    Context,
    ErrorKind,
    Observation,
    Probe,
    ProbeCall,
    ProbeError,
    ProbeOutcome,
    Recommendation,
    Report,
    Role,
    Status,
)
from .registry import ProbeRegistry

__all__ = [
    "CancelToken",
    "Category",
    "Context",
    "ErrorKind",
    "Executor",
    "Observation",
    "Probe",
    "ProbeCall",
    "ProbeError",
    "ProbeOutcome",
    "ProbeRegistry",
    "Recommendation",
    "Report",
    "ResultAggregator",
    "Role",
    "Status",
    "run",
]
