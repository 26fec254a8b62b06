from __future__ import annotations

from typing import Iterable


class DiagnosticsError(Exception):
    """Base error for the diagnostics engine."""


# -----------------------------
# Registration-time (fatal to startup)
# -----------------------------

class RegistrationError(DiagnosticsError):
    """Raised when a probe cannot be added to a registry."""


class DuplicateProbeId(RegistrationError):
    def __init__(self, probe_id: str):
        super().__init__(f"Probe id already registered: {probe_id}")
        self.probe_id = probe_id


class CyclicDependency(RegistrationError):
    def __init__(self, cycle: Iterable[str]):
        self.cycle = list(cycle)
        super().__init__("Cyclic probe dependency: " + " -> ".join(self.cycle))


class MutatingProbeRejected(RegistrationError):
    def __init__(self, probe_id: str):
        super().__init__(f"Probe {probe_id} declares mutation of shared system state; probes must be read-only")
        self.probe_id = probe_id


# -----------------------------
# Aggregator misuse (engine bugs)
# -----------------------------

class AggregatorError(DiagnosticsError):
    """Raised when the aggregator is used against its contract."""


class DuplicateOutcome(AggregatorError):
    def __init__(self, probe_id: str):
        super().__init__(f"Outcome already observed for probe: {probe_id}")
        self.probe_id = probe_id


class ReportFrozen(AggregatorError):
    def __init__(self, run_id: str):
        super().__init__(f"Report {run_id} is finalized; no further outcomes accepted")
        self.run_id = run_id


class UnplannedOutcome(AggregatorError):
    def __init__(self, probe_id: str):
        super().__init__(f"Outcome for probe that is not in the execution plan: {probe_id}")
        self.probe_id = probe_id


class IncompleteReport(AggregatorError):
    def __init__(self, missing: Iterable[str]):
        self.missing = list(missing)
        super().__init__("Planned probes without an outcome: " + ", ".join(self.missing))


# -----------------------------
# Collaborators
# -----------------------------

class CollaboratorUnavailable(DiagnosticsError):
    """An external tool or service the probe relies on is not present."""


class ServiceManagerUnavailable(CollaboratorUnavailable):
    """The platform has no supported service manager."""


class ToolMissing(CollaboratorUnavailable):
    def __init__(self, tool: str):
        super().__init__(f"Required tool not found on PATH: {tool}")
        self.tool = tool


class ConfigNotFound(DiagnosticsError, LookupError):
    def __init__(self, path: str):
        super().__init__(f"Configuration not found: {path}")
        self.path = path


class ProbeCancelled(DiagnosticsError):
    """Raised inside probe code once its cancellation token has fired."""
