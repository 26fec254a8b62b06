from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .cancellation import CancelToken


class Status(str, Enum):
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"
    INFO = "info"
    SKIPPED = "skipped"

    @property
    def rank(self) -> int:
        # used for "worst status" roll-ups; Error dominates
        return _STATUS_RANK[self]


_STATUS_RANK = {
    Status.OK: 0,
    Status.INFO: 1,
    Status.SKIPPED: 2,
    Status.WARNING: 3,
    Status.ERROR: 4,
}


def worst_status(statuses: Iterable[Status]) -> Status:
    return max(statuses, key=lambda s: s.rank, default=Status.OK)


class Category(str, Enum):
    SYSTEM = "system"
    SERVICE = "service"
    CONFIG = "config"
    NETWORK = "network"
    RESOLUTION = "resolution"
    PERFORMANCE = "performance"
    SECURITY = "security"


class Role(str, Enum):
    SERVER = "server"
    CLIENT = "client"


class ErrorKind(str, Enum):
    PROBE_FAULT = "ProbeFault"
    TIMEOUT = "Timeout"
    DEADLINE_EXCEEDED = "DeadlineExceeded"
    COLLABORATOR_UNAVAILABLE = "CollaboratorUnavailable"
    DEPENDENCY_FAILED = "DependencyFailed"


@dataclass(frozen=True)
class ProbeError:
    """Structured cause attached to Error/Skipped outcomes produced by the engine."""
    kind: ErrorKind
    detail: str = ""
    exception_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "detail": self.detail, "exception_type": self.exception_type}


# -----------------------------
# Run inputs
# -----------------------------

@dataclass(frozen=True)
class Context:
    """
    Read-only snapshot of everything a run needs.

    targets holds interface names for the server role and DNS server addresses for
    the client role. env is the collaborator bundle the probes query; it is not
    part of the snapshot's identity and is left out of serialized reports.
    """
    role: Role
    targets: Tuple[str, ...] = ()
    dns_server: Optional[str] = None
    privileged: bool = False
    service: str = "dnsmasq"
    config_file: str = "/etc/dnsmasq.conf"
    config_dir: str = "/etc/dnsmasq.d"
    test_domain: str = "google.com"
    domains: Tuple[str, ...] = ("google.com", "cloudflare.com", "github.com")
    upstreams: Tuple[str, ...] = ("8.8.8.8", "1.1.1.1")
    env: Any = field(default=None, compare=False, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role.value,
            "targets": list(self.targets),
            "dns_server": self.dns_server,
            "privileged": self.privileged,
            "service": self.service,
            "config_file": self.config_file,
            "config_dir": self.config_dir,
            "test_domain": self.test_domain,
            "domains": list(self.domains),
            "upstreams": list(self.upstreams),
        }


@dataclass(frozen=True)
class ProbeCall:
    """One invocation of a probe: the context, the bound fan-out target and a cancel token."""
    probe_id: str
    context: Context
    cancel: CancelToken
    target: Optional[str] = None

    @property
    def env(self) -> Any:
        return self.context.env


@dataclass(frozen=True)
class Observation:
    """What a probe reports. The executor turns it into a ProbeOutcome."""
    status: Status
    message: str
    detail: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "detail", tuple(str(x) for x in self.detail))

    @classmethod
    def ok(cls, message: str, detail: Sequence[str] = ()) -> "Observation":
        return cls(Status.OK, message, tuple(detail))

    @classmethod
    def warning(cls, message: str, detail: Sequence[str] = ()) -> "Observation":
        return cls(Status.WARNING, message, tuple(detail))

    @classmethod
    def error(cls, message: str, detail: Sequence[str] = ()) -> "Observation":
        return cls(Status.ERROR, message, tuple(detail))

    @classmethod
    def info(cls, message: str, detail: Sequence[str] = ()) -> "Observation":
        return cls(Status.INFO, message, tuple(detail))

    @classmethod
    def skipped(cls, message: str, detail: Sequence[str] = ()) -> "Observation":
        return cls(Status.SKIPPED, message, tuple(detail))


def _always(_context: Context) -> bool:
    return True


Handler = Callable[[ProbeCall], Observation]


@dataclass(frozen=True)
class Probe:
    """
    A single named diagnostic check.

    fan_out, when set, turns the probe into a family: probes_for() expands it into
    one concrete probe per target returned for the context, with id "<id>:<target>".
    depends_on lists probe ids (or family ids) whose outcomes must exist first; the
    probe is skipped if any of them ended in Error or Skipped.
    """
    id: str
    name: str
    category: Category
    run: Handler
    applicability: Callable[[Context], bool] = _always
    timeout: float = 10.0
    depends_on: Tuple[str, ...] = ()
    mutates: bool = False
    fan_out: Optional[Callable[[Context], Sequence[str]]] = None
    target: Optional[str] = None

    def applies_to(self, context: Context) -> bool:
        return bool(self.applicability(context))

    def expand(self, context: Context) -> List["Probe"]:
        if self.fan_out is None:
            return [self]
        out: List[Probe] = []
        for t in dict.fromkeys(self.fan_out(context)):
            out.append(replace(self, id=f"{self.id}:{t}", name=f"{self.name} ({t})", fan_out=None, target=t))
        return out

    def execute(self, call: ProbeCall) -> Observation:
        return self.run(call)

    def describe(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category.value,
            "timeout": self.timeout,
            "depends_on": list(self.depends_on),
            "target": self.target,
            "fan_out": self.fan_out is not None,
        }


# -----------------------------
# Run outputs
# -----------------------------

@dataclass(frozen=True)
class ProbeOutcome:
    probe_id: str
    name: str
    category: Category
    status: Status
    message: str
    measured_at: datetime
    duration: float = 0.0  # seconds
    detail: Tuple[str, ...] = ()
    error: Optional[ProbeError] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "probe_id": self.probe_id,
            "name": self.name,
            "category": self.category.value,
            "status": self.status.value,
            "message": self.message,
            "detail": list(self.detail),
            "measured_at": self.measured_at.isoformat(),
            "duration_ms": int(round(self.duration * 1000)),
            "error": self.error.to_dict() if self.error else None,
        }


def count_by_status(outcomes: Iterable[ProbeOutcome]) -> Dict[str, int]:
    counts = {s.value: 0 for s in Status}
    for o in outcomes:
        counts[o.status.value] += 1
    return counts


@dataclass(frozen=True)
class Report:
    run_id: str
    started_at: datetime
    finished_at: datetime
    context: Context
    outcomes: Tuple[ProbeOutcome, ...] = ()

    @property
    def summary(self) -> Dict[str, int]:
        # always derived from outcomes so counts cannot drift
        return count_by_status(self.outcomes)

    @property
    def has_errors(self) -> bool:
        return any(o.status is Status.ERROR for o in self.outcomes)

    def outcome(self, probe_id: str) -> Optional[ProbeOutcome]:
        for o in self.outcomes:
            if o.probe_id == probe_id:
                return o
        return None

    def exit_code(self, skipped_is_failure: bool = False) -> int:
        failing = {Status.ERROR, Status.SKIPPED} if skipped_is_failure else {Status.ERROR}
        return 1 if any(o.status in failing for o in self.outcomes) else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_ms": int((self.finished_at - self.started_at).total_seconds() * 1000),
            "context": self.context.to_dict(),
            "summary": self.summary,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


@dataclass(frozen=True)
class Recommendation:
    triggers: Tuple[str, ...]
    text: str
    severity: Status

    def to_dict(self) -> Dict[str, Any]:
        return {"triggers": list(self.triggers), "text": self.text, "severity": self.severity.value}
