from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from .errors import DuplicateOutcome, IncompleteReport, ReportFrozen, UnplannedOutcome
from .models import Context, ProbeOutcome, Report, count_by_status

logger = logging.getLogger(__name__)


class ResultAggregator:
    """
    Single-writer collector for one run.

    Outcomes arrive in completion order through observe(); finalize() sorts them
    back into plan order, so the Report is deterministic for a given plan.
    """

    def __init__(
        self,
        context: Context,
        plan: Sequence[str],
        run_id: Optional[str] = None,
        started_at: Optional[datetime] = None,
    ):
        self.context = context
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.started_at = started_at or datetime.now(timezone.utc)
        self._position: Dict[str, int] = {pid: i for i, pid in enumerate(plan)}
        self._outcomes: Dict[str, ProbeOutcome] = {}
        self._lock = threading.Lock()
        self._report: Optional[Report] = None

    @property
    def frozen(self) -> bool:
        return self._report is not None

    def has(self, probe_id: str) -> bool:
        with self._lock:
            return probe_id in self._outcomes

    def get(self, probe_id: str) -> Optional[ProbeOutcome]:
        with self._lock:
            return self._outcomes.get(probe_id)

    def pending(self) -> List[str]:
        with self._lock:
            return [pid for pid in self._position if pid not in self._outcomes]

    def observe(self, outcome: ProbeOutcome) -> None:
        with self._lock:
            if self._report is not None:
                raise ReportFrozen(self.run_id)
            if outcome.probe_id not in self._position:
                raise UnplannedOutcome(outcome.probe_id)
            if outcome.probe_id in self._outcomes:
                raise DuplicateOutcome(outcome.probe_id)
            self._outcomes[outcome.probe_id] = outcome
        logger.debug("run %s: %s -> %s", self.run_id, outcome.probe_id, outcome.status.value)

    def snapshot_summary(self) -> Dict[str, int]:
        with self._lock:
            return count_by_status(self._outcomes.values())

    def finalize(self, finished_at: Optional[datetime] = None) -> Report:
        with self._lock:
            if self._report is not None:
                raise ReportFrozen(self.run_id)
            missing = [pid for pid in self._position if pid not in self._outcomes]
            if missing:
                raise IncompleteReport(missing)
            ordered = sorted(self._outcomes.values(), key=lambda o: self._position[o.probe_id])
            self._report = Report(
                run_id=self.run_id,
                started_at=self.started_at,
                finished_at=finished_at or datetime.now(timezone.utc),
                context=self.context,
                outcomes=tuple(ordered),
            )
            return self._report
