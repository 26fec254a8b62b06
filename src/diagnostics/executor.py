from __future__ import annotations

import concurrent.futures
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .aggregator import ResultAggregator
from .cancellation import CancelToken
from .errors import CollaboratorUnavailable, DuplicateProbeId, ProbeCancelled
from .models import (
    Context,
    ErrorKind,
    Observation,
    Probe,
    ProbeCall,
    ProbeError,
    ProbeOutcome,
    Report,
    Status,
)
from .registry import ProbeRegistry

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 8

OutcomeCallback = Callable[[ProbeOutcome], None]


@dataclass
class _Slot:
    probe: Probe
    token: CancelToken
    started_at: float


class Executor:
    """
    Runs every applicable probe of a registry exactly once.

    Design goals:
      - bounded: at most concurrency_limit probes in flight, one daemon worker thread each;
        a timed-out worker that ignores its token is abandoned and frees its slot
      - ordered: dependencies wait for their prerequisites; failed prerequisites skip the dependent
      - total: every planned probe ends with one outcome, whether it completed, timed out,
        faulted, was skipped, or was cut off by the global deadline
    """

    def __init__(
        self,
        concurrency_limit: int = DEFAULT_CONCURRENCY,
        global_deadline: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.concurrency_limit = int(concurrency_limit)
        self.global_deadline = global_deadline
        self._clock = clock

    # ----------------------------
    # Public entrypoint
    # ----------------------------

    def plan(self, registry: ProbeRegistry, context: Context) -> List[Probe]:
        probes = list(registry.probes_for(context))
        seen = set()
        for p in probes:
            if p.id in seen:
                raise DuplicateProbeId(p.id)
            seen.add(p.id)
        return probes

    def run(
        self,
        registry: ProbeRegistry,
        context: Context,
        concurrency_limit: Optional[int] = None,
        global_deadline: Optional[float] = None,
        on_outcome: Optional[OutcomeCallback] = None,
    ) -> Report:
        limit = max(1, int(concurrency_limit or self.concurrency_limit))
        budget = self.global_deadline if global_deadline is None else global_deadline

        plan = self.plan(registry, context)
        plan_ids = [p.id for p in plan]
        aggregator = ResultAggregator(context, plan_ids)

        deadline_at = self._clock() + float(budget) if budget is not None else None
        run_token = CancelToken(deadline=deadline_at)

        logger.info(
            "run %s: %d probes, concurrency=%d, deadline=%s",
            aggregator.run_id, len(plan), limit, budget,
        )

        waiting: List[Probe] = list(plan)
        inflight: Dict[concurrent.futures.Future, _Slot] = {}

        def record(outcome: ProbeOutcome) -> None:
            aggregator.observe(outcome)
            if on_outcome is not None:
                on_outcome(outcome)

        try:
            while waiting or inflight:
                if deadline_at is not None and self._clock() >= deadline_at:
                    self._expire(waiting, inflight, run_token, record)
                    break

                progressed = self._dispatch(waiting, inflight, limit, plan_ids, aggregator,
                                            context, run_token, deadline_at, record)

                if not inflight:
                    if waiting and not progressed:
                        # nothing running and nothing dispatchable; cannot happen without a cycle
                        for probe in list(waiting):
                            waiting.remove(probe)
                            record(self._engine_outcome(
                                probe, Status.SKIPPED, "Dependencies never became available",
                                ProbeError(ErrorKind.DEPENDENCY_FAILED, "unresolvable dependency"),
                            ))
                    continue

                done, _ = concurrent.futures.wait(
                    list(inflight),
                    timeout=self._next_wakeup(inflight, deadline_at),
                    return_when=concurrent.futures.FIRST_COMPLETED,
                )
                for fut in done:
                    slot = inflight.pop(fut)
                    slot.token.detach()
                    record(fut.result())

                self._reap_timeouts(inflight, record)
        finally:
            run_token.cancel("run finished")

        report = aggregator.finalize()
        logger.info("run %s finished: %s", report.run_id, report.summary)
        return report

    # ----------------------------
    # Scheduling helpers
    # ----------------------------

    def _dispatch(
        self,
        waiting: List[Probe],
        inflight: Dict[concurrent.futures.Future, _Slot],
        limit: int,
        plan_ids: Sequence[str],
        aggregator: ResultAggregator,
        context: Context,
        run_token: CancelToken,
        deadline_at: Optional[float],
        record: OutcomeCallback,
    ) -> bool:
        progressed = False
        for probe in list(waiting):
            ready, failed = self._dependency_state(probe, plan_ids, aggregator)
            if not ready:
                continue
            if failed:
                waiting.remove(probe)
                progressed = True
                record(self._engine_outcome(
                    probe, Status.SKIPPED,
                    "Skipped: prerequisite check did not pass (" + ", ".join(failed) + ")",
                    ProbeError(ErrorKind.DEPENDENCY_FAILED, ", ".join(failed)),
                ))
                continue
            if len(inflight) >= limit:
                continue
            waiting.remove(probe)
            progressed = True
            # the probe timeout counts from dispatch
            slot = _Slot(probe=probe, token=run_token.child(), started_at=self._clock())
            fut = self._start(probe, context, slot, deadline_at)
            inflight[fut] = slot
            logger.debug("dispatched %s", probe.id)
        return progressed

    @staticmethod
    def _dependency_state(
        probe: Probe, plan_ids: Sequence[str], aggregator: ResultAggregator
    ) -> Tuple[bool, List[str]]:
        """(ready, failed prerequisite ids). Dependencies outside the plan count as satisfied."""
        failed: List[str] = []
        for dep in probe.depends_on:
            members = [pid for pid in plan_ids if pid == dep or pid.startswith(dep + ":")]
            for pid in members:
                outcome = aggregator.get(pid)
                if outcome is None:
                    return False, []
                if outcome.status in (Status.ERROR, Status.SKIPPED):
                    failed.append(pid)
        return True, failed

    def _next_wakeup(
        self, inflight: Dict[concurrent.futures.Future, _Slot], deadline_at: Optional[float]
    ) -> Optional[float]:
        now = self._clock()
        candidates: List[float] = []
        if deadline_at is not None:
            candidates.append(deadline_at - now)
        for slot in inflight.values():
            candidates.append(slot.started_at + slot.probe.timeout - now)
        if not candidates:
            return None
        return max(0.0, min(candidates))

    def _reap_timeouts(
        self, inflight: Dict[concurrent.futures.Future, _Slot], record: OutcomeCallback
    ) -> None:
        now = self._clock()
        for fut, slot in list(inflight.items()):
            if fut.done():
                continue
            elapsed = now - slot.started_at
            if elapsed < slot.probe.timeout:
                continue
            # the worker thread is abandoned; whatever it returns later is dropped
            slot.token.cancel("timeout")
            slot.token.detach()
            inflight.pop(fut)
            logger.warning("probe %s timed out after %.2fs", slot.probe.id, elapsed)
            record(self._engine_outcome(
                slot.probe, Status.ERROR,
                f"Timed out after {slot.probe.timeout:g}s",
                ProbeError(ErrorKind.TIMEOUT, f"timeout={slot.probe.timeout:g}s"),
                duration=elapsed,
            ))

    def _expire(
        self,
        waiting: List[Probe],
        inflight: Dict[concurrent.futures.Future, _Slot],
        run_token: CancelToken,
        record: OutcomeCallback,
    ) -> None:
        # completed work that raced the deadline still counts
        for fut, slot in list(inflight.items()):
            if fut.done():
                inflight.pop(fut)
                record(fut.result())

        run_token.cancel("deadline")
        now = self._clock()
        for fut, slot in list(inflight.items()):
            inflight.pop(fut)
            elapsed = now - slot.started_at
            logger.warning("probe %s cancelled at global deadline", slot.probe.id)
            record(self._engine_outcome(
                slot.probe, Status.SKIPPED, "Cancelled: global deadline exceeded",
                ProbeError(ErrorKind.DEADLINE_EXCEEDED, "in flight at deadline"),
                duration=elapsed,
            ))
        for probe in list(waiting):
            waiting.remove(probe)
            record(self._engine_outcome(
                probe, Status.SKIPPED, "Not started: global deadline exceeded",
                ProbeError(ErrorKind.DEADLINE_EXCEEDED, "not started"),
            ))

    # ----------------------------
    # Probe invocation (worker thread)
    # ----------------------------

    def _start(
        self, probe: Probe, context: Context, slot: _Slot, deadline_at: Optional[float]
    ) -> concurrent.futures.Future:
        """Run one probe on its own daemon thread; a hung probe never blocks the run or interpreter exit."""
        fut: concurrent.futures.Future = concurrent.futures.Future()

        def work() -> None:
            if not fut.set_running_or_notify_cancel():
                return
            try:
                fut.set_result(self._invoke(probe, context, slot, deadline_at))
            except BaseException as e:
                fut.set_exception(e)

        threading.Thread(target=work, name=f"probe-{probe.id}", daemon=True).start()
        return fut

    def _invoke(
        self, probe: Probe, context: Context, slot: _Slot, deadline_at: Optional[float]
    ) -> ProbeOutcome:
        started = slot.started_at
        measured_at = datetime.now(timezone.utc)
        token = slot.token
        probe_deadline = started + probe.timeout
        token.deadline = probe_deadline if token.deadline is None else min(token.deadline, probe_deadline)

        call = ProbeCall(probe_id=probe.id, context=context, cancel=token, target=probe.target)
        error: Optional[ProbeError] = None
        try:
            token.raise_if_cancelled()
            obs = probe.execute(call)
            if not isinstance(obs, Observation):
                raise TypeError(f"probe returned {type(obs).__name__}, expected Observation")
            status, message, detail = obs.status, obs.message, obs.detail
        except ProbeCancelled as e:
            now = self._clock()
            if deadline_at is not None and now >= deadline_at:
                status, kind = Status.SKIPPED, ErrorKind.DEADLINE_EXCEEDED
            elif token.reason == "timeout" or now - started >= probe.timeout:
                status, kind = Status.ERROR, ErrorKind.TIMEOUT
            else:
                status, kind = Status.SKIPPED, ErrorKind.DEADLINE_EXCEEDED
            message, detail = f"Cancelled: {e}", ()
            error = ProbeError(kind, str(e))
        except CollaboratorUnavailable as e:
            status, message, detail = Status.SKIPPED, str(e), ()
            error = ProbeError(ErrorKind.COLLABORATOR_UNAVAILABLE, str(e), type(e).__name__)
        except Exception as e:
            logger.warning("probe %s raised %s", probe.id, type(e).__name__, exc_info=True)
            status, message, detail = Status.ERROR, f"Probe fault: {type(e).__name__}: {e}", ()
            error = ProbeError(ErrorKind.PROBE_FAULT, str(e), type(e).__name__)

        return ProbeOutcome(
            probe_id=probe.id,
            name=probe.name,
            category=probe.category,
            status=status,
            message=message,
            detail=tuple(detail),
            measured_at=measured_at,
            duration=self._clock() - started,
            error=error,
        )

    @staticmethod
    def _engine_outcome(
        probe: Probe,
        status: Status,
        message: str,
        error: ProbeError,
        duration: float = 0.0,
    ) -> ProbeOutcome:
        return ProbeOutcome(
            probe_id=probe.id,
            name=probe.name,
            category=probe.category,
            status=status,
            message=message,
            measured_at=datetime.now(timezone.utc),
            duration=duration,
            error=error,
        )


def run(
    registry: ProbeRegistry,
    context: Context,
    concurrency_limit: int = DEFAULT_CONCURRENCY,
    global_deadline: Optional[float] = None,
    on_outcome: Optional[OutcomeCallback] = None,
) -> Report:
    return Executor(concurrency_limit, global_deadline).run(registry, context, on_outcome=on_outcome)
