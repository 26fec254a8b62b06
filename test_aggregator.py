# test_aggregator.py
from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest

from diagnostics.aggregator import ResultAggregator
from diagnostics.errors import DuplicateOutcome, IncompleteReport, ReportFrozen, UnplannedOutcome
from diagnostics.models import Category, Context, ProbeOutcome, Role, Status

CTX = Context(role=Role.CLIENT)
NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _outcome(pid: str, status: Status = Status.OK) -> ProbeOutcome:
    return ProbeOutcome(pid, pid, Category.NETWORK, status, "msg", measured_at=NOW)


def test_finalize_sorts_by_plan_position_not_arrival():
    agg = ResultAggregator(CTX, ["a", "b", "c"])
    for pid in ("c", "a", "b"):
        agg.observe(_outcome(pid))
    report = agg.finalize()
    assert [o.probe_id for o in report.outcomes] == ["a", "b", "c"]


def test_duplicate_observation_fails():
    agg = ResultAggregator(CTX, ["a"])
    agg.observe(_outcome("a"))
    with pytest.raises(DuplicateOutcome):
        agg.observe(_outcome("a", Status.ERROR))
    assert agg.get("a").status is Status.OK


def test_observe_after_finalize_fails():
    agg = ResultAggregator(CTX, ["a"], run_id="r1")
    agg.observe(_outcome("a"))
    agg.finalize()
    assert agg.frozen
    with pytest.raises(ReportFrozen) as exc:
        agg.observe(_outcome("a"))
    assert exc.value.run_id == "r1"


def test_second_finalize_fails():
    agg = ResultAggregator(CTX, [])
    agg.finalize()
    with pytest.raises(ReportFrozen):
        agg.finalize()


def test_unplanned_outcome_fails():
    agg = ResultAggregator(CTX, ["a"])
    with pytest.raises(UnplannedOutcome):
        agg.observe(_outcome("zzz"))


def test_finalize_with_missing_outcomes_fails():
    agg = ResultAggregator(CTX, ["a", "b"])
    agg.observe(_outcome("a"))
    assert agg.pending() == ["b"]
    with pytest.raises(IncompleteReport) as exc:
        agg.finalize()
    assert exc.value.missing == ["b"]
    assert not agg.frozen


def test_summary_always_matches_outcomes():
    plan = [f"p{i}" for i in range(5)]
    statuses = [Status.OK, Status.ERROR, Status.WARNING, Status.OK, Status.SKIPPED]
    agg = ResultAggregator(CTX, plan)
    for pid, st in zip(plan, statuses):
        agg.observe(_outcome(pid, st))
    assert agg.snapshot_summary()["ok"] == 2

    report = agg.finalize()
    for st in Status:
        assert report.summary[st.value] == sum(1 for o in report.outcomes if o.status is st)
    assert report.has_errors


def test_concurrent_observers_each_land_once():
    plan = [f"p{i}" for i in range(200)]
    agg = ResultAggregator(CTX, plan)

    def worker(ids):
        for pid in ids:
            agg.observe(_outcome(pid))

    threads = [threading.Thread(target=worker, args=(plan[i::4],)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    report = agg.finalize()
    assert [o.probe_id for o in report.outcomes] == plan


def test_report_to_dict_excludes_collaborators():
    ctx = Context(role=Role.CLIENT, env=object())
    agg = ResultAggregator(ctx, ["a"], run_id="r2", started_at=NOW)
    agg.observe(_outcome("a"))
    doc = agg.finalize(finished_at=NOW).to_dict()
    assert doc["run_id"] == "r2"
    assert doc["duration_ms"] == 0
    assert "env" not in doc["context"]
    assert doc["outcomes"][0]["status"] == "ok"
