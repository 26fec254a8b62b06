# test_reporting.py
from __future__ import annotations

import io
import json
import logging
import os
from datetime import datetime, timedelta, timezone

import pytest
from rich.console import Console

from diagnostics.models import Category, Context, ErrorKind, ProbeError, ProbeOutcome, Recommendation, Report, Role, Status
from reporting.analytics import ReportAnalyzer, outcomes_frame
from reporting.assembler import Assemble
from reporting.reporter import Reporter, render, text_lines
from reporting.sinks import ConsoleSink, FileSink, StreamSink, log_file_name
from reporting.targets import (
    InvalidAddress,
    InvalidDomain,
    InvalidInterface,
    InvalidTarget,
    normalize_target,
    require_domains,
    require_targets,
)

START = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def _o(pid, category, status, message="msg", ms=1.0, detail=(), error=None):
    return ProbeOutcome(pid, pid.title(), category, status, message, measured_at=START,
                        duration=ms / 1000.0, detail=detail, error=error)


def _report() -> Report:
    outcomes = (
        _o("installation", Category.SERVICE, Status.OK, "Dnsmasq installed", ms=12.0),
        _o("service-active", Category.SERVICE, Status.ERROR, "Service is not running", ms=40.0),
        _o("config-cache", Category.CONFIG, Status.WARNING, "cache-size not set", ms=3.0),
        _o("local-resolution", Category.RESOLUTION, Status.SKIPPED, "Skipped: service-active failed", ms=0.0,
           error=ProbeError(ErrorKind.DEPENDENCY_FAILED, "service-active")),
        _o("dnssec", Category.SECURITY, Status.INFO, "inconclusive", ms=250.0, detail=("AD flag not set",)),
    )
    ctx = Context(role=Role.SERVER, targets=("eth0",))
    return Report("run-1", START, START + timedelta(seconds=2), ctx, outcomes)


RECS = [
    Recommendation(("service-active",), "Start the dnsmasq service: sudo systemctl start dnsmasq", Status.ERROR),
    Recommendation(("config-cache",), "Enable caching with cache-size=1000 in /etc/dnsmasq.conf.", Status.WARNING),
]


class ListSink:
    def __init__(self, format="text", name="list"):
        self.format = format
        self.name = name
        self.lines = []
        self.closed = False

    def write_line(self, line):
        self.lines.append(line)

    def close(self):
        self.closed = True


class BrokenSink(ListSink):
    def write_line(self, line):
        raise OSError("disk full")


# ----------------------------
# Assembler
# ----------------------------
def test_document_layout_and_counts():
    doc = Assemble().build(_report(), RECS)
    assert list(doc)[:8] == [
        "run_id", "role", "started_at", "finished_at", "duration_ms", "context", "summary", "exit_code",
    ]
    assert doc["role"] == "server"
    assert doc["duration_ms"] == 2000
    assert doc["exit_code"] == 1
    assert doc["summary"]["error"] == 1
    assert doc["summary"]["total"] == 5
    assert doc["summary"]["score"] == 100 - 20 - 5
    assert [o["probe_id"] for o in doc["outcomes"]][0] == "installation"
    assert doc["outcomes"][3]["error"]["kind"] == "DependencyFailed"
    assert doc["recommendations"][0]["severity"] == "error"
    # JSON-safe end to end
    json.dumps(doc)


def test_meta_is_attached_only_when_given():
    assert "meta" not in Assemble().build(_report(), [])
    assert Assemble().build(_report(), [], meta={"source": "api"})["meta"] == {"source": "api"}


def test_skipped_policy_changes_exit_code():
    clean = Report("r", START, START, Context(role=Role.CLIENT),
                   (_o("dnssec", Category.SECURITY, Status.SKIPPED),))
    assert Assemble().build(clean, [])["exit_code"] == 0
    assert Assemble().build(clean, [], skipped_is_failure=True)["exit_code"] == 1


# ----------------------------
# Analytics
# ----------------------------
def test_outcomes_frame_columns():
    df = outcomes_frame(_report())
    assert list(df.columns) == ["probe_id", "category", "status", "duration_ms"]
    assert len(df) == 5
    assert df.loc[df["probe_id"] == "dnssec", "duration_ms"].iloc[0] == 250.0


def test_analytics_by_category_slowest_and_problems():
    frames = ReportAnalyzer(slowest=2).analytics(outcomes_frame(_report()))

    by_cat = frames["by_category"].set_index("category")
    assert by_cat.loc["service", "ok"] == 1
    assert by_cat.loc["service", "error"] == 1
    assert by_cat.loc["service", "total"] == 2
    assert list(frames["by_category"]["category"]) == ["service", "config", "resolution", "security"]

    assert list(frames["slowest"]["probe_id"]) == ["dnssec", "service-active"]

    problems = frames["problem_categories"]
    assert sorted(problems["category"]) == ["config", "service"]


def test_analytics_on_empty_report_keeps_keys():
    empty = Report("r", START, START, Context(role=Role.CLIENT), ())
    summary = ReportAnalyzer().summarize(empty)
    assert summary == {"by_category": [], "slowest": [], "problem_categories": []}


def test_summarize_yields_plain_python_values():
    summary = ReportAnalyzer().summarize(_report())
    row = summary["by_category"][0]
    assert type(row["total"]) is int
    json.dumps(summary)


# ----------------------------
# Text rendering
# ----------------------------
def test_text_lines_group_by_category_and_mark_status():
    report = _report()
    doc = Assemble().build(report, RECS)
    lines = text_lines(report, RECS, doc)

    assert lines[0] == "=== DNSMASQ SERVER DIAGNOSTICS ==="
    assert "--- SERVICE ---" in lines
    assert "[✗] Service-Active: Service is not running" in lines
    assert "[-] Local-Resolution: Skipped: service-active failed" in lines
    assert "      AD flag not set" in lines
    assert "--- SLOWEST CHECKS ---" in lines
    assert "    dnssec: 250ms" in lines
    assert "      triggered by: service-active" in lines
    # recommendations come last, in the given order
    assert lines.index("[✗] Start the dnsmasq service: sudo systemctl start dnsmasq") < lines.index(
        "[!] Enable caching with cache-size=1000 in /etc/dnsmasq.conf.")


def test_no_recommendations_line():
    report = _report()
    lines = text_lines(report, [], Assemble().build(report, []))
    assert lines[-1] == "[✓] No action needed"


# ----------------------------
# Reporter and sinks
# ----------------------------
def test_failing_sink_does_not_stop_the_others(caplog):
    good_text = ListSink("text", "good-text")
    broken = BrokenSink("text", "broken")
    good_json = ListSink("json", "good-json")

    with caplog.at_level(logging.WARNING, logger="reporting.reporter"):
        failed = Reporter().render(_report(), RECS, [good_text, broken, good_json])

    assert failed == [broken]
    assert good_text.lines[0].startswith("=== DNSMASQ")
    assert json.loads(good_json.lines[0])["run_id"] == "run-1"
    assert all(s.closed for s in (good_text, broken, good_json))
    assert "broken" in caplog.text


def test_sink_with_unknown_format_is_reported_as_failed():
    odd = ListSink("xml", "odd")
    assert render(_report(), RECS, [odd]) == [odd]
    assert odd.lines == []


def test_stream_sink_writes_json_document():
    buf = io.StringIO()
    render(_report(), RECS, [StreamSink(buf, format="json")])
    doc = json.loads(buf.getvalue())
    assert doc["summary"]["warning"] == 1


def test_console_sink_renders_plain_text_to_a_file_console():
    buf = io.StringIO()
    console = Console(file=buf, force_terminal=False, color_system=None, width=200)
    render(_report(), RECS, [ConsoleSink(console)])
    out = buf.getvalue()
    assert "=== DNSMASQ SERVER DIAGNOSTICS ===" in out
    assert "[!] Config-Cache: cache-size not set" in out


def test_sinks_reject_unknown_formats():
    with pytest.raises(ValueError):
        StreamSink(io.StringIO(), format="yaml")
    with pytest.raises(ValueError):
        ConsoleSink(format="html")


def test_file_sink_name_and_contents(tmp_path):
    when = datetime(2024, 5, 1, 9, 30, 15)
    assert log_file_name("client", when) == "dnsmasq_client_troubleshoot_20240501_093015.log"

    directory = tmp_path / "logs"
    sink = FileSink(str(directory), "server", when=when)
    assert not directory.exists()

    render(_report(), RECS, [sink])
    assert sink.path == os.path.join(str(directory), "dnsmasq_server_troubleshoot_20240501_093015.log")
    with open(sink.path, encoding="utf-8") as fh:
        content = fh.read()
    assert content.startswith("=== DNSMASQ SERVER DIAGNOSTICS ===\n")
    assert "--- RECOMMENDATIONS ---" in content


def test_unwritable_file_sink_is_skipped(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    sink = FileSink(str(blocker), "client")
    other = ListSink()
    assert render(_report(), RECS, [sink, other]) == [sink]
    assert other.lines


# ----------------------------
# Target validation
# ----------------------------
def test_normalize_target():
    assert normalize_target("  Example.COM. ") == "example.com"


def test_require_targets_by_role():
    assert require_targets("server", ["eth0", "br-lan"]) == ["eth0", "br-lan"]
    assert require_targets("client", ["192.0.2.53", "2001:db8::53"]) == ["192.0.2.53", "2001:db8::53"]
    with pytest.raises(InvalidInterface):
        require_targets("server", ["eth0; rm -rf /"])
    with pytest.raises(InvalidAddress):
        require_targets("client", ["dns.example"])
    assert issubclass(InvalidDomain, InvalidTarget)


def test_require_domains_normalizes_and_dedupes():
    assert require_domains([" GitHub.com. ", "example.org", "github.com"]) == ["github.com", "example.org"]
    assert require_domains([]) == []
    for bad in ("exa mple.com", "-bad.example", "a..b", "x" * 64 + ".com"):
        with pytest.raises(InvalidDomain):
            require_domains([bad])
