from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from diagnostics.models import Recommendation, Report, Status

from .assembler import Assemble
from .sinks import JSON

logger = logging.getLogger(__name__)

MARKERS = {
    Status.OK: "[✓]",
    Status.ERROR: "[✗]",
    Status.WARNING: "[!]",
    Status.INFO: "[i]",
    Status.SKIPPED: "[-]",
}


def text_lines(report: Report, recommendations: Sequence[Recommendation], document: Dict[str, Any]) -> List[str]:
    """Human-readable rendering, grouped under a header whenever the category changes."""
    ctx = report.context
    lines = [
        f"=== DNSMASQ {ctx.role.value.upper()} DIAGNOSTICS ===",
        f"run {report.run_id} started {report.started_at.isoformat(timespec='seconds')}",
    ]
    current = None
    for o in report.outcomes:
        if o.category is not current:
            current = o.category
            lines.append("")
            lines.append(f"--- {current.value.upper()} ---")
        lines.append(f"{MARKERS[o.status]} {o.name}: {o.message}")
        lines.extend(f"      {d}" for d in o.detail)

    slowest = document.get("analytics", {}).get("slowest", [])[:3]
    if slowest:
        lines.append("")
        lines.append("--- SLOWEST CHECKS ---")
        lines.extend(f"    {row['probe_id']}: {row['duration_ms']:.0f}ms" for row in slowest)

    lines.append("")
    lines.append("--- SUMMARY ---")
    lines.append("    " + "  ".join(f"{s.value}={report.summary[s.value]}" for s in Status))
    lines.append(f"    duration {document['duration_ms']}ms, exit code {document['exit_code']}")

    lines.append("")
    lines.append("--- RECOMMENDATIONS ---")
    if not recommendations:
        lines.append(f"{MARKERS[Status.OK]} No action needed")
    for rec in recommendations:
        lines.append(f"{MARKERS[rec.severity]} {rec.text}")
        lines.append(f"      triggered by: {', '.join(rec.triggers)}")
    return lines


class Reporter:
    """
    Writes one Report to every sink in its own format.

    A sink that raises is logged (stderr), dropped for the rest of the render,
    and never fails the caller.
    """

    def __init__(self, assembler: Optional[Assemble] = None, skipped_is_failure: bool = False):
        self.assembler = assembler or Assemble()
        self.skipped_is_failure = skipped_is_failure

    def render(self, report: Report, recommendations: Sequence[Recommendation], sinks: Sequence[Any]) -> List[Any]:
        """Returns the sinks that failed."""
        document = self.assembler.build(report, recommendations, skipped_is_failure=self.skipped_is_failure)
        rendered = {
            "text": text_lines(report, recommendations, document),
            JSON: [json.dumps(document, indent=2, ensure_ascii=False)],
        }

        failed: List[Any] = []
        for sink in sinks:
            try:
                for line in rendered[sink.format]:
                    sink.write_line(line)
            except Exception as e:
                logger.warning("report sink %s failed and was disabled: %s", getattr(sink, "name", sink), e)
                failed.append(sink)
            finally:
                self._close(sink)
        return failed

    @staticmethod
    def _close(sink: Any) -> None:
        close = getattr(sink, "close", None)
        if close is None:
            return
        try:
            close()
        except Exception as e:
            logger.warning("closing report sink %s failed: %s", getattr(sink, "name", sink), e)


def render(report: Report, recommendations: Sequence[Recommendation], sinks: Sequence[Any], skipped_is_failure: bool = False) -> List[Any]:
    return Reporter(skipped_is_failure=skipped_is_failure).render(report, recommendations, sinks)
