from typing import Any, Dict, Optional, Sequence

from fastapi.encoders import jsonable_encoder

from diagnostics.models import Recommendation, Report

from .analytics import ReportAnalyzer


class Assemble:
    """
    Shapes a frozen Report plus its recommendations into one structured document.

    Design intent:
      - the engine produces typed records; this class is the only place that
        decides the machine-readable layout
      - output is JSON-safe (dict/list/str/int/float/bool/None) so it can go to
        stdout, a file or an HTTP response unchanged
    """

    def __init__(self, analyzer: Optional[ReportAnalyzer] = None):
        self.analyzer = analyzer or ReportAnalyzer()

    def build(
        self,
        report: Report,
        recommendations: Sequence[Recommendation],
        skipped_is_failure: bool = False,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Build the report document.

        Keys: run_id, role, started_at, finished_at, duration_ms, context, summary,
        exit_code, analytics, outcomes, recommendations (and meta when given).
        """
        base = self._to_json(report)

        document: Dict[str, Any] = {
            "run_id": base["run_id"],
            "role": report.context.role.value,
            "started_at": base["started_at"],
            "finished_at": base["finished_at"],
            "duration_ms": base["duration_ms"],
            "context": base["context"],
            "summary": self._summarize(report),
            "exit_code": report.exit_code(skipped_is_failure=skipped_is_failure),
            "analytics": self.analyzer.summarize(report),
            "outcomes": base["outcomes"],
            "recommendations": [self._to_json(r) for r in recommendations],
        }
        if meta:
            document["meta"] = meta

        # Final pass: everything in the document is JSON-safe.
        return jsonable_encoder(document)

    def _to_json(self, obj: Any) -> Any:
        if hasattr(obj, "to_dict"):
            return jsonable_encoder(obj.to_dict())
        return jsonable_encoder(obj)

    def _summarize(self, report: Report) -> Dict[str, Any]:
        """
        Counts per status plus the total and a 0..100 health score where
        errors cost more than warnings.
        """
        counts = dict(report.summary)
        total = sum(counts.values())
        score = 100 - (counts.get("error", 0) * 20 + counts.get("warning", 0) * 5)
        return {**counts, "total": total, "score": max(0, min(100, score))}

