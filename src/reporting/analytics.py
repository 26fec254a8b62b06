# Analytics over one run's outcomes.
# Builds a DataFrame of outcomes and summarizes where time went and where problems are.

from typing import Any, Dict, List

import pandas as pd

from diagnostics.models import Category, Report, Status

_COLUMNS = ["probe_id", "category", "status", "duration_ms"]


def outcomes_frame(report: Report) -> pd.DataFrame:
    rows = [
        {
            "probe_id": o.probe_id,
            "category": o.category.value,
            "status": o.status.value,
            "duration_ms": round(o.duration * 1000.0, 1),
        }
        for o in report.outcomes
    ]
    return pd.DataFrame(rows, columns=_COLUMNS)


class ReportAnalyzer:

    def __init__(self, slowest: int = 5):
        self.slowest = int(slowest)

    def analytics(self, df: pd.DataFrame) -> Dict[str, pd.DataFrame]:
        # Always return the same keys
        statuses = [s.value for s in Status]
        empty = {
            "by_category": pd.DataFrame(columns=["category"] + statuses + ["total"]),
            "slowest": pd.DataFrame(columns=["probe_id", "category", "status", "duration_ms"]),
            "problem_categories": pd.DataFrame(columns=["category", "problems"]),
        }
        if df is None or df.empty:
            return empty

        # Category x status counts, every status column present
        by_category = (
            pd.crosstab(df["category"], df["status"])
              .reindex(columns=statuses, fill_value=0)
              .reindex([c.value for c in Category if c.value in set(df["category"])])
        )
        by_category["total"] = by_category.sum(axis=1)
        by_category = by_category.reset_index()
        by_category.columns.name = None

        slowest = (
            df.sort_values(["duration_ms", "probe_id"], ascending=[False, True])
              .head(self.slowest)
              .reset_index(drop=True)
        )

        problems = df[df["status"].isin([Status.ERROR.value, Status.WARNING.value])]
        problem_categories = (
            problems.groupby("category")
                    .size()
                    .reset_index(name="problems")
                    .sort_values(["problems", "category"], ascending=[False, True])
                    .reset_index(drop=True)
        )
        if problem_categories.empty:
            problem_categories = empty["problem_categories"]

        return {
            "by_category": by_category,
            "slowest": slowest,
            "problem_categories": problem_categories,
        }

    def summarize(self, report: Report) -> Dict[str, List[Dict[str, Any]]]:
        """JSON-ready form: each frame as a list of records."""
        frames = self.analytics(outcomes_frame(report))
        out: Dict[str, List[Dict[str, Any]]] = {}
        for name, frame in frames.items():
            records = frame.to_dict(orient="records")
            for r in records:
                for k, v in r.items():
                    if hasattr(v, "item"):
                        r[k] = v.item()
            out[name] = records
        return out
