"""Plain-text report and dashboard summary built from an :class:`AnalysisResult`."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd

from .config import REPORT_TITLE
from .pipeline import AnalysisResult

RULE = "=" * 60
SUB_RULE = "-" * 60

RANKING_COLUMNS = ["region_name", "cases_reported", "total_child_victims", "total_women_victims"]
CHILD_SHARE_COLUMNS = ["region_name", "child_percentage", "total_victims"]

METADATA_LABELS = {
    "title": "Title",
    "desc": "Description",
    "source": "Source",
    "total": "Total records",
    "updated_date": "Updated",
}


def _table(df: pd.DataFrame, columns: List[str]) -> str:
    if df.empty:
        return "(none)"
    view = df[columns].reset_index(drop=True)
    view.index = view.index + 1
    return view.to_string(float_format=lambda v: f"{v:.2f}")


def _section(title: str, body: str) -> List[str]:
    return ["", "", title, SUB_RULE, body]


def render_report(
    result: AnalysisResult,
    *,
    title: str = REPORT_TITLE,
    generated_at: Optional[datetime] = None,
) -> str:
    """Render the analysis as a fixed-layout text report."""
    generated_at = generated_at or datetime.now()
    summary = result.summary
    top_n = result.config.top_n

    lines: List[str] = [RULE, title.upper() + " REPORT", RULE]

    meta = {key: value for key, value in result.metadata.items() if value}
    if meta:
        body = "\n".join(f"{METADATA_LABELS.get(key, key)}: {value}" for key, value in meta.items())
        lines += _section("DATASET INFORMATION", body)

    if not summary.has_data:
        lines += _section("OVERALL STATISTICS", "No data: the dataset contains no regions.")
    else:
        overall = "\n".join(
            [
                f"Regions:                  {summary.region_count}",
                f"Total cases reported:     {summary.total_cases}",
                f"Total victims:            {summary.total_all_victims}",
                f"Child victims:            {summary.total_child_victims}"
                f" ({summary.child_victim_percentage:.2f}%)",
                f"Adult victims:            {summary.total_women_victims}"
                f" ({summary.women_victim_percentage:.2f}%)",
                f"Average cases per region: {summary.avg_cases_per_region:.2f}",
            ]
        )
        lines += _section("OVERALL STATISTICS", overall)

        lines += _section(
            f"TOP {top_n} REGIONS BY CASES REPORTED",
            _table(result.rankings["top_cases"], RANKING_COLUMNS),
        )
        lines += _section(
            f"BOTTOM {top_n} REGIONS BY CASES REPORTED",
            _table(result.rankings["bottom_cases"], RANKING_COLUMNS),
        )
        lines += _section(
            f"TOP {top_n} REGIONS BY CHILD VICTIM PERCENTAGE",
            _table(result.rankings["top_child_percentage"], CHILD_SHARE_COLUMNS),
        )

        distribution = pd.DataFrame(
            {"victims": result.age_histogram, "percentage": result.age_percentages}
        )
        distribution.index.name = "age_group"
        lines += _section(
            "AGE-WISE DISTRIBUTION",
            distribution.to_string(float_format=lambda v: f"{v:.2f}"),
        )

        lines += _section(
            "REGIONS BY CASE VOLUME CATEGORY",
            result.category_summary.to_string(index=False, float_format=lambda v: f"{v:.2f}"),
        )

    if not result.total_mismatches.empty:
        lines += _section(
            "TOTALS THAT DIFFER FROM SUMMED AGE BANDS",
            result.total_mismatches.to_string(index=False),
        )

    lines += ["", "", f"REPORT GENERATED ON: {generated_at:%Y-%m-%d %H:%M:%S}", ""]
    return "\n".join(lines)


def dashboard_summary(
    result: AnalysisResult,
    *,
    title: str = REPORT_TITLE,
    generated_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """JSON-serializable digest of the key figures."""
    generated_at = generated_at or datetime.now()
    top_five = result.rankings["top_cases"].head(5)
    return {
        "report_title": title,
        "report_date": generated_at.date().isoformat(),
        "source": result.source_name,
        "metadata": dict(result.metadata),
        "key_metrics": result.summary.as_dict(),
        "top_5_regions": [
            {
                "region_name": str(row.region_name),
                "cases_reported": int(row.cases_reported) if pd.notna(row.cases_reported) else None,
                "total_child_victims": int(row.total_child_victims) if pd.notna(row.total_child_victims) else None,
                "total_women_victims": int(row.total_women_victims) if pd.notna(row.total_women_victims) else None,
            }
            for row in top_five.itertuples(index=False)
        ],
        "age_distribution": {label: int(value) for label, value in result.age_histogram.items()},
        "category_summary": [
            {
                "case_category": str(row.case_category),
                "region_count": int(row.region_count),
                "total_cases": int(row.total_cases),
                "mean_cases": float(row.mean_cases),
                "percentage": float(row.percentage),
            }
            for row in result.category_summary.itertuples(index=False)
        ],
    }
