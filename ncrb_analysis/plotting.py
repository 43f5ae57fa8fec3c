import logging
from pathlib import Path
from typing import Dict, List

import pandas as pd
import plotly.graph_objects as go

from .config import (
    AGE_BAND_COLUMNS,
    AGE_BAND_LABELS,
    CHART_BUNDLE_NAME,
    CHART_FILES,
    REPORT_YEAR,
)
from .pipeline import AnalysisResult

logger = logging.getLogger(__name__)


# ============================================================
# Configuration / constants
# ============================================================

SOURCE_NOTE = "Source: National Crime Records Bureau (NCRB)"

CHILD_COLOR = "#E74C3C"
ADULT_COLOR = "#3498DB"
CASES_COLOR = "steelblue"
SHARE_COLOR = "#E67E22"

# Set2 for categories, Spectral for the eight age bands
CATEGORY_COLORS: List[str] = ["#66c2a5", "#fc8d62", "#8da0cb", "#e78ac3", "#a6d854", "#ffd92f"]
BAND_COLORS: List[str] = [
    "#d53e4f",
    "#f46d43",
    "#fdae61",
    "#fee08b",
    "#e6f598",
    "#abdda4",
    "#66c2a5",
    "#3288bd",
]

HOVER_TEMPLATE_COUNT = "%{y}<br>%{x:,}<extra></extra>"
HOVER_TEMPLATE_SHARE = "%{y}<br>%{x:.1f}%<extra></extra>"

IMAGE_SIZE: Dict[str, tuple] = {
    "top_cases": (1200, 800),
    "child_vs_adult": (1200, 800),
    "age_distribution": (1200, 700),
    "child_percentage": (1200, 800),
    "case_categories": (1000, 800),
    "age_breakdown": (1200, 800),
}


# ============================================================
# Helper functions
# ============================================================


def _base_layout(fig: go.Figure, title: str, subtitle: str | None = None) -> go.Figure:
    """Apply the shared title block and background."""
    text = f"<b>{title}</b>"
    if subtitle:
        text += f"<br><span style='font-size:12px;color:gray'>{subtitle}</span>"
    fig.update_layout(
        title=dict(text=text, x=0.02, xanchor="left"),
        plot_bgcolor="#f5f7fb",
        margin=dict(t=100, l=50, r=80, b=40),
    )
    return fig


def _empty_figure(title: str) -> go.Figure:
    fig = go.Figure()
    fig.add_annotation(text="No data", showarrow=False, font=dict(size=16))
    return _base_layout(fig, title)


def _counts(df: pd.DataFrame, column: str) -> pd.Series:
    return df[column].fillna(0).astype("int64")


def _names(df: pd.DataFrame) -> List[str]:
    return df["region_name"].astype(str).tolist()


# ============================================================
# Chart builders
# ============================================================


def plot_top_regions_by_cases(df: pd.DataFrame) -> go.Figure:
    """Horizontal bar of the regions with the most reported cases."""
    title = f"Top {len(df)} States/UTs by Rape Cases Reported ({REPORT_YEAR})"
    if df.empty:
        return _empty_figure(title)

    # Plotly draws the first category at the bottom; reverse so rank 1 is on top
    plot_df = df.iloc[::-1]
    fig = go.Figure(
        go.Bar(
            x=_counts(plot_df, "cases_reported"),
            y=_names(plot_df),
            orientation="h",
            marker_color=CASES_COLOR,
            opacity=0.8,
            text=_counts(plot_df, "cases_reported"),
            textposition="outside",
            hovertemplate=HOVER_TEMPLATE_COUNT,
        )
    )
    fig.update_xaxes(title_text="Number of Cases Reported", tickformat=",")
    fig.update_yaxes(title_text="State/UT")
    return _base_layout(fig, title, SOURCE_NOTE)


def plot_child_vs_adult(df: pd.DataFrame) -> go.Figure:
    """Stacked bar of child and adult victims for the regions with most victims."""
    title = f"Child vs Adult Victims by State/UT (Top {len(df)} States)"
    if df.empty:
        return _empty_figure(title)

    plot_df = df.iloc[::-1]
    fig = go.Figure()
    for column, label, color in (
        ("total_child_victims", "Child Victims (Below 18)", CHILD_COLOR),
        ("total_women_victims", "Adult Victims (18+)", ADULT_COLOR),
    ):
        fig.add_trace(
            go.Bar(
                x=_counts(plot_df, column),
                y=_names(plot_df),
                orientation="h",
                name=label,
                marker_color=color,
                opacity=0.8,
                hovertemplate=HOVER_TEMPLATE_COUNT,
            )
        )
    fig.update_layout(
        barmode="stack",
        legend=dict(title="Victim Type", orientation="h", x=0.5, y=-0.1, xanchor="center"),
    )
    fig.update_xaxes(title_text="Number of Victims", tickformat=",")
    fig.update_yaxes(title_text="State/UT")
    return _base_layout(fig, title, "Comparison of victim demographics")


def plot_age_distribution(histogram: pd.Series) -> go.Figure:
    """Bar chart of the nationwide age histogram, coloured by child/adult."""
    title = f"Age-wise Distribution of Victims Across India ({REPORT_YEAR})"
    if int(histogram.sum()) == 0:
        return _empty_figure(title)

    fig = go.Figure()
    n_child = len(AGE_BAND_LABELS) // 2
    for label, color, sl in (
        ("Children", CHILD_COLOR, slice(0, n_child)),
        ("Adults", ADULT_COLOR, slice(n_child, None)),
    ):
        part = histogram.iloc[sl]
        fig.add_trace(
            go.Bar(
                x=list(part.index),
                y=part.to_numpy(),
                name=label,
                marker_color=color,
                opacity=0.8,
                text=part.to_numpy(),
                textposition="outside",
            )
        )
    fig.update_xaxes(
        title_text="Age Group (Years)",
        categoryorder="array",
        categoryarray=AGE_BAND_LABELS,
    )
    fig.update_yaxes(title_text="Number of Victims", tickformat=",", rangemode="tozero")
    fig.update_layout(
        legend=dict(title="Category", orientation="h", x=0.5, y=-0.15, xanchor="center")
    )
    return _base_layout(fig, title, "Total victims across all states/UTs")


def plot_child_percentage(df: pd.DataFrame) -> go.Figure:
    """Horizontal bar of the highest child-victim shares."""
    title = f"States with Highest Child Victim Percentage ({REPORT_YEAR})"
    if df.empty:
        return _empty_figure(title)

    plot_df = df.iloc[::-1]
    fig = go.Figure(
        go.Bar(
            x=plot_df["child_percentage"],
            y=_names(plot_df),
            orientation="h",
            marker_color=SHARE_COLOR,
            opacity=0.8,
            text=[f"{value:.1f}%" for value in plot_df["child_percentage"]],
            textposition="outside",
            hovertemplate=HOVER_TEMPLATE_SHARE,
        )
    )
    fig.update_xaxes(title_text="Child Victims (%)")
    fig.update_yaxes(title_text="State/UT")
    return _base_layout(
        fig, title, f"Top {len(df)} states by proportion of child victims"
    )


def plot_case_categories(summary: pd.DataFrame) -> go.Figure:
    """Donut of regions per case-volume category."""
    title = "Distribution of States by Case Volume Category"
    if summary.empty:
        return _empty_figure(title)

    fig = go.Figure(
        go.Pie(
            labels=summary["case_category"],
            values=summary["region_count"],
            hole=0.4,
            sort=False,
            direction="clockwise",
            marker=dict(colors=CATEGORY_COLORS[: len(summary)]),
            text=[
                f"{n} states<br>({pct}%)"
                for n, pct in zip(summary["region_count"], summary["percentage"])
            ],
            textinfo="text",
        )
    )
    fig.update_layout(legend=dict(title="Category"))
    return _base_layout(fig, title)


def plot_age_breakdown(df: pd.DataFrame) -> go.Figure:
    """Proportional stacked bar of the eight age bands per region."""
    title = f"Age-wise Victim Distribution (Top {len(df)} States)"
    if df.empty:
        return _empty_figure(title)

    plot_df = df.iloc[::-1]
    fig = go.Figure()
    for column, label, color in zip(AGE_BAND_COLUMNS, AGE_BAND_LABELS, BAND_COLORS):
        fig.add_trace(
            go.Bar(
                x=_counts(plot_df, column),
                y=_names(plot_df),
                orientation="h",
                name=label,
                marker_color=color,
            )
        )
    fig.update_layout(barmode="stack", barnorm="percent", legend=dict(title="Age Group"))
    fig.update_xaxes(title_text="Proportion", ticksuffix="%", range=[0, 100])
    fig.update_yaxes(title_text="State/UT")
    return _base_layout(fig, title, "Proportional breakdown by age group")


# ============================================================
# Main entry points
# ============================================================


def build_figures(result: AnalysisResult) -> Dict[str, go.Figure]:
    """Build all six charts, keyed like ``config.CHART_FILES``."""
    rankings = result.rankings
    return {
        "top_cases": plot_top_regions_by_cases(rankings["chart_top_cases"]),
        "child_vs_adult": plot_child_vs_adult(rankings["chart_top_victims"]),
        "age_distribution": plot_age_distribution(result.age_histogram),
        "child_percentage": plot_child_percentage(rankings["chart_top_child_percentage"]),
        "case_categories": plot_case_categories(result.category_summary),
        "age_breakdown": plot_age_breakdown(rankings["top_cases"]),
    }


def save_figures(figures: Dict[str, go.Figure], output_dir: Path) -> List[Path]:
    """Write each figure as PNG plus one HTML file holding every chart.

    PNG export goes through kaleido.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []

    for key, fig in figures.items():
        path = output_dir / CHART_FILES[key]
        width, height = IMAGE_SIZE.get(key, (1200, 800))
        logger.info("Writing chart %s", path.name)
        fig.write_image(str(path), width=width, height=height, scale=2)
        written.append(path)

    bundle = output_dir / CHART_BUNDLE_NAME
    parts = [
        fig.to_html(full_html=False, include_plotlyjs="cdn" if i == 0 else False)
        for i, fig in enumerate(figures.values())
    ]
    bundle.write_text(
        "<html><head><meta charset='utf-8'></head><body>\n"
        + "\n".join(parts)
        + "\n</body></html>\n",
        encoding="utf-8",
    )
    written.append(bundle)
    return written
