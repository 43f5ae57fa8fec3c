"""Core pipeline logic: clean region rows, derive metrics, aggregate.

This module holds the part of the analysis that must give identical
numbers whichever front end delivered the data:

* The normalizer maps raw field names onto the canonical schema through a
  fixed alias table and coerces every count to a nullable integer.
* The deriver adds per-region percentages, the case-volume category and
  the most affected child age band.
* The aggregator builds rankings, whole-dataset totals, the nationwide age
  histogram and the per-category summary.

The primary entry point is :func:`run_pipeline`, which reads a
:class:`~ncrb_analysis.sources.RecordSource` and returns an
:class:`AnalysisResult` ready for the report and chart writers.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from .config import (
    AGE_BAND_COLUMNS,
    AGE_BAND_LABELS,
    BAND_LABELS,
    BIN_EDGES,
    CANONICAL_COLUMNS,
    CATEGORY_LABELS,
    CHILD_BAND_COLUMNS,
    COUNT_COLUMNS,
    CSV_HEADER_ALIASES,
    DEFAULT_TOP_N,
    MISSING_TOKENS,
    WOMEN_BAND_COLUMNS,
    XML_TAG_ALIASES,
    PipelineConfig,
)
from .sources import RawRecord, RecordSource

# Module‑level logger
logger = logging.getLogger(__name__)


class IncompleteDataError(ValueError):
    """Raised in strict mode when a column has too many missing values."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def ensure_columns(df: pd.DataFrame, required: List[str]) -> None:
    """Raise an error if the DataFrame lacks any of the required columns."""
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise KeyError(f"Missing expected columns: {missing}")


def _filled(df: pd.DataFrame, column: str) -> pd.Series:
    """Return a count column with missing values zero-filled as ``int64``."""
    return df[column].fillna(0).astype("int64")


def _is_blank(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in MISSING_TOKENS
    return value is None or bool(pd.isna(value))


def _clean_count(value: Any) -> Optional[float]:
    """Parse one raw count; ``None`` for blanks, junk, negatives and fractions."""
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip().replace(",", "")
        if text.lower() in MISSING_TOKENS:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None

    # NaN and infinities fail is_integer()
    if number != number or number < 0 or not number.is_integer():
        return None
    return number


def coerce_counts(series: pd.Series) -> pd.Series:
    """Coerce raw values to non-negative nullable integers (``Int64``).

    Values that are present but cannot be read as a count are logged and
    turned into the missing sentinel ``pd.NA``.
    """
    cleaned = pd.to_numeric(series.map(_clean_count), errors="coerce")
    result = cleaned.astype("Int64")

    present = ~series.map(_is_blank).astype(bool)
    rejected = int((present & result.isna()).sum())
    if rejected:
        logger.warning("Column %s: %d value(s) could not be read as counts", series.name, rejected)
    return result


# ---------------------------------------------------------------------------
# Record normalizer
# ---------------------------------------------------------------------------


def normalize_records(
    records: Sequence[Mapping[str, Any]],
    aliases: Optional[Mapping[str, str]] = None,
    *,
    excluded_regions: Sequence[str] = (),
) -> pd.DataFrame:
    """Build the canonical region table from raw field mappings.

    Parameters
    ----------
    records : Sequence[Mapping[str, Any]]
        One mapping per region, raw field name to raw value.
    aliases : Mapping[str, str], optional
        Fixed lookup from raw field name to canonical column.  Defaults to
        the union of the CSV and XML tables.
    excluded_regions : Sequence[str], optional
        Region names to drop (e.g. national total rows).

    Returns
    -------
    pd.DataFrame
        Columns ``CANONICAL_COLUMNS``; ``region_name`` as ``string`` and all
        counts as ``Int64`` with ``pd.NA`` for missing values.  The index
        holds each row's position in ``records``.
    """
    alias_map = dict(aliases) if aliases is not None else {**CSV_HEADER_ALIASES, **XML_TAG_ALIASES}

    rows: List[Dict[str, Any]] = []
    absent: Dict[str, int] = {}
    unmapped: set[str] = set()
    for raw in records:
        row: Dict[str, Any] = {}
        for key, value in raw.items():
            canonical = alias_map.get(str(key).strip())
            if canonical is None:
                unmapped.add(str(key))
                continue
            row.setdefault(canonical, value)
        for column in CANONICAL_COLUMNS:
            if column not in row:
                absent[column] = absent.get(column, 0) + 1
        rows.append(row)

    if unmapped:
        logger.debug("Ignoring unmapped fields: %s", sorted(unmapped))
    if absent:
        logger.warning("Schema mismatch, fields missing from raw records: %s", absent)

    df = pd.DataFrame(rows, columns=CANONICAL_COLUMNS)
    df["region_name"] = df["region_name"].astype("string").str.strip().replace({"": pd.NA})
    for column in COUNT_COLUMNS:
        df[column] = coerce_counts(df[column])

    blank = df["region_name"].isna()
    if blank.any():
        logger.warning("Dropping %d row(s) without a region name", int(blank.sum()))
        df = df.loc[~blank]

    if excluded_regions:
        excluded = df["region_name"].isin(list(excluded_regions))
        if excluded.any():
            logger.info("Excluding %d region row(s): %s", int(excluded.sum()), list(excluded_regions))
            df = df.loc[~excluded]

    duplicated = df["region_name"].duplicated(keep="first")
    if duplicated.any():
        logger.warning(
            "Duplicate region names, keeping first occurrence: %s",
            sorted(df.loc[duplicated, "region_name"].unique()),
        )
        df = df.loc[~duplicated]

    return df.copy()


def check_completeness(
    df: pd.DataFrame,
    max_missing_fraction: float,
    *,
    strict: bool = False,
) -> pd.Series:
    """Return the missing fraction of every canonical column.

    Columns above ``max_missing_fraction`` are logged; in strict mode they
    raise :class:`IncompleteDataError` instead.
    """
    if df.empty:
        return pd.Series(0.0, index=CANONICAL_COLUMNS, name="missing_fraction")

    fractions = df[CANONICAL_COLUMNS].isna().mean().rename("missing_fraction")
    offenders = fractions[fractions > max_missing_fraction]
    if not offenders.empty:
        detail = ", ".join(f"{col}={frac:.0%}" for col, frac in offenders.items())
        message = f"Columns over the {max_missing_fraction:.0%} missing threshold: {detail}"
        if strict:
            raise IncompleteDataError(message)
        logger.warning(message)
    return fractions


def check_total_consistency(df: pd.DataFrame) -> pd.DataFrame:
    """List rows whose provided totals disagree with their summed age bands.

    Missing totals are not reported; missing bands count as zero.
    """
    columns = ["region_name", "field", "provided", "expected"]
    if df.empty:
        return pd.DataFrame(columns=columns)

    filled = df[COUNT_COLUMNS].fillna(0).astype("int64")
    expected = {
        "total_child_victims": filled[CHILD_BAND_COLUMNS].sum(axis=1),
        "total_women_victims": filled[WOMEN_BAND_COLUMNS].sum(axis=1),
        "total_victims": filled["total_child_victims"] + filled["total_women_victims"],
    }

    mismatches: List[Dict[str, Any]] = []
    for column, sums in expected.items():
        mask = df[column].notna().to_numpy() & (filled[column] != sums).to_numpy()
        for idx in df.index[mask]:
            mismatches.append(
                {
                    "region_name": df.at[idx, "region_name"],
                    "field": column,
                    "provided": int(filled.at[idx, column]),
                    "expected": int(sums.at[idx]),
                }
            )

    if mismatches:
        logger.warning(
            "%d provided total(s) differ from the summed age bands: %s",
            len(mismatches),
            sorted({row["region_name"] for row in mismatches}),
        )
    return pd.DataFrame(mismatches, columns=columns)


def recompute_totals(df: pd.DataFrame) -> pd.DataFrame:
    """Replace the three totals by the sums of their age bands."""
    out = df.copy()
    child = out[CHILD_BAND_COLUMNS].fillna(0).astype("int64").sum(axis=1)
    women = out[WOMEN_BAND_COLUMNS].fillna(0).astype("int64").sum(axis=1)
    out["total_child_victims"] = child.astype("Int64")
    out["total_women_victims"] = women.astype("Int64")
    out["total_victims"] = (child + women).astype("Int64")
    return out


def sort_by_cases(df: pd.DataFrame) -> pd.DataFrame:
    """Stable descending sort on ``cases_reported``; ties keep input order."""
    return df.sort_values(
        "cases_reported", ascending=False, kind="mergesort", na_position="last"
    )


# ---------------------------------------------------------------------------
# Metric deriver
# ---------------------------------------------------------------------------


def safe_percentage(numerator: pd.Series, denominator: pd.Series) -> pd.Series:
    """``100 * numerator / denominator``, exactly ``0.0`` where the denominator is 0.

    Missing values count as zero and results are clipped to ``[0, 100]`` so
    a provided total smaller than its part cannot push a share past 100.
    """
    num = numerator.fillna(0).astype("float64")
    den = denominator.fillna(0).astype("float64")
    pct = (num / den.where(den > 0)) * 100
    return pct.fillna(0.0).clip(lower=0.0, upper=100.0)


def categorize_cases(
    value: Any,
    bin_edges: Sequence[int] = BIN_EDGES,
    labels: Sequence[str] = CATEGORY_LABELS,
) -> str:
    """Map a case count onto its half-open, lower-inclusive volume bin."""
    if value is None or pd.isna(value):
        value = 0
    for edge, label in zip(bin_edges, labels):
        if value < edge:
            return label
    return labels[-1]


def most_vulnerable_child_band(df: pd.DataFrame, config: PipelineConfig) -> pd.Series:
    """Label of the largest child age band per region.

    Returns ``config.no_victims_label`` when the region has no child
    victims and ``config.tie_label`` when two or more bands share the
    maximum.
    """
    if df.empty:
        return pd.Series([], index=df.index, dtype=object)

    bands = df[CHILD_BAND_COLUMNS].fillna(0).astype("int64")
    peak = bands.max(axis=1)
    at_peak = bands.eq(peak, axis=0).sum(axis=1)
    leader = bands.idxmax(axis=1).map(BAND_LABELS)

    total = _filled(df, "total_child_victims")
    labels = leader.where(at_peak == 1, config.tie_label)
    return labels.where((total > 0) & (peak > 0), config.no_victims_label)


def derive_metrics(df: pd.DataFrame, config: Optional[PipelineConfig] = None) -> pd.DataFrame:
    """Add the per-region derived columns.

    Parameters
    ----------
    df : pd.DataFrame
        Output of :func:`normalize_records`.
    config : PipelineConfig, optional
        Bin edges, category labels and sentinel labels.  When
        ``recompute_totals`` is set the three totals are rebuilt from the
        age bands first.

    Returns
    -------
    pd.DataFrame
        A new DataFrame with ``child_percentage``, ``women_percentage``,
        ``case_category`` and ``most_vulnerable_child_age_band`` appended.
    """
    config = config or PipelineConfig()
    ensure_columns(df, CANONICAL_COLUMNS)

    out = recompute_totals(df) if config.recompute_totals else df.copy()
    out["child_percentage"] = safe_percentage(out["total_child_victims"], out["total_victims"])
    out["women_percentage"] = safe_percentage(out["total_women_victims"], out["total_victims"])
    out["case_category"] = pd.Series(
        [categorize_cases(v, config.bin_edges, config.category_labels) for v in out["cases_reported"]],
        index=out.index,
        dtype=object,
    )
    out["most_vulnerable_child_age_band"] = most_vulnerable_child_band(out, config)
    return out


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AggregateSummary:
    """Whole-dataset totals; ``has_data`` is False for an empty dataset."""

    region_count: int
    total_cases: int
    total_child_victims: int
    total_women_victims: int
    total_all_victims: int
    avg_cases_per_region: float
    child_victim_percentage: float
    women_victim_percentage: float
    has_data: bool

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AnalysisResult:
    """Everything the report and chart writers consume."""

    dataset: pd.DataFrame
    summary: AggregateSummary
    age_histogram: pd.Series
    age_percentages: pd.Series
    category_summary: pd.DataFrame
    rankings: Dict[str, pd.DataFrame]
    completeness: pd.Series = field(default_factory=lambda: pd.Series(dtype="float64"))
    total_mismatches: pd.DataFrame = field(default_factory=pd.DataFrame)
    metadata: Dict[str, str] = field(default_factory=dict)
    source_name: str = ""
    config: PipelineConfig = field(default_factory=PipelineConfig)


def _ranked(df: pd.DataFrame, column: str, *, ascending: bool, n: int) -> pd.DataFrame:
    # Restore input order first so the stable sort breaks ties by it.
    ordered = df.sort_index(kind="mergesort").sort_values(
        column, ascending=ascending, kind="mergesort", na_position="last"
    )
    return ordered.head(n)


def top_n_by_cases(df: pd.DataFrame, n: int = DEFAULT_TOP_N) -> pd.DataFrame:
    return _ranked(df, "cases_reported", ascending=False, n=n)


def bottom_n_by_cases(df: pd.DataFrame, n: int = DEFAULT_TOP_N) -> pd.DataFrame:
    return _ranked(df, "cases_reported", ascending=True, n=n)


def top_n_by_victims(df: pd.DataFrame, n: int = DEFAULT_TOP_N) -> pd.DataFrame:
    return _ranked(df, "total_victims", ascending=False, n=n)


def top_n_by_child_percentage(df: pd.DataFrame, n: int = DEFAULT_TOP_N) -> pd.DataFrame:
    """Highest child shares among regions with at least one victim."""
    with_victims = df.loc[_filled(df, "total_victims") > 0]
    return _ranked(with_victims, "child_percentage", ascending=False, n=n)


def summarize(df: pd.DataFrame) -> AggregateSummary:
    """Unweighted sums and means over every region.

    Missing counts contribute zero to the sums; the average skips them.
    An empty dataset yields zero totals with ``has_data=False``.
    """
    if df.empty:
        logger.warning("Dataset is empty; reporting zero totals")
        return AggregateSummary(0, 0, 0, 0, 0, 0.0, 0.0, 0.0, has_data=False)

    total_cases = int(_filled(df, "cases_reported").sum())
    total_child = int(_filled(df, "total_child_victims").sum())
    total_women = int(_filled(df, "total_women_victims").sum())
    total_all = int(_filled(df, "total_victims").sum())
    reported = df["cases_reported"].dropna()
    avg_cases = float(reported.mean()) if len(reported) else 0.0

    def share(part: int) -> float:
        return round(part / total_all * 100, 2) if total_all > 0 else 0.0

    return AggregateSummary(
        region_count=len(df),
        total_cases=total_cases,
        total_child_victims=total_child,
        total_women_victims=total_women,
        total_all_victims=total_all,
        avg_cases_per_region=avg_cases,
        child_victim_percentage=share(total_child),
        women_victim_percentage=share(total_women),
        has_data=True,
    )


def age_histogram(df: pd.DataFrame) -> pd.Series:
    """Nationwide victims per age band, in fixed band order."""
    sums = df[AGE_BAND_COLUMNS].fillna(0).astype("int64").sum()
    return pd.Series(sums.to_numpy(), index=AGE_BAND_LABELS, name="victims", dtype="int64")


def age_distribution_percentages(histogram: pd.Series) -> pd.Series:
    """Share of each band in the histogram, rounded to two decimals."""
    total = int(histogram.sum())
    if total == 0:
        return pd.Series(0.0, index=histogram.index, name="percentage")
    return (histogram / total * 100).round(2).rename("percentage")


def category_summary(df: pd.DataFrame, config: Optional[PipelineConfig] = None) -> pd.DataFrame:
    """Count, total and mean cases per case category present in ``df``.

    ``mean_cases`` skips missing counts; ``percentage`` is the category's
    share of regions (one decimal).  Rows follow the category order of
    ``config.category_labels``.
    """
    config = config or PipelineConfig()
    columns = ["case_category", "region_count", "total_cases", "mean_cases", "percentage"]
    if df.empty:
        return pd.DataFrame(columns=columns)

    frame = pd.DataFrame(
        {
            "case_category": pd.Categorical(
                df["case_category"].to_numpy(),
                categories=list(config.category_labels),
                ordered=True,
            ),
            "cases_reported": df["cases_reported"].to_numpy(dtype="float64", na_value=float("nan")),
        }
    )
    grouped = frame.groupby("case_category", observed=True, as_index=False).agg(
        region_count=("cases_reported", "size"),
        total_cases=("cases_reported", "sum"),
        mean_cases=("cases_reported", "mean"),
    )
    grouped["total_cases"] = grouped["total_cases"].astype("int64")
    grouped["mean_cases"] = grouped["mean_cases"].fillna(0.0).round(2)
    grouped["percentage"] = (grouped["region_count"] / len(df) * 100).round(1)
    grouped["case_category"] = grouped["case_category"].astype(str)
    return grouped[columns].reset_index(drop=True)


def aggregate(df: pd.DataFrame, config: Optional[PipelineConfig] = None) -> AnalysisResult:
    """Compute every summary view over the derived dataset.

    The input is never modified; ranking views are new frames.
    """
    config = config or PipelineConfig()
    histogram = age_histogram(df)
    rankings = {
        "top_cases": top_n_by_cases(df, config.top_n),
        "bottom_cases": bottom_n_by_cases(df, config.top_n),
        "top_child_percentage": top_n_by_child_percentage(df, config.top_n),
        "chart_top_cases": top_n_by_cases(df, config.chart_top_n),
        "chart_top_victims": top_n_by_victims(df, config.chart_top_n),
        "chart_top_child_percentage": top_n_by_child_percentage(df, config.chart_top_n),
    }
    return AnalysisResult(
        dataset=df,
        summary=summarize(df),
        age_histogram=histogram,
        age_percentages=age_distribution_percentages(histogram),
        category_summary=category_summary(df, config),
        rankings=rankings,
        config=config,
    )


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


def process_records(
    records: Sequence[RawRecord],
    aliases: Optional[Mapping[str, str]] = None,
    config: Optional[PipelineConfig] = None,
) -> AnalysisResult:
    """Run normalizer, deriver and aggregator over already-read raw rows."""
    config = config or PipelineConfig()

    # 1. Normalize and check the raw rows
    normalized = normalize_records(records, aliases, excluded_regions=config.excluded_regions)
    completeness = check_completeness(
        normalized, config.max_missing_fraction, strict=config.strict
    )
    mismatches = check_total_consistency(normalized)

    # 2. One-time descending order used by every downstream view
    ordered = sort_by_cases(normalized)

    # 3. Derive and aggregate
    derived = derive_metrics(ordered, config)
    result = aggregate(derived, config)
    logger.info(
        "Processed %d regions: %d cases, %d victims",
        result.summary.region_count,
        result.summary.total_cases,
        result.summary.total_all_victims,
    )
    return replace(result, completeness=completeness, total_mismatches=mismatches)


def run_pipeline(source: RecordSource, config: Optional[PipelineConfig] = None) -> AnalysisResult:
    """Read ``source`` and run the full analysis.

    :class:`~ncrb_analysis.sources.SourceUnavailable` from the reader
    propagates; every other data problem is recovered inside the core.
    """
    records = source.read()
    result = process_records(records, source.aliases, config)
    return replace(result, metadata=dict(source.metadata), source_name=source.name)
