"""
NCRB victims analysis: read the state/UT table from a CSV file or the
data.gov.in XML feed, derive per-region metrics and write the cleaned
dataset, text report, JSON summary and charts.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from .config import (
    BIN_EDGES,
    DEFAULT_CHART_TOP_N,
    DEFAULT_MAX_MISSING_FRACTION,
    DEFAULT_SEP,
    DEFAULT_TOP_N,
    FEED_LIMIT,
    FEED_URL,
    PipelineConfig,
)
from .data_manager import ChartExportError, resolve_output_dir, write_outputs
from .pipeline import IncompleteDataError, run_pipeline
from .sources import CsvSource, RecordSource, SourceUnavailable, XmlFeedSource

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Clean and summarize NCRB state/UT-wise rape victim counts by age "
            "group; reads a CSV file or the data.gov.in XML feed."
        )
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--csv",
        dest="csv_path",
        default=None,
        help="Path to a CSV export (portal headers or this tool's cleaned output).",
    )
    source.add_argument(
        "--url",
        default=FEED_URL,
        help="data.gov.in resource URL for the XML feed (default: NCRB 2022 resource).",
    )
    parser.add_argument(
        "--sep",
        default=DEFAULT_SEP,
        help=f"Delimiter used in the CSV file (default: '{DEFAULT_SEP}').",
    )
    parser.add_argument(
        "--api-key",
        default=None,
        help="data.gov.in API key (default: $DATA_GOV_IN_API_KEY, then the portal sample key).",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=FEED_LIMIT,
        help=f"Maximum records requested from the feed (default: {FEED_LIMIT}).",
    )
    parser.add_argument(
        "--output-dir",
        default=None,
        help="Directory for outputs (default: $NCRB_OUTPUT_DIR, then ./output).",
    )
    parser.add_argument(
        "--top-n",
        type=int,
        default=DEFAULT_TOP_N,
        help=f"Rows in the report's ranking tables (default: {DEFAULT_TOP_N}).",
    )
    parser.add_argument(
        "--chart-top-n",
        type=int,
        default=DEFAULT_CHART_TOP_N,
        help=f"Regions shown in ranking charts (default: {DEFAULT_CHART_TOP_N}).",
    )
    parser.add_argument(
        "--bin-edges",
        type=int,
        nargs="+",
        default=list(BIN_EDGES),
        help="Case-volume category edges (default: %(default)s).",
    )
    parser.add_argument(
        "--exclude-region",
        action="append",
        default=[],
        help="Region name to drop before analysis, e.g. a national total row. Repeatable.",
    )
    parser.add_argument(
        "--recompute-totals",
        action="store_true",
        help="Rebuild child/women/overall totals from the age bands instead of trusting the source.",
    )
    parser.add_argument(
        "--max-missing-fraction",
        type=float,
        default=DEFAULT_MAX_MISSING_FRACTION,
        help="Warn when a column has more missing values than this fraction.",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail instead of warning when the missing-value threshold is exceeded.",
    )
    parser.add_argument("--no-charts", action="store_true", help="Skip chart export.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    return parser.parse_args(argv)


def build_source(args: argparse.Namespace) -> RecordSource:
    if args.csv_path:
        return CsvSource(args.csv_path, sep=args.sep)
    return XmlFeedSource(args.url, api_key=args.api_key, limit=args.limit)


def build_config(args: argparse.Namespace) -> PipelineConfig:
    return PipelineConfig(
        bin_edges=tuple(args.bin_edges),
        recompute_totals=args.recompute_totals,
        max_missing_fraction=args.max_missing_fraction,
        strict=args.strict,
        top_n=args.top_n,
        chart_top_n=args.chart_top_n,
        excluded_regions=tuple(args.exclude_region),
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = build_config(args)
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    source = build_source(args)
    try:
        result = run_pipeline(source, config)
    except SourceUnavailable as exc:
        logger.error("Source unavailable, nothing was analysed: %s", exc)
        return 1
    except IncompleteDataError as exc:
        logger.error("Completeness check failed: %s", exc)
        return 1

    output_dir = resolve_output_dir(args.output_dir)
    try:
        written = write_outputs(result, output_dir, charts=not args.no_charts)
    except ChartExportError as exc:
        logger.error("%s (CSV, report and summary were written; rerun with --no-charts to skip)", exc)
        return 1

    summary = result.summary
    logger.info("--- ANALYSIS COMPLETE ---")
    for path in written:
        logger.info("  - %s", path.name)
    if summary.has_data:
        leader = result.rankings["top_cases"].iloc[0]
        logger.info(
            "Cases: %d | Victims: %d | Child: %d (%.2f%%) | Adult: %d (%.2f%%) | Most cases: %s (%s)",
            summary.total_cases,
            summary.total_all_victims,
            summary.total_child_victims,
            summary.child_victim_percentage,
            summary.total_women_victims,
            summary.women_victim_percentage,
            leader["region_name"],
            leader["cases_reported"],
        )
    else:
        logger.warning("No regions in the source; outputs contain zero totals only")
    return 0


if __name__ == "__main__":
    sys.exit(main())
