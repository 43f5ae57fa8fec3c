"""
Configuration constants for the NCRB victims-by-age pipeline.
"""

from dataclasses import dataclass
from typing import Dict, List, Literal, Tuple

# ======================================================
#  DATA SOURCES / CONSTANTS
# ======================================================
REPORT_YEAR: int = 2022

# data.gov.in resource: "State/UT-wise Victims of Rape by Age Group, 2022"
FEED_URL: str = (
    "https://api.data.gov.in/resource/0a096e81-5a1b-4e23-9f28-1abd1db76d16"
)

# Public sample key published by the portal; overridden by DATA_GOV_IN_API_KEY.
SAMPLE_API_KEY: str = "579b464db66ec23bdd000001cdd3946e44ce4aad7209ff7b23ac571b"
API_KEY_ENV: str = "DATA_GOV_IN_API_KEY"

# The resource holds ~40 rows; one page is enough.
FEED_LIMIT: int = 50
FEED_TIMEOUT: int = 30

DEFAULT_SEP: str = ","

# ======================================================
#  CANONICAL SCHEMA
# ======================================================
CHILD_BAND_COLUMNS: List[str] = [
    "child_below_6",
    "child_6_to_12",
    "child_12_to_16",
    "child_16_to_18",
]
WOMEN_BAND_COLUMNS: List[str] = [
    "women_18_to_30",
    "women_30_to_45",
    "women_45_to_60",
    "women_above_60",
]
AGE_BAND_COLUMNS: List[str] = CHILD_BAND_COLUMNS + WOMEN_BAND_COLUMNS

AGE_BAND_LABELS: List[str] = ["<6", "6-12", "12-16", "16-18", "18-30", "30-45", "45-60", "60+"]
BAND_LABELS: Dict[str, str] = dict(zip(AGE_BAND_COLUMNS, AGE_BAND_LABELS))

COUNT_COLUMNS: List[str] = [
    "cases_reported",
    *CHILD_BAND_COLUMNS,
    "total_child_victims",
    *WOMEN_BAND_COLUMNS,
    "total_women_victims",
    "total_victims",
]
CANONICAL_COLUMNS: List[str] = ["region_name", *COUNT_COLUMNS]

DERIVED_COLUMNS: List[str] = [
    "child_percentage",
    "women_percentage",
    "case_category",
    "most_vulnerable_child_age_band",
]
OUTPUT_COLUMNS: List[str] = CANONICAL_COLUMNS + DERIVED_COLUMNS

# Verbose tag names used by the data.gov.in XML feed.
XML_TAG_ALIASES: Dict[str, str] = {
    "state_ut": "region_name",
    "cases_reported___col__3_": "cases_reported",
    "child_victims_of_rape__below_18_yrs____below_6_years___col__4_": "child_below_6",
    "child_victims_of_rape__below_18_yrs____6_years_and_above___below_12_years___col__5_": "child_6_to_12",
    "child_victims_of_rape__below_18_yrs____12_years_and_above___below_16_years___col__6_": "child_12_to_16",
    "child_victims_of_rape__below_18_yrs____16_years_and_above___below_18_years___col__7_": "child_16_to_18",
    "child_victims_of_rape__below_18_yrs____total_girl___child_victims___col__8_": "total_child_victims",
    "women_victims_of_rape__above_18_years____18_years_and_above___below_30_years___col__9_": "women_18_to_30",
    "women_victims_of_rape__above_18_years____30_years_and_above___below_45_years___col__10_": "women_30_to_45",
    "women_victims_of_rape__above_18_years____45_years_and_above___below_60_years___col__11_": "women_45_to_60",
    "women_victims_of_rape__above_18_years____60_years_and_above___col__12_": "women_above_60",
    "women_victims_of_rape__above_18_years____total_women___adult_victims___col__13_": "total_women_victims",
    "total_victims__col_8_col_13____col__14_": "total_victims",
}

# Punctuated headers of the portal's CSV download.  Canonical names are
# accepted too so the cleaned output can be fed back in.
CSV_HEADER_ALIASES: Dict[str, str] = {
    "State/UT": "region_name",
    "Cases Reported (Col. 3)": "cases_reported",
    "Child Victims of Rape (Below 18 Yrs) - Below 6 Years (Col. 4)": "child_below_6",
    "Child Victims of Rape (Below 18 Yrs) - 6 Years & Above - Below 12 Years (Col. 5)": "child_6_to_12",
    "Child Victims of Rape (Below 18 Yrs) - 12 Years & Above - Below 16 Years (Col. 6)": "child_12_to_16",
    "Child Victims of Rape (Below 18 Yrs) - 16 Years & Above - Below 18 Years (Col. 7)": "child_16_to_18",
    "Child Victims of Rape (Below 18 Yrs) - Total Girl / Child Victims (Col. 8)": "total_child_victims",
    "Women Victims of Rape (Above 18 Years) - 18 Years & Above - Below 30 Years (Col. 9)": "women_18_to_30",
    "Women Victims of Rape (Above 18 Years) - 30 Years & Above - Below 45 Years (Col. 10)": "women_30_to_45",
    "Women Victims of Rape (Above 18 Years) - 45 Years & Above - Below 60 Years (Col. 11)": "women_45_to_60",
    "Women Victims of Rape (Above 18 Years) - 60 Years & Above (Col. 12)": "women_above_60",
    "Women Victims of Rape (Above 18 Years) - Total Women / Adult Victims (Col. 13)": "total_women_victims",
    "Total Victims (Col.8+Col.13) (Col. 14)": "total_victims",
    **{column: column for column in CANONICAL_COLUMNS},
}

# Metadata elements read from the XML feed header.
XML_METADATA_TAGS: Tuple[str, ...] = ("title", "desc", "source", "total", "updated_date")

# Values treated as "not reported" before numeric coercion.
MISSING_TOKENS: Tuple[str, ...] = ("", "na", "n/a", "nan", "-", "--", "null", "none")

# ======================================================
#  OUTPUTS
# ======================================================
OUTPUT_DIR_ENV: str = "NCRB_OUTPUT_DIR"
CLEANED_CSV_NAME: str = "ncrb_victims_cleaned.csv"
REPORT_NAME: str = "ncrb_analysis_report.txt"
SUMMARY_NAME: str = "dashboard_summary.json"
CHART_BUNDLE_NAME: str = "generated_plots.html"

REPORT_TITLE: str = f"NCRB Rape Victims Analysis {REPORT_YEAR}"

# Chart key -> PNG file name (order = report order).
CHART_FILES: Dict[str, str] = {
    "top_cases": "plot1_top_regions_cases.png",
    "child_vs_adult": "plot2_child_vs_adult_victims.png",
    "age_distribution": "plot3_age_distribution.png",
    "child_percentage": "plot4_child_victim_percentage.png",
    "case_categories": "plot5_case_volume_categories.png",
    "age_breakdown": "plot6_age_breakdown_top_regions.png",
}

# ======================================================
#  DERIVATION DEFAULTS
# ======================================================
BIN_EDGES: Tuple[int, ...] = (100, 500, 1000)
CATEGORY_LABELS: Tuple[str, ...] = ("Low", "Medium", "High", "Very High")
TIE_LABEL: str = "multiple_equal"
NO_VICTIMS_LABEL: str = "no victims"

DEFAULT_TOP_N: int = 10
DEFAULT_CHART_TOP_N: int = 15
DEFAULT_MAX_MISSING_FRACTION: float = 0.1


@dataclass(frozen=True)
class PipelineConfig:
    """Explicit knobs for the deriver and aggregator.

    Bin edges are half-open with the lower bound inclusive, so
    ``bin_edges=(100, 500, 1000)`` yields ``[0, 100)``, ``[100, 500)``,
    ``[500, 1000)`` and ``[1000, inf)``.
    """

    bin_edges: Tuple[int, ...] = BIN_EDGES
    category_labels: Tuple[str, ...] = CATEGORY_LABELS
    tie_label: str = TIE_LABEL
    no_victims_label: str = NO_VICTIMS_LABEL
    missing_policy: Literal["zero-fill"] = "zero-fill"
    recompute_totals: bool = False
    max_missing_fraction: float = DEFAULT_MAX_MISSING_FRACTION
    strict: bool = False
    top_n: int = DEFAULT_TOP_N
    chart_top_n: int = DEFAULT_CHART_TOP_N
    excluded_regions: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        edges = list(self.bin_edges)
        if any(lo >= hi for lo, hi in zip(edges, edges[1:])):
            raise ValueError(f"bin_edges must be strictly increasing, got {edges}")
        if len(self.category_labels) != len(edges) + 1:
            raise ValueError(
                "category_labels must have exactly one more entry than bin_edges "
                f"({len(self.category_labels)} labels, {len(edges)} edges)"
            )
        if self.missing_policy != "zero-fill":
            raise ValueError(f"Unsupported missing_policy: {self.missing_policy!r}")
        if not 0.0 <= self.max_missing_fraction <= 1.0:
            raise ValueError("max_missing_fraction must lie in [0, 1]")
        if self.top_n < 1 or self.chart_top_n < 1:
            raise ValueError("top_n and chart_top_n must be positive")
