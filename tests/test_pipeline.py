from __future__ import annotations

import pandas as pd
import pytest

from ncrb_analysis.config import AGE_BAND_COLUMNS, CANONICAL_COLUMNS, PipelineConfig
from ncrb_analysis.pipeline import (
    IncompleteDataError,
    age_distribution_percentages,
    age_histogram,
    bottom_n_by_cases,
    categorize_cases,
    category_summary,
    check_completeness,
    check_total_consistency,
    derive_metrics,
    normalize_records,
    process_records,
    safe_percentage,
    summarize,
    top_n_by_cases,
    top_n_by_child_percentage,
)


def _record(name: str, cases: int, child: list[int], women: list[int], **overrides) -> dict:
    row = {
        "region_name": name,
        "cases_reported": str(cases),
        "child_below_6": str(child[0]),
        "child_6_to_12": str(child[1]),
        "child_12_to_16": str(child[2]),
        "child_16_to_18": str(child[3]),
        "total_child_victims": str(sum(child)),
        "women_18_to_30": str(women[0]),
        "women_30_to_45": str(women[1]),
        "women_45_to_60": str(women[2]),
        "women_above_60": str(women[3]),
        "total_women_victims": str(sum(women)),
        "total_victims": str(sum(child) + sum(women)),
    }
    row.update(overrides)
    return row


def _synthetic_records() -> list[dict]:
    return [
        _record("Alpha", 50, [0, 0, 0, 0], [0, 0, 0, 0]),
        _record("Beta", 500, [5, 10, 15, 10], [40, 15, 5, 0]),
        _record("Gamma", 1500, [10, 20, 40, 30], [60, 30, 8, 2]),
    ]


def test_three_region_scenario() -> None:
    result = process_records(_synthetic_records())
    dataset = result.dataset.set_index("region_name")

    assert dataset.loc["Alpha", "case_category"] == "Low"
    assert dataset.loc["Beta", "case_category"] == "High"
    assert dataset.loc["Gamma", "case_category"] == "Very High"
    assert dataset.loc["Alpha", "child_percentage"] == 0
    assert dataset.loc["Alpha", "women_percentage"] == 0

    assert result.summary.total_cases == 2050
    assert result.summary.avg_cases_per_region == pytest.approx(683.33, abs=0.01)
    assert result.summary.has_data


def test_top_one_by_cases_is_largest_region() -> None:
    result = process_records(_synthetic_records())

    top = top_n_by_cases(result.dataset, 1)

    assert list(top["region_name"]) == ["Gamma"]
    assert list(result.dataset["region_name"]) == ["Gamma", "Beta", "Alpha"]


def test_case_category_boundaries() -> None:
    assert categorize_cases(0) == "Low"
    assert categorize_cases(99) == "Low"
    assert categorize_cases(100) == "Medium"
    assert categorize_cases(499) == "Medium"
    assert categorize_cases(500) == "High"
    assert categorize_cases(999) == "High"
    assert categorize_cases(1000) == "Very High"
    assert categorize_cases(pd.NA) == "Low"


def test_custom_bin_edges_flow_through_config() -> None:
    config = PipelineConfig(bin_edges=(10, 20), category_labels=("S", "M", "L"))
    df = normalize_records([_record("A", 15, [1, 0, 0, 0], [0, 0, 0, 0])])

    derived = derive_metrics(df, config)

    assert derived["case_category"].iloc[0] == "M"


def test_config_rejects_mismatched_labels() -> None:
    with pytest.raises(ValueError):
        PipelineConfig(bin_edges=(100, 500), category_labels=("Low", "High"))
    with pytest.raises(ValueError):
        PipelineConfig(bin_edges=(500, 100), category_labels=("a", "b", "c"))


def test_tied_child_bands_report_multiple_equal() -> None:
    df = normalize_records([_record("Tie", 10, [3, 3, 3, 3], [1, 0, 0, 0])])

    derived = derive_metrics(df)

    assert derived["most_vulnerable_child_age_band"].iloc[0] == "multiple_equal"


def test_most_vulnerable_band_labels() -> None:
    df = normalize_records(
        [
            _record("Teen", 10, [1, 2, 9, 4], [0, 0, 0, 0]),
            _record("None", 10, [0, 0, 0, 0], [5, 0, 0, 0]),
            _record("Pair", 10, [0, 6, 6, 1], [0, 0, 0, 0]),
        ]
    )

    labels = derive_metrics(df)["most_vulnerable_child_age_band"].tolist()

    assert labels == ["12-16", "no victims", "multiple_equal"]


def test_percentages_are_bounded_and_zero_on_empty_denominator() -> None:
    numerator = pd.Series([0, 5, 30, 2, pd.NA], dtype="Int64")
    denominator = pd.Series([0, 10, 20, 0, 4], dtype="Int64")

    pct = safe_percentage(numerator, denominator)

    assert pct.tolist() == [0.0, 50.0, 100.0, 0.0, 0.0]
    assert pct.notna().all()


def test_normalizer_coerces_and_flags_missing_values() -> None:
    records = [
        _record("A", 10, [1, 1, 1, 1], [1, 1, 1, 1], cases_reported=" 1,234 "),
        _record("B", 10, [1, 1, 1, 1], [1, 1, 1, 1], child_below_6="NA"),
        _record("C", 10, [1, 1, 1, 1], [1, 1, 1, 1], child_6_to_12="-3"),
    ]
    del records[2]["women_above_60"]

    df = normalize_records(records)

    assert list(df.columns) == CANONICAL_COLUMNS
    assert df["cases_reported"].iloc[0] == 1234
    assert pd.isna(df["child_below_6"].iloc[1])
    assert pd.isna(df["child_6_to_12"].iloc[2])
    assert pd.isna(df["women_above_60"].iloc[2])
    assert str(df["cases_reported"].dtype) == "Int64"


def test_normalizer_drops_blank_and_duplicate_regions() -> None:
    records = [
        _record("A", 10, [1, 0, 0, 0], [0, 0, 0, 0]),
        _record("  ", 20, [1, 0, 0, 0], [0, 0, 0, 0]),
        _record("A", 30, [1, 0, 0, 0], [0, 0, 0, 0]),
        _record("B", 40, [1, 0, 0, 0], [0, 0, 0, 0]),
    ]

    df = normalize_records(records)

    assert df["region_name"].tolist() == ["A", "B"]
    assert df["cases_reported"].tolist() == [10, 40]
    assert df.index.tolist() == [0, 3]


def test_normalizer_excludes_named_regions() -> None:
    records = _synthetic_records() + [_record("Total (All India)", 2050, [0, 0, 0, 0], [0, 0, 0, 0])]

    df = normalize_records(records, excluded_regions=["Total (All India)"])

    assert "Total (All India)" not in df["region_name"].tolist()
    assert len(df) == 3


def test_missing_values_count_as_zero_in_sums() -> None:
    records = _synthetic_records()
    records[1]["cases_reported"] = ""

    result = process_records(records)

    assert result.summary.total_cases == 1550
    assert result.completeness["cases_reported"] == pytest.approx(1 / 3)
    # Missing counts sort last
    assert result.dataset["region_name"].tolist() == ["Gamma", "Alpha", "Beta"]


def test_completeness_check_raises_in_strict_mode() -> None:
    records = _synthetic_records()
    records[0]["child_below_6"] = ""

    df = normalize_records(records)

    fractions = check_completeness(df, 0.5)
    assert fractions["child_below_6"] == pytest.approx(1 / 3)
    with pytest.raises(IncompleteDataError):
        check_completeness(df, 0.1, strict=True)


def test_total_consistency_reports_mismatches() -> None:
    records = [_record("Off", 10, [1, 2, 3, 4], [1, 1, 1, 1], total_child_victims="12")]

    mismatches = check_total_consistency(normalize_records(records))

    assert mismatches.to_dict(orient="records") == [
        {"region_name": "Off", "field": "total_child_victims", "provided": 12, "expected": 10},
        {"region_name": "Off", "field": "total_victims", "provided": 14, "expected": 16},
    ]


def test_recompute_totals_replaces_provided_totals() -> None:
    records = [_record("Off", 10, [1, 2, 3, 4], [1, 1, 1, 1], total_child_victims="99", total_victims="0")]

    config = PipelineConfig(recompute_totals=True)
    derived = derive_metrics(normalize_records(records), config)

    assert derived["total_child_victims"].iloc[0] == 10
    assert derived["total_victims"].iloc[0] == 14
    assert derived["child_percentage"].iloc[0] == pytest.approx(100 * 10 / 14)


def test_histogram_conserves_band_totals() -> None:
    result = process_records(_synthetic_records())

    band_total = int(result.dataset[AGE_BAND_COLUMNS].fillna(0).sum().sum())

    assert int(result.age_histogram.sum()) == band_total
    assert list(result.age_histogram.index) == ["<6", "6-12", "12-16", "16-18", "18-30", "30-45", "45-60", "60+"]
    assert result.age_histogram["<6"] == 15
    assert result.age_percentages.sum() == pytest.approx(100, abs=0.05)


def test_rankings_are_stable_on_ties() -> None:
    records = [
        _record("First", 100, [1, 0, 0, 0], [0, 0, 0, 0]),
        _record("Second", 100, [1, 0, 0, 0], [0, 0, 0, 0]),
        _record("Third", 5, [0, 0, 0, 0], [0, 0, 0, 0]),
    ]
    dataset = process_records(records).dataset

    assert top_n_by_cases(dataset, 2)["region_name"].tolist() == ["First", "Second"]
    assert bottom_n_by_cases(dataset, 3)["region_name"].tolist() == ["Third", "First", "Second"]


def test_child_percentage_ranking_skips_regions_without_victims() -> None:
    dataset = process_records(_synthetic_records()).dataset

    ranked = top_n_by_child_percentage(dataset, 10)

    assert "Alpha" not in ranked["region_name"].tolist()
    assert ranked["region_name"].tolist() == ["Gamma", "Beta"]


def test_category_summary_lists_present_categories_in_order() -> None:
    dataset = process_records(_synthetic_records()).dataset

    summary = category_summary(dataset)

    assert summary["case_category"].tolist() == ["Low", "High", "Very High"]
    assert summary["region_count"].tolist() == [1, 1, 1]
    assert summary["total_cases"].tolist() == [50, 500, 1500]
    assert summary["percentage"].tolist() == [33.3, 33.3, 33.3]


def test_empty_dataset_reports_zero_totals() -> None:
    result = process_records([])

    assert not result.summary.has_data
    assert result.summary.total_cases == 0
    assert result.summary.avg_cases_per_region == 0.0
    assert int(result.age_histogram.sum()) == 0
    assert result.age_percentages.tolist() == [0.0] * 8
    assert result.category_summary.empty
    assert result.rankings["top_cases"].empty


def test_all_zero_region_is_a_valid_contribution() -> None:
    df = derive_metrics(normalize_records([_record("Zero", 0, [0, 0, 0, 0], [0, 0, 0, 0])]))

    summary = summarize(df)

    assert summary.has_data
    assert summary.total_all_victims == 0
    assert summary.child_victim_percentage == 0.0
    assert age_distribution_percentages(age_histogram(df)).sum() == 0.0


def test_pipeline_is_deterministic() -> None:
    first = process_records(_synthetic_records())
    second = process_records(_synthetic_records())

    pd.testing.assert_frame_equal(first.dataset, second.dataset)
    assert first.summary == second.summary
    pd.testing.assert_series_equal(first.age_histogram, second.age_histogram)
    pd.testing.assert_frame_equal(first.category_summary, second.category_summary)


def test_derive_does_not_mutate_input() -> None:
    df = normalize_records(_synthetic_records())
    before = df.copy()

    derive_metrics(df)

    pd.testing.assert_frame_equal(df, before)


def test_average_cases_skips_missing_counts() -> None:
    records = _synthetic_records()
    records[1]["cases_reported"] = ""

    result = process_records(records)

    assert result.summary.avg_cases_per_region == pytest.approx(775.0)
    low = result.category_summary.set_index("case_category").loc["Low"]
    assert low["region_count"] == 2
    assert low["total_cases"] == 50
    assert low["mean_cases"] == pytest.approx(50.0)


def test_average_cases_is_zero_when_no_counts_reported() -> None:
    records = _synthetic_records()
    for row in records:
        row["cases_reported"] = ""

    result = process_records(records)

    assert result.summary.has_data
    assert result.summary.avg_cases_per_region == 0.0
    assert result.category_summary["mean_cases"].tolist() == [0.0]
