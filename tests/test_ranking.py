import math

import pandas as pd
import pytest

from vulnerability_index.composer import compose
from vulnerability_index.issues import InsufficientComponents, UnknownCity
from vulnerability_index.models import City, Exclusion
from vulnerability_index.ranking import (
    RANKING_COLUMNS,
    correlation_summary,
    diff_results,
    exclusions_frame,
    factor_drivers,
    rank_cities,
    results_frame,
    score_statistics,
)


def _record(name, temp, precip, econ, social):
    return compose(City(name, "XXX", 0.0, 0.0), temp, precip, econ, social)


@pytest.fixture
def records():
    return [
        _record("Low City", 0.1, 0.2, 0.8, 0.9),
        _record("Hot City", 0.9, 0.8, 0.2, 0.1),
        _record("Mid B", 0.5, 0.5, 0.5, 0.5),
        _record("Mid A", 0.4, 0.6, 0.6, 0.4),
    ]


def test_ranking_sorted_by_score_with_name_ties(records):
    ranking = rank_cities(records)
    assert list(ranking.columns[: len(RANKING_COLUMNS)]) == RANKING_COLUMNS
    assert ranking["city"].tolist() == ["Hot City", "Mid A", "Mid B", "Low City"]
    assert ranking["rank"].tolist() == [1, 2, 3, 4]
    assert ranking.loc[0, "category"] == "Severe"
    assert ranking.loc[3, "category"] == "Low"


def test_empty_ranking():
    ranking = rank_cities([])
    assert ranking.empty
    assert list(ranking.columns) == RANKING_COLUMNS


def test_results_frame_has_sub_indices(records):
    df = results_frame(records)
    assert {"temperature_risk", "precipitation_risk", "economic_resilience", "social_resilience"} <= set(df.columns)
    assert len(df) == 4


def test_correlation_summary(records):
    corr = correlation_summary(records)
    assert corr.loc["climate_risk", "climate_risk"] == pytest.approx(1.0)
    assert corr.loc["climate_risk", "vulnerability_score"] > 0.9
    assert corr.loc["adaptive_capacity", "vulnerability_score"] < -0.9


def test_correlation_needs_two_cities(records):
    corr = correlation_summary(records[:1])
    assert math.isnan(corr.loc["climate_risk", "vulnerability_score"])


def test_score_statistics(records):
    stats = score_statistics(records)
    assert stats.loc[("vulnerability_score", "max"), "value"] == 1.0
    assert stats.loc[("vulnerability_score", "min"), "value"] == 0.0
    assert stats.loc[("vulnerability_score", "median"), "value"] == pytest.approx(0.5)


def test_factor_drivers_ordered_by_strength(records):
    drivers = factor_drivers(correlation_summary(records))
    assert "vulnerability_score" not in drivers.index
    strengths = drivers.abs().tolist()
    assert strengths == sorted(strengths, reverse=True)


def test_exclusions_frame():
    frame = exclusions_frame(
        [
            Exclusion("B", InsufficientComponents("AdaptiveCapacity")),
            Exclusion("Z", UnknownCity("Z"), "City not in registry"),
        ]
    )
    assert frame["reason"].tolist() == ["InsufficientComponents(AdaptiveCapacity)", "UnknownCity(Z)"]
    assert frame["kind"].tolist() == ["InsufficientComponents", "UnknownCity"]


def test_diff_results():
    previous = pd.DataFrame(
        {"city": ["A", "B", "C"], "vulnerability_score": [0.5, 0.3, 0.6], "category": ["High", "Moderate", "High"]}
    )
    current = pd.DataFrame(
        {"city": ["A", "B", "D"], "vulnerability_score": [0.7, 0.31, 0.2], "category": ["Severe", "Moderate", "Low"]}
    )
    diff = diff_results(previous, current).set_index("city")
    assert diff.loc["A", "score_change"] == pytest.approx(0.2)
    assert bool(diff.loc["A", "category_changed"])
    assert not bool(diff.loc["B", "category_changed"])
    assert diff.loc["C", "status"] == "removed"
    assert diff.loc["D", "status"] == "added"
    assert diff.index[0] == "A"
