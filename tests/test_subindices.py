import math

import pytest

from vulnerability_index.issues import InsufficientComponents
from vulnerability_index.models import SUB_INDICES
from vulnerability_index.subindices import (
    SubIndexAggregator,
    aggregate_components,
    build_aggregators,
    compute_sub_indices,
    insufficient,
    mean_of_present,
)


def test_missing_components_are_excluded_from_mean():
    score = aggregate_components("TemperatureRisk", {"a": 0.2, "b": None, "c": 0.6})
    assert score.value == pytest.approx(0.4)
    assert score.components_used == 2
    assert score.components_expected == 3


def test_nan_counts_as_missing():
    assert mean_of_present([0.3, math.nan]) == pytest.approx(0.3)


def test_zero_components_is_missing_not_zero():
    score = aggregate_components("SocialResilience", {"a": None, "b": None})
    assert score.value is None
    assert not score.available
    assert insufficient({"SocialResilience": score}) == [InsufficientComponents("SocialResilience")]


def test_aggregator_ignores_unrelated_components():
    agg = SubIndexAggregator("PrecipitationRisk", ("flood", "drought"))
    score = agg({"flood": 1.0, "drought": 0.0, "heat": 0.9})
    assert score.value == 0.5
    assert set(score.components) == {"flood", "drought"}


def test_default_aggregators(config):
    aggregators = build_aggregators(config)
    assert tuple(a.name for a in aggregators) == SUB_INDICES
    inputs = {a.name: a.inputs for a in aggregators}
    assert inputs["TemperatureRisk"] == ("heat_extreme_frequency", "temperature_variability", "warming_trend")
    assert inputs["PrecipitationRisk"] == ("flood_risk_proxy", "drought_frequency", "precipitation_variability")
    assert inputs["EconomicResilience"] == ("gdp_per_capita", "economic_diversity", "gender_inclusion")
    assert len(inputs["SocialResilience"]) == 4


def test_compute_sub_indices(config):
    normalized = {"heat_extreme_frequency": 0.9, "flood_risk_proxy": 0.1, "gdp_per_capita": 0.5}
    scores = compute_sub_indices(normalized, build_aggregators(config))
    assert scores["TemperatureRisk"].value == 0.9
    assert scores["PrecipitationRisk"].value == 0.1
    assert scores["EconomicResilience"].value == 0.5
    assert scores["SocialResilience"].value is None
    assert [i.component for i in insufficient(scores)] == ["SocialResilience"]
