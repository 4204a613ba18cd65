import math

import pytest

from vulnerability_index.models import Polarity
from vulnerability_index.normalize import NEUTRAL, normalize, normalize_indicator, pre_invert


class TestNormalize:
    def test_min_maps_to_zero_and_max_to_one(self):
        out = normalize({"A": 10.0, "B": 20.0, "C": 30.0}, Polarity.RISK)
        assert out["A"] == 0.0
        assert out["B"] == pytest.approx(0.5)
        assert out["C"] == 1.0

    def test_capacity_polarity_is_not_flipped(self):
        out = normalize({"A": 1.0, "B": 3.0}, Polarity.CAPACITY)
        assert out == {"A": 0.0, "B": 1.0}

    def test_constant_indicator_maps_to_neutral(self):
        out = normalize({"A": 4.2, "B": 4.2, "C": 4.2}, Polarity.RISK)
        assert all(v == NEUTRAL for v in out.values())

    def test_single_city_maps_to_neutral(self):
        assert normalize({"A": 123.0}, Polarity.CAPACITY) == {"A": 0.5}

    def test_missing_values_pass_through(self):
        out = normalize({"A": 1.0, "B": None, "C": float("nan"), "D": 3.0}, Polarity.RISK)
        assert out["B"] is None
        assert out["C"] is None
        assert out["A"] == 0.0 and out["D"] == 1.0

    def test_degenerate_keeps_missing_values_missing(self):
        out = normalize({"A": 2.0, "B": None}, Polarity.RISK)
        assert out == {"A": 0.5, "B": None}

    def test_all_missing(self):
        result = normalize_indicator("x", {"A": None, "B": None}, Polarity.RISK)
        assert result.values == {"A": None, "B": None}
        assert result.minimum is None and result.maximum is None
        assert not result.degenerate

    def test_indicator_records_bounds(self):
        result = normalize_indicator("gdp", {"A": 5.0, "B": 15.0}, Polarity.CAPACITY)
        assert result.indicator_id == "gdp"
        assert result.polarity is Polarity.CAPACITY
        assert (result.minimum, result.maximum) == (5.0, 15.0)
        assert not result.degenerate

    def test_degenerate_flag(self):
        assert normalize_indicator("x", {"A": 1.0, "B": 1.0}, Polarity.RISK).degenerate

    def test_pre_inverted_capacity_round_trip(self):
        # poverty rate: higher raw value means less capacity
        raw = {"A": 0.1, "B": 0.4, "C": 0.3}
        out = normalize({k: pre_invert(v) for k, v in raw.items()}, Polarity.CAPACITY)
        assert out["B"] == 0.0
        assert out["A"] == 1.0
        assert 0.0 < out["C"] < 1.0

    def test_output_in_unit_interval(self):
        out = normalize({str(i): float(i * i - 7) for i in range(10)}, Polarity.RISK)
        assert all(0.0 <= v <= 1.0 for v in out.values())


def test_pre_invert():
    assert pre_invert(0.25) == 0.75
    assert pre_invert(None) is None
    assert pre_invert(math.nan) is None
