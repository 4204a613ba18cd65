import numpy as np
import pandas as pd
import pytest

from ingestion.transform.harmonize import (
    Layout,
    current_values,
    deduplicate,
    detect_code_valued_column,
    detect_layout,
    detect_named_id_column,
    detect_wide_columns,
    harmonize_table,
    harmonize_versions,
    harmonize_weather,
    tag_category,
    wide_to_long,
)
from vulnerability_index.issues import FormatNeedsConversion, ProcessingError, SourceMissing, SourceUnrecognized
from vulnerability_index.models import LONG_COLUMNS, SourceStatus, TableVersions

PREFIXES = (("NY.GDP", "Economic"), ("SE.", "Education"), ("SL.", "Employment"))


class TestLayoutDetection:
    def test_named_id_column_priority(self):
        df = pd.DataFrame({"id": ["a"], "indicator_id": ["NY.GDP.PCAP.CD"], "value": [1.0]})
        match = detect_named_id_column(df)
        assert match.layout is Layout.LONG
        assert match.id_column == "indicator_id"

    def test_indicator_id_camel_case(self):
        df = pd.DataFrame({"indicatorID": ["X"], "value": [1.0]})
        assert detect_layout(df).id_column == "indicatorID"

    def test_wide_columns(self):
        df = pd.DataFrame({"date": [2020], "EN.CLC.HEAT.XD": [3.2], "AG.LND.PRCP.MM": [450.0], "Gdp": [1]})
        match = detect_wide_columns(df)
        assert match.layout is Layout.WIDE
        assert match.indicator_columns == ("EN.CLC.HEAT.XD", "AG.LND.PRCP.MM")

    def test_wide_pattern_requires_uppercase_shape(self):
        df = pd.DataFrame({"en.clc.heat": [1.0], "E.CLC.HEAT": [1.0], "EN.CLIMA.X": [1.0]})
        assert detect_wide_columns(df) is None

    def test_code_valued_column(self):
        df = pd.DataFrame({"code": ["NY.GDP.PCAP.CD", "SE.ADT.LITR.ZS"], "value": [1.0, 2.0]})
        match = detect_code_valued_column(df)
        assert match.layout is Layout.LONG
        assert match.id_column == "code"

    def test_named_column_beats_wide_columns(self):
        df = pd.DataFrame({"indicator": ["X"], "NY.GDP.PCAP.CD": [1.0], "value": [1.0]})
        assert detect_layout(df).layout is Layout.LONG

    def test_unrecognized(self):
        assert detect_layout(pd.DataFrame({"foo": [1], "bar": ["x"]})) is None


class TestWideToLong:
    def test_example_conversion(self):
        df = pd.DataFrame({"EN.CLC.HEAT.XD": [3.2], "AG.LND.PRCP.MM": [450.0]})
        out = wide_to_long(df, ["EN.CLC.HEAT.XD", "AG.LND.PRCP.MM"], city="X", source="national")
        assert list(out.columns) == LONG_COLUMNS
        rows = set(zip(out["city"], out["indicator_id"], out["value"]))
        assert rows == {("X", "EN.CLC.HEAT.XD", 3.2), ("X", "AG.LND.PRCP.MM", 450.0)}

    def test_missing_cell_produces_no_row(self):
        df = pd.DataFrame({"EN.CLC.HEAT.XD": [3.2], "AG.LND.PRCP.MM": [np.nan]})
        out = wide_to_long(df, ["EN.CLC.HEAT.XD", "AG.LND.PRCP.MM"], city="X", source="national")
        assert out["indicator_id"].tolist() == ["EN.CLC.HEAT.XD"]

    def test_period_and_category(self, wide_economic_df):
        out = wide_to_long(wide_economic_df, ["NY.GDP.PCAP.CD", "SL.TLF.CACT.FM.ZS"],
                           city="A", source="national", prefixes=PREFIXES)
        assert sorted(out["period"].unique().tolist()) == [2019, 2020]
        cats = dict(zip(out["indicator_id"], out["category"]))
        assert cats == {"NY.GDP.PCAP.CD": "Economic", "SL.TLF.CACT.FM.ZS": "Employment"}


def test_tag_category_falls_back_to_other():
    assert tag_category("SE.ADT.LITR.ZS", PREFIXES) == "Education"
    assert tag_category("ZZ.ABC.DEF", PREFIXES) == "Other"


class TestHarmonizeTable:
    def test_missing_table(self):
        result = harmonize_table(None, city="A", source="national")
        assert result.status is SourceStatus.MISSING
        assert result.issue == SourceMissing("national")
        assert result.frame.empty

    def test_unrecognized_table_carries_columns(self):
        result = harmonize_table(pd.DataFrame({"foo": [1], "bar": [2]}), city="A", source="national")
        assert result.status is SourceStatus.ERROR
        assert isinstance(result.issue, SourceUnrecognized)
        assert result.issue.columns == ("foo", "bar")

    def test_wide_table_converted(self, wide_climate_df):
        result = harmonize_table(wide_climate_df, city="A", source="national", table="climate")
        assert result.ok
        assert result.layout is Layout.WIDE
        assert len(result.frame) == 4
        assert set(result.frame["source"]) == {"national"}

    def test_wide_table_needs_conversion_when_disabled(self, wide_climate_df):
        result = harmonize_table(wide_climate_df, city="A", source="national", convert_wide=False)
        assert result.status is SourceStatus.NEEDS_CONVERSION
        assert result.issue == FormatNeedsConversion("national")
        assert result.frame.empty

    def test_long_table(self, long_economic_df):
        result = harmonize_table(long_economic_df, city="A", source="national", prefixes=PREFIXES)
        assert result.ok
        assert result.layout is Layout.LONG
        assert len(result.frame) == 3
        assert set(result.frame["category"]) == {"Economic", "Education"}

    def test_long_table_without_value_column_is_error(self):
        df = pd.DataFrame({"indicator_id": ["NY.GDP.PCAP.CD"], "amount": [1.0]})
        result = harmonize_table(df, city="A", source="national")
        assert result.status is SourceStatus.ERROR
        assert isinstance(result.issue, SourceUnrecognized)

    def test_fixed_version_wins(self, wide_climate_df, long_economic_df):
        versions = TableVersions(original=wide_climate_df, fixed=long_economic_df)
        result = harmonize_versions(versions, city="A", source="national")
        assert result.version == "fixed"
        assert "NY.GDP.PCAP.CD" in set(result.frame["indicator_id"])

    def test_original_is_fallback(self, wide_climate_df):
        result = harmonize_versions(TableVersions(original=wide_climate_df), city="A", source="national")
        assert result.version == "original"
        assert result.ok

    def test_unreadable_table_is_error(self):
        versions = TableVersions(error="Error reading country_climate_data.csv: bad bytes")
        result = harmonize_versions(versions, city="A", source="national", table="climate")
        assert result.status is SourceStatus.ERROR
        assert result.table == "climate"
        assert isinstance(result.issue, ProcessingError)
        assert result.frame.empty


class TestDeduplicate:
    def test_last_non_null_value_wins(self):
        frame = pd.DataFrame(
            {
                "city": "A",
                "indicator_id": ["X", "X", "X"],
                "value": [1.0, 2.0, np.nan],
                "period": [2020, 2020, 2020],
                "source": "national",
                "category": "Other",
            }
        )
        out = deduplicate(frame)
        assert len(out) == 1
        assert out["value"].iloc[0] == 2.0

    def test_current_value_is_latest_period(self):
        frame = pd.DataFrame(
            {
                "city": "A",
                "indicator_id": ["X", "X", "Y"],
                "value": [5.0, 7.0, 1.0],
                "period": [2021, 2019, 2020],
                "source": "national",
                "category": "Other",
            }
        )
        assert current_values(frame) == {"X": 5.0, "Y": 1.0}

    def test_current_value_skips_missing(self, long_economic_df):
        result = harmonize_table(long_economic_df, city="A", source="national")
        assert current_values(result.frame) == {"NY.GDP.PCAP.CD": 10000.0}


class TestHarmonizeWeather:
    def test_aliases_mapped(self, weather_df):
        out = harmonize_weather(weather_df)
        assert list(out.columns) == ["date", "temp_max", "temp_min", "temp_avg", "precipitation_mm"]
        assert pd.api.types.is_datetime64_any_dtype(out["date"])
        assert len(out) == len(weather_df)

    def test_temp_avg_derived(self):
        df = pd.DataFrame({"date": ["2020-01-01"], "temp_max": [30.0], "temp_min": [20.0], "precipitation_mm": [0.0]})
        assert harmonize_weather(df)["temp_avg"].iloc[0] == 25.0

    def test_missing_precipitation_column(self):
        with pytest.raises(ValueError):
            harmonize_weather(pd.DataFrame({"date": ["2020-01-01"], "temp_avg": [1.0]}))

    def test_negative_precipitation_is_missing(self):
        df = pd.DataFrame(
            {"date": ["2020-01-01", "2020-01-02"], "temp_avg": [1.0, 2.0], "precipitation_mm": [-999.0, 4.0]}
        )
        out = harmonize_weather(df)
        assert np.isnan(out["precipitation_mm"].iloc[0])
        assert out["precipitation_mm"].iloc[1] == 4.0

    def test_temp_avg_filled_per_day(self):
        df = pd.DataFrame(
            {
                "date": ["2020-01-01", "2020-01-02", "2020-01-03"],
                "temp_max": [30.0, 30.0, np.nan],
                "temp_min": [20.0, 10.0, np.nan],
                "temp_avg": [24.0, np.nan, np.nan],
                "precipitation_mm": [0.0, 0.0, 0.0],
            }
        )
        out = harmonize_weather(df)
        assert out["temp_avg"].iloc[0] == 24.0
        assert out["temp_avg"].iloc[1] == 20.0
        assert np.isnan(out["temp_avg"].iloc[2])
