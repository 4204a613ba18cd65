"""Data contracts for the harmonised and published datasets.

We use the [Pandera](https://pandera.readthedocs.io/) library to define
schemas for our intermediate datasets.  Schemas act both as
documentation and as runtime validation:

* ``WeatherSchema`` – the canonical daily weather table produced by
  :func:`ingestion.transform.harmonize.harmonize_weather`.
* ``LongIndicatorSchema`` – the canonical long indicator frame (one row
  per city, indicator and period) produced by the harmonizer.
* ``RankingSchema`` – the ranking table published by
  :func:`vulnerability_index.ranking.rank_cities`.

A frame that violates its schema raises ``pandera.errors.SchemaError``;
the harmonizer turns that into an ``error`` status for the offending
table instead of letting it escape.
"""

import pandera as pa
from pandera import Check, Column, DataFrameSchema

# Mirrors vulnerability_index.models.SOURCES
SOURCE_TAGS = ["weather", "national", "subnational"]


WeatherSchema = DataFrameSchema(
    {
        "date": Column(pa.DateTime, nullable=False, coerce=True),
        "temp_max": Column(float, nullable=True, coerce=True),
        "temp_min": Column(float, nullable=True, coerce=True),
        "temp_avg": Column(float, nullable=True, coerce=True),
        "precipitation_mm": Column(float, nullable=True, coerce=True, checks=Check.ge(0)),
    },
    strict=False,
    name="DailyWeather",
)


LongIndicatorSchema = DataFrameSchema(
    {
        "city": Column(nullable=False),
        "indicator_id": Column(
            nullable=False,
            checks=Check(lambda s: s.astype(str).str.len() > 0, error="empty indicator id"),
        ),
        "value": Column(float, nullable=True, coerce=True),
        "period": Column(nullable=True),
        "source": Column(nullable=False, checks=Check.isin(SOURCE_TAGS)),
        "category": Column(nullable=True),
    },
    strict=False,
    name="LongIndicators",
)


RankingSchema = DataFrameSchema(
    {
        "rank": Column(int, nullable=False, checks=Check.ge(1), coerce=True),
        "city": Column(nullable=False, unique=True),
        "vulnerability_score": Column(float, nullable=False, checks=Check.in_range(0.0, 1.0)),
        "category": Column(nullable=False),
        "climate_risk": Column(float, nullable=False, checks=Check.in_range(0.0, 1.0)),
        "adaptive_capacity": Column(float, nullable=False, checks=Check.in_range(0.0, 1.0)),
    },
    strict=False,
    name="VulnerabilityRanking",
)

__all__ = ["SOURCE_TAGS", "WeatherSchema", "LongIndicatorSchema", "RankingSchema"]
