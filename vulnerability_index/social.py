"""
vulnerability_index.social
--------------------------

Social-vulnerability proxy from a sub-national table.

US cities receive a census-style table keyed by geographic unit
(``GEOID``, ``NAME``) with one column per tracked variable (people in
poverty, without a high-school diploma, aged 65+, without a vehicle,
living in mobile homes or crowded housing, with limited English).  The
proxy is the mean, over the tracked variables present, of each
variable's total across units divided by the population.  The
denominator is the table's ``total_population`` column when present,
the registry population of the city otherwise.  The result is clipped
to [0, 1] so that it can be pre-inverted before normalisation.

Outside the US the ingestion layer supplies national World Bank social
indicators instead; those go through the regular harmonizer and the
proxy below is not used.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import pandas as pd

from .models import SUBNATIONAL, RawIndicatorRecord

logger = logging.getLogger(__name__)

GEO_ID_COLUMNS = ("GEOID", "geoid", "geo_id")
POPULATION_COLUMN = "total_population"
SOCIAL_INDICATOR = "social_vulnerability"


def geo_id_column(df: pd.DataFrame) -> Optional[str]:
    for col in GEO_ID_COLUMNS:
        if col in df.columns:
            return col
    return None


def tracked_columns(df: pd.DataFrame, variables: Sequence[str]) -> List[str]:
    return [v for v in variables if v in df.columns]


def is_unit_table(df: pd.DataFrame, variables: Sequence[str]) -> bool:
    """``True`` for a table keyed by geographic unit with tracked variables."""
    return geo_id_column(df) is not None and bool(tracked_columns(df, variables))


def social_vulnerability(
    df: pd.DataFrame,
    variables: Sequence[str],
    population: Optional[float],
) -> Optional[float]:
    """Mean per-capita share of the tracked vulnerability variables."""
    cols = tracked_columns(df, variables)
    if not cols:
        return None
    denominator = population
    if POPULATION_COLUMN in df.columns:
        table_pop = pd.to_numeric(df[POPULATION_COLUMN], errors="coerce").sum()
        if table_pop > 0:
            denominator = float(table_pop)
    if not denominator or denominator <= 0:
        logger.debug("No population available to scale social variables")
        return None

    shares = []
    for col in cols:
        total = pd.to_numeric(df[col], errors="coerce").sum(min_count=1)
        if pd.notna(total):
            shares.append(float(total) / denominator)
    if not shares:
        return None
    return min(max(sum(shares) / len(shares), 0.0), 1.0)


def social_records(
    city: str,
    df: pd.DataFrame,
    variables: Sequence[str],
    population: Optional[float],
) -> List[RawIndicatorRecord]:
    value = social_vulnerability(df, variables, population)
    if value is None:
        return []
    period = None
    if "year" in df.columns:
        latest = pd.to_numeric(df["year"], errors="coerce").max()
        period = int(latest) if pd.notna(latest) else None
    return [RawIndicatorRecord(city, SOCIAL_INDICATOR, value, period, SUBNATIONAL)]


__all__ = [
    "GEO_ID_COLUMNS",
    "SOCIAL_INDICATOR",
    "geo_id_column",
    "tracked_columns",
    "is_unit_table",
    "social_vulnerability",
    "social_records",
]
