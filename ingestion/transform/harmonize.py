"""Functions to reconcile differently-shaped source tables.

The ingestion layer hands over raw tables in whatever shape the data
provider returned:

* **Long** indicator tables, one row per (indicator, period), with an
  identifier column that may be called ``indicator_id``, ``indicatorID``,
  ``id`` or ``indicator``.
* **Wide** World Bank tables, one column per indicator code
  (``EN.CLC.HEAT.XD``, ``NY.GDP.PCAP.CD`` ...), one row per period.
* Daily **weather** tables whose column names vary between providers
  (``temp_max`` vs ``temp_max_c``).

This module turns each of them into a canonical shape.  Indicator tables
become the long frame described by
:data:`vulnerability_index.models.LONG_COLUMNS`; weather tables keep one
row per day with canonical column names.

Layout detection is an explicit, ordered tuple of strategies
(:data:`DETECTION_STRATEGIES`).  Each strategy inspects a frame and
returns a :class:`LayoutMatch` or ``None``; the first match decides the
layout, so the detection policy lives in one place and can be tested in
isolation.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import pandera as pa

from ingestion.quality.contracts import LongIndicatorSchema, WeatherSchema
from vulnerability_index.issues import (
    FormatNeedsConversion,
    Issue,
    ProcessingError,
    SourceMissing,
    SourceUnrecognized,
)
from vulnerability_index.models import LONG_COLUMNS, SourceStatus, TableVersions

logger = logging.getLogger(__name__)

ID_COLUMN_CANDIDATES: Tuple[str, ...] = ("indicator_id", "indicatorID", "id", "indicator")
VALUE_COLUMN_CANDIDATES: Tuple[str, ...] = ("value",)
PERIOD_COLUMN_CANDIDATES: Tuple[str, ...] = ("date", "year", "period")
CATEGORY_COLUMN = "indicator_category"

# Two uppercase letters, a dot, two or three uppercase letters, a dot.
INDICATOR_CODE_PATTERN = re.compile(r"^[A-Z]{2}\.[A-Z]{2,3}\.")

WEATHER_ALIASES: Dict[str, str] = {
    "temp_max_c": "temp_max",
    "temp_min_c": "temp_min",
    "temp_avg_c": "temp_avg",
    "precip": "precipitation_mm",
    "precipitation": "precipitation_mm",
}
WEATHER_COLUMNS = ["date", "temp_max", "temp_min", "temp_avg", "precipitation_mm"]

DEFAULT_CATEGORY = "Other"


class Layout(str, enum.Enum):
    LONG = "long"
    WIDE = "wide"


@dataclass(frozen=True)
class LayoutMatch:
    layout: Layout
    strategy: str
    id_column: Optional[str] = None
    indicator_columns: Tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Layout detection strategies
# ---------------------------------------------------------------------------

def detect_named_id_column(df: pd.DataFrame) -> Optional[LayoutMatch]:
    """Long layout if one of the known identifier columns is present."""
    for candidate in ID_COLUMN_CANDIDATES:
        if candidate in df.columns:
            return LayoutMatch(Layout.LONG, "named_id_column", id_column=candidate)
    return None


def detect_wide_columns(df: pd.DataFrame) -> Optional[LayoutMatch]:
    """Wide layout if any column name looks like an indicator code."""
    columns = tuple(
        str(c) for c in df.columns if isinstance(c, str) and INDICATOR_CODE_PATTERN.match(c)
    )
    if columns:
        return LayoutMatch(Layout.WIDE, "wide_code_columns", indicator_columns=columns)
    return None


def detect_code_valued_column(df: pd.DataFrame, sample_size: int = 3) -> Optional[LayoutMatch]:
    """Long layout if some column holds indicator codes as values.

    Only the first ``sample_size`` non-missing values of each text column
    are inspected.
    """
    for col in df.columns:
        sample = df[col].dropna().head(sample_size)
        if sample.empty:
            continue
        if all(isinstance(v, str) and INDICATOR_CODE_PATTERN.match(v) for v in sample):
            return LayoutMatch(Layout.LONG, "code_valued_column", id_column=col)
    return None


DetectionStrategy = Callable[[pd.DataFrame], Optional[LayoutMatch]]

DETECTION_STRATEGIES: Tuple[DetectionStrategy, ...] = (
    detect_named_id_column,
    detect_wide_columns,
    detect_code_valued_column,
)


def detect_layout(
    df: pd.DataFrame,
    strategies: Sequence[DetectionStrategy] = DETECTION_STRATEGIES,
) -> Optional[LayoutMatch]:
    """Return the first match of ``strategies``, or ``None``."""
    for strategy in strategies:
        match = strategy(df)
        if match is not None:
            return match
    return None


# ---------------------------------------------------------------------------
# Canonical long frames
# ---------------------------------------------------------------------------

def tag_category(indicator_id: str, prefixes: Sequence[Tuple[str, str]]) -> str:
    """Map an indicator code to its category by the first matching prefix."""
    for prefix, category in prefixes:
        if indicator_id.startswith(prefix):
            return category
    return DEFAULT_CATEGORY


def _first_present(df: pd.DataFrame, candidates: Sequence[str]) -> Optional[str]:
    for candidate in candidates:
        if candidate in df.columns:
            return candidate
    return None


def _canonical(
    indicator_ids: pd.Series,
    values: pd.Series,
    periods: pd.Series,
    *,
    city: str,
    source: str,
    categories: pd.Series,
) -> pd.DataFrame:
    out = pd.DataFrame(
        {
            "city": city,
            "indicator_id": indicator_ids.astype(str).to_numpy(),
            "value": pd.to_numeric(values, errors="coerce").to_numpy(dtype=float),
            "period": periods.to_numpy(),
            "source": source,
            "category": categories.to_numpy(),
        },
        columns=LONG_COLUMNS,
    )
    return out.reset_index(drop=True)


def wide_to_long(
    df: pd.DataFrame,
    indicator_columns: Sequence[str],
    *,
    city: str,
    source: str,
    prefixes: Sequence[Tuple[str, str]] = (),
) -> pd.DataFrame:
    """Pivot wide indicator columns into canonical long rows.

    Every indicator column becomes one (indicator_id, value) pair per
    input row.  Cells that are missing carry no information and are
    dropped rather than kept as null rows.
    """
    if not indicator_columns:
        return pd.DataFrame(columns=LONG_COLUMNS)
    period_col = _first_present(df, PERIOD_COLUMN_CANDIDATES)
    frame = df.reset_index(drop=True)
    frame = frame.assign(_period=frame[period_col] if period_col else None)
    long_df = frame.melt(
        id_vars=["_period"],
        value_vars=list(indicator_columns),
        var_name="indicator_id",
        value_name="value",
    )
    long_df["value"] = pd.to_numeric(long_df["value"], errors="coerce")
    long_df = long_df.dropna(subset=["value"])
    categories = long_df["indicator_id"].map(lambda code: tag_category(code, prefixes))
    return _canonical(
        long_df["indicator_id"],
        long_df["value"],
        long_df["_period"],
        city=city,
        source=source,
        categories=categories,
    )


def long_to_canonical(
    df: pd.DataFrame,
    id_column: str,
    *,
    city: str,
    source: str,
    prefixes: Sequence[Tuple[str, str]] = (),
) -> pd.DataFrame:
    """Rename a long table's columns to the canonical layout.

    Raises
    ------
    KeyError
        If the table has no value column.
    """
    value_col = _first_present(df, VALUE_COLUMN_CANDIDATES)
    if value_col is None:
        raise KeyError(f"No value column among {list(VALUE_COLUMN_CANDIDATES)}")
    period_col = _first_present(df, PERIOD_COLUMN_CANDIDATES)
    frame = df.dropna(subset=[id_column]).reset_index(drop=True)
    ids = frame[id_column].astype(str)
    periods = frame[period_col] if period_col else pd.Series([None] * len(frame))
    if CATEGORY_COLUMN in frame.columns:
        categories = frame[CATEGORY_COLUMN].where(
            frame[CATEGORY_COLUMN].notna(), ids.map(lambda code: tag_category(code, prefixes))
        )
    else:
        categories = ids.map(lambda code: tag_category(code, prefixes))
    return _canonical(ids, frame[value_col], periods, city=city, source=source, categories=categories)


def deduplicate(frame: pd.DataFrame) -> pd.DataFrame:
    """Keep one row per (indicator_id, period).

    Among duplicates the last row with a value wins; a null row only
    survives when no duplicate carries a value.
    """
    if frame.empty:
        return frame
    reversed_frame = frame.iloc[::-1].assign(_has_value=frame["value"].notna().iloc[::-1])
    reversed_frame = reversed_frame.sort_values("_has_value", ascending=False, kind="stable")
    kept = reversed_frame.drop_duplicates(subset=["indicator_id", "period"], keep="first")
    return kept.drop(columns="_has_value").sort_index()


def _period_key(periods: pd.Series) -> pd.Series:
    numeric = pd.to_numeric(periods, errors="coerce")
    if numeric.notna().any():
        return numeric.astype(float)
    stamps = pd.to_datetime(periods, errors="coerce")
    return (stamps - pd.Timestamp(0)).dt.total_seconds()


def current_values(frame: pd.DataFrame) -> Dict[str, float]:
    """Latest non-missing value of every indicator in a long frame.

    Rows are ordered by period; when no period is known the last row
    wins.
    """
    present = frame.dropna(subset=["value"])
    out: Dict[str, float] = {}
    for indicator_id, grp in present.groupby("indicator_id", sort=False):
        key = _period_key(grp["period"].reset_index(drop=True))
        if key.notna().any():
            pos = int(np.nanargmax(key.to_numpy(dtype=float)))
        else:
            pos = len(grp) - 1
        out[str(indicator_id)] = float(grp["value"].iloc[pos])
    return out


# ---------------------------------------------------------------------------
# Table-level harmonisation
# ---------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class HarmonizedTable:
    """Outcome of harmonising one raw table."""

    source: str
    table: str
    status: SourceStatus
    frame: pd.DataFrame
    layout: Optional[Layout] = None
    version: Optional[str] = None
    columns: Tuple[str, ...] = ()
    issue: Optional[Issue] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status is SourceStatus.SUCCESS


def _empty() -> pd.DataFrame:
    return pd.DataFrame(columns=LONG_COLUMNS)


def harmonize_table(
    df: Optional[pd.DataFrame],
    *,
    city: str,
    source: str,
    table: str = "",
    version: Optional[str] = None,
    prefixes: Sequence[Tuple[str, str]] = (),
    convert_wide: bool = True,
) -> HarmonizedTable:
    """Harmonise one raw indicator table into the canonical long frame.

    Failures are returned as a status, never raised, so that one bad
    table cannot abort the harmonisation of other tables or cities.
    """
    name = table or source
    if df is None:
        return HarmonizedTable(source, name, SourceStatus.MISSING, _empty(), issue=SourceMissing(source))

    columns = tuple(str(c) for c in df.columns)
    match = detect_layout(df)
    if match is None:
        logger.warning("%s/%s: no recognizable indicator columns in %s", city, name, list(columns))
        return HarmonizedTable(
            source, name, SourceStatus.ERROR, _empty(), version=version, columns=columns,
            issue=SourceUnrecognized(source, columns, "No indicator columns found"),
            message="No indicator columns found",
        )

    if match.layout is Layout.WIDE and not convert_wide:
        return HarmonizedTable(
            source, name, SourceStatus.NEEDS_CONVERSION, _empty(), layout=Layout.WIDE,
            version=version, columns=match.indicator_columns,
            issue=FormatNeedsConversion(source),
            message=f"Found {len(match.indicator_columns)} indicators in wide format - needs conversion",
        )

    try:
        if match.layout is Layout.WIDE:
            frame = wide_to_long(df, match.indicator_columns, city=city, source=source, prefixes=prefixes)
            logger.debug("%s/%s: converted %d wide indicators to %d long rows",
                         city, name, len(match.indicator_columns), len(frame))
        else:
            frame = long_to_canonical(df, match.id_column, city=city, source=source, prefixes=prefixes)
        frame = LongIndicatorSchema.validate(deduplicate(frame))
    except (KeyError, ValueError, TypeError, pa.errors.SchemaError) as exc:
        logger.warning("%s/%s: harmonisation failed: %s", city, name, exc)
        return HarmonizedTable(
            source, name, SourceStatus.ERROR, _empty(), layout=match.layout, version=version,
            columns=columns, issue=SourceUnrecognized(source, columns, str(exc)), message=str(exc),
        )

    return HarmonizedTable(
        source, name, SourceStatus.SUCCESS, frame, layout=match.layout, version=version,
        columns=match.indicator_columns or (str(match.id_column),),
    )


def harmonize_versions(
    versions: TableVersions,
    *,
    city: str,
    source: str,
    table: str = "",
    prefixes: Sequence[Tuple[str, str]] = (),
    convert_wide: bool = True,
) -> HarmonizedTable:
    """Harmonise the preferred version of a table (fixed before original)."""
    df, version = versions.preferred()
    if df is None and versions.error:
        return HarmonizedTable(source, table or source, SourceStatus.ERROR, _empty(),
                               issue=ProcessingError(versions.error), message=versions.error)
    return harmonize_table(
        df, city=city, source=source, table=table, version=version,
        prefixes=prefixes, convert_wide=convert_wide,
    )


def harmonize_weather(df: pd.DataFrame) -> pd.DataFrame:
    """Return a daily weather table with canonical columns.

    Provider-specific column names are mapped through
    :data:`WEATHER_ALIASES`; ``temp_avg`` is derived from the daily
    maximum and minimum on days where it is missing, and negative
    precipitation readings are treated as missing.  Rows without a parseable date are
    dropped and the result is sorted by date.

    Raises
    ------
    ValueError
        If no date, temperature or precipitation column can be found.
    pandera.errors.SchemaError
        If the canonical frame violates :data:`WeatherSchema`.
    """
    renames = {
        alias: canonical
        for alias, canonical in WEATHER_ALIASES.items()
        if alias in df.columns and canonical not in df.columns
    }
    frame = df.rename(columns=renames).copy()
    if "date" not in frame.columns:
        raise ValueError("Weather table has no 'date' column")
    if "precipitation_mm" not in frame.columns:
        raise ValueError("Weather table has no precipitation column")

    for col in WEATHER_COLUMNS[1:]:
        if col in frame.columns:
            frame[col] = pd.to_numeric(frame[col], errors="coerce")
        else:
            frame[col] = np.nan
    # negative precipitation is a provider fill value (e.g. -999)
    frame.loc[frame["precipitation_mm"] < 0, "precipitation_mm"] = np.nan
    frame["temp_avg"] = frame["temp_avg"].fillna((frame["temp_max"] + frame["temp_min"]) / 2.0)
    if frame[["temp_max", "temp_min", "temp_avg"]].isna().all().all():
        raise ValueError("Weather table has no temperature column")

    frame["date"] = pd.to_datetime(frame["date"], errors="coerce")
    frame = frame.dropna(subset=["date"]).sort_values("date").reset_index(drop=True)
    return WeatherSchema.validate(frame[WEATHER_COLUMNS])


__all__ = [
    "ID_COLUMN_CANDIDATES",
    "INDICATOR_CODE_PATTERN",
    "DETECTION_STRATEGIES",
    "Layout",
    "LayoutMatch",
    "detect_named_id_column",
    "detect_wide_columns",
    "detect_code_valued_column",
    "detect_layout",
    "tag_category",
    "wide_to_long",
    "long_to_canonical",
    "deduplicate",
    "current_values",
    "HarmonizedTable",
    "harmonize_table",
    "harmonize_versions",
    "harmonize_weather",
]
