"""Data-quality gate for the per-city raw tables.

Before any city enters the index pipeline each of its three sources is
assessed independently:

* ``weather`` – the daily observation table,
* ``national`` – one or more World Bank style tables (``climate``,
  ``economic``), each in an original and possibly a harmonized
  (``fixed``) version,
* ``subnational`` – the social-vulnerability table.

Every source receives one of four statuses (``missing``, ``error``,
``needs_conversion``, ``success``) plus a completeness percentage::

    completeness = (possible points - missing points) / possible points * 100

For the daily weather table every row contributes two possible points,
one for the mean temperature and one for precipitation.  Long indicator
tables contribute one point per row (its ``value``), wide tables one
per indicator cell and unit-keyed social tables one per (unit, tracked
variable) cell.

A city is admitted when at least one source is ``success`` or
``needs_conversion``.  ``needs_conversion`` is kept distinct from
``success`` so that the pipeline can hold such a city back from scoring
until the harmonizer has converted the table.

Besides the statuses the gate collects the descriptive statistics of
the original quality checks (temperature and precipitation summary,
per-indicator data points and latest values, category breakdown) and
an overall assessment label.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd
import pandera as pa

from ingestion.transform.harmonize import Layout, detect_layout, harmonize_weather
from utils.data_quality import calculate_missingness, completeness_percent, count_points
from vulnerability_index.config import PipelineConfig
from vulnerability_index.issues import (
    FormatNeedsConversion,
    Issue,
    ProcessingError,
    SourceMissing,
    SourceUnrecognized,
)
from vulnerability_index.models import (
    NATIONAL,
    SOURCES,
    SUBNATIONAL,
    WEATHER,
    CityInputs,
    SourceStatus,
    TableVersions,
)
from vulnerability_index.social import geo_id_column, tracked_columns

logger = logging.getLogger(__name__)

WEATHER_TRACKED = ("temp_avg", "precipitation_mm")

EXCELLENT = "excellent"
GOOD = "good"
INCOMPLETE = "incomplete"


@dataclass(frozen=True, eq=False)
class SourceQuality:
    """Quality of one source (or one national table) of one city."""

    source: str
    status: SourceStatus
    completeness: Optional[float] = None
    table: str = ""
    version: Optional[str] = None
    layout: Optional[Layout] = None
    total_rows: int = 0
    possible_points: int = 0
    missing_points: int = 0
    message: str = ""
    issue: Optional[Issue] = None
    stats: Mapping[str, Any] = field(default_factory=dict)
    indicators: Optional[pd.DataFrame] = None
    categories: Optional[pd.DataFrame] = None
    tables: Tuple["SourceQuality", ...] = ()

    @property
    def usable(self) -> bool:
        return self.status.usable


@dataclass(frozen=True, eq=False)
class CityQualityReport:
    """Gate verdict for one city."""

    city: str
    sources: Mapping[str, SourceQuality]
    low_completeness_pct: float = 80.0

    @property
    def statuses(self) -> Dict[str, SourceStatus]:
        return {s: q.status for s, q in self.sources.items()}

    @property
    def completeness(self) -> Dict[str, Optional[float]]:
        return {s: q.completeness for s, q in self.sources.items()}

    @property
    def usable_sources(self) -> List[str]:
        return [s for s, q in self.sources.items() if q.usable]

    @property
    def admitted(self) -> bool:
        return bool(self.usable_sources)

    @property
    def needs_conversion(self) -> List[str]:
        return [s for s, q in self.sources.items() if q.status is SourceStatus.NEEDS_CONVERSION]

    @property
    def assessment(self) -> str:
        n = len(self.usable_sources)
        if n >= 3:
            return EXCELLENT
        if n == 2:
            return GOOD
        return INCOMPLETE

    @property
    def low_completeness(self) -> List[str]:
        return [
            s
            for s, q in self.sources.items()
            if q.completeness is not None and q.completeness < self.low_completeness_pct
        ]

    @property
    def issues(self) -> List[Issue]:
        out: List[Issue] = []
        for quality in self.sources.values():
            if quality.issue is not None:
                out.append(quality.issue)
            # failed tables of a source that is usable through another table
            for table in quality.tables:
                if table.status is SourceStatus.ERROR and table.issue is not None and table.issue is not quality.issue:
                    out.append(table.issue)
        return out

    def to_dict(self) -> Dict[str, Any]:
        row: Dict[str, Any] = {"city": self.city}
        for source in SOURCES:
            quality = self.sources.get(source)
            row[f"{source}_status"] = quality.status.value if quality else None
            row[f"{source}_completeness"] = quality.completeness if quality else None
        row["admitted"] = self.admitted
        row["needs_conversion"] = ",".join(self.needs_conversion)
        row["low_completeness"] = ",".join(self.low_completeness)
        row["assessment"] = self.assessment
        return row


# ---------------------------------------------------------------------------
# Weather
# ---------------------------------------------------------------------------

def weather_stats(weather: pd.DataFrame) -> Dict[str, Any]:
    """Descriptive statistics of a canonical daily weather table."""
    precip = weather["precipitation_mm"]

    def _round(value: Any, digits: int) -> Optional[float]:
        return None if pd.isna(value) else round(float(value), digits)

    return {
        "start_date": weather["date"].min(),
        "end_date": weather["date"].max(),
        "avg_temp": _round(weather["temp_avg"].mean(), 1),
        "min_temp": _round(weather["temp_min"].min(), 1),
        "max_temp": _round(weather["temp_max"].max(), 1),
        "temp_range": _round(weather["temp_max"].max() - weather["temp_min"].min(), 1),
        "total_precip": _round(precip.sum(), 1),
        "avg_precip": _round(precip.mean(), 2),
        "max_daily_precip": _round(precip.max(), 1),
        "dry_days": int((precip == 0).sum()),
    }


def assess_weather(df: Optional[pd.DataFrame], *, load_error: Optional[str] = None) -> SourceQuality:
    """Status and completeness of a daily weather table."""
    if load_error:
        return SourceQuality(WEATHER, SourceStatus.ERROR, message=load_error, issue=ProcessingError(load_error))
    if df is None:
        return SourceQuality(WEATHER, SourceStatus.MISSING, message="Weather data not provided",
                             issue=SourceMissing(WEATHER))
    try:
        weather = harmonize_weather(df)
    except (ValueError, TypeError, pa.errors.SchemaError) as exc:
        columns = tuple(str(c) for c in df.columns)
        return SourceQuality(WEATHER, SourceStatus.ERROR, message=str(exc),
                             issue=SourceUnrecognized(WEATHER, columns, str(exc)))
    if weather.empty:
        return SourceQuality(WEATHER, SourceStatus.ERROR, message="Weather table has no dated rows",
                             issue=SourceUnrecognized(WEATHER, (), "Weather table has no dated rows"))

    possible, missing = count_points(weather, WEATHER_TRACKED)
    return SourceQuality(
        WEATHER,
        SourceStatus.SUCCESS,
        completeness=completeness_percent(possible, missing),
        total_rows=len(weather),
        possible_points=possible,
        missing_points=missing,
        stats=weather_stats(weather),
    )


# ---------------------------------------------------------------------------
# Indicator tables
# ---------------------------------------------------------------------------

def indicator_summary(df: pd.DataFrame, id_column: str) -> pd.DataFrame:
    """Data points, missing values and latest value per indicator."""
    period_col = next((c for c in ("date", "year", "period") if c in df.columns), None)
    frame = df.assign(_order=range(len(df)))
    if period_col is not None:
        frame = frame.sort_values([period_col, "_order"], na_position="first", kind="mergesort")
    rows = []
    for indicator_id, grp in frame.groupby(id_column, sort=True):
        present = grp.dropna(subset=["value"])
        rows.append(
            {
                "indicator_id": indicator_id,
                "data_points": len(grp),
                "missing_values": int(grp["value"].isna().sum()),
                "latest_value": present["value"].iloc[-1] if not present.empty else None,
                "latest_period": grp[period_col].max() if period_col else None,
            }
        )
    return pd.DataFrame(rows, columns=["indicator_id", "data_points", "missing_values",
                                       "latest_value", "latest_period"])


def category_breakdown(df: pd.DataFrame, id_column: str, category_column: str = "indicator_category") -> Optional[pd.DataFrame]:
    if category_column not in df.columns:
        return None
    return (
        df.groupby(category_column)
        .agg(
            indicators=(id_column, "nunique"),
            data_points=(id_column, "size"),
            missing_values=("value", lambda s: int(s.isna().sum())),
        )
        .reset_index()
    )


def assess_indicator_table(
    df: Optional[pd.DataFrame],
    *,
    source: str,
    table: str = "",
    version: Optional[str] = None,
) -> SourceQuality:
    """Status and completeness of one long or wide indicator table."""
    name = table or source
    if df is None:
        return SourceQuality(source, SourceStatus.MISSING, table=name,
                             message=f"{name} data not provided", issue=SourceMissing(source))

    columns = tuple(str(c) for c in df.columns)
    match = detect_layout(df)
    if match is None:
        return SourceQuality(source, SourceStatus.ERROR, table=name, version=version,
                             message="No indicator columns found",
                             issue=SourceUnrecognized(source, columns, "No indicator columns found"))

    if match.layout is Layout.WIDE:
        possible, missing = count_points(df, match.indicator_columns)
        return SourceQuality(
            source,
            SourceStatus.NEEDS_CONVERSION,
            completeness=completeness_percent(possible, missing),
            table=name,
            version=version,
            layout=Layout.WIDE,
            total_rows=len(df),
            possible_points=possible,
            missing_points=missing,
            message=f"Found {len(match.indicator_columns)} indicators in wide format - needs conversion",
            issue=FormatNeedsConversion(source),
            stats={"indicators_found": list(match.indicator_columns)},
        )

    if "value" not in df.columns:
        return SourceQuality(source, SourceStatus.ERROR, table=name, version=version, layout=Layout.LONG,
                             message="Long table has no value column",
                             issue=SourceUnrecognized(source, columns, "Long table has no value column"))

    possible, missing = count_points(df, ("value",))
    return SourceQuality(
        source,
        SourceStatus.SUCCESS,
        completeness=completeness_percent(possible, missing),
        table=name,
        version=version,
        layout=Layout.LONG,
        total_rows=len(df),
        possible_points=possible,
        missing_points=missing,
        stats={"total_indicators": int(df[match.id_column].nunique())},
        indicators=indicator_summary(df, match.id_column),
        categories=category_breakdown(df, match.id_column),
    )


def _combined_status(statuses: Sequence[SourceStatus]) -> SourceStatus:
    for status in (SourceStatus.SUCCESS, SourceStatus.NEEDS_CONVERSION, SourceStatus.ERROR):
        if status in statuses:
            return status
    return SourceStatus.MISSING


def assess_national(
    national: Mapping[str, TableVersions],
    *,
    load_error: Optional[str] = None,
) -> SourceQuality:
    """Combine the assessments of every national table into one source status.

    ``success`` if any table is usable in long form, otherwise
    ``needs_conversion`` if any is wide, otherwise ``error`` if any
    failed, otherwise ``missing``.
    """
    if load_error:
        return SourceQuality(NATIONAL, SourceStatus.ERROR, message=load_error, issue=ProcessingError(load_error))
    tables = []
    for name, versions in national.items():
        df, version = versions.preferred()
        if df is None and versions.error:
            tables.append(SourceQuality(NATIONAL, SourceStatus.ERROR, table=name, message=versions.error,
                                        issue=ProcessingError(versions.error)))
            continue
        quality = assess_indicator_table(df, source=NATIONAL, table=name, version=version)
        if versions.error:
            quality = replace(quality, message="; ".join(m for m in (quality.message, versions.error) if m))
        tables.append(quality)
    if not tables:
        return SourceQuality(NATIONAL, SourceStatus.MISSING, message="National data not provided",
                             issue=SourceMissing(NATIONAL))

    status = _combined_status([t.status for t in tables])
    possible = sum(t.possible_points for t in tables)
    missing = sum(t.missing_points for t in tables)
    issue = next((t.issue for t in tables if t.status is status), None)
    return SourceQuality(
        NATIONAL,
        status,
        completeness=completeness_percent(possible, missing),
        total_rows=sum(t.total_rows for t in tables),
        possible_points=possible,
        missing_points=missing,
        message="; ".join(f"{t.table}: {t.message}" for t in tables if t.message),
        issue=None if status is SourceStatus.SUCCESS else issue,
        tables=tuple(tables),
    )


def assess_subnational(
    df: Optional[pd.DataFrame],
    variables: Sequence[str],
    *,
    load_error: Optional[str] = None,
) -> SourceQuality:
    """Status of the social-vulnerability table.

    A table keyed by geographic unit is assessed over its tracked
    variables; anything else is treated as an indicator table.
    """
    if load_error:
        return SourceQuality(SUBNATIONAL, SourceStatus.ERROR, message=load_error,
                             issue=ProcessingError(load_error))
    if df is None:
        return SourceQuality(SUBNATIONAL, SourceStatus.MISSING, message="Social data not provided",
                             issue=SourceMissing(SUBNATIONAL))

    if geo_id_column(df) is None:
        return assess_indicator_table(df, source=SUBNATIONAL)

    cols = tracked_columns(df, variables)
    if not cols:
        columns = tuple(str(c) for c in df.columns)
        return SourceQuality(SUBNATIONAL, SourceStatus.ERROR, message="No tracked social variables found",
                             issue=SourceUnrecognized(SUBNATIONAL, columns, "No tracked social variables found"))
    possible, missing = count_points(df, cols)
    return SourceQuality(
        SUBNATIONAL,
        SourceStatus.SUCCESS,
        completeness=completeness_percent(possible, missing),
        total_rows=len(df),
        possible_points=possible,
        missing_points=missing,
        stats={
            "geographic_units": len(df),
            "variables": cols,
            "missing_share": calculate_missingness(df[cols]).round(3).to_dict(),
        },
    )


def assess_city(inputs: CityInputs, config: PipelineConfig) -> CityQualityReport:
    """Run the gate over every source of one city."""
    errors = inputs.load_errors
    sources = {
        WEATHER: assess_weather(inputs.weather, load_error=errors.get(WEATHER)),
        NATIONAL: assess_national(inputs.national, load_error=errors.get(NATIONAL)),
        SUBNATIONAL: assess_subnational(inputs.subnational, config.social_variables,
                                        load_error=errors.get(SUBNATIONAL)),
    }
    report = CityQualityReport(inputs.city, sources, config.quality.low_completeness_pct)
    if not report.admitted:
        logger.warning("%s: no usable source (%s)", inputs.city,
                       ", ".join(f"{s}={q.status.value}" for s, q in sources.items()))
    for source in report.low_completeness:
        logger.info("%s: %s completeness %.1f%% below %.0f%%", inputs.city, source,
                    sources[source].completeness, config.quality.low_completeness_pct)
    return report


def quality_frame(reports: Sequence[CityQualityReport]) -> pd.DataFrame:
    """One row per city with the status and completeness of each source."""
    columns = ["city"]
    for source in SOURCES:
        columns += [f"{source}_status", f"{source}_completeness"]
    columns += ["admitted", "needs_conversion", "low_completeness", "assessment"]
    if not reports:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame([r.to_dict() for r in reports], columns=columns)


def quality_summary(reports: Sequence[CityQualityReport]) -> Dict[str, Any]:
    """Batch-level counts for the quality report."""
    return {
        "cities": len(reports),
        "admitted": sum(r.admitted for r in reports),
        "needs_conversion": sum(bool(r.needs_conversion) for r in reports),
        "assessment": {
            label: sum(r.assessment == label for r in reports) for label in (EXCELLENT, GOOD, INCOMPLETE)
        },
        "status": {
            source: {
                status.value: sum(r.sources[source].status is status for r in reports)
                for status in SourceStatus
            }
            for source in SOURCES
        },
    }


__all__ = [
    "SourceQuality",
    "CityQualityReport",
    "weather_stats",
    "assess_weather",
    "indicator_summary",
    "category_breakdown",
    "assess_indicator_table",
    "assess_national",
    "assess_subnational",
    "assess_city",
    "quality_frame",
    "quality_summary",
]
