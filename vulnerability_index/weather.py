"""
vulnerability_index.weather
---------------------------

Derivation of the temperature and precipitation risk indicators from a
city's daily weather series.

The daily table is expected in the canonical shape produced by
:func:`ingestion.transform.harmonize.harmonize_weather` (``date``,
``temp_max``, ``temp_min``, ``temp_avg``, ``precipitation_mm``).  Each
indicator is a single number per city over the whole observation
window; the cross-city comparison happens later, in
:mod:`vulnerability_index.normalize`.

Definitions
-----------

``heat_extreme_frequency``
    Share of observed days whose maximum temperature reaches
    ``heat_threshold_c`` (35 °C by default).
``temperature_variability``
    Standard deviation of the daily mean temperature once the monthly
    climatology has been removed (see :func:`seasonal_anomaly`).
``warming_trend``
    Least-squares slope of the annual mean temperature, in °C per
    decade.  Needs at least ``min_trend_years`` distinct years.
``flood_risk_proxy``
    Share of observed days with at least ``heavy_precip_mm`` of
    precipitation (the ETCCDI R20mm count, as a frequency).
``drought_frequency``
    Share of observed days that belong to a dry spell: a run of at
    least ``dry_spell_days`` consecutive days below ``dry_day_mm``.
``precipitation_variability``
    Coefficient of variation of the monthly precipitation totals.

An indicator that cannot be computed (no usable observations, too few
years, zero mean precipitation) is ``None`` and propagates as missing.
"""

from __future__ import annotations

from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from .config import WeatherThresholds
from .models import WEATHER, RawIndicatorRecord

WEATHER_INDICATORS = (
    "heat_extreme_frequency",
    "temperature_variability",
    "warming_trend",
    "flood_risk_proxy",
    "drought_frequency",
    "precipitation_variability",
)


def seasonal_anomaly(series: pd.Series, *, group_by: str = "month") -> pd.Series:
    """Subtract the seasonal mean from a daily series.

    Parameters
    ----------
    series : pandas.Series
        Daily values indexed by a ``DatetimeIndex``.
    group_by : {"month", "weekofyear"}, default "month"
        Seasonal grouping used to compute the climatology.

    Returns
    -------
    pandas.Series
        Deviation of each observation from the mean of its season.
    """
    if not isinstance(series.index, pd.DatetimeIndex):
        raise TypeError("series.index must be a DatetimeIndex")
    if group_by == "month":
        season = series.index.month.to_numpy()
    elif group_by == "weekofyear":
        season = series.index.isocalendar().week.to_numpy()
    else:
        raise ValueError(f"Unsupported group_by: {group_by}")
    climatology = series.groupby(season).transform("mean")
    return series - climatology


def _share(mask: pd.Series, observed: pd.Series) -> Optional[float]:
    n = int(observed.sum())
    if n == 0:
        return None
    return float((mask & observed).sum()) / n


def heat_extreme_frequency(weather: pd.DataFrame, threshold_c: float) -> Optional[float]:
    tmax = weather["temp_max"]
    return _share(tmax >= threshold_c, tmax.notna())


def temperature_variability(weather: pd.DataFrame) -> Optional[float]:
    temps = pd.Series(weather["temp_avg"].to_numpy(dtype=float), index=pd.DatetimeIndex(weather["date"]))
    temps = temps.dropna()
    if len(temps) < 2:
        return None
    return float(seasonal_anomaly(temps).std(ddof=0))


def warming_trend(weather: pd.DataFrame, min_years: int) -> Optional[float]:
    """Slope of annual mean temperature in °C per decade."""
    annual = weather.groupby(weather["date"].dt.year)["temp_avg"].mean().dropna()
    if len(annual) < min_years:
        return None
    slope = np.polyfit(annual.index.to_numpy(dtype=float), annual.to_numpy(dtype=float), 1)[0]
    return float(slope * 10.0)


def flood_risk_proxy(weather: pd.DataFrame, heavy_precip_mm: float) -> Optional[float]:
    precip = weather["precipitation_mm"]
    return _share(precip >= heavy_precip_mm, precip.notna())


def drought_frequency(weather: pd.DataFrame, dry_day_mm: float, dry_spell_days: int) -> Optional[float]:
    precip = weather["precipitation_mm"]
    # missing days break a spell
    dry = (precip < dry_day_mm) & precip.notna()
    run_id = (dry != dry.shift()).cumsum()
    run_length = dry.groupby(run_id).transform("size")
    in_spell = dry & (run_length >= dry_spell_days)
    return _share(in_spell, precip.notna())


def precipitation_variability(weather: pd.DataFrame) -> Optional[float]:
    observed = weather.dropna(subset=["precipitation_mm"])
    if observed.empty:
        return None
    monthly = observed.groupby(observed["date"].dt.to_period("M"))["precipitation_mm"].sum()
    if len(monthly) < 2:
        return None
    mean = float(monthly.mean())
    if mean == 0:
        return None
    return float(monthly.std(ddof=0)) / mean


def summarise_weather(weather: pd.DataFrame, thresholds: WeatherThresholds) -> Dict[str, Optional[float]]:
    """Compute every weather indicator for one city."""
    return {
        "heat_extreme_frequency": heat_extreme_frequency(weather, thresholds.heat_threshold_c),
        "temperature_variability": temperature_variability(weather),
        "warming_trend": warming_trend(weather, thresholds.min_trend_years),
        "flood_risk_proxy": flood_risk_proxy(weather, thresholds.heavy_precip_mm),
        "drought_frequency": drought_frequency(weather, thresholds.dry_day_mm, thresholds.dry_spell_days),
        "precipitation_variability": precipitation_variability(weather),
    }


def weather_records(city: str, weather: pd.DataFrame, thresholds: WeatherThresholds) -> List[RawIndicatorRecord]:
    """Weather indicators as raw records dated by the last observed year."""
    if weather.empty:
        return []
    period = int(weather["date"].max().year)
    return [
        RawIndicatorRecord(city=city, indicator_id=name, value=value, period=period, source=WEATHER)
        for name, value in summarise_weather(weather, thresholds).items()
    ]


__all__ = [
    "WEATHER_INDICATORS",
    "seasonal_anomaly",
    "heat_extreme_frequency",
    "temperature_variability",
    "warming_trend",
    "flood_risk_proxy",
    "drought_frequency",
    "precipitation_variability",
    "summarise_weather",
    "weather_records",
]
