"""
vulnerability_index.composer
----------------------------

Combine the four sub-indices of one city into its final vulnerability
record.

::

    ClimateRisk        = mean(TemperatureRisk, PrecipitationRisk)
    AdaptiveCapacity   = mean(EconomicResilience, SocialResilience)
    VulnerabilityScore = clamp(ClimateRisk - AdaptiveCapacity + 0.5, 0, 1)

Both means only use the sub-indices that are present.  Climate risk is
mandatory: without either climate sub-index the city is excluded with
``InsufficientComponents(ClimateRisk)``.  Adaptive capacity may be
degraded to a single sub-index, in which case the record is flagged as
reduced confidence; with neither sub-index the city is excluded with
``InsufficientComponents(AdaptiveCapacity)`` instead of being scored as
if it had no capacity at all.

The ``+ 0.5`` recentres the score so that identical risk and capacity
always give exactly 0.5, whatever their level.

Example
-------
::

    from vulnerability_index.composer import categorize, vulnerability_score

    vulnerability_score(0.85, 0.25)   # 1.0
    categorize(0.25)                  # "Moderate"
"""

from __future__ import annotations

from typing import Mapping, Optional, Sequence, Union

from .config import CategoryThreshold
from .issues import InsufficientComponents
from .models import (
    ADAPTIVE_CAPACITY,
    CLIMATE_RISK,
    ECONOMIC_RESILIENCE,
    PRECIPITATION_RISK,
    SOCIAL_RESILIENCE,
    SUB_INDICES,
    TEMPERATURE_RISK,
    City,
    CompletenessReport,
    Exclusion,
    SourceStatus,
    SubIndexScore,
    VulnerabilityRecord,
)
from .subindices import mean_of_present

DEFAULT_THRESHOLDS = (
    CategoryThreshold("Low", 0.0),
    CategoryThreshold("Moderate", 0.25),
    CategoryThreshold("High", 0.45),
    CategoryThreshold("Severe", 0.65),
)


def clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    return min(max(value, lower), upper)


def vulnerability_score(climate_risk: float, adaptive_capacity: float) -> float:
    """``clamp(climate_risk - adaptive_capacity + 0.5, 0, 1)``."""
    return clamp(climate_risk - adaptive_capacity + 0.5)


def categorize(score: float, thresholds: Sequence[CategoryThreshold] = DEFAULT_THRESHOLDS) -> str:
    """Label of the highest threshold whose inclusive lower bound ``score`` reaches."""
    label = thresholds[0].label
    for threshold in thresholds:
        if score >= threshold.lower:
            label = threshold.label
        else:
            break
    return label


def _value(score: Union[SubIndexScore, float, None]) -> Optional[float]:
    if isinstance(score, SubIndexScore):
        return score.value
    return score


def _as_score(name: str, score: Union[SubIndexScore, float, None]) -> SubIndexScore:
    if isinstance(score, SubIndexScore):
        return score
    return SubIndexScore(name, score, int(score is not None), 1)


def compose(
    city: City,
    temp_risk: Union[SubIndexScore, float, None],
    precip_risk: Union[SubIndexScore, float, None],
    econ_resilience: Union[SubIndexScore, float, None],
    social_resilience: Union[SubIndexScore, float, None],
    *,
    sources: Optional[Mapping[str, SourceStatus]] = None,
    completeness: Optional[Mapping[str, Optional[float]]] = None,
    thresholds: Sequence[CategoryThreshold] = DEFAULT_THRESHOLDS,
) -> Union[VulnerabilityRecord, Exclusion]:
    """Build the vulnerability record of one city, or explain why not.

    Each sub-index may be given as a :class:`SubIndexScore` or as a bare
    optional float.

    Returns
    -------
    VulnerabilityRecord or Exclusion
        An :class:`Exclusion` with an ``InsufficientComponents`` reason
        when climate risk or adaptive capacity cannot be computed.
    """
    climate_risk = mean_of_present([_value(temp_risk), _value(precip_risk)])
    if climate_risk is None:
        return Exclusion(city.name, InsufficientComponents(CLIMATE_RISK), "No temperature or precipitation risk")

    adaptive_capacity = mean_of_present([_value(econ_resilience), _value(social_resilience)])
    if adaptive_capacity is None:
        return Exclusion(
            city.name,
            InsufficientComponents(ADAPTIVE_CAPACITY),
            f"ClimateRisk={climate_risk:.3f} but no economic or social resilience",
        )

    sub_indices = {
        name: _as_score(name, s)
        for name, s in zip(SUB_INDICES, (temp_risk, precip_risk, econ_resilience, social_resilience))
    }
    available = tuple(name for name in SUB_INDICES if sub_indices[name].available)
    reduced = not (sub_indices[ECONOMIC_RESILIENCE].available and sub_indices[SOCIAL_RESILIENCE].available)
    score = vulnerability_score(climate_risk, adaptive_capacity)

    return VulnerabilityRecord(
        city=city,
        climate_risk=climate_risk,
        adaptive_capacity=adaptive_capacity,
        score=score,
        category=categorize(score, thresholds),
        sub_indices=sub_indices,
        completeness=CompletenessReport(
            sub_indices_available=available,
            sources=dict(sources or {}),
            completeness=dict(completeness or {}),
            reduced_confidence=reduced,
        ),
    )


def compose_scores(
    city: City,
    scores: Mapping[str, SubIndexScore],
    **kwargs,
) -> Union[VulnerabilityRecord, Exclusion]:
    """:func:`compose` with the sub-indices looked up by name."""
    return compose(
        city,
        scores.get(TEMPERATURE_RISK),
        scores.get(PRECIPITATION_RISK),
        scores.get(ECONOMIC_RESILIENCE),
        scores.get(SOCIAL_RESILIENCE),
        **kwargs,
    )


__all__ = [
    "DEFAULT_THRESHOLDS",
    "clamp",
    "vulnerability_score",
    "categorize",
    "compose",
    "compose_scores",
]
