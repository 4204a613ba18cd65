"""
vulnerability_index.models
--------------------------

Immutable data containers shared by every stage of the pipeline.

The pipeline never mutates a record once it has been built: quality
reports, sub-index scores and final vulnerability records are frozen
dataclasses.  A re-run produces a fresh set of records; historical
comparison is done by diffing two result sets (see
:func:`vulnerability_index.ranking.diff_results`).

Raw tables are passed around as ``pandas.DataFrame`` objects wrapped in
:class:`CityInputs`.  The canonical long-format indicator frame uses the
column order given by :data:`LONG_COLUMNS`, mirroring the fields of
:class:`RawIndicatorRecord`.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

from .issues import Issue, RegistryError

# Source tags
WEATHER = "weather"
NATIONAL = "national"
SUBNATIONAL = "subnational"
SOURCES: Tuple[str, ...] = (WEATHER, NATIONAL, SUBNATIONAL)

# Sub-index and top-level score names
TEMPERATURE_RISK = "TemperatureRisk"
PRECIPITATION_RISK = "PrecipitationRisk"
ECONOMIC_RESILIENCE = "EconomicResilience"
SOCIAL_RESILIENCE = "SocialResilience"
SUB_INDICES: Tuple[str, ...] = (
    TEMPERATURE_RISK,
    PRECIPITATION_RISK,
    ECONOMIC_RESILIENCE,
    SOCIAL_RESILIENCE,
)
CLIMATE_RISK = "ClimateRisk"
ADAPTIVE_CAPACITY = "AdaptiveCapacity"

LONG_COLUMNS: List[str] = ["city", "indicator_id", "value", "period", "source", "category"]


class SourceStatus(str, enum.Enum):
    MISSING = "missing"
    ERROR = "error"
    NEEDS_CONVERSION = "needs_conversion"
    SUCCESS = "success"

    @property
    def usable(self) -> bool:
        """``True`` for statuses that admit a city to the pipeline."""
        return self in (SourceStatus.SUCCESS, SourceStatus.NEEDS_CONVERSION)


class Polarity(str, enum.Enum):
    RISK = "risk"
    CAPACITY = "capacity"


def is_missing(value: Any) -> bool:
    """Return ``True`` for ``None`` and NaN."""
    if value is None:
        return True
    return bool(pd.isna(value))


@dataclass(frozen=True)
class City:
    name: str
    country_iso: str
    lat: float
    lon: float
    population: Optional[float] = None
    climate_zone: Optional[str] = None
    region: Optional[str] = None
    state_code: Optional[str] = None
    county: Optional[str] = None


class CityRegistry:
    """Ordered, read-only collection of :class:`City` keyed by name."""

    def __init__(self, cities: Sequence[City]) -> None:
        if not cities:
            raise RegistryError("City registry is empty")
        by_name: Dict[str, City] = {}
        for city in cities:
            if city.name in by_name:
                raise RegistryError(f"Duplicate city in registry: {city.name!r}")
            by_name[city.name] = city
        self._cities: Tuple[City, ...] = tuple(cities)
        self._by_name = by_name

    def __iter__(self) -> Iterator[City]:
        return iter(self._cities)

    def __len__(self) -> int:
        return len(self._cities)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def get(self, name: str) -> Optional[City]:
        return self._by_name.get(name)

    def names(self) -> List[str]:
        return [c.name for c in self._cities]


@dataclass(frozen=True)
class RawIndicatorRecord:
    """One observation of one indicator for one city over one period."""

    city: str
    indicator_id: str
    value: Optional[float]
    period: Any
    source: str
    category: Optional[str] = None


def records_to_frame(records: Sequence[RawIndicatorRecord]) -> pd.DataFrame:
    """Build a canonical long frame from a sequence of records."""
    if not records:
        return pd.DataFrame(columns=LONG_COLUMNS)
    return pd.DataFrame([asdict(r) for r in records], columns=LONG_COLUMNS)


@dataclass(frozen=True, eq=False)
class TableVersions:
    """The original and harmonized ("fixed") versions of one raw table.

    ``error`` holds the read failure of a version that could not be
    loaded.
    """

    original: Optional[pd.DataFrame] = None
    fixed: Optional[pd.DataFrame] = None
    error: Optional[str] = None

    def preferred(self) -> Tuple[Optional[pd.DataFrame], Optional[str]]:
        """Return the frame to use and which version it is.

        The harmonized version wins; the original is only a fallback.
        """
        if self.fixed is not None:
            return self.fixed, "fixed"
        if self.original is not None:
            return self.original, "original"
        return None, None


@dataclass(frozen=True, eq=False)
class CityInputs:
    """Materialised raw tables for one city, as handed over by ingestion.

    ``national`` maps a table name (e.g. ``"climate"``, ``"economic"``) to
    its versions.  ``load_errors`` maps a source tag to the message of a
    failure that happened while the ingestion layer read that source.
    """

    city: str
    weather: Optional[pd.DataFrame] = None
    national: Mapping[str, TableVersions] = field(default_factory=dict)
    subnational: Optional[pd.DataFrame] = None
    load_errors: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class NormalizedIndicator:
    indicator_id: str
    polarity: Polarity
    values: Mapping[str, Optional[float]]
    minimum: Optional[float]
    maximum: Optional[float]
    degenerate: bool = False


@dataclass(frozen=True)
class SubIndexScore:
    name: str
    value: Optional[float]
    components_used: int
    components_expected: int
    components: Mapping[str, Optional[float]] = field(default_factory=dict)

    @property
    def available(self) -> bool:
        return self.value is not None


@dataclass(frozen=True)
class CompletenessReport:
    sub_indices_available: Tuple[str, ...]
    sources: Mapping[str, SourceStatus]
    completeness: Mapping[str, Optional[float]] = field(default_factory=dict)
    reduced_confidence: bool = False


@dataclass(frozen=True)
class VulnerabilityRecord:
    city: City
    climate_risk: float
    adaptive_capacity: float
    score: float
    category: str
    sub_indices: Mapping[str, SubIndexScore]
    completeness: CompletenessReport

    def to_dict(self) -> Dict[str, Any]:
        """Flatten the record into one row for tabular output."""
        row: Dict[str, Any] = {
            "city": self.city.name,
            "country_iso": self.city.country_iso,
            "climate_zone": self.city.climate_zone,
            "climate_risk": self.climate_risk,
            "adaptive_capacity": self.adaptive_capacity,
            "vulnerability_score": self.score,
            "category": self.category,
        }
        for name in SUB_INDICES:
            sub = self.sub_indices.get(name)
            row[_snake(name)] = sub.value if sub is not None else None
        row["sub_indices_available"] = len(self.completeness.sub_indices_available)
        row["reduced_confidence"] = self.completeness.reduced_confidence
        for source in SOURCES:
            status = self.completeness.sources.get(source)
            row[f"{source}_status"] = status.value if status is not None else None
        return row


@dataclass(frozen=True)
class Exclusion:
    """Explicit reason why an attempted city received no score."""

    city: str
    reason: Issue
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "city": self.city,
            "reason": str(self.reason),
            "kind": self.reason.kind,
            "detail": self.detail,
        }


CityOutcome = Union[VulnerabilityRecord, Exclusion]


def _snake(name: str) -> str:
    out = []
    for i, ch in enumerate(name):
        if ch.isupper() and i:
            out.append("_")
        out.append(ch.lower())
    return "".join(out)


def column_name(name: str) -> str:
    """Column name used in tabular output for a CamelCase score name."""
    return _snake(name)


__all__ = [
    "WEATHER",
    "NATIONAL",
    "SUBNATIONAL",
    "SOURCES",
    "TEMPERATURE_RISK",
    "PRECIPITATION_RISK",
    "ECONOMIC_RESILIENCE",
    "SOCIAL_RESILIENCE",
    "SUB_INDICES",
    "CLIMATE_RISK",
    "ADAPTIVE_CAPACITY",
    "LONG_COLUMNS",
    "SourceStatus",
    "Polarity",
    "is_missing",
    "City",
    "CityRegistry",
    "RawIndicatorRecord",
    "records_to_frame",
    "TableVersions",
    "CityInputs",
    "NormalizedIndicator",
    "SubIndexScore",
    "CompletenessReport",
    "VulnerabilityRecord",
    "Exclusion",
    "CityOutcome",
    "column_name",
]
