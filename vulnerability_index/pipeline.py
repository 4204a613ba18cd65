"""
vulnerability_index.pipeline
----------------------------

End-to-end computation of the vulnerability index for a batch of
cities.

The run has three phases:

1. **Prepare** (parallel, one task per city): data-quality gate,
   harmonisation of every source into the canonical long frame,
   derivation of the weather and social indicators and resolution of
   the raw component values.
2. **Barrier**: once every city is prepared, the raw values of each
   component are collected across the batch and normalised.  The
   resulting table of :class:`~vulnerability_index.models.NormalizedIndicator`
   (with its min, max and degenerate flag) is written once and only
   read afterwards.
3. **Score** (parallel, one task per city): aggregation into the four
   sub-indices and composition of the final record.

Problems with one city's data never stop the batch.  They end up as an
:class:`~vulnerability_index.models.Exclusion` for that city or as
issues in the batch report.  Every attempted city appears in the result
either as a record or as an exclusion.

Example
-------
::

    from vulnerability_index.config import PipelineContext, load_config, load_registry
    from vulnerability_index.pipeline import run_pipeline

    ctx = PipelineContext(load_registry(), load_config())
    result = run_pipeline(inputs, ctx)
    result.ranking().head()
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from ingestion.quality.gate import CityQualityReport, assess_city, quality_frame, quality_summary
from ingestion.transform.harmonize import (
    HarmonizedTable,
    current_values,
    harmonize_table,
    harmonize_versions,
    harmonize_weather,
)

from .components import resolve_components
from .composer import compose_scores
from .config import PipelineConfig, PipelineContext
from .issues import (
    DegenerateDistribution,
    FormatNeedsConversion,
    Issue,
    NoUsableSources,
    ProcessingError,
    UnknownCity,
)
from .models import (
    LONG_COLUMNS,
    NATIONAL,
    SOURCES,
    SUBNATIONAL,
    WEATHER,
    City,
    CityInputs,
    Exclusion,
    NormalizedIndicator,
    SourceStatus,
    VulnerabilityRecord,
    records_to_frame,
)
from .normalize import normalize_indicator
from .ranking import (
    correlation_summary,
    exclusions_frame,
    factor_drivers,
    rank_cities,
    results_frame,
    score_statistics,
)
from .social import is_unit_table, social_records
from .subindices import SubIndexAggregator, build_aggregators, compute_sub_indices, insufficient
from .weather import weather_records

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class PreparedCity:
    """Output of the per-city preparation phase."""

    city: City
    quality: CityQualityReport
    statuses: Mapping[str, SourceStatus]
    tables: Tuple[HarmonizedTable, ...] = ()
    frame: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=LONG_COLUMNS))
    components: Mapping[str, Optional[float]] = field(default_factory=dict)
    exclusion: Optional[Exclusion] = None


@dataclass(frozen=True, eq=False)
class PipelineResult:
    """Everything produced by one run."""

    records: Tuple[VulnerabilityRecord, ...]
    exclusions: Tuple[Exclusion, ...]
    quality: Tuple[CityQualityReport, ...] = ()
    issues: Tuple[Tuple[str, Issue], ...] = ()
    stats: Mapping[str, NormalizedIndicator] = field(default_factory=dict)

    @property
    def attempted(self) -> List[str]:
        return [r.city.name for r in self.records] + [e.city for e in self.exclusions]

    def record(self, city: str) -> Optional[VulnerabilityRecord]:
        for rec in self.records:
            if rec.city.name == city:
                return rec
        return None

    def exclusion(self, city: str) -> Optional[Exclusion]:
        for exc in self.exclusions:
            if exc.city == city:
                return exc
        return None

    def to_frame(self) -> pd.DataFrame:
        return results_frame(self.records)

    def ranking(self) -> pd.DataFrame:
        return rank_cities(self.records)

    def correlations(self, method: str = "pearson") -> pd.DataFrame:
        return correlation_summary(self.records, method=method)

    def drivers(self) -> pd.Series:
        return factor_drivers(self.correlations())

    def statistics(self) -> pd.DataFrame:
        return score_statistics(self.records)

    def exclusions_frame(self) -> pd.DataFrame:
        return exclusions_frame(self.exclusions)

    def quality_frame(self) -> pd.DataFrame:
        return quality_frame(self.quality)

    def issues_frame(self) -> pd.DataFrame:
        rows = [{"city": city, "issue": str(issue), "kind": issue.kind} for city, issue in self.issues]
        return pd.DataFrame(rows, columns=["city", "issue", "kind"])

    def summary(self) -> Dict[str, Any]:
        categories: Dict[str, int] = {}
        for rec in self.records:
            categories[rec.category] = categories.get(rec.category, 0) + 1
        reasons: Dict[str, int] = {}
        for exc in self.exclusions:
            reasons[exc.reason.kind] = reasons.get(exc.reason.kind, 0) + 1
        return {
            "attempted": len(self.records) + len(self.exclusions),
            "scored": len(self.records),
            "excluded": len(self.exclusions),
            "reduced_confidence": sum(r.completeness.reduced_confidence for r in self.records),
            "categories": categories,
            "exclusion_reasons": reasons,
            "quality": quality_summary(self.quality),
        }


# ---------------------------------------------------------------------------
# Phase 1: per-city preparation
# ---------------------------------------------------------------------------

def _combined(tables: Sequence[HarmonizedTable]) -> SourceStatus:
    statuses = [t.status for t in tables]
    for status in (SourceStatus.SUCCESS, SourceStatus.NEEDS_CONVERSION, SourceStatus.ERROR):
        if status in statuses:
            return status
    return SourceStatus.MISSING


def harmonize_city(
    city: City,
    inputs: CityInputs,
    quality: CityQualityReport,
    config: PipelineConfig,
) -> Tuple[pd.DataFrame, Tuple[HarmonizedTable, ...], Dict[str, SourceStatus]]:
    """Bring every usable source of one city into the canonical long frame.

    Returns the combined frame, the harmonised indicator tables and the
    status of each source after harmonisation.
    """
    statuses = dict(quality.statuses)
    derived = []
    tables: List[HarmonizedTable] = []

    if quality.sources[WEATHER].usable:
        derived += weather_records(city.name, harmonize_weather(inputs.weather), config.weather)

    if quality.sources[NATIONAL].usable:
        national = [
            harmonize_versions(
                versions,
                city=city.name,
                source=NATIONAL,
                table=name,
                prefixes=config.category_prefixes,
                convert_wide=config.convert_wide,
            )
            for name, versions in inputs.national.items()
        ]
        tables += national
        statuses[NATIONAL] = _combined(national)

    if quality.sources[SUBNATIONAL].usable:
        if is_unit_table(inputs.subnational, config.social_variables):
            derived += social_records(city.name, inputs.subnational, config.social_variables, city.population)
        else:
            table = harmonize_table(
                inputs.subnational,
                city=city.name,
                source=SUBNATIONAL,
                prefixes=config.category_prefixes,
                convert_wide=config.convert_wide,
            )
            tables.append(table)
            statuses[SUBNATIONAL] = table.status

    frames = [records_to_frame(derived)] + [t.frame for t in tables if t.ok]
    frames = [f for f in frames if not f.empty]
    frame = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame(columns=LONG_COLUMNS)
    return frame, tuple(tables), statuses


def prepare_city(city: City, inputs: CityInputs, config: PipelineConfig) -> PreparedCity:
    """Gate, harmonise and resolve the raw components of one city."""
    quality = assess_city(inputs, config)
    if not quality.admitted:
        detail = ", ".join(f"{s}={q.status.value}" for s, q in quality.sources.items())
        return PreparedCity(city, quality, quality.statuses, exclusion=Exclusion(city.name, NoUsableSources(), detail))

    frame, tables, statuses = harmonize_city(city, inputs, quality, config)

    pending = [s for s in SOURCES if statuses.get(s) is SourceStatus.NEEDS_CONVERSION]
    if pending:
        logger.warning("%s: held back, %s still needs conversion", city.name, ", ".join(pending))
        return PreparedCity(
            city, quality, statuses, tables, frame,
            exclusion=Exclusion(city.name, FormatNeedsConversion(pending[0]), "Wide-format table not converted"),
        )

    components = resolve_components(current_values(frame), config.components)
    logger.debug("%s: %d/%d components resolved", city.name,
                 sum(v is not None for v in components.values()), len(components))
    return PreparedCity(city, quality, statuses, tables, frame, components)


def _prepare_safe(city: City, inputs: CityInputs, config: PipelineConfig) -> PreparedCity:
    try:
        return prepare_city(city, inputs, config)
    except Exception as exc:  # one city must not abort the batch
        logger.exception("%s: preparation failed", city.name)
        quality = assess_city(CityInputs(city.name), config)
        message = f"{type(exc).__name__}: {exc}"
        return PreparedCity(city, quality, quality.statuses,
                            exclusion=Exclusion(city.name, ProcessingError(message), message))


# ---------------------------------------------------------------------------
# Phase 2: barrier
# ---------------------------------------------------------------------------

def build_stats(prepared: Sequence[PreparedCity], config: PipelineConfig) -> Dict[str, NormalizedIndicator]:
    """Normalise every component across the cities still in the batch."""
    scored = [p for p in prepared if p.exclusion is None]
    stats: Dict[str, NormalizedIndicator] = {}
    for spec in config.components:
        raw = {p.city.name: p.components.get(spec.name) for p in scored}
        stats[spec.name] = normalize_indicator(spec.name, raw, spec.polarity)
    return stats


# ---------------------------------------------------------------------------
# Phase 3: per-city scoring
# ---------------------------------------------------------------------------

def score_city(
    prepared: PreparedCity,
    stats: Mapping[str, NormalizedIndicator],
    aggregators: Sequence[SubIndexAggregator],
    config: PipelineConfig,
) -> Tuple[Any, List[Issue]]:
    """Aggregate and compose one prepared city."""
    name = prepared.city.name
    normalized = {component: indicator.values.get(name) for component, indicator in stats.items()}
    scores = compute_sub_indices(normalized, aggregators)
    outcome = compose_scores(
        prepared.city,
        scores,
        sources=prepared.statuses,
        completeness=prepared.quality.completeness,
        thresholds=config.thresholds,
    )
    return outcome, list(insufficient(scores))


def _converted(issue: Issue, prepared: PreparedCity) -> bool:
    """``True`` for a gate conversion issue that harmonisation resolved."""
    return (
        isinstance(issue, FormatNeedsConversion)
        and prepared.statuses.get(issue.source) is not SourceStatus.NEEDS_CONVERSION
    )


def _score_safe(prepared, stats, aggregators, config):
    try:
        return score_city(prepared, stats, aggregators, config)
    except Exception as exc:  # one city must not abort the batch
        logger.exception("%s: scoring failed", prepared.city.name)
        message = f"{type(exc).__name__}: {exc}"
        return Exclusion(prepared.city.name, ProcessingError(message), message), []


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def run_pipeline(
    inputs: Mapping[str, CityInputs],
    context: PipelineContext,
    cities: Optional[Sequence[str]] = None,
) -> PipelineResult:
    """Compute the vulnerability index for a batch of cities.

    Parameters
    ----------
    inputs : mapping
        City name -> :class:`CityInputs`.  Registry cities without an
        entry are attempted with no data at all.
    context : PipelineContext
        Registry and configuration of the run.
    cities : sequence of str, optional
        Cities to attempt, each once.  Defaults to every city of the
        registry.

    Returns
    -------
    PipelineResult
        One record or one exclusion per attempted city; inputs for
        names absent from the registry become ``UnknownCity``
        exclusions.
    """
    registry, config = context.registry, context.config
    names = list(dict.fromkeys(cities)) if cities is not None else registry.names()
    for name in inputs:
        if name not in registry and name not in names:
            names.append(name)

    exclusions: List[Exclusion] = []
    attempted: List[City] = []
    for name in names:
        city = registry.get(name)
        if city is None:
            logger.warning("%s: not in the city registry", name)
            exclusions.append(Exclusion(name, UnknownCity(name), "City not in registry"))
        else:
            attempted.append(city)

    logger.info("Preparing %d cities", len(attempted))
    with ThreadPoolExecutor(max_workers=config.max_workers) as pool:
        prepared = list(
            pool.map(lambda c: _prepare_safe(c, inputs.get(c.name) or CityInputs(c.name), config), attempted)
        )

        stats = build_stats(prepared, config)
        aggregators = build_aggregators(config)

        ready = [p for p in prepared if p.exclusion is None]
        logger.info("Scoring %d of %d prepared cities", len(ready), len(prepared))
        outcomes = list(pool.map(lambda p: _score_safe(p, stats, aggregators, config), ready))

    issues: List[Tuple[str, Issue]] = []
    for p in prepared:
        issues += [(p.city.name, issue) for issue in p.quality.issues if not _converted(issue, p)]
        issues += [(p.city.name, t.issue) for t in p.tables if t.issue is not None and t.issue not in p.quality.issues]
    issues += [("", DegenerateDistribution(n)) for n, s in stats.items() if s.degenerate]

    outcome_by_city: Dict[str, Any] = {}
    for p, (outcome, sub_issues) in zip(ready, outcomes):
        outcome_by_city[p.city.name] = outcome
        issues += [(p.city.name, issue) for issue in sub_issues]
    for p in prepared:
        if p.exclusion is not None:
            outcome_by_city[p.city.name] = p.exclusion

    records: List[VulnerabilityRecord] = []
    for city in attempted:
        outcome = outcome_by_city[city.name]
        if isinstance(outcome, Exclusion):
            exclusions.append(outcome)
        else:
            records.append(outcome)

    logger.info("Scored %d cities, excluded %d", len(records), len(exclusions))
    return PipelineResult(
        records=tuple(records),
        exclusions=tuple(exclusions),
        quality=tuple(p.quality for p in prepared),
        issues=tuple(issues),
        stats=stats,
    )


__all__ = [
    "PreparedCity",
    "PipelineResult",
    "harmonize_city",
    "prepare_city",
    "build_stats",
    "score_city",
    "run_pipeline",
]
