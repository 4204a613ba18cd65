"""
vulnerability_index.config
--------------------------

Explicit, immutable configuration of the pipeline.

Everything the pipeline needs beyond the per-city tables lives here: the
lookup table of components (which indicator feeds which sub-index, its
polarity and whether it must be pre-inverted), the indicator-prefix to
category table, the category thresholds and the weather derivation
thresholds.  The defaults are shipped as ``defaults.yaml`` next to this
module and parsed with PyYAML; callers may point :func:`load_config` at
their own file or pass a mapping of overrides.

The city registry is loaded separately with :func:`load_registry` and
bundled with a configuration into a :class:`PipelineContext`, which is
the single object handed to :func:`vulnerability_index.pipeline.run_pipeline`.

Example
-------
::

    from vulnerability_index.config import PipelineContext, load_config, load_registry

    ctx = PipelineContext(
        registry=load_registry(),
        config=load_config(overrides={"weather": {"heat_threshold_c": 32.0}}),
    )
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import pandas as pd
import yaml

from .issues import ConfigError, RegistryError
from .models import SUB_INDICES, City, CityRegistry, Polarity

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).with_name("defaults.yaml")
DEFAULT_REGISTRY_PATH = Path(__file__).parent / "data" / "cities.csv"

METHODS = ("latest", "mean", "diversity")


@dataclass(frozen=True)
class IndicatorRef:
    code: str
    scale: float = 1.0


@dataclass(frozen=True)
class ComponentSpec:
    """One named input of a sub-index."""

    name: str
    sub_index: str
    polarity: Polarity
    candidates: Tuple[IndicatorRef, ...]
    method: str = "latest"
    invert: bool = False


@dataclass(frozen=True)
class CategoryThreshold:
    label: str
    lower: float


@dataclass(frozen=True)
class WeatherThresholds:
    heat_threshold_c: float = 35.0
    heavy_precip_mm: float = 20.0
    dry_day_mm: float = 1.0
    dry_spell_days: int = 15
    min_trend_years: int = 2


@dataclass(frozen=True)
class QualityThresholds:
    low_completeness_pct: float = 80.0


@dataclass(frozen=True)
class PipelineConfig:
    components: Tuple[ComponentSpec, ...]
    category_prefixes: Tuple[Tuple[str, str], ...]
    thresholds: Tuple[CategoryThreshold, ...]
    weather: WeatherThresholds = field(default_factory=WeatherThresholds)
    quality: QualityThresholds = field(default_factory=QualityThresholds)
    social_variables: Tuple[str, ...] = ()
    convert_wide: bool = True
    max_workers: Optional[int] = None

    def components_for(self, sub_index: str) -> Tuple[ComponentSpec, ...]:
        return tuple(c for c in self.components if c.sub_index == sub_index)

    def component(self, name: str) -> ComponentSpec:
        for spec in self.components:
            if spec.name == name:
                return spec
        raise KeyError(f"Unknown component '{name}'")


@dataclass(frozen=True)
class PipelineContext:
    """Everything a pipeline run depends on, passed explicitly."""

    registry: CityRegistry
    config: PipelineConfig


def _deep_merge(base: Dict[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = copy.deepcopy(value)
    return out


def _build_component(raw: Mapping[str, Any]) -> ComponentSpec:
    try:
        name = str(raw["name"])
        sub_index = str(raw["sub_index"])
        polarity = Polarity(str(raw["polarity"]).lower())
    except KeyError as exc:
        raise ConfigError(f"Component definition missing key {exc}: {dict(raw)}") from exc
    except ValueError as exc:
        raise ConfigError(f"Invalid polarity for component {raw.get('name')!r}") from exc

    if sub_index not in SUB_INDICES:
        raise ConfigError(f"Component {name!r} refers to unknown sub-index {sub_index!r}")
    method = str(raw.get("method", "latest"))
    if method not in METHODS:
        raise ConfigError(f"Component {name!r} has unknown method {method!r}")

    candidates: List[IndicatorRef] = []
    for cand in raw.get("candidates") or []:
        if isinstance(cand, str):
            cand = {"id": cand}
        try:
            ref = IndicatorRef(code=str(cand["id"]), scale=float(cand.get("scale", 1.0)))
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ConfigError(f"Component {name!r}: invalid candidate {cand!r}") from exc
        if ref.scale <= 0:
            raise ConfigError(f"Component {name!r}: scale must be positive")
        candidates.append(ref)
    if not candidates:
        raise ConfigError(f"Component {name!r} has no candidate indicators")

    return ComponentSpec(
        name=name,
        sub_index=sub_index,
        polarity=polarity,
        candidates=tuple(candidates),
        method=method,
        invert=bool(raw.get("invert", False)),
    )


def _build_thresholds(raw: List[Mapping[str, Any]]) -> Tuple[CategoryThreshold, ...]:
    try:
        thresholds = tuple(
            CategoryThreshold(label=str(t["label"]), lower=float(t["lower"])) for t in raw
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid category threshold: {exc}") from exc
    if not thresholds:
        raise ConfigError("At least one category threshold is required")
    lowers = [t.lower for t in thresholds]
    if lowers != sorted(lowers) or len(set(lowers)) != len(lowers):
        raise ConfigError("Category thresholds must be strictly ascending")
    if lowers[0] != 0.0:
        raise ConfigError("The first category threshold must start at 0.0")
    if lowers[-1] > 1.0:
        raise ConfigError("Category thresholds must lie within [0, 1]")
    if len({t.label for t in thresholds}) != len(thresholds):
        raise ConfigError("Category labels must be unique")
    return thresholds


def config_from_mapping(raw: Mapping[str, Any]) -> PipelineConfig:
    """Build and validate a :class:`PipelineConfig` from a parsed mapping."""
    components = tuple(_build_component(c) for c in raw.get("components") or [])
    if not components:
        raise ConfigError("No components configured")
    names = [c.name for c in components]
    if len(set(names)) != len(names):
        raise ConfigError("Component names must be unique")

    prefixes = tuple((str(p), str(label)) for p, label in raw.get("category_prefixes") or [])

    weather_raw = dict(raw.get("weather") or {})
    try:
        weather = WeatherThresholds(**weather_raw)
    except TypeError as exc:
        raise ConfigError(f"Invalid weather thresholds: {exc}") from exc
    if weather.dry_spell_days < 1 or weather.min_trend_years < 2:
        raise ConfigError("dry_spell_days must be >= 1 and min_trend_years >= 2")

    quality_raw = dict(raw.get("quality") or {})
    try:
        quality = QualityThresholds(**quality_raw)
    except TypeError as exc:
        raise ConfigError(f"Invalid quality thresholds: {exc}") from exc

    max_workers = raw.get("max_workers")
    if max_workers is not None:
        try:
            max_workers = int(max_workers)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"max_workers must be an integer, got {max_workers!r}") from exc
        if max_workers < 1:
            raise ConfigError("max_workers must be a positive integer or null")

    return PipelineConfig(
        components=components,
        category_prefixes=prefixes,
        thresholds=_build_thresholds(raw.get("thresholds") or []),
        weather=weather,
        quality=quality,
        social_variables=tuple(str(v) for v in raw.get("social_variables") or []),
        convert_wide=bool(raw.get("convert_wide", True)),
        max_workers=max_workers,
    )


def load_config(
    path: Optional[Union[str, Path]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> PipelineConfig:
    """Load the pipeline configuration from YAML.

    Parameters
    ----------
    path : str or Path, optional
        YAML file to read.  Defaults to the packaged ``defaults.yaml``.
    overrides : mapping, optional
        Values merged (recursively for nested mappings) over the file
        contents before validation.

    Raises
    ------
    ConfigError
        If the file cannot be read or its contents are invalid.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read configuration {config_path}: {exc}") from exc
    if overrides:
        raw = _deep_merge(raw, overrides)
    logger.debug("Loaded configuration from %s", config_path)
    return config_from_mapping(raw)


def _optional(value: Any) -> Any:
    return None if pd.isna(value) else value


def registry_from_frame(df: pd.DataFrame) -> CityRegistry:
    """Build a :class:`CityRegistry` from a tabular city list.

    Accepts ``name`` or ``city_name`` and ``population`` or
    ``population_millions``.
    """
    if df.empty:
        raise RegistryError("City registry is empty")
    df = df.rename(columns={"city_name": "name"})
    missing = {"name", "country_iso", "lat", "lon"} - set(df.columns)
    if missing:
        raise RegistryError(f"City registry lacks columns: {sorted(missing)}")

    cities: List[City] = []
    for row in df.to_dict(orient="records"):
        population = _optional(row.get("population"))
        if population is None and _optional(row.get("population_millions")) is not None:
            population = float(row["population_millions"]) * 1_000_000
        cities.append(
            City(
                name=str(row["name"]),
                country_iso=str(row["country_iso"]),
                lat=float(row["lat"]),
                lon=float(row["lon"]),
                population=None if population is None else float(population),
                climate_zone=_optional(row.get("climate_zone")),
                region=_optional(row.get("region")),
                state_code=_optional(row.get("state_code")),
                county=_optional(row.get("county")),
            )
        )
    return CityRegistry(cities)


def load_registry(path: Optional[Union[str, Path]] = None) -> CityRegistry:
    """Read the static city registry from CSV."""
    registry_path = Path(path) if path is not None else DEFAULT_REGISTRY_PATH
    try:
        df = pd.read_csv(registry_path)
    except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise RegistryError(f"Cannot read city registry {registry_path}: {exc}") from exc
    registry = registry_from_frame(df)
    logger.info("Loaded %d cities from %s", len(registry), registry_path)
    return registry


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_REGISTRY_PATH",
    "IndicatorRef",
    "ComponentSpec",
    "CategoryThreshold",
    "WeatherThresholds",
    "QualityThresholds",
    "PipelineConfig",
    "PipelineContext",
    "config_from_mapping",
    "load_config",
    "registry_from_frame",
    "load_registry",
]
