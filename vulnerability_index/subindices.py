"""
vulnerability_index.subindices
------------------------------

The four sub-index aggregators: Temperature Risk, Precipitation Risk,
Economic Resilience and Social Resilience.

Each aggregator combines a fixed, named list of normalised components
into one score in [0, 1].  The combination rule is the arithmetic mean
of the components that are *present*: missing components are excluded
from both the sum and the count, so a sub-index with two of five
components is the mean of those two and is not dragged towards zero by
the other three.  When no component is present the sub-index itself is
missing (``value is None``) and the caller records an
:class:`~vulnerability_index.issues.InsufficientComponents` issue.

Example
-------
::

    from vulnerability_index.subindices import aggregate_components

    score = aggregate_components("TemperatureRisk", {"a": 0.2, "b": None, "c": 0.6})
    score.value             # 0.4
    score.components_used   # 2
    score.components_expected  # 3

See Also
--------
vulnerability_index.composer : for combining sub-indices into the final score.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .config import PipelineConfig
from .issues import InsufficientComponents
from .models import SUB_INDICES, SubIndexScore, is_missing


def mean_of_present(values: Sequence[Optional[float]]) -> Optional[float]:
    """Arithmetic mean of the non-missing values, ``None`` if there are none."""
    present = [float(v) for v in values if not is_missing(v)]
    if not present:
        return None
    return float(np.mean(present))


def aggregate_components(
    name: str,
    components: Mapping[str, Optional[float]],
) -> SubIndexScore:
    """Combine normalised components into one sub-index score."""
    cleaned = {k: (None if is_missing(v) else float(v)) for k, v in components.items()}
    used = sum(v is not None for v in cleaned.values())
    return SubIndexScore(
        name=name,
        value=mean_of_present(list(cleaned.values())),
        components_used=used,
        components_expected=len(cleaned),
        components=cleaned,
    )


@dataclass(frozen=True)
class SubIndexAggregator:
    """Aggregator bound to the component names it expects."""

    name: str
    inputs: Tuple[str, ...]

    def __call__(self, normalized: Mapping[str, Optional[float]]) -> SubIndexScore:
        return aggregate_components(self.name, {k: normalized.get(k) for k in self.inputs})


def build_aggregators(config: PipelineConfig) -> Tuple[SubIndexAggregator, ...]:
    """One aggregator per sub-index, with inputs taken from the config."""
    return tuple(
        SubIndexAggregator(name, tuple(c.name for c in config.components_for(name)))
        for name in SUB_INDICES
    )


def compute_sub_indices(
    normalized: Mapping[str, Optional[float]],
    aggregators: Sequence[SubIndexAggregator],
) -> Dict[str, SubIndexScore]:
    """Run every aggregator over one city's normalised components."""
    return {agg.name: agg(normalized) for agg in aggregators}


def insufficient(scores: Mapping[str, SubIndexScore]) -> List[InsufficientComponents]:
    """Issues for the sub-indices that had no component present."""
    return [InsufficientComponents(name) for name, s in scores.items() if not s.available]


__all__ = [
    "mean_of_present",
    "aggregate_components",
    "SubIndexAggregator",
    "build_aggregators",
    "compute_sub_indices",
    "insufficient",
]
