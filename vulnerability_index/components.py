"""
vulnerability_index.components
------------------------------

Resolution of the named sub-index components from a city's current
indicator values.

Each component (see ``defaults.yaml``) lists candidate indicator ids in
priority order together with a resolution method:

``latest``
    value of the first candidate present, divided by its scale.
``mean``
    mean of every candidate present, each divided by its scale and
    clipped to [0, 1] (e.g. gender-parity ratios capped at parity).
``diversity``
    Gini-Simpson diversity ``1 - sum(p_i ** 2)`` of the candidates'
    shares, used for the sectoral economic-diversity proxy.  Needs at
    least two candidates present.

Components flagged ``invert`` are clipped to [0, 1] and pre-inverted so
that a higher value always means more adaptive capacity.  The values
returned here are still raw (city-level); cross-city normalisation
happens in :mod:`vulnerability_index.normalize`.
"""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .config import ComponentSpec, IndicatorRef
from .models import is_missing
from .normalize import pre_invert


def _clip(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def _present(spec: ComponentSpec, values: Mapping[str, Optional[float]]) -> List[Tuple[IndicatorRef, float]]:
    out = []
    for ref in spec.candidates:
        value = values.get(ref.code)
        if not is_missing(value):
            out.append((ref, float(value) / ref.scale))
    return out


def resolve_component(spec: ComponentSpec, values: Mapping[str, Optional[float]]) -> Optional[float]:
    """Raw value of one component for one city, or ``None``."""
    present = _present(spec, values)
    if not present:
        return None

    if spec.method == "latest":
        raw: Optional[float] = present[0][1]
    elif spec.method == "mean":
        clipped = [_clip(v) for _, v in present]
        raw = sum(clipped) / len(clipped)
    elif spec.method == "diversity":
        shares = [max(v, 0.0) for _, v in present]
        total = sum(shares)
        if len(shares) < 2 or total <= 0:
            return None
        raw = 1.0 - sum((s / total) ** 2 for s in shares)
    else:
        raise ValueError(f"Unknown component method: {spec.method}")

    if spec.invert:
        raw = pre_invert(_clip(raw))
    return raw


def resolve_components(
    values: Mapping[str, Optional[float]],
    components: Sequence[ComponentSpec],
) -> Dict[str, Optional[float]]:
    """Resolve every configured component for one city."""
    return {spec.name: resolve_component(spec, values) for spec in components}


__all__ = ["resolve_component", "resolve_components"]
