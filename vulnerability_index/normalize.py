"""
vulnerability_index.normalize
-----------------------------

Cross-sectional min-max normalisation of indicator values.

Each indicator is scaled relative to the minimum and maximum observed
across the cities supplied in the same call, not against a fixed
universal scale.  The functions are free of side effects: a new batch
of cities simply produces a new set of normalised values.

The rules are:

* ``(value - min) / (max - min)`` for every present value, whatever the
  polarity.  Polarity is recorded on the result so that aggregators know
  how to read it, but it does not flip the scale.
* When ``max == min`` (a single city, or a constant indicator) every
  present value maps to ``0.5``.
* Missing values (``None`` or NaN) stay missing.  They are never
  replaced by zero or by the mean.

Indicators for which a higher raw value means *less* adaptive capacity
(e.g. a poverty rate feeding the social resilience sub-index) are
pre-inverted with :func:`pre_invert` before normalisation.  Whether an
indicator is inverted is a fixed property of its entry in the
configuration (:attr:`vulnerability_index.config.ComponentSpec.invert`).

Example usage::

    from vulnerability_index.models import Polarity
    from vulnerability_index.normalize import normalize

    normalize({"A": 10.0, "B": 30.0, "C": None}, Polarity.RISK)
    # {'A': 0.0, 'B': 1.0, 'C': None}
"""

from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional

import numpy as np
import pandas as pd

from .models import NormalizedIndicator, Polarity, is_missing

logger = logging.getLogger(__name__)

NEUTRAL = 0.5


def pre_invert(value: Optional[float]) -> Optional[float]:
    """Return ``1 - value`` for a present value, ``None`` otherwise."""
    if is_missing(value):
        return None
    return 1.0 - float(value)


def _as_series(raw_values: Mapping[str, Optional[float]]) -> pd.Series:
    return pd.Series(
        {k: (np.nan if is_missing(v) else float(v)) for k, v in raw_values.items()},
        dtype=float,
    )


def normalize_indicator(
    indicator_id: str,
    raw_values: Mapping[str, Optional[float]],
    polarity: Polarity,
) -> NormalizedIndicator:
    """Normalise one indicator across a batch of cities.

    Parameters
    ----------
    indicator_id : str
        Identifier recorded on the result.
    raw_values : mapping
        City name -> raw value (``None`` or NaN when missing).
    polarity : Polarity
        Whether higher values mean more risk or more capacity.

    Returns
    -------
    NormalizedIndicator
        Values in [0, 1] (or ``None``) for every city of the input, plus
        the minimum, maximum and a ``degenerate`` flag set when the
        present values had zero spread.
    """
    series = _as_series(raw_values)
    present = series.dropna()
    if present.empty:
        values: Dict[str, Optional[float]] = {city: None for city in raw_values}
        return NormalizedIndicator(indicator_id, polarity, values, None, None, False)

    lo = float(present.min())
    hi = float(present.max())
    degenerate = hi == lo
    if degenerate:
        scaled = series.where(series.isna(), NEUTRAL)
        logger.debug("Indicator %s has a degenerate distribution (%.6g); using %.1f", indicator_id, lo, NEUTRAL)
    else:
        scaled = (series - lo) / (hi - lo)

    values = {city: (None if np.isnan(v) else float(v)) for city, v in scaled.items()}
    return NormalizedIndicator(indicator_id, polarity, values, lo, hi, degenerate)


def normalize(
    raw_values: Mapping[str, Optional[float]],
    polarity: Polarity,
) -> Dict[str, Optional[float]]:
    """Map raw values onto [0, 1] relative to the batch's min and max."""
    return dict(normalize_indicator("", raw_values, polarity).values)


__all__ = ["NEUTRAL", "pre_invert", "normalize_indicator", "normalize"]
