"""Utility functions for assessing the quality of the per-city tables
that feed the vulnerability index.

The functions defined here are small, side-effect free helpers used by
the data-quality gate (:mod:`ingestion.quality.gate`) and by the
ranking outputs (:mod:`vulnerability_index.ranking`).  They return
standard pandas objects so that intermediate outputs can be inspected
or written out as they are.

Typical usage
-------------

>>> from utils.data_quality import calculate_missingness, completeness_percent
>>> calculate_missingness(weather_df)["precipitation_mm"]
0.02
>>> completeness_percent(possible=730, missing=12)
98.4
"""

from __future__ import annotations

from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd


def calculate_missingness(df: pd.DataFrame) -> pd.Series:
    """Compute the proportion of missing values for each column.

    Parameters
    ----------
    df : pd.DataFrame
        The DataFrame whose missing value rates are to be
        calculated.

    Returns
    -------
    pd.Series
        A series indexed by column name containing the fraction of
        missing values in each column.  A value of ``0.0`` means
        no missing entries were found, whereas ``1.0`` indicates
        an entirely missing column.

    Examples
    --------

    >>> import pandas as pd
    >>> df = pd.DataFrame({"a": [1, None, 3], "b": [4, 5, 6]})
    >>> calculate_missingness(df)
    a    0.333333
    b    0.000000
    dtype: float64
    """
    return df.isna().mean()


def count_points(df: pd.DataFrame, columns: Sequence[str]) -> Tuple[int, int]:
    """Return ``(possible, missing)`` data points over ``columns``.

    Every row contributes one possible point per tracked column; a
    tracked column absent from ``df`` counts as entirely missing.
    """
    possible = len(df) * len(columns)
    missing = 0
    for col in columns:
        if col in df.columns:
            missing += int(df[col].isna().sum())
        else:
            missing += len(df)
    return possible, missing


def completeness_percent(possible: int, missing: int, *, digits: int = 1) -> Optional[float]:
    """``(possible - missing) / possible * 100``, or ``None`` without data.

    >>> completeness_percent(4, 1)
    75.0
    """
    if possible <= 0:
        return None
    return round((possible - missing) / possible * 100.0, digits)


def compute_summary_statistics(df: pd.DataFrame) -> pd.DataFrame:
    """Return mean, median, standard deviation, minimum and maximum for
    each numeric column, in long format.

    Returns
    -------
    pd.DataFrame
        Indexed by ``(column, statistic)`` with a single ``value``
        column.  Entirely missing columns are skipped.

    Examples
    --------

    >>> import pandas as pd
    >>> df = pd.DataFrame({"x": [1, 2, 3]})
    >>> compute_summary_statistics(df).loc[("x", "mean"), "value"]
    2.0
    """
    numeric = df.select_dtypes(include=[np.number])
    stats: Dict[Tuple[str, str], float] = {}
    for col in numeric.columns:
        series = numeric[col].dropna()
        if series.empty:
            continue
        stats[(col, "mean")] = float(series.mean())
        stats[(col, "median")] = float(series.median())
        stats[(col, "std")] = float(series.std(ddof=0))
        stats[(col, "min")] = float(series.min())
        stats[(col, "max")] = float(series.max())
    out = pd.DataFrame.from_dict(stats, orient="index", columns=["value"])
    if not out.empty:
        out.index = pd.MultiIndex.from_tuples(out.index, names=["column", "statistic"])
    return out


def correlation_matrix(df: pd.DataFrame, *, method: str = "pearson") -> pd.DataFrame:
    """Compute the correlation matrix of numeric columns.

    Parameters
    ----------
    df : pd.DataFrame
        Input data.  Non-numeric columns are ignored.
    method : {'pearson', 'spearman', 'kendall'}, optional
        See :meth:`pandas.DataFrame.corr`.

    Returns
    -------
    pd.DataFrame
        Square correlation matrix of all numeric columns.  Pairs with
        fewer than two joint observations, or a constant column, are
        NaN.
    """
    numeric = df.select_dtypes(include=[np.number])
    if numeric.empty:
        return pd.DataFrame()
    return numeric.corr(method=method)


__all__ = [
    "calculate_missingness",
    "count_points",
    "completeness_percent",
    "compute_summary_statistics",
    "correlation_matrix",
]
