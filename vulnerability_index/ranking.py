"""
vulnerability_index.ranking
---------------------------

Batch-level outputs built from the per-city records of one run:

* :func:`results_frame` – one row per scored city.
* :func:`rank_cities` – the ranking table, sorted by vulnerability
  score (highest first, ties by city name), validated against
  :data:`ingestion.quality.contracts.RankingSchema`.
* :func:`correlation_summary` and :func:`factor_drivers` – pairwise
  correlation between climate risk, adaptive capacity, the four
  sub-indices and the score, used to check which factors drive the
  index.
* :func:`score_statistics` – mean, median, spread and range of the
  factors and the score.
* :func:`exclusions_frame` – every attempted city that was not scored,
  with its reason.
* :func:`diff_results` – per-city change between two runs.

Records are never updated in place; comparing runs is done by diffing
two result sets.
"""

from __future__ import annotations

import logging
from typing import Sequence

import pandas as pd

from ingestion.quality.contracts import RankingSchema
from utils.data_quality import compute_summary_statistics, correlation_matrix

from .models import SUB_INDICES, Exclusion, VulnerabilityRecord, column_name

logger = logging.getLogger(__name__)

FACTOR_COLUMNS = ["climate_risk", "adaptive_capacity"] + [column_name(n) for n in SUB_INDICES]
SCORE_COLUMN = "vulnerability_score"
RANKING_COLUMNS = [
    "rank",
    "city",
    "country_iso",
    "climate_zone",
    SCORE_COLUMN,
    "category",
    "climate_risk",
    "adaptive_capacity",
    "reduced_confidence",
]
EXCLUSION_COLUMNS = ["city", "reason", "kind", "detail"]


def results_frame(records: Sequence[VulnerabilityRecord]) -> pd.DataFrame:
    """Flatten records into a frame, one row per city."""
    rows = [r.to_dict() for r in records]
    if not rows:
        return pd.DataFrame(columns=["city", SCORE_COLUMN, "category"] + FACTOR_COLUMNS)
    return pd.DataFrame(rows)


def rank_cities(records: Sequence[VulnerabilityRecord]) -> pd.DataFrame:
    """Ranking table, most vulnerable city first.

    Ties on the score are broken by city name so that the order is
    deterministic.  Rank 1 is the most vulnerable city.
    """
    if not records:
        return pd.DataFrame(columns=RANKING_COLUMNS)
    df = results_frame(records)
    df = df.sort_values([SCORE_COLUMN, "city"], ascending=[False, True], kind="mergesort")
    df = df.reset_index(drop=True)
    df.insert(0, "rank", range(1, len(df) + 1))
    ranked = RankingSchema.validate(df)
    extra = [c for c in ranked.columns if c not in RANKING_COLUMNS]
    return ranked[RANKING_COLUMNS + extra]


def correlation_summary(
    records: Sequence[VulnerabilityRecord], *, method: str = "pearson"
) -> pd.DataFrame:
    """Pairwise correlation of the factors and the score across the batch.

    Missing sub-indices are left out pairwise.  With fewer than two
    scored cities the matrix is all NaN.
    """
    columns = FACTOR_COLUMNS + [SCORE_COLUMN]
    df = results_frame(records)
    numeric = df.reindex(columns=columns).apply(pd.to_numeric, errors="coerce")
    corr = correlation_matrix(numeric, method=method)
    return corr.reindex(index=columns, columns=columns)


def score_statistics(records: Sequence[VulnerabilityRecord]) -> pd.DataFrame:
    columns = FACTOR_COLUMNS + [SCORE_COLUMN]
    numeric = results_frame(records).reindex(columns=columns).apply(pd.to_numeric, errors="coerce")
    return compute_summary_statistics(numeric)


def factor_drivers(corr: pd.DataFrame) -> pd.Series:
    """Factors ordered by the absolute value of their correlation with the score."""
    if corr.empty or SCORE_COLUMN not in corr.columns:
        return pd.Series(dtype=float, name=SCORE_COLUMN)
    drivers = corr[SCORE_COLUMN].drop(labels=[SCORE_COLUMN], errors="ignore").dropna()
    order = drivers.abs().sort_values(ascending=False).index
    return drivers.reindex(order)


def exclusions_frame(exclusions: Sequence[Exclusion]) -> pd.DataFrame:
    if not exclusions:
        return pd.DataFrame(columns=EXCLUSION_COLUMNS)
    return pd.DataFrame([e.to_dict() for e in exclusions], columns=EXCLUSION_COLUMNS)


def diff_results(previous: pd.DataFrame, current: pd.DataFrame) -> pd.DataFrame:
    """Compare two result sets city by city.

    Parameters
    ----------
    previous, current : pandas.DataFrame
        Frames with at least ``city``, ``vulnerability_score`` and
        ``category`` columns, e.g. from :func:`results_frame` or a
        ranking written by an earlier run.

    Returns
    -------
    pandas.DataFrame
        One row per city present in either run with the previous and
        current score and category, ``score_change`` (current minus
        previous, NaN when the city is absent from one run),
        ``category_changed`` and ``status`` (``added``, ``removed`` or
        ``kept``).  Sorted by absolute score change, largest first.
    """
    cols = ["city", SCORE_COLUMN, "category"]
    merged = pd.merge(
        previous[cols],
        current[cols],
        on="city",
        how="outer",
        suffixes=("_previous", "_current"),
        indicator=True,
    )
    merged["score_change"] = merged[f"{SCORE_COLUMN}_current"] - merged[f"{SCORE_COLUMN}_previous"]
    merged["category_changed"] = (merged["_merge"] == "both") & (
        merged["category_previous"] != merged["category_current"]
    )
    merged["status"] = merged["_merge"].map({"both": "kept", "left_only": "removed", "right_only": "added"}).astype(str)
    merged = merged.drop(columns="_merge")
    merged["_abs"] = merged["score_change"].abs()
    merged = merged.sort_values(["_abs", "city"], ascending=[False, True], na_position="last", kind="mergesort")
    changed = int(merged["category_changed"].sum())
    if changed:
        logger.info("%d cities changed category between runs", changed)
    return merged.drop(columns="_abs").reset_index(drop=True)


__all__ = [
    "FACTOR_COLUMNS",
    "RANKING_COLUMNS",
    "results_frame",
    "rank_cities",
    "correlation_summary",
    "factor_drivers",
    "score_statistics",
    "exclusions_frame",
    "diff_results",
]
