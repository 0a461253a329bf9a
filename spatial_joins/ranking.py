"""Top-N ranking of aggregate report rows."""

from typing import Any, Dict, List

import numpy as np
import pandas as pd

from spatial_joins.utils.logging import get_logger

logger = get_logger(__name__)


def rank_results(
    df: pd.DataFrame,
    limit: int,
    ratio_col: str = "ratio",
    denominator_col: str = "denominator_total",
) -> pd.DataFrame:
    """
    Rank aggregate rows by ratio and keep the top N.

    Rows whose denominator aggregate is zero or missing are dropped (not an
    error). The sort is stable, so rows with equal ratios keep their input
    order. Returning fewer than N rows is fine when fewer qualify.

    Args:
        df: Aggregate rows with ratio and denominator columns
        limit: Maximum number of rows to return
        ratio_col: Column to rank by (descending)
        denominator_col: Column guarding against divide-by-zero

    Returns:
        New DataFrame with a fresh 0..n-1 index
    """
    if limit < 0:
        raise ValueError(f"limit must be non-negative, got {limit}")
    if df.empty:
        return df.reset_index(drop=True)

    missing = [col for col in (ratio_col, denominator_col) if col not in df.columns]
    if missing:
        raise KeyError(f"Missing columns for ranking: {missing}")

    denominators = pd.to_numeric(df[denominator_col], errors="coerce").to_numpy(dtype=float)
    ratios = pd.to_numeric(df[ratio_col], errors="coerce").to_numpy(dtype=float)
    keep = (denominators != 0) & ~np.isnan(denominators) & ~np.isnan(ratios)

    dropped = int((~keep).sum())
    if dropped:
        logger.info(f"Excluded {dropped} rows with zero or missing denominator")

    qualifying = df.loc[keep].copy()
    qualifying[ratio_col] = ratios[keep]
    ranked = qualifying.sort_values(ratio_col, ascending=False, kind="mergesort")

    return ranked.head(limit).reset_index(drop=True)


def to_records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """DataFrame rows as plain dicts, NaN turned into None."""
    cleaned = df.astype(object).where(pd.notna(df), None)
    return cleaned.to_dict(orient="records")
