"""
NYC Spatial Joins - Report Runner

Executes composed queries through a caller-supplied session and shapes the
results. One synchronous call per report; nothing is cached or retried here,
and the session's lifetime belongs to the caller (see config.database.get_db).
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Sequence, Union

import pandas as pd
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from spatial_joins.composer import (
    ComposedQuery,
    compose_assignment_audit_query,
    compose_base_sum_query,
    compose_ratio_query,
    compose_sum_query,
)
from spatial_joins.errors import QueryExecutionError
from spatial_joins.ranking import rank_results
from spatial_joins.schema import get_layout
from spatial_joins.strategies import JoinStrategy
from spatial_joins.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ProximityComparison:
    """Candidate totals near containers, with and without de-duplication."""
    layout: str
    column: str
    radius: float
    base_total: float
    naive_total: float
    deduplicated_total: float

    @property
    def double_counted(self) -> float:
        return self.naive_total - self.deduplicated_total

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["double_counted"] = self.double_counted
        return data


def execute_query(db: Session, query: ComposedQuery) -> pd.DataFrame:
    """
    Execute a composed query and return its rows as a DataFrame.

    Raises:
        QueryExecutionError: If the database rejects or fails the query
    """
    logger.info(
        f"Executing {query.layout or 'ad hoc'} query "
        f"(strategy={query.strategy.value if query.strategy else 'none'})"
    )
    try:
        result = db.execute(query.statement(), query.params)
        rows = result.fetchall()
        columns = list(result.keys())
    except SQLAlchemyError as e:
        logger.error(f"Query execution failed: {e}")
        raise QueryExecutionError(f"Query execution failed: {e}", original=e) from e

    logger.info(f"Query returned {len(rows)} rows")
    return pd.DataFrame([tuple(row) for row in rows], columns=columns)


def _scalar_total(df: pd.DataFrame) -> float:
    if df.empty or "total" not in df.columns:
        return 0.0
    value = df["total"].iloc[0]
    return 0.0 if pd.isna(value) else float(value)


def run_ratio_report(
    db: Session,
    layout: str,
    numerator: str,
    denominator: str,
    group_by: Optional[Sequence[str]] = None,
    strategy: Union[str, JoinStrategy] = JoinStrategy.CENTROID,
    limit: Optional[int] = None,
    radius: Optional[float] = None,
) -> pd.DataFrame:
    """
    Compose, execute and rank a percentage ratio report.

    Validation happens before anything is sent to the database; any error
    aborts the report with no partial rows.

    Returns:
        DataFrame of group keys, numerator_total, denominator_total, ratio
        sorted by ratio descending, at most `limit` rows
    """
    query = compose_ratio_query(
        layout,
        numerator=numerator,
        denominator=denominator,
        group_by=group_by,
        strategy=strategy,
        limit=limit,
        radius=radius,
    )
    rows = execute_query(db, query)
    ranked = rank_results(rows, limit=query.params["limit"])

    logger.info(
        f"Ratio report {layout} ({numerator}/{denominator}, {query.strategy.value}): "
        f"{len(ranked)} rows"
    )
    return ranked


def run_sum_report(
    db: Session,
    layout: str,
    column: str,
    strategy: Union[str, JoinStrategy] = JoinStrategy.DISTINCT_KEY,
    group_by: Sequence[str] = (),
    radius: Optional[float] = None,
) -> pd.DataFrame:
    """Sum a candidate counter over the join, optionally grouped."""
    query = compose_sum_query(layout, column, strategy=strategy, group_by=group_by, radius=radius)
    return execute_query(db, query)


def run_proximity_comparison(
    db: Session,
    column: str = "popn_total",
    radius: Optional[float] = None,
    layout: str = "station_blocks",
) -> ProximityComparison:
    """
    Compare a candidate total with no join, a naive distance join, and a
    DistinctKey distance join.

    For population within 500 m of a subway station this is the difference
    between counting every block once per nearby station and once overall.
    """
    join_layout = get_layout(layout)
    if not join_layout.is_proximity:
        raise ValueError(f"Layout {layout!r} is not a proximity layout")

    # All three queries are composed (and validated) before any is sent
    base_q = compose_base_sum_query(join_layout, column)
    naive_q = compose_sum_query(join_layout, column, strategy=JoinStrategy.RAW, radius=radius)
    dedup_q = compose_sum_query(
        join_layout, column, strategy=JoinStrategy.DISTINCT_KEY, radius=radius
    )
    radius = naive_q.params["radius"]

    base = execute_query(db, base_q)
    naive = execute_query(db, naive_q)
    deduplicated = execute_query(db, dedup_q)

    comparison = ProximityComparison(
        layout=join_layout.name,
        column=column,
        radius=radius,
        base_total=_scalar_total(base),
        naive_total=_scalar_total(naive),
        deduplicated_total=_scalar_total(deduplicated),
    )

    if comparison.deduplicated_total > comparison.base_total:
        logger.warning(
            f"Deduplicated {column} ({comparison.deduplicated_total:,.0f}) exceeds the "
            f"unjoined total ({comparison.base_total:,.0f})"
        )
    if comparison.deduplicated_total > comparison.naive_total:
        logger.warning(
            f"Deduplicated {column} ({comparison.deduplicated_total:,.0f}) exceeds the "
            f"naive joined total ({comparison.naive_total:,.0f})"
        )

    logger.info(
        f"{column} within {radius:g}m: base={comparison.base_total:,.0f}, "
        f"naive={comparison.naive_total:,.0f}, "
        f"deduplicated={comparison.deduplicated_total:,.0f}"
    )
    return comparison


def audit_assignments(
    db: Session,
    layout: str,
    strategy: Union[str, JoinStrategy] = JoinStrategy.RAW,
    radius: Optional[float] = None,
) -> pd.DataFrame:
    """
    List candidates that a strategy assigns to more than one container.

    Returns:
        DataFrame of candidate_key, assignments (empty when nothing is
        double counted)
    """
    query = compose_assignment_audit_query(layout, strategy=strategy, radius=radius)
    df = execute_query(db, query)
    if not df.empty:
        logger.warning(
            f"{len(df)} candidates in {layout} are assigned more than once "
            f"under {query.strategy.value}"
        )
    return df
