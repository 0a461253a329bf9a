"""
NYC Spatial Joins - Query Composer
Builds parameterized aggregation SQL for a join layout and strategy

Rules:
- Identifiers come only from the schema registry; values are bound parameters
- Ratio queries drop candidates with a zero denominator before summing
- Every query aggregates over an "assignments" CTE: one row per
  (container, candidate) match, or one row per candidate key under DistinctKey
- Composition is pure: nothing here touches the database
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy import text
from sqlalchemy.sql.elements import TextClause

from config.settings import get_settings
from spatial_joins.errors import InvalidColumn
from spatial_joins.schema import JoinLayout, get_layout, groupable_columns, summable_columns
from spatial_joins.strategies import JoinStrategy, StrategyPolicy, select_strategy
from spatial_joins.utils.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()


@dataclass(frozen=True)
class ComposedQuery:
    """SQL text plus the bound parameters it expects."""
    sql: str
    params: Dict[str, Any] = field(default_factory=dict)
    layout: str = ""
    strategy: Optional[JoinStrategy] = None
    group_by: Tuple[str, ...] = ()

    def statement(self) -> TextClause:
        return text(self.sql)


@dataclass(frozen=True)
class _GroupColumn:
    alias: str
    column: str
    output: str

    @property
    def qualified(self) -> str:
        return f"{self.alias}.{self.column}"


def _require_summable(layout: JoinLayout, column: str) -> str:
    allowed = summable_columns(layout.candidate)
    if column not in allowed:
        raise InvalidColumn(column, layout.candidate.name, allowed)
    return column


def _resolve_group_by(
    layout: JoinLayout, group_by: Optional[Sequence[str]]
) -> List[_GroupColumn]:
    """
    Map requested grouping columns onto table aliases.

    Plain names resolve against the container first, then the candidate.
    'container.col' / 'candidate.col' (or the table alias) pin the side.
    """
    if group_by is None:
        requested = layout.default_group_by
    elif isinstance(group_by, str):
        requested = (group_by,)
    else:
        requested = tuple(group_by)
    container_cols = groupable_columns(layout.container)
    candidate_cols = groupable_columns(layout.candidate)
    sides = {
        "container": (layout.container_alias, container_cols, layout.container.name),
        layout.container_alias: (layout.container_alias, container_cols, layout.container.name),
        "candidate": (layout.candidate_alias, candidate_cols, layout.candidate.name),
        layout.candidate_alias: (layout.candidate_alias, candidate_cols, layout.candidate.name),
    }

    resolved: List[_GroupColumn] = []
    seen_qualified = set()
    seen_outputs = set()

    for name in requested:
        if not isinstance(name, str) or not name.strip():
            raise InvalidColumn(str(name), layout.name, container_cols + candidate_cols)
        name = name.strip()

        if "." in name:
            side, column = name.split(".", 1)
            if side not in sides:
                raise InvalidColumn(name, layout.name, container_cols + candidate_cols)
            alias, allowed, table_name = sides[side]
            if column not in allowed:
                raise InvalidColumn(column, table_name, allowed)
        elif name in container_cols:
            alias, column = layout.container_alias, name
        elif name in candidate_cols:
            alias, column = layout.candidate_alias, name
        else:
            raise InvalidColumn(
                name,
                f"{layout.container.name}/{layout.candidate.name}",
                set(container_cols) | set(candidate_cols),
            )

        qualified = f"{alias}.{column}"
        if qualified in seen_qualified:
            continue
        seen_qualified.add(qualified)

        output = column if column not in seen_outputs else f"{alias}_{column}"
        seen_outputs.add(output)
        resolved.append(_GroupColumn(alias=alias, column=column, output=output))

    return resolved


def _validate_limit(limit: int) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise ValueError(f"limit must be an integer, got {limit!r}")
    if limit < 1 or limit > settings.MAX_REPORT_LIMIT:
        raise ValueError(f"limit must be between 1 and {settings.MAX_REPORT_LIMIT}, got {limit}")
    return limit


def _resolve_radius(layout: JoinLayout, radius: Optional[float]) -> Optional[float]:
    if not layout.is_proximity:
        if radius is not None:
            raise ValueError(f"radius only applies to proximity layouts, not {layout.name!r}")
        return None

    if radius is None:
        return float(settings.DEFAULT_PROXIMITY_RADIUS)
    if isinstance(radius, bool) or not isinstance(radius, (int, float)) or radius <= 0:
        raise ValueError(f"radius must be a positive number of meters, got {radius!r}")
    return float(radius)


def _indent(sql: str, prefix: str = "    ") -> str:
    return "\n".join(prefix + line for line in sql.splitlines())


def _assignment_rows(
    layout: JoinLayout,
    policy: StrategyPolicy,
    select_list: Sequence[str],
    where: Optional[str] = None,
    tiebreak: Sequence[str] = (),
) -> str:
    """SELECT producing one row per container/candidate assignment."""
    container = layout.container_alias
    candidate = layout.candidate_alias
    predicate = policy.predicate(layout.is_proximity).format(
        container=container, candidate=candidate
    )

    distinct = ""
    if policy.requires_distinct:
        key = f"{candidate}.{layout.candidate_key}"
        distinct = f"DISTINCT ON ({key}) "

    lines = [
        f"SELECT {distinct}" + ", ".join(select_list),
        f"FROM {layout.container.name} AS {container}",
        f"JOIN {layout.candidate.name} AS {candidate} ON {predicate}",
    ]
    if where:
        lines.append(f"WHERE {where}")
    if policy.requires_distinct:
        # DISTINCT ON keeps the first row per key, so the order fixes the representative
        order_cols = [key, *tiebreak, f"{container}.{layout.container_key}"]
        lines.append("ORDER BY " + ", ".join(order_cols))
    return "\n".join(lines)


def _with_assignments(inner: str, outer_lines: Sequence[str]) -> str:
    return "WITH assignments AS (\n" + _indent(inner) + "\n)\n" + "\n".join(outer_lines)


def _base_params(radius: Optional[float]) -> Dict[str, Any]:
    return {"radius": radius} if radius is not None else {}


def compose_ratio_query(
    layout: Union[str, JoinLayout],
    numerator: str,
    denominator: str,
    group_by: Optional[Sequence[str]] = None,
    strategy: Union[str, JoinStrategy] = JoinStrategy.CENTROID,
    limit: Optional[int] = None,
    radius: Optional[float] = None,
) -> ComposedQuery:
    """
    Compose a top-N percentage ratio query.

    ratio = 100.0 * SUM(numerator) / SUM(denominator) per group, over
    candidates whose denominator is non-zero.

    Args:
        layout: Join layout name (see schema.LAYOUTS)
        numerator: Candidate counter column summed above the line
        denominator: Candidate counter column summed below the line
        group_by: Grouping columns (default: the layout's default grouping)
        strategy: Double-counting strategy identifier
        limit: Maximum rows (default: settings.DEFAULT_REPORT_LIMIT)
        radius: Distance in meters for proximity layouts

    Returns:
        ComposedQuery with :limit (and :radius) bound

    Raises:
        InvalidColumn: Column outside the schema allow-list
        InvalidStrategy: Unknown strategy, or centroid on a proximity layout
        ValueError: Unknown layout, bad limit or radius
    """
    layout = get_layout(layout)
    policy = select_strategy(strategy)
    # Fails early when the strategy has no form for this join kind
    policy.predicate(layout.is_proximity)
    numerator = _require_summable(layout, numerator)
    denominator = _require_summable(layout, denominator)
    groups = _resolve_group_by(layout, group_by)
    limit = _validate_limit(settings.DEFAULT_REPORT_LIMIT if limit is None else limit)
    radius = _resolve_radius(layout, radius)

    candidate = layout.candidate_alias
    select_list = [f"{g.qualified} AS {g.output}" for g in groups] + [
        f"{candidate}.{numerator} AS numerator_value",
        f"{candidate}.{denominator} AS denominator_value",
    ]
    inner = _assignment_rows(
        layout,
        policy,
        select_list,
        where=f"{candidate}.{denominator} > 0",
        tiebreak=[g.qualified for g in groups],
    )

    outputs = [g.output for g in groups]
    outer = [
        "SELECT " + ", ".join(
            outputs
            + [
                "SUM(numerator_value) AS numerator_total",
                "SUM(denominator_value) AS denominator_total",
                "100.0 * SUM(numerator_value) / SUM(denominator_value) AS ratio",
            ]
        ),
        "FROM assignments",
    ]
    if outputs:
        outer.append("GROUP BY " + ", ".join(outputs))
    outer.append("ORDER BY " + ", ".join(["ratio DESC", *outputs]))
    outer.append("LIMIT :limit")

    params = _base_params(radius)
    params["limit"] = limit

    logger.debug(
        f"Composed ratio query: layout={layout.name}, strategy={policy.strategy.value}, "
        f"{numerator}/{denominator} by {outputs or 'total'}"
    )
    return ComposedQuery(
        sql=_with_assignments(inner, outer),
        params=params,
        layout=layout.name,
        strategy=policy.strategy,
        group_by=tuple(outputs),
    )


def compose_sum_query(
    layout: Union[str, JoinLayout],
    column: str,
    strategy: Union[str, JoinStrategy] = JoinStrategy.DISTINCT_KEY,
    group_by: Sequence[str] = (),
    radius: Optional[float] = None,
) -> ComposedQuery:
    """
    Compose a SUM of a candidate counter over the spatial join.

    With Raw on a proximity layout this is the naive total, where a block
    near several stations counts once per station.
    """
    layout = get_layout(layout)
    policy = select_strategy(strategy)
    policy.predicate(layout.is_proximity)
    column = _require_summable(layout, column)
    groups = _resolve_group_by(layout, group_by)
    radius = _resolve_radius(layout, radius)

    select_list = [f"{g.qualified} AS {g.output}" for g in groups] + [
        f"{layout.candidate_alias}.{column} AS value"
    ]
    inner = _assignment_rows(layout, policy, select_list, tiebreak=[g.qualified for g in groups])

    outputs = [g.output for g in groups]
    outer = [
        "SELECT " + ", ".join(outputs + ["SUM(value) AS total", "COUNT(*) AS candidate_count"]),
        "FROM assignments",
    ]
    if outputs:
        outer.append("GROUP BY " + ", ".join(outputs))
        outer.append("ORDER BY " + ", ".join(["total DESC", *outputs]))

    logger.debug(
        f"Composed sum query: layout={layout.name}, strategy={policy.strategy.value}, column={column}"
    )
    return ComposedQuery(
        sql=_with_assignments(inner, outer),
        params=_base_params(radius),
        layout=layout.name,
        strategy=policy.strategy,
        group_by=tuple(outputs),
    )


def compose_base_sum_query(layout: Union[str, JoinLayout], column: str) -> ComposedQuery:
    """SUM of a candidate counter over the whole candidate table, no join."""
    layout = get_layout(layout)
    column = _require_summable(layout, column)
    sql = (
        f"SELECT SUM({column}) AS total, COUNT(*) AS candidate_count\n"
        f"FROM {layout.candidate.name}"
    )
    return ComposedQuery(sql=sql, layout=layout.name)


def compose_assignment_audit_query(
    layout: Union[str, JoinLayout],
    strategy: Union[str, JoinStrategy] = JoinStrategy.RAW,
    radius: Optional[float] = None,
) -> ComposedQuery:
    """
    Compose a query listing candidates assigned to more than one container.

    An empty result means the strategy did not double count anything.
    """
    layout = get_layout(layout)
    policy = select_strategy(strategy)
    policy.predicate(layout.is_proximity)
    radius = _resolve_radius(layout, radius)

    select_list = [
        f"{layout.candidate_alias}.{layout.candidate_key} AS candidate_key",
        f"{layout.container_alias}.{layout.container_key} AS container_key",
    ]
    inner = _assignment_rows(layout, policy, select_list)
    outer = [
        "SELECT candidate_key, COUNT(*) AS assignments",
        "FROM assignments",
        "GROUP BY candidate_key",
        "HAVING COUNT(*) > 1",
        "ORDER BY assignments DESC, candidate_key",
    ]
    return ComposedQuery(
        sql=_with_assignments(inner, outer),
        params=_base_params(radius),
        layout=layout.name,
        strategy=policy.strategy,
    )
