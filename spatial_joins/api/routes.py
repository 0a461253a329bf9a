"""
NYC Spatial Joins - API Routes
Read-only report endpoints over the spatial join runner. Report errors
propagate to the handlers registered in spatial_joins.api.main.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from config.database import get_db_session
from config.settings import get_settings
from spatial_joins.ranking import to_records
from spatial_joins.runner import audit_assignments, run_proximity_comparison, run_ratio_report
from spatial_joins.schema import LAYOUTS, groupable_columns, summable_columns
from spatial_joins.strategies import STRATEGY_POLICIES, JoinStrategy

router = APIRouter()
settings = get_settings()


# Response models
class RatioReport(BaseModel):
    """Top-N ratio rows for one layout/strategy"""

    layout: str
    strategy: str
    numerator: str
    denominator: str
    limit: int
    rows: List[Dict[str, Any]]


class ProximityReport(BaseModel):
    """Naive vs de-duplicated totals near containers"""

    layout: str
    column: str
    radius: float
    base_total: float
    naive_total: float
    deduplicated_total: float
    double_counted: float


class AuditReport(BaseModel):
    """Candidates assigned to more than one container"""

    layout: str
    strategy: str
    double_counted_candidates: int
    rows: List[Dict[str, Any]]


class LayoutInfo(BaseModel):
    name: str
    kind: str
    description: str
    container: str
    candidate: str
    default_group_by: List[str]
    summable_columns: List[str]
    groupable_columns: List[str]


class StrategyInfo(BaseModel):
    name: str
    description: str
    supports_proximity: bool
    deduplicates: bool


class LayoutsResponse(BaseModel):
    layouts: List[LayoutInfo]
    strategies: List[StrategyInfo]


@router.get("/reports/ratio", response_model=RatioReport)
def get_ratio_report(
    layout: str = Query("neighborhood_tracts"),
    numerator: str = Query("edu_graduate_dipl"),
    denominator: str = Query("edu_total"),
    group_by: Optional[List[str]] = Query(None),
    strategy: str = Query(JoinStrategy.CENTROID.value),
    limit: Optional[int] = Query(None),
    radius: Optional[float] = Query(None),
    db: Session = Depends(get_db_session),
):
    """
    Top-N percentage ratio of two summed counters per group.

    Example: graduate degree share by neighborhood, centroid assignment.
    """
    limit = settings.DEFAULT_REPORT_LIMIT if limit is None else limit
    df = run_ratio_report(
        db,
        layout=layout,
        numerator=numerator,
        denominator=denominator,
        group_by=group_by,
        strategy=strategy,
        limit=limit,
        radius=radius,
    )

    return RatioReport(
        layout=layout,
        strategy=strategy,
        numerator=numerator,
        denominator=denominator,
        limit=limit,
        rows=to_records(df),
    )


@router.get("/reports/proximity", response_model=ProximityReport)
def get_proximity_report(
    layout: str = Query("station_blocks"),
    column: str = Query("popn_total"),
    radius: Optional[float] = Query(None),
    db: Session = Depends(get_db_session),
):
    """Total within a radius, counted naively and once per candidate."""
    comparison = run_proximity_comparison(db, column=column, radius=radius, layout=layout)

    return ProximityReport(**comparison.to_dict())


@router.get("/reports/audit", response_model=AuditReport)
def get_audit_report(
    layout: str = Query("neighborhood_tracts"),
    strategy: str = Query(JoinStrategy.RAW.value),
    radius: Optional[float] = Query(None),
    db: Session = Depends(get_db_session),
):
    """Candidates a strategy assigns to more than one container."""
    df = audit_assignments(db, layout=layout, strategy=strategy, radius=radius)

    return AuditReport(
        layout=layout,
        strategy=strategy,
        double_counted_candidates=len(df),
        rows=to_records(df),
    )


@router.get("/metadata/layouts", response_model=LayoutsResponse)
def get_layouts():
    """Supported join layouts, their column allow-lists, and strategies."""
    layouts = [
        LayoutInfo(
            name=layout.name,
            kind=layout.kind.value,
            description=layout.description,
            container=layout.container.name,
            candidate=layout.candidate.name,
            default_group_by=list(layout.default_group_by),
            summable_columns=summable_columns(layout.candidate),
            groupable_columns=list(
                dict.fromkeys(
                    groupable_columns(layout.container) + groupable_columns(layout.candidate)
                )
            ),
        )
        for layout in LAYOUTS.values()
    ]
    strategies = [
        StrategyInfo(
            name=policy.strategy.value,
            description=policy.description,
            supports_proximity=policy.proximity_predicate is not None,
            deduplicates=policy.requires_distinct,
        )
        for policy in STRATEGY_POLICIES.values()
    ]
    return LayoutsResponse(layouts=layouts, strategies=strategies)
