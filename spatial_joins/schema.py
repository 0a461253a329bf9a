"""
NYC Spatial Joins - Schema Registry
Single source of truth for every table and column a report may touch

This registry defines:
- The NYC tables as SQLAlchemy Tables with PostGIS geometry columns
- Which columns are counters (safe to SUM) and which may be grouped on
- The supported container/candidate table pairings (join layouts)

NO identifier reaches composed SQL without being registered here.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from geoalchemy2 import Geometry
from sqlalchemy import Column, Float, Integer, MetaData, String, Table

from config.settings import get_settings

settings = get_settings()

metadata = MetaData()


def _counter(name: str, type_=Integer) -> Column:
    """Additive count column, safe to aggregate with SUM."""
    return Column(name, type_, info={"counter": True})


def _sociodata_columns() -> List[Column]:
    return [
        Column("tractid", String(11)),
        _counter("transit_total"),
        _counter("transit_private"),
        _counter("transit_public"),
        _counter("transit_walk"),
        _counter("transit_other"),
        _counter("transit_none"),
        _counter("transit_time_mins", Float),
        _counter("family_count"),
        # Medians do not add up across tracts
        Column("family_income_median", Integer),
        _counter("family_income_aggregate", Float),
        _counter("edu_total"),
        _counter("edu_no_highschool_dipl"),
        _counter("edu_highschool_dipl"),
        _counter("edu_college_dipl"),
        _counter("edu_graduate_dipl"),
    ]


census_blocks = Table(
    settings.BLOCKS_TABLE,
    metadata,
    Column("gid", Integer, primary_key=True),
    Column("blkid", String(15)),
    _counter("popn_total", Float),
    _counter("popn_white", Float),
    _counter("popn_black", Float),
    _counter("popn_nativ", Float),
    _counter("popn_asian", Float),
    _counter("popn_other", Float),
    Column("boroname", String(32)),
    Column("geom", Geometry("MULTIPOLYGON", srid=settings.SRID)),
)

neighborhoods = Table(
    settings.NEIGHBORHOODS_TABLE,
    metadata,
    Column("gid", Integer, primary_key=True),
    Column("boroname", String(43)),
    Column("name", String(64)),
    Column("geom", Geometry("MULTIPOLYGON", srid=settings.SRID)),
)

subway_stations = Table(
    settings.SUBWAY_STATIONS_TABLE,
    metadata,
    Column("gid", Integer, primary_key=True),
    Column("name", String(31)),
    Column("alt_name", String(38)),
    Column("cross_st", String(27)),
    Column("long_name", String(60)),
    Column("label", String(50)),
    Column("borough", String(15)),
    Column("nghbhd", String(30)),
    Column("routes", String(20)),
    Column("transfers", String(25)),
    Column("color", String(30)),
    Column("express", String(10)),
    Column("closed", String(10)),
    Column("geom", Geometry("POINT", srid=settings.SRID)),
)

census_sociodata = Table(
    settings.SOCIODATA_TABLE,
    metadata,
    *_sociodata_columns(),
)

census_tract_geoms = Table(
    settings.TRACT_GEOMS_TABLE,
    metadata,
    Column("tractid", String(11)),
    Column("geom", Geometry("MULTIPOLYGON", srid=settings.SRID)),
)

census_tracts = Table(
    settings.TRACTS_TABLE,
    metadata,
    Column("geom", Geometry("MULTIPOLYGON", srid=settings.SRID)),
    *_sociodata_columns(),
)


def summable_columns(table: Table) -> List[str]:
    """Counter columns of a table (the SUM allow-list)."""
    return [col.name for col in table.columns if col.info.get("counter")]


def groupable_columns(table: Table) -> List[str]:
    """Non-geometry columns of a table (the GROUP BY allow-list)."""
    return [col.name for col in table.columns if not isinstance(col.type, Geometry)]


class JoinKind(str, Enum):
    """How container and candidate geometries are related"""
    OVERLAY = "overlay"  # polygon/polygon (intersects, centroid containment)
    PROXIMITY = "proximity"  # distance threshold (ST_DWithin)


@dataclass(frozen=True)
class JoinLayout:
    """
    A supported pairing of a container table with a candidate table.

    Candidates are the rows whose counters get summed; containers are the
    rows they are assigned to (and usually grouped by).
    """
    name: str
    kind: JoinKind
    container: Table
    container_alias: str
    container_key: str  # deterministic tie-break when picking representatives
    candidate: Table
    candidate_alias: str
    candidate_key: str  # one representative row per key under DistinctKey
    default_group_by: Tuple[str, ...] = ()
    description: str = ""

    @property
    def is_proximity(self) -> bool:
        return self.kind == JoinKind.PROXIMITY


LAYOUTS: Dict[str, JoinLayout] = {
    "neighborhood_tracts": JoinLayout(
        name="neighborhood_tracts",
        kind=JoinKind.OVERLAY,
        container=neighborhoods,
        container_alias="n",
        container_key="gid",
        candidate=census_tracts,
        candidate_alias="t",
        candidate_key="tractid",
        default_group_by=("name", "boroname"),
        description="Census tract counters summarized by neighborhood",
    ),
    "neighborhood_blocks": JoinLayout(
        name="neighborhood_blocks",
        kind=JoinKind.OVERLAY,
        container=neighborhoods,
        container_alias="n",
        container_key="gid",
        candidate=census_blocks,
        candidate_alias="census",
        candidate_key="blkid",
        default_group_by=("name", "boroname"),
        description="Census block population summarized by neighborhood",
    ),
    "station_blocks": JoinLayout(
        name="station_blocks",
        kind=JoinKind.PROXIMITY,
        container=subway_stations,
        container_alias="subway",
        container_key="gid",
        candidate=census_blocks,
        candidate_alias="census",
        candidate_key="blkid",
        description="Census block population within a distance of subway stations",
    ),
}


def get_layout(name: str) -> JoinLayout:
    """
    Look up a join layout by name.

    Raises:
        ValueError: If the layout is not registered
    """
    if isinstance(name, JoinLayout):
        return name
    layout: Optional[JoinLayout] = LAYOUTS.get(name)
    if layout is None:
        raise ValueError(f"Unknown join layout: {name!r} (known: {', '.join(sorted(LAYOUTS))})")
    return layout
