"""
NYC Spatial Joins - Census Tract Builder

Tracts are not shipped with the block data. A block id encodes
state(2) + county(3) + tract(6) + block group(1) + block(3), so the first
11 characters name the tract, and the tract geometry is the union of its
blocks. This is the one step that writes; reports only read.

Usage:
    python -m spatial_joins.run_report build-tracts
"""

from sqlalchemy import text
from sqlalchemy.orm import Session

from config.settings import get_settings
from spatial_joins.utils.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

TRACT_ID_LENGTH = 11


def tract_id_from_block_id(blkid: str) -> str:
    """
    Derive the parent tract id from a census block id.

    Raises:
        ValueError: If the block id is too short or not all digits
    """
    if blkid is None:
        raise ValueError("Block id is required")
    blkid = str(blkid).strip()
    if len(blkid) < TRACT_ID_LENGTH or not blkid.isdigit():
        raise ValueError(f"Not a census block id: {blkid!r}")
    return blkid[:TRACT_ID_LENGTH]


def build_tract_tables(db: Session) -> int:
    """
    (Re)create the tract geometry and tract tables from blocks.

    Steps:
        1. Union block geometries by tract id prefix
        2. Spatially index the tract geometries
        3. Join tract geometries with the tract socio-economic data
        4. Spatially index the joined table

    Args:
        db: Session (commit is left to the caller's get_db scope)

    Returns:
        Number of tracts in the joined table
    """
    geoms = settings.TRACT_GEOMS_TABLE
    tracts = settings.TRACTS_TABLE

    logger.info(f"Building {geoms} from {settings.BLOCKS_TABLE}")
    db.execute(text(f"DROP TABLE IF EXISTS {tracts}"))
    db.execute(text(f"DROP TABLE IF EXISTS {geoms}"))
    db.execute(text(f"""
        CREATE TABLE {geoms} AS
        SELECT
            ST_Union(geom) AS geom,
            SubStr(blkid, 1, {TRACT_ID_LENGTH}) AS tractid
        FROM {settings.BLOCKS_TABLE}
        GROUP BY tractid
    """))
    db.execute(text(f"CREATE INDEX {geoms}_tractid_idx ON {geoms} (tractid)"))
    db.execute(text(f"CREATE INDEX {geoms}_geom_idx ON {geoms} USING GIST (geom)"))

    logger.info(f"Joining {geoms} with {settings.SOCIODATA_TABLE} into {tracts}")
    db.execute(text(f"""
        CREATE TABLE {tracts} AS
        SELECT
            g.geom,
            a.*
        FROM {geoms} g
        JOIN {settings.SOCIODATA_TABLE} a
        ON g.tractid = a.tractid
    """))
    db.execute(text(f"CREATE INDEX {tracts}_geom_idx ON {tracts} USING GIST (geom)"))

    count = db.execute(text(f"SELECT COUNT(*) FROM {tracts}")).scalar() or 0
    logger.info(f"Built {count} census tracts")
    return int(count)
