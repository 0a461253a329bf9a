"""
NYC Spatial Joins - Report Command Line

Runs one report against the configured PostGIS database and prints it.

Reports:
1. ratio        - top-N percentage ratio per group (e.g. graduate degrees by neighborhood)
2. proximity    - candidate totals near containers, naive vs de-duplicated
3. audit        - candidates a strategy assigns to more than one container
4. build-tracts - derive census tracts from blocks (setup step)

Usage:
    python -m spatial_joins.run_report ratio --numerator edu_graduate_dipl --denominator edu_total
    python -m spatial_joins.run_report ratio --strategy raw --limit 5
    python -m spatial_joins.run_report proximity --column popn_total --radius 500
    python -m spatial_joins.run_report audit --layout neighborhood_tracts --strategy centroid
"""

import argparse
import json
import sys
from datetime import datetime

import pandas as pd

from config.database import get_db, test_connection
from config.settings import get_settings
from spatial_joins.errors import QueryExecutionError, SpatialJoinError
from spatial_joins.ranking import to_records
from spatial_joins.runner import audit_assignments, run_proximity_comparison, run_ratio_report
from spatial_joins.schema import LAYOUTS
from spatial_joins.strategies import JoinStrategy
from spatial_joins.tracts import build_tract_tables
from spatial_joins.utils.logging import setup_logging

logger = setup_logging("report")
settings = get_settings()


def _print_frame(df: pd.DataFrame, fmt: str) -> None:
    if fmt == "json":
        print(json.dumps(to_records(df), indent=2, default=str))
    elif df.empty:
        print("(no rows)")
    else:
        print(df.to_string(index=False))


def _print_mapping(data: dict, fmt: str) -> None:
    if fmt == "json":
        print(json.dumps(data, indent=2, default=str))
    else:
        for key, value in data.items():
            print(f"{key:>20}: {value:,.0f}" if isinstance(value, float) else f"{key:>20}: {value}")


def run_ratio(args) -> None:
    with get_db() as db:
        df = run_ratio_report(
            db,
            layout=args.layout,
            numerator=args.numerator,
            denominator=args.denominator,
            group_by=args.group_by,
            strategy=args.strategy,
            limit=args.limit,
            radius=args.radius,
        )
    _print_frame(df, args.format)


def run_proximity(args) -> None:
    with get_db() as db:
        comparison = run_proximity_comparison(
            db, column=args.column, radius=args.radius, layout=args.layout
        )
    _print_mapping(comparison.to_dict(), args.format)


def run_audit(args) -> None:
    with get_db() as db:
        df = audit_assignments(db, layout=args.layout, strategy=args.strategy, radius=args.radius)
    _print_frame(df, args.format)


def run_build_tracts(args) -> None:
    with get_db() as db:
        count = build_tract_tables(db)
    _print_mapping({"tracts": count}, args.format)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="NYC Spatial Joins - spatial aggregation reports"
    )
    parser.add_argument(
        "--format",
        type=str,
        default="table",
        choices=["table", "json"],
        help="Output format (default: table)"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    strategies = [s.value for s in JoinStrategy]

    ratio = subparsers.add_parser("ratio", help="Top-N percentage ratio per group")
    ratio.add_argument("--layout", default="neighborhood_tracts", choices=sorted(LAYOUTS))
    ratio.add_argument("--numerator", default="edu_graduate_dipl", help="Counter summed above the line")
    ratio.add_argument("--denominator", default="edu_total", help="Counter summed below the line")
    ratio.add_argument(
        "--group-by",
        type=str,
        nargs="+",
        default=None,
        help="Grouping columns (default: the layout's default grouping)"
    )
    ratio.add_argument("--strategy", default=JoinStrategy.CENTROID.value, help=f"One of {strategies}")
    ratio.add_argument("--limit", type=int, default=settings.DEFAULT_REPORT_LIMIT)
    ratio.add_argument("--radius", type=float, default=None, help="Meters (proximity layouts only)")
    ratio.set_defaults(handler=run_ratio)

    proximity = subparsers.add_parser("proximity", help="Naive vs de-duplicated proximity totals")
    proximity.add_argument(
        "--layout",
        default="station_blocks",
        choices=sorted(name for name, layout in LAYOUTS.items() if layout.is_proximity)
    )
    proximity.add_argument("--column", default="popn_total")
    proximity.add_argument("--radius", type=float, default=settings.DEFAULT_PROXIMITY_RADIUS)
    proximity.set_defaults(handler=run_proximity)

    audit = subparsers.add_parser("audit", help="Candidates assigned to several containers")
    audit.add_argument("--layout", default="neighborhood_tracts", choices=sorted(LAYOUTS))
    audit.add_argument("--strategy", default=JoinStrategy.RAW.value, help=f"One of {strategies}")
    audit.add_argument("--radius", type=float, default=None, help="Meters (proximity layouts only)")
    audit.set_defaults(handler=run_audit)

    tracts = subparsers.add_parser("build-tracts", help="Build census tracts from blocks")
    tracts.set_defaults(handler=run_build_tracts)

    return parser


def main():
    """Report command entry point"""
    args = build_parser().parse_args()

    start_time = datetime.now()
    options = {key: value for key, value in vars(args).items() if key != "handler"}
    logger.info(f"Report start: {args.command} ({options})")

    if not test_connection():
        logger.error("Database connection failed, exiting")
        sys.exit(1)

    try:
        args.handler(args)

    except (SpatialJoinError, ValueError) as e:
        # QueryExecutionError included: caller decides whether to retry
        logger.error(f"Report {args.command} failed: {e}")
        if isinstance(e, QueryExecutionError) and e.original is not None:
            logger.debug(f"Underlying database error: {e.original!r}")
        sys.exit(1)

    except KeyboardInterrupt:
        logger.warning("Report interrupted by user")
        sys.exit(130)

    except Exception as e:
        logger.error(f"Report {args.command} failed with unhandled exception: {e}", exc_info=True)
        sys.exit(1)

    duration = (datetime.now() - start_time).total_seconds()
    logger.info(f"Report {args.command} complete in {duration:.1f} seconds")
    sys.exit(0)


if __name__ == "__main__":
    main()
