"""
NYC Spatial Joins - Double-Counting Strategies

Each strategy is a row in a policy table: the join predicate it uses for
overlay and proximity joins, and whether candidates must be reduced to one
representative row per key before aggregating.

- Raw: ST_Intersects / ST_DWithin, no de-duplication. A tract straddling two
  neighborhoods, or a block near two stations, is counted in both.
- Centroid: the container must contain the candidate's centroid. When the
  containers do not overlap, each candidate lands in at most one of them.
- DistinctKey: same predicates as Raw, then DISTINCT ON the candidate key.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Union

from spatial_joins.errors import InvalidStrategy

# Placeholders are filled with table aliases by the composer
INTERSECTS = "ST_Intersects({container}.geom, {candidate}.geom)"
CONTAINS_CENTROID = "ST_Contains({container}.geom, ST_Centroid({candidate}.geom))"
DWITHIN = "ST_DWithin({candidate}.geom, {container}.geom, :radius)"


class JoinStrategy(str, Enum):
    """Double-counting mitigation policy"""
    RAW = "raw"
    CENTROID = "centroid"
    DISTINCT_KEY = "distinct_key"


@dataclass(frozen=True)
class StrategyPolicy:
    strategy: JoinStrategy
    overlay_predicate: str
    proximity_predicate: Optional[str]  # None: not usable for distance joins
    requires_distinct: bool
    description: str

    def predicate(self, proximity: bool) -> str:
        """Predicate template for the given join kind."""
        template = self.proximity_predicate if proximity else self.overlay_predicate
        if template is None:
            raise InvalidStrategy(self.strategy.value, "not supported for proximity joins")
        return template


STRATEGY_POLICIES: Dict[JoinStrategy, StrategyPolicy] = {
    JoinStrategy.RAW: StrategyPolicy(
        strategy=JoinStrategy.RAW,
        overlay_predicate=INTERSECTS,
        proximity_predicate=DWITHIN,
        requires_distinct=False,
        description="Intersects/within-distance join; may double count across boundaries",
    ),
    JoinStrategy.CENTROID: StrategyPolicy(
        strategy=JoinStrategy.CENTROID,
        overlay_predicate=CONTAINS_CENTROID,
        proximity_predicate=None,
        requires_distinct=False,
        description="Assign each candidate to the container holding its centroid",
    ),
    JoinStrategy.DISTINCT_KEY: StrategyPolicy(
        strategy=JoinStrategy.DISTINCT_KEY,
        overlay_predicate=INTERSECTS,
        proximity_predicate=DWITHIN,
        requires_distinct=True,
        description="Keep one representative match per candidate key",
    ),
}


def select_strategy(identifier: Union[str, JoinStrategy]) -> StrategyPolicy:
    """
    Resolve a strategy identifier to its policy.

    Accepts a JoinStrategy or its value, case-insensitive, with '-' or ' '
    standing in for '_' (so 'distinct-key' works on the command line).

    Raises:
        InvalidStrategy: If the identifier is not a known strategy
    """
    if isinstance(identifier, JoinStrategy):
        return STRATEGY_POLICIES[identifier]
    if not isinstance(identifier, str):
        raise InvalidStrategy(identifier)

    normalized = identifier.strip().lower().replace("-", "_").replace(" ", "_")
    try:
        strategy = JoinStrategy(normalized)
    except ValueError:
        raise InvalidStrategy(identifier) from None
    return STRATEGY_POLICIES[strategy]


def strategy_for_intent(proximity: bool, avoid_double_counting: bool = True) -> StrategyPolicy:
    """Pick a policy from what the caller wants rather than by name."""
    if not avoid_double_counting:
        return STRATEGY_POLICIES[JoinStrategy.RAW]
    if proximity:
        return STRATEGY_POLICIES[JoinStrategy.DISTINCT_KEY]
    return STRATEGY_POLICIES[JoinStrategy.CENTROID]
