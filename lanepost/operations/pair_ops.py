"""Pickup/delivery pair assembly with a guaranteed minimum.

strict_assemble and relaxed_assemble are pure; assemble_pairs composes
them and reports any shortfall explicitly.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Literal

from lanepost.models.schemas import CandidatePair, RankedCandidate
from lanepost.operations.geo_ops import haversine_miles

RelaxPolicy = Literal["nearest", "least_recently_used"]

SHORTFALL_UNIQUE_MARKETS = "insufficient_unique_markets"
SHORTFALL_CANDIDATES = "insufficient_candidates"


@dataclass
class PairAssembly:
    pairs: list[CandidatePair] = field(default_factory=list)
    relaxed: bool = False
    shortfall_reason: str | None = None

    @property
    def is_short(self) -> bool:
        return self.shortfall_reason is not None


def make_pair(origin: RankedCandidate, destination: RankedCandidate, relaxed: bool = False) -> CandidatePair:
    o, d = origin.city, destination.city
    return CandidatePair(
        origin=o,
        destination=d,
        origin_distance_miles=origin.distance_miles,
        destination_distance_miles=destination.distance_miles,
        distance_miles=haversine_miles(o.latitude, o.longitude, d.latitude, d.longitude),
        score=(origin.score + destination.score) / 2,
        relaxed=relaxed,
    )


def _city_pair(pair: CandidatePair) -> tuple[tuple[str, str], tuple[str, str]]:
    return (pair.origin.key, pair.destination.key)


def strict_assemble(
    origins: list[RankedCandidate],
    destinations: list[RankedCandidate],
    minimum: int,
) -> list[CandidatePair]:
    """Greedy pairing with unique (origin area, destination area) keys.

    Each step picks the unused key whose areas and cities have been used
    least so far, then by rank. Stops at minimum or when no unused key is
    left.
    """
    pairs: list[CandidatePair] = []
    used_keys: set[tuple[str, str]] = set()
    origin_area_use: Counter = Counter()
    dest_area_use: Counter = Counter()
    origin_city_use: Counter = Counter()
    dest_city_use: Counter = Counter()

    while len(pairs) < minimum:
        best = None
        best_rank = None
        for i, o in enumerate(origins):
            for j, d in enumerate(destinations):
                if (o.area, d.area) in used_keys or o.city.key == d.city.key:
                    continue
                rank = (
                    origin_area_use[o.area] + dest_area_use[d.area],
                    origin_city_use[o.city.key] + dest_city_use[d.city.key],
                    i + j,
                    i,
                )
                if best_rank is None or rank < best_rank:
                    best, best_rank = (o, d), rank
        if best is None:
            break

        o, d = best
        pairs.append(make_pair(o, d))
        used_keys.add((o.area, d.area))
        origin_area_use[o.area] += 1
        dest_area_use[d.area] += 1
        origin_city_use[o.city.key] += 1
        dest_city_use[d.city.key] += 1

    return pairs


def relaxed_assemble(
    origins: list[RankedCandidate],
    destinations: list[RankedCandidate],
    existing: list[CandidatePair],
    minimum: int,
    policy: RelaxPolicy = "nearest",
) -> list[CandidatePair]:
    """Top up existing pairs to minimum, allowing repeated area keys.

    The exact same city pair is never emitted twice.
      nearest: smallest combined distance from the anchors first
      least_recently_used: area keys used longest ago (or never) first
    """
    pairs = list(existing)
    taken = {_city_pair(p) for p in pairs}
    last_used: dict[tuple[str, str], int] = {}
    for turn, pair in enumerate(pairs):
        last_used[pair.area_key] = turn

    while len(pairs) < minimum:
        best = None
        best_rank = None
        for i, o in enumerate(origins):
            for j, d in enumerate(destinations):
                if (o.city.key, d.city.key) in taken or o.city.key == d.city.key:
                    continue
                distance = o.distance_miles + d.distance_miles
                if policy == "least_recently_used":
                    rank = (last_used.get((o.area, d.area), -1), distance, i + j, i)
                else:
                    rank = (distance, i + j, i)
                if best_rank is None or rank < best_rank:
                    best, best_rank = (o, d), rank
        if best is None:
            break

        o, d = best
        pair = make_pair(o, d, relaxed=True)
        last_used[pair.area_key] = len(pairs)
        pairs.append(pair)
        taken.add(_city_pair(pair))

    return pairs


def assemble_pairs(
    origins: list[RankedCandidate],
    destinations: list[RankedCandidate],
    minimum: int,
    fill: bool = False,
    policy: RelaxPolicy = "nearest",
) -> PairAssembly:
    """Strict first; relaxed only when short and fill is enabled."""
    pairs = strict_assemble(origins, destinations, minimum)
    if len(pairs) >= minimum:
        return PairAssembly(pairs=pairs)

    if not fill:
        return PairAssembly(pairs=pairs, shortfall_reason=SHORTFALL_UNIQUE_MARKETS)

    filled = relaxed_assemble(origins, destinations, pairs, minimum, policy)
    relaxed = len(filled) > len(pairs)
    if len(filled) >= minimum:
        return PairAssembly(pairs=filled, relaxed=relaxed)
    return PairAssembly(pairs=filled, relaxed=relaxed, shortfall_reason=SHORTFALL_CANDIDATES)
