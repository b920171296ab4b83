"""Candidate scoring and near-tie resolution.

Score = distance component (1 - distance/ceiling, floored at 0) plus a
small bonus when the city name suggests freight that fits the equipment.
Candidates whose scores differ by less than epsilon are ordered by a
TieBreaker.
"""

import re
import threading
import time
from functools import cmp_to_key
from typing import Callable, Protocol

import httpx

from lanepost.models.schemas import City, RankedCandidate
from lanepost.utils.config import settings
from lanepost.utils.run_logger import get_logger
from lanepost.utils.tiebreak_client import TieBreakJudge

AFFINITY_BONUS = 0.05

_FLATBED = re.compile(r"port|steel|mill|industrial|heavy|factory", re.IGNORECASE)
_HEAVY_HAUL = re.compile(r"machinery|heavy|industrial|construction", re.IGNORECASE)
_REEFER = re.compile(r"food|produce|fresh|cold|pharma|medical", re.IGNORECASE)
_VAN = re.compile(r"retail|distribution|warehouse|center|general", re.IGNORECASE)

AFFINITY_PATTERNS: dict[str, re.Pattern] = {
    "F": _FLATBED,
    "FD": _FLATBED,
    "SD": _FLATBED,
    "RGN": _HEAVY_HAUL,
    "LB": _HEAVY_HAUL,
    "DD": _HEAVY_HAUL,
    "R": _REEFER,
    "V": _VAN,
}


def has_affinity(city: City, equipment: str) -> bool:
    pattern = AFFINITY_PATTERNS.get(equipment.upper())
    return bool(pattern and pattern.search(city.name))


def score_candidate(distance_miles: float, affinity: bool, ceiling_miles: float) -> float:
    distance_component = max(0.0, 1.0 - distance_miles / ceiling_miles) if ceiling_miles > 0 else 0.0
    return distance_component + (AFFINITY_BONUS if affinity else 0.0)


class TieBreaker(Protocol):
    def compare(self, a: RankedCandidate, b: RankedCandidate, equipment: str) -> int:
        """Negative when a should rank first, positive when b should."""
        ...


def _sign(value: float) -> int:
    return (value > 0) - (value < 0)


class DeterministicTieBreaker:
    """Affinity, then raw score, then distance, then name/state. A total order."""

    def compare(self, a: RankedCandidate, b: RankedCandidate, equipment: str) -> int:
        if a.affinity != b.affinity:
            return -1 if a.affinity else 1
        if a.score != b.score:
            return _sign(b.score - a.score)
        if a.distance_miles != b.distance_miles:
            return _sign(a.distance_miles - b.distance_miles)
        a_key = (a.city.name.lower(), a.city.state)
        b_key = (b.city.name.lower(), b.city.state)
        return (a_key > b_key) - (a_key < b_key)


class TieBreakCache:
    """Thread-safe TTL cache of delegated verdicts.

    Keyed by (equipment, unordered area pair); the value is the winning area.
    """

    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = settings.tiebreak_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[tuple[str, tuple[str, str]], tuple[str, float]] = {}

    @staticmethod
    def _key(equipment: str, area_a: str, area_b: str) -> tuple[str, tuple[str, str]]:
        return (equipment.upper(), tuple(sorted((area_a, area_b))))

    def get(self, equipment: str, area_a: str, area_b: str) -> str | None:
        key = self._key(equipment, area_a, area_b)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            winner, stored_at = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return winner

    def put(self, equipment: str, area_a: str, area_b: str, winner_area: str) -> None:
        with self._lock:
            self._entries[self._key(equipment, area_a, area_b)] = (winner_area, self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def _describe(candidate: RankedCandidate) -> dict:
    return {
        "city": candidate.city.label,
        "marketArea": candidate.area,
        "distanceMiles": round(candidate.distance_miles, 1),
        "score": round(candidate.score, 4),
    }


class DelegatedTieBreaker:
    """Ask an external judge, falling back to the deterministic rule on any failure.

    Only real verdicts are cached; fallback answers are not.
    """

    def __init__(
        self,
        judge: TieBreakJudge,
        cache: TieBreakCache | None = None,
        fallback: TieBreaker | None = None,
    ):
        self.judge = judge
        self.cache = cache if cache is not None else TieBreakCache()
        self.fallback = fallback or DeterministicTieBreaker()

    def compare(self, a: RankedCandidate, b: RankedCandidate, equipment: str) -> int:
        if a.area == b.area:
            return self.fallback.compare(a, b, equipment)

        cached = self.cache.get(equipment, a.area, b.area)
        if cached is not None:
            return -1 if cached == a.area else 1

        try:
            verdict = self.judge.judge(equipment, _describe(a), _describe(b))
        except (httpx.HTTPError, ValueError) as e:
            get_logger().warning(
                f"Tie-break delegate failed ({type(e).__name__}: {e}); using deterministic order"
            )
            return self.fallback.compare(a, b, equipment)

        winner_area = a.area if verdict["winner"] == "A" else b.area
        self.cache.put(equipment, a.area, b.area, winner_area)
        return -1 if winner_area == a.area else 1


class CandidateRanker:
    """Score candidates and order them best first."""

    def __init__(
        self,
        tie_breaker: TieBreaker | None = None,
        epsilon: float | None = None,
        ceiling_miles: float | None = None,
    ):
        self.tie_breaker = tie_breaker or DeterministicTieBreaker()
        self.epsilon = settings.tiebreak_epsilon if epsilon is None else epsilon
        self.ceiling_miles = ceiling_miles or settings.search_radius_ceiling_miles

    def rank(self, pool: list[tuple[City, float]], equipment: str) -> list[RankedCandidate]:
        candidates = []
        for city, distance in pool:
            affinity = has_affinity(city, equipment)
            candidates.append(RankedCandidate(
                city=city,
                distance_miles=distance,
                score=score_candidate(distance, affinity, self.ceiling_miles),
                affinity=affinity,
            ))

        # Deterministic pre-order so near-tie comparisons see a stable input
        candidates.sort(key=lambda c: (-c.score, c.distance_miles, c.city.name.lower(), c.city.state))

        def _compare(a: RankedCandidate, b: RankedCandidate) -> int:
            if abs(a.score - b.score) < self.epsilon:
                return self.tie_breaker.compare(a, b, equipment)
            return -1 if a.score > b.score else 1

        return sorted(candidates, key=cmp_to_key(_compare))


def build_tie_breaker(config=None, cache: TieBreakCache | None = None) -> TieBreaker:
    """Deterministic or delegated, per TIEBREAK_MODE."""
    config = config or settings
    if config.tiebreak_mode == "delegated":
        judge = TieBreakJudge(
            api_url=config.tiebreak_api_url,
            api_key=config.tiebreak_api_key,
            model=config.tiebreak_model,
            timeout_seconds=config.tiebreak_timeout_seconds,
        )
        if cache is None:
            cache = TieBreakCache(config.tiebreak_cache_ttl_seconds)
        return DelegatedTieBreaker(judge, cache)
    return DeterministicTieBreaker()
