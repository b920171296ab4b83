"""Expansion of accepted pairs into DAT posting rows.

One row per contact method per pair. Weight is validated against the
equipment legal maximum before anything is generated.
"""

import random
import re
import threading
import zlib
from typing import Iterable

from lanepost.exceptions import EquipmentWeightViolation, FormatViolation
from lanepost.models.schemas import DAT_HEADERS, CandidatePair, LaneRequest, PostingRow
from lanepost.utils.config import settings

REFERENCE_ID_PATTERN = re.compile(r"^RR\d{5}$")
MAX_COMMENT_LENGTH = 140
MAX_COMMODITY_LENGTH = 70
MIN_LENGTH_FT = 1
MAX_LENGTH_FT = 199
FULL_PARTIAL_VALUES = ("full", "partial")


def legal_max_weight(equipment_code: str, config=None) -> int:
    config = config or settings
    return config.equipment_weight_limits.get(equipment_code.upper(), config.default_max_weight_lbs)


def weight_bounds(lane: LaneRequest, config=None) -> tuple[int, int]:
    """Validated (low, high) weight for a lane; equal bounds for a fixed weight.

    Raises:
        FormatViolation: Weight missing
        EquipmentWeightViolation: Fixed weight or range upper bound over the legal max
    """
    limit = legal_max_weight(lane.equipment_code, config)

    if lane.randomize_weight:
        if lane.weight_min is None or lane.weight_max is None:
            raise FormatViolation(f"Lane {lane.lane_id}: randomized weight needs weight_min and weight_max")
        low, high = sorted((lane.weight_min, lane.weight_max))
        if high > limit:
            raise EquipmentWeightViolation(lane.equipment_code, high, limit, detail="weight range upper bound")
        return low, high

    if lane.weight_lbs is None:
        raise FormatViolation(f"Lane {lane.lane_id}: weight_lbs is required when randomize_weight is off")
    if lane.weight_lbs > limit:
        raise EquipmentWeightViolation(lane.equipment_code, lane.weight_lbs, limit)
    return lane.weight_lbs, lane.weight_lbs


def lane_seed(lane_id: str) -> int:
    """Stable across processes (unlike hash())."""
    return zlib.crc32(lane_id.encode("utf-8"))


class ReferenceIdGenerator:
    """Issues RR##### ids, never repeating within one generator."""

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.Random()
        self._issued: set[str] = set()
        self._lock = threading.Lock()

    def next_id(self) -> str:
        with self._lock:
            if len(self._issued) >= 100000:
                raise FormatViolation("Reference id space exhausted")
            while True:
                candidate = f"RR{self._rng.randint(0, 99999):05d}"
                if candidate not in self._issued:
                    self._issued.add(candidate)
                    return candidate


def validate_row(row: PostingRow) -> None:
    """Check one row against the bulk-upload constraints.

    Raises:
        FormatViolation: On the first broken constraint
    """
    values = row.values()
    if len(values) != len(DAT_HEADERS):
        raise FormatViolation(f"Row has {len(values)} columns, expected {len(DAT_HEADERS)}")

    required = {
        "Pickup Earliest*": row.pickup_earliest,
        "Length (ft)*": row.length_ft,
        "Weight (lbs)*": row.weight_lbs,
        "Full/Partial*": row.full_partial,
        "Equipment*": row.equipment,
        "Contact Method*": row.contact_method,
        "Origin City*": row.origin_city,
        "Origin State*": row.origin_state,
        "Destination City*": row.destination_city,
        "Destination State*": row.destination_state,
    }
    for header, value in required.items():
        if not value:
            raise FormatViolation(f"Missing required column {header}")

    if not row.length_ft.isdigit() or not MIN_LENGTH_FT <= int(row.length_ft) <= MAX_LENGTH_FT:
        raise FormatViolation(f"Length (ft)* must be {MIN_LENGTH_FT}-{MAX_LENGTH_FT}, got {row.length_ft!r}")
    if not row.weight_lbs.isdigit():
        raise FormatViolation(f"Weight (lbs)* must be a whole number, got {row.weight_lbs!r}")
    if row.full_partial not in FULL_PARTIAL_VALUES:
        raise FormatViolation(f"Full/Partial* must be full or partial, got {row.full_partial!r}")
    if len(row.comment) > MAX_COMMENT_LENGTH:
        raise FormatViolation(f"Comment exceeds {MAX_COMMENT_LENGTH} characters")
    if len(row.commodity) > MAX_COMMODITY_LENGTH:
        raise FormatViolation(f"Commodity exceeds {MAX_COMMODITY_LENGTH} characters")
    if row.reference_id and not REFERENCE_ID_PATTERN.match(row.reference_id):
        raise FormatViolation(f"Reference ID {row.reference_id!r} does not match RR#####")


class RowExpander:
    """Turn accepted pairs into posting rows.

    Weights are drawn from an RNG seeded by lane id, so expanding the same
    lane twice yields the same rows except for reference ids.
    """

    def __init__(self, contact_methods: Iterable[str] | None = None, config=None):
        self.config = config or settings
        self.contact_methods = list(contact_methods or self.config.contact_methods)

    def expand(
        self,
        lane: LaneRequest,
        pairs: list[CandidatePair],
        reference_ids: ReferenceIdGenerator | None = None,
    ) -> list[PostingRow]:
        low, high = weight_bounds(lane, self.config)
        weight_rng = random.Random(lane_seed(lane.lane_id))
        reference_ids = reference_ids or ReferenceIdGenerator()
        limit = legal_max_weight(lane.equipment_code, self.config)

        pickup_earliest = lane.pickup_earliest.isoformat()
        pickup_latest = lane.effective_pickup_latest.isoformat()

        rows = []
        for pair in pairs:
            weight = weight_rng.randint(low, high) if low != high else low
            if weight > limit:
                raise EquipmentWeightViolation(lane.equipment_code, weight, limit)

            for method in self.contact_methods:
                row = PostingRow(
                    pickup_earliest=pickup_earliest,
                    pickup_latest=pickup_latest,
                    length_ft=str(lane.length_ft),
                    weight_lbs=str(weight),
                    full_partial=lane.full_partial,
                    equipment=lane.equipment_code,
                    contact_method=method,
                    origin_city=pair.origin.name,
                    origin_state=pair.origin.state,
                    origin_postal_code=pair.origin.postal_code or "",
                    destination_city=pair.destination.name,
                    destination_state=pair.destination.state,
                    destination_postal_code=pair.destination.postal_code or "",
                    comment=lane.comment,
                    commodity=lane.commodity,
                    reference_id=reference_ids.next_id(),
                )
                validate_row(row)
                rows.append(row)
        return rows
