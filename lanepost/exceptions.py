"""Error taxonomy for lane processing.

Every lane-level failure raised by the engine derives from LanePostError so
batch runners can isolate it per lane.
"""


class LanePostError(Exception):
    """Base class for per-lane failures."""


class UnresolvableLocation(LanePostError):
    """Anchor city cannot be geocoded or has no market area."""

    def __init__(self, city: str, state: str, detail: str = "not found in city index"):
        self.city = city
        self.state = state
        super().__init__(f"Cannot resolve {city}, {state}: {detail}")


class InsufficientDiversity(LanePostError):
    """Strict and fallback search could not reach the minimum pair count."""

    def __init__(self, reason: str, found: int, required: int):
        self.reason = reason
        self.found = found
        self.required = required
        super().__init__(
            f"Only {found} of {required} required pairs ({reason})"
        )


class EquipmentWeightViolation(LanePostError):
    """Fixed or randomized weight exceeds the equipment class legal maximum."""

    def __init__(self, equipment_code: str, weight: int, limit: int, detail: str = "weight"):
        self.equipment_code = equipment_code
        self.weight = weight
        self.limit = limit
        super().__init__(
            f"{detail} {weight} lbs exceeds legal maximum {limit} lbs for equipment {equipment_code}"
        )


class ExternalProviderFailure(LanePostError):
    """Discovery or tie-break call failed. Callers degrade instead of propagating."""


class FormatViolation(LanePostError):
    """A generated row or lane record breaks the bulk-upload schema."""
