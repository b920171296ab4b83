"""Pydantic models for type-safe data validation and serialization.

These models represent the core data structures used throughout the pipeline.
"""

from datetime import date
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Provenance = Literal["verified", "discovered"]
LaneStatus = Literal["ok", "partial", "failed", "cancelled"]

# DAT bulk-upload template, in column order. A trailing '*' marks a required column.
DAT_HEADERS: tuple[str, ...] = (
    "Pickup Earliest*",
    "Pickup Latest",
    "Length (ft)*",
    "Weight (lbs)*",
    "Full/Partial*",
    "Equipment*",
    "Use Private Network*",
    "Private Network Rate",
    "Allow Private Network Booking",
    "Allow Private Network Bidding",
    "Use DAT Loadboard*",
    "DAT Loadboard Rate",
    "Allow DAT Loadboard Booking",
    "Use Extended Network",
    "Contact Method*",
    "Origin City*",
    "Origin State*",
    "Origin Postal Code",
    "Destination City*",
    "Destination State*",
    "Destination Postal Code",
    "Comment",
    "Commodity",
    "Reference ID",
)


class MarketArea(BaseModel):
    """A freight market partition. Many cities map to one area."""

    model_config = ConfigDict(frozen=True)

    code: str
    name: str = ""


class City(BaseModel):
    """Represents a row in the cities catalog."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    state: str = Field(..., min_length=2, max_length=3, description="State or province code")
    latitude: float | None = None
    longitude: float | None = None
    market_area_code: str | None = None
    market_area_name: str | None = None
    postal_code: str | None = None
    provenance: Provenance = "verified"

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()

    @field_validator("state")
    @classmethod
    def state_must_be_uppercase(cls, v: str) -> str:
        """Ensure state code is uppercase."""
        return v.strip().upper()

    @property
    def key(self) -> tuple[str, str]:
        """Upsert identity: (lowercased name, state)."""
        return (self.name.lower(), self.state)

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def is_pairing_eligible(self) -> bool:
        """A city can be paired only with coordinates and a market area."""
        return self.has_coordinates and bool(self.market_area_code)

    @property
    def market_area(self) -> MarketArea | None:
        if not self.market_area_code:
            return None
        return MarketArea(code=self.market_area_code, name=self.market_area_name or "")

    @property
    def label(self) -> str:
        return f"{self.name}, {self.state}"


class LocationRef(BaseModel):
    """Origin or destination as supplied by the lane record (possibly unresolved)."""

    model_config = ConfigDict(frozen=True)

    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=2, max_length=3)
    postal_code: str | None = None

    @field_validator("city")
    @classmethod
    def strip_city(cls, v: str) -> str:
        return v.strip()

    @field_validator("state")
    @classmethod
    def state_must_be_uppercase(cls, v: str) -> str:
        return v.strip().upper()


class LaneRequest(BaseModel):
    """Input lane supplied by the lane-management collaborator.

    Weight checks against equipment limits happen in the row pipeline so a
    violation is reported as a lane failure rather than an input error.
    """

    model_config = ConfigDict(frozen=True)

    lane_id: str = Field(..., min_length=1)
    origin: LocationRef
    destination: LocationRef
    equipment_code: str = Field(..., min_length=1, max_length=10)
    pickup_earliest: date
    pickup_latest: date | None = None
    length_ft: int = Field(default=48, ge=1, le=199)
    full_partial: Literal["full", "partial"] = "full"
    weight_lbs: int | None = Field(default=None, ge=1)
    randomize_weight: bool = False
    weight_min: int | None = Field(default=None, ge=1)
    weight_max: int | None = Field(default=None, ge=1)
    comment: str = ""
    commodity: str = ""
    relax_diversity: bool = Field(
        default=False,
        description="Allow reusing a market-area combination to reach the minimum pair count"
    )

    @field_validator("equipment_code")
    @classmethod
    def equipment_must_be_uppercase(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("full_partial", mode="before")
    @classmethod
    def normalize_full_partial(cls, v):
        if isinstance(v, str):
            return v.strip().lower() or "full"
        return v

    @model_validator(mode="after")
    def pickup_window_ordered(self) -> "LaneRequest":
        if self.pickup_latest is not None and self.pickup_latest < self.pickup_earliest:
            raise ValueError("pickup_latest must not be before pickup_earliest")
        return self

    @property
    def effective_pickup_latest(self) -> date:
        return self.pickup_latest or self.pickup_earliest


class RankedCandidate(BaseModel):
    """A pairing-eligible city scored relative to its anchor."""

    model_config = ConfigDict(frozen=True)

    city: City
    distance_miles: float
    score: float
    affinity: bool = False

    @property
    def area(self) -> str:
        return self.city.market_area_code or ""


class CandidatePair(BaseModel):
    """A pickup/delivery pair accepted for one lane."""

    model_config = ConfigDict(frozen=True)

    origin: City
    destination: City
    origin_distance_miles: float = Field(description="Pickup distance from the lane origin")
    destination_distance_miles: float = Field(description="Delivery distance from the lane destination")
    distance_miles: float = Field(default=0.0, description="Great-circle pickup-to-delivery distance")
    score: float
    relaxed: bool = Field(default=False, description="Accepted by relaxed fill (area key may repeat)")

    @property
    def area_key(self) -> tuple[str, str]:
        return (self.origin.market_area_code or "", self.destination.market_area_code or "")


class PostingRow(BaseModel):
    """One row of the DAT bulk-upload template."""

    model_config = ConfigDict(frozen=True)

    pickup_earliest: str
    pickup_latest: str = ""
    length_ft: str
    weight_lbs: str
    full_partial: str
    equipment: str
    use_private_network: str = "NO"
    private_network_rate: str = ""
    allow_private_network_booking: str = ""
    allow_private_network_bidding: str = ""
    use_dat_loadboard: str = "yes"
    dat_loadboard_rate: str = ""
    allow_dat_loadboard_booking: str = ""
    use_extended_network: str = ""
    contact_method: str
    origin_city: str
    origin_state: str
    origin_postal_code: str = ""
    destination_city: str
    destination_state: str
    destination_postal_code: str = ""
    comment: str = ""
    commodity: str = ""
    reference_id: str = ""

    def values(self) -> list[str]:
        """Cell values in DAT_HEADERS order."""
        return [getattr(self, name) for name in POSTING_FIELDS]

    def as_record(self) -> dict[str, str]:
        """Row keyed by DAT header."""
        return dict(zip(DAT_HEADERS, self.values()))


POSTING_FIELDS: tuple[str, ...] = tuple(PostingRow.model_fields)


class DiscoveredPlace(BaseModel):
    """A candidate place returned by the external discovery provider."""

    name: str
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None
    latitude: float
    longitude: float
    address: str = ""
    source: str = "serper_places"


class LaneResult(BaseModel):
    """Outcome of processing one lane."""

    lane_id: str
    status: LaneStatus
    rows: list[PostingRow] = Field(default_factory=list)
    pairs: list[CandidatePair] = Field(default_factory=list)
    relaxed: bool = False
    shortfall_reason: str | None = None
    error_type: str | None = None
    error: str | None = None
    origin_radius_miles: float | None = None
    destination_radius_miles: float | None = None
    discovery_calls: int = 0


class BatchReport(BaseModel):
    """Rollup for one export run."""

    lanes_total: int = 0
    ok: int = 0
    partial: int = 0
    failed: int = 0
    cancelled: int = 0
    rows_written: int = 0
    files: list[str] = Field(default_factory=list)
    results: list[LaneResult] = Field(default_factory=list)
