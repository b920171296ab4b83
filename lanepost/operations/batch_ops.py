"""Batch helpers: lane record parsing, wave planning, cancellation, rollup."""

import csv
import json
import threading
from pathlib import Path
from typing import Any, Iterable, Sequence

from pydantic import ValidationError

from lanepost.exceptions import FormatViolation
from lanepost.models.schemas import BatchReport, LaneRequest, LaneResult

# Flat CSV columns accepted for lane input, mapped onto LaneRequest fields
LANE_CSV_LOCATION_COLUMNS = {
    "origin_city": ("origin", "city"),
    "origin_state": ("origin", "state"),
    "origin_postal_code": ("origin", "postal_code"),
    "destination_city": ("destination", "city"),
    "destination_state": ("destination", "state"),
    "destination_postal_code": ("destination", "postal_code"),
}


class CancellationToken:
    """Whole-batch cancel flag checked between waves."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def plan_waves(items: Sequence[Any], wave_size: int) -> list[list[Any]]:
    """Split items into consecutive waves of at most wave_size."""
    if wave_size < 1:
        raise ValueError("wave_size must be at least 1")
    return [list(items[i:i + wave_size]) for i in range(0, len(items), wave_size)]


def _nest_flat_record(record: dict[str, Any]) -> dict[str, Any]:
    """Turn origin_city/origin_state/... columns into nested location dicts."""
    nested: dict[str, Any] = {}
    for key, value in record.items():
        if key in LANE_CSV_LOCATION_COLUMNS:
            side, field_name = LANE_CSV_LOCATION_COLUMNS[key]
            if value not in (None, ""):
                nested.setdefault(side, {})[field_name] = value
        elif value not in (None, ""):
            nested[key] = value
    return nested


def load_lane_records(path: str | Path) -> list[dict[str, Any]]:
    """Read lane records from a JSON list or a flat CSV file."""
    path = Path(path)
    if path.suffix.lower() == ".json":
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError(f"{path}: expected a JSON list of lane records")
        return data

    with open(path, newline="", encoding="utf-8") as f:
        return [dict(row) for row in csv.DictReader(f)]


def parse_lane_records(records: Iterable[dict[str, Any]]) -> tuple[list[LaneRequest], list[LaneResult]]:
    """Validate raw records into LaneRequests.

    Invalid records become failed LaneResults (FormatViolation) instead of
    aborting the batch.
    """
    lanes: list[LaneRequest] = []
    rejected: list[LaneResult] = []
    for index, record in enumerate(records, start=1):
        record = _nest_flat_record(record)
        lane_id = str(record.get("lane_id") or f"record-{index}")
        try:
            lanes.append(LaneRequest.model_validate(record))
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            error = FormatViolation(f"Lane {lane_id}: {problems}")
            rejected.append(LaneResult(
                lane_id=lane_id,
                status="failed",
                error_type=type(error).__name__,
                error=str(error),
            ))
    return lanes, rejected


def cancelled_result(lane: LaneRequest) -> LaneResult:
    return LaneResult(lane_id=lane.lane_id, status="cancelled")


def summarize_lane_results(results: Iterable[LaneResult], files: Iterable[str] = ()) -> BatchReport:
    """Roll per-lane results into a BatchReport."""
    results = list(results)
    report = BatchReport(
        lanes_total=len(results),
        files=[str(f) for f in files],
        results=results,
    )
    for result in results:
        setattr(report, result.status, getattr(report, result.status) + 1)
        if result.status in ("ok", "partial"):
            report.rows_written += len(result.rows)
    return report
