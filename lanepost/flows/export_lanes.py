"""Export flow: build posting rows for a batch of lanes and write DAT CSV parts.

Lanes run as Prefect tasks on a thread pool, scheduled in waves of
PROCESSOR_MAX_WORKERS. Cancellation stops new waves; lanes already running
finish and everything unscheduled is reported as cancelled.

Usage:
    # Export lanes from a file
    python -m lanepost.flows.export_lanes lanes.json

    # Or call from Python
    from lanepost.flows.export_lanes import export_lane_postings
    report = export_lane_postings(lanes)
"""

import sys
import threading
from datetime import datetime, timezone

from prefect import flow, unmapped
from prefect.task_runners import ThreadPoolTaskRunner

from lanepost.models.schemas import BatchReport, LaneRequest, LaneResult
from lanepost.operations.batch_ops import (
    CancellationToken,
    cancelled_result,
    load_lane_records,
    parse_lane_records,
    plan_waves,
    summarize_lane_results,
)
from lanepost.operations.csv_ops import chunk_lane_rows, write_csv_parts
from lanepost.operations.lane_ops import LaneEngine
from lanepost.operations.row_ops import ReferenceIdGenerator
from lanepost.tasks.lane_tasks import build_lane_postings_task
from lanepost.utils.config import settings
from lanepost.utils.run_logger import get_logger

_active_tokens: list[CancellationToken] = []
_tokens_lock = threading.Lock()


def request_cancellation() -> int:
    """Cancel every export currently running in this process.

    Returns:
        Number of exports signalled
    """
    with _tokens_lock:
        for token in _active_tokens:
            token.cancel()
        return len(_active_tokens)


@flow(
    name="export-lane-postings",
    task_runner=ThreadPoolTaskRunner(max_workers=settings.processor_max_workers),
    validate_parameters=False,
)
def export_lane_postings(
    lanes: list[LaneRequest],
    engine: LaneEngine | None = None,
    output_dir: str | None = None,
    prefix: str = "dat_postings",
    cancel_token: CancellationToken | None = None,
    rejected: list[LaneResult] | None = None,
    wave_size: int | None = None,
) -> BatchReport:
    """Process every lane and write the accepted rows as CSV parts.

    Args:
        lanes: Validated lane requests
        engine: Shared LaneEngine (built from settings when omitted)
        output_dir: Where CSV parts go (defaults to settings.output_dir)
        prefix: CSV part file name prefix
        cancel_token: External cancel flag; request_cancellation() also works
        rejected: Lane records that failed validation, carried into the report
        wave_size: Lanes per wave (defaults to settings.processor_max_workers)

    Returns:
        BatchReport with per-lane results and written file paths
    """
    logger = get_logger()
    start_time = datetime.now(timezone.utc)

    engine = engine or LaneEngine.from_settings()
    token = cancel_token or CancellationToken()
    reference_ids = ReferenceIdGenerator()
    results: list[LaneResult] = list(rejected or [])

    with _tokens_lock:
        _active_tokens.append(token)

    try:
        waves = plan_waves(lanes, wave_size or settings.processor_max_workers)
        logger.info(f"Exporting {len(lanes)} lanes in {len(waves)} wave(s)")

        for wave_number, wave in enumerate(waves, start=1):
            if token.cancelled:
                unscheduled = [lane for pending in waves[wave_number - 1:] for lane in pending]
                logger.warning(f"Export cancelled - {len(unscheduled)} lanes not scheduled")
                results.extend(cancelled_result(lane) for lane in unscheduled)
                break

            logger.info(f"Wave {wave_number}/{len(waves)}: {len(wave)} lanes")
            futures = build_lane_postings_task.map(
                lane=wave,
                engine=unmapped(engine),
                reference_ids=unmapped(reference_ids)
            )
            results.extend(futures.result())
    finally:
        with _tokens_lock:
            _active_tokens.remove(token)

    lane_rows = [r.rows for r in results if r.status in ("ok", "partial")]
    chunks = chunk_lane_rows(lane_rows, settings.csv_max_rows_per_file)
    files = write_csv_parts(chunks, output_dir, prefix) if chunks else []

    report = summarize_lane_results(results, files)
    runtime_seconds = (datetime.now(timezone.utc) - start_time).total_seconds()

    logger.info("=" * 60)
    logger.info("LANE EXPORT COMPLETE")
    logger.info("=" * 60)
    logger.info(f"Lanes: {report.lanes_total} (ok {report.ok}, partial {report.partial}, "
                f"failed {report.failed}, cancelled {report.cancelled})")
    logger.info(f"Rows written: {report.rows_written} in {len(report.files)} file(s)")
    logger.info(f"Runtime: {runtime_seconds:.1f} seconds")

    return report


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python -m lanepost.flows.export_lanes <lanes.json|lanes.csv>")
        sys.exit(1)

    lanes, rejected = parse_lane_records(load_lane_records(sys.argv[1]))
    report = export_lane_postings(lanes, rejected=rejected)

    print("\n" + "=" * 60)
    print("EXPORT COMPLETE")
    print("=" * 60)
    print(f"Lanes: {report.lanes_total}")
    print(f"Rows written: {report.rows_written}")
    for path in report.files:
        print(f"  {path}")
