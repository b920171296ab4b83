"""Posting rows to size-limited DAT CSV parts."""

import csv
import io
from pathlib import Path
from typing import Sequence

from lanepost.models.schemas import DAT_HEADERS, PostingRow
from lanepost.utils.config import settings
from lanepost.utils.run_logger import get_logger


def chunk_rows(rows: Sequence[PostingRow], max_rows: int | None = None) -> list[list[PostingRow]]:
    """Split rows into ordered chunks of at most max_rows."""
    max_rows = max_rows or settings.csv_max_rows_per_file
    if max_rows < 1:
        raise ValueError("max_rows must be at least 1")
    return [list(rows[i:i + max_rows]) for i in range(0, len(rows), max_rows)]


def chunk_lane_rows(
    lane_rows: Sequence[Sequence[PostingRow]], max_rows: int | None = None
) -> list[list[PostingRow]]:
    """Chunk rows grouped per lane, keeping a lane in one part when it fits.

    A lane that does not fit in the current part starts a new one. A lane
    larger than max_rows is split across parts. Overall row order is kept.
    """
    max_rows = max_rows or settings.csv_max_rows_per_file
    if max_rows < 1:
        raise ValueError("max_rows must be at least 1")

    chunks: list[list[PostingRow]] = []
    current: list[PostingRow] = []
    for rows in lane_rows:
        if not rows:
            continue
        if len(rows) <= max_rows:
            if len(current) + len(rows) > max_rows:
                chunks.append(current)
                current = []
            current.extend(rows)
            continue

        # Oversized lane: fill the open part, then spill
        for row in rows:
            if len(current) == max_rows:
                chunks.append(current)
                current = []
            current.append(row)

    if current:
        chunks.append(current)
    return chunks


def to_csv_text(rows: Sequence[PostingRow]) -> str:
    """Header plus rows, CRLF line endings, minimal quoting."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\r\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerow(DAT_HEADERS)
    for row in rows:
        writer.writerow(row.values())
    return buffer.getvalue()


def write_csv_parts(
    chunks: Sequence[Sequence[PostingRow]],
    output_dir: str | Path | None = None,
    prefix: str = "dat_postings",
) -> list[Path]:
    """Write one file per chunk: <prefix>_part01.csv, <prefix>_part02.csv, ..."""
    logger = get_logger()
    out = Path(output_dir or settings.output_dir)
    out.mkdir(parents=True, exist_ok=True)

    paths = []
    for index, chunk in enumerate(chunks, start=1):
        path = out / f"{prefix}_part{index:02d}.csv"
        # newline="" keeps the csv module's CRLF intact
        with open(path, "w", newline="", encoding="utf-8") as f:
            f.write(to_csv_text(chunk))
        paths.append(path)
        logger.info(f"Wrote {len(chunk)} rows to {path}")
    return paths
