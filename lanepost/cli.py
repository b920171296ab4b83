"""Command-line interface for lanepost.

Provides CLI commands for exporting lane postings and checking health.
"""

import argparse
import json
import signal
import sys
from datetime import datetime, timezone

from lanepost.flows.export_lanes import export_lane_postings, request_cancellation
from lanepost.operations.batch_ops import load_lane_records, parse_lane_records
from lanepost.utils.health import get_system_health


def _report_summary(report) -> dict:
    return {
        "lanes_total": report.lanes_total,
        "ok": report.ok,
        "partial": report.partial,
        "failed": report.failed,
        "cancelled": report.cancelled,
        "rows_written": report.rows_written,
        "files": report.files,
        "lanes": [
            {
                "lane_id": r.lane_id,
                "status": r.status,
                "pairs": len(r.pairs),
                "rows": len(r.rows),
                "shortfall_reason": r.shortfall_reason,
                "error_type": r.error_type,
                "error": r.error,
            }
            for r in report.results
        ],
    }


def export_cli():
    """CLI entry point for exporting DAT posting CSVs.

    Usage:
        lanepost-export lanes.json --output-dir exports --prefix weekly
    """
    parser = argparse.ArgumentParser(
        description="Build diversified DAT postings for a batch of lanes",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument(
        "lanes_file",
        help="Lane records as a JSON list or flat CSV"
    )
    parser.add_argument(
        "--output-dir",
        default=None,
        help="Directory for CSV parts (defaults to OUTPUT_DIR)"
    )
    parser.add_argument(
        "--prefix",
        default="dat_postings",
        help="CSV part file name prefix"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the export summary as JSON"
    )

    args = parser.parse_args()

    try:
        records = load_lane_records(args.lanes_file)
    except (OSError, ValueError) as e:
        print(f"Error reading lanes: {e}", file=sys.stderr)
        return 1

    lanes, rejected = parse_lane_records(records)

    def _on_interrupt(signum, frame):
        # Second Ctrl+C aborts immediately
        signal.signal(signal.SIGINT, signal.default_int_handler)
        request_cancellation()
        print("\nCancellation requested - finishing lanes already running...", file=sys.stderr)

    previous_handler = signal.signal(signal.SIGINT, _on_interrupt)

    if not args.json:
        print(f"\nExporting {len(lanes)} lanes ({len(rejected)} rejected at validation)")
        print("Press Ctrl+C to stop after the current wave.\n")

    try:
        report = export_lane_postings(
            lanes,
            output_dir=args.output_dir,
            prefix=args.prefix,
            rejected=rejected
        )
    except KeyboardInterrupt:
        print("\n\nExport aborted.", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"\nError during export: {e}", file=sys.stderr)
        return 1
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if args.json:
        print(json.dumps(_report_summary(report), indent=2))
    else:
        print("=" * 60)
        print("EXPORT COMPLETE")
        print("=" * 60)
        print(f"Lanes: {report.lanes_total}")
        print(f"  ok: {report.ok}  partial: {report.partial}  "
              f"failed: {report.failed}  cancelled: {report.cancelled}")
        print(f"Rows written: {report.rows_written}")
        for path in report.files:
            print(f"  {path}")

        problems = [r for r in report.results if r.status in ("partial", "failed")]
        if problems:
            print("\n" + "-" * 60)
            print("LANES NEEDING ATTENTION")
            print("-" * 60)
            for r in problems:
                detail = r.error or r.shortfall_reason
                print(f"  {r.lane_id}: {r.status} - {detail}")
        print()

    return 0 if report.failed == 0 and report.cancelled == 0 else 1


def health_check_cli():
    """CLI entry point for system health check.

    Usage:
        lanepost-health-check [--json]
    """
    parser = argparse.ArgumentParser(
        description="Check system health and configuration",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Output health status as JSON"
    )

    args = parser.parse_args()

    try:
        health = get_system_health()
        health["timestamp"] = datetime.now(timezone.utc).isoformat()

        if args.json:
            print(json.dumps(health, indent=2))
        else:
            print("\n" + "=" * 60)
            print("SYSTEM HEALTH CHECK")
            print("=" * 60)

            status_emoji = "✅" if health["status"] == "healthy" else "❌"
            print(f"\nOverall Status: {status_emoji} {health['status'].upper()}")
            print(f"Timestamp: {health['timestamp']}")

            print("\n" + "-" * 60)
            print("COMPONENT HEALTH")
            print("-" * 60)

            for component_name, component in health["components"].items():
                status_emoji = "✅" if component["status"] == "healthy" else "❌"
                print(f"\n{component_name.upper()}: {status_emoji} {component['status']}")
                print(f"  Message: {component['message']}")

                for issue in component.get("issues", []):
                    print(f"    - {issue}")

                if "error" in component:
                    print(f"  Error: {component['error']}")

                for key, value in component.items():
                    if key not in ["status", "message", "issues", "error"]:
                        print(f"  {key}: {value}")

            print()

        return 0 if health["status"] == "healthy" else 1

    except Exception as e:
        print(f"\nError running health check: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "export":
        sys.argv.pop(1)
        sys.exit(export_cli())
    elif len(sys.argv) > 1 and sys.argv[1] == "health":
        sys.argv.pop(1)
        sys.exit(health_check_cli())
    else:
        print("Usage: python -m lanepost.cli {export|health} ...")
        sys.exit(1)
