"""Health check utilities for system monitoring.

Provides functions to check the health of various system components.
"""

from pathlib import Path
from typing import Any

from lanepost.utils.bigquery_client import cities_table_id, get_bigquery_client
from lanepost.utils.config import settings


def check_bigquery_connection() -> dict[str, Any]:
    """Check that BigQuery is reachable and the cities table exists.

    Returns:
        Dict with status, message, and optional error details
    """
    try:
        client = get_bigquery_client()

        query_job = client.query(f"SELECT COUNT(*) AS city_count FROM `{cities_table_id()}`")
        result = list(query_job.result())

        if result:
            return {
                "status": "healthy",
                "message": "BigQuery connection successful",
                "project_id": settings.bigquery_project_id,
                "dataset": settings.bigquery_dataset,
                "city_count": result[0].city_count
            }
        else:
            return {
                "status": "unhealthy",
                "message": "BigQuery query returned unexpected result"
            }

    except Exception as e:
        return {
            "status": "unhealthy",
            "message": f"BigQuery connection failed: {type(e).__name__}",
            "error": str(e)
        }


def check_city_catalog() -> dict[str, Any]:
    """Check that the CSV catalog for the in-memory backend is present."""
    path = Path(settings.city_catalog_path)
    if not path.is_file():
        return {
            "status": "unhealthy",
            "message": f"City catalog not found: {path}"
        }
    with open(path, encoding="utf-8") as f:
        # Minus header
        city_count = max(sum(1 for _ in f) - 1, 0)
    return {
        "status": "healthy" if city_count else "unhealthy",
        "message": "City catalog present" if city_count else "City catalog is empty",
        "path": str(path),
        "city_count": city_count
    }


def check_configuration() -> dict[str, Any]:
    """Check if required configuration is present.

    Returns:
        Dict with status and configuration details
    """
    issues = []

    if settings.city_index_backend == "bigquery" and not settings.bigquery_project_id:
        issues.append("BIGQUERY_PROJECT_ID not set (required when city_index_backend=bigquery)")

    if not settings.use_mock_api and not settings.serper_api_key:
        issues.append("SERPER_API_KEY not set (required when use_mock_api=False)")

    if settings.tiebreak_mode == "delegated" and not settings.tiebreak_api_key:
        issues.append("TIEBREAK_API_KEY not set (required when tiebreak_mode=delegated)")

    if settings.search_start_radius_miles > settings.search_radius_ceiling_miles:
        issues.append("SEARCH_START_RADIUS_MILES exceeds SEARCH_RADIUS_CEILING_MILES")

    if settings.csv_max_rows_per_file < 1:
        issues.append("CSV_MAX_ROWS_PER_FILE must be at least 1")

    if issues:
        return {
            "status": "unhealthy",
            "message": "Configuration issues detected",
            "issues": issues
        }
    else:
        return {
            "status": "healthy",
            "message": "All required configuration present",
            "city_index_backend": settings.city_index_backend,
            "use_mock_api": settings.use_mock_api,
            "tiebreak_mode": settings.tiebreak_mode
        }


def get_system_health() -> dict[str, Any]:
    """Get overall system health status.

    Returns:
        Dict with overall status and component health checks
    """
    components = {"configuration": check_configuration()}
    if settings.city_index_backend == "bigquery":
        components["bigquery"] = check_bigquery_connection()
    else:
        components["city_catalog"] = check_city_catalog()

    overall_healthy = all(c["status"] == "healthy" for c in components.values())

    return {
        "status": "healthy" if overall_healthy else "unhealthy",
        "timestamp": None,  # Set by caller if needed
        "components": components
    }
