"""BigQuery client connection management.

Provides the cached client factory and thin query helpers used by the
BigQuery-backed city index and the health checks.
"""

import os
from functools import lru_cache

import google.auth
from google.cloud import bigquery
from google.oauth2 import service_account

from lanepost.utils.config import settings

BIGQUERY_SCOPES = ["https://www.googleapis.com/auth/bigquery"]

QueryParameter = (
    bigquery.ScalarQueryParameter
    | bigquery.ArrayQueryParameter
    | bigquery.StructQueryParameter
)


@lru_cache(maxsize=1)
def get_bigquery_client() -> bigquery.Client:
    """Get a configured BigQuery client instance.

    Cached so every lane worker shares one client and its connection pool.

    Authentication order:
    1. Application Default Credentials (GCE service account or
       `gcloud auth application-default login`)
    2. Explicit keyfile via GOOGLE_APPLICATION_CREDENTIALS

    Returns:
        bigquery.Client: Configured BigQuery client

    Raises:
        FileNotFoundError: If the credentials file doesn't exist
        ValueError: If ADC is the only option and it is not configured
    """
    credentials_path = settings.google_application_credentials

    if credentials_path is None or "application_default_credentials.json" in credentials_path:
        try:
            credentials, project = google.auth.default(scopes=BIGQUERY_SCOPES)
            project = settings.bigquery_project_id or project
            return bigquery.Client(credentials=credentials, project=project)
        except google.auth.exceptions.DefaultCredentialsError as e:
            if credentials_path is None:
                raise ValueError(
                    f"Failed to use Application Default Credentials: {e}. "
                    "Run `gcloud auth application-default login` or set GOOGLE_APPLICATION_CREDENTIALS."
                ) from e
            # Keyfile path was also given; try it below

    if not os.path.exists(credentials_path):
        raise FileNotFoundError(
            f"Google Cloud credentials file not found: {credentials_path}\n"
            f"Please ensure GOOGLE_APPLICATION_CREDENTIALS points to a valid service account key file."
        )

    credentials = service_account.Credentials.from_service_account_file(
        credentials_path,
        scopes=BIGQUERY_SCOPES
    )

    return bigquery.Client(
        credentials=credentials,
        project=settings.bigquery_project_id
    )


def cities_table_id() -> str:
    """Fully-qualified `project.dataset.table` id of the city catalog."""
    return f"{settings.bigquery_project_id}.{settings.bigquery_dataset}.{settings.bigquery_cities_table}"


def execute_query(
    query: str,
    parameters: list[QueryParameter] | None = None
) -> bigquery.table.RowIterator:
    """Execute a parameterized BigQuery query.

    Args:
        query: SQL query string
        parameters: Optional list of query parameters

    Returns:
        RowIterator: Query results iterator

    Raises:
        google.cloud.exceptions.GoogleCloudError: If query execution fails
    """
    client = get_bigquery_client()

    job_config = bigquery.QueryJobConfig()
    if parameters:
        job_config.query_parameters = parameters

    query_job = client.query(query, job_config=job_config)
    return query_job.result()


def execute_dml(
    query: str,
    parameters: list[QueryParameter] | None = None
) -> int:
    """Execute a DML statement (INSERT, UPDATE, DELETE, MERGE) and return rows affected.

    Raises:
        google.cloud.exceptions.GoogleCloudError: If execution fails
    """
    client = get_bigquery_client()

    job_config = bigquery.QueryJobConfig()
    if parameters:
        job_config.query_parameters = parameters

    query_job = client.query(query, job_config=job_config)
    query_job.result()

    return query_job.num_dml_affected_rows or 0
