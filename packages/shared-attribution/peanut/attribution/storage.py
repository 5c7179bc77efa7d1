"""Attribution storage in BigQuery.

Touches, conversions and attribution results live in tables of one
dataset. Result sets are replaced per (conversion, model) inside a
multi-statement transaction so readers never see a partial set. Each
replace also records an ``attribution_runs`` marker, so a computed but empty
result set is distinguishable from one never computed.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from google.api_core.exceptions import GoogleAPIError
from google.cloud import bigquery

from peanut.attribution.config import BigQueryStorageConfig
from peanut.attribution.exceptions import StorageError
from peanut.attribution.schema import (
    AttributionModel,
    AttributionResult,
    Conversion,
    DateRange,
    Touch,
    ensure_utc,
)

logger = logging.getLogger(__name__)

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS `{dataset}.touches` (
    id INT64 NOT NULL,
    visitor_id STRING NOT NULL,
    occurred_at TIMESTAMP NOT NULL,
    touch_type STRING,
    channel_group STRING,
    session_id STRING,
    utm_source STRING,
    utm_medium STRING,
    utm_campaign STRING,
    utm_content STRING,
    utm_term STRING,
    landing_page STRING,
    referrer STRING
);
CREATE TABLE IF NOT EXISTS `{dataset}.conversions` (
    id INT64 NOT NULL,
    visitor_id STRING NOT NULL,
    conversion_type STRING NOT NULL,
    value FLOAT64,
    occurred_at TIMESTAMP NOT NULL,
    source STRING,
    source_id STRING,
    customer_email STRING,
    customer_name STRING,
    metadata JSON
);
CREATE TABLE IF NOT EXISTS `{dataset}.attribution_results` (
    conversion_id INT64 NOT NULL,
    model STRING NOT NULL,
    touch_id INT64 NOT NULL,
    weight FLOAT64 NOT NULL,
    credited_value FLOAT64,
    calculated_at TIMESTAMP NOT NULL
);
CREATE TABLE IF NOT EXISTS `{dataset}.attribution_runs` (
    conversion_id INT64 NOT NULL,
    model STRING NOT NULL,
    calculated_at TIMESTAMP NOT NULL
);
"""

TOUCH_COLUMNS = (
    "id", "visitor_id", "occurred_at", "touch_type", "channel_group", "session_id",
    "utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term",
    "landing_page", "referrer",
)

_id_lock = threading.Lock()
_last_id = 0


def next_row_id() -> int:
    """Process-monotonic INT64 id; preserves insertion order for tie-breaks."""
    global _last_id
    with _id_lock:
        _last_id = max(_last_id + 1, time.time_ns())
        return _last_id


@contextmanager
def _bigquery_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except GoogleAPIError as e:
        raise StorageError(f"BigQuery {operation} failed: {e}") from e


class _BigQueryTable:
    """Shared client handling for the attribution tables."""

    table_name: str

    def __init__(
        self,
        config: BigQueryStorageConfig | None = None,
        client: bigquery.Client | None = None,
        client_source: _BigQueryTable | None = None,
    ):
        """
        Args:
            config: Project/dataset settings. Loaded from env if not provided.
            client: Optional BigQuery client. Will be created if not provided.
            client_source: Another table whose client should be reused.
        """
        self.config = config or BigQueryStorageConfig.from_env()
        self._client = client
        self._client_source = client_source

    @property
    def client(self) -> bigquery.Client:
        """Lazy-initialize BigQuery client."""
        if self._client is None:
            if self._client_source is not None:
                return self._client_source.client
            self._client = bigquery.Client(
                project=self.config.project_id,
                location=self.config.location,
            )
        return self._client

    @property
    def dataset_id(self) -> str:
        if self.config.project_id:
            return f"{self.config.project_id}.{self.config.dataset}"
        return self.config.dataset

    @property
    def table_id(self) -> str:
        return f"{self.dataset_id}.{self.table_name}"

    def _run(self, operation: str, sql: str, params: list[Any]) -> Any:
        job_config = bigquery.QueryJobConfig(query_parameters=params)
        with _bigquery_errors(operation):
            return self.client.query(sql, job_config=job_config).result()

    def _rows(self, operation: str, sql: str, params: list[Any]) -> list[dict[str, Any]]:
        return [dict(row.items()) for row in self._run(operation, sql, params)]


class BigQueryTouchStore(_BigQueryTable):
    """TouchStore backed by the ``touches`` table."""

    table_name = "touches"

    def append(self, touch: Touch) -> Touch:
        stored = Touch.from_dict({**touch.to_dict(), "id": next_row_id()})
        row = stored.to_dict()
        with _bigquery_errors("touch insert"):
            errors = self.client.insert_rows_json(self.table_id, [row])
        if errors:
            raise StorageError(f"Failed to insert touch: {errors}")
        return stored

    def get_visitor_touches(
        self,
        visitor_id: str,
        before_or_at: datetime | None = None,
        after_or_at: datetime | None = None,
    ) -> list[Touch]:
        sql = f"""
        SELECT {", ".join(TOUCH_COLUMNS)}
        FROM `{self.table_id}`
        WHERE visitor_id = @visitor_id
          AND (@before IS NULL OR occurred_at <= @before)
          AND (@after IS NULL OR occurred_at >= @after)
        ORDER BY occurred_at, id
        """
        params = [
            bigquery.ScalarQueryParameter("visitor_id", "STRING", visitor_id),
            bigquery.ScalarQueryParameter(
                "before", "TIMESTAMP", ensure_utc(before_or_at) if before_or_at else None
            ),
            bigquery.ScalarQueryParameter(
                "after", "TIMESTAMP", ensure_utc(after_or_at) if after_or_at else None
            ),
        ]
        return [Touch.from_dict(row) for row in self._rows("touch query", sql, params)]

    def get_many(self, touch_ids: list[int]) -> dict[int, Touch]:
        if not touch_ids:
            return {}
        sql = f"""
        SELECT {", ".join(TOUCH_COLUMNS)}
        FROM `{self.table_id}`
        WHERE id IN UNNEST(@ids)
        """
        params = [bigquery.ArrayQueryParameter("ids", "INT64", list(touch_ids))]
        touches = [Touch.from_dict(row) for row in self._rows("touch lookup", sql, params)]
        return {t.id: t for t in touches}

    def delete_older_than(self, cutoff: datetime) -> int:
        sql = f"DELETE FROM `{self.table_id}` WHERE occurred_at < @cutoff"
        params = [bigquery.ScalarQueryParameter("cutoff", "TIMESTAMP", ensure_utc(cutoff))]
        result = self._run("touch cleanup", sql, params)
        return result.num_dml_affected_rows or 0

    def count(self) -> int:
        rows = self._rows("touch count", f"SELECT COUNT(*) AS n FROM `{self.table_id}`", [])
        return int(rows[0]["n"]) if rows else 0


class BigQueryConversionStore(_BigQueryTable):
    """ConversionStore backed by the ``conversions`` table."""

    table_name = "conversions"

    def add(self, conversion: Conversion) -> Conversion:
        stored = Conversion.from_dict({**conversion.to_dict(), "id": next_row_id()})
        row = stored.to_dict()
        row["metadata"] = json.dumps(stored.metadata)
        with _bigquery_errors("conversion insert"):
            errors = self.client.insert_rows_json(self.table_id, [row])
        if errors:
            raise StorageError(f"Failed to insert conversion: {errors}")
        logger.info(f"Saved conversion: {stored.id}")
        return stored

    def get(self, conversion_id: int) -> Conversion | None:
        sql = f"SELECT * FROM `{self.table_id}` WHERE id = @id"
        params = [bigquery.ScalarQueryParameter("id", "INT64", conversion_id)]
        rows = self._rows("conversion query", sql, params)
        if not rows:
            return None
        return self._row_to_conversion(rows[0])

    def list_conversions(self, date_range: DateRange | None = None) -> list[Conversion]:
        date_range = date_range or DateRange.all_time()
        sql = f"""
        SELECT *
        FROM `{self.table_id}`
        WHERE (@start IS NULL OR occurred_at >= @start)
          AND (@end IS NULL OR occurred_at <= @end)
        ORDER BY occurred_at, id
        """
        params = [
            bigquery.ScalarQueryParameter("start", "TIMESTAMP", date_range.start),
            bigquery.ScalarQueryParameter("end", "TIMESTAMP", date_range.end),
        ]
        return [self._row_to_conversion(row) for row in self._rows("conversion list", sql, params)]

    def _row_to_conversion(self, row: dict[str, Any]) -> Conversion:
        """Convert a BigQuery row to Conversion.

        Raises:
            TypeError: If metadata has an unexpected type.
        """
        metadata = row.get("metadata")
        if isinstance(metadata, str):
            metadata = json.loads(metadata)
        elif metadata is None:
            metadata = {}
        elif not isinstance(metadata, dict):
            raise TypeError(
                f"Unexpected type for metadata: {type(metadata).__name__}. "
                f"Expected str, dict, or None."
            )
        return Conversion.from_dict({**row, "metadata": metadata})


class BigQueryAttributionResultStore(_BigQueryTable):
    """AttributionResultStore backed by the ``attribution_results`` table."""

    table_name = "attribution_results"

    @property
    def runs_table_id(self) -> str:
        return f"{self.dataset_id}.attribution_runs"

    def replace(
        self,
        conversion_id: int,
        model: AttributionModel,
        results: list[AttributionResult],
    ) -> None:
        statements = [
            "BEGIN TRANSACTION;",
            f"""DELETE FROM `{self.table_id}`
            WHERE conversion_id = @conversion_id AND model = @model;""",
            f"""DELETE FROM `{self.runs_table_id}`
            WHERE conversion_id = @conversion_id AND model = @model;""",
            f"""INSERT INTO `{self.runs_table_id}` (conversion_id, model, calculated_at)
            VALUES (@conversion_id, @model, @calculated_at);""",
        ]
        if results:
            statements.append(
                f"""INSERT INTO `{self.table_id}`
                (conversion_id, model, touch_id, weight, credited_value, calculated_at)
                SELECT @conversion_id, @model, touch_id, @weights[OFFSET(pos)],
                    IF(@has_value, @credited[OFFSET(pos)], NULL), @calculated_at
                FROM UNNEST(@touch_ids) AS touch_id WITH OFFSET AS pos;"""
            )
        statements.append("COMMIT TRANSACTION;")

        has_value = bool(results) and results[0].credited_value is not None
        params = [
            bigquery.ScalarQueryParameter("conversion_id", "INT64", conversion_id),
            bigquery.ScalarQueryParameter("model", "STRING", model.value),
            bigquery.ScalarQueryParameter("has_value", "BOOL", has_value),
            bigquery.ScalarQueryParameter("calculated_at", "TIMESTAMP", datetime.now(UTC)),
            bigquery.ArrayQueryParameter("touch_ids", "INT64", [r.touch_id for r in results]),
            bigquery.ArrayQueryParameter("weights", "FLOAT64", [r.weight for r in results]),
            bigquery.ArrayQueryParameter(
                "credited", "FLOAT64", [r.credited_value or 0.0 for r in results]
            ),
        ]
        self._run("result replace", "\n".join(statements), params)
        logger.info(f"Replaced {model.value} results for conversion {conversion_id}: {len(results)} rows")

    def get(self, conversion_id: int, model: AttributionModel) -> list[AttributionResult]:
        sql = f"""
        SELECT conversion_id, model, touch_id, weight, credited_value
        FROM `{self.table_id}`
        WHERE conversion_id = @conversion_id AND model = @model
        ORDER BY touch_id
        """
        params = [
            bigquery.ScalarQueryParameter("conversion_id", "INT64", conversion_id),
            bigquery.ScalarQueryParameter("model", "STRING", model.value),
        ]
        return [AttributionResult.from_dict(row) for row in self._rows("result query", sql, params)]

    def has(self, conversion_id: int, model: AttributionModel) -> bool:
        sql = f"""
        SELECT COUNT(*) AS n
        FROM `{self.runs_table_id}`
        WHERE conversion_id = @conversion_id AND model = @model
        """
        params = [
            bigquery.ScalarQueryParameter("conversion_id", "INT64", conversion_id),
            bigquery.ScalarQueryParameter("model", "STRING", model.value),
        ]
        rows = self._rows("result count", sql, params)
        return bool(rows) and int(rows[0]["n"]) > 0

    def computed_models(self, conversion_ids: list[int]) -> dict[int, set[AttributionModel]]:
        if not conversion_ids:
            return {}
        sql = f"""
        SELECT conversion_id, model
        FROM `{self.runs_table_id}`
        WHERE conversion_id IN UNNEST(@ids)
        """
        params = [bigquery.ArrayQueryParameter("ids", "INT64", list(conversion_ids))]
        computed: dict[int, set[AttributionModel]] = {}
        for row in self._rows("run lookup", sql, params):
            computed.setdefault(int(row["conversion_id"]), set()).add(AttributionModel.parse(row["model"]))
        return computed


class BigQueryAttributionStorage:
    """
    The three attribution stores over one dataset and client.

    Example:
        >>> storage = BigQueryAttributionStorage(BigQueryStorageConfig(project_id="my-project"))
        >>> storage.ensure_tables_exist()
        >>> calculator = AttributionCalculator(
        ...     storage.touches, storage.conversions, storage.results
        ... )
    """

    def __init__(
        self,
        config: BigQueryStorageConfig | None = None,
        client: bigquery.Client | None = None,
    ):
        self.config = config or BigQueryStorageConfig.from_env()
        self.touches = BigQueryTouchStore(self.config, client)
        # One lazily-created client shared by all three stores
        self.conversions = BigQueryConversionStore(self.config, client, client_source=self.touches)
        self.results = BigQueryAttributionResultStore(self.config, client, client_source=self.touches)

    def ensure_tables_exist(self) -> None:
        """Create the attribution tables if they don't exist."""
        sql = CREATE_TABLES_SQL.format(dataset=self.touches.dataset_id)
        with _bigquery_errors("table creation"):
            self.touches.client.query(sql).result()
        logger.info(f"Ensured attribution tables exist in {self.touches.dataset_id}")

