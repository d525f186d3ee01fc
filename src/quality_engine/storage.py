"""
DuckDB storage layer for staging inputs and published output tables.
"""

import logging
from pathlib import Path
from typing import Mapping, Optional, Union

import duckdb
import polars as pl
from opentelemetry import trace

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class DuckDBStorage:
    """
    DuckDB storage backend for the quality engine.
    Holds staging tables read at refresh time and the tables dashboards query.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        """
        Initialize DuckDB storage.

        Args:
            db_path: Path to DuckDB file. If None, uses in-memory database.
        """
        self.db_path = str(db_path) if db_path else ":memory:"
        self.connection: Optional[duckdb.DuckDBPyConnection] = None

    def __enter__(self) -> "DuckDBStorage":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore
        self.close()

    def connect(self) -> None:
        with tracer.start_as_current_span("duckdb.connect"):
            self.connection = duckdb.connect(self.db_path)

    def close(self) -> None:
        if self.connection:
            with tracer.start_as_current_span("duckdb.close"):
                self.connection.close()
                self.connection = None

    def _require_connection(self) -> duckdb.DuckDBPyConnection:
        if not self.connection:
            raise RuntimeError("Not connected to database. Call connect() first.")
        return self.connection

    def save_dataframe(self, df: pl.DataFrame, table_name: str) -> None:
        """
        Save a Polars DataFrame to DuckDB, replacing any existing table.

        Args:
            df: Polars DataFrame to save
            table_name: Name of the table
        """
        connection = self._require_connection()
        with tracer.start_as_current_span(
            "duckdb.save_dataframe", attributes={"table_name": table_name, "rows": len(df)}
        ):
            arrow_table = df.to_arrow()
            connection.execute(f"CREATE OR REPLACE TABLE {table_name} AS SELECT * FROM arrow_table")

    def publish(self, tables: Mapping[str, pl.DataFrame]) -> None:
        """
        Replace a set of tables inside one transaction.

        Readers on other connections see either every table of the previous
        refresh or every table of this one.

        Args:
            tables: Mapping of table name to DataFrame
        """
        connection = self._require_connection()
        with tracer.start_as_current_span("duckdb.publish", attributes={"tables": len(tables)}):
            connection.execute("BEGIN TRANSACTION")
            try:
                for table_name, df in tables.items():
                    arrow_table = df.to_arrow()
                    connection.execute(
                        f"CREATE OR REPLACE TABLE {table_name} AS SELECT * FROM arrow_table"
                    )
            except Exception:
                connection.execute("ROLLBACK")
                logger.error("Publishing %d tables failed, rolled back", len(tables))
                raise
            connection.execute("COMMIT")
            logger.info("Published %d tables", len(tables))

    def load_dataframe(self, table_name: str, limit: Optional[int] = None) -> pl.DataFrame:
        """
        Load a table as a Polars DataFrame.

        Args:
            table_name: Name of the table to load
            limit: Optional row limit

        Returns:
            Polars DataFrame
        """
        connection = self._require_connection()
        with tracer.start_as_current_span(
            "duckdb.load_dataframe", attributes={"table_name": table_name}
        ):
            query = f"SELECT * FROM {table_name}"
            if limit:
                query += f" LIMIT {limit}"

            arrow_table = connection.execute(query).fetch_arrow_table()
            return pl.from_arrow(arrow_table)

    def query(self, sql: str) -> pl.DataFrame:
        connection = self._require_connection()
        with tracer.start_as_current_span("duckdb.query"):
            arrow_table = connection.execute(sql).fetch_arrow_table()
            return pl.from_arrow(arrow_table)

    def list_tables(self) -> list[str]:
        connection = self._require_connection()
        result = connection.execute(
            "SELECT table_name FROM information_schema.tables WHERE table_schema = 'main'"
        ).fetchall()
        return [row[0] for row in result]

    def has_table(self, table_name: str) -> bool:
        return table_name in self.list_tables()
