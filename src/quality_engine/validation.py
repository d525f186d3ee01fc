"""
Pandera data contracts for the output tables consumed by dashboards.
"""

from typing import Any, Dict, Optional

import pandera.polars as pa
import polars as pl
from opentelemetry import trace
from pydantic import BaseModel, Field

from quality_engine.config import DAILY_METRICS_TABLE, RECON_TABLE, SCORES_TABLE

tracer = trace.get_tracer(__name__)


class DataContract(BaseModel):
    """Pandera-compatible data contract definition."""

    columns: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict, description="Column schemas with constraints"
    )
    strict: bool = Field(False, description="Whether to reject columns not listed")
    coerce: bool = Field(False, description="Whether to coerce types")


OUTPUT_CONTRACTS: Dict[str, DataContract] = {
    RECON_TABLE: DataContract(
        columns={
            "order_id": {"nullable": False},
            "items_total": {"dtype": pl.Float64, "nullable": False},
            "payments_total": {"dtype": pl.Float64, "nullable": False},
            "delta": {"dtype": pl.Float64, "nullable": False},
            "status_mismatch_flag": {"dtype": pl.Boolean, "nullable": False},
        }
    ),
    DAILY_METRICS_TABLE: DataContract(
        columns={
            "date": {"dtype": pl.Date, "nullable": False},
            "metric_name": {"dtype": pl.Utf8, "nullable": False},
            "value": {"dtype": pl.Float64, "nullable": True},
            "rolling_mean_14d": {"dtype": pl.Float64, "nullable": True},
            "rolling_stddev_14d": {"dtype": pl.Float64, "nullable": True},
            "anomaly_flag": {"dtype": pl.Boolean, "nullable": False},
        }
    ),
    SCORES_TABLE: DataContract(
        columns={
            "entity": {"dtype": pl.Utf8, "nullable": False},
            "issues": {"dtype": pl.Int64, "nullable": False, "min": 0},
            "total": {"dtype": pl.Int64, "nullable": False, "min": 0},
            "issue_rate": {"dtype": pl.Float64, "nullable": False, "min": 0, "max": 1},
            "dq_score": {"dtype": pl.Float64, "nullable": False, "min": 0, "max": 1},
        }
    ),
}


class SchemaValidator:
    """
    Validates Polars DataFrames against Pandera schemas.
    Enforces the contracts of the published output tables.
    """

    @staticmethod
    def create_schema_from_contract(contract: DataContract) -> pa.DataFrameSchema:
        """
        Create a Pandera schema from a DataContract configuration.

        Args:
            contract: DataContract with column definitions

        Returns:
            Pandera DataFrameSchema
        """
        columns: Dict[str, pa.Column] = {}

        for col_name, col_spec in contract.columns.items():
            dtype = col_spec.get("dtype")
            nullable = col_spec.get("nullable", True)
            checks = []

            if "min" in col_spec:
                checks.append(pa.Check.greater_than_or_equal_to(col_spec["min"]))
            if "max" in col_spec:
                checks.append(pa.Check.less_than_or_equal_to(col_spec["max"]))

            columns[col_name] = pa.Column(dtype, nullable=nullable, checks=checks)

        return pa.DataFrameSchema(columns=columns, strict=contract.strict, coerce=contract.coerce)

    @staticmethod
    def validate(
        df: pl.DataFrame, contract: Optional[DataContract], contract_name: str = "data"
    ) -> pl.DataFrame:
        """
        Validate a DataFrame against a contract.

        Raises:
            pandera.errors.SchemaError: If validation fails
        """
        if contract is None:
            return df

        with tracer.start_as_current_span(
            "schema.validate",
            attributes={"contract": contract_name, "rows": len(df), "columns": len(df.columns)},
        ):
            schema = SchemaValidator.create_schema_from_contract(contract)
            return schema.validate(df)

    @classmethod
    def validate_output(cls, table_name: str, df: pl.DataFrame) -> pl.DataFrame:
        """Validate a published table if it has a registered contract."""
        return cls.validate(df, OUTPUT_CONTRACTS.get(table_name), table_name)
