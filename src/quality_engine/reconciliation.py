"""
Order-level reconciliation of item totals against captured payment totals.
"""

import logging
from typing import Any, Iterable, List, Optional

import polars as pl
from opentelemetry import trace
from pydantic import BaseModel

from quality_engine.config import ReconciliationConfig
from quality_engine.errors import StructuralError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

RECON_COLUMNS = ["order_id", "items_total", "payments_total", "delta", "status_mismatch_flag"]


class ReconciliationRecord(BaseModel):
    """One reconciled order."""

    order_id: Any
    items_total: float
    payments_total: float
    delta: float
    status_mismatch_flag: bool

    model_config = {"frozen": True}


def require_columns(df: pl.DataFrame, columns: Iterable[str], table: str) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise StructuralError(table, f"missing required columns {missing}")


def with_empty_columns(df: pl.DataFrame, schema: dict) -> pl.DataFrame:
    """An empty source gets the columns it lacks so it joins like any other."""
    if df.height > 0:
        return df
    known = {name: dtype for name, dtype in df.schema.items() if dtype != pl.Null}
    return pl.DataFrame(schema={**schema, **known})


def _items_totals(order_items: pl.DataFrame) -> pl.DataFrame:
    return order_items.group_by("order_id").agg(
        (pl.col("quantity").cast(pl.Float64) * pl.col("unit_price").cast(pl.Float64))
        .sum()
        .alias("items_total")
    )


def _payments_totals(payments: pl.DataFrame, config: ReconciliationConfig) -> pl.DataFrame:
    captured = payments.filter(
        pl.col(config.status_field).cast(pl.Utf8).str.strip_chars().str.to_lowercase()
        == config.captured_status.lower()
    )
    return captured.group_by("order_id").agg(
        pl.col("amount").cast(pl.Float64).sum().alias("payments_total")
    )


def reconcile(
    order_items: pl.DataFrame,
    payments: pl.DataFrame,
    tolerance: Optional[float] = None,
    config: Optional[ReconciliationConfig] = None,
) -> pl.DataFrame:
    """
    Full outer join of per-order item totals and captured payment totals.

    Args:
        order_items: Gold order items (order_id, quantity, unit_price)
        payments: Gold payments (order_id, amount, status column)
        tolerance: Absolute delta tolerated before flagging; overrides config
        config: Reconciliation settings

    Returns:
        DataFrame with one row per order_id found in either source, sorted by
        order_id: items_total, payments_total, delta, status_mismatch_flag
    """
    config = config or ReconciliationConfig()
    order_items = with_empty_columns(
        order_items, {"order_id": pl.Utf8, "quantity": pl.Int64, "unit_price": pl.Float64}
    )
    payments = with_empty_columns(
        payments, {"order_id": pl.Utf8, "amount": pl.Float64, config.status_field: pl.Utf8}
    )
    if tolerance is None:
        tolerance = config.tolerance
    if tolerance < 0:
        raise ValueError("tolerance must be >= 0")

    require_columns(order_items, ["order_id", "quantity", "unit_price"], "order_items")
    require_columns(payments, ["order_id", "amount", config.status_field], "payments")

    with tracer.start_as_current_span(
        "reconcile",
        attributes={"item_rows": order_items.height, "payment_rows": payments.height},
    ) as span:
        items = _items_totals(order_items)
        paid = _payments_totals(payments, config)

        key_dtype = items.schema["order_id"]
        if paid.schema["order_id"] != key_dtype:
            if key_dtype == pl.Null:
                items = items.with_columns(pl.col("order_id").cast(paid.schema["order_id"]))
            else:
                paid = paid.with_columns(pl.col("order_id").cast(key_dtype, strict=False))

        decimals = config.amount_decimals
        recon = (
            items.join(paid, on="order_id", how="full", coalesce=True)
            .with_columns(
                pl.col("items_total").fill_null(0.0).round(decimals),
                pl.col("payments_total").fill_null(0.0).round(decimals),
            )
            .with_columns(
                (pl.col("payments_total") - pl.col("items_total")).round(decimals).alias("delta")
            )
            .with_columns((pl.col("delta").abs() > tolerance).alias("status_mismatch_flag"))
            .select(RECON_COLUMNS)
            .sort("order_id", nulls_last=True)
        )

        mismatches = int(recon["status_mismatch_flag"].sum())
        span.set_attribute("orders", recon.height)
        span.set_attribute("mismatches", mismatches)
        logger.info("Reconciled %d orders, %d mismatched", recon.height, mismatches)
        return recon


def to_records(recon: pl.DataFrame) -> List[ReconciliationRecord]:
    return [ReconciliationRecord(**row) for row in recon.iter_rows(named=True)]
