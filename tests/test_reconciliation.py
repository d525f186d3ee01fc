"""Tests for order-level reconciliation."""

import polars as pl
import pytest

from quality_engine.config import ReconciliationConfig
from quality_engine.errors import StructuralError
from quality_engine.reconciliation import reconcile, to_records

ITEM_SCHEMA = {"order_id": pl.Int64, "quantity": pl.Int64, "unit_price": pl.Float64}
PAYMENT_SCHEMA = {"order_id": pl.Int64, "amount": pl.Float64, "payment_status": pl.Utf8}


def items(rows: list) -> pl.DataFrame:
    if not rows:
        return pl.DataFrame(schema=ITEM_SCHEMA)
    return pl.DataFrame(rows, schema=ITEM_SCHEMA, orient="row")


def payments(rows: list) -> pl.DataFrame:
    if not rows:
        return pl.DataFrame(schema=PAYMENT_SCHEMA)
    return pl.DataFrame(rows, schema=PAYMENT_SCHEMA, orient="row")


def by_order(recon: pl.DataFrame) -> dict:
    return {row["order_id"]: row for row in recon.iter_rows(named=True)}


def test_matching_totals() -> None:
    """Test items of 100.00 against a captured payment of 100.00."""
    recon = reconcile(
        items([(1, 2, 25.0), (1, 1, 50.0)]),
        payments([(1, 100.0, "captured")]),
        tolerance=0.01,
    )
    row = by_order(recon)[1]

    assert row["items_total"] == pytest.approx(100.0)
    assert row["payments_total"] == pytest.approx(100.0)
    assert row["delta"] == 0
    assert row["status_mismatch_flag"] is False


def test_short_payment_is_mismatch() -> None:
    """Test items of 100.00 against a payment of 80.00."""
    recon = reconcile(items([(1, 1, 100.0)]), payments([(1, 80.0, "captured")]), tolerance=0.01)
    row = by_order(recon)[1]

    assert row["delta"] == pytest.approx(-20.0)
    assert row["status_mismatch_flag"] is True


def test_order_only_in_items() -> None:
    """Test a missing payment side defaults to 0 and mismatches."""
    recon = reconcile(items([(7, 3, 10.0)]), payments([(8, 5.0, "captured")]), tolerance=0.01)
    rows = by_order(recon)

    assert set(rows) == {7, 8}
    assert rows[7]["payments_total"] == 0
    assert rows[7]["delta"] == pytest.approx(-30.0)
    assert rows[7]["status_mismatch_flag"] is True
    assert rows[8]["items_total"] == 0
    assert rows[8]["status_mismatch_flag"] is True


def test_zero_totals_on_both_sides_do_not_mismatch() -> None:
    """Test a zero-value order with no payment is not flagged."""
    recon = reconcile(items([(3, 0, 12.0)]), payments([]), tolerance=0.01)

    assert by_order(recon)[3]["status_mismatch_flag"] is False


def test_only_captured_payments_count() -> None:
    """Test pending or failed payments are ignored, status compared case-insensitively."""
    recon = reconcile(
        items([(1, 1, 40.0)]),
        payments([(1, 40.0, "Captured"), (1, 40.0, "pending"), (1, 40.0, "failed")]),
    )

    assert by_order(recon)[1]["payments_total"] == pytest.approx(40.0)
    assert by_order(recon)[1]["status_mismatch_flag"] is False


def test_rounding_within_tolerance() -> None:
    """Test float noise does not produce a mismatch."""
    recon = reconcile(
        items([(1, 3, 0.1)]),
        payments([(1, 0.1, "captured"), (1, 0.2, "captured")]),
        tolerance=0.01,
    )

    assert by_order(recon)[1]["status_mismatch_flag"] is False


def test_tolerance_from_config() -> None:
    """Test the configured tolerance applies when none is passed."""
    config = ReconciliationConfig(tolerance=5.0)
    recon = reconcile(items([(1, 1, 100.0)]), payments([(1, 97.0, "captured")]), config=config)

    assert by_order(recon)[1]["status_mismatch_flag"] is False


def test_custom_status_field() -> None:
    """Test a differently named capture status column."""
    config = ReconciliationConfig(status_field="state", captured_status="settled")
    pays = pl.DataFrame({"order_id": [1], "amount": [10.0], "state": ["SETTLED"]})
    recon = reconcile(items([(1, 1, 10.0)]), pays, config=config)

    assert by_order(recon)[1]["status_mismatch_flag"] is False


def test_one_row_per_order_sorted() -> None:
    """Test output has one row per order_id from either source, sorted."""
    recon = reconcile(
        items([(3, 1, 1.0), (1, 1, 1.0), (3, 1, 1.0)]),
        payments([(2, 1.0, "captured"), (1, 1.0, "captured")]),
    )

    assert recon["order_id"].to_list() == [1, 2, 3]
    assert recon.columns == [
        "order_id", "items_total", "payments_total", "delta", "status_mismatch_flag",
    ]


def test_empty_sources() -> None:
    """Test empty inputs give an empty reconciliation."""
    recon = reconcile(items([]), payments([]))
    assert recon.height == 0


def test_empty_source_without_columns() -> None:
    """Test an empty source lacking columns joins as if typed."""
    recon = reconcile(items([(1, 1, 10.0)]), pl.DataFrame(schema={"payment_id": pl.Int64}))

    assert by_order(recon)[1]["payments_total"] == 0


def test_missing_columns_are_structural() -> None:
    """Test non-empty inputs without required columns are rejected."""
    with pytest.raises(StructuralError):
        reconcile(pl.DataFrame({"order_id": [1], "quantity": [1]}), payments([]))


def test_negative_tolerance_rejected() -> None:
    """Test tolerance must be non-negative."""
    with pytest.raises(ValueError):
        reconcile(items([]), payments([]), tolerance=-1)


def test_to_records() -> None:
    """Test conversion to ReconciliationRecord models."""
    records = to_records(reconcile(items([(1, 1, 5.0)]), payments([(1, 5.0, "captured")])))

    assert len(records) == 1
    assert records[0].order_id == 1
    assert records[0].status_mismatch_flag is False
