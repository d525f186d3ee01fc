"""Tests for building frames from raw record lists."""

import polars as pl
import pytest

from quality_engine.errors import StructuralError
from quality_engine.frames import records_to_frame, settle_object_columns


def test_uniform_records_get_concrete_dtypes() -> None:
    """Test well-typed records build an ordinary frame."""
    df = records_to_frame("payments", [{"payment_id": 1, "amount": 9.5}, {"payment_id": 2, "amount": 3.0}])

    assert df.schema == {"payment_id": pl.Int64, "amount": pl.Float64}
    assert df.height == 2


def test_mixed_field_kept_as_raw_objects() -> None:
    """Test a mistyped field keeps each record's raw value."""
    df = records_to_frame("order_items", [{"quantity": 2}, {"quantity": "abc"}])

    assert df.schema["quantity"] == pl.Object
    assert [row["quantity"] for row in df.iter_rows(named=True)] == [2, "abc"]


def test_mixed_key_falls_back_to_text() -> None:
    """Test a mixed-type key column becomes strings instead of raw objects."""
    df = records_to_frame("orders", [{"order_id": 1}, {"order_id": "A-2"}], text_columns=("order_id",))

    assert df.schema["order_id"] == pl.Utf8
    assert df["order_id"].to_list() == ["1", "A-2"]


def test_sparse_records_fill_missing_fields() -> None:
    """Test a field absent from some records is null there."""
    df = records_to_frame("customers", [{"customer_id": 1}, {"customer_id": 2, "email": "b@shop.com"}])

    assert df.columns == ["customer_id", "email"]
    assert df["email"].to_list() == [None, "b@shop.com"]


def test_non_mapping_records_raise_structural_error() -> None:
    with pytest.raises(StructuralError):
        records_to_frame("payments", [1, 2])


def test_settle_restores_uniform_values() -> None:
    """Test an object column whose remaining values agree gets their dtype back."""
    df = pl.DataFrame([pl.Series("quantity", [2, 3], dtype=pl.Object)])

    assert settle_object_columns(df).schema["quantity"] == pl.Int64


def test_settle_renders_mixed_values_as_text() -> None:
    df = pl.DataFrame([pl.Series("quantity", [2, "abc", None], dtype=pl.Object)])

    assert settle_object_columns(df)["quantity"].to_list() == ["2", "abc", None]
