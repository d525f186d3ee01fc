"""Shared fixtures: a small, internally consistent set of transactional tables."""

from datetime import date, datetime

import polars as pl
import pytest

from quality_engine import EntityType


@pytest.fixture
def customers_df() -> pl.DataFrame:
    return pl.DataFrame(
        {
            "customer_id": [1, 2, 3, 4],
            "email": ["a@shop.com", "b@shop.com", None, "d@shop.com"],
            "state": ["CA", "NY", "TX", "ZZ"],
            "signup_date": [date(2024, 1, 1)] * 4,
        }
    )


@pytest.fixture
def products_df() -> pl.DataFrame:
    return pl.DataFrame({"product_id": [10, 11], "name": ["Mug", "Lamp"]})


@pytest.fixture
def orders_df() -> pl.DataFrame:
    return pl.DataFrame(
        {
            "order_id": [100, 101, 102, 103],
            "customer_id": [1, 2, 3, 1],
            "order_datetime": [
                datetime(2024, 2, 1, 9, 30),
                datetime(2024, 2, 2, 0, 0),
                datetime(2024, 2, 3, 12, 0),
                datetime(2023, 12, 1, 8, 0),
            ],
        }
    )


@pytest.fixture
def order_items_df() -> pl.DataFrame:
    return pl.DataFrame(
        {
            "order_item_id": [1, 2, 3, 4],
            "order_id": [100, 100, 101, 101],
            "product_id": [10, 11, 10, 99],
            "quantity": [1, 2, 1, 1],
            "unit_price": [10.0, 20.0, 30.0, 5.0],
        }
    )


@pytest.fixture
def payments_df() -> pl.DataFrame:
    return pl.DataFrame(
        {
            "payment_id": [1, 2, 3, 4],
            "order_id": [100, 101, 102, 101],
            "amount": [50.0, 20.0, 15.0, -1.0],
            "payment_status": ["captured", "captured", "captured", "captured"],
        }
    )


@pytest.fixture
def deliveries_df() -> pl.DataFrame:
    return pl.DataFrame(
        {
            "delivery_id": [1, 2],
            "order_id": [100, 101],
            "ship_date": [date(2024, 2, 2), date(2024, 2, 1)],
            "delivery_date": [date(2024, 2, 5), date(2024, 2, 3)],
        }
    )


@pytest.fixture
def raw_tables(
    customers_df: pl.DataFrame,
    products_df: pl.DataFrame,
    orders_df: pl.DataFrame,
    order_items_df: pl.DataFrame,
    payments_df: pl.DataFrame,
    deliveries_df: pl.DataFrame,
) -> dict:
    return {
        EntityType.CUSTOMERS: customers_df,
        EntityType.PRODUCTS: products_df,
        EntityType.ORDERS: orders_df,
        EntityType.ORDER_ITEMS: order_items_df,
        EntityType.PAYMENTS: payments_df,
        EntityType.DELIVERIES: deliveries_df,
    }
