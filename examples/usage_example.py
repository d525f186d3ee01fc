"""
Example usage of the Quality Engine.

Demonstrates:
- Running a full refresh over in-memory tables
- Inspecting gold/issue partitions, reconciliation and scores
- Publishing output tables to DuckDB
- Anomaly detection on a daily series
"""

from datetime import date, datetime, timedelta
from pathlib import Path

import polars as pl

from quality_engine import DuckDBStorage, EntityType, QualityPipeline, detect
from quality_engine.observability import configure_logging


def sample_tables() -> dict:
    return {
        EntityType.CUSTOMERS: pl.DataFrame(
            {
                "customer_id": [1, 2, 3, 3],
                "email": ["ann@shop.com", None, "cy@shop.com", "cy@shop.com"],
                "state": ["CA", "NY", "XX", "TX"],
                "signup_date": [date(2024, 1, 1)] * 4,
            }
        ),
        EntityType.PRODUCTS: pl.DataFrame({"product_id": [10, 11], "name": ["Mug", "Lamp"]}),
        EntityType.ORDERS: pl.DataFrame(
            {
                "order_id": [100, 101],
                "customer_id": [1, 1],
                "order_datetime": [datetime(2024, 2, 1, 10), datetime(2024, 2, 2, 15)],
            }
        ),
        EntityType.ORDER_ITEMS: pl.DataFrame(
            {
                "order_item_id": [1, 2, 3],
                "order_id": [100, 101, 101],
                "product_id": [10, 11, 42],
                "quantity": [2, 1, 1],
                "unit_price": [12.5, 40.0, 9.99],
            }
        ),
        EntityType.PAYMENTS: pl.DataFrame(
            {
                "payment_id": [1, 2],
                "order_id": [100, 101],
                "amount": [25.0, 30.0],
                "payment_status": ["captured", "captured"],
            }
        ),
    }


def refresh_example() -> None:
    """Full refresh over in-memory tables."""
    print("=" * 80)
    print("REFRESH EXAMPLE")
    print("=" * 80)

    config_path = Path(__file__).parent / "example_config.yaml"
    pipeline = QualityPipeline(config=config_path, enable_observability=False)
    snapshot = pipeline.refresh(sample_tables())

    print(f"\n1. Snapshot v{snapshot.version}, {len(snapshot.tables)} tables")
    print("\n2. Customer issues:")
    print(snapshot.issues(EntityType.CUSTOMERS))
    print("\n3. Reconciliation:")
    print(snapshot.tables["fact_order_recon"])
    print("\n4. DQ scores:")
    print(snapshot.tables["dq_scores"])
    print("\n5. Measures:")
    for name, value in pipeline.measures().items():
        print(f"   {name}: {value}")


def storage_example() -> None:
    """Staging tables in DuckDB, output tables published atomically."""
    print("\n" + "=" * 80)
    print("STORAGE EXAMPLE")
    print("=" * 80)

    with DuckDBStorage() as storage:
        for entity, df in sample_tables().items():
            storage.save_dataframe(df, entity.staging_table)

        pipeline = QualityPipeline(storage=storage, enable_observability=False)
        pipeline.refresh_from_storage()

        print(f"\n1. Tables: {sorted(storage.list_tables())}")
        print("\n2. Orders with mismatch:")
        print(
            storage.query(
                "SELECT COUNT(DISTINCT order_id) AS orders FROM fact_order_recon "
                "WHERE status_mismatch_flag"
            )
        )


def anomaly_example() -> None:
    """Rolling 14-day bounds on a daily series."""
    print("\n" + "=" * 80)
    print("ANOMALY EXAMPLE")
    print("=" * 80)

    start = date(2024, 3, 1)
    values = [100.0, 96.0, 104.0, 99.0, 101.0, 98.0, 103.0] * 2 + [160.0]
    series = [(start + timedelta(days=i), v) for i, v in enumerate(values)]

    for point in detect(series, metric_name="order_count")[-3:]:
        print(
            f"   {point.date} value={point.value} mean={point.rolling_mean_14d} "
            f"anomaly={point.anomaly_flag}"
        )


def main() -> None:
    configure_logging("INFO")
    refresh_example()
    storage_example()
    anomaly_example()


if __name__ == "__main__":
    main()
