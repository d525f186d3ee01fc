"""Tests for daily metrics and rolling-window anomaly detection."""

import statistics
from datetime import date, datetime, timedelta

import polars as pl
import pytest

from quality_engine.anomaly import RollingWindow, build_daily_metrics, detect, detect_frame

START = date(2024, 3, 1)


def history(values: list, start: date = START) -> list:
    return [(start + timedelta(days=i), v) for i, v in enumerate(values)]


@pytest.fixture
def fourteen_days() -> list:
    """Fourteen prior days with mean 100 and stddev close to 5."""
    return history([95.0, 105.0] * 7)


def test_large_deviation_flagged(fourteen_days: list) -> None:
    """Test 130 after a mean-100 history is flagged."""
    result = detect(fourteen_days + [(START + timedelta(days=14), 130.0)])
    last = result[-1]

    assert last.rolling_mean_14d == pytest.approx(100.0)
    assert last.rolling_stddev_14d == pytest.approx(statistics.stdev([95.0, 105.0] * 7))
    assert last.anomaly_flag is True


def test_small_deviation_not_flagged(fourteen_days: list) -> None:
    """Test 110 after a mean-100 history is within three sigma."""
    result = detect(fourteen_days + [(START + timedelta(days=14), 110.0)])
    assert result[-1].anomaly_flag is False


def test_insufficient_history_never_flags() -> None:
    """Test fewer than 14 prior points never flag, whatever the value."""
    result = detect(history([1.0] * 13 + [1_000_000.0]))

    assert len(result) == 14
    assert not any(m.anomaly_flag for m in result)
    assert result[-1].rolling_mean_14d is None
    assert result[-1].rolling_stddev_14d is None


def test_constant_history() -> None:
    """Test zero stddev: any deviation flags, equality never does."""
    base = history([100.0] * 14)
    day = START + timedelta(days=14)

    assert detect(base + [(day, 100.0)])[-1].anomaly_flag is False
    assert detect(base + [(day, 100.5)])[-1].anomaly_flag is True


def test_window_uses_only_past_values() -> None:
    """Test the window for day d covers the preceding 14 points only."""
    values = [float(v) for v in range(1, 21)]
    result = detect(history(values))

    for i in range(14, 20):
        expected = statistics.mean(values[i - 14:i])
        assert result[i].rolling_mean_14d == pytest.approx(expected)
        assert result[i].rolling_stddev_14d == pytest.approx(statistics.stdev(values[i - 14:i]))


def test_unsorted_input_processed_in_date_order(fourteen_days: list) -> None:
    """Test output is in date order regardless of input order."""
    series = list(reversed(fourteen_days + [(START + timedelta(days=14), 130.0)]))
    result = detect(series)

    assert [m.date for m in result] == sorted(m.date for m in result)
    assert result[-1].anomaly_flag is True


def test_custom_window_and_threshold() -> None:
    """Test a shorter window and looser threshold."""
    series = history([10.0, 12.0, 10.0, 12.0, 30.0])

    assert detect(series, window_days=4, sigma_threshold=3.0)[-1].anomaly_flag is True
    assert detect(series, window_days=4, sigma_threshold=20.0)[-1].anomaly_flag is False


def test_missing_value_not_flagged() -> None:
    """Test a null value is reported without entering the window."""
    result = detect(history([5.0] * 14 + [None] + [5.0] * 15))

    assert result[14].value is None
    assert result[14].anomaly_flag is False
    # Day 15 sees only 13 observed values in its 14-day window.
    assert result[15].rolling_mean_14d is None
    assert result[15].anomaly_flag is False
    assert result[29].rolling_mean_14d == pytest.approx(5.0)
    assert result[29].rolling_stddev_14d == 0.0


def test_invalid_sigma_rejected() -> None:
    with pytest.raises(ValueError):
        detect([], sigma_threshold=0)


def test_rolling_window_evicts_oldest() -> None:
    """Test the buffer keeps only values from the last N calendar days."""
    window = RollingWindow(3)
    for i, v in enumerate([1.0, 2.0, 3.0, 10.0]):
        window.push(START + timedelta(days=i), v)
    window.advance(START + timedelta(days=4))

    assert len(window) == 3
    assert window.full
    assert window.mean() == pytest.approx(5.0)
    assert window.stddev() == pytest.approx(statistics.stdev([2.0, 3.0, 10.0]))


def test_rolling_window_gap_empties_buffer() -> None:
    """Test values older than the window are evicted after a calendar gap."""
    window = RollingWindow(3)
    for i in range(3):
        window.push(START + timedelta(days=i), 1.0)
    window.advance(START + timedelta(days=10))

    assert len(window) == 0
    assert not window.full


def test_constant_run_after_warm_up_not_flagged() -> None:
    """Test a constant 0.3 run is never flagged once the 0.1 warm-up leaves the window."""
    result = detect(history([0.1] + [0.3] * 21))

    for metric in result[15:]:
        assert metric.rolling_mean_14d == 0.3
        assert metric.rolling_stddev_14d == 0.0
        assert metric.anomaly_flag is False


def test_sparse_series_has_insufficient_history() -> None:
    """Test the window spans calendar days, not the last 14 observations."""
    series = [(START + timedelta(days=2 * i), 100.0) for i in range(14)]
    series.append((START + timedelta(days=28), 130.0))
    last = detect(series)[-1]

    assert last.anomaly_flag is False
    assert last.rolling_mean_14d is None
    assert last.rolling_stddev_14d is None


def test_detect_frame_per_metric() -> None:
    """Test each metric series gets its own window."""
    days = [START + timedelta(days=i) for i in range(15)]
    df = pl.DataFrame(
        {
            "date": days * 2,
            "metric_name": ["order_count"] * 15 + ["gross_revenue"] * 15,
            "value": [10.0] * 14 + [50.0] + [200.0] * 15,
        }
    )
    enriched = detect_frame(df)

    assert enriched.columns == [
        "date", "metric_name", "value", "rolling_mean_14d", "rolling_stddev_14d", "anomaly_flag",
    ]
    flagged = enriched.filter(pl.col("anomaly_flag"))
    assert flagged["metric_name"].to_list() == ["order_count"]
    assert flagged["date"].to_list() == [days[-1]]


def test_detect_frame_empty() -> None:
    """Test an empty metric frame keeps the enriched schema."""
    df = pl.DataFrame(schema={"date": pl.Date, "metric_name": pl.Utf8, "value": pl.Float64})
    enriched = detect_frame(df)

    assert enriched.height == 0
    assert enriched.schema["anomaly_flag"] == pl.Boolean


def test_build_daily_metrics_dense_calendar() -> None:
    """Test day gaps are filled with zero and revenue is bucketed by order day."""
    orders = pl.DataFrame(
        {
            "order_id": [1, 2, 3],
            "order_datetime": [
                datetime(2024, 3, 1, 9),
                datetime(2024, 3, 1, 17),
                datetime(2024, 3, 4, 11),
            ],
        }
    )
    items = pl.DataFrame(
        {"order_id": [1, 2, 3], "quantity": [1, 2, 1], "unit_price": [10.0, 5.0, 7.5]}
    )
    daily = build_daily_metrics(orders, items)

    counts = daily.filter(pl.col("metric_name") == "order_count")
    revenue = daily.filter(pl.col("metric_name") == "gross_revenue")
    assert counts["date"].to_list() == [date(2024, 3, d) for d in range(1, 5)]
    assert counts["value"].to_list() == [2.0, 0.0, 0.0, 1.0]
    assert revenue["value"].to_list() == [20.0, 0.0, 0.0, 7.5]


def test_build_daily_metrics_from_strings() -> None:
    """Test ISO string order timestamps are parsed."""
    orders = pl.DataFrame(
        {"order_id": [1, 2], "order_datetime": ["2024-03-01 10:00:00", "2024-03-02 11:30:00"]}
    )
    daily = build_daily_metrics(orders)

    assert daily["metric_name"].unique().to_list() == ["order_count"]
    assert daily["value"].to_list() == [1.0, 1.0]


def test_build_daily_metrics_no_orders() -> None:
    orders = pl.DataFrame(schema={"order_id": pl.Int64, "order_datetime": pl.Datetime})
    assert build_daily_metrics(orders).height == 0
