"""
Daily metric aggregation and rolling-window anomaly detection.

For every point the window holds only values from the preceding
``window_days`` calendar days, so a value never influences its own bounds.
Points whose window holds fewer than ``window_days`` values are reported
with ``anomaly_flag = False`` and null statistics.
"""

import logging
import math
from collections import deque
from datetime import date, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

import polars as pl
from opentelemetry import trace
from pydantic import BaseModel

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DAILY_METRIC_SCHEMA = {
    "date": pl.Date,
    "metric_name": pl.Utf8,
    "value": pl.Float64,
    "rolling_mean_14d": pl.Float64,
    "rolling_stddev_14d": pl.Float64,
    "anomaly_flag": pl.Boolean,
}
LONG_METRIC_SCHEMA = {"date": pl.Date, "metric_name": pl.Utf8, "value": pl.Float64}


class DailyMetric(BaseModel):
    """A daily metric value with its trailing-window statistics."""

    date: date
    metric_name: str
    value: Optional[float]
    rolling_mean_14d: Optional[float] = None
    rolling_stddev_14d: Optional[float] = None
    anomaly_flag: bool = False

    model_config = {"frozen": True}


class RollingWindow:
    """
    Buffer of dated values covering the ``size`` calendar days before a
    reference day.

    Statistics are computed from the buffered values on demand, so a
    constant history yields exactly that constant as its mean and a zero
    standard deviation.
    """

    def __init__(self, size: int):
        if size < 2:
            raise ValueError("window size must be at least 2")
        self.size = size
        self._points: deque = deque()

    def __len__(self) -> int:
        return len(self._points)

    @property
    def full(self) -> bool:
        return len(self._points) >= self.size

    def advance(self, day: date) -> None:
        """Evict values dated before ``day - size``."""
        start = day - timedelta(days=self.size)
        while self._points and self._points[0][0] < start:
            self._points.popleft()

    def push(self, day: date, value: float) -> None:
        self._points.append((day, value))

    def values(self) -> List[float]:
        return [value for _, value in self._points]

    def mean(self) -> float:
        values = self.values()
        first = values[0]
        if all(v == first for v in values):
            return first
        return math.fsum(values) / len(values)

    def stddev(self) -> float:
        """Sample standard deviation (n - 1 denominator)."""
        values = self.values()
        mean = self.mean()
        return math.sqrt(math.fsum((v - mean) ** 2 for v in values) / (len(values) - 1))


def detect(
    series: Iterable[Tuple[date, Optional[float]]],
    window_days: int = 14,
    sigma_threshold: float = 3.0,
    metric_name: str = "metric",
) -> List[DailyMetric]:
    """
    Flag points deviating from the trailing mean by more than
    ``sigma_threshold`` trailing standard deviations.

    The window for day d holds the observed values dated d - window_days
    through d - 1. A day whose window has fewer than ``window_days``
    values (a gap or a null in the calendar) has insufficient history.

    Args:
        series: (date, value) pairs; sorted by date before processing
        window_days: Number of calendar days forming the window
        sigma_threshold: Allowed deviation in standard deviations
        metric_name: Name stamped on every output point

    Returns:
        One DailyMetric per input point, in date order
    """
    if sigma_threshold <= 0:
        raise ValueError("sigma_threshold must be positive")

    window = RollingWindow(window_days)
    results: List[DailyMetric] = []
    for day, value in sorted(series, key=lambda point: point[0]):
        window.advance(day)
        if value is None:
            # No observation for the day: reported, never flagged, not added to history.
            results.append(DailyMetric(date=day, metric_name=metric_name, value=None))
            continue

        mean = stddev = None
        flagged = False
        if window.full:
            mean = window.mean()
            stddev = window.stddev()
            flagged = value != mean and abs(value - mean) > sigma_threshold * stddev

        results.append(
            DailyMetric(
                date=day,
                metric_name=metric_name,
                value=value,
                rolling_mean_14d=mean,
                rolling_stddev_14d=stddev,
                anomaly_flag=flagged,
            )
        )
        window.push(day, float(value))
    return results


def detect_frame(
    df: pl.DataFrame,
    window_days: int = 14,
    sigma_threshold: float = 3.0,
) -> pl.DataFrame:
    """
    Apply ``detect`` to every metric series of a long (date, metric_name, value) frame.

    Returns:
        DataFrame with the ``daily_metrics_enriched`` columns, ordered by
        metric_name then date
    """
    with tracer.start_as_current_span(
        "anomaly.detect_frame", attributes={"rows": df.height, "window_days": window_days}
    ) as span:
        rows: List[dict] = []
        names = sorted(df["metric_name"].unique().to_list()) if df.height else []
        for metric_name in names:
            series = df.filter(pl.col("metric_name") == metric_name).select("date", "value")
            metrics = detect(series.iter_rows(), window_days, sigma_threshold, metric_name)
            rows.extend(m.model_dump() for m in metrics)

        enriched = pl.DataFrame(rows, schema=DAILY_METRIC_SCHEMA)
        anomalies = int(enriched["anomaly_flag"].sum())
        span.set_attribute("anomalies", anomalies)
        if anomalies:
            logger.info("Detected %d anomalous daily metric points", anomalies)
        return enriched


def as_date_expr(df: pl.DataFrame, column: str) -> pl.Expr:
    """Expression converting a string, datetime or date column to a date."""
    dtype = df.schema[column]
    if dtype == pl.Date:
        return pl.col(column)
    if dtype == pl.Utf8:
        return pl.col(column).str.to_datetime(strict=False).dt.date()
    return pl.col(column).dt.date()


def align_key(left: pl.DataFrame, right: pl.DataFrame, key: str) -> pl.DataFrame:
    """Cast ``right[key]`` to the dtype of ``left[key]`` when they differ."""
    if right.schema[key] != left.schema[key]:
        return right.with_columns(pl.col(key).cast(left.schema[key], strict=False))
    return right


def _dense(calendar: pl.DataFrame, daily: pl.DataFrame, metric_name: str) -> pl.DataFrame:
    return (
        calendar.join(daily, on="date", how="left")
        .with_columns(
            pl.col("value").fill_null(0.0).cast(pl.Float64),
            pl.lit(metric_name).alias("metric_name"),
        )
        .select(list(LONG_METRIC_SCHEMA))
    )


def build_daily_metrics(
    orders: pl.DataFrame,
    order_items: Optional[pl.DataFrame] = None,
    metric_names: Sequence[str] = ("order_count", "gross_revenue"),
) -> pl.DataFrame:
    """
    Aggregate gold orders (and their items) into daily metric series.

    The calendar is dense between the first and last order day; days without
    orders contribute 0.
    """
    with tracer.start_as_current_span(
        "anomaly.build_daily_metrics", attributes={"orders": orders.height}
    ):
        if orders.height == 0 or "order_datetime" not in orders.columns:
            return pl.DataFrame(schema=LONG_METRIC_SCHEMA)

        days = (
            orders.select("order_id", as_date_expr(orders, "order_datetime").alias("date"))
            .filter(pl.col("date").is_not_null())
        )
        if days.height == 0:
            return pl.DataFrame(schema=LONG_METRIC_SCHEMA)

        calendar = pl.date_range(
            days["date"].min(), days["date"].max(), interval="1d", eager=True
        ).alias("date").to_frame()

        series: List[pl.DataFrame] = []
        if "order_count" in metric_names:
            counts = days.group_by("date").agg(pl.len().cast(pl.Float64).alias("value"))
            series.append(_dense(calendar, counts, "order_count"))

        revenue_columns = {"order_id", "quantity", "unit_price"}
        if (
            "gross_revenue" in metric_names
            and order_items is not None
            and revenue_columns.issubset(order_items.columns)
        ):
            items = align_key(days, order_items, "order_id")
            revenue = (
                items.join(days, on="order_id", how="inner")
                .group_by("date")
                .agg(
                    (pl.col("quantity").cast(pl.Float64) * pl.col("unit_price").cast(pl.Float64))
                    .sum()
                    .alias("value")
                )
            )
            series.append(_dense(calendar, revenue, "gross_revenue"))

        if not series:
            return pl.DataFrame(schema=LONG_METRIC_SCHEMA)
        return pl.concat(series).sort("metric_name", "date")
