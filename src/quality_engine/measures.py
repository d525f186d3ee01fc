"""
Derived measures over the output tables, as exposed to reporting.
"""

from datetime import timedelta
from typing import Dict

import polars as pl

from quality_engine.scoring import score


def entity_measures(gold: pl.DataFrame, issues: pl.DataFrame, entity: str = "") -> Dict[str, float]:
    """Issues, Total, IssueRate and DQScore for one entity."""
    result = score(entity, gold.height, issues.height)
    return {
        "Issues": result.issues,
        "Total": result.total,
        "IssueRate": result.issue_rate,
        "DQScore": result.dq_score,
    }


def orders_with_mismatch(recon: pl.DataFrame) -> int:
    """Distinct orders whose reconciliation is flagged."""
    if recon.height == 0:
        return 0
    return recon.filter(pl.col("status_mismatch_flag"))["order_id"].n_unique()


def anomaly_count(enriched: pl.DataFrame) -> int:
    if enriched.height == 0:
        return 0
    return int(enriched["anomaly_flag"].sum())


def anomaly_rate(enriched: pl.DataFrame, window_days: int = 30) -> float:
    """
    Anomalies over the trailing window divided by the distinct dates in it.

    The window covers dates strictly after ``max(date) - window_days``.
    """
    if enriched.height == 0:
        return 0.0
    cutoff = enriched["date"].max() - timedelta(days=window_days)
    recent = enriched.filter(pl.col("date") > cutoff)
    dates = recent["date"].n_unique()
    if dates == 0:
        return 0.0
    return anomaly_count(recent) / dates
