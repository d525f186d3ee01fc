"""
Split classified records into gold (clean) and issue (audit) sets.
"""

from typing import Tuple

import polars as pl
from opentelemetry import trace

from quality_engine.classifier import HAS_ISSUE, ClassifiedFrame

tracer = trace.get_tracer(__name__)


def partition(classified: ClassifiedFrame) -> Tuple[pl.DataFrame, pl.DataFrame]:
    """
    Partition a classified frame, preserving input order within each side.

    Gold rows drop the flag columns and ``has_issue``; issue rows keep them for
    audit. Every input row lands in exactly one of the two frames.
    """
    df = classified.frame
    with tracer.start_as_current_span(
        "partition", attributes={"entity": classified.entity_type.value, "rows": df.height}
    ) as span:
        audit_columns = [*classified.flag_columns, HAS_ISSUE]
        gold = df.filter(~pl.col(HAS_ISSUE)).drop(audit_columns)
        issues = df.filter(pl.col(HAS_ISSUE))

        span.set_attribute("gold_rows", gold.height)
        span.set_attribute("issue_rows", issues.height)
        return gold, issues
