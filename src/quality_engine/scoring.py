"""
Per-entity issue rates and DQ scores.
"""

from typing import Dict, Iterable, Tuple

import polars as pl
from opentelemetry import trace
from pydantic import BaseModel, Field

from quality_engine.catalog import RuleDefinition
from quality_engine.config import RuleKind

tracer = trace.get_tracer(__name__)

SCORE_SCHEMA = {
    "entity": pl.Utf8,
    "issues": pl.Int64,
    "total": pl.Int64,
    "issue_rate": pl.Float64,
    "dq_score": pl.Float64,
}


class DQScore(BaseModel):
    entity: str
    issues: int = Field(ge=0)
    total: int = Field(ge=0)
    issue_rate: float
    dq_score: float

    model_config = {"frozen": True}


def score(entity_type: str, gold_count: int, issue_count: int) -> DQScore:
    """Issue rate and ``1 - issue_rate``; an empty entity scores a rate of 0."""
    if gold_count < 0 or issue_count < 0:
        raise ValueError("counts must be non-negative")
    total = gold_count + issue_count
    issue_rate = issue_count / total if total else 0.0
    return DQScore(
        entity=getattr(entity_type, "value", entity_type),
        issues=issue_count,
        total=total,
        issue_rate=issue_rate,
        dq_score=1.0 - issue_rate,
    )


def score_table(counts: Iterable[Tuple[str, int, int]]) -> pl.DataFrame:
    """Build the ``dq_scores`` table from (entity, gold_count, issue_count) triples."""
    with tracer.start_as_current_span("scoring.score_table"):
        rows = [score(entity, gold, issues).model_dump() for entity, gold, issues in counts]
        return pl.DataFrame(rows, schema=SCORE_SCHEMA)


def violations_by_kind(issues: pl.DataFrame, rules: Iterable[RuleDefinition]) -> Dict[RuleKind, int]:
    """Count flagged records per violation category."""
    totals: Dict[RuleKind, int] = {}
    for rule in rules:
        if rule.name not in issues.columns:
            continue
        totals[rule.kind] = totals.get(rule.kind, 0) + int(issues[rule.name].sum())
    return totals
