"""
Record classifier: stamps every record with one Boolean flag per rule.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import List, Optional, Tuple

import polars as pl
from opentelemetry import trace

from quality_engine.catalog import RuleCatalog, RuleDefinition
from quality_engine.config import DEFAULT_ENTITY_KEYS, EntityType
from quality_engine.context import ClassificationContext, duplicated_keys
from quality_engine.errors import RuleEvaluationGap, SchemaDrift, StructuralError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

HAS_ISSUE = "has_issue"


@dataclass(frozen=True)
class ClassifiedFrame:
    """A record stream annotated with rule flags and ``has_issue``."""

    entity_type: EntityType
    frame: pl.DataFrame
    flag_columns: Tuple[str, ...]

    def __len__(self) -> int:
        return self.frame.height


class RecordClassifier:
    """
    Applies the catalog's rules for one entity type to a record stream.

    Classification is deterministic and side-effect free apart from logging:
    the same frame and context always produce the same flags.
    """

    def __init__(self, catalog: RuleCatalog, entity_keys: Optional[dict] = None):
        self.catalog = catalog
        self.entity_keys = {**DEFAULT_ENTITY_KEYS, **(entity_keys or {})}

    def classify(
        self,
        df: pl.DataFrame,
        entity_type: EntityType,
        context: Optional[ClassificationContext] = None,
    ) -> ClassifiedFrame:
        """
        Evaluate every rule for ``entity_type`` against every row of ``df``.

        Args:
            df: Record stream for one entity type
            entity_type: Which rule set to apply
            context: Cross-record data (referenced key sets, lookups)

        Returns:
            ClassifiedFrame with one Boolean column per rule plus ``has_issue``

        Raises:
            StructuralError: If the frame has rows but no identity key column
        """
        context = context or ClassificationContext()
        rules = self.catalog.rules_for(entity_type)
        key = self.entity_keys[entity_type]

        with tracer.start_as_current_span(
            "classifier.classify",
            attributes={"entity": entity_type.value, "rows": df.height, "rules": len(rules)},
        ) as span:
            if key not in df.columns and df.height > 0:
                raise StructuralError(entity_type.value, f"identity column '{key}' not found")

            # Reclassifying an issue frame replaces its previous flags.
            stale = [c for c in (*(r.name for r in rules), HAS_ISSUE) if c in df.columns]
            df = df.drop(stale)

            context = context.with_duplicates(entity_type, duplicated_keys(df, key))
            flags = self._evaluate(df, entity_type, rules, context)

            flag_series = [pl.Series(name, values, dtype=pl.Boolean) for name, values in flags]
            annotated = df.with_columns(flag_series) if flag_series else df
            if flag_series:
                has_issue = pl.any_horizontal([s.name for s in flag_series])
                annotated = annotated.with_columns(has_issue.alias(HAS_ISSUE))
            else:
                annotated = annotated.with_columns(
                    pl.Series(HAS_ISSUE, [False] * df.height, dtype=pl.Boolean)
                )

            span.set_attribute("issues", int(annotated[HAS_ISSUE].sum()))
            return ClassifiedFrame(entity_type, annotated, tuple(r.name for r in rules))

    def _evaluate(
        self,
        df: pl.DataFrame,
        entity_type: EntityType,
        rules: Tuple[RuleDefinition, ...],
        context: ClassificationContext,
    ) -> List[Tuple[str, List[bool]]]:
        columns: List[List[bool]] = [[] for _ in rules]
        gaps: Counter = Counter()
        drift: Counter = Counter()

        for record in df.iter_rows(named=True):
            for rule, column in zip(rules, columns):
                try:
                    flagged = bool(rule.evaluate(record, context))
                except RuleEvaluationGap:
                    gaps[rule.name] += 1
                    flagged = True
                except SchemaDrift:
                    drift[rule.name] += 1
                    flagged = True
                column.append(flagged)

        for name, count in gaps.items():
            logger.warning(
                "%s: rule %s could not evaluate for %d record(s), flagged as failing",
                entity_type.value, name, count,
            )
        for name, count in drift.items():
            logger.warning(
                "%s: rule %s found missing or mistyped fields on %d record(s)",
                entity_type.value, name, count,
            )

        return [(rule.name, column) for rule, column in zip(rules, columns)]
