"""
Refresh orchestration.
Classifies every entity in dependency order, reconciles, detects anomalies and
scores, then swaps the finished snapshot in as the current one.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import polars as pl
from opentelemetry import trace

from quality_engine.anomaly import build_daily_metrics, detect_frame
from quality_engine.catalog import RuleCatalog, default_catalog
from quality_engine.classifier import RecordClassifier
from quality_engine.config import (
    DAILY_METRICS_TABLE,
    RECON_TABLE,
    SCORES_TABLE,
    EngineConfig,
    EntityType,
    RuleKind,
)
from quality_engine.context import ClassificationContext
from quality_engine.errors import StructuralError
from quality_engine.frames import records_to_frame, settle_object_columns
from quality_engine.measures import anomaly_count, anomaly_rate, entity_measures, orders_with_mismatch
from quality_engine.observability import setup_observability
from quality_engine.partition import partition
from quality_engine.reconciliation import reconcile
from quality_engine.scoring import DQScore, score, score_table, violations_by_kind
from quality_engine.storage import DuckDBStorage
from quality_engine.validation import SchemaValidator

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Entities in one tier only read gold key sets of earlier tiers.
TIERS: Tuple[Tuple[EntityType, ...], ...] = (
    (EntityType.CUSTOMERS, EntityType.PRODUCTS, EntityType.PAYMENTS),
    (EntityType.ORDERS, EntityType.ORDER_ITEMS),
    (EntityType.DELIVERIES,),
)


@dataclass(frozen=True)
class EntityFailure:
    """A stage that could not run because its input was structurally unreadable."""

    name: str
    error: str


@dataclass(frozen=True)
class RefreshSnapshot:
    """Immutable result of one full refresh."""

    version: int
    created_at: datetime
    tables: Mapping[str, pl.DataFrame]
    scores: Tuple[DQScore, ...]
    violations: Mapping[EntityType, Mapping[RuleKind, int]]
    failures: Tuple[EntityFailure, ...]

    @property
    def ok(self) -> bool:
        return not self.failures

    def gold(self, entity_type: EntityType) -> pl.DataFrame:
        return self.tables[entity_type.gold_table]

    def issues(self, entity_type: EntityType) -> pl.DataFrame:
        return self.tables[entity_type.issues_table]


class QualityPipeline:
    """
    Batch data-quality pipeline for the transactional entities.

    Features:
    - Rule-driven classification into gold and issue tables
    - Order-level reconciliation of item totals against captured payments
    - Rolling-window anomaly flags on daily metrics
    - Per-entity DQ scores
    - Atomic snapshot swap in memory and transactional publish to DuckDB
    """

    def __init__(
        self,
        config: Optional[Union[str, Path, EngineConfig]] = None,
        catalog: Optional[RuleCatalog] = None,
        storage: Optional[DuckDBStorage] = None,
        enable_observability: bool = True,
    ):
        """
        Initialize the pipeline.

        Args:
            config: Path to YAML config file or EngineConfig object
            catalog: Rule catalog; defaults to the built-in catalog for ``config``
            storage: Optional DuckDBStorage instance
            enable_observability: Whether to enable OpenTelemetry tracing
        """
        self.config = EngineConfig()
        if config:
            self.load_config(config)
        self.catalog = catalog or default_catalog(self.config)
        self.classifier = RecordClassifier(self.catalog, self.config.entity_keys)
        self.storage = storage

        self._lock = threading.Lock()
        self._version = 0
        self._current: Optional[RefreshSnapshot] = None

        if enable_observability and self.config.observability.get("enabled", True):
            service_name = self.config.observability.get("service_name", "quality-engine")
            console_export = self.config.observability.get("console_export", True)
            setup_observability(service_name=service_name, console_export=console_export)

    def load_config(self, config: Union[str, Path, EngineConfig]) -> None:
        with tracer.start_as_current_span("pipeline.load_config"):
            if isinstance(config, EngineConfig):
                self.config = config
            else:
                self.config = EngineConfig.from_yaml(config)

    def save_config(self, path: Union[str, Path]) -> None:
        with tracer.start_as_current_span("pipeline.save_config"):
            self.config.to_yaml(path)

    @property
    def current(self) -> Optional[RefreshSnapshot]:
        """The last completed snapshot; never a partially built one."""
        with self._lock:
            return self._current

    def _empty_frame(self, entity_type: EntityType) -> pl.DataFrame:
        return pl.DataFrame(schema={self.config.key_for(entity_type): pl.Utf8})

    def _context_for(self, gold: Mapping[EntityType, pl.DataFrame]) -> ClassificationContext:
        keys = self.config.entity_keys
        return ClassificationContext.from_gold(
            customers=gold.get(EntityType.CUSTOMERS),
            products=gold.get(EntityType.PRODUCTS),
            orders=gold.get(EntityType.ORDERS),
            customer_key=keys[EntityType.CUSTOMERS],
            product_key=keys[EntityType.PRODUCTS],
            order_key=keys[EntityType.ORDERS],
        )

    def _classify_entity(
        self, entity_type: EntityType, df: pl.DataFrame, context: ClassificationContext
    ) -> Tuple[pl.DataFrame, pl.DataFrame]:
        classified = self.classifier.classify(df, entity_type, context)
        gold, issues = partition(classified)
        gold, issues = settle_object_columns(gold), settle_object_columns(issues)
        logger.info(
            "%s: %d gold, %d issue records", entity_type.value, gold.height, issues.height
        )
        return gold, issues

    def _run_tier(
        self,
        tier: Sequence[EntityType],
        frames: Mapping[EntityType, pl.DataFrame],
        context: ClassificationContext,
        failures: List[EntityFailure],
    ) -> Dict[EntityType, Tuple[pl.DataFrame, pl.DataFrame]]:
        results: Dict[EntityType, Tuple[pl.DataFrame, pl.DataFrame]] = {}
        workers = max(1, min(self.config.max_workers, len(tier)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                entity: pool.submit(self._classify_entity, entity, frames[entity], context)
                for entity in tier
                if entity in frames
            }
            for entity, future in futures.items():
                try:
                    results[entity] = future.result()
                except StructuralError as exc:
                    logger.error("Classification of %s aborted: %s", entity.value, exc)
                    failures.append(EntityFailure(entity.value, str(exc)))
        return results

    def refresh(
        self,
        raw: Mapping[EntityType, Union[pl.DataFrame, Sequence[Mapping[str, Any]]]],
        validate_output: Optional[bool] = None,
    ) -> RefreshSnapshot:
        """
        Run a full refresh over already-materialized record streams.

        Args:
            raw: Record stream per entity type; missing entities count as empty
            validate_output: Override ``config.validate_output``

        Returns:
            The new snapshot, which is also installed as ``current``
        """
        if validate_output is None:
            validate_output = self.config.validate_output

        failures: List[EntityFailure] = []
        frames: Dict[EntityType, pl.DataFrame] = {}
        for entity in EntityType:
            data = raw.get(entity)
            if data is None:
                frames[entity] = self._empty_frame(entity)
            elif isinstance(data, pl.DataFrame):
                frames[entity] = data
            else:
                try:
                    frames[entity] = records_to_frame(
                        entity.value, data, text_columns=(self.config.key_for(entity),)
                    )
                except StructuralError as exc:
                    logger.error("Input for %s is unreadable: %s", entity.value, exc)
                    failures.append(EntityFailure(entity.value, str(exc)))

        with tracer.start_as_current_span(
            "pipeline.refresh", attributes={"input_rows": sum(f.height for f in frames.values())}
        ) as span:
            outputs: Dict[EntityType, Tuple[pl.DataFrame, pl.DataFrame]] = {}
            for tier in TIERS:
                gold = {entity: pair[0] for entity, pair in outputs.items()}
                outputs.update(self._run_tier(tier, frames, self._context_for(gold), failures))

            tables: Dict[str, pl.DataFrame] = {}
            for entity, (gold_df, issues_df) in outputs.items():
                tables[entity.gold_table] = gold_df
                tables[entity.issues_table] = issues_df

            recon = self._reconcile(outputs, failures)
            if recon is not None:
                tables[RECON_TABLE] = recon

            if EntityType.ORDERS in outputs:
                orders_gold = outputs[EntityType.ORDERS][0]
                items_gold = outputs.get(EntityType.ORDER_ITEMS, (None, None))[0]
                daily = build_daily_metrics(orders_gold, items_gold)
                tables[DAILY_METRICS_TABLE] = detect_frame(
                    daily, self.config.anomaly.window_days, self.config.anomaly.sigma_threshold
                )

            ordered = [e for e in EntityType if e in outputs]
            scores = tuple(
                score(e.value, outputs[e][0].height, outputs[e][1].height) for e in ordered
            )
            tables[SCORES_TABLE] = score_table(
                (e.value, outputs[e][0].height, outputs[e][1].height) for e in ordered
            )
            violations = {
                e: MappingProxyType(violations_by_kind(outputs[e][1], self.catalog.rules_for(e)))
                for e in ordered
            }

            if validate_output:
                tables = {name: SchemaValidator.validate_output(name, df) for name, df in tables.items()}

            span.set_attribute("tables", len(tables))
            span.set_attribute("failures", len(failures))
            return self._install(tables, scores, violations, failures)

    def _reconcile(
        self,
        outputs: Mapping[EntityType, Tuple[pl.DataFrame, pl.DataFrame]],
        failures: List[EntityFailure],
    ) -> Optional[pl.DataFrame]:
        if EntityType.ORDER_ITEMS not in outputs or EntityType.PAYMENTS not in outputs:
            logger.warning("Skipping reconciliation: order items or payments unavailable")
            return None
        try:
            return reconcile(
                outputs[EntityType.ORDER_ITEMS][0],
                outputs[EntityType.PAYMENTS][0],
                config=self.config.reconciliation,
            )
        except StructuralError as exc:
            logger.error("Reconciliation aborted: %s", exc)
            failures.append(EntityFailure(RECON_TABLE, str(exc)))
            return None

    def _install(
        self,
        tables: Mapping[str, pl.DataFrame],
        scores: Tuple[DQScore, ...],
        violations: Mapping[EntityType, Mapping[RuleKind, int]],
        failures: Sequence[EntityFailure],
    ) -> RefreshSnapshot:
        with self._lock:
            self._version += 1
            snapshot = RefreshSnapshot(
                version=self._version,
                created_at=datetime.now(timezone.utc),
                tables=MappingProxyType(dict(tables)),
                scores=scores,
                violations=MappingProxyType(dict(violations)),
                failures=tuple(failures),
            )
            self._current = snapshot
        logger.info(
            "Installed snapshot v%d with %d tables (%d failures)",
            snapshot.version, len(snapshot.tables), len(snapshot.failures),
        )
        return snapshot

    def refresh_from_storage(
        self, storage: Optional[DuckDBStorage] = None, publish: bool = True
    ) -> RefreshSnapshot:
        """
        Read ``stg_<entity>`` tables, refresh, and publish every output table
        in one transaction.
        """
        storage = storage or self.storage
        if not storage:
            raise ValueError("Storage not configured. Provide DuckDBStorage instance.")

        with tracer.start_as_current_span("pipeline.refresh_from_storage"):
            raw = {
                entity: storage.load_dataframe(entity.staging_table)
                for entity in EntityType
                if storage.has_table(entity.staging_table)
            }
            snapshot = self.refresh(raw)
            if publish:
                storage.publish(snapshot.tables)
            return snapshot

    def measures(self, snapshot: Optional[RefreshSnapshot] = None) -> Dict[str, Any]:
        """Reporting measures derived from a snapshot's output tables."""
        snapshot = snapshot or self.current
        if snapshot is None:
            raise ValueError("No snapshot available. Call refresh() first.")

        result: Dict[str, Any] = {}
        for entity in EntityType:
            if entity.gold_table in snapshot.tables:
                result[entity.value] = entity_measures(
                    snapshot.gold(entity), snapshot.issues(entity), entity.value
                )
        if RECON_TABLE in snapshot.tables:
            result["OrdersWithMismatch"] = orders_with_mismatch(snapshot.tables[RECON_TABLE])
        if DAILY_METRICS_TABLE in snapshot.tables:
            enriched = snapshot.tables[DAILY_METRICS_TABLE]
            result["AnomalyCount"] = anomaly_count(enriched)
            result["AnomalyRate"] = anomaly_rate(enriched, self.config.anomaly.rate_window_days)
        return result
