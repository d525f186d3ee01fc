"""
Quality Engine

Rule-driven data-quality engine for transactional records (customers,
products, orders, order items, payments, deliveries), built with:
- Polars for the record streams
- Pydantic + YAML for configuration
- Pandera for output table contracts
- OpenTelemetry for observability
- DuckDB for storage
"""

__version__ = "0.1.0"

from quality_engine.anomaly import build_daily_metrics, detect, detect_frame
from quality_engine.catalog import RuleCatalog, RuleDefinition, default_catalog
from quality_engine.classifier import ClassifiedFrame, RecordClassifier
from quality_engine.config import EngineConfig, EntityType, RuleKind
from quality_engine.context import ClassificationContext
from quality_engine.partition import partition
from quality_engine.pipeline import QualityPipeline, RefreshSnapshot
from quality_engine.reconciliation import reconcile
from quality_engine.scoring import score
from quality_engine.storage import DuckDBStorage

__all__ = [
    "ClassificationContext",
    "ClassifiedFrame",
    "DuckDBStorage",
    "EngineConfig",
    "EntityType",
    "QualityPipeline",
    "RecordClassifier",
    "RefreshSnapshot",
    "RuleCatalog",
    "RuleDefinition",
    "RuleKind",
    "build_daily_metrics",
    "default_catalog",
    "detect",
    "detect_frame",
    "partition",
    "reconcile",
    "score",
]
