"""
Configuration models for the quality engine using Pydantic.
Provides type-safe, validated configuration loaded from YAML.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator


class EntityType(str, Enum):
    """Transactional entity types handled by the engine."""

    CUSTOMERS = "customers"
    PRODUCTS = "products"
    ORDERS = "orders"
    ORDER_ITEMS = "order_items"
    PAYMENTS = "payments"
    DELIVERIES = "deliveries"

    @property
    def gold_table(self) -> str:
        """Name of the clean output table consumed by dashboards."""
        return GOLD_TABLES[self]

    @property
    def issues_table(self) -> str:
        """Name of the audit table holding flagged records."""
        return f"dq_{self.value}_issues"

    @property
    def staging_table(self) -> str:
        return f"stg_{self.value}"


GOLD_TABLES: Dict[EntityType, str] = {
    EntityType.CUSTOMERS: "dim_customers_gold",
    EntityType.PRODUCTS: "dim_products_gold",
    EntityType.ORDERS: "fact_orders_gold",
    EntityType.ORDER_ITEMS: "fact_order_items_gold",
    EntityType.PAYMENTS: "fact_payments_gold",
    EntityType.DELIVERIES: "fact_deliveries_gold",
}

RECON_TABLE = "fact_order_recon"
DAILY_METRICS_TABLE = "daily_metrics_enriched"
SCORES_TABLE = "dq_scores"


class RuleKind(str, Enum):
    """Violation categories a rule can belong to."""

    COMPLETENESS = "completeness"
    DOMAIN = "domain"
    UNIQUENESS = "uniqueness"
    REFERENTIAL = "referential"
    TEMPORAL = "temporal"
    RANGE = "range"


DEFAULT_ENTITY_KEYS: Dict[EntityType, str] = {
    EntityType.CUSTOMERS: "customer_id",
    EntityType.PRODUCTS: "product_id",
    EntityType.ORDERS: "order_id",
    EntityType.ORDER_ITEMS: "order_item_id",
    EntityType.PAYMENTS: "payment_id",
    EntityType.DELIVERIES: "delivery_id",
}

DEFAULT_ALLOWED_STATES: List[str] = [
    "CA", "NY", "TX", "FL", "IL", "WA", "MA", "GA", "NC", "PA", "IN",
]


class ReconciliationConfig(BaseModel):
    """Settings for matching order-item totals against captured payments."""

    tolerance: float = Field(0.01, ge=0, description="Maximum absolute delta before a mismatch is flagged")
    captured_status: str = Field("captured", description="Payment status counted towards totals")
    status_field: str = Field("payment_status", description="Payment column holding the capture status")
    amount_decimals: int = Field(2, ge=0, description="Rounding applied to monetary totals")


class AnomalyConfig(BaseModel):
    """Settings for rolling-window anomaly detection on daily metrics."""

    window_days: int = Field(14, ge=2, description="Number of prior days in the rolling window")
    sigma_threshold: float = Field(3.0, gt=0, description="Multiple of the rolling stddev tolerated")
    rate_window_days: int = Field(30, ge=1, description="Trailing window for the anomaly rate measure")


class EngineConfig(BaseModel):
    """Complete configuration for the quality engine."""

    version: str = Field("1.0", description="Configuration schema version")
    name: str = Field("quality-engine", description="Name of this configuration")
    description: Optional[str] = Field(None, description="Description of the refresh")

    entity_keys: Dict[EntityType, str] = Field(
        default_factory=lambda: dict(DEFAULT_ENTITY_KEYS),
        description="Identity key column per entity type",
    )
    allowed_states: List[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_STATES),
        description="Customer states accepted by the domain rule",
    )

    reconciliation: ReconciliationConfig = Field(default_factory=ReconciliationConfig)
    anomaly: AnomalyConfig = Field(default_factory=AnomalyConfig)

    max_workers: int = Field(4, ge=1, description="Threads used for independent entity types")
    validate_output: bool = Field(True, description="Whether to enforce output table contracts")

    observability: Dict[str, Any] = Field(
        default_factory=lambda: {"enabled": True, "service_name": "quality-engine"},
        description="OpenTelemetry configuration",
    )

    @field_validator("entity_keys")
    @classmethod
    def fill_missing_keys(cls, v: Dict[EntityType, str]) -> Dict[EntityType, str]:
        """Entities left out of the YAML keep their default key column."""
        return {**DEFAULT_ENTITY_KEYS, **v}

    def key_for(self, entity_type: EntityType) -> str:
        return self.entity_keys[entity_type]

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "EngineConfig":
        with open(Path(path), "r") as f:
            config_dict = yaml.safe_load(f) or {}
        return cls(**config_dict)

    def to_yaml(self, path: Union[str, Path]) -> None:
        config_dict = self.model_dump(mode="json")
        with open(path, "w") as f:
            yaml.safe_dump(config_dict, f, default_flow_style=False, sort_keys=False)
