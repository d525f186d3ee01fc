"""
Cross-record context handed to rules during classification.

Rules never look anything up globally: referenced key sets, lookup tables and
duplicate keys all travel in an explicit, immutable context object.
"""

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, FrozenSet, Mapping, Optional

import polars as pl

from quality_engine.config import EntityType
from quality_engine.errors import RuleEvaluationGap

CUSTOMER_SIGNUP_DATES = "customer_signup_dates"
ORDER_DATES = "order_dates"


def _freeze(mapping: Mapping) -> Mapping:
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True)
class ClassificationContext:
    """Read-only snapshot of the data rules may consult."""

    key_sets: Mapping[EntityType, FrozenSet[Any]] = field(default_factory=dict)
    lookups: Mapping[str, Mapping[Any, Any]] = field(default_factory=dict)
    duplicate_keys: Mapping[EntityType, FrozenSet[Any]] = field(default_factory=dict)

    def keys_of(self, entity_type: EntityType) -> FrozenSet[Any]:
        try:
            return self.key_sets[entity_type]
        except KeyError:
            raise RuleEvaluationGap(f"No key set available for {entity_type.value}") from None

    def lookup(self, name: str) -> Mapping[Any, Any]:
        try:
            return self.lookups[name]
        except KeyError:
            raise RuleEvaluationGap(f"No lookup named '{name}' in context") from None

    def duplicates_of(self, entity_type: EntityType) -> FrozenSet[Any]:
        try:
            return self.duplicate_keys[entity_type]
        except KeyError:
            raise RuleEvaluationGap(f"Duplicate keys not computed for {entity_type.value}") from None

    def with_key_set(self, entity_type: EntityType, keys: FrozenSet[Any]) -> "ClassificationContext":
        return replace(self, key_sets=_freeze({**self.key_sets, entity_type: frozenset(keys)}))

    def with_lookup(self, name: str, values: Mapping[Any, Any]) -> "ClassificationContext":
        return replace(self, lookups=_freeze({**self.lookups, name: _freeze(values)}))

    def with_duplicates(self, entity_type: EntityType, keys: FrozenSet[Any]) -> "ClassificationContext":
        return replace(
            self, duplicate_keys=_freeze({**self.duplicate_keys, entity_type: frozenset(keys)})
        )

    @classmethod
    def from_gold(
        cls,
        customers: Optional[pl.DataFrame] = None,
        products: Optional[pl.DataFrame] = None,
        orders: Optional[pl.DataFrame] = None,
        customer_key: str = "customer_id",
        product_key: str = "product_id",
        order_key: str = "order_id",
    ) -> "ClassificationContext":
        """
        Build a context from already-classified gold tables.

        Only the tables passed in contribute; anything omitted stays absent so
        that dependent rules report an evaluation gap instead of silently
        treating every reference as valid.
        """
        ctx = cls()
        if customers is not None:
            ctx = ctx.with_key_set(EntityType.CUSTOMERS, key_set(customers, customer_key))
            if "signup_date" in customers.columns:
                ctx = ctx.with_lookup(
                    CUSTOMER_SIGNUP_DATES, column_lookup(customers, customer_key, "signup_date")
                )
        if products is not None:
            ctx = ctx.with_key_set(EntityType.PRODUCTS, key_set(products, product_key))
        if orders is not None:
            ctx = ctx.with_key_set(EntityType.ORDERS, key_set(orders, order_key))
            if "order_datetime" in orders.columns:
                ctx = ctx.with_lookup(ORDER_DATES, column_lookup(orders, order_key, "order_datetime"))
        return ctx


def key_set(df: pl.DataFrame, key: str) -> FrozenSet[Any]:
    """Distinct non-null values of a key column."""
    if key not in df.columns:
        return frozenset()
    return frozenset(df[key].drop_nulls().unique().to_list())


def column_lookup(df: pl.DataFrame, key: str, value: str) -> Mapping[Any, Any]:
    """Map key -> value, keeping the first occurrence of each key."""
    subset = df.select(key, value).filter(pl.col(key).is_not_null())
    lookup: dict = {}
    for k, v in subset.iter_rows():
        lookup.setdefault(k, v)
    return lookup


def duplicated_keys(df: pl.DataFrame, key: str) -> FrozenSet[Any]:
    """Non-null key values that occur more than once in the frame."""
    if key not in df.columns or df.height == 0:
        return frozenset()
    counts = (
        df.filter(pl.col(key).is_not_null())
        .group_by(key)
        .agg(pl.len().alias("occurrences"))
        .filter(pl.col("occurrences") > 1)
    )
    return frozenset(counts[key].to_list())
