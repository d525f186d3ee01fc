"""
Rule catalog: small pure predicates grouped by entity type.

Each rule answers one question about one record, ``evaluate`` returns True when
the record violates the rule. Rules may raise ``SchemaDrift`` or
``RuleEvaluationGap``; the classifier turns both into a failing flag.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from numbers import Real
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from quality_engine.config import EngineConfig, EntityType, RuleKind
from quality_engine.context import CUSTOMER_SIGNUP_DATES, ORDER_DATES, ClassificationContext
from quality_engine.errors import RuleEvaluationGap, SchemaDrift

Record = Mapping[str, Any]


def require_value(record: Record, field_name: str) -> Any:
    """Return a field value, raising SchemaDrift when it is absent or null."""
    value = record.get(field_name)
    if value is None:
        raise SchemaDrift(field_name)
    return value


def as_datetime(value: Any, field_name: str) -> datetime:
    """Coerce dates, datetimes and ISO strings to a naive datetime."""
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip()).replace(tzinfo=None)
        except ValueError:
            raise SchemaDrift(field_name, f"Field '{field_name}' is not an ISO date: {value!r}") from None
    raise SchemaDrift(field_name, f"Field '{field_name}' has non-temporal type {type(value).__name__}")


class RuleDefinition(ABC):
    """A named, typed validation rule for one entity type."""

    kind: RuleKind

    def __init__(self, name: str, entity_type: EntityType):
        if not name:
            raise ValueError("Rule must define a name")
        self.name = name
        self.entity_type = entity_type

    @abstractmethod
    def evaluate(self, record: Record, context: ClassificationContext) -> bool:  # pragma: no cover
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, entity={self.entity_type.value})"


class NotNullRule(RuleDefinition):
    kind = RuleKind.COMPLETENESS

    def __init__(self, name: str, entity_type: EntityType, field_name: str):
        super().__init__(name, entity_type)
        self.field_name = field_name

    def evaluate(self, record: Record, context: ClassificationContext) -> bool:
        value = record.get(self.field_name)
        if isinstance(value, str):
            return not value.strip()
        return value is None


class AllowedValuesRule(RuleDefinition):
    kind = RuleKind.DOMAIN

    def __init__(self, name: str, entity_type: EntityType, field_name: str, allowed: Iterable[Any]):
        super().__init__(name, entity_type)
        self.field_name = field_name
        self.allowed: FrozenSet[Any] = frozenset(allowed)

    def evaluate(self, record: Record, context: ClassificationContext) -> bool:
        return require_value(record, self.field_name) not in self.allowed


class UniqueKeyRule(RuleDefinition):
    """Flags every occurrence of a key that appears more than once in the batch."""

    kind = RuleKind.UNIQUENESS

    def __init__(self, name: str, entity_type: EntityType, field_name: str):
        super().__init__(name, entity_type)
        self.field_name = field_name

    def evaluate(self, record: Record, context: ClassificationContext) -> bool:
        value = record.get(self.field_name)
        if value is None:
            # Null keys are reported by the completeness rule.
            return False
        return value in context.duplicates_of(self.entity_type)


class ForeignKeyRule(RuleDefinition):
    kind = RuleKind.REFERENTIAL

    def __init__(
        self, name: str, entity_type: EntityType, field_name: str, referenced: EntityType
    ):
        super().__init__(name, entity_type)
        self.field_name = field_name
        self.referenced = referenced

    def evaluate(self, record: Record, context: ClassificationContext) -> bool:
        value = require_value(record, self.field_name)
        return value not in context.keys_of(self.referenced)


class RangeRule(RuleDefinition):
    """Flags null, non-numeric, or out-of-bound values."""

    kind = RuleKind.RANGE

    def __init__(
        self,
        name: str,
        entity_type: EntityType,
        field_name: str,
        minimum: Optional[float] = None,
        maximum: Optional[float] = None,
        inclusive: bool = True,
    ):
        super().__init__(name, entity_type)
        self.field_name = field_name
        self.minimum = minimum
        self.maximum = maximum
        self.inclusive = inclusive

    def evaluate(self, record: Record, context: ClassificationContext) -> bool:
        value = require_value(record, self.field_name)
        if isinstance(value, bool) or not isinstance(value, (Real, Decimal)):
            raise SchemaDrift(self.field_name, f"Field '{self.field_name}' is not numeric: {value!r}")
        if self.minimum is not None:
            if value < self.minimum or (not self.inclusive and value == self.minimum):
                return True
        if self.maximum is not None:
            if value > self.maximum or (not self.inclusive and value == self.maximum):
                return True
        return False


@dataclass(frozen=True)
class FieldSource:
    """Where to find a field that may live on a referenced record instead."""

    lookup: str
    via: str


class ChronologyRule(RuleDefinition):
    """
    Flags records whose timestamps are out of sequence.

    ``sequence`` lists fields that must be non-decreasing. A field missing from
    the record is resolved through ``sources`` (a context lookup keyed by
    another field of the record), e.g. an order's signup date via its customer.
    """

    kind = RuleKind.TEMPORAL

    def __init__(
        self,
        name: str,
        entity_type: EntityType,
        sequence: Sequence[str],
        sources: Optional[Mapping[str, FieldSource]] = None,
    ):
        super().__init__(name, entity_type)
        if len(sequence) < 2:
            raise ValueError("A chronology needs at least two fields")
        self.sequence: Tuple[str, ...] = tuple(sequence)
        self.sources: Dict[str, FieldSource] = dict(sources or {})

    def _resolve(self, record: Record, context: ClassificationContext, field_name: str) -> datetime:
        value = record.get(field_name)
        if value is None and field_name in self.sources:
            source = self.sources[field_name]
            ref = require_value(record, source.via)
            value = context.lookup(source.lookup).get(ref)
            if value is None:
                raise RuleEvaluationGap(f"No {field_name} found for {source.via}={ref!r}")
        if value is None:
            raise SchemaDrift(field_name)
        return as_datetime(value, field_name)

    def evaluate(self, record: Record, context: ClassificationContext) -> bool:
        moments = [self._resolve(record, context, f) for f in self.sequence]
        return any(later < earlier for earlier, later in zip(moments, moments[1:]))


@dataclass
class RuleCatalog:
    """Registry of rules per entity type, in flag-column order."""

    _rules: Dict[EntityType, List[RuleDefinition]] = field(default_factory=dict)

    def register(self, rule: RuleDefinition) -> RuleDefinition:
        existing = self._rules.setdefault(rule.entity_type, [])
        if any(r.name == rule.name for r in existing):
            raise ValueError(f"Duplicate rule name for {rule.entity_type.value}: {rule.name}")
        existing.append(rule)
        return rule

    def rules_for(self, entity_type: EntityType) -> Tuple[RuleDefinition, ...]:
        return tuple(self._rules.get(entity_type, ()))

    def flag_names(self, entity_type: EntityType) -> List[str]:
        return [r.name for r in self.rules_for(entity_type)]

    def entity_types(self) -> List[EntityType]:
        return list(self._rules)


def default_catalog(config: Optional[EngineConfig] = None) -> RuleCatalog:
    """Build the fixed rule catalog for the six transactional entities."""
    config = config or EngineConfig()
    keys = config.entity_keys
    catalog = RuleCatalog()

    for entity in EntityType:
        key = keys[entity]
        catalog.register(NotNullRule(f"{key}_missing", entity, key))

    # customers
    catalog.register(NotNullRule("email_missing", EntityType.CUSTOMERS, "email"))
    catalog.register(
        AllowedValuesRule(
            "state_invalid",
            EntityType.CUSTOMERS,
            "state",
            config.allowed_states,
        )
    )
    customer_key = keys[EntityType.CUSTOMERS]
    catalog.register(UniqueKeyRule(f"{customer_key}_duplicate", EntityType.CUSTOMERS, customer_key))

    # products
    product_key = keys[EntityType.PRODUCTS]
    catalog.register(UniqueKeyRule(f"{product_key}_duplicate", EntityType.PRODUCTS, product_key))

    # orders
    order_key = keys[EntityType.ORDERS]
    catalog.register(UniqueKeyRule(f"{order_key}_duplicate", EntityType.ORDERS, order_key))
    catalog.register(
        ForeignKeyRule("fk_customer_orphan", EntityType.ORDERS, "customer_id", EntityType.CUSTOMERS)
    )
    catalog.register(
        ChronologyRule(
            "order_before_signup",
            EntityType.ORDERS,
            ("signup_date", "order_datetime"),
            {"signup_date": FieldSource(CUSTOMER_SIGNUP_DATES, "customer_id")},
        )
    )

    # order items
    # skipped when order_id is the configured identity key, which registered it above
    if "order_id_missing" not in catalog.flag_names(EntityType.ORDER_ITEMS):
        catalog.register(NotNullRule("order_id_missing", EntityType.ORDER_ITEMS, "order_id"))
    catalog.register(RangeRule("quantity_invalid", EntityType.ORDER_ITEMS, "quantity", minimum=1))
    catalog.register(
        RangeRule("unit_price_invalid", EntityType.ORDER_ITEMS, "unit_price", minimum=0, inclusive=False)
    )
    catalog.register(
        ForeignKeyRule("fk_product_orphan", EntityType.ORDER_ITEMS, "product_id", EntityType.PRODUCTS)
    )

    # payments
    # skipped when order_id is the configured identity key
    if "order_id_missing" not in catalog.flag_names(EntityType.PAYMENTS):
        catalog.register(NotNullRule("order_id_missing", EntityType.PAYMENTS, "order_id"))
    catalog.register(RangeRule("amount_negative", EntityType.PAYMENTS, "amount", minimum=0))

    # deliveries
    catalog.register(
        ChronologyRule(
            "delivery_sequence_invalid",
            EntityType.DELIVERIES,
            ("order_date", "ship_date", "delivery_date"),
            {"order_date": FieldSource(ORDER_DATES, "order_id")},
        )
    )
    return catalog
