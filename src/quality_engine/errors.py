"""
Exception taxonomy for the quality engine.

Only ``StructuralError`` ever reaches callers of a refresh. The other
conditions are raised inside rule evaluation and resolved by the classifier
into a failing flag.
"""


class QualityEngineError(Exception):
    """Base class for all engine errors."""


class RuleEvaluationGap(QualityEngineError):
    """A rule lacks the context data it needs (e.g. a referenced key set)."""


class SchemaDrift(QualityEngineError):
    """An expected field is absent, null or of the wrong type on a record."""

    def __init__(self, field: str, message: str = ""):
        self.field = field
        super().__init__(message or f"Field '{field}' is missing or mistyped")


class StructuralError(QualityEngineError):
    """Input that cannot be read at all, such as a table without its identity column."""

    def __init__(self, entity: str, message: str):
        self.entity = entity
        super().__init__(f"{entity}: {message}")
