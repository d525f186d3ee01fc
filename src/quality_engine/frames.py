"""
Frame construction from raw record lists.

A field whose values do not share one type is kept as a ``pl.Object`` column
so that each record's raw value reaches the rules; after partitioning such
columns are settled back to a concrete dtype.
"""

import logging
from numbers import Real
from typing import Any, Iterable, List, Mapping, Sequence

import polars as pl

from quality_engine.errors import StructuralError

logger = logging.getLogger(__name__)

CONVERSION_ERRORS = (TypeError, ValueError, OverflowError, pl.exceptions.PolarsError)


def _as_text(values: Sequence[Any]) -> List[Any]:
    return [None if v is None else str(v) for v in values]


def _column(name: str, values: List[Any], text: bool) -> pl.Series:
    try:
        return pl.Series(name, values, strict=True)
    except CONVERSION_ERRORS:
        if text:
            return pl.Series(name, _as_text(values), dtype=pl.Utf8)
        logger.warning("Field %s holds mixed types; keeping raw values", name)
        return pl.Series(name, values, dtype=pl.Object)


def records_to_frame(
    entity: str, records: Iterable[Mapping[str, Any]], text_columns: Sequence[str] = ()
) -> pl.DataFrame:
    """
    Build a frame from a list of records without aborting on a mistyped field.

    Args:
        entity: Entity name used in the error raised for unreadable input
        records: Mappings of field name to value
        text_columns: Fields that fall back to strings instead of raw objects

    Returns:
        DataFrame with one row per record

    Raises:
        StructuralError: If the records cannot be read as rows at all
    """
    try:
        rows = [dict(record) for record in records]
    except CONVERSION_ERRORS as exc:
        raise StructuralError(entity, f"records are not field mappings: {exc}") from exc

    names: List[str] = []
    for row in rows:
        for name in row:
            if name not in names:
                names.append(name)
    try:
        return pl.DataFrame(
            [_column(name, [row.get(name) for row in rows], name in text_columns) for name in names]
        )
    except CONVERSION_ERRORS as exc:
        raise StructuralError(entity, f"records cannot be read as a frame: {exc}") from exc


def settle_object_columns(df: pl.DataFrame) -> pl.DataFrame:
    """
    Replace ``pl.Object`` columns with a concrete dtype.

    A column whose remaining values share one type gets that type; any other
    column is rendered as strings so the raw values stay readable in audit
    tables.
    """
    objects = [name for name, dtype in df.schema.items() if dtype == pl.Object]
    if not objects:
        return df

    settled = []
    for name in objects:
        values = df[name].to_list()
        try:
            settled.append(pl.Series(name, values, strict=True))
        except CONVERSION_ERRORS:
            if all(v is None or (isinstance(v, Real) and not isinstance(v, bool)) for v in values):
                settled.append(pl.Series(name, values, dtype=pl.Float64, strict=False))
                continue
            settled.append(pl.Series(name, _as_text(values), dtype=pl.Utf8))
    return df.with_columns(settled)
