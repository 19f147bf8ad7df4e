"""
Filtering and aggregate statistics over tabular rows.

Rows are held in a pandas DataFrame. Any sequence of row mappings is accepted
wherever a frame is expected and converted with ``as_frame``.

Conventions used everywhere in the package:
    - mean / sum coerce the target column with ``pd.to_numeric`` and ignore
      values that are missing or not numeric
    - count is the number of non-missing values of the target column
    - a subset with no target values (no rows, or only missing values) gives
      sum 0.0, count 0 and mean 0.0; this is reported through
      ``DivisionStats.is_empty`` rather than NaN
"""

import logging
import numbers
from datetime import date, datetime
from typing import Any, Dict, Iterable, Mapping, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from pandas.api.types import is_datetime64_any_dtype, is_numeric_dtype

from .fields import find_field
from .models import Aggregator, DivisionStats, FieldMeta, Filter

logger = logging.getLogger(__name__)

Rows = Union[pd.DataFrame, Sequence[Mapping[str, Any]]]


def as_frame(rows: Rows) -> pd.DataFrame:
    """Return rows as a DataFrame. DataFrames pass through untouched."""
    if isinstance(rows, pd.DataFrame):
        return rows
    return pd.DataFrame.from_records(list(rows))


def numeric_column(frame: pd.DataFrame, fid: str) -> pd.Series:
    """Numeric view of a column; missing columns give an all-NaN series."""
    if fid not in frame.columns:
        return pd.Series(np.nan, index=frame.index, dtype=float)
    return pd.to_numeric(frame[fid], errors='coerce').astype(float)


def present_mask(frame: pd.DataFrame, fid: str) -> pd.Series:
    """Rows where the column has a value."""
    if fid not in frame.columns:
        return pd.Series(False, index=frame.index)
    return frame[fid].notna()


def aggregate(frame: pd.DataFrame, fid: str, aggregator: Aggregator) -> float:
    aggregator = Aggregator(aggregator)
    if aggregator == Aggregator.COUNT:
        return int(present_mask(frame, fid).sum())

    values = numeric_column(frame, fid).dropna()
    if aggregator == Aggregator.SUM:
        return float(values.sum())
    return float(values.mean()) if len(values) > 0 else 0.0


def compute_aggregates(frame: pd.DataFrame, fid: str) -> Dict[Aggregator, float]:
    return {agg: aggregate(frame, fid, agg) for agg in Aggregator}


def _comparable(column: pd.Series, bound: Any) -> pd.Series:
    """Coerce a column so it can be compared with a range bound."""
    if isinstance(bound, (datetime, date, np.datetime64)):
        if is_datetime64_any_dtype(column):
            return column
        return pd.to_datetime(column, errors='coerce')
    if isinstance(bound, numbers.Number):
        if is_numeric_dtype(column):
            return column
        return pd.to_numeric(column, errors='coerce')
    return column


def filter_mask(frame: pd.DataFrame, flt: Filter) -> pd.Series:
    """Boolean mask of rows satisfying one filter."""
    if flt.fid not in frame.columns:
        return pd.Series(False, index=frame.index)
    column = frame[flt.fid]

    if flt.kind == 'range':
        lo, hi = flt.range
        values = _comparable(column, lo)
        if is_datetime64_any_dtype(values):
            # datetime64 columns refuse comparisons with plain dates
            lo, hi = pd.Timestamp(lo), pd.Timestamp(hi)
        mask = (values >= lo) & (values <= hi)
    else:
        wanted = [v for v in flt.values if not pd.isna(v)]
        mask = column.isin(wanted)
        if len(wanted) < len(flt.values):
            # a null in the value set explicitly admits missing values
            mask = mask | column.isna()
    return mask.fillna(False).astype(bool)


def apply_dividers(rows: Rows, filters: Iterable[Filter]) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Partition rows by a set of filters.

    Args:
        rows: Full row collection
        filters: Filters combined with AND (possibly empty)

    Returns:
        Tuple of (matched, unmatched) frames. Both keep the original index and
        row order. With no filters, every row matches.
    """
    frame = as_frame(rows)
    mask = pd.Series(True, index=frame.index)
    for flt in filters:
        mask &= filter_mask(frame, flt)
    return frame[mask], frame[~mask]


def stat_division(
    full_data: Rows,
    subset_data: Rows,
    fields: Sequence[FieldMeta],
    target_fid: str
) -> DivisionStats:
    """
    Compute every aggregator of ``target_fid`` over the full data and a subset.

    Raises:
        KeyError: If ``target_fid`` is not one of ``fields``
    """
    if find_field(fields, target_fid) is None:
        raise KeyError(f"Unknown target field: {target_fid}")

    full = as_frame(full_data)
    subset = as_frame(subset_data)
    return DivisionStats(
        population=compute_aggregates(full, target_fid),
        subset=compute_aggregates(subset, target_fid),
        population_size=len(full),
        subset_size=len(subset),
    )
