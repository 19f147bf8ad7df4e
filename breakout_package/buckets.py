"""
Bucketing policy for splitting a population on one field.

Numeric fields (quantitative, temporal and numeric ordinal) are cut into
equal-frequency bins; categorical fields get one bucket per distinct value.
Each bucket is expressed as a Filter so it can be applied with the same
machinery as user filters, and replayed as a filter by the UI.
"""

import logging
from typing import List, Optional

import pandas as pd
from pandas.api.types import is_datetime64_any_dtype, is_numeric_dtype

from .config import AnalysisConfig
from .models import FieldMeta, Filter, SemanticType

logger = logging.getLogger(__name__)


def _is_numeric_view(meta: FieldMeta, values: pd.Series) -> bool:
    if meta.semantic_type == SemanticType.NOMINAL:
        return False
    if is_datetime64_any_dtype(values):
        return True
    return is_numeric_dtype(values) and values.dtype != bool


def _ordering_key(values: pd.Series) -> pd.Series:
    """Float view used for quantile cuts, including datetimes."""
    if is_datetime64_any_dtype(values):
        return (values - values.min()).dt.total_seconds()
    return values.astype(float)


def _scalar(value):
    """Unwrap numpy scalars so bucket bounds serialize cleanly."""
    return value.item() if hasattr(value, 'item') and not isinstance(value, pd.Timestamp) else value


def categorical_buckets(meta: FieldMeta, values: pd.Series, max_categories: int) -> List[Filter]:
    counts = values.value_counts()
    if len(counts) > max_categories:
        logger.debug(f"Skipping '{meta.fid}': {len(counts)} distinct values exceeds {max_categories}")
        return []
    ordered = sorted(counts.items(), key=lambda kv: (-kv[1], str(kv[0])))
    return [Filter(fid=meta.fid, values=(_scalar(value),)) for value, _ in ordered]


def numeric_buckets(meta: FieldMeta, values: pd.Series, bin_count: int) -> List[Filter]:
    distinct = values.drop_duplicates().sort_values()
    if len(distinct) <= bin_count:
        return [Filter(fid=meta.fid, range=(_scalar(v), _scalar(v))) for v in distinct]

    codes = pd.qcut(_ordering_key(values), q=bin_count, labels=False, duplicates='drop')
    buckets = []
    for _, members in values.groupby(codes, sort=True):
        buckets.append(Filter(fid=meta.fid, range=(_scalar(members.min()), _scalar(members.max()))))
    return buckets


def split_buckets(
    meta: FieldMeta,
    values: pd.Series,
    config: Optional[AnalysisConfig] = None
) -> List[Filter]:
    """
    Build the candidate buckets of one field.

    Args:
        meta: Field being split
        values: The field's values over the population(s) being analyzed
        config: Binning settings (bin_count, max_categories)

    Returns:
        List of non-overlapping buckets; empty when the field cannot split
        the population (fewer than two distinct values, or too many categories)
    """
    config = config or AnalysisConfig()
    present = values.dropna()
    if (meta.semantic_type == SemanticType.QUANTITATIVE
            and not is_numeric_dtype(present) and not is_datetime64_any_dtype(present)):
        present = pd.to_numeric(present, errors='coerce').dropna()
    elif (meta.semantic_type == SemanticType.TEMPORAL
            and not is_numeric_dtype(present) and not is_datetime64_any_dtype(present)):
        # date strings; bucket bounds become Timestamps that filter_mask coerces back
        present = pd.to_datetime(present, errors='coerce').dropna()
    if present.nunique() < 2:
        return []

    if _is_numeric_view(meta, present):
        return numeric_buckets(meta, present, config.bin_count)
    return categorical_buckets(meta, present, config.max_categories)
