"""
Contribution Analysis (single group vs. global baseline)

For every candidate field, split the population into buckets and measure how
far each bucket pulls the population's aggregate away from the global
baseline value of the main field.

Per bucket, with the benchmark taken from the baseline:
    mean:  weight = non-missing target values, actual = Σ target
           expected = weight × baseline mean
    sum:   weight = rows, actual = Σ target
           expected = weight × baseline / global_size
    count: weight = actual = non-missing target values
           expected = Σ actual × the bucket's share of non-missing target
           values in the global data

    gap = actual − expected

For count the gaps add up to zero, so they always go through two-sided
normalization: over-represented buckets share +100%, under-represented ones
share −100%.

Gaps are normalized into contributions per field (see attribution.py) and
scored against the bucket's coverage of the population, so larger and more
deviant buckets rank first.
"""

import logging
import warnings
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd
import scipy.stats as stats

from .attribution import attribute_gap, contribution_scores
from .buckets import split_buckets
from .config import AnalysisConfig
from .fields import candidate_fields
from .models import Aggregator, FieldMeta, MainField, SubgroupResult
from .stats import Rows, aggregate, as_frame, filter_mask, numeric_column, present_mask

logger = logging.getLogger(__name__)

RESULT_ORDER = ['score', 'size', 'fid', 'order']


def _benchmark_rate(aggregator: Aggregator, global_value: float, global_size: int) -> float:
    if aggregator == Aggregator.MEAN:
        return global_value
    return global_value / global_size if global_size > 0 else 0.0


def _one_sample_pvalue(values: pd.Series, baseline: float) -> Optional[float]:
    if len(values) < 2 or values.std() == 0:
        return None
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', RuntimeWarning)
        p_value = stats.ttest_1samp(values.to_numpy(), baseline).pvalue
    return float(p_value) if np.isfinite(p_value) else None


def contribution_table(
    frame: pd.DataFrame,
    meta: FieldMeta,
    main_field: MainField,
    rate: float,
    baseline: float,
    config: AnalysisConfig,
    reference: Optional[pd.DataFrame] = None
) -> pd.DataFrame:
    """
    Per-bucket contribution table for one split field.

    ``reference`` is the global data the count shares are measured against;
    it defaults to ``frame`` itself. Returns an empty frame when the field
    produces no buckets.
    """
    if meta.fid not in frame.columns:
        return pd.DataFrame()
    buckets = split_buckets(meta, frame[meta.fid], config)
    if not buckets:
        return pd.DataFrame()

    aggregator = main_field.aggregator
    target = numeric_column(frame, main_field.fid)
    present = present_mask(frame, main_field.fid)
    reference = frame if reference is None else reference
    reference_present = present_mask(reference, main_field.fid)

    rows = []
    for order, bucket in enumerate(buckets):
        mask = filter_mask(frame, bucket)
        reference_weight = 0
        if aggregator == Aggregator.MEAN:
            weight = int((mask & target.notna()).sum())
            actual = float(target[mask].sum())
        elif aggregator == Aggregator.SUM:
            weight = int(mask.sum())
            actual = float(target[mask].sum())
        else:
            weight = int((mask & present).sum())
            actual = float(weight)
            reference_weight = int((filter_mask(reference, bucket) & reference_present).sum())

        p_value = None
        if aggregator == Aggregator.MEAN:
            p_value = _one_sample_pvalue(target[mask].dropna(), baseline)

        rows.append({
            'fid': meta.fid,
            'order': order,
            'bucket': bucket,
            'size': int(mask.sum()),
            'weight': weight,
            'actual': actual,
            'reference_weight': reference_weight,
            'value': aggregate(frame[mask], main_field.fid, aggregator),
            'reference_value': aggregate(frame[~mask], main_field.fid, aggregator),
            'p_value': p_value,
        })

    df = pd.DataFrame(rows)
    if aggregator == Aggregator.COUNT:
        reference_total = df['reference_weight'].sum()
        shares = df['reference_weight'] / reference_total if reference_total > 0 else 0.0
        df['expected'] = df['actual'].sum() * shares
    else:
        df['expected'] = df['weight'] * rate
    df['impact'] = df['actual'] - df['expected']

    total_weight = df['weight'].sum()
    df['coverage'] = df['weight'] / total_weight if total_weight > 0 else 0.0

    df['contribution'], mode = attribute_gap(
        df['impact'], df['expected'].sum(), config.two_sided_threshold
    )
    df['score'] = contribution_scores(df['contribution'], df['coverage'], config.coverage_floor)

    logger.debug(
        f"[CONTRIB] field={meta.fid} buckets={len(df)} delta={df['impact'].sum():.4f} mode={mode}"
    )
    return df


def rank_results(tables: List[pd.DataFrame], metas: dict, config: AnalysisConfig) -> List[SubgroupResult]:
    """Merge per-field tables into one list ordered by score, size, fid and bucket order."""
    tables = [t for t in tables if not t.empty]
    if not tables:
        return []
    ranked = pd.concat(tables, ignore_index=True).sort_values(
        RESULT_ORDER, ascending=[False, False, True, True], kind='mergesort'
    )
    if config.max_results is not None:
        ranked = ranked.head(config.max_results)

    def _optional(row, column, cast):
        if column not in row or row[column] is None or pd.isna(row[column]):
            return None
        return cast(row[column])

    results = []
    for _, row in ranked.iterrows():
        results.append(SubgroupResult(
            field=metas[row['fid']],
            bucket=row['bucket'],
            size=int(row['size']),
            value=float(row['value']),
            reference_value=float(row['reference_value']),
            impact=float(row['impact']),
            contribution=float(row['contribution']),
            coverage=float(row['coverage']),
            score=float(row['score']),
            comparison_size=_optional(row, 'comparison_size', int),
            rate_effect=_optional(row, 'rate_effect', float),
            mix_effect=_optional(row, 'mix_effect', float),
            p_value=_optional(row, 'p_value', float),
        ))
    return results


def analyze_contributions(
    population: Rows,
    fields: Sequence[FieldMeta],
    main_field: MainField,
    global_value: Optional[float],
    global_size: Optional[int] = None,
    config: Optional[AnalysisConfig] = None,
    global_data: Optional[Rows] = None
) -> List[SubgroupResult]:
    """
    Rank single-field buckets by how much they pull the population's aggregate
    away from the global baseline.

    Args:
        population: Rows to analyze (typically the selection group)
        fields: Field metadata; every field except the main field is a candidate
        main_field: Measure and aggregator being explained
        global_value: Baseline aggregate of the main field over the whole dataset
        global_size: Row count of the whole dataset (sum baseline);
            defaults to the population size
        config: Binning and scoring settings
        global_data: Whole dataset; count compares each bucket's share of the
            population with its share here. Defaults to the population

    Returns:
        Results sorted by score (desc), then size (desc), fid and bucket order.
        Empty when the population is empty or the baseline is not finite.
    """
    config = config or AnalysisConfig()
    frame = as_frame(population)
    if frame.empty or global_value is None or not np.isfinite(global_value):
        return []

    global_size = len(frame) if global_size is None else global_size
    rate = _benchmark_rate(main_field.aggregator, float(global_value), global_size)
    reference = as_frame(global_data) if global_data is not None else frame

    candidates = candidate_fields(fields, main_field, include_main=False)
    tables = [
        contribution_table(frame, meta, main_field, rate, float(global_value), config, reference)
        for meta in candidates
    ]
    results = rank_results(tables, {meta.fid: meta for meta in candidates}, config)
    logger.debug(f"[CONTRIB] {len(results)} results over {len(candidates)} candidate fields")
    return results
