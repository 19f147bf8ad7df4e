"""
Comparison Analysis (selection group vs. comparison group)

Splits both groups on the same buckets and attributes the gap between the
groups' aggregates to individual buckets.

Mean uses a two-part Oaxaca-Blinder decomposition over value shares (s) and
bucket means (m), with the comparison group as baseline:
    mix_effect  = (s_sel − s_cmp) × m_cmp
    rate_effect = s_sel × (m_sel − m_cmp)
    impact      = s_sel × m_sel − s_cmp × m_cmp = mix_effect + rate_effect
When the comparison group has no values in a bucket, its overall mean stands
in for m_cmp; the decomposition stays exact because s_cmp is then zero.

Sum and count are additive, so impact = agg_sel − agg_cmp per bucket.

In both cases the impacts of one field's buckets add up to the gap between
the groups over the rows that field covers.
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
from .contribution import rank_results
from .fields import candidate_fields
from .models import Aggregator, FieldMeta, MainField, SubgroupResult
from .stats import Rows, aggregate, as_frame, filter_mask, numeric_column

logger = logging.getLogger(__name__)


def _share(part: float, total: float) -> float:
    return part / total if total > 0 else 0.0


def _welch_pvalue(selection: pd.Series, comparison: pd.Series) -> Optional[float]:
    if len(selection) < 2 or len(comparison) < 2:
        return None
    if selection.std() == 0 and comparison.std() == 0:
        return None
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', RuntimeWarning)
        p_value = stats.ttest_ind(selection.to_numpy(), comparison.to_numpy(), equal_var=False).pvalue
    return float(p_value) if np.isfinite(p_value) else None


def _share_pvalue(in_sel: int, n_sel: int, in_cmp: int, n_cmp: int) -> Optional[float]:
    if n_sel == 0 or n_cmp == 0:
        return None
    _, p_value = stats.fisher_exact([[in_sel, n_sel - in_sel], [in_cmp, n_cmp - in_cmp]])
    return float(p_value)


def comparison_table(
    selection: pd.DataFrame,
    comparison: pd.DataFrame,
    meta: FieldMeta,
    main_field: MainField,
    config: AnalysisConfig
) -> pd.DataFrame:
    """Per-bucket decomposition table for one split field."""
    parts = [frame[meta.fid] for frame in (selection, comparison) if meta.fid in frame.columns]
    if not parts:
        return pd.DataFrame()
    buckets = split_buckets(meta, pd.concat(parts, ignore_index=True), config)
    if not buckets:
        return pd.DataFrame()

    fid = main_field.fid
    aggregator = main_field.aggregator
    sel_target = numeric_column(selection, fid)
    cmp_target = numeric_column(comparison, fid)
    n_sel, n_cmp = len(selection), len(comparison)

    sel_weight_total = int(sel_target.notna().sum())
    cmp_weight_total = int(cmp_target.notna().sum())
    cmp_overall_mean = float(cmp_target.mean()) if cmp_weight_total else 0.0

    rows = []
    for order, bucket in enumerate(buckets):
        sel_mask = filter_mask(selection, bucket)
        cmp_mask = filter_mask(comparison, bucket)
        in_sel, in_cmp = int(sel_mask.sum()), int(cmp_mask.sum())

        value = aggregate(selection[sel_mask], fid, aggregator)
        reference_value = aggregate(comparison[cmp_mask], fid, aggregator)

        rate_effect = mix_effect = None
        if aggregator == Aggregator.MEAN:
            sel_values = sel_target[sel_mask].dropna()
            cmp_values = cmp_target[cmp_mask].dropna()
            s_sel = _share(len(sel_values), sel_weight_total)
            s_cmp = _share(len(cmp_values), cmp_weight_total)
            m_sel = float(sel_values.mean()) if len(sel_values) else 0.0
            m_cmp = float(cmp_values.mean()) if len(cmp_values) else cmp_overall_mean

            mix_effect = (s_sel - s_cmp) * m_cmp
            rate_effect = s_sel * (m_sel - m_cmp)
            impact = mix_effect + rate_effect
            reference_part = s_cmp * m_cmp
            p_value = _welch_pvalue(sel_values, cmp_values)
        else:
            impact = value - reference_value
            reference_part = reference_value
            p_value = _share_pvalue(in_sel, n_sel, in_cmp, n_cmp)

        rows.append({
            'fid': meta.fid,
            'order': order,
            'bucket': bucket,
            'size': in_sel,
            'comparison_size': in_cmp,
            'value': value,
            'reference_value': reference_value,
            'impact': impact,
            'reference_part': reference_part,
            'rate_effect': rate_effect,
            'mix_effect': mix_effect,
            'coverage': (_share(in_sel, n_sel) + _share(in_cmp, n_cmp)) / 2,
            'p_value': p_value,
        })

    df = pd.DataFrame(rows)
    df['contribution'], mode = attribute_gap(
        df['impact'], df['reference_part'].sum(), config.two_sided_threshold
    )
    df['score'] = contribution_scores(df['contribution'], df['coverage'], config.coverage_floor)

    logger.debug(
        f"[COMPARE] field={meta.fid} buckets={len(df)} gap={df['impact'].sum():.4f} mode={mode}"
    )
    return df


def analyze_comparisons(
    population: Rows,
    comparison_population: Rows,
    fields: Sequence[FieldMeta],
    main_field: MainField,
    config: Optional[AnalysisConfig] = None
) -> List[SubgroupResult]:
    """
    Rank single-field buckets by how much they explain the difference between
    the selection group and the comparison group.

    Args:
        population: Selection group rows
        comparison_population: Comparison group rows
        fields: Field metadata; every field, including the main field, is a candidate
        main_field: Measure and aggregator being compared
        config: Binning and scoring settings

    Returns:
        Results sorted by score (desc), then size (desc), fid and bucket order.
        Empty when either group is empty.
    """
    config = config or AnalysisConfig()
    selection = as_frame(population)
    comparison = as_frame(comparison_population)
    if selection.empty or comparison.empty:
        return []

    candidates = candidate_fields(fields, main_field, include_main=True)
    tables = [comparison_table(selection, comparison, meta, main_field, config) for meta in candidates]
    results = rank_results(tables, {meta.fid: meta for meta in candidates}, config)
    logger.debug(f"[COMPARE] {len(results)} results over {len(candidates)} candidate fields")
    return results
