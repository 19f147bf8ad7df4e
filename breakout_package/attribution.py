"""
Gap attribution shared by the contribution and comparison analyzers.

Given the signed gap of every bucket of one field, decide how to normalize
the gaps into contributions and turn contribution plus coverage into a
ranking score.
"""

import logging
from typing import Tuple

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def two_sided_contributions(diff: pd.Series) -> pd.Series:
    """
    Calculate contributions using two-sided normalization for small delta cases.
    Positive contributions sum to +1, negative contributions sum to -1.
    This gives stable results even when large deviations cancel out.

    Based on the formula:
    - pos_sum = Σ positive gaps
    - neg_sum = Σ |negative| gaps
    - contribution_i = diff_i / pos_sum (if positive) or diff_i / neg_sum (if negative)
    """
    pos_sum = diff.clip(lower=0).sum()
    neg_sum = -diff.clip(upper=0).sum()

    def _share(x):
        if x > 0 and pos_sum > 0:
            return x / pos_sum
        elif x < 0 and neg_sum > 0:
            return x / neg_sum
        else:
            return 0.0

    return diff.apply(_share).astype(float)


def attribute_gap(
    diff: pd.Series,
    reference_total: float,
    two_sided_threshold: float = 0.05
) -> Tuple[pd.Series, str]:
    """
    Normalize per-bucket gaps into contributions.

    Standard attribution divides each gap by the total gap. Two-sided
    normalization is used instead when the total gap is small relative to the
    reference total, or when a single bucket's gap exceeds the total (large
    deviations cancelling out), both of which would produce contributions far
    beyond 100%.

    Args:
        diff: Signed gap per bucket
        reference_total: Total of the reference side (expected values)
        two_sided_threshold: Relative gap size below which two-sided mode is used

    Returns:
        Tuple of (contributions, mode) where mode is 'standard', 'two_sided' or 'none'
    """
    diff = diff.astype(float)
    if diff.empty or np.allclose(diff.to_numpy(), 0.0):
        return pd.Series(0.0, index=diff.index), 'none'

    delta = diff.sum()
    delta_ratio = abs(delta) / abs(reference_total) if reference_total != 0 else 0.0
    max_deviation = diff.abs().max()
    max_potential_contrib = max_deviation / abs(delta) if delta != 0 else np.inf

    if (delta_ratio < two_sided_threshold) or (max_potential_contrib > 1.0 + 1e-9):
        return two_sided_contributions(diff), 'two_sided'
    return diff / delta, 'standard'


def contribution_scores(
    contribution: pd.Series,
    coverage: pd.Series,
    coverage_floor: float = 0.01
) -> pd.Series:
    """
    Heuristic score: sqrt(|contribution| + max(|contribution| - coverage, 0) / coverage).

    Coverage is floored to avoid division by zero. Buckets that explain more
    of the gap than their share of the population score higher.
    """
    abs_contribution = contribution.abs()
    coverage_floored = coverage.clip(lower=coverage_floor)
    return np.sqrt(
        abs_contribution +
        np.maximum(abs_contribution - coverage, 0) / coverage_floored
    )
