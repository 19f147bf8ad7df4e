"""Tests for gap attribution and scoring."""

import unittest

import numpy as np
import pandas as pd

from breakout_package.attribution import attribute_gap, contribution_scores, two_sided_contributions


class AttributionTests(unittest.TestCase):

    def test_two_sided_normalizes_each_side_separately(self):
        result = two_sided_contributions(pd.Series([3.0, 1.0, -2.0]))
        self.assertEqual(result.tolist(), [0.75, 0.25, -1.0])

    def test_standard_mode_divides_by_total_gap(self):
        contributions, mode = attribute_gap(pd.Series([2.0, 2.0]), reference_total=10.0)
        self.assertEqual(mode, "standard")
        self.assertEqual(contributions.tolist(), [0.5, 0.5])

    def test_small_gap_switches_to_two_sided(self):
        contributions, mode = attribute_gap(pd.Series([5.0, -4.0]), reference_total=100.0)
        self.assertEqual(mode, "two_sided")
        self.assertEqual(contributions.tolist(), [1.0, -1.0])

    def test_cancelling_deviations_switch_to_two_sided(self):
        # delta is large relative to the reference but one bucket exceeds it
        _, mode = attribute_gap(pd.Series([30.0, -10.0]), reference_total=50.0)
        self.assertEqual(mode, "two_sided")

    def test_no_gap_gives_zero_contributions(self):
        contributions, mode = attribute_gap(pd.Series([0.0, 0.0]), reference_total=10.0)
        self.assertEqual(mode, "none")
        self.assertTrue((contributions == 0).all())

    def test_scores_reward_outsized_contribution(self):
        scores = contribution_scores(pd.Series([0.5, 1.0, -1.0]), pd.Series([0.5, 0.25, 0.0]))
        self.assertAlmostEqual(scores.iloc[0], np.sqrt(0.5))
        self.assertAlmostEqual(scores.iloc[1], 2.0)
        # coverage is floored at 0.01
        self.assertAlmostEqual(scores.iloc[2], np.sqrt(1.0 + 1.0 / 0.01))


if __name__ == "__main__":
    unittest.main()
