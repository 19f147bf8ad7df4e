"""Tests for the reactive BreakoutStore.

Most tests run with ``throttle_interval=0`` so every input change publishes
synchronously; throttling itself is exercised with a manual timer factory.
"""

import threading
import time
import unittest
from unittest.mock import MagicMock, patch

import pandas as pd

from breakout_package.config import AnalysisConfig
from breakout_package.models import FieldMeta, Filter, MainField, SemanticType, UniqueFilter
from breakout_package.store import PUBLISHED_FIELDS, BreakoutStore
from timers import ManualClock


ROWS = [{"f": 10}, {"f": 20}, {"f": 30}, {"f": 40}]
FIELDS = [FieldMeta("f")]
SYNC = AnalysisConfig(throttle_interval=0)


class StoreExampleTests(unittest.TestCase):
    """The four-row walkthrough: global mean 25, selection 15, comparison 35."""

    def setUp(self):
        self.store = BreakoutStore(ROWS, FIELDS, config=SYNC)
        self.store.set_main_field(MainField("f", "mean"))

    def tearDown(self):
        self.store.destroy()

    def test_initial_state(self):
        store = BreakoutStore(ROWS, FIELDS, config=SYNC)
        self.assertIs(store.selection, store.data)
        self.assertIsNone(store.global_stats)
        self.assertIsNone(store.selection_stats)
        self.assertTrue(store.diff_group.empty)
        self.assertEqual(store.general_analyses, [])
        self.assertEqual(store.comparison_analyses, [])
        store.destroy()

    def test_global_stats_without_filters(self):
        self.assertEqual(self.store.global_stats.stats["mean"], 25)
        self.assertEqual(self.store.global_stats.field.fid, "f")
        self.assertIsNone(self.store.selection_stats)
        self.assertEqual(len(self.store.selection), 4)

    def test_selection_follows_main_field_filters(self):
        self.store.set_main_field_filters([Filter("f", range=(0, 25))])
        self.assertEqual(self.store.selection["f"].tolist(), [10, 20])
        self.assertEqual(self.store.selection_stats.stats["mean"], 15)

    def test_comparison_group_and_analyses(self):
        self.store.set_main_field_filters([Filter("f", range=(0, 25))])
        self.store.set_comparison_filters([Filter("f", range=(25, 40))])

        self.assertEqual(self.store.diff_group["f"].tolist(), [30, 40])
        self.assertEqual(self.store.diff_stats.stats["mean"], 35)

        analyses = self.store.comparison_analyses
        self.assertTrue(analyses)
        own = [r for r in analyses if r.field.fid == "f"]
        self.assertAlmostEqual(sum(r.impact for r in own), 15 - 35)

    def test_same_contents_give_equal_stats(self):
        self.store.set_main_field_filters([Filter("f", range=(0, 25))])
        first = self.store.selection_stats.stats
        self.store.set_main_field_filters([Filter("f", range=(0, 25))])
        self.assertEqual(self.store.selection_stats.stats, first)

    def test_filters_are_not_cumulative(self):
        self.store.set_main_field_filters([Filter("f", range=(0, 25))])
        self.store.set_main_field_filters([Filter("f", range=(25, 40))])
        self.assertEqual(self.store.selection["f"].tolist(), [30, 40])

    def test_unknown_filter_field_empties_the_group(self):
        with self.assertLogs("breakout_package.store", level="WARNING"):
            self.store.set_main_field_filters([Filter("missing", range=(0, 1))])
        self.assertTrue(self.store.selection.empty)
        self.assertIsNone(self.store.selection_stats)
        self.assertEqual(self.store.general_analyses, [])

    def test_mean_of_non_quantitative_field_has_no_stats(self):
        fields = [FieldMeta("f"), FieldMeta("city", semantic_type=SemanticType.NOMINAL)]
        store = BreakoutStore([{"f": 1, "city": "a"}, {"f": 2, "city": "b"}], fields, config=SYNC)
        store.set_main_field(MainField("city", "mean"))
        self.assertIsNone(store.global_stats)
        store.set_main_field(MainField("city", "count"))
        self.assertEqual(store.global_stats.stats["count"], 2)
        store.destroy()


class StoreAnalysisTests(unittest.TestCase):

    def setUp(self):
        self.data = pd.DataFrame(
            [{"region": "A", "value": 22.0} for _ in range(5)]
            + [{"region": "B", "value": 30.0} for _ in range(5)]
            + [{"region": "C", "value": 8.0} for _ in range(10)]
        )
        self.fields = [FieldMeta("value"), FieldMeta("region", semantic_type=SemanticType.NOMINAL)]
        self.store = BreakoutStore(self.data, self.fields, config=SYNC)
        self.store.set_main_field(MainField("value", "mean"))

    def tearDown(self):
        self.store.destroy()

    def test_general_analyses_explain_the_selection(self):
        self.store.set_main_field_filters([Filter("region", values=("A", "B"))])
        results = self.store.general_analyses
        self.assertTrue(results)
        self.assertEqual(results[0].to_filter(), Filter("region", values=("B",)))
        scores = [r.score for r in results]
        self.assertEqual(scores, sorted(scores, reverse=True))

    def test_summarize(self):
        self.store.set_main_field_filters([Filter("region", values=("A", "B"))])
        summary = self.store.summarize()
        self.assertEqual(set(summary), {"general", "comparison"})
        self.assertIn("region = B", summary["general"])
        self.assertTrue(summary["comparison"].startswith("No significant contributors"))

    def test_count_analysis_compares_against_the_whole_dataset(self):
        data = pd.DataFrame(
            [{"region": "A", "tier": "x"}] * 12
            + [{"region": "A", "tier": "y"}] * 3
            + [{"region": "B", "tier": "y"}] * 5
        )
        fields = [
            FieldMeta("region", semantic_type=SemanticType.NOMINAL),
            FieldMeta("tier", semantic_type=SemanticType.NOMINAL),
        ]
        with BreakoutStore(data, fields, config=SYNC) as store:
            store.set_main_field(MainField("region", "count"))
            store.set_main_field_filters([Filter("region", values=("A",))])
            tier = {r.bucket.values[0]: r for r in store.general_analyses}
        self.assertAlmostEqual(tier["x"].impact, 3.0)
        self.assertGreater(tier["y"].score, 0)

    def test_failing_analyzer_falls_back_to_empty(self):
        with patch("breakout_package.store.analyze_comparisons", side_effect=RuntimeError("boom")):
            with self.assertLogs("breakout_package.dataflow", level="ERROR"):
                self.store.set_comparison_filters([Filter("region", values=("C",))])
        self.assertEqual(self.store.comparison_analyses, [])
        self.assertEqual(len(self.store.diff_group), 10)


class StoreSubscriptionTests(unittest.TestCase):

    def setUp(self):
        self.store = BreakoutStore(ROWS, FIELDS, config=SYNC)

    def tearDown(self):
        self.store.destroy()

    def test_listeners_receive_changed_outputs(self):
        listener = MagicMock()
        self.store.subscribe(listener)
        self.store.set_main_field(MainField("f", "mean"))
        names = [c.args[0] for c in listener.call_args_list]
        self.assertIn("global_stats", names)
        self.assertEqual(len(names), len(set(names)))
        self.assertTrue(set(names) <= set(PUBLISHED_FIELDS))

    def test_subscription_can_be_narrowed_and_removed(self):
        listener = MagicMock()
        unsubscribe = self.store.subscribe(listener, names=["selection_stats"])
        self.store.set_main_field(MainField("f", "mean"))
        listener.assert_not_called()
        self.store.set_main_field_filters([Filter("f", range=(0, 25))])
        listener.assert_called_once()
        self.assertEqual(listener.call_args.args[0], "selection_stats")

        unsubscribe()
        self.store.set_main_field_filters([Filter("f", range=(0, 35))])
        listener.assert_called_once()

    def test_unknown_output_name_is_rejected(self):
        with self.assertRaises(ValueError):
            self.store.subscribe(lambda name, value: None, names=["nope"])

    def test_failing_listener_does_not_block_others(self):
        bad = MagicMock(side_effect=RuntimeError("listener bug"))
        good = MagicMock()
        self.store.subscribe(bad)
        self.store.subscribe(good)
        with self.assertLogs("breakout_package.store", level="ERROR"):
            self.store.set_main_field(MainField("f", "mean"))
        good.assert_called()

    def test_setting_the_same_object_is_a_no_op(self):
        filters = [Filter("f", range=(0, 25))]
        self.store.set_main_field_filters(filters)
        version, waves = self.store.version, self.store.wave_count
        self.store.set_main_field_filters(filters)
        self.assertEqual(self.store.version, version)
        self.assertEqual(self.store.wave_count, waves)

    def test_destroy_stops_publication(self):
        spy = MagicMock()
        self.store.subscribe(spy)
        self.store.destroy()
        self.store.destroy()
        self.store.set_main_field(MainField("f", "mean"))
        self.store.set_main_field_filters([Filter("f", range=(0, 25))])
        self.store.flush()
        spy.assert_not_called()
        self.assertTrue(self.store.destroyed)
        self.assertIsNone(self.store.global_stats)

    def test_context_manager_destroys(self):
        with BreakoutStore(ROWS, FIELDS, config=SYNC) as store:
            self.assertFalse(store.destroyed)
        self.assertTrue(store.destroyed)


class StoreThrottleTests(unittest.TestCase):

    def test_rapid_filter_updates_run_analyzers_at_most_twice(self):
        clock = ManualClock()
        with patch("breakout_package.store.analyze_contributions", return_value=[]) as analyzer:
            store = BreakoutStore(ROWS, FIELDS, timer_factory=clock)
            clock.advance()

            store.set_main_field(MainField("f", "mean"))
            self.assertEqual(analyzer.call_count, 1)

            for hi in range(11, 21):
                store.set_main_field_filters([Filter("f", range=(0, hi))])
            self.assertEqual(analyzer.call_count, 1)

            clock.advance()
            self.assertEqual(analyzer.call_count, 2)
            self.assertEqual(store.selection["f"].tolist(), [10, 20])
            store.destroy()

    def test_flush_publishes_latest_inputs(self):
        clock = ManualClock()
        store = BreakoutStore(ROWS, FIELDS, timer_factory=clock)
        store.set_main_field(MainField("f", "mean"))
        self.assertIsNone(store.global_stats)
        store.flush()
        self.assertEqual(store.global_stats.stats["mean"], 25)
        store.destroy()
        self.assertTrue(all(t.cancelled or t.fired for t in clock.timers))


class StoreThreadingTests(unittest.TestCase):
    """Waves running on another thread, as they do with the default timer."""

    def test_destroy_waits_for_in_flight_listener_and_stops_the_rest(self):
        store = BreakoutStore(ROWS, FIELDS, config=SYNC)
        entered = threading.Event()
        late = []

        def slow(name, value):
            if not entered.is_set():
                entered.set()
                time.sleep(0.2)

        store.subscribe(slow)
        store.subscribe(lambda name, value: late.append(name))

        worker = threading.Thread(target=store.set_main_field, args=(MainField("f", "mean"),))
        worker.start()
        self.assertTrue(entered.wait(2))
        store.destroy()
        self.assertEqual(late, [])

        worker.join(2)
        self.assertFalse(worker.is_alive())
        self.assertEqual(late, [])

    def test_setter_does_not_wait_for_a_running_wave(self):
        clock = ManualClock()
        started = threading.Event()
        release = threading.Event()

        def blocking_analyzer(*args, **kwargs):
            started.set()
            release.wait(2)
            return []

        with patch("breakout_package.store.analyze_contributions", side_effect=blocking_analyzer):
            store = BreakoutStore(ROWS, FIELDS, timer_factory=clock)
            clock.advance()

            wave = threading.Thread(target=store.set_main_field, args=(MainField("f", "mean"),))
            wave.start()
            self.assertTrue(started.wait(2))

            filters = [Filter("f", range=(0, 25))]
            setter = threading.Thread(target=store.set_main_field_filters, args=(filters,))
            setter.start()
            setter.join(1)
            blocked = setter.is_alive()

            release.set()
            wave.join(2)
            setter.join(2)
            store.destroy()

        self.assertFalse(blocked)
        self.assertIs(store.main_field_filters, filters)


class StoreSnapshotTests(unittest.TestCase):

    def setUp(self):
        self.fields = [FieldMeta("f", name="Income"), FieldMeta("city", semantic_type=SemanticType.NOMINAL)]
        rows = [{"f": 10, "city": "a"}, {"f": 20, "city": "b"}]
        self.store = BreakoutStore(rows, self.fields, config=SYNC)
        self.other = BreakoutStore(rows, self.fields, config=SYNC)

    def tearDown(self):
        self.store.destroy()
        self.other.destroy()

    def test_export(self):
        self.store.set_main_field(MainField("f", "sum"))
        self.store.set_main_field_filters([Filter("f", range=(0, 15)), Filter("ghost", values=(1,))])
        self.store.set_comparison_filters([Filter("city", values=("b",))])
        snapshot = self.store.export()

        self.assertEqual(snapshot["main_field"], {
            "fid": "f", "aggregator": "sum", "name": "Income", "semantic_type": "quantitative",
        })
        self.assertEqual(snapshot["main_field_filters"], [
            {"fid": "f", "range": [0, 15], "name": "Income", "semantic_type": "quantitative"},
        ])
        self.assertEqual(snapshot["comparison_filters"][0]["values"], ["b"])

    def test_export_without_main_field(self):
        self.assertEqual(self.store.export(), {
            "main_field": None, "main_field_filters": [], "comparison_filters": [],
        })

    def test_load_restores_exported_inputs(self):
        self.store.set_main_field(MainField("f", "mean"))
        self.store.set_main_field_filters([Filter("f", range=(0, 15))])
        self.store.set_comparison_filters([Filter("city", values=("b",))])

        self.other.load(self.store.export())
        self.assertEqual(self.other.main_field, MainField("f", "mean"))
        self.assertEqual(self.other.main_field_filters, [Filter("f", range=(0, 15))])
        self.assertEqual(self.other.diff_stats.stats["mean"], 20)

    def test_load_drops_unknown_fields(self):
        snapshot = {
            "main_field": {"fid": "ghost", "aggregator": "mean"},
            "main_field_filters": [{"fid": "ghost", "values": [1]}, {"fid": "city", "values": ["a"]}],
            "comparison_filters": [],
        }
        with self.assertLogs("breakout_package.store", level="WARNING"):
            self.other.load(snapshot)
        self.assertIsNone(self.other.main_field)
        self.assertEqual(self.other.main_field_filters, [Filter("city", values=("a",))])

    def test_unique_filter_ids_survive_export_and_load(self):
        self.store.set_main_field_filters([UniqueFilter("f", range=(0, 15), id="row-1")])
        snapshot = self.store.export()
        self.assertEqual(snapshot["main_field_filters"][0]["id"], "row-1")

        self.other.load(snapshot)
        restored = self.other.main_field_filters[0]
        self.assertIsInstance(restored, UniqueFilter)
        self.assertEqual(restored.id, "row-1")
        self.assertEqual(self.other.selection["f"].tolist(), [10])


if __name__ == "__main__":
    unittest.main()
