"""
Breakout Store

Owns the three mutable inputs of a breakout exploration (main field, main
field filters, comparison filters) and keeps seven derived outputs up to
date through a dataflow graph:

    target ─┬─> global ─┬─> main_group ─────> general_analyses
            │           │        │
            │           └─> compare_group ─> comparison_analyses
            └───────────────────────┘

Input changes are throttled (leading + trailing), so a burst of updates such
as dragging a range slider recomputes the expensive analyses at most once per
``throttle_interval``, and the settled state is always published. Each wave
re-filters the original dataset; nothing is filtered cumulatively.

Usage:

    store = BreakoutStore(df, fields)
    store.subscribe(lambda name, value: print(name))
    store.set_main_field(MainField('income', 'mean'))
    store.set_main_field_filters([Filter('age', range=(20, 30))])
    ...
    store.destroy()
"""

import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import pandas as pd

from .comparison import analyze_comparisons
from .config import AnalysisConfig
from .contribution import analyze_contributions
from .dataflow import Dataflow, Stage, Throttle
from .fields import export_filters, find_field, resolve_compare_target, unresolved_filters
from .models import CompareTarget, FieldMeta, FieldStats, Filter, GroupResult, MainField, SubgroupResult
from .narrative import summarize_analyses
from .stats import Rows, apply_dividers, as_frame, stat_division

logger = logging.getLogger(__name__)

Listener = Callable[[str, Any], None]

PUBLISHED_FIELDS = (
    'global_stats',
    'selection',
    'selection_stats',
    'diff_group',
    'diff_stats',
    'general_analyses',
    'comparison_analyses',
)


class BreakoutStore:
    """Reactive store for main-field contribution and comparison analysis."""

    def __init__(
        self,
        data: Rows,
        fields: Sequence[FieldMeta],
        config: Optional[AnalysisConfig] = None,
        timer_factory: Callable[..., Any] = threading.Timer
    ):
        self.data: pd.DataFrame = as_frame(data)
        self.fields = tuple(fields)
        self.config = config or AnalysisConfig()

        self._main_field: Optional[MainField] = None
        self._main_field_filters: Sequence[Filter] = []
        self._comparison_filters: Sequence[Filter] = []
        self._version = 0

        self._global_stats: Optional[FieldStats] = None
        self._selection: pd.DataFrame = self.data
        self._selection_stats: Optional[FieldStats] = None
        self._diff_group: pd.DataFrame = self._empty_frame()
        self._diff_stats: Optional[FieldStats] = None
        self._general_analyses: List[SubgroupResult] = []
        self._comparison_analyses: List[SubgroupResult] = []

        self._listeners: List[tuple] = []
        # _lock guards inputs, outputs and listeners and is never held while analyzing.
        # _wave_lock serializes waves (the dataflow cache is not thread-safe).
        # _notify_lock is held while listeners run; destroy() waits on it.
        self._lock = threading.RLock()
        self._wave_lock = threading.RLock()
        self._notify_lock = threading.RLock()
        self._destroyed = False
        self._wave_count = 0

        self._dataflow = Dataflow(
            sources=('main_field', 'main_field_filters', 'comparison_filters'),
            stages=self._build_stages(),
        )
        self._throttle = Throttle(self.config.throttle_interval, self._run_wave, timer_factory)
        self._throttle.trigger()

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    @property
    def main_field(self) -> Optional[MainField]:
        return self._main_field

    @property
    def main_field_filters(self) -> Sequence[Filter]:
        return self._main_field_filters

    @property
    def comparison_filters(self) -> Sequence[Filter]:
        return self._comparison_filters

    @property
    def version(self) -> int:
        """Incremented on every input change."""
        return self._version

    def set_main_field(self, main_field: Optional[MainField]) -> None:
        self._set_input('_main_field', main_field)

    def set_main_field_filters(self, filters: Sequence[Filter]) -> None:
        self._set_input('_main_field_filters', filters)

    def set_comparison_filters(self, filters: Sequence[Filter]) -> None:
        self._set_input('_comparison_filters', filters)

    def _set_input(self, attr: str, value: Any) -> None:
        with self._lock:
            if getattr(self, attr) is value:
                return
            setattr(self, attr, value)
            self._version += 1
        self._throttle.trigger()

    # ------------------------------------------------------------------
    # Published outputs
    # ------------------------------------------------------------------

    @property
    def global_stats(self) -> Optional[FieldStats]:
        return self._global_stats

    @property
    def selection(self) -> pd.DataFrame:
        return self._selection

    @property
    def selection_stats(self) -> Optional[FieldStats]:
        return self._selection_stats

    @property
    def diff_group(self) -> pd.DataFrame:
        return self._diff_group

    @property
    def diff_stats(self) -> Optional[FieldStats]:
        return self._diff_stats

    @property
    def general_analyses(self) -> List[SubgroupResult]:
        return self._general_analyses

    @property
    def comparison_analyses(self) -> List[SubgroupResult]:
        return self._comparison_analyses

    @property
    def wave_count(self) -> int:
        """Number of recomputation waves published so far."""
        return self._wave_count

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def subscribe(self, listener: Listener, names: Optional[Iterable[str]] = None) -> Callable[[], None]:
        """
        Register ``listener(name, value)`` for changes of published outputs.

        Args:
            listener: Called once per changed output after each wave
            names: Restrict to these outputs; all of PUBLISHED_FIELDS by default

        Returns:
            Callable that removes the listener
        """
        wanted = frozenset(names) if names is not None else frozenset(PUBLISHED_FIELDS)
        unknown = wanted - set(PUBLISHED_FIELDS)
        if unknown:
            raise ValueError(f"Unknown outputs: {', '.join(sorted(unknown))}")
        entry = (listener, wanted)
        with self._lock:
            if not self._destroyed:
                self._listeners.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._listeners:
                    self._listeners.remove(entry)

        return unsubscribe

    # ------------------------------------------------------------------
    # Dataflow
    # ------------------------------------------------------------------

    def _empty_frame(self) -> pd.DataFrame:
        return self.data.iloc[0:0]

    def _build_stages(self) -> List[Stage]:
        return [
            Stage('target', ('main_field',), self._compute_target),
            Stage('global', ('main_field', 'target'), self._compute_global),
            Stage('main_group', ('main_field', 'main_field_filters', 'target'), self._compute_main_group,
                  fallback=lambda: GroupResult(self._empty_frame())),
            Stage('general_analyses', ('main_field', 'global', 'main_group'), self._compute_general_analyses,
                  fallback=list),
            Stage('compare_group', ('main_field', 'comparison_filters', 'global', 'target'),
                  self._compute_compare_group, fallback=lambda: GroupResult(self._empty_frame())),
            Stage('comparison_analyses', ('main_field', 'comparison_filters', 'main_group', 'compare_group'),
                  self._compute_comparison_analyses, fallback=list),
        ]

    def _compute_target(self, main_field: Optional[MainField]) -> Optional[CompareTarget]:
        if main_field is None:
            return None
        return resolve_compare_target(main_field, self.fields)

    def _compute_global(self, main_field: Optional[MainField], target: Optional[CompareTarget]) -> Optional[FieldStats]:
        if main_field is None or target is None:
            return None
        return FieldStats(
            definition=main_field,
            field=target.field,
            stats=stat_division(self.data, self.data, self.fields, target.field.fid),
        )

    def _filter_group(self, filters: Sequence[Filter], label: str) -> Optional[pd.DataFrame]:
        unresolved = unresolved_filters(filters, self.fields)
        if unresolved:
            logger.warning(
                f"[STAGE] {label} filters reference unknown fields: "
                f"{', '.join(sorted({f.fid for f in unresolved}))}"
            )
            return None
        matched, _ = apply_dividers(self.data, filters)
        return matched

    def _compute_main_group(
        self,
        main_field: Optional[MainField],
        filters: Sequence[Filter],
        target: Optional[CompareTarget]
    ) -> GroupResult:
        if len(filters) == 0:
            return GroupResult(self.data)
        selection = self._filter_group(filters, 'main field')
        if selection is None:
            return GroupResult(self._empty_frame())
        stats = None
        if main_field is not None and target is not None:
            stats = FieldStats(
                definition=main_field,
                field=target.field,
                stats=stat_division(self.data, selection, self.fields, target.field.fid),
            )
        return GroupResult(selection, stats)

    def _compute_general_analyses(
        self,
        main_field: Optional[MainField],
        global_stats: Optional[FieldStats],
        main_group: GroupResult
    ) -> List[SubgroupResult]:
        if main_field is None or global_stats is None:
            return []
        return analyze_contributions(
            main_group.data,
            self.fields,
            main_field,
            global_stats.stats[main_field.aggregator],
            global_size=len(self.data),
            global_data=self.data,
            config=self.config,
        )

    def _compute_compare_group(
        self,
        main_field: Optional[MainField],
        filters: Sequence[Filter],
        global_stats: Optional[FieldStats],
        target: Optional[CompareTarget]
    ) -> GroupResult:
        if main_field is None or global_stats is None or target is None or len(filters) == 0:
            return GroupResult(self._empty_frame())
        diff_group = self._filter_group(filters, 'comparison')
        if diff_group is None:
            return GroupResult(self._empty_frame())
        return GroupResult(
            diff_group,
            FieldStats(
                definition=main_field,
                field=target.field,
                stats=stat_division(self.data, diff_group, self.fields, target.field.fid),
            ),
        )

    def _compute_comparison_analyses(
        self,
        main_field: Optional[MainField],
        filters: Sequence[Filter],
        main_group: GroupResult,
        compare_group: GroupResult
    ) -> List[SubgroupResult]:
        if main_field is None or len(filters) == 0:
            return []
        return analyze_comparisons(main_group.data, compare_group.data, self.fields, main_field, config=self.config)

    def _run_wave(self) -> None:
        with self._wave_lock:
            with self._lock:
                if self._destroyed:
                    return
                sources = {
                    'main_field': self._main_field,
                    'main_field_filters': self._main_field_filters,
                    'comparison_filters': self._comparison_filters,
                }
                version = self._version

            values = self._dataflow.evaluate(sources)
            main_group: GroupResult = values['main_group']
            compare_group: GroupResult = values['compare_group']
            updates = {
                'global_stats': values['global'],
                'selection': main_group.data,
                'selection_stats': main_group.stats,
                'diff_group': compare_group.data,
                'diff_stats': compare_group.stats,
                'general_analyses': values['general_analyses'],
                'comparison_analyses': values['comparison_analyses'],
            }

            with self._lock:
                if self._destroyed:
                    logger.debug(f"[WAVE] Discarding wave for version={version}: store destroyed")
                    return
                changed = {}
                for name, value in updates.items():
                    if getattr(self, '_' + name) is not value:
                        changed[name] = value
                    setattr(self, '_' + name, value)
                self._wave_count += 1
                wave = self._wave_count
                listeners = list(self._listeners)

            logger.debug(f"[WAVE] #{wave} version={version} changed={sorted(changed)}")
            self._notify(listeners, changed)

    def _notify(self, listeners: List[tuple], changed: Dict[str, Any]) -> None:
        with self._notify_lock:
            for name in PUBLISHED_FIELDS:
                if name not in changed:
                    continue
                for listener, wanted in listeners:
                    if self._destroyed:
                        return
                    if name not in wanted:
                        continue
                    try:
                        listener(name, changed[name])
                    except Exception:
                        logger.exception(f"Listener failed while handling '{name}'")

    def flush(self) -> None:
        """Publish a pending throttled wave immediately."""
        self._throttle.flush()

    # ------------------------------------------------------------------
    # Snapshot, summaries and lifecycle
    # ------------------------------------------------------------------

    def export(self) -> Dict[str, Any]:
        """Serializable snapshot of the inputs, annotated with field names and types."""
        main = resolve_compare_target(self._main_field, self.fields) if self._main_field else None
        return {
            'main_field': {
                **self._main_field.to_dict(),
                'name': main.field.name,
                'semantic_type': main.field.semantic_type.value,
            } if main else None,
            'main_field_filters': export_filters(self._main_field_filters, self.fields),
            'comparison_filters': export_filters(self._comparison_filters, self.fields),
        }

    def load(self, snapshot: Dict[str, Any]) -> None:
        """
        Restore inputs from an ``export()`` snapshot.

        Entries that reference fields unknown to this store are dropped.
        """
        main_field = None
        main_data = snapshot.get('main_field')
        if main_data:
            candidate = MainField(fid=main_data['fid'], aggregator=main_data['aggregator'])
            if resolve_compare_target(candidate, self.fields) is not None:
                main_field = candidate
            else:
                logger.warning(f"Dropping unresolvable main field '{candidate.fid}' from snapshot")

        def _filters(key: str) -> List[Filter]:
            restored = []
            for item in snapshot.get(key) or []:
                if find_field(self.fields, item['fid']) is None:
                    logger.warning(f"Dropping filter on unknown field '{item['fid']}' from snapshot")
                    continue
                restored.append(Filter.from_dict(item))
            return restored

        self.set_main_field(main_field)
        self.set_main_field_filters(_filters('main_field_filters'))
        self.set_comparison_filters(_filters('comparison_filters'))

    def summarize(self, top_k: int = 3) -> Dict[str, str]:
        """Narrative sentences for the current analyses; empty dict without a main field."""
        if self._main_field is None:
            return {}
        return summarize_analyses(
            self._general_analyses[:top_k],
            self._comparison_analyses[:top_k],
            self._main_field,
            self.fields,
            contribution_template=self.config.contribution_template,
            comparison_template=self.config.comparison_template,
        )

    def destroy(self) -> None:
        """
        Cancel pending recomputation and drop listeners. Safe to call more than once.

        Returns only after any listener call already in progress on another
        thread has finished; no listener is called after that.
        """
        with self._lock:
            if self._destroyed:
                return
            self._destroyed = True
            self._throttle.cancel()
            self._listeners.clear()
        with self._notify_lock:
            pass
        logger.debug("Breakout store destroyed")

    def __enter__(self) -> 'BreakoutStore':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.destroy()
