"""
Recomputation graph and throttling for the breakout store.

A Dataflow is a DAG of pure stages over a few named sources. Each evaluation
walks the stages in dependency order; a stage whose inputs are all the same
objects (by identity) as on its last successful run reuses its cached value.
Callers therefore replace, never mutate, the values they feed in.
"""

import functools
import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class Stage:
    name: str
    inputs: Tuple[str, ...]
    compute: Callable[..., Any]
    fallback: Callable[[], Any] = lambda: None


class Dataflow:
    """Directed acyclic graph of recomputation stages."""

    def __init__(self, sources: Iterable[str], stages: Iterable[Stage]):
        self.sources = tuple(sources)
        self.stages = {stage.name: stage for stage in stages}
        self.order = self._topological_order()
        self._cache: Dict[str, Tuple[Tuple[Any, ...], Any]] = {}

    def _topological_order(self) -> List[str]:
        known = set(self.sources) | set(self.stages)
        dependents: Dict[str, List[str]] = {name: [] for name in known}
        indegrees = {name: 0 for name in self.stages}

        for stage in self.stages.values():
            for dependency in stage.inputs:
                if dependency not in known:
                    raise ValueError(f"Stage '{stage.name}' depends on unknown input '{dependency}'")
                dependents[dependency].append(stage.name)
                indegrees[stage.name] += 1

        # sources are already resolved before any stage runs
        for source in self.sources:
            for dependent in dependents[source]:
                indegrees[dependent] -= 1

        queue = deque(name for name in self.stages if indegrees[name] == 0)
        order = []
        while queue:
            current = queue.popleft()
            order.append(current)
            for dependent in dependents[current]:
                indegrees[dependent] -= 1
                if indegrees[dependent] == 0:
                    queue.append(dependent)

        if len(order) != len(self.stages):
            cyclic = sorted(set(self.stages) - set(order))
            raise ValueError(f"Dataflow has a cycle through: {', '.join(cyclic)}")
        return order

    def evaluate(self, source_values: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run one wave over the graph.

        Args:
            source_values: Current value of every source

        Returns:
            Values of all sources and stages after the wave
        """
        missing = [name for name in self.sources if name not in source_values]
        if missing:
            raise ValueError(f"Missing source values: {', '.join(missing)}")

        values = dict(source_values)
        for name in self.order:
            stage = self.stages[name]
            args = tuple(values[dependency] for dependency in stage.inputs)

            cached = self._cache.get(name)
            if cached is not None and len(cached[0]) == len(args) and all(
                old is new for old, new in zip(cached[0], args)
            ):
                values[name] = cached[1]
                continue

            try:
                result = stage.compute(*args)
            except Exception:
                logger.exception(f"[STAGE] '{name}' failed; publishing its fallback value")
                self._cache.pop(name, None)
                values[name] = stage.fallback()
                continue

            self._cache[name] = (args, result)
            values[name] = result
        return values

    def reset(self) -> None:
        self._cache.clear()


class Throttle:
    """
    Leading and trailing throttle around a callback.

    The first trigger runs the callback at once and opens a window of
    ``interval`` seconds. Triggers inside the window collapse into a single
    trailing run when it closes, and that run opens a new window. With a
    non-positive interval every trigger runs immediately.

    ``timer_factory`` must build an object with the ``threading.Timer``
    interface (``start``/``cancel``) from ``(interval, function)``.
    """

    def __init__(
        self,
        interval: float,
        callback: Callable[[], Any],
        timer_factory: Callable[..., Any] = threading.Timer
    ):
        self.interval = interval
        self._callback = callback
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._timer: Optional[Any] = None
        self._generation = 0
        self._pending = False
        self._cancelled = False

    @property
    def pending(self) -> bool:
        return self._pending

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _open_window(self) -> None:
        if self.interval <= 0:
            return
        self._generation += 1
        timer = self._timer_factory(self.interval, functools.partial(self._on_window_end, self._generation))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _close_window(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None
        self._generation += 1

    def trigger(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            if self._timer is not None:
                self._pending = True
                return
            self._open_window()
        self._callback()

    def _on_window_end(self, generation: int) -> None:
        with self._lock:
            if self._cancelled or generation != self._generation:
                return
            self._timer = None
            if not self._pending:
                return
            self._pending = False
            self._open_window()
        self._callback()

    def flush(self) -> None:
        """Run a pending trailing call now instead of at the end of the window."""
        with self._lock:
            if self._cancelled or not self._pending:
                return
            self._pending = False
            self._close_window()
        self._callback()

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            self._pending = False
            self._close_window()
