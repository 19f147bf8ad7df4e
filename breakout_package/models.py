"""
Core data types shared by the breakout analysis engine.

Everything here is plain data: field descriptors, filters, the main field
definition and the result containers produced by the statistics and
analysis functions.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple
from uuid import uuid4

import pandas as pd


class Aggregator(str, Enum):
    MEAN = "mean"
    SUM = "sum"
    COUNT = "count"


class SemanticType(str, Enum):
    QUANTITATIVE = "quantitative"
    ORDINAL = "ordinal"
    NOMINAL = "nominal"
    TEMPORAL = "temporal"


class AnalyticType(str, Enum):
    DIMENSION = "dimension"
    MEASURE = "measure"


@dataclass(frozen=True)
class FieldMeta:
    """Static descriptor of one column."""
    fid: str
    name: Optional[str] = None
    semantic_type: SemanticType = SemanticType.QUANTITATIVE
    analytic_type: AnalyticType = AnalyticType.MEASURE

    def __post_init__(self):
        if self.name is None:
            object.__setattr__(self, 'name', self.fid)
        object.__setattr__(self, 'semantic_type', SemanticType(self.semantic_type))
        object.__setattr__(self, 'analytic_type', AnalyticType(self.analytic_type))


@dataclass(frozen=True)
class Filter:
    """
    Predicate over a single field.

    Either ``range`` (inclusive ``(lo, hi)`` bounds) or ``values`` (membership
    test) must be given, never both.
    """
    fid: str
    range: Optional[Tuple[Any, Any]] = None
    values: Optional[Tuple[Any, ...]] = None

    def __post_init__(self):
        if (self.range is None) == (self.values is None):
            raise ValueError(f"Filter on '{self.fid}' needs exactly one of range or values")
        if self.range is not None:
            bounds = tuple(self.range)
            if len(bounds) != 2:
                raise ValueError(f"Range filter on '{self.fid}' needs two bounds, got {len(bounds)}")
            if bounds[0] > bounds[1]:
                raise ValueError(f"Range filter on '{self.fid}' has lo > hi: {bounds}")
            object.__setattr__(self, 'range', bounds)
        else:
            object.__setattr__(self, 'values', tuple(self.values))

    @property
    def kind(self) -> str:
        return 'range' if self.range is not None else 'set'

    def to_dict(self) -> Dict[str, Any]:
        if self.kind == 'range':
            return {'fid': self.fid, 'range': list(self.range)}
        return {'fid': self.fid, 'values': list(self.values)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Filter':
        """Inverse of ``to_dict``; an ``id`` entry restores a UniqueFilter."""
        if 'range' in data and data['range'] is not None:
            kwargs = {'fid': data['fid'], 'range': tuple(data['range'])}
        else:
            kwargs = {'fid': data['fid'], 'values': tuple(data.get('values') or ())}
        if data.get('id') is not None:
            return UniqueFilter(id=data['id'], **kwargs)
        return cls(**kwargs)


@dataclass(frozen=True)
class UniqueFilter(Filter):
    """Filter with a stable id for keying UI lists. The id plays no part in computation."""
    id: str = field(default_factory=lambda: uuid4().hex)

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), 'id': self.id}


@dataclass(frozen=True)
class MainField:
    """The measure being explained: a field plus an aggregator."""
    fid: str
    aggregator: Aggregator = Aggregator.MEAN

    def __post_init__(self):
        object.__setattr__(self, 'aggregator', Aggregator(self.aggregator))

    def to_dict(self) -> Dict[str, Any]:
        return {'fid': self.fid, 'aggregator': self.aggregator.value}


@dataclass
class DivisionStats:
    """
    Aggregates of one target field over a full population and a subset of it.

    Indexing by aggregator returns the subset value, so ``stats['mean']`` is
    the mean of the subset. ``pair()`` returns both sides.

    ``is_empty`` is true when the subset holds no value of the target field,
    either because it has no rows or because every value is missing. Mean and
    sum are then reported as 0.0.
    """
    population: Dict[Aggregator, float]
    subset: Dict[Aggregator, float]
    population_size: int
    subset_size: int

    def __getitem__(self, aggregator) -> float:
        return self.subset[Aggregator(aggregator)]

    def get(self, aggregator, default: Optional[float] = None) -> Optional[float]:
        try:
            return self[aggregator]
        except (KeyError, ValueError):
            return default

    def pair(self, aggregator) -> Tuple[float, float]:
        key = Aggregator(aggregator)
        return self.population[key], self.subset[key]

    @property
    def is_empty(self) -> bool:
        return self.subset_size == 0 or self.subset.get(Aggregator.COUNT, 0) == 0


@dataclass
class FieldStats:
    definition: MainField
    field: FieldMeta
    stats: DivisionStats


@dataclass(frozen=True)
class CompareTarget:
    field: FieldMeta


@dataclass(frozen=True)
class SubgroupResult:
    """
    One ranked candidate explanation.

    For contribution analysis ``value`` is the aggregate inside the bucket and
    ``reference_value`` the aggregate of the rest of the population. For
    comparison analysis ``value`` is the selection group's aggregate inside the
    bucket and ``reference_value`` the comparison group's.
    """
    field: FieldMeta
    bucket: Filter
    size: int
    value: float
    reference_value: float
    impact: float
    contribution: float
    coverage: float
    score: float
    comparison_size: Optional[int] = None
    rate_effect: Optional[float] = None
    mix_effect: Optional[float] = None
    p_value: Optional[float] = None

    def to_filter(self) -> Filter:
        return self.bucket


@dataclass
class GroupResult:
    """A filtered group of rows and its stats (None when not applicable)."""
    data: pd.DataFrame
    stats: Optional[FieldStats] = None
