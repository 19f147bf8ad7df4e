"""
Breakout Analysis Package.

This package explains a measure over a tabular dataset: it filters rows into
a selection and a comparison group, computes aggregate statistics, ranks the
single-field buckets that drive the differences, and keeps all of it up to
date in a throttled reactive store.
"""

__version__ = "0.1.0"

# Data model
from .models import (
    Aggregator,
    SemanticType,
    AnalyticType,
    FieldMeta,
    Filter,
    UniqueFilter,
    MainField,
    DivisionStats,
    FieldStats,
    CompareTarget,
    SubgroupResult,
    GroupResult
)

# Configuration
from .config import AnalysisConfig, config_from_dict, load_config

# Filtering and statistics
from .stats import apply_dividers, stat_division

# Analyzers
from .contribution import analyze_contributions
from .comparison import analyze_comparisons

# Narrative
from .narrative import render_summary, summarize_analyses

# Reactive store
from .store import BreakoutStore

# Define what should be available in "from breakout_package import *"
__all__ = [
    # Data model
    'Aggregator',
    'SemanticType',
    'AnalyticType',
    'FieldMeta',
    'Filter',
    'UniqueFilter',
    'MainField',
    'DivisionStats',
    'FieldStats',
    'CompareTarget',
    'SubgroupResult',
    'GroupResult',

    # Configuration
    'AnalysisConfig',
    'config_from_dict',
    'load_config',

    # Core functions
    'apply_dividers',
    'stat_division',
    'analyze_contributions',
    'analyze_comparisons',
    'render_summary',
    'summarize_analyses',

    # Store
    'BreakoutStore'
]
