import logging
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)


@dataclass
class AnalysisConfig:
    """Centralized knobs for binning, scoring and recomputation."""
    # Binning
    bin_count: int = 4                   # quantile bins for numeric fields
    max_categories: int = 20             # more distinct values => identifier-like, skipped

    # Scoring
    two_sided_threshold: float = 0.05    # |gap| / expected total below this => two-sided normalization
    coverage_floor: float = 0.01         # coverage floor in the score denominator
    max_results: Optional[int] = None    # truncate ranked lists; None keeps everything

    # Recomputation
    throttle_interval: float = 0.2       # seconds between analysis waves

    # Narrative templates (Jinja2); None uses the defaults in narrative.py
    contribution_template: Optional[str] = None
    comparison_template: Optional[str] = None

    def __post_init__(self):
        if self.bin_count < 2:
            raise ValueError(f"bin_count must be at least 2, got {self.bin_count}")
        if self.max_categories < 2:
            raise ValueError(f"max_categories must be at least 2, got {self.max_categories}")
        if self.throttle_interval < 0:
            raise ValueError(f"throttle_interval must be non-negative, got {self.throttle_interval}")
        if not 0 <= self.two_sided_threshold < 1:
            raise ValueError(f"two_sided_threshold must be in [0, 1), got {self.two_sided_threshold}")
        if self.coverage_floor <= 0:
            raise ValueError(f"coverage_floor must be positive, got {self.coverage_floor}")
        if self.max_results is not None and self.max_results < 1:
            raise ValueError(f"max_results must be positive or None, got {self.max_results}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def config_from_dict(data: Optional[Dict[str, Any]]) -> AnalysisConfig:
    """
    Build an AnalysisConfig from a plain dictionary.

    Accepts either a flat mapping or one nested under a ``breakout`` key.
    Unknown keys are logged and ignored.
    """
    if not data:
        return AnalysisConfig()
    if 'breakout' in data and isinstance(data['breakout'], dict):
        data = data['breakout']

    known = {f.name for f in fields(AnalysisConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning(f"[CONFIG] Ignoring unknown keys: {', '.join(unknown)}")
    return AnalysisConfig(**{k: v for k, v in data.items() if k in known})


def load_config(yaml_path: str) -> AnalysisConfig:
    """
    Load and parse the YAML configuration file.

    Args:
        yaml_path: Path to the YAML configuration file

    Returns:
        AnalysisConfig built from the file contents
    """
    try:
        with open(yaml_path, 'r') as file:
            config = yaml.safe_load(file)
    except FileNotFoundError:
        raise FileNotFoundError(f"Configuration file not found: {yaml_path}")
    except yaml.YAMLError as e:
        raise yaml.YAMLError(f"Error parsing YAML configuration: {e}")

    if config is not None and not isinstance(config, dict):
        raise ValueError(f"Configuration root must be a mapping: {yaml_path}")
    logger.debug(f"[CONFIG] Loaded {yaml_path}")
    return config_from_dict(config)
