"""
Configuration loader and survey design constants for the loyalty survey analysis.

Usage:
    from loyalty.config import cfg, set_global_seed, SURVEY
    set_global_seed()           # call once at start of every script
    print(SURVEY.ID_COL)        # "ID"
    print(cfg['rules']['min_support'])
"""

import yaml
import numpy as np
from pathlib import Path
from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Path resolution
# ---------------------------------------------------------------------------
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_DEFAULT_CONFIG = _PROJECT_ROOT / "configs" / "default.yaml"


def load_config(path: Path = _DEFAULT_CONFIG) -> dict:
    """Load YAML config and return as dict."""
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


cfg = load_config()


# ---------------------------------------------------------------------------
# Survey design constants
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class SurveyDesign:
    """Immutable survey design facts for the loyalty survey."""
    NAME: str = "Customer Loyalty Survey"
    ID_COL: str = cfg["data"]["id_column"]
    MISSING_CODES: tuple = tuple(cfg["data"]["missing_codes"])
    REQUIRED: tuple = tuple(cfg["required_columns"])
    TARGET: str = cfg["target"]["column"]


SURVEY = SurveyDesign()


# ---------------------------------------------------------------------------
# Global seed management
# ---------------------------------------------------------------------------
def set_global_seed(seed: int | None = None) -> int:
    """
    Set global random seed for reproducibility.
    Uses config seed if none provided.
    Returns the seed used.
    """
    if seed is None:
        seed = cfg["modeling"]["random_seed"]
    np.random.seed(seed)
    return seed


# ---------------------------------------------------------------------------
# Feature set helpers
# ---------------------------------------------------------------------------
def get_feature_set(name: str) -> list[str]:
    """Return list of column names for a named feature set."""
    fs = cfg["feature_sets"]
    if name == "predictors":
        return (
            fs["satisfaction"]
            + fs["trust"]
            + fs["image"]
            + fs["behaviour"]
            + fs["demographics"]
        )
    if name == "all":
        return list(get_codebook().keys())
    if name not in fs:
        raise ValueError(
            f"Unknown feature set '{name}'. Choose from: {list(fs.keys())}, 'predictors' or 'all'."
        )
    return fs[name]


def get_feature_labels() -> dict[str, str]:
    """Return raw_col -> readable_name mapping."""
    return cfg["feature_labels"]


def get_codebook() -> dict[str, list[int]]:
    """Return variable -> list of valid raw codes."""
    return {var: [int(c) for c in codes] for var, codes in cfg["codebook"].items()}


def get_merges() -> dict[str, dict[int, int | None]]:
    """Return variable -> {raw code: merged code or None} merge tables."""
    return {
        var: {int(k): (None if v is None else int(v)) for k, v in table.items()}
        for var, table in cfg.get("merges", {}).items()
    }


def get_rule_targets() -> list[tuple[str, int]]:
    """Return the (variable, category) pairs used as rule consequents."""
    return [(str(var), int(cat)) for var, cat in cfg["rules"]["targets"]]


def get_filter_thresholds(scenario: str = "strong") -> dict:
    """Return the threshold dict for a named rule-filter scenario."""
    filters = cfg["filters"]
    if scenario not in filters:
        raise ValueError(f"Unknown filter scenario '{scenario}'. Choose from: {list(filters.keys())}.")
    return dict(filters[scenario])


# ---------------------------------------------------------------------------
# Output path helpers
# ---------------------------------------------------------------------------
def get_output_dir(kind: str = "reports") -> Path:
    """Return absolute path for an output directory, creating it if needed."""
    key_map = {
        "reports": "reports_dir",
        "figures": "figures_dir",
        "tables": "tables_dir",
    }
    rel = cfg["outputs"].get(key_map.get(kind, kind), kind)
    out = _PROJECT_ROOT / rel
    out.mkdir(parents=True, exist_ok=True)
    return out


# Convenience: project root path
PROJECT_ROOT = _PROJECT_ROOT
