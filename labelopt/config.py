from __future__ import annotations

"""
Optimizer tunables and settings loading.

Every ratio, factor and floor used by the reallocation engine lives in
OptimizerConfig so alternate policies can be tested without code changes.

Expected settings structure (see config/settings.yaml):
optimizer:
  days_remaining: 15
  min_daily_budget: 5.0
  region_budget_ratio: 0.30
  scoring: { reward_factor: 1.25, penalty_factor: 0.75 }  # penalty_threshold defaults to 1/1.15
  bidding:
    dormant_tcpa_step: 1.2
    efficient_cpa_headroom: 1.20
    efficient_tcpa_step: 1.05
    underperform_tcpa_step: 0.90
    kpi_band: 0.15
    tcpa_floor: 0.01
region:
  name: India
  name_markers: ["India"]
  case_sensitive: true
storage:
  sqlite: { path: data/labelopt.sqlite }
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Final, Optional

import jsonschema
import yaml

from labelopt.utils import cfg, env_or_cfg_f, env_or_cfg_i

logger: Final = logging.getLogger(__name__)

UNLABELED_GROUP: Final[str] = "Unlabeled"

DEFAULT_DAYS_REMAINING: Final[int] = 15
DEFAULT_MIN_DAILY_BUDGET: Final[float] = 5.0
DEFAULT_REGION_BUDGET_RATIO: Final[float] = 0.30
DEFAULT_TCPA_FLOOR: Final[float] = 0.01
DEFAULT_KPI_BAND: Final[float] = 0.15

DEFAULT_REGION_NAME: Final[str] = "India"

SETTINGS_PATH_DEFAULT: Final[str] = "config/settings.yaml"
SCHEMA_PATH_DEFAULT: Final[str] = "config/schema.settings.yaml"
DB_PATH_DEFAULT: Final[str] = "data/labelopt.sqlite"


@dataclass(frozen=True)
class OptimizerConfig:
    days_remaining: int = DEFAULT_DAYS_REMAINING
    min_daily_budget: float = DEFAULT_MIN_DAILY_BUDGET
    region_budget_ratio: float = DEFAULT_REGION_BUDGET_RATIO

    # scoring
    reward_factor: float = 1.25
    penalty_factor: float = 0.75
    penalty_threshold: float = 1.0 / 1.15

    # bidding
    dormant_tcpa_step: float = 1.2
    efficient_cpa_headroom: float = 1.20
    efficient_tcpa_step: float = 1.05
    underperform_tcpa_step: float = 0.90
    kpi_band: float = DEFAULT_KPI_BAND
    tcpa_floor: float = DEFAULT_TCPA_FLOOR

    def __post_init__(self) -> None:
        if self.days_remaining <= 0:
            raise ValueError("days_remaining must be >= 1")
        if self.min_daily_budget <= 0:
            raise ValueError("min_daily_budget must be > 0")
        if not 0.0 <= self.region_budget_ratio <= 1.0:
            raise ValueError("region_budget_ratio must be within [0, 1]")
        if not 0.0 <= self.kpi_band < 1.0:
            raise ValueError("kpi_band must be within [0, 1)")
        if self.tcpa_floor <= 0:
            raise ValueError("tcpa_floor must be > 0")
        if not 0.0 < self.penalty_threshold <= 1.0:
            raise ValueError("penalty_threshold must be within (0, 1]")
        for name in ("reward_factor", "penalty_factor", "dormant_tcpa_step",
                     "efficient_cpa_headroom", "efficient_tcpa_step", "underperform_tcpa_step"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")

    @property
    def kpi_lower(self) -> float:
        return 1.0 - self.kpi_band

    @property
    def kpi_upper(self) -> float:
        return 1.0 + self.kpi_band

    @staticmethod
    def from_settings(settings: Optional[Dict[str, Any]] = None) -> "OptimizerConfig":
        """Build from the `optimizer` section. LABELOPT_* env vars, when set, override it; defaults fill the rest."""
        s = settings or {}
        opt = cfg(s, "optimizer", {}) or {}
        scoring = opt.get("scoring") or {}
        bidding = opt.get("bidding") or {}
        return OptimizerConfig(
            days_remaining=env_or_cfg_i(opt, "days_remaining", "LABELOPT_DAYS_REMAINING", DEFAULT_DAYS_REMAINING),
            min_daily_budget=env_or_cfg_f(opt, "min_daily_budget", "LABELOPT_MIN_DAILY_BUDGET", DEFAULT_MIN_DAILY_BUDGET),
            region_budget_ratio=env_or_cfg_f(
                opt, "region_budget_ratio", "LABELOPT_REGION_BUDGET_RATIO", DEFAULT_REGION_BUDGET_RATIO
            ),
            reward_factor=float(scoring.get("reward_factor", 1.25)),
            penalty_factor=float(scoring.get("penalty_factor", 0.75)),
            penalty_threshold=float(scoring.get("penalty_threshold", 1.0 / 1.15)),
            dormant_tcpa_step=float(bidding.get("dormant_tcpa_step", 1.2)),
            efficient_cpa_headroom=float(bidding.get("efficient_cpa_headroom", 1.20)),
            efficient_tcpa_step=float(bidding.get("efficient_tcpa_step", 1.05)),
            underperform_tcpa_step=float(bidding.get("underperform_tcpa_step", 0.90)),
            kpi_band=float(bidding.get("kpi_band", DEFAULT_KPI_BAND)),
            tcpa_floor=float(bidding.get("tcpa_floor", DEFAULT_TCPA_FLOOR)),
        )


def load_yaml(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except (FileNotFoundError, yaml.YAMLError, IOError, OSError):
        logger.debug("Could not load YAML from %s", path)
        return {}


def validate_settings(settings: Dict[str, Any], schema: Optional[Dict[str, Any]] = None) -> None:
    if not isinstance(settings, dict):
        raise ValueError("Settings payload must be a dictionary.")
    if schema:
        try:
            jsonschema.validate(instance=settings, schema=schema)
        except jsonschema.ValidationError as e:
            path = ".".join(str(p) for p in e.absolute_path) or "<root>"
            raise ValueError(f"Invalid settings at {path}: {e.message}") from e

    region_cfg = settings.get("region")
    if region_cfg is not None and not isinstance(region_cfg, dict):
        raise ValueError("Invalid `region` configuration. Expected a mapping.")
    if isinstance(region_cfg, dict):
        markers = region_cfg.get("name_markers")
        if markers is not None and not markers:
            logger.warning("region.name_markers is empty; only explicit campaign regions will match")


def load_settings(
    settings_path: str = SETTINGS_PATH_DEFAULT,
    schema_path: Optional[str] = SCHEMA_PATH_DEFAULT,
) -> Dict[str, Any]:
    settings = load_yaml(settings_path)
    schema = load_yaml(schema_path) if schema_path and Path(schema_path).exists() else None
    validate_settings(settings, schema)
    return settings
