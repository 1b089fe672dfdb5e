import json
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from trailing_range.core.constants.policy import (
    DAYS_PER_YEAR,
    DEFAULT_BASE_GAS_UNITS,
    DEFAULT_COOLDOWN_BLOCKS,
    DEFAULT_FRESHNESS_WINDOW_S,
    DEFAULT_HORIZON_DAYS,
    DEFAULT_MAX_MIGRATION_AMOUNT,
    DEFAULT_MIN_MIGRATION_AMOUNT,
    DEFAULT_PROFIT_BUFFER_BPS,
    DEFAULT_RANGE_WIDTH_TICKS,
    DEFAULT_REBALANCE_THRESHOLD_BPS,
)

_CONFIG_ENV_KEYS = ("TRAILING_RANGE_CONFIG_PATH", "TRAILING_RANGE_CONFIG")
_DEFAULT_CONFIG_FILENAME = "config.json"


class PairPolicy(BaseModel):
    horizon_days: int | None = Field(default=None, gt=0)
    profit_buffer_bps: int | None = Field(default=None, ge=0)
    freshness_window_s: int | None = Field(default=None, gt=0)


class PolicyConfig(BaseModel):
    cooldown_blocks: int = Field(default=DEFAULT_COOLDOWN_BLOCKS, ge=0)
    freshness_window_s: int = Field(default=DEFAULT_FRESHNESS_WINDOW_S, gt=0)
    horizon_days: int = Field(default=DEFAULT_HORIZON_DAYS, gt=0)
    days_per_year: int = Field(default=DAYS_PER_YEAR, gt=0)
    profit_buffer_bps: int = Field(default=DEFAULT_PROFIT_BUFFER_BPS, ge=0)
    min_migration_amount: int = Field(default=DEFAULT_MIN_MIGRATION_AMOUNT, ge=0)
    max_migration_amount: int = Field(default=DEFAULT_MAX_MIGRATION_AMOUNT, gt=0)
    default_base_gas_units: int = Field(default=DEFAULT_BASE_GAS_UNITS, ge=0)
    rebalance_threshold_bps: int = Field(default=DEFAULT_REBALANCE_THRESHOLD_BPS, ge=0)
    range_width_ticks: int = Field(default=DEFAULT_RANGE_WIDTH_TICKS, gt=0)
    cross_chain_enabled: bool = True
    pair_overrides: dict[str, PairPolicy] = Field(default_factory=dict)

    def for_pair(self, token_pair_id: str) -> "PolicyConfig":
        """Return this policy with any per-pair overrides applied."""
        override = self.pair_overrides.get(token_pair_id)
        if override is None:
            return self
        updates = override.model_dump(exclude_none=True)
        return self.model_copy(update=updates)


def _find_project_root(start: Path) -> Path | None:
    cur = start.resolve()
    for parent in [cur, *cur.parents]:
        if (parent / "pyproject.toml").exists():
            return parent
    return None


def _project_root() -> Path | None:
    return _find_project_root(Path.cwd()) or _find_project_root(Path(__file__).parent)


def resolve_config_path(path: str | Path | None = None) -> Path:
    if path is not None:
        return Path(path).expanduser()

    env_path = next(
        (os.getenv(k, "").strip() for k in _CONFIG_ENV_KEYS if os.getenv(k)), ""
    )
    if env_path:
        p = Path(env_path).expanduser()
        if p.is_absolute():
            return p
        root = _project_root()
        return (root / p) if root else p

    root = _project_root()
    return (root / _DEFAULT_CONFIG_FILENAME) if root else Path(_DEFAULT_CONFIG_FILENAME)


def load_config_json(
    path: str | Path | None = None, *, require_exists: bool = False
) -> dict[str, Any]:
    cfg_path = resolve_config_path(path)
    if not cfg_path.exists():
        if require_exists:
            raise FileNotFoundError(f"Config file not found: {cfg_path}")
        return {}
    try:
        return json.loads(cfg_path.read_text())
    except Exception:
        return {}


CONFIG: dict[str, Any] = load_config_json()


def set_config(config: dict[str, Any]) -> None:
    """Replace the global CONFIG dict in-place.

    This allows code that imported CONFIG at module import time to see updates.
    """
    CONFIG.clear()
    CONFIG.update(config)


def load_config(
    path: str | Path | None = None, *, require_exists: bool = False
) -> None:
    """Load config from disk into the global CONFIG dict."""
    set_config(load_config_json(path, require_exists=require_exists))


def get_policy() -> PolicyConfig:
    return PolicyConfig.model_validate(CONFIG.get("policy", {}) or {})


def get_chain_configs() -> list[dict[str, Any]]:
    chains = CONFIG.get("chains", [])
    return [c for c in chains if isinstance(c, dict)]


def get_bridge_quote_config() -> dict[str, Any]:
    bridge = CONFIG.get("bridge", {}) or {}
    return {
        "flat_fee": int(bridge.get("flat_fee", 0)),
        "fee_bps": int(bridge.get("fee_bps", 0)),
    }
