"""Operator CLI for offline range and migration analysis.

Usage:
  trailing-range compare --snapshot yields.json --pair USDC/WETH --current-chain 1
  trailing-range best-chain --snapshot yields.json --pair USDC/WETH --current-chain 1
  trailing-range evaluate --snapshot yields.json --pair USDC/WETH --from 1 --to 137 --value 10000
  trailing-range range --tick 72387 --width 120 --spacing 60
"""

from __future__ import annotations

import json
import sys
import time
from pathlib import Path
from typing import Any

import click
from loguru import logger

from trailing_range.adapters.bridge_adapter.adapter import StaticQuoteBridgeAdapter
from trailing_range.core.access import AccessControl, PauseSwitch, Role
from trailing_range.core.config import get_chain_configs, get_policy, load_config
from trailing_range.core.constants import ZERO_ADDRESS
from trailing_range.core.constants.chains import SPOKE_POOLS
from trailing_range.core.errors import TrailingRangeError
from trailing_range.core.utils.tick_math import compute_new_range
from trailing_range.migration.evaluator import MigrationEvaluator
from trailing_range.registry.chain_registry import ChainRegistry
from trailing_range.registry.yield_registry import YieldRegistry

_OPERATOR = ZERO_ADDRESS


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _read_snapshot(path: Path) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    try:
        raw = json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"Invalid snapshot JSON in {path}: {exc}") from exc
    if isinstance(raw, list):
        return raw, []
    if isinstance(raw, dict):
        return list(raw.get("records", [])), list(raw.get("chains", []))
    raise click.ClickException(f"Unsupported snapshot format in {path}")


def _build_registries(
    snapshot: Path,
) -> tuple[YieldRegistry, ChainRegistry]:
    records, chain_cfgs = _read_snapshot(snapshot)
    access = AccessControl(_OPERATOR)
    access.grant(_OPERATOR, Role.YIELD_UPDATER, _OPERATOR)
    yields = YieldRegistry(access, PauseSwitch(access))
    chains = ChainRegistry(access)

    chain_cfgs = chain_cfgs or get_chain_configs()
    if chain_cfgs:
        chains.bootstrap(_OPERATOR, chain_cfgs)
    else:
        for chain_id, endpoint in SPOKE_POOLS.items():
            chains.register_chain(_OPERATOR, chain_id, endpoint)

    try:
        for rec in records:
            yields.update(
                _OPERATOR,
                int(rec["chain_id"]),
                str(rec["token_pair_id"]),
                int(rec["apy_bps"]),
                int(rec.get("tvl", 0)),
                int(rec.get("gas_price", 0)),
                now=int(rec["observed_at"]),
            )
    except KeyError as exc:
        raise click.ClickException(f"Snapshot record missing field {exc}") from exc
    return yields, chains


@click.group(name="trailing-range", help="Trailing range and cross-chain migration tooling.")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Config JSON (defaults to TRAILING_RANGE_CONFIG_PATH or ./config.json).",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
)
def cli(config_path: Path | None, log_level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=str(log_level).upper())
    if config_path is not None:
        load_config(config_path, require_exists=True)


_snapshot_option = click.option(
    "--snapshot",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="JSON list of yield records (or {records, chains}).",
)
_now_option = click.option(
    "--now", type=int, default=None, help="Evaluation time (epoch seconds)."
)


@cli.command(name="compare", help="Compare yields for a token pair across chains.")
@_snapshot_option
@click.option("--pair", "token_pair_id", required=True)
@click.option("--current-chain", type=int, required=True)
@_now_option
def compare_cmd(snapshot: Path, token_pair_id: str, current_chain: int, now: int | None) -> None:
    yields, _ = _build_registries(snapshot)
    window = get_policy().for_pair(token_pair_id).freshness_window_s
    rows = yields.compare(token_pair_id, current_chain, window, now or int(time.time()))
    _echo_json({"ok": True, "result": rows})


@cli.command(name="best-chain", help="Best fresh chain for a token pair.")
@_snapshot_option
@click.option("--pair", "token_pair_id", required=True)
@click.option("--current-chain", type=int, required=True)
@_now_option
def best_chain_cmd(
    snapshot: Path, token_pair_id: str, current_chain: int, now: int | None
) -> None:
    yields, chains = _build_registries(snapshot)
    window = get_policy().for_pair(token_pair_id).freshness_window_s
    chain_id, delta = yields.best_chain(
        token_pair_id,
        current_chain,
        window,
        now or int(time.time()),
        candidates=chains.active_chains(),
    )
    _echo_json(
        {
            "ok": True,
            "result": {
                "chain_id": chain_id,
                "yield_delta_bps": delta,
                "opportunity": chain_id != current_chain,
            },
        }
    )


@cli.command(name="evaluate", help="Estimate migration profitability without creating one.")
@_snapshot_option
@click.option("--pair", "token_pair_id", required=True)
@click.option("--from", "from_chain", type=int, required=True)
@click.option("--to", "to_chain", type=int, required=True)
@click.option("--value", "total_value", type=int, required=True)
@_now_option
def evaluate_cmd(
    snapshot: Path,
    token_pair_id: str,
    from_chain: int,
    to_chain: int,
    total_value: int,
    now: int | None,
) -> None:
    yields, chains = _build_registries(snapshot)
    evaluator = MigrationEvaluator(
        yields, chains, StaticQuoteBridgeAdapter(), policy=get_policy()
    )
    result = evaluator.evaluate(
        from_chain, to_chain, token_pair_id, total_value, now or int(time.time())
    )
    _echo_json({"ok": True, "result": result.to_dict()})


@cli.command(name="range", help="Compute the aligned range centered on a tick.")
@click.option("--tick", type=int, required=True)
@click.option("--width", type=int, required=True, help="Range width in ticks.")
@click.option("--spacing", type=int, required=True, help="Pool tick spacing.")
def range_cmd(tick: int, width: int, spacing: int) -> None:
    try:
        lower, upper = compute_new_range(tick, width, spacing)
    except TrailingRangeError as exc:
        _echo_json({"ok": False, "error": exc.to_dict()})
        raise SystemExit(1) from exc
    _echo_json({"ok": True, "result": {"lower_tick": lower, "upper_tick": upper}})


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
