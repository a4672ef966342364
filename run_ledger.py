#!/usr/bin/env python3
"""
StakeLedger service runner — builds a ledger from configuration and
serves it over the HTTP API.

  - Loads TOML config (+ STAKELEDGER_* environment overrides)
  - Restores state from SQLite when storage is enabled
  - Snapshots state again on shutdown

Usage:
    python run_ledger.py --config stakeledger.toml
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging

from stakeledger_core.api import APIServer
from stakeledger_core.config import StakeLedgerConfig, load_config
from stakeledger_core.ledger import StakingLedger
from stakeledger_core.logging_config import setup_logging_from_config
from stakeledger_core.params import ParameterSet
from stakeledger_core.storage import LedgerStore
from stakeledger_core.token import InMemoryToken

logger = logging.getLogger("stakeledger_runner")


def build_ledger(
    cfg: StakeLedgerConfig,
    store: LedgerStore | None = None,
) -> StakingLedger:
    """Construct a ledger from *cfg*, restoring from *store* when it holds state."""
    token = InMemoryToken(
        pool_address=cfg.ledger.pool_address,
        symbol=cfg.ledger.token_symbol,
    )
    params = ParameterSet(owner=cfg.ledger.owner, **cfg.parameter_values())
    ledger = StakingLedger(
        token,
        params,
        unit_seconds=cfg.ledger.unit_seconds,
        check_invariants=cfg.ledger.check_invariants,
    )
    if store is not None and store.restore_ledger(ledger):
        return ledger
    if cfg.ledger.owner_reserve > 0:
        token.mint(cfg.ledger.owner, cfg.ledger.owner_reserve)
    logger.info(f"Fresh ledger for owner {params.owner}")
    return ledger


def open_store(cfg: StakeLedgerConfig) -> LedgerStore | None:
    if not cfg.storage.enabled:
        logger.warning("Storage disabled: ledger state will not survive a restart")
        return None
    return LedgerStore(cfg.storage.path)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="StakeLedger service")
    p.add_argument("--config", default=None, help="Path to stakeledger.toml config file")
    p.add_argument("--host", default=None, help="API listen host")
    p.add_argument("--port", type=int, default=None, help="API listen port")
    return p.parse_args(argv)


async def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    cfg = load_config(args.config)
    if args.host:
        cfg.api.host = args.host
    if args.port:
        cfg.api.port = args.port
    setup_logging_from_config(cfg.logging)

    store = open_store(cfg)
    ledger = build_ledger(cfg, store)

    api = APIServer(
        ledger, host=cfg.api.host, port=cfg.api.port,
        api_config=cfg.api, store=store,
    )
    await api.start()
    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        await api.stop()
        if store is not None:
            store.snapshot_ledger(ledger)
            store.close()
        logger.info("Ledger stopped")


def main_sync() -> None:
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


if __name__ == "__main__":
    main_sync()
