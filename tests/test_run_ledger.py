"""
Tests for the service runner: building a ledger from configuration and
restoring it from storage.
"""

from __future__ import annotations

import logging

from run_ledger import build_ledger, open_store, parse_args
from stakeledger_core.config import StakeLedgerConfig
from stakeledger_core.storage import LedgerStore


def _cfg(**ledger_overrides):
    cfg = StakeLedgerConfig()
    for key, value in ledger_overrides.items():
        setattr(cfg.ledger, key, value)
    return cfg


class TestBuildLedger:
    def test_fresh_ledger_from_config(self):
        cfg = _cfg(owner="rTreasury", pool_address="rVault", owner_reserve=50_000,
                   unit_seconds=3600)
        cfg.parameters.reward_rate = 250
        ledger = build_ledger(cfg)
        assert ledger.params.owner == "rTreasury"
        assert ledger.params.reward_rate == 250
        assert ledger.unit_seconds == 3600
        assert ledger.token.pool_address == "rVault"
        assert ledger.token.balance_of("rTreasury") == 50_000
        assert ledger.pool_balance() == 0

    def test_owner_can_fund_pool(self):
        cfg = _cfg(owner_reserve=10_000)
        cfg.parameters.pool_reserve_threshold = 4_000
        ledger = build_ledger(cfg)
        assert ledger.supply_pool(cfg.ledger.owner) == 4_000

    def test_restores_from_store(self, tmp_path):
        cfg = _cfg(owner_reserve=100_000)
        db = str(tmp_path / "svc.db")
        with LedgerStore(db) as store:
            ledger = build_ledger(cfg, store)
            ledger.token.mint("rAlice", 5_000)
            ledger.register("rAlice", None, 1200)
            store.snapshot_ledger(ledger)

        with LedgerStore(db) as store:
            again = build_ledger(cfg, store)
        assert again.is_registered("rAlice")
        assert again.total_staked == 980
        # the reserve is not minted a second time on restore
        assert again.token.balance_of(cfg.ledger.owner) == 100_000
        assert again.token.total_supply == 105_000

    def test_empty_store_builds_fresh(self, tmp_path):
        with LedgerStore(str(tmp_path / "empty.db")) as store:
            ledger = build_ledger(_cfg(owner_reserve=7), store)
        assert ledger.token.balance_of("rOwner") == 7


class TestParseArgs:
    def test_defaults(self):
        args = parse_args([])
        assert args.config is None
        assert args.port is None

    def test_overrides(self):
        args = parse_args(["--config", "x.toml", "--host", "0.0.0.0", "--port", "9000"])
        assert (args.config, args.host, args.port) == ("x.toml", "0.0.0.0", 9000)


class TestOpenStore:
    def test_enabled_by_default(self, tmp_path):
        cfg = StakeLedgerConfig()
        cfg.storage.path = str(tmp_path / "state" / "ledger.db")
        store = open_store(cfg)
        try:
            assert isinstance(store, LedgerStore)
            assert (tmp_path / "state" / "ledger.db").exists()
        finally:
            store.close()

    def test_disabled_warns(self, caplog):
        cfg = StakeLedgerConfig()
        cfg.storage.enabled = False
        with caplog.at_level(logging.WARNING, logger="stakeledger_runner"):
            assert open_store(cfg) is None
        assert "will not survive a restart" in caplog.text
