"""
SQLite-based persistence layer for StakeLedger state.

Stores stake records, referral relationships, the parameter set, ledger
totals and (for the in-memory token) token balances, so that a ledger
can recover its state after restart.

Usage:
    store = LedgerStore("data/stakeledger.db")
    store.snapshot_ledger(ledger)
    ...
    store.restore_ledger(fresh_ledger)
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

from stakeledger_core.params import ParameterSet
from stakeledger_core.registry import StakeRecord

logger = logging.getLogger("stakeledger_storage")

_TOTAL_KEYS = ("total_staked", "total_rewards_paid", "total_tax_collected")


class LedgerStore:
    """SQLite file holding the latest committed snapshot of a StakingLedger."""

    def __init__(self, db_path: str = "data/stakeledger.db"):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA busy_timeout = 5000")
        # WAL readers do not block the snapshot writer
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._create_tables()
        self._ensure_schema_version()
        logger.info(f"Storage opened: {db_path}")

    # ── schema ───────────────────────────────────────────────────

    def _create_tables(self) -> None:
        c = self._conn
        c.execute("""
            CREATE TABLE IF NOT EXISTS stake_records (
                address           TEXT PRIMARY KEY,
                principal         INTEGER NOT NULL DEFAULT 0,
                registered        INTEGER NOT NULL DEFAULT 0,
                ever_registered   INTEGER NOT NULL DEFAULT 0,
                last_accrual_time REAL NOT NULL DEFAULT 0,
                stake_reward      INTEGER NOT NULL DEFAULT 0,
                referral_count    INTEGER NOT NULL DEFAULT 0,
                referral_reward   INTEGER NOT NULL DEFAULT 0,
                position          INTEGER NOT NULL DEFAULT 0
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS referrals (
                referrer TEXT NOT NULL,
                referee  TEXT NOT NULL,
                first    INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (referrer, referee)
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS parameters (
                id     INTEGER PRIMARY KEY CHECK (id = 1),
                params TEXT NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS ledger_state (
                key   TEXT PRIMARY KEY,
                value INTEGER NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS token_balances (
                address TEXT PRIMARY KEY,
                balance INTEGER NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                id      INTEGER PRIMARY KEY CHECK (id = 1),
                version INTEGER NOT NULL
            )
        """)
        c.commit()

    CURRENT_SCHEMA_VERSION = 2

    def _ensure_schema_version(self) -> None:
        """Stamp a new file, upgrade an older one, refuse a newer one."""
        row = self._conn.execute(
            "SELECT version FROM schema_version WHERE id = 1"
        ).fetchone()
        if row is None:
            self._conn.execute(
                "INSERT INTO schema_version (id, version) VALUES (1, ?)",
                (self.CURRENT_SCHEMA_VERSION,),
            )
            self._conn.commit()
        else:
            db_ver = row["version"]
            if db_ver < self.CURRENT_SCHEMA_VERSION:
                self._migrate(db_ver, self.CURRENT_SCHEMA_VERSION)
            elif db_ver > self.CURRENT_SCHEMA_VERSION:
                raise RuntimeError(
                    f"Database schema v{db_ver} is newer than this software "
                    f"(v{self.CURRENT_SCHEMA_VERSION}).  Upgrade StakeLedger."
                )

    def _migrate(self, from_ver: int, to_ver: int) -> None:
        """Step the schema from *from_ver* up to *to_ver*."""
        logger.info(f"Migrating database schema v{from_ver} → v{to_ver}")
        if from_ver < 2:
            # v1 had no ever_registered column; only registration sets an
            # accrual time, bare referrer records keep 0
            self._conn.execute(
                "ALTER TABLE stake_records "
                "ADD COLUMN ever_registered INTEGER NOT NULL DEFAULT 0"
            )
            self._conn.execute(
                "UPDATE stake_records SET ever_registered = 1 "
                "WHERE registered = 1 OR last_accrual_time > 0"
            )
        self._conn.execute(
            "UPDATE schema_version SET version = ? WHERE id = 1", (to_ver,)
        )
        self._conn.commit()

    # ── reads ────────────────────────────────────────────────────

    def load_records(self) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            "SELECT * FROM stake_records ORDER BY position, address"
        ).fetchall()
        return [dict(r) for r in rows]

    def get_record(self, address: str) -> dict[str, Any] | None:
        row = self._conn.execute(
            "SELECT * FROM stake_records WHERE address = ?", (address,)
        ).fetchone()
        return dict(row) if row else None

    def load_referrals(self) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            "SELECT * FROM referrals ORDER BY referrer, referee"
        ).fetchall()
        return [dict(r) for r in rows]

    def load_parameters(self) -> dict[str, Any] | None:
        row = self._conn.execute(
            "SELECT params FROM parameters WHERE id = 1"
        ).fetchone()
        return json.loads(row["params"]) if row else None

    def load_state(self) -> dict[str, int]:
        rows = self._conn.execute("SELECT key, value FROM ledger_state").fetchall()
        return {r["key"]: r["value"] for r in rows}

    def load_token_balances(self) -> dict[str, int]:
        rows = self._conn.execute("SELECT * FROM token_balances").fetchall()
        return {r["address"]: r["balance"] for r in rows}

    # ── snapshot / restore ───────────────────────────────────────

    def snapshot_ledger(self, ledger: Any) -> None:
        """Persist the full current state of a StakingLedger atomically.

        All writes are wrapped in a single transaction to prevent a
        partial snapshot if the process crashes mid-write.
        """
        c = self._conn
        order = {addr: i for i, addr in enumerate(ledger.registry.stakeholders())}
        try:
            c.execute("BEGIN IMMEDIATE")

            for addr, rec in ledger.registry.records.items():
                c.execute(
                    """INSERT OR REPLACE INTO stake_records
                       (address, principal, registered, ever_registered,
                        last_accrual_time, stake_reward, referral_count,
                        referral_reward, position)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (addr, rec.principal, int(rec.registered),
                     int(rec.ever_registered), rec.last_accrual_time,
                     rec.stake_reward, rec.referral_count, rec.referral_reward,
                     order.get(addr, len(order))),
                )

            c.execute("DELETE FROM referrals")
            firsts = ledger.referrals.referrer_by_referee
            c.executemany(
                "INSERT INTO referrals (referrer, referee, first) VALUES (?, ?, ?)",
                [(er, ee, int(firsts.get(ee) == er))
                 for er, ee in ledger.referrals.pairs()],
            )

            c.execute(
                "INSERT OR REPLACE INTO parameters (id, params) VALUES (1, ?)",
                (json.dumps(ledger.params.to_dict()),),
            )

            for key in _TOTAL_KEYS:
                c.execute(
                    "INSERT OR REPLACE INTO ledger_state (key, value) VALUES (?, ?)",
                    (key, getattr(ledger, key)),
                )

            # Only the in-memory token keeps its balances in this process
            balances = getattr(ledger.token, "balances", None)
            if isinstance(balances, dict):
                c.execute("DELETE FROM token_balances")
                c.executemany(
                    "INSERT INTO token_balances (address, balance) VALUES (?, ?)",
                    list(balances.items()),
                )

            c.execute("COMMIT")
        except Exception:
            c.execute("ROLLBACK")
            raise
        logger.debug(f"Snapshot written: {len(ledger.registry.records)} records")

    def restore_ledger(self, ledger: Any) -> bool:
        """
        Restore ledger state from the database (records, registered index,
        referrals, parameters, totals, token balances).

        Returns False when the database holds no ledger yet.
        """
        params = self.load_parameters()
        if params is None:
            return False
        ledger.params = ParameterSet.from_dict(params)

        ledger.registry.clear()
        for row in self.load_records():
            ledger.registry.restore(StakeRecord(
                address=row["address"],
                principal=row["principal"],
                registered=bool(row["registered"]),
                ever_registered=bool(row["ever_registered"]),
                last_accrual_time=row["last_accrual_time"],
                stake_reward=row["stake_reward"],
                referral_count=row["referral_count"],
                referral_reward=row["referral_reward"],
            ))

        rows = self.load_referrals()
        ledger.referrals.restore(
            [(r["referrer"], r["referee"]) for r in rows],
            {r["referee"]: r["referrer"] for r in rows if r["first"]},
        )

        state = self.load_state()
        for key in _TOTAL_KEYS:
            setattr(ledger, key, state.get(key, 0))

        balances = getattr(ledger.token, "balances", None)
        if isinstance(balances, dict):
            stored = self.load_token_balances()
            if stored:
                balances.clear()
                balances.update(stored)
                if hasattr(ledger.token, "total_supply"):
                    ledger.token.total_supply = sum(stored.values())

        logger.info(
            f"Restored ledger: {len(ledger.registry.records)} records, "
            f"{len(ledger.registry)} registered, total_staked={ledger.total_staked}"
        )
        return True

    # ── lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
