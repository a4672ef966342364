"""
Configuration for the StakeLedger service.

Five TOML tables map onto the dataclasses below, e.g.::

    [ledger]
    owner = "rTreasury"

    [parameters]
    reward-rate = 150        # bps per unit

    [logging]
    areas = { storage = "WARNING" }

Environment variables (``STAKELEDGER_*``) override the file.
"""

from __future__ import annotations

import os
import sys
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Callable

from stakeledger_core.precision import SECONDS_PER_DAY

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


@dataclass
class LedgerConfig:
    """Identity and accrual settings fixed at construction."""
    owner: str = "rOwner"
    pool_address: str = "rPool"
    token_symbol: str = "LEAD"
    unit_seconds: int = SECONDS_PER_DAY
    # Minted to the owner on a fresh in-memory token
    owner_reserve: int = 0
    check_invariants: bool = True


@dataclass
class ParametersConfig:
    """Initial economics.  Rates in basis points, taxes and minimums in token units."""
    staking_tax_rate: int = 200
    unstaking_tax_rate: int = 400
    reward_rate: int = 100
    registration_tax: int = 200
    referral_tax_allocation: int = 5_000
    minimum_stake_value: int = 1_000
    pool_reserve_threshold: int = 0
    active: bool = True


@dataclass
class APIConfig:
    """HTTP service settings."""
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8080
    api_key: str = ""             # X-API-Key for POST routes; empty disables the check
    rate_limit_rpm: int = 120     # per client IP; 0 disables limiting
    max_body_bytes: int = 65_536


@dataclass
class StorageConfig:
    """SQLite snapshot location.  Without it state is lost on restart."""
    enabled: bool = True
    path: str = "data/stakeledger.db"


@dataclass
class LoggingConfig:
    """Console and file logging."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None
    # per-area overrides, e.g. {"storage": "WARNING"}
    areas: dict[str, str] = field(default_factory=dict)


@dataclass
class StakeLedgerConfig:
    """All sections, as returned by ``load_config``."""
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    parameters: ParametersConfig = field(default_factory=ParametersConfig)
    api: APIConfig = field(default_factory=APIConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def parameter_values(self) -> dict[str, Any]:
        """ParameterSet keyword arguments (without the owner)."""
        return asdict(self.parameters)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Copy known keys of *raw* onto the dataclass *dc*; ``reward-rate`` matches ``reward_rate``."""
    known = {f.name for f in fields(dc)}
    for key, value in raw.items():
        name = key.replace("-", "_")
        if name in known:
            setattr(dc, name, value)


def _upper(value: str) -> str:
    return value.upper()


# variable -> (section, attribute, parser)
_ENV_OVERRIDES: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "STAKELEDGER_OWNER": ("ledger", "owner", str),
    "STAKELEDGER_API_PORT": ("api", "port", int),
    "STAKELEDGER_API_KEY": ("api", "api_key", str),
    "STAKELEDGER_LOG_LEVEL": ("logging", "level", _upper),
    "STAKELEDGER_LOG_FMT": ("logging", "format", str),
    "STAKELEDGER_DB_PATH": ("storage", "path", str),
}


def load_config(path: str | None = None) -> StakeLedgerConfig:
    """
    Build a ``StakeLedgerConfig`` from defaults, an optional TOML file and
    ``STAKELEDGER_*`` variables, later sources winning.

    A missing file is not an error.  Top-level tables other than
    ``[ledger]``, ``[parameters]``, ``[api]``, ``[storage]`` and
    ``[logging]`` are ignored.  Setting ``STAKELEDGER_DB_PATH`` also turns
    storage on.
    """
    cfg = StakeLedgerConfig()

    if path is not None and Path(path).is_file():
        with Path(path).open("rb") as fh:
            document = tomllib.load(fh)
        for section in fields(cfg):
            table = document.get(section.name)
            if isinstance(table, dict):
                _merge(getattr(cfg, section.name), table)

    for var, (section_name, attr, parse) in _ENV_OVERRIDES.items():
        raw = os.environ.get(var)
        if raw:
            setattr(getattr(cfg, section_name), attr, parse(raw))
    if os.environ.get("STAKELEDGER_DB_PATH"):
        cfg.storage.enabled = True

    return cfg
