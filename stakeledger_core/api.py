"""
REST / HTTP API server for a StakeLedger.

Built on ``aiohttp``.  The acting identity of every POST is the
``account`` field of its JSON body; the server is meant to sit behind a
trusted gateway that authenticates that identity.

Endpoints
---------
GET  /health                    Liveness + invariant spot-check
GET  /status                    Ledger totals and pool balance
GET  /parameters                Current economic parameters
GET  /stakeholders              Currently registered identities
GET  /stakeholder/{address}     Stake record + pending reward
GET  /earnings/{address}        Pending (unrealized) reward
POST /tx/register               {"account", "deposit", "referrer"?}
POST /tx/stake                  {"account", "amount"}
POST /tx/unstake                {"account", "amount"}
POST /tx/withdraw               {"account"}
POST /admin/parameters          {"account", "name", "value"}
POST /admin/owner               {"account", "new_owner"}
POST /admin/supply_pool         {"account", "amount"?}
POST /admin/withdraw            {"account", "to", "amount"}

Ledger errors come back as ``{"error": <code>, "message": <text>}``.
With a store attached, successful POSTs also carry ``"persisted"``.

Security
--------
- API-key authentication on POST endpoints via ``X-API-Key`` header.
  Timing-safe comparison via ``hmac.compare_digest``.
- Per-IP token-bucket rate limiter (configurable RPM); full buckets are
  pruned so idle clients do not accumulate.
- Request body size cap (``max_body_bytes``).

Usage:
    api = APIServer(ledger, host="127.0.0.1", port=8080)
    await api.start()    # call inside existing event loop
    ...
    await api.stop()
"""

from __future__ import annotations

import hmac
import logging
import math
import sqlite3
import time
from typing import TYPE_CHECKING, Any, Callable

from aiohttp import web

from stakeledger_core import errors

if TYPE_CHECKING:
    from stakeledger_core.config import APIConfig
    from stakeledger_core.ledger import StakingLedger
    from stakeledger_core.storage import LedgerStore

logger = logging.getLogger("stakeledger_api")

_STATUS_BY_ERROR: dict[type[errors.LedgerError], int] = {
    errors.NotOwner: 403,
    errors.NotRegistered: 404,
    errors.AlreadyRegistered: 409,
    errors.ContractPaused: 409,
    errors.NothingToWithdraw: 409,
    errors.PoolReserveSufficient: 409,
    errors.TransferFailed: 502,
    errors.InvariantViolation: 500,
}

# /admin/parameters name -> StakingLedger setter
_SETTERS: dict[str, str] = {
    "staking_tax_rate": "set_staking_tax_rate",
    "unstaking_tax_rate": "set_unstaking_tax_rate",
    "reward_rate": "set_reward_rate",
    "registration_tax": "set_registration_tax",
    "referral_tax_allocation": "set_referral_tax_allocation",
    "minimum_stake_value": "set_minimum_stake_value",
    "pool_reserve_threshold": "set_pool_reserve_threshold",
    "active": "set_active",
}


# ═══════════════════════════════════════════════════════════════════
#  Input helpers
# ═══════════════════════════════════════════════════════════════════

def _safe_int(value: Any, name: str = "value") -> int:
    """Accept an int or a decimal-digit string; reject floats and bools."""
    if isinstance(value, bool):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise web.HTTPBadRequest(text=f"{name} must be an integer")


def _require_str(body: dict, name: str) -> str:
    value = body.get(name)
    if not isinstance(value, str) or not value:
        raise web.HTTPBadRequest(text=f"{name} required")
    return value


async def _read_body(request: web.Request) -> dict:
    try:
        body = await request.json()
    except ValueError as exc:
        raise web.HTTPBadRequest(text="Invalid JSON body") from exc
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return body


def error_response(exc: errors.LedgerError) -> web.Response:
    status = _STATUS_BY_ERROR.get(type(exc), 400)
    return web.json_response(
        {"error": exc.code, "message": str(exc)}, status=status,
    )


# ═══════════════════════════════════════════════════════════════════
#  Request guard: per-IP rate limit + API key
# ═══════════════════════════════════════════════════════════════════

class _RateLimiter:
    """
    Token bucket per client IP holding up to ``rpm`` requests and refilling
    at ``rpm / 60`` a second.  Buckets that have refilled completely carry
    no information and are dropped every ``prune_every`` calls.
    """

    def __init__(
        self,
        rpm: int,
        *,
        clock: Callable[[], float] = time.monotonic,
        prune_every: int = 1_000,
    ):
        self.rpm = rpm          # 0 = unlimited
        self._rate = rpm / 60.0
        self._clock = clock
        self._prune_every = prune_every
        self._calls = 0
        # ip -> (tokens left, time of last update)
        self._buckets: dict[str, tuple[float, float]] = {}

    def __len__(self) -> int:
        return len(self._buckets)

    def _level(self, ip: str, now: float) -> float:
        tokens, stamp = self._buckets.get(ip, (float(self.rpm), now))
        return min(float(self.rpm), tokens + (now - stamp) * self._rate)

    def allow(self, ip: str) -> bool:
        if self.rpm <= 0:
            return True
        now = self._clock()
        self._calls += 1
        if self._calls % self._prune_every == 0:
            self.prune(now)
        tokens = self._level(ip, now)
        allowed = tokens >= 1.0
        self._buckets[ip] = (tokens - 1.0 if allowed else tokens, now)
        return allowed

    def retry_after(self, ip: str) -> int:
        """Whole seconds until *ip* has a token again (at least 1)."""
        missing = 1.0 - self._level(ip, self._clock())
        return max(1, math.ceil(missing / self._rate)) if self._rate else 1

    def prune(self, now: float | None = None) -> int:
        """Drop full buckets; return how many were dropped."""
        now = self._clock() if now is None else now
        full = [ip for ip in self._buckets if self._level(ip, now) >= self.rpm]
        for ip in full:
            del self._buckets[ip]
        return len(full)


def _make_guard_middleware(limiter: _RateLimiter | None, api_key: str):
    """Rate-limit every request; require ``X-API-Key`` (header only) on POSTs."""

    @web.middleware
    async def guard(request: web.Request, handler):
        ip = request.remote or "unknown"
        if limiter is not None and not limiter.allow(ip):
            raise web.HTTPTooManyRequests(
                text=f"Over {limiter.rpm} requests per minute",
                headers={"Retry-After": str(limiter.retry_after(ip))},
            )
        if api_key and request.method == "POST":
            if not hmac.compare_digest(request.headers.get("X-API-Key", ""), api_key):
                raise web.HTTPUnauthorized(text="X-API-Key missing or wrong")
        return await handler(request)

    return guard


def build_middlewares(cfg: APIConfig | None) -> list:
    if cfg is None or (cfg.rate_limit_rpm <= 0 and not cfg.api_key):
        return []
    limiter = _RateLimiter(cfg.rate_limit_rpm) if cfg.rate_limit_rpm > 0 else None
    return [_make_guard_middleware(limiter, cfg.api_key)]


class APIServer:
    """Thin aiohttp wrapper around a StakingLedger."""

    def __init__(
        self,
        ledger: StakingLedger,
        host: str = "127.0.0.1",
        port: int = 8080,
        *,
        api_config: APIConfig | None = None,
        store: LedgerStore | None = None,
    ):
        self.ledger = ledger
        self.host = host
        self.port = port
        self.store = store
        self._api_config = api_config
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    # ── lifecycle ────────────────────────────────────────────────

    def build_app(self) -> web.Application:
        cfg = self._api_config
        max_body = cfg.max_body_bytes if cfg is not None else 65_536
        app = web.Application(
            middlewares=build_middlewares(cfg),
            client_max_size=max_body,
        )
        self._register_routes(app)
        self._app = app
        return app

    async def start(self) -> None:
        app = self.build_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"API listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()

    # ── routes ───────────────────────────────────────────────────

    def _register_routes(self, app: web.Application) -> None:
        app.router.add_get("/health", self._health)
        app.router.add_get("/status", self._status)
        app.router.add_get("/parameters", self._parameters)
        app.router.add_get("/stakeholders", self._stakeholders)
        app.router.add_get("/stakeholder/{address}", self._stakeholder)
        app.router.add_get("/earnings/{address}", self._earnings)
        app.router.add_post("/tx/register", self._register)
        app.router.add_post("/tx/stake", self._stake)
        app.router.add_post("/tx/unstake", self._unstake)
        app.router.add_post("/tx/withdraw", self._withdraw)
        app.router.add_post("/admin/parameters", self._set_parameter)
        app.router.add_post("/admin/owner", self._transfer_ownership)
        app.router.add_post("/admin/supply_pool", self._supply_pool)
        app.router.add_post("/admin/withdraw", self._admin_withdraw)

    def _apply(self, op: Callable[[], Any], result: Callable[[Any], dict]) -> web.Response:
        """
        Run a ledger operation, persist on success, map ledger errors.

        Once ``op`` returns the operation and its token transfer have
        happened, so a failed snapshot must not turn into an error the
        client would retry.  The response reports ``"persisted": false``
        instead; the next successful snapshot writes the full state again.
        """
        try:
            value = op()
        except errors.LedgerError as exc:
            return error_response(exc)
        body = {"status": "ok", **result(value)}
        if self.store is not None:
            try:
                self.store.snapshot_ledger(self.ledger)
                body["persisted"] = True
            except sqlite3.Error:
                logger.exception(
                    "Operation applied but the snapshot failed; store is behind",
                    extra={"code": "snapshot_failed"},
                )
                body["persisted"] = False
        return web.json_response(body)

    # ── query handlers ───────────────────────────────────────────

    async def _health(self, _request: web.Request) -> web.Response:
        total_ok = self.ledger.registry.total_principal() == self.ledger.total_staked
        return web.json_response({
            "ok": total_ok,
            "stakeholders": len(self.ledger.registry),
            "checks": {"total_staked": "ok" if total_ok else "mismatch"},
        }, status=200 if total_ok else 503)

    async def _status(self, _request: web.Request) -> web.Response:
        return web.json_response(self.ledger.get_state_summary())

    async def _parameters(self, _request: web.Request) -> web.Response:
        return web.json_response(self.ledger.params.to_dict())

    async def _stakeholders(self, _request: web.Request) -> web.Response:
        holders = self.ledger.stakeholders()
        return web.json_response({"count": len(holders), "stakeholders": holders})

    async def _stakeholder(self, request: web.Request) -> web.Response:
        address = request.match_info["address"]
        if self.ledger.get_record(address) is None:
            raise web.HTTPNotFound(text=f"Unknown stakeholder {address}")
        return web.json_response(self.ledger.get_stakeholder_summary(address))

    async def _earnings(self, request: web.Request) -> web.Response:
        address = request.match_info["address"]
        return web.json_response({
            "address": address,
            "pending_reward": self.ledger.calculate_earnings(address),
        })

    # ── stakeholder handlers ─────────────────────────────────────

    async def _register(self, request: web.Request) -> web.Response:
        body = await _read_body(request)
        account = _require_str(body, "account")
        deposit = _safe_int(body.get("deposit"), "deposit")
        referrer = body.get("referrer") or None
        if referrer is not None and not isinstance(referrer, str):
            raise web.HTTPBadRequest(text="referrer must be a string")
        return self._apply(
            lambda: self.ledger.register(account, referrer, deposit),
            lambda rec: {"principal": rec.principal},
        )

    async def _stake(self, request: web.Request) -> web.Response:
        body = await _read_body(request)
        account = _require_str(body, "account")
        amount = _safe_int(body.get("amount"), "amount")
        return self._apply(
            lambda: self.ledger.stake(account, amount),
            lambda added: {"added": added},
        )

    async def _unstake(self, request: web.Request) -> web.Response:
        body = await _read_body(request)
        account = _require_str(body, "account")
        amount = _safe_int(body.get("amount"), "amount")
        return self._apply(
            lambda: self.ledger.unstake(account, amount),
            lambda payout: {"payout": payout},
        )

    async def _withdraw(self, request: web.Request) -> web.Response:
        body = await _read_body(request)
        account = _require_str(body, "account")
        return self._apply(
            lambda: self.ledger.withdraw_earnings(account),
            lambda paid: {"paid": paid},
        )

    # ── admin handlers ───────────────────────────────────────────

    async def _set_parameter(self, request: web.Request) -> web.Response:
        body = await _read_body(request)
        account = _require_str(body, "account")
        name = _require_str(body, "name")
        setter = _SETTERS.get(name)
        if setter is None:
            raise web.HTTPBadRequest(text=f"Unknown parameter {name}")
        if name == "active":
            value = body.get("value")
            if not isinstance(value, bool):
                raise web.HTTPBadRequest(text="value must be a boolean")
        else:
            value = _safe_int(body.get("value"), "value")
        return self._apply(
            lambda: getattr(self.ledger, setter)(account, value),
            lambda _none: {"name": name, "value": getattr(self.ledger.params, name)},
        )

    async def _transfer_ownership(self, request: web.Request) -> web.Response:
        body = await _read_body(request)
        account = _require_str(body, "account")
        new_owner = _require_str(body, "new_owner")
        return self._apply(
            lambda: self.ledger.transfer_ownership(account, new_owner),
            lambda _none: {"owner": self.ledger.params.owner},
        )

    async def _supply_pool(self, request: web.Request) -> web.Response:
        body = await _read_body(request)
        account = _require_str(body, "account")
        amount = body.get("amount")
        if amount is not None:
            amount = _safe_int(amount, "amount")
        return self._apply(
            lambda: self.ledger.supply_pool(account, amount),
            lambda supplied: {"supplied": supplied, "pool_balance": self.ledger.pool_balance()},
        )

    async def _admin_withdraw(self, request: web.Request) -> web.Response:
        body = await _read_body(request)
        account = _require_str(body, "account")
        to = _require_str(body, "to")
        amount = _safe_int(body.get("amount"), "amount")
        return self._apply(
            lambda: self.ledger.admin_withdraw(account, to, amount),
            lambda _none: {"to": to, "amount": amount},
        )
