"""Internal API routers — /alerts, /scan, /backtest, /strategies, /keys endpoints.

No business logic, no DB access. Delegates to the scanner, backtester and
key pool injected via ``configure_routers``.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from fluxquant.cli.report import batch_summary, scan_summary
from fluxquant.errors import CooldownActiveError, UnknownStrategyError
from fluxquant.strategy.models import StrategyConfig
from fluxquant.strategy.registry import default_catalog

logger = logging.getLogger("fluxquant.api")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_services = None  # Set via configure_routers()


def configure_routers(services) -> None:
    """Inject the application's ``Services`` (or a duck-type for tests)."""
    global _services  # noqa: PLW0603
    _services = services


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def _not_ready() -> JSONResponse:
    return _error(503, "Services not configured")


# ── Alerts ───────────────────────────────────────────────────────────────


@router.get("/alerts")
async def get_alerts(
    active_only: bool = Query(True),
    priority: Optional[str] = Query(None),
    asset_class: Optional[str] = Query(None),
):
    """Return alerts, newest first."""
    if _services is None:
        return _not_ready()
    scanner = _services.scanner
    if priority is not None:
        try:
            alerts = scanner.alerts_by_priority(priority)
        except ValueError as exc:
            return _error(400, str(exc))
    elif active_only:
        alerts = scanner.active_alerts(asset_class)
    else:
        alerts = sorted(scanner.all_alerts(), key=lambda a: a.created_at, reverse=True)
    if asset_class is not None:
        alerts = [a for a in alerts if a.asset_class == asset_class]
    return [a.to_dict() for a in alerts]


@router.get("/alerts/stats")
async def get_alert_stats():
    if _services is None:
        return _not_ready()
    return _services.scanner.strategy_stats()


@router.post("/alerts/{alert_id}/deactivate")
async def deactivate_alert(alert_id: str):
    if _services is None:
        return _not_ready()
    try:
        alert = _services.scanner.deactivate_alert(alert_id)
    except KeyError:
        return _error(404, f"Unknown alert: {alert_id}")
    return alert.to_dict()


# ── Scans ────────────────────────────────────────────────────────────────


@router.get("/scan/status")
async def get_scan_status():
    if _services is None:
        return _not_ready()
    scanner = _services.scanner
    return {
        "running": scanner.running,
        "asset_classes": {
            ac: {
                "scanning": scanner.is_scanning(ac),
                "cooldown_remaining_ms": int(
                    scanner.cooldown_remaining(ac).total_seconds() * 1000
                ),
            }
            for ac in scanner.asset_classes
        },
    }


@router.post("/scan/{asset_class}")
async def request_scan(asset_class: str, force: bool = Query(False)):
    """Scan *asset_class*; 429 with ``remaining_ms`` while cooling down."""
    if _services is None:
        return _not_ready()
    try:
        report = await _services.scanner.request_scan(asset_class, force=force)
    except CooldownActiveError as exc:
        return _error(429, str(exc), remaining_ms=exc.remaining_ms)
    except ValueError as exc:
        return _error(404, str(exc))
    _services.persist_key_usage()
    return scan_summary(report)


@router.post("/scan/{asset_class}/cancel")
async def cancel_scan(asset_class: str):
    if _services is None:
        return _not_ready()
    return {"cancelled": _services.scanner.cancel_scan(asset_class)}


# ── Backtests ────────────────────────────────────────────────────────────


@router.get("/strategies")
async def get_strategies():
    """The built-in strategy catalog with default parameters."""
    return [c.to_dict() for c in default_catalog()]


@router.post("/backtest")
async def run_backtest(body: dict):
    """Backtest ``symbols`` with ``strategy``/``parameters`` over ``days``.

    Returns the batch summary; per-symbol failures are listed, not raised.
    """
    if _services is None:
        return _not_ready()
    symbols = body.get("symbols") or ([body["symbol"]] if body.get("symbol") else [])
    if not symbols:
        return _error(400, "symbols is required")
    try:
        days = int(body.get("days", 90))
        config = StrategyConfig(body.get("strategy", "SMA-Cross"), body.get("parameters") or {})
        batch = await _services.backtester.run_multi_symbol(symbols, config, days)
    except UnknownStrategyError as exc:
        return _error(404, exc.args[0])
    except ValueError as exc:
        return _error(400, str(exc))

    for result in batch.results:
        _services.backtest_repo.insert_run(result, dict(config.parameters))
    _services.persist_key_usage()
    return batch_summary(batch)


@router.get("/backtest/runs")
async def get_backtest_runs(limit: int = Query(10, ge=1, le=200)):
    if _services is None:
        return _not_ready()
    return _services.backtest_repo.get_runs(limit)


# ── Provider keys ────────────────────────────────────────────────────────


@router.get("/keys/usage")
async def get_key_usage():
    if _services is None:
        return _not_ready()
    return _services.key_pool.get_usage_statistics().to_dict()


@router.post("/keys/reset")
async def reset_keys():
    if _services is None:
        return _not_ready()
    _services.key_pool.reset_all()
    _services.persist_key_usage()
    return _services.key_pool.get_usage_statistics().to_dict()
