"""Alert scanner — scheduled re-scans of an asset universe.

Each asset class moves ``Idle → Scanning → Idle``.  A request inside the
cooldown window is rejected with ``CooldownActiveError`` unless forced, and
concurrent requests for the same asset class share one in-flight scan.
Alerts are deduplicated on ``(symbol, strategy_name)`` among active alerts,
and every change to the alert set or cooldown map is committed in a single
synchronous step, then persisted.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Mapping, Optional, Sequence

from fluxquant.alerts.models import PRIORITIES, AlertCandidate, AutoAlert, ScanReport
from fluxquant.alerts.rules import DEFAULT_RULES, AlertRule, PriorityThresholds, classify_priority
from fluxquant.alerts.scheduler import AsyncioScheduler, CancellationToken, Scheduler
from fluxquant.backtest.models import SymbolFailure
from fluxquant.clock import Clock, utc_now
from fluxquant.errors import AllProvidersFailedError, CooldownActiveError
from fluxquant.market.gateway import MarketDataGateway
from fluxquant.market.models import Quote
from fluxquant.strategy import indicators
from fluxquant.strategy.models import IndicatorSnapshot

logger = logging.getLogger("fluxquant.alerts")

REFRESH_POLICIES = ("leave", "refresh")


@dataclass(frozen=True)
class ScannerSettings:
    """Tunables for ``AlertScanner``."""

    cooldown: timedelta = timedelta(minutes=5)
    interval: timedelta = timedelta(minutes=15)
    history_days: int = 60
    min_confidence: float = 0.6
    refresh_policy: str = "leave"
    retention: timedelta = timedelta(days=7)
    request_delay_ms: int = 100

    def __post_init__(self) -> None:
        if self.refresh_policy not in REFRESH_POLICIES:
            raise ValueError(
                f"refresh_policy must be one of {REFRESH_POLICIES}, got '{self.refresh_policy}'"
            )
        if self.cooldown < timedelta(0) or self.interval <= timedelta(0):
            raise ValueError("cooldown must be >= 0 and interval must be positive")
        if self.history_days <= 0:
            raise ValueError(f"history_days must be positive, got {self.history_days}")


class AlertScanner:
    """Owns the active alert set and the per-asset-class cooldown map.

    Args:
        gateway: Market data source.
        universes: Asset class → ordered symbol list.
        alert_repo: Persistence for alerts (``load_alerts``/``save_alerts``).
        cooldown_repo: Persistence for cooldowns (``load_cooldowns``/``save_cooldowns``).
        settings: Cooldown, dedup and retention knobs.
        clock: Returns the current aware UTC time.
        scheduler: Drives ``start``; defaults to ``AsyncioScheduler``.
        rules: Alert rules evaluated per symbol, in order.
        thresholds: Priority cut-offs.
        sleep: Awaitable for the inter-symbol delay.
    """

    def __init__(
        self,
        gateway: MarketDataGateway,
        universes: Mapping[str, Sequence[str]],
        alert_repo=None,
        cooldown_repo=None,
        settings: Optional[ScannerSettings] = None,
        clock: Clock = utc_now,
        scheduler: Optional[Scheduler] = None,
        rules: Sequence[AlertRule] = DEFAULT_RULES,
        thresholds: PriorityThresholds = PriorityThresholds(),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._gateway = gateway
        self._universes = {k: list(v) for k, v in universes.items()}
        self._alert_repo = alert_repo
        self._cooldown_repo = cooldown_repo
        self._settings = settings or ScannerSettings()
        self._clock = clock
        self._scheduler = scheduler or AsyncioScheduler()
        self._rules = list(rules)
        self._thresholds = thresholds
        self._sleep = sleep

        self._alerts: list[AutoAlert] = []
        self._last_scan: dict[str, datetime] = {}
        self._in_flight: dict[str, asyncio.Task] = {}
        self._cancel_requested: set[str] = set()
        self._token: Optional[CancellationToken] = None

    # ── Lifecycle ────────────────────────────────────────────────────────

    def load(self) -> None:
        """Restore alerts and cooldowns, deactivating alerts past retention."""
        if self._alert_repo is not None:
            self._alerts = self._alert_repo.load_alerts()
        if self._cooldown_repo is not None:
            self._last_scan = dict(self._cooldown_repo.load_cooldowns())

        cutoff = self._clock() - self._settings.retention
        expired = {a.id for a in self._alerts if a.active and a.created_at < cutoff}
        if expired:
            self._alerts = [a.deactivated() if a.id in expired else a for a in self._alerts]
            self._persist()
            logger.info("Deactivated %d alert(s) older than %s", len(expired), self._settings.retention)

    def start(self) -> CancellationToken:
        """Begin periodic scans of every asset class.  Requires a running loop."""
        if self._token is not None and not self._token.cancelled:
            return self._token
        self._token = self._scheduler.schedule(
            self._settings.interval.total_seconds(), self._scheduled_scan,
        )
        logger.info("Alert scanner started (every %s)", self._settings.interval)
        return self._token

    async def stop(self) -> None:
        """Stop future scans; waits for a scan already in progress to finish."""
        token, self._token = self._token, None
        if token is None:
            return
        token.cancel()
        await token.finished()

    @property
    def running(self) -> bool:
        return self._token is not None and not self._token.cancelled

    async def _scheduled_scan(self) -> None:
        for asset_class in self._universes:
            try:
                await self.request_scan(asset_class)
            except CooldownActiveError as exc:
                logger.info("Scheduled scan skipped: %s", exc)

    # ── Scanning ─────────────────────────────────────────────────────────

    @property
    def asset_classes(self) -> list[str]:
        return list(self._universes)

    def cooldown_remaining(self, asset_class: str) -> timedelta:
        last = self._last_scan.get(asset_class)
        if last is None:
            return timedelta(0)
        return max(timedelta(0), last + self._settings.cooldown - self._clock())

    def is_scanning(self, asset_class: str) -> bool:
        task = self._in_flight.get(asset_class)
        return task is not None and not task.done()

    async def request_scan(self, asset_class: str, force: bool = False) -> ScanReport:
        """Scan *asset_class* now.

        Joins the in-flight scan if one is running.  Otherwise raises
        ``CooldownActiveError`` while the cooldown window is open, unless
        *force* is set.
        """
        if asset_class not in self._universes:
            raise ValueError(
                f"Unknown asset class '{asset_class}'. Available: {', '.join(self._universes)}"
            )

        task = self._in_flight.get(asset_class)
        if task is not None and not task.done():
            logger.info("Scan for %s already running; joining it", asset_class)
            return await asyncio.shield(task)

        if not force:
            remaining = self.cooldown_remaining(asset_class)
            if remaining > timedelta(0):
                remaining_ms = int(remaining.total_seconds() * 1000)
                logger.info("Scan for %s rejected: cooling down (%d ms left)", asset_class, remaining_ms)
                raise CooldownActiveError(asset_class, remaining_ms)

        task = asyncio.ensure_future(self._scan(asset_class))
        self._in_flight[asset_class] = task
        task.add_done_callback(lambda t, ac=asset_class: self._forget(ac, t))
        return await asyncio.shield(task)

    def cancel_scan(self, asset_class: str) -> bool:
        """Ask the in-flight scan of *asset_class* to stop after the current symbol.

        Alerts found so far are committed; the cooldown is not advanced.
        Returns ``False`` if no scan was running.
        """
        if not self.is_scanning(asset_class):
            return False
        self._cancel_requested.add(asset_class)
        logger.info("Cancellation requested for %s scan", asset_class)
        return True

    def _forget(self, asset_class: str, task: asyncio.Task) -> None:
        if self._in_flight.get(asset_class) is task:
            del self._in_flight[asset_class]
        self._cancel_requested.discard(asset_class)

    async def _scan(self, asset_class: str) -> ScanReport:
        symbols = self._universes[asset_class]
        report = ScanReport(asset_class=asset_class, started_at=self._clock(), symbols=len(symbols))
        staged: list[AutoAlert] = []
        refreshed: dict[str, AutoAlert] = {}
        delay = self._settings.request_delay_ms / 1000.0
        logger.info("Scanning %s (%d symbols)", asset_class, len(symbols))

        try:
            for i, symbol in enumerate(symbols):
                if asset_class in self._cancel_requested:
                    report.cancelled = True
                    break
                if i > 0 and delay > 0:
                    await self._sleep(delay)
                try:
                    quote = await self._gateway.fetch_quote(symbol)
                    ind = await self._indicators(symbol, quote)
                    self._evaluate(asset_class, quote, ind, staged, refreshed, report)
                except AllProvidersFailedError as exc:
                    logger.warning("Scan %s: skipping %s: %s", asset_class, symbol, exc)
                    report.failures.append(SymbolFailure(
                        symbol=symbol,
                        reason=str(exc),
                        rate_limited=exc.rate_limited,
                        network_unavailable=exc.network_unavailable,
                    ))
                    continue
                except Exception as exc:
                    logger.exception("Scan %s: %s failed", asset_class, symbol)
                    report.failures.append(SymbolFailure(symbol=symbol, reason=repr(exc)))
                    continue
                report.scanned += 1
        except BaseException:
            # Alerts found before the interruption are kept; the cooldown is not advanced.
            report.cancelled = True
            self._commit(asset_class, report, staged, refreshed)
            raise

        self._commit(asset_class, report, staged, refreshed)
        return report

    async def _indicators(self, symbol: str, quote: Quote) -> IndicatorSnapshot:
        try:
            series = await self._gateway.fetch_historical(symbol, self._settings.history_days)
        except (AllProvidersFailedError, ValueError) as exc:
            logger.warning("No history for %s, using neutral indicators: %s", symbol, exc)
            return IndicatorSnapshot.neutral(quote.price)
        if not series:
            return IndicatorSnapshot.neutral(quote.price)
        return indicators.snapshot(series)

    def _evaluate(
        self,
        asset_class: str,
        quote: Quote,
        ind: IndicatorSnapshot,
        staged: list[AutoAlert],
        refreshed: dict[str, AutoAlert],
        report: ScanReport,
    ) -> None:
        for rule in self._rules:
            candidate = rule.evaluate(quote, ind)
            if candidate is None or candidate.confidence < self._settings.min_confidence:
                continue
            existing = self._find_active(candidate, staged)
            if existing is None:
                staged.append(self._make_alert(asset_class, quote, candidate))
            elif self._settings.refresh_policy == "refresh" and existing in self._alerts:
                refreshed[existing.id] = replace(
                    existing,
                    current_price=quote.price,
                    target_price=candidate.target_price,
                    confidence=candidate.confidence,
                    signal=candidate.signal,
                    priority=self._priority(candidate, quote),
                    reasoning=candidate.reasoning,
                )
            else:
                report.duplicates += 1

    def _find_active(self, candidate: AlertCandidate, staged: list[AutoAlert]) -> Optional[AutoAlert]:
        for alert in (*self._alerts, *staged):
            if (
                alert.active
                and alert.symbol == candidate.symbol
                and alert.strategy_name == candidate.strategy_name
            ):
                return alert
        return None

    def _priority(self, candidate: AlertCandidate, quote: Quote) -> str:
        return classify_priority(candidate.confidence, quote.change_percent, self._thresholds)

    def _make_alert(self, asset_class: str, quote: Quote, candidate: AlertCandidate) -> AutoAlert:
        return AutoAlert(
            id=uuid.uuid4().hex,
            symbol=candidate.symbol,
            strategy_name=candidate.strategy_name,
            signal=candidate.signal,
            priority=self._priority(candidate, quote),
            current_price=quote.price,
            target_price=candidate.target_price,
            confidence=candidate.confidence,
            reasoning=candidate.reasoning,
            created_at=self._clock(),
            asset_class=asset_class,
        )

    def _commit(
        self,
        asset_class: str,
        report: ScanReport,
        staged: list[AutoAlert],
        refreshed: dict[str, AutoAlert],
    ) -> None:
        self._alerts = [refreshed.get(a.id, a) for a in self._alerts] + staged
        report.finished_at = self._clock()
        report.new_alerts = list(staged)
        report.refreshed = len(refreshed)
        if not report.cancelled:
            self._last_scan[asset_class] = report.finished_at
        self._persist()
        logger.info(
            "Scan %s %s: %d/%d symbols, %d new, %d refreshed, %d duplicate(s), %d failed",
            asset_class,
            "cancelled" if report.cancelled else "complete",
            report.scanned, report.symbols, len(staged), len(refreshed),
            report.duplicates, len(report.failures),
        )

    # ── Alert set ────────────────────────────────────────────────────────

    def deactivate_alert(self, alert_id: str) -> AutoAlert:
        """Soft-deactivate an alert.  Raises ``KeyError`` for an unknown id."""
        for i, alert in enumerate(self._alerts):
            if alert.id == alert_id:
                if alert.active:
                    self._alerts[i] = alert.deactivated()
                    self._persist()
                return self._alerts[i]
        raise KeyError(alert_id)

    def all_alerts(self) -> list[AutoAlert]:
        return list(self._alerts)

    def active_alerts(self, asset_class: Optional[str] = None) -> list[AutoAlert]:
        """Active alerts, newest first."""
        alerts = [
            a for a in self._alerts
            if a.active and (asset_class is None or a.asset_class == asset_class)
        ]
        return sorted(alerts, key=lambda a: a.created_at, reverse=True)

    def alerts_by_priority(self, priority: str) -> list[AutoAlert]:
        if priority not in PRIORITIES:
            raise ValueError(f"priority must be one of {PRIORITIES}, got '{priority}'")
        return [a for a in self.active_alerts() if a.priority == priority]

    def strategy_stats(self) -> list[dict]:
        """Per-rule totals: alerts, active alerts, mean confidence, high/critical count."""
        stats = []
        for rule in self._rules:
            alerts = [a for a in self._alerts if a.strategy_name == rule.name]
            stats.append({
                "name": rule.name,
                "total_alerts": len(alerts),
                "active_alerts": sum(1 for a in alerts if a.active),
                "average_confidence": (
                    sum(a.confidence for a in alerts) / len(alerts) if alerts else 0.0
                ),
                "high_priority_alerts": sum(
                    1 for a in alerts if a.priority in ("high", "critical")
                ),
            })
        return stats

    def cooldowns(self) -> dict[str, datetime]:
        return dict(self._last_scan)

    def _persist(self) -> None:
        if self._alert_repo is not None:
            self._alert_repo.save_alerts(self._alerts)
        if self._cooldown_repo is not None:
            self._cooldown_repo.save_cooldowns(self._last_scan)
