"""Alert data models — auto alerts, rule candidates, and scan reports."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional

from fluxquant.backtest.models import SymbolFailure

SIGNALS = ("buy", "sell", "watch")
PRIORITIES = ("low", "medium", "high", "critical")


@dataclass(frozen=True)
class AutoAlert:
    """A trading alert raised by the scanner.

    Alerts are never deleted; ``active`` is the only field that flips, via
    ``deactivated()``.  A ``refresh`` policy may replace the market fields
    of an active alert in place (same ``id``).
    """

    id: str
    symbol: str
    strategy_name: str
    signal: str
    priority: str
    current_price: float
    target_price: Optional[float]
    confidence: float
    reasoning: str
    created_at: datetime
    active: bool = True
    asset_class: str = ""

    def __post_init__(self) -> None:
        if self.signal not in SIGNALS:
            raise ValueError(f"signal must be one of {SIGNALS}, got '{self.signal}'")
        if self.priority not in PRIORITIES:
            raise ValueError(f"priority must be one of {PRIORITIES}, got '{self.priority}'")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")

    def deactivated(self) -> "AutoAlert":
        return replace(self, active=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "strategy_name": self.strategy_name,
            "signal": self.signal,
            "priority": self.priority,
            "current_price": self.current_price,
            "target_price": self.target_price,
            "confidence": round(self.confidence, 4),
            "reasoning": self.reasoning,
            "created_at": self.created_at.isoformat(),
            "active": self.active,
            "asset_class": self.asset_class,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AutoAlert":
        return cls(
            id=data["id"],
            symbol=data["symbol"],
            strategy_name=data["strategy_name"],
            signal=data["signal"],
            priority=data["priority"],
            current_price=float(data["current_price"]),
            target_price=(
                float(data["target_price"]) if data.get("target_price") is not None else None
            ),
            confidence=float(data["confidence"]),
            reasoning=data.get("reasoning") or "",
            created_at=datetime.fromisoformat(data["created_at"]),
            active=bool(data.get("active", True)),
            asset_class=data.get("asset_class") or "",
        )


@dataclass(frozen=True)
class AlertCandidate:
    """What an alert rule proposes for one quote, before dedup and priority."""

    symbol: str
    strategy_name: str
    signal: str
    confidence: float
    target_price: Optional[float]
    reasoning: str


@dataclass
class ScanReport:
    """Outcome of one scan of an asset class."""

    asset_class: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    symbols: int = 0
    scanned: int = 0
    new_alerts: list[AutoAlert] = field(default_factory=list)
    refreshed: int = 0
    duplicates: int = 0
    failures: list[SymbolFailure] = field(default_factory=list)
    cancelled: bool = False

    @property
    def total_failure(self) -> bool:
        """``True`` when the universe was non-empty and no symbol could be scanned."""
        return self.symbols > 0 and self.scanned == 0 and bool(self.failures)

    def to_dict(self) -> dict:
        return {
            "asset_class": self.asset_class,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "symbols": self.symbols,
            "scanned": self.scanned,
            "new_alerts": [a.to_dict() for a in self.new_alerts],
            "refreshed": self.refreshed,
            "duplicates": self.duplicates,
            "failures": [f.to_dict() for f in self.failures],
            "cancelled": self.cancelled,
        }
