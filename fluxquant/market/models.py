"""Market data models — canonical shapes every vendor adapter normalises into."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class Quote:
    """Immutable price snapshot for one symbol."""

    symbol: str
    price: float
    change: float
    change_percent: float
    volume: float
    market_cap: Optional[float]
    timestamp: datetime
    source: str


@dataclass(frozen=True)
class PricePoint:
    """A single daily OHLCV bar."""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


def validate_series(series: list[PricePoint]) -> list[PricePoint]:
    """Return *series* unchanged after checking timestamps strictly increase.

    Raises ``ValueError`` on the first out-of-order or duplicate bar.
    """
    for prev, cur in zip(series, series[1:]):
        if cur.timestamp <= prev.timestamp:
            raise ValueError(
                f"Price series must be strictly increasing: "
                f"{cur.timestamp.isoformat()} follows {prev.timestamp.isoformat()}"
            )
    return series


# ── Credentials ──────────────────────────────────────────────────────────


@dataclass
class ProviderCredential:
    """One API key for a quota-limited provider.

    Mutated only by ``ProviderKeyPool``.  ``used`` is reset lazily once
    the quota window has elapsed.
    """

    id: str
    provider_name: str
    api_key: str
    daily_limit: int
    used: int
    window_start: datetime

    def __post_init__(self) -> None:
        if self.daily_limit <= 0:
            raise ValueError(
                f"daily_limit must be positive for credential '{self.id}', "
                f"got {self.daily_limit}"
            )
        if not 0 <= self.used <= self.daily_limit:
            raise ValueError(
                f"used must be within [0, {self.daily_limit}] for credential "
                f"'{self.id}', got {self.used}"
            )

    @property
    def exhausted(self) -> bool:
        return self.used >= self.daily_limit

    @property
    def remaining(self) -> int:
        return max(0, self.daily_limit - self.used)


@dataclass(frozen=True)
class CredentialHandle:
    """Lease on a credential, returned by ``ProviderKeyPool.acquire``."""

    credential_id: str
    provider_name: str
    api_key: str
    lease_id: int
