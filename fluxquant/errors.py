"""Error taxonomy shared by the gateway, backtester, and alert scanner."""

from dataclasses import dataclass


class FluxQuantError(Exception):
    """Base class for all FluxQuant errors."""


# ── Provider errors ──────────────────────────────────────────────────────


class ProviderError(FluxQuantError):
    """A single provider failed to serve a request."""

    kind = "network"

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message


class ProviderUnavailableError(ProviderError):
    """Transport error, timeout, or HTTP 5xx."""

    kind = "network"


class RateLimitedError(ProviderError):
    """HTTP 429 or a vendor-specific rate-limit note."""

    kind = "rate_limited"


class ProviderResponseError(ProviderError):
    """Payload could not be parsed or the symbol is unknown to the vendor."""

    kind = "parse"


@dataclass(frozen=True)
class ProviderFailure:
    """One provider's reason for failing inside a gateway call."""

    provider: str
    kind: str  # "rate_limited" | "exhausted" | "network" | "parse" | "busy"
    message: str


class AllProvidersFailedError(FluxQuantError):
    """Every provider in the chain failed for *symbol*."""

    def __init__(self, symbol: str, failures: list[ProviderFailure]) -> None:
        reasons = "; ".join(f"{f.provider} ({f.kind}): {f.message}" for f in failures)
        super().__init__(f"All providers failed for {symbol}: {reasons or 'no providers'}")
        self.symbol = symbol
        self.failures = list(failures)

    @property
    def rate_limited(self) -> bool:
        """``True`` when every failure was quota related."""
        return bool(self.failures) and all(
            f.kind in ("rate_limited", "exhausted", "busy") for f in self.failures
        )

    @property
    def network_unavailable(self) -> bool:
        """``True`` when every failure was a transport failure."""
        return bool(self.failures) and all(f.kind == "network" for f in self.failures)


# ── Data / config errors ─────────────────────────────────────────────────


class InsufficientDataError(ValueError):
    """Series too short for an indicator evaluated in strict mode."""


class StrategyConfigError(ValueError):
    """Strategy parameters violate the strategy's constraints."""


class UnknownStrategyError(KeyError):
    """Strategy name is not registered in the catalog."""


# ── Scanner control flow ─────────────────────────────────────────────────


class CooldownActiveError(FluxQuantError):
    """A scan was requested before the asset class's cooldown elapsed."""

    def __init__(self, asset_class: str, remaining_ms: int) -> None:
        super().__init__(
            f"Scan for '{asset_class}' is cooling down; "
            f"retry in {remaining_ms / 1000:.0f}s"
        )
        self.asset_class = asset_class
        self.remaining_ms = remaining_ms
