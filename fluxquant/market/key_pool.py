"""Provider key pool — rotates and rate-limits credentials per provider.

Selection is round-robin over a provider's credentials, skipping any that
are exhausted or currently leased.  A credential carries at most one
in-flight request, so concurrent callers can never push ``used`` past
``daily_limit``.  Quota windows are reset lazily on access.
"""

import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from fluxquant.clock import Clock, utc_now
from fluxquant.market.models import CredentialHandle, ProviderCredential

logger = logging.getLogger("fluxquant.key_pool")

QUOTA_WINDOW = timedelta(hours=24)


@dataclass(frozen=True)
class KeyUsageDetail:
    """Per-credential row of ``UsageStatistics``."""

    id: str
    provider_name: str
    used: int
    limit: int
    available: int
    is_active: bool
    leased: bool


@dataclass(frozen=True)
class UsageStatistics:
    """Aggregate view of the pool for dashboards and the CLI."""

    total_keys: int
    active_keys: int
    total_requests: int
    available_requests: int
    exhaustion_events: int
    per_key_detail: list[KeyUsageDetail] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total_keys": self.total_keys,
            "active_keys": self.active_keys,
            "total_requests": self.total_requests,
            "available_requests": self.available_requests,
            "exhaustion_events": self.exhaustion_events,
            "per_key_detail": [vars(d) for d in self.per_key_detail],
        }


class ProviderKeyPool:
    """Owns every ``ProviderCredential`` and all mutation of it.

    Args:
        credentials: Initial credentials (e.g. loaded from the store).
        clock: Returns the current aware UTC time.
        window: Quota window length (24h).
    """

    def __init__(
        self,
        credentials: Optional[list[ProviderCredential]] = None,
        clock: Clock = utc_now,
        window: timedelta = QUOTA_WINDOW,
    ) -> None:
        self._clock = clock
        self._window = window
        self._lock = threading.Lock()
        self._credentials: dict[str, ProviderCredential] = {}
        self._order: dict[str, list[str]] = {}
        self._cursor: dict[str, int] = {}
        self._leases: dict[str, int] = {}  # credential id → lease id
        self._lease_ids = itertools.count(1)
        self._exhaustion_events = 0
        for cred in credentials or []:
            self.add_credential(cred)

    # ── Registration ─────────────────────────────────────────────────────

    def add_credential(self, credential: ProviderCredential) -> None:
        """Register *credential*.  Raises ``ValueError`` on a duplicate id."""
        with self._lock:
            if credential.id in self._credentials:
                raise ValueError(f"Duplicate credential id '{credential.id}'")
            self._credentials[credential.id] = credential
            self._order.setdefault(credential.provider_name, []).append(credential.id)
            self._cursor.setdefault(credential.provider_name, 0)

    def providers(self) -> list[str]:
        """Providers with at least one registered credential."""
        return list(self._order.keys())

    def has_provider(self, provider: str) -> bool:
        return bool(self._order.get(provider))

    # ── Leasing ──────────────────────────────────────────────────────────

    def acquire(self, provider: str) -> Optional[CredentialHandle]:
        """Lease the next usable credential for *provider*.

        Returns ``None`` when every credential is exhausted or already
        leased; use :meth:`is_exhausted` to tell the two apart.
        """
        with self._lock:
            ids = self._order.get(provider, [])
            if not ids:
                return None
            now = self._clock()
            start = self._cursor[provider]
            for offset in range(len(ids)):
                idx = (start + offset) % len(ids)
                cred = self._credentials[ids[idx]]
                self._refresh(cred, now)
                if cred.exhausted or cred.id in self._leases:
                    continue
                self._cursor[provider] = (idx + 1) % len(ids)
                lease_id = next(self._lease_ids)
                self._leases[cred.id] = lease_id
                return CredentialHandle(
                    credential_id=cred.id,
                    provider_name=provider,
                    api_key=cred.api_key,
                    lease_id=lease_id,
                )
            return None

    def is_exhausted(self, provider: str) -> bool:
        """``True`` when every credential for *provider* hit its daily limit."""
        with self._lock:
            now = self._clock()
            creds = [self._credentials[i] for i in self._order.get(provider, [])]
            for cred in creds:
                self._refresh(cred, now)
            return all(c.exhausted for c in creds)

    def record_usage(self, handle: CredentialHandle, cost: int = 1) -> None:
        """Charge *cost* requests to the leased credential and release it.

        Usage is clamped at ``daily_limit``.
        """
        if cost < 0:
            raise ValueError(f"cost must be >= 0, got {cost}")
        with self._lock:
            cred = self._leased(handle)
            self._refresh(cred, self._clock())
            cred.used = min(cred.daily_limit, cred.used + cost)
            if cred.exhausted:
                self._exhaustion_events += 1
                logger.warning(
                    "Credential %s (%s) reached its daily limit of %d",
                    cred.id, cred.provider_name, cred.daily_limit,
                )
            del self._leases[cred.id]

    def mark_exhausted(self, handle: CredentialHandle) -> None:
        """Flag the leased credential as exhausted (e.g. vendor returned 429)."""
        with self._lock:
            cred = self._leased(handle)
            self._refresh(cred, self._clock())
            cred.used = cred.daily_limit
            self._exhaustion_events += 1
            logger.warning(
                "Credential %s (%s) rate-limited by vendor; marked exhausted",
                cred.id, cred.provider_name,
            )
            del self._leases[cred.id]

    def release(self, handle: CredentialHandle) -> None:
        """Return a lease without charging usage (request never reached the vendor)."""
        with self._lock:
            if self._leases.get(handle.credential_id) == handle.lease_id:
                del self._leases[handle.credential_id]

    # ── Maintenance ──────────────────────────────────────────────────────

    def reset_all(self) -> None:
        """Zero every credential's usage and restart its quota window."""
        with self._lock:
            now = self._clock()
            for cred in self._credentials.values():
                cred.used = 0
                cred.window_start = now
        logger.info("All provider credentials reset")

    def snapshot(self) -> list[ProviderCredential]:
        """Copies of all credentials, suitable for persistence."""
        with self._lock:
            now = self._clock()
            result = []
            for cred in self._credentials.values():
                self._refresh(cred, now)
                result.append(
                    ProviderCredential(
                        id=cred.id,
                        provider_name=cred.provider_name,
                        api_key=cred.api_key,
                        daily_limit=cred.daily_limit,
                        used=cred.used,
                        window_start=cred.window_start,
                    )
                )
            return result

    def get_usage_statistics(self) -> UsageStatistics:
        """Summarise usage across every provider's credentials."""
        with self._lock:
            now = self._clock()
            details: list[KeyUsageDetail] = []
            for cred in self._credentials.values():
                self._refresh(cred, now)
                details.append(
                    KeyUsageDetail(
                        id=cred.id,
                        provider_name=cred.provider_name,
                        used=cred.used,
                        limit=cred.daily_limit,
                        available=cred.remaining,
                        is_active=not cred.exhausted,
                        leased=cred.id in self._leases,
                    )
                )
            return UsageStatistics(
                total_keys=len(details),
                active_keys=sum(1 for d in details if d.is_active),
                total_requests=sum(d.used for d in details),
                available_requests=sum(d.available for d in details),
                exhaustion_events=self._exhaustion_events,
                per_key_detail=details,
            )

    # ── Helpers ──────────────────────────────────────────────────────────

    def _refresh(self, cred: ProviderCredential, now) -> None:
        """Reset *cred* if its quota window has elapsed.  Caller holds the lock."""
        if now - cred.window_start >= self._window:
            cred.used = 0
            cred.window_start = now

    def _leased(self, handle: CredentialHandle) -> ProviderCredential:
        if self._leases.get(handle.credential_id) != handle.lease_id:
            raise ValueError(
                f"Handle for credential '{handle.credential_id}' is not an active lease"
            )
        return self._credentials[handle.credential_id]
