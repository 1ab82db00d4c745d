"""Credential repository — persists key-pool usage counters.

API keys themselves are never written; they come from configuration on
every boot.  Stored rows carry the usage state keyed by credential id.
"""

from datetime import datetime

from fluxquant.market.models import ProviderCredential
from fluxquant.repos.db import get_connection


class CredentialRepo:
    """Data access layer for the ``provider_credentials`` table.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def load_provider_credentials(self) -> list[ProviderCredential]:
        """Stored credentials with an empty ``api_key``."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute("SELECT * FROM provider_credentials ORDER BY id").fetchall()
            return [
                ProviderCredential(
                    id=r["id"],
                    provider_name=r["provider_name"],
                    api_key="",
                    daily_limit=r["daily_limit"],
                    used=r["used"],
                    window_start=datetime.fromisoformat(r["window_start"]),
                )
                for r in rows
            ]
        finally:
            conn.close()

    def save_provider_credentials(self, credentials: list[ProviderCredential]) -> None:
        """Upsert usage for each credential."""
        conn = get_connection(self._db_path)
        try:
            with conn:
                conn.executemany(
                    """
                    INSERT INTO provider_credentials
                        (id, provider_name, daily_limit, used, window_start)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        provider_name = excluded.provider_name,
                        daily_limit   = excluded.daily_limit,
                        used          = excluded.used,
                        window_start  = excluded.window_start
                    """,
                    [
                        (c.id, c.provider_name, c.daily_limit, c.used, c.window_start.isoformat())
                        for c in credentials
                    ],
                )
        finally:
            conn.close()
