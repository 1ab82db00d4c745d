"""Cooldown repository — last scan time per asset class."""

from datetime import datetime

from fluxquant.repos.db import get_connection


class CooldownRepo:
    """Data access layer for the ``scan_cooldowns`` table.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def load_cooldowns(self) -> dict[str, datetime]:
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute("SELECT asset_class, last_scan_at FROM scan_cooldowns").fetchall()
            return {r["asset_class"]: datetime.fromisoformat(r["last_scan_at"]) for r in rows}
        finally:
            conn.close()

    def save_cooldowns(self, cooldowns: dict[str, datetime]) -> None:
        """Replace the stored map with *cooldowns*."""
        conn = get_connection(self._db_path)
        try:
            with conn:
                conn.execute("DELETE FROM scan_cooldowns")
                conn.executemany(
                    "INSERT INTO scan_cooldowns (asset_class, last_scan_at) VALUES (?, ?)",
                    [(k, v.isoformat()) for k, v in cooldowns.items()],
                )
        finally:
            conn.close()
