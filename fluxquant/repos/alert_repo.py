"""Alert repository — persists the scanner's alert set to SQLite."""

from datetime import datetime

from fluxquant.alerts.models import AutoAlert
from fluxquant.repos.db import get_connection


class AlertRepo:
    """Data access layer for the ``alerts`` table.

    ``save_alerts`` replaces the stored set in one transaction, so a reader
    never sees a half-written scan.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def load_alerts(self) -> list[AutoAlert]:
        """Return every stored alert in insertion order."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute("SELECT * FROM alerts ORDER BY position").fetchall()
            return [_row_to_alert(r) for r in rows]
        finally:
            conn.close()

    def save_alerts(self, alerts: list[AutoAlert]) -> None:
        conn = get_connection(self._db_path)
        try:
            with conn:
                conn.execute("DELETE FROM alerts")
                conn.executemany(
                    """
                    INSERT INTO alerts
                        (id, symbol, strategy_name, signal, priority,
                         current_price, target_price, confidence, reasoning,
                         created_at, active, asset_class, position)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            a.id,
                            a.symbol,
                            a.strategy_name,
                            a.signal,
                            a.priority,
                            a.current_price,
                            a.target_price,
                            a.confidence,
                            a.reasoning,
                            a.created_at.isoformat(),
                            1 if a.active else 0,
                            a.asset_class,
                            i,
                        )
                        for i, a in enumerate(alerts)
                    ],
                )
        finally:
            conn.close()

    def count_active(self) -> int:
        conn = get_connection(self._db_path)
        try:
            row = conn.execute("SELECT COUNT(*) FROM alerts WHERE active = 1").fetchone()
            return row[0]
        finally:
            conn.close()


def _row_to_alert(row) -> AutoAlert:
    return AutoAlert(
        id=row["id"],
        symbol=row["symbol"],
        strategy_name=row["strategy_name"],
        signal=row["signal"],
        priority=row["priority"],
        current_price=row["current_price"],
        target_price=row["target_price"],
        confidence=row["confidence"],
        reasoning=row["reasoning"],
        created_at=datetime.fromisoformat(row["created_at"]),
        active=bool(row["active"]),
        asset_class=row["asset_class"],
    )
