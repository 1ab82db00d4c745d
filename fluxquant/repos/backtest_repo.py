"""Backtest run repository — persists backtest summaries to SQLite."""

import json

from fluxquant.backtest.models import BacktestResult
from fluxquant.repos.db import get_connection


class BacktestRepo:
    """Data access layer for the ``backtest_runs`` table.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def insert_run(self, result: BacktestResult, parameters: dict) -> int:
        """Persist a backtest run summary.  Returns the row id."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO backtest_runs
                    (symbol, strategy_name, parameters, start_date, end_date,
                     total_trades, winning_trades, losing_trades, win_rate,
                     profit_factor, sharpe_ratio, max_drawdown,
                     total_return_percent)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    result.symbol,
                    result.strategy_name,
                    json.dumps(parameters, sort_keys=True),
                    result.start_date,
                    result.end_date,
                    result.total_trades,
                    result.winning_trades,
                    result.losing_trades,
                    result.win_rate,
                    result.profit_factor,
                    result.sharpe_ratio,
                    result.max_drawdown,
                    result.total_return_percent,
                ),
            )
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    def get_runs(self, limit: int = 10) -> list[dict]:
        """Return recent backtest run summaries, newest first."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM backtest_runs ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
            runs = []
            for r in rows:
                run = dict(r)
                run["parameters"] = json.loads(run["parameters"])
                runs.append(run)
            return runs
        finally:
            conn.close()
