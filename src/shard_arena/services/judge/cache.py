"""DuckDB store of judge verdicts.

A verdict is keyed by the judge model and the exact round it scored: rubric,
prompt and both responses. Judging the same round again, after a lost write
race or a restart, returns the stored verdict. Fallback judgments are never
stored.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import duckdb
import structlog

from .judge import Judgment

logger = structlog.get_logger()


class JudgmentCache:
    """Verdicts persisted in a local DuckDB file."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with duckdb.connect(str(self.db_path)) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS judgments (
                    round_key VARCHAR PRIMARY KEY,
                    model VARCHAR NOT NULL,
                    score_a INTEGER NOT NULL,
                    score_b INTEGER NOT NULL,
                    reasoning VARCHAR NOT NULL,
                    judged_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

    async def get(self, key: str) -> Judgment | None:
        def _get() -> Judgment | None:
            with duckdb.connect(str(self.db_path)) as conn:
                row = conn.execute(
                    "SELECT score_a, score_b, reasoning FROM judgments WHERE round_key = ?",
                    [key],
                ).fetchone()
            if row is None:
                return None
            return Judgment(score_a=row[0], score_b=row[1], reasoning=row[2])

        return await asyncio.to_thread(_get)

    async def put(self, key: str, model: str, judgment: Judgment) -> None:
        """Store a verdict; the first one stored for a key wins."""
        if judgment.fallback:
            return

        def _put() -> None:
            with duckdb.connect(str(self.db_path)) as conn:
                conn.execute(
                    """
                    INSERT INTO judgments (round_key, model, score_a, score_b, reasoning)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT DO NOTHING
                    """,
                    [key, model, judgment.score_a, judgment.score_b, judgment.reasoning],
                )

        await asyncio.to_thread(_put)
        logger.debug("judgment_cached", model=model, key=key[:8])
