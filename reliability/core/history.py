"""SQLite history store: append-only platform health snapshots with retention."""

import logging
import sqlite3
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pydantic import ValidationError

from reliability.analysis.models import PlatformHealth

logger = logging.getLogger(__name__)

DATA_ROOT = Path("data")
DEFAULT_RETENTION_DAYS = 30

# ── Schema DDL ───────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS platform_health (
    id              INTEGER PRIMARY KEY,
    platform        TEXT NOT NULL,
    recorded_at     TEXT NOT NULL,   -- fixed-width ISO-8601 UTC
    health_score    INTEGER NOT NULL,
    status          TEXT NOT NULL,
    snapshot        TEXT NOT NULL,   -- JSON PlatformHealth
    UNIQUE (platform, recorded_at)
);

CREATE INDEX IF NOT EXISTS idx_health_platform_time
    ON platform_health(platform, recorded_at);
"""


# ── HistoryStore ─────────────────────────────────────────────────────


class HistoryStore:
    """Bounded time series of PlatformHealth snapshots keyed by platform + time.

    Rows are only ever inserted or pruned, never rewritten. Every append
    prunes rows that fell out of the retention window.
    """

    def __init__(
        self,
        db_path: str | Path | None = None,
        retention_days: int = DEFAULT_RETENTION_DAYS,
    ):
        if retention_days <= 0:
            raise ValueError(f"retention_days must be positive (got {retention_days})")

        self.db_path = Path(db_path) if db_path else DATA_ROOT / "history.db"
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.retention_days = retention_days

        try:
            self._conn = self._open()
        except sqlite3.DatabaseError as exc:
            corrupt = self.db_path.with_name(
                f"{self.db_path.name}.corrupt-{datetime.now(timezone.utc):%Y%m%dT%H%M%S}"
            )
            logger.warning(
                "History database %s is unreadable (%s) - moved to %s, starting empty",
                self.db_path,
                exc,
                corrupt.name,
            )
            self.db_path.replace(corrupt)
            for suffix in ("-wal", "-shm"):
                sidecar = self.db_path.with_name(self.db_path.name + suffix)
                if sidecar.exists():
                    sidecar.unlink()
            self._conn = self._open()

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        try:
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(_SCHEMA)
            conn.commit()
        except sqlite3.DatabaseError:
            conn.close()
            raise
        return conn

    # ── Writes ───────────────────────────────────────────────

    def append(
        self, snapshots: Sequence[PlatformHealth], now: datetime | None = None
    ) -> int:
        """Append one run's snapshots, then prune. Returns rows added.

        Re-appending an existing (platform, timestamp) is a no-op.
        """
        added = 0
        with self._conn:
            for snap in snapshots:
                cur = self._conn.execute(
                    """INSERT OR IGNORE INTO platform_health
                       (platform, recorded_at, health_score, status, snapshot)
                       VALUES (?, ?, ?, ?, ?)""",
                    (
                        snap.platform,
                        _ts(snap.timestamp),
                        snap.health_score,
                        snap.status,
                        snap.model_dump_json(),
                    ),
                )
                added += cur.rowcount
        pruned = self.prune(now)
        logger.info(
            "History: %d snapshot(s) appended, %d pruned (retention %d days)",
            added,
            pruned,
            self.retention_days,
        )
        return added

    def prune(self, now: datetime | None = None) -> int:
        """Delete snapshots older than the retention window. Returns rows removed."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=self.retention_days)
        with self._conn:
            cur = self._conn.execute(
                "DELETE FROM platform_health WHERE recorded_at < ?", (_ts(cutoff),)
            )
        return cur.rowcount

    # ── Reads ────────────────────────────────────────────────

    def load(
        self,
        platform: str,
        since: datetime | None = None,
    ) -> list[PlatformHealth]:
        """Snapshots for a platform in ascending timestamp order."""
        if since is None:
            rows = self._conn.execute(
                "SELECT id, snapshot FROM platform_health WHERE platform = ? ORDER BY recorded_at",
                (platform,),
            ).fetchall()
        else:
            rows = self._conn.execute(
                """SELECT id, snapshot FROM platform_health
                   WHERE platform = ? AND recorded_at > ?
                   ORDER BY recorded_at""",
                (platform, _ts(since)),
            ).fetchall()

        snapshots = []
        for row in rows:
            try:
                snapshots.append(PlatformHealth.model_validate_json(row["snapshot"]))
            except ValidationError as exc:
                logger.warning(
                    "Skipping malformed history row %d for %s: %s",
                    row["id"],
                    platform,
                    exc.error_count(),
                )
        return snapshots

    def latest(self, platform: str) -> PlatformHealth | None:
        snapshots = self.load(platform)
        return snapshots[-1] if snapshots else None

    def platforms(self) -> list[str]:
        rows = self._conn.execute(
            "SELECT DISTINCT platform FROM platform_health ORDER BY platform"
        ).fetchall()
        return [r["platform"] for r in rows]

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM platform_health").fetchone()[0]

    # ── Cleanup ──────────────────────────────────────────────

    def close(self) -> None:
        self._conn.close()


# ── Helpers ──────────────────────────────────────────────────────────


def _ts(value: datetime) -> str:
    """Fixed-width UTC timestamp so string order equals time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
