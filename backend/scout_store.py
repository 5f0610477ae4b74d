"""
Scout Pro domain store: users, teams, players and scouting reports.

Backed by a single SQLite file. Each public method opens its own connection
and commits (or rolls back) before returning, so every call is one storage
transaction. Cascading deletes run inside that transaction; the spray chart
URLs of removed reports are handed back to the caller for file cleanup.
"""

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

from scout_errors import DuplicateUser, NotFound, StorageError, ValidationError

logger = logging.getLogger("scoutpro.store")

RATING_SCALE = ["Poor", "Below Average", "Average", "Above Average", "Excellent"]
USER_ROLES = ("coach", "admin")


def gen_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CascadeResult:
    """What a delete removed, including files still to be cleaned up."""
    players: int = 0
    reports: int = 0
    spray_chart_urls: List[str] = field(default_factory=list)


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT UNIQUE NOT NULL,
        password_hash TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'coach',
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS teams (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        league TEXT NOT NULL,
        created_by TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS players (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        position TEXT NOT NULL,
        jersey_number TEXT NOT NULL,
        team_id TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reports (
        id TEXT PRIMARY KEY,
        player_id TEXT NOT NULL,
        scout_id TEXT NOT NULL,
        date TEXT NOT NULL,
        evaluations TEXT NOT NULL DEFAULT '{}',
        notes TEXT,
        spray_chart_url TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_teams_name ON teams(name)",
    "CREATE INDEX IF NOT EXISTS idx_teams_created_by ON teams(created_by)",
    "CREATE INDEX IF NOT EXISTS idx_players_team ON players(team_id)",
    "CREATE INDEX IF NOT EXISTS idx_players_name ON players(name)",
    "CREATE INDEX IF NOT EXISTS idx_reports_player ON reports(player_id)",
    "CREATE INDEX IF NOT EXISTS idx_reports_scout ON reports(scout_id)",
    "CREATE INDEX IF NOT EXISTS idx_reports_date ON reports(date DESC)",
    "CREATE INDEX IF NOT EXISTS idx_reports_player_date ON reports(player_id, date DESC)",
]

_TEAM_SELECT = """
    SELECT t.*, u.email AS creator_email
    FROM teams t LEFT JOIN users u ON t.created_by = u.id
"""

_PLAYER_SELECT = """
    SELECT p.*, t.name AS team_name, t.league AS team_league
    FROM players p LEFT JOIN teams t ON p.team_id = t.id
"""

_REPORT_SELECT = """
    SELECT r.*, p.name AS player_name, p.position AS player_position,
           p.jersey_number AS player_jersey, u.email AS scout_email
    FROM reports r
    LEFT JOIN players p ON r.player_id = p.id
    LEFT JOIN users u ON r.scout_id = u.id
"""


def _user_from_row(row: sqlite3.Row) -> dict:
    return {
        "id": row["id"],
        "email": row["email"],
        "passwordHash": row["password_hash"],
        "role": row["role"],
        "createdAt": row["created_at"],
    }


def _team_from_row(row: sqlite3.Row) -> dict:
    creator = None
    if row["created_by"]:
        creator = {"id": row["created_by"], "email": row["creator_email"]}
    return {
        "id": row["id"],
        "name": row["name"],
        "league": row["league"],
        "createdBy": creator,
        "createdAt": row["created_at"],
    }


def _player_from_row(row: sqlite3.Row) -> dict:
    team = None
    if row["team_name"] is not None:
        team = {"id": row["team_id"], "name": row["team_name"], "league": row["team_league"]}
    return {
        "id": row["id"],
        "name": row["name"],
        "position": row["position"],
        "jerseyNumber": row["jersey_number"],
        "teamId": row["team_id"],
        "team": team,
        "createdAt": row["created_at"],
    }


def _report_from_row(row: sqlite3.Row) -> dict:
    player = None
    if row["player_name"] is not None:
        player = {
            "id": row["player_id"],
            "name": row["player_name"],
            "position": row["player_position"],
            "jerseyNumber": row["player_jersey"],
        }
    scout = {"id": row["scout_id"], "email": row["scout_email"]} if row["scout_email"] else None
    try:
        evaluations = json.loads(row["evaluations"] or "{}")
    except ValueError:
        logger.warning("Report %s has unreadable evaluations", row["id"])
        evaluations = {}
    return {
        "id": row["id"],
        "playerId": row["player_id"],
        "player": player,
        "scoutId": row["scout_id"],
        "scout": scout,
        "date": row["date"],
        "evaluations": evaluations,
        "notes": row["notes"],
        "sprayChartUrl": row["spray_chart_url"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
    }


def _date_str(value: Any) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date.fromisoformat(str(value)[:10]).isoformat()
    except ValueError:
        raise ValidationError(f"Invalid report date: {value!r}")


class DomainStore:
    def __init__(
        self,
        db_file: str,
        enforce_references: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db_file = db_file
        self.enforce_references = enforce_references
        self.clock = clock

    # ── Connection handling ──────────────────────────────────

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_file, timeout=10)
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open database: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _now(self) -> str:
        return self.clock().isoformat()

    def init_db(self) -> None:
        """Create all tables and indexes if they don't exist."""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            for stmt in SCHEMA:
                conn.execute(stmt)
        logger.info("Database ready: %s", self.db_file)

    def ping(self) -> bool:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()
        return True

    # ── Users ────────────────────────────────────────────────

    def create_user(self, email: str, password_hash: str, role: str = "coach") -> dict:
        if role not in USER_ROLES:
            raise ValidationError(f"Unknown role: {role}")
        user_id = gen_id()
        now = self._now()
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO users (id, email, password_hash, role, created_at) VALUES (?, ?, ?, ?, ?)",
                    (user_id, email, password_hash, role, now),
                )
        except sqlite3.IntegrityError:
            raise DuplicateUser()
        return {"id": user_id, "email": email, "passwordHash": password_hash, "role": role, "createdAt": now}

    def get_user_by_email(self, email: str) -> Optional[dict]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
        return _user_from_row(row) if row else None

    def get_user(self, user_id: str) -> dict:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if not row:
            raise NotFound("User not found")
        return _user_from_row(row)

    # ── Teams ────────────────────────────────────────────────

    def list_teams(self) -> List[dict]:
        with self._connect() as conn:
            rows = conn.execute(_TEAM_SELECT + " ORDER BY t.created_at").fetchall()
        return [_team_from_row(r) for r in rows]

    def get_team(self, team_id: str) -> dict:
        with self._connect() as conn:
            row = conn.execute(_TEAM_SELECT + " WHERE t.id = ?", (team_id,)).fetchone()
        if not row:
            raise NotFound("Team not found")
        return _team_from_row(row)

    def create_team(self, name: str, league: str, created_by: str) -> dict:
        team_id = gen_id()
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO teams (id, name, league, created_by, created_at) VALUES (?, ?, ?, ?, ?)",
                (team_id, name, league, created_by, self._now()),
            )
        return self.get_team(team_id)

    def update_team(self, team_id: str, name: str, league: str) -> dict:
        with self._connect() as conn:
            result = conn.execute(
                "UPDATE teams SET name = ?, league = ? WHERE id = ?", (name, league, team_id)
            )
        if result.rowcount == 0:
            raise NotFound("Team not found")
        return self.get_team(team_id)

    def delete_team(self, team_id: str) -> CascadeResult:
        """Delete a team, its players and their reports in one transaction."""
        with self._connect() as conn:
            result = conn.execute("DELETE FROM teams WHERE id = ?", (team_id,))
            if result.rowcount == 0:
                raise NotFound("Team not found")
            # player ids must be captured before the player rows go
            player_ids = [
                r["id"] for r in conn.execute("SELECT id FROM players WHERE team_id = ?", (team_id,))
            ]
            conn.execute("DELETE FROM players WHERE team_id = ?", (team_id,))
            cascade = self._delete_reports_for_players(conn, player_ids)
            cascade.players = len(player_ids)
        logger.info(
            "Team %s deleted (%d players, %d reports)", team_id, cascade.players, cascade.reports
        )
        return cascade

    # ── Players ──────────────────────────────────────────────

    def _require_team(self, conn: sqlite3.Connection, team_id: str) -> None:
        if not self.enforce_references:
            return
        if not conn.execute("SELECT 1 FROM teams WHERE id = ?", (team_id,)).fetchone():
            raise ValidationError("teamId does not reference an existing team")

    def list_players(self, team_id: Optional[str] = None) -> List[dict]:
        query = _PLAYER_SELECT
        params: list = []
        if team_id:
            query += " WHERE p.team_id = ?"
            params.append(team_id)
        query += " ORDER BY p.created_at"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_player_from_row(r) for r in rows]

    def get_player(self, player_id: str) -> dict:
        with self._connect() as conn:
            row = conn.execute(_PLAYER_SELECT + " WHERE p.id = ?", (player_id,)).fetchone()
        if not row:
            raise NotFound("Player not found")
        return _player_from_row(row)

    def create_player(self, name: str, position: str, jersey_number: str, team_id: str) -> dict:
        player_id = gen_id()
        with self._connect() as conn:
            self._require_team(conn, team_id)
            conn.execute(
                """INSERT INTO players (id, name, position, jersey_number, team_id, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (player_id, name, position, jersey_number, team_id, self._now()),
            )
        return self.get_player(player_id)

    def update_player(self, player_id: str, name: str, position: str, jersey_number: str, team_id: str) -> dict:
        with self._connect() as conn:
            if not conn.execute("SELECT 1 FROM players WHERE id = ?", (player_id,)).fetchone():
                raise NotFound("Player not found")
            self._require_team(conn, team_id)
            conn.execute(
                "UPDATE players SET name = ?, position = ?, jersey_number = ?, team_id = ? WHERE id = ?",
                (name, position, jersey_number, team_id, player_id),
            )
        return self.get_player(player_id)

    def delete_player(self, player_id: str) -> CascadeResult:
        with self._connect() as conn:
            result = conn.execute("DELETE FROM players WHERE id = ?", (player_id,))
            if result.rowcount == 0:
                raise NotFound("Player not found")
            cascade = self._delete_reports_for_players(conn, [player_id])
            cascade.players = 1
        logger.info("Player %s deleted (%d reports)", player_id, cascade.reports)
        return cascade

    def _delete_reports_for_players(self, conn: sqlite3.Connection, player_ids: List[str]) -> CascadeResult:
        cascade = CascadeResult()
        if not player_ids:
            return cascade
        marks = ",".join("?" for _ in player_ids)
        rows = conn.execute(
            f"SELECT spray_chart_url FROM reports WHERE player_id IN ({marks})", player_ids
        ).fetchall()
        cascade.spray_chart_urls = [r["spray_chart_url"] for r in rows if r["spray_chart_url"]]
        result = conn.execute(f"DELETE FROM reports WHERE player_id IN ({marks})", player_ids)
        cascade.reports = result.rowcount
        return cascade

    # ── Reports ──────────────────────────────────────────────

    def list_reports(self, player_id: Optional[str] = None) -> List[dict]:
        query = _REPORT_SELECT
        params: list = []
        if player_id:
            query += " WHERE r.player_id = ?"
            params.append(player_id)
        query += " ORDER BY r.date DESC, r.created_at DESC"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_report_from_row(r) for r in rows]

    def get_report(self, report_id: str) -> dict:
        with self._connect() as conn:
            row = conn.execute(_REPORT_SELECT + " WHERE r.id = ?", (report_id,)).fetchone()
        if not row:
            raise NotFound("Report not found")
        return _report_from_row(row)

    def create_report(
        self,
        player_id: str,
        scout_id: str,
        report_date: Any,
        evaluations: Optional[Dict[str, str]] = None,
        notes: Optional[str] = None,
    ) -> dict:
        report_id = gen_id()
        now = self._now()
        with self._connect() as conn:
            if self.enforce_references and not conn.execute(
                "SELECT 1 FROM players WHERE id = ?", (player_id,)
            ).fetchone():
                raise ValidationError("playerId does not reference an existing player")
            conn.execute(
                """INSERT INTO reports (id, player_id, scout_id, date, evaluations, notes, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (report_id, player_id, scout_id, _date_str(report_date),
                 json.dumps(evaluations or {}), notes, now, now),
            )
        return self.get_report(report_id)

    def update_report(
        self,
        report_id: str,
        report_date: Any,
        evaluations: Optional[Dict[str, str]] = None,
        notes: Optional[str] = None,
    ) -> dict:
        with self._connect() as conn:
            result = conn.execute(
                "UPDATE reports SET date = ?, evaluations = ?, notes = ?, updated_at = ? WHERE id = ?",
                (_date_str(report_date), json.dumps(evaluations or {}), notes, self._now(), report_id),
            )
        if result.rowcount == 0:
            raise NotFound("Report not found")
        return self.get_report(report_id)

    def set_spray_chart(self, report_id: str, url: str) -> Optional[str]:
        """Point a report at a stored image. Returns the URL it replaced."""
        with self._connect() as conn:
            row = conn.execute("SELECT spray_chart_url FROM reports WHERE id = ?", (report_id,)).fetchone()
            if not row:
                raise NotFound("Report not found")
            conn.execute(
                "UPDATE reports SET spray_chart_url = ?, updated_at = ? WHERE id = ?",
                (url, self._now(), report_id),
            )
        return row["spray_chart_url"]

    def delete_report(self, report_id: str) -> CascadeResult:
        with self._connect() as conn:
            row = conn.execute("SELECT spray_chart_url FROM reports WHERE id = ?", (report_id,)).fetchone()
            if not row:
                raise NotFound("Report not found")
            conn.execute("DELETE FROM reports WHERE id = ?", (report_id,))
        urls = [row["spray_chart_url"]] if row["spray_chart_url"] else []
        return CascadeResult(reports=1, spray_chart_urls=urls)
