"""
SQLite-backed journal store: users, trades, notes, risk rules and AI insights.

Uses WAL journal mode for concurrent read access during writes. All methods
are synchronous; callers use asyncio.to_thread() from async code when the
call may block for long.

Timestamps are stored as UTC ISO 8601 text with fixed microsecond precision,
so lexical order in SQL matches chronological order.

Usage:
    store = JournalStore("data/trades.db")
    user = store.get_or_create_user("demo")
    trade_id = store.insert_trade(trade)
    store.upsert_note(trade_id, NoteInput(note="Chased the move", error_type="FOMO"))
"""

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from loguru import logger

from trade_assistant.journal.schemas import (
    AIInsight,
    InsightType,
    NoteInput,
    PnLUpdate,
    RiskRule,
    RuleViolation,
    Trade,
    TradeNote,
    User,
)

# ── SQL Statements ──────────────────────────────────────────────────────────

CREATE_USERS_TABLE = """
CREATE TABLE IF NOT EXISTS users (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    username              TEXT NOT NULL UNIQUE,
    encrypted_api_key     TEXT,
    encrypted_api_secret  TEXT,
    auto_sync_enabled     INTEGER NOT NULL DEFAULT 0,
    auto_sync_interval    INTEGER NOT NULL DEFAULT 15,
    auto_ai_analysis      INTEGER NOT NULL DEFAULT 0,
    last_sync_at          TEXT,
    created_at            TEXT NOT NULL,
    updated_at            TEXT NOT NULL
)
"""

CREATE_TRADES_TABLE = """
CREATE TABLE IF NOT EXISTS trades (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id             INTEGER NOT NULL REFERENCES users(id),
    exchange_order_id   TEXT,
    symbol              TEXT NOT NULL,
    side                TEXT NOT NULL,
    type                TEXT NOT NULL DEFAULT 'MARKET',
    quantity            REAL NOT NULL,
    price               REAL NOT NULL,
    executed_qty        REAL NOT NULL DEFAULT 0,
    commission          REAL NOT NULL DEFAULT 0,
    commission_asset    TEXT,

    -- Position fields
    entry_price         REAL,
    exit_price          REAL,
    stop_loss           REAL,
    take_profit         REAL,
    leverage            REAL,
    position_size_usdt  REAL NOT NULL DEFAULT 0,

    -- Derived by the matcher
    pnl                 REAL NOT NULL DEFAULT 0,
    pnl_percentage      REAL NOT NULL DEFAULT 0,

    status              TEXT NOT NULL DEFAULT 'CLOSED',
    opened_at           TEXT NOT NULL,
    closed_at           TEXT,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL,
    UNIQUE (user_id, exchange_order_id)
)
"""

CREATE_NOTES_TABLE = """
CREATE TABLE IF NOT EXISTS trade_notes (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    trade_id          INTEGER NOT NULL UNIQUE REFERENCES trades(id) ON DELETE CASCADE,
    note              TEXT,
    tags              TEXT NOT NULL DEFAULT '[]',
    setup             TEXT,
    timeframe         TEXT,
    error_type        TEXT,
    screenshot_url    TEXT,
    tradingview_link  TEXT,
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL
)
"""

CREATE_RISK_RULES_TABLE = """
CREATE TABLE IF NOT EXISTS risk_rules (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id      INTEGER NOT NULL REFERENCES users(id),
    rule_type    TEXT NOT NULL,
    limit_value  REAL NOT NULL,
    is_active    INTEGER NOT NULL DEFAULT 1,
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL
)
"""

CREATE_VIOLATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS rule_violations (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         INTEGER NOT NULL REFERENCES users(id),
    rule_id         INTEGER NOT NULL REFERENCES risk_rules(id),
    violation_date  TEXT NOT NULL,
    current_value   REAL NOT NULL,
    limit_value     REAL NOT NULL,
    description     TEXT NOT NULL,
    created_at      TEXT NOT NULL
)
"""

CREATE_INSIGHTS_TABLE = """
CREATE TABLE IF NOT EXISTS ai_insights (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id       INTEGER NOT NULL REFERENCES users(id),
    trade_id      INTEGER REFERENCES trades(id) ON DELETE CASCADE,
    insight_type  TEXT NOT NULL,
    content       TEXT NOT NULL,
    created_at    TEXT NOT NULL
)
"""

CREATE_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_trades_user_status ON trades(user_id, status);
CREATE INDEX IF NOT EXISTS idx_trades_user_opened ON trades(user_id, opened_at);
CREATE INDEX IF NOT EXISTS idx_trades_user_closed ON trades(user_id, closed_at);
CREATE INDEX IF NOT EXISTS idx_trades_symbol ON trades(user_id, symbol);
CREATE INDEX IF NOT EXISTS idx_rules_user ON risk_rules(user_id);
CREATE INDEX IF NOT EXISTS idx_insights_user_type ON ai_insights(user_id, insight_type);
"""

INSERT_TRADE_SQL = """
INSERT INTO trades (
    user_id, exchange_order_id, symbol, side, type,
    quantity, price, executed_qty, commission, commission_asset,
    entry_price, exit_price, stop_loss, take_profit, leverage,
    position_size_usdt, pnl, pnl_percentage, status,
    opened_at, closed_at, created_at, updated_at
) VALUES (
    :user_id, :exchange_order_id, :symbol, :side, :type,
    :quantity, :price, :executed_qty, :commission, :commission_asset,
    :entry_price, :exit_price, :stop_loss, :take_profit, :leverage,
    :position_size_usdt, :pnl, :pnl_percentage, :status,
    :opened_at, :closed_at, :created_at, :updated_at
)
"""

# ── Helper Functions ────────────────────────────────────────────────────────


def _dt_to_str(dt: datetime | None) -> str | None:
    """Convert datetime to a UTC ISO 8601 string, or None.

    Naive datetimes are taken to be UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _str_to_dt(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to an aware datetime, or None."""
    if not s:
        return None
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _now_str() -> str:
    return _dt_to_str(datetime.now(timezone.utc))


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _row_to_user(row: sqlite3.Row) -> User:
    data = dict(row)
    for flag in ("auto_sync_enabled", "auto_ai_analysis"):
        data[flag] = bool(data[flag])
    for dt_field in ("last_sync_at", "created_at", "updated_at"):
        data[dt_field] = _str_to_dt(data[dt_field])
    return User(**data)


def _row_to_trade(row: sqlite3.Row) -> Trade:
    data = dict(row)
    for dt_field in ("opened_at", "closed_at", "created_at", "updated_at"):
        data[dt_field] = _str_to_dt(data[dt_field])
    return Trade(**data)


def _row_to_note(row: sqlite3.Row) -> TradeNote:
    data = dict(row)
    try:
        data["tags"] = json.loads(data["tags"] or "[]")
    except json.JSONDecodeError:
        data["tags"] = []
    for dt_field in ("created_at", "updated_at"):
        data[dt_field] = _str_to_dt(data[dt_field])
    return TradeNote(**data)


def _row_to_rule(row: sqlite3.Row) -> RiskRule:
    data = dict(row)
    data["is_active"] = bool(data["is_active"])
    for dt_field in ("created_at", "updated_at"):
        data[dt_field] = _str_to_dt(data[dt_field])
    return RiskRule(**data)


def _row_to_violation(row: sqlite3.Row) -> RuleViolation:
    data = dict(row)
    for dt_field in ("violation_date", "created_at"):
        data[dt_field] = _str_to_dt(data[dt_field])
    return RuleViolation(**data)


# ── JournalStore ────────────────────────────────────────────────────────────


class JournalStoreError(Exception):
    """Base exception for JournalStore operations."""


class DuplicateTradeError(JournalStoreError):
    """Raised when a fill with the same exchange order id is already stored."""


class TradeNotFoundError(JournalStoreError):
    """Raised when a trade does not exist or belongs to another user."""


class NoteValidationError(JournalStoreError):
    """Raised when a note exceeds the configured journal limits."""


class JournalStore:
    """SQLite-backed store for the trading journal.

    Thread-safe for single-writer, multiple-reader pattern (WAL mode).

    Usage:
        store = JournalStore("data/trades.db")
        user = store.get_or_create_user("demo")
        trades = store.list_trades(user.id, status="CLOSED", limit=50)
    """

    def __init__(
        self,
        db_path: str = "data/trades.db",
        max_note_length: int = 2000,
        max_tags_per_trade: int = 10,
    ) -> None:
        self._db_path = db_path
        self._max_note_length = max_note_length
        self._max_tags_per_trade = max_tags_per_trade
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = self._create_connection()
        self._ensure_tables()

    def _create_connection(self) -> sqlite3.Connection:
        """Create a SQLite connection with WAL mode and row factory."""
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA busy_timeout = 5000")
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _ensure_tables(self) -> None:
        """Create tables and indexes if they don't exist."""
        for ddl in (
            CREATE_USERS_TABLE,
            CREATE_TRADES_TABLE,
            CREATE_NOTES_TABLE,
            CREATE_RISK_RULES_TABLE,
            CREATE_VIOLATIONS_TABLE,
            CREATE_INSIGHTS_TABLE,
            CREATE_INDEXES,
        ):
            self._conn.executescript(ddl)
        self._conn.commit()
        logger.debug("Journal store tables ensured at {}", self._db_path)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
        logger.debug("Journal store connection closed")

    # ── Users ───────────────────────────────────────────────────────

    def get_or_create_user(self, username: str, auto_sync_interval: int = 15) -> User:
        """Return the user with this username, creating it on first use."""
        existing = self.get_user_by_username(username)
        if existing is not None:
            return existing

        now = _now_str()
        cursor = self._conn.execute(
            """INSERT INTO users (username, auto_sync_interval, created_at, updated_at)
               VALUES (:username, :interval, :now, :now)""",
            {"username": username, "interval": auto_sync_interval, "now": now},
        )
        self._conn.commit()
        logger.info("Created journal user '{}' (id={})", username, cursor.lastrowid)
        return self.get_user(cursor.lastrowid)

    def get_user(self, user_id: int) -> User | None:
        row = self._conn.execute(
            "SELECT * FROM users WHERE id = :id", {"id": user_id}
        ).fetchone()
        return _row_to_user(row) if row else None

    def get_user_by_username(self, username: str) -> User | None:
        row = self._conn.execute(
            "SELECT * FROM users WHERE username = :username", {"username": username}
        ).fetchone()
        return _row_to_user(row) if row else None

    def update_credentials(
        self, user_id: int, encrypted_api_key: str, encrypted_api_secret: str
    ) -> None:
        """Store encrypted exchange credentials for a user."""
        self._conn.execute(
            """UPDATE users
               SET encrypted_api_key = :key,
                   encrypted_api_secret = :secret,
                   updated_at = :now
               WHERE id = :id""",
            {
                "key": encrypted_api_key,
                "secret": encrypted_api_secret,
                "now": _now_str(),
                "id": user_id,
            },
        )
        self._conn.commit()
        logger.info("Stored exchange credentials for user {}", user_id)

    def update_auto_sync_settings(
        self,
        user_id: int,
        enabled: bool | None = None,
        interval: int | None = None,
        ai_analysis: bool | None = None,
    ) -> User:
        """Update any subset of the auto-sync settings and return the user."""
        assignments: list[str] = []
        params: dict[str, Any] = {"id": user_id, "now": _now_str()}
        if enabled is not None:
            assignments.append("auto_sync_enabled = :enabled")
            params["enabled"] = int(enabled)
        if interval is not None:
            assignments.append("auto_sync_interval = :interval")
            params["interval"] = interval
        if ai_analysis is not None:
            assignments.append("auto_ai_analysis = :ai_analysis")
            params["ai_analysis"] = int(ai_analysis)

        if assignments:
            assignments.append("updated_at = :now")
            self._conn.execute(
                f"UPDATE users SET {', '.join(assignments)} WHERE id = :id", params
            )
            self._conn.commit()
            logger.info("Updated auto-sync settings for user {}", user_id)

        user = self.get_user(user_id)
        if user is None:
            raise JournalStoreError(f"User {user_id} not found")
        return user

    def mark_synced(self, user_id: int, synced_at: datetime | None = None) -> None:
        """Record the time of the last completed sync."""
        synced_at = synced_at or datetime.now(timezone.utc)
        self._conn.execute(
            "UPDATE users SET last_sync_at = :at, updated_at = :now WHERE id = :id",
            {"at": _dt_to_str(synced_at), "now": _now_str(), "id": user_id},
        )
        self._conn.commit()

    def list_auto_sync_users(self) -> list[User]:
        """Users with auto-sync enabled and stored credentials."""
        rows = self._conn.execute(
            """SELECT * FROM users
               WHERE auto_sync_enabled = 1
                 AND encrypted_api_key IS NOT NULL
                 AND encrypted_api_secret IS NOT NULL
               ORDER BY id ASC"""
        ).fetchall()
        return [_row_to_user(r) for r in rows]

    # ── Trades ──────────────────────────────────────────────────────

    def insert_trade(self, trade: Trade) -> int:
        """Insert a trade and return its id.

        Raises:
            DuplicateTradeError: If the user already has a trade with this
                exchange_order_id.
        """
        params = trade.model_dump(exclude={"id"})
        for dt_field in ("opened_at", "closed_at", "created_at", "updated_at"):
            params[dt_field] = _dt_to_str(params[dt_field])
        try:
            cursor = self._conn.execute(INSERT_TRADE_SQL, params)
            self._conn.commit()
        except sqlite3.IntegrityError as e:
            self._conn.rollback()
            raise DuplicateTradeError(
                f"Trade {trade.exchange_order_id} already stored for user {trade.user_id}: {e}"
            ) from e
        logger.debug(
            "Inserted trade {} {} {} @ {}", cursor.lastrowid, trade.side, trade.symbol, trade.price
        )
        return cursor.lastrowid

    def trade_exists(self, user_id: int, exchange_order_id: str) -> bool:
        row = self._conn.execute(
            """SELECT 1 FROM trades
               WHERE user_id = :user_id AND exchange_order_id = :order_id
               LIMIT 1""",
            {"user_id": user_id, "order_id": exchange_order_id},
        ).fetchone()
        return row is not None

    def get_trade(self, trade_id: int, user_id: int | None = None) -> Trade | None:
        """Get a single trade, optionally restricted to one owner."""
        sql = "SELECT * FROM trades WHERE id = :id"
        params: dict[str, Any] = {"id": trade_id}
        if user_id is not None:
            sql += " AND user_id = :user_id"
            params["user_id"] = user_id
        row = self._conn.execute(sql, params).fetchone()
        return _row_to_trade(row) if row else None

    def list_trades(
        self,
        user_id: int,
        status: str | None = "CLOSED",
        symbol: str | None = None,
        limit: int = 50,
    ) -> list[Trade]:
        """List a user's trades, newest first."""
        sql = "SELECT * FROM trades WHERE user_id = :user_id"
        params: dict[str, Any] = {"user_id": user_id, "limit": limit}
        if status:
            sql += " AND status = :status"
            params["status"] = status
        if symbol:
            sql += " AND symbol = :symbol"
            params["symbol"] = symbol
        sql += " ORDER BY opened_at DESC, id DESC LIMIT :limit"
        rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_trade(r) for r in rows]

    def get_closed_trades(
        self,
        user_id: int,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[Trade]:
        """Closed trades in [since, until], oldest close first.

        Trades without closed_at fall back to opened_at.
        """
        sql = """SELECT * FROM trades
                 WHERE user_id = :user_id AND status = 'CLOSED'"""
        params: dict[str, Any] = {"user_id": user_id}
        if since is not None:
            sql += " AND COALESCE(closed_at, opened_at) >= :since"
            params["since"] = _dt_to_str(since)
        if until is not None:
            sql += " AND COALESCE(closed_at, opened_at) <= :until"
            params["until"] = _dt_to_str(until)
        sql += " ORDER BY COALESCE(closed_at, opened_at) ASC, id ASC"
        rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_trade(r) for r in rows]

    def get_matchable_trades(self, user_id: int) -> list[Trade]:
        """Closed exchange fills in execution order, as fed to the matcher."""
        rows = self._conn.execute(
            """SELECT * FROM trades
               WHERE user_id = :user_id
                 AND status = 'CLOSED'
                 AND exchange_order_id IS NOT NULL
               ORDER BY opened_at ASC, id ASC""",
            {"user_id": user_id},
        ).fetchall()
        return [_row_to_trade(r) for r in rows]

    def get_recent_closed_trades(self, user_id: int, limit: int) -> list[Trade]:
        """Most recently closed trades, newest first."""
        rows = self._conn.execute(
            """SELECT * FROM trades
               WHERE user_id = :user_id AND status = 'CLOSED'
               ORDER BY COALESCE(closed_at, opened_at) DESC, id DESC
               LIMIT :limit""",
            {"user_id": user_id, "limit": limit},
        ).fetchall()
        return [_row_to_trade(r) for r in rows]

    def count_trades_opened_since(self, user_id: int, since: datetime) -> int:
        row = self._conn.execute(
            """SELECT COUNT(*) AS n FROM trades
               WHERE user_id = :user_id AND opened_at >= :since""",
            {"user_id": user_id, "since": _dt_to_str(since)},
        ).fetchone()
        return int(row["n"])

    def sum_pnl_closed_between(
        self, user_id: int, since: datetime, until: datetime | None = None
    ) -> float:
        """Realized PnL of trades closed in [since, until]."""
        sql = """SELECT COALESCE(SUM(pnl), 0) AS total FROM trades
                 WHERE user_id = :user_id
                   AND status = 'CLOSED'
                   AND closed_at >= :since"""
        params: dict[str, Any] = {"user_id": user_id, "since": _dt_to_str(since)}
        if until is not None:
            sql += " AND closed_at <= :until"
            params["until"] = _dt_to_str(until)
        row = self._conn.execute(sql, params).fetchone()
        return float(row["total"])

    def recent_closed_pnls(self, user_id: int, limit: int) -> list[float]:
        """PnL of the most recently closed trades, newest first."""
        rows = self._conn.execute(
            """SELECT pnl FROM trades
               WHERE user_id = :user_id AND status = 'CLOSED'
               ORDER BY closed_at DESC, id DESC
               LIMIT :limit""",
            {"user_id": user_id, "limit": limit},
        ).fetchall()
        return [float(r["pnl"]) for r in rows]

    def recent_symbols(self, user_id: int, limit: int) -> list[str]:
        """Distinct symbols, most recently traded first."""
        rows = self._conn.execute(
            """SELECT symbol, MAX(opened_at) AS last_opened FROM trades
               WHERE user_id = :user_id
               GROUP BY symbol
               ORDER BY last_opened DESC
               LIMIT :limit""",
            {"user_id": user_id, "limit": limit},
        ).fetchall()
        return [r["symbol"] for r in rows]

    def apply_pnl_updates(self, updates: Iterable[PnLUpdate]) -> int:
        """Write realized PnL onto closing fills in one transaction.

        Returns:
            Number of trades updated.
        """
        now = _now_str()
        count = 0
        try:
            for update in updates:
                count += self._conn.execute(
                    """UPDATE trades
                       SET pnl = :pnl,
                           pnl_percentage = :pnl_percentage,
                           exit_price = :exit_price,
                           updated_at = :now
                       WHERE id = :id""",
                    {
                        "pnl": update.pnl,
                        "pnl_percentage": update.pnl_percentage,
                        "exit_price": update.exit_price,
                        "now": now,
                        "id": update.trade_id,
                    },
                ).rowcount
            self._conn.commit()
        except sqlite3.Error:
            self._conn.rollback()
            raise
        return count

    # ── Notes ───────────────────────────────────────────────────────

    def upsert_note(self, trade_id: int, note: NoteInput) -> TradeNote:
        """Create or replace the note attached to a trade.

        Empty strings are stored as NULL.

        Raises:
            TradeNotFoundError: If the trade does not exist.
            NoteValidationError: If the note text or tag count exceeds limits.
        """
        if note.note is not None and len(note.note) > self._max_note_length:
            raise NoteValidationError(
                f"Note exceeds {self._max_note_length} characters ({len(note.note)})"
            )
        tags = [t.strip() for t in note.tags if t and t.strip()]
        if len(tags) > self._max_tags_per_trade:
            raise NoteValidationError(
                f"Too many tags: {len(tags)} (max {self._max_tags_per_trade})"
            )
        if self.get_trade(trade_id) is None:
            raise TradeNotFoundError(f"Trade {trade_id} not found")

        now = _now_str()
        params = {
            "trade_id": trade_id,
            "note": _blank_to_none(note.note),
            "tags": json.dumps(tags),
            "setup": _blank_to_none(note.setup),
            "timeframe": _blank_to_none(note.timeframe),
            "error_type": _blank_to_none(note.error_type),
            "screenshot_url": _blank_to_none(note.screenshot_url),
            "tradingview_link": _blank_to_none(note.tradingview_link),
            "now": now,
        }
        self._conn.execute(
            """INSERT INTO trade_notes (
                   trade_id, note, tags, setup, timeframe, error_type,
                   screenshot_url, tradingview_link, created_at, updated_at
               ) VALUES (
                   :trade_id, :note, :tags, :setup, :timeframe, :error_type,
                   :screenshot_url, :tradingview_link, :now, :now
               )
               ON CONFLICT(trade_id) DO UPDATE SET
                   note = excluded.note,
                   tags = excluded.tags,
                   setup = excluded.setup,
                   timeframe = excluded.timeframe,
                   error_type = excluded.error_type,
                   screenshot_url = excluded.screenshot_url,
                   tradingview_link = excluded.tradingview_link,
                   updated_at = excluded.updated_at""",
            params,
        )
        self._conn.commit()
        logger.info("Saved note for trade {}", trade_id)
        return self.get_note(trade_id)

    def get_note(self, trade_id: int) -> TradeNote | None:
        row = self._conn.execute(
            "SELECT * FROM trade_notes WHERE trade_id = :trade_id", {"trade_id": trade_id}
        ).fetchone()
        return _row_to_note(row) if row else None

    def get_notes_for_trades(self, trade_ids: Iterable[int]) -> dict[int, TradeNote]:
        """Notes keyed by trade id for the given trades."""
        ids = list(trade_ids)
        if not ids:
            return {}
        placeholders = ",".join("?" for _ in ids)
        rows = self._conn.execute(
            f"SELECT * FROM trade_notes WHERE trade_id IN ({placeholders})", ids
        ).fetchall()
        return {r["trade_id"]: _row_to_note(r) for r in rows}

    # ── Risk Rules ──────────────────────────────────────────────────

    def get_risk_rules(self, user_id: int, active_only: bool = False) -> list[RiskRule]:
        sql = "SELECT * FROM risk_rules WHERE user_id = :user_id"
        if active_only:
            sql += " AND is_active = 1"
        sql += " ORDER BY id ASC"
        rows = self._conn.execute(sql, {"user_id": user_id}).fetchall()
        return [_row_to_rule(r) for r in rows]

    def insert_risk_rule(self, rule: RiskRule) -> RiskRule:
        cursor = self._conn.execute(
            """INSERT INTO risk_rules (
                   user_id, rule_type, limit_value, is_active, created_at, updated_at
               ) VALUES (
                   :user_id, :rule_type, :limit_value, :is_active, :created_at, :updated_at
               )""",
            {
                "user_id": rule.user_id,
                "rule_type": rule.rule_type,
                "limit_value": rule.limit_value,
                "is_active": int(rule.is_active),
                "created_at": _dt_to_str(rule.created_at),
                "updated_at": _dt_to_str(rule.updated_at),
            },
        )
        self._conn.commit()
        return rule.model_copy(update={"id": cursor.lastrowid})

    def update_risk_rule(
        self,
        rule_id: int,
        user_id: int,
        limit_value: float | None = None,
        is_active: bool | None = None,
    ) -> bool:
        """Update a rule owned by user_id.

        Returns:
            False when nothing was given to update or no rule matched.
        """
        assignments: list[str] = []
        params: dict[str, Any] = {"id": rule_id, "user_id": user_id, "now": _now_str()}
        if limit_value is not None:
            assignments.append("limit_value = :limit_value")
            params["limit_value"] = limit_value
        if is_active is not None:
            assignments.append("is_active = :is_active")
            params["is_active"] = int(is_active)
        if not assignments:
            return False

        assignments.append("updated_at = :now")
        updated = self._conn.execute(
            f"""UPDATE risk_rules SET {', '.join(assignments)}
                WHERE id = :id AND user_id = :user_id""",
            params,
        ).rowcount
        self._conn.commit()
        if updated:
            logger.info("Updated risk rule {} for user {}", rule_id, user_id)
        return updated > 0

    def log_violation(self, violation: RuleViolation) -> int:
        cursor = self._conn.execute(
            """INSERT INTO rule_violations (
                   user_id, rule_id, violation_date, current_value,
                   limit_value, description, created_at
               ) VALUES (
                   :user_id, :rule_id, :violation_date, :current_value,
                   :limit_value, :description, :created_at
               )""",
            {
                "user_id": violation.user_id,
                "rule_id": violation.rule_id,
                "violation_date": _dt_to_str(violation.violation_date),
                "current_value": violation.current_value,
                "limit_value": violation.limit_value,
                "description": violation.description,
                "created_at": _dt_to_str(violation.created_at),
            },
        )
        self._conn.commit()
        return cursor.lastrowid

    def get_violations(self, user_id: int, limit: int = 50) -> list[RuleViolation]:
        rows = self._conn.execute(
            """SELECT * FROM rule_violations
               WHERE user_id = :user_id
               ORDER BY violation_date DESC, id DESC
               LIMIT :limit""",
            {"user_id": user_id, "limit": limit},
        ).fetchall()
        return [_row_to_violation(r) for r in rows]

    # ── AI Insights ─────────────────────────────────────────────────

    def save_insight(self, insight: AIInsight) -> int:
        cursor = self._conn.execute(
            """INSERT INTO ai_insights (user_id, trade_id, insight_type, content, created_at)
               VALUES (:user_id, :trade_id, :insight_type, :content, :created_at)""",
            {
                "user_id": insight.user_id,
                "trade_id": insight.trade_id,
                "insight_type": insight.insight_type,
                "content": json.dumps(insight.content),
                "created_at": _dt_to_str(insight.created_at),
            },
        )
        self._conn.commit()
        logger.debug(
            "Saved {} insight {} for user {}",
            insight.insight_type,
            cursor.lastrowid,
            insight.user_id,
        )
        return cursor.lastrowid

    def list_insights(
        self,
        user_id: int,
        insight_type: InsightType,
        trade_id: int | None = None,
        limit: int = 10,
    ) -> list[AIInsight]:
        """Stored insights, newest first. Rows whose JSON no longer parses are skipped."""
        sql = """SELECT * FROM ai_insights
                 WHERE user_id = :user_id AND insight_type = :insight_type"""
        params: dict[str, Any] = {
            "user_id": user_id,
            "insight_type": insight_type,
            "limit": limit,
        }
        if trade_id is not None:
            sql += " AND trade_id = :trade_id"
            params["trade_id"] = trade_id
        sql += " ORDER BY created_at DESC, id DESC LIMIT :limit"

        insights: list[AIInsight] = []
        for row in self._conn.execute(sql, params).fetchall():
            try:
                content = json.loads(row["content"])
            except json.JSONDecodeError:
                logger.warning("Skipping unparsable {} insight {}", insight_type, row["id"])
                continue
            insights.append(
                AIInsight(
                    id=row["id"],
                    user_id=row["user_id"],
                    trade_id=row["trade_id"],
                    insight_type=row["insight_type"],
                    content=content,
                    created_at=_str_to_dt(row["created_at"]),
                )
            )
        return insights

    def latest_insight(
        self, user_id: int, insight_type: InsightType, trade_id: int | None = None
    ) -> AIInsight | None:
        insights = self.list_insights(user_id, insight_type, trade_id=trade_id, limit=1)
        return insights[0] if insights else None
