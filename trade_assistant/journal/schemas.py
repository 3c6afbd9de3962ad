"""
Journal record schemas: users, trades, notes, risk rules and AI insights.

Trades arrive from exchange sync (one row per fill) or are entered by hand.
Derived values such as pnl and pnl_percentage are recomputed by the matcher,
never maintained incrementally.

Usage:
    trade = Trade(user_id=1, symbol="BTCUSDT", side="BUY", quantity=0.1, price=42000)
    note = NoteInput(note="Clean breakout", tags=["btc"], setup="Breakout")
"""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

# ── Enumerations ────────────────────────────────────────────────────────────

TradeSide = Literal["BUY", "SELL"]

TradeType = Literal[
    "MARKET",
    "LIMIT",
    "STOP_LOSS",
    "STOP_LOSS_LIMIT",
    "TAKE_PROFIT",
    "TAKE_PROFIT_LIMIT",
]

TradeStatus = Literal["OPEN", "CLOSED", "CANCELLED"]

RuleType = Literal["DAILY_LOSS", "WEEKLY_LOSS", "MAX_TRADES", "CONSECUTIVE_LOSSES"]

InsightType = Literal["TRADE_SUMMARY", "PATTERN_DETECTION", "WEEKLY_REPORT"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ── User ────────────────────────────────────────────────────────────────────


class User(BaseModel):
    """Journal owner with stored (encrypted) exchange credentials."""

    id: int | None = None
    username: str
    encrypted_api_key: str | None = None
    encrypted_api_secret: str | None = None
    auto_sync_enabled: bool = False
    auto_sync_interval: int = Field(default=15, description="Minutes between auto-syncs")
    auto_ai_analysis: bool = False
    last_sync_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def has_credentials(self) -> bool:
        return bool(self.encrypted_api_key and self.encrypted_api_secret)


# ── Trade ───────────────────────────────────────────────────────────────────


class Trade(BaseModel):
    """A single executed fill or a manually entered round trip.

    Synced fills carry exchange_order_id and are matched into positions.
    Manual trades have no exchange_order_id and keep the PnL they were
    created with.
    """

    id: int | None = None
    user_id: int
    exchange_order_id: str | None = None
    symbol: str
    side: TradeSide
    type: TradeType = "MARKET"
    quantity: float
    price: float
    executed_qty: float = 0.0
    commission: float = 0.0
    commission_asset: str | None = None
    entry_price: float | None = None
    exit_price: float | None = None
    stop_loss: float | None = None
    take_profit: float | None = None
    leverage: float | None = None
    position_size_usdt: float = 0.0
    pnl: float = 0.0
    pnl_percentage: float = 0.0
    status: TradeStatus = "CLOSED"
    opened_at: datetime = Field(default_factory=utc_now)
    closed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class PnLUpdate(BaseModel):
    """Realized result written back onto a closing fill."""

    trade_id: int
    pnl: float
    pnl_percentage: float
    exit_price: float


class ManualTradeInput(BaseModel):
    """A completed round trip typed in by the trader."""

    symbol: str = Field(min_length=1)
    side: TradeSide
    type: TradeType = "MARKET"
    entry_price: float = Field(gt=0)
    exit_price: float = Field(gt=0)
    quantity: float = Field(gt=0)
    commission: float = Field(default=0.0, ge=0)
    leverage: float = Field(default=1.0, gt=0)
    stop_loss: float | None = None
    take_profit: float | None = None


# ── Notes ───────────────────────────────────────────────────────────────────


class NoteInput(BaseModel):
    """Annotation fields supplied by the trader for one trade."""

    note: str | None = None
    tags: list[str] = Field(default_factory=list)
    setup: str | None = None
    timeframe: str | None = None
    error_type: str | None = None
    screenshot_url: str | None = None
    tradingview_link: str | None = None


class TradeNote(NoteInput):
    """Stored annotation, one per trade."""

    id: int | None = None
    trade_id: int
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class TradeWithNote(BaseModel):
    """Trade joined with its optional note, as listed in the journal."""

    trade: Trade
    note: TradeNote | None = None


# ── Risk ────────────────────────────────────────────────────────────────────


class RiskRule(BaseModel):
    """A per-user risk threshold."""

    id: int | None = None
    user_id: int
    rule_type: RuleType
    limit_value: float
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class RuleViolation(BaseModel):
    """Audit row written each time an active rule is found violated."""

    id: int | None = None
    user_id: int
    rule_id: int
    violation_date: datetime = Field(default_factory=utc_now)
    current_value: float
    limit_value: float
    description: str
    created_at: datetime = Field(default_factory=utc_now)


# ── AI Insights ─────────────────────────────────────────────────────────────


class AIInsight(BaseModel):
    """Opaque AI output stored as JSON, keyed by insight_type."""

    id: int | None = None
    user_id: int
    trade_id: int | None = None
    insight_type: InsightType
    content: dict[str, Any] | list[Any]
    created_at: datetime = Field(default_factory=utc_now)
