"""
Performance analytics over a user's closed trades.

Pure metric functions take a list of trades; the report builders read from
the JournalStore and return pydantic rows ready for JSON output. Daily and
per-symbol chart series are aggregated with pandas.

Usage:
    metrics = calculate_dashboard_metrics(store, user_id)
    rows = performance_breakdown(store, user_id, "setup")
    chart = chart_data(store, user_id, period="7d")
"""

import math
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Literal

import pandas as pd
from pydantic import BaseModel

from trade_assistant.analytics.periods import (
    ensure_utc,
    start_of_day,
    start_of_month,
    start_of_week,
)
from trade_assistant.journal.schemas import Trade
from trade_assistant.journal.sqlite_store import JournalStore

GroupBy = Literal["setup", "timeframe", "symbol", "error_type"]

CHART_PERIODS: dict[str, int] = {"7d": 7, "14d": 14, "30d": 30, "90d": 90}
DEFAULT_CHART_PERIOD = "30d"

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

# ── Result Models ───────────────────────────────────────────────────────────


class DashboardMetrics(BaseModel):
    total_pnl: float = 0.0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    expectancy: float = 0.0
    max_drawdown: float = 0.0
    total_trades: int = 0
    today_pnl: float = 0.0
    week_pnl: float = 0.0
    month_pnl: float = 0.0


class BreakdownRow(BaseModel):
    category: str
    trades: int
    total_pnl: float
    win_rate: float
    avg_pnl: float


class HourRow(BaseModel):
    hour: int
    trades: int
    total_pnl: float
    win_rate: float


class DayRow(BaseModel):
    day: str
    trades: int
    total_pnl: float
    win_rate: float


class Condition(BaseModel):
    condition: str
    pnl: float
    win_rate: float


class BestWorstConditions(BaseModel):
    best: list[Condition]
    worst: list[Condition]


class ChartPoint(BaseModel):
    date: str
    pnl: float
    cumulative_pnl: float
    trades: int
    win_rate: float


class SymbolPerformance(BaseModel):
    symbol: str
    total_pnl: float
    trade_count: int
    avg_pnl: float
    win_rate: float


class ChartData(BaseModel):
    period: str
    chart_data: list[ChartPoint]
    symbol_performance: list[SymbolPerformance]


# ── Metric Functions ────────────────────────────────────────────────────────


def win_rate(trades: list[Trade]) -> float:
    """Percentage of trades with positive PnL."""
    if not trades:
        return 0.0
    wins = sum(1 for t in trades if t.pnl > 0)
    return wins / len(trades) * 100


def expectancy(trades: list[Trade]) -> float:
    """Average PnL per trade."""
    if not trades:
        return 0.0
    return sum(t.pnl for t in trades) / len(trades)


def profit_factor(trades: list[Trade]) -> float:
    """Gross wins over gross losses; inf when there are wins but no losses."""
    gross_wins = sum(t.pnl for t in trades if t.pnl > 0)
    gross_losses = abs(sum(t.pnl for t in trades if t.pnl < 0))
    if gross_losses == 0:
        return math.inf if gross_wins > 0 else 0.0
    return gross_wins / gross_losses


def _close_time(trade: Trade) -> datetime:
    return trade.closed_at or trade.opened_at


def max_drawdown(trades: list[Trade]) -> float:
    """Largest drop of cumulative PnL from its running peak (peak starts at 0)."""
    peak = 0.0
    running = 0.0
    worst = 0.0
    for trade in sorted(trades, key=_close_time):
        running += trade.pnl
        peak = max(peak, running)
        worst = max(worst, peak - running)
    return worst


def _bucket_stats(trades: list[Trade]) -> tuple[int, float, float]:
    """(count, total_pnl, win_rate) for one group of trades."""
    total = sum(t.pnl for t in trades)
    return len(trades), total, win_rate(trades)


# ── Reports ─────────────────────────────────────────────────────────────────


def calculate_dashboard_metrics(
    store: JournalStore, user_id: int, now: datetime | None = None
) -> DashboardMetrics:
    """Headline numbers for the dashboard."""
    now = ensure_utc(now)
    trades = store.get_closed_trades(user_id)

    def pnl_since(start: datetime) -> float:
        return sum(t.pnl for t in trades if t.closed_at is not None and t.closed_at >= start)

    return DashboardMetrics(
        total_pnl=sum(t.pnl for t in trades),
        win_rate=win_rate(trades),
        profit_factor=profit_factor(trades),
        expectancy=expectancy(trades),
        max_drawdown=max_drawdown(trades),
        total_trades=len(trades),
        today_pnl=pnl_since(start_of_day(now)),
        week_pnl=pnl_since(start_of_week(now)),
        month_pnl=pnl_since(start_of_month(now)),
    )


def performance_breakdown(
    store: JournalStore, user_id: int, group_by: GroupBy
) -> list[BreakdownRow]:
    """PnL grouped by symbol or by a note field, best category first.

    Trades without a value for the grouping field are skipped.
    """
    if group_by not in ("setup", "timeframe", "symbol", "error_type"):
        raise ValueError(f"Unsupported breakdown field: {group_by}")

    trades = store.get_closed_trades(user_id)
    notes = {} if group_by == "symbol" else store.get_notes_for_trades(
        t.id for t in trades if t.id is not None
    )

    groups: dict[str, list[Trade]] = defaultdict(list)
    for trade in trades:
        if group_by == "symbol":
            category = trade.symbol
        else:
            note = notes.get(trade.id)
            category = getattr(note, group_by) if note else None
        if category:
            groups[category].append(trade)

    rows = []
    for category, members in groups.items():
        count, total, rate = _bucket_stats(members)
        rows.append(
            BreakdownRow(
                category=category,
                trades=count,
                total_pnl=total,
                win_rate=rate,
                avg_pnl=total / count,
            )
        )
    return sorted(rows, key=lambda r: r.total_pnl, reverse=True)


def performance_by_hour(store: JournalStore, user_id: int) -> list[HourRow]:
    """24 rows, one per UTC hour of opened_at."""
    buckets: dict[int, list[Trade]] = defaultdict(list)
    for trade in store.get_closed_trades(user_id):
        buckets[ensure_utc(trade.opened_at).hour].append(trade)

    rows = []
    for hour in range(24):
        count, total, rate = _bucket_stats(buckets.get(hour, []))
        rows.append(HourRow(hour=hour, trades=count, total_pnl=total, win_rate=rate))
    return rows


def performance_by_day_of_week(store: JournalStore, user_id: int) -> list[DayRow]:
    """7 rows, Sunday first, keyed on the UTC weekday of opened_at."""
    buckets: dict[int, list[Trade]] = defaultdict(list)
    for trade in store.get_closed_trades(user_id):
        # datetime.weekday() is Monday=0; shift so Sunday=0
        buckets[(ensure_utc(trade.opened_at).weekday() + 1) % 7].append(trade)

    rows = []
    for day in range(7):
        count, total, rate = _bucket_stats(buckets.get(day, []))
        rows.append(DayRow(day=DAY_NAMES[day], trades=count, total_pnl=total, win_rate=rate))
    return rows


def best_worst_conditions(store: JournalStore, user_id: int) -> BestWorstConditions:
    """Top three setups by PnL, and the bottom three (worst first)."""
    ranked = performance_breakdown(store, user_id, "setup")

    def to_condition(row: BreakdownRow) -> Condition:
        return Condition(condition=row.category, pnl=row.total_pnl, win_rate=row.win_rate)

    return BestWorstConditions(
        best=[to_condition(r) for r in ranked[:3]],
        worst=[to_condition(r) for r in reversed(ranked[-3:])],
    )


def chart_data(
    store: JournalStore,
    user_id: int,
    period: str = DEFAULT_CHART_PERIOD,
    now: datetime | None = None,
) -> ChartData:
    """Daily PnL series and top-10 symbol performance over the period.

    Unknown periods fall back to 30 days.
    """
    if period not in CHART_PERIODS:
        period = DEFAULT_CHART_PERIOD
    since = ensure_utc(now) - timedelta(days=CHART_PERIODS[period])
    trades = [t for t in store.get_closed_trades(user_id, since=since) if t.closed_at is not None]

    if not trades:
        return ChartData(period=period, chart_data=[], symbol_performance=[])

    df = pd.DataFrame(
        {
            "date": [ensure_utc(t.closed_at).date().isoformat() for t in trades],
            "symbol": [t.symbol for t in trades],
            "pnl": [t.pnl for t in trades],
        }
    )
    df["win"] = (df["pnl"] > 0).astype(int)

    daily = (
        df.groupby("date")
        .agg(pnl=("pnl", "sum"), trades=("pnl", "size"), wins=("win", "sum"))
        .sort_index()
    )
    daily["cumulative_pnl"] = daily["pnl"].cumsum()
    daily["win_rate"] = daily["wins"] / daily["trades"] * 100

    by_symbol = df.groupby("symbol").agg(
        total_pnl=("pnl", "sum"),
        trade_count=("pnl", "size"),
        avg_pnl=("pnl", "mean"),
        wins=("win", "sum"),
    )
    by_symbol["win_rate"] = by_symbol["wins"] * 100.0 / by_symbol["trade_count"]
    by_symbol = by_symbol.sort_values("total_pnl", ascending=False, kind="stable").head(10)

    return ChartData(
        period=period,
        chart_data=[
            ChartPoint(
                date=str(date),
                pnl=float(row["pnl"]),
                cumulative_pnl=float(row["cumulative_pnl"]),
                trades=int(row["trades"]),
                win_rate=float(row["win_rate"]),
            )
            for date, row in daily.iterrows()
        ],
        symbol_performance=[
            SymbolPerformance(
                symbol=str(symbol),
                total_pnl=float(row["total_pnl"]),
                trade_count=int(row["trade_count"]),
                avg_pnl=float(row["avg_pnl"]),
                win_rate=float(row["win_rate"]),
            )
            for symbol, row in by_symbol.iterrows()
        ],
    )
