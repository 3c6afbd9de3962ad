"""
Trade matching and realized PnL reconciliation.

Exchange fills are stored one row per execution. This module walks a user's
fills in time order per symbol, tracks the open position, and writes the
realized PnL back onto every fill that reduces or closes that position.

Per symbol the state is a single optional Position:
    - no position          -> the fill opens one
    - same-side fill       -> weighted-average entry, size grows
    - opposite-side fill   -> PnL realized on min(position, fill) at the fill
                              price; a fill larger than the position closes it
                              and opens the remainder on the fill's side

Usage:
    updates, open_positions = match_trades(store.get_matchable_trades(user_id))
    count = match_trades_and_calculate_pnl(store, user_id)
"""

from dataclasses import dataclass
from itertools import groupby

from loguru import logger

from trade_assistant.journal.schemas import PnLUpdate, Trade, TradeSide
from trade_assistant.journal.sqlite_store import JournalStore

# Quantities below this are treated as fully closed (float residue from fills).
QTY_EPSILON = 1e-12


@dataclass
class Position:
    """Open position accumulated from same-side fills."""

    symbol: str
    side: TradeSide
    quantity: float
    entry_price: float


# ── PnL ─────────────────────────────────────────────────────────────────────


def calculate_real_pnl(
    entry_price: float,
    exit_price: float,
    quantity: float,
    commission: float,
    side: TradeSide,
    leverage: float = 1.0,
) -> tuple[float, float]:
    """Realized PnL for closing `quantity` of a position.

    Args:
        entry_price: Weighted-average entry of the position.
        exit_price: Price of the closing fill.
        quantity: Quantity closed.
        commission: Commission charged on the closing fill.
        side: Side of the position being closed (BUY = long).
        leverage: Position leverage.

    Returns:
        (pnl, pnl_percentage). The percentage is relative to the entry
        notional and is 0 when that notional is not positive.
    """
    if side == "BUY":
        gross = (exit_price - entry_price) * quantity * leverage
    else:
        gross = (entry_price - exit_price) * quantity * leverage
    pnl = gross - commission

    notional = entry_price * quantity
    pnl_percentage = pnl / notional * 100 if notional > 0 else 0.0
    return pnl, pnl_percentage


# ── Matching ────────────────────────────────────────────────────────────────


def _fill_qty(trade: Trade) -> float:
    return trade.executed_qty or trade.quantity


def _match_symbol(trades: list[Trade]) -> tuple[list[PnLUpdate], Position | None]:
    updates: list[PnLUpdate] = []
    position: Position | None = None

    for trade in trades:
        qty = _fill_qty(trade)
        if qty <= 0:
            continue

        if position is None:
            position = Position(trade.symbol, trade.side, qty, trade.price)
            continue

        if trade.side == position.side:
            total_qty = position.quantity + qty
            position.entry_price = (
                position.entry_price * position.quantity + trade.price * qty
            ) / total_qty
            position.quantity = total_qty
            continue

        closed_qty = min(position.quantity, qty)
        pnl, pnl_pct = calculate_real_pnl(
            entry_price=position.entry_price,
            exit_price=trade.price,
            quantity=closed_qty,
            commission=trade.commission,
            side=position.side,
            leverage=trade.leverage or 1.0,
        )
        if trade.id is not None:
            updates.append(
                PnLUpdate(
                    trade_id=trade.id,
                    pnl=pnl,
                    pnl_percentage=pnl_pct,
                    exit_price=trade.price,
                )
            )

        if position.quantity - qty > QTY_EPSILON:
            position.quantity -= qty
        else:
            # Any excess over the open size is not carried into a new position
            position = None

    return updates, position


def match_trades(trades: list[Trade]) -> tuple[list[PnLUpdate], dict[str, Position]]:
    """Match fills into positions and compute realized PnL.

    Args:
        trades: Fills ordered by opened_at ascending (ties by id).

    Returns:
        (updates, open_positions): one PnLUpdate per reducing fill, and the
        positions still open per symbol after the last fill.
    """
    updates: list[PnLUpdate] = []
    open_positions: dict[str, Position] = {}

    by_symbol = sorted(trades, key=lambda t: t.symbol)  # stable: keeps time order
    for symbol, group in groupby(by_symbol, key=lambda t: t.symbol):
        symbol_updates, position = _match_symbol(list(group))
        updates.extend(symbol_updates)
        if position is not None:
            open_positions[symbol] = position

    return updates, open_positions


def match_trades_and_calculate_pnl(store: JournalStore, user_id: int) -> int:
    """Recompute realized PnL for all of a user's synced fills.

    Returns:
        Number of trades updated with realized PnL.
    """
    trades = store.get_matchable_trades(user_id)
    updates, open_positions = match_trades(trades)
    count = store.apply_pnl_updates(updates)
    logger.info(
        "Matcher: user {}: {} fills scanned, {} closing fills priced, {} open positions",
        user_id,
        len(trades),
        count,
        len(open_positions),
    )
    return count
