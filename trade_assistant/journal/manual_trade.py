"""Build journal rows for round trips entered by hand."""

from datetime import datetime, timezone

from trade_assistant.journal.schemas import ManualTradeInput, Trade


def build_manual_trade(
    user_id: int, data: ManualTradeInput, now: datetime | None = None
) -> Trade:
    """Turn a manual round trip into a closed Trade with its PnL filled in.

    Position size is entry * quantity. PnL is side-aware and net of
    commission; leverage is recorded but does not scale manual PnL.
    """
    now = now or datetime.now(timezone.utc)
    position_size = data.entry_price * data.quantity
    if data.side == "BUY":
        pnl = (data.exit_price - data.entry_price) * data.quantity - data.commission
    else:
        pnl = (data.entry_price - data.exit_price) * data.quantity - data.commission

    return Trade(
        user_id=user_id,
        symbol=data.symbol.upper(),
        side=data.side,
        type=data.type,
        quantity=data.quantity,
        price=data.entry_price,
        executed_qty=data.quantity,
        commission=data.commission,
        entry_price=data.entry_price,
        exit_price=data.exit_price,
        stop_loss=data.stop_loss,
        take_profit=data.take_profit,
        leverage=data.leverage,
        position_size_usdt=position_size,
        pnl=pnl,
        pnl_percentage=pnl / position_size * 100,
        status="CLOSED",
        opened_at=now,
        closed_at=now,
        created_at=now,
        updated_at=now,
    )
