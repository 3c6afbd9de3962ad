"""
Pull executed fills from the exchange into the journal.

Each fill becomes one CLOSED trade row (opened_at = closed_at = execution
time). Fills whose order id is already stored for the user are skipped, so a
sync can be repeated safely. Errors are isolated per symbol and per fill and
counted rather than raised.

Usage:
    async with BinanceClient(...) as client:
        result = await sync_trades(client, store, user_id, ["BTCUSDT", "ETHUSDT"])
        print(result.synced, result.errors)
"""

from typing import Protocol

from loguru import logger
from pydantic import BaseModel

from trade_assistant.exchange.binance_client import BinanceFill
from trade_assistant.journal.schemas import Trade
from trade_assistant.journal.sqlite_store import DuplicateTradeError, JournalStore

DEFAULT_SYMBOLS = ["BTCUSDT", "ETHUSDT"]


class FillSource(Protocol):
    async def get_my_trades(self, symbol: str, limit: int = 500) -> list[BinanceFill]: ...


class SyncResult(BaseModel):
    synced: int = 0
    errors: int = 0


def convert_fill_to_trade(fill: BinanceFill, user_id: int) -> Trade:
    """Map one exchange fill onto a journal trade row."""
    executed_at = fill.executed_at
    return Trade(
        user_id=user_id,
        exchange_order_id=str(fill.order_id),
        symbol=fill.symbol,
        side="BUY" if fill.is_buyer else "SELL",
        type="MARKET",
        quantity=fill.qty,
        price=fill.price,
        executed_qty=fill.qty,
        commission=fill.commission,
        commission_asset=fill.commission_asset or None,
        position_size_usdt=fill.quote_qty,
        entry_price=fill.price,
        status="CLOSED",
        opened_at=executed_at,
        closed_at=executed_at,
    )


async def sync_trades(
    client: FillSource,
    store: JournalStore,
    user_id: int,
    symbols: list[str] | None = None,
    limit: int = 500,
) -> SyncResult:
    """Fetch recent fills per symbol and insert the ones not yet journaled.

    Args:
        client: Exchange client exposing get_my_trades().
        store: Journal store.
        user_id: Owner of the synced trades.
        symbols: Symbols to sync. Defaults to BTCUSDT and ETHUSDT.
        limit: Fills fetched per symbol.

    Returns:
        SyncResult with the number of new trades and of failed symbols/fills.
    """
    result = SyncResult()

    for symbol in symbols or DEFAULT_SYMBOLS:
        try:
            fills = await client.get_my_trades(symbol, limit)
        except Exception as e:
            logger.error("Sync: failed to fetch {} fills for user {}: {}", symbol, user_id, e)
            result.errors += 1
            continue

        for fill in fills:
            # Keyed on orderId: later fills of a partially filled order are skipped
            order_id = str(fill.order_id)
            try:
                if store.trade_exists(user_id, order_id):
                    continue
                store.insert_trade(convert_fill_to_trade(fill, user_id))
                result.synced += 1
            except DuplicateTradeError:
                continue
            except Exception as e:
                logger.error("Sync: failed to store {} order {}: {}", symbol, order_id, e)
                result.errors += 1

        logger.info("Sync: {} fetched {} fills for user {}", symbol, len(fills), user_id)

    logger.info(
        "Sync: user {} done, {} new trades, {} errors", user_id, result.synced, result.errors
    )
    return result
