"""
AI review of a single closed trade.

The model is asked for a short JSON verdict (entry, exit, result, key
factors, and either mistakes or what went well). Unparsable output falls
back to a placeholder summary carrying the first 200 characters of the raw
response; transport failures propagate as AIServiceError.

Usage:
    summary = await generate_trade_summary(llm, trade, note)
    save_trade_summary(store, user_id, trade.id, summary)
"""

from pydantic import BaseModel, Field, ValidationError

from trade_assistant.ai.llm_client import (
    AIResponseFormatError,
    TextGenerator,
    create_prompt,
    parse_ai_json,
)
from trade_assistant.journal.schemas import AIInsight, Trade, TradeNote
from trade_assistant.journal.sqlite_store import JournalStore

SYSTEM_CONTEXT = """You are an expert trading analyst.
Analyze the trade and provide a concise summary.
Focus on:
1. Entry and exit analysis
2. Key success or failure factors
3. Specific, actionable insights

Keep your response brief and to the point."""


class TradeSummary(BaseModel):
    entry: str
    exit: str
    result: str
    key_factors: list[str] = Field(default_factory=list, alias="keyFactors")
    mistakes: list[str] | None = None
    what_went_well: list[str] | None = Field(default=None, alias="whatWentWell")

    model_config = {"populate_by_name": True}


def _trade_data(trade: Trade, note: TradeNote | None) -> dict:
    return {
        "symbol": trade.symbol,
        "side": trade.side,
        "entryPrice": trade.entry_price,
        "exitPrice": trade.exit_price,
        "stopLoss": trade.stop_loss,
        "takeProfit": trade.take_profit,
        "pnl": trade.pnl,
        "pnlPercentage": trade.pnl_percentage,
        "leverage": trade.leverage,
        "setup": note.setup if note else None,
        "timeframe": note.timeframe if note else None,
        "errorType": note.error_type if note else None,
        "userNote": note.note if note else None,
    }


def build_summary_request(trade: Trade, note: TradeNote | None) -> str:
    outcome = "Profit" if trade.pnl > 0 else "Loss"
    trader_note = f"Trader's note: {note.note}" if note and note.note else ""
    last_field = (
        '"mistakes": ["mistake1", "mistake2"]'
        if trade.pnl < 0
        else '"whatWentWell": ["success1", "success2"]'
    )
    return (
        f"Analyze this {trade.side} trade on {trade.symbol}.\n"
        f"Result: {outcome} of {trade.pnl:.2f} USDT ({trade.pnl_percentage:.2f}%).\n"
        f"{trader_note}\n\n"
        "Provide a JSON response with this structure:\n"
        "{\n"
        '  "entry": "Brief entry analysis (1 sentence)",\n'
        '  "exit": "Brief exit analysis (1 sentence)",\n'
        '  "result": "Overall result summary (1 sentence)",\n'
        '  "keyFactors": ["factor1", "factor2", "factor3"],\n'
        f"  {last_field}\n"
        "}"
    )


def fallback_summary(response: str) -> TradeSummary:
    return TradeSummary(
        entry="Entry analysis unavailable",
        exit="Exit analysis unavailable",
        result=response[:200],
        key_factors=["AI response parsing failed"],
    )


async def generate_trade_summary(
    llm: TextGenerator, trade: Trade, note: TradeNote | None = None
) -> TradeSummary:
    """Ask the model for a review of one trade."""
    prompt = create_prompt(
        SYSTEM_CONTEXT, build_summary_request(trade, note), _trade_data(trade, note)
    )
    response = await llm.generate_text(prompt, temperature=0.5)

    try:
        return TradeSummary.model_validate(parse_ai_json(response))
    except (AIResponseFormatError, ValidationError):
        return fallback_summary(response)


def save_trade_summary(
    store: JournalStore, user_id: int, trade_id: int, summary: TradeSummary
) -> int:
    return store.save_insight(
        AIInsight(
            user_id=user_id,
            trade_id=trade_id,
            insight_type="TRADE_SUMMARY",
            content=summary.model_dump(by_alias=True, exclude_none=True),
        )
    )


def get_trade_summary(store: JournalStore, user_id: int, trade_id: int) -> TradeSummary | None:
    """Latest stored summary for a trade, or None."""
    insight = store.latest_insight(user_id, "TRADE_SUMMARY", trade_id=trade_id)
    if insight is None:
        return None
    try:
        return TradeSummary.model_validate(insight.content)
    except ValidationError:
        return None
