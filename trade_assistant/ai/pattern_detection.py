"""
Recurring pattern detection over recent closed trades and their notes.

Two statistical passes and one optional AI pass:
    - mistakes: an error_type tagged on losing trades at least twice
    - successes: a setup with at least 3 trades and a 60%+ win rate
    - AI: behavioural patterns read from up to 20 free-text notes

Patterns are returned high impact first. Fewer than 5 closed trades yields
no patterns. AI failures contribute nothing rather than failing the call.
"""

from collections import defaultdict
from typing import Literal

from loguru import logger
from pydantic import BaseModel, ValidationError

from trade_assistant.ai.llm_client import (
    AIResponseFormatError,
    AIServiceError,
    TextGenerator,
    create_prompt,
    parse_ai_json,
)
from trade_assistant.journal.schemas import AIInsight, Trade
from trade_assistant.journal.sqlite_store import JournalStore

Impact = Literal["high", "medium", "low"]

MIN_TRADES = 5
MAX_EXAMPLES = 3
MAX_AI_NOTES = 20
IMPACT_SCORE: dict[str, int] = {"high": 3, "medium": 2, "low": 1}

AI_SYSTEM_CONTEXT = """You are a trading psychology and performance analyst.
Analyze the trader's notes to find recurring behavioral or strategic patterns.
Focus on:
1. Emotional patterns (FOMO, revenge trading, fear, greed)
2. Technical patterns (poor entries, exits too early/late)
3. Strategic patterns (ignoring rules, overtrading)

Be specific and actionable."""


class PatternExample(BaseModel):
    trade_id: int
    date: str | None = None


class Pattern(BaseModel):
    type: Literal["mistake", "success"]
    description: str
    frequency: int = 0
    examples: list[PatternExample] = []
    impact: Impact


def _example(trade: Trade) -> PatternExample:
    closed = trade.closed_at or trade.opened_at
    return PatternExample(trade_id=trade.id or 0, date=closed.isoformat())


def _mistake_impact(count: int) -> Impact:
    if count >= 5:
        return "high"
    if count >= 3:
        return "medium"
    return "low"


def _success_impact(win_rate: float) -> Impact:
    if win_rate >= 75:
        return "high"
    if win_rate >= 65:
        return "medium"
    return "low"


def _note_line(index: int, trade: Trade, note_text: str) -> str:
    result = "WIN" if trade.pnl > 0 else "LOSS"
    return f'{index}. [{result}] {trade.pnl:.2f} USDT - "{note_text}"'


async def _detect_patterns_with_ai(
    llm: TextGenerator, notes: list[tuple[Trade, str]]
) -> list[Pattern]:
    lines = "\n".join(_note_line(i, t, text) for i, (t, text) in enumerate(notes, start=1))
    request = (
        "Analyze these trade notes and identify recurring patterns:\n\n"
        f"{lines}\n\n"
        "Provide up to 3 most important patterns in JSON format:\n"
        "{\n"
        '  "patterns": [\n'
        "    {\n"
        '      "type": "mistake" or "success",\n'
        '      "description": "Brief description",\n'
        '      "impact": "high", "medium", or "low"\n'
        "    }\n"
        "  ]\n"
        "}"
    )
    response = await llm.generate_text(create_prompt(AI_SYSTEM_CONTEXT, request), temperature=0.6)
    payload = parse_ai_json(response)
    items = payload.get("patterns") if isinstance(payload, dict) else None
    if not isinstance(items, list):
        raise AIResponseFormatError(f"Expected a patterns list, got {type(items).__name__}")

    patterns: list[Pattern] = []
    for item in items:
        try:
            patterns.append(
                Pattern(
                    type=item.get("type"),
                    description=item.get("description", ""),
                    impact=item.get("impact"),
                )
            )
        except (ValidationError, AttributeError):
            logger.debug("Patterns: skipping malformed AI pattern {}", item)
    return patterns


async def detect_patterns(
    store: JournalStore,
    user_id: int,
    llm: TextGenerator | None = None,
    limit: int = 50,
) -> list[Pattern]:
    """Find recurring mistakes and strong setups in the last `limit` closed trades."""
    trades = store.get_recent_closed_trades(user_id, limit)
    if len(trades) < MIN_TRADES:
        return []
    notes = store.get_notes_for_trades(t.id for t in trades if t.id is not None)

    mistakes: dict[str, list[Trade]] = defaultdict(list)
    setups: dict[str, list[Trade]] = defaultdict(list)
    for trade in trades:
        note = notes.get(trade.id)
        if note is None:
            continue
        if note.error_type and trade.pnl < 0:
            mistakes[note.error_type].append(trade)
        if note.setup:
            setups[note.setup].append(trade)

    patterns: list[Pattern] = []
    for error_type, members in mistakes.items():
        if len(members) >= 2:
            patterns.append(
                Pattern(
                    type="mistake",
                    description=f"Recurring mistake: {error_type}",
                    frequency=len(members),
                    examples=[_example(t) for t in members[:MAX_EXAMPLES]],
                    impact=_mistake_impact(len(members)),
                )
            )

    for setup, members in setups.items():
        wins = sum(1 for t in members if t.pnl > 0)
        win_rate = wins / len(members) * 100
        if win_rate >= 60 and len(members) >= 3:
            patterns.append(
                Pattern(
                    type="success",
                    description=f"Strong setup: {setup} ({win_rate:.0f}% win rate)",
                    frequency=len(members),
                    examples=[_example(t) for t in members[:MAX_EXAMPLES]],
                    impact=_success_impact(win_rate),
                )
            )

    noted = [
        (t, notes[t.id].note)
        for t in trades
        if t.id in notes and notes[t.id].note
    ][:MAX_AI_NOTES]
    if llm is not None and noted:
        try:
            patterns.extend(await _detect_patterns_with_ai(llm, noted))
        except AIServiceError as e:
            logger.warning("Patterns: AI pattern detection failed for user {}: {}", user_id, e)

    return sorted(patterns, key=lambda p: IMPACT_SCORE[p.impact], reverse=True)


def save_patterns(store: JournalStore, user_id: int, patterns: list[Pattern]) -> int:
    return store.save_insight(
        AIInsight(
            user_id=user_id,
            insight_type="PATTERN_DETECTION",
            content=[p.model_dump() for p in patterns],
        )
    )
