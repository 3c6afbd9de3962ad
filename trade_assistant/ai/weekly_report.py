"""
Weekly coaching report for the current Monday-to-Sunday week (UTC).

Combines the week's realized stats, detected patterns and best/worst setups
into a prompt, and asks the model for habits, mistakes, recommendations and
focus areas. Unparsable output falls back to generic advice so a report is
always produced once the model answers.

Usage:
    report = await generate_weekly_report(store, llm, user_id)
    save_weekly_report(store, user_id, report)
"""

from datetime import datetime

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from trade_assistant.ai.llm_client import (
    AIResponseFormatError,
    TextGenerator,
    create_prompt,
    parse_ai_json,
)
from trade_assistant.ai.pattern_detection import Pattern, detect_patterns
from trade_assistant.analytics.metrics import Condition, best_worst_conditions, win_rate
from trade_assistant.analytics.periods import end_of_week, ensure_utc, start_of_week
from trade_assistant.journal.schemas import AIInsight
from trade_assistant.journal.sqlite_store import JournalStore

SYSTEM_CONTEXT = """You are an expert trading coach analyzing a trader's weekly performance.
Your goal is to provide:
1. Top 3 positive habits/behaviors to maintain
2. Top 3 mistakes/bad habits to fix
3. 1-2 specific, actionable recommendations for next week

Be encouraging but honest. Focus on behavioral improvements, not just results.
Keep recommendations specific and measurable."""


class WeeklySummary(BaseModel):
    total_trades: int = Field(default=0, alias="totalTrades")
    total_pnl: float = Field(default=0.0, alias="totalPnL")
    win_rate: float = Field(default=0.0, alias="winRate")
    biggest_win: float = Field(default=0.0, alias="biggestWin")
    biggest_loss: float = Field(default=0.0, alias="biggestLoss")

    model_config = {"populate_by_name": True}


class CoachingAdvice(BaseModel):
    top_habits: list[str] = Field(default_factory=list, alias="topHabits")
    top_mistakes: list[str] = Field(default_factory=list, alias="topMistakes")
    recommendations: list[str] = Field(default_factory=list)
    focus_areas: list[str] = Field(default_factory=list, alias="focusAreas")

    model_config = {"populate_by_name": True}


class WeeklyReport(CoachingAdvice):
    week_start: datetime = Field(alias="weekStart")
    week_end: datetime = Field(alias="weekEnd")
    summary: WeeklySummary


FALLBACK_ADVICE = CoachingAdvice(
    top_habits=["Continue tracking your trades diligently"],
    top_mistakes=["Review trade notes for improvement areas"],
    recommendations=["Focus on consistent execution of your strategy"],
    focus_areas=["Risk management"],
)


def _bullets(lines: list[str]) -> str:
    return "\n".join(lines)


def _condition_line(c: Condition) -> str:
    return f"- {c.condition}: {c.pnl:.2f} USDT ({c.win_rate:.1f}% win rate)"


def build_report_request(
    summary: WeeklySummary,
    patterns: list[Pattern],
    best: list[Condition],
    worst: list[Condition],
) -> str:
    pattern_lines = [
        f"- [{p.type.upper()}] {p.description} (Impact: {p.impact})" for p in patterns[:5]
    ]
    best_lines = [_condition_line(c) for c in best]
    worst_lines = [_condition_line(c) for c in worst]
    return (
        "Analyze this week's trading performance and create a weekly report.\n\n"
        "Week summary:\n"
        f"- Trades: {summary.total_trades}\n"
        f"- PnL: {summary.total_pnl:.2f} USDT\n"
        f"- Win Rate: {summary.win_rate:.1f}%\n"
        f"- Biggest Win: {summary.biggest_win:.2f} USDT\n"
        f"- Biggest Loss: {summary.biggest_loss:.2f} USDT\n\n"
        f"Identified patterns:\n{_bullets(pattern_lines)}\n\n"
        f"Best performing conditions:\n{_bullets(best_lines)}\n\n"
        f"Worst performing conditions:\n{_bullets(worst_lines)}\n\n"
        "Provide a JSON response:\n"
        "{\n"
        '  "topHabits": ["habit1", "habit2", "habit3"],\n'
        '  "topMistakes": ["mistake1", "mistake2", "mistake3"],\n'
        '  "recommendations": ["recommendation1", "recommendation2"],\n'
        '  "focusAreas": ["focus1", "focus2"]\n'
        "}"
    )


async def generate_weekly_report(
    store: JournalStore,
    llm: TextGenerator,
    user_id: int,
    now: datetime | None = None,
) -> WeeklyReport:
    """Build this week's report. AI transport errors propagate."""
    now = ensure_utc(now)
    week_start = start_of_week(now)
    week_end = end_of_week(now)

    trades = store.get_closed_trades(user_id, since=week_start, until=week_end)
    pnls = [t.pnl for t in trades]
    summary = WeeklySummary(
        total_trades=len(trades),
        total_pnl=sum(pnls),
        win_rate=win_rate(trades),
        biggest_win=max(pnls + [0.0]),
        biggest_loss=min(pnls + [0.0]),
    )

    patterns = await detect_patterns(store, user_id, llm=llm, limit=100)
    conditions = best_worst_conditions(store, user_id)
    best, worst = conditions.best[:3], conditions.worst[:3]

    week_data = {
        "trades": summary.total_trades,
        "pnl": summary.total_pnl,
        "winRate": f"{summary.win_rate:.1f}",
        "biggestWin": summary.biggest_win,
        "biggestLoss": summary.biggest_loss,
        "patterns": [
            {"type": p.type, "description": p.description, "impact": p.impact}
            for p in patterns[:5]
        ],
        "bestConditions": [c.model_dump() for c in best],
        "worstConditions": [c.model_dump() for c in worst],
    }

    prompt = create_prompt(
        SYSTEM_CONTEXT, build_report_request(summary, patterns, best, worst), week_data
    )
    response = await llm.generate_text(prompt, temperature=0.6, max_tokens=1500)

    try:
        advice = CoachingAdvice.model_validate(parse_ai_json(response))
    except (AIResponseFormatError, ValidationError):
        logger.warning("WeeklyReport: unparsable AI response for user {}, using fallback", user_id)
        advice = FALLBACK_ADVICE

    return WeeklyReport(
        week_start=week_start,
        week_end=week_end,
        summary=summary,
        **advice.model_dump(),
    )


def save_weekly_report(store: JournalStore, user_id: int, report: WeeklyReport) -> int:
    return store.save_insight(
        AIInsight(
            user_id=user_id,
            insight_type="WEEKLY_REPORT",
            content=report.model_dump(mode="json", by_alias=True),
        )
    )


def _to_report(content: object) -> WeeklyReport | None:
    try:
        return WeeklyReport.model_validate(content)
    except ValidationError:
        return None


def get_latest_weekly_report(store: JournalStore, user_id: int) -> WeeklyReport | None:
    insight = store.latest_insight(user_id, "WEEKLY_REPORT")
    return _to_report(insight.content) if insight else None


def get_all_weekly_reports(
    store: JournalStore, user_id: int, limit: int = 10
) -> list[WeeklyReport]:
    """Stored reports, newest first. Rows that no longer validate are skipped."""
    insights = store.list_insights(user_id, "WEEKLY_REPORT", limit=limit)
    reports = (_to_report(i.content) for i in insights)
    return [r for r in reports if r is not None]
