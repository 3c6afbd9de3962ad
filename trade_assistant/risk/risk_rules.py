"""
Risk rule engine: daily/weekly loss limits, trade count and losing streaks.

Each active rule is evaluated against the journal. A violated rule blocks
trading and is written to the rule_violations audit table; a rule at or
beyond the warning ratio (80% by default) of its limit produces a warning.

Rules:
1. DAILY_LOSS          realized PnL closed today must stay above -limit
2. WEEKLY_LOSS         realized PnL closed since Monday must stay above -limit
3. MAX_TRADES          trades opened today must stay below limit
4. CONSECUTIVE_LOSSES  current losing streak must stay below limit

All calendar boundaries are UTC.
"""

from datetime import datetime, timedelta
from typing import Callable, Literal

from loguru import logger
from pydantic import BaseModel

from trade_assistant.analytics.periods import ensure_utc, start_of_day, start_of_week
from trade_assistant.config import RiskConfig
from trade_assistant.journal.schemas import RiskRule, RuleType, RuleViolation
from trade_assistant.journal.sqlite_store import JournalStore

# ── Data Models ─────────────────────────────────────────────────────────────


class RuleCheck(BaseModel):
    """Result of evaluating one risk rule."""

    rule_type: RuleType
    violated: bool
    current_value: float
    limit_value: float
    description: str


class RiskCheckResult(BaseModel):
    """Outcome of evaluating all active rules for a user."""

    can_trade: bool = True
    checks: list[RuleCheck] = []
    warnings: list[str] = []

    @property
    def violations(self) -> list[RuleCheck]:
        return [c for c in self.checks if c.violated]


class BlockStatus(BaseModel):
    blocked: bool
    reason: str | None = None


# ── RiskEngine ──────────────────────────────────────────────────────────────


class RiskEngine:
    """Evaluates a user's risk rules against the trade journal.

    Usage:
        engine = RiskEngine(store, config.risk)
        result = engine.check_all_risk_rules(user_id)
        status = engine.should_block_trade(result)
        if status.blocked:
            print(status.reason)
    """

    def __init__(self, store: JournalStore, config: RiskConfig) -> None:
        self._store = store
        self._config = config

    # ── Individual Checks ───────────────────────────────────────────────

    def check_daily_loss(
        self, user_id: int, max_loss: float, now: datetime | None = None
    ) -> RuleCheck:
        """Realized PnL of trades closed today (UTC) against -|max_loss|."""
        day_start = start_of_day(now)
        pnl = self._store.sum_pnl_closed_between(
            user_id, day_start, day_start + timedelta(days=1) - timedelta(microseconds=1)
        )
        return self._loss_check("DAILY_LOSS", "Daily", pnl, max_loss)

    def check_weekly_loss(
        self, user_id: int, max_loss: float, now: datetime | None = None
    ) -> RuleCheck:
        """Realized PnL of trades closed since Monday 00:00 UTC against -|max_loss|."""
        pnl = self._store.sum_pnl_closed_between(user_id, start_of_week(now))
        return self._loss_check("WEEKLY_LOSS", "Weekly", pnl, max_loss)

    @staticmethod
    def _loss_check(rule_type: RuleType, label: str, pnl: float, max_loss: float) -> RuleCheck:
        limit = abs(max_loss)
        violated = pnl < -limit
        if violated:
            description = (
                f"{label} loss limit exceeded: {pnl:.2f} USDT (limit: -{max_loss:g} USDT)"
            )
        else:
            description = f"{label} PnL: {pnl:.2f} USDT"
        return RuleCheck(
            rule_type=rule_type,
            violated=violated,
            # Only losses count towards the limit
            current_value=max(0.0, -pnl),
            limit_value=limit,
            description=description,
        )

    def check_max_trades(
        self,
        user_id: int,
        max_trades: float,
        period: Literal["daily", "weekly"] = "daily",
        now: datetime | None = None,
    ) -> RuleCheck:
        """Trades opened since the start of the day (or week)."""
        since = start_of_day(now) if period == "daily" else start_of_week(now)
        count = self._store.count_trades_opened_since(user_id, since)
        violated = count >= max_trades
        limit_text = f"{max_trades:g}"
        if violated:
            label = "Daily" if period == "daily" else "Weekly"
            description = f"{label} trade limit reached: {count}/{limit_text}"
        else:
            label = "Today" if period == "daily" else "This week"
            description = f"{label}: {count}/{limit_text} trades"
        return RuleCheck(
            rule_type="MAX_TRADES",
            violated=violated,
            current_value=count,
            limit_value=max_trades,
            description=description,
        )

    def check_consecutive_losses(self, user_id: int, max_consecutive: float) -> RuleCheck:
        """Leading losses among the most recently closed trades."""
        streak = 0
        for pnl in self._store.recent_closed_pnls(user_id, self._config.consecutive_lookback):
            if pnl >= 0:
                break
            streak += 1

        violated = streak >= max_consecutive
        if violated:
            description = f"Consecutive loss limit reached: {streak} losses in a row"
        elif streak > 0:
            description = f"Current streak: {streak} consecutive losses"
        else:
            description = "No consecutive losses"
        return RuleCheck(
            rule_type="CONSECUTIVE_LOSSES",
            violated=violated,
            current_value=streak,
            limit_value=max_consecutive,
            description=description,
        )

    def _evaluate(self, rule: RiskRule, now: datetime) -> RuleCheck | None:
        checks: dict[str, Callable[[], RuleCheck]] = {
            "DAILY_LOSS": lambda: self.check_daily_loss(rule.user_id, rule.limit_value, now),
            "WEEKLY_LOSS": lambda: self.check_weekly_loss(rule.user_id, rule.limit_value, now),
            "MAX_TRADES": lambda: self.check_max_trades(
                rule.user_id, rule.limit_value, "daily", now
            ),
            "CONSECUTIVE_LOSSES": lambda: self.check_consecutive_losses(
                rule.user_id, rule.limit_value
            ),
        }
        check_fn = checks.get(rule.rule_type)
        return check_fn() if check_fn else None

    # ── Main Check ──────────────────────────────────────────────────────

    def check_all_risk_rules(self, user_id: int, now: datetime | None = None) -> RiskCheckResult:
        """Evaluate every active rule, logging each violation to the audit table."""
        now = ensure_utc(now)
        result = RiskCheckResult()

        for rule in self._store.get_risk_rules(user_id, active_only=True):
            check = self._evaluate(rule, now)
            if check is None:
                continue
            result.checks.append(check)

            if check.violated:
                result.can_trade = False
                self._store.log_violation(
                    RuleViolation(
                        user_id=user_id,
                        rule_id=rule.id,
                        violation_date=now,
                        current_value=check.current_value,
                        limit_value=check.limit_value,
                        description=check.description,
                    )
                )
                logger.warning(
                    "Risk VIOLATION: {} for user {}: {}",
                    rule.rule_type,
                    user_id,
                    check.description,
                )
            elif (
                check.limit_value > 0
                and check.current_value / check.limit_value >= self._config.warning_ratio
            ):
                result.warnings.append(f"⚠️ {check.description} - Near limit!")

        if result.can_trade:
            logger.info(
                "Risk check PASSED for user {} ({} warnings)", user_id, len(result.warnings)
            )
        return result

    @staticmethod
    def should_block_trade(result: RiskCheckResult) -> BlockStatus:
        """Turn a risk check result into a block decision with a reason."""
        if result.can_trade:
            return BlockStatus(blocked=False)
        reasons = "; ".join(c.description for c in result.violations)
        return BlockStatus(
            blocked=True,
            reason=f"Trading blocked due to risk rule violations: {reasons}",
        )

    # ── Rule Management ─────────────────────────────────────────────────

    def default_rules(self, user_id: int) -> list[RiskRule]:
        cfg = self._config
        defaults: list[tuple[RuleType, float]] = [
            ("DAILY_LOSS", cfg.default_max_daily_loss),
            ("WEEKLY_LOSS", cfg.default_max_weekly_loss),
            ("MAX_TRADES", cfg.default_max_daily_trades),
            ("CONSECUTIVE_LOSSES", cfg.default_max_consecutive_losses),
        ]
        return [
            RiskRule(user_id=user_id, rule_type=rule_type, limit_value=limit)
            for rule_type, limit in defaults
        ]

    def get_risk_rules(self, user_id: int) -> list[RiskRule]:
        """All of a user's rules, creating the defaults when none exist."""
        rules = self._store.get_risk_rules(user_id)
        if rules:
            return rules

        for rule in self.default_rules(user_id):
            self._store.insert_risk_rule(rule)
        logger.info("Created default risk rules for user {}", user_id)
        return self._store.get_risk_rules(user_id)

    def update_risk_rule(
        self,
        rule_id: int,
        user_id: int,
        limit_value: float | None = None,
        is_active: bool | None = None,
    ) -> bool:
        return self._store.update_risk_rule(rule_id, user_id, limit_value, is_active)
