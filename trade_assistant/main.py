"""
TradeAssistant: main orchestrator for the personal trading journal.

Ties the subsystems together:
1. Exchange credentials → 2. Trade sync and PnL matching →
3. Notes and manual trades → 4. Analytics → 5. Risk rules → 6. AI reviews

Every command runs against a named journal user, created on first use.
Results are printed as JSON.

Usage:
    # Store exchange credentials (tested before they are saved)
    python -m trade_assistant.main connect --api-key KEY --api-secret SECRET

    # Pull fills and recompute PnL
    python -m trade_assistant.main sync --symbols BTCUSDT ETHUSDT

    # Journal and analytics
    python -m trade_assistant.main trades --limit 20
    python -m trade_assistant.main note 12 --note "Chased the move" --error-type FOMO
    python -m trade_assistant.main dashboard

    # Auto-sync scheduler (async loop until SIGINT/SIGTERM)
    python -m trade_assistant.main scheduler
"""

import argparse
import asyncio
import json
import os
import signal
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel

from trade_assistant.ai.llm_client import GeminiClient, TextGenerator
from trade_assistant.ai.pattern_detection import Pattern, detect_patterns, save_patterns
from trade_assistant.ai.trade_summary import (
    TradeSummary,
    generate_trade_summary,
    get_trade_summary,
    save_trade_summary,
)
from trade_assistant.ai.weekly_report import (
    WeeklyReport,
    generate_weekly_report,
    get_all_weekly_reports,
    get_latest_weekly_report,
    save_weekly_report,
)
from trade_assistant.analytics.metrics import (
    CHART_PERIODS,
    DEFAULT_CHART_PERIOD,
    BestWorstConditions,
    BreakdownRow,
    ChartData,
    DashboardMetrics,
    DayRow,
    GroupBy,
    HourRow,
    best_worst_conditions,
    calculate_dashboard_metrics,
    chart_data,
    performance_breakdown,
    performance_by_day_of_week,
    performance_by_hour,
)
from trade_assistant.config import AppConfig, load_config
from trade_assistant.exchange.binance_client import BinanceAuthError, BinanceClient, BinanceError
from trade_assistant.exchange.credentials import (
    CredentialCipher,
    CredentialError,
    validate_api_key,
    validate_api_secret,
)
from trade_assistant.journal.manual_trade import build_manual_trade
from trade_assistant.journal.schemas import (
    ManualTradeInput,
    NoteInput,
    RiskRule,
    Trade,
    TradeNote,
    TradeStatus,
    TradeWithNote,
    User,
)
from trade_assistant.journal.sqlite_store import JournalStore, TradeNotFoundError
from trade_assistant.monitor.alert_service import AlertService
from trade_assistant.risk.risk_rules import RiskEngine, RuleCheck
from trade_assistant.sync.trade_matcher import match_trades_and_calculate_pnl
from trade_assistant.sync.trade_sync import sync_trades

# ── Result Models ───────────────────────────────────────────────────────────


class ConnectionStatus(BaseModel):
    connected: bool
    message: str


class SyncReport(BaseModel):
    """Outcome of a manual or automatic sync."""

    success: bool = True
    synced: int = 0
    matched: int = 0
    errors: int = 0
    ai_analyzed: int = 0
    message: str = ""


class AutoSyncStatus(BaseModel):
    enabled: bool
    interval: int
    ai_analysis: bool
    last_sync_at: datetime | None = None


class TradeDetails(BaseModel):
    trade: Trade
    note: TradeNote | None = None
    ai_summary: TradeSummary | None = None


class RiskStatus(BaseModel):
    """Risk check result together with the block decision."""

    can_trade: bool
    blocked: bool
    reason: str | None = None
    checks: list[RuleCheck] = []
    warnings: list[str] = []


# ── TradeAssistant ──────────────────────────────────────────────────────────


class TradeAssistant:
    """Application service behind the CLI and the auto-sync scheduler.

    Usage:
        assistant = TradeAssistant.from_config(config)
        await assistant.connect("demo", api_key, api_secret)
        report = await assistant.sync("demo")
        print(report.message)
    """

    def __init__(
        self,
        config: AppConfig,
        store: JournalStore,
        cipher: CredentialCipher | None = None,
        llm: TextGenerator | None = None,
        alerts: AlertService | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self._cipher = cipher
        self._llm = llm
        self._alerts = alerts or AlertService(bot_token="", chat_id="")
        self._risk = RiskEngine(store, config.risk)

    @classmethod
    def from_config(cls, config: AppConfig) -> "TradeAssistant":
        """Build the assistant and its clients from config plus environment."""
        store = JournalStore(
            db_path=config.database.path,
            max_note_length=config.journal.max_note_length,
            max_tags_per_trade=config.journal.max_tags_per_trade,
        )

        cipher = None
        secret = os.getenv("ENCRYPTION_SECRET", "")
        if secret:
            cipher = CredentialCipher(secret, min_secret_length=config.security.min_secret_length)
        else:
            logger.warning("TradeAssistant: ENCRYPTION_SECRET not set, exchange access disabled")

        gemini_key = os.getenv("GEMINI_API_KEY", "")
        llm = GeminiClient.from_config(config.ai, gemini_key) if gemini_key else None

        alerts = AlertService(
            bot_token=os.getenv("TELEGRAM_BOT_TOKEN", ""),
            chat_id=os.getenv("TELEGRAM_CHAT_ID", ""),
        )
        return cls(config, store, cipher=cipher, llm=llm, alerts=alerts)

    def close(self) -> None:
        self.store.close()

    # ── Helpers ─────────────────────────────────────────────────────────

    def user(self, username: str) -> User:
        return self.store.get_or_create_user(
            username, auto_sync_interval=self.config.sync.default_interval_minutes
        )

    def _require_cipher(self) -> CredentialCipher:
        if self._cipher is None:
            raise CredentialError("ENCRYPTION_SECRET is not configured")
        return self._cipher

    def _require_llm(self) -> TextGenerator:
        if self._llm is None:
            raise RuntimeError("GEMINI_API_KEY is not configured")
        return self._llm

    def _client_for(self, user: User) -> BinanceClient:
        if not user.has_credentials:
            raise BinanceAuthError(
                "No API credentials found. Please connect to Binance first."
            )
        return BinanceClient.from_encrypted(
            self.config.exchange,
            self._require_cipher(),
            user.encrypted_api_key,
            user.encrypted_api_secret,
        )

    def _owned_trade(self, user: User, trade_id: int) -> Trade:
        trade = self.store.get_trade(trade_id, user_id=user.id)
        if trade is None:
            raise TradeNotFoundError(f"Trade {trade_id} not found")
        return trade

    # ── Exchange Account ────────────────────────────────────────────────

    async def connect(
        self,
        username: str,
        api_key: str,
        api_secret: str,
        use_testnet: bool | None = None,
    ) -> ConnectionStatus:
        """Validate, test and store a user's exchange credentials.

        Raises:
            CredentialError: Malformed key/secret or no encryption secret.
            BinanceAuthError: The exchange rejected the credentials.
        """
        if not validate_api_key(api_key):
            raise CredentialError("Invalid API key format")
        if not validate_api_secret(api_secret):
            raise CredentialError("Invalid API secret format")

        cipher = self._require_cipher()
        encrypted_key = cipher.encrypt(api_key)
        encrypted_secret = cipher.encrypt(api_secret)

        client = BinanceClient.from_config(
            self.config.exchange, api_key, api_secret, use_testnet=use_testnet
        )
        async with client:
            connected = await client.test_connection()
        if not connected:
            raise BinanceAuthError(
                "Failed to connect to Binance. Please check your API credentials."
            )

        user = self.user(username)
        self.store.update_credentials(user.id, encrypted_key, encrypted_secret)
        return ConnectionStatus(connected=True, message="Successfully connected to Binance")

    async def connection_status(self, username: str) -> ConnectionStatus:
        user = self.user(username)
        if not user.has_credentials:
            return ConnectionStatus(connected=False, message="No API credentials found")

        try:
            async with self._client_for(user) as client:
                connected = await client.test_connection()
        except (BinanceError, CredentialError) as e:
            logger.warning("TradeAssistant: connection check failed for {}: {}", username, e)
            return ConnectionStatus(connected=False, message="Invalid credentials")

        message = "Connected to Binance" if connected else "Connection test failed"
        return ConnectionStatus(connected=connected, message=message)

    # ── Sync ────────────────────────────────────────────────────────────

    async def sync(self, username: str, symbols: list[str] | None = None) -> SyncReport:
        """Fetch new fills for the given symbols, then recompute PnL."""
        user = self.user(username)
        symbols = symbols or self.config.sync.default_symbols

        async with self._client_for(user) as client:
            result = await sync_trades(
                client,
                self.store,
                user.id,
                symbols,
                limit=self.config.exchange.trade_fetch_limit,
            )
        matched = match_trades_and_calculate_pnl(self.store, user.id)
        self.store.mark_synced(user.id)

        return SyncReport(
            synced=result.synced,
            matched=matched,
            errors=result.errors,
            message=f"Synced {result.synced} new trades, matched {matched} trades",
        )

    async def auto_sync(self, username: str, now: datetime | None = None) -> SyncReport:
        """Sync the user's recently traded symbols with optional AI reviews.

        Sends a sync alert, then runs the risk rules and alerts on any block
        or near-limit warning.
        """
        user = self.user(username)
        if not user.auto_sync_enabled:
            return SyncReport(success=False, message="Auto-sync is disabled")
        user_id: int = user.id

        symbols = self.store.recent_symbols(
            user_id, self.config.sync.recent_symbol_limit
        ) or list(self.config.sync.auto_sync_fallback_symbols)

        async with self._client_for(user) as client:
            result = await sync_trades(
                client,
                self.store,
                user_id,
                symbols,
                limit=self.config.exchange.trade_fetch_limit,
            )
        matched = match_trades_and_calculate_pnl(self.store, user_id)

        ai_analyzed = 0
        if user.auto_ai_analysis and result.synced > 0 and self._llm is not None:
            for trade in self.store.get_recent_closed_trades(user_id, result.synced):
                try:
                    note = self.store.get_note(trade.id)
                    summary = await generate_trade_summary(self._llm, trade, note)
                    save_trade_summary(self.store, user_id, trade.id, summary)
                    ai_analyzed += 1
                except Exception as e:
                    logger.error("AutoSync: failed to analyze trade {}: {}", trade.id, e)

        self.store.mark_synced(user_id, now or datetime.now(timezone.utc))

        message = f"Synced {result.synced} new trades, matched {matched} trades"
        if ai_analyzed > 0:
            message += f", analyzed {ai_analyzed} trades with AI"

        await self._alerts.sync_completed(
            username, result.synced, matched, ai_analyzed=ai_analyzed, errors=result.errors
        )
        status = self.check_risk(username, now=now)
        if status.blocked:
            await self._alerts.risk_blocked(username, status.reason or "")
        else:
            await self._alerts.risk_warnings(username, status.warnings)

        return SyncReport(
            synced=result.synced,
            matched=matched,
            errors=result.errors,
            ai_analyzed=ai_analyzed,
            message=message,
        )

    async def report_error(self, message: str) -> bool:
        """Forward an operational failure to the alert channel."""
        return await self._alerts.system_error(message)

    def update_auto_sync_settings(
        self,
        username: str,
        enabled: bool,
        interval: int | None = None,
        ai_analysis: bool = False,
    ) -> AutoSyncStatus:
        user = self.user(username)
        updated = self.store.update_auto_sync_settings(
            user.id,
            enabled=enabled,
            interval=interval or self.config.sync.default_interval_minutes,
            ai_analysis=ai_analysis,
        )
        return self._auto_sync_status(updated)

    def auto_sync_status(self, username: str) -> AutoSyncStatus:
        return self._auto_sync_status(self.user(username))

    @staticmethod
    def _auto_sync_status(user: User) -> AutoSyncStatus:
        return AutoSyncStatus(
            enabled=user.auto_sync_enabled,
            interval=user.auto_sync_interval,
            ai_analysis=user.auto_ai_analysis,
            last_sync_at=user.last_sync_at,
        )

    # ── Journal ─────────────────────────────────────────────────────────

    def list_trades(
        self,
        username: str,
        status: TradeStatus | None = "CLOSED",
        symbol: str | None = None,
        limit: int = 50,
    ) -> list[TradeWithNote]:
        user = self.user(username)
        trades = self.store.list_trades(user.id, status=status, symbol=symbol, limit=limit)
        notes = self.store.get_notes_for_trades(t.id for t in trades if t.id is not None)
        return [TradeWithNote(trade=t, note=notes.get(t.id)) for t in trades]

    def trade_details(self, username: str, trade_id: int) -> TradeDetails:
        user = self.user(username)
        trade = self._owned_trade(user, trade_id)
        return TradeDetails(
            trade=trade,
            note=self.store.get_note(trade_id),
            ai_summary=get_trade_summary(self.store, user.id, trade_id),
        )

    def save_note(self, username: str, trade_id: int, note: NoteInput) -> TradeNote:
        """Create or replace the note on one of the user's trades."""
        user = self.user(username)
        self._owned_trade(user, trade_id)
        return self.store.upsert_note(trade_id, note)

    def create_manual_trade(self, username: str, data: ManualTradeInput) -> Trade:
        user = self.user(username)
        trade = build_manual_trade(user.id, data)
        trade.id = self.store.insert_trade(trade)
        logger.info(
            "Journal: manual {} {} trade {} recorded (PnL {:.2f})",
            trade.side,
            trade.symbol,
            trade.id,
            trade.pnl,
        )
        return trade

    # ── Analytics ───────────────────────────────────────────────────────

    def dashboard(self, username: str) -> DashboardMetrics:
        return calculate_dashboard_metrics(self.store, self.user(username).id)

    def breakdown(self, username: str, group_by: GroupBy) -> list[BreakdownRow]:
        return performance_breakdown(self.store, self.user(username).id, group_by)

    def by_hour(self, username: str) -> list[HourRow]:
        return performance_by_hour(self.store, self.user(username).id)

    def by_day_of_week(self, username: str) -> list[DayRow]:
        return performance_by_day_of_week(self.store, self.user(username).id)

    def conditions(self, username: str) -> BestWorstConditions:
        return best_worst_conditions(self.store, self.user(username).id)

    def chart(self, username: str, period: str = DEFAULT_CHART_PERIOD) -> ChartData:
        return chart_data(self.store, self.user(username).id, period)

    # ── Risk ────────────────────────────────────────────────────────────

    def check_risk(self, username: str, now: datetime | None = None) -> RiskStatus:
        user = self.user(username)
        self._risk.get_risk_rules(user.id)
        result = self._risk.check_all_risk_rules(user.id, now=now)
        block = self._risk.should_block_trade(result)
        return RiskStatus(
            can_trade=result.can_trade,
            blocked=block.blocked,
            reason=block.reason,
            checks=result.checks,
            warnings=result.warnings,
        )

    def risk_rules(self, username: str) -> list[RiskRule]:
        return self._risk.get_risk_rules(self.user(username).id)

    def update_risk_rule(
        self,
        username: str,
        rule_id: int,
        limit_value: float | None = None,
        is_active: bool | None = None,
    ) -> bool:
        return self._risk.update_risk_rule(
            rule_id, self.user(username).id, limit_value, is_active
        )

    # ── AI Reviews ──────────────────────────────────────────────────────

    async def summarize_trade(self, username: str, trade_id: int) -> TradeSummary:
        user = self.user(username)
        trade = self._owned_trade(user, trade_id)
        summary = await generate_trade_summary(
            self._require_llm(), trade, self.store.get_note(trade_id)
        )
        save_trade_summary(self.store, user.id, trade_id, summary)
        return summary

    async def detect_patterns(self, username: str, limit: int = 50) -> list[Pattern]:
        user = self.user(username)
        patterns = await detect_patterns(self.store, user.id, llm=self._llm, limit=limit)
        if patterns:
            save_patterns(self.store, user.id, patterns)
        return patterns

    async def weekly_report(self, username: str, now: datetime | None = None) -> WeeklyReport:
        """Generate, store and announce this week's coaching report."""
        user = self.user(username)
        report = await generate_weekly_report(
            self.store, self._require_llm(), user.id, now=now
        )
        save_weekly_report(self.store, user.id, report)
        await self._alerts.weekly_report_ready(
            username,
            report.summary.total_trades,
            report.summary.total_pnl,
            report.summary.win_rate,
            focus_areas=report.focus_areas,
        )
        return report

    def latest_weekly_report(self, username: str) -> WeeklyReport | None:
        return get_latest_weekly_report(self.store, self.user(username).id)

    def weekly_reports(self, username: str, limit: int = 10) -> list[WeeklyReport]:
        return get_all_weekly_reports(self.store, self.user(username).id, limit=limit)


# ── Scheduler Mode ──────────────────────────────────────────────────────────


async def _run_scheduler(assistant: TradeAssistant) -> None:
    """Run the auto-sync loop until SIGINT/SIGTERM."""
    from trade_assistant.scheduler.auto_sync import AutoSyncScheduler

    logger.info("TradeAssistant: starting in SCHEDULER mode (auto-sync loop)")
    scheduler = AutoSyncScheduler(
        assistant,
        assistant.store,
        poll_seconds=assistant.config.sync.scheduler_poll_seconds,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(scheduler.stop()))

    await scheduler.start()


# ── CLI ─────────────────────────────────────────────────────────────────────


def setup_logging(config: AppConfig) -> None:
    """Configure loguru logging from config."""
    log_dir = Path(config.logging.file).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    logger.remove()  # Remove default handler
    logger.add(
        sys.stderr,
        level=config.logging.level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level:8}</level> | {message}",
    )
    logger.add(
        config.logging.file,
        level=config.logging.level,
        rotation=config.logging.rotation,
        retention=config.logging.retention,
        encoding="utf-8",
    )


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        # pydantic's JSON encoder writes inf/nan (e.g. profit_factor) as null
        return json.loads(value.model_dump_json())
    if isinstance(value, list):
        return [_to_jsonable(v) for v in value]
    return value


def _print_json(value: Any) -> None:
    print(json.dumps(_to_jsonable(value), indent=2, ensure_ascii=False))


def _str_to_bool(value: str) -> bool:
    if value.lower() in ("1", "true", "yes", "on"):
        return True
    if value.lower() in ("0", "false", "no", "off"):
        return False
    raise argparse.ArgumentTypeError(f"Expected a boolean, got '{value}'")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="TradeAssistant: personal trading journal")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a config YAML merged over config/default.yaml",
    )
    parser.add_argument("--user", default="demo", help="Journal user (created on first use)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("connect", help="Store and test exchange API credentials")
    p.add_argument("--api-key", required=True)
    p.add_argument("--api-secret", required=True)
    p.add_argument("--testnet", type=_str_to_bool, default=None, help="Override network")

    sub.add_parser("status", help="Test the stored exchange connection")

    p = sub.add_parser("sync", help="Fetch new fills and recompute PnL")
    p.add_argument("--symbols", nargs="+", default=None)

    sub.add_parser("auto-sync", help="Run one auto-sync for the user")

    p = sub.add_parser("settings", help="Show or change auto-sync settings")
    p.add_argument("--enabled", type=_str_to_bool, default=None)
    p.add_argument("--interval", type=int, default=None, help="Minutes between syncs")
    p.add_argument("--ai-analysis", type=_str_to_bool, default=False)

    p = sub.add_parser("trades", help="List journal trades with notes")
    p.add_argument("--status", default="CLOSED", choices=["OPEN", "CLOSED", "CANCELLED", "ALL"])
    p.add_argument("--symbol", default=None)
    p.add_argument("--limit", type=int, default=50)

    p = sub.add_parser("trade", help="Show one trade with its note and AI summary")
    p.add_argument("trade_id", type=int)

    p = sub.add_parser("note", help="Create or replace a trade note")
    p.add_argument("trade_id", type=int)
    p.add_argument("--note", default=None)
    p.add_argument("--tags", nargs="*", default=[])
    p.add_argument("--setup", default=None)
    p.add_argument("--timeframe", default=None)
    p.add_argument("--error-type", default=None)
    p.add_argument("--screenshot-url", default=None)
    p.add_argument("--tradingview-link", default=None)

    p = sub.add_parser("manual-trade", help="Record a completed round trip by hand")
    p.add_argument("symbol")
    p.add_argument("side", choices=["BUY", "SELL"])
    p.add_argument("--entry", type=float, required=True)
    p.add_argument("--exit", type=float, required=True)
    p.add_argument("--quantity", type=float, required=True)
    p.add_argument("--commission", type=float, default=0.0)
    p.add_argument("--leverage", type=float, default=1.0)
    p.add_argument("--stop-loss", type=float, default=None)
    p.add_argument("--take-profit", type=float, default=None)

    sub.add_parser("dashboard", help="Headline performance metrics")

    p = sub.add_parser("breakdown", help="PnL grouped by a field")
    p.add_argument(
        "--by",
        default="setup",
        choices=["setup", "timeframe", "symbol", "error_type", "hour", "day", "conditions"],
    )

    p = sub.add_parser("chart", help="Daily PnL series and symbol performance")
    p.add_argument("--period", default=DEFAULT_CHART_PERIOD, choices=list(CHART_PERIODS))

    p = sub.add_parser("risk", help="Risk rules")
    risk_sub = p.add_subparsers(dest="risk_command", required=True)
    risk_sub.add_parser("check", help="Evaluate all active rules")
    risk_sub.add_parser("rules", help="List rules (defaults created on first use)")
    rp = risk_sub.add_parser("update", help="Change a rule's limit or active flag")
    rp.add_argument("rule_id", type=int)
    rp.add_argument("--limit", type=float, default=None)
    rp.add_argument("--active", type=_str_to_bool, default=None)

    p = sub.add_parser("summarize", help="AI review of one trade")
    p.add_argument("trade_id", type=int)

    p = sub.add_parser("patterns", help="Detect recurring mistakes and strong setups")
    p.add_argument("--limit", type=int, default=50)

    p = sub.add_parser("weekly-report", help="Generate or show weekly coaching reports")
    p.add_argument("--latest", action="store_true", help="Show the latest stored report")
    p.add_argument("--all", action="store_true", help="List stored reports")

    sub.add_parser("scheduler", help="Run the auto-sync loop until interrupted")
    return parser


async def _dispatch(assistant: TradeAssistant, args: argparse.Namespace) -> Any:
    user = args.user
    cmd = args.command

    if cmd == "connect":
        return await assistant.connect(user, args.api_key, args.api_secret, args.testnet)
    if cmd == "status":
        return await assistant.connection_status(user)
    if cmd == "sync":
        return await assistant.sync(user, args.symbols)
    if cmd == "auto-sync":
        return await assistant.auto_sync(user)
    if cmd == "settings":
        if args.enabled is None:
            return assistant.auto_sync_status(user)
        return assistant.update_auto_sync_settings(
            user, args.enabled, args.interval, args.ai_analysis
        )
    if cmd == "trades":
        status = None if args.status == "ALL" else args.status
        return assistant.list_trades(user, status=status, symbol=args.symbol, limit=args.limit)
    if cmd == "trade":
        return assistant.trade_details(user, args.trade_id)
    if cmd == "note":
        note = NoteInput(
            note=args.note,
            tags=args.tags,
            setup=args.setup,
            timeframe=args.timeframe,
            error_type=args.error_type,
            screenshot_url=args.screenshot_url,
            tradingview_link=args.tradingview_link,
        )
        return assistant.save_note(user, args.trade_id, note)
    if cmd == "manual-trade":
        data = ManualTradeInput(
            symbol=args.symbol,
            side=args.side,
            entry_price=args.entry,
            exit_price=args.exit,
            quantity=args.quantity,
            commission=args.commission,
            leverage=args.leverage,
            stop_loss=args.stop_loss,
            take_profit=args.take_profit,
        )
        return assistant.create_manual_trade(user, data)
    if cmd == "dashboard":
        return assistant.dashboard(user)
    if cmd == "breakdown":
        if args.by == "hour":
            return assistant.by_hour(user)
        if args.by == "day":
            return assistant.by_day_of_week(user)
        if args.by == "conditions":
            return assistant.conditions(user)
        return assistant.breakdown(user, args.by)
    if cmd == "chart":
        return assistant.chart(user, args.period)
    if cmd == "risk":
        if args.risk_command == "check":
            return assistant.check_risk(user)
        if args.risk_command == "rules":
            return assistant.risk_rules(user)
        updated = assistant.update_risk_rule(user, args.rule_id, args.limit, args.active)
        return {"updated": updated}
    if cmd == "summarize":
        return await assistant.summarize_trade(user, args.trade_id)
    if cmd == "patterns":
        return await assistant.detect_patterns(user, args.limit)
    if cmd == "weekly-report":
        if args.all:
            return assistant.weekly_reports(user)
        if args.latest:
            return assistant.latest_weekly_report(user)
        return await assistant.weekly_report(user)
    raise ValueError(f"Unknown command: {cmd}")


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    # Load environment variables
    load_dotenv()

    config = load_config(args.config)
    setup_logging(config)
    logger.debug("TradeAssistant v0.1.0, network={}", config.exchange.network)

    assistant = TradeAssistant.from_config(config)
    try:
        if args.command == "scheduler":
            asyncio.run(_run_scheduler(assistant))
            return 0
        _print_json(asyncio.run(_dispatch(assistant, args)))
        return 0
    except Exception as e:
        logger.error("TradeAssistant: {} failed: {}", args.command, e)
        _print_json({"error": str(e)})
        return 1
    finally:
        assistant.close()


if __name__ == "__main__":
    sys.exit(main())
