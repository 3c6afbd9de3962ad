"""
Telegram alert service for journal events.

Sends short HTML messages when a sync finishes, when risk rules block
trading or approach their limits, and when a weekly report is ready.
Without a bot token and chat id every method is a logged no-op.

Usage:
    alerts = AlertService(bot_token="123:ABC", chat_id="-100123")
    await alerts.risk_blocked("demo", "Trading blocked due to risk rule violations: ...")
"""

import httpx
from loguru import logger


class AlertService:
    """Sends journal alerts via Telegram Bot API.

    Usage:
        alerts = AlertService(bot_token="123:ABC", chat_id="-100123")
        await alerts.send("🔴 Daily loss limit reached")
        await alerts.sync_completed("demo", synced=4, matched=2)
    """

    TELEGRAM_API = "https://api.telegram.org"

    def __init__(self, bot_token: str, chat_id: str) -> None:
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._enabled = bool(bot_token and chat_id)

        if not self._enabled:
            logger.warning("AlertService: Telegram not configured (missing bot_token or chat_id)")

    @property
    def enabled(self) -> bool:
        return self._enabled

    # ── Core Send ───────────────────────────────────────────────────────

    async def send(self, message: str) -> bool:
        """Send a text message via Telegram.

        Returns True if sent successfully, False otherwise.
        """
        if not self._enabled:
            logger.debug("AlertService: skipping (not configured): {}", message[:80])
            return False

        url = f"{self.TELEGRAM_API}/bot{self._bot_token}/sendMessage"
        payload = {
            "chat_id": self._chat_id,
            "text": message,
            "parse_mode": "HTML",
        }

        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.post(url, json=payload)
                if response.status_code == 200:
                    return True
                logger.error(
                    "AlertService: Telegram API error {}: {}",
                    response.status_code,
                    response.text[:200],
                )
                return False
        except httpx.HTTPError as e:
            logger.error("AlertService: failed to send Telegram message: {}", e)
            return False

    # ── Sync ────────────────────────────────────────────────────────────

    async def sync_completed(
        self,
        username: str,
        synced: int,
        matched: int,
        ai_analyzed: int = 0,
        errors: int = 0,
    ) -> bool:
        """Report a finished sync. Nothing is sent when nothing changed."""
        if synced == 0 and errors == 0:
            return False
        emoji = "🔄" if errors == 0 else "⚠️"
        lines = [
            f"{emoji} <b>[{username}] Trades Synced</b>",
            f"• New trades: {synced}",
            f"• Matched: {matched}",
        ]
        if ai_analyzed:
            lines.append(f"• AI reviews: {ai_analyzed}")
        if errors:
            lines.append(f"• Errors: {errors}")
        return await self.send("\n".join(lines))

    # ── Risk ────────────────────────────────────────────────────────────

    async def risk_blocked(self, username: str, reason: str) -> bool:
        msg = f"🚫 <b>[{username}] Trading Blocked</b>\n• {reason}"
        return await self.send(msg)

    async def risk_warnings(self, username: str, warnings: list[str]) -> bool:
        if not warnings:
            return False
        lines = [f"🟡 <b>[{username}] Risk Warnings</b>"]
        lines.extend(f"• {w}" for w in warnings)
        return await self.send("\n".join(lines))

    # ── Reports ─────────────────────────────────────────────────────────

    async def weekly_report_ready(
        self,
        username: str,
        total_trades: int,
        total_pnl: float,
        win_rate: float,
        focus_areas: list[str] | None = None,
    ) -> bool:
        emoji = "📊" if total_pnl >= 0 else "📉"
        lines = [
            f"{emoji} <b>[{username}] Weekly Report</b>",
            f"• Trades: {total_trades}",
            f"• PnL: {total_pnl:+.2f} USDT",
            f"• Win rate: {win_rate:.1f}%",
        ]
        if focus_areas:
            lines.append(f"• Focus: {', '.join(focus_areas)}")
        return await self.send("\n".join(lines))

    async def system_error(self, error_msg: str) -> bool:
        msg = f"💀 <b>System Error</b>\n<code>{error_msg[:500]}</code>"
        return await self.send(msg)
