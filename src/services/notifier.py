"""
Telegram Notifier

HTML сообщения о новых сигналах, закрытиях и отчётах optimizer.
notify() никогда не бросает: False + лог при ошибке Telegram.
"""
from html import escape
from typing import Optional, Protocol, Union

from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError
from loguru import logger

from config.config import TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID
from src.core.enums import Direction, Tier
from src.services.consensus.models import ConsensusSignal
from src.services.portfolio.lifecycle import LifecycleEvent
from src.services.portfolio.models import Trade


class Notifier(Protocol):
    async def notify(self, text: str) -> bool: ...


def format_signal(signal: ConsensusSignal, trade: Optional[Trade] = None) -> str:
    medal = "🥇" if signal.tier is Tier.GOLD else "🥈"
    arrow = "🟢" if signal.direction is Direction.LONG else "🔴"
    lines = [
        f"{medal} <b>{signal.tier.value.upper()} {arrow} {signal.direction.value} {escape(signal.symbol)}</b>",
        f"Entry: <code>{signal.entry}</code>",
        f"Stop: <code>{signal.stop_loss}</code>",
        f"Target: <code>{signal.take_profit}</code>",
        f"R:R {signal.risk_reward:.2f} | Confidence {signal.confidence:.0f}%",
        f"AI: {escape(', '.join(signal.ai_sources))}",
    ]
    if trade is not None:
        lines.append(f"Size: {trade.size:.2f} USDT x{trade.leverage:g} (risk {trade.risk_pct:.1f}%)")
    if signal.reasons:
        lines.append("")
        lines.extend(f"• {escape(reason)}" for reason in signal.reasons[:5])
    return "\n".join(lines)


def format_event(tier: Union[Tier, str], event: LifecycleEvent) -> Optional[str]:
    """Только значимые события; stop_moved / entry_filled → None. tier - Tier или метка портфеля."""
    symbol = escape(event.symbol)
    label = (tier.value if isinstance(tier, Tier) else tier).upper()
    if event.kind == "partial_tp":
        return (
            f"🎯 <b>{label} {symbol}</b> TP{event.detail.get('level')} "
            f"@ <code>{event.price}</code> ({event.pnl:+.2f} USDT)"
        )
    if event.kind == "closed":
        result = event.detail.get("result", "")
        icon = "✅" if result == "WIN" else "❌"
        return (
            f"{icon} <b>{label} {symbol}</b> closed by {event.detail.get('reason')} "
            f"@ <code>{event.price}</code>\nTotal P&amp;L: {event.detail.get('total_pnl', event.pnl):+.2f} USDT"
        )
    if event.kind == "expired":
        return f"⏰ <b>{label} {symbol}</b> entry not reached in time, expired"
    return None


def format_report(report: str) -> str:
    return f"🧠 <b>Optimizer</b>\n<pre>{escape(report)}</pre>"


class TelegramNotifier:
    """aiogram Bot, lazy init."""

    def __init__(self, bot: Optional[Bot] = None, chat_id: str = TELEGRAM_CHAT_ID):
        self.bot = bot
        self.chat_id = chat_id
        self._own_bot = False

    @property
    def enabled(self) -> bool:
        return bool(self.chat_id) and (self.bot is not None or bool(TELEGRAM_BOT_TOKEN))

    def _get_bot(self) -> Bot:
        if self.bot is None:
            self.bot = Bot(
                token=TELEGRAM_BOT_TOKEN,
                default=DefaultBotProperties(parse_mode=ParseMode.HTML),
            )
            self._own_bot = True
        return self.bot

    async def notify(self, text: str) -> bool:
        if not self.enabled:
            logger.debug("Telegram not configured, notification skipped")
            return False
        try:
            await self._get_bot().send_message(chat_id=self.chat_id, text=text)
            return True
        except TelegramForbiddenError:
            logger.warning(f"Telegram: bot blocked in chat {self.chat_id}")
        except TelegramBadRequest as e:
            logger.error(f"Telegram bad request: {e}")
        except Exception as e:
            logger.error(f"Telegram send failed: {e}")
        return False

    async def close(self):
        if self._own_bot and self.bot:
            await self.bot.session.close()
            self.bot = None
            self._own_bot = False
