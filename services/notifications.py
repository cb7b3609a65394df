"""Доставка событий торгов пользователям Telegram"""
from typing import Iterable
import logging

from aiogram import Bot, html
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services import history
from services.events import (
    ADMIN_ROOM,
    AuctionEnded,
    AuctionUpdated,
    BidPlaced,
    Event,
    Outbid,
    SellerNotification,
)
from services.user import get_telegram_ids

logger = logging.getLogger(__name__)


def format_event_text(event: Event) -> str:
    """Текст уведомления для события"""
    auction = event.auction
    # Сообщения уходят в режиме HTML
    title = html.quote(auction.title)
    if isinstance(event, BidPlaced):
        return (
            f"💰 Новая ставка на «{title}»\n"
            f"Текущая цена: {auction.current_bid:,}\n"
            f"Минимальная следующая ставка: {auction.minimum_next_bid:,}"
        )
    if isinstance(event, Outbid):
        return (
            f"⚡️ Вашу ставку перебили на «{title}»\n"
            f"Текущая цена: {auction.current_bid:,}\n"
            f"Чтобы вернуть лидерство, поставьте от {auction.minimum_next_bid:,}"
        )
    if isinstance(event, SellerNotification):
        return (
            "🔔 Новая ставка по вашему лоту!\n\n"
            f"Товар: {title}\n"
            f"Сумма ставки: {event.bid.amount:,}\n"
            f"Текущая цена: {auction.current_bid:,}"
        )
    if isinstance(event, AuctionEnded):
        if event.winner_id is None:
            return (
                f"🏁 Аукцион «{title}» завершен без победителя\n"
                f"Ставок: {auction.total_bids}"
            )
        return (
            f"🏁 Аукцион «{title}» завершен\n"
            f"Итоговая цена: {auction.current_bid:,}\n"
            f"Ставок: {auction.total_bids}"
        )
    if isinstance(event, AuctionUpdated):
        return f"ℹ️ Аукцион «{title}»: статус {auction.status}"
    return f"Аукцион {event.auction_id}: {event.type.value}"


class TelegramNotifier:
    """Подписчик EventPublisher, отправляющий события в личные сообщения"""

    def __init__(
        self,
        bot: Bot,
        session_maker: async_sessionmaker[AsyncSession],
        admin_chat_ids: Iterable[int] = ()
    ):
        self.bot = bot
        self.session_maker = session_maker
        self.admin_chat_ids = list(admin_chat_ids)

    async def __call__(self, room: str, event: Event) -> None:
        chat_ids = await self._resolve_chats(room, event)
        if not chat_ids:
            return

        text = format_event_text(event)
        for chat_id in chat_ids:
            try:
                await self.bot.send_message(chat_id=chat_id, text=text)
            except Exception as e:
                logger.error(f"Ошибка отправки уведомления {event.type.value} в чат {chat_id}: {e}")

    async def _resolve_chats(self, room: str, event: Event) -> list[int]:
        if room == ADMIN_ROOM:
            return self.admin_chat_ids

        kind, _, raw_id = room.partition("_")
        async with self.session_maker() as session:
            if kind == "user":
                user_ids = [int(raw_id)]
            elif kind == "auction":
                # Наблюдатели, кроме участника, сделавшего ставку (ему ответит бот)
                user_ids = await history.get_watchers(session, int(raw_id))
                if isinstance(event, BidPlaced):
                    user_ids = [u for u in user_ids if u != event.bid.bidder_id]
            else:
                logger.debug(f"Неизвестная комната {room}")
                return []
            telegram_ids = await get_telegram_ids(session, user_ids)
        return [telegram_ids[u] for u in user_ids if u in telegram_ids]
