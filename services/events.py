"""Доменные события торгов и их рассылка подписчикам.

Рассылка - побочный канал уведомлений: ошибка подписчика логируется и
никогда не откатывает уже зафиксированное изменение. События одного
аукциона доставляются в том порядке, в котором были зафиксированы.
"""
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional, Union
import enum
import inspect
import logging

from services.results import AuctionSnapshot, BidAccepted, BidSnapshot

logger = logging.getLogger(__name__)

ADMIN_ROOM = "admin"


def auction_room(auction_id: int) -> str:
    """Комната наблюдателей аукциона"""
    return f"auction_{auction_id}"


def user_room(user_id: int) -> str:
    """Личный канал пользователя"""
    return f"user_{user_id}"


class EventType(str, enum.Enum):
    """Тип события"""
    BID_PLACED = "bid_placed"
    OUTBID = "outbid"
    AUCTION_ENDED = "auction_ended"
    AUCTION_UPDATED = "auction_updated"
    SELLER_NOTIFICATION = "seller_notification"


@dataclass(frozen=True)
class BidPlaced:
    auction_id: int
    bid: BidSnapshot
    auction: AuctionSnapshot
    type: EventType = EventType.BID_PLACED


@dataclass(frozen=True)
class Outbid:
    auction_id: int
    displaced_bidder_id: int
    new_bid: BidSnapshot
    auction: AuctionSnapshot
    type: EventType = EventType.OUTBID


@dataclass(frozen=True)
class AuctionEnded:
    auction_id: int
    winner_id: Optional[int]
    auction: AuctionSnapshot
    type: EventType = EventType.AUCTION_ENDED


@dataclass(frozen=True)
class AuctionUpdated:
    auction_id: int
    auction: AuctionSnapshot
    type: EventType = EventType.AUCTION_UPDATED


@dataclass(frozen=True)
class SellerNotification:
    auction_id: int
    seller_id: int
    bid: BidSnapshot
    auction: AuctionSnapshot
    type: EventType = EventType.SELLER_NOTIFICATION


Event = Union[BidPlaced, Outbid, AuctionEnded, AuctionUpdated, SellerNotification]
Handler = Callable[[str, Event], Union[Awaitable[Any], Any]]


@dataclass(frozen=True)
class Envelope:
    """Событие с адресом доставки"""
    room: str
    event: Event


def bid_placed_envelopes(accepted: BidAccepted, outbid: Iterable[int]) -> list[Envelope]:
    """События после принятой ставки: наблюдателям, перебитым участникам и продавцу"""
    auction = accepted.auction
    winning_bid = accepted.winning_bid
    envelopes = [
        Envelope(auction_room(auction.id), BidPlaced(auction.id, winning_bid, auction)),
    ]
    for bidder_id in outbid:
        if bidder_id is None or bidder_id == auction.leader_id:
            continue
        envelopes.append(Envelope(
            user_room(bidder_id),
            Outbid(auction.id, bidder_id, winning_bid, auction)
        ))
    envelopes.append(Envelope(
        user_room(auction.seller_id),
        SellerNotification(auction.id, auction.seller_id, accepted.bid, auction)
    ))
    return envelopes


def auction_ended_envelopes(auction: AuctionSnapshot) -> list[Envelope]:
    """События завершения: наблюдателям, победителю, продавцу и администраторам"""
    event = AuctionEnded(auction.id, auction.winner_id, auction)
    rooms = [auction_room(auction.id)]
    if auction.winner_id is not None:
        rooms.append(user_room(auction.winner_id))
    rooms.append(user_room(auction.seller_id))
    rooms.append(ADMIN_ROOM)
    return [Envelope(room, event) for room in rooms]


def auction_updated_envelopes(auction: AuctionSnapshot) -> list[Envelope]:
    event = AuctionUpdated(auction.id, auction)
    return [Envelope(auction_room(auction.id), event), Envelope(ADMIN_ROOM, event)]


class EventPublisher:
    """Рассылка событий подписчикам комнат"""

    def __init__(self):
        # room=None - подписчик получает события всех комнат
        self._subscribers: list[tuple[Optional[str], Handler]] = []
        self._outboxes: dict[int, deque[Envelope]] = {}
        self._draining: set[int] = set()

    def subscribe(self, handler: Handler, room: Optional[str] = None) -> None:
        self._subscribers.append((room, handler))

    def unsubscribe(self, handler: Handler, room: Optional[str] = None) -> None:
        try:
            self._subscribers.remove((room, handler))
        except ValueError:
            pass

    def enqueue(self, auction_id: int, envelopes: Iterable[Envelope]) -> None:
        """Поставить события в очередь аукциона.

        Вызывается под блокировкой аукциона, поэтому порядок очереди совпадает
        с порядком фиксации. Доставка - отдельно, через flush().
        """
        self._outboxes.setdefault(auction_id, deque()).extend(envelopes)

    async def flush(self, auction_id: int) -> None:
        """Доставить накопленные события аукциона по порядку"""
        # Очередь уже разбирает другой вызов; он доставит и наши события
        if auction_id in self._draining:
            return
        self._draining.add(auction_id)
        try:
            outbox = self._outboxes.get(auction_id)
            while outbox:
                await self._deliver(outbox.popleft())
        finally:
            self._draining.discard(auction_id)
            if not self._outboxes.get(auction_id):
                self._outboxes.pop(auction_id, None)

    async def publish(self, room: str, event: Event) -> None:
        """Доставить одно событие сразу, минуя очередь аукциона"""
        await self._deliver(Envelope(room, event))

    async def _deliver(self, envelope: Envelope) -> None:
        for room, handler in list(self._subscribers):
            if room is not None and room != envelope.room:
                continue
            try:
                result = handler(envelope.room, envelope.event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Ошибка доставки события {envelope.event.type.value} "
                    f"в {envelope.room}: {e!r}"
                )
