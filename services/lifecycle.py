"""Жизненный цикл аукциона: черновик -> активен -> завершен / отменен"""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional, Union
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from database.models.auction import AUCTION_TRANSITIONS, Auction, AuctionStatus
from services.events import EventPublisher, Envelope, auction_ended_envelopes, auction_updated_envelopes
from services.locks import AuctionBusy, AuctionLocks
from services.results import (
    AuctionResult,
    AuctionSnapshot,
    Rejection,
    RejectionReason,
    StorageFailure,
    utcnow,
)
from services.store import AuctionStore
from services.validator import parse_amount

logger = logging.getLogger(__name__)

Outcome = Union[Rejection, tuple[AuctionSnapshot, list[Envelope]]]


def _busy() -> Rejection:
    return Rejection(RejectionReason.BUSY, "Аукцион сейчас занят, попробуйте еще раз")


def _not_found() -> Rejection:
    return Rejection(RejectionReason.AUCTION_NOT_FOUND, "Аукцион не найден")


class AuctionLifecycle:
    """Переходы статусов аукциона под той же блокировкой, что и прием ставок"""

    def __init__(
        self,
        store: AuctionStore,
        publisher: EventPublisher,
        locks: AuctionLocks,
        default_bid_increment: Decimal = Decimal("1.00"),
        default_duration: timedelta = timedelta(hours=2),
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.publisher = publisher
        self.locks = locks
        self.default_bid_increment = default_bid_increment
        self.default_duration = default_duration
        self.clock = clock

    async def create_auction(
        self,
        seller_id: int,
        title: str,
        starting_price: Decimal,
        end_time: Optional[datetime] = None,
        start_time: Optional[datetime] = None,
        reserve_price: Optional[Decimal] = None,
        bid_increment: Optional[Decimal] = None,
        description: Optional[str] = None
    ) -> AuctionResult:
        """Создать аукцион в статусе черновика"""
        start_time = start_time or self.clock()
        end_time = end_time or start_time + self.default_duration
        if bid_increment is None:
            bid_increment = self.default_bid_increment

        prices = {"Начальная цена": starting_price, "Шаг ставки": bid_increment}
        if reserve_price is not None:
            prices["Резервная цена"] = reserve_price
        for label, raw in prices.items():
            parsed = parse_amount(raw)
            if isinstance(parsed, Rejection):
                return Rejection(RejectionReason.INVALID_AUCTION, f"{label}: {parsed.message}")
            prices[label] = parsed
        starting_price = prices["Начальная цена"]
        bid_increment = prices["Шаг ставки"]
        reserve_price = prices.get("Резервная цена")

        if end_time <= start_time:
            return Rejection(RejectionReason.INVALID_AUCTION, "Время окончания должно быть позже начала")

        async def _create(session: AsyncSession) -> AuctionSnapshot:
            auction = await self.store.add_auction(session, Auction(
                seller_id=seller_id,
                title=title,
                description=description,
                starting_price=starting_price,
                reserve_price=reserve_price,
                current_bid=starting_price,
                bid_increment=bid_increment,
                start_time=start_time,
                end_time=end_time,
                status=AuctionStatus.DRAFT.value,
                total_bids=0,
            ))
            return AuctionSnapshot.from_model(auction)

        snapshot = await self.store.run_in_transaction(_create)
        logger.info(f"Аукцион {snapshot.id} создан продавцом {seller_id}")
        return snapshot

    async def activate(self, auction_id: int, seller_id: int) -> AuctionResult:
        """Запустить аукцион (только владелец и только из черновика)"""
        return await self._transition(auction_id, self._activate, seller_id)

    async def cancel_auction(self, auction_id: int, actor_id: int, is_admin: bool = False) -> AuctionResult:
        """Отменить аукцион (владелец или администратор); ставки остаются в истории"""
        return await self._transition(auction_id, self._cancel, actor_id, is_admin)

    async def end_auction(self, auction_id: int) -> AuctionResult:
        """Завершить аукцион и определить победителя.

        Повторный вызов для уже завершенного аукциона ничего не меняет и
        возвращает сохраненную запись.
        """
        return await self._transition(auction_id, self._end)

    async def end_expired_auctions(self) -> list[AuctionSnapshot]:
        """Завершить все активные аукционы с истекшим временем.

        Безопасно вызывать параллельно и повторно: каждый аукцион завершается
        под своей блокировкой, а уже завершенные пропускаются.
        """
        async with self.store.session() as session:
            expired_ids = await self.store.list_expired_auction_ids(session, self.clock())

        finished = []
        for auction_id in expired_ids:
            try:
                async with self.locks.hold(auction_id):
                    outcome = await self.store.run_in_transaction(self._end, auction_id)
                    if isinstance(outcome, Rejection):
                        logger.debug(f"Аукцион {auction_id} пропущен: {outcome.reason.value}")
                        continue
                    snapshot, envelopes = outcome
                    # Пустой список событий: аукцион уже завершил кто-то другой
                    if not envelopes:
                        continue
                    self.publisher.enqueue(auction_id, envelopes)
            except AuctionBusy:
                logger.warning(f"Аукцион {auction_id} занят, завершим при следующей проверке")
                continue
            except StorageFailure as e:
                logger.error(f"Ошибка при завершении аукциона {auction_id}: {e}")
                continue

            finished.append(snapshot)
            await self.publisher.flush(auction_id)

        if finished:
            logger.info(f"Завершено аукционов: {len(finished)}")
        return finished

    async def _transition(self, auction_id: int, operation: Callable, *args) -> AuctionResult:
        try:
            async with self.locks.hold(auction_id):
                outcome = await self.store.run_in_transaction(operation, auction_id, *args)
                if isinstance(outcome, Rejection):
                    return outcome
                snapshot, envelopes = outcome
                self.publisher.enqueue(auction_id, envelopes)
        except AuctionBusy:
            return _busy()

        await self.publisher.flush(auction_id)
        return snapshot

    async def _activate(self, session: AsyncSession, auction_id: int, seller_id: int) -> Outcome:
        auction = await self.store.get_auction(session, auction_id)
        if not auction:
            return _not_found()
        if auction.seller_id != seller_id:
            return Rejection(RejectionReason.NOT_AUCTION_OWNER, "Запустить аукцион может только его продавец")
        if auction.status != AuctionStatus.DRAFT.value:
            return Rejection(RejectionReason.AUCTION_NOT_ACTIVE, "Аукцион уже запущен или завершен")
        if AuctionSnapshot.from_model(auction).end_time <= self.clock():
            return Rejection(RejectionReason.AUCTION_ENDED, "Время аукциона уже истекло")

        updated = await self._set_status(session, auction, AuctionStatus.ACTIVE)
        snapshot = AuctionSnapshot.from_model(updated)
        logger.info(f"Аукцион {auction_id} запущен")
        return snapshot, auction_updated_envelopes(snapshot)

    async def _cancel(self, session: AsyncSession, auction_id: int, actor_id: int, is_admin: bool) -> Outcome:
        auction = await self.store.get_auction(session, auction_id)
        if not auction:
            return _not_found()
        if auction.seller_id != actor_id and not is_admin:
            return Rejection(RejectionReason.NOT_AUCTION_OWNER, "Отменить аукцион может только продавец или администратор")
        if AuctionStatus.CANCELLED not in AUCTION_TRANSITIONS[AuctionStatus(auction.status)]:
            return Rejection(RejectionReason.AUCTION_NOT_ACTIVE, "Завершенный аукцион нельзя отменить")

        updated = await self._set_status(session, auction, AuctionStatus.CANCELLED, finished_at=self.clock())
        snapshot = AuctionSnapshot.from_model(updated)
        logger.info(f"Аукцион {auction_id} отменен пользователем {actor_id}")
        return snapshot, auction_updated_envelopes(snapshot)

    async def _end(self, session: AsyncSession, auction_id: int) -> Outcome:
        auction = await self.store.get_auction(session, auction_id)
        if not auction:
            return _not_found()
        if auction.status == AuctionStatus.COMPLETED.value:
            return AuctionSnapshot.from_model(auction), []
        if auction.status != AuctionStatus.ACTIVE.value:
            return Rejection(RejectionReason.AUCTION_NOT_ACTIVE, "Аукцион не активен")

        # Победитель - автор самой высокой ставки, если она достигла резервной цены
        winner_id = None
        highest = await self.store.get_highest_bid(session, auction_id)
        if highest and (auction.reserve_price is None or highest.amount >= auction.reserve_price):
            winner_id = highest.bidder_id

        updated = await self._set_status(
            session, auction, AuctionStatus.COMPLETED,
            winner_id=winner_id,
            finished_at=self.clock(),
        )
        snapshot = AuctionSnapshot.from_model(updated)
        logger.info(f"Аукцион {auction_id} завершен. Победитель: {winner_id}")
        return snapshot, auction_ended_envelopes(snapshot)

    async def _set_status(self, session: AsyncSession, auction: Auction, status: AuctionStatus, **values) -> Auction:
        current = AuctionStatus(auction.status)
        if status not in AUCTION_TRANSITIONS[current]:
            raise ValueError(f"Недопустимый переход {current.value} -> {status.value}")
        return await self.store.update_auction_atomic(
            session,
            auction.id,
            {"status": status.value, **values},
            expected_status=current,
        )
