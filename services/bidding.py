"""Сервис приема ставок"""
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Union
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from database.models.auction import Auction
from database.models.bid import Bid
from services import history
from services.events import EventPublisher, bid_placed_envelopes
from services.locks import AuctionBusy, AuctionLocks
from services.resolver import resolve_auto_bids
from services.results import (
    AuctionSnapshot,
    BidAccepted,
    BidResult,
    BidSnapshot,
    Rejection,
    RejectionReason,
    utcnow,
)
from services.store import AuctionStore
from services.validator import CandidateBid, parse_amount, validate_bid

logger = logging.getLogger(__name__)

# IP для ставок, которые система делает от имени участника
SYSTEM_BID_IP = "127.0.0.1"

Amount = Union[Decimal, int, str]


class BidAdmissionService:
    """Прием ставок: проверка, автоставки, запись и уведомления.

    Шаги от чтения аукциона до записи выполняются под блокировкой аукциона.
    События рассылаются уже после ее снятия.
    """

    def __init__(
        self,
        store: AuctionStore,
        publisher: EventPublisher,
        locks: AuctionLocks,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.publisher = publisher
        self.locks = locks
        self.clock = clock

    async def place_bid(
        self,
        auction_id: int,
        bidder_id: int,
        amount: Amount,
        is_auto_bid: bool = False,
        max_auto_bid: Optional[Amount] = None,
        ip_address: Optional[str] = None
    ) -> BidResult:
        """Сделать ставку; ожидаемые отказы возвращаются как Rejection"""
        # Сумма проверяется до блокировки: такие отказы не зависят от состояния аукциона
        value = parse_amount(amount)
        if isinstance(value, Rejection):
            logger.info(f"Ставка {amount!r} на аукцион {auction_id} отклонена: {value.message}")
            return value

        # Потолок без флага автоставки не используется
        ceiling = None
        if is_auto_bid and max_auto_bid is not None:
            ceiling = parse_amount(max_auto_bid)
            if isinstance(ceiling, Rejection):
                logger.info(f"Автоставка {max_auto_bid!r} на аукцион {auction_id} отклонена: {ceiling.message}")
                return ceiling

        candidate = CandidateBid(
            bidder_id=bidder_id,
            amount=value,
            is_auto_bid=is_auto_bid,
            max_auto_bid=ceiling,
        )

        try:
            async with self.locks.hold(auction_id):
                outcome = await self.store.run_in_transaction(
                    self._admit, auction_id, candidate, ip_address
                )
                if isinstance(outcome, Rejection):
                    logger.info(
                        f"Ставка {candidate.amount} на аукцион {auction_id} отклонена: {outcome.reason.value}"
                    )
                    return outcome
                accepted, outbid = outcome
                self.publisher.enqueue(auction_id, bid_placed_envelopes(accepted, outbid))
        except AuctionBusy:
            return Rejection(
                RejectionReason.BUSY,
                "Аукцион сейчас обрабатывает другую ставку, попробуйте еще раз"
            )

        logger.info(
            f"Ставка {candidate.amount} на аукцион {auction_id} принята. "
            f"Цена: {accepted.auction.current_bid}, лидер: {accepted.leader_id}"
        )
        await self.publisher.flush(auction_id)
        return accepted

    async def _admit(
        self,
        session: AsyncSession,
        auction_id: int,
        candidate: CandidateBid,
        ip_address: Optional[str]
    ) -> Union[Rejection, tuple[BidAccepted, list[int]]]:
        auction = await self.store.get_auction(session, auction_id)
        if not auction:
            return Rejection(RejectionReason.AUCTION_NOT_FOUND, "Аукцион не найден")

        before = AuctionSnapshot.from_model(auction)
        now = self.clock()
        verdict = validate_bid(before, candidate, now)
        if isinstance(verdict, Rejection):
            return verdict

        proxies = await self.store.list_outstanding_auto_bids(
            session, auction_id, excluding_bidder=candidate.bidder_id
        )
        resolution = resolve_auto_bids(
            candidate.bidder_id,
            candidate.amount,
            before.bid_increment,
            proxies,
            max_auto_bid=candidate.max_auto_bid,
            placed_at=now,
        )

        bid = await self.store.insert_bid(session, Bid(
            auction_id=auction_id,
            bidder_id=candidate.bidder_id,
            amount=candidate.amount,
            is_auto_bid=candidate.is_auto_bid,
            max_auto_bid=candidate.max_auto_bid,
            created_at=now,
            ip_address=ip_address,
        ))
        auto_bids = []
        for step in resolution.auto_bids:
            auto_bids.append(await self.store.insert_bid(session, Bid(
                auction_id=auction_id,
                bidder_id=step.bidder_id,
                amount=step.amount,
                is_auto_bid=True,
                max_auto_bid=step.max_auto_bid,
                created_at=now,
                ip_address=SYSTEM_BID_IP,
            )))
            logger.debug(f"Аукцион {auction_id}: автоставка {step.amount} от {step.bidder_id}")

        updated = await self.store.update_auction_atomic(
            session,
            auction_id,
            {
                "current_bid": resolution.current_bid,
                "leader_id": resolution.leader_id,
                "total_bids": Auction.total_bids + 1 + len(auto_bids),
            },
            expected_current_bid=before.current_bid,
        )

        after = AuctionSnapshot.from_model(updated)
        accepted = BidAccepted(
            bid=BidSnapshot.from_model(bid),
            auction=after,
            auto_bids=tuple(BidSnapshot.from_model(b) for b in auto_bids),
            reserve_met=after.reserve_met,
        )
        outbid = [before.leader_id, *resolution.outbid]
        if verdict.below_reserve:
            logger.debug(f"Аукцион {auction_id}: ставка {candidate.amount} ниже резервной цены")
        return accepted, [b for b in dict.fromkeys(outbid) if b is not None and b != resolution.leader_id]

    async def get_highest_bid(self, auction_id: int) -> Optional[BidSnapshot]:
        async with self.store.session() as session:
            return await history.get_highest_bid(session, auction_id)

    async def get_bid_statistics(self, auction_id: int) -> history.BidStatistics:
        async with self.store.session() as session:
            return await history.get_bid_statistics(session, auction_id)

    async def is_highest_bidder(self, auction_id: int, user_id: int) -> bool:
        async with self.store.session() as session:
            return await history.is_highest_bidder(session, auction_id, user_id)
