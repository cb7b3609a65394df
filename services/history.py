"""Чтение истории ставок, статистики и списка наблюдения"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Generic, Optional, TypeVar
import math

from sqlalchemy import delete, distinct, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database.models.auction import Auction, AuctionStatus
from database.models.bid import Bid
from database.models.watchlist import WatchlistEntry
from services.results import AuctionSnapshot, BidSnapshot

T = TypeVar("T")

CENT = Decimal("0.01")


@dataclass(frozen=True)
class Page(Generic[T]):
    """Страница результатов"""
    items: list[T]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass(frozen=True)
class BidStatistics:
    """Статистика ставок по аукциону"""
    count: int = 0
    unique_bidders: int = 0
    average: Decimal = field(default_factory=lambda: Decimal("0"))
    lowest: Decimal = field(default_factory=lambda: Decimal("0"))
    highest: Decimal = field(default_factory=lambda: Decimal("0"))


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


async def get_highest_bid(session: AsyncSession, auction_id: int) -> Optional[BidSnapshot]:
    """Получить самую высокую ставку"""
    result = await session.execute(
        select(Bid)
        .where(Bid.auction_id == auction_id)
        .order_by(Bid.amount.desc(), Bid.created_at.asc(), Bid.id.asc())
        .limit(1)
    )
    bid = result.scalar_one_or_none()
    return BidSnapshot.from_model(bid) if bid else None


async def is_highest_bidder(session: AsyncSession, auction_id: int, user_id: int) -> bool:
    """Является ли пользователь автором самой высокой ставки"""
    highest = await get_highest_bid(session, auction_id)
    return highest is not None and highest.bidder_id == user_id


async def get_bid_statistics(session: AsyncSession, auction_id: int) -> BidStatistics:
    """Количество ставок, участников, средняя, минимальная и максимальная ставка"""
    result = await session.execute(
        select(
            func.count(Bid.id),
            func.count(distinct(Bid.bidder_id)),
            func.avg(Bid.amount),
            func.min(Bid.amount),
            func.max(Bid.amount),
        ).where(Bid.auction_id == auction_id)
    )
    count, unique_bidders, average, lowest, highest = result.one()
    if not count:
        return BidStatistics()
    return BidStatistics(
        count=count,
        unique_bidders=unique_bidders,
        average=_money(average),
        lowest=_money(lowest),
        highest=_money(highest),
    )


async def get_auction_bids(
    session: AsyncSession,
    auction_id: int,
    page: int = 1,
    limit: int = 20
) -> Page[BidSnapshot]:
    """История ставок аукциона, сначала новые"""
    total = (await session.execute(
        select(func.count(Bid.id)).where(Bid.auction_id == auction_id)
    )).scalar_one()
    result = await session.execute(
        select(Bid)
        .where(Bid.auction_id == auction_id)
        .order_by(Bid.created_at.desc(), Bid.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [BidSnapshot.from_model(b) for b in result.scalars().all()]
    return Page(items=items, page=page, limit=limit, total=total)


async def get_user_bids(
    session: AsyncSession,
    user_id: int,
    page: int = 1,
    limit: int = 20
) -> Page[BidSnapshot]:
    """Все ставки пользователя, сначала новые"""
    total = (await session.execute(
        select(func.count(Bid.id)).where(Bid.bidder_id == user_id)
    )).scalar_one()
    result = await session.execute(
        select(Bid)
        .where(Bid.bidder_id == user_id)
        .order_by(Bid.created_at.desc(), Bid.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [BidSnapshot.from_model(b) for b in result.scalars().all()]
    return Page(items=items, page=page, limit=limit, total=total)


async def get_user_active_bids(
    session: AsyncSession,
    user_id: int,
    now: Optional[datetime] = None
) -> list[BidSnapshot]:
    """Ставки пользователя на аукционах, которые еще идут"""
    now = now or datetime.now(timezone.utc)
    result = await session.execute(
        select(Bid)
        .join(Auction, Auction.id == Bid.auction_id)
        .where(
            Bid.bidder_id == user_id,
            Auction.status == AuctionStatus.ACTIVE.value,
            Auction.end_time > now
        )
        .order_by(Bid.created_at.desc(), Bid.id.desc())
    )
    return [BidSnapshot.from_model(b) for b in result.scalars().all()]


async def get_user_won_auctions(
    session: AsyncSession,
    user_id: int,
    page: int = 1,
    limit: int = 10
) -> Page[AuctionSnapshot]:
    """Выигранные пользователем аукционы"""
    conditions = (
        Auction.winner_id == user_id,
        Auction.status == AuctionStatus.COMPLETED.value,
    )
    total = (await session.execute(
        select(func.count(Auction.id)).where(*conditions)
    )).scalar_one()
    result = await session.execute(
        select(Auction)
        .where(*conditions)
        .order_by(Auction.finished_at.desc(), Auction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [AuctionSnapshot.from_model(a) for a in result.scalars().all()]
    return Page(items=items, page=page, limit=limit, total=total)


async def get_active_auctions(session: AsyncSession) -> list[AuctionSnapshot]:
    """Получить активные аукционы"""
    result = await session.execute(
        select(Auction)
        .where(Auction.status == AuctionStatus.ACTIVE.value)
        .order_by(Auction.end_time.asc())
    )
    return [AuctionSnapshot.from_model(a) for a in result.scalars().all()]


async def get_ending_auctions(session: AsyncSession, now: Optional[datetime] = None) -> list[AuctionSnapshot]:
    """Активные аукционы, время которых уже вышло (ждут завершения)"""
    now = now or datetime.now(timezone.utc)
    result = await session.execute(
        select(Auction)
        .where(
            Auction.status == AuctionStatus.ACTIVE.value,
            Auction.end_time <= now
        )
        .order_by(Auction.end_time.asc())
    )
    return [AuctionSnapshot.from_model(a) for a in result.scalars().all()]


async def is_watching(session: AsyncSession, user_id: int, auction_id: int) -> bool:
    result = await session.execute(
        select(WatchlistEntry.id).where(
            WatchlistEntry.user_id == user_id,
            WatchlistEntry.auction_id == auction_id
        )
    )
    return result.first() is not None


async def add_to_watchlist(session: AsyncSession, user_id: int, auction_id: int) -> bool:
    """Добавить аукцион в список наблюдения; False, если уже добавлен"""
    session.add(WatchlistEntry(user_id=user_id, auction_id=auction_id))
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        return False
    return True


async def remove_from_watchlist(session: AsyncSession, user_id: int, auction_id: int) -> bool:
    """Убрать аукцион из списка наблюдения"""
    result = await session.execute(
        delete(WatchlistEntry).where(
            WatchlistEntry.user_id == user_id,
            WatchlistEntry.auction_id == auction_id
        )
    )
    await session.commit()
    return result.rowcount > 0


async def get_watchers(session: AsyncSession, auction_id: int) -> list[int]:
    """ID пользователей, наблюдающих за аукционом"""
    result = await session.execute(
        select(WatchlistEntry.user_id)
        .where(WatchlistEntry.auction_id == auction_id)
        .order_by(WatchlistEntry.id)
    )
    return list(result.scalars().all())
