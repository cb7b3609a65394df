"""Хранилище аукционов и журнала ставок"""
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import DataError, IntegrityError, ProgrammingError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from database.models.auction import Auction, AuctionStatus
from database.models.bid import Bid
from services.resolver import ProxyBid, outstanding_proxies
from services.results import StaleAuctionState, StorageFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Ошибки самих данных или запроса: повтор даст тот же результат
NON_RETRYABLE_ERRORS = (DataError, IntegrityError, ProgrammingError)


class AuctionStore:
    """Атомарные операции над аукционом и добавление ставок.

    Каждая операция выполняется в транзакции; сбой хранилища или конфликт
    условного обновления повторяется с экспоненциальной задержкой, каждый раз
    с новой сессией и свежим состоянием.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        retry_attempts: int = 3,
        retry_min_wait: float = 0.05,
        retry_max_wait: float = 1.0
    ):
        self.session_maker = session_maker
        self.retry_attempts = retry_attempts
        self.retry_min_wait = retry_min_wait
        self.retry_max_wait = retry_max_wait

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Сессия только для чтения"""
        async with self.session_maker() as session:
            yield session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Сессия с транзакцией: commit при выходе, rollback при ошибке"""
        async with self.session_maker() as session:
            async with session.begin():
                yield session

    async def run_in_transaction(
        self,
        operation: Callable[..., Awaitable[T]],
        *args: Any
    ) -> T:
        """Выполнить operation(session, *args) в транзакции с повторами"""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.retry_attempts),
                wait=wait_exponential(multiplier=self.retry_min_wait, min=self.retry_min_wait, max=self.retry_max_wait),
                retry=(
                    retry_if_exception_type((SQLAlchemyError, StaleAuctionState))
                    & retry_if_not_exception_type(NON_RETRYABLE_ERRORS)
                ),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(
                            f"Повтор {attempt.retry_state.attempt_number} операции {operation.__name__}"
                        )
                    async with self.transaction() as session:
                        return await operation(session, *args)
        except (SQLAlchemyError, StaleAuctionState) as e:
            logger.error(f"Операция {operation.__name__} не выполнена: {e!r}")
            raise StorageFailure(str(e)) from e

    async def get_auction(self, session: AsyncSession, auction_id: int) -> Optional[Auction]:
        result = await session.execute(
            select(Auction).where(Auction.id == auction_id)
        )
        return result.scalar_one_or_none()

    async def add_auction(self, session: AsyncSession, auction: Auction) -> Auction:
        session.add(auction)
        await session.flush()
        await session.refresh(auction)
        return auction

    async def update_auction_atomic(
        self,
        session: AsyncSession,
        auction_id: int,
        values: dict,
        expected_current_bid: Optional[Decimal] = None,
        expected_status: Optional[AuctionStatus] = None
    ) -> Auction:
        """Обновить аукцион, только если он не изменился с момента чтения"""
        stmt = update(Auction).where(Auction.id == auction_id)
        if expected_current_bid is not None:
            stmt = stmt.where(Auction.current_bid == expected_current_bid)
        if expected_status is not None:
            stmt = stmt.where(Auction.status == expected_status.value)
        result = await session.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleAuctionState(f"Аукцион {auction_id} изменился во время операции")

        auction = await self.get_auction(session, auction_id)
        await session.refresh(auction)
        return auction

    async def insert_bid(self, session: AsyncSession, bid: Bid) -> Bid:
        session.add(bid)
        await session.flush()
        return bid

    async def list_bids_by_auction(
        self,
        session: AsyncSession,
        auction_id: int,
        order_by_amount_desc: bool = True
    ) -> list[Bid]:
        stmt = select(Bid).where(Bid.auction_id == auction_id)
        if order_by_amount_desc:
            stmt = stmt.order_by(Bid.amount.desc(), Bid.created_at.asc(), Bid.id.asc())
        else:
            stmt = stmt.order_by(Bid.created_at.asc(), Bid.id.asc())
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def get_highest_bid(self, session: AsyncSession, auction_id: int) -> Optional[Bid]:
        result = await session.execute(
            select(Bid)
            .where(Bid.auction_id == auction_id)
            .order_by(Bid.amount.desc(), Bid.created_at.asc(), Bid.id.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_outstanding_auto_bids(
        self,
        session: AsyncSession,
        auction_id: int,
        excluding_bidder: Optional[int] = None
    ) -> list[ProxyBid]:
        """Действующие автоставки других участников"""
        stmt = select(Bid).where(Bid.auction_id == auction_id)
        if excluding_bidder is not None:
            stmt = stmt.where(Bid.bidder_id != excluding_bidder)
        result = await session.execute(stmt.order_by(Bid.created_at.asc(), Bid.id.asc()))
        return outstanding_proxies(list(result.scalars().all()), excluding_bidder)

    async def list_expired_auction_ids(self, session: AsyncSession, now: datetime) -> list[int]:
        """Активные аукционы, у которых вышло время"""
        result = await session.execute(
            select(Auction.id)
            .where(
                Auction.status == AuctionStatus.ACTIVE.value,
                Auction.end_time <= now
            )
            .order_by(Auction.end_time.asc())
        )
        return list(result.scalars().all())
