"""Результаты операций торгов: снимки, отказы и ошибки хранилища"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Union
import enum

from database.models.auction import Auction
from database.models.bid import Bid


class RejectionReason(str, enum.Enum):
    """Код причины отказа (машиночитаемый)"""
    AUCTION_NOT_FOUND = "auction_not_found"
    AUCTION_NOT_ACTIVE = "auction_not_active"
    AUCTION_ENDED = "auction_ended"
    SELLER_CANNOT_BID_OWN_AUCTION = "seller_cannot_bid_own_auction"
    BID_TOO_LOW = "bid_too_low"
    INVALID_AUTO_BID = "invalid_auto_bid"
    INVALID_AMOUNT = "invalid_amount"
    BUSY = "busy"
    NOT_AUCTION_OWNER = "not_auction_owner"
    INVALID_AUCTION = "invalid_auction"


@dataclass(frozen=True)
class Rejection:
    """Ожидаемый отказ: возвращается вызывающему, а не выбрасывается"""
    reason: RejectionReason
    message: str
    # Только для BID_TOO_LOW: current_bid + bid_increment
    minimum_bid: Optional[Decimal] = None

    @property
    def retryable(self) -> bool:
        return self.reason == RejectionReason.BUSY


class StorageFailure(Exception):
    """Хранилище недоступно после всех повторных попыток"""


class StaleAuctionState(Exception):
    """Аукцион изменился между чтением и условным обновлением"""


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Привести время к UTC (naive считаем UTC, как в старых записях)"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AuctionSnapshot:
    """Неизменяемый снимок аукциона, не привязанный к сессии"""
    id: int
    seller_id: int
    title: str
    starting_price: Decimal
    reserve_price: Optional[Decimal]
    current_bid: Decimal
    bid_increment: Decimal
    start_time: datetime
    end_time: datetime
    status: str
    leader_id: Optional[int]
    winner_id: Optional[int]
    total_bids: int

    @property
    def minimum_next_bid(self) -> Decimal:
        return self.current_bid + self.bid_increment

    @property
    def reserve_met(self) -> bool:
        return self.reserve_price is None or self.current_bid >= self.reserve_price

    @classmethod
    def from_model(cls, auction: Auction) -> "AuctionSnapshot":
        return cls(
            id=auction.id,
            seller_id=auction.seller_id,
            title=auction.title,
            starting_price=Decimal(auction.starting_price),
            reserve_price=Decimal(auction.reserve_price) if auction.reserve_price is not None else None,
            current_bid=Decimal(auction.current_bid),
            bid_increment=Decimal(auction.bid_increment),
            start_time=as_utc(auction.start_time),
            end_time=as_utc(auction.end_time),
            status=auction.status,
            leader_id=auction.leader_id,
            winner_id=auction.winner_id,
            total_bids=auction.total_bids or 0,
        )


@dataclass(frozen=True)
class BidSnapshot:
    """Неизменяемый снимок ставки"""
    id: int
    auction_id: int
    bidder_id: int
    amount: Decimal
    is_auto_bid: bool
    max_auto_bid: Optional[Decimal]
    created_at: datetime
    ip_address: Optional[str]

    @classmethod
    def from_model(cls, bid: Bid) -> "BidSnapshot":
        return cls(
            id=bid.id,
            auction_id=bid.auction_id,
            bidder_id=bid.bidder_id,
            amount=Decimal(bid.amount),
            is_auto_bid=bool(bid.is_auto_bid),
            max_auto_bid=Decimal(bid.max_auto_bid) if bid.max_auto_bid is not None else None,
            created_at=as_utc(bid.created_at),
            ip_address=bid.ip_address,
        )


@dataclass(frozen=True)
class BidAccepted:
    """Ставка принята и зафиксирована"""
    bid: BidSnapshot
    auction: AuctionSnapshot
    # Системные автоставки, созданные в той же транзакции, по порядку
    auto_bids: tuple[BidSnapshot, ...] = field(default_factory=tuple)
    # Ставка ниже резервной цены: допускается, но победителя по ней не будет
    reserve_met: bool = True

    @property
    def leader_id(self) -> Optional[int]:
        return self.auction.leader_id

    @property
    def winning_bid(self) -> BidSnapshot:
        return self.auto_bids[-1] if self.auto_bids else self.bid


BidResult = Union[BidAccepted, Rejection]
AuctionResult = Union[AuctionSnapshot, Rejection]
