"""Проверка ставки по состоянию аукциона (без побочных эффектов)"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from database.models.auction import AuctionStatus
from services.results import AuctionSnapshot, Rejection, RejectionReason

# Предел столбцов Numeric(10, 2)
MAX_AMOUNT = Decimal("99999999.99")
CENT = Decimal("0.01")


def amount_error(value: Decimal) -> Optional[str]:
    """Почему сумму нельзя записать в денежный столбец (None, если можно)"""
    if not value.is_finite():
        return "Сумма должна быть конечным числом"
    if value <= 0:
        return "Сумма должна быть больше нуля"
    if value > MAX_AMOUNT:
        return f"Сумма не может быть больше {MAX_AMOUNT:,}"
    if value != value.quantize(CENT):
        return "Сумма может содержать не больше двух знаков после запятой"
    return None


def parse_amount(value: Any) -> Union[Decimal, Rejection]:
    """Привести сумму к Decimal; некорректная сумма дает отказ INVALID_AMOUNT"""
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return Rejection(RejectionReason.INVALID_AMOUNT, f"Некорректная сумма: {value!r}")
    error = amount_error(amount)
    if error:
        return Rejection(RejectionReason.INVALID_AMOUNT, error)
    return amount


@dataclass(frozen=True)
class CandidateBid:
    """Ставка, которую еще только предстоит принять"""
    bidder_id: int
    amount: Decimal
    is_auto_bid: bool = False
    max_auto_bid: Optional[Decimal] = None


@dataclass(frozen=True)
class ValidBid:
    """Ставка прошла проверку"""
    # Ниже резервной цены: принимается, но победителем по ней аукцион не завершится
    below_reserve: bool = False


def validate_bid(
    auction: AuctionSnapshot,
    candidate: CandidateBid,
    now: datetime
) -> Union[ValidBid, Rejection]:
    """Проверить ставку; первая неудачная проверка определяет отказ"""
    if auction.status != AuctionStatus.ACTIVE.value:
        return Rejection(RejectionReason.AUCTION_NOT_ACTIVE, "Аукцион не активен")

    # Sweep мог еще не завершить аукцион, но время уже вышло
    if now >= auction.end_time:
        return Rejection(RejectionReason.AUCTION_ENDED, "Аукцион уже завершился")

    if candidate.bidder_id == auction.seller_id:
        return Rejection(
            RejectionReason.SELLER_CANNOT_BID_OWN_AUCTION,
            "Продавец не может делать ставки на свой аукцион"
        )

    minimum = auction.minimum_next_bid
    if candidate.amount < minimum:
        return Rejection(
            RejectionReason.BID_TOO_LOW,
            f"Минимальная ставка: {minimum:,}",
            minimum_bid=minimum
        )

    below_reserve = auction.reserve_price is not None and candidate.amount < auction.reserve_price

    if candidate.is_auto_bid:
        if candidate.max_auto_bid is None or candidate.max_auto_bid <= candidate.amount:
            return Rejection(
                RejectionReason.INVALID_AUTO_BID,
                "Максимум автоставки должен быть выше суммы ставки"
            )

    return ValidBid(below_reserve=below_reserve)
