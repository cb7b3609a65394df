"""Разрешение автоставок (proxy bidding).

Участник регистрирует потолок, а система перебивает конкурентов только на
столько, сколько нужно, чтобы остаться лидером. Потолок никогда не
раскрывается и никогда не превышается.

Каждый шаг - дуэль текущего лидера с сильнейшим оставшимся претендентом.
Проигравший в дуэли автоставщик исчерпан и в этом раунде больше не
рассматривается, поэтому шагов не больше, чем претендентов.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from database.models.bid import Bid
from services.results import as_utc

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class ProxyBid:
    """Действующая автоставка участника"""
    bidder_id: int
    max_amount: Decimal
    # Время регистрации потолка; при равных потолках побеждает более ранний
    registered_at: Optional[datetime] = None


@dataclass(frozen=True)
class AutoBidStep:
    """Системная ставка, которую нужно записать от имени участника"""
    bidder_id: int
    amount: Decimal
    max_auto_bid: Decimal


@dataclass(frozen=True)
class Resolution:
    current_bid: Decimal
    leader_id: int
    auto_bids: tuple[AutoBidStep, ...]
    # Участники, потерявшие лидерство или исчерпавшие потолок в этом раунде
    outbid: tuple[int, ...]


def _priority(proxy: ProxyBid) -> tuple:
    if proxy.registered_at is None:
        return (-proxy.max_amount, 1, _EPOCH)
    return (-proxy.max_amount, 0, as_utc(proxy.registered_at))


def _beats(challenger: ProxyBid, leader: ProxyBid) -> bool:
    if challenger.max_amount != leader.max_amount:
        return challenger.max_amount > leader.max_amount
    if challenger.registered_at is None:
        return False
    if leader.registered_at is None:
        return True
    return as_utc(challenger.registered_at) < as_utc(leader.registered_at)


def resolve_auto_bids(
    bidder_id: int,
    amount: Decimal,
    increment: Decimal,
    proxies: Iterable[ProxyBid],
    max_auto_bid: Optional[Decimal] = None,
    placed_at: Optional[datetime] = None
) -> Resolution:
    """Вычислить итоговую цену, лидера и системные автоставки после новой ставки"""
    leader_has_proxy = max_auto_bid is not None
    leader = ProxyBid(bidder_id, max_auto_bid if leader_has_proxy else amount, placed_at)
    price = amount
    remaining = [p for p in proxies if p.bidder_id != bidder_id]
    steps: list[AutoBidStep] = []
    outbid: list[int] = []

    while True:
        contenders = [p for p in remaining if p.max_amount >= price + increment]
        if not contenders:
            break
        challenger = min(contenders, key=_priority)
        remaining.remove(challenger)
        tie = challenger.max_amount == leader.max_amount

        if _beats(challenger, leader):
            # Автоставка лидера доходит до своего потолка (при равенстве ставка не записывается)
            if leader_has_proxy and not tie and leader.max_amount > price:
                steps.append(AutoBidStep(leader.bidder_id, leader.max_amount, leader.max_amount))
            price = min(challenger.max_amount, leader.max_amount + increment)
            steps.append(AutoBidStep(challenger.bidder_id, price, challenger.max_amount))
            outbid.append(leader.bidder_id)
            leader = challenger
            leader_has_proxy = True
        else:
            if tie:
                price = leader.max_amount
            else:
                steps.append(AutoBidStep(challenger.bidder_id, challenger.max_amount, challenger.max_amount))
                price = min(leader.max_amount, challenger.max_amount + increment)
            steps.append(AutoBidStep(leader.bidder_id, price, leader.max_amount))
            outbid.append(challenger.bidder_id)

    outbid_unique = tuple(dict.fromkeys(b for b in outbid if b != leader.bidder_id))
    return Resolution(
        current_bid=price,
        leader_id=leader.bidder_id,
        auto_bids=tuple(steps),
        outbid=outbid_unique,
    )


def outstanding_proxies(bids: Sequence[Bid], excluding_bidder: Optional[int] = None) -> list[ProxyBid]:
    """Свести историю ставок (по возрастанию времени) к действующим автоставкам.

    Действующая автоставка участника - потолок его последней ставки, если она
    автоматическая. Более поздняя ручная ставка отменяет автоставку. Время
    регистрации - первая из подряд идущих автоставок с тем же потолком.
    """
    latest: dict[int, ProxyBid] = {}
    for bid in bids:
        if bid.bidder_id == excluding_bidder:
            continue
        if not bid.is_auto_bid or bid.max_auto_bid is None:
            latest.pop(bid.bidder_id, None)
            continue
        max_amount = Decimal(bid.max_auto_bid)
        current = latest.get(bid.bidder_id)
        if current is not None and current.max_amount == max_amount:
            continue
        latest[bid.bidder_id] = ProxyBid(bid.bidder_id, max_amount, as_utc(bid.created_at))
    return list(latest.values())
