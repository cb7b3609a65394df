from datetime import datetime, timedelta, timezone
from decimal import Decimal

from database.models.bid import Bid
from services.resolver import AutoBidStep, ProxyBid, outstanding_proxies, resolve_auto_bids

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
INC = Decimal("10")

A, B, C = 2, 3, 4


def at(seconds: int) -> datetime:
    return T0 + timedelta(seconds=seconds)


def test_no_proxies_new_bidder_leads():
    resolution = resolve_auto_bids(A, Decimal("110"), INC, [])
    assert resolution.current_bid == Decimal("110")
    assert resolution.leader_id == A
    assert resolution.auto_bids == ()
    assert resolution.outbid == ()


def test_manual_bid_answered_by_proxy():
    """A ставит 130 вручную, автоставка B (150) отвечает на 140"""
    resolution = resolve_auto_bids(A, Decimal("130"), INC, [ProxyBid(B, Decimal("150"), at(1))], placed_at=at(2))
    assert resolution.current_bid == Decimal("140")
    assert resolution.leader_id == B
    assert resolution.auto_bids == (AutoBidStep(B, Decimal("140"), Decimal("150")),)
    assert resolution.outbid == (A,)


def test_proxy_caps_at_ceiling():
    """Автоставка доходит только до своего потолка"""
    resolution = resolve_auto_bids(A, Decimal("140"), INC, [ProxyBid(B, Decimal("150"), at(1))], placed_at=at(2))
    assert resolution.current_bid == Decimal("150")
    assert resolution.leader_id == B


def test_proxy_cannot_cover_increment():
    """Потолок ниже current_bid + шаг: автоставка не срабатывает"""
    resolution = resolve_auto_bids(A, Decimal("141"), INC, [ProxyBid(B, Decimal("150"), at(1))], placed_at=at(2))
    assert resolution.leader_id == A
    assert resolution.current_bid == Decimal("141")
    assert resolution.auto_bids == ()
    assert resolution.outbid == ()


def test_equal_ceilings_earliest_wins():
    resolution = resolve_auto_bids(
        B, Decimal("150"), INC,
        [ProxyBid(A, Decimal("200"), at(1))],
        max_auto_bid=Decimal("200"),
        placed_at=at(5),
    )
    assert resolution.leader_id == A
    assert resolution.current_bid == Decimal("200")
    assert resolution.auto_bids == (AutoBidStep(A, Decimal("200"), Decimal("200")),)
    assert resolution.outbid == (B,)


def test_new_proxy_outbids_existing_proxy():
    """Новый потолок выше: старая автоставка доходит до потолка, новая перебивает на шаг"""
    resolution = resolve_auto_bids(
        B, Decimal("120"), INC,
        [ProxyBid(A, Decimal("150"), at(1))],
        max_auto_bid=Decimal("300"),
        placed_at=at(2),
    )
    assert resolution.leader_id == B
    assert resolution.current_bid == Decimal("160")
    assert resolution.auto_bids == (
        AutoBidStep(A, Decimal("150"), Decimal("150")),
        AutoBidStep(B, Decimal("160"), Decimal("300")),
    )
    assert resolution.outbid == (A,)


def test_several_proxies_resolve_in_priority_order():
    resolution = resolve_auto_bids(
        B, Decimal("120"), INC,
        [ProxyBid(A, Decimal("150"), at(1)), ProxyBid(C, Decimal("180"), at(2))],
        placed_at=at(3),
    )
    assert resolution.leader_id == C
    assert resolution.current_bid == Decimal("160")
    assert [(s.bidder_id, s.amount) for s in resolution.auto_bids] == [
        (C, Decimal("130")),
        (A, Decimal("150")),
        (C, Decimal("160")),
    ]
    assert resolution.outbid == (B, A)


def test_no_step_exceeds_its_ceiling():
    proxies = [ProxyBid(i, Decimal(100 + 37 * i), at(i)) for i in range(5, 15)]
    resolution = resolve_auto_bids(A, Decimal("110"), INC, proxies, placed_at=at(20))
    for step in resolution.auto_bids:
        assert step.amount <= step.max_auto_bid
    # Каждый претендент исчерпывается не более чем за два шага
    assert len(resolution.auto_bids) <= 2 * len(proxies)
    assert resolution.leader_id == 14
    assert resolution.current_bid == Decimal(100 + 37 * 13) + INC


def test_own_proxy_is_ignored_for_new_bidder():
    resolution = resolve_auto_bids(A, Decimal("130"), INC, [ProxyBid(A, Decimal("200"), at(1))])
    assert resolution.leader_id == A
    assert resolution.auto_bids == ()


def bid(bidder_id, seconds, amount, max_auto_bid=None):
    return Bid(
        bidder_id=bidder_id,
        amount=Decimal(amount),
        is_auto_bid=max_auto_bid is not None,
        max_auto_bid=Decimal(max_auto_bid) if max_auto_bid is not None else None,
        created_at=at(seconds),
    )


def test_outstanding_proxies_from_history():
    history = [
        bid(A, 1, "110", "150"),
        bid(B, 2, "120", "200"),
        bid(C, 3, "130", "150"),
        bid(A, 4, "150", "150"),   # системная ставка с тем же потолком
        bid(B, 5, "210"),          # ручная ставка отменяет автоставку B
        bid(C, 6, "220", "300"),   # новый потолок - новое время регистрации
    ]
    proxies = {p.bidder_id: p for p in outstanding_proxies(history)}
    assert set(proxies) == {A, C}
    assert proxies[A] == ProxyBid(A, Decimal("150"), at(1))
    assert proxies[C] == ProxyBid(C, Decimal("300"), at(6))

    assert {p.bidder_id for p in outstanding_proxies(history, excluding_bidder=A)} == {C}
