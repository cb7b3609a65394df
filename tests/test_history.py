from datetime import timedelta
from decimal import Decimal

from services import history
from services.user import get_or_create_user, get_telegram_ids, set_user_role
from database.models.user import UserRole


async def place(bidding, clock, auction_id, bidder_id, amount, **kwargs):
    clock.advance()
    return await bidding.place_bid(auction_id, bidder_id, Decimal(amount), **kwargs)


async def test_bid_statistics(bidding, make_auction, users, clock, session):
    auction = await make_auction()
    await place(bidding, clock, auction.id, users["alice"], "110")
    await place(bidding, clock, auction.id, users["bob"], "125")
    await place(bidding, clock, auction.id, users["alice"], "140")

    stats = await history.get_bid_statistics(session, auction.id)

    assert stats.count == 3
    assert stats.unique_bidders == 2
    assert stats.average == Decimal("125.00")
    assert stats.lowest == Decimal("110.00")
    assert stats.highest == Decimal("140.00")


async def test_empty_statistics(make_auction, session):
    auction = await make_auction()
    stats = await history.get_bid_statistics(session, auction.id)
    assert stats.count == 0
    assert stats.highest == Decimal("0")


async def test_auction_bids_are_paged_newest_first(bidding, make_auction, users, clock, session):
    auction = await make_auction()
    for i in range(5):
        bidder = users["alice"] if i % 2 == 0 else users["bob"]
        await place(bidding, clock, auction.id, bidder, str(110 + 10 * i))

    first = await history.get_auction_bids(session, auction.id, page=1, limit=2)
    last = await history.get_auction_bids(session, auction.id, page=3, limit=2)

    assert first.total == 5
    assert first.total_pages == 3
    assert [b.amount for b in first.items] == [Decimal("150"), Decimal("140")]
    assert [b.amount for b in last.items] == [Decimal("110")]


async def test_user_bids_and_active_bids(bidding, lifecycle, make_auction, users, clock, session):
    open_auction = await make_auction(duration=timedelta(hours=5))
    closed_auction = await make_auction()
    await place(bidding, clock, open_auction.id, users["alice"], "110")
    await place(bidding, clock, closed_auction.id, users["alice"], "120")
    await lifecycle.end_auction(closed_auction.id)

    page = await history.get_user_bids(session, users["alice"])
    assert page.total == 2
    assert page.items[0].auction_id == closed_auction.id

    active = await history.get_user_active_bids(session, users["alice"], now=clock())
    assert [b.auction_id for b in active] == [open_auction.id]


async def test_won_auctions(bidding, lifecycle, make_auction, users, clock, session):
    won = await make_auction()
    lost = await make_auction()
    await place(bidding, clock, won.id, users["alice"], "110")
    await place(bidding, clock, lost.id, users["alice"], "110")
    await place(bidding, clock, lost.id, users["bob"], "150")
    await lifecycle.end_auction(won.id)
    await lifecycle.end_auction(lost.id)

    page = await history.get_user_won_auctions(session, users["alice"])

    assert page.total == 1
    assert [a.id for a in page.items] == [won.id]


async def test_highest_bid(bidding, make_auction, users, clock, session):
    auction = await make_auction()
    await place(bidding, clock, auction.id, users["alice"], "110")

    highest = await history.get_highest_bid(session, auction.id)
    assert highest.bidder_id == users["alice"]
    assert await history.is_highest_bidder(session, auction.id, users["alice"])
    assert not await history.is_highest_bidder(session, auction.id, users["bob"])


async def test_active_and_ending_auctions(make_auction, clock, session):
    soon = await make_auction(duration=timedelta(minutes=5))
    later = await make_auction(duration=timedelta(hours=1))
    await make_auction(activate=False)

    active = await history.get_active_auctions(session)
    assert [a.id for a in active] == [soon.id, later.id]

    clock.advance(timedelta(minutes=10).total_seconds())
    ending = await history.get_ending_auctions(session, now=clock())
    assert [a.id for a in ending] == [soon.id]


async def test_watchlist(make_auction, users, session):
    auction = await make_auction()

    assert await history.add_to_watchlist(session, users["alice"], auction.id)
    assert not await history.add_to_watchlist(session, users["alice"], auction.id)
    assert await history.add_to_watchlist(session, users["bob"], auction.id)
    assert sorted(await history.get_watchers(session, auction.id)) == sorted([users["alice"], users["bob"]])

    assert await history.remove_from_watchlist(session, users["alice"], auction.id)
    assert not await history.remove_from_watchlist(session, users["alice"], auction.id)
    assert await history.get_watchers(session, auction.id) == [users["bob"]]


async def test_users(session, users):
    user = await get_or_create_user(session, 5555, "dave", "Dave")
    again = await get_or_create_user(session, 5555, "dave", "Dave")
    assert user.id == again.id
    assert user.role == UserRole.BIDDER.value

    promoted = await set_user_role(session, user.id, UserRole.SELLER)
    assert promoted.role == UserRole.SELLER.value

    ids = await get_telegram_ids(session, [users["alice"], user.id])
    assert ids == {users["alice"]: 1002, user.id: 5555}
