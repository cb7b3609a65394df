from decimal import Decimal
from types import SimpleNamespace
import re

import pytest
from aiogram.filters import CommandObject
from sqlalchemy.exc import OperationalError

from bot.handlers.auction import (
    STORAGE_FAILURE_TEXT,
    cmd_bid,
    cmd_set_role,
    cmd_start,
    format_auction,
    format_bid_result,
    parse_bid_command,
    toggle_watch,
)
from bot.keyboards.auction import get_auction_keyboard
from services import history
from services.events import ADMIN_ROOM, EventType, auction_room, user_room
from services.notifications import TelegramNotifier
from services.results import AuctionSnapshot, Rejection, RejectionReason


class FakeBot:
    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    async def send_message(self, chat_id, text, **kwargs):
        if chat_id in self.fail_for:
            raise RuntimeError("chat not found")
        self.sent.append((chat_id, text))


class FakeMessage:
    def __init__(self, telegram_id, username=None):
        self.from_user = SimpleNamespace(id=telegram_id, username=username, first_name=username, last_name=None)
        self.answers = []

    async def answer(self, text, **kwargs):
        self.answers.append(text)


class FakeCallback(FakeMessage):
    def __init__(self, data, telegram_id, username=None):
        super().__init__(telegram_id, username)
        self.data = data

    async def answer(self, text=None, show_alert=False, **kwargs):
        self.answers.append(text)


# Теги, которые Telegram принимает в режиме HTML
TELEGRAM_TAGS = {"b", "strong", "i", "em", "u", "ins", "s", "strike", "del", "a", "code", "pre", "tg-spoiler", "blockquote"}


def assert_valid_html(text):
    for tag in re.findall(r"</?([^\s>/]+)", text):
        assert tag in TELEGRAM_TAGS, f"unsupported tag <{tag}> in {text!r}"


def command(name, args=None):
    return CommandObject(prefix="/", command=name, args=args)


def test_parse_bid_command():
    parsed = parse_bid_command("12 1,500")
    assert (parsed.auction_id, parsed.amount, parsed.max_auto_bid) == (12, Decimal("1500"), None)
    assert not parsed.is_auto_bid

    parsed = parse_bid_command("12 150 300")
    assert parsed.max_auto_bid == Decimal("300")
    assert parsed.is_auto_bid


@pytest.mark.parametrize("args", [None, "", "12", "x 100", "12 abc", "12 -5", "1 2 3 4", "5 Infinity", "5 NaN", "5 123456789012", "5 100 Infinity"])
def test_parse_bid_command_errors(args):
    with pytest.raises(ValueError):
        parse_bid_command(args)


def test_format_rejection():
    text = format_bid_result(
        Rejection(RejectionReason.BID_TOO_LOW, "Минимальная ставка: 110", minimum_bid=Decimal("110")),
        bidder_id=1
    )
    assert "110" in text

    text = format_bid_result(Rejection(RejectionReason.BUSY, "Аукцион занят"), bidder_id=1)
    assert "еще раз" in text


def test_auction_keyboard():
    keyboard = get_auction_keyboard(5, Decimal("110"))
    callbacks = [button.callback_data for row in keyboard.inline_keyboard for button in row]
    assert callbacks == ["bid:quick:5", "auction:bids:5", "auction:stats:5", "auction:watch:5"]


async def test_notifier_routes_events(bidding, make_auction, users, session_maker, session, clock, publisher):
    bot = FakeBot(fail_for={1004})
    publisher.subscribe(TelegramNotifier(bot, session_maker, admin_chat_ids=[42]))

    auction = await make_auction()
    await history.add_to_watchlist(session, users["carol"], auction.id)
    await history.add_to_watchlist(session, users["alice"], auction.id)
    bot.sent.clear()

    await bidding.place_bid(auction.id, users["alice"], Decimal("110"))
    clock.advance()
    await bidding.place_bid(auction.id, users["bob"], Decimal("120"))

    # carol (1004) недоступна, но остальные получают сообщения;
    # автор ставки не получает BidPlaced о своей же ставке
    assert [chat_id for chat_id, _ in bot.sent] == [1001, 1002, 1002, 1001]
    assert "Новая ставка по вашему лоту" in bot.sent[0][1]
    assert "Новая ставка на" in bot.sent[1][1]
    assert "Вашу ставку перебили" in bot.sent[2][1]


async def test_notifier_admin_room(make_auction, session_maker, lifecycle):
    bot = FakeBot()
    lifecycle.publisher.subscribe(TelegramNotifier(bot, session_maker, admin_chat_ids=[42, 43]), room=ADMIN_ROOM)

    auction = await make_auction()
    bot.sent.clear()
    await lifecycle.end_auction(auction.id)

    assert [chat for chat, _ in bot.sent] == [42, 43]
    assert "без победителя" in bot.sent[0][1]


def test_room_names():
    assert auction_room(3) == "auction_3"
    assert user_room(4) == "user_4"
    assert EventType.OUTBID.value == "outbid"


async def test_start_help_is_valid_html(session):
    message = FakeMessage(2001, "newcomer")

    await cmd_start(message, session)

    (text,) = message.answers
    assert_valid_html(text)
    assert "/bid &lt;номер&gt; &lt;сумма&gt; [максимум]" in text


async def test_usage_replies_are_valid_html(session, bidding, users):
    message = FakeMessage(1002, "alice")
    await cmd_bid(message, command("bid", "12"), session, bidding)

    admin = FakeMessage(1005, "admin")
    await cmd_set_role(admin, command("role"), session)

    for text in message.answers + admin.answers:
        assert_valid_html(text)
        assert "&lt;" in text


def test_auction_title_is_escaped(clock):
    auction = AuctionSnapshot(
        id=1,
        seller_id=1,
        title="Часы <Rolex> & ремешок",
        starting_price=Decimal("100"),
        reserve_price=None,
        current_bid=Decimal("100"),
        bid_increment=Decimal("10"),
        start_time=clock(),
        end_time=clock(),
        status="active",
        total_bids=0,
        leader_id=None,
        winner_id=None,
    )
    text = format_auction(auction)
    assert_valid_html(text)
    assert "Часы &lt;Rolex&gt; &amp; ремешок" in text


async def test_bid_storage_failure_gets_reply(session, bidding, store, make_auction, users, monkeypatch):
    auction = await make_auction()

    async def failing_get_auction(session, auction_id):
        raise OperationalError("SELECT", {}, Exception("connection reset"))

    monkeypatch.setattr(store, "get_auction", failing_get_auction)
    message = FakeMessage(1002, "alice")

    await cmd_bid(message, command("bid", f"{auction.id} 110"), session, bidding)

    assert message.answers == [STORAGE_FAILURE_TEXT]


async def test_toggle_watch_twice(session, make_auction, users):
    auction = await make_auction()
    callback = FakeCallback(f"auction:watch:{auction.id}", 1002, "alice")

    await toggle_watch(callback, session)
    assert await history.get_watchers(session, auction.id) == [users["alice"]]

    await toggle_watch(callback, session)
    assert await history.get_watchers(session, auction.id) == []

    await toggle_watch(callback, session)
    assert callback.answers == [
        "Вы следите за аукционом 👁",
        "Вы больше не следите за аукционом",
        "Вы следите за аукционом 👁",
    ]


async def test_toggle_watch_when_entry_appears_concurrently(session, make_auction, users, monkeypatch):
    """Запись добавлена между проверкой и вставкой: ответ без падения"""
    auction = await make_auction()
    await history.add_to_watchlist(session, users["alice"], auction.id)

    async def not_watching(session, user_id, auction_id):
        return False

    monkeypatch.setattr(history, "is_watching", not_watching)
    callback = FakeCallback(f"auction:watch:{auction.id}", 1002, "alice")

    await toggle_watch(callback, session)

    assert callback.answers == ["Вы уже следите за аукционом"]
    assert await history.get_watchers(session, auction.id) == [users["alice"]]
