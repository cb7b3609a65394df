"""Общие фикстуры: база SQLite, пользователи, сервисы торгов и часы"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from database.connection import create_engine, create_session_maker, create_tables
from database.models.user import User, UserRole
from services.bidding import BidAdmissionService
from services.events import EventPublisher
from services.lifecycle import AuctionLifecycle
from services.locks import AuctionLocks
from services.store import AuctionStore


class FakeClock:
    """Управляемые часы для сервисов"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class RecordingSubscriber:
    """Подписчик, запоминающий все доставленные события"""

    def __init__(self):
        self.delivered = []

    def __call__(self, room, event):
        self.delivered.append((room, event))

    def rooms(self, event_type=None):
        return [room for room, event in self.delivered if event_type is None or event.type == event_type]

    def events(self, event_type=None):
        return [event for _, event in self.delivered if event_type is None or event.type == event_type]


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
async def engine(tmp_path):
    # Файл, а не :memory:, чтобы каждая сессия получала свое соединение
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'auction.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return create_session_maker(engine)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
async def users(session_maker):
    """Продавец, три участника и администратор"""
    created = {}
    async with session_maker() as session:
        for i, name in enumerate(["seller", "alice", "bob", "carol", "admin"], start=1):
            role = {"seller": UserRole.SELLER, "admin": UserRole.ADMIN}.get(name, UserRole.BIDDER)
            user = User(telegram_id=1000 + i, username=name, first_name=name.title(), role=role.value)
            session.add(user)
            created[name] = user
        await session.commit()
    return {name: user.id for name, user in created.items()}


@pytest.fixture
def store(session_maker):
    return AuctionStore(session_maker, retry_attempts=3, retry_min_wait=0, retry_max_wait=0)


@pytest.fixture
def recorder():
    return RecordingSubscriber()


@pytest.fixture
def publisher(recorder):
    publisher = EventPublisher()
    publisher.subscribe(recorder)
    return publisher


@pytest.fixture
def locks():
    return AuctionLocks(timeout=5.0)


@pytest.fixture
def bidding(store, publisher, locks, clock):
    return BidAdmissionService(store, publisher, locks, clock=clock)


@pytest.fixture
def lifecycle(store, publisher, locks, clock):
    return AuctionLifecycle(store, publisher, locks, default_bid_increment=Decimal("1.00"), clock=clock)


@pytest.fixture
def make_auction(lifecycle, users, clock, recorder):
    """Создать и запустить аукцион; события запуска не попадают в записи"""

    async def _make(
        starting_price="100",
        bid_increment="10",
        reserve_price=None,
        duration=timedelta(hours=1),
        activate=True
    ):
        auction = await lifecycle.create_auction(
            seller_id=users["seller"],
            title="Винтажные часы",
            starting_price=Decimal(starting_price),
            bid_increment=Decimal(bid_increment),
            reserve_price=Decimal(reserve_price) if reserve_price is not None else None,
            start_time=clock(),
            end_time=clock() + duration,
        )
        if activate:
            auction = await lifecycle.activate(auction.id, users["seller"])
        recorder.delivered.clear()
        return auction

    return _make
