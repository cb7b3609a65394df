"""Главный файл бота"""
import asyncio
import logging
from datetime import timedelta
from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from config import settings
from bot.handlers import auction
from bot.middlewares.database import DatabaseMiddleware
from database.connection import create_engine, create_session_maker, create_tables
from services.bidding import BidAdmissionService
from services.events import EventPublisher
from services.lifecycle import AuctionLifecycle
from services.locks import AuctionLocks
from services.notifications import TelegramNotifier
from services.scheduler import start_scheduler
from services.store import AuctionStore

# Настройка логирования
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def main():
    """Запуск бота"""
    engine = create_engine(settings.database_url)
    session_maker = create_session_maker(engine)
    await create_tables(engine)

    # Сервисы торгов делят одну блокировку и одного издателя событий
    store = AuctionStore(
        session_maker,
        retry_attempts=settings.STORAGE_RETRY_ATTEMPTS,
        retry_min_wait=settings.STORAGE_RETRY_MIN_WAIT,
        retry_max_wait=settings.STORAGE_RETRY_MAX_WAIT
    )
    publisher = EventPublisher()
    locks = AuctionLocks(timeout=settings.BID_LOCK_TIMEOUT)
    bidding = BidAdmissionService(store, publisher, locks)
    lifecycle = AuctionLifecycle(
        store,
        publisher,
        locks,
        default_bid_increment=settings.DEFAULT_BID_INCREMENT,
        default_duration=timedelta(hours=settings.AUCTION_DURATION_HOURS)
    )

    # Создаем бот и диспетчер
    bot = Bot(
        token=settings.BOT_TOKEN,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML)
    )
    publisher.subscribe(TelegramNotifier(bot, session_maker, settings.admin_ids_list))
    dp = Dispatcher()

    # Регистрируем middleware
    middleware = DatabaseMiddleware(session_maker, bidding=bidding, lifecycle=lifecycle)
    dp.message.middleware(middleware)
    dp.callback_query.middleware(middleware)

    # Регистрируем роутеры
    dp.include_router(auction.router)

    # Запускаем планировщик для завершения аукционов
    scheduler = start_scheduler(lifecycle, settings.AUCTION_SWEEP_INTERVAL)

    logger.info("Бот запущен")

    try:
        # Запускаем polling
        await dp.start_polling(bot)
    finally:
        scheduler.cancel()
        await bot.session.close()
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
