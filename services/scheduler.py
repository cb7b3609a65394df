"""Планировщик задач для завершения аукционов"""
import asyncio
import logging

from services.lifecycle import AuctionLifecycle

logger = logging.getLogger(__name__)


async def check_and_finish_auctions(lifecycle: AuctionLifecycle) -> int:
    """Проверить и завершить истекшие аукционы"""
    finished = await lifecycle.end_expired_auctions()
    for auction in finished:
        logger.info(f"Аукцион {auction.id} завершен. Победитель: {auction.winner_id}")
    return len(finished)


async def scheduler_loop(lifecycle: AuctionLifecycle, interval: float = 60.0):
    """Основной цикл планировщика"""
    while True:
        try:
            await check_and_finish_auctions(lifecycle)
        except Exception as e:
            logger.error(f"Ошибка в планировщике: {e}")

        await asyncio.sleep(interval)


def start_scheduler(lifecycle: AuctionLifecycle, interval: float = 60.0) -> asyncio.Task:
    """Запустить планировщик"""
    task = asyncio.create_task(scheduler_loop(lifecycle, interval))
    logger.info("Планировщик аукционов запущен")
    return task
