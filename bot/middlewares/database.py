"""Middleware для работы с базой данных и сервисами торгов"""
from typing import Callable, Dict, Any, Awaitable
from aiogram import BaseMiddleware
from aiogram.types import TelegramObject
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


class DatabaseMiddleware(BaseMiddleware):
    """Middleware для создания сессии БД и передачи сервисов в обработчики"""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], **services: Any):
        self.session_maker = session_maker
        self.services = services
    
    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any]
    ) -> Any:
        async with self.session_maker() as session:
            data["session"] = session
            data.update(self.services)
            return await handler(event, data)
