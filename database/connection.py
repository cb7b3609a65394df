"""Подключение к базе данных"""
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy import BigInteger, Integer
from sqlalchemy.orm import declarative_base

# Базовый класс для моделей
Base = declarative_base()


def create_engine(database_url: str, **kwargs) -> AsyncEngine:
    """Создать движок для асинхронной работы"""
    return create_async_engine(
        database_url,
        echo=False,
        future=True,
        **kwargs
    )


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Создать фабрику сессий"""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Создать таблицы, если их еще нет"""
    # Импорт регистрирует модели в Base.metadata
    import database.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# BIGINT на PostgreSQL; в SQLite автоинкремент работает только для INTEGER PRIMARY KEY
BigIntId = BigInteger().with_variant(Integer, "sqlite")
