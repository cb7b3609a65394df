"""Сервис для работы с пользователями"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from database.models.user import User, UserRole


async def get_or_create_user(
    session: AsyncSession,
    telegram_id: int,
    username: str = None,
    first_name: str = None,
    last_name: str = None
) -> User:
    """Получить или создать пользователя"""
    result = await session.execute(
        select(User).where(User.telegram_id == telegram_id)
    )
    user = result.scalar_one_or_none()
    
    if not user:
        user = User(
            telegram_id=telegram_id,
            username=username,
            first_name=first_name,
            last_name=last_name,
            role=UserRole.BIDDER.value
        )
        session.add(user)
        await session.commit()
        await session.refresh(user)
    else:
        # Обновляем данные, если изменились
        if username != user.username or first_name != user.first_name:
            user.username = username
            user.first_name = first_name
            user.last_name = last_name
            await session.commit()
    
    return user


async def get_telegram_ids(session: AsyncSession, user_ids: list[int]) -> dict[int, int]:
    """Сопоставить ID пользователей с их Telegram ID"""
    if not user_ids:
        return {}
    result = await session.execute(
        select(User.id, User.telegram_id).where(User.id.in_(user_ids))
    )
    return {user_id: telegram_id for user_id, telegram_id in result.all()}


async def set_user_role(
    session: AsyncSession,
    user_id: int,
    role: UserRole
) -> User:
    """Изменить роль пользователя"""
    result = await session.execute(
        select(User).where(User.id == user_id)
    )
    user = result.scalar_one_or_none()
    
    if not user:
        raise ValueError("Пользователь не найден")
    
    user.role = role.value
    await session.commit()
    await session.refresh(user)
    return user
