"""Модель пользователя"""
from sqlalchemy import Column, BigInteger, String, DateTime, Boolean
from sqlalchemy.sql import func
import enum
from database.connection import Base, BigIntId


class UserRole(str, enum.Enum):
    """Роль пользователя"""
    BIDDER = "bidder"  # Участник торгов
    SELLER = "seller"  # Продавец
    ADMIN = "admin"  # Администратор


class User(Base):
    """Модель пользователя Telegram"""
    __tablename__ = "users"
    
    id = Column(BigIntId, primary_key=True, index=True)
    telegram_id = Column(BigInteger, unique=True, nullable=False, index=True)
    username = Column(String(255), nullable=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    role = Column(String(50), default=UserRole.BIDDER.value, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value
