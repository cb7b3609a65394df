"""Модель аукциона"""
from sqlalchemy import Column, BigInteger, Integer, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
from database.connection import Base, BigIntId


class AuctionStatus(str, enum.Enum):
    """Статус аукциона"""
    DRAFT = "draft"  # Черновик, виден только продавцу
    ACTIVE = "active"  # Принимает ставки
    COMPLETED = "completed"  # Завершен
    CANCELLED = "cancelled"  # Отменен


# Разрешенные переходы статусов
AUCTION_TRANSITIONS = {
    AuctionStatus.DRAFT: {AuctionStatus.ACTIVE, AuctionStatus.CANCELLED},
    AuctionStatus.ACTIVE: {AuctionStatus.COMPLETED, AuctionStatus.CANCELLED},
    AuctionStatus.COMPLETED: set(),
    AuctionStatus.CANCELLED: set(),
}


class Auction(Base):
    """Модель аукциона"""
    __tablename__ = "auctions"
    
    id = Column(BigIntId, primary_key=True, index=True)
    seller_id = Column(BigInteger, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    starting_price = Column(Numeric(10, 2), nullable=False)  # Начальная цена
    reserve_price = Column(Numeric(10, 2), nullable=True)  # Резервная цена
    current_bid = Column(Numeric(10, 2), nullable=False)  # Текущая цена
    bid_increment = Column(Numeric(10, 2), nullable=False, default=1)  # Минимальный шаг
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(String(50), default=AuctionStatus.DRAFT.value, nullable=False, index=True)
    # Текущий лидер обновляется в одной транзакции с current_bid
    leader_id = Column(BigInteger, ForeignKey("users.id"), nullable=True)
    winner_id = Column(BigInteger, ForeignKey("users.id"), nullable=True, index=True)
    total_bids = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    
    # Связи
    seller = relationship("User", foreign_keys=[seller_id])
    winner = relationship("User", foreign_keys=[winner_id])
    bids = relationship("Bid", back_populates="auction", order_by="Bid.created_at.desc()")
