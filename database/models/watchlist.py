"""Модель списка наблюдения"""
from sqlalchemy import Column, BigInteger, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from database.connection import Base, BigIntId


class WatchlistEntry(Base):
    """Пользователь следит за аукционом и получает его события"""
    __tablename__ = "watchlist"
    
    id = Column(BigIntId, primary_key=True, index=True)
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False, index=True)
    auction_id = Column(BigInteger, ForeignKey("auctions.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    
    # Один пользователь следит за аукционом только один раз
    __table_args__ = (
        UniqueConstraint('user_id', 'auction_id', name='uq_watchlist_user_auction'),
    )
    
    # Связи
    user = relationship("User")
    auction = relationship("Auction")
