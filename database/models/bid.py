"""Модель ставки"""
from sqlalchemy import Column, BigInteger, DateTime, ForeignKey, Boolean, Numeric, String
from sqlalchemy.orm import relationship
from database.connection import Base, BigIntId


class Bid(Base):
    """Модель ставки на аукционе (строки только добавляются)"""
    __tablename__ = "bids"
    
    id = Column(BigIntId, primary_key=True, index=True)
    auction_id = Column(BigInteger, ForeignKey("auctions.id"), nullable=False, index=True)
    bidder_id = Column(BigInteger, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)  # Сумма ставки
    is_auto_bid = Column(Boolean, default=False, nullable=False)
    max_auto_bid = Column(Numeric(10, 2), nullable=True)  # Потолок автоставки
    # Время выставляется сервисом, а не БД: now() в PostgreSQL одинаков для всей транзакции
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    ip_address = Column(String(45), nullable=True)
    
    # Связи
    auction = relationship("Auction", back_populates="bids")
    bidder = relationship("User", backref="bids")
