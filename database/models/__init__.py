"""Модели базы данных"""
from .user import User, UserRole
from .auction import Auction, AuctionStatus
from .bid import Bid
from .watchlist import WatchlistEntry

__all__ = [
    "User",
    "UserRole",
    "Auction",
    "AuctionStatus",
    "Bid",
    "WatchlistEntry",
]
