"""Клавиатуры для аукционов"""
from decimal import Decimal
from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton
from aiogram.utils.keyboard import InlineKeyboardBuilder


def get_auction_keyboard(auction_id: int, minimum_bid: Decimal) -> InlineKeyboardMarkup:
    """Клавиатура для аукциона"""
    builder = InlineKeyboardBuilder()
    builder.add(InlineKeyboardButton(
        text=f"💰 Поставить {minimum_bid:,}",
        callback_data=f"bid:quick:{auction_id}"
    ))
    builder.add(InlineKeyboardButton(
        text="📊 История ставок",
        callback_data=f"auction:bids:{auction_id}"
    ))
    builder.add(InlineKeyboardButton(
        text="📈 Статистика",
        callback_data=f"auction:stats:{auction_id}"
    ))
    builder.add(InlineKeyboardButton(
        text="👁 Следить",
        callback_data=f"auction:watch:{auction_id}"
    ))
    # Каждая кнопка в своей строке
    builder.adjust(1)
    return builder.as_markup()
