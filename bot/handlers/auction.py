"""Обработчики аукционов"""
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional
import logging
import math

from aiogram import Router, F, html
from aiogram.filters import Command, CommandObject
from aiogram.types import CallbackQuery, Message
from sqlalchemy.ext.asyncio import AsyncSession

from bot.keyboards.auction import get_auction_keyboard
from config import settings
from database.models.user import User, UserRole
from services import history
from services.bidding import BidAdmissionService
from services.lifecycle import AuctionLifecycle
from services.results import AuctionSnapshot, BidAccepted, BidResult, Rejection, RejectionReason, StorageFailure
from services.user import get_or_create_user, set_user_role
from services.validator import amount_error

logger = logging.getLogger(__name__)

router = Router()

STORAGE_FAILURE_TEXT = "⚠️ Сервис временно недоступен, попробуйте позже"
# Самый долгий аукцион, который можно создать из бота
MAX_DURATION_HOURS = 24 * 30


@dataclass(frozen=True)
class BidCommand:
    """Разобранная команда /bid <аукцион> <сумма> [максимум]"""
    auction_id: int
    amount: Decimal
    max_auto_bid: Optional[Decimal] = None

    @property
    def is_auto_bid(self) -> bool:
        return self.max_auto_bid is not None


def _parse_amount(raw: str) -> Decimal:
    amount = Decimal(raw.replace(" ", "").replace(",", ""))
    error = amount_error(amount)
    if error:
        raise ValueError(error)
    return amount


def parse_bid_command(args: Optional[str]) -> BidCommand:
    """Разобрать аргументы /bid; ValueError с понятным текстом при ошибке"""
    parts = (args or "").split()
    if len(parts) not in (2, 3):
        raise ValueError("Формат: /bid <номер аукциона> <сумма> [максимум автоставки]")
    try:
        auction_id = int(parts[0])
    except ValueError:
        raise ValueError("Номер аукциона должен быть целым числом")
    try:
        amount = _parse_amount(parts[1])
        max_auto_bid = _parse_amount(parts[2]) if len(parts) == 3 else None
    except InvalidOperation:
        raise ValueError("Пожалуйста, введите корректное число")
    return BidCommand(auction_id, amount, max_auto_bid)


def format_rejection(rejection: Rejection) -> str:
    """Текст отказа для пользователя"""
    text = f"Ставка не принята ☹️\n\n{html.quote(rejection.message)}"
    if rejection.reason == RejectionReason.BID_TOO_LOW and rejection.minimum_bid is not None:
        text += f"\nПоставьте не меньше {rejection.minimum_bid:,}"
    if rejection.retryable:
        text += "\nПопробуйте еще раз через пару секунд"
    return text


def format_bid_result(result: BidResult, bidder_id: int) -> str:
    """Ответ участнику после ставки"""
    if isinstance(result, Rejection):
        return format_rejection(result)
    text = (
        f"✅ Ваша ставка {result.bid.amount:,} принята.\n"
        f"Текущая цена лота: {result.auction.current_bid:,}."
    )
    if result.leader_id == bidder_id:
        text += "\nВы пока в лидерах."
    else:
        text += "\nВашу ставку сразу перебила автоставка другого участника."
    if not result.reserve_met:
        text += "\nРезервная цена продавца еще не достигнута."
    return text


def format_auction(auction: AuctionSnapshot) -> str:
    """Карточка аукциона"""
    lines = [
        f"<b>{html.quote(auction.title)}</b>",
        f"Изначальная цена: {auction.starting_price:,}",
        f"⚡️ Текущая цена: {auction.current_bid:,}",
        f"👥 Кол-во ставок: {auction.total_bids}",
        f"Минимальная ставка: {auction.minimum_next_bid:,}",
    ]
    if auction.reserve_price is not None and not auction.reserve_met:
        lines.append("Резервная цена не достигнута")
    lines.append(f"⏳ До: {auction.end_time:%d.%m.%Y %H:%M} UTC")
    return "\n".join(lines)


async def _current_user(event: Message | CallbackQuery, session: AsyncSession) -> User:
    return await get_or_create_user(
        session,
        event.from_user.id,
        event.from_user.username,
        event.from_user.first_name,
        event.from_user.last_name
    )


def _is_admin(user: User) -> bool:
    return user.is_admin or user.telegram_id in settings.admin_ids_list


@router.message(Command("start"))
async def cmd_start(message: Message, session: AsyncSession):
    """Обработчик команды /start"""
    await _current_user(message, session)
    await message.answer(
        "👋 Добро пожаловать в аукцион!\n\n"
        + html.quote(
            "/new <цена> <часы> <название> - создать аукцион\n"
            "/activate <номер> - запустить аукцион\n"
            "/bid <номер> <сумма> [максимум] - сделать ставку\n"
            "/cancel <номер> - отменить аукцион"
        )
    )


@router.message(Command("new"))
async def cmd_new_auction(message: Message, command: CommandObject, session: AsyncSession, lifecycle: AuctionLifecycle):
    """Создать черновик аукциона: /new <цена> <часы> <название>"""
    parts = (command.args or "").split(maxsplit=2)
    if len(parts) != 3:
        await message.answer(html.quote("Формат: /new <начальная цена> <длительность в часах> <название>"))
        return
    try:
        starting_price = _parse_amount(parts[0])
    except InvalidOperation:
        await message.answer("Пожалуйста, введите корректное число")
        return
    except ValueError as e:
        await message.answer(html.quote(str(e)))
        return
    try:
        hours = float(parts[1])
    except ValueError:
        hours = math.nan
    if not math.isfinite(hours) or not 0 < hours <= MAX_DURATION_HOURS:
        await message.answer(f"Длительность должна быть от 0 до {MAX_DURATION_HOURS} часов")
        return

    user = await _current_user(message, session)
    now = lifecycle.clock()
    try:
        result = await lifecycle.create_auction(
            seller_id=user.id,
            title=parts[2],
            starting_price=starting_price,
            start_time=now,
            end_time=now + timedelta(hours=hours),
        )
    except StorageFailure as e:
        logger.error(f"Не удалось создать аукцион: {e}")
        await message.answer(STORAGE_FAILURE_TEXT)
        return
    if isinstance(result, Rejection):
        await message.answer(html.quote(result.message))
        return
    await message.answer(
        f"📝 Черновик аукциона №{result.id} создан.\n"
        f"Запустите его командой /activate {result.id}"
    )


@router.message(Command("activate"))
async def cmd_activate(message: Message, command: CommandObject, session: AsyncSession, lifecycle: AuctionLifecycle):
    """Запустить аукцион"""
    try:
        auction_id = int((command.args or "").strip())
    except ValueError:
        await message.answer(html.quote("Формат: /activate <номер аукциона>"))
        return

    user = await _current_user(message, session)
    try:
        result = await lifecycle.activate(auction_id, user.id)
    except StorageFailure as e:
        logger.error(f"Не удалось запустить аукцион {auction_id}: {e}")
        await message.answer(STORAGE_FAILURE_TEXT)
        return
    if isinstance(result, Rejection):
        await message.answer(html.quote(result.message))
        return
    await message.answer(
        format_auction(result),
        reply_markup=get_auction_keyboard(result.id, result.minimum_next_bid)
    )


@router.message(Command("cancel"))
async def cmd_cancel(message: Message, command: CommandObject, session: AsyncSession, lifecycle: AuctionLifecycle):
    """Отменить аукцион"""
    try:
        auction_id = int((command.args or "").strip())
    except ValueError:
        await message.answer(html.quote("Формат: /cancel <номер аукциона>"))
        return

    user = await _current_user(message, session)
    try:
        result = await lifecycle.cancel_auction(auction_id, user.id, is_admin=_is_admin(user))
    except StorageFailure as e:
        logger.error(f"Не удалось отменить аукцион {auction_id}: {e}")
        await message.answer(STORAGE_FAILURE_TEXT)
        return
    if isinstance(result, Rejection):
        await message.answer(html.quote(result.message))
        return
    await message.answer(f"❌ Аукцион №{result.id} отменен")


@router.message(Command("end"))
async def cmd_end(message: Message, command: CommandObject, session: AsyncSession, lifecycle: AuctionLifecycle):
    """Досрочно завершить аукцион (только администратор)"""
    user = await _current_user(message, session)
    if not _is_admin(user):
        await message.answer("У вас нет прав для этой команды")
        return
    try:
        auction_id = int((command.args or "").strip())
    except ValueError:
        await message.answer(html.quote("Формат: /end <номер аукциона>"))
        return

    try:
        result = await lifecycle.end_auction(auction_id)
    except StorageFailure as e:
        logger.error(f"Не удалось завершить аукцион {auction_id}: {e}")
        await message.answer(STORAGE_FAILURE_TEXT)
        return
    if isinstance(result, Rejection):
        await message.answer(html.quote(result.message))
        return
    await message.answer(f"🏁 Аукцион №{result.id} завершен. Победитель: {result.winner_id or 'нет'}")


@router.message(Command("bid"))
async def cmd_bid(message: Message, command: CommandObject, session: AsyncSession, bidding: BidAdmissionService):
    """Сделать ставку: /bid <номер> <сумма> [максимум автоставки]"""
    try:
        parsed = parse_bid_command(command.args)
    except ValueError as e:
        await message.answer(html.quote(str(e)))
        return

    user = await _current_user(message, session)
    try:
        result = await bidding.place_bid(
            parsed.auction_id,
            user.id,
            parsed.amount,
            is_auto_bid=parsed.is_auto_bid,
            max_auto_bid=parsed.max_auto_bid,
            ip_address=None,
        )
    except StorageFailure as e:
        logger.error(f"Ставка на аукцион {parsed.auction_id} не записана: {e}")
        await message.answer(STORAGE_FAILURE_TEXT)
        return
    await message.answer(format_bid_result(result, user.id))


@router.callback_query(F.data.startswith("bid:quick:"))
async def place_bid_quick(callback: CallbackQuery, session: AsyncSession, bidding: BidAdmissionService):
    """Сделать минимально возможную ставку"""
    auction_id = int(callback.data.split(":")[2])

    auction = await bidding.store.get_auction(session, auction_id)
    if not auction:
        await callback.answer("Аукцион не найден", show_alert=True)
        return
    minimum = AuctionSnapshot.from_model(auction).minimum_next_bid

    user = await _current_user(callback, session)
    try:
        result = await bidding.place_bid(auction_id, user.id, minimum)
    except StorageFailure as e:
        logger.error(f"Быстрая ставка на аукцион {auction_id} не записана: {e}")
        await callback.answer(STORAGE_FAILURE_TEXT, show_alert=True)
        return
    if isinstance(result, BidAccepted):
        await callback.answer(f"Ставка {minimum:,} принята! ✅")
    else:
        await callback.answer(result.message, show_alert=True)
    await callback.bot.send_message(
        chat_id=callback.from_user.id,
        text=format_bid_result(result, user.id)
    )


@router.callback_query(F.data.startswith("auction:bids:"))
async def view_bids_history(callback: CallbackQuery, session: AsyncSession):
    """Просмотр истории ставок"""
    auction_id = int(callback.data.split(":")[2])

    page = await history.get_auction_bids(session, auction_id, limit=10)
    if not page.items:
        await callback.answer("Ставок пока нет", show_alert=True)
        return

    text = "📊 История ставок (последние 10):\n\n"
    for i, bid in enumerate(page.items, 1):
        mark = " 🤖" if bid.is_auto_bid else ""
        text += f"{i}. {bid.amount:,} от участника {bid.bidder_id}{mark} - {bid.created_at.strftime('%H:%M:%S')}\n"

    # Отправляем в личку пользователя, а не в канал
    await callback.bot.send_message(chat_id=callback.from_user.id, text=text)
    await callback.answer()


@router.callback_query(F.data.startswith("auction:stats:"))
async def view_bid_statistics(callback: CallbackQuery, session: AsyncSession):
    """Статистика ставок"""
    auction_id = int(callback.data.split(":")[2])
    stats = await history.get_bid_statistics(session, auction_id)
    await callback.bot.send_message(
        chat_id=callback.from_user.id,
        text=(
            f"📈 Ставок: {stats.count}\n"
            f"Участников: {stats.unique_bidders}\n"
            f"Средняя ставка: {stats.average:,}\n"
            f"Минимальная: {stats.lowest:,}\n"
            f"Максимальная: {stats.highest:,}"
        )
    )
    await callback.answer()


@router.callback_query(F.data.startswith("auction:watch:"))
async def toggle_watch(callback: CallbackQuery, session: AsyncSession):
    """Подписаться на события аукциона или отписаться"""
    auction_id = int(callback.data.split(":")[2])
    user = await _current_user(callback, session)
    # commit и rollback ниже сбрасывают загруженные атрибуты user
    user_id = user.id

    if await history.is_watching(session, user_id, auction_id):
        await history.remove_from_watchlist(session, user_id, auction_id)
        await callback.answer("Вы больше не следите за аукционом")
    elif await history.add_to_watchlist(session, user_id, auction_id):
        await callback.answer("Вы следите за аукционом 👁")
    else:
        # Параллельное нажатие уже добавило запись
        await callback.answer("Вы уже следите за аукционом")


@router.message(Command("role"))
async def cmd_set_role(message: Message, command: CommandObject, session: AsyncSession):
    """Назначить роль пользователю: /role <id пользователя> <bidder|seller|admin>"""
    user = await _current_user(message, session)
    if not _is_admin(user):
        await message.answer("У вас нет прав для этой команды")
        return

    parts = (command.args or "").split()
    try:
        user_id = int(parts[0])
        role = UserRole(parts[1])
    except (IndexError, ValueError):
        await message.answer(html.quote("Формат: /role <id пользователя> <bidder|seller|admin>"))
        return

    try:
        target = await set_user_role(session, user_id, role)
    except ValueError as e:
        await message.answer(str(e))
        return
    await message.answer(f"✅ Пользователь {target.id} теперь {target.role}")
