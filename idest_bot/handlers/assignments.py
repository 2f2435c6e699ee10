"""Обработчики /assignments и /submissions: списки заданий и работ."""
import html
import logging
from typing import Dict, List, Optional, Tuple

from aiogram import F, Router
from aiogram.filters import Command, CommandObject
from aiogram.types import CallbackQuery, InlineKeyboardButton, InlineKeyboardMarkup, Message

from ..config import settings
from ..core.storage import DatabaseClientStorage, pop_grading_queued
from ..idest_api.client import IdestClient
from ..idest_api.exceptions import AuthenticationError, IdestAPIError
from ..idest_api.models import AssignmentOverview, Page, Skill, SubmissionOverview
from ..utils.identity import ensure_identity

logger = logging.getLogger(__name__)

router = Router()

SKILL_TITLES = {
    Skill.READING: "📖 Reading",
    Skill.LISTENING: "🎧 Listening",
    Skill.WRITING: "✍️ Writing",
    Skill.SPEAKING: "🎤 Speaking",
}

STATUS_TITLES = {
    "pending": "⏳ Đang chấm",
    "graded": "✅ Đã chấm",
    "completed": "✅ Đã chấm",
}

NOT_LINKED_TEXT = "Bạn chưa liên kết tài khoản hoặc token đã hết hạn. Liên kết: /link"
SERVICE_ERROR_TEXT = "⚠️ Máy chủ Idest tạm thời không phản hồi, vui lòng thử lại sau"
GRADING_QUEUED_TEXT = (
    "📨 Bài làm của bạn đã được gửi và đang chờ chấm điểm. "
    "Kết quả sẽ xuất hiện trong danh sách khi chấm xong."
)


# ============================================================================
# ВСПОМОГАТЕЛЬНЫЕ ФУНКЦИИ
# ============================================================================

def _parse_skill(raw: Optional[str]) -> Tuple[Optional[Skill], bool]:
    """
    Returns:
        Tuple (skill, ok): skill None means all skills; ok False for an unknown name
    """
    if not raw:
        return None, True
    try:
        return Skill(raw.strip().lower()), True
    except ValueError:
        return None, False


def _format_assignment_list(skill: Skill, page: Page) -> str:
    lines = [f"<b>{SKILL_TITLES[skill]}</b>"]
    if not page.items:
        lines.append("   Chưa có bài tập")
        return "\n".join(lines)

    for index, item in enumerate(page.items, start=1):
        lines.append(f"{index}. {html.escape(item.title)}")
    if page.pagination and page.pagination.total_pages:
        lines.append(f"   Trang {page.pagination.page}/{page.pagination.total_pages}")
    return "\n".join(lines)


def _get_assignments_keyboard(
    skill: Skill, items: List[AssignmentOverview], page: Page
) -> InlineKeyboardMarkup:
    """Кнопки «Làm bài» для каждого задания и листание страниц."""
    buttons = [
        [InlineKeyboardButton(
            text=f"▶️ {index}. {item.title[:40]}",
            callback_data=f"asg:take:{skill.value}:{item.id}",
        )]
        for index, item in enumerate(items, start=1)
    ]

    pagination = page.pagination
    if pagination is not None:
        nav = []
        if pagination.page > 1:
            nav.append(InlineKeyboardButton(
                text="⬅️", callback_data=f"asg:page:{skill.value}:{pagination.page - 1}"
            ))
        if pagination.has_next:
            nav.append(InlineKeyboardButton(
                text="➡️", callback_data=f"asg:page:{skill.value}:{pagination.page + 1}"
            ))
        if nav:
            buttons.append(nav)

    return InlineKeyboardMarkup(inline_keyboard=buttons)


def _format_overview(pages: Dict[Skill, Page]) -> str:
    parts = [_format_assignment_list(skill, page) for skill, page in pages.items()]
    parts.append("Chọn kỹ năng để làm bài: /assignments reading")
    return "\n\n".join(parts)


def _format_submission(item: SubmissionOverview) -> str:
    skill = SKILL_TITLES.get(item.skill, "❔") if item.skill else "❔"
    title = html.escape(item.title or "—")
    status = STATUS_TITLES.get(item.status or "", html.escape(item.status or ""))
    line = f"{skill} — {title}"
    if item.score is not None:
        line += f" — <b>{item.score:g}</b>"
    elif status:
        line += f" — {status}"
    if item.skill and item.assignment_id:
        line += (
            f"\n   <code>/result {item.skill.value} {html.escape(item.assignment_id)} "
            f"{html.escape(item.id)}</code>"
        )
    return line


def _format_submissions(page: Page, queued: bool) -> str:
    lines = []
    if queued:
        lines.extend([GRADING_QUEUED_TEXT, ""])

    lines.append("<b>📋 Bài đã nộp</b>\n")
    if not page.items:
        lines.append("Bạn chưa nộp bài nào.")
    else:
        lines.extend(_format_submission(item) for item in page.items)
    return "\n".join(lines)


def _parse_callback_data(data: str) -> Optional[tuple]:
    """
    Парсит callback_data формата asg:action:skill:value.

    Returns:
        Tuple (action, skill, value) или None при ошибке.
    """
    parts = data.split(":", 3)
    if len(parts) != 4 or parts[0] != "asg":
        return None
    try:
        return parts[1], Skill(parts[2]), parts[3]
    except ValueError:
        return None


async def _show_skill_page(target: Message, token: str, skill: Skill, page_number: int, edit: bool):
    client = IdestClient(token=token)
    try:
        page = await client.list_assignments_by_skill(skill, page=page_number, limit=settings.PAGE_SIZE)
    finally:
        await client.close()

    text = _format_assignment_list(skill, page)
    keyboard = _get_assignments_keyboard(skill, page.items, page)
    if edit:
        await target.edit_text(text, reply_markup=keyboard, parse_mode="HTML")
    else:
        await target.answer(text, reply_markup=keyboard, parse_mode="HTML")


# ============================================================================
# ОБРАБОТЧИКИ КОМАНД
# ============================================================================

@router.message(Command("assignments"))
async def cmd_assignments(message: Message, command: CommandObject):
    """Все навыки кратко, либо задания одного навыка с кнопками."""
    skill, ok = _parse_skill(command.args)
    if not ok:
        await message.answer("Kỹ năng không hợp lệ. Dùng: reading, listening, writing, speaking")
        return

    try:
        identity = await ensure_identity(message.from_user.id)
    except AuthenticationError:
        await message.answer(NOT_LINKED_TEXT)
        return

    try:
        if skill is not None:
            await _show_skill_page(message, identity.access_token, skill, 1, edit=False)
            return

        client = IdestClient(token=identity.access_token)
        try:
            pages = await client.list_assignments(page=1, limit=settings.PAGE_SIZE)
        finally:
            await client.close()
        await message.answer(_format_overview(pages), parse_mode="HTML")
    except AuthenticationError:
        await message.answer(NOT_LINKED_TEXT)
    except IdestAPIError as e:
        logger.error("Assignment listing failed for user_id=%d: %s", message.from_user.id, e)
        await message.answer(SERVICE_ERROR_TEXT)


@router.callback_query(F.data.startswith("asg:page:"))
async def cb_assignments_page(callback: CallbackQuery):
    """Листание списка заданий."""
    try:
        parsed = _parse_callback_data(callback.data)
        if parsed is None or not parsed[2].isdigit():
            logger.warning("Невалидный callback_data: %s", callback.data)
            return

        _, skill, page_number = parsed
        identity = await ensure_identity(callback.from_user.id)
        await _show_skill_page(callback.message, identity.access_token, skill, int(page_number), edit=True)
    except AuthenticationError:
        await callback.message.edit_text(NOT_LINKED_TEXT)
    except IdestAPIError as e:
        logger.error("Assignment page failed for user_id=%d: %s", callback.from_user.id, e)
        await callback.message.edit_text(SERVICE_ERROR_TEXT)
    finally:
        await callback.answer()


@router.message(Command("submissions"))
async def cmd_submissions(message: Message, command: CommandObject):
    """Список своих работ; уведомление «đang chờ chấm» показывается один раз."""
    telegram_id = message.from_user.id
    skill, ok = _parse_skill(command.args)
    if not ok:
        await message.answer("Kỹ năng không hợp lệ. Dùng: reading, listening, writing, speaking")
        return

    try:
        identity = await ensure_identity(telegram_id)
    except AuthenticationError:
        await message.answer(NOT_LINKED_TEXT)
        return

    client = IdestClient(token=identity.access_token)
    try:
        page = await client.get_my_submissions(page=1, limit=settings.PAGE_SIZE, skill=skill)
    except AuthenticationError:
        await message.answer(NOT_LINKED_TEXT)
        return
    except IdestAPIError as e:
        logger.error("Submission listing failed for user_id=%d: %s", telegram_id, e)
        await message.answer(SERVICE_ERROR_TEXT)
        return
    finally:
        await client.close()

    queued = await pop_grading_queued(DatabaseClientStorage(telegram_id))
    await message.answer(_format_submissions(page, queued), parse_mode="HTML")
