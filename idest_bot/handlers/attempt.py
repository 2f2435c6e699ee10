"""Прохождение задания: карточка вопроса, ответы, таймер и отправка."""
import html
import logging
from typing import Dict, List, Optional, Tuple

from aiogram import F, Router
from aiogram.exceptions import TelegramBadRequest
from aiogram.filters import Command
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery, InlineKeyboardButton, InlineKeyboardMarkup, Message

from ..core.storage import DatabaseClientStorage
from ..database.crud import log_activity, record_submission
from ..idest_api.client import IdestClient
from ..idest_api.exceptions import AuthenticationError, IdestAPIError
from ..idest_api.models import SPEAKING_KEYS, Skill
from ..states.attempt import AttemptStates
from ..utils.identity import ensure_identity
from ..workflow.answers import is_blank
from ..workflow.attempt import AssignmentAttempt, clear_attempt, get_attempt, set_attempt
from ..workflow.coordinator import ResultRoute
from ..workflow.exceptions import (
    RecordingError, ResultNotFoundError, SubmissionFailedError, SubmissionValidationError,
)
from ..workflow.interactions import AnswerFormatError, FreeText
from ..workflow.result import format_answer
from .assignments import NOT_LINKED_TEXT
from .results import send_review

logger = logging.getLogger(__name__)

router = Router()

# Клиенты API активных попыток по Telegram user_id
_clients: Dict[int, IdestClient] = {}

NO_ATTEMPT_TEXT = "Bài làm đã kết thúc."
QUEUED_TEXT = "📨 Đã nộp bài! Bài làm đang chờ chấm điểm. Xem trạng thái: /submissions"
EXPIRED_TEXT = "⏰ Hết giờ! Bài làm đang được nộp tự động..."

# Длинный текст (отрывок для чтения) обрезаем в карточке
PASSAGE_PREVIEW = 3500


# ============================================================================
# ВСПОМОГАТЕЛЬНЫЕ ФУНКЦИИ
# ============================================================================

def _word_count(text: str) -> int:
    return len(text.split())


def _format_question_card(attempt: AssignmentAttempt) -> str:
    """Карточка текущего вопроса (или части/задания для writing/speaking)."""
    assignment = attempt.assignment
    navigator = attempt.navigator
    section = navigator.active_section

    lines = [
        f"<b>{html.escape(assignment.title)}</b>",
        f"⏱ {attempt.timer.format_remaining()}   "
        f"📝 {navigator.answered_count(attempt.answers)}/{len(navigator.flat)}",
    ]
    if section is None:
        lines.append("")
        lines.append("Bài tập không có câu hỏi.")
        return "\n".join(lines)

    section_title = section.title or f"Phần {navigator.active_index + 1}"
    lines.append(f"<b>{html.escape(section_title)}</b> ({navigator.active_index + 1}/{navigator.section_count})")

    if attempt.skill == Skill.SPEAKING:
        return "\n".join(lines + [""] + _speaking_lines(attempt))

    if section.audio_url:
        lines.append(f"🎧 <a href=\"{html.escape(section.audio_url, quote=True)}\">Audio</a>")

    question = navigator.current_question
    if question is None:
        lines.append("")
        lines.append("Phần này không có câu hỏi.")
        return "\n".join(lines)

    lines.append("")
    if attempt.skill == Skill.WRITING:
        if assignment.image_url and question.id == "contentOne":
            lines.append(f"🖼 <a href=\"{html.escape(assignment.image_url, quote=True)}\">Hình minh họa</a>")
        lines.append(html.escape(question.prompt_md.strip()))
        current = attempt.answers.get(question.id, "")
        lines.append("")
        if is_blank(current):
            lines.append("Gửi bài viết của bạn bằng một tin nhắn (gửi lại để thay thế).")
        else:
            lines.append(f"✍️ Đã lưu: {_word_count(current)} từ")
        return "\n".join(lines)

    entry = navigator.current
    lines.append(f"<b>Câu {entry.global_index + 1}</b>")
    stimulus = question.stimulus
    if stimulus.instructions_md:
        lines.append(f"<i>{html.escape(stimulus.instructions_md.strip())}</i>")
    if stimulus.content_md:
        lines.append(html.escape(stimulus.content_md.strip()))
    if stimulus.template_body:
        lines.append(html.escape(stimulus.template_body.strip()))
    if question.prompt_md:
        lines.append(html.escape(question.prompt_md.strip()))

    items = question.interaction.items()
    if items:
        lines.append("")
        lines.extend(f"{html.escape(o.id)}. {html.escape(o.label)}" for o in items)

    options = question.interaction.choices()
    if options:
        lines.append("")
        if items:
            lines.append("<b>Đáp án</b>")
        lines.extend(f"{html.escape(o.id)}. {html.escape(o.label)}" for o in options)

    hint = question.interaction.hint()
    if hint:
        lines.append(f"\n💡 {html.escape(hint)}")

    current = attempt.answers.get(question.id)
    lines.append(f"\nTrả lời: {html.escape(format_answer(current))}")
    return "\n".join(lines)


def _speaking_lines(attempt: AssignmentAttempt) -> List[str]:
    section = attempt.navigator.active_section
    lines = [f"{index}. {html.escape(q.prompt_md.strip())}" for index, q in enumerate(section.questions, start=1)]

    index = attempt.navigator.active_index
    if index < len(SPEAKING_KEYS):
        audio = attempt.answers.get(SPEAKING_KEYS[index])
        lines.append("")
        if audio is None:
            lines.append("🎤 Gửi tin nhắn thoại (voice) hoặc file audio cho phần này.")
        else:
            lines.append(f"✅ Đã có bản ghi âm ({audio.size_mb} MB). Gửi lại để thay thế.")
    return lines


def _get_attempt_keyboard(attempt: AssignmentAttempt) -> InlineKeyboardMarkup:
    """Клавиатура карточки: варианты ответа, навигация, отправка."""
    navigator = attempt.navigator
    buttons: List[List[InlineKeyboardButton]] = []

    question = navigator.current_question
    if question is not None and attempt.skill.is_objective:
        options = question.interaction.choices()
        pairwise = getattr(question.interaction, "is_pairwise", False)
        if options and not pairwise:
            row = []
            for index, option in enumerate(options):
                row.append(InlineKeyboardButton(text=option.id, callback_data=f"att:opt:{index}"))
                if len(row) == 4:
                    buttons.append(row)
                    row = []
            if row:
                buttons.append(row)

        entry = navigator.current
        entries = navigator.section_entries(navigator.active_index)
        nav = []
        if entries and entry.global_index > entries[0].global_index:
            nav.append(InlineKeyboardButton(text="◀️", callback_data=f"att:q:{entry.global_index - 1}"))
        if entries and entry.global_index < entries[-1].global_index:
            nav.append(InlineKeyboardButton(text="▶️", callback_data=f"att:q:{entry.global_index + 1}"))
        if nav:
            buttons.append(nav)

    if navigator.section_count > 1:
        buttons.append([
            InlineKeyboardButton(
                text=f"• {index + 1} •" if index == navigator.active_index else str(index + 1),
                callback_data=f"att:sec:{index}",
            )
            for index in range(navigator.section_count)
        ])

    section = navigator.active_section
    extra = []
    if section is not None and section.passage_md:
        extra.append(InlineKeyboardButton(text="📄 Bài đọc", callback_data="att:passage"))
    if navigator.has_next:
        extra.append(InlineKeyboardButton(text="Phần tiếp ⏭", callback_data="att:next"))
    if extra:
        buttons.append(extra)

    buttons.append([
        InlineKeyboardButton(text="📤 Nộp bài", callback_data="att:submit"),
        InlineKeyboardButton(text="🚪 Thoát", callback_data="att:exit"),
    ])
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def _parse_callback_data(data: str) -> Optional[Tuple[str, Optional[int]]]:
    """
    Парсит callback_data формата att:action[:index].

    Returns:
        Tuple (action, index) или None при ошибке. index None если не указан.
    """
    try:
        parts = data.split(":")
        if len(parts) < 2 or len(parts) > 3 or parts[0] != "att":
            return None

        index = int(parts[2]) if len(parts) == 3 else None
        if index is not None and index < 0:
            return None
        return parts[1], index
    except ValueError:
        return None


async def _send_card(message: Message, attempt: AssignmentAttempt):
    await message.answer(
        _format_question_card(attempt),
        reply_markup=_get_attempt_keyboard(attempt),
        parse_mode="HTML",
        disable_web_page_preview=True,
    )


async def _edit_card(message: Message, attempt: AssignmentAttempt):
    try:
        await message.edit_text(
            _format_question_card(attempt),
            reply_markup=_get_attempt_keyboard(attempt),
            parse_mode="HTML",
            disable_web_page_preview=True,
        )
    except TelegramBadRequest as e:
        # "message is not modified": та же карточка
        logger.debug("Card not edited: %s", e)


async def _end_attempt(user_id: int, state: Optional[FSMContext] = None):
    """Снять попытку: таймер, координатор, микрофон, API-клиент, FSM."""
    clear_attempt(user_id)
    client = _clients.pop(user_id, None)
    if client is not None:
        await client.close()
    if state is not None:
        await state.clear()


def _make_callbacks(message: Message, user_id: int, state: FSMContext, client: IdestClient):
    """Колбэки координатора: переход к результату и ошибка автоотправки."""

    async def on_navigate(route: ResultRoute):
        attempt = get_attempt(user_id)
        trigger = "manual"
        if attempt is not None and attempt.timer.expired:
            trigger = "timer"
        await record_submission(user_id, route.skill.value, route.assignment_id, route.submission_id, trigger)
        await log_activity(user_id, "submit", f"{route.skill.value}:{route.assignment_id}:{route.submission_id}")

        try:
            if route.skill.is_objective:
                await message.answer("✅ Đã nộp bài!")
                try:
                    await send_review(message, client, route.skill, route.assignment_id, route.submission_id)
                except ResultNotFoundError as e:
                    await message.answer(
                        f"❌ {e}\n<code>/result {route.skill.value} {html.escape(route.assignment_id)} "
                        f"{html.escape(route.submission_id)}</code>",
                        parse_mode="HTML",
                    )
            else:
                await message.answer(QUEUED_TEXT)
        finally:
            await _end_attempt(user_id, state)

    async def on_error(error: Exception):
        await message.answer(
            f"❌ {error}",
            reply_markup=InlineKeyboardMarkup(inline_keyboard=[[
                InlineKeyboardButton(text="📤 Nộp lại", callback_data="att:submit"),
            ]]),
        )

    return on_navigate, on_error


# ============================================================================
# НАЧАЛО ПОПЫТКИ
# ============================================================================

@router.callback_query(F.data.startswith("asg:take:"))
async def cb_take_assignment(callback: CallbackQuery, state: FSMContext):
    """Загрузить задание и запустить таймер."""
    user_id = callback.from_user.id
    try:
        parts = callback.data.split(":", 3)
        try:
            skill = Skill(parts[2])
            assignment_id = parts[3]
        except (ValueError, IndexError):
            logger.warning("Невалидный callback_data: %s", callback.data)
            return

        try:
            identity = await ensure_identity(user_id)
        except AuthenticationError:
            await callback.message.answer(NOT_LINKED_TEXT)
            return

        # Предыдущая попытка закрывается без отправки
        await _end_attempt(user_id)

        client = IdestClient(token=identity.access_token)
        try:
            assignment = await client.get_assignment(skill, assignment_id)
        except IdestAPIError as e:
            logger.warning("Assignment %s/%s not loaded: %s", skill.value, assignment_id, e)
            await client.close()
            await callback.message.answer("❌ Không tìm thấy bài tập")
            return

        message = callback.message
        on_navigate, on_error = _make_callbacks(message, user_id, state, client)
        attempt = AssignmentAttempt(
            assignment,
            identity,
            client,
            storage=DatabaseClientStorage(user_id),
            on_navigate=on_navigate,
            on_error=on_error,
        )

        async def on_expired():
            await message.answer(EXPIRED_TEXT)

        attempt.timer.subscribe(on_expired)

        _clients[user_id] = client
        set_attempt(user_id, attempt)
        await state.set_state(AttemptStates.answering)
        attempt.start()
        await log_activity(user_id, "start_attempt", f"{skill.value}:{assignment_id}")

        await message.answer(
            f"▶️ Bắt đầu làm bài. Thời gian: {attempt.timer.format_remaining()}\n"
            "Bài sẽ tự động được nộp khi hết giờ."
        )
        await _send_card(message, attempt)
    finally:
        await callback.answer()


# ============================================================================
# ОТВЕТЫ
# ============================================================================

@router.message(AttemptStates.answering, F.voice | F.audio)
async def process_voice_answer(message: Message):
    """Голосовое сообщение или аудиофайл: запись текущей части speaking."""
    attempt = get_attempt(message.from_user.id)
    if attempt is None:
        await message.answer(NO_ATTEMPT_TEXT)
        return

    media = message.voice or message.audio
    try:
        buffer = await message.bot.download(media)
        key = attempt.attach_upload(buffer.read(), media.mime_type or "audio/ogg")
    except RecordingError as e:
        await message.answer(f"⚠️ {e}")
        return
    except TelegramBadRequest as e:
        logger.error("Voice download failed for user_id=%d: %s", message.from_user.id, e)
        await message.answer("⚠️ Không tải được file audio. Vui lòng gửi lại.")
        return

    logger.info("User %d attached %s", message.from_user.id, key)
    if attempt.navigator.has_next:
        attempt.navigator.advance()
    await _send_card(message, attempt)


@router.message(AttemptStates.answering, F.text & ~F.text.startswith("/"))
async def process_text_answer(message: Message):
    """Текстовый ответ на текущий вопрос."""
    attempt = get_attempt(message.from_user.id)
    if attempt is None:
        await message.answer(NO_ATTEMPT_TEXT)
        return

    if attempt.skill == Skill.SPEAKING:
        await message.answer("🎤 Phần Speaking cần gửi tin nhắn thoại hoặc file audio.")
        return

    try:
        attempt.answer_text(message.text)
    except AnswerFormatError as e:
        await message.answer(f"⚠️ {e}")
        return
    except LookupError:
        await message.answer("Phần này không có câu hỏi.")
        return

    question = attempt.navigator.current_question
    if question is not None and not isinstance(question.interaction, FreeText):
        attempt.navigator.focus_next()
    await _send_card(message, attempt)


@router.message(Command("cancel"))
async def cmd_cancel(message: Message, state: FSMContext):
    """Выйти из попытки без отправки."""
    if get_attempt(message.from_user.id) is None:
        await state.clear()
        await message.answer("Không có bài đang làm.")
        return

    await _end_attempt(message.from_user.id, state)
    await log_activity(message.from_user.id, "cancel_attempt")
    await message.answer("Đã thoát bài làm. Bài chưa được nộp.")


# ============================================================================
# ОБРАБОТЧИКИ CALLBACK
# ============================================================================

@router.callback_query(F.data.startswith("att:"))
async def cb_attempt_action(callback: CallbackQuery, state: FSMContext):
    """Кнопки карточки: выбор ответа, навигация, отправка, выход."""
    user_id = callback.from_user.id
    parsed = _parse_callback_data(callback.data)
    if parsed is None:
        logger.warning("Невалидный callback_data: %s", callback.data)
        await callback.answer()
        return

    attempt = get_attempt(user_id)
    if attempt is None:
        await callback.answer(NO_ATTEMPT_TEXT, show_alert=True)
        return

    action, index = parsed
    alert = None
    try:
        if action == "opt" and index is not None:
            question = attempt.navigator.current_question
            options = question.interaction.choices() if question else []
            if index >= len(options):
                return
            try:
                attempt.answer_choice(options[index].id)
            except AnswerFormatError as e:
                alert = str(e)
                return
            attempt.navigator.focus_next()
            await _edit_card(callback.message, attempt)

        elif action == "q" and index is not None:
            try:
                attempt.navigator.focus(index)
            except IndexError:
                return
            await _edit_card(callback.message, attempt)

        elif action == "sec" and index is not None:
            try:
                attempt.navigator.jump_to(index)
            except IndexError:
                return
            await _edit_card(callback.message, attempt)

        elif action == "next":
            attempt.navigator.advance()
            await _edit_card(callback.message, attempt)

        elif action == "passage":
            section = attempt.navigator.active_section
            if section is not None and section.passage_md:
                passage = section.passage_md.strip()
                if len(passage) > PASSAGE_PREVIEW:
                    passage = passage[:PASSAGE_PREVIEW] + "…"
                await callback.message.answer(html.escape(passage), parse_mode="HTML")

        elif action == "submit":
            try:
                route = await attempt.submit()
            except SubmissionValidationError as e:
                alert = str(e)
                return
            except SubmissionFailedError as e:
                await callback.message.answer(f"❌ {e}")
                return
            if route is None:
                alert = "Bài làm đang được nộp..."

        elif action == "exit":
            await _end_attempt(user_id, state)
            await log_activity(user_id, "cancel_attempt")
            await callback.message.answer("Đã thoát bài làm. Bài chưa được nộp.")

        else:
            logger.warning("Неизвестное действие в callback_data: %s", callback.data)
    finally:
        if alert:
            await callback.answer(alert, show_alert=True)
        else:
            await callback.answer()
