"""Обработчик /result: разбор результата попытки."""
import html
import logging
from typing import List

from aiogram import Router
from aiogram.filters import Command, CommandObject
from aiogram.types import Message

from ..idest_api.client import IdestClient
from ..idest_api.exceptions import AuthenticationError
from ..idest_api.models import Skill
from ..utils.identity import ensure_identity
from ..workflow.exceptions import ResultNotFoundError
from ..workflow.result import GradedReview, ObjectiveReview, Review, ResultViewer

logger = logging.getLogger(__name__)

router = Router()

# Лимит Telegram 4096 символов, оставляем запас
MESSAGE_LIMIT = 4000

USAGE_TEXT = "Dùng: /result &lt;kỹ năng&gt; &lt;assignment_id&gt; &lt;submission_id&gt;"


# ============================================================================
# ФОРМАТИРОВАНИЕ
# ============================================================================

def _format_objective_review(review: ObjectiveReview) -> str:
    lines = [
        f"<b>🏁 {html.escape(review.assignment_title)}</b>",
        "",
        f"Band: <b>{review.band:.1f}</b>",
        f"Tỉ lệ đúng: {review.percentage:g}%",
        f"✅ Đúng: {review.correct_answers}   ❌ Sai: {review.incorrect_answers}",
    ]

    for section in review.sections:
        lines.append("")
        lines.append(f"<b>{html.escape(section.title)}</b>")
        for row in section.rows:
            mark = "✅" if row.correct else "❌"
            prompt = html.escape(row.prompt.strip())
            lines.append(f"{mark} {row.number}. {prompt}" if prompt else f"{mark} {row.number}.")
            lines.append(f"   Trả lời của bạn: {html.escape(row.submitted)}")
            if not row.correct:
                lines.append(f"   Đáp án đúng: {html.escape(row.correct_answer)}")

    return "\n".join(lines)


def _format_graded_review(review: GradedReview) -> str:
    result = review.result
    lines = [f"<b>🏁 {html.escape(review.assignment_title)}</b>", ""]

    if review.is_pending:
        lines.append("⏳ Bài làm đang được chấm. Vui lòng quay lại sau.")
    else:
        lines.append(f"Điểm: <b>{review.score:g}</b>")
        if result.feedback:
            lines.append("")
            lines.append("<b>Nhận xét</b>")
            lines.append(html.escape(result.feedback))

    if review.skill == Skill.WRITING:
        for title, content in (("Nhiệm vụ 1", result.content_one), ("Nhiệm vụ 2", result.content_two)):
            if content:
                lines.append("")
                lines.append(f"<b>{title}</b>")
                lines.append(html.escape(content))
    elif result.transcripts:
        for number, transcript in enumerate(result.transcripts, start=1):
            lines.append("")
            lines.append(f"<b>Phần {number}</b>")
            lines.append(html.escape(transcript))

    return "\n".join(lines)


def format_review(review: Review) -> str:
    if isinstance(review, ObjectiveReview):
        return _format_objective_review(review)
    return _format_graded_review(review)


def split_message(text: str, limit: int = MESSAGE_LIMIT) -> List[str]:
    """Режет длинный текст по строкам, не разрывая HTML-теги внутри строки."""
    chunks: List[str] = []
    current: List[str] = []
    size = 0
    for line in text.split("\n"):
        if current and size + len(line) + 1 > limit:
            chunks.append("\n".join(current))
            current, size = [], 0
        current.append(line)
        size += len(line) + 1
    if current:
        chunks.append("\n".join(current))
    return chunks


async def send_review(message: Message, client: IdestClient, skill: Skill, assignment_id: str, submission_id: str):
    """
    Загружает и отправляет разбор результата.

    Raises:
        ResultNotFoundError: задание или результат не загрузились
    """
    review = await ResultViewer(client).load(skill, assignment_id, submission_id)
    for chunk in split_message(format_review(review)):
        await message.answer(chunk, parse_mode="HTML")


# ============================================================================
# ОБРАБОТЧИК КОМАНДЫ /result
# ============================================================================

@router.message(Command("result"))
async def cmd_result(message: Message, command: CommandObject):
    args = (command.args or "").split()
    if len(args) != 3:
        await message.answer(USAGE_TEXT, parse_mode="HTML")
        return

    try:
        skill = Skill(args[0].lower())
    except ValueError:
        await message.answer(USAGE_TEXT, parse_mode="HTML")
        return

    try:
        identity = await ensure_identity(message.from_user.id)
    except AuthenticationError:
        await message.answer("Bạn chưa liên kết tài khoản hoặc token đã hết hạn. Liên kết: /link")
        return

    client = IdestClient(token=identity.access_token)
    try:
        await send_review(message, client, skill, args[1], args[2])
    except ResultNotFoundError as e:
        await message.answer(f"❌ {e}")
    finally:
        await client.close()
