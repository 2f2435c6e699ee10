"""Start, help and account linking handlers."""
import logging
from typing import Optional

from aiogram import Router
from aiogram.filters import Command, CommandObject
from aiogram.fsm.context import FSMContext
from aiogram.types import Message

from ..database.crud import link_user, log_activity, unlink_user, user_exists
from ..idest_api.client import IdestClient
from ..idest_api.exceptions import AuthenticationError, IdestAPIError
from ..states.link import LinkStates
from ..workflow.attempt import clear_attempt

logger = logging.getLogger(__name__)
router = Router()

HELP_TEXT = (
    "Các lệnh:\n"
    "/assignments [reading|listening|writing|speaking] - Danh sách bài tập\n"
    "/submissions [kỹ năng] - Bài đã nộp\n"
    "/result &lt;kỹ năng&gt; &lt;assignment_id&gt; &lt;submission_id&gt; - Xem kết quả\n"
    "/link - Liên kết tài khoản Idest\n"
    "/unlink - Hủy liên kết\n"
    "/cancel - Thoát bài đang làm"
)


async def _verify_token(user_id: str, token: str) -> Optional[str]:
    """
    Проверка токена одним лёгким запросом.

    Returns:
        None if the backend accepted the token, otherwise a user message
    """
    client = IdestClient(token=token)
    try:
        await client.get_my_submissions(page=1, limit=1)
    except AuthenticationError:
        return "Token không hợp lệ hoặc đã hết hạn."
    except IdestAPIError as e:
        logger.warning("Token check for %s failed: %s", user_id, e)
        return "Không thể kết nối tới máy chủ Idest. Vui lòng thử lại sau."
    finally:
        await client.close()
    return None


async def _finish_link(message: Message, state: FSMContext, idest_user_id: str, token: str):
    telegram_id = message.from_user.id

    error = await _verify_token(idest_user_id, token)
    if error:
        await message.answer(f"❌ {error}\n\nThử lại: /link")
        await state.clear()
        return

    await link_user(telegram_id, message.from_user.username, idest_user_id, token)
    await log_activity(telegram_id, "link", idest_user_id)
    await state.clear()

    logger.info("Telegram user %d linked to Idest user %s", telegram_id, idest_user_id)
    await message.answer(
        "✅ Đã liên kết tài khoản Idest.\n\n" + HELP_TEXT,
        parse_mode="HTML",
    )


@router.message(Command("start"))
async def cmd_start(message: Message, state: FSMContext):
    """
    Handle /start command.

    Linked users get the command list, others are pointed to /link.
    """
    if await user_exists(message.from_user.id):
        await message.answer("👋 Chào mừng trở lại!\n\n" + HELP_TEXT, parse_mode="HTML")
        return

    await message.answer(
        "👋 Chào mừng đến với Idest!\n\n"
        "Bot giúp bạn làm bài tập IELTS (Reading, Listening, Writing, Speaking) "
        "có tính giờ và xem kết quả.\n\n"
        "Để bắt đầu, hãy liên kết tài khoản: /link"
    )


@router.message(Command("help"))
async def cmd_help(message: Message):
    await message.answer(HELP_TEXT, parse_mode="HTML")


@router.message(Command("link"))
async def cmd_link(message: Message, state: FSMContext, command: CommandObject):
    """/link <user_id> <token> or an interactive dialog without arguments."""
    args = (command.args or "").split()

    if len(args) >= 2:
        # Сообщение с токеном удаляем из чата
        try:
            await message.delete()
        except Exception as e:
            logger.debug("Could not delete /link message: %s", e)
        await _finish_link(message, state, args[0], args[1])
        return

    await state.set_state(LinkStates.waiting_for_user_id)
    await message.answer("Nhập user ID của tài khoản Idest:")


@router.message(LinkStates.waiting_for_user_id)
async def process_user_id(message: Message, state: FSMContext):
    user_id = (message.text or "").strip()

    if not user_id or " " in user_id:
        await message.answer("User ID không hợp lệ. Vui lòng nhập lại:")
        return

    await state.update_data(idest_user_id=user_id)
    await state.set_state(LinkStates.waiting_for_token)
    await message.answer(
        "Nhập access token:\n\n<i>Token sẽ được mã hóa trước khi lưu.</i>",
        parse_mode="HTML",
    )


@router.message(LinkStates.waiting_for_token)
async def process_token(message: Message, state: FSMContext):
    token = (message.text or "").strip()

    try:
        await message.delete()
    except Exception as e:
        logger.debug("Could not delete token message: %s", e)

    if not token:
        await message.answer("Token không hợp lệ. Vui lòng nhập lại:")
        return

    data = await state.get_data()
    idest_user_id = data.get("idest_user_id")
    if not idest_user_id:
        await message.answer("Phiên liên kết đã hết hạn. Bắt đầu lại: /link")
        await state.clear()
        return

    await _finish_link(message, state, idest_user_id, token)


@router.message(Command("unlink"))
async def cmd_unlink(message: Message, state: FSMContext):
    telegram_id = message.from_user.id

    clear_attempt(telegram_id)
    await state.clear()

    if await unlink_user(telegram_id):
        await log_activity(telegram_id, "unlink")
        await message.answer("Đã hủy liên kết tài khoản. Liên kết lại: /link")
    else:
        await message.answer("Bạn chưa liên kết tài khoản.")
