"""Тесты Telegram-обработчиков и функций форматирования."""
import io
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from idest_bot.handlers import assignments, attempt as attempt_handlers, results, start
from idest_bot.idest_api.exceptions import AuthenticationError, NetworkError
from idest_bot.idest_api.models import (
    AssignmentOverview, GradedResult, Page, Pagination, Skill, SubmissionOverview,
    assignment_from_payload,
)
from idest_bot.workflow.attempt import AssignmentAttempt, clear_attempt, set_attempt
from idest_bot.workflow.result import GradedReview, ObjectiveReview, ReviewRow, SectionReview


def _message(user_id=1, text=None):
    message = AsyncMock()
    message.from_user = MagicMock(id=user_id, username="learner")
    message.text = text
    return message


def _callback(data, user_id=1):
    callback = AsyncMock()
    callback.data = data
    callback.from_user = MagicMock(id=user_id)
    callback.message = _message(user_id)
    return callback


def _command(args=None):
    return MagicMock(args=args)


@pytest.fixture
def reading_attempt(reading_assignment, identity, submit_api):
    """Зарегистрированная попытка пользователя 1, без запуска таймера."""
    attempt = AssignmentAttempt(reading_assignment, identity, submit_api, duration=600)
    set_attempt(1, attempt)
    yield attempt
    clear_attempt(1)


# ============================================================================
# ТЕСТЫ ФОРМАТИРОВАНИЯ (чистые функции, без моков)
# ============================================================================


class TestFormatting:
    def test_parse_skill(self):
        assert assignments._parse_skill(None) == (None, True)
        assert assignments._parse_skill(" Reading ") == (Skill.READING, True)
        assert assignments._parse_skill("math") == (None, False)

    def test_assignment_list_escapes_titles(self):
        page = Page(items=[AssignmentOverview(id="a1", skill=Skill.READING, title="<Test & 1>")])
        text = assignments._format_assignment_list(Skill.READING, page)
        assert "&lt;Test &amp; 1&gt;" in text

    def test_keyboard_has_take_buttons_and_paging(self):
        items = [AssignmentOverview(id="a1", skill=Skill.LISTENING, title="L1")]
        page = Page(items=items, pagination=Pagination(page=2, limit=10, total=30, total_pages=3))
        keyboard = assignments._get_assignments_keyboard(Skill.LISTENING, items, page)

        data = [b.callback_data for row in keyboard.inline_keyboard for b in row]
        assert data == ["asg:take:listening:a1", "asg:page:listening:1", "asg:page:listening:3"]

    def test_submissions_with_queued_notice(self):
        page = Page(items=[
            SubmissionOverview(id="s1", skill=Skill.WRITING, assignment_id="a1", title="Essay", status="pending"),
            SubmissionOverview(id="s2", skill=Skill.READING, assignment_id="a2", title="Test", score=6.5),
        ])
        text = assignments._format_submissions(page, queued=True)

        assert text.startswith(assignments.GRADING_QUEUED_TEXT)
        assert "⏳ Đang chấm" in text
        assert "<b>6.5</b>" in text
        assert "/result writing a1 s1" in text

    def test_submissions_without_notice(self):
        text = assignments._format_submissions(Page(items=[]), queued=False)
        assert assignments.GRADING_QUEUED_TEXT not in text
        assert "chưa nộp bài nào" in text

    def test_objective_review_text(self):
        review = ObjectiveReview(
            skill=Skill.READING, assignment_title="Test 1", band=6.5, percentage=70.0,
            correct_answers=7, incorrect_answers=3, total_questions=10,
            sections=[SectionReview(title="Passage 1", rows=[
                ReviewRow(number=1, prompt="Q?", submitted="(không trả lời)", correct_answer="B", correct=False),
                ReviewRow(number=2, prompt="", submitted="A", correct_answer="A", correct=True),
            ])],
        )
        text = results.format_review(review)

        assert "Band: <b>6.5</b>" in text
        assert "❌ 1. Q?" in text
        assert "Trả lời của bạn: (không trả lời)" in text
        assert "Đáp án đúng: B" in text
        assert text.count("Đáp án đúng") == 1

    def test_graded_review_pending_and_scored(self):
        pending = GradedReview(Skill.SPEAKING, "Mock", GradedResult(id="r1", skill=Skill.SPEAKING, status="pending"))
        assert "đang được chấm" in results.format_review(pending)

        scored = GradedReview(Skill.WRITING, "Essay", GradedResult(
            id="w1", skill=Skill.WRITING, status="graded", score=7, feedback="Good <coherence>",
            content_one="Task one text",
        ))
        text = results.format_review(scored)
        assert "Điểm: <b>7</b>" in text
        assert "Good &lt;coherence&gt;" in text
        assert "Nhiệm vụ 1" in text

    def test_split_message(self):
        text = "\n".join(["x" * 30] * 10)
        chunks = results.split_message(text, limit=100)
        assert all(len(c) <= 100 for c in chunks)
        assert "\n".join(chunks) == text

    def test_parse_attempt_callback(self):
        assert attempt_handlers._parse_callback_data("att:opt:2") == ("opt", 2)
        assert attempt_handlers._parse_callback_data("att:submit") == ("submit", None)
        assert attempt_handlers._parse_callback_data("att:opt:x") is None
        assert attempt_handlers._parse_callback_data("att:q:-1") is None
        assert attempt_handlers._parse_callback_data("sched:opt:1") is None


class TestQuestionCard:
    def test_card_shows_question_options_and_placeholder(self, reading_attempt):
        text = attempt_handlers._format_question_card(reading_attempt)
        assert "10:00" in text
        assert "Câu 1" in text
        assert "A. Urban farming" in text
        assert "Trả lời: (không trả lời)" in text

    def test_keyboard(self, reading_attempt):
        keyboard = attempt_handlers._get_attempt_keyboard(reading_attempt)
        data = [b.callback_data for row in keyboard.inline_keyboard for b in row]
        assert data[:3] == ["att:opt:0", "att:opt:1", "att:opt:2"]
        assert "att:q:1" in data
        assert "att:sec:1" in data
        assert "att:passage" in data
        assert "att:next" in data
        assert data[-2:] == ["att:submit", "att:exit"]

    def test_writing_card(self, writing_assignment, identity, submit_api):
        attempt = AssignmentAttempt(writing_assignment, identity, submit_api, duration=60)
        attempt.answer_text("one two three")
        text = attempt_handlers._format_question_card(attempt)
        assert "Summarise the chart." in text
        assert "3 từ" in text

    def test_matching_card_lists_left_items(self, identity, submit_api):
        """Для сопоставления видны и пункты слева, и варианты справа."""
        assignment = assignment_from_payload(Skill.READING, {
            "id": "a-match",
            "title": "Match",
            "sections": [{
                "id": "s1",
                "question_groups": [{
                    "id": "g1",
                    "questions": [{
                        "id": "m1",
                        "type": "matching",
                        "interaction": {
                            "left": [
                                {"id": "L1", "label": "Paragraph about rivers"},
                                {"id": "L2", "label": "Paragraph about hills"},
                            ],
                            "right": [{"id": "i", "label": "Water"}, {"id": "ii", "label": "Land"}],
                        },
                    }],
                }],
            }],
        })
        attempt = AssignmentAttempt(assignment, identity, submit_api, duration=60)

        text = attempt_handlers._format_question_card(attempt)
        assert "L1. Paragraph about rivers" in text
        assert "L2. Paragraph about hills" in text
        assert "i. Water" in text
        assert text.index("L2. Paragraph about hills") < text.index("i. Water")

        attempt.answer_text("L1: i\nL2: ii")
        assert attempt.answers.get("m1") == {"map": {"L1": "i", "L2": "ii"}}

    def test_speaking_card(self, speaking_assignment, identity, submit_api):
        attempt = AssignmentAttempt(speaking_assignment, identity, submit_api, duration=60)
        text = attempt_handlers._format_question_card(attempt)
        assert "Your name?" in text
        assert "tin nhắn thoại" in text


# ============================================================================
# ОБРАБОТЧИКИ КОМАНД
# ============================================================================


class TestStartHandlers:
    async def test_start_for_new_user(self):
        message = _message()
        with patch.object(start, "user_exists", AsyncMock(return_value=False)):
            await start.cmd_start(message, AsyncMock())
        assert "/link" in message.answer.call_args.args[0]

    async def test_link_with_arguments(self):
        message = _message()
        state = AsyncMock()
        with patch.object(start, "_verify_token", AsyncMock(return_value=None)), \
                patch.object(start, "link_user", AsyncMock()) as link_user, \
                patch.object(start, "log_activity", AsyncMock()):
            await start.cmd_link(message, state, _command("user-42 token-42"))

        link_user.assert_awaited_once_with(1, "learner", "user-42", "token-42")
        message.delete.assert_awaited_once()
        state.clear.assert_awaited()

    async def test_link_rejected_token(self):
        message = _message()
        with patch.object(start, "_verify_token", AsyncMock(return_value="Token không hợp lệ")), \
                patch.object(start, "link_user", AsyncMock()) as link_user:
            await start.cmd_link(message, AsyncMock(), _command("user-42 bad"))

        link_user.assert_not_awaited()
        assert "Token không hợp lệ" in message.answer.call_args.args[0]

    async def test_link_without_arguments_starts_dialog(self):
        state = AsyncMock()
        await start.cmd_link(_message(), state, _command(None))
        state.set_state.assert_awaited_once_with(start.LinkStates.waiting_for_user_id)


class TestListHandlers:
    async def test_submissions_shows_notice_once(self):
        message = _message()
        client = MagicMock()
        client.get_my_submissions = AsyncMock(return_value=Page(items=[]))
        client.close = AsyncMock()

        with patch.object(assignments, "ensure_identity", AsyncMock(return_value=MagicMock(access_token="t"))), \
                patch.object(assignments, "IdestClient", return_value=client), \
                patch.object(assignments, "pop_grading_queued", AsyncMock(return_value=True)):
            await assignments.cmd_submissions(message, _command(None))

        text = message.answer.call_args.args[0]
        assert assignments.GRADING_QUEUED_TEXT in text
        client.close.assert_awaited_once()

    async def test_submissions_not_linked(self):
        message = _message()
        with patch.object(assignments, "ensure_identity", AsyncMock(side_effect=AuthenticationError("x"))):
            await assignments.cmd_submissions(message, _command(None))
        message.answer.assert_awaited_once_with(assignments.NOT_LINKED_TEXT)

    async def test_assignments_service_error(self):
        message = _message()
        client = MagicMock()
        client.list_assignments_by_skill = AsyncMock(side_effect=NetworkError("down"))
        client.close = AsyncMock()

        with patch.object(assignments, "ensure_identity", AsyncMock(return_value=MagicMock(access_token="t"))), \
                patch.object(assignments, "IdestClient", return_value=client):
            await assignments.cmd_assignments(message, _command("reading"))

        message.answer.assert_awaited_once_with(assignments.SERVICE_ERROR_TEXT)
        client.close.assert_awaited_once()

    async def test_result_usage(self):
        message = _message()
        await results.cmd_result(message, _command("reading only-one"))
        assert "Dùng: /result" in message.answer.call_args.args[0]


class TestAttemptHandlers:
    async def test_text_answer_advances_focus(self, reading_attempt):
        message = _message(text="B")
        await attempt_handlers.process_text_answer(message)

        assert reading_attempt.answers.get("q1") == {"choice": "B"}
        assert reading_attempt.navigator.current.question_id == "q2"
        message.answer.assert_awaited_once()

    async def test_bad_text_answer(self, reading_attempt):
        message = _message(text="Z")
        await attempt_handlers.process_text_answer(message)

        assert "q1" not in reading_attempt.answers
        assert message.answer.call_args.args[0].startswith("⚠️")

    async def test_option_button(self, reading_attempt):
        callback = _callback("att:opt:2")
        await attempt_handlers.cb_attempt_action(callback, AsyncMock())

        assert reading_attempt.answers.get("q1") == {"choice": "C"}
        callback.message.edit_text.assert_awaited_once()
        callback.answer.assert_awaited_once_with()

    async def test_submit_button(self, reading_attempt, submit_api):
        callback = _callback("att:submit")
        await attempt_handlers.cb_attempt_action(callback, AsyncMock())

        submit_api.submit.assert_awaited_once()
        assert reading_attempt.coordinator.submitted

    async def test_validation_error_is_alert(self, writing_assignment, identity, submit_api):
        set_attempt(1, AssignmentAttempt(writing_assignment, identity, submit_api, duration=60))
        callback = _callback("att:submit")
        try:
            await attempt_handlers.cb_attempt_action(callback, AsyncMock())
        finally:
            clear_attempt(1)

        submit_api.submit.assert_not_awaited()
        args, kwargs = callback.answer.call_args
        assert "Nhiệm vụ 1" in args[0]
        assert kwargs["show_alert"] is True

    async def test_voice_note_records_active_part(self, speaking_assignment, identity, submit_api):
        """Голосовое сообщение Telegram становится записью текущей части."""
        attempt = AssignmentAttempt(speaking_assignment, identity, submit_api, duration=60)
        set_attempt(1, attempt)
        message = _message()
        message.voice = MagicMock(mime_type="audio/ogg")
        message.audio = None
        message.bot.download = AsyncMock(return_value=io.BytesIO(b"OggS-voice"))
        try:
            await attempt_handlers.process_voice_answer(message)
        finally:
            clear_attempt(1)

        audio = attempt.answers.get("audioOne")
        assert audio.filename == "audioOne.ogg"
        assert audio.content == b"OggS-voice"
        assert attempt.navigator.active_index == 1
        message.answer.assert_awaited_once()

    async def test_stale_button(self):
        callback = _callback("att:next", user_id=555)
        await attempt_handlers.cb_attempt_action(callback, AsyncMock())
        callback.answer.assert_awaited_once_with(attempt_handlers.NO_ATTEMPT_TEXT, show_alert=True)
