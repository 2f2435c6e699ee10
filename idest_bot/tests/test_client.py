"""Тесты API-клиента Idest и конвертеров моделей."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from idest_bot.idest_api.client import IdestClient
from idest_bot.idest_api.exceptions import (
    AuthenticationError, DataNotFoundError, IdestAPIError, InvalidResponseError,
    NetworkError, RateLimitError,
)
from idest_bot.idest_api.models import (
    GradedResult, ObjectiveResult, Skill, assignment_from_payload, page_from_payload,
    receipt_from_payload, overview_from_payload,
)
from idest_bot.workflow.interactions import GapFill, MultipleChoice, ShortAnswer
from idest_bot.workflow.recording import AudioFile


def _session(status=200, payload=None, json_error=None, request_error=None):
    """aiohttp-сессия с одним заготовленным ответом."""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload, side_effect=json_error)
    response.text = AsyncMock(return_value="bad request body")

    session = MagicMock()
    session.closed = False
    if request_error is not None:
        session.request.side_effect = request_error
    else:
        session.request.return_value.__aenter__ = AsyncMock(return_value=response)
        session.request.return_value.__aexit__ = AsyncMock(return_value=False)
    return session


def _client(session):
    return IdestClient(token="tok", base_url="https://api.test/hehe/", session=session)


# ============================================================================
# ЗАПРОСЫ И ОШИБКИ
# ============================================================================


class TestRequest:
    async def test_get_assignment_unwraps_envelope(self, reading_payload):
        session = _session(payload={"status": "ok", "message": "", "data": reading_payload})
        assignment = await _client(session).get_assignment(Skill.READING, "a-read-1")

        assert assignment.id == "a-read-1"
        args, kwargs = session.request.call_args
        assert args == ("GET", "https://api.test/hehe/reading/assignments/a-read-1")
        assert kwargs["headers"]["Authorization"] == "Bearer tok"

    async def test_empty_data_is_not_found(self):
        with pytest.raises(DataNotFoundError):
            await _client(_session(payload={"data": None})).get_assignment(Skill.READING, "x")

    @pytest.mark.parametrize("status,error", [
        (401, AuthenticationError),
        (403, AuthenticationError),
        (404, DataNotFoundError),
        (429, RateLimitError),
        (502, NetworkError),
        (422, IdestAPIError),
    ])
    async def test_status_mapping(self, status, error):
        with pytest.raises(error):
            await _client(_session(status=status)).get_result(Skill.READING, "s1")

    async def test_invalid_json(self):
        session = _session(json_error=ValueError("not json"))
        with pytest.raises(InvalidResponseError):
            await _client(session).get_result(Skill.READING, "s1")

    async def test_timeout_and_connection_errors(self):
        with pytest.raises(NetworkError):
            await _client(_session(request_error=asyncio.TimeoutError())).get_result(Skill.READING, "s1")
        with pytest.raises(NetworkError):
            await _client(_session(request_error=aiohttp.ClientConnectionError("reset"))).get_result(
                Skill.READING, "s1"
            )

    async def test_none_params_dropped(self):
        session = _session(payload=[])
        await _client(session).get_my_submissions(page=1, limit=None, skill=None)
        assert session.request.call_args.kwargs["params"] == {"page": 1}

    async def test_close_keeps_shared_session(self):
        session = _session(payload=[])
        session.close = AsyncMock()
        await _client(session).close()
        session.close.assert_not_awaited()


class TestSubmitAndResults:
    async def test_reading_submit_is_json(self):
        session = _session(payload={"status": "ok", "data": {"id": 77}})
        receipt = await _client(session).submit(Skill.READING, {"assignment_id": "a1"})

        assert receipt.id == "77"
        args, kwargs = session.request.call_args
        assert args[1].endswith("/reading/submissions")
        assert kwargs["json"] == {"assignment_id": "a1"}

    async def test_speaking_submit_is_multipart(self):
        session = _session(payload={"id": "r1"})
        audio = AudioFile("audioOne.webm", b"data", "audio/webm")
        await _client(session).submit(Skill.SPEAKING, {"assignment_id": "a1", "audioOne": audio})

        args, kwargs = session.request.call_args
        assert args[1].endswith("/speaking/responses")
        assert isinstance(kwargs["data"], aiohttp.FormData)
        assert kwargs["json"] is None

    async def test_objective_result(self):
        session = _session(payload={"data": {
            "id": "s1", "total_questions": 10, "correct_answers": 7,
            "details": [{"section_title": "P1", "questions": [{"question_id": "q1", "correct": True}]}],
        }})
        result = await _client(session).get_result(Skill.LISTENING, "s1")

        assert isinstance(result, ObjectiveResult)
        assert result.incorrect_answers == 3
        assert result.percentage == 70.0
        assert result.details[0].questions[0].correct

    async def test_graded_result_pending(self):
        session = _session(payload={"id": "w1", "status": "pending", "score": None, "contentOne": "text"})
        result = await _client(session).get_result(Skill.WRITING, "w1")

        assert isinstance(result, GradedResult)
        assert result.is_pending
        assert result.content_one == "text"

    async def test_list_assignments_by_skill_keeps_pagination(self):
        session = _session(payload={
            "data": [{"id": "a1", "title": "Test 1"}],
            "pagination": {"page": 1, "limit": 10, "total": 12, "totalPages": 2},
        })
        page = await _client(session).list_assignments_by_skill(Skill.WRITING, page=1, limit=10)

        assert [i.id for i in page.items] == ["a1"]
        assert page.pagination.has_next

    async def test_list_assignments_all_skills(self):
        session = _session(payload={"reading": [{"id": "r1", "title": "R"}], "speaking": {"data": [], "pagination": {}}})
        pages = await _client(session).list_assignments()

        assert set(pages) == set(Skill)
        assert pages[Skill.READING].items[0].id == "r1"
        assert pages[Skill.LISTENING].items == []


# ============================================================================
# КОНВЕРТЕРЫ
# ============================================================================


class TestModels:
    def test_reading_assignment_structure(self, reading_assignment):
        assert [s.id for s in reading_assignment.sections] == ["s1", "s2"]
        assert reading_assignment.sections[0].passage_md.startswith("Urban farming")
        q1, q2, q3, q4 = reading_assignment.questions
        assert isinstance(q1.interaction, MultipleChoice)
        assert [o.id for o in q1.interaction.options] == ["A", "B", "C"]
        assert isinstance(q3.interaction, GapFill)
        assert q3.interaction.blank_ids == ("b1", "b2")
        assert q3.stimulus.template_body.startswith("The {{blank:b1}}")
        assert isinstance(q4.interaction, ShortAnswer)

    def test_writing_becomes_two_sections(self, writing_assignment):
        assert [q.id for q in writing_assignment.questions] == ["contentOne", "contentTwo"]
        assert writing_assignment.questions[0].prompt_md == "Summarise the chart."
        assert writing_assignment.image_url == "https://cdn.example/chart.png"

    def test_speaking_parts_sorted(self, speaking_assignment):
        assert [s.part_number for s in speaking_assignment.sections] == [1, 2, 3]
        assert speaking_assignment.sections[0].id == "p1"

    def test_listening_audio_from_listening_material(self):
        assignment = assignment_from_payload(Skill.LISTENING, {
            "id": "l1",
            "title": "Listening",
            "sections": [{"id": "s1", "listening_material": {"audio_url": "https://cdn/a.mp3"}}],
        })
        assert assignment.sections[0].audio_url == "https://cdn/a.mp3"

    def test_assignment_without_id(self):
        with pytest.raises(InvalidResponseError):
            assignment_from_payload(Skill.READING, {"title": "no id"})

    def test_receipt_bare_or_wrapped(self):
        assert receipt_from_payload({"id": "x"}).id == "x"
        assert receipt_from_payload({"status": "ok", "data": {"id": "y"}}).id == "y"

    def test_page_normalization(self):
        convert = lambda item: overview_from_payload(Skill.READING, item)
        assert page_from_payload([{"id": "1"}], convert).pagination is None
        assert page_from_payload({"unexpected": True}, convert).items == []
        paged = page_from_payload({"data": [{"id": "1"}, "junk"], "pagination": {"page": 2, "limit": 1}}, convert)
        assert [i.id for i in paged.items] == ["1"]
        assert paged.pagination.page == 2
