"""Общие фикстуры для тестов Idest-бота."""
import pytest
from unittest.mock import AsyncMock

from idest_bot.idest_api.models import Skill, SubmissionReceipt, assignment_from_payload
from idest_bot.workflow.coordinator import Identity
from idest_bot.workflow.recording import AudioFile


@pytest.fixture
def reading_payload():
    """Reading: два раздела, четыре вопроса разных типов."""
    return {
        "id": "a-read-1",
        "title": "Cambridge 18 Test 1",
        "sections": [
            {
                "id": "s1",
                "title": "Passage 1",
                "material": {"content_md": "Urban farming is growing in many cities."},
                "question_groups": [
                    {
                        "id": "g1",
                        "questions": [
                            {
                                "id": "q1",
                                "type": "multiple_choice_single",
                                "prompt_md": "What is growing?",
                                "interaction": {"options": ["Urban farming", "Traffic", "Rent"]},
                            },
                            {
                                "id": "q2",
                                "type": "true_false_not_given",
                                "prompt_md": "Cities ban farming.",
                            },
                        ],
                    },
                    {"id": "g-empty", "questions": []},
                ],
            },
            {
                "id": "s2",
                "title": "Passage 2",
                "question_groups": [
                    {
                        "id": "g2",
                        "questions": [
                            {
                                "id": "q3",
                                "type": "gap_fill_template",
                                "stimulus": {"template": {"body": "The {{blank:b1}} rose by {{blank:b2}}."}},
                            },
                            {
                                "id": "q4",
                                "type": "short_answer",
                                "prompt_md": "Name the river.",
                                "interaction": {"max_words": 2},
                            },
                        ],
                    }
                ],
            },
        ],
    }


@pytest.fixture
def reading_assignment(reading_payload):
    return assignment_from_payload(Skill.READING, reading_payload)


@pytest.fixture
def writing_assignment():
    return assignment_from_payload(Skill.WRITING, {
        "id": "a-write-1",
        "title": "Writing Test 3",
        "taskone": "Summarise the chart.",
        "tasktwo": "Discuss both views.",
        "img": "https://cdn.example/chart.png",
    })


@pytest.fixture
def speaking_assignment():
    """Части приходят не по порядку, сортировка по part_number."""
    return assignment_from_payload(Skill.SPEAKING, {
        "id": "a-speak-1",
        "title": "Speaking Mock",
        "parts": [
            {"id": "p3", "part_number": 3, "questions": [{"id": "sq3", "prompt": "Why?"}]},
            {"id": "p1", "part_number": 1, "questions": [{"id": "sq1", "prompt": "Your name?"}]},
            {"id": "p2", "part_number": 2, "questions": [{"id": "sq2", "prompt": "Describe a place."}]},
        ],
    })


@pytest.fixture
def identity():
    return Identity(user_id="user-42", access_token="token-42")


@pytest.fixture
def submit_api():
    """API, принимающее отправку и возвращающее ID новой работы."""
    api = AsyncMock()
    api.submit.return_value = SubmissionReceipt(id="sub-1")
    return api


@pytest.fixture
def audio_files():
    return {
        key: AudioFile(filename=f"{key}.webm", content=b"\x1a\x45" + key.encode(), mime_type="audio/webm")
        for key in ("audioOne", "audioTwo", "audioThree")
    }
