"""Data models for Idest API responses."""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..workflow.interactions import FREE_TEXT, Essay, Interaction, interaction_from_payload
from .exceptions import InvalidResponseError

logger = logging.getLogger(__name__)


class Skill(str, Enum):
    """IELTS skill of an assignment."""
    READING = "reading"
    LISTENING = "listening"
    WRITING = "writing"
    SPEAKING = "speaking"

    @property
    def is_objective(self) -> bool:
        """Auto-graded skills with a per-question breakdown."""
        return self in (Skill.READING, Skill.LISTENING)


# Keys the writing/speaking submit endpoints expect
WRITING_KEYS = ("contentOne", "contentTwo")
SPEAKING_KEYS = ("audioOne", "audioTwo", "audioThree")


@dataclass
class MediaAsset:
    """Image, audio or link attached to a question."""
    id: str
    kind: str
    url: str
    title: Optional[str] = None
    alt: Optional[str] = None


@dataclass
class Stimulus:
    """Content shown with a question: instructions, passage excerpt, template, media."""
    instructions_md: Optional[str] = None
    content_md: Optional[str] = None
    template_body: Optional[str] = None
    media: List[MediaAsset] = field(default_factory=list)


@dataclass
class Question:
    """Smallest gradable unit."""
    id: str
    kind: str
    prompt_md: str
    interaction: Interaction
    order_index: int = 0
    stimulus: Stimulus = field(default_factory=Stimulus)


@dataclass
class QuestionGroup:
    """Related questions sharing instructions."""
    id: str
    questions: List[Question]
    title: Optional[str] = None
    instructions_md: Optional[str] = None


@dataclass
class Section:
    """Top-level subdivision: reading passage, listening recording, speaking part, writing task."""
    id: str
    groups: List[QuestionGroup]
    title: Optional[str] = None
    part_number: Optional[int] = None
    audio_url: Optional[str] = None
    transcript: Optional[str] = None
    passage_md: Optional[str] = None

    @property
    def questions(self) -> List[Question]:
        return [q for g in self.groups for q in g.questions]


@dataclass
class Assignment:
    """Assignment as loaded for one attempt. Not mutated after decoding."""
    id: str
    skill: Skill
    title: str
    sections: List[Section]
    task_one: Optional[str] = None
    task_two: Optional[str] = None
    image_url: Optional[str] = None

    @property
    def questions(self) -> List[Question]:
        return [q for s in self.sections for q in s.questions]

    def find_question(self, question_id: str) -> Optional[Question]:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None


@dataclass
class SubmissionReceipt:
    """Identifier of a freshly created submission."""
    id: str


@dataclass
class QuestionResult:
    """Graded outcome of one question (or one sub-question)."""
    question_id: Optional[str] = None
    submitted_answer: Any = None
    correct_answer: Any = None
    correct: bool = False
    subquestions: List["QuestionResult"] = field(default_factory=list)


@dataclass
class SectionResult:
    section_title: Optional[str]
    questions: List[QuestionResult]


@dataclass
class ObjectiveResult:
    """Reading/listening result with per-question breakdown."""
    id: str
    total_questions: int
    correct_answers: int
    incorrect_answers: int
    percentage: float
    details: List[SectionResult] = field(default_factory=list)
    status: Optional[str] = None


@dataclass
class GradedResult:
    """Writing/speaking result, graded asynchronously by AI or a teacher."""
    id: str
    skill: Skill
    status: Optional[str] = None
    score: Optional[float] = None
    feedback: Optional[str] = None
    content_one: Optional[str] = None
    content_two: Optional[str] = None
    transcripts: List[str] = field(default_factory=list)
    audio_url: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == "pending" or self.score is None


@dataclass
class AssignmentOverview:
    """Row of an assignment listing."""
    id: str
    skill: Skill
    title: str
    description: Optional[str] = None
    created_at: Optional[str] = None


@dataclass
class SubmissionOverview:
    """Row of the learner's submission list."""
    id: str
    skill: Optional[Skill]
    assignment_id: Optional[str]
    title: Optional[str] = None
    status: Optional[str] = None
    score: Optional[float] = None
    created_at: Optional[str] = None


@dataclass
class Pagination:
    page: int
    limit: int
    total: Optional[int] = None
    total_pages: Optional[int] = None

    @property
    def has_next(self) -> bool:
        return self.total_pages is not None and self.page < self.total_pages


@dataclass
class Page:
    """One canonical shape for paginated and bare-array listings."""
    items: List[Any]
    pagination: Optional[Pagination] = None


# ============================================================================
# CONVERTERS: wire payloads → dataclasses
# ============================================================================

def _require_id(payload: Dict[str, Any], what: str) -> str:
    value = payload.get("id") if isinstance(payload, dict) else None
    if value is None or value == "":
        raise InvalidResponseError(f"{what} without id")
    return str(value)


def _as_number(value: Any) -> Optional[float]:
    # bool is an int subclass, but never a score
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    return None


def stimulus_from_payload(payload: Optional[Dict[str, Any]]) -> Stimulus:
    payload = payload or {}
    template = payload.get("template") or {}
    media = [
        MediaAsset(
            id=str(m.get("id", index)),
            kind=m.get("kind") or "link",
            url=m.get("url") or "",
            title=m.get("title"),
            alt=m.get("alt"),
        )
        for index, m in enumerate(payload.get("media") or [])
        if isinstance(m, dict)
    ]
    return Stimulus(
        instructions_md=payload.get("instructions_md"),
        content_md=payload.get("content_md"),
        template_body=template.get("body"),
        media=media,
    )


def question_from_payload(payload: Dict[str, Any]) -> Question:
    stimulus_raw = payload.get("stimulus") or {}
    kind = payload.get("type")
    return Question(
        id=_require_id(payload, "question"),
        kind=kind or "",
        prompt_md=payload.get("prompt_md") or payload.get("prompt") or "",
        interaction=interaction_from_payload(kind, payload.get("interaction"), stimulus_raw.get("template")),
        order_index=payload.get("order_index") or 0,
        stimulus=stimulus_from_payload(stimulus_raw),
    )


def group_from_payload(payload: Dict[str, Any]) -> QuestionGroup:
    return QuestionGroup(
        id=str(payload.get("id", "")),
        title=payload.get("title"),
        instructions_md=payload.get("instructions_md"),
        questions=[question_from_payload(q) for q in payload.get("questions") or []],
    )


def section_from_payload(payload: Dict[str, Any]) -> Section:
    """Reading/listening section. Audio may sit in ``material.audio`` or ``listening_material``."""
    material = payload.get("material") or {}
    listening = payload.get("listening_material") or {}
    reading = payload.get("reading_material") or {}
    audio = material.get("audio") or {}
    return Section(
        id=_require_id(payload, "section"),
        title=payload.get("title"),
        groups=[group_from_payload(g) for g in payload.get("question_groups") or []],
        audio_url=audio.get("url") or listening.get("audio_url"),
        transcript=listening.get("transcript") or material.get("transcript"),
        passage_md=material.get("content_md") or reading.get("document_md") or reading.get("passage"),
    )


def _speaking_section(part: Dict[str, Any]) -> Section:
    number = part.get("part_number")
    questions = [
        Question(
            id=_require_id(q, "speaking question"),
            kind=FREE_TEXT,
            prompt_md=q.get("prompt") or "",
            interaction=Essay(),
            order_index=index + 1,
        )
        for index, q in enumerate(part.get("questions") or [])
    ]
    return Section(
        id=str(part.get("id") or number),
        title=f"Part {number}",
        part_number=number,
        groups=[QuestionGroup(id=f"part-{number}", questions=questions)],
    )


def _writing_section(index: int, key: str, prompt: Optional[str]) -> Section:
    question = Question(
        id=key,
        kind=FREE_TEXT,
        prompt_md=prompt or "",
        interaction=Essay(),
        order_index=index,
    )
    return Section(
        id=f"task-{index}",
        title=f"Task {index}",
        groups=[QuestionGroup(id=f"task-{index}", questions=[question])],
    )


def assignment_from_payload(skill: Skill, payload: Dict[str, Any]) -> Assignment:
    """
    Converts an assignment ``data`` object into an Assignment.

    Speaking parts become sections ordered by ``part_number``; writing tasks
    become two sections with one free-text question each, keyed by the
    submit field names (``contentOne``/``contentTwo``).
    """
    if not isinstance(payload, dict):
        raise InvalidResponseError("assignment payload is not an object")

    assignment_id = _require_id(payload, "assignment")
    title = payload.get("title") or ""

    if skill == Skill.WRITING:
        task_one = payload.get("taskone")
        task_two = payload.get("tasktwo")
        return Assignment(
            id=assignment_id,
            skill=skill,
            title=title,
            sections=[
                _writing_section(1, WRITING_KEYS[0], task_one),
                _writing_section(2, WRITING_KEYS[1], task_two),
            ],
            task_one=task_one,
            task_two=task_two,
            image_url=payload.get("img"),
        )

    if skill == Skill.SPEAKING:
        parts = sorted(payload.get("parts") or [], key=lambda p: p.get("part_number") or 0)
        return Assignment(
            id=assignment_id,
            skill=skill,
            title=title,
            sections=[_speaking_section(p) for p in parts],
        )

    return Assignment(
        id=assignment_id,
        skill=skill,
        title=title,
        sections=[section_from_payload(s) for s in payload.get("sections") or []],
    )


def receipt_from_payload(payload: Any) -> SubmissionReceipt:
    """Submit responses wrap the record in ``data`` (reading/listening) or return it bare."""
    record = payload.get("data") if isinstance(payload, dict) and isinstance(payload.get("data"), dict) else payload
    return SubmissionReceipt(id=_require_id(record, "submission"))


def _question_result_from_payload(payload: Dict[str, Any]) -> QuestionResult:
    return QuestionResult(
        question_id=str(payload["question_id"]) if payload.get("question_id") is not None else None,
        submitted_answer=payload.get("submitted_answer"),
        correct_answer=payload.get("correct_answer"),
        correct=bool(payload.get("correct") or payload.get("is_correct")),
        subquestions=[_question_result_from_payload(s) for s in payload.get("subquestions") or []],
    )


def objective_result_from_payload(payload: Dict[str, Any]) -> ObjectiveResult:
    if not isinstance(payload, dict):
        raise InvalidResponseError("result payload is not an object")

    total = payload.get("total_questions") or 0
    correct = payload.get("correct_answers") or 0
    incorrect = payload.get("incorrect_answers")
    if incorrect is None:
        incorrect = max(total - correct, 0)

    percentage = payload.get("percentage")
    if percentage is None:
        percentage = round(correct / total * 100, 2) if total else 0

    details = [
        SectionResult(
            section_title=d.get("section_title"),
            questions=[_question_result_from_payload(q) for q in d.get("questions") or []],
        )
        for d in payload.get("details") or []
        if isinstance(d, dict)
    ]
    return ObjectiveResult(
        id=_require_id(payload, "submission"),
        total_questions=total,
        correct_answers=correct,
        incorrect_answers=incorrect,
        percentage=percentage,
        details=details,
        status=payload.get("status"),
    )


def graded_result_from_payload(skill: Skill, payload: Dict[str, Any]) -> GradedResult:
    if not isinstance(payload, dict):
        raise InvalidResponseError("result payload is not an object")

    transcripts = [
        payload[key]
        for key in ("transcriptOne", "transcriptTwo", "transcriptThree")
        if payload.get(key)
    ]
    return GradedResult(
        id=_require_id(payload, "submission"),
        skill=skill,
        status=payload.get("status"),
        score=_as_number(payload.get("score")),
        feedback=payload.get("feedback"),
        content_one=payload.get("contentOne"),
        content_two=payload.get("contentTwo"),
        transcripts=transcripts,
        audio_url=payload.get("audio_url"),
    )


def overview_from_payload(skill: Skill, payload: Dict[str, Any]) -> AssignmentOverview:
    return AssignmentOverview(
        id=_require_id(payload, "assignment"),
        skill=skill,
        title=payload.get("title") or "—",
        description=payload.get("description"),
        created_at=payload.get("created_at"),
    )


def submission_overview_from_payload(payload: Dict[str, Any]) -> SubmissionOverview:
    skill = payload.get("skill")
    try:
        skill_value = Skill(skill) if skill else None
    except ValueError:
        logger.warning("Unknown skill in submission listing: %r", skill)
        skill_value = None
    return SubmissionOverview(
        id=_require_id(payload, "submission"),
        skill=skill_value,
        assignment_id=payload.get("assignment_id"),
        title=payload.get("assignment_title") or payload.get("title"),
        status=payload.get("status"),
        score=_as_number(payload.get("score")),
        created_at=payload.get("created_at"),
    )


def pagination_from_payload(payload: Dict[str, Any]) -> Pagination:
    return Pagination(
        page=payload.get("page") or 1,
        limit=payload.get("limit") or 0,
        total=payload.get("total"),
        total_pages=payload.get("totalPages") or payload.get("total_pages"),
    )


def page_from_payload(payload: Any, convert) -> Page:
    """
    Normalizes a listing into a Page.

    The backend answers either ``{"data": [...], "pagination": {...}}`` or a
    bare array; anything else is an empty page.
    """
    if isinstance(payload, dict) and "data" in payload and "pagination" in payload:
        items = payload.get("data") or []
        pagination = pagination_from_payload(payload.get("pagination") or {})
    elif isinstance(payload, list):
        items = payload
        pagination = None
    else:
        return Page(items=[])

    return Page(
        items=[convert(item) for item in items if isinstance(item, dict)],
        pagination=pagination,
    )
