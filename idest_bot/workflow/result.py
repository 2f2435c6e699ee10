"""Result review: band score, per-question rows and the pending state of graded skills."""
import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol, Union

from ..idest_api.exceptions import IdestAPIError
from ..idest_api.models import (
    Assignment, GradedResult, ObjectiveResult, Question, QuestionResult,
    SectionResult, Skill,
)
from .answers import is_blank
from .exceptions import ResultNotFoundError

logger = logging.getLogger(__name__)

PLACEHOLDER = "(không trả lời)"
NOT_FOUND_MESSAGE = "Không tìm thấy dữ liệu"


def band_score(correct: int, total: int) -> float:
    """
    IELTS-like band from a raw score: nearest half band, clamped to [0, 9].

    Halves round up (6.25 -> 6.5). A total of 0 counts as 1.
    """
    total = total or 1
    raw = correct / total * 9
    band = math.floor(raw * 2 + 0.5) / 2
    return max(0.0, min(9.0, band))


def format_answer(value: Any) -> str:
    """Renders a submitted or correct answer; nothing to show becomes the placeholder."""
    if is_blank(value):
        return PLACEHOLDER

    if isinstance(value, dict):
        if "choice" in value:
            return format_answer(value["choice"])
        if "text" in value:
            return format_answer(value["text"])
        inner = value.get("blanks", value.get("map", value))
        if isinstance(inner, dict):
            pairs = [f"{k}: {v}" for k, v in inner.items() if not is_blank(v)]
            return ", ".join(pairs) if pairs else PLACEHOLDER
        return format_answer(inner)

    if isinstance(value, (list, tuple)):
        parts = [format_answer(v) for v in value if not is_blank(v)]
        return ", ".join(parts) if parts else PLACEHOLDER

    return str(value)


@dataclass
class ReviewRow:
    """One graded sub-question as shown to the learner."""
    number: int
    prompt: str
    submitted: str
    correct_answer: str
    correct: bool


@dataclass
class SectionReview:
    title: str
    rows: List[ReviewRow] = field(default_factory=list)


@dataclass
class ObjectiveReview:
    skill: Skill
    assignment_title: str
    band: float
    percentage: float
    correct_answers: int
    incorrect_answers: int
    total_questions: int
    sections: List[SectionReview] = field(default_factory=list)


@dataclass
class GradedReview:
    skill: Skill
    assignment_title: str
    result: GradedResult

    @property
    def is_pending(self) -> bool:
        return self.result.is_pending

    @property
    def score(self) -> Optional[float]:
        return None if self.is_pending else self.result.score


Review = Union[ObjectiveReview, GradedReview]


def _match_results(questions: List[Question], results: List[QuestionResult]) -> List[Optional[QuestionResult]]:
    """Pairs questions with results by id, falling back to position."""
    by_id = {r.question_id: r for r in results if r.question_id}
    matched = []
    for index, question in enumerate(questions):
        result = by_id.get(question.id)
        if result is None and not by_id and index < len(results):
            result = results[index]
        matched.append(result)
    return matched


def _rows_for(question: Question, result: Optional[QuestionResult], start: int) -> List[ReviewRow]:
    if result is not None and result.subquestions:
        return [
            ReviewRow(
                number=start + offset,
                prompt=question.prompt_md,
                submitted=format_answer(sub.submitted_answer),
                correct_answer=format_answer(sub.correct_answer),
                correct=sub.correct,
            )
            for offset, sub in enumerate(result.subquestions)
        ]

    return [ReviewRow(
        number=start,
        prompt=question.prompt_md,
        submitted=format_answer(result.submitted_answer if result else None),
        correct_answer=format_answer(result.correct_answer if result else None),
        correct=bool(result and result.correct),
    )]


def build_objective_review(assignment: Assignment, result: ObjectiveResult) -> ObjectiveReview:
    sections = []
    number = 1
    for index, section in enumerate(assignment.sections):
        detail: Optional[SectionResult] = result.details[index] if index < len(result.details) else None
        title = section.title or (detail.section_title if detail else None) or f"Phần {index + 1}"
        review = SectionReview(title=title)

        matched = _match_results(section.questions, detail.questions if detail else [])
        for question, question_result in zip(section.questions, matched):
            rows = _rows_for(question, question_result, number)
            review.rows.extend(rows)
            number += len(rows)
        sections.append(review)

    return ObjectiveReview(
        skill=assignment.skill,
        assignment_title=assignment.title,
        band=band_score(result.correct_answers, result.total_questions),
        percentage=result.percentage,
        correct_answers=result.correct_answers,
        incorrect_answers=result.incorrect_answers,
        total_questions=result.total_questions,
        sections=sections,
    )


class ResultAPI(Protocol):
    async def get_assignment(self, skill: Skill, assignment_id: str) -> Assignment: ...

    async def get_result(self, skill: Skill, submission_id: str) -> Union[ObjectiveResult, GradedResult]: ...


class ResultViewer:
    """Loads the assignment and its result together and builds the review."""

    def __init__(self, api: ResultAPI):
        self.api = api

    async def load(self, skill: Skill, assignment_id: str, submission_id: str) -> Review:
        """
        Raises:
            ResultNotFoundError: either request failed; the view is terminal
        """
        try:
            assignment, result = await asyncio.gather(
                self.api.get_assignment(skill, assignment_id),
                self.api.get_result(skill, submission_id),
            )
        except IdestAPIError as e:
            logger.warning(
                "Result %s of %s assignment %s not loaded: %s",
                submission_id, skill.value, assignment_id, e,
            )
            raise ResultNotFoundError(NOT_FOUND_MESSAGE) from e

        if isinstance(result, ObjectiveResult):
            return build_objective_review(assignment, result)
        return GradedReview(skill=skill, assignment_title=assignment.title, result=result)
