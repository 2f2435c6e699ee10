"""Submission coordinator: validation, payload assembly and the submit-once guarantee.

One coordinator serves one attempt. The manual submit control and the timer
expiry both call :meth:`SubmissionCoordinator.submit`; whichever comes first
sends the request and every later call is a no-op. The "already submitting"
flag is taken before the first ``await``, so two triggers scheduled in the
same loop iteration still produce a single network call.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union

from ..core.storage import ClientStorage, mark_grading_queued
from ..idest_api.exceptions import IdestAPIError
from ..idest_api.models import (
    SPEAKING_KEYS, WRITING_KEYS, Assignment, Skill, SubmissionReceipt,
)
from .answers import AnswerStore, is_blank
from .exceptions import SubmissionFailedError, SubmissionValidationError
from .recording import AudioFile

logger = logging.getLogger(__name__)

WRITING_INCOMPLETE_MESSAGE = "Bạn phải hoàn thành cả Nhiệm vụ 1 và Nhiệm vụ 2 trước khi nộp bài."
SPEAKING_INCOMPLETE_MESSAGE = "Vui lòng ghi âm hoặc tải lên đầy đủ 3 bản ghi âm (phần 1, 2, 3)."
SUBMIT_FAILED_MESSAGE = "Nộp bài thất bại. Vui lòng thử lại."


@dataclass(frozen=True)
class Identity:
    """Learner on whose behalf the attempt is submitted."""
    user_id: str
    access_token: str


class SubmitTrigger(str, Enum):
    MANUAL = "manual"
    TIMER = "timer"


class AttemptState(str, Enum):
    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    FAILED = "failed"


@dataclass(frozen=True)
class ResultRoute:
    """Where the learner goes after a successful submit."""
    skill: Skill
    assignment_id: str
    submission_id: str


class SubmitAPI(Protocol):
    async def submit(self, skill: Skill, payload: Dict[str, Any]) -> SubmissionReceipt: ...


Callback = Callable[..., Union[None, Awaitable[None]]]


async def _call(callback: Optional[Callback], *args) -> None:
    if callback is None:
        return
    outcome = callback(*args)
    if outcome is not None and hasattr(outcome, "__await__"):
        await outcome


def build_section_answers(assignment: Assignment, answers: AnswerStore) -> List[Dict[str, Any]]:
    """Every question of every section, unanswered ones with their empty default."""
    return [
        {
            "section_id": section.id,
            "answers": [
                {
                    "question_id": question.id,
                    "answer": answers.get(question.id, question.interaction.default_answer()),
                }
                for question in section.questions
            ],
        }
        for section in assignment.sections
    ]


def build_payload(assignment: Assignment, identity: Identity, answers: AnswerStore) -> Dict[str, Any]:
    """
    Assembles the submit body for the assignment's skill.

    Raises:
        SubmissionValidationError: writing task or speaking recording missing
    """
    if assignment.skill == Skill.WRITING:
        contents = {key: answers.get(key, "") for key in WRITING_KEYS}
        if any(is_blank(value) for value in contents.values()):
            raise SubmissionValidationError(WRITING_INCOMPLETE_MESSAGE)
        return {
            "assignment_id": assignment.id,
            "user_id": identity.user_id,
            **contents,
        }

    if assignment.skill == Skill.SPEAKING:
        recordings = {key: answers.get(key) for key in SPEAKING_KEYS}
        if not all(isinstance(value, AudioFile) and value.size for value in recordings.values()):
            raise SubmissionValidationError(SPEAKING_INCOMPLETE_MESSAGE)
        return {
            "assignment_id": assignment.id,
            "user_id": identity.user_id,
            **recordings,
        }

    return {
        "assignment_id": assignment.id,
        "submitted_by": identity.user_id,
        "section_answers": build_section_answers(assignment, answers),
    }


class SubmissionCoordinator:
    """Turns a finished attempt into exactly one submission."""

    def __init__(
        self,
        assignment: Assignment,
        identity: Identity,
        api: SubmitAPI,
        answers: Optional[AnswerStore] = None,
        storage: Optional[ClientStorage] = None,
        on_navigate: Optional[Callback] = None,
        on_error: Optional[Callback] = None,
    ):
        self.assignment = assignment
        self.identity = identity
        self.api = api
        self.answers = answers if answers is not None else AnswerStore()
        self.storage = storage
        self.on_navigate = on_navigate
        self.on_error = on_error

        self.state = AttemptState.IDLE
        self.route: Optional[ResultRoute] = None
        self._submitting = False
        self._detached = False

    @property
    def submitted(self) -> bool:
        return self.state == AttemptState.SUBMITTED

    @property
    def in_flight(self) -> bool:
        return self._submitting and self.state == AttemptState.SUBMITTING

    def start(self) -> None:
        if self.state == AttemptState.IDLE:
            self.state = AttemptState.IN_PROGRESS

    def detach(self) -> None:
        """The attempt view is gone: a late response must not navigate or report."""
        self._detached = True

    def build_payload(self) -> Dict[str, Any]:
        return build_payload(self.assignment, self.identity, self.answers)

    def _release(self) -> None:
        """Failed → InProgress: the next submit may try again."""
        self.state = AttemptState.FAILED
        self._submitting = False
        self.state = AttemptState.IN_PROGRESS

    async def submit(self, trigger: SubmitTrigger = SubmitTrigger.MANUAL) -> Optional[ResultRoute]:
        """
        Submits the attempt once.

        Returns:
            ResultRoute of the new submission, or None when a submit is already
            in flight, already done, or the attempt was detached.

        Raises:
            SubmissionValidationError: required content missing, nothing sent
            SubmissionFailedError: the request failed, submitting again is allowed
        """
        if self._submitting or self._detached:
            logger.debug(
                "Submit (%s) ignored for assignment %s: state=%s",
                trigger.value, self.assignment.id, self.state.value,
            )
            return None

        payload = self.build_payload()

        # Flag taken before the first await
        self._submitting = True
        self.state = AttemptState.SUBMITTING
        logger.info(
            "Submitting %s assignment %s (%s)",
            self.assignment.skill.value, self.assignment.id, trigger.value,
        )

        try:
            receipt = await self.api.submit(self.assignment.skill, payload)
        except IdestAPIError as e:
            logger.error("Submit of assignment %s failed: %s", self.assignment.id, e)
            self._release()
            raise SubmissionFailedError(SUBMIT_FAILED_MESSAGE) from e
        except Exception as e:
            logger.exception("Unexpected error submitting assignment %s", self.assignment.id)
            self._release()
            raise SubmissionFailedError(SUBMIT_FAILED_MESSAGE) from e

        self.state = AttemptState.SUBMITTED
        self.route = ResultRoute(
            skill=self.assignment.skill,
            assignment_id=self.assignment.id,
            submission_id=receipt.id,
        )

        if self._detached:
            logger.info("Submission %s completed after the attempt was closed", receipt.id)
            return self.route

        if not self.assignment.skill.is_objective and self.storage is not None:
            await mark_grading_queued(self.storage)

        await _call(self.on_navigate, self.route)
        return self.route

    async def handle_expired(self) -> Optional[ResultRoute]:
        """
        Timer subscriber: submit whatever is there.

        Failures are reported through ``on_error``; there is no automatic retry.
        """
        if self._submitting or self._detached:
            return None

        try:
            return await self.submit(SubmitTrigger.TIMER)
        except (SubmissionValidationError, SubmissionFailedError) as e:
            logger.warning("Auto-submit of assignment %s failed: %s", self.assignment.id, e)
            if not self._detached:
                await _call(self.on_error, e)
            return None
