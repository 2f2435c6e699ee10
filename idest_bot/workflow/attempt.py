"""One assignment attempt: answer store, navigator, timer and coordinator wired together."""
import logging
from typing import Any, Dict, Optional

from ..config import settings
from ..core.storage import ClientStorage
from ..idest_api.models import SPEAKING_KEYS, Assignment, Skill
from .answers import AnswerStore
from .coordinator import Callback, Identity, ResultRoute, SubmissionCoordinator, SubmitAPI, SubmitTrigger
from .exceptions import RecordingError
from .navigator import SectionNavigator
from .recording import AudioFile, audio_file_from_upload
from .timer import CountdownTimer

logger = logging.getLogger(__name__)


class AssignmentAttempt:
    """
    Owns everything that lives for the duration of one attempt.

    ``close()`` is the teardown: it stops the timer and detaches the
    coordinator so a late submit response goes nowhere.
    """

    def __init__(
        self,
        assignment: Assignment,
        identity: Identity,
        api: SubmitAPI,
        storage: Optional[ClientStorage] = None,
        on_navigate: Optional[Callback] = None,
        on_error: Optional[Callback] = None,
        duration: Optional[int] = None,
        tick_interval: float = 1.0,
    ):
        self.assignment = assignment
        self.answers = AnswerStore()
        self.navigator = SectionNavigator(assignment)
        if duration is None:
            duration = settings.duration_for(assignment.skill.value)
        self.timer = CountdownTimer(duration, interval=tick_interval)
        self.coordinator = SubmissionCoordinator(
            assignment,
            identity,
            api,
            answers=self.answers,
            storage=storage,
            on_navigate=on_navigate,
            on_error=on_error,
        )
        self.timer.subscribe(self.coordinator.handle_expired)

    @property
    def skill(self) -> Skill:
        return self.assignment.skill

    def start(self) -> None:
        self.coordinator.start()
        self.timer.start()
        logger.info(
            "Attempt started: %s assignment %s, %s on the clock",
            self.skill.value, self.assignment.id, self.timer.format_remaining(),
        )

    def answer_text(self, text: str) -> Any:
        """
        Applies a typed answer to the focused question.

        Raises:
            AnswerFormatError: the text does not fit the question's interaction
            LookupError: nothing is focused
        """
        question = self.navigator.current_question
        if question is None:
            raise LookupError("No question is focused")
        value = question.interaction.apply_text(self.answers.get(question.id), text)
        self.answers.update(question.id, value)
        return value

    def answer_choice(self, option_id: str, key: Optional[str] = None) -> Any:
        question = self.navigator.current_question
        if question is None:
            raise LookupError("No question is focused")
        value = question.interaction.apply_choice(self.answers.get(question.id), option_id, key)
        self.answers.update(question.id, value)
        return value

    def recording_key(self, section_index: Optional[int] = None) -> str:
        """Submit field of a speaking part (``audioOne`` for the first part)."""
        if section_index is None:
            section_index = self.navigator.active_index
        if self.skill != Skill.SPEAKING or not 0 <= section_index < len(SPEAKING_KEYS):
            raise RecordingError("Phần này không cần ghi âm")
        return SPEAKING_KEYS[section_index]

    def set_recording(self, audio: AudioFile, section_index: Optional[int] = None) -> str:
        key = self.recording_key(section_index)
        self.answers.update(key, audio)
        logger.info("Recording for %s stored (%d bytes)", key, audio.size)
        return key

    def attach_upload(self, content: bytes, mime_type: Optional[str], section_index: Optional[int] = None) -> str:
        """Upload path: a file or voice note becomes the active part's recording."""
        key = self.recording_key(section_index)
        return self.set_recording(audio_file_from_upload(key, content, mime_type), section_index)

    async def submit(self) -> Optional[ResultRoute]:
        return await self.coordinator.submit(SubmitTrigger.MANUAL)

    def close(self) -> None:
        self.timer.cancel()
        self.coordinator.detach()
        logger.info("Attempt on assignment %s closed (%s)", self.assignment.id, self.coordinator.state.value)


# Активные попытки по Telegram user_id
_attempts: Dict[int, AssignmentAttempt] = {}


def get_attempt(user_id: int) -> Optional[AssignmentAttempt]:
    return _attempts.get(user_id)


def set_attempt(user_id: int, attempt: AssignmentAttempt) -> None:
    """Registers the user's attempt, closing the one it replaces."""
    previous = _attempts.get(user_id)
    if previous is not None and previous is not attempt:
        previous.close()
    _attempts[user_id] = attempt


def clear_attempt(user_id: int) -> Optional[AssignmentAttempt]:
    attempt = _attempts.pop(user_id, None)
    if attempt is not None:
        attempt.close()
    return attempt
