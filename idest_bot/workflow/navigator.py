"""Section/part navigation of an attempt."""
from dataclasses import dataclass
from typing import List, Optional

from ..idest_api.models import Assignment, Question, Section
from .answers import AnswerStore


@dataclass(frozen=True)
class FlatQuestion:
    """Position of a sub-question in the outline."""
    global_index: int      # 0-based across the whole assignment
    section_index: int
    question_id: str


class SectionNavigator:
    """
    Tracks the active section and the focused sub-question in it.

    Sub-questions are numbered across sections in document order, the same
    numbering the outline shows. Focus changes are presentation state only;
    they never touch the answer store.
    """

    def __init__(self, assignment: Assignment):
        self.assignment = assignment
        self.flat: List[FlatQuestion] = []
        for section_index, section in enumerate(assignment.sections):
            for question in section.questions:
                self.flat.append(FlatQuestion(len(self.flat), section_index, question.id))

        self.active_index = 0
        self.current_sub_index: Optional[int] = None
        if assignment.sections:
            self.jump_to(0)

    @property
    def section_count(self) -> int:
        return len(self.assignment.sections)

    @property
    def active_section(self) -> Optional[Section]:
        if not self.assignment.sections:
            return None
        return self.assignment.sections[self.active_index]

    @property
    def has_next(self) -> bool:
        """Whether the "next section" control should be offered."""
        return self.active_index < self.section_count - 1

    @property
    def current(self) -> Optional[FlatQuestion]:
        if self.current_sub_index is None:
            return None
        return self.flat[self.current_sub_index]

    @property
    def current_question(self) -> Optional[Question]:
        entry = self.current
        if entry is None:
            return None
        return self.assignment.find_question(entry.question_id)

    def first_in_section(self, section_index: int) -> Optional[FlatQuestion]:
        for entry in self.flat:
            if entry.section_index == section_index:
                return entry
        return None

    def section_entries(self, section_index: int) -> List[FlatQuestion]:
        return [e for e in self.flat if e.section_index == section_index]

    def jump_to(self, index: int) -> Optional[FlatQuestion]:
        """
        Activate section ``index`` and focus its first sub-question.

        Sections without sub-questions (instructions only) leave focus empty.
        """
        if not 0 <= index < self.section_count:
            raise IndexError(f"section index {index} out of range")
        self.active_index = index
        first = self.first_in_section(index)
        self.current_sub_index = first.global_index if first else None
        return first

    def advance(self) -> bool:
        """Go to the next section. Returns False (and does nothing) on the last one."""
        if not self.has_next:
            return False
        self.jump_to(self.active_index + 1)
        return True

    def focus(self, global_index: int) -> FlatQuestion:
        """Select a sub-question from the outline; switches section if needed."""
        if not 0 <= global_index < len(self.flat):
            raise IndexError(f"question index {global_index} out of range")
        entry = self.flat[global_index]
        self.active_index = entry.section_index
        self.current_sub_index = global_index
        return entry

    def focus_next(self) -> Optional[FlatQuestion]:
        """Move focus to the next sub-question in the active section, if any."""
        if self.current_sub_index is None:
            return None
        following = self.current_sub_index + 1
        if following < len(self.flat) and self.flat[following].section_index == self.active_index:
            self.current_sub_index = following
            return self.flat[following]
        return None

    def answered_count(self, answers: AnswerStore) -> int:
        return sum(1 for e in self.flat if answers.has_answer(e.question_id))
