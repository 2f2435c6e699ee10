"""Interaction kinds of a question and how each one turns input into an answer.

Every question carries exactly one interaction. The set of kinds is closed:
``interaction_from_payload`` decodes the wire ``type`` into one of the classes
below and all answer handling goes through the instance, never through
``if kind == ...`` chains at the call sites.
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

GAP_FILL = "gap_fill_template"
MULTIPLE_CHOICE = "multiple_choice_single"
TRUE_FALSE_NOT_GIVEN = "true_false_not_given"
MATCHING = "matching"
SHORT_ANSWER = "short_answer"
FREE_TEXT = "free_text"

_BLANK_RE = re.compile(r"\{\{\s*blank\s*:\s*([a-zA-Z0-9_-]+)\s*\}\}")
# "3: river" / "3 = river" / "A - iv"
_PAIR_RE = re.compile(r"^\s*([^:=]+?)\s*[:=\-]\s*(.*?)\s*$")

TFNG_CHOICES = ("TRUE", "FALSE", "NOT_GIVEN")
_TFNG_ALIASES = {
    "true": "TRUE",
    "t": "TRUE",
    "yes": "TRUE",
    "false": "FALSE",
    "f": "FALSE",
    "no": "FALSE",
    "not given": "NOT_GIVEN",
    "not_given": "NOT_GIVEN",
    "ng": "NOT_GIVEN",
}


class AnswerFormatError(ValueError):
    """Input cannot be turned into an answer for this interaction."""
    pass


@dataclass(frozen=True)
class Option:
    """Selectable option (multiple choice, matching right side)."""
    id: str
    label: str


def _split_entries(text: str) -> List[str]:
    parts = re.split(r"[\n;]", text)
    return [p.strip() for p in parts if p.strip()]


def normalize_options(raw_options: Any) -> List[Option]:
    """
    Normalize answer options to one shape.

    The backend sends either ``{id, label_md|label}`` objects or plain strings.
    Strings get letter ids (A, B, C, ...).
    """
    if not isinstance(raw_options, list):
        return []

    options = []
    for index, opt in enumerate(raw_options):
        if isinstance(opt, dict) and "id" in opt:
            label = opt.get("label_md") or opt.get("label") or opt["id"]
            options.append(Option(id=str(opt["id"]), label=str(label)))
        elif isinstance(opt, str):
            options.append(Option(id=chr(65 + index), label=opt))
        else:
            options.append(Option(id=str(index), label=str(opt)))
    return options


def blank_ids_from_template(template: Optional[Dict[str, Any]]) -> Tuple[str, ...]:
    """Blank ids of a gap-fill template, explicit list first, then ``{{blank:id}}`` markers."""
    if not template:
        return ()
    blanks = template.get("blanks") or []
    if blanks:
        return tuple(str(b.get("blank_id")) for b in blanks if isinstance(b, dict) and b.get("blank_id") is not None)
    body = template.get("body") or ""
    # keep order, drop duplicates
    return tuple(dict.fromkeys(_BLANK_RE.findall(body)))


class Interaction:
    """Base class of the interaction variants."""

    kind = ""

    def default_answer(self) -> Any:
        """Value submitted when the learner left the question untouched."""
        return {}

    def choices(self) -> List[Option]:
        """Options a front-end can offer as buttons; empty for typed answers."""
        return []

    def items(self) -> List[Option]:
        """Entries the learner answers one by one (matching left side)."""
        return []

    def apply_text(self, current: Any, text: str) -> Any:
        """Return the new answer value after the learner typed ``text``."""
        raise AnswerFormatError("Câu hỏi này cần chọn đáp án")

    def apply_choice(self, current: Any, option_id: str, key: Optional[str] = None) -> Any:
        """Return the new answer value after the learner picked ``option_id``."""
        raise AnswerFormatError("Câu hỏi này cần nhập câu trả lời")

    def hint(self) -> str:
        return ""


@dataclass(frozen=True)
class GapFill(Interaction):
    """Template with named blanks; answer is ``{"blanks": {blank_id: text}}``."""
    blank_ids: Tuple[str, ...] = ()

    kind = GAP_FILL

    def apply_text(self, current: Any, text: str) -> Any:
        blanks = dict(current.get("blanks") or {}) if isinstance(current, dict) else {}
        entries = _split_entries(text)
        if not entries:
            raise AnswerFormatError("Câu trả lời trống")

        if len(self.blank_ids) == 1 and len(entries) == 1:
            match = _PAIR_RE.match(entries[0])
            if match and match.group(1) == self.blank_ids[0]:
                blanks[self.blank_ids[0]] = match.group(2)
            else:
                blanks[self.blank_ids[0]] = entries[0]
            return {"blanks": blanks}

        for position, entry in enumerate(entries):
            match = _PAIR_RE.match(entry)
            if match and match.group(1) in self.blank_ids:
                blanks[match.group(1)] = match.group(2)
            elif position < len(self.blank_ids):
                blanks[self.blank_ids[position]] = entry
            else:
                raise AnswerFormatError(f"Chỉ có {len(self.blank_ids)} chỗ trống")
        return {"blanks": blanks}

    def hint(self) -> str:
        if len(self.blank_ids) <= 1:
            return "Nhập từ cần điền"
        return "Mỗi dòng một chỗ trống, ví dụ: " + "; ".join(f"{b}: ..." for b in self.blank_ids[:2])


@dataclass(frozen=True)
class MultipleChoice(Interaction):
    """Single choice; answer is ``{"choice": option_id}``."""
    options: Tuple[Option, ...] = ()

    kind = MULTIPLE_CHOICE

    def choices(self) -> List[Option]:
        return list(self.options)

    def apply_choice(self, current: Any, option_id: str, key: Optional[str] = None) -> Any:
        if option_id not in {o.id for o in self.options}:
            raise AnswerFormatError(f"Không có lựa chọn {option_id}")
        return {"choice": option_id}

    def apply_text(self, current: Any, text: str) -> Any:
        wanted = text.strip().lower()
        for option in self.options:
            if wanted in (option.id.lower(), option.label.strip().lower()):
                return {"choice": option.id}
        raise AnswerFormatError("Hãy chọn một trong các đáp án")


@dataclass(frozen=True)
class TrueFalseNotGiven(Interaction):
    """TRUE / FALSE / NOT GIVEN; answer is ``{"choice": "TRUE"}``."""

    kind = TRUE_FALSE_NOT_GIVEN

    def choices(self) -> List[Option]:
        return [Option(id=c, label=c.replace("_", " ")) for c in TFNG_CHOICES]

    def apply_choice(self, current: Any, option_id: str, key: Optional[str] = None) -> Any:
        if option_id not in TFNG_CHOICES:
            raise AnswerFormatError(f"Không có lựa chọn {option_id}")
        return {"choice": option_id}

    def apply_text(self, current: Any, text: str) -> Any:
        choice = _TFNG_ALIASES.get(text.strip().lower())
        if choice is None:
            raise AnswerFormatError("Trả lời TRUE, FALSE hoặc NOT GIVEN")
        return {"choice": choice}


@dataclass(frozen=True)
class Matching(Interaction):
    """
    Matching question.

    Two wire formats exist: ``left``/``right`` lists (answer
    ``{"map": {left_id: right_id}}``) and the legacy flat ``options`` list
    (answer ``{"choice": option}``).
    """
    left: Tuple[Option, ...] = ()
    right: Tuple[Option, ...] = ()
    options: Tuple[Option, ...] = ()

    kind = MATCHING

    @property
    def is_pairwise(self) -> bool:
        return bool(self.left) and bool(self.right)

    def choices(self) -> List[Option]:
        return list(self.right) if self.is_pairwise else list(self.options)

    def items(self) -> List[Option]:
        return list(self.left) if self.is_pairwise else []

    def apply_choice(self, current: Any, option_id: str, key: Optional[str] = None) -> Any:
        if not self.is_pairwise:
            if option_id not in {o.id for o in self.options}:
                raise AnswerFormatError(f"Không có lựa chọn {option_id}")
            return {"choice": option_id}

        if key not in {o.id for o in self.left}:
            raise AnswerFormatError("Chưa chọn mục cần nối")
        if option_id not in {o.id for o in self.right}:
            raise AnswerFormatError(f"Không có lựa chọn {option_id}")
        mapping = dict(current.get("map") or {}) if isinstance(current, dict) else {}
        mapping[key] = option_id
        return {"map": mapping}

    def apply_text(self, current: Any, text: str) -> Any:
        if not self.is_pairwise:
            wanted = text.strip().lower()
            for option in self.options:
                if wanted in (option.id.lower(), option.label.lower()):
                    return {"choice": option.id}
            raise AnswerFormatError("Hãy chọn một trong các đáp án")

        left_ids = {o.id.lower(): o.id for o in self.left}
        right_ids = {o.id.lower(): o.id for o in self.right}
        mapping = dict(current.get("map") or {}) if isinstance(current, dict) else {}
        entries = _split_entries(text)
        if not entries:
            raise AnswerFormatError("Câu trả lời trống")
        for entry in entries:
            match = _PAIR_RE.match(entry)
            if not match:
                raise AnswerFormatError("Định dạng: mục: đáp án")
            left_id = left_ids.get(match.group(1).lower())
            right_id = right_ids.get(match.group(2).lower())
            if left_id is None or right_id is None:
                raise AnswerFormatError(f"Không nối được \"{entry}\"")
            mapping[left_id] = right_id
        return {"map": mapping}

    def hint(self) -> str:
        if self.is_pairwise:
            return "Mỗi dòng một cặp, ví dụ: " + f"{self.left[0].id}: {self.right[0].id}"
        return ""


@dataclass(frozen=True)
class ShortAnswer(Interaction):
    """Short typed answer; answer is ``{"text": str}``."""
    max_words: Optional[int] = None
    allow_numbers: bool = True

    kind = SHORT_ANSWER

    def apply_text(self, current: Any, text: str) -> Any:
        return {"text": text.strip()}

    def hint(self) -> str:
        if not self.max_words:
            return ""
        hint = f"Tối đa {self.max_words} từ"
        if not self.allow_numbers:
            hint += " (không dùng số)"
        return hint


@dataclass(frozen=True)
class FreeText(Interaction):
    """Open typed answer inside an objective test; answer is ``{"text": str}``."""

    kind = FREE_TEXT

    def apply_text(self, current: Any, text: str) -> Any:
        return {"text": text}


@dataclass(frozen=True)
class Essay(FreeText):
    """Writing task or speaking prompt; answer is the raw text."""

    def default_answer(self) -> Any:
        return ""

    def apply_text(self, current: Any, text: str) -> Any:
        return text


def interaction_from_payload(
    kind: Optional[str],
    interaction: Optional[Dict[str, Any]] = None,
    template: Optional[Dict[str, Any]] = None,
) -> Interaction:
    """Decode a question's ``type`` + ``interaction`` payload into a variant."""
    interaction = interaction or {}

    if kind == GAP_FILL:
        return GapFill(blank_ids=blank_ids_from_template(template))
    if kind == MULTIPLE_CHOICE:
        return MultipleChoice(options=tuple(normalize_options(interaction.get("options") or [])))
    if kind == TRUE_FALSE_NOT_GIVEN:
        return TrueFalseNotGiven()
    if kind == MATCHING:
        legacy = interaction.get("options") or []
        return Matching(
            left=tuple(normalize_options(interaction.get("left") or [])),
            right=tuple(normalize_options(interaction.get("right") or [])),
            options=tuple(Option(id=str(o), label=str(o)) for o in legacy),
        )
    if kind == SHORT_ANSWER:
        allow_numbers = interaction.get("allow_numbers")
        return ShortAnswer(
            max_words=interaction.get("max_words"),
            allow_numbers=True if allow_numbers is None else bool(allow_numbers),
        )
    if kind == FREE_TEXT:
        return FreeText()

    # unknown kinds still accept a typed answer
    logger.warning("Unknown interaction kind %r, falling back to short answer", kind)
    return ShortAnswer()
