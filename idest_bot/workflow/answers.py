"""In-memory answer store of one attempt."""
from typing import Any, Dict, Iterator, Optional


def is_blank(value: Any) -> bool:
    """
    True for values that mean "no answer".

    ``None``, empty/whitespace strings, and containers whose every value is
    blank (``{}``, ``{"blanks": {}}``, ``{"choice": ""}``).
    """
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, dict):
        return all(is_blank(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return all(is_blank(v) for v in value)
    return False


class AnswerStore:
    """
    Mapping question key → answer value.

    Keys are question ids (or submit field names for writing/speaking).
    Values are opaque here: their shape belongs to the question's interaction
    and is never checked by the store. Only input handlers write to it.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._answers: Dict[str, Any] = dict(initial or {})

    def update(self, key: str, value: Any) -> None:
        """Replace the entry for ``key``; all other entries are untouched."""
        self._answers = {**self._answers, key: value}

    def get(self, key: str, default: Any = None) -> Any:
        return self._answers.get(key, default)

    def has_answer(self, key: str) -> bool:
        return not is_blank(self._answers.get(key))

    def snapshot(self) -> Dict[str, Any]:
        """Shallow copy for payload assembly."""
        return dict(self._answers)

    def __contains__(self, key: str) -> bool:
        return key in self._answers

    def __iter__(self) -> Iterator[str]:
        return iter(self._answers)

    def __len__(self) -> int:
        return len(self._answers)
