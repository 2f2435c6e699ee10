"""Idest backend endpoints.

Paths are relative to ``settings.IDEST_API_BASE_URL``. Reading and listening
share the objective submission shape; speaking answers live under
``responses`` rather than ``submissions``.
"""

ASSIGNMENTS = "assignments"
MY_SUBMISSIONS = "assignments/submissions/me"

_SUBMISSION_COLLECTION = {
    "reading": "submissions",
    "listening": "submissions",
    "writing": "submissions",
    "speaking": "responses",
}

# Заголовки по умолчанию для всех запросов
DEFAULT_HEADERS = {
    "Accept": "application/json",
}


def skill_assignments(skill: str) -> str:
    """Listing of assignments for one skill."""
    return f"{skill}/assignments"


def assignment_detail(skill: str, assignment_id: str) -> str:
    """Single assignment of a skill."""
    return f"{skill}/assignments/{assignment_id}"


def submissions(skill: str) -> str:
    """Collection that accepts new submissions for a skill."""
    return f"{skill}/{_SUBMISSION_COLLECTION[skill]}"


def submission_detail(skill: str, submission_id: str) -> str:
    """Scored result of one submission."""
    return f"{submissions(skill)}/{submission_id}"
