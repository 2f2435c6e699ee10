"""CRUD operations for database."""
from typing import Dict, List, Optional

from ..core.database import get_db
from ..core.encryption import decrypt, encrypt


# ============================================================================
# USER OPERATIONS
# ============================================================================

async def link_user(
    telegram_id: int,
    username: Optional[str],
    idest_user_id: str,
    access_token: str,
) -> bool:
    """
    Link a Telegram user to an Idest account (token stored encrypted).

    Re-linking replaces the previous identity.

    Returns:
        True if stored successfully
    """
    db = get_db()

    query = """
        INSERT INTO users (telegram_id, username, idest_user_id, access_token, is_active)
        VALUES (?, ?, ?, ?, 1)
        ON CONFLICT (telegram_id) DO UPDATE SET
            username = excluded.username,
            idest_user_id = excluded.idest_user_id,
            access_token = excluded.access_token,
            linked_at = CURRENT_TIMESTAMP,
            is_active = 1
    """

    await db.execute(query, (telegram_id, username, idest_user_id, encrypt(access_token)))
    return True


async def get_user(telegram_id: int) -> Optional[Dict]:
    """
    Get linked user by Telegram ID with the decrypted access token.

    Returns:
        User dict or None when the user is not linked
    """
    db = get_db()

    query = """
        SELECT telegram_id, username, idest_user_id, access_token, linked_at, is_active
        FROM users WHERE telegram_id = ? AND is_active = 1
    """
    row = await db.fetchone(query, (telegram_id,))

    if not row:
        return None

    return {
        "telegram_id": row[0],
        "username": row[1],
        "idest_user_id": row[2],
        "access_token": decrypt(row[3]),
        "linked_at": row[4],
        "is_active": row[5],
    }


async def unlink_user(telegram_id: int) -> bool:
    """Remove the linked identity. Returns False when nothing was linked."""
    if not await user_exists(telegram_id):
        return False

    db = get_db()
    await db.execute("DELETE FROM users WHERE telegram_id = ?", (telegram_id,))
    return True


async def user_exists(telegram_id: int) -> bool:
    """Check if user exists in database."""
    db = get_db()

    query = "SELECT 1 FROM users WHERE telegram_id = ?"
    result = await db.fetchone(query, (telegram_id,))

    return result is not None


# ============================================================================
# SUBMISSION HISTORY
# ============================================================================

async def record_submission(
    telegram_id: int,
    skill: str,
    assignment_id: str,
    submission_id: str,
    trigger: str,
):
    """Remember a submission made through the bot (for /result shortcuts)."""
    db = get_db()

    query = """
        INSERT OR REPLACE INTO submissions (submission_id, telegram_id, skill, assignment_id, trigger)
        VALUES (?, ?, ?, ?, ?)
    """

    await db.execute(query, (submission_id, telegram_id, skill, assignment_id, trigger))


async def get_recent_submissions(telegram_id: int, limit: int = 5) -> List[Dict]:
    """Latest submissions of a user, newest first."""
    db = get_db()

    query = """
        SELECT submission_id, skill, assignment_id, trigger, submitted_at
        FROM submissions
        WHERE telegram_id = ?
        ORDER BY submitted_at DESC, rowid DESC
        LIMIT ?
    """
    rows = await db.fetchall(query, (telegram_id, limit))

    return [
        {
            "submission_id": row[0],
            "skill": row[1],
            "assignment_id": row[2],
            "trigger": row[3],
            "submitted_at": row[4],
        }
        for row in rows
    ]


# ============================================================================
# CLIENT STATE
# ============================================================================

async def get_client_state(telegram_id: int, key: str) -> Optional[str]:
    db = get_db()

    query = "SELECT state_value FROM client_state WHERE telegram_id = ? AND state_key = ?"
    row = await db.fetchone(query, (telegram_id, key))

    return row[0] if row else None


async def set_client_state(telegram_id: int, key: str, value: str):
    db = get_db()

    query = """
        INSERT INTO client_state (telegram_id, state_key, state_value)
        VALUES (?, ?, ?)
        ON CONFLICT (telegram_id, state_key) DO UPDATE SET
            state_value = excluded.state_value,
            updated_at = CURRENT_TIMESTAMP
    """

    await db.execute(query, (telegram_id, key, value))


async def delete_client_state(telegram_id: int, key: str):
    db = get_db()

    await db.execute(
        "DELETE FROM client_state WHERE telegram_id = ? AND state_key = ?",
        (telegram_id, key),
    )


# ============================================================================
# ACTIVITY LOG
# ============================================================================

async def log_activity(telegram_id: Optional[int], action: str, details: Optional[str] = None):
    """Log user activity."""
    db = get_db()

    query = """
        INSERT INTO activity_log (telegram_id, action, details)
        VALUES (?, ?, ?)
    """

    await db.execute(query, (telegram_id, action, details))
