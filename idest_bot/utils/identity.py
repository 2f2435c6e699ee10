"""Linked identity lookup: stored access token → Identity for the workflow."""
import logging
from datetime import datetime, timezone
from typing import Optional

from jose import JWTError, jwt

from ..database.crud import get_user
from ..idest_api.exceptions import AuthenticationError
from ..workflow.coordinator import Identity

logger = logging.getLogger(__name__)

# Токен считаем истёкшим за минуту до реального срока
TOKEN_EXPIRY_BUFFER_SECONDS = 60


def _token_expiry(token: str) -> Optional[datetime]:
    """
    Reads the ``exp`` claim of a JWT without verifying it.

    Returns:
        Expiry as an aware UTC datetime, or None for opaque tokens
    """
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return None

    exp = claims.get("exp") if isinstance(claims, dict) else None
    if not isinstance(exp, (int, float)):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)


def _is_token_valid(token: str, now: Optional[datetime] = None) -> bool:
    """Opaque tokens are trusted until the backend rejects them."""
    expires_at = _token_expiry(token)
    if expires_at is None:
        return True
    now = now or datetime.now(timezone.utc)
    return expires_at.timestamp() - TOKEN_EXPIRY_BUFFER_SECONDS > now.timestamp()


async def ensure_identity(telegram_id: int) -> Identity:
    """
    Identity of a linked Telegram user.

    Raises:
        AuthenticationError: not linked, token unreadable or expired
    """
    try:
        user = await get_user(telegram_id)
    except ValueError as e:
        logger.error("Stored token of telegram_id=%d cannot be decrypted: %s", telegram_id, e)
        raise AuthenticationError("Stored token is unreadable") from e

    if not user:
        raise AuthenticationError("Account is not linked")

    token = user["access_token"]
    if not token or not _is_token_valid(token):
        logger.info("Access token of telegram_id=%d expired", telegram_id)
        raise AuthenticationError("Access token expired")

    return Identity(user_id=user["idest_user_id"], access_token=token)
