"""
TaskTrack Authentication — bcrypt password hashing and API-key resolution.

API keys have the shape ``<user_id>.<secret>``. Only the bcrypt hash of the
full key is stored; the user id prefix lets a lookup hit one row instead of
checking every account.
"""

from __future__ import annotations

import logging
import secrets
from typing import Optional

import bcrypt
from sqlalchemy.orm import Session, sessionmaker

from tasktrack.db.models import User
from tasktrack.engine.context import ExecutionContext
from tasktrack.engine.logging import log, log_security_event

logger = logging.getLogger("tasktrack.security.auth")


# ---------------------------------------------------------------------------
# Password Utilities
# ---------------------------------------------------------------------------

def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its bcrypt hash."""
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


def generate_api_key(user_id: int, rounds: int = 12) -> tuple[str, str]:
    """
    Generate an API key for a user.

    Returns:
        Tuple of (api_key, api_key_hash). The api_key is shown once; only the hash is stored.
    """
    api_key = f"{user_id}.{secrets.token_urlsafe(32)}"
    return api_key, hash_password(api_key, rounds=rounds)


def issue_api_key(session: Session, user: User, rounds: int = 12) -> str:
    """Rotate the user's API key and return the plaintext once."""
    if user.id is None:
        session.flush()
    api_key, api_key_hash = generate_api_key(user.id, rounds=rounds)
    user.api_key_hash = api_key_hash
    return api_key


# ---------------------------------------------------------------------------
# Authentication Service
# ---------------------------------------------------------------------------

class AuthService:
    """
    Resolves request credentials to an ExecutionContext.

    Flow:
    1. Client sends ``X-API-Key: <user_id>.<secret>``
    2. User row loaded by id, must be active with a key hash
    3. bcrypt check of the full key
    4. ExecutionContext(actor_id, role) returned; None on any failure
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def authenticate_api_key(self, api_key: Optional[str]) -> Optional[ExecutionContext]:
        if not api_key:
            return None

        user_part, _, secret = api_key.partition(".")
        if not secret or not user_part.isdigit():
            self._log_failure(None, "malformed_api_key")
            return None

        session: Session = self._session_factory()
        try:
            user = session.get(User, int(user_part))
            if user is None or not user.is_active or not user.api_key_hash:
                self._log_failure(int(user_part), "unknown_or_inactive_user")
                return None
            if not verify_password(api_key, user.api_key_hash):
                self._log_failure(user.id, "invalid_api_key")
                return None
            return ExecutionContext(actor_id=user.id, role=user.role, username=user.username)
        finally:
            session.close()

    @staticmethod
    def _log_failure(user_id: Optional[int], reason: str) -> None:
        logger.info("Authentication failed (%s) for user %s", reason, user_id)
        log(log_security_event(
            event="authentication_failed",
            object_type="users",
            action="authenticate",
            actor_id=user_id,
            role=None,
            reason=reason,
        ))
