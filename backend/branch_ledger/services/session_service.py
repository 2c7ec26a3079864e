# Overview: Service-layer operations for actor tokens; resolves a bearer token to its user.

"""
Actor token resolution.

WHY: every ledger row records who did it. Requests identify their actor with
a bearer token issued by the auth system; this module turns the token back
into a user.

- Tokens are 32 random bytes, hex encoded, and only their SHA-256 is stored
- Tokens expire after SESSION_TTL_HOURS and can be revoked
- Inactive users resolve to nothing
"""

import secrets
import hashlib
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import SessionToken, User
from ..time_utils import utcnow


@dataclass
class SessionContext:
    """Actor identity for the current request."""
    user: User
    session: SessionToken
    branch_id: int | None


def generate_token() -> str:
    return secrets.token_hex(32)  # 32 bytes = 64 hex characters


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(user_id: int) -> tuple[SessionToken, str]:
    """
    Issue a token for user_id.

    Returns (session_record, plaintext_token); only the hash is stored.
    """
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    if not user.is_active:
        raise ValidationError(f"User {user_id} is not active")

    plaintext_token = generate_token()
    now = utcnow()
    ttl = timedelta(hours=current_app.config.get("SESSION_TTL_HOURS", 24))

    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        expires_at=now + ttl,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def validate_session(token: str) -> SessionContext | None:
    """
    Return the SessionContext for a token, or None if it is unknown, expired,
    revoked, or belongs to an inactive user.
    """
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return None
    if session.expires_at <= utcnow():
        return None

    user = db.session.get(User, session.user_id)
    if not user or not user.is_active:
        return None

    return SessionContext(user=user, session=session, branch_id=user.branch_id)


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return False
    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()
    return True
