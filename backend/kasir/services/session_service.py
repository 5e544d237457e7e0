# Overview: Bearer session tokens; issue, validate and revoke.

"""
Session Token Management Service

- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- Absolute timeout from SESSION_HOURS
- Revocable on logout
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import timedelta

from flask import current_app, has_app_context

from ..extensions import db
from ..models import SessionToken, User
from kasir.time_utils import utcnow

DEFAULT_SESSION_HOURS = 24


def generate_token() -> str:
    """64-character hex string; the plaintext is only ever sent to the client."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def _session_lifetime() -> timedelta:
    hours = DEFAULT_SESSION_HOURS
    if has_app_context():
        hours = current_app.config.get("SESSION_HOURS", DEFAULT_SESSION_HOURS)
    return timedelta(hours=hours)


def create_session(user_id: int) -> tuple[SessionToken, str]:
    """
    Returns (session_record, plaintext_token).
    """
    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        expires_at=now + _session_lifetime(),
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def validate_session(token: str) -> User | None:
    """
    Returns the session's user, or None when the token is unknown, expired,
    revoked, or its user is no longer active.
    """
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()

    if session is None:
        return None
    if session.expires_at < utcnow():
        return None

    user = session.user
    if user is None or not user.is_active:
        return None
    return user


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if session is None or session.is_revoked:
        return False

    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()
    return True
