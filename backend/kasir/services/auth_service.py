# Overview: Operator accounts; bcrypt password hashing and user CRUD.

"""
Authentication Service

Every sale and stock movement is attributed to an operator, so accounts
are soft-deleted rather than removed.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 6 characters
- Session tokens managed separately (see session_service.py)
"""

from __future__ import annotations

import bcrypt
from flask import current_app, has_app_context
from sqlalchemy import or_

from ..extensions import db
from ..models import User
from ..validation import ValidationError, ConflictError, NotFoundError, USER_ROLES
from kasir.time_utils import utcnow
from .pagination import paginate

MIN_PASSWORD_LENGTH = 6
DEFAULT_BCRYPT_ROUNDS = 12
USER_MUTABLE_FIELDS = {"username", "display_name", "role", "address", "phone", "status"}


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")


def hash_password(password: str) -> str:
    """Hash password using bcrypt (cost factor from BCRYPT_LOG_ROUNDS, default 12)."""
    validate_password_strength(password)
    rounds = DEFAULT_BCRYPT_ROUNDS
    if has_app_context():
        rounds = current_app.config.get("BCRYPT_LOG_ROUNDS", DEFAULT_BCRYPT_ROUNDS)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in the database
        return False


def _ensure_username_free(username: str, exclude_id: int | None = None) -> None:
    q = User.live().filter(User.username == username)
    if exclude_id is not None:
        q = q.filter(User.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("Username already exists")


def authenticate(username: str, password: str) -> User | None:
    """
    Returns the user on success, None on bad credentials or an inactive
    account. Records last_login_at.
    """
    user = User.live().filter(User.username == username).first()
    if user is None or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def list_users(*, search: str | None = None, page: int | None = None, per_page: int | None = None) -> dict:
    q = User.live()
    if search and search.strip():
        term = f"%{search.strip()}%"
        q = q.filter(or_(User.username.ilike(term), User.display_name.ilike(term)))
    q = q.order_by(User.display_name.asc(), User.id.asc())
    return paginate(q, page, per_page)


def get_user(user_id: int) -> User:
    user = User.live().filter(User.id == user_id).first()
    if user is None:
        raise NotFoundError("User not found")
    return user


def create_user(*, patch: dict, password: str) -> User:
    """
    Create an operator. `patch` is a validated dict of USER_MUTABLE_FIELDS.

    Raises:
        ConflictError: username taken by a live account
        PasswordValidationError: password too short
    """
    _ensure_username_free(patch["username"])
    role = patch.get("role") or "PETUGAS"
    if role not in USER_ROLES:
        raise ValidationError("Invalid role value")

    user = User(password_hash=hash_password(password))
    for k, v in patch.items():
        if k in USER_MUTABLE_FIELDS:
            setattr(user, k, v)
    user.role = role

    db.session.add(user)
    db.session.commit()
    return user


def update_user(user_id: int, *, patch: dict, password: str | None = None) -> User:
    """Update an operator; the password is replaced only when a new one is given."""
    user = get_user(user_id)

    if "username" in patch and patch["username"] != user.username:
        _ensure_username_free(patch["username"], exclude_id=user.id)

    for k, v in patch.items():
        if k in USER_MUTABLE_FIELDS:
            setattr(user, k, v)

    if password:
        user.password_hash = hash_password(password)

    db.session.commit()
    return user


def delete_user(user_id: int, *, actor_user_id: int | None = None) -> User:
    user = get_user(user_id)
    if actor_user_id is not None and user.id == actor_user_id:
        raise ConflictError("You cannot delete your own account")
    user.soft_delete()
    db.session.commit()
    return user
