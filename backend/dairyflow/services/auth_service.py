# Overview: Service-layer operations for auth; password hashing, user creation and credential checks.

"""
Authentication Service

WHY: Every stock, order and invoice write is attributed to a user id, and the
user's role is what permissions.py checks. Uses bcrypt for password hashing.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, at least one letter and one digit
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import ValidationError
from ..models import User
from ..models.auth import USER_ROLES
from ..validation import clean_text, require_choice
from dairyflow.time_utils import utcnow

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Za-z]", password):
        raise PasswordValidationError("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    The bcrypt rounds can be lowered through BCRYPT_ROUNDS (tests use 4).
    """
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() compares in constant time.
    """
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database
        return False


def create_user(name: str, email: str, password: str, role: str) -> User:
    """
    Create new user with bcrypt password hashing.

    Raises ValidationError on bad input or duplicate email,
    PasswordValidationError on weak passwords.
    """
    name = clean_text(name, "name", 255)
    email = (clean_text(email, "email", 255) or "").lower()
    if not name:
        raise ValidationError("name is required", details={"field": "name"})
    if not EMAIL_RE.match(email):
        raise ValidationError("email is invalid", details={"field": "email"})
    require_choice(role, "role", USER_ROLES)

    if db.session.query(User.id).filter(func.lower(User.email) == email).first():
        raise ValidationError("email already exists", details={"field": "email"})

    user = User(
        name=name,
        email=email,
        password_hash=hash_password(password),
        role=role,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(email: str, password: str) -> User | None:
    """
    Check credentials. Returns the User, or None for any failure.

    Updates last_login_at on success.
    """
    if not isinstance(email, str) or not isinstance(password, str) or not email or not password:
        return None

    user = db.session.query(User).filter(
        func.lower(User.email) == email.strip().lower(),
        User.is_active.is_(True),
    ).first()
    if user is None or not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
