# Overview: Service-layer operations for admin accounts; password hashing and credential checks.

"""
Authentication Service with Multi-Tenant Support

Authentication is an external concern for this application; this module is
the thin boundary that turns credentials into an attributable user with a
tenant context.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, upper, lower, digit and special character
- Username/email uniqueness is tenant-scoped
"""

import bcrypt
import re
from ..extensions import db
from ..models import User, Tenant
from vitrine.time_utils import utcnow


BCRYPT_ROUNDS = 12


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """Raises PasswordValidationError if requirements not met."""
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe check via bcrypt.checkpw. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    owner_id: int,
    username: str,
    email: str,
    password: str,
    name: str | None = None,
) -> User:
    """
    Create an admin user inside a tenant.

    Raises:
        ValueError: tenant missing/inactive or username/email taken in the tenant
        PasswordValidationError: weak password
    """
    tenant = db.session.get(Tenant, owner_id)
    if not tenant:
        raise ValueError("Tenant not found")
    if not tenant.is_active:
        raise ValueError("Tenant is not active")

    existing = db.session.query(User).filter(
        User.owner_id == owner_id,
        db.or_(User.username == username, User.email == email)
    ).first()

    if existing:
        raise ValueError("Username or email already exists in this tenant")

    user = User(
        owner_id=owner_id,
        username=username,
        email=email,
        name=name,
        password_hash=hash_password(password),
    )

    db.session.add(user)
    db.session.commit()
    return user


def authenticate(tenant_slug: str, username: str, password: str) -> User | None:
    """
    Authenticate by tenant slug + username (or email) + password.

    Returns the User and stamps last_login_at, or None for any failure.
    """
    tenant = db.session.query(Tenant).filter_by(slug=tenant_slug, is_active=True).first()
    if tenant is None:
        return None

    user = db.session.query(User).filter(
        User.owner_id == tenant.id,
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None
