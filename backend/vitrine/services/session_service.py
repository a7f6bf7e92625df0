# Overview: Service-layer operations for session tokens; issue, validate and revoke.

"""
Session Token Management with Tenant Context

Sessions capture owner_id at creation time; that context is immutable for
the session lifetime and is what every admin request is scoped by.

- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- 24-hour absolute timeout, 2-hour idle timeout
"""

import secrets
import hashlib
from dataclasses import dataclass
from datetime import timedelta
from ..extensions import db
from ..models import SessionToken, User, Tenant
from vitrine.time_utils import utcnow


SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)  # Maximum session length
SESSION_IDLE_TIMEOUT = timedelta(hours=2)        # Activity timeout


@dataclass
class SessionContext:
    """Identity plus tenant context for an authenticated request."""
    user: User
    session: SessionToken
    owner_id: int


def generate_token() -> str:
    return secrets.token_hex(32)  # 32 bytes = 64 hex characters


def hash_token(token: str) -> str:
    """
    SHA-256 rather than bcrypt: tokens are already high-entropy, unlike
    passwords.
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(user_id: int) -> tuple[SessionToken, str]:
    """
    Create new session token for user with tenant context.

    Returns (session_record, plaintext_token); the database only stores the
    hash.
    """
    user = db.session.get(User, user_id)
    if not user:
        raise ValueError("User not found")

    tenant = db.session.get(Tenant, user.owner_id)
    if not tenant or not tenant.is_active:
        raise ValueError("Tenant is not active")

    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user_id,
        owner_id=user.owner_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        is_revoked=False,
    )

    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def _revoke(session: SessionToken) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()


def validate_session(token: str) -> SessionContext | None:
    """
    Return the SessionContext for a live token, or None when the token is
    unknown, revoked, expired, idle too long, or its user/tenant has been
    deactivated. Idle and deactivated sessions are revoked on the spot.
    """
    now = utcnow()

    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return None

    if session.expires_at < now:
        return None

    if now - session.last_used_at > SESSION_IDLE_TIMEOUT:
        _revoke(session)
        return None

    user = session.user
    if not user or not user.is_active:
        _revoke(session)
        return None

    tenant = db.session.get(Tenant, session.owner_id)
    if not tenant or not tenant.is_active:
        _revoke(session)
        return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(user=user, session=session, owner_id=session.owner_id)


def revoke_session(token: str) -> bool:
    """Returns True if session was revoked, False if not found."""
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return False

    _revoke(session)
    return True
