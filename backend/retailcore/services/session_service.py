# Overview: Service-layer operations for bearer sessions; token minting, validation and revocation.

"""
Session Token Management with Tenant Binding

Sessions capture tenant_id at creation time. That value becomes the tenant
context of every request authenticated with the token, so a request can
never choose its own tenant.

Two subject types share one table:
- "user":     shop staff (admin, pos_cashier, accountant)
- "customer": mobile ordering customer

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- Absolute timeout from SESSION_TTL_HOURS
- Revocable; sessions of deactivated users or tenants are revoked on use

Issuance (login, OTP, passwords) lives outside this service; create_session
is called by whatever authenticated the subject, or by the dev CLI.
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app
from sqlalchemy import select

from ..extensions import db
from ..id_utils import generate_id
from ..models import Customer, SessionToken, Tenant, User
from ..time_utils import to_naive_utc, utcnow

SUBJECT_USER = "user"
SUBJECT_CUSTOMER = "customer"


@dataclass
class SessionContext:
    """
    Session context returned by validate_session.

    Exactly one of user / customer is set, matching subject_type.
    """
    session: SessionToken
    tenant_id: str
    subject_type: str
    user: User | None = None
    customer: Customer | None = None


def generate_token() -> str:
    """64-character hex token (32 bytes of entropy). Sent to the client, never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _session_ttl() -> timedelta:
    return timedelta(hours=current_app.config.get("SESSION_TTL_HOURS", 24 * 30))


def create_session(
    tenant_id: str,
    *,
    user_id: str | None = None,
    customer_id: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Create a session for one staff user or one customer of tenant_id.

    Returns (session_record, plaintext_token).
    Raises ValueError if the subject does not belong to an active tenant.
    """
    if (user_id is None) == (customer_id is None):
        raise ValueError("Exactly one of user_id or customer_id is required")

    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None or not tenant.is_active:
        raise ValueError("Tenant is not active")

    if user_id is not None:
        subject = db.session.get(User, user_id)
        if subject is None or subject.tenant_id != tenant_id:
            raise ValueError("User not found")
        if not subject.is_active:
            raise ValueError("User is not active")
        subject_type = SUBJECT_USER
    else:
        subject = db.session.get(Customer, customer_id)
        if subject is None or subject.tenant_id != tenant_id:
            raise ValueError("Customer not found")
        subject_type = SUBJECT_CUSTOMER

    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        id=generate_id("sess"),
        tenant_id=tenant_id,
        subject_type=subject_type,
        user_id=user_id,
        customer_id=customer_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + _session_ttl(),
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
    Return the SessionContext for token, or None.

    None when the token is unknown, expired or revoked, or when its tenant or
    staff user has been deactivated (the session is revoked in that case).
    Blocked customers still validate; the request layer refuses them.
    """
    now = utcnow()

    session = db.session.execute(
        select(SessionToken).where(
            SessionToken.token_hash == hash_token(token),
            SessionToken.is_revoked.is_(False),
        )
    ).scalar_one_or_none()

    if session is None:
        return None

    if to_naive_utc(session.expires_at) < now:
        return None

    tenant = session.tenant
    if tenant is None or not tenant.is_active:
        _revoke(session)
        return None

    if session.subject_type == SUBJECT_USER:
        user = session.user
        if user is None or not user.is_active or user.tenant_id != session.tenant_id:
            _revoke(session)
            return None
        context = SessionContext(session=session, tenant_id=session.tenant_id,
                                 subject_type=SUBJECT_USER, user=user)
    else:
        customer = session.customer
        if customer is None or customer.tenant_id != session.tenant_id:
            _revoke(session)
            return None
        context = SessionContext(session=session, tenant_id=session.tenant_id,
                                 subject_type=SUBJECT_CUSTOMER, customer=customer)

    session.last_used_at = now
    db.session.commit()
    return context


def revoke_session(token: str) -> bool:
    """Revoke by plaintext token. Returns False when no live session matched."""
    session = db.session.execute(
        select(SessionToken).where(
            SessionToken.token_hash == hash_token(token),
            SessionToken.is_revoked.is_(False),
        )
    ).scalar_one_or_none()
    if session is None:
        return False
    _revoke(session)
    return True
