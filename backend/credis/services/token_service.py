# Overview: Service-layer operations for tokens; issues, hashes, verifies and revokes.

"""
Token Store

WHY: Sessions are a pair of signed tokens. The access token is checked
statelessly on every request; the refresh token is the revocable credential
that mints new access tokens.

SECURITY FEATURES:
- Both tokens are HS256 JWTs (PyJWT) with a random jti, signed with
  separate secrets
- Only salted SHA-256 digests are persisted ("<salt>$<hexdigest>"), never
  the raw token. Because of the salt the digest cannot be looked up, so
  verification scans the owner's live rows and compares each digest in
  constant time (hmac.compare_digest)
- Revocation is a conditional UPDATE (is_revoked false -> true). The
  caller learns whether it won, which makes rotation exclusive
- Raw tokens are returned to the caller once and never logged
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import uuid
from dataclasses import dataclass
from datetime import timedelta

import jwt
from flask import current_app
from sqlalchemy import select, update

from ..models import AccessToken, RefreshToken, StoreOwner
from credis.time_utils import to_utc_z, utcnow


ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
SALT_BYTES = 16


@dataclass
class TokenPair:
    """Raw tokens handed to the client exactly once, plus their rows."""
    access_token: str
    refresh_token: str
    access_record: AccessToken
    refresh_record: RefreshToken

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": "Bearer",
            "access_expires_at": to_utc_z(self.access_record.expires_at),
            "refresh_expires_at": to_utc_z(self.refresh_record.expires_at),
        }


def hash_token(token: str, salt: str | None = None) -> str:
    """
    Hash token for database storage using salted SHA-256.

    WHY SHA-256 not bcrypt: Tokens are already high-entropy (unlike passwords),
    and bcrypt silently truncates input at 72 bytes, which is shorter than a JWT.
    """
    if salt is None:
        salt = secrets.token_hex(SALT_BYTES)
    digest = hashlib.sha256(f"{salt}{token}".encode("utf-8")).hexdigest()
    return f"{salt}${digest}"


def token_matches(token: str, stored_hash: str) -> bool:
    """Constant-time comparison of a raw token against a stored salted hash."""
    salt, sep, _ = stored_hash.partition("$")
    if not sep:
        return False
    return hmac.compare_digest(hash_token(token, salt), stored_hash)


def _access_ttl() -> timedelta:
    return timedelta(minutes=current_app.config["ACCESS_TOKEN_TTL_MINUTES"])


def _refresh_ttl() -> timedelta:
    return timedelta(days=current_app.config["REFRESH_TOKEN_TTL_DAYS"])


def _encode(claims: dict, secret_key: str) -> str:
    return jwt.encode(claims, secret_key, algorithm=current_app.config["JWT_ALGORITHM"])


def generate_access_token(owner: StoreOwner, refresh_token_id: int, jti: str, now, expires_at) -> str:
    claims = {
        "sub": str(owner.id),
        "store_id": owner.store_id,
        "phone": owner.phone,
        "name": owner.name,
        "sid": refresh_token_id,
        "jti": jti,
        "type": ACCESS_TOKEN_TYPE,
        "iat": now,
        "exp": expires_at,
    }
    return _encode(claims, current_app.config["JWT_ACCESS_SECRET"])


def generate_refresh_token(owner: StoreOwner, jti: str, now, expires_at) -> str:
    claims = {
        "sub": str(owner.id),
        "jti": jti,
        "type": REFRESH_TOKEN_TYPE,
        "iat": now,
        "exp": expires_at,
    }
    return _encode(claims, current_app.config["JWT_REFRESH_SECRET"])


def _decode(token: str, secret_key: str, expected_type: str) -> dict | None:
    try:
        claims = jwt.decode(
            token,
            secret_key,
            algorithms=[current_app.config["JWT_ALGORITHM"]],
            options={"require": ["exp", "sub", "jti", "type"]},
        )
    except jwt.PyJWTError:
        return None
    if claims.get("type") != expected_type:
        return None
    return claims


def decode_access_token(token: str) -> dict | None:
    """Signature + expiry + type check. Never raises."""
    if not token:
        return None
    return _decode(token, current_app.config["JWT_ACCESS_SECRET"], ACCESS_TOKEN_TYPE)


def decode_refresh_token(token: str) -> dict | None:
    """Signature + expiry + type check. Never raises."""
    if not token:
        return None
    return _decode(token, current_app.config["JWT_REFRESH_SECRET"], REFRESH_TOKEN_TYPE)


def issue_access_token(session, owner: StoreOwner, refresh_record: RefreshToken) -> tuple[AccessToken, str]:
    """Create an access token linked to ``refresh_record``. Does not commit."""
    now = utcnow()
    expires_at = now + _access_ttl()
    # Access tokens never outlive the session that minted them
    if expires_at > refresh_record.expires_at:
        expires_at = refresh_record.expires_at

    jti = uuid.uuid4().hex
    raw = generate_access_token(owner, refresh_record.id, jti, now, expires_at)

    record = AccessToken(
        owner_id=owner.id,
        refresh_token_id=refresh_record.id,
        jti=jti,
        token_hash=hash_token(raw),
        created_at=now,
        expires_at=expires_at,
        is_revoked=False,
    )
    session.add(record)
    session.flush()
    return record, raw


def issue_token_pair(session, owner: StoreOwner) -> TokenPair:
    """
    Create one refresh row and one access row for ``owner``.

    Returns the raw tokens. The caller commits.
    """
    now = utcnow()
    expires_at = now + _refresh_ttl()
    raw_refresh = generate_refresh_token(owner, uuid.uuid4().hex, now, expires_at)

    refresh_record = RefreshToken(
        owner_id=owner.id,
        token_hash=hash_token(raw_refresh),
        created_at=now,
        expires_at=expires_at,
        is_revoked=False,
    )
    session.add(refresh_record)
    session.flush()  # assigns refresh_record.id for the access token's sid claim

    access_record, raw_access = issue_access_token(session, owner, refresh_record)
    return TokenPair(
        access_token=raw_access,
        refresh_token=raw_refresh,
        access_record=access_record,
        refresh_record=refresh_record,
    )


def find_active_refresh_token(session, owner_id: int, raw_token: str) -> RefreshToken | None:
    """
    Find the owner's unrevoked, unexpired refresh row matching ``raw_token``.

    The candidate set is bounded by owner and liveness in SQL first; every
    candidate is then compared (no early exit on the digest itself) so
    timing does not depend on which row matches.
    """
    candidates = session.execute(
        select(RefreshToken).where(
            RefreshToken.owner_id == owner_id,
            RefreshToken.is_revoked.is_(False),
            RefreshToken.expires_at > utcnow(),
        )
    ).scalars().all()

    found = None
    for candidate in candidates:
        if token_matches(raw_token, candidate.token_hash) and found is None:
            found = candidate
    return found


def revoke_refresh_token(session, token_id: int, reason: str = "Rotated") -> bool:
    """
    Conditionally revoke one refresh token and its access tokens.

    Returns True only for the caller that flipped the flag. Two concurrent
    rotations of the same token cannot both see True. Does not commit.
    """
    now = utcnow()
    result = session.execute(
        update(RefreshToken)
        .where(RefreshToken.id == token_id, RefreshToken.is_revoked.is_(False))
        .values(is_revoked=True, revoked_at=now, revoked_reason=reason)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False

    session.execute(
        update(AccessToken)
        .where(AccessToken.refresh_token_id == token_id, AccessToken.is_revoked.is_(False))
        .values(is_revoked=True, revoked_at=now)
        .execution_options(synchronize_session=False)
    )
    return True


def revoke_all_for_owner(session, owner_id: int, reason: str = "Logout") -> int:
    """
    Revoke every outstanding refresh token (and access token) of an owner.

    Returns count of refresh tokens revoked. Does not commit.
    """
    now = utcnow()
    result = session.execute(
        update(RefreshToken)
        .where(RefreshToken.owner_id == owner_id, RefreshToken.is_revoked.is_(False))
        .values(is_revoked=True, revoked_at=now, revoked_reason=reason)
        .execution_options(synchronize_session=False)
    )
    session.execute(
        update(AccessToken)
        .where(AccessToken.owner_id == owner_id, AccessToken.is_revoked.is_(False))
        .values(is_revoked=True, revoked_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def is_access_record_live(session, claims: dict, raw_token: str) -> bool:
    """
    Stateful check: the access row and its parent refresh row are both
    unexpired and unrevoked, and the stored digest matches.
    """
    now = utcnow()
    record = session.execute(
        select(AccessToken).where(AccessToken.jti == claims.get("jti"))
    ).scalar_one_or_none()
    if record is None or record.is_revoked or record.expires_at <= now:
        return False
    if not token_matches(raw_token, record.token_hash):
        return False
    parent = session.get(RefreshToken, record.refresh_token_id)
    if parent is None or parent.is_revoked or parent.expires_at <= now:
        return False
    return True


def cleanup_expired_tokens(session, older_than_days: int = 30) -> int:
    """
    Delete expired or revoked tokens created more than ``older_than_days`` ago.

    Returns count of refresh tokens deleted.

    WHY: Database cleanup. Token rows accumulate with every login and refresh.
    """
    cutoff = utcnow() - timedelta(days=older_than_days)
    now = utcnow()

    stale_ids = select(RefreshToken.id).where(
        RefreshToken.created_at < cutoff,
        (RefreshToken.expires_at < now) | (RefreshToken.is_revoked.is_(True)),
    )
    session.query(AccessToken).filter(
        AccessToken.refresh_token_id.in_(stale_ids)
    ).delete(synchronize_session=False)
    deleted = session.query(RefreshToken).filter(
        RefreshToken.id.in_(stale_ids)
    ).delete(synchronize_session=False)

    session.commit()
    return deleted
