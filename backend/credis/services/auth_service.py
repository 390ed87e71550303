# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Store-owner authentication and session lifecycle.

States per owner session:
    LoggedOut --login--> Active --refresh--> Active (old refresh token rotated)
    Active --logout | refresh revoked | access expired w/o refresh--> LoggedOut

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, 12 by default)
- Login failures are indistinguishable: unknown phone, wrong password and
  inactive account all raise the same AuthError, and unknown phones still
  pay for one bcrypt check
- Refresh tokens rotate on every use; reuse of a rotated token fails
- verify_access_token is stateless (signature + expiry) and never raises
"""

import bcrypt
from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ..errors import AuthError, ConflictError, NotFoundError, ValidationError
from ..models import StoreOwner, Store
from . import token_service
from .concurrency import run_with_retry
from .token_service import TokenPair
from credis.time_utils import utcnow


MIN_PASSWORD_LENGTH = 6
INVALID_CREDENTIALS = "Invalid credentials"
INVALID_REFRESH_TOKEN = "Invalid refresh token"

_dummy_hashes: dict[int, bytes] = {}


def validate_password_strength(password: str) -> None:
    """
    Validate password meets the minimum requirements.

    Raises ValidationError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    Returns True if password matches hash, False otherwise.

    WHY timing-safe: bcrypt.checkpw() prevents timing attacks automatically.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed stored hash
        return False


def _burn_password_check(password: str) -> None:
    """Spend the same bcrypt work as a real check when the phone is unknown."""
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    dummy = _dummy_hashes.get(rounds)
    if dummy is None:
        dummy = bcrypt.hashpw(b"credis-dummy-password", bcrypt.gensalt(rounds=rounds))
        _dummy_hashes[rounds] = dummy
    bcrypt.checkpw(password.encode('utf-8'), dummy)


def _normalize_phone(phone) -> str:
    if not isinstance(phone, str) or not phone.strip():
        raise ValidationError("phone is required")
    return phone.strip()


def register(session, name: str, phone: str, password: str, store_id: int | None = None) -> StoreOwner:
    """
    Create a store owner with a bcrypt-hashed password.

    Raises:
        ValidationError: blank name/phone or weak password
        NotFoundError: store_id given but no such store
        ConflictError: phone already registered
    """
    if not isinstance(name, str) or len(name.strip()) < 2:
        raise ValidationError("Name must be at least 2 characters")
    phone = _normalize_phone(phone)

    if store_id is not None and session.get(Store, store_id) is None:
        raise NotFoundError("Store not found")

    existing = session.execute(
        select(StoreOwner.id).where(StoreOwner.phone == phone)
    ).first()
    if existing:
        raise ConflictError("Phone number already registered")

    owner = StoreOwner(
        name=name.strip(),
        phone=phone,
        password_hash=hash_password(password),
        store_id=store_id,
        is_active=True,
    )
    session.add(owner)
    try:
        session.commit()
    except IntegrityError:
        # Lost a race with a concurrent registration of the same phone
        session.rollback()
        raise ConflictError("Phone number already registered")

    current_app.logger.info("Registered store owner id=%s", owner.id)
    return owner


def authenticate(session, phone: str, password: str) -> StoreOwner:
    """
    Check phone + password. Returns the owner or raises a generic AuthError.

    WHY generic: callers must not learn which half of the credentials was wrong.
    """
    if not isinstance(phone, str) or not isinstance(password, str):
        raise AuthError(INVALID_CREDENTIALS)

    owner = session.execute(
        select(StoreOwner).where(StoreOwner.phone == phone.strip())
    ).scalar_one_or_none()

    if owner is None:
        _burn_password_check(password)
        raise AuthError(INVALID_CREDENTIALS)

    password_ok = verify_password(password, owner.password_hash)
    if not password_ok or not owner.is_active:
        raise AuthError(INVALID_CREDENTIALS)

    return owner


def login(session, phone: str, password: str) -> tuple[StoreOwner, TokenPair]:
    """
    Authenticate and open a new session.

    Creates one RefreshToken and one AccessToken row (hashed), updates
    last_login_at and returns the raw tokens. Raw values are never persisted.
    """
    owner = authenticate(session, phone, password)

    owner.last_login_at = utcnow()
    pair = token_service.issue_token_pair(session, owner)
    session.commit()

    current_app.logger.info("Store owner id=%s logged in", owner.id)
    return owner, pair


def refresh(session, raw_refresh_token: str) -> tuple[StoreOwner, TokenPair]:
    """
    Rotate a refresh token: revoke it and issue a fresh refresh + access pair.

    The revoke is a compare-and-swap on the token row, so of several
    concurrent calls with the same token at most one succeeds; the others
    raise AuthError.
    """
    claims = token_service.decode_refresh_token(raw_refresh_token)
    if claims is None:
        raise AuthError(INVALID_REFRESH_TOKEN)

    try:
        owner_id = int(claims["sub"])
    except (TypeError, ValueError):
        raise AuthError(INVALID_REFRESH_TOKEN)

    def _op():
        current = token_service.find_active_refresh_token(session, owner_id, raw_refresh_token)
        if current is None:
            current_app.logger.warning("Rejected refresh for owner id=%s: token not active", owner_id)
            raise AuthError(INVALID_REFRESH_TOKEN)

        owner = session.get(StoreOwner, owner_id)
        if owner is None or not owner.is_active:
            session.rollback()
            raise AuthError(INVALID_REFRESH_TOKEN)

        if not token_service.revoke_refresh_token(session, current.id, reason="Rotated"):
            session.rollback()
            current_app.logger.warning("Refresh token id=%s was already rotated", current.id)
            raise AuthError(INVALID_REFRESH_TOKEN)

        pair = token_service.issue_token_pair(session, owner)
        session.commit()
        return owner, pair

    return run_with_retry(session, _op)


def logout(session, owner_id: int) -> int:
    """
    Revoke all outstanding sessions of an owner ("log out everywhere").

    Returns count of refresh tokens revoked.
    """
    count = token_service.revoke_all_for_owner(session, owner_id, reason="Logout")
    session.commit()
    current_app.logger.info("Store owner id=%s logged out (%d sessions revoked)", owner_id, count)
    return count


def verify_access_token(raw_token: str) -> dict | None:
    """
    Decode and verify an access token without touching storage.

    Returns the claims, or None on any failure (bad signature, expired,
    wrong token type, malformed input). Never raises.
    """
    try:
        return token_service.decode_access_token(raw_token)
    except Exception:
        current_app.logger.exception("Unexpected error verifying access token")
        return None


def validate_access_session(session, raw_token: str) -> dict | None:
    """
    Stateful variant of verify_access_token: also requires the access token
    row and its refresh token to be unrevoked and unexpired.
    """
    claims = verify_access_token(raw_token)
    if claims is None:
        return None
    if not token_service.is_access_record_live(session, claims, raw_token):
        return None
    return claims


def get_profile(session, owner_id: int) -> StoreOwner:
    owner = session.get(StoreOwner, owner_id)
    if owner is None:
        raise NotFoundError("Store owner not found")
    return owner
