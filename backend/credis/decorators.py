# Overview: Request authentication decorators and tenant scoping for API routes.

from functools import wraps
from flask import current_app, g, jsonify, request

from .errors import AuthError, NotFoundError, ValidationError
from .extensions import db
from .services import auth_service


ACCESS_TOKEN_COOKIE = "accessToken"


def _unauthorized(message: str):
    return jsonify({"error": AuthError(message).to_dict()}), 401


def extract_access_token() -> str | None:
    """Bearer header first, then the accessToken cookie."""
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1].strip() or None
    return request.cookies.get(ACCESS_TOKEN_COOKIE) or None


def require_auth(f):
    """
    Require a valid access token and establish tenant context.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.current_owner_id: The authenticated StoreOwner id
    - g.store_id: The owner's store id at token issue time (may be None)
    - g.token_claims: The decoded access token claims

    SECURITY: Returns 401 if:
    - No Authorization header or accessToken cookie
    - Invalid, expired or non-access token
    - AUTH_CHECK_REVOCATION is on and the session was revoked
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = extract_access_token()
        if not token:
            return _unauthorized("Authentication required")

        if current_app.config.get("AUTH_CHECK_REVOCATION"):
            claims = auth_service.validate_access_session(db.session, token)
        else:
            claims = auth_service.verify_access_token(token)

        if not claims:
            return _unauthorized("Invalid or expired token")

        try:
            g.current_owner_id = int(claims["sub"])
        except (KeyError, TypeError, ValueError):
            return _unauthorized("Invalid or expired token")
        g.store_id = claims.get("store_id")
        g.token_claims = claims

        return f(*args, **kwargs)

    return decorated_function


def current_store_id() -> int:
    """
    Store of the authenticated owner, read from the database so an owner
    who created a store after logging in is scoped to it immediately.
    """
    store_id = g.get("store_id")
    if store_id is None:
        owner = auth_service.get_profile(db.session, g.current_owner_id)
        store_id = owner.store_id
        g.store_id = store_id
    if store_id is None:
        raise ValidationError("Store owner is not assigned to a store")
    return store_id


def ensure_store_access(store_id: int) -> int:
    """
    MULTI-TENANT: other stores' resources are reported as missing, never
    as forbidden, so ids cannot be probed across tenants.
    """
    if current_store_id() != store_id:
        raise NotFoundError("Store not found")
    return store_id
