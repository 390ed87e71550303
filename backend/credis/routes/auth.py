# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Store-owner authentication API routes

SECURITY FEATURES:
- Password strength validation on registration
- Generic "Invalid credentials" on every login failure
- Refresh tokens rotate on every use
- Tokens are returned in the body and mirrored into HttpOnly cookies
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import ACCESS_TOKEN_COOKIE, extract_access_token, require_auth
from ..errors import AuthError, ValidationError
from ..extensions import db
from ..services import auth_service
from ..validation import require_json_object


REFRESH_TOKEN_COOKIE = "refreshToken"

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _session_response(owner, pair, status: int = 200):
    response = jsonify({
        "owner": owner.to_dict(),
        **pair.to_dict(),
    })
    secure = not current_app.config.get("TESTING", False) and not current_app.debug
    response.set_cookie(
        ACCESS_TOKEN_COOKIE, pair.access_token,
        max_age=current_app.config["ACCESS_TOKEN_TTL_MINUTES"] * 60,
        httponly=True, secure=secure, samesite="Lax",
    )
    response.set_cookie(
        REFRESH_TOKEN_COOKIE, pair.refresh_token,
        max_age=current_app.config["REFRESH_TOKEN_TTL_DAYS"] * 24 * 3600,
        httponly=True, secure=secure, samesite="Lax", path="/api/auth",
    )
    return response, status


@auth_bp.post("/register")
def register_route():
    """
    Create a store owner. Returns the owner without tokens; log in next.

    MULTI-TENANT: the new owner has no store. Any store_id in the body is
    ignored; a store is attached only through POST /api/stores.
    """
    data = require_json_object(request.get_json(silent=True))
    owner = auth_service.register(
        db.session,
        name=data.get("name"),
        phone=data.get("phone"),
        password=data.get("password"),
    )
    return jsonify({"owner": owner.to_dict()}), 201


@auth_bp.post("/login")
def login_route():
    """
    Authenticate by phone + password and open a session.

    SECURITY: unknown phone, wrong password and inactive account share one
    response so the endpoint cannot be used to enumerate accounts.
    """
    data = require_json_object(request.get_json(silent=True))
    phone = data.get("phone")
    password = data.get("password")
    if not phone or not password:
        raise ValidationError("phone and password required")

    owner, pair = auth_service.login(db.session, phone, password)
    return _session_response(owner, pair)


@auth_bp.post("/refresh")
def refresh_route():
    data = require_json_object(request.get_json(silent=True))
    raw = data.get("refresh_token") or request.cookies.get(REFRESH_TOKEN_COOKIE)
    if not raw:
        raise AuthError("Refresh token required")

    owner, pair = auth_service.refresh(db.session, raw)
    return _session_response(owner, pair)


@auth_bp.post("/logout")
@require_auth
def logout_route():
    revoked = auth_service.logout(db.session, g.current_owner_id)
    response = jsonify({"message": "Logged out", "sessions_revoked": revoked})
    response.delete_cookie(ACCESS_TOKEN_COOKIE)
    response.delete_cookie(REFRESH_TOKEN_COOKIE, path="/api/auth")
    return response, 200


@auth_bp.post("/validate")
def validate_route():
    """
    Stateful session check: signature, expiry, and that neither the access
    token nor its refresh token has been revoked.
    """
    token = extract_access_token()
    if not token:
        data = require_json_object(request.get_json(silent=True))
        token = data.get("access_token")
    claims = auth_service.validate_access_session(db.session, token) if token else None
    if not claims:
        raise AuthError("Invalid or expired token")
    return jsonify({"valid": True, "owner_id": int(claims["sub"]), "store_id": claims.get("store_id")}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    owner = auth_service.get_profile(db.session, g.current_owner_id)
    return jsonify({"owner": owner.to_dict()}), 200
