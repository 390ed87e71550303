# Overview: Pytest coverage for owner registration, login, token rotation and revocation.

"""
Auth Session Manager Tests

SECURITY TESTS:
1. Login failures are indistinguishable (unknown phone vs wrong password)
2. Refresh tokens rotate; a rotated token never works again
3. Logout revokes every outstanding session of the owner
4. verify_access_token never raises and rejects refresh tokens
"""

from datetime import timedelta

import jwt
import pytest

from credis.errors import AuthError, ConflictError, NotFoundError, ValidationError
from credis.models import AccessToken, RefreshToken
from credis.services import auth_service, token_service
from credis.time_utils import utcnow

from conftest import OWNER_PASSWORD


class TestRegister:
    def test_register_hashes_password(self, db_session, store_a):
        owner = auth_service.register(db_session, "Neema", "0733000001", "hunter22", store_id=store_a.id)
        assert owner.id is not None
        assert owner.password_hash != "hunter22"
        assert owner.password_hash.startswith("$2")
        assert auth_service.verify_password("hunter22", owner.password_hash)

    def test_register_without_store(self, db_session):
        owner = auth_service.register(db_session, "Neema", "0733000001", "hunter22")
        assert owner.store_id is None

    def test_duplicate_phone_conflicts(self, db_session, owner_a):
        with pytest.raises(ConflictError):
            auth_service.register(db_session, "Someone", owner_a.phone, "another-pass")

    def test_short_password(self, db_session):
        with pytest.raises(ValidationError):
            auth_service.register(db_session, "Neema", "0733000001", "12345")

    @pytest.mark.parametrize("name", ["", " ", "A", None])
    def test_bad_name(self, db_session, name):
        with pytest.raises(ValidationError):
            auth_service.register(db_session, name, "0733000001", "hunter22")

    def test_blank_phone(self, db_session):
        with pytest.raises(ValidationError):
            auth_service.register(db_session, "Neema", "   ", "hunter22")

    def test_unknown_store(self, db_session):
        with pytest.raises(NotFoundError):
            auth_service.register(db_session, "Neema", "0733000001", "hunter22", store_id=999)


class TestLogin:
    def test_login_issues_pair(self, db_session, owner_a):
        owner, pair = auth_service.login(db_session, owner_a.phone, OWNER_PASSWORD)

        assert owner.id == owner_a.id
        assert owner.last_login_at is not None
        assert pair.access_token and pair.refresh_token
        assert db_session.query(RefreshToken).filter_by(owner_id=owner.id).count() == 1
        assert db_session.query(AccessToken).filter_by(owner_id=owner.id).count() == 1

    def test_raw_tokens_never_stored(self, db_session, owner_a):
        _, pair = auth_service.login(db_session, owner_a.phone, OWNER_PASSWORD)
        refresh_row = db_session.query(RefreshToken).one()
        access_row = db_session.query(AccessToken).one()

        assert pair.refresh_token not in refresh_row.token_hash
        assert pair.access_token not in access_row.token_hash
        assert token_service.token_matches(pair.refresh_token, refresh_row.token_hash)
        assert token_service.token_matches(pair.access_token, access_row.token_hash)

    def test_wrong_password_matches_unknown_phone(self, db_session, owner_a):
        with pytest.raises(AuthError) as wrong_password:
            auth_service.login(db_session, owner_a.phone, "not-the-password")
        with pytest.raises(AuthError) as unknown_phone:
            auth_service.login(db_session, "0799999999", OWNER_PASSWORD)

        assert type(wrong_password.value) is type(unknown_phone.value)
        assert wrong_password.value.to_dict() == unknown_phone.value.to_dict()
        assert wrong_password.value.message == "Invalid credentials"

    def test_inactive_owner_rejected(self, db_session, owner_a):
        owner_a.is_active = False
        db_session.commit()
        with pytest.raises(AuthError, match="Invalid credentials"):
            auth_service.login(db_session, owner_a.phone, OWNER_PASSWORD)


class TestRefresh:
    def test_rotation(self, db_session, owner_a):
        _, first = auth_service.login(db_session, owner_a.phone, OWNER_PASSWORD)
        _, second = auth_service.refresh(db_session, first.refresh_token)

        assert second.refresh_token != first.refresh_token
        old_row = db_session.get(RefreshToken, first.refresh_record.id)
        assert old_row.is_revoked is True
        assert old_row.revoked_reason == "Rotated"

        with pytest.raises(AuthError):
            auth_service.refresh(db_session, first.refresh_token)

        # The new token still works after the failed reuse
        auth_service.refresh(db_session, second.refresh_token)

    def test_rotation_revokes_old_access_tokens(self, db_session, owner_a):
        _, first = auth_service.login(db_session, owner_a.phone, OWNER_PASSWORD)
        auth_service.refresh(db_session, first.refresh_token)

        assert auth_service.validate_access_session(db_session, first.access_token) is None

    def test_access_token_is_not_a_refresh_token(self, db_session, owner_a):
        _, pair = auth_service.login(db_session, owner_a.phone, OWNER_PASSWORD)
        with pytest.raises(AuthError):
            auth_service.refresh(db_session, pair.access_token)

    def test_garbage_refresh_token(self, db_session):
        with pytest.raises(AuthError):
            auth_service.refresh(db_session, "not-a-token")

    def test_refresh_for_deactivated_owner(self, db_session, owner_a):
        _, pair = auth_service.login(db_session, owner_a.phone, OWNER_PASSWORD)
        owner_a.is_active = False
        db_session.commit()
        with pytest.raises(AuthError):
            auth_service.refresh(db_session, pair.refresh_token)


class TestLogout:
    def test_logout_revokes_every_session(self, db_session, owner_a):
        _, one = auth_service.login(db_session, owner_a.phone, OWNER_PASSWORD)
        _, two = auth_service.login(db_session, owner_a.phone, OWNER_PASSWORD)

        assert auth_service.logout(db_session, owner_a.id) == 2

        for pair in (one, two):
            with pytest.raises(AuthError):
                auth_service.refresh(db_session, pair.refresh_token)
            assert auth_service.validate_access_session(db_session, pair.access_token) is None

    def test_revocation_is_permanent(self, db_session, owner_a):
        auth_service.login(db_session, owner_a.phone, OWNER_PASSWORD)
        auth_service.logout(db_session, owner_a.id)
        assert auth_service.logout(db_session, owner_a.id) == 0
        assert all(row.is_revoked for row in db_session.query(RefreshToken).all())


class TestVerifyAccessToken:
    def test_valid_token(self, db_session, owner_a):
        _, pair = auth_service.login(db_session, owner_a.phone, OWNER_PASSWORD)
        claims = auth_service.verify_access_token(pair.access_token)

        assert claims["sub"] == str(owner_a.id)
        assert claims["store_id"] == owner_a.store_id
        assert claims["type"] == "access"
        assert claims["sid"] == pair.refresh_record.id

    @pytest.mark.parametrize("raw", ["", "abc.def.ghi", "garbage", None])
    def test_garbage_returns_none(self, app, raw):
        assert auth_service.verify_access_token(raw) is None

    def test_refresh_token_rejected(self, db_session, owner_a):
        _, pair = auth_service.login(db_session, owner_a.phone, OWNER_PASSWORD)
        assert auth_service.verify_access_token(pair.refresh_token) is None

    def test_expired_token(self, app, owner_a):
        now = utcnow()
        raw = jwt.encode(
            {
                "sub": str(owner_a.id), "jti": "x", "type": "access",
                "iat": now - timedelta(hours=2), "exp": now - timedelta(hours=1),
            },
            app.config["JWT_ACCESS_SECRET"],
            algorithm="HS256",
        )
        assert auth_service.verify_access_token(raw) is None

    def test_wrong_signature(self, app, owner_a):
        raw = jwt.encode(
            {"sub": str(owner_a.id), "jti": "x", "type": "access", "exp": utcnow() + timedelta(hours=1)},
            "some-other-secret",
            algorithm="HS256",
        )
        assert auth_service.verify_access_token(raw) is None

    def test_stateful_check_accepts_live_session(self, db_session, owner_a):
        _, pair = auth_service.login(db_session, owner_a.phone, OWNER_PASSWORD)
        claims = auth_service.validate_access_session(db_session, pair.access_token)
        assert claims is not None and claims["jti"] == pair.access_record.jti


class TestTokenCleanup:
    def test_cleanup_removes_old_revoked_tokens(self, db_session, owner_a):
        auth_service.login(db_session, owner_a.phone, OWNER_PASSWORD)
        auth_service.logout(db_session, owner_a.id)

        row = db_session.query(RefreshToken).one()
        row.created_at = utcnow() - timedelta(days=60)
        db_session.commit()

        assert token_service.cleanup_expired_tokens(db_session, older_than_days=30) == 1
        assert db_session.query(RefreshToken).count() == 0
        assert db_session.query(AccessToken).count() == 0

    def test_cleanup_keeps_live_tokens(self, db_session, owner_a):
        auth_service.login(db_session, owner_a.phone, OWNER_PASSWORD)
        assert token_service.cleanup_expired_tokens(db_session, older_than_days=0) == 0
        assert db_session.query(RefreshToken).count() == 1
