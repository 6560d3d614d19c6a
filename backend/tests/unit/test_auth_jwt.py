"""Unit tests for bearer tokens and role checks."""

from types import SimpleNamespace
from uuid import uuid4

import jwt as pyjwt
import pytest

from linkup.auth import jwt as auth_jwt
from linkup.auth.jwt import create_access_token, decode_token
from linkup.auth.roles import UserRole, has_permission


class TestTokens:
    """Test token creation and validation"""

    def test_round_trip(self):
        user_id = uuid4()
        token = create_access_token(user_id, "ADMIN")

        claims = decode_token(token)

        assert claims["sub"] == str(user_id)
        assert claims["role"] == "ADMIN"
        assert claims["exp"] > claims["iat"]

    def test_expired_token(self):
        token = create_access_token(uuid4(), "MEMBER", expires_minutes=-1)

        with pytest.raises(pyjwt.ExpiredSignatureError):
            decode_token(token)

    def test_tampered_token(self):
        token = create_access_token(uuid4(), "MEMBER")
        forged = pyjwt.encode({"sub": str(uuid4()), "role": "ADMIN"}, "other-secret", algorithm="HS256")

        assert decode_token(token)["role"] == "MEMBER"
        with pytest.raises(pyjwt.InvalidTokenError):
            decode_token(forged)

    def test_missing_secret(self, monkeypatch):
        settings = SimpleNamespace(JWT_SECRET=None, JWT_ALGORITHM="HS256", JWT_EXPIRY_MINUTES=60)
        monkeypatch.setattr(auth_jwt, "get_settings", lambda: settings)

        with pytest.raises(ValueError):
            create_access_token(uuid4(), "MEMBER")


class TestRoles:
    """Test role hierarchy"""

    def test_admin_has_member_rights(self):
        assert has_permission(UserRole.ADMIN, UserRole.MEMBER)
        assert has_permission(UserRole.ADMIN, UserRole.ADMIN)

    def test_member_lacks_admin_rights(self):
        assert has_permission(UserRole.MEMBER, UserRole.MEMBER)
        assert not has_permission(UserRole.MEMBER, UserRole.ADMIN)
