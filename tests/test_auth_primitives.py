"""Tests for password hashing, access tokens and user-agent parsing."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from mindcase.auth.devices import parse_user_agent
from mindcase.auth.jwt import create_access_token, verify_access_token
from mindcase.auth.password import (
    PasswordStrengthError,
    check_needs_rehash,
    hash_password,
    validate_password_strength,
    verify_password,
)
from mindcase.config import get_settings


class TestPasswordHashing:
    def test_hash_and_verify(self):
        hashed = hash_password("elementary-my-dear")
        assert verify_password("elementary-my-dear", hashed) is True

    def test_wrong_password_rejected(self):
        hashed = hash_password("elementary-my-dear")
        assert verify_password("moriarty-was-here", hashed) is False

    def test_malformed_hash_rejected(self):
        assert verify_password("anything", "not-an-argon2-hash") is False

    def test_hash_is_argon2id(self):
        assert hash_password("elementary-my-dear").startswith("$argon2id$")

    def test_check_needs_rehash(self):
        assert check_needs_rehash(hash_password("elementary-my-dear")) is False


class TestPasswordStrength:
    def test_valid_password(self):
        validate_password_strength("eight888")  # Should not raise

    def test_empty_password_rejected(self):
        with pytest.raises(PasswordStrengthError):
            validate_password_strength("")

    def test_whitespace_only_rejected(self):
        with pytest.raises(PasswordStrengthError):
            validate_password_strength("          ")

    def test_short_password_rejected(self):
        with pytest.raises(PasswordStrengthError, match="at least 8"):
            validate_password_strength("short")

    def test_too_long_password_rejected(self):
        with pytest.raises(PasswordStrengthError, match="exceed 128"):
            validate_password_strength("a" * 129)


class TestAccessToken:
    def test_create_and_verify(self):
        token = create_access_token(7, "USER", is_guest=False, email="a@b.co", name="Ada")
        payload = verify_access_token(token)
        assert payload["uid"] == 7
        assert payload["sub"] == "7"
        assert payload["role"] == "USER"
        assert payload["is_guest"] is False
        assert payload["email"] == "a@b.co"
        assert payload["type"] == "access"

    def test_lifetime_is_short(self):
        payload = verify_access_token(create_access_token(1, "GUEST", is_guest=True))
        assert payload["exp"] - payload["iat"] == 15 * 60

    def test_expired_token_rejected(self):
        settings = get_settings()
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        token = jwt.encode(
            {"uid": 1, "iat": past, "exp": past + timedelta(minutes=15), "iss": settings.jwt_issuer, "type": "access"},
            settings.require_jwt_secret(),
            algorithm="HS256",
        )
        with pytest.raises(jwt.InvalidTokenError, match="expired"):
            verify_access_token(token)

    def test_wrong_type_rejected(self):
        settings = get_settings()
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"uid": 1, "iat": now, "exp": now + timedelta(minutes=5), "iss": settings.jwt_issuer, "type": "refresh"},
            settings.require_jwt_secret(),
            algorithm="HS256",
        )
        with pytest.raises(jwt.InvalidTokenError, match="Expected token type"):
            verify_access_token(token)

    def test_foreign_signature_rejected(self):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"uid": 1, "iat": now, "exp": now + timedelta(minutes=5), "iss": "mindcase", "type": "access"},
            "another-secret-that-is-long-enough-to-sign",
            algorithm="HS256",
        )
        with pytest.raises(jwt.InvalidTokenError):
            verify_access_token(token)

    def test_wrong_issuer_rejected(self):
        settings = get_settings()
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"uid": 1, "iat": now, "exp": now + timedelta(minutes=5), "iss": "someone-else", "type": "access"},
            settings.require_jwt_secret(),
            algorithm="HS256",
        )
        with pytest.raises(jwt.InvalidTokenError):
            verify_access_token(token)


class TestParseUserAgent:
    def test_chrome_on_windows(self):
        ua = (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
        )
        assert parse_user_agent(ua) == ("Windows", "Chrome 124")

    def test_edge_is_not_chrome(self):
        ua = (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36 Edg/124.0.2478.80"
        )
        assert parse_user_agent(ua) == ("Windows", "Edge 124")

    def test_iphone_safari_is_ios(self):
        ua = (
            "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 "
            "(KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1"
        )
        assert parse_user_agent(ua) == ("iOS", "Safari 17")

    def test_android_is_not_linux(self):
        ua = (
            "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/124.0.0.0 Mobile Safari/537.36"
        )
        assert parse_user_agent(ua) == ("Android", "Chrome 124")

    def test_firefox_on_mac(self):
        ua = "Mozilla/5.0 (Macintosh; Intel Mac OS X 14.4; rv:125.0) Gecko/20100101 Firefox/125.0"
        assert parse_user_agent(ua) == ("macOS", "Firefox 125")

    def test_unknown(self):
        assert parse_user_agent("python-httpx/0.27.0") == ("Unknown", "Unknown")
