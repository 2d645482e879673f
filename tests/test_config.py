"""Unit tests for core/config.py -- signing key policy and cookie defaults.

Settings is built directly (not through get_settings()) so each case sees
only the values it passes in. Explicit keyword arguments win over the
environment conftest.py sets up.
"""

import pytest
from pydantic import ValidationError

from core.config import Settings

_KEY = "k" * 32


class TestSecretKey:
    def test_production_requires_key(self) -> None:
        with pytest.raises(ValidationError, match="SECRET_KEY is required"):
            Settings(debug=False, secret_key="")

    def test_short_key_rejected(self) -> None:
        with pytest.raises(ValidationError, match="at least 32 characters"):
            Settings(debug=True, secret_key="too-short")

    def test_debug_generates_key(self) -> None:
        settings = Settings(debug=True, secret_key="")
        assert len(settings.secret_key) >= 32
        assert settings.secret_key != Settings(debug=True, secret_key="").secret_key

    def test_short_refresh_key_rejected(self) -> None:
        with pytest.raises(ValidationError, match="REFRESH_SECRET_KEY"):
            Settings(debug=True, secret_key=_KEY, refresh_secret_key="short")

    def test_refresh_signing_key_falls_back(self) -> None:
        assert Settings(debug=True, secret_key=_KEY, refresh_secret_key="").refresh_signing_key == _KEY
        other = "r" * 32
        assert Settings(debug=True, secret_key=_KEY, refresh_secret_key=other).refresh_signing_key == other


class TestDefaults:
    def test_secure_cookies_follow_debug(self) -> None:
        assert Settings(debug=False, secret_key=_KEY).secure_cookies is True
        assert Settings(debug=True, secret_key=_KEY).secure_cookies is False

    def test_secure_cookies_explicit(self) -> None:
        assert Settings(debug=True, secret_key=_KEY, secure_cookies=True).secure_cookies is True

    def test_token_lifetimes(self) -> None:
        settings = Settings(debug=True, secret_key=_KEY)
        assert settings.access_token_expire_seconds == 15 * 60
        assert settings.refresh_token_expire_seconds == 7 * 24 * 60 * 60
        assert settings.refresh_cookie_name == "refreshToken"
        assert settings.rotate_refresh_tokens is False
