"""
tests/test_config.py -- Unit tests for core.config.

Settings are built with _env_file=None and explicit keyword arguments, so a
developer's .env never leaks into these tests. Environment-variable parsing
is checked through monkeypatch.setenv.
"""

from __future__ import annotations

import logging

import pytest

from core.config import Settings, get_settings, is_public_route


def _settings(**values) -> Settings:
    return Settings(_env_file=None, **values)


class TestAuthMode:
    def test_simple_mode_needs_both_credentials(self) -> None:
        assert _settings(ui_username="a", ui_password="b").auth_mode == "simple"
        assert _settings(ui_username="a", ui_password="").auth_mode == "none"
        assert _settings(ui_username="", ui_password="b").auth_mode == "none"

    def test_auth_disabled_by_default_without_credentials(self, monkeypatch) -> None:
        monkeypatch.delenv("DISABLE_AUTH", raising=False)
        settings = _settings(ui_username="", ui_password="")
        assert settings.auth_disabled is True
        assert settings.auth_enabled is False

    def test_disable_auth_false_keeps_jwt_required(self) -> None:
        settings = _settings(ui_username="", ui_password="", disable_auth=False)
        assert settings.auth_disabled is False
        assert settings.auth_enabled is False

    def test_simple_mode_is_never_disabled(self) -> None:
        settings = _settings(ui_username="a", ui_password="b", disable_auth=True)
        assert settings.auth_disabled is False

    def test_env_vars_are_read(self, monkeypatch) -> None:
        monkeypatch.setenv("UI_USERNAME", "ops")
        monkeypatch.setenv("UI_PASSWORD", "hunter2")
        monkeypatch.setenv("SSE_TICKET_TTL_SECONDS", "30")
        settings = _settings()
        assert settings.auth_mode == "simple"
        assert settings.sse_ticket_ttl_seconds == 30


class TestSecrets:
    def test_generated_secret_when_missing(self, monkeypatch, caplog) -> None:
        monkeypatch.delenv("JWT_SECRET", raising=False)
        with caplog.at_level(logging.WARNING, logger="s4.config"):
            settings = _settings(jwt_secret="")
        assert len(settings.jwt_secret) == 64
        assert "JWT_SECRET not set" in caplog.text

    def test_generated_secrets_differ_per_instance(self, monkeypatch) -> None:
        monkeypatch.delenv("JWT_SECRET", raising=False)
        assert _settings(jwt_secret="").jwt_secret != _settings(jwt_secret="").jwt_secret

    def test_cookie_secret_defaults_to_jwt_secret(self) -> None:
        settings = _settings(jwt_secret="abc", cookie_secret="")
        assert settings.cookie_secret == "abc"

    def test_explicit_cookie_secret_is_kept(self) -> None:
        assert _settings(jwt_secret="abc", cookie_secret="def").cookie_secret == "def"


class TestExpiration:
    @pytest.mark.parametrize("raw", ["abc", "0", "-3", ""])
    def test_invalid_hours_fall_back_to_eight(self, raw) -> None:
        settings = _settings(jwt_expiration_hours=raw)
        assert settings.jwt_expiration_hours == 8
        assert settings.jwt_expiration_seconds == 8 * 3600

    def test_valid_hours(self, monkeypatch) -> None:
        monkeypatch.setenv("JWT_EXPIRATION_HOURS", "2")
        assert _settings().jwt_expiration_seconds == 7200


class TestCookieOptions:
    def test_development_cookie(self) -> None:
        options = _settings(environment="development").auth_cookie_options()
        assert options == {
            "httponly": True,
            "path": "/",
            "secure": False,
            "samesite": "lax",
            "max_age": 8 * 3600,
        }

    def test_production_cookie_is_hardened(self) -> None:
        options = _settings(environment="production").auth_cookie_options()
        assert options["secure"] is True
        assert options["samesite"] == "strict"

    def test_production_behind_tls_terminator(self) -> None:
        options = _settings(environment="production", cookie_require_https=False).auth_cookie_options()
        assert options["secure"] is False
        assert options["samesite"] == "strict"


class TestCredentials:
    def test_matching_credentials(self) -> None:
        assert _settings(ui_username="a", ui_password="b").validate_credentials("a", "b")

    @pytest.mark.parametrize("username,password", [("a", "x"), ("x", "b"), ("", "b"), ("a", "")])
    def test_mismatch(self, username, password) -> None:
        assert not _settings(ui_username="a", ui_password="b").validate_credentials(username, password)

    def test_never_valid_without_simple_mode(self) -> None:
        assert not _settings(ui_username="", ui_password="").validate_credentials("", "")


class TestPublicRoutes:
    @pytest.mark.parametrize(
        "url",
        [
            "/api",
            "/api?ping=1",
            "/api/auth/info",
            "/api/auth/info/",
            "/api/auth/login",
            "/api/auth/login?next=/",
            "/api/auth/login/extra",
        ],
    )
    def test_public(self, url) -> None:
        assert is_public_route(url)

    @pytest.mark.parametrize(
        "url",
        ["/api/", "/api/buckets", "/api/auth/me", "/api/auth/logout", "/api/auth/information", "/api/auth/sse-ticket"],
    )
    def test_protected(self, url) -> None:
        assert not is_public_route(url)


def test_get_settings_is_cached() -> None:
    get_settings.cache_clear()
    try:
        assert get_settings() is get_settings()
    finally:
        get_settings.cache_clear()
