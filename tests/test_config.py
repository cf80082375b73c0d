"""Tests for environment configuration."""

import os
from unittest.mock import patch


class TestSettings:
    """Settings configuration tests."""

    def test_settings_has_app_name(self) -> None:
        """Settings should have app_name attribute."""
        from telo_auth.config import Settings

        settings = Settings()
        assert settings.app_name == "telo-auth"
        assert settings.app_version == "0.1.0"

    def test_settings_debug_defaults_to_false(self) -> None:
        """Debug mode should default to False."""
        from telo_auth.config import Settings

        settings = Settings()
        assert settings.debug is False

    def test_settings_reads_from_environment(self) -> None:
        """Settings should read DEBUG from environment variables."""
        with patch.dict(os.environ, {"DEBUG": "true"}):
            from telo_auth.config import Settings

            settings = Settings()
            assert settings.debug is True

    def test_identity_service_defaults(self) -> None:
        """The identity service URL and timeout should have local defaults."""
        with patch.dict(os.environ, {}, clear=True):
            from telo_auth.config import Settings

            settings = Settings(_env_file=None)
            assert settings.api_base_url == "http://localhost:3000/api"
            assert settings.request_timeout == 10.0

    def test_identity_service_url_from_environment(self) -> None:
        """API_BASE_URL should override the default identity service URL."""
        with patch.dict(os.environ, {"API_BASE_URL": "https://id.example.com/api"}):
            from telo_auth.config import Settings

            settings = Settings()
            assert settings.api_base_url == "https://id.example.com/api"

    def test_storage_settings(self) -> None:
        """Token storage location and key prefix should be configurable."""
        with patch.dict(
            os.environ,
            {"SESSION_STORE_PATH": "/tmp/s.json", "STORAGE_KEY_PREFIX": "app_"},
        ):
            from telo_auth.config import Settings

            settings = Settings()
            assert settings.session_store_path == "/tmp/s.json"
            assert settings.storage_key_prefix == "app_"


class TestGetSettings:
    """get_settings caching tests."""

    def test_get_settings_returns_cached_instance(self) -> None:
        """get_settings should return the same instance on repeated calls."""
        from telo_auth.config import get_settings

        assert get_settings() is get_settings()
