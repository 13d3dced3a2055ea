"""Tests for hcnix tool settings."""

import pytest
from pydantic import ValidationError

from hcnix.config import clear_settings_cache, get_settings


@pytest.fixture(autouse=True)
def _clear_settings():
    clear_settings_cache()
    yield
    clear_settings_cache()


class TestHcnixSettings:
    def test_defaults(self, monkeypatch):
        for var in ("HCNIX_PACKAGE_PATH", "HCNIX_PYTHONPATH", "HCNIX_GUNICORN", "HCNIX_SUDO"):
            monkeypatch.delenv(var, raising=False)
        settings = get_settings()
        assert settings.hcnix_package_path == "/run/current-system/sw"
        assert settings.hcnix_pythonpath == ""
        assert settings.hcnix_gunicorn == "gunicorn"
        assert settings.hcnix_sudo == "/run/wrappers/bin/sudo"

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("HCNIX_PACKAGE_PATH", "/nix/store/abc-healthchecks/")
        monkeypatch.setenv("LOGFIRE_TOKEN", "secret-token")
        settings = get_settings()
        assert settings.hcnix_package_path == "/nix/store/abc-healthchecks"
        assert settings.logfire_token.get_secret_value() == "secret-token"
        assert "secret-token" not in repr(settings)

    def test_relative_package_path_rejected(self, monkeypatch):
        monkeypatch.setenv("HCNIX_PACKAGE_PATH", "nix/store/abc")
        with pytest.raises(ValidationError, match="absolute"):
            get_settings()

    def test_cached(self):
        assert get_settings() is get_settings()
