"""Configuration of the hcnix tool, read from environment variables.

The generator itself is driven by a HealthchecksConfig document. This module
only covers the settings of the hcnix tool: where the installed Healthchecks
package lives and how observability is wired.

No module should call os.environ directly; import settings from here instead.

Usage:
    from hcnix.config import get_settings

    settings = get_settings()
    root = settings.hcnix_package_path

Environment variables (all optional):

    HCNIX_PACKAGE_PATH      Store path of the installed Healthchecks package.
                            manage.py is expected at <path>/opt/healthchecks.
    HCNIX_PYTHONPATH        Python search path of that package, written to the
                            environment file as PYTHONPATH.
    HCNIX_GUNICORN          gunicorn executable used for the WSGI service.
    HCNIX_CONFIG            Default configuration document for `hcnix manage`.
    HCNIX_SUDO              sudo binary used to switch to the service user.
    LOGFIRE_TOKEN           Logfire project token for observability.
                            If unset, logfire runs in local/dev mode (no remote export).
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class HcnixSettings(BaseSettings):
    """Centralized configuration for the hcnix tool.

    Field names map to env vars by uppercasing: hcnix_package_path → HCNIX_PACKAGE_PATH.

    Instantiate via get_settings() to benefit from caching.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Healthchecks package ─────────────────────────────────────────────────

    hcnix_package_path: str = "/run/current-system/sw"
    """Store path of the Healthchecks package (the `package` option in NixOS)."""

    hcnix_pythonpath: str = ""
    """Python search path of the package (pkg.pythonPath in NixOS)."""

    hcnix_gunicorn: str = "gunicorn"
    """gunicorn executable. A bare name is resolved through PATH by systemd."""

    # ── CLI defaults ─────────────────────────────────────────────────────────

    hcnix_config: str | None = None
    """Configuration document used by `hcnix manage` when --config is omitted."""

    hcnix_sudo: str = "/run/wrappers/bin/sudo"
    """sudo used by `hcnix manage` to switch to the service user (NixOS setuid wrapper)."""

    # ── Observability ────────────────────────────────────────────────────────

    logfire_token: SecretStr | None = None
    """Logfire project token. Optional: if unset, logfire runs in local mode."""

    @field_validator("hcnix_package_path")
    @classmethod
    def validate_package_path(cls, v: str) -> str:
        if not v.startswith("/"):
            msg = f"HCNIX_PACKAGE_PATH must be an absolute path, got '{v}'"
            raise ValueError(msg)
        return v.rstrip("/") or "/"


@lru_cache(maxsize=1)
def get_settings() -> HcnixSettings:
    """Return the cached HcnixSettings instance.

    Reads from environment on first call, then caches for the process lifetime.
    Call clear_settings_cache() in tests to reset between test cases.
    """
    return HcnixSettings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Use in tests that need to vary environment variables between cases.
    """
    get_settings.cache_clear()
