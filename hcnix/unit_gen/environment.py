"""Environment file generation: the KEY=value file every service unit reads.

Sources, later ones overriding earlier ones:
  1. Synthesized keys: PYTHONPATH (the package's search path) and
     STATIC_ROOT (<data_dir>/static, where collectstatic writes).
  2. Free-form settings from HealthchecksSettings.additional.
  3. Typed settings, after their transforms:
       bool  →  "True" / "False"   (Python literal, parsed by local_settings.py)
       list  →  comma-joined string
       DB_NAME  →  effective value (derived from DB and data_dir unless set)

Lines are sorted by key, so the same configuration always yields the same
bytes. The file name carries a digest of those bytes: a settings change
produces a new path, which in turn changes every unit that references it.
"""

from __future__ import annotations

import hashlib

from hcnix.unit_gen.errors import ConfigurationError
from hcnix.unit_gen.models import EnvironmentFile, HealthchecksConfig, PackagePaths

ENVIRONMENT_FILE_PREFIX = "healthchecks-environment-"

# Digest characters kept in the file name.
_DIGEST_LEN = 16


def _bool_to_python(value: bool) -> str:
    return "True" if value else "False"


def typed_settings(config: HealthchecksConfig) -> dict[str, str]:
    """Serialize the typed settings of `config` to strings."""
    s = config.settings
    return {
        "ALLOWED_HOSTS": ",".join(s.ALLOWED_HOSTS),
        "SECRET_KEY_FILE": s.SECRET_KEY_FILE or "",
        "DEBUG": _bool_to_python(s.DEBUG),
        "REGISTRATION_OPEN": _bool_to_python(s.REGISTRATION_OPEN),
        "DB": s.DB,
        "DB_NAME": s.effective_db_name(config.data_dir),
        "EMAIL_HOST_PASSWORD_FILE": s.EMAIL_HOST_PASSWORD_FILE,
    }


def environment_variables(config: HealthchecksConfig, package: PackagePaths) -> dict[str, str]:
    """Merge synthesized, free-form and typed settings into one mapping."""
    env = {
        "PYTHONPATH": package.python_path,
        "STATIC_ROOT": f"{config.data_dir}/static",
    }
    env.update(config.settings.additional)
    env.update(typed_settings(config))
    return env


def to_key_value(env: dict[str, str]) -> str:
    """Format a mapping as KEY=value lines, sorted by key.

    Values are written as-is, without quoting, the same as
    lib.generators.toKeyValue in nixpkgs.

    Raises:
        ConfigurationError: A value contains a line break. It would start a
            new KEY=value line that overrides the real setting.
    """
    for key, value in env.items():
        if "\n" in value or "\r" in value:
            msg = f"Setting '{key}' must not contain a line break, got {value!r}"
            raise ConfigurationError(msg)
    return "".join(f"{key}={env[key]}\n" for key in sorted(env))


def build_environment_file(config: HealthchecksConfig, package: PackagePaths) -> EnvironmentFile:
    content = to_key_value(environment_variables(config, package))
    digest = hashlib.sha256(content.encode()).hexdigest()
    return EnvironmentFile(
        directory=config.environment_dir,
        name=f"{ENVIRONMENT_FILE_PREFIX}{digest[:_DIGEST_LEN]}",
        content=content,
        digest=digest,
    )
