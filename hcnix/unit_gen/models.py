"""Pydantic models for the healthchecks service topology.

Input side:
- HealthchecksConfig: the declarative configuration of one healthchecks
  instance, shaped like the `services.healthchecks` NixOS options. Top-level
  keys accept both snake_case and the NixOS camelCase spelling (dataDir,
  listenAddress).
- HealthchecksSettings: the environment handed to healthchecks'
  local_settings.py. Typed keys are checked and transformed; any other key is
  swept into `additional` and passed through verbatim.

Output side (all frozen, rebuilt on every generate() call):
- UnitDescriptor: one systemd target or service.
- Principal: a user or group the activation step must create.
- EnvironmentFile: the single KEY=value file every service reads at start.
- Topology: the three of them together.
"""

from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator
from pydantic.alias_generators import to_camel

# User and group name that triggers automatic creation on activation.
DEFAULT_USER = "healthchecks"

# StateDirectory= only manages this exact path; any other data_dir is owned by the admin.
DEFAULT_DATA_DIR = "/var/lib/healthchecks"

DB_ENGINES = ("sqlite", "postgres", "mysql")

# Environment variable names as accepted by `export` in the manage helper.
_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

UnitKind = Literal["target", "oneshot", "long-running"]
RestartPolicy = Literal["always", "on-failure", "none"]
AuxiliaryPolicy = Literal["independent", "bound"]


class HealthchecksSettings(BaseModel):
    """Environment variables read by healthchecks' local_settings.py.

    See https://healthchecks.io/docs/self_hosted_configuration/ for the full
    list. Only the keys below are typed; everything else ends up in
    `additional` as a plain string.
    """

    ALLOWED_HOSTS: list[str] = Field(default_factory=lambda: ["*"])
    """Host/domain names this site can serve. Joined with commas."""

    SECRET_KEY_FILE: str | None = None
    """Path to a file containing the secret key. Required.

    Only the path is written to the environment file; local_settings.py
    reads the key at process start so it never lands in the Nix store.
    """

    DEBUG: bool = False

    REGISTRATION_OPEN: bool = False
    """Whether site visitors can create new accounts."""

    DB: str = "sqlite"
    """Database engine, one of DB_ENGINES. Checked by the generator."""

    DB_NAME: str | None = None
    """Explicit database name. When None, see effective_db_name()."""

    EMAIL_HOST_PASSWORD_FILE: str = ""
    """Path to a file containing the SMTP password. Empty disables it."""

    additional: dict[str, str] = Field(default_factory=dict)
    """Free-form settings passed through verbatim. Typed keys win on merge."""

    @model_validator(mode="before")
    @classmethod
    def collect_additional(cls, data: Any) -> Any:
        """Move unknown top-level keys into `additional`."""
        if not isinstance(data, dict):
            return data
        known = set(cls.model_fields)
        extra = {k: v for k, v in data.items() if k not in known}
        if not extra:
            return data
        typed = {k: v for k, v in data.items() if k in known}
        typed["additional"] = {**(data.get("additional") or {}), **extra}
        return typed

    @field_validator("additional")
    @classmethod
    def validate_additional(cls, v: dict[str, str]) -> dict[str, str]:
        for key, value in v.items():
            if not _ENV_KEY_RE.match(key):
                msg = f"Setting name '{key}' is not a valid environment variable name"
                raise ValueError(msg)
            if "\n" in value:
                msg = f"Setting '{key}' must not contain a newline"
                raise ValueError(msg)
        return v

    def effective_db_name(self, data_dir: str) -> str:
        """Return DB_NAME, deriving the default from DB and data_dir.

        The default is never stored, so changing DB or data_dir always
        changes the result.
        """
        if self.DB_NAME is not None:
            return self.DB_NAME
        if self.DB == "sqlite":
            return f"{data_dir}/healthchecks.sqlite"
        return "hc"


class PackagePaths(BaseModel):
    """Locations inside the installed healthchecks package."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    store_path: str
    python_path: str = ""
    gunicorn: str = "gunicorn"

    @property
    def app_dir(self) -> str:
        return f"{self.store_path}/opt/healthchecks"

    @property
    def manage_py(self) -> str:
        return f"{self.app_dir}/manage.py"


class Principal(BaseModel):
    """A user or group that activation creates if it does not exist yet."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["user", "group"]
    name: str
    description: str = ""
    is_system_user: bool = False
    group: str | None = None
    """Primary group (users only)."""
    members: tuple[str, ...] = ()
    """Member users (groups only)."""


class HealthchecksConfig(BaseModel):
    """Configuration of a single healthchecks instance.

    Mirrors the `services.healthchecks` NixOS module. It is expected to run
    behind an HTTP reverse proxy.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    enable: bool = False

    user: str = DEFAULT_USER
    """User account the services run as.

    Left as DEFAULT_USER, the user is created on activation. Any other value
    must already exist on the host.
    """

    group: str = DEFAULT_USER
    """Group account the services run as. Same creation rule as `user`."""

    listen_address: str = "localhost"
    port: int = 8000

    data_dir: str = DEFAULT_DATA_DIR
    """Directory holding all healthchecks data.

    Created by systemd (StateDirectory=) only when left at DEFAULT_DATA_DIR.
    """

    environment_dir: str = "/etc/healthchecks"
    """Directory the content-addressed environment file is written to."""

    package: PackagePaths | None = None
    """Installed package. When None, resolved from HcnixSettings."""

    send_alerts: bool = True
    send_reports: bool = True

    auxiliary_policy: AuxiliaryPolicy = "independent"
    """How sendalerts/sendreports relate to the WSGI service.

    "independent": ordered after it only, they keep running if it fails.
    "bound": additionally Requires= it, so they fail with it.
    """

    settings: HealthchecksSettings = Field(default_factory=HealthchecksSettings)

    @property
    def managed_user(self) -> Principal | None:
        if self.user != DEFAULT_USER:
            return None
        return Principal(
            kind="user",
            name=self.user,
            description="healthchecks service owner",
            is_system_user=True,
            group=self.group,
        )

    @property
    def managed_group(self) -> Principal | None:
        if self.group != DEFAULT_USER:
            return None
        return Principal(kind="group", name=self.group, members=(self.user,))

    @property
    def uses_state_directory(self) -> bool:
        return self.data_dir == DEFAULT_DATA_DIR


class UnitDescriptor(BaseModel):
    """A systemd unit in the generated topology.

    `after` holds ordering edges (the unit starts only once those units are
    up or, for oneshots, finished). `requires` adds a hard dependency on top
    of the ordering.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    kind: UnitKind
    after: frozenset[str] = frozenset()
    requires: frozenset[str] = frozenset()
    wanted_by: frozenset[str] = frozenset()
    restart: RestartPolicy = "none"
    working_directory: str | None = None
    environment_file: str | None = None
    user: str | None = None
    group: str | None = None
    exec_start: str | None = None
    exec_start_pre: tuple[str, ...] = ()
    state_directory: str | None = None
    state_directory_mode: str | None = None

    @property
    def is_target(self) -> bool:
        return self.kind == "target"

    @field_serializer("after", "requires", "wanted_by")
    def serialize_name_set(self, value: frozenset[str]) -> list[str]:
        return sorted(value)


class EnvironmentFile(BaseModel):
    """Rendered environment file, addressed by a digest of its content."""

    model_config = ConfigDict(frozen=True)

    directory: str
    name: str
    content: str
    digest: str

    @property
    def path(self) -> str:
        return f"{self.directory.rstrip('/')}/{self.name}"


class Topology(BaseModel):
    """Everything generate() derives from one HealthchecksConfig."""

    model_config = ConfigDict(frozen=True)

    units: tuple[UnitDescriptor, ...] = ()
    """Units in dependency order: every unit comes after all units in its `after`."""

    environment_file: EnvironmentFile | None = None
    principals: tuple[Principal, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.units and not self.principals and self.environment_file is None

    @property
    def unit_names(self) -> list[str]:
        return [u.name for u in self.units]

    def unit(self, name: str) -> UnitDescriptor:
        """Return the unit called `name`. Raises KeyError if absent."""
        for u in self.units:
            if u.name == name:
                return u
        raise KeyError(name)
