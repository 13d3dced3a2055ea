"""Topology generator. Derives systemd units, principals and the environment
file from a HealthchecksConfig.

This module is the single place where a HealthchecksConfig is translated into
the units systemd runs. It performs no I/O: the activation tool (or any other
orchestrator) applies the result.

Generated topology:

    healthchecks.target                 wantedBy multi-user.target
      ├─ healthchecks-migration.service   oneshot, Restart=on-failure
      ├─ healthchecks.service             after migration, Restart=always
      ├─ healthchecks-sendalerts.service  after healthchecks.service
      └─ healthchecks-sendreports.service after healthchecks.service

The package (where manage.py and gunicorn live) is resolved from:
  1. The explicit `package` argument (takes priority, used in tests)
  2. config.package
  3. HcnixSettings (HCNIX_PACKAGE_PATH, HCNIX_PYTHONPATH, HCNIX_GUNICORN)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from hcnix.config import get_settings
from hcnix.unit_gen.environment import build_environment_file
from hcnix.unit_gen.errors import ConfigurationError, InvalidEnumValue, MissingRequiredSetting
from hcnix.unit_gen.graph import topological_order
from hcnix.unit_gen.models import DB_ENGINES, PackagePaths, Topology, UnitDescriptor

if TYPE_CHECKING:
    from hcnix.unit_gen.models import EnvironmentFile, HealthchecksConfig, Principal

logger = logging.getLogger(__name__)

TARGET = "healthchecks.target"
MIGRATION_UNIT = "healthchecks-migration.service"
PRIMARY_UNIT = "healthchecks.service"
SENDALERTS_UNIT = "healthchecks-sendalerts.service"
SENDREPORTS_UNIT = "healthchecks-sendreports.service"

_NETWORK_TARGETS = frozenset({"network.target", "network-online.target"})
_MULTI_USER_TARGET = "multi-user.target"

_PORT_MAX = 65535


def resolve_package(config: HealthchecksConfig, package: PackagePaths | None = None) -> PackagePaths:
    """Resolve the installed package: argument, then config.package, then settings."""
    if package is not None:
        return package
    if config.package is not None:
        return config.package

    settings = get_settings()
    return PackagePaths(
        store_path=settings.hcnix_package_path,
        python_path=settings.hcnix_pythonpath,
        gunicorn=settings.hcnix_gunicorn,
    )


def validate_config(config: HealthchecksConfig) -> None:
    """Check everything generate() relies on.

    Raises:
        MissingRequiredSetting: SECRET_KEY_FILE is absent or empty.
        InvalidEnumValue: DB is not a known engine, or port is out of range.
        ConfigurationError: data_dir is relative, or user/group is empty.
    """
    settings = config.settings
    if not settings.SECRET_KEY_FILE:
        raise MissingRequiredSetting("SECRET_KEY_FILE")
    if settings.DB not in DB_ENGINES:
        raise InvalidEnumValue("DB", settings.DB, f"one of {', '.join(DB_ENGINES)}")
    if not 0 <= config.port <= _PORT_MAX:
        raise InvalidEnumValue("port", config.port, f"an integer between 0 and {_PORT_MAX}")
    if not config.data_dir.startswith("/"):
        msg = f"dataDir must be an absolute path, got '{config.data_dir}'"
        raise ConfigurationError(msg)
    if not config.user or not config.group:
        msg = "user and group must not be empty"
        raise ConfigurationError(msg)


def _service(
    config: HealthchecksConfig,
    env_file: EnvironmentFile,
    **fields: object,
) -> UnitDescriptor:
    """Build a service unit with the settings every healthchecks service shares."""
    common: dict[str, object] = {
        "wanted_by": frozenset({TARGET}),
        "working_directory": config.data_dir,
        "environment_file": env_file.path,
        "user": config.user,
        "group": config.group,
    }
    if config.uses_state_directory:
        common["state_directory"] = "healthchecks"
        common["state_directory_mode"] = "0750"
    return UnitDescriptor(**common, **fields)


def _units(
    config: HealthchecksConfig,
    package: PackagePaths,
    env_file: EnvironmentFile,
) -> list[UnitDescriptor]:
    manage = package.manage_py

    units = [
        UnitDescriptor(
            name=TARGET,
            description="Target for all Healthchecks services",
            kind="target",
            after=_NETWORK_TARGETS,
            wanted_by=frozenset({_MULTI_USER_TARGET}),
        ),
        _service(
            config,
            env_file,
            name=MIGRATION_UNIT,
            description="Healthchecks migrations",
            kind="oneshot",
            restart="on-failure",
            exec_start=f"{manage} migrate",
        ),
        _service(
            config,
            env_file,
            name=PRIMARY_UNIT,
            description="Healthchecks WSGI Service",
            kind="long-running",
            after=frozenset({MIGRATION_UNIT}),
            restart="always",
            # Order matters: compress reads what collectstatic wrote.
            exec_start_pre=(
                f"{manage} collectstatic --no-input",
                f"{manage} remove_stale_contenttypes --no-input",
                f"{manage} compress",
            ),
            exec_start=(
                f"{package.gunicorn} hc.wsgi"
                f" --bind {config.listen_address}:{config.port}"
                f" --pythonpath {package.app_dir}"
            ),
        ),
    ]

    requires = frozenset({PRIMARY_UNIT}) if config.auxiliary_policy == "bound" else frozenset()
    auxiliaries = []
    if config.send_alerts:
        auxiliaries.append(
            (SENDALERTS_UNIT, "Healthchecks Alert Service", f"{manage} sendalerts")
        )
    if config.send_reports:
        auxiliaries.append(
            (SENDREPORTS_UNIT, "Healthchecks Reporting Service", f"{manage} sendreports --loop")
        )
    for name, description, command in auxiliaries:
        units.append(
            _service(
                config,
                env_file,
                name=name,
                description=description,
                kind="long-running",
                after=frozenset({PRIMARY_UNIT}),
                requires=requires,
                restart="always",
                exec_start=command,
            )
        )

    return units


def _principals(config: HealthchecksConfig) -> tuple[Principal, ...]:
    # Group first: a user's primary group must exist before the user.
    return tuple(p for p in (config.managed_group, config.managed_user) if p is not None)


def generate(config: HealthchecksConfig, package: PackagePaths | None = None) -> Topology:
    """Derive the full service topology for a healthchecks instance.

    A disabled config yields an empty Topology. Otherwise the config is
    validated first, so an invalid config never yields a partial topology.
    Calling this twice with the same config returns equal topologies, and an
    identical environment file.

    Args:
        config: Healthchecks configuration.
        package: Installed package paths. If omitted, taken from config.package
            or HcnixSettings.

    Returns:
        Topology with units in dependency order.

    Raises:
        ConfigurationError: Any subclass, see validate_config(). Also
            DependencyCycleError if the unit graph is not acyclic.
    """
    if not config.enable:
        logger.debug("healthchecks disabled, returning empty topology")
        return Topology()

    validate_config(config)
    resolved = resolve_package(config, package)
    env_file = build_environment_file(config, resolved)
    units = topological_order(_units(config, resolved, env_file))

    logger.debug(
        "Generated %d units for healthchecks (env file %s)",
        len(units),
        env_file.name,
    )
    return Topology(units=units, environment_file=env_file, principals=_principals(config))
