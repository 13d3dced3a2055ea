"""Management helper that runs healthchecks' manage.py as the service user.

Equivalent of the `healthchecks-manage` wrapper of the NixOS module:

    hcnix manage createsuperuser
    hcnix manage sendalerts --no-threads

The helper loads the environment file the services use, switches to the
configured user through sudo when the caller is someone else, and replaces
its own process with manage.py. The exit code is therefore manage.py's own.
"""

from __future__ import annotations

import getpass
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, NoReturn

from dotenv import dotenv_values

from hcnix.config import get_settings
from hcnix.unit_gen.generator import generate, resolve_package

if TYPE_CHECKING:
    from collections.abc import Sequence

    from hcnix.unit_gen.models import HealthchecksConfig

logger = logging.getLogger(__name__)


class ManageError(Exception):
    """Raised when manage.py cannot be started."""


def build_manage_command(
    manage_py: str,
    user: str,
    args: Sequence[str],
    *,
    current_user: str,
    sudo: str,
) -> list[str]:
    """Build the argv that runs manage.py as `user`.

    sudo is skipped when the caller already is `user`. PYTHONPATH is listed
    explicitly because sudo drops it even under --preserve-env.
    """
    command = [manage_py, *args]
    if current_user == user:
        return command
    return [sudo, "-u", user, "--preserve-env", "--preserve-env=PYTHONPATH", *command]


def load_environment(path: Path) -> dict[str, str]:
    """Read a KEY=value environment file.

    Raises:
        ManageError: If the file does not exist yet (not activated).
    """
    if not path.is_file():
        raise ManageError(f"Environment file {path} does not exist. Run `hcnix apply` first.")
    values = dotenv_values(path, interpolate=False)
    return {key: value or "" for key, value in values.items()}


def exec_manage(
    config: HealthchecksConfig,
    args: Sequence[str],
    *,
    current_user: str | None = None,
) -> NoReturn:
    """Replace the current process with manage.py for `config`.

    Raises:
        ManageError: healthchecks is disabled or was never activated.
        ConfigurationError: The config does not validate.
    """
    topology = generate(config)
    if topology.environment_file is None:
        raise ManageError("healthchecks is not enabled in this configuration.")

    env = {**os.environ, **load_environment(Path(topology.environment_file.path))}
    argv = build_manage_command(
        resolve_package(config).manage_py,
        config.user,
        args,
        current_user=current_user or getpass.getuser(),
        sudo=get_settings().hcnix_sudo,
    )

    logger.debug("exec %s", argv)
    os.execvpe(argv[0], argv, env)
