"""Activation of a generated Topology on the running host.

This is the orchestrator side of the generator: it owns every mutation.

Steps, in order:
  1. Verify that externally owned principals (a non-default user/group)
     exist. A missing one raises PrincipalConflict before anything is written.
  2. Create the default user/group if missing, and add configured members
     to the default group if `getent group` does not list them yet. Existing
     principals are left alone, so re-running activation never fails or
     duplicates them.
  3. Write the environment file, then every unit file. Each write goes to a
     temporary file in the target directory followed by os.replace(), so a
     unit starting concurrently never reads a half-written file.
  4. Disable, stop and remove healthchecks unit files that are no longer part
     of the topology. An empty topology (enable = false) removes all of them.
  5. Remove stale environment files. With no environment file left to keep,
     every healthchecks environment file in the directory goes.
  6. If anything changed: `systemctl daemon-reload`, `systemctl enable` for
     every unit (this creates the WantedBy= links), then `systemctl restart`
     for the units whose files were rewritten.

unit_dir must be on systemd's unit search path for step 6 to have an effect.
All host commands go through run_command() from hcnix.tools.cli.
Observability: every step is wrapped in a logfire.span().
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import logfire

from hcnix.tools.cli import ActivationError, run_command
from hcnix.unit_gen.environment import ENVIRONMENT_FILE_PREFIX
from hcnix.unit_gen.errors import PrincipalConflict
from hcnix.unit_gen.render import render_topology

if TYPE_CHECKING:
    from hcnix.unit_gen.models import Principal, Topology

__all__ = [
    "ActivationError",
    "ActivationResult",
    "apply_topology",
    "ensure_principal",
    "write_atomic",
]

logger = logging.getLogger(__name__)

# Unit files hcnix considers its own when pruning a unit directory.
_UNIT_GLOBS = ("healthchecks.target", "healthchecks*.service")

# getent exit code for "key not found" (see getent(1)).
_GETENT_NOT_FOUND = 2

_LOOKUP_TIMEOUT: float = 10.0


@dataclass
class ActivationResult:
    """What activation changed on the host."""

    written: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    created_principals: list[str] = field(default_factory=list)
    memberships: list[str] = field(default_factory=list)
    """Added group memberships, as "user:group"."""
    enabled: list[str] = field(default_factory=list)
    restarted: list[str] = field(default_factory=list)
    reloaded: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.written or self.removed or self.created_principals or self.memberships)


# ── Files ─────────────────────────────────────────────────────────────────────


def write_atomic(path: Path, content: str, mode: int = 0o644) -> bool:
    """Write `content` to `path` via a temporary file and os.replace().

    Returns False without touching the file if it already holds `content`.
    """
    try:
        if path.read_text() == content:
            return False
    except FileNotFoundError:
        pass

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return True


def _installed_units(unit_dir: Path) -> set[str]:
    if not unit_dir.is_dir():
        return set()
    return {p.name for pattern in _UNIT_GLOBS for p in unit_dir.glob(pattern)}


def _prune_environment_files(directory: Path, keep: str | None) -> list[str]:
    """Remove healthchecks environment files in `directory` except `keep`."""
    if not directory.is_dir():
        return []
    removed = []
    for p in sorted(directory.glob(f"{ENVIRONMENT_FILE_PREFIX}*")):
        if p.name != keep:
            p.unlink()
            removed.append(str(p))
    return removed


# ── Principals ────────────────────────────────────────────────────────────────


async def principal_exists(kind: str, name: str) -> bool:
    """Check whether a user or group exists, via `getent passwd|group`."""
    database = "passwd" if kind == "user" else "group"
    result = await run_command(
        "getent",
        database,
        name,
        ok_codes=(0, _GETENT_NOT_FOUND),
        timeout_seconds=_LOOKUP_TIMEOUT,
    )
    return result.success


async def group_members(name: str) -> set[str]:
    """Supplementary members of an existing group, from `getent group`.

    Users that have the group as their primary group are not listed.
    """
    result = await run_command("getent", "group", name, timeout_seconds=_LOOKUP_TIMEOUT)
    # name:password:gid:member1,member2
    fields = result.stdout.split(":")
    if len(fields) < 4 or not fields[3]:
        return set()
    return set(fields[3].split(","))


async def ensure_principal(principal: Principal) -> bool:
    """Create a user or group unless it already exists.

    Returns True if it was created.
    """
    with logfire.span("activation.ensure_principal", kind=principal.kind, name=principal.name):
        if await principal_exists(principal.kind, principal.name):
            logfire.info(
                "{kind} '{name}' already exists",
                kind=principal.kind,
                name=principal.name,
            )
            return False

        if principal.kind == "group":
            await run_command("groupadd", "--system", principal.name)
        else:
            args = ["useradd"]
            if principal.is_system_user:
                args.append("--system")
            if principal.group:
                args += ["--gid", principal.group]
            if principal.description:
                args += ["--comment", principal.description]
            await run_command(*args, principal.name)

        logfire.info("Created {kind} '{name}'", kind=principal.kind, name=principal.name)
        return True


async def _verify_external_principals(topology: Topology) -> None:
    managed = {(p.kind, p.name) for p in topology.principals}
    required: set[tuple[str, str]] = set()
    for unit in topology.units:
        if unit.user:
            required.add(("user", unit.user))
        if unit.group:
            required.add(("group", unit.group))

    for kind, name in sorted(required - managed):
        if not await principal_exists(kind, name):
            raise PrincipalConflict(kind, name)


async def _reconcile_members(topology: Topology) -> list[str]:
    # The default user gets the default group as its primary group from
    # useradd, so only other members need an explicit usermod.
    managed_users = {p.name for p in topology.principals if p.kind == "user"}
    added: list[str] = []
    for principal in topology.principals:
        if principal.kind != "group":
            continue
        wanted = [m for m in principal.members if m not in managed_users]
        if not wanted:
            continue
        with logfire.span("activation.reconcile_members", group=principal.name):
            current = await group_members(principal.name)
            for member in wanted:
                if member in current:
                    continue
                await run_command("usermod", "--append", "--groups", principal.name, member)
                logfire.info("Added '{user}' to group '{group}'", user=member, group=principal.name)
                added.append(f"{member}:{principal.name}")
    return added


# ── systemd ───────────────────────────────────────────────────────────────────


async def _start_units(
    rendered: list[str], rewritten: list[str], result: ActivationResult
) -> None:
    with logfire.span("activation.systemctl", units=len(rendered)):
        await run_command("systemctl", "daemon-reload")
        result.reloaded = True
        if rendered:
            await run_command("systemctl", "enable", *rendered)
            result.enabled = list(rendered)
        if rewritten:
            await run_command("systemctl", "restart", *rewritten)
            result.restarted = list(rewritten)


# ── Entry point ───────────────────────────────────────────────────────────────


async def apply_topology(
    topology: Topology,
    unit_dir: Path,
    *,
    environment_dir: Path | None = None,
    reload: bool = True,
) -> ActivationResult:
    """Apply a topology to the host.

    Args:
        topology: Output of generate().
        unit_dir: Directory unit files are written to (e.g. /etc/systemd/system).
        environment_dir: Where environment files are pruned when the topology
            has none (a disabled config). Ignored otherwise, the environment
            file's own directory is used.
        reload: Run systemctl: disable removed units, reload, enable and
            restart the written ones.

    Returns:
        ActivationResult describing the changes.

    Raises:
        PrincipalConflict: A configured non-default user or group is missing.
        ActivationError: A host command failed.
    """
    result = ActivationResult()

    with logfire.span("activation.apply", unit_dir=str(unit_dir), units=len(topology.units)):
        await _verify_external_principals(topology)
        for principal in topology.principals:
            if await ensure_principal(principal):
                result.created_principals.append(f"{principal.kind}:{principal.name}")
        result.memberships = await _reconcile_members(topology)

        env_file = topology.environment_file
        if env_file is not None:
            env_path = Path(env_file.path)
            if write_atomic(env_path, env_file.content):
                result.written.append(str(env_path))
            else:
                result.unchanged.append(str(env_path))

        rendered = render_topology(topology)
        rewritten = []
        for name, text in rendered.items():
            path = unit_dir / name
            if write_atomic(path, text):
                result.written.append(str(path))
                rewritten.append(name)
            else:
                result.unchanged.append(str(path))

        stale = sorted(_installed_units(unit_dir) - set(rendered))
        if stale and reload:
            # disable reads [Install] from the unit file, so it runs before unlink.
            await run_command("systemctl", "disable", "--now", *stale)
        for name in stale:
            (unit_dir / name).unlink()
            result.removed.append(str(unit_dir / name))

        if env_file is not None:
            result.removed += _prune_environment_files(
                Path(env_file.directory), keep=env_file.name
            )
        elif environment_dir is not None:
            result.removed += _prune_environment_files(environment_dir, keep=None)

        if reload and (result.written or result.removed):
            await _start_units(list(rendered), rewritten, result)

        logger.info(
            "activation finished: written=%d removed=%d principals=%d restarted=%d",
            len(result.written),
            len(result.removed),
            len(result.created_principals),
            len(result.restarted),
        )

    return result
