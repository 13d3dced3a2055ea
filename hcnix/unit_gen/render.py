"""Render generated units as systemd unit files.

Output follows the layout `systemctl cat` shows: [Unit], then [Service]
(omitted for targets), then [Install]. Set-valued keys are sorted so the same
topology always renders to the same text. ExecStartPre= is emitted once per
step, in order; systemd runs them sequentially and aborts the start on the
first failure.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hcnix.unit_gen.models import Topology, UnitDescriptor

_SERVICE_TYPE = {
    "oneshot": "oneshot",
    "long-running": "simple",
}

_RESTART = {
    "always": "always",
    "on-failure": "on-failure",
    "none": "no",
}


def _names(values: frozenset[str]) -> str:
    return " ".join(sorted(values))


def render_unit(unit: UnitDescriptor) -> str:
    """Render a single unit file."""
    lines = ["[Unit]", f"Description={unit.description}"]
    if unit.after:
        lines.append(f"After={_names(unit.after)}")
    if unit.requires:
        lines.append(f"Requires={_names(unit.requires)}")

    if not unit.is_target:
        lines += ["", "[Service]", f"Type={_SERVICE_TYPE[unit.kind]}"]
        lines.append(f"Restart={_RESTART[unit.restart]}")
        optional = (
            ("User", unit.user),
            ("Group", unit.group),
            ("WorkingDirectory", unit.working_directory),
            ("EnvironmentFile", unit.environment_file),
            ("StateDirectory", unit.state_directory),
            ("StateDirectoryMode", unit.state_directory_mode),
        )
        lines += [f"{key}={value}" for key, value in optional if value]
        lines += [f"ExecStartPre={step}" for step in unit.exec_start_pre]
        if unit.exec_start:
            lines.append(f"ExecStart={unit.exec_start}")

    if unit.wanted_by:
        lines += ["", "[Install]", f"WantedBy={_names(unit.wanted_by)}"]

    return "\n".join(lines) + "\n"


def render_topology(topology: Topology) -> dict[str, str]:
    """Render every unit of a topology, keyed by unit file name.

    The environment file is not included; its content is already rendered
    (topology.environment_file.content).
    """
    return {unit.name: render_unit(unit) for unit in topology.units}
