"""hcnix command line.

    hcnix show CONFIG                  print the generated topology as JSON
    hcnix render CONFIG --out DIR      write unit files and environment file to DIR
    hcnix apply CONFIG [--unit-dir D]  activate the topology on this host
    hcnix manage [--config C] ARGS...  run manage.py ARGS as the service user

CONFIG is a JSON document shaped like the services.healthchecks NixOS options.
"""

import asyncio
import json
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError

from hcnix.config import get_settings
from hcnix.tools.activation import ActivationError, apply_topology
from hcnix.tools.manage import ManageError, exec_manage
from hcnix.unit_gen import ConfigurationError, HealthchecksConfig, Topology, generate
from hcnix.unit_gen.render import render_topology

app = typer.Typer(
    name="hcnix",
    help="Generate and activate systemd units for a healthchecks instance.",
    pretty_exceptions_show_locals=False,
    pretty_exceptions_enable=False,
    context_settings={"help_option_names": ["-h", "--help"]},
    no_args_is_help=True,
)

ConfigArg = Annotated[
    Path,
    typer.Argument(help="Path to a JSON configuration document.", exists=True, dir_okay=False),
]


def _fail(message: str) -> typer.Exit:
    typer.echo(f"Error: {message}", err=True)
    return typer.Exit(code=1)


def load_config(path: Path) -> HealthchecksConfig:
    """Read and validate a configuration document."""
    try:
        text = path.read_text()
    except OSError as e:
        raise _fail(f"cannot read {path}: {e.strerror}") from e
    try:
        return HealthchecksConfig.model_validate_json(text)
    except ValidationError as e:
        raise _fail(f"invalid configuration in {path}:\n{e}") from e


def _generate(config: HealthchecksConfig) -> Topology:
    try:
        return generate(config)
    except ConfigurationError as e:
        raise _fail(str(e)) from e


@app.command()
def show(config: ConfigArg) -> None:
    """Print the generated topology as JSON."""
    topology = _generate(load_config(config))
    typer.echo(json.dumps(topology.model_dump(mode="json"), indent=2))


@app.command()
def render(
    config: ConfigArg,
    out: Annotated[Path, typer.Option("--out", "-o", help="Output directory.")] = Path("result"),
) -> None:
    """Write unit files and the environment file into a directory."""
    topology = _generate(load_config(config))
    if topology.is_empty:
        typer.echo("healthchecks is disabled, nothing to render.")
        return

    out.mkdir(parents=True, exist_ok=True)
    files = render_topology(topology)
    env_file = topology.environment_file
    if env_file is not None:
        files[env_file.name] = env_file.content
    for name, text in files.items():
        (out / name).write_text(text)
        typer.echo(str(out / name))


@app.command()
def apply(
    config: ConfigArg,
    unit_dir: Annotated[
        Path, typer.Option("--unit-dir", help="Directory unit files are written to.")
    ] = Path("/etc/systemd/system"),
    reload: Annotated[
        bool, typer.Option("--reload/--no-reload", help="Run systemctl after writing.")
    ] = True,
) -> None:
    """Activate the topology: principals, environment file, unit files, systemd."""
    loaded = load_config(config)
    topology = _generate(loaded)
    try:
        result = asyncio.run(
            apply_topology(
                topology,
                unit_dir,
                environment_dir=Path(loaded.environment_dir),
                reload=reload,
            )
        )
    except (ConfigurationError, ActivationError) as e:
        raise _fail(str(e)) from e

    for path in result.written:
        typer.echo(f"wrote {path}")
    for path in result.removed:
        typer.echo(f"removed {path}")
    for principal in result.created_principals:
        typer.echo(f"created {principal}")
    for membership in result.memberships:
        user, group = membership.split(":", 1)
        typer.echo(f"added {user} to group {group}")
    if result.restarted:
        typer.echo(f"restarted {' '.join(result.restarted)}")
    if not result.changed:
        typer.echo("up to date")


@app.command(context_settings={"allow_extra_args": True, "ignore_unknown_options": True})
def manage(
    ctx: typer.Context,
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Configuration document (default: $HCNIX_CONFIG)."),
    ] = None,
) -> None:
    """Run healthchecks' manage.py as the service user, e.g. `hcnix manage createsuperuser`."""
    path = config
    if path is None and get_settings().hcnix_config:
        path = Path(get_settings().hcnix_config)
    if path is None:
        raise _fail("no configuration given. Pass --config or set HCNIX_CONFIG.")

    try:
        exec_manage(load_config(path), ctx.args)
    except (ConfigurationError, ManageError) as e:
        raise _fail(str(e)) from e
