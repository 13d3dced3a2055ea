"""Healthchecks service topology generation.

This package owns the translation from configuration to systemd:
- Pydantic models for the configuration and the generated units
- The environment file shared by every service
- Ordering graph validation
- The generator itself, plus rendering to unit-file text

Typical usage:
    from hcnix.unit_gen import generate, render_topology
    topology = generate(config)
    files = render_topology(topology)
"""

from hcnix.unit_gen.errors import (
    ConfigurationError,
    DependencyCycleError,
    InvalidEnumValue,
    MissingRequiredSetting,
    PrincipalConflict,
)
from hcnix.unit_gen.generator import generate
from hcnix.unit_gen.models import HealthchecksConfig, HealthchecksSettings, Topology
from hcnix.unit_gen.render import render_topology, render_unit

__all__ = [
    "ConfigurationError",
    "DependencyCycleError",
    "HealthchecksConfig",
    "HealthchecksSettings",
    "InvalidEnumValue",
    "MissingRequiredSetting",
    "PrincipalConflict",
    "Topology",
    "generate",
    "render_topology",
    "render_unit",
]
