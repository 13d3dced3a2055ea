"""hcnix: systemd topology generation for self-hosted healthchecks."""

__version__ = "0.1.0"
