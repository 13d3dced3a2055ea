"""Entry point for the hcnix command line.

    python -m hcnix show config.json

or, once installed, the `hcnix` console script.

Logfire tracing is configured here so activation spans from a whole run end
up in one trace. Nothing is exported unless LOGFIRE_TOKEN is set.
"""

from __future__ import annotations

import logging

import logfire

from hcnix.app import app
from hcnix.config import get_settings

# ── Logging ───────────────────────────────────────────────────────────────────

logging.basicConfig(
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    level=logging.WARNING,
)


# ── Entrypoint ────────────────────────────────────────────────────────────────


def main() -> None:
    """Configure observability, then hand over to the Typer app."""
    settings = get_settings()

    logfire_token = settings.logfire_token
    logfire.configure(
        token=logfire_token.get_secret_value() if logfire_token else None,
        service_name="hcnix",
        send_to_logfire="if-token-present",
        # stdout belongs to `hcnix show`.
        console=False,
    )

    app()


if __name__ == "__main__":
    main()
