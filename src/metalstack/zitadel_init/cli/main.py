"""zitadel-init CLI - Main entrypoint.

Usage:
    zitadel-init init --config bootstrap.yaml
    zitadel-init validate bootstrap.yaml
"""

from __future__ import annotations

import typer

from metalstack.zitadel_init.cli.commands import init, validate

app = typer.Typer(
    name="zitadel-init",
    help="Initialize Zitadel with the required project, application, users and providers",
    add_completion=False,
)

app.command("init")(init)
app.command("validate")(validate)


def create_app() -> None:
    """CLI entrypoint."""
    app()


if __name__ == "__main__":
    create_app()
