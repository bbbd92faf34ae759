"""
Main CLI application using Typer.

Entry point: python -m app.cli
CLI Name: connect-hub-admin
"""
import typer

from app import __version__ as app_version

app = typer.Typer(
    name="connect-hub-admin",
    help="Connect Hub Admin CLI - operate integrations from the command line",
)


@app.command()
def version():
    """Show CLI version information."""
    typer.echo(f"Connect Hub CLI version {app_version}")


# Register command groups
from app.cli.commands import integrations  # noqa: E402
app.add_typer(integrations.app, name="integrations")
