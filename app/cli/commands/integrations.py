"""
Integration commands: inspect links and run syncs outside the API.
"""
import asyncio
from datetime import timedelta
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from app.core.config import settings
from app.core.exceptions import IntegrationException
from app.core.http_client import close_http_client
from app.core.security import create_access_token
from app.integrations.providers import PROVIDER_REGISTRY
from app.integrations.service import get_integrations_service

app = typer.Typer(help="Integration commands")
console = Console()

# Settings shown by check-env; secrets are masked
_ENV_FIELDS = (
    "environment",
    "database_url",
    "redis_url",
    "celery_broker_url",
    "secret_key",
    "state_token_signing",
    "state_token_max_age_seconds",
    "integration_sync_interval_hours",
    "strava_client_id",
    "spotify_client_id",
    "plaid_client_id",
    "plaid_env",
    "gmail_client_id",
    "google_client_id",
    "apple_music_team_id",
    "apple_music_key_id",
    "apple_music_private_key",
    "google_maps_api_key",
)
_SECRET_MARKERS = ("secret", "key", "password", "url")


def _mask(field: str, value) -> str:
    if value is None or value == "":
        return "[dim]not set[/dim]"
    if any(marker in field for marker in _SECRET_MARKERS) and isinstance(value, str):
        return f"{value[:4]}****" if len(value) > 8 else "****"
    return str(value)


async def _with_shared_client(coro):
    try:
        return await coro
    finally:
        await close_http_client()


@app.command("providers")
def list_providers():
    """List registered providers and whether they are configured."""
    table = Table(title="Providers")
    table.add_column("Provider")
    table.add_column("Name")
    table.add_column("List")
    table.add_column("Configured")

    for provider, adapter_cls in PROVIDER_REGISTRY.items():
        config = settings.provider_config(provider)
        missing = config.missing_fields()
        configured = "yes" if not missing else f"no ({', '.join(missing)})"
        table.add_row(provider.value, adapter_cls.display_name, adapter_cls.list_name, configured)
    console.print(table)


@app.command("status")
def status(user_id: str = typer.Argument(..., help="User id")):
    """Show connection status of every provider for a user."""
    result = asyncio.run(_with_shared_client(get_integrations_service().all_statuses(user_id)))

    table = Table(title=f"Integrations for {user_id}")
    table.add_column("Provider")
    table.add_column("Connected")
    table.add_column("Last synced")
    table.add_column("Error")

    entries = list(result["top_integrations"])
    for group in result["integrations_by_list"].values():
        entries.extend(group)
    for entry in entries:
        table.add_row(
            entry["provider"],
            "[green]yes[/green]" if entry["connected"] else "no",
            str(entry.get("last_synced_at") or "-"),
            entry.get("error") or "",
        )
    console.print(table)
    console.print(f"{result['connected_integrations']}/{result['total_integrations']} connected")


@app.command("sync")
def sync(
    user_id: str = typer.Argument(..., help="User id"),
    provider: str = typer.Argument(..., help="Provider name, e.g. strava"),
):
    """Run a sync for one provider in the foreground."""
    service = get_integrations_service()
    try:
        result = asyncio.run(_with_shared_client(service.sync(provider, user_id)))
    except IntegrationException as e:
        console.print(f"[red]{e.error_code}[/red]: {e.message}")
        raise typer.Exit(code=1)

    details = result.details
    console.print(f"[green]Synced {provider}[/green] at {result.synced_at}")
    for key in ("fetched", "created", "updated", "unchanged", "skipped"):
        console.print(f"  {key}: {details.get(key, 0)}")
    if details.get("truncated"):
        console.print("[yellow]Page limit reached; the next sync resumes from the watermark.[/yellow]")


@app.command("sync-all")
def sync_all():
    """Sync every connected link."""
    result = asyncio.run(_with_shared_client(get_integrations_service().sync_all()))
    console.print(f"Synced {result['succeeded']}/{result['total']} links")
    for failure in result["failed"]:
        console.print(f"[red]{failure['provider']}[/red] {failure['user_id']}: {failure['error']}")
    if result["failed"]:
        raise typer.Exit(code=1)


@app.command("token")
def token(
    user_id: str = typer.Argument(..., help="User id placed in the sub claim"),
    minutes: Optional[int] = typer.Option(None, help="Lifetime in minutes"),
):
    """Issue an access token for calling the API as a user."""
    expires = timedelta(minutes=minutes) if minutes else None
    typer.echo(create_access_token(user_id, expires))


@app.command("check-env")
def check_env():
    """Print the effective configuration with secrets masked."""
    table = Table(title="Configuration")
    table.add_column("Setting")
    table.add_column("Value")
    for field in _ENV_FIELDS:
        table.add_row(field.upper(), _mask(field, getattr(settings, field)))
    console.print(table)
