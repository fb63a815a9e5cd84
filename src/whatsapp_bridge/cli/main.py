"""
WhatsApp Bridge CLI

Command-line interface for WhatsApp bridge administration.

Commands:
- init-db: Create missing tables
- bind-tenant: Register a tenant's QR or Cloud backend
- unbind-tenant: Deactivate a tenant's backend binding
- set-webhook: Configure a tenant's webhook URLs
- force-check: Poll a tenant's backends now and deliver any change
- send: Send a message through a tenant's backend
- conversation: Show the unified conversation with a contact
- contacts: List contacts with stored messages
- replay-failed: Re-deliver webhooks from the failed-delivery stream
"""

import asyncio
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from basecore.logging import setup_logging
from basecore.settings import get_settings
from whatsapp_bridge.contracts.event_types import BackendKind
from whatsapp_bridge.errors import ConfigurationError

app = typer.Typer(
    name="whatsapp-bridge",
    help="WhatsApp Bridge CLI",
)

console = Console()


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    setup_logging("DEBUG" if verbose else None)


def get_db():
    """Get database session."""
    from basecore.db import get_db as _get_db
    return next(_get_db())


def get_redis():
    """Get Redis client."""
    from basecore.redis import get_redis_client
    return get_redis_client()


def parse_backend(value: str) -> BackendKind:
    try:
        return BackendKind(value.lower())
    except ValueError:
        rprint(f"[red]Unknown backend: {value} (expected qr or cloud)[/red]")
        raise typer.Exit(1)


@app.command()
def init_db():
    """Create the bridge tables if they do not exist."""
    from basecore.db import init_db as _init_db

    _init_db()
    rprint("[green]Database tables ready[/green]")


@app.command()
def bind_tenant(
    tenant_id: int = typer.Argument(..., help="Tenant ID"),
    tenant_name: str = typer.Argument(..., help="Tenant display name (sent as userName)"),
    backend: str = typer.Option("qr", help="Backend kind (qr or cloud)"),
    phone_number_id: Optional[str] = typer.Option(None, help="Phone number ID (cloud)"),
    waba_id: Optional[str] = typer.Option(None, help="WhatsApp Business Account ID (cloud)"),
    access_token: Optional[str] = typer.Option(None, help="Access token (cloud, will be encrypted)"),
    instance_name: Optional[str] = typer.Option(None, help="Evolution instance name (qr)"),
    api_url: Optional[str] = typer.Option(None, help="Evolution API base URL (qr)"),
    api_key: Optional[str] = typer.Option(None, help="Evolution API key (qr, will be encrypted)"),
    display_number: Optional[str] = typer.Option(None, help="Display phone number (e.g., +5511999999999)"),
):
    """
    Register a tenant's WhatsApp backend.

    The phone_number_id (cloud) or instance_name (qr) routes incoming
    callbacks to the tenant. Binding an existing tenant backend replaces its
    configuration.
    """
    from whatsapp_bridge.persistence.repo import BridgeRepository
    from whatsapp_bridge.providers.evolution import EvolutionConfig
    from whatsapp_bridge.providers.meta_cloud import CloudConfig
    from whatsapp_bridge.routing.tenant_resolver import encrypt_secret

    backend_kind = parse_backend(backend)

    try:
        if backend_kind == BackendKind.CLOUD:
            CloudConfig(phone_number_id=phone_number_id or "", access_token=access_token or "").validate()
        else:
            EvolutionConfig(api_url=api_url or "", api_key=api_key or "", instance_name=instance_name or "").validate()
    except ConfigurationError as e:
        rprint(f"[red]{e}[/red]")
        raise typer.Exit(1)

    encryption_key = get_settings().BRIDGE_ENCRYPTION_KEY
    if not encryption_key:
        rprint("[yellow]Warning: BRIDGE_ENCRYPTION_KEY not set, storing credentials unencrypted[/yellow]")

    db = get_db()

    try:
        repo = BridgeRepository(db)

        # Route keys are unique across tenants
        if backend_kind == BackendKind.CLOUD:
            existing = repo.get_binding_by_phone_number_id(phone_number_id)
        else:
            existing = repo.get_binding_by_instance_name(instance_name)
        if existing and existing.tenant_id != tenant_id:
            rprint("[yellow]Route key already bound to another tenant[/yellow]")
            rprint(f"  Tenant: {existing.tenant_id}")
            raise typer.Exit(1)

        binding = repo.upsert_binding(
            tenant_id=tenant_id,
            backend_kind=backend_kind,
            tenant_name=tenant_name,
            phone_number_id=phone_number_id if backend_kind == BackendKind.CLOUD else None,
            waba_id=waba_id if backend_kind == BackendKind.CLOUD else None,
            access_token_encrypted=encrypt_secret(access_token, encryption_key)
            if backend_kind == BackendKind.CLOUD
            else None,
            instance_name=instance_name if backend_kind == BackendKind.QR else None,
            api_url=api_url if backend_kind == BackendKind.QR else None,
            api_key_encrypted=encrypt_secret(api_key, encryption_key) if backend_kind == BackendKind.QR else None,
            display_number=display_number,
        )
        db.commit()

        rprint("[green]Successfully saved binding:[/green]")
        rprint(f"  ID: {binding.id}")
        rprint(f"  Tenant: {binding.tenant_id} ({binding.tenant_name})")
        rprint(f"  Backend: {binding.backend_kind}")
        if backend_kind == BackendKind.CLOUD:
            rprint(f"  Phone Number ID: {binding.phone_number_id}")
        else:
            rprint(f"  Instance Name: {binding.instance_name}")
            rprint(f"  API URL: {binding.api_url}")

    finally:
        db.close()


@app.command()
def unbind_tenant(
    tenant_id: int = typer.Argument(..., help="Tenant ID"),
    backend: str = typer.Argument(..., help="Backend kind (qr or cloud)"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """
    Deactivate a tenant's backend binding.

    The binding is kept for audit purposes; running processes pick the
    change up on their next settings refresh.
    """
    from whatsapp_bridge.persistence.repo import BridgeRepository

    backend_kind = parse_backend(backend)
    db = get_db()

    try:
        repo = BridgeRepository(db)
        binding = repo.get_binding(tenant_id, backend_kind)

        if not binding:
            rprint(f"[red]No {backend_kind.value} binding found for tenant {tenant_id}[/red]")
            raise typer.Exit(1)

        if not binding.is_active:
            rprint("[yellow]Binding is already inactive[/yellow]")
            raise typer.Exit(0)

        if not force:
            confirm = typer.confirm(f"Deactivate {backend_kind.value} binding for tenant {tenant_id}?")
            if not confirm:
                rprint("[yellow]Cancelled[/yellow]")
                raise typer.Exit(0)

        repo.deactivate_binding(tenant_id, backend_kind)
        db.commit()

        rprint("[green]Binding deactivated successfully[/green]")

    finally:
        db.close()


@app.command()
def set_webhook(
    tenant_id: int = typer.Argument(..., help="Tenant ID"),
    general_url: Optional[str] = typer.Option(None, help="URL for every event"),
    cloud_url: Optional[str] = typer.Option(None, help="Override URL for cloud events"),
):
    """Configure the tenant's webhook URLs. Omitted URLs are cleared."""
    from whatsapp_bridge.persistence.repo import BridgeRepository

    db = get_db()

    try:
        endpoint = BridgeRepository(db).set_webhook_endpoint(tenant_id, general_url, cloud_url)
        db.commit()

        rprint(f"[green]Webhook URLs saved for tenant {tenant_id}[/green]")
        rprint(f"  General: {endpoint.general_url or '-'}")
        rprint(f"  Cloud: {endpoint.cloud_url or '-'}")

    finally:
        db.close()


@app.command()
def force_check(
    tenant_id: int = typer.Argument(..., help="Tenant ID"),
):
    """
    Poll every backend of a tenant now.

    This process has no prior state, so the current state of each backend
    is announced to the tenant webhook.
    """
    from whatsapp_bridge.service.runtime import BridgeRuntime

    async def check():
        runtime = BridgeRuntime.build(schedule_polling=False)
        try:
            return await runtime.force_check(tenant_id)
        finally:
            await runtime.shutdown()

    outcomes = asyncio.run(check())

    if not outcomes:
        rprint(f"[red]Tenant {tenant_id} has no active backend[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Connection check for tenant {tenant_id}")
    table.add_column("Backend")
    table.add_column("State")
    table.add_column("Event")
    table.add_column("Error", style="dim")

    for outcome in outcomes:
        table.add_row(
            outcome.backend_kind.value,
            outcome.state.value,
            outcome.event.event_type.value if outcome.event else "-",
            outcome.error or "-",
        )

    console.print(table)


@app.command()
def send(
    tenant_id: int = typer.Argument(..., help="Tenant ID"),
    to: str = typer.Argument(..., help="Recipient phone number"),
    text: str = typer.Option("Hello from WhatsApp Bridge!", help="Message text"),
    backend: str = typer.Option("qr", help="Backend kind (qr or cloud)"),
):
    """Send a text message through the tenant's backend and record it."""
    from whatsapp_bridge.service.runtime import BridgeRuntime

    backend_kind = parse_backend(backend)

    async def deliver():
        runtime = BridgeRuntime.build(schedule_polling=False)
        try:
            return await runtime.outbound.send_message(tenant_id, backend_kind, to, text)
        finally:
            await runtime.shutdown()

    outcome = asyncio.run(deliver())

    if outcome.sent:
        rprint("[green]Message sent successfully![/green]")
        rprint(f"  Message ID: {outcome.message_id}")
        rprint(f"  Provider Message ID: {outcome.provider_message_id}")
    else:
        rprint("[red]Failed to send message[/red]")
        rprint(f"  Error: {outcome.error}")
        if outcome.error_code:
            rprint(f"  Code: {outcome.error_code}")
        raise typer.Exit(1)


@app.command()
def conversation(
    tenant_id: int = typer.Argument(..., help="Tenant ID"),
    contact_id: str = typer.Argument(..., help="Contact phone number"),
):
    """Show the conversation with a contact across both backends, oldest first."""
    from whatsapp_bridge.routing.conversation import ConversationResolver

    entries = ConversationResolver().get_conversation(tenant_id, contact_id)

    if not entries:
        rprint("[yellow]No messages found[/yellow]")
        raise typer.Exit(0)

    table = Table(title=f"Conversation {tenant_id} / {contact_id}")
    table.add_column("Time", style="dim")
    table.add_column("Backend")
    table.add_column("Dir")
    table.add_column("Type")
    table.add_column("Body")
    table.add_column("Status")

    for entry in entries:
        table.add_row(
            entry.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            entry.backend_kind.value,
            "<-" if entry.direction.value == "inbound" else "->",
            entry.message_type.value,
            (entry.body or "")[:60],
            entry.delivery_status.value,
        )

    console.print(table)


@app.command()
def contacts(
    tenant_id: int = typer.Argument(..., help="Tenant ID"),
    limit: int = typer.Option(20, help="Maximum number of contacts to show"),
):
    """List contacts with stored messages, most recent first."""
    from whatsapp_bridge.routing.conversation import ConversationResolver

    summaries = ConversationResolver().list_contacts(tenant_id, limit=limit)

    if not summaries:
        rprint("[yellow]No contacts found[/yellow]")
        raise typer.Exit(0)

    table = Table(title=f"Contacts for tenant {tenant_id}")
    table.add_column("Contact")
    table.add_column("Last Message", style="dim")
    table.add_column("Messages", justify="right")

    for summary in summaries:
        table.add_row(
            summary.contact_id,
            summary.last_message_at.strftime("%Y-%m-%d %H:%M:%S"),
            str(summary.message_count),
        )

    console.print(table)


@app.command()
def replay_failed(
    tenant_id: Optional[int] = typer.Option(None, help="Only replay this tenant's deliveries"),
    limit: int = typer.Option(100, help="Maximum entries to replay"),
    dry_run: bool = typer.Option(False, "--dry-run", help="List entries without replaying"),
):
    """
    Re-deliver webhooks from the failed-delivery stream.

    URLs are resolved from the tenant's current settings. Delivered entries
    are removed from the stream; entries that fail again are kept.
    """
    from whatsapp_bridge.dispatch.dispatcher import WebhookDispatcher
    from whatsapp_bridge.routing.tenant_settings import SettingsCache, SqlSettingsSource
    from whatsapp_bridge.streams.consumer import FailedDeliveryReader

    redis_client = get_redis()
    if redis_client is None:
        rprint("[red]REDIS_URL is not configured[/red]")
        raise typer.Exit(1)

    reader = FailedDeliveryReader(redis_client)
    failures = reader.read(count=limit, tenant_id=tenant_id)

    if not failures:
        rprint("[green]No failed deliveries[/green]")
        raise typer.Exit(0)

    table = Table(title="Failed Deliveries")
    table.add_column("Stream ID", style="dim")
    table.add_column("Tenant")
    table.add_column("Event")
    table.add_column("URL")
    table.add_column("Error")
    table.add_column("Failed At", style="dim")

    for failure in failures:
        table.add_row(
            failure.stream_id,
            str(failure.event.tenant_id),
            failure.event.event_type.value,
            failure.url,
            failure.error[:50],
            failure.failed_at,
        )

    console.print(table)

    if dry_run:
        raise typer.Exit(0)

    async def replay():
        settings_cache = SettingsCache(SqlSettingsSource(encryption_key=get_settings().BRIDGE_ENCRYPTION_KEY))
        dispatcher = WebhookDispatcher(settings_cache)
        delivered = 0
        try:
            for failure in failures:
                outcome = await dispatcher.dispatch(failure.event, record_failure=False)
                if outcome.delivered:
                    reader.remove(failure.stream_id)
                    delivered += 1
                else:
                    rprint(f"[yellow]Still failing: {failure.stream_id} ({outcome.error})[/yellow]")
        finally:
            await dispatcher.close()
        return delivered

    delivered = asyncio.run(replay())
    rprint(f"[green]Replayed {delivered}/{len(failures)} deliveries[/green]")


@app.command()
def failed_stats():
    """Show failed-delivery stream statistics."""
    from whatsapp_bridge.streams.consumer import FailedDeliveryReader

    redis_client = get_redis()
    if redis_client is None:
        rprint("[red]REDIS_URL is not configured[/red]")
        raise typer.Exit(1)

    reader = FailedDeliveryReader(redis_client)
    summary = reader.summary()
    rprint(f"\n[cyan]Stream: {reader.stream_name}[/cyan]")
    rprint(f"  Length: {summary['length']}")
    rprint(f"  Oldest: {summary['oldest_id'] or '-'}")
    rprint(f"  Newest: {summary['newest_id'] or '-'}")


if __name__ == "__main__":
    app()
