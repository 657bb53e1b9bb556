"""Hookrelay CLI."""

import asyncio
import json
import logging
import subprocess
import uuid
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from hookrelay import __version__
from hookrelay.config import Settings, get_settings

app = typer.Typer(
    name="hookrelay",
    help="Hookrelay - Outbound webhook delivery pipeline",
    no_args_is_help=True,
)

console = Console()

# Subcommands
db_app = typer.Typer(help="Database management commands")
endpoint_app = typer.Typer(help="Subscriber endpoint commands")
queue_app = typer.Typer(help="Delivery queue commands")

app.add_typer(db_app, name="db")
app.add_typer(endpoint_app, name="endpoint")
app.add_typer(queue_app, name="queue")


def configure_logging(settings: Settings) -> None:
    """Configure the root logger from the configured log level."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def run_async(coro):
    """Run an async function synchronously, disposing the engine afterwards."""
    from hookrelay.db.session import close_engine

    async def runner():
        try:
            return await coro
        finally:
            await close_engine()

    return asyncio.run(runner())


@app.callback()
def main() -> None:
    """Hookrelay - Outbound webhook delivery pipeline."""
    configure_logging(get_settings())


@app.command()
def serve(
    api_only: bool = typer.Option(False, "--api-only", help="Run only the operations API"),
    worker_only: bool = typer.Option(False, "--worker-only", help="Run only the delivery worker"),
    shutdown_timeout: int = typer.Option(
        30, "--shutdown-timeout", help="Timeout for graceful shutdown in seconds"
    ),
):
    """Start the Hookrelay server."""
    import signal

    import uvicorn

    from hookrelay.main import create_app
    from hookrelay.webhook import DeliveryPipeline

    settings = get_settings()

    async def run_all():
        uvicorn_server: uvicorn.Server | None = None
        pipeline: DeliveryPipeline | None = None
        shutdown_event = asyncio.Event()

        async def graceful_shutdown(sig: signal.Signals | None = None) -> None:
            """Handle graceful shutdown of all components."""
            if sig:
                console.print(f"\n[yellow]Received {sig.name}, shutting down...[/yellow]")
            else:
                console.print("\n[yellow]Shutting down...[/yellow]")

            shutdown_event.set()

            if uvicorn_server is not None:
                uvicorn_server.should_exit = True
                console.print("[dim]Stopping API server...[/dim]")

            if pipeline is not None:
                console.print("[dim]Stopping delivery worker...[/dim]")
                try:
                    await asyncio.wait_for(pipeline.stop(), timeout=shutdown_timeout)
                except TimeoutError:
                    console.print("[red]Shutdown timed out, forcing exit[/red]")

            console.print("[green]Shutdown complete[/green]")

        loop = asyncio.get_running_loop()

        def signal_handler(sig: signal.Signals) -> None:
            """Handle OS signals."""
            loop.create_task(graceful_shutdown(sig))

        # Register signal handlers (Unix only)
        try:
            loop.add_signal_handler(signal.SIGTERM, lambda: signal_handler(signal.SIGTERM))
            loop.add_signal_handler(signal.SIGINT, lambda: signal_handler(signal.SIGINT))
        except NotImplementedError:
            pass

        tasks = []

        if not worker_only:
            config = uvicorn.Config(
                create_app(settings),
                host=settings.api_host,
                port=settings.api_port,
                log_level=settings.log_level.lower(),
            )
            uvicorn_server = uvicorn.Server(config)
            tasks.append(asyncio.create_task(uvicorn_server.serve()))
            console.print(
                f"[green]API server started on {settings.api_host}:{settings.api_port}[/green]"
            )

        if not api_only:
            pipeline = DeliveryPipeline(settings)
            pipeline.start()
            console.print(
                f"[green]Delivery worker started "
                f"({settings.worker_concurrency} consumers)[/green]"
            )

        if tasks:
            await asyncio.gather(*tasks)
        else:
            await shutdown_event.wait()

    try:
        run_async(run_all())
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")


@app.command()
def version():
    """Show version information."""
    console.print(f"Hookrelay version {__version__}")


@app.command()
def show_config():
    """Show current configuration."""
    settings = get_settings()

    table = Table(title="Hookrelay Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for field_name in type(settings).model_fields:
        value = getattr(settings, field_name)
        # Hide credentials embedded in URLs
        if field_name in ("database_url", "dlq_webhook_url") and value:
            value = _mask_url(str(value))
        table.add_row(field_name, str(value))

    console.print(table)


def _mask_url(url: str) -> str:
    """Replace the password of a URL with asterisks."""
    scheme, sep, rest = url.partition("://")
    if not sep or "@" not in rest:
        return url
    credentials, _, host = rest.rpartition("@")
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:********@{host}"


# Database commands


@db_app.command("upgrade")
def db_upgrade(
    revision: str = typer.Argument("head", help="Revision to upgrade to"),
):
    """Upgrade database to a revision."""
    _run_alembic("upgrade", revision)


@db_app.command("downgrade")
def db_downgrade(
    revision: str = typer.Argument(..., help="Revision to downgrade to"),
):
    """Downgrade database to a revision."""
    _run_alembic("downgrade", revision)


@db_app.command("current")
def db_current():
    """Show current database revision."""
    _run_alembic("current")


@db_app.command("history")
def db_history():
    """Show revision history."""
    _run_alembic("history")


def _run_alembic(*args):
    """Run alembic command."""
    project_dir = Path(__file__).parent.parent.parent
    alembic_ini = project_dir / "alembic.ini"

    if not alembic_ini.exists():
        console.print(f"[red]alembic.ini not found at {alembic_ini}[/red]")
        raise typer.Exit(1)

    cmd = ["alembic", "-c", str(alembic_ini), *args]
    result = subprocess.run(cmd, cwd=project_dir)
    if result.returncode != 0:
        raise typer.Exit(result.returncode)


# Endpoint commands


@endpoint_app.command("create")
def endpoint_create(
    tenant_id: uuid.UUID = typer.Argument(..., help="Owning tenant ID"),
    url: str = typer.Argument(..., help="Destination URL"),
    events: list[str] = typer.Option(
        None, "--event", "-e", help="Event to subscribe to (repeatable, default: all)"
    ),
    secret: str = typer.Option(None, "--secret", help="Signing secret (default: generated)"),
):
    """Register a subscriber endpoint."""
    from hookrelay.db.session import async_session
    from hookrelay.webhook.registry import EndpointConfigError, create_endpoint

    settings = get_settings()

    async def create():
        async with async_session() as session:
            try:
                endpoint = await create_endpoint(
                    session,
                    tenant_id=tenant_id,
                    url=url,
                    events=events or None,
                    secret=secret,
                    allowed_hosts=settings.allowed_internal_hosts,
                )
            except EndpointConfigError as e:
                console.print(f"[red]{e}[/red]")
                raise typer.Exit(1) from e
            await session.commit()

            console.print(f"[green]Created endpoint {endpoint.id}[/green]")
            console.print(f"Secret: {endpoint.secret}")
            console.print("[yellow]Receivers need this secret to verify signatures.[/yellow]")

    run_async(create())


@endpoint_app.command("list")
def endpoint_list(
    tenant_id: uuid.UUID = typer.Option(None, "--tenant", "-t", help="Filter by tenant"),
):
    """List subscriber endpoints."""
    from sqlalchemy import select

    from hookrelay.db.models import WebhookEndpoint
    from hookrelay.db.session import async_session

    async def list_endpoints():
        async with async_session() as session:
            stmt = select(WebhookEndpoint).order_by(WebhookEndpoint.created_at)
            if tenant_id:
                stmt = stmt.where(WebhookEndpoint.tenant_id == tenant_id)
            result = await session.execute(stmt)
            endpoints = result.scalars().all()

            table = Table(title="Endpoints")
            table.add_column("ID", style="dim")
            table.add_column("Tenant", style="dim")
            table.add_column("URL", style="cyan")
            table.add_column("Events")
            table.add_column("Active")

            for endpoint in endpoints:
                table.add_row(
                    str(endpoint.id),
                    str(endpoint.tenant_id)[:8],
                    endpoint.url,
                    ", ".join(endpoint.events) if endpoint.events else "all",
                    "✓" if endpoint.is_active else "✗",
                )

            console.print(table)

    run_async(list_endpoints())


def _set_active(endpoint_id: uuid.UUID, is_active: bool) -> None:
    from hookrelay.db.session import async_session
    from hookrelay.webhook.registry import set_endpoint_active

    async def update():
        async with async_session() as session:
            endpoint = await set_endpoint_active(session, endpoint_id, is_active)
            if endpoint is None:
                console.print(f"[red]Endpoint {endpoint_id} not found[/red]")
                raise typer.Exit(1)
            await session.commit()

            state = "activated" if is_active else "deactivated"
            console.print(f"[green]Endpoint {endpoint_id} {state}[/green]")

    run_async(update())


@endpoint_app.command("deactivate")
def endpoint_deactivate(
    endpoint_id: uuid.UUID = typer.Argument(..., help="Endpoint ID"),
):
    """Stop deliveries to an endpoint."""
    _set_active(endpoint_id, False)


@endpoint_app.command("activate")
def endpoint_activate(
    endpoint_id: uuid.UUID = typer.Argument(..., help="Endpoint ID"),
):
    """Resume deliveries to an endpoint."""
    _set_active(endpoint_id, True)


@endpoint_app.command("rotate-secret")
def endpoint_rotate_secret(
    endpoint_id: uuid.UUID = typer.Argument(..., help="Endpoint ID"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """Generate a new signing secret for an endpoint."""
    from hookrelay.db.session import async_session
    from hookrelay.webhook.registry import rotate_secret

    if not force:
        confirm = typer.confirm(
            f"Rotate secret for {endpoint_id}? Receivers using the old secret will reject "
            "deliveries until updated."
        )
        if not confirm:
            raise typer.Abort()

    async def rotate():
        async with async_session() as session:
            new_secret = await rotate_secret(session, endpoint_id)
            if new_secret is None:
                console.print(f"[red]Endpoint {endpoint_id} not found[/red]")
                raise typer.Exit(1)
            await session.commit()

            console.print(f"[green]Rotated secret for {endpoint_id}[/green]")
            console.print(f"Secret: {new_secret}")

    run_async(rotate())


@endpoint_app.command("update")
def endpoint_update(
    endpoint_id: uuid.UUID = typer.Argument(..., help="Endpoint ID"),
    url: str = typer.Option(None, "--url", help="New destination URL"),
    events: list[str] = typer.Option(
        None, "--event", "-e", help="Replace the subscription list (repeatable)"
    ),
    all_events: bool = typer.Option(False, "--all-events", help="Subscribe to every event"),
):
    """Change an endpoint's URL or subscriptions."""
    from hookrelay.db.session import async_session
    from hookrelay.webhook.registry import EndpointConfigError, update_endpoint

    if url is None and not events and not all_events:
        console.print("[yellow]Nothing to update[/yellow]")
        raise typer.Exit(1)

    settings = get_settings()

    async def update():
        async with async_session() as session:
            try:
                endpoint = await update_endpoint(
                    session,
                    endpoint_id,
                    url=url,
                    events=[] if all_events else (events or None),
                    allowed_hosts=settings.allowed_internal_hosts,
                )
            except EndpointConfigError as e:
                console.print(f"[red]{e}[/red]")
                raise typer.Exit(1) from e
            if endpoint is None:
                console.print(f"[red]Endpoint {endpoint_id} not found[/red]")
                raise typer.Exit(1)
            await session.commit()

            console.print(f"[green]Updated endpoint {endpoint_id}[/green]")

    run_async(update())


@endpoint_app.command("delete")
def endpoint_delete(
    endpoint_id: uuid.UUID = typer.Argument(..., help="Endpoint ID"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """Delete an endpoint."""
    from hookrelay.db.session import async_session
    from hookrelay.webhook.registry import delete_endpoint

    if not force:
        confirm = typer.confirm(f"Delete endpoint {endpoint_id}?")
        if not confirm:
            raise typer.Abort()

    async def delete():
        async with async_session() as session:
            if not await delete_endpoint(session, endpoint_id):
                console.print(f"[red]Endpoint {endpoint_id} not found[/red]")
                raise typer.Exit(1)
            await session.commit()

            console.print(f"[green]Deleted endpoint {endpoint_id}[/green]")

    run_async(delete())


@endpoint_app.command("test")
def endpoint_test(
    endpoint_id: uuid.UUID = typer.Argument(..., help="Endpoint ID"),
):
    """Send a signed webhook.test event to an endpoint."""
    from hookrelay.db.session import get_async_session_factory
    from hookrelay.webhook import DeliveryExecutor, DeliveryLogWriter, SqlEndpointRegistry

    settings = get_settings()

    async def send():
        session_factory = get_async_session_factory()
        registry = SqlEndpointRegistry(session_factory)
        endpoint = await registry.get_endpoint(endpoint_id)
        if endpoint is None:
            console.print(f"[red]Endpoint {endpoint_id} not found[/red]")
            raise typer.Exit(1)

        executor = DeliveryExecutor(registry, DeliveryLogWriter(session_factory), settings)
        try:
            result = await executor.send_test(endpoint)
        finally:
            await executor.aclose()

        if result.success:
            console.print(
                f"[green]Delivered (HTTP {result.status_code}) "
                f"in {result.response_time_ms}ms[/green]"
            )
        else:
            console.print(f"[red]Failed: {result.error}[/red]")
            raise typer.Exit(1)

    run_async(send())


# Dispatch


@app.command()
def dispatch(
    tenant_id: uuid.UUID = typer.Argument(..., help="Tenant ID"),
    event_type: str = typer.Argument(..., help="Event name, e.g. email.sent"),
    data: str = typer.Option("{}", "--data", "-d", help="Event payload as a JSON object"),
):
    """Enqueue an event for every subscribed endpoint of a tenant."""
    from hookrelay.db.enums import WebhookEvent
    from hookrelay.webhook import DeliveryPipeline

    try:
        WebhookEvent(event_type)
    except ValueError as e:
        console.print(f"[red]Unknown event type: {event_type}[/red]")
        raise typer.Exit(1) from e

    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid JSON payload: {e}[/red]")
        raise typer.Exit(1) from e
    if not isinstance(payload, dict):
        console.print("[red]Payload must be a JSON object[/red]")
        raise typer.Exit(1)

    settings = get_settings()

    async def run():
        pipeline = DeliveryPipeline(settings)
        count = await pipeline.dispatch(tenant_id, event_type, payload)
        console.print(f"[green]Enqueued {count} delivery job(s) for {event_type}[/green]")

    run_async(run())


# Queue commands


@queue_app.command("stats")
def queue_stats():
    """Show delivery job counts by state."""
    from hookrelay.db.session import get_async_session_factory
    from hookrelay.webhook import DeliveryQueue

    settings = get_settings()

    async def stats():
        queue = DeliveryQueue(get_async_session_factory(), settings)
        counts = await queue.counts()

        table = Table(title="Delivery Queue")
        table.add_column("State", style="cyan")
        table.add_column("Jobs", justify="right")
        for state in ("pending", "delayed", "active", "completed", "failed"):
            table.add_row(state, str(getattr(counts, state)))

        console.print(table)

    run_async(stats())


@queue_app.command("trim")
def queue_trim():
    """Delete finished job records beyond the retention limits."""
    from hookrelay.db.session import get_async_session_factory
    from hookrelay.webhook import DeliveryQueue

    settings = get_settings()

    async def trim():
        queue = DeliveryQueue(get_async_session_factory(), settings)
        recovered = await queue.recover_stalled()
        result = await queue.trim()
        console.print(
            f"[green]Deleted {result.completed_deleted} completed and "
            f"{result.failed_deleted} failed job records[/green]"
        )
        if recovered:
            console.print(f"[yellow]Returned {recovered} stalled job(s) to pending[/yellow]")

    run_async(trim())


if __name__ == "__main__":
    app()
