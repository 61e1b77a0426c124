"""CLI module for managing API keys via Typer.

Provides commands to issue, inspect, toggle and verify API keys using the
service layer. Uses Rich for terminal output.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Coroutine, List, Optional

from fastapi_presign._types import AuthenticatorFactory, IssuerFactory
from fastapi_presign.domain.entities import ApiKey
from fastapi_presign.domain.errors import PresignError

# Domain errors that should result in exit code 1
DomainErrors = (PresignError,)


def create_api_keys_cli(
    issuer_factory: IssuerFactory,
    authenticator_factory: Optional[AuthenticatorFactory] = None,
    app: Optional[Any] = None,
) -> Any:
    """Build a Typer CLI bound to an ApiKeyIssuer.

    Args:
        issuer_factory: Async context manager factory returning the issuer.
        authenticator_factory: Async context manager factory returning the
            authenticator. The ``verify`` command is only registered when given.
        app: Optional pre-configured Typer instance to extend.

    Returns:
        A configured Typer application with API key management commands.
    """
    typer = _import_typer()
    console = _import_console()

    cli = app or typer.Typer(
        help="Manage API keys.",
        no_args_is_help=True,
        pretty_exceptions_enable=False,
    )

    # --- Helpers ---

    def run_async(coro: Coroutine[Any, Any, Any]) -> Any:
        """Run an async coroutine synchronously."""
        try:
            return asyncio.run(coro)
        except RuntimeError:
            loop = asyncio.new_event_loop()
            try:
                return loop.run_until_complete(coro)
            finally:
                loop.close()

    def handle_errors(func: Callable[[], Coroutine[Any, Any, Any]]) -> None:
        """Execute async function with domain error handling."""
        try:
            run_async(func())
        except DomainErrors as exc:
            console.print(f"[red]Error:[/red] {exc}")
            raise typer.Exit(1) from exc

    # --- Commands ---

    @cli.command("create")
    def create_key(
        project_id: Optional[str] = typer.Option(None, "--project-id", "-p", help="Owning project; created if missing."),
        project_name: Optional[str] = typer.Option(None, "--project", "-n", help="Project name if it gets created."),
        scopes: Optional[str] = typer.Option(None, "--scopes", "-s", help="Comma-separated scopes."),
        prefix: str = typer.Option("sk_live", "--prefix", help="Key family: sk_live or sk_test."),
        allow: Optional[List[str]] = typer.Option(None, "--allow", "-a", help="Allowed IPv4 or CIDR (repeatable)."),
        inactive: bool = typer.Option(False, "--inactive/--active", help="Create as inactive."),
    ) -> None:
        """Create a new API key."""

        async def _run() -> None:
            async with issuer_factory() as issuer:
                entity, api_key = await issuer.issue(
                    project_id=project_id,
                    project_name=project_name,
                    scopes=parse_scopes(scopes),
                    prefix=prefix,
                    allowed_origins=allow or [],
                    is_active=not inactive,
                )

                console.print("[green]API key created successfully.[/green]\n")
                print_entity_detail(console, entity)
                console.print("\n[yellow]Plain secret (store securely, shown only once):[/yellow]")
                console.print(f"[bold cyan]{api_key}[/bold cyan]")

        handle_errors(_run)

    @cli.command("list")
    def list_keys(
        limit: int = typer.Option(20, "--limit", "-l", min=1, help="Max keys to show."),
        offset: int = typer.Option(0, "--offset", "-o", min=0, help="Skip first N keys."),
    ) -> None:
        """List API keys with pagination."""

        async def _run() -> None:
            async with issuer_factory() as issuer:
                items = await issuer.list(limit=limit, offset=offset)
                if not items:
                    console.print("[yellow]No API keys found.[/yellow]")
                    return
                print_keys_table(console, items, f"API Keys ({len(items)} shown)")

        handle_errors(_run)

    @cli.command("get")
    def get_key(
        ctx: typer.Context,
        id_: Optional[str] = typer.Argument(None, help="ID of the key."),
    ) -> None:
        """Get an API key by ID."""
        if id_ is None:
            typer.echo(ctx.get_help())
            raise typer.Exit(0)

        async def _run() -> None:
            async with issuer_factory() as issuer:
                entity = await issuer.get(id_)
                print_entity_detail(console, entity)

        handle_errors(_run)

    @cli.command("activate")
    def activate_key(
        ctx: typer.Context,
        id_: Optional[str] = typer.Argument(None, help="ID of the key to activate."),
    ) -> None:
        """Activate an API key."""
        if id_ is None:
            typer.echo(ctx.get_help())
            raise typer.Exit(0)

        async def _run() -> None:
            async with issuer_factory() as issuer:
                await issuer.activate(id_)
                console.print(f"[green]API key '{id_}' activated.[/green]")

        handle_errors(_run)

    @cli.command("deactivate")
    def deactivate_key(
        ctx: typer.Context,
        id_: Optional[str] = typer.Argument(None, help="ID of the key to deactivate."),
    ) -> None:
        """Deactivate an API key."""
        if id_ is None:
            typer.echo(ctx.get_help())
            raise typer.Exit(0)

        async def _run() -> None:
            async with issuer_factory() as issuer:
                await issuer.deactivate(id_)
                console.print(f"[green]API key '{id_}' deactivated.[/green]")

        handle_errors(_run)

    if authenticator_factory is not None:

        @cli.command("verify")
        def verify_key(
            ctx: typer.Context,
            api_key: Optional[str] = typer.Argument(None, help="Full API key string."),
            scopes: Optional[str] = typer.Option(None, "--scopes", "-s", help="Required scopes (comma-separated)."),
            origin: Optional[str] = typer.Option(None, "--origin", help="Client IPv4 to check against the allowlist."),
        ) -> None:
            """Verify an API key."""
            if api_key is None:
                typer.echo(ctx.get_help())
                raise typer.Exit(0)

            async def _run() -> None:
                async with authenticator_factory() as authenticator:
                    entity = await authenticator.authenticate(
                        api_key,
                        required_scopes=parse_scopes(scopes),
                        client_origin=origin,
                    )
                    console.print("[green]API key is valid.[/green]\n")
                    print_entity_detail(console, entity)

            handle_errors(_run)

    return cli


def main() -> None:  # pragma: no cover
    """Entry point of the ``presign-keys`` command, bound to the configured database."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

    from fastapi_presign.app import create_codec, origin_headers_of
    from fastapi_presign.config import get_settings
    from fastapi_presign.log import configure_logging
    from fastapi_presign.repositories.sql import (
        SqlAlchemyApiKeyRepository,
        SqlAlchemyProjectRepository,
        enable_sqlite_foreign_keys,
        ensure_tables,
    )
    from fastapi_presign.services.auth import KeyAuthenticator
    from fastapi_presign.services.keys import ApiKeyIssuer
    from fastapi_presign.services.projects import ProjectResolver

    settings = get_settings()
    configure_logging(settings.log_level, json=settings.log_json)
    codec = create_codec(settings)
    async_engine = create_async_engine(settings.database_url)
    enable_sqlite_foreign_keys(async_engine)
    async_session_maker = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)

    @asynccontextmanager
    async def session_scope() -> AsyncIterator[AsyncSession]:
        try:
            async with async_session_maker() as async_session:
                await ensure_tables(async_session)
                try:
                    yield async_session
                    await async_session.commit()
                except Exception:
                    await async_session.rollback()
                    raise
        finally:
            await async_engine.dispose()

    @asynccontextmanager
    async def issuer_factory() -> AsyncIterator[ApiKeyIssuer]:
        async with session_scope() as async_session:
            yield ApiKeyIssuer(
                repo=SqlAlchemyApiKeyRepository(async_session),
                projects=ProjectResolver(SqlAlchemyProjectRepository(async_session)),
                codec=codec,
            )

    @asynccontextmanager
    async def authenticator_factory() -> AsyncIterator[KeyAuthenticator]:
        async with session_scope() as async_session:
            yield KeyAuthenticator(
                repo=SqlAlchemyApiKeyRepository(async_session),
                codec=codec,
                origin_headers=origin_headers_of(settings),
                rrd=0,
            )
            # The usage update shares this session; let it land before commit.
            await KeyAuthenticator.drain()

    create_api_keys_cli(issuer_factory, authenticator_factory)()


# --- Utility Functions ---


def parse_scopes(value: Optional[str]) -> Optional[List[str]]:
    """Parse comma-separated scopes string."""
    if not value:
        return None
    return [s.strip() for s in value.split(",") if s.strip()]


def format_status(is_active: bool) -> str:
    """Format active status with color."""
    return "[green]Active[/green]" if is_active else "[red]Inactive[/red]"


def format_datetime(dt: Optional[datetime]) -> str:
    """Format datetime for display."""
    if dt is None:
        return "[dim]-[/dim]"
    return dt.strftime("%Y-%m-%d %H:%M")


def format_list(values: List[str]) -> str:
    return ", ".join(values) if values else "[dim]-[/dim]"


def print_keys_table(console: Any, entities: List[ApiKey], title: str) -> None:
    """Print a table of API keys."""
    Table = _import_table()
    table = Table(title=title, show_header=True, header_style="bold")

    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Public ID", style="white", no_wrap=True)
    table.add_column("Project", style="white", no_wrap=True)
    table.add_column("Status", justify="center")
    table.add_column("Scopes", style="dim", no_wrap=True)
    table.add_column("Last Used", justify="center")

    for entity in entities:
        table.add_row(
            entity.id_,
            f"{entity.prefix}_{entity.public_id}",
            entity.project_id,
            format_status(entity.is_active),
            format_list(list(entity.scope_set)),
            format_datetime(entity.last_used_at),
        )

    console.print(table)


def print_entity_detail(console: Any, entity: ApiKey) -> None:
    """Print detailed view of an API key."""
    Panel = _import_panel()

    lines = [
        f"[bold]ID:[/bold]          {entity.id_}",
        f"[bold]Public ID:[/bold]   {entity.prefix}_{entity.public_id}",
        f"[bold]Project:[/bold]     {entity.project_id}",
        f"[bold]Status:[/bold]      {format_status(entity.is_active)}",
        f"[bold]Scopes:[/bold]      {format_list(list(entity.scope_set))}",
        f"[bold]Origins:[/bold]     {format_list(list(entity.allowed_origins))}",
        f"[bold]Created:[/bold]     {format_datetime(entity.created_at)}",
        f"[bold]Last Used:[/bold]   {format_datetime(entity.last_used_at)}",
    ]

    panel = Panel("\n".join(lines), title="API Key Details", border_style="blue")
    console.print(panel)


def _import_typer() -> Any:
    """Import typer with helpful error message."""
    try:
        import typer
    except ImportError as exc:
        raise RuntimeError("Typer is required. Install with: pip install fastapi-presign[cli]") from exc
    return typer


def _import_console() -> Any:
    """Import Rich Console."""
    try:
        from rich.console import Console
    except ImportError as exc:
        raise RuntimeError("Rich is required. Install with: pip install fastapi-presign[cli]") from exc
    return Console()


def _import_table() -> Any:
    from rich.table import Table

    return Table


def _import_panel() -> Any:
    from rich.panel import Panel

    return Panel
