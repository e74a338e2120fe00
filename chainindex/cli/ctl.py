import asyncio
import logging

import typer
import uvicorn

from chainindex.core.config import get_settings
from chainindex.core.logger import setup_logger

logger = setup_logger(__name__, include_location=True)

cli_app = typer.Typer()

server_app = typer.Typer()
cli_app.add_typer(server_app, name="server")

# Metadata store management
db_app = typer.Typer()
cli_app.add_typer(db_app, name="db")

# Tenant database utilities
connection_app = typer.Typer()
cli_app.add_typer(connection_app, name="connection")


def _reset_settings():
    import chainindex.core.config as core_config
    core_config._settings = None
    core_config._ENV_LOADED = False
    return get_settings(reload=True)


@server_app.command("start")
def start_server(
    host: str = typer.Option(None, "--host", help="Bind host (default: CHAININDEX_HOST)"),
    port: int = typer.Option(None, "--port", help="Bind port (default: CHAININDEX_PORT)"),
):
    """
    Start the chainindex API server using settings loaded from environment.
    """
    settings = _reset_settings()
    host = host or settings.host
    port = port or settings.port

    logging.basicConfig(
        format='[%(levelname)s] %(asctime)s,%(msecs)03d (%(name)s:%(funcName)s:%(lineno)d) - %(message)s',
        datefmt='%Y-%m-%dT%H:%M:%S',
        level=logging.DEBUG if settings.debug else logging.INFO
    )
    debug_status = "enabled" if settings.debug else "disabled"
    logger.info(f"Starting chainindex API server at http://{host}:{port} (Debug {debug_status})")

    from chainindex.server.app import _create_app
    uvicorn.run(
        _create_app(settings),
        host=host,
        port=port,
        log_level="debug" if settings.debug else "info",
    )


@db_app.command("init")
def db_init():
    """Create the metadata tables (connections, jobs, logs) if they do not exist."""
    settings = _reset_settings()

    async def _init_db():
        from chainindex.core.db.pool import init_pool, close_pool
        from chainindex.core.db.store import MetadataStore
        pool = await init_pool(settings.metadata_conn_string, min_size=1, max_size=1)
        try:
            await MetadataStore(pool).ensure_schema()
        finally:
            await close_pool()

    try:
        asyncio.run(_init_db())
    except Exception as e:
        logger.error(f"Error initializing metadata schema: {e}")
        raise typer.Exit(code=1)
    typer.echo("Metadata schema initialized")


@connection_app.command("probe")
def connection_probe(
    host: str = typer.Option(..., "--host", help="Database host"),
    port: int = typer.Option(5432, "--port", help="Database port"),
    database: str = typer.Option(..., "--database", "-d", help="Database name"),
    username: str = typer.Option(..., "--username", "-U", help="Database user"),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True, help="Database password"),
    timeout: float = typer.Option(5.0, "--timeout", help="Probe timeout in seconds"),
):
    """
    Check that a tenant database is reachable with the given credentials.

    Does not require the server environment; exits 1 when the probe fails.
    """
    from chainindex.core.models import TenantConnection
    from chainindex.tenant.registry import ConnectionRegistry

    connection = TenantConnection(
        id="cli-probe",
        host=host,
        port=port,
        database=database,
        username=username,
        password=password,
    )
    reachable = asyncio.run(ConnectionRegistry(probe_timeout=timeout).probe(connection, timeout=timeout))
    if not reachable:
        typer.echo(f"Connection to {connection.describe()} failed")
        raise typer.Exit(code=1)
    typer.echo(f"Connection to {connection.describe()} succeeded")


if __name__ == "__main__":
    cli_app()
