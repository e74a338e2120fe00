"""
FastAPI application: routes plus the lifespan that builds and tears down
the metadata store pool, the tenant connection registry and the Helius client.
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from chainindex import __version__
from chainindex.core.config import Settings, get_settings
from chainindex.core.db.pool import close_pool, init_pool
from chainindex.core.db.store import MetadataStore
from chainindex.core.logger import setup_logger
from chainindex.helius.client import HeliusClient
from chainindex.indexing.lifecycle import JobLifecycle
from chainindex.indexing.router import IngestionRouter
from chainindex.indexing.subscription import SubscriptionManager
from chainindex.server.api import router as api_router, webhook_router
from chainindex.server.middleware import request_logging_middleware
from chainindex.tenant.provisioner import SchemaProvisioner
from chainindex.tenant.registry import ConnectionRegistry

logger = setup_logger(__name__, include_location=True)


def wire_components(app: FastAPI, settings: Settings, store, registry, helius) -> None:
    """Build the indexing components and attach them to ``app.state``."""
    provisioner = SchemaProvisioner(registry)
    subscriptions = SubscriptionManager(helius, settings, store=store)
    app.state.settings = settings
    app.state.store = store
    app.state.registry = registry
    app.state.helius = helius
    app.state.provisioner = provisioner
    app.state.subscriptions = subscriptions
    app.state.lifecycle = JobLifecycle(store, provisioner, subscriptions)
    app.state.ingestion_router = IngestionRouter(store, registry, settings.webhook_secret)


def _build_lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        pool = await init_pool(settings.metadata_conn_string)
        store = MetadataStore(pool)
        if settings.schema_validate:
            await store.ensure_schema()
        registry = ConnectionRegistry.from_settings(settings)
        helius = HeliusClient.from_settings(settings)
        wire_components(app, settings, store, registry, helius)
        logger.info(f"chainindex {__version__} ready, webhooks at {settings.webhook_base_url}")
        try:
            yield
        finally:
            await registry.shutdown()
            await helius.aclose()
            await close_pool()
            logger.info("chainindex stopped")

    return lifespan


def _create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Assemble the app; without settings no lifespan runs and ``app.state`` must be wired by the caller."""
    app = FastAPI(
        title="chainindex",
        version=__version__,
        lifespan=_build_lifespan(settings) if settings is not None else None,
    )
    app.middleware("http")(request_logging_middleware)
    app.include_router(api_router, prefix="/api")
    app.include_router(webhook_router)
    return app


def create_app() -> FastAPI:
    import chainindex.core.config as core_config
    core_config._settings = None
    core_config._ENV_LOADED = False

    settings = get_settings(reload=True)
    return _create_app(settings)
