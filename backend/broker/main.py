"""FastAPI application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from broker.api.routes import connections, maintenance, oauth, queue, runtime
from broker.config import get_settings
from broker.db.session import init_db, run_migrations

settings = get_settings()
logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Bring the schema up before serving."""
    if settings.run_migrations_on_startup:
        await asyncio.to_thread(run_migrations)
    await init_db()
    logger.info(f"{settings.app_name} {VERSION} ready")
    yield


app = FastAPI(
    title=settings.app_name,
    description="Tenant credential broker and provisioning queue",
    version=VERSION,
    lifespan=lifespan,
)

# Only the portal calls the browser-facing routes; everything else is server-to-server
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.site_url],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)

app.include_router(oauth.router, prefix="/oauth", tags=["OAuth"])
app.include_router(connections.router, prefix="/connections", tags=["Connections"])
app.include_router(maintenance.router, prefix="/maintenance", tags=["Maintenance"])
app.include_router(runtime.router, prefix="/runtime", tags=["Runtime"])
app.include_router(queue.router, prefix="/queue", tags=["Provisioning Queue"])


@app.get("/health")
async def health_check():
    """Liveness probe."""
    return {"status": "healthy", "version": VERSION}
