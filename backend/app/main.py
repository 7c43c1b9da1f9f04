"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import valuation, workflow
from app.config import CORS_ORIGINS, STALE_AFTER_DAYS
from app.services import Services, build_services

logger = logging.getLogger(__name__)


def _report_stale_district_bases(services: Services):
    """Log districts whose base value has not been revised within the threshold."""
    stale = [s for s in services.reference_store.stale_statuses(STALE_AFTER_DAYS) if s["is_stale"]]
    for s in stale:
        logger.warning(
            f"District base {s['key']} is stale: last updated {s['last_updated_at']} "
            f"({s['days_since_update']} days)"
        )
    if stale:
        logger.info(f"Startup check: {len(stale)} stale district base value(s)")


def create_app(services: Services | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan: report stale reference data on startup."""
        _report_stale_district_bases(app.state.services)
        yield

    app = FastAPI(
        title="Land Valuation & Master Data Service",
        description="Market value computation and four-level master-data approval",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services or build_services()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(valuation.router, prefix="/api/valuation", tags=["Valuation"])
    app.include_router(workflow.router, prefix="/api/workflow", tags=["Workflow"])

    @app.get("/api/health")
    async def health():
        return {"status": "operational", "service": "land-valuation"}

    return app


app = create_app()
