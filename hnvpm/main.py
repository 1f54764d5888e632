"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hnvpm.config import get_settings
from hnvpm.database import SessionLocal, init_db
from hnvpm.errors import register_error_handlers
from hnvpm.logging_config import configure_logging
from hnvpm.middleware.request_log import RequestLogMiddleware
from hnvpm.seed import seed_defaults
from hnvpm.utils.scheduler_service import scheduler
from hnvpm.auth.routes import router as auth_router
from hnvpm.modules.subscriptions.routes import router as subscriptions_router
from hnvpm.modules.subscriptions.billing_routes import router as billing_router
from hnvpm.modules.superadmin.routes import router as super_admin_router
from hnvpm.modules.properties.routes import router as properties_router
from hnvpm.modules.tenants.routes import router as tenants_router, lease_router
from hnvpm.modules.payments.routes import router as payments_router
from hnvpm.modules.maintenance.routes import router as maintenance_router
from hnvpm.modules.expenses.routes import router as expenses_router
from hnvpm.modules.organizations.routes import router as organization_router
from hnvpm.dashboards.routes import router as dashboard_router
from hnvpm.utils.export_service import router as export_router

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Startup ---
    configure_logging(settings.LOG_LEVEL)
    init_db()
    if settings.SEED_DEFAULTS:
        db = SessionLocal()
        try:
            seed_defaults(db)
        finally:
            db.close()
    if settings.SCHEDULER_ENABLED:
        scheduler.start()
    logger.info("Application startup complete.")

    yield

    # --- Shutdown ---
    scheduler.stop()
    logger.info("Application shutdown complete.")


app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, lifespan=lifespan)

app.add_middleware(RequestLogMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)

app.include_router(auth_router)
app.include_router(subscriptions_router)
app.include_router(billing_router)
app.include_router(super_admin_router)
app.include_router(properties_router)
app.include_router(tenants_router)
app.include_router(lease_router)
app.include_router(payments_router)
app.include_router(maintenance_router)
app.include_router(expenses_router)
app.include_router(organization_router)
app.include_router(dashboard_router)
app.include_router(export_router)


# --- Health Check ---
@app.get("/api/health")
def health_check():
    return {"status": "healthy", "version": settings.APP_VERSION}


def main() -> None:
    uvicorn.run(
        "hnvpm.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.ENV == "dev",
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
