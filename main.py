import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from accounts import auth_router, ensure_admin_user, users_router
from cashfree import CashfreeClient
from catalog import products_router, reviews_router
from database import Database, get_db
from errors import install_error_handlers
from orders import router as orders_router
from payments import router as payments_router
from settings import Settings, configure_logging
from support import contact_router, stats_router

logger = logging.getLogger(__name__)


def bootstrap(db: Database, settings: Settings):
    try:
        db.ensure_indexes()
        ensure_admin_user(db, settings)
    except PyMongoError as exc:
        logger.error("Startup bootstrap failed: %s", exc)


def create_app(settings: Settings | None = None, db: Database | None = None, provider=None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    if settings.uses_fallback_secret:
        logger.warning("auth.fallback_secret JWT_SECRET is not set; tokens are signed with the built-in secret")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        bootstrap(app.state.db, settings)
        yield
        app.state.db.close()

    app = FastAPI(title="Marketplace API", version="3.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db or Database.connect(settings.database_url, settings.database_name)
    app.state.provider = provider or CashfreeClient.from_settings(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app, development=settings.is_development)

    for router in (
        auth_router,
        users_router,
        products_router,
        reviews_router,
        orders_router,
        payments_router,
        contact_router,
        stats_router,
    ):
        app.include_router(router)

    @app.get("/")
    def read_root():
        return {"name": "Marketplace API", "status": "ok"}

    @app.get("/health")
    def health():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/api/health")
    def api_health(db: Database = Depends(get_db)):
        try:
            count = db["user"].count_documents({})
        except PyMongoError as exc:
            logger.error("/api/health error: %s", exc)
            return JSONResponse(status_code=500, content={"status": "error", "error": str(exc)})
        return {"status": "ok", "dbUsers": count, "timestamp": datetime.now(timezone.utc).isoformat()}

    return app


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=port)
