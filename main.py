# main.py - Point d'entrée FABQUOTE (API de devis de fabrication)
import uvicorn
import logging
import sys
import time
from datetime import datetime, timezone
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import get_settings
from core.errors import AppError, details_from_pydantic
from core.logging import setup_audit_logger
from core.rate_limit import RateLimitExceeded
from db.session import get_db, init_db
from routes.admin import router as admin_router
from routes.auth import router as auth_router
from routes.objects import router as objects_router
from routes.quotes import router as quotes_router

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
setup_audit_logger(log_file=settings.audit_log_file)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Gestionnaire de cycle de vie de l'application"""
    logger.info("=" * 50)
    logger.info("DEMARRAGE DE FABQUOTE (%s)", settings.environment)
    logger.info("=" * 50)
    try:
        init_db()
        logger.info("Base de données prête")
        logger.info("Stockage objet: %s", settings.storage_backend)
        yield
    except Exception as e:
        logger.error(f"Erreur critique au démarrage: {e}")
        raise
    finally:
        logger.info("Arrêt de FABQUOTE")


# === Gestion des erreurs ===

async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc.message)
    headers = None
    if isinstance(exc, RateLimitExceeded):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "details": details_from_pydantic(exc.errors())},
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    # Le détail reste dans les logs serveur
    logger.exception("Erreur non gérée sur %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app() -> FastAPI:
    app = FastAPI(
        title="FABQUOTE - Devis de fabrication",
        description="Demandes de devis d'usinage, fichiers CAO et suivi des commandes",
        version="1.0.0",
        lifespan=lifespan
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    @app.middleware("http")
    async def log_api_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        if request.url.path.startswith("/api"):
            duration_ms = (time.perf_counter() - start) * 1000
            logger.info(
                "%s %s %d in %dms",
                request.method, request.url.path, response.status_code, duration_ms,
            )
        return response

    app.include_router(auth_router)
    app.include_router(objects_router)
    app.include_router(quotes_router)
    app.include_router(admin_router)

    @app.get("/health")
    async def health_check(db: Session = Depends(get_db)):
        """Endpoint de contrôle de santé"""
        try:
            db.execute(text("SELECT 1"))
            database = "ok"
        except SQLAlchemyError as e:
            logger.error(f"Base de données indisponible: {e}")
            database = "error"
        return {
            "service": settings.app_name,
            "status": "active",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "database": database,
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8200, log_config=None)
