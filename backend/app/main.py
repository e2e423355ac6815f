from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import Settings, settings as default_settings
from app.core.database import Database
from app.api import api_router
from app.services.collectors import Collector
from app.services.geocoding import GeocodingService
from app.services.ingestion import IngestionOrchestrator
from app.services.listing_scraper import build_scrapers
from app.services.normalizer import RecordNormalizer
from app.services.places import GooglePlacesCollector

# Configure logging
logging.basicConfig(
    level=logging.INFO if default_settings.DEBUG else logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def build_collectors(settings: Settings) -> list[Collector]:
    """Every collector the ingestion endpoint can run."""
    return [
        *build_scrapers(settings),
        GooglePlacesCollector(settings.google_api_key, timeout=settings.HTTP_TIMEOUT_SECONDS),
    ]


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    geocoder=None,
    collectors: Optional[list[Collector]] = None,
) -> FastAPI:
    """
    Build the application.

    Collaborators not passed in are created from settings when the app
    starts. Tests pass a SQLite database, a fake geocoder and fake
    collectors.
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifecycle manager."""
        # Startup
        logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

        db = database or Database(settings.DATABASE_URL)
        if settings.AUTO_MIGRATE:
            db.migrate()

        normalizer = RecordNormalizer(
            google_api_key=settings.google_api_key,
            synthesize_missing_vacancy=settings.SYNTHESIZE_MISSING_VACANCY,
        )
        app.state.settings = settings
        app.state.database = db
        app.state.normalizer = normalizer
        app.state.geocoder = geocoder or GeocodingService(settings)
        app.state.orchestrator = IngestionOrchestrator(
            db,
            collectors if collectors is not None else build_collectors(settings),
            normalizer,
            geocoder=app.state.geocoder,
            market_vacancy_rate=settings.MARKET_VACANCY_RATE,
            collector_timeout=settings.COLLECTOR_TIMEOUT_SECONDS,
            default_radius_miles=settings.DEFAULT_RADIUS_MILES,
        )
        app.state.orchestrator.fail_stale_jobs()

        yield

        # Shutdown
        logger.info("Shutting down...")
        if database is None:
            db.dispose()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Retail property discovery ranked by upside score",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        body = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
        return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', []))}: {err.get('msg')}" for err in exc.errors()
        )
        return JSONResponse(status_code=400, content={"error": "Invalid request", "details": details})

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error(f"Database error on {request.method} {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Database error", "details": str(exc)})

    # Include API routes
    app.include_router(api_router, prefix="/api/v1")

    @app.get("/")
    def root():
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "status": "healthy"
        }

    @app.get("/health")
    def health_check(request: Request):
        """Detailed health check."""
        connected = request.app.state.database.check_connection()
        return JSONResponse(
            status_code=200 if connected else 503,
            content={
                "status": "healthy" if connected else "unhealthy",
                "database": "connected" if connected else "unavailable",
                "version": settings.APP_VERSION,
            },
        )

    return app


app = create_app()
