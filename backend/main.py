import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from crm_migrator.api.endpoints import analysis, migration
from crm_migrator.core.auth import enforce_basic_auth_for_request
from crm_migrator.core.database import Base, engine
from crm_migrator.core.settings import settings
from crm_migrator.models import contact, interaction, opportunity, organization  # noqa: F401  registers tables
from crm_migrator.services.migration_controller import get_controller

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="CRM Workbook Migration API")

# Configure CORS
origins = settings.resolved_cors_origins()
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.on_event("startup")
def startup() -> None:
    if settings.basic_auth_enabled and (settings.basic_auth_username is None or settings.basic_auth_password is None):
        raise RuntimeError("Basic Auth is enabled but BASIC_AUTH_USERNAME/BASIC_AUTH_PASSWORD are not set")
    if settings.db_auto_create:
        Base.metadata.create_all(bind=engine)
    logger.info("app.startup env=%s db_auto_create=%s", settings.environment, settings.db_auto_create)


@app.on_event("shutdown")
async def shutdown() -> None:
    await get_controller().shutdown()


@app.middleware("http")
async def basic_auth_middleware(request: Request, call_next):
    if request.method == "OPTIONS":
        return await call_next(request)

    try:
        enforce_basic_auth_for_request(request)
    except HTTPException as exc:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=exc.headers,
        )

    return await call_next(request)


# API Routes
app.include_router(migration.router, prefix="/api", tags=["migration"])
app.include_router(analysis.router, prefix="/api", tags=["analysis"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
