import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError, ProgrammingError

from gamefeed.api.v1.activity import router as activity_router
from gamefeed.api.v1.friends import router as friends_router
from gamefeed.api.v1.interactions import router as interactions_router
from gamefeed.api.v1.library import router as library_router
from gamefeed.api.v1.profiles import router as profiles_router
from gamefeed.api.v1.realtime import router as realtime_router
from gamefeed.core.errors import CooldownActive, EngineError, TransientStoreError
from gamefeed.core.logging import configure_logging
from gamefeed.core.settings import settings
from gamefeed.realtime import capture  # noqa: F401  (registers session listeners)

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.PROJECT_NAME)

# Local dev: allow Vite dev server to call the API.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(err: EngineError) -> JSONResponse:
    headers = None
    if isinstance(err, CooldownActive) and err.retry_after:
        headers = {"Retry-After": str(err.retry_after)}
    return JSONResponse(
        status_code=err.status_code,
        content={"detail": err.detail, "code": err.code},
        headers=headers,
    )


@app.exception_handler(EngineError)
async def engine_error_handler(_request: Request, exc: EngineError):
    return _error_response(exc)


@app.exception_handler(OperationalError)
@app.exception_handler(InterfaceError)
@app.exception_handler(DisconnectionError)
async def transient_db_error_handler(_request: Request, exc: Exception):
    logger.warning("Store unavailable: %s", exc)
    return _error_response(TransientStoreError())


@app.exception_handler(ProgrammingError)
async def programming_error_handler(_request: Request, exc: ProgrammingError):
    # Missing tables usually mean migrations haven't been applied yet.
    if "does not exist" in str(exc.orig):
        logger.error("Database schema is missing: %s", exc.orig)
        return _error_response(TransientStoreError("DB not migrated"))
    raise exc


app.include_router(
    profiles_router,
    prefix=settings.API_V1_STR,
    tags=["Profiles"],
)
app.include_router(
    friends_router,
    prefix=settings.API_V1_STR,
    tags=["Friends"],
)
app.include_router(
    activity_router,
    prefix=settings.API_V1_STR,
    tags=["Activity"],
)
app.include_router(
    interactions_router,
    prefix=settings.API_V1_STR,
    tags=["Interactions"],
)
app.include_router(
    library_router,
    prefix=settings.API_V1_STR,
    tags=["Library"],
)
app.include_router(
    realtime_router,
    prefix=settings.API_V1_STR,
    tags=["Realtime"],
)
