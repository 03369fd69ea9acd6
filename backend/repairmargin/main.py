import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from repairmargin.api.v1.analyses import router as analyses_router
from repairmargin.core.config import get_settings
from repairmargin.services.errors import (
    AnalysisError,
    ConflictError,
    ModelError,
    NotFoundError,
    ParsingError,
    ValidationError,
)

settings = get_settings()

logger = logging.getLogger(__name__)

app = FastAPI(
    title="RepairMargin API",
    version="0.1.0",
    docs_url="/docs" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.openapi_enabled else None,
)

# Most specific class first.
ERROR_STATUS: list[tuple[type[AnalysisError], int]] = [
    (ConflictError, 409),
    (ValidationError, 400),
    (NotFoundError, 404),
    (ParsingError, 422),
    (ModelError, 502),
]


@app.on_event("startup")
async def _startup_jobs():
    if settings.auto_create_tables:
        from repairmargin.core.dependencies import init_db

        init_db()
        logger.info("Database tables ensured")


if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["*"],
    )

app.include_router(analyses_router, prefix="/api/v1", tags=["analyses"])


def status_for(exc: AnalysisError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


@app.exception_handler(AnalysisError)
async def _analysis_error_handler(request: Request, exc: AnalysisError):
    status_code = status_for(exc)
    if status_code >= 500:
        logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    content = {"detail": exc.message, "error": type(exc).__name__}
    if exc.details and settings.expose_error_details:
        content["details"] = exc.details
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(StarletteHTTPException)
async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code >= 500 and not settings.expose_error_details:
        return JSONResponse(status_code=exc.status_code, content={"detail": "Internal server error"})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception")
    if settings.expose_error_details:
        return JSONResponse(status_code=500, content={"detail": str(exc)})
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    if not settings.security_headers_enabled:
        return response

    headers = response.headers
    if "X-Content-Type-Options" not in headers:
        headers["X-Content-Type-Options"] = "nosniff"
    if "X-Frame-Options" not in headers:
        headers["X-Frame-Options"] = "DENY"
    if "Referrer-Policy" not in headers:
        headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


@app.get("/health")
async def health_check():
    return {"status": "ok"}
