from fastapi import Depends, FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import get_db, init_db
from app.core.errors import RbacError, RbacValidationError
from app.core.rate_limit import limiter
from app.features.rbac.routes import router as rbac_router
from app.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="RBAC Service",
    description="Role, group and grant based access control with global and organization scopes",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
app.state.limiter = limiter


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    origins = [config.ALLOW_ORIGIN]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(RbacError)
async def rbac_exception_handler(_request: Request, exc: RbacError):
    log.info("RBAC error %s: %s", exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    # Same body shape as RbacValidationError, with per-field messages
    fields = {}
    for error in exc.errors():
        if not error.get("loc") or "msg" not in error:
            continue
        fields[str(error["loc"][-1])] = error["msg"]
    log.info("Request validation error %s", fields)
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder({"error": "Invalid request", "code": RbacValidationError.code, "fields": fields}),
    )


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


@app.on_event("startup")
async def startup():
    """Initialize database on application startup."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "RBAC Service API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "Bearer token for self-service endpoints; admin endpoints also accept basic auth",
            "self_service_endpoints": ["/rbac/rights", "/rbac/my-orgs", "/rbac/my-rights", "/rbac/check"],
            "admin_endpoints": [
                "/rbac/test", "/rbac/roles/*", "/rbac/groups/*",
                "/rbac/users/{user_id}/roles/*", "/rbac/grants/*", "/rbac/audit-logs"
            ],
        },
    }


@app.get("/health")
async def health(db: AsyncSession = Depends(get_db)):
    """Liveness plus a database round trip."""
    await db.execute(text("SELECT 1"))
    return {"status": "healthy", "database": "ok"}


# RBAC routes
app.include_router(rbac_router, prefix="/rbac", tags=["rbac"])
