from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.engine import make_url

from wishfund.api.routes import auth, catalog, contributions, friends, payments, users, wallet, wishlists
from wishfund.core.config import settings
from wishfund.core.errors import error_body
from wishfund.core.logger import configure_logging
from wishfund.db.session import async_session_factory, create_schema
from wishfund.services.referrals import seed_default_admin


logger = configure_logging()

app = FastAPI(
    title=settings.app_name,
    description="Group gifting wishlists with pooled contributions and payouts",
    version="0.1.0",
)

cors_origins = settings.backend_cors_origins
if not cors_origins and settings.frontend_url:
    cors_origins = [settings.frontend_url]
logger.info("CORS origins %s", cors_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id"],
    max_age=600,
)


@app.middleware("http")
async def tracing_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    start = perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception(
            "Request failed id=%s method=%s path=%s duration_ms=%.2f",
            request_id,
            request.method,
            request.url.path,
            (perf_counter() - start) * 1000.0,
        )
        raise

    logger.info(
        "Request completed id=%s method=%s path=%s status=%s duration_ms=%.2f",
        request_id,
        request.method,
        request.url.path,
        response.status_code,
        (perf_counter() - start) * 1000.0,
    )
    response.headers["X-Request-Id"] = request_id
    return response


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


@app.on_event("startup")
async def on_startup() -> None:
    if not settings.is_local:
        settings.validate_secrets()

    db_url = make_url(settings.postgres_dsn)
    logger.info(
        "DB config driver=%s host=%s database=%s",
        db_url.get_backend_name(),
        db_url.host,
        db_url.database,
    )
    await create_schema()

    if settings.seed_default_admin:
        async with async_session_factory() as session:
            admin = await seed_default_admin(session)
            logger.info("Default admin ready user_id=%s", admin.id)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=error_body("Internal server error"))


app.include_router(auth.router)
app.include_router(users.router)
app.include_router(friends.router)
for router in catalog.routers:
    app.include_router(router)
app.include_router(wishlists.router)
app.include_router(contributions.router)
app.include_router(payments.router)
app.include_router(wallet.router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/health/db")
async def health_db():
    try:
        async with async_session_factory() as session:
            result = await session.execute(select(1))
            return {"status": "ok", "database": str(result.scalar())}
    except Exception as exc:
        logger.exception("DB health check failed")
        return JSONResponse(status_code=500, content={"status": "error", "error": str(exc)})
