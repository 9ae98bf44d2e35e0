from collections import Counter, defaultdict
from dataclasses import dataclass, field
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError

from deseo.api.routes import auth, items, redirects, reservations, shortlinks, wishlists
from deseo.core.config import settings
from deseo.core.logger import configure_logging, request_id_var
from deseo.db.session import async_session_factory, dispose_engine, ensure_schema_ready


logger = configure_logging()

app = FastAPI(
    title=settings.app_name,
    description="Share wishlists and reserve gifts without spoiling the surprise",
    version="0.1.0",
)


@dataclass
class RouteStats:
    count: int = 0
    errors: int = 0
    latency_total_ms: float = 0.0
    statuses: Counter = field(default_factory=Counter)

    def as_dict(self) -> dict[str, object]:
        return {
            "count": self.count,
            "errors": self.errors,
            "avg_latency_ms": self.latency_total_ms / self.count if self.count else 0.0,
            "statuses": dict(self.statuses),
        }


# Keyed by route template so ids in paths do not grow the table.
route_stats: defaultdict[str, RouteStats] = defaultdict(RouteStats)

cors_origins = settings.backend_cors_origins
logger.info("CORS origins parsed=%s", cors_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)


def _route_key(request: Request) -> str:
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    if template is None:
        return "<unmatched>"
    # Depending on the FastAPI release, routes of an included router report
    # their path with or without the include prefix; the prefix has no
    # parameters, so it is taken from the concrete request path.
    path_parts = [part for part in request.url.path.split("/") if part]
    template_parts = [part for part in template.split("/") if part]
    prefix = path_parts[: max(0, len(path_parts) - len(template_parts))]
    return "/" + "/".join(prefix + template_parts)


def _record(request: Request, status_code: int, duration_ms: float) -> None:
    stats = route_stats[_route_key(request)]
    stats.count += 1
    stats.latency_total_ms += duration_ms
    stats.statuses[f"{status_code // 100}xx"] += 1
    if status_code >= 500:
        stats.errors += 1


@app.middleware("http")
async def tracing_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or uuid4().hex
    token = request_id_var.set(request_id)
    start = perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        _record(request, 500, (perf_counter() - start) * 1000.0)
        logger.exception("Request failed method=%s path=%s", request.method, request.url.path)
        raise
    else:
        duration_ms = (perf_counter() - start) * 1000.0
        _record(request, response.status_code, duration_ms)
        logger.info(
            "Request completed method=%s path=%s status=%s duration_ms=%.2f",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
        )
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        request_id_var.reset(token)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


@app.on_event("startup")
async def on_startup() -> None:
    try:
        db_url = make_url(settings.database_url)
        logger.info(
            "DB config driver=%s host=%s database=%s",
            db_url.get_backend_name(),
            db_url.host,
            db_url.database,
        )
    except Exception:
        logger.warning("DB config parse failed", exc_info=True)

    await ensure_schema_ready()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await dispose_engine()


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info("Validation failed on %s %s errors=%d", request.method, request.url.path, len(exc.errors()))
    # Rejected input can be non-finite and is not echoed back.
    errors = [{key: value for key, value in error.items() if key != "input"} for error in exc.errors()]
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(errors)})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(auth.router, prefix="/api")
app.include_router(wishlists.router, prefix="/api")
app.include_router(items.router, prefix="/api")
app.include_router(reservations.router, prefix="/api")
app.include_router(shortlinks.router, prefix="/api")
app.include_router(redirects.router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/health/db")
async def health_db():
    try:
        async with async_session_factory() as session:
            result = await session.execute(select(1))
            return {"status": "ok", "database": str(result.scalar())}
    except SQLAlchemyError as e:
        logger.exception("DB health check failed")
        return JSONResponse(status_code=500, content={"status": "error", "error": str(e)})


@app.get("/metrics")
async def get_metrics() -> dict[str, object]:
    requests_total = sum(stats.count for stats in route_stats.values())
    latency_total_ms = sum(stats.latency_total_ms for stats in route_stats.values())
    return {
        "requests_total": requests_total,
        "errors_total": sum(stats.errors for stats in route_stats.values()),
        "avg_latency_ms": latency_total_ms / requests_total if requests_total else 0.0,
        "by_path": {path: stats.as_dict() for path, stats in sorted(route_stats.items())},
    }
