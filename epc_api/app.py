"""
app.py – FastAPI application for the EPC Property Search API

Production-ready features:
- Structured JSON logging
- Config via environment variables (pydantic-settings)
- Lifespan-managed connection pool (opened at startup, disposed on shutdown)
- Dependency injection for the search service
- Centralized exception handling with JSON errors
- Health, live, and ready probes
- CORS, GZip, Trusted Hosts, security headers
- Request ID & timing middleware with templated-path logging
- Request body size limiting
- Per-client fixed-window rate limiting (HTTP 429)
- RPC procedures under a single mount path, single or batched

Notes:
- For production, run with gunicorn + uvicorn workers:
  gunicorn -k uvicorn.workers.UvicornWorker epc_api.app:app --bind 0.0.0.0:3001 --workers 4
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel
from pydantic_settings import BaseSettings
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

# === Domain imports ===
from epc_api.db.db_session import build_database_url, create_db_engine, make_session_factory, ping
from epc_api.schemas.output_data_schemas import (
    CertificatesResponse,
    FilterOptionsResponse,
    HealthResponse,
    MarketStat,
    PropertyScoreResponse,
    SearchLeadsResponse,
)
from epc_api.schemas.request_data_schemas import (
    CertificateSearchRequest,
    ExportLeadsRequest,
    LeadScoreRequest,
    SearchLeadsRequest,
)
from epc_api.services.api import ServiceDeps, dispatch_batch, health_check
from epc_api.services.errors import InvalidFilterError, PropertyNotFoundError, SearchServiceError
from epc_api.services.search import SearchService
from epc_api.utils.cache import TTLCache
from epc_api.utils.rate_limiter import ClientRateLimiter

load_dotenv()


# =============================
# Config (env-driven, typed)
# =============================
class Settings(BaseSettings):
    app_name: str = "EPC Property Search API"
    env: str = "production"

    # Database: DATABASE_URL wins over the PG* variables
    database_url: Optional[str] = None
    pghost: str = "localhost"
    pgport: int = 5432
    pgdatabase: Optional[str] = None
    pguser: Optional[str] = None
    pgpassword: Optional[str] = None
    db_pool_size: int = 5
    db_max_overflow: int = 5
    db_pool_timeout_sec: int = 30
    db_statement_timeout_ms: int = 15000

    allowed_hosts: str = "*"
    cors_origins: str = "*"
    request_body_limit_mb: int = 1
    gzip_min_size: int = 500
    log_level: str = "INFO"

    rate_limit_points: int = 100
    rate_limit_window_sec: int = 900
    # Only honour X-Forwarded-For when running behind a proxy that sets it
    trust_proxy: bool = False
    enable_https_redirect: bool = False

    rpc_mount_path: str = "/api/trpc"
    max_batch_size: int = 20
    max_page_size: int = 100
    max_export_limit: int = 10000
    filter_options_cache_ttl_sec: int = 600

    class Config:
        env_file = ".env"
        extra = "ignore"

    def sqlalchemy_url(self):
        if self.database_url:
            return self.database_url
        return build_database_url(
            host=self.pghost,
            port=self.pgport,
            database=self.pgdatabase,
            user=self.pguser,
            password=self.pgpassword,
        )


settings = Settings()


# =============================
# Structured logging
# =============================
class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": int(time.time() * 1000),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if hasattr(record, "request_id"):
            payload["request_id"] = getattr(record, "request_id")
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(level: str = settings.log_level) -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())
    for h in list(root.handlers):
        root.removeHandler(h)
    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())
    root.addHandler(handler)


configure_logging()
logger = logging.getLogger(__name__)


# =============================
# App resources
# =============================
@dataclass
class AppResources:
    engine: Engine
    deps: ServiceDeps


class ErrorResponse(BaseModel):
    detail: str
    request_id: Optional[str] = None


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")


def client_address(request: Request, trust_proxy: bool = False) -> str:
    forwarded = request.headers.get("x-forwarded-for") if trust_proxy else None
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"


def get_deps(request: Request) -> ServiceDeps:
    res: AppResources = request.app.state.resources
    return res.deps


# =============================
# RPC procedures
# =============================
def build_rpc_router(cfg: Settings) -> APIRouter:
    router = APIRouter(prefix=cfg.rpc_mount_path)

    @router.api_route("/health.check", methods=["GET", "POST"], response_model=HealthResponse, tags=["health"])
    async def rpc_health_check(deps: ServiceDeps = Depends(get_deps)) -> HealthResponse:
        return health_check(deps)

    @router.post("/leads.search", response_model=SearchLeadsResponse, tags=["leads"])
    async def leads_search(
        request_body: Optional[SearchLeadsRequest] = None,
        deps: ServiceDeps = Depends(get_deps),
    ) -> SearchLeadsResponse:
        return await run_in_threadpool(deps.search.search, request_body or SearchLeadsRequest())

    @router.post("/leads.export", tags=["leads"], response_class=Response)
    async def leads_export(
        request_body: Optional[ExportLeadsRequest] = None,
        deps: ServiceDeps = Depends(get_deps),
    ) -> Response:
        csv_text = await run_in_threadpool(deps.search.export_csv, request_body or ExportLeadsRequest())
        return Response(
            content=csv_text,
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="leads.csv"'},
        )

    @router.api_route("/stats.market", methods=["GET", "POST"], response_model=List[MarketStat], tags=["stats"])
    async def stats_market(deps: ServiceDeps = Depends(get_deps)) -> List[MarketStat]:
        return await run_in_threadpool(deps.search.market_stats)

    @router.post("/properties.score", response_model=PropertyScoreResponse, tags=["properties"])
    async def properties_score(
        request_body: LeadScoreRequest,
        deps: ServiceDeps = Depends(get_deps),
    ) -> PropertyScoreResponse:
        return await run_in_threadpool(deps.search.score, request_body.lmk_key)

    @router.api_route(
        "/filters.getOptions", methods=["GET", "POST"], response_model=FilterOptionsResponse, tags=["filters"]
    )
    async def filters_get_options(deps: ServiceDeps = Depends(get_deps)) -> FilterOptionsResponse:
        return await run_in_threadpool(deps.search.get_filter_options)

    @router.post("/certificates.getByPostcode", response_model=CertificatesResponse, tags=["certificates"])
    async def certificates_get_by_postcode(
        request_body: CertificateSearchRequest,
        deps: ServiceDeps = Depends(get_deps),
    ) -> CertificatesResponse:
        return await run_in_threadpool(deps.search.get_by_postcode, request_body)

    @router.post("", tags=["batch"])
    async def batch(
        calls: List[Dict[str, Any]] = Body(...),
        deps: ServiceDeps = Depends(get_deps),
    ) -> JSONResponse:
        try:
            results = await run_in_threadpool(dispatch_batch, deps, calls, cfg.max_batch_size)
        except ValueError as ve:
            raise HTTPException(status_code=400, detail=str(ve))
        return JSONResponse(content=results)

    return router


# =============================
# App factory
# =============================
def create_app(cfg: Settings = settings, engine: Optional[Engine] = None) -> FastAPI:
    """
    Build the application.

    Pass ``engine`` to reuse an existing pool (tests); otherwise one is created
    from ``cfg`` at startup and disposed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting up, opening database pool...")
        owns_engine = engine is None
        db_engine = engine
        if db_engine is None:
            db_engine = create_db_engine(
                cfg.sqlalchemy_url(),
                pool_size=cfg.db_pool_size,
                max_overflow=cfg.db_max_overflow,
                pool_timeout=cfg.db_pool_timeout_sec,
                statement_timeout_ms=cfg.db_statement_timeout_ms,
            )
        service = SearchService(
            make_session_factory(db_engine),
            max_page_size=cfg.max_page_size,
            max_export_limit=cfg.max_export_limit,
            options_cache=TTLCache(),
            options_ttl_sec=cfg.filter_options_cache_ttl_sec,
        )
        app.state.resources = AppResources(
            engine=db_engine,
            deps=ServiceDeps(search=service, started_at=time.monotonic()),
        )
        logger.info("Database pool ready.")

        yield

        logger.info("Shutting down application, closing database pool...")
        app.state.resources = None
        if owns_engine:
            db_engine.dispose()

    app = FastAPI(
        title=cfg.app_name,
        version="1.0.0",
        lifespan=lifespan,
        default_response_class=JSONResponse,
    )
    app.state.settings = cfg
    app.state.rate_limiter = ClientRateLimiter(
        points=cfg.rate_limit_points, duration_sec=cfg.rate_limit_window_sec
    )

    # =============================
    # Middleware (last registered runs first)
    # =============================
    @app.middleware("http")
    async def rate_limit(request: Request, call_next: Callable) -> Response:
        client = client_address(request, trust_proxy=cfg.trust_proxy)
        decision = request.app.state.rate_limiter.consume(client)
        if not decision.allowed:
            logger.warning(
                f"Rate limit exceeded for {client}",
                extra={"request_id": _request_id(request)},
            )
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many requests, slow down!"},
                headers={"Retry-After": str(max(1, int(decision.retry_after_sec)))},
            )
        response = await call_next(request)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response

    @app.middleware("http")
    async def limit_body_size(request: Request, call_next: Callable) -> Response:
        max_bytes = cfg.request_body_limit_mb * 1024 * 1024
        try:
            cl = int(request.headers.get("content-length", "0") or 0)
        except ValueError:
            cl = 0
        if cl > max_bytes:
            return JSONResponse(status_code=413, content={"detail": "Request body too large"})
        return await call_next(request)

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("Cross-Origin-Resource-Policy", "same-origin")
        if cfg.enable_https_redirect:
            response.headers.setdefault("Strict-Transport-Security", "max-age=15552000; includeSubDomains")
        return response

    @app.middleware("http")
    async def add_request_id_and_timing(request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        start = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception("Unhandled error", extra={"request_id": request_id})
            raise e
        duration_ms = int((time.time() - start) * 1000)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-ms"] = str(duration_ms)
        route = getattr(request.scope.get("route"), "path", request.url.path)
        logger.info(
            f"{request.method} {route} -> {response.status_code} in {duration_ms}ms",
            extra={"request_id": request_id},
        )
        return response

    origins = ["*"] if cfg.cors_origins == "*" else [o.strip() for o in cfg.cors_origins.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(GZipMiddleware, minimum_size=cfg.gzip_min_size)

    hosts = ["*"] if cfg.allowed_hosts == "*" else [h.strip() for h in cfg.allowed_hosts.split(",")]
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=hosts)

    if cfg.enable_https_redirect:
        from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware

        app.add_middleware(HTTPSRedirectMiddleware)

    # =============================
    # Error handlers
    # =============================
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(detail=str(exc.detail), request_id=_request_id(request)).model_dump(),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={"detail": jsonable_encoder(exc.errors()), "request_id": _request_id(request)},
        )

    @app.exception_handler(InvalidFilterError)
    async def invalid_filter_handler(request: Request, exc: InvalidFilterError):
        return JSONResponse(
            status_code=422,
            content=ErrorResponse(detail=str(exc), request_id=_request_id(request)).model_dump(),
        )

    @app.exception_handler(PropertyNotFoundError)
    async def not_found_handler(request: Request, exc: PropertyNotFoundError):
        return JSONResponse(
            status_code=404,
            content=ErrorResponse(detail="Property not found", request_id=_request_id(request)).model_dump(),
        )

    @app.exception_handler(SearchServiceError)
    async def service_error_handler(request: Request, exc: SearchServiceError):
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(detail=exc.message, request_id=_request_id(request)).model_dump(),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        rid = _request_id(request)
        logger.exception("Unhandled server error", extra={"request_id": rid})
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(detail="Internal server error", request_id=rid).model_dump(),
        )

    # =============================
    # Health endpoints
    # =============================
    @app.get("/", tags=["health"])
    async def root() -> PlainTextResponse:
        return PlainTextResponse(
            content=f"EPC API is running. Procedures are served at {cfg.rpc_mount_path}",
            status_code=200,
        )

    @app.get("/ping", tags=["health"])
    async def ping_endpoint() -> PlainTextResponse:
        return PlainTextResponse(content="pong", status_code=200)

    @app.get("/live", tags=["health"])
    async def live() -> PlainTextResponse:
        return PlainTextResponse(content="live", status_code=200)

    @app.get("/ready", tags=["health"])
    async def ready(request: Request) -> PlainTextResponse:
        res: Optional[AppResources] = getattr(request.app.state, "resources", None)
        ok = res is not None
        if ok:
            try:
                await run_in_threadpool(ping, res.engine)
            except SQLAlchemyError:
                logger.warning("Readiness check failed: database unreachable", exc_info=True)
                ok = False
        return PlainTextResponse(content="ready" if ok else "not-ready", status_code=200 if ok else 503)

    app.include_router(build_rpc_router(cfg))
    return app


app = create_app()
