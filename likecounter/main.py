"""FastAPI entrypoint for the like counter."""

import hmac
import logging
from datetime import datetime, timezone
from time import monotonic
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.routing import APIRoute
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException

from likecounter.config import get_settings
from likecounter.counters import CounterStoreError, increment_or_init, read_or_init
from likecounter.database import close_engine, get_db_session, run_health_query
from likecounter.metrics import RequestMetrics
from likecounter.models import UrlLike
from likecounter.url_normalization import URLNormalizationError, normalize_url
from likecounter.validation import (
    LikeOperation,
    LikeRequestValidationError,
    validate_like_request,
)

settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
app = FastAPI(title=settings.app_name, version=settings.app_version)
started_at_monotonic = monotonic()
request_logger = logging.getLogger("likecounter.request")
likes_logger = logging.getLogger("likecounter.likes")
request_metrics = RequestMetrics(max_entries=settings.metrics_max_entries)

API_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"]
CORS_ALLOW_METHODS = ["GET", "POST", "OPTIONS"]
CORS_ALLOW_HEADERS = ["Content-Type"]


def _failure(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message},
        headers=headers,
    )


def _metric_route_label(request: Request) -> str:
    route = request.scope.get("route")
    if isinstance(route, APIRoute):
        return route.path
    return "_unmatched"


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == status.HTTP_404_NOT_FOUND and exc.detail == "Not Found":
        return _failure(exc.status_code, "Endpoint not found")
    return _failure(exc.status_code, str(exc.detail), headers=exc.headers)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_logger.exception(
        "unhandled_error method=%s path=%s error=%s",
        request.method,
        request.url.path,
        exc,
    )
    return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


@app.middleware("http")
async def request_size_limit_middleware(request: Request, call_next: Any) -> Response:
    limit = settings.max_request_body_bytes
    if limit > 0 and request.method.upper() not in {"GET", "HEAD", "OPTIONS"}:
        content_length = request.headers.get("content-length")
        if content_length is not None:
            try:
                declared_size = int(content_length)
            except ValueError:
                return _failure(status.HTTP_400_BAD_REQUEST, "Invalid Content-Length header")
            if declared_size > limit:
                return _failure(status.HTTP_413_CONTENT_TOO_LARGE, "Request payload too large")

    return await call_next(request)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next: Any) -> Response:
    started = monotonic()
    path = request.url.path
    method = request.method.upper()
    try:
        response = await call_next(request)
    except Exception:
        latency_ms = int((monotonic() - started) * 1000)
        request_logger.exception(
            "request method=%s path=%s status=%s latency_ms=%s",
            method,
            path,
            500,
            latency_ms,
        )
        request_metrics.record(f"{method} {_metric_route_label(request)} 500", latency_ms)
        raise

    latency_ms = int((monotonic() - started) * 1000)
    request_logger.info(
        "request method=%s path=%s status=%s latency_ms=%s",
        method,
        path,
        response.status_code,
        latency_ms,
    )
    request_metrics.record(
        f"{method} {_metric_route_label(request)} {response.status_code}",
        latency_ms,
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_methods=CORS_ALLOW_METHODS,
    allow_headers=CORS_ALLOW_HEADERS,
)


def _preflight_headers(request: Request) -> dict[str, str]:
    headers = {
        "Access-Control-Allow-Methods": ", ".join(CORS_ALLOW_METHODS),
        "Access-Control-Allow-Headers": ", ".join(CORS_ALLOW_HEADERS),
    }
    origin = request.headers.get("origin")
    if "*" in settings.cors_allow_origins:
        headers["Access-Control-Allow-Origin"] = "*"
    elif origin and origin in settings.cors_allow_origins:
        headers["Access-Control-Allow-Origin"] = origin
        headers["Vary"] = "Origin"
    return headers


# Registered after CORS so every OPTIONS request, preflight or not, gets an empty 200.
@app.middleware("http")
async def options_middleware(request: Request, call_next: Any) -> Response:
    if request.method.upper() == "OPTIONS":
        return Response(status_code=status.HTTP_200_OK, headers=_preflight_headers(request))
    return await call_next(request)


@app.on_event("shutdown")
async def shutdown_event() -> None:
    await close_engine()


@app.get("/", response_class=PlainTextResponse, include_in_schema=False)
async def greeting() -> PlainTextResponse:
    return PlainTextResponse("hello and welcome")


@app.api_route("/api", methods=API_METHODS, tags=["likes"])
async def likes_api(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    body = await request.body() if request.method.upper() == "POST" else b""
    try:
        validated = validate_like_request(
            http_method=request.method,
            query_params=request.query_params,
            body=body,
            headers=request.headers,
            same_domain_protection=settings.same_domain_protection,
            disallowed_host_suffixes=settings.disallowed_host_suffixes,
        )
    except LikeRequestValidationError as exc:
        likes_logger.info(
            "like_request_rejected reason=%s status=%s",
            exc.reason.value,
            exc.status_code,
        )
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc

    try:
        key = normalize_url(validated.url, max_length=settings.max_url_length)
    except URLNormalizationError as exc:
        likes_logger.info("like_request_rejected reason=%s status=400", exc.reason)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        if validated.operation is LikeOperation.READ:
            likes = await read_or_init(session, key)
        else:
            likes = await increment_or_init(session, key, ceiling=settings.like_ceiling)
    except CounterStoreError as exc:
        likes_logger.exception(
            "like_store_failed operation=%s key=%s error=%s",
            validated.operation.value,
            key,
            exc,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database operation failed",
        ) from exc

    return {"success": True, "url": key, "likes": likes}


@app.get("/api/metrics", tags=["observability"])
async def metrics(
    admin_token: str | None = Header(default=None, alias="X-Admin-Token"),
) -> dict[str, Any]:
    if settings.admin_api_token is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Endpoint not configured")
    if not hmac.compare_digest(admin_token or "", settings.admin_api_token):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")
    return {"request_metrics": request_metrics.snapshot()}


@app.get("/api/health/db", tags=["health"])
async def database_health_check(
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, str]:
    try:
        await run_health_query(session)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database is unavailable",
        ) from exc

    return {
        "status": "healthy",
        "database": "ok",
        "checked_at": datetime.now(tz=timezone.utc).isoformat(),
    }


@app.get("/api/health", tags=["health"])
async def basic_health(
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, int | str]:
    try:
        await run_health_query(session)
        urls_count = int((await session.scalar(select(func.count(UrlLike.url)))) or 0)
    except Exception:
        return {
            "status": "unhealthy",
            "version": settings.app_version,
            "urls_count": 0,
            "uptime_seconds": int(monotonic() - started_at_monotonic),
        }

    return {
        "status": "healthy",
        "version": settings.app_version,
        "urls_count": urls_count,
        "uptime_seconds": int(monotonic() - started_at_monotonic),
    }
