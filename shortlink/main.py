"""ASGI application for the shortlink service.

Startup initialises the shared ``ServiceManager`` (logging, Redis, geo client)
and creates the tables; shutdown releases them in reverse order.

Running
=======
::
    uvicorn shortlink.main:app --host 0.0.0.0 --port 4000
    # or, once installed
    shortlink-service

    curl -X POST http://localhost:4000/shorturls \
         -H "Content-Type: application/json" \
         -d '{"url": "https://example.com", "validity": 60, "shortcode": "promo1"}'
    curl -i http://localhost:4000/promo1
    curl http://localhost:4000/shorturls/promo1

Request handling
================
- Each request is logged when it starts and when it finishes, with status and
  duration in milliseconds.
- A body that fails schema validation answers 400, the same status as every
  other input error.
- ``/metrics`` serves the Prometheus exposition.
"""

__all__ = ["app", "run"]

import logging
import time
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from shortlink.config import get_settings
from shortlink.database import close_db, init_db
from shortlink.dependencies import _service_manager
from shortlink.routes import router

settings = get_settings()
http_logger = logging.getLogger("shortlink.http")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    await _service_manager.initialize()
    await init_db()
    yield
    _service_manager.logger.info("Shutting down")
    await _service_manager.cleanup()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="URL shortener with expiring links and click analytics",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    start = time.perf_counter()
    target = f"{request.method} {request.url.path}"
    http_logger.info(f"{target} - start")
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    http_logger.info(f"{target} -> {response.status_code} ({duration_ms:.0f}ms)")
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    http_logger.warning(f"{request.method} {request.url.path} rejected: invalid request body")
    return JSONResponse(status_code=400, content={"detail": jsonable_errors(exc)})


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]


Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(router)


def run() -> None:
    uvicorn.run("shortlink.main:app", host="0.0.0.0", port=settings.PORT)
