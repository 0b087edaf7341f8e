from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.deps.gateway import create_http_client
from app.packages.registry_proxy import GatewayError, apply_security_headers
from app.routes import api_proxy, docker_proxy, pages
from app.utils.logging_utils import setup_logger_fastapi
from app.utils.security_headers import SecurityHeadersMiddleware
from app.utils.sentry import init_sentry

logger = structlog.stdlib.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.http_client = create_http_client()

    yield

    await app.state.http_client.aclose()


init_sentry()
app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
app.add_middleware(SecurityHeadersMiddleware)
setup_logger_fastapi(app)


@app.exception_handler(GatewayError)
async def gateway_exception_handler(request: Request, exc: GatewayError):
    logger.warning(
        "Gateway error",
        error=type(exc).__name__,
        message=exc.message,
        path=request.url.path,
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    # Runs outside the middleware stack, so headers are stamped here
    response = PlainTextResponse(
        "Internal Server Error",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    apply_security_headers(response.headers)
    return response


app.include_router(pages.router)
app.include_router(docker_proxy.router)
# Catch-all, must stay last
app.include_router(api_proxy.router)
