from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from app.packages.registry_proxy import apply_security_headers


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Stamps the hardening headers on every response the routes produce."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        response = await call_next(request)
        apply_security_headers(response.headers)
        return response
