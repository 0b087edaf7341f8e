"""Generic API proxy.

Forwards requests under a configured prefix (e.g., /ai/claude) to the
matching upstream API with only allow-listed headers.
"""

import structlog
from fastapi import APIRouter, Request

from app.deps.gateway import HttpClientDep
from app.packages.registry_proxy import RouteNotFound, proxy_request
from app.upstreams import AI_ROUTES

logger = structlog.stdlib.get_logger(__name__)

router = APIRouter(tags=["API Proxy"])


@router.api_route(
    "/{full_path:path}",
    methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    include_in_schema=False,
)
async def api_proxy(request: Request, full_path: str, client: HttpClientDep):
    match = AI_ROUTES.resolve(full_path)
    if match.entry is None:
        logger.info("No matching prefix", path=request.url.path)
        raise RouteNotFound()

    return await proxy_request(request, client, match.entry, match.remainder)
