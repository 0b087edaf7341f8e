"""Docker Registry v2 API Proxy.

This module exposes the Docker Registry HTTP API V2 on the gateway's own host
and relays it to the configured upstream registries, token requests included.

See: https://docs.docker.com/registry/spec/api/
"""

import structlog
from fastapi import APIRouter, Request

from app.deps.gateway import RegistryGatewayDep
from app.packages.registry_proxy import TOKEN_PATH

logger = structlog.stdlib.get_logger(__name__)

router = APIRouter(tags=["Docker Proxy"])


@router.get(TOKEN_PATH)
async def token(request: Request, gateway: RegistryGatewayDep):
    """Token endpoint advertised in rewritten challenges.

    Query parameters `service` and `scope` follow the Docker token
    authentication spec; the client's Authorization header is relayed as is.
    """
    return await gateway.relay_token(request)


@router.api_route("/v2/", methods=["GET", "HEAD"])
async def registry_version_check(request: Request, gateway: RegistryGatewayDep):
    """Docker Registry API version check.

    Called by the Docker CLI to verify v2 support and discover how to
    authenticate.
    """
    logger.debug("Docker registry version check")
    return await gateway.ping(request)


@router.api_route(
    "/v2/{path:path}",
    methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"],
)
async def registry_proxy(request: Request, path: str, gateway: RegistryGatewayDep):
    """Proxy manifests, blobs, tags and uploads to the selected registry.

    Args:
        path: Path after /v2/, optionally starting with a route prefix
              (e.g., "register/github/org/app/manifests/1.0")
    """
    return await gateway.proxy(request, path)
