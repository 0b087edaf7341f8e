from typing import Annotated

import httpx
from fastapi import Depends, Request

from app.packages.registry_proxy import RegistryGateway
from app.settings import settings
from app.upstreams import REGISTRY_ROUTES


def create_http_client(
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    client = httpx.AsyncClient(
        transport=transport,
        timeout=httpx.Timeout(
            connect=settings.PROXY_CONNECT_TIMEOUT,
            read=settings.PROXY_READ_TIMEOUT,
            write=settings.PROXY_WRITE_TIMEOUT,
            pool=settings.PROXY_POOL_TIMEOUT,
        ),
        follow_redirects=False,
    )
    # Upstreams only see headers the gateway forwards explicitly
    client.headers.clear()
    return client


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


HttpClientDep = Annotated[httpx.AsyncClient, Depends(get_http_client)]


def get_registry_gateway(client: HttpClientDep) -> RegistryGateway:
    return RegistryGateway(
        REGISTRY_ROUTES,
        client,
        service_name=settings.REGISTRY_SERVICE_NAME,
        namespace=settings.REGISTRY_DEFAULT_NAMESPACE,
        scheme=settings.GATEWAY_SCHEME,
    )


RegistryGatewayDep = Annotated[RegistryGateway, Depends(get_registry_gateway)]
