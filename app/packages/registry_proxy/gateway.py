"""Registry V2 gateway.

Relays Docker Registry HTTP API V2 traffic to a set of upstream registries
while keeping the client on the gateway's own host name:

- `WWW-Authenticate` challenges are rewritten so the client asks the gateway
  for tokens, and the gateway relays those requests to the real realm.
- Official single-segment images on the default registry are rewritten into
  its namespace ("busybox" -> "library/busybox").
- Blob redirects from the default registry are followed by the gateway
  instead of being handed to the client.

See: https://distribution.github.io/distribution/spec/api/
"""

from typing import Optional

import httpx
import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse

from .challenge import (
    DEFAULT_NAMESPACE,
    normalize_image_path,
    normalize_scope,
    parse_challenge,
    parse_scope,
    pull_scope,
    split_image_path,
)
from .exceptions import AuthDiscoveryFailure, UpstreamProtocolViolation
from .headers import apply_security_headers, filter_headers
from .proxy import (
    BODY_METHODS,
    build_target_url,
    send_upstream,
    stream_request_body,
    stream_response,
)
from .routing import RouteTable
from .types import AuthChallenge, RouteEntry, ScopeTriple

logger = structlog.stdlib.get_logger(__name__)

TOKEN_PATH = "/v2/auth"

REDIRECT_STATUSES = frozenset([302, 307])

API_VERSION_HEADER = {"Docker-Distribution-API-Version": "registry/2.0"}


def docker_error_response(
    status_code: int,
    error_code: str,
    message: str,
    detail: Optional[str] = None,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    """Create a Docker Registry v2 API compliant error response.

    See: https://docs.docker.com/registry/spec/api/#errors
    """
    error_obj = {
        "code": error_code,
        "message": message,
    }
    if detail:
        error_obj["detail"] = detail

    response = JSONResponse(
        status_code=status_code,
        content={"errors": [error_obj]},
        headers={**API_VERSION_HEADER, **(headers or {})},
    )
    apply_security_headers(response.headers)
    return response


class RegistryGateway:
    """Protocol-aware relay in front of the configured registries.

    Holds no per-request state; a single instance serves all requests.
    """

    def __init__(
        self,
        table: RouteTable,
        client: httpx.AsyncClient,
        service_name: str = "registry-gateway",
        namespace: str = DEFAULT_NAMESPACE,
        scheme: str = "https",
    ):
        """Initialize the registry gateway.

        Args:
            table: Registry route table; must contain a default entry
            client: Shared HTTP client used for every upstream hop
            service_name: Service identifier advertised in rewritten challenges
            namespace: Namespace of official images on the default registry
            scheme: Scheme of the public token realm URL
        """
        if table.default is None:
            raise ValueError("Registry route table needs a default entry")
        self.table = table
        self.client = client
        self.service_name = service_name
        self.namespace = namespace
        self.scheme = scheme

    @property
    def default_entry(self) -> RouteEntry:
        return self.table.default

    def resolve(self, path: str) -> tuple[RouteEntry, str]:
        """Map a path below /v2/ to its registry and image path.

        Paths without a known route prefix go to the default registry, so
        `gateway/hello-world` pulls work without a backend selector.
        """
        match = self.table.resolve(path)
        if match.entry is None:
            return self.default_entry, match.remainder.lstrip("/")
        return match.entry, match.remainder.lstrip("/")

    def advertised_service(self, entry: RouteEntry) -> str:
        if entry.is_default:
            return self.service_name
        return f"{self.service_name}/{entry.key}"

    def entry_for_service(self, service: str) -> Optional[RouteEntry]:
        """Reverse of `advertised_service`; None for foreign service names."""
        if service == self.service_name:
            return self.default_entry
        prefix = f"{self.service_name}/"
        if service.startswith(prefix):
            entry = self.table.get(service[len(prefix) :])
            if entry is not None and entry.is_registry:
                return entry
        return None

    def token_realm(self, request: Request) -> str:
        return f"{self.scheme}://{request.url.netloc}{TOKEN_PATH}"

    async def ping(self, request: Request, entry: Optional[RouteEntry] = None) -> Response:
        """Relay the /v2/ version check of a registry.

        A 401 is answered with a challenge pointing at the gateway.
        """
        entry = entry or self.default_entry
        target_url = build_target_url(entry.base_url, "/v2/")
        logger.debug("Registry ping", prefix=entry.prefix, target_url=target_url)

        upstream = await send_upstream(
            self.client,
            request.method,
            target_url,
            headers=filter_headers(request.headers, entry.allowed_headers),
        )
        if upstream.status_code == 401:
            return await self._challenge_response(request, entry, upstream, repository=None)
        return stream_response(upstream)

    async def proxy(self, request: Request, path: str) -> Response:
        """Proxy a Docker Registry request below /v2/.

        Args:
            request: Original FastAPI request from Docker client
            path: Path after "/v2/" (e.g., "register/github/org/app/manifests/1.0")

        Returns:
            Upstream response, a rewritten 401 challenge, or the body behind
            a blob redirect

        Raises:
            UpstreamUnreachable: If an upstream cannot be reached
            UpstreamProtocolViolation: If an upstream 401 has no usable challenge
        """
        entry, image_path = self.resolve(path)
        if not image_path:
            return await self.ping(request, entry)

        if entry.is_default:
            image_path = normalize_image_path(image_path, self.namespace)

        target_url = build_target_url(
            entry.base_url, f"/v2/{image_path}", request.url.query
        )

        logger.info(
            "Proxying request to registry",
            method=request.method,
            prefix=entry.prefix,
            target_url=target_url,
        )

        content = stream_request_body(request) if request.method in BODY_METHODS else None
        upstream = await send_upstream(
            self.client,
            request.method,
            target_url,
            headers=filter_headers(request.headers, entry.allowed_headers),
            content=content,
        )

        logger.info(
            "Registry response received",
            status_code=upstream.status_code,
            target_url=target_url,
        )

        if upstream.status_code == 401:
            repository, _ = split_image_path(image_path)
            return await self._challenge_response(request, entry, upstream, repository)

        if (
            entry.is_default
            and upstream.status_code in REDIRECT_STATUSES
            and upstream.headers.get("location")
        ):
            return await self._follow_blob_redirect(request, upstream)

        return stream_response(upstream)

    async def relay_token(self, request: Request) -> Response:
        """Relay a token request to the real realm of the selected registry.

        The registry is selected by the advertised service name, or by a
        route prefix on the repository name of a scope. The upstream realm
        is discovered on every call since registries may rotate it.

        Raises:
            AuthDiscoveryFailure: If the upstream realm cannot be discovered
            UpstreamUnreachable: If an upstream cannot be reached
        """
        service = request.query_params.get("service")
        scopes = request.query_params.getlist("scope")

        entry = self.entry_for_service(service) if service else None
        # Foreign service names are relayed as sent
        map_service = entry is not None or not service
        entry = entry or self.default_entry

        relayed_scopes = []
        for scope in scopes:
            if not scope.strip():
                continue
            scope_entry, scope = self._strip_route_prefix(scope)
            if scope_entry is not None:
                entry = scope_entry
            relayed_scopes.append(scope)

        if entry.is_default:
            relayed_scopes = [normalize_scope(scope, self.namespace) for scope in relayed_scopes]

        challenge = await self._discover_challenge(entry)

        params = [("service", challenge.service if map_service else service)]
        params.extend(("scope", scope) for scope in relayed_scopes)

        headers = {}
        authorization = request.headers.get("authorization")
        if authorization:
            headers["Authorization"] = authorization

        logger.info(
            "Relaying token request",
            prefix=entry.prefix,
            realm=challenge.realm,
            service=params[0][1],
            scopes=relayed_scopes,
            anonymous=authorization is None,
        )

        upstream = await send_upstream(
            self.client,
            "GET",
            challenge.realm,
            headers=headers,
            params=params,
            follow_redirects=True,
        )
        return stream_response(upstream)

    async def _challenge_response(
        self,
        request: Request,
        entry: RouteEntry,
        upstream: httpx.Response,
        repository: Optional[str],
    ) -> JSONResponse:
        header = upstream.headers.get("www-authenticate")
        await upstream.aclose()

        try:
            upstream_challenge = parse_challenge(header)
        except UpstreamProtocolViolation:
            logger.error(
                "Upstream 401 without a usable challenge",
                prefix=entry.prefix,
                header=header,
            )
            raise

        scope = upstream_challenge.scope
        if scope:
            if entry.is_default:
                scope = normalize_scope(scope, self.namespace)
        elif repository:
            scope = pull_scope(repository)

        challenge = AuthChallenge(
            realm=self.token_realm(request),
            service=self.advertised_service(entry),
            scope=scope,
        )
        logger.debug(
            "Rewrote authentication challenge",
            upstream_realm=upstream_challenge.realm,
            realm=challenge.realm,
            service=challenge.service,
            scope=scope,
        )

        return docker_error_response(
            status_code=401,
            error_code="UNAUTHORIZED",
            message="authentication required",
            headers={"WWW-Authenticate": challenge.to_header()},
        )

    async def _follow_blob_redirect(
        self, request: Request, upstream: httpx.Response
    ) -> Response:
        # Pre-signed URLs authenticate by signature; registry credentials must not follow
        location = upstream.url.join(upstream.headers["location"])
        await upstream.aclose()

        headers = {}
        if "range" in request.headers:
            headers["Range"] = request.headers["range"]

        logger.info(
            "Following blob redirect",
            status_code=upstream.status_code,
            redirect_host=location.host,
        )

        method = "HEAD" if request.method == "HEAD" else "GET"
        redirected = await send_upstream(
            self.client,
            method,
            str(location),
            headers=headers,
            follow_redirects=True,
        )
        return stream_response(redirected)

    def _strip_route_prefix(self, scope: str) -> tuple[Optional[RouteEntry], str]:
        """Drop route prefixes from repository names in a scope.

        The client knows the image as "register/github/org/app" while the
        upstream knows it as "org/app". Returns the registry the prefix
        selected, if any.
        """
        selected = None
        rewritten = []
        for item in scope.split(" "):
            triple = parse_scope(item)
            if triple is None or triple.resource_type != "repository":
                rewritten.append(item)
                continue
            match = self.table.resolve(triple.name)
            name = match.remainder.strip("/")
            if match.entry is None or not name:
                rewritten.append(item)
                continue
            selected = match.entry
            rewritten.append(str(ScopeTriple(triple.resource_type, name, triple.actions)))
        return selected, " ".join(rewritten)

    async def _discover_challenge(self, entry: RouteEntry) -> AuthChallenge:
        target_url = build_target_url(entry.base_url, "/v2/")
        probe = await send_upstream(self.client, "GET", target_url)
        header = probe.headers.get("www-authenticate")
        await probe.aclose()

        if not header:
            logger.error(
                "Token realm discovery failed",
                prefix=entry.prefix,
                status_code=probe.status_code,
            )
            raise AuthDiscoveryFailure(
                f"{entry.base_url} did not answer with an authentication challenge"
            )

        try:
            return parse_challenge(header)
        except UpstreamProtocolViolation as e:
            raise AuthDiscoveryFailure(
                f"{entry.base_url} answered with an unusable challenge: {e.message}"
            ) from e
