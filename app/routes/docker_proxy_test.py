from urllib.parse import urlparse

from httpx import AsyncClient

from app.packages.registry_proxy import SECURITY_HEADERS, parse_challenge
from app.tests.fixtures_clients import FakeUpstream

HUB = "https://registry-1.docker.io"
GHCR = "https://ghcr.io"
HUB_CHALLENGE = 'Bearer realm="https://auth.docker.io/token",service="registry.docker.io"'
GHCR_CHALLENGE = 'Bearer realm="https://ghcr.io/token",service="ghcr.io"'


def _assert_security_headers(response):
    for name, value in SECURITY_HEADERS.items():
        assert response.headers[name] == value


async def test_ping_401_points_realm_at_gateway(client: AsyncClient, upstream: FakeUpstream):
    upstream.add("GET", f"{HUB}/v2/", 401, headers={"WWW-Authenticate": HUB_CHALLENGE})

    response = await client.get("/v2/")

    assert response.status_code == 401
    challenge = parse_challenge(response.headers["WWW-Authenticate"])
    assert urlparse(challenge.realm).hostname == "gateway.example.com"
    assert challenge.realm == "https://gateway.example.com/v2/auth"
    assert challenge.service == "registry-gateway"
    assert challenge.scope is None
    assert response.json()["errors"][0]["code"] == "UNAUTHORIZED"
    _assert_security_headers(response)


async def test_ping_passes_through_success(client: AsyncClient, upstream: FakeUpstream):
    upstream.add(
        "GET",
        f"{HUB}/v2/",
        200,
        headers={"Docker-Distribution-API-Version": "registry/2.0"},
        content=b"{}",
    )

    response = await client.get("/v2/", headers={"Authorization": "Bearer token"})

    assert response.status_code == 200
    assert response.content == b"{}"
    assert response.headers["Docker-Distribution-API-Version"] == "registry/2.0"
    assert upstream.last(f"{HUB}/v2/").headers["Authorization"] == "Bearer token"
    _assert_security_headers(response)


async def test_official_image_is_namespaced(client: AsyncClient, upstream: FakeUpstream):
    url = f"{HUB}/v2/library/busybox/manifests/latest"
    upstream.add("GET", url, 200, headers={"Content-Type": "application/json"}, content=b'{"a":1}')

    response = await client.get(
        "/v2/busybox/manifests/latest",
        headers={"Accept": "application/vnd.oci.image.index.v1+json", "Cookie": "c=1"},
    )

    assert response.status_code == 200
    assert response.content == b'{"a":1}'
    sent = upstream.last(url)
    assert sent.headers["Accept"] == "application/vnd.oci.image.index.v1+json"
    assert "Cookie" not in sent.headers
    assert [str(r.url) for r in upstream.requests] == [url]


async def test_namespaced_image_is_not_rewritten_twice(client: AsyncClient, upstream: FakeUpstream):
    url = f"{HUB}/v2/library/busybox/manifests/latest"
    upstream.add("GET", url, 200)

    for path in ("/v2/busybox/manifests/latest", "/v2/library/busybox/manifests/latest"):
        response = await client.get(path)
        assert response.status_code == 200

    assert [str(r.url) for r in upstream.requests] == [url, url]


async def test_explicit_hub_prefix(client: AsyncClient, upstream: FakeUpstream):
    url = f"{HUB}/v2/library/busybox/tags/list"
    upstream.add("GET", url, 200, content=b'{"tags":[]}')

    response = await client.get("/v2/register/docker/hub/busybox/tags/list?n=10")

    assert response.status_code == 200
    assert upstream.last(url).url.params["n"] == "10"


async def test_manifest_401_synthesizes_scope(client: AsyncClient, upstream: FakeUpstream):
    upstream.add(
        "GET",
        f"{HUB}/v2/library/busybox/manifests/latest",
        401,
        headers={"WWW-Authenticate": HUB_CHALLENGE},
    )

    response = await client.get("/v2/busybox/manifests/latest")

    assert response.status_code == 401
    challenge = parse_challenge(response.headers["WWW-Authenticate"])
    assert challenge.scope == "repository:library/busybox:pull"
    assert challenge.service == "registry-gateway"


async def test_manifest_401_normalizes_upstream_scope(client: AsyncClient, upstream: FakeUpstream):
    upstream.add(
        "HEAD",
        f"{HUB}/v2/library/busybox/manifests/latest",
        401,
        headers={"WWW-Authenticate": HUB_CHALLENGE + ',scope="repository:busybox:pull"'},
    )

    response = await client.head("/v2/busybox/manifests/latest")

    assert response.status_code == 401
    challenge = parse_challenge(response.headers["WWW-Authenticate"])
    assert challenge.scope == "repository:library/busybox:pull"


async def test_route_prefix_selects_registry(client: AsyncClient, upstream: FakeUpstream):
    upstream.add(
        "GET",
        f"{GHCR}/v2/org/app/manifests/1.0",
        401,
        headers={"WWW-Authenticate": GHCR_CHALLENGE + ',scope="repository:org/app:pull"'},
    )

    response = await client.get("/v2/register/github/org/app/manifests/1.0")

    assert response.status_code == 401
    challenge = parse_challenge(response.headers["WWW-Authenticate"])
    assert challenge.realm == "https://gateway.example.com/v2/auth"
    assert challenge.service == "registry-gateway/register/github"
    assert challenge.scope == "repository:org/app:pull"


async def test_route_prefix_alone_pings_that_registry(client: AsyncClient, upstream: FakeUpstream):
    upstream.add("GET", f"{GHCR}/v2/", 401, headers={"WWW-Authenticate": GHCR_CHALLENGE})

    response = await client.get("/v2/register/github/")

    assert response.status_code == 401
    challenge = parse_challenge(response.headers["WWW-Authenticate"])
    assert challenge.service == "registry-gateway/register/github"


async def test_blob_redirect_is_followed(client: AsyncClient, upstream: FakeUpstream):
    blob_url = f"{HUB}/v2/library/busybox/blobs/sha256:abc"
    signed_url = "https://production.cloudflare.docker.com/registry-v2/blobs/sha256/ab/abc/data"
    upstream.add("GET", blob_url, 307, headers={"Location": signed_url + "?verify=123"})
    upstream.add(
        "GET",
        signed_url,
        206,
        headers={"Content-Type": "application/octet-stream", "Content-Length": "5"},
        content=b"layer",
    )

    response = await client.get(
        "/v2/busybox/blobs/sha256:abc",
        headers={
            "Authorization": "Bearer token",
            "Accept": "application/octet-stream",
            "User-Agent": "docker/27.0",
            "Range": "bytes=0-4",
        },
    )

    assert response.status_code == 206
    assert response.content == b"layer"
    assert "location" not in response.headers
    _assert_security_headers(response)

    assert upstream.last(blob_url).headers["range"] == "bytes=0-4"

    redirected = upstream.last(signed_url)
    assert redirected.method == "GET"
    assert redirected.url.params["verify"] == "123"
    assert redirected.headers["range"] == "bytes=0-4"
    assert "authorization" not in redirected.headers
    assert "accept" not in redirected.headers
    assert "user-agent" not in redirected.headers

    assert len(upstream.bodies) == 2
    assert all(body.closed for body in upstream.bodies)


async def test_blob_redirect_keeps_head_method(client: AsyncClient, upstream: FakeUpstream):
    blob_url = f"{HUB}/v2/library/busybox/blobs/sha256:abc"
    signed_url = "https://production.cloudflare.docker.com/registry-v2/blobs/sha256/ab/abc/data"
    upstream.add("HEAD", blob_url, 302, headers={"Location": signed_url})
    upstream.add("HEAD", signed_url, 200, headers={"Content-Type": "application/octet-stream"})

    response = await client.head("/v2/busybox/blobs/sha256:abc")

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/octet-stream"
    assert upstream.last(signed_url).method == "HEAD"
    assert all(body.closed for body in upstream.bodies)


async def test_redirect_from_other_registry_is_relayed(client: AsyncClient, upstream: FakeUpstream):
    location = "https://pkg-containers.githubusercontent.com/ghcr1/blobs/sha256:abc"
    upstream.add("GET", f"{GHCR}/v2/org/app/blobs/sha256:abc", 307, headers={"Location": location})

    response = await client.get("/v2/register/github/org/app/blobs/sha256:abc")

    assert response.status_code == 307
    assert response.headers["location"] == location
    assert len(upstream.requests) == 1


async def test_push_body_is_streamed_upstream(client: AsyncClient, upstream: FakeUpstream):
    url = f"{GHCR}/v2/org/app/manifests/1.0"
    upstream.add("PUT", url, 201)

    response = await client.put(
        "/v2/register/github/org/app/manifests/1.0",
        content=b'{"schemaVersion":2}',
        headers={"Content-Type": "application/vnd.oci.image.manifest.v1+json"},
    )

    assert response.status_code == 201
    assert upstream.last(url).content == b'{"schemaVersion":2}'


async def test_401_without_challenge_is_500(client: AsyncClient, upstream: FakeUpstream):
    upstream.add("GET", f"{HUB}/v2/library/busybox/manifests/latest", 401)

    response = await client.get("/v2/busybox/manifests/latest")

    assert response.status_code == 500
    assert "error" in response.json()
    assert "WWW-Authenticate" not in response.headers
    _assert_security_headers(response)


async def test_unreachable_registry_is_500(client: AsyncClient, upstream: FakeUpstream):
    response = await client.get("/v2/busybox/manifests/latest")

    assert response.status_code == 500
    assert response.json() == {"error": "Upstream unreachable"}
    _assert_security_headers(response)


async def test_token_relay_maps_service_and_normalizes_scope(
    client: AsyncClient, upstream: FakeUpstream
):
    upstream.add("GET", f"{HUB}/v2/", 401, headers={"WWW-Authenticate": HUB_CHALLENGE})
    upstream.add(
        "GET",
        "https://auth.docker.io/token",
        200,
        headers={"Content-Type": "application/json"},
        content=b'{"token":"abc","expires_in":300}',
    )

    response = await client.get(
        "/v2/auth",
        params={"service": "registry-gateway", "scope": "repository:busybox:pull"},
    )

    assert response.status_code == 200
    assert response.content == b'{"token":"abc","expires_in":300}'
    _assert_security_headers(response)

    discovery = upstream.last(f"{HUB}/v2/")
    assert "Authorization" not in discovery.headers

    token_request = upstream.last("https://auth.docker.io/token")
    assert token_request.url.params["service"] == "registry.docker.io"
    assert token_request.url.params["scope"] == "repository:library/busybox:pull"
    assert "Authorization" not in token_request.headers


async def test_token_relay_forwards_authorization(client: AsyncClient, upstream: FakeUpstream):
    upstream.add("GET", f"{HUB}/v2/", 401, headers={"WWW-Authenticate": HUB_CHALLENGE})
    upstream.add("GET", "https://auth.docker.io/token", 401, content=b'{"details":"incorrect"}')

    response = await client.get(
        "/v2/auth?service=registry-gateway&scope=repository:library/busybox:pull"
        "&scope=repository:busybox:push",
        headers={"Authorization": "Basic dXNlcjpwYXNz"},
    )

    assert response.status_code == 401
    assert response.content == b'{"details":"incorrect"}'

    token_request = upstream.last("https://auth.docker.io/token")
    assert token_request.headers["Authorization"] == "Basic dXNlcjpwYXNz"
    assert token_request.url.params.get_list("scope") == [
        "repository:library/busybox:pull",
        "repository:library/busybox:push",
    ]


async def test_token_relay_routes_by_service(client: AsyncClient, upstream: FakeUpstream):
    upstream.add("GET", f"{GHCR}/v2/", 401, headers={"WWW-Authenticate": GHCR_CHALLENGE})
    upstream.add("GET", "https://ghcr.io/token", 200, content=b'{"token":"t"}')

    response = await client.get(
        "/v2/auth",
        params={"service": "registry-gateway/register/github", "scope": "repository:org/app:pull"},
    )

    assert response.status_code == 200
    token_request = upstream.last("https://ghcr.io/token")
    assert token_request.url.params["service"] == "ghcr.io"
    assert token_request.url.params["scope"] == "repository:org/app:pull"


async def test_token_relay_routes_by_scope_prefix(client: AsyncClient, upstream: FakeUpstream):
    upstream.add("GET", f"{GHCR}/v2/", 401, headers={"WWW-Authenticate": GHCR_CHALLENGE})
    upstream.add("GET", "https://ghcr.io/token", 200, content=b'{"token":"t"}')

    response = await client.get(
        "/v2/auth",
        params={
            "service": "registry-gateway",
            "scope": "repository:register/github/org/app:pull",
        },
    )

    assert response.status_code == 200
    token_request = upstream.last("https://ghcr.io/token")
    assert token_request.url.params["service"] == "ghcr.io"
    assert token_request.url.params["scope"] == "repository:org/app:pull"


async def test_token_relay_keeps_foreign_service(client: AsyncClient, upstream: FakeUpstream):
    upstream.add("GET", f"{HUB}/v2/", 401, headers={"WWW-Authenticate": HUB_CHALLENGE})
    upstream.add("GET", "https://auth.docker.io/token", 200, content=b"{}")

    await client.get("/v2/auth", params={"service": "something-else"})

    token_request = upstream.last("https://auth.docker.io/token")
    assert token_request.url.params["service"] == "something-else"
    assert "scope" not in token_request.url.params


async def test_token_relay_without_discoverable_realm_is_500(
    client: AsyncClient, upstream: FakeUpstream
):
    upstream.add("GET", f"{HUB}/v2/", 200)

    response = await client.get("/v2/auth", params={"service": "registry-gateway"})

    assert response.status_code == 500
    assert "did not answer with an authentication challenge" in response.json()["error"]
    _assert_security_headers(response)


async def test_token_relay_drops_empty_scope(client: AsyncClient, upstream: FakeUpstream):
    upstream.add("GET", f"{HUB}/v2/", 401, headers={"WWW-Authenticate": HUB_CHALLENGE})
    upstream.add("GET", "https://auth.docker.io/token", 200, content=b'{"token":"anon"}')

    response = await client.get("/v2/auth?service=registry-gateway&scope=")

    assert response.status_code == 200
    token_request = upstream.last("https://auth.docker.io/token")
    assert token_request.url.params["service"] == "registry.docker.io"
    assert "scope" not in token_request.url.params
