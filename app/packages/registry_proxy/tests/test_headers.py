from fastapi.responses import Response

from app.packages.registry_proxy.headers import (
    DEFAULT_ALLOWED_HEADERS,
    SECURITY_HEADERS,
    apply_security_headers,
    filter_headers,
    response_headers,
)

INBOUND = {
    "Accept": "application/json",
    "Content-Type": "application/json",
    "Authorization": "Bearer sk-test",
    "User-Agent": "curl/8",
    "Cookie": "session=1",
    "X-Forwarded-For": "10.0.0.1",
    "CF-Connecting-IP": "10.0.0.1",
    "Anthropic-Version": "2023-06-01",
    "X-Random": "1",
}


def test_filter_keeps_only_default_headers():
    filtered = filter_headers(INBOUND)
    assert {name.lower() for name in filtered} == DEFAULT_ALLOWED_HEADERS


def test_filter_adds_target_allow_list_case_insensitively():
    filtered = filter_headers(INBOUND, {"ANTHROPIC-VERSION"})
    assert filtered["Anthropic-Version"] == "2023-06-01"
    assert "X-Random" not in filtered
    assert "Cookie" not in filtered


def test_filter_never_leaks_unlisted_headers():
    allowed = {"x-api-key"}
    filtered = filter_headers(list(INBOUND.items()) + [("X-API-KEY", "k")], allowed)
    assert {name.lower() for name in filtered} <= DEFAULT_ALLOWED_HEADERS | allowed


def test_filter_does_not_mutate_input():
    inbound = dict(INBOUND)
    filter_headers(inbound)
    assert inbound == INBOUND


def test_response_headers_drop_hop_by_hop_and_keep_duplicates():
    headers = response_headers(
        [
            ("Connection", "keep-alive"),
            ("Transfer-Encoding", "chunked"),
            ("Set-Cookie", "a=1"),
            ("Set-Cookie", "b=2"),
            ("Content-Length", "10"),
        ]
    )
    assert headers == [("Set-Cookie", "a=1"), ("Set-Cookie", "b=2"), ("Content-Length", "10")]


def test_security_headers_overwrite_and_are_idempotent():
    response = Response(headers={"X-Frame-Options": "SAMEORIGIN"})

    apply_security_headers(response.headers)
    apply_security_headers(response.headers)

    for name, value in SECURITY_HEADERS.items():
        assert response.headers.getlist(name) == [value]
