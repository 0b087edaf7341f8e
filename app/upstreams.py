"""Upstream tables served by the gateway.

Operator-maintained: each group maps a route key to its upstream base URL and
the request headers it needs beyond the default allow-list.
"""

from typing import TypedDict

from app.packages.registry_proxy import RouteEntry, RouteTable


class UpstreamConfig(TypedDict, total=False):
    base_url: str
    allowed_headers: list[str]
    default: bool


AI_APIS: dict[str, UpstreamConfig] = {
    "discord": {"base_url": "https://discord.com/api"},
    "telegram": {"base_url": "https://api.telegram.org"},
    "openai": {"base_url": "https://api.openai.com"},
    "claude": {
        "base_url": "https://api.anthropic.com",
        "allowed_headers": ["anthropic-version"],
    },
    "gemini": {
        "base_url": "https://generativelanguage.googleapis.com",
        "allowed_headers": ["x-goog-api-key"],
    },
    "meta": {"base_url": "https://www.meta.ai/api"},
    "groq": {"base_url": "https://api.groq.com/openai"},
    "xai": {"base_url": "https://api.x.ai", "allowed_headers": ["x-api-key"]},
    "cohere": {"base_url": "https://api.cohere.ai"},
    "huggingface": {"base_url": "https://api.huggingface.co"},
    "together": {"base_url": "https://api.together.ai"},
    "novita": {"base_url": "https://api.novita.ai"},
    "portkey": {"base_url": "https://api.portkey.ai"},
    "fireworks": {"base_url": "https://api.fireworks.ai"},
    "openrouter": {"base_url": "https://openrouter.ai/api"},
}

# Keys are relative to /v2/
REGISTRY_APIS: dict[str, UpstreamConfig] = {
    "docker/elastic": {"base_url": "https://docker.elastic.co"},
    "docker/hub": {"base_url": "https://registry-1.docker.io", "default": True},
    "google": {"base_url": "https://gcr.io"},
    "github": {"base_url": "https://ghcr.io"},
    "k8s": {"base_url": "https://registry.k8s.io"},
    "microsoft": {"base_url": "https://mcr.microsoft.com"},
    "nvidia": {"base_url": "https://nvcr.io"},
    "quay": {"base_url": "https://quay.io"},
    "ollama": {"base_url": "https://registry.ollama.ai"},
}

AI_PREFIX = "/ai"
REGISTRY_PREFIX = "/register"

# Registry clients resume and upload blobs
REGISTRY_HEADERS = ["range", "content-length"]


def build_route_table(
    prefix: str,
    group: dict[str, UpstreamConfig],
    is_registry: bool = False,
    extra_headers: list[str] | None = None,
) -> RouteTable:
    return RouteTable(
        RouteEntry(
            prefix=f"{prefix}/{key}",
            base_url=config["base_url"],
            allowed_headers=frozenset(
                header.lower()
                for header in [*config.get("allowed_headers", []), *(extra_headers or [])]
            ),
            is_registry=is_registry,
            is_default=config.get("default", False),
        )
        for key, config in group.items()
    )


AI_ROUTES = build_route_table(AI_PREFIX, AI_APIS)
REGISTRY_ROUTES = build_route_table(
    REGISTRY_PREFIX, REGISTRY_APIS, is_registry=True, extra_headers=REGISTRY_HEADERS
)
