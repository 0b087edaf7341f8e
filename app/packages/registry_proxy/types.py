"""Registry proxy types and data structures.

This module contains shared types used across the registry proxy package.
No dependencies on app.* modules to maintain independence.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class RouteEntry:
    """An upstream reachable through a fixed path prefix.

    Attributes:
        prefix: Path prefix owned by this upstream (e.g., "/ai/openai" or
               "/register/github"). Always starts with a slash, never ends
               with one.
        base_url: Upstream base URL (e.g., "https://api.openai.com")
        allowed_headers: Extra request headers forwarded to this upstream on
                        top of the default allow-list, lowercased
        is_registry: Whether the upstream speaks the Registry V2 protocol
        is_default: Whether this is the fallback registry for paths that
                   carry no route prefix
    """

    prefix: str
    base_url: str
    allowed_headers: frozenset[str] = field(default_factory=frozenset)
    is_registry: bool = False
    is_default: bool = False

    @property
    def key(self) -> str:
        """Prefix without its leading slash (e.g., "register/github")."""
        return self.prefix.strip("/")


@dataclass(frozen=True)
class RouteMatch:
    """Result of resolving a path against a route table.

    `entry` is None when no prefix matched; `remainder` is then the whole path.
    """

    entry: Optional[RouteEntry]
    remainder: str


@dataclass(frozen=True)
class AuthChallenge:
    """A parsed `WWW-Authenticate` challenge.

    Attributes:
        realm: URL of the token endpoint
        service: Service identifier the token is issued for
        scope: Requested scope (e.g., "repository:library/busybox:pull")
        scheme: Authentication scheme, "Bearer" for registries
    """

    realm: str
    service: str
    scope: Optional[str] = None
    scheme: str = "Bearer"

    def to_header(self) -> str:
        params = [("realm", self.realm), ("service", self.service)]
        if self.scope:
            params.append(("scope", self.scope))
        rendered = ",".join(f'{key}="{_quote(value)}"' for key, value in params)
        return f"{self.scheme} {rendered}"


@dataclass(frozen=True)
class ScopeTriple:
    """A registry scope decomposed as `type:name:action[,action...]`."""

    resource_type: str
    name: str
    actions: tuple[str, ...]

    def __str__(self) -> str:
        return f"{self.resource_type}:{self.name}:{','.join(self.actions)}"


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')
