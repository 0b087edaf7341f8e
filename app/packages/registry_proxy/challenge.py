"""Registry V2 Bearer challenge and scope handling.

Parses `WWW-Authenticate` headers following the RFC 7235 grammar

    challenge   = auth-scheme 1*SP auth-param *( OWS "," OWS auth-param )
    auth-param  = token OWS "=" OWS ( token / quoted-string )

and rewrites repository names of the official image namespace
("busybox" -> "library/busybox") in request paths and token scopes.

See: https://distribution.github.io/distribution/spec/auth/token/
"""

from typing import Optional

from .exceptions import UpstreamProtocolViolation
from .types import AuthChallenge, ScopeTriple

DEFAULT_NAMESPACE = "library"

# Path markers that end the repository part of a /v2/<name>/... path
_REPOSITORY_MARKERS = ("/manifests/", "/blobs/", "/tags/", "/referrers/")

_SEPARATORS = frozenset('()<>@,;:\\"/[]?={} \t')


def parse_auth_params(header: str) -> tuple[str, dict[str, str]]:
    """Split a `WWW-Authenticate` value into its scheme and parameters.

    Parameter names are lowercased. Raises ValueError on malformed input.
    """
    header = header.strip()
    scheme, _, rest = header.partition(" ")
    if not scheme or not _is_token(scheme):
        raise ValueError(f"Missing auth scheme in {header!r}")

    params: dict[str, str] = {}
    pos = 0
    length = len(rest)
    while True:
        pos = _skip_whitespace(rest, pos)
        if pos >= length:
            break

        start = pos
        while pos < length and rest[pos] not in _SEPARATORS:
            pos += 1
        name = rest[start:pos].lower()
        if not name:
            raise ValueError(f"Expected parameter name at offset {start}")

        pos = _skip_whitespace(rest, pos)
        if pos >= length or rest[pos] != "=":
            raise ValueError(f"Expected '=' after parameter {name!r}")
        pos = _skip_whitespace(rest, pos + 1)

        if pos < length and rest[pos] == '"':
            value, pos = _read_quoted(rest, pos)
        else:
            start = pos
            while pos < length and rest[pos] not in _SEPARATORS:
                pos += 1
            value = rest[start:pos]
            if not value:
                raise ValueError(f"Empty value for parameter {name!r}")

        params[name] = value

        pos = _skip_whitespace(rest, pos)
        if pos >= length:
            break
        if rest[pos] != ",":
            raise ValueError(f"Expected ',' at offset {pos}")
        pos += 1

    return scheme, params


def parse_challenge(header: Optional[str]) -> AuthChallenge:
    """Parse a Bearer challenge into an AuthChallenge.

    Raises:
        UpstreamProtocolViolation: header missing, malformed, not a Bearer
            challenge, or lacking realm or service
    """
    if not header:
        raise UpstreamProtocolViolation("Upstream 401 carried no WWW-Authenticate header")

    try:
        scheme, params = parse_auth_params(header)
    except ValueError as e:
        raise UpstreamProtocolViolation(f"Unparseable WWW-Authenticate header: {e}") from e

    if scheme.lower() != "bearer":
        raise UpstreamProtocolViolation(f"Unsupported authentication scheme: {scheme}")

    realm = params.get("realm")
    service = params.get("service")
    if not realm or not service:
        raise UpstreamProtocolViolation("WWW-Authenticate challenge lacks realm or service")

    return AuthChallenge(
        realm=realm,
        service=service,
        scope=params.get("scope") or None,
        scheme="Bearer",
    )


def parse_scope(scope: str) -> Optional[ScopeTriple]:
    """Parse `type:name:action[,action...]`, or None if it does not fit.

    The name may itself contain colons (digests, registry ports), so the
    type is split off the front and the actions off the back.
    """
    resource_type, sep, rest = scope.partition(":")
    if not sep:
        return None
    name, sep, actions = rest.rpartition(":")
    if not sep or not resource_type or not name:
        return None
    return ScopeTriple(
        resource_type=resource_type,
        name=name,
        actions=tuple(action for action in actions.split(",") if action),
    )


def normalize_repository(name: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    """Prefix an official single-segment image name with the namespace.

    Names that already carry a namespace or a digest/tag are left alone, so
    the rewrite is idempotent.
    """
    if not name or "/" in name or ":" in name or "@" in name:
        return name
    return f"{namespace}/{name}"


def normalize_scope(scope: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    """Normalize the repository name of every scope in a space-separated list."""
    normalized = []
    for item in scope.split(" "):
        triple = parse_scope(item)
        if triple is None or triple.resource_type != "repository":
            normalized.append(item)
            continue
        name = normalize_repository(triple.name, namespace)
        normalized.append(
            str(ScopeTriple(triple.resource_type, name, triple.actions))
        )
    return " ".join(normalized)


def split_image_path(image_path: str) -> tuple[Optional[str], str]:
    """Split "<repository>/manifests/<ref>" into repository and the rest.

    Returns (None, image_path) for paths without a repository part, such as
    "_catalog".
    """
    image_path = image_path.lstrip("/")
    padded = f"/{image_path}"
    for marker in _REPOSITORY_MARKERS:
        idx = padded.find(marker)
        if idx > 0:
            return padded[1:idx], padded[idx:]
    return None, image_path


def normalize_image_path(image_path: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    """Rewrite "busybox/manifests/latest" to "library/busybox/manifests/latest"."""
    repository, rest = split_image_path(image_path)
    if repository is None:
        return image_path.lstrip("/")
    return normalize_repository(repository, namespace) + rest


def pull_scope(repository: str) -> str:
    return str(ScopeTriple("repository", repository, ("pull",)))


def _skip_whitespace(value: str, pos: int) -> int:
    while pos < len(value) and value[pos] in " \t":
        pos += 1
    return pos


def _read_quoted(value: str, pos: int) -> tuple[str, int]:
    # pos points at the opening quote
    chars = []
    pos += 1
    while pos < len(value):
        char = value[pos]
        if char == "\\" and pos + 1 < len(value):
            chars.append(value[pos + 1])
            pos += 2
            continue
        if char == '"':
            return "".join(chars), pos + 1
        chars.append(char)
        pos += 1
    raise ValueError("Unterminated quoted string")


def _is_token(value: str) -> bool:
    return all(char not in _SEPARATORS for char in value)
