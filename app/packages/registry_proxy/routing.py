"""Longest-prefix routing of request paths to upstream entries."""

from typing import Iterable, Iterator, Optional

from .types import RouteEntry, RouteMatch


class RouteTable:
    """Immutable longest-prefix index over route entries.

    Built once at startup and shared by all requests. Matching respects path
    segment boundaries: "/ai/openai" matches "/ai/openai" and "/ai/openai/x"
    but never "/ai/openai-x".
    """

    def __init__(self, entries: Iterable[RouteEntry]):
        by_prefix: dict[str, RouteEntry] = {}
        for entry in entries:
            prefix = _normalize_prefix(entry.prefix)
            if prefix != entry.prefix:
                raise ValueError(f"Route prefix must look like '/a/b': {entry.prefix!r}")
            if prefix in by_prefix:
                raise ValueError(f"Duplicate route prefix: {prefix}")
            by_prefix[prefix] = entry

        defaults = [entry for entry in by_prefix.values() if entry.is_default]
        if len(defaults) > 1:
            raise ValueError(
                "Only one default route is allowed, got "
                + ", ".join(entry.prefix for entry in defaults)
            )

        # Longest first so the first hit is the best one
        self._entries = tuple(
            sorted(by_prefix.values(), key=lambda entry: len(entry.prefix), reverse=True)
        )
        self._default = defaults[0] if defaults else None

    def __iter__(self) -> Iterator[RouteEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def default(self) -> Optional[RouteEntry]:
        return self._default

    def get(self, prefix: str) -> Optional[RouteEntry]:
        prefix = _normalize_prefix(prefix)
        for entry in self._entries:
            if entry.prefix == prefix:
                return entry
        return None

    def resolve(self, path: str) -> RouteMatch:
        """Resolve a path to the entry with the longest matching prefix.

        Args:
            path: Request path, with or without a leading slash

        Returns:
            RouteMatch with the entry and the path left after the prefix
            (e.g., "/v1/messages"). When nothing matches, entry is None and
            remainder is the normalized path.
        """
        if not path.startswith("/"):
            path = f"/{path}"

        for entry in self._entries:
            if path == entry.prefix or path.startswith(entry.prefix + "/"):
                return RouteMatch(entry=entry, remainder=path[len(entry.prefix) :])

        return RouteMatch(entry=None, remainder=path)


def _normalize_prefix(prefix: str) -> str:
    return "/" + prefix.strip("/")
