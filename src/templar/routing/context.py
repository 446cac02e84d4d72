"""Navigation context types.

``NavigationContext`` is built once per navigation from the requested
location. ``RouteContext`` is the read-only view handed to resolve steps
and title callables; ``RenderRequest`` is what a custom render step
receives. A resolve step answers with a ``ResolveResult`` (or a plain
mapping with the same keys).
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import unquote

from templar.routing.route import RouteDefinition


def parse_query(search: str) -> dict[str, str]:
    """Parse ``?a=1&b=2`` into a dict.

    A repeated key keeps its last value; blank keys are skipped.
    Percent escapes are decoded; ``+`` stays a literal plus.
    """
    query = search[1:] if search.startswith("?") else search
    out: dict[str, str] = {}
    for part in query.split("&"):
        raw_key, _, raw_value = part.partition("=")
        key = unquote(raw_key).strip()
        if key:
            out[key] = unquote(raw_value)
    return out


@dataclass(slots=True)
class NavigationToken:
    """Identity of one navigation. Superseded tokens get ``canceled``."""

    id: int
    canceled: bool = False


@dataclass(frozen=True, slots=True)
class NavigationContext:
    """Where a navigation is going, relative to the application base.

    ``path`` keeps query and fragment (``/users/42?tab=info``);
    ``pathname`` is the bare path without a trailing slash.
    """

    url: str
    path: str
    pathname: str
    hash: str = ""
    query_params: Mapping[str, str] = field(default_factory=dict)
    state: Any = None

    def describe(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "pathname": self.pathname,
            "hash": self.hash,
            "query_params": dict(self.query_params),
        }


@dataclass(frozen=True, slots=True)
class RouteContext:
    """Read-only context for resolve steps and title callables.

    ``navigate(path, **options)`` starts a nested navigation, which
    supersedes the one this context belongs to.
    """

    path: str
    pathname: str
    hash: str
    state: Any
    data_from_go: Mapping[str, Any] | None
    route: RouteDefinition | None
    navigate: Callable[..., Any]


@dataclass(frozen=True, slots=True)
class RenderRequest:
    """Everything a route's custom render step gets."""

    path: str
    pathname: str
    hash: str
    state: Any
    data: Mapping[str, Any]
    view: str
    root: Any
    navigate: Callable[..., Any]


@dataclass(frozen=True, slots=True)
class ResolveResult:
    """What a resolve step may override.

    Attributes:
        data: Extra template data, layered over params and the route descriptor.
        view: Replacement template identifier.
        title: Document title (string or ``(route_ctx) -> str``).
        url: URL written to history instead of the requested path.
        history: ``"push"`` / ``"replace"`` / ``"none"`` for this navigation.
        state: History entry state.
    """

    data: Mapping[str, Any] | None = None
    view: str | None = None
    title: str | Callable[..., str] | None = None
    url: str | None = None
    history: str | None = None
    state: Any = None

    @classmethod
    def coerce(cls, value: Any) -> ResolveResult | None:
        """Accept a ``ResolveResult``, a mapping with the same keys, or ``None``."""
        if value is None or isinstance(value, ResolveResult):
            return value
        if isinstance(value, Mapping):
            known = {"data", "view", "title", "url", "history", "state"}
            return cls(**{key: value[key] for key in value if key in known})
        msg = f"resolve() must return a mapping or ResolveResult, got {type(value).__name__}"
        raise TypeError(msg)

