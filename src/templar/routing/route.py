"""Route definitions, compiled path patterns and matching."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import unquote

WILDCARD_PATTERNS = frozenset({"*", "/*"})

_NON_WORD_RE = re.compile(r"\W")


@dataclass(frozen=True, slots=True)
class CompiledPath:
    """A route pattern compiled to a case-insensitive regex.

    ``/users/:id`` -> ``^/users/([^/]+)/?$`` with ``keys == ("id",)``.
    """

    pattern: str
    regex: re.Pattern[str]
    keys: tuple[str, ...] = ()
    wildcard: bool = False

    def match(self, pathname: str) -> dict[str, str] | None:
        """Captured parameters (percent-decoded), or ``None`` on no match."""
        m = self.regex.match(pathname)
        if m is None:
            return None
        return {key: unquote(m.group(i + 1) or "") for i, key in enumerate(self.keys)}


def compile_path(pattern: str) -> CompiledPath:
    """Compile a route pattern.

    Examples::

        "*" / "/*"       -> matches anything, no parameters
        "/about"         -> "/about" or "/about/"
        "/users/:id"     -> one segment captured as "id"
        "/a.b/:x-y"      -> literal "a.b", parameter named "xy"
    """
    if pattern in WILDCARD_PATTERNS:
        return CompiledPath(pattern, re.compile(r"^.*$", re.IGNORECASE), wildcard=True)

    keys: list[str] = []
    parts: list[str] = []
    for seg in pattern.split("/"):
        if not seg:
            parts.append("")
        elif seg.startswith(":"):
            keys.append(_NON_WORD_RE.sub("", seg[1:]))
            parts.append("([^/]+)")
        else:
            parts.append(re.escape(seg))
    regex = re.compile("^" + "/".join(parts) + "/?$", re.IGNORECASE)
    return CompiledPath(pattern, regex, tuple(keys))


@dataclass(frozen=True, slots=True)
class RouteDefinition:
    """A declared route.

    Attributes:
        path: Pattern (``/users/:id``, ``*``).
        view: Template identifier, or ``(ctx, path_params) -> str`` given the
            ``NavigationContext`` and captured parameters. ``None`` uses convention.
        resolve: ``(params, route_ctx) -> ResolveResult | Mapping | None``,
            sync or async. Runs before rendering.
        render: Custom render step ``(RenderRequest)``, sync or async. Runs
            after the default delivery, before the "in" transition.
        transition: Transition name or inline ``Transition``.
        title: Document title, or ``(route_ctx) -> str``.
        root: Target surface for this route (selector, element, callable).
    """

    path: str
    view: str | Callable[..., str] | None = None
    resolve: Callable[..., Any] | None = None
    render: Callable[..., Any] | None = None
    transition: Any = None
    title: str | Callable[..., str] | None = None
    root: Any = None
    meta: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> RouteDefinition:
        """Build a definition from a plain dict (``{"path": ..., "view": ...}``)."""
        known = {"path", "view", "resolve", "render", "transition", "title", "root"}
        return cls(
            **{key: value for key, value in mapping.items() if key in known},
            meta={key: value for key, value in mapping.items() if key not in known},
        )


@dataclass(frozen=True, slots=True)
class CompiledRoute:
    definition: RouteDefinition
    compiled: CompiledPath

    @property
    def path(self) -> str:
        return self.definition.path


@dataclass(frozen=True, slots=True)
class RouteMatch:
    """Result of a successful route match."""

    route: RouteDefinition
    path_params: dict[str, str]


def match_route(routes: Iterable[CompiledRoute], pathname: str) -> RouteMatch | None:
    """First declared route whose pattern matches *pathname* wins."""
    for entry in routes:
        params = entry.compiled.match(pathname)
        if params is not None:
            return RouteMatch(entry.definition, params)
    return None
