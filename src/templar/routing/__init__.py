"""Routing — path patterns, navigation and link interception."""

from templar.routing.context import (
    NavigationContext,
    NavigationToken,
    RenderRequest,
    ResolveResult,
    RouteContext,
    parse_query,
)
from templar.routing.links import install_link_interceptor, link_target
from templar.routing.navigator import Router
from templar.routing.route import CompiledPath, RouteDefinition, RouteMatch, compile_path, match_route
from templar.routing.transitions import Transition, TransitionContext, wait_for_transition_end

__all__ = [
    "CompiledPath",
    "NavigationContext",
    "NavigationToken",
    "RenderRequest",
    "ResolveResult",
    "RouteContext",
    "RouteDefinition",
    "RouteMatch",
    "Router",
    "Transition",
    "TransitionContext",
    "compile_path",
    "install_link_interceptor",
    "link_target",
    "match_route",
    "parse_query",
    "wait_for_transition_end",
]
