"""Tests for templar.routing.route / context — patterns, matching, query parsing."""

import pytest

from templar.routing.context import ResolveResult, parse_query
from templar.routing.route import CompiledRoute, RouteDefinition, compile_path, match_route


def compiled(*paths: str) -> list[CompiledRoute]:
    return [CompiledRoute(RouteDefinition(path), compile_path(path)) for path in paths]


class TestCompilePath:
    def test_static(self) -> None:
        path = compile_path("/about")
        assert path.match("/about") == {}
        assert path.match("/about/") == {}
        assert path.match("/ABOUT") == {}
        assert path.match("/about/team") is None

    def test_params(self) -> None:
        path = compile_path("/users/:id/posts/:post_id")
        assert path.keys == ("id", "post_id")
        assert path.match("/users/42/posts/7") == {"id": "42", "post_id": "7"}
        assert path.match("/users/42/posts") is None

    def test_param_captures_one_segment(self) -> None:
        assert compile_path("/files/:name").match("/files/a/b") is None

    def test_param_is_percent_decoded(self) -> None:
        assert compile_path("/tags/:tag").match("/tags/caf%C3%A9") == {"tag": "café"}

    def test_param_name_stripped_of_non_word(self) -> None:
        assert compile_path("/x/:slug-name").keys == ("slugname",)

    def test_literal_metacharacters_escaped(self) -> None:
        path = compile_path("/v1.0/(draft)")
        assert path.match("/v1.0/(draft)") == {}
        assert path.match("/v1x0/(draft)") is None

    @pytest.mark.parametrize("pattern", ["*", "/*"])
    def test_wildcard(self, pattern: str) -> None:
        path = compile_path(pattern)
        assert path.wildcard
        assert path.match("/anything/at/all") == {}

    def test_root(self) -> None:
        path = compile_path("/")
        assert path.match("/") == {}
        assert path.match("/x") is None


class TestMatchRoute:
    def test_first_declared_wins(self) -> None:
        routes = compiled("/users/new", "/users/:id")
        match = match_route(routes, "/users/new")
        assert match.route.path == "/users/new"
        assert match.path_params == {}
        assert match_route(routes, "/users/9").path_params == {"id": "9"}

    def test_wildcard_route_shadows_later_routes(self) -> None:
        routes = compiled("*", "/about")
        assert match_route(routes, "/about").route.path == "*"

    def test_no_match(self) -> None:
        assert match_route(compiled("/a"), "/b") is None


class TestParseQuery:
    def test_basic(self) -> None:
        assert parse_query("?tab=info&page=2") == {"tab": "info", "page": "2"}

    def test_last_duplicate_wins(self) -> None:
        assert parse_query("?tab=a&tab=b&tab=c") == {"tab": "c"}

    def test_blank_keys_skipped_and_values_kept(self) -> None:
        assert parse_query("?=x&flag&a=&%20=y") == {"flag": "", "a": ""}

    def test_decoding(self) -> None:
        assert parse_query("q=caf%C3%A9%20au%20lait") == {"q": "café au lait"}

    def test_plus_is_literal(self) -> None:
        assert parse_query("?q=a+b&tag=c%2Bd") == {"q": "a+b", "tag": "c+d"}

    def test_value_keeps_later_equals_signs(self) -> None:
        assert parse_query("?expr=a=b") == {"expr": "a=b"}

    def test_empty(self) -> None:
        assert parse_query("") == {}
        assert parse_query("?") == {}


class TestDefinitions:
    def test_from_mapping_keeps_extra_keys_as_meta(self) -> None:
        route = RouteDefinition.from_mapping({"path": "/a", "view": "/v/a.html", "name": "a"})
        assert route.view == "/v/a.html"
        assert route.meta == {"name": "a"}

    def test_resolve_result_coerce(self) -> None:
        result = ResolveResult.coerce({"data": {"x": 1}, "history": "replace", "ignored": True})
        assert result == ResolveResult(data={"x": 1}, history="replace")
        assert ResolveResult.coerce(None) is None
        assert ResolveResult.coerce(result) is result

    def test_resolve_result_rejects_other_types(self) -> None:
        with pytest.raises(TypeError, match="ResolveResult"):
            ResolveResult.coerce(42)
