"""Tests for templar.dom — parsing, selectors, events and insertion observers."""

import pytest

from templar.dom import Document, Element, Event, Node, Text, parse_html, parse_selector


class TestParsing:
    def test_round_trip(self) -> None:
        root = Element("div")
        root.set_inner_html('<ul class="list"><li id="a">one</li><li>two &amp; three</li></ul><br>')
        assert root.inner_html == '<ul class="list"><li id="a">one</li><li>two &amp; three</li></ul><br>'

    def test_boolean_attribute(self) -> None:
        (node,) = parse_html("<input disabled>")
        assert isinstance(node, Element)
        assert node.has_attribute("disabled")
        assert node.get_attribute("disabled") == ""

    def test_text_nodes(self) -> None:
        nodes = parse_html("a<b>b</b>c")
        assert [type(node) for node in nodes] == [Text, Element, Text]
        assert Element("p").text_content == ""

    def test_raw_text_not_escaped(self) -> None:
        root = Element("div")
        root.set_inner_html("<script>if (a < b) {}</script>")
        assert root.inner_html == "<script>if (a < b) {}</script>"

    def test_parsed_nodes_detached(self) -> None:
        assert all(node.parent is None for node in parse_html("<p></p><p></p>"))


class TestSelectors:
    @pytest.fixture
    def tree(self) -> Element:
        root = Element("div")
        root.set_inner_html(
            '<nav id="top"><a href="/a" class="btn primary">A</a>'
            '<a href="https://x.test/b" download>B</a></nav>'
            '<section><p><a href="/c" data-router="force">C</a></p></section>'
        )
        return root

    def test_tag_id_class(self, tree: Element) -> None:
        assert tree.query_selector("#top").tag_name == "nav"
        assert tree.query_selector("a.btn.primary").text_content == "A"
        assert tree.query_selector("a.missing") is None

    def test_attribute_operators(self, tree: Element) -> None:
        assert [a.text_content for a in tree.query_selector_all("a[href^='/']")] == ["A", "C"]
        assert [a.text_content for a in tree.query_selector_all('a[href$="b"]')] == ["B"]
        assert [a.text_content for a in tree.query_selector_all("[data-router=force]")] == ["C"]
        assert [a.text_content for a in tree.query_selector_all("a[class~=primary]")] == ["A"]

    def test_not(self, tree: Element) -> None:
        found = tree.query_selector_all("a[href]:not([download])")
        assert [a.text_content for a in found] == ["A", "C"]

    def test_combinators(self, tree: Element) -> None:
        assert [a.text_content for a in tree.query_selector_all("section a")] == ["C"]
        assert tree.query_selector("section > a") is None
        assert tree.query_selector("p > a").text_content == "C"

    def test_selector_list(self, tree: Element) -> None:
        assert len(tree.query_selector_all("nav, p")) == 2

    def test_closest_and_matches(self, tree: Element) -> None:
        link = tree.query_selector("p a")
        assert link.matches("[data-router]")
        assert link.closest("section").tag_name == "section"
        assert link.closest("nav") is None

    def test_invalid_selector(self) -> None:
        with pytest.raises(ValueError):
            parse_selector("a >> b")


class TestEvents:
    def test_bubbles_to_ancestors(self) -> None:
        root = Element("div")
        root.set_inner_html("<p><span>x</span></p>")
        seen: list[str] = []
        root.add_event_listener("ping", lambda event: seen.append(event.current_target.tag_name))
        root.query_selector("span").dispatch_event(Event("ping", bubbles=True))
        assert seen == ["div"]

    def test_non_bubbling_stays(self) -> None:
        root = Element("div")
        root.set_inner_html("<p></p>")
        seen: list[Event] = []
        root.add_event_listener("ping", seen.append)
        root.query_selector("p").dispatch_event(Event("ping"))
        assert seen == []

    def test_composed_event_leaves_shadow_root(self) -> None:
        host = Element("x-host")
        shadow = host.attach_shadow()
        shadow.set_inner_html("<button>b</button>")
        outer: list[Node] = []
        host.add_event_listener("press", lambda event: outer.append(event.target))
        button = shadow.query_selector("button")

        button.dispatch_event(Event("press", bubbles=True))
        assert outer == []

        button.dispatch_event(Event("press", bubbles=True, composed=True))
        assert outer == [host]

    def test_prevent_default(self) -> None:
        el = Element("a")
        el.add_event_listener("click", lambda event: event.prevent_default())
        assert el.click() is False

    def test_listener_failure_does_not_stop_dispatch(self, caplog: pytest.LogCaptureFixture) -> None:
        el = Element("div")
        seen: list[str] = []
        el.add_event_listener("ping", lambda event: 1 / 0)
        el.add_event_listener("ping", lambda event: seen.append("second"))
        el.dispatch_event(Event("ping"))
        assert seen == ["second"]
        assert "Listener for 'ping' failed" in caplog.text

    def test_remove_listener(self) -> None:
        el = Element("div")

        def listener(event: Event) -> None:
            pass

        el.add_event_listener("ping", listener)
        el.add_event_listener("ping", listener)
        assert el.listener_count("ping") == 1
        el.remove_event_listener("ping", listener)
        assert el.listener_count("ping") == 0


class TestObservers:
    def test_insertions_reach_ancestor_observers(self) -> None:
        document = Document(body="<main><section></section></main>")
        seen: list[list[str]] = []
        unsubscribe = document.observe(lambda parent, nodes: seen.append([repr(n) for n in nodes]))
        document.body.query_selector("section").append_child(Element("x-card"))
        assert seen == [["<x-card>"]]
        unsubscribe()
        document.body.append_child(Element("p"))
        assert len(seen) == 1

    def test_shadow_insertions_stay_inside(self) -> None:
        document = Document(body="<x-host></x-host>")
        outer: list[Node] = []
        document.observe(lambda parent, nodes: outer.extend(nodes))
        shadow = document.body.query_selector("x-host").attach_shadow()
        inner: list[Node] = []
        shadow.observe(lambda parent, nodes: inner.extend(nodes))
        shadow.set_inner_html("<p></p>")
        assert outer == []
        assert len(inner) == 1

    def test_connection_state(self) -> None:
        document = Document()
        el = Element("p")
        assert not el.is_connected
        document.body.append_child(el)
        assert el.is_connected
        assert el.owner_document is document
        el.remove()
        assert not el.is_connected
