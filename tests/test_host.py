"""Tests for templar.components.host — data, coalesced rendering, bindings, lifecycle."""

import asyncio
import gc

import pytest

from templar.browser import FrameClock, Window
from templar.components.host import UPDATED_EVENT, BaseElement, Lifecycle, define_element
from templar.dom import Element, Event
from templar.templating import DictLoader, Templar

URL = "http://localhost/components/widget.html"


class Widget(BaseElement):
    template_url = URL


def setup(template: str, **globals_: object) -> tuple[Window, Templar]:
    templar = Templar(DictLoader({URL: template}), globals_=globals_)
    window = Window(clock=FrameClock(0), templar=templar)
    define_element(window, "x-widget", Widget)
    return window, templar


def mount(window: Window, **attributes: str) -> Element:
    el = window.document.create_element("x-widget")
    for name, value in attributes.items():
        el.set_attribute(name, value)
    window.document.body.append_child(el)
    return el


async def settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class TestCoalescing:
    @pytest.mark.asyncio
    async def test_writes_in_one_window_render_once(self) -> None:
        renders: list[dict] = []
        window, _ = setup("<% renders.append(dict(data)) %><p>${a}-${b}-${c}</p>", renders=renders)
        el = mount(window)
        host = el.controller
        host.set("a", 1)
        host.set("b", 2)
        host.data = {"c": 3}
        await host.render_complete()
        assert len(renders) == 1
        assert renders[0] == {"a": 1, "b": 2, "c": 3}
        assert el.shadow_root.inner_html == "<p>1-2-3</p>"

    @pytest.mark.asyncio
    async def test_later_write_renders_again(self) -> None:
        renders: list[dict] = []
        window, _ = setup("<% renders.append(dict(data)) %>${n}", renders=renders)
        host = mount(window, n="1").controller
        await host.render_complete()
        host.set("n", 2)
        await host.render_complete()
        assert [r["n"] for r in renders] == ["1", 2]
        assert host.shadow_root.inner_html == "2"

    @pytest.mark.asyncio
    async def test_data_setter_merges(self) -> None:
        window, _ = setup("${a}${b}")
        host = mount(window).controller
        host.data = {"a": "x"}
        host.data = {"b": "y"}
        assert host.data == {"a": "x", "b": "y"}
        await host.render_complete()
        assert host.shadow_root.inner_html == "xy"


class TestAttributes:
    @pytest.mark.asyncio
    async def test_initial_attributes_seed_data(self) -> None:
        window, _ = setup("${a}|${b}|${label}|${hidden}")
        el = mount(window, data='{"a": 1, "b": [2]}', label="hi", hidden="")
        await el.controller.render_complete()
        assert el.shadow_root.inner_html == "1|[2]|hi|True"

    @pytest.mark.asyncio
    async def test_attribute_change_rerenders(self) -> None:
        window, _ = setup("${label}")
        el = mount(window, label="one")
        await el.controller.render_complete()
        el.set_attribute("label", "two")
        await el.controller.render_complete()
        assert el.shadow_root.inner_html == "two"

    @pytest.mark.asyncio
    async def test_invalid_payload_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        window, _ = setup("${a}")
        el = mount(window, data='{"a": 1}')
        await el.controller.render_complete()
        el.set_attribute("data", "{broken")
        el.set_attribute("data", "[1, 2]")
        await settle()
        assert el.controller.data == {"a": 1}
        assert caplog.text.count("JSON parse error in data attribute of <x-widget>") == 2

    @pytest.mark.asyncio
    async def test_observed_attributes_filter(self) -> None:
        class Picky(BaseElement):
            template_url = URL
            observed_attributes = frozenset({"label"})

        window, _ = setup("${label}")
        define_element(window, "x-picky", Picky)
        el = window.document.create_element("x-picky")
        window.document.body.append_child(el)
        el.set_attribute("label", "seen")
        el.set_attribute("other", "ignored")
        assert el.controller.data == {"label": "seen"}


class TestBindings:
    TEMPLATE = (
        '<button class="inc">+</button><span>${count}</span>'
        '<% bind("click", ".inc", lambda event: host.set("count", count + 1)) %>'
    )

    @pytest.mark.asyncio
    async def test_click_updates_data(self) -> None:
        window, _ = setup(self.TEMPLATE)
        el = mount(window, data='{"count": 0}')
        host = el.controller
        await host.render_complete()
        assert host.binding_count == 1

        host.shadow_root.query_selector(".inc").click()
        await host.render_complete()
        assert host.shadow_root.query_selector("span").text_content == "1"
        assert host.binding_count == 1

        host.shadow_root.query_selector(".inc").click()
        await host.render_complete()
        assert host.shadow_root.query_selector("span").text_content == "2"

    @pytest.mark.asyncio
    async def test_async_handler(self) -> None:
        seen: list[str] = []

        async def handler(event: Event) -> None:
            seen.append(event.type)

        window, _ = setup('<button>b</button><% bind("click", "button", handler) %>', handler=handler)
        host = mount(window).controller
        await host.render_complete()
        host.shadow_root.query_selector("button").click()
        await settle()
        assert seen == ["click"]

    @pytest.mark.asyncio
    async def test_async_handler_is_held_until_done(self) -> None:
        gate = asyncio.Event()
        seen: list[str] = []

        async def handler(event: Event) -> None:
            await gate.wait()
            seen.append(event.type)

        window, _ = setup('<button>b</button><% bind("click", "button", handler) %>', handler=handler)
        host = mount(window).controller
        await host.render_complete()
        host.shadow_root.query_selector("button").click()
        await settle()
        assert host.pending_handlers == 1

        gc.collect()
        gate.set()
        await settle()
        assert seen == ["click"]
        assert host.pending_handlers == 0

    @pytest.mark.asyncio
    async def test_selector_binds_every_match(self) -> None:
        window, _ = setup('<i></i><i></i><% bind("click", "i", print) %>')
        host = mount(window).controller
        await host.render_complete()
        assert host.binding_count == 2


class TestEvents:
    @pytest.mark.asyncio
    async def test_updated_event_reaches_document(self) -> None:
        window, _ = setup("${n}")
        seen: list[Event] = []
        window.document.add_event_listener(UPDATED_EVENT, seen.append)
        el = mount(window, n="5")
        await el.controller.render_complete()
        assert len(seen) == 1
        assert seen[0].target is el
        assert seen[0].detail == {"data": {"n": "5"}}

    @pytest.mark.asyncio
    async def test_emit_from_template(self) -> None:
        window, _ = setup('<% emit("widget:rendered", {"n": n}) %>')
        seen: list[object] = []
        window.document.add_event_listener("widget:rendered", lambda event: seen.append(event.detail))
        el = mount(window, n="3")
        await el.controller.render_complete()
        assert seen == [{"n": "3"}]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_detach_before_frame_cancels_render(self) -> None:
        renders: list[int] = []
        window, _ = setup("<% renders.append(1) %>x", renders=renders)
        el = mount(window)
        host = el.controller
        el.remove()
        await settle()
        assert host.state is Lifecycle.DETACHED
        assert renders == []

    @pytest.mark.asyncio
    async def test_detach_removes_bindings_and_reattach_renders(self) -> None:
        window, _ = setup(TestBindings.TEMPLATE)
        el = mount(window, data='{"count": 0}')
        host = el.controller
        await host.render_complete()
        el.remove()
        assert host.binding_count == 0
        host.disconnected()
        assert host.state is Lifecycle.DETACHED

        window.document.body.append_child(el)
        assert host.state is Lifecycle.ATTACHED
        await host.render_complete()
        assert host.binding_count == 1

    @pytest.mark.asyncio
    async def test_missing_template_url_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        class Bare(BaseElement):
            pass

        window, _ = setup("")
        define_element(window, "x-bare", Bare)
        el = window.document.create_element("x-bare")
        window.document.body.append_child(el)
        await el.controller.render_complete()
        assert "template_url is not defined" in caplog.text
        assert el.shadow_root.inner_html == ""

    @pytest.mark.asyncio
    async def test_render_failure_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        window, _ = setup("${undefined_thing}")
        el = mount(window)
        await el.controller.render_complete()
        assert "Render of <x-widget> failed" in caplog.text

    @pytest.mark.asyncio
    async def test_repr(self) -> None:
        window, _ = setup("")
        host = mount(window).controller
        assert repr(host) == "<Widget x-widget attached>"
