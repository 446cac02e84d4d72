"""Component host — reactive custom elements rendered by templar.

A ``BaseElement`` is the controller behind one custom element. It owns
the element's data, renders ``template_url`` into the element's shadow
root and re-renders when the data changes.

Lifecycle::

    unattached --connected()--> attached <--disconnected()/connected()--> detached

Data has three write paths, all synchronous: ``component.data = {...}``
(merge), ``component.set(key, value)`` and attribute changes on the
element. Each write only *schedules* a render on the next paint frame,
so any number of writes before that frame produce one render that sees
all of them.

Inside the template::

    <button class="inc">+</button> <span>${count}</span>
    <% bind("click", ".inc", lambda event: host.set("count", count + 1)) %>
    <% emit("counter:rendered", {"count": count}) %>

Attributes: ``data`` carries a JSON object merged into the data; every
other attribute becomes a key (an empty value means ``True``).
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

from templar.dom import Element, Event, Node
from templar.errors import ConfigurationError, PayloadParseError

if TYPE_CHECKING:
    from templar.browser import Window
    from templar.templating.delivery import Templar

logger = logging.getLogger("templar.forge")

DATA_ATTRIBUTE = "data"
UPDATED_EVENT = "templar:updated"


class Lifecycle(enum.StrEnum):
    UNATTACHED = "unattached"
    ATTACHED = "attached"
    DETACHED = "detached"


@dataclass(frozen=True, slots=True)
class Binding:
    """An event binding requested by ``bind()`` during one render pass.

    ``target`` is a selector resolved inside the shadow root after the
    new content is committed (it may match several elements), or a node.
    """

    event: str
    target: str | Node | None
    handler: Callable[[Event], Any]


class BaseElement:
    """Controller for a templar custom element.

    Subclass and set ``template_url``, then register the subclass with
    ``define_element``. The registry creates subclasses automatically for
    prefixed tags.
    """

    template_url: ClassVar[str | None] = None
    # None observes every attribute
    observed_attributes: ClassVar[frozenset[str] | None] = None
    shadow_mode: ClassVar[str] = "open"
    # Engine override; otherwise the window's engine is used
    templar: ClassVar[Templar | None] = None

    def __init__(self, element: Element) -> None:
        self.element = element
        self.shadow_root = element.shadow_root or element.attach_shadow(self.shadow_mode)
        self.state = Lifecycle.UNATTACHED
        self._data: dict[str, Any] = {}
        self._window: Window | None = None
        self._frame: asyncio.TimerHandle | None = None
        self._render_task: asyncio.Task[None] | None = None
        self._render_lock = asyncio.Lock()
        self._listeners: list[tuple[Node, str, Callable[[Event], Any]]] = []
        self._handler_tasks: set[asyncio.Task[None]] = set()
        self._unobserve: Callable[[], None] | None = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.tag_name} {self.state}>"

    @property
    def tag_name(self) -> str:
        return self.element.tag_name

    # -- data -----------------------------------------------------------------

    @property
    def data(self) -> dict[str, Any]:
        return self._data

    @data.setter
    def data(self, value: Mapping[str, Any] | None) -> None:
        self._data = {**self._data, **(value or {})}
        self.schedule_render()

    def set(self, key: str, value: Any) -> None:
        self._data = {**self._data, key: value}
        self.schedule_render()

    def attribute_changed(self, name: str, old: str | None, new: str | None) -> None:
        if self._apply_attribute(name, new):
            self.schedule_render()

    def _apply_attribute(self, name: str, value: str | None) -> bool:
        if name == DATA_ATTRIBUTE:
            if value is None:
                return False
            try:
                parsed = json.loads(value)
            except ValueError:
                parsed = None
            if not isinstance(parsed, dict):
                logger.error("%s", PayloadParseError(self.tag_name, value))
                return False
            self._data = {**self._data, **parsed}
            return True
        if value == "" or value is None:
            self._data[name] = self.element.has_attribute(name)
        else:
            self._data[name] = value
        return True

    # -- lifecycle ------------------------------------------------------------

    def connected(self) -> None:
        document = self.element.owner_document
        self._window = document.default_view if document is not None else None
        self.state = Lifecycle.ATTACHED
        for name in self.element.get_attribute_names():
            self._apply_attribute(name, self.element.get_attribute(name))
        self._setup_shadow_observer()
        self.schedule_render()

    def disconnected(self) -> None:
        if self.state is not Lifecycle.ATTACHED:
            return
        self.state = Lifecycle.DETACHED
        if self._frame is not None and self._window is not None:
            self._window.clock.cancel_frame(self._frame)
        self._frame = None
        self._remove_listeners()
        if self._unobserve is not None:
            self._unobserve()
            self._unobserve = None

    def _setup_shadow_observer(self) -> None:
        if self._unobserve is None:
            self._unobserve = self.shadow_root.observe(self._on_shadow_insert)

    def _on_shadow_insert(self, parent: Node, nodes: list[Node]) -> None:
        forge = self._forge()
        if forge is None:
            return
        for node in nodes:
            forge.scan(node)

    # -- rendering ------------------------------------------------------------

    def schedule_render(self) -> None:
        """Request a render on the next frame; no-op if one is already pending."""
        if self._frame is not None or self.state is not Lifecycle.ATTACHED:
            return
        if self._window is None:
            return
        self._frame = self._window.clock.request_frame(self._on_frame)

    def _on_frame(self) -> None:
        self._frame = None
        self._render_task = asyncio.ensure_future(self._scheduled_render())

    async def _scheduled_render(self) -> None:
        try:
            await self.render()
        except Exception:
            logger.exception("Render of <%s> failed", self.tag_name)

    async def render_complete(self) -> None:
        """Wait for the pending or running scheduled render, if any."""
        while self._frame is not None or (self._render_task is not None and not self._render_task.done()):
            if self._render_task is not None and not self._render_task.done():
                await asyncio.shield(self._render_task)
            else:
                await asyncio.sleep(0)

    async def render(self) -> None:
        """Run one render pass against the shadow root.

        Raises whatever the delivery engine raises. A missing
        ``template_url`` or engine is logged and leaves content untouched.
        """
        if self.state is not Lifecycle.ATTACHED:
            return
        url = type(self).template_url
        if not url:
            logger.error("%s", ConfigurationError(f"<{self.tag_name}>: template_url is not defined"))
            return
        engine = self._engine()
        if engine is None:
            logger.error("%s", ConfigurationError(f"<{self.tag_name}>: no templar engine configured"))
            return

        async with self._render_lock:
            if self.state is not Lifecycle.ATTACHED:
                return
            queue: list[Binding] = []

            def bind(event: str, target: str | Node | None, handler: Callable[[Event], Any]) -> None:
                queue.append(Binding(event, target, handler))

            scope = {
                **self._data,
                "data": self._data,
                "host": self,
                "emit": self.emit,
                "bind": bind,
            }
            await engine.render_into(url, scope, self.shadow_root)
            if self.state is not Lifecycle.ATTACHED:
                return

            self._apply_bindings(queue)

            try:
                forge = self._forge()
                if forge is not None:
                    forge.scan(self.shadow_root)
            except Exception:
                logger.exception("Scan of <%s> shadow root failed", self.tag_name)

            self.emit(UPDATED_EVENT, {"data": self._data})

    def _apply_bindings(self, queue: list[Binding]) -> None:
        self._remove_listeners()
        for binding in queue:
            if not binding.event or binding.handler is None:
                continue
            if isinstance(binding.target, str):
                elements: list[Node] = list(self.shadow_root.query_selector_all(binding.target))
            elif binding.target is not None:
                elements = [binding.target]
            else:
                elements = []
            for el in elements:
                listener = self._make_listener(binding.handler)
                el.add_event_listener(binding.event, listener)
                self._listeners.append((el, binding.event, listener))

    def _make_listener(self, handler: Callable[[Event], Any]) -> Callable[[Event], None]:
        def listener(event: Event) -> None:
            result = handler(event)
            if asyncio.iscoroutine(result):
                task = asyncio.ensure_future(self._run_handler(result))
                self._handler_tasks.add(task)
                task.add_done_callback(self._handler_tasks.discard)

        return listener

    async def _run_handler(self, pending: Awaitable[Any]) -> None:
        try:
            await pending
        except Exception:
            logger.exception("Event handler in <%s> failed", self.tag_name)

    def _remove_listeners(self) -> None:
        for el, event, listener in self._listeners:
            el.remove_event_listener(event, listener)
        self._listeners = []

    @property
    def binding_count(self) -> int:
        return len(self._listeners)

    @property
    def pending_handlers(self) -> int:
        """Async event handlers still running."""
        return len(self._handler_tasks)

    # -- helpers --------------------------------------------------------------

    def emit(
        self,
        name: str,
        detail: Any = None,
        *,
        bubbles: bool = True,
        composed: bool = True,
        cancelable: bool = True,
    ) -> bool:
        """Dispatch *name* from the element; crosses the shadow boundary by default."""
        event = Event(
            name,
            detail={} if detail is None else detail,
            bubbles=bubbles,
            composed=composed,
            cancelable=cancelable,
        )
        return self.element.dispatch_event(event)

    def _engine(self) -> Templar | None:
        if type(self).templar is not None:
            return type(self).templar
        return getattr(self._window, "templar", None)

    def _forge(self) -> Any:
        return getattr(self._window, "forge", None)


def define_element(window: Window, tag_name: str, cls: type[BaseElement]) -> type[BaseElement]:
    """Register *cls* for *tag_name* on *window* and return it."""
    window.custom_elements.define(tag_name, cls)
    return cls
