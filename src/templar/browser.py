"""Browser host — location, history, paint clock and custom elements.

``Window`` bundles the objects the component host and the router talk
to. Nothing here is global: tests build a fresh ``Window`` per case.

Usage::

    window = Window("http://localhost/app/", body='<main id="app"></main>')
    window.history.push_state({}, "", "/app/about")
    window.location.pathname   # "/app/about"
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urljoin, urlsplit

from templar._internal.urls import origin_of
from templar.dom import Document, Element, iter_shadow_inclusive

logger = logging.getLogger("templar.dom")


class Location:
    """Mutable absolute URL with the usual read-only views."""

    __slots__ = ("href",)

    def __init__(self, href: str) -> None:
        self.href = href

    @property
    def origin(self) -> str:
        return origin_of(self.href)

    @property
    def pathname(self) -> str:
        return urlsplit(self.href).path or "/"

    @property
    def search(self) -> str:
        query = urlsplit(self.href).query
        return f"?{query}" if query else ""

    @property
    def hash(self) -> str:
        fragment = urlsplit(self.href).fragment
        return f"#{fragment}" if fragment else ""

    def __repr__(self) -> str:
        return f"Location({self.href!r})"


@dataclass(slots=True)
class HistoryEntry:
    state: Any
    url: str


class History:
    """Session history stack.

    ``push_state`` / ``replace_state`` only accept same-origin URLs.
    ``back`` / ``forward`` / ``go`` move the cursor, update the location
    and notify ``popstate`` listeners with the entry's state.
    """

    def __init__(self, location: Location) -> None:
        self._location = location
        self.entries: list[HistoryEntry] = [HistoryEntry(state=None, url=location.href)]
        self.index = 0
        self._popstate: list[Callable[[Any], Any]] = []

    @property
    def length(self) -> int:
        return len(self.entries)

    @property
    def state(self) -> Any:
        return self.entries[self.index].state

    def _absolute(self, url: str) -> str:
        absolute = urljoin(self._location.href, url)
        if origin_of(absolute) != self._location.origin:
            msg = f"Cannot write history entry for {absolute!r} from origin {self._location.origin!r}"
            raise ValueError(msg)
        return absolute

    def push_state(self, state: Any, title: str, url: str) -> None:
        absolute = self._absolute(url)
        del self.entries[self.index + 1 :]
        self.entries.append(HistoryEntry(state=state, url=absolute))
        self.index += 1
        self._location.href = absolute

    def replace_state(self, state: Any, title: str, url: str) -> None:
        absolute = self._absolute(url)
        self.entries[self.index] = HistoryEntry(state=state, url=absolute)
        self._location.href = absolute

    def go(self, delta: int) -> None:
        target = self.index + delta
        if delta == 0 or not 0 <= target < len(self.entries):
            return
        self.index = target
        entry = self.entries[target]
        self._location.href = entry.url
        for listener in list(self._popstate):
            try:
                listener(entry.state)
            except Exception:
                logger.exception("popstate listener failed")

    def back(self) -> None:
        self.go(-1)

    def forward(self) -> None:
        self.go(1)

    def add_popstate_listener(self, listener: Callable[[Any], Any]) -> Callable[[], None]:
        self._popstate.append(listener)

        def unsubscribe() -> None:
            if listener in self._popstate:
                self._popstate.remove(listener)

        return unsubscribe


class FrameClock:
    """Paint-frame source.

    ``request_frame`` runs a callback on the next frame; writes made
    before that frame fires are observed by it. ``interval=0`` fires on
    the next loop iteration, which keeps tests fast and deterministic.
    """

    __slots__ = ("interval",)

    def __init__(self, interval: float = 1 / 60) -> None:
        self.interval = interval

    def request_frame(self, callback: Callable[[], Any]) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(self.interval, self._run, callback)

    def cancel_frame(self, handle: asyncio.TimerHandle) -> None:
        handle.cancel()

    async def next_frame(self) -> None:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[None] = loop.create_future()

        def resolve() -> None:
            if not future.done():
                future.set_result(None)

        self.request_frame(resolve)
        await future

    @staticmethod
    def _run(callback: Callable[[], Any]) -> None:
        try:
            callback()
        except Exception:
            logger.exception("Frame callback failed")


class CustomElementRegistry:
    """Tag name -> controller class.

    Controllers are built as ``cls(element)`` when a matching element
    connects, or immediately for connected elements when the tag is
    defined.
    """

    def __init__(self, document: Document) -> None:
        self._document = document
        self._definitions: dict[str, type] = {}
        self._waiters: dict[str, list[asyncio.Future[type]]] = {}

    def define(self, tag_name: str, cls: type) -> None:
        tag_name = tag_name.lower()
        if "-" not in tag_name:
            msg = f"{tag_name!r} is not a valid custom element name"
            raise ValueError(msg)
        if tag_name in self._definitions:
            msg = f"{tag_name!r} has already been defined"
            raise ValueError(msg)
        self._definitions[tag_name] = cls

        for el in list(iter_shadow_inclusive(self._document)):
            if el.tag_name == tag_name and el.controller is None:
                self.upgrade(el)
                el.controller.connected()

        for waiter in self._waiters.pop(tag_name, []):
            if not waiter.done():
                waiter.set_result(cls)

    def get(self, tag_name: str) -> type | None:
        return self._definitions.get(tag_name.lower())

    def upgrade(self, element: Element) -> None:
        cls = self._definitions.get(element.tag_name)
        if cls is not None and element.controller is None:
            element.controller = cls(element)

    async def when_defined(self, tag_name: str) -> type:
        tag_name = tag_name.lower()
        if tag_name in self._definitions:
            return self._definitions[tag_name]
        waiter: asyncio.Future[type] = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(tag_name, []).append(waiter)
        return await waiter

    def clear(self) -> None:
        self._definitions.clear()
        self._waiters.clear()


class Window:
    """One browsing context.

    ``templar`` is the render engine components use; ``forge`` is set by
    the component registry when one is bound to this window.
    """

    def __init__(
        self,
        url: str = "http://localhost/",
        *,
        body: str = "",
        head: str = "",
        clock: FrameClock | None = None,
        templar: Any = None,
    ) -> None:
        self.location = Location(url)
        self.document = Document(head=head)
        self.document.default_view = self
        self.custom_elements = CustomElementRegistry(self.document)
        self.document.custom_elements = self.custom_elements
        self.history = History(self.location)
        self.clock = clock or FrameClock()
        self.templar = templar
        self.forge: Any = None
        self.native_loads: list[str] = []
        if body:
            self.document.body.set_inner_html(body)

    @property
    def title(self) -> str:
        return self.document.title

    @title.setter
    def title(self, value: str) -> None:
        self.document.title = value

    def assign(self, url: str) -> None:
        """Full (native) page load. Recorded, and the location moves."""
        absolute = urljoin(self.location.href, url)
        self.native_loads.append(absolute)
        self.location.href = absolute
