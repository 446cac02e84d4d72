"""Component registry — convention-based lazy definition of custom elements.

Any element whose tag starts with the configured prefix is defined on
first sight, with a template resolved by convention::

    <templar-user-card>  ->  {app_base}/components/user-card.html
    nested_dirs=True     ->  {app_base}/components/user/card.html

The app base is ``ForgeConfig.app_base`` if set, else the document's
``<base href>``, else the directory of the current document.

Usage::

    forge = Forge(window, templar)
    forge.start()                  # initial scan + document observer
    await forge.ensure_defined("templar-user-card")
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import urljoin

from templar._internal.urls import detect_app_base, resolve_base_path
from templar.components.host import BaseElement
from templar.config import ForgeConfig, with_overrides
from templar.dom import Element, Node, iter_shadow_inclusive
from templar.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Callable

    from templar.browser import Window
    from templar.templating.delivery import Templar

logger = logging.getLogger("templar.forge")

_DASH_RUN_RE = re.compile(r"-+")


@dataclass(frozen=True, slots=True)
class ResolverRequest:
    """What a custom ``ForgeConfig.resolver`` receives."""

    tag_name: str
    name: str
    base_path: str
    extension: str
    nested_dirs: bool


class Forge:
    """Registry state for one window.

    ``ensure_defined`` is memoized per tag: any number of concurrent
    callers share one definition attempt and its outcome.
    """

    def __init__(
        self,
        window: Window,
        templar: Templar | None = None,
        *,
        config: ForgeConfig | None = None,
    ) -> None:
        self.window = window
        self.templar = templar if templar is not None else window.templar
        if window.templar is None:
            window.templar = self.templar
        self.config = config or ForgeConfig()
        self._pending: dict[str, asyncio.Task[None]] = {}
        self._unobserve: Callable[[], None] | None = None
        window.forge = self

    def configure(self, **overrides: Any) -> None:
        self.config = with_overrides(self.config, overrides)

    @property
    def started(self) -> bool:
        return self._unobserve is not None

    @property
    def app_base(self) -> str:
        return self.config.app_base or detect_app_base(self.window)

    @property
    def base_url(self) -> str:
        """Absolute base location of component templates."""
        return resolve_base_path(self.config.base_path, self.app_base)

    # -- resolution -----------------------------------------------------------

    def resolve_url_from_tag(self, tag_name: str) -> str | None:
        """Template location for *tag_name*, or ``None`` if it lacks the prefix."""
        tag_name = tag_name.lower()
        prefix = self.config.tag_prefix
        if not tag_name.startswith(prefix):
            return None

        base = self.base_url
        name = tag_name[len(prefix) :]

        if self.config.resolver is not None:
            return self.config.resolver(
                ResolverRequest(
                    tag_name=tag_name,
                    name=name,
                    base_path=base,
                    extension=self.config.extension,
                    nested_dirs=self.config.nested_dirs,
                )
            )

        relative = _DASH_RUN_RE.sub("/", name) if self.config.nested_dirs else name
        return urljoin(base, relative + self.config.extension)

    # -- definition -----------------------------------------------------------

    async def ensure_defined(self, tag_name: str) -> None:
        """Define *tag_name* if needed and wait for the attempt to finish."""
        task = self._request(tag_name)
        if task is not None:
            await task

    def _request(self, tag_name: str) -> asyncio.Task[None] | None:
        tag_name = tag_name.lower()
        if not tag_name.startswith(self.config.tag_prefix):
            return None
        if self.window.custom_elements.get(tag_name) is not None:
            return None
        task = self._pending.get(tag_name)
        if task is not None:
            return task
        url = self.resolve_url_from_tag(tag_name)
        if not url:
            return None
        task = asyncio.get_running_loop().create_task(self._define(tag_name, url))
        self._pending[tag_name] = task
        return task

    async def _define(self, tag_name: str, url: str) -> None:
        if self.config.debug:
            logger.debug("define %s -> %s", tag_name, url)
        cls = type(
            _class_name(tag_name, self.config.tag_prefix),
            (BaseElement,),
            {
                "__module__": __name__,
                "template_url": url,
                "templar": self.templar,
                "shadow_mode": self.config.shadow_mode,
            },
        )
        try:
            self.window.custom_elements.define(tag_name, cls)
        except Exception:
            if self.window.custom_elements.get(tag_name) is None:
                logger.exception("Error defining %s", tag_name)

    @property
    def pending(self) -> dict[str, asyncio.Task[None]]:
        """Definition attempts by tag name (finished ones included)."""
        return dict(self._pending)

    # -- discovery ------------------------------------------------------------

    def scan(self, root: Node) -> list[str]:
        """Request definition of every prefixed tag at or below *root*.

        Descends into the shadow roots of components already upgraded.
        Returns the matching tag names in document order.
        """
        prefix = self.config.tag_prefix
        found: list[str] = []
        try:
            candidates: list[Element] = [root] if isinstance(root, Element) else []
            candidates.extend(iter_shadow_inclusive(root))
            for el in candidates:
                if el.tag_name.startswith(prefix):
                    found.append(el.tag_name)
                    self._request(el.tag_name)
        except Exception:
            logger.exception("Scan of %r failed", root)
        return found

    def _on_insert(self, parent: Node, nodes: list[Node]) -> None:
        for node in nodes:
            self.scan(node)

    def start(self, **overrides: Any) -> Forge:
        """Scan the document and watch it for inserted components. Idempotent.

        Definitions run as tasks, so this must be called with an event
        loop running; ``ConfigurationError`` otherwise.
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            msg = "Forge.start() needs a running event loop; call it from async code"
            raise ConfigurationError(msg) from None
        self.configure(**overrides)
        if self.config.app_base is None:
            self.config = dataclasses.replace(self.config, app_base=detect_app_base(self.window))

        if self._unobserve is not None:
            if self.config.debug:
                logger.debug("start(): already started")
            return self

        self.scan(self.window.document)
        self._unobserve = self.window.document.observe(self._on_insert)
        if self.config.debug:
            logger.debug("Auto-register started (app_base=%s, base_url=%s)", self.app_base, self.base_url)
        return self

    def stop(self) -> None:
        if self._unobserve is not None:
            self._unobserve()
            self._unobserve = None
            if self.config.debug:
                logger.debug("Auto-register stopped")

    def clear(self) -> None:
        """Forget every definition attempt (already-defined tags stay defined)."""
        self._pending.clear()


def _class_name(tag_name: str, prefix: str) -> str:
    name = tag_name[len(prefix) :] if tag_name.startswith(prefix) else tag_name
    return "".join(part.title() for part in name.split("-") if part) + "Element"
