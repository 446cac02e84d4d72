"""Render delivery — fetch, compile, execute, commit, flush.

``Templar`` is the engine state object: loader, configured globals, the
raw-text cache and the compiled-unit cache. Create one per application
(or per test) and hand it to components and the router::

    templar = Templar(FileSystemLoader("site/"))
    html = await templar.render_into(
        "http://localhost/views/about.html", {"title": "About"}, window.document.body,
    )

Both caches are plain dicts with no locking. No suspension happens
between a cache check and its population, so racing renders converge
on content-identical entries.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from templar._internal.invoke import invoke
from templar.config import TemplarConfig, with_overrides
from templar.errors import CallbackError, ConfigurationError, template_line_of
from templar.templating.compiler import CompiledUnit, RenderHooks, compile_template, fingerprint
from templar.templating.diagnostics import format_runtime_error
from templar.templating.loaders import HttpLoader, Loader

logger = logging.getLogger("templar.core")


class Templar:
    """Template engine: caches plus ``render_into``.

    Attributes:
        loader: Where raw template text comes from.
        config: ``TemplarConfig`` (context window size, debug logging).
        globals: Names visible to every template, below render data.
    """

    __slots__ = ("_texts", "_units", "config", "globals", "loader")

    def __init__(
        self,
        loader: Loader | None = None,
        *,
        config: TemplarConfig | None = None,
        globals_: Mapping[str, Any] | None = None,
    ) -> None:
        self.loader: Loader = loader if loader is not None else HttpLoader()
        self.config = config or TemplarConfig()
        # Units keep a reference to this dict; mutate it, never rebind it.
        self.globals: dict[str, Any] = dict(globals_ or {})
        self._texts: dict[str, str] = {}
        self._units: dict[tuple[str, str], CompiledUnit] = {}

    # -- configuration ------------------------------------------------------

    def configure(self, *, globals_: Mapping[str, Any] | None = None, **overrides: Any) -> None:
        """Replace the template globals and/or override config fields."""
        if globals_ is not None:
            self.globals.clear()
            self.globals.update(globals_)
        self.config = with_overrides(self.config, overrides)

    def add_global(self, name: str, value: Any) -> None:
        self.globals[name] = value

    # -- caches -------------------------------------------------------------

    @property
    def texts(self) -> Mapping[str, str]:
        """Read-only view of the raw-text cache."""
        return MappingProxyType(self._texts)

    @property
    def units(self) -> Mapping[tuple[str, str], CompiledUnit]:
        """Read-only view of the compiled-unit cache, keyed by (identifier, fingerprint)."""
        return MappingProxyType(self._units)

    def invalidate(self, identifier: str) -> None:
        """Forget the raw text for *identifier* and every unit compiled from it."""
        self._texts.pop(identifier, None)
        for key in [key for key in self._units if key[0] == identifier]:
            del self._units[key]

    def clear(self) -> None:
        """Empty both caches."""
        self._texts.clear()
        self._units.clear()

    async def fetch_template(self, identifier: str) -> str:
        """Return cached raw text, or fetch it through the loader.

        Raises ``RetrievalError`` if the loader fails; nothing is cached then.
        """
        text = self._texts.get(identifier)
        if text is None:
            text = await self.loader.get_source(identifier)
            self._texts[identifier] = text
        return text

    def get_unit(self, identifier: str, text: str) -> CompiledUnit:
        """Return the unit for (identifier, fingerprint(text)), compiling on a miss."""
        key = (identifier, fingerprint(text))
        unit = self._units.get(key)
        if unit is None:
            unit = compile_template(text, identifier, globals_=self.globals)
            self._units[key] = unit
            if self.config.debug:
                logger.debug("Compiled %s (%s)", identifier, key[1])
        return unit

    # -- delivery -----------------------------------------------------------

    async def render_into(
        self,
        identifier: str,
        data: Mapping[str, Any] | None = None,
        target: Any = None,
    ) -> str:
        """Render *identifier* with *data* and replace *target*'s content.

        Steps: fetch (cache or loader), compile (cache or compiler), run
        the unit with hooks bound to *target*, replace the target content
        wholesale, then run ``ready()`` callbacks in registration order.

        Failures are logged with template context and re-raised; a
        failing ``ready()`` callback is logged and skipped.
        """
        if not identifier:
            msg = "render_into() needs a template identifier"
            raise ConfigurationError(msg)
        if target is None:
            msg = f"render_into({identifier!r}) needs a target surface"
            raise ConfigurationError(msg)

        payload: Mapping[str, Any] = data if data is not None else {}
        text = await self.fetch_template(identifier)
        unit = self.get_unit(identifier, text)
        hooks = RenderHooks(target)

        try:
            html = await unit(payload, hooks)
            target.set_inner_html(html)
        except Exception as exc:
            self._report_failure(exc, identifier, text, payload)
            raise

        await self._flush_ready(identifier, hooks)
        return html

    def _report_failure(
        self,
        exc: Exception,
        identifier: str,
        text: str,
        data: Mapping[str, Any],
    ) -> None:
        line = template_line_of(exc)
        if line is None:
            logger.error("Error rendering template %s: %r", identifier, exc)
            return
        logger.error(
            "Runtime error in %s (line %d)\n%s",
            identifier,
            line,
            format_runtime_error(exc, identifier, text, line, data, self.config.context_lines),
        )

    async def _flush_ready(self, identifier: str, hooks: RenderHooks) -> None:
        for callback in hooks.ready_callbacks:
            try:
                await invoke(callback)
            except Exception as exc:
                error = CallbackError(f"ready() callback error in {identifier}: {exc!r}")
                logger.error("%s", error, exc_info=exc)
