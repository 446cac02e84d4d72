"""Navigation engine — path to view to rendered surface.

``Router`` holds the declared routes, the navigation counter and the
installed listeners for one window. A navigation runs these stages::

    token -> context -> match/convention -> params -> root -> resolve
          -> data -> view -> transition -> title -> out/render/in
          -> history

Every navigation gets a fresh ``NavigationToken`` and cancels the
previous one. The token is checked after each suspension point, so a
superseded navigation never commits content or writes history (last
writer wins). A failing stage is reported to ``on_error`` and the
``templar.route`` logger, then the wildcard view is rendered instead.

Usage::

    router = Router(window, templar, config=RouterConfig(root="#app"))
    router.use([
        RouteDefinition("/"),
        RouteDefinition("/users/:id", view="/views/user.html", resolve=load_user),
    ])
    router.start()
    await router.go("/users/42?tab=info")
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Callable, Coroutine, Iterable, Mapping
from typing import TYPE_CHECKING, Any
from urllib.parse import urljoin, urlsplit

from templar._internal.invoke import invoke
from templar._internal.urls import (
    app_href,
    app_relative_pathname,
    detect_app_base,
    resolve_base_path,
    strip_trailing_slash,
    to_app_url,
)
from templar.config import HISTORY_MODES, RouterConfig, with_overrides
from templar.errors import ConfigurationError, NavigationStageError
from templar.routing.context import (
    NavigationContext,
    NavigationToken,
    RenderRequest,
    ResolveResult,
    RouteContext,
    parse_query,
)
from templar.routing.links import install_link_interceptor
from templar.routing.route import CompiledRoute, RouteDefinition, compile_path, match_route
from templar.routing.transitions import Transition, pick_transition, run_phase

if TYPE_CHECKING:
    from templar.browser import Window
    from templar.templating.delivery import Templar

logger = logging.getLogger("templar.route")


class Router:
    """Client-side router for one window.

    Attributes:
        window: The browsing context navigated.
        templar: Engine used to render views.
        config: ``RouterConfig``; ``start(**overrides)`` replaces it.
    """

    def __init__(
        self,
        window: Window,
        templar: Templar | None = None,
        *,
        config: RouterConfig | None = None,
    ) -> None:
        self.window = window
        self.templar = templar if templar is not None else window.templar
        if self.templar is None:
            msg = "Router needs a Templar engine (argument or window.templar)"
            raise ConfigurationError(msg)
        self.config = config or RouterConfig()
        self._routes: list[CompiledRoute] = []
        self._counter = 0
        self._latest: NavigationToken | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._uninstall: list[Callable[[], None]] = []

    # -- setup ----------------------------------------------------------------

    def configure(self, **overrides: Any) -> None:
        self.config = with_overrides(self.config, overrides)

    def use(self, routes: Iterable[RouteDefinition | Mapping[str, Any]]) -> Router:
        """Append routes. Declaration order is match order."""
        added = []
        for entry in routes:
            definition = entry if isinstance(entry, RouteDefinition) else RouteDefinition.from_mapping(entry)
            self._routes.append(CompiledRoute(definition, compile_path(definition.path)))
            added.append(definition.path)
        if self.config.debug:
            logger.debug("Routes added: %s", added)
        return self

    @property
    def routes(self) -> tuple[RouteDefinition, ...]:
        return tuple(entry.definition for entry in self._routes)

    @property
    def started(self) -> bool:
        return bool(self._uninstall)

    def start(self, **overrides: Any) -> Router:
        """Apply overrides, then install link and back/forward handling. Idempotent."""
        self.configure(**overrides)
        if self.config.app_base is None:
            self.config = dataclasses.replace(self.config, app_base=detect_app_base(self.window))
        if self.config.wildcard is None:
            self.config = dataclasses.replace(self.config, wildcard=self._default_wildcard())

        if self.started:
            if self.config.debug:
                logger.debug("start(): already started")
            return self

        self._uninstall.append(install_link_interceptor(self))
        self._uninstall.append(self.window.history.add_popstate_listener(self._on_popstate))
        if self.config.debug:
            logger.debug(
                "Started (app_base=%s, base_url=%s, routes=%s)",
                self.app_base,
                self.base_url,
                [entry.path for entry in self._routes],
            )
        return self

    def stop(self) -> None:
        for uninstall in self._uninstall:
            uninstall()
        self._uninstall.clear()
        if self.config.debug:
            logger.debug("Stopped")

    # -- urls -----------------------------------------------------------------

    @property
    def app_base(self) -> str:
        return self.config.app_base or detect_app_base(self.window)

    @property
    def base_url(self) -> str:
        """Absolute base location of views."""
        return resolve_base_path(self.config.base_path, self.app_base)

    def _default_wildcard(self) -> str:
        return urljoin(self.base_url, "404" + self.config.extension)

    def view_by_convention(self, pathname: str) -> str:
        """``/`` -> ``{base}/index.html``; ``/users/42`` -> ``{base}/users/42.html``."""
        if pathname in ("", "/"):
            return urljoin(self.base_url, self.config.index + self.config.extension)
        return urljoin(self.base_url, pathname.lstrip("/") + self.config.extension)

    def build_context(self, to: str, state: Any = None) -> NavigationContext:
        absolute = urlsplit(to_app_url(to, self.app_base))
        app_pathname = app_relative_pathname(absolute.path or "/", self.app_base)
        search = f"?{absolute.query}" if absolute.query else ""
        hash_ = f"#{absolute.fragment}" if absolute.fragment else ""
        path = app_pathname + search + hash_
        return NavigationContext(
            url=path,
            path=path,
            pathname=strip_trailing_slash(app_pathname) or "/",
            hash=hash_,
            query_params=parse_query(search),
            state=state,
        )

    # -- public navigation ----------------------------------------------------

    async def go(
        self,
        to: str,
        *,
        history: str | None = None,
        data: Mapping[str, Any] | None = None,
    ) -> None:
        """Navigate to *to* and return once the navigation settles."""
        if history is not None and history not in HISTORY_MODES:
            msg = f"history must be one of {sorted(HISTORY_MODES)}, got {history!r}"
            raise ConfigurationError(msg)
        await self._navigate(to, history=history, data=data)

    def navigate(self, to: str, **options: Any) -> asyncio.Task[None]:
        """Start ``go(to, **options)`` in the background and return its task."""
        return self._spawn(self.go(to, **options))

    def back(self) -> None:
        self.window.history.back()

    def forward(self) -> None:
        self.window.history.forward()

    def current(self) -> dict[str, Any]:
        location = self.window.location
        return {
            "path": location.pathname + location.search + location.hash,
            "pathname": location.pathname,
            "hash": location.hash,
            "query": parse_query(location.search),
        }

    async def wait_idle(self) -> None:
        """Wait for every background navigation (links, popstate, ``navigate``)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background navigation failed", exc_info=task.exception())

    def _on_popstate(self, state: Any) -> None:
        location = self.window.location
        pathname = app_relative_pathname(location.pathname, self.app_base)
        self._spawn(self._navigate(pathname + location.search + location.hash, from_pop=True))

    # -- algorithm ------------------------------------------------------------

    def _issue_token(self) -> NavigationToken:
        self._counter += 1
        if self._latest is not None:
            self._latest.canceled = True
        self._latest = NavigationToken(self._counter)
        return self._latest

    def _superseded(self, token: NavigationToken) -> bool:
        if token.id != self._counter:
            token.canceled = True
        return token.canceled

    async def _navigate(
        self,
        to: str,
        *,
        history: str | None = None,
        data: Mapping[str, Any] | None = None,
        from_pop: bool = False,
    ) -> None:
        token = self._issue_token()
        ctx0 = self.build_context(to, self.window.history.state if from_pop else None)
        if self.config.debug:
            logger.debug("Navigate #%d -> %s", token.id, ctx0.path)

        route: RouteDefinition | None = None
        path_params: dict[str, str] = {}
        match = match_route(self._routes, ctx0.pathname)
        if match is not None:
            route, path_params = match.route, match.path_params
        try:
            view = self._derive_view(route, ctx0, path_params)
        except Exception as exc:
            await self._fail("resolve", repr(exc), exc, {"route": route, "to": to})
            await self._render_wildcard(token, ctx0, history)
            return

        params = {**path_params, **ctx0.query_params}

        root = self._resolve_root(route.root if route is not None else None)
        if root is None:
            await self._fail("resolve-root", f"no root for {to!r}", None, {"route": route, "to": to})
            await self._render_wildcard(token, ctx0, history)
            return

        route_ctx = RouteContext(
            path=ctx0.path,
            pathname=ctx0.pathname,
            hash=ctx0.hash,
            state=ctx0.state,
            data_from_go=data,
            route=route,
            navigate=self.navigate,
        )

        result: ResolveResult | None = None
        if route is not None and route.resolve is not None:
            try:
                result = ResolveResult.coerce(await invoke(route.resolve, params, route_ctx))
            except Exception as exc:
                await self._fail("resolve", repr(exc), exc, {"route": route, "ctx": route_ctx})
                await self._render_wildcard(token, ctx0, history)
                return
        if self._superseded(token):
            return

        final_data: dict[str, Any] = {
            "params": params,
            "route": {
                "path": ctx0.path,
                "pathname": ctx0.pathname,
                "hash": ctx0.hash,
                "path_params": path_params,
                "query_params": dict(ctx0.query_params),
            },
        }
        if result is not None and result.data:
            final_data.update(result.data)
        if data:
            final_data.update(data)

        final_view = to_app_url((result.view if result is not None else None) or view, self.app_base)
        transition = pick_transition(
            route.transition if route is not None else None,
            self.config.transition,
            self.config.transitions,
        )
        self._apply_title(result.title if result is not None else None, route, route_ctx)

        custom = route.render if route is not None else None
        try:
            committed = await self._render_sequence(
                token, root, final_view, final_data, transition, route_ctx, run_in=custom is None
            )
        except Exception as exc:
            await self._fail("render", repr(exc), exc, {"route": route, "view": final_view, "data": final_data})
            await self._render_wildcard(token, ctx0, history)
            return
        if not committed or self._superseded(token):
            return

        if custom is not None:
            request = RenderRequest(
                path=ctx0.path,
                pathname=ctx0.pathname,
                hash=ctx0.hash,
                state=ctx0.state,
                data=final_data,
                view=final_view,
                root=root,
                navigate=self.navigate,
            )
            try:
                await invoke(custom, request)
            except Exception as exc:
                await self._fail("render-custom", repr(exc), exc, {"route": route, "view": final_view})
                await self._render_wildcard(token, ctx0, history)
                return
            if transition is not None and transition.in_ is not None:
                if self._superseded(token):
                    return
                await self.window.clock.next_frame()
                await run_phase(transition.in_, root, route_ctx)

        if from_pop or self._superseded(token):
            return
        desired = (result.url if result is not None else None) or to
        mode = (result.history if result is not None else None) or history or self.config.history_default
        state = result.state if result is not None and result.state is not None else {}
        try:
            self._write_history(mode, desired, state)
        except Exception as exc:
            await self._fail("history", repr(exc), exc, {"route": route, "mode": mode, "url": desired})

    async def _render_sequence(
        self,
        token: NavigationToken,
        root: Any,
        view: str,
        data: Mapping[str, Any],
        transition: Transition | None,
        ctx: Any,
        *,
        run_in: bool = True,
    ) -> bool:
        """Out phase, delivery, in phase. ``False`` if the token was superseded."""
        if transition is not None and transition.out is not None:
            if self._superseded(token):
                return False
            await run_phase(transition.out, root, ctx)
        if self._superseded(token):
            return False

        # Fetch first so the commit happens right after the last checkpoint
        await self.templar.fetch_template(view)
        if self._superseded(token):
            return False
        await self.templar.render_into(view, data, root)

        if run_in and transition is not None and transition.in_ is not None:
            if self._superseded(token):
                return False
            await self.window.clock.next_frame()
            await run_phase(transition.in_, root, ctx)
        return True

    async def _render_wildcard(
        self,
        token: NavigationToken,
        ctx0: NavigationContext,
        history: str | None,
    ) -> None:
        if self._superseded(token):
            return
        if self.config.fallback_to_native_on_miss:
            try:
                self.window.assign(app_href(ctx0.path, self.app_base))
                return
            except Exception:
                logger.warning("Native fallback failed, rendering wildcard view instead", exc_info=True)

        root = self._resolve_root(None)
        if root is None:
            await self._fail("wildcard-root", "root not found", None, {})
            return

        wildcard = self.config.wildcard
        url = wildcard if isinstance(wildcard, str) else None
        try:
            if callable(wildcard):
                url = wildcard(ctx0)
            url = to_app_url(url or self._default_wildcard(), self.app_base)
            transition = pick_transition(None, self.config.transition, self.config.transitions)
            committed = await self._render_sequence(
                token, root, url, {"params": {}, "route": ctx0.describe()}, transition, ctx0
            )
            if committed and history and history != "none" and not self._superseded(token):
                self._write_history(history, ctx0.path, {})
        except Exception as exc:
            await self._fail("wildcard-render", repr(exc), exc, {"url": url})

    # -- stage helpers --------------------------------------------------------

    def _derive_view(
        self,
        route: RouteDefinition | None,
        ctx0: NavigationContext,
        path_params: dict[str, str],
    ) -> str:
        if route is not None and callable(route.view):
            return route.view(ctx0, path_params)
        if route is not None and isinstance(route.view, str):
            return route.view
        return self.view_by_convention(ctx0.pathname)

    def _resolve_root(self, route_root: Any) -> Any:
        choice = route_root if route_root is not None else self.config.root
        if choice is None:
            return None
        try:
            if isinstance(choice, str):
                return self.window.document.query_selector(choice)
            if callable(choice):
                return choice() or None
        except Exception:
            logger.warning("Root resolution failed for %r", choice, exc_info=True)
            return None
        return choice

    def _apply_title(self, override: Any, route: RouteDefinition | None, route_ctx: RouteContext) -> None:
        title = override or (route.title if route is not None else None)
        if not title:
            return
        try:
            self.window.title = title(route_ctx) if callable(title) else title
        except Exception:
            logger.warning("Title callable failed", exc_info=True)

    def _write_history(self, mode: str, url: str, state: Any) -> None:
        if mode == "none":
            return
        if mode not in HISTORY_MODES:
            msg = f"Unknown history mode {mode!r}"
            raise ConfigurationError(msg)
        href = app_href(url, self.app_base)
        if mode == "replace":
            self.window.history.replace_state(state, "", href)
        else:
            self.window.history.push_state(state, "", href)

    async def _fail(
        self,
        stage: str,
        detail: str,
        cause: BaseException | None,
        info: dict[str, Any],
    ) -> None:
        error = NavigationStageError(stage, detail, info=info)
        error.__cause__ = cause
        logger.warning("Navigation failed: %s", error, exc_info=cause if self.config.debug else None)
        if self.config.on_error is None:
            return
        try:
            await invoke(self.config.on_error, error, {"stage": stage, **info})
        except Exception:
            logger.exception("on_error hook failed")
