"""Link interception — turn in-app anchor clicks into router navigations.

A click is left to the browser when any of these hold:

- it was already handled (``default_prevented``), isn't the primary
  button, or has a modifier key held
- the anchor has ``download``, a ``target`` other than ``_self``,
  ``rel="external"`` or ``data-router="ignore"``
- the anchor doesn't match the configured link selector
- the href is empty or a pure fragment (``#top``)

Otherwise relative hrefs are always intercepted. Root-absolute
(``/about``) and scheme-absolute (``http://...``) hrefs are intercepted
only when they land inside the application base, or when the anchor
says ``data-router="force"``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from templar._internal.urls import app_relative_pathname, has_scheme, origin_of, to_app_url
from templar.dom import Element, Event

if TYPE_CHECKING:
    from collections.abc import Callable

    from templar.routing.navigator import Router


def _app_relative(url: str, app_base: str) -> str:
    parts = urlsplit(url)
    rel = app_relative_pathname(parts.path or "/", app_base)
    if parts.query:
        rel += "?" + parts.query
    if parts.fragment:
        rel += "#" + parts.fragment
    return rel


def _inside_base(url: str, app_base: str) -> bool:
    base_pathname = urlsplit(app_base).path or "/"
    return (urlsplit(url).path or "/").startswith(base_pathname)


def link_target(
    event: Event,
    *,
    app_base: str,
    origin: str,
    link_selector: str | None = None,
) -> str | None:
    """App-relative path the click should navigate to, or ``None`` to let it through."""
    if event.default_prevented or event.button != 0:
        return None
    if event.meta_key or event.ctrl_key or event.alt_key or event.shift_key:
        return None

    target = event.target
    anchor = target.closest("a") if isinstance(target, Element) else None
    if anchor is None:
        return None

    if anchor.has_attribute("download"):
        return None
    link_window = anchor.get_attribute("target")
    if link_window and link_window != "_self":
        return None
    router_hint = anchor.get_attribute("data-router")
    if anchor.get_attribute("rel") == "external" or router_hint == "ignore":
        return None
    if link_selector and not anchor.matches(link_selector):
        return None

    href = anchor.get_attribute("href")
    if not href or href.startswith("#"):
        return None
    forced = router_hint == "force"

    if has_scheme(href):
        same_origin = origin_of(href) == origin
        if forced or (same_origin and _inside_base(href, app_base)):
            return _app_relative(href, app_base)
        return None

    absolute = to_app_url(href, app_base)
    if href.startswith("/") and not (forced or _inside_base(absolute, app_base)):
        return None
    return _app_relative(absolute, app_base)


def install_link_interceptor(router: Router) -> Callable[[], None]:
    """Listen for clicks on the router's document. Returns the uninstaller."""
    document = router.window.document

    def on_click(event: Event) -> None:
        destination = link_target(
            event,
            app_base=router.app_base,
            origin=router.window.location.origin,
            link_selector=router.config.link_selector,
        )
        if destination is None:
            return
        event.prevent_default()
        router.navigate(destination)

    document.add_event_listener("click", on_click)

    def uninstall() -> None:
        document.remove_event_listener("click", on_click)

    return uninstall
