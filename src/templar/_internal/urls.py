"""URL helpers shared by the registry and the router.

Both engines resolve relative locations (``./components/``,
``./views/``) against an application base, which is configured
explicitly or inferred from the document.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING
from urllib.parse import urljoin, urlsplit

if TYPE_CHECKING:
    from templar.browser import Window

SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+\-.]*:")


def has_scheme(url: str) -> bool:
    """True for scheme-absolute URLs such as ``https://x`` or ``mailto:y``."""
    return bool(SCHEME_RE.match(url))


def ensure_trailing_slash(path: str) -> str:
    return path if path.endswith("/") else path + "/"


def strip_trailing_slash(path: str) -> str:
    if path == "/":
        return path
    return path.rstrip("/")


def origin_of(url: str) -> str:
    """``https://example.com:8080/a/b`` -> ``https://example.com:8080``."""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def detect_app_base(window: Window) -> str:
    """Infer the application base URL.

    1. ``<base href>`` if the document declares one
    2. the directory of the current document (``/app/page`` -> ``/app/``)
    """
    origin = origin_of(window.location.href)
    base_el = window.document.query_selector("base[href]")
    if base_el is not None:
        href = base_el.get_attribute("href") or ""
        return urljoin(origin + "/", href)
    pathname = window.location.pathname
    directory = pathname if pathname.endswith("/") else pathname[: pathname.rfind("/") + 1]
    return urljoin(origin + "/", directory or "/")


def resolve_base_path(base_path: str, app_base: str) -> str:
    """Absolutize a (usually relative) base path against the app base."""
    return urljoin(app_base, ensure_trailing_slash(base_path))


def to_app_url(path: str, app_base: str) -> str:
    """Absolutize *path* under the app base.

    Scheme-absolute URLs are kept; ``/about`` is treated as relative to
    the app base, not the origin root.
    """
    if has_scheme(path):
        return path
    return urljoin(app_base, path[1:] if path.startswith("/") else path)


def app_href(path: str, app_base: str) -> str:
    """Origin-relative href (path + query + fragment) of *path* under the app base."""
    parts = urlsplit(to_app_url(path, app_base))
    href = parts.path or "/"
    if parts.query:
        href += "?" + parts.query
    if parts.fragment:
        href += "#" + parts.fragment
    return href


def app_relative_pathname(pathname: str, app_base: str) -> str:
    """``/app/users/42`` -> ``/users/42`` for app base ``.../app/``.

    Paths outside the app base come back unchanged.
    """
    base_pathname = urlsplit(app_base).path or "/"
    if pathname.startswith(base_pathname):
        return "/" + pathname[len(base_pathname) :]
    return pathname
