"""Template loaders — identifier to raw template text.

Loaders implement one coroutine, ``get_source(identifier) -> str``, and
raise ``RetrievalError`` when the text cannot be fetched. There is no
retry and no fallback text; the delivery engine caches what they return.

Built-in loaders:
- ``HttpLoader``: fetch over HTTP(S) with ``httpx`` (``Cache-Control: no-cache``)
- ``FileSystemLoader``: map identifiers under a base URL onto a directory
- ``DictLoader``: in-memory mapping (testing/embedded)
- ``ChoiceLoader``: try several loaders in order

Custom loaders only need the coroutine::

    class DatabaseLoader:
        async def get_source(self, identifier: str) -> str:
            row = await db.fetch_one("SELECT body FROM views WHERE url = ?", identifier)
            if row is None:
                raise RetrievalError(identifier, "no such view")
            return row.body
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import unquote, urlsplit

import httpx
from anyio import to_thread

from templar.errors import RetrievalError


@runtime_checkable
class Loader(Protocol):
    async def get_source(self, identifier: str) -> str: ...


class HttpLoader:
    """Fetch templates over HTTP with a fresh ``httpx.AsyncClient`` per call.

    Any non-2xx status is a failure. ``transport`` is passed through to
    the client (``httpx.MockTransport`` in tests).
    """

    __slots__ = ("_headers", "_timeout", "_transport")

    def __init__(
        self,
        *,
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._headers = {"Cache-Control": "no-cache", **(headers or {})}
        self._timeout = timeout
        self._transport = transport

    async def get_source(self, identifier: str) -> str:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                response = await client.get(identifier, headers=self._headers)
        except httpx.HTTPError as exc:
            raise RetrievalError(identifier, str(exc)) from exc
        if not response.is_success:
            raise RetrievalError(identifier, f"HTTP {response.status_code}")
        return response.text


class FileSystemLoader:
    """Serve identifiers under ``base_url`` from ``directory``.

    ``http://localhost/app/views/about.html`` with ``base_url
    "http://localhost/app/"`` reads ``<directory>/views/about.html``.
    Plain relative identifiers are read relative to ``directory``.
    Blocking reads run in a worker thread.
    """

    __slots__ = ("_base_url", "_directory", "_encoding")

    def __init__(
        self,
        directory: str | Path,
        base_url: str = "http://localhost/",
        encoding: str = "utf-8",
    ) -> None:
        self._directory = Path(directory).resolve()
        self._base_url = base_url if base_url.endswith("/") else base_url + "/"
        self._encoding = encoding

    def path_for(self, identifier: str) -> Path:
        """Map *identifier* to a file path. Raises ``RetrievalError`` outside the root."""
        if identifier.startswith(self._base_url):
            relative = identifier[len(self._base_url) :]
        elif "://" in identifier:
            raise RetrievalError(identifier, f"outside {self._base_url}")
        else:
            relative = identifier.lstrip("/")
        relative = unquote(urlsplit(relative).path)
        path = (self._directory / relative).resolve()
        if not path.is_relative_to(self._directory):
            raise RetrievalError(identifier, "path escapes template directory")
        return path

    async def get_source(self, identifier: str) -> str:
        path = self.path_for(identifier)
        try:
            return await to_thread.run_sync(path.read_text, self._encoding)
        except OSError as exc:
            raise RetrievalError(identifier, str(exc)) from exc


class DictLoader:
    """Serve templates from an in-memory mapping of identifier -> text."""

    __slots__ = ("mapping",)

    def __init__(self, mapping: dict[str, str] | None = None) -> None:
        self.mapping = dict(mapping or {})

    async def get_source(self, identifier: str) -> str:
        try:
            return self.mapping[identifier]
        except KeyError:
            raise RetrievalError(identifier, "not found") from None


class ChoiceLoader:
    """Try each loader in order; the first one that succeeds wins."""

    __slots__ = ("_loaders",)

    def __init__(self, loaders: list[Loader]) -> None:
        self._loaders = list(loaders)

    async def get_source(self, identifier: str) -> str:
        reasons: list[str] = []
        for loader in self._loaders:
            try:
                return await loader.get_source(identifier)
            except RetrievalError as exc:
                reasons.append(exc.detail or str(exc))
        raise RetrievalError(identifier, "; ".join(reasons) or "no loaders")
