"""Tests for templar.templating.loaders."""

from pathlib import Path

import httpx
import pytest

from templar.errors import RetrievalError
from templar.templating.loaders import ChoiceLoader, DictLoader, FileSystemLoader, HttpLoader, Loader


class TestHttpLoader:
    @pytest.mark.asyncio
    async def test_fetches_text_without_cache(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text="<h1>${title}</h1>")

        loader = HttpLoader(transport=httpx.MockTransport(handler))
        text = await loader.get_source("http://localhost/views/about.html")
        assert text == "<h1>${title}</h1>"
        assert seen[0].headers["cache-control"] == "no-cache"
        assert str(seen[0].url) == "http://localhost/views/about.html"

    @pytest.mark.asyncio
    async def test_non_success_status_fails(self) -> None:
        loader = HttpLoader(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
        with pytest.raises(RetrievalError, match="HTTP 404") as info:
            await loader.get_source("http://localhost/missing.html")
        assert info.value.identifier == "http://localhost/missing.html"

    @pytest.mark.asyncio
    async def test_transport_error_fails(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        loader = HttpLoader(transport=httpx.MockTransport(handler))
        with pytest.raises(RetrievalError, match="refused"):
            await loader.get_source("http://localhost/x.html")

    @pytest.mark.asyncio
    async def test_extra_headers(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text="")

        loader = HttpLoader(headers={"X-Templar": "1"}, transport=httpx.MockTransport(handler))
        await loader.get_source("http://localhost/x.html")
        assert seen[0].headers["x-templar"] == "1"


class TestFileSystemLoader:
    @pytest.mark.asyncio
    async def test_maps_url_under_base(self, tmp_path: Path) -> None:
        (tmp_path / "views").mkdir()
        (tmp_path / "views" / "about.html").write_text("<p>about</p>")
        loader = FileSystemLoader(tmp_path, base_url="http://localhost/app")
        assert await loader.get_source("http://localhost/app/views/about.html") == "<p>about</p>"

    @pytest.mark.asyncio
    async def test_relative_identifier(self, tmp_path: Path) -> None:
        (tmp_path / "card.html").write_text("card")
        assert await FileSystemLoader(tmp_path).get_source("card.html") == "card"

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(RetrievalError):
            await FileSystemLoader(tmp_path).get_source("http://localhost/nope.html")

    def test_traversal_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(RetrievalError, match="escapes"):
            FileSystemLoader(tmp_path / "site").path_for("http://localhost/../secret.txt")

    def test_other_origin_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(RetrievalError, match="outside"):
            FileSystemLoader(tmp_path).path_for("https://example.com/x.html")


class TestDictAndChoice:
    @pytest.mark.asyncio
    async def test_dict_loader(self) -> None:
        loader = DictLoader({"a": "A"})
        assert await loader.get_source("a") == "A"
        with pytest.raises(RetrievalError, match="not found"):
            await loader.get_source("b")

    @pytest.mark.asyncio
    async def test_choice_first_success_wins(self) -> None:
        loader = ChoiceLoader([DictLoader({"a": "first"}), DictLoader({"a": "second", "b": "B"})])
        assert await loader.get_source("a") == "first"
        assert await loader.get_source("b") == "B"

    @pytest.mark.asyncio
    async def test_choice_reports_all_failures(self) -> None:
        loader = ChoiceLoader([DictLoader(), DictLoader()])
        with pytest.raises(RetrievalError, match="not found; not found"):
            await loader.get_source("zzz")

    def test_protocol(self) -> None:
        assert isinstance(DictLoader(), Loader)
        assert isinstance(HttpLoader(), Loader)
