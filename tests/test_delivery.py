"""Tests for templar.templating.delivery — caches, commit, ready callbacks, failures."""

import pytest

from templar.dom import Element
from templar.errors import CompileError, ConfigurationError, RetrievalError
from templar.templating import DictLoader, Templar

URL = "http://localhost/views/page.html"


class CountingLoader(DictLoader):
    def __init__(self, mapping: dict[str, str]) -> None:
        super().__init__(mapping)
        self.calls: list[str] = []

    async def get_source(self, identifier: str) -> str:
        self.calls.append(identifier)
        return await super().get_source(identifier)


class TestRenderInto:
    @pytest.mark.asyncio
    async def test_replaces_target_content(self) -> None:
        target = Element("main")
        target.set_inner_html("<p>old</p>")
        templar = Templar(DictLoader({URL: "<h1>${title}</h1>"}))
        html = await templar.render_into(URL, {"title": "New"}, target)
        assert html == "<h1>New</h1>"
        assert target.inner_html == "<h1>New</h1>"

    @pytest.mark.asyncio
    async def test_missing_identifier(self) -> None:
        with pytest.raises(ConfigurationError, match="identifier"):
            await Templar(DictLoader()).render_into("", {}, Element("div"))

    @pytest.mark.asyncio
    async def test_missing_target(self) -> None:
        with pytest.raises(ConfigurationError, match="target"):
            await Templar(DictLoader({URL: "x"})).render_into(URL, {}, None)

    @pytest.mark.asyncio
    async def test_globals_visible(self) -> None:
        templar = Templar(DictLoader({URL: "${brand}"}), globals_={"brand": "Acme"})
        assert await templar.render_into(URL, {}, Element("div")) == "Acme"
        templar.add_global("brand", "Globex")
        assert await templar.render_into(URL, {}, Element("div")) == "Globex"

    @pytest.mark.asyncio
    async def test_configure_replaces_globals(self) -> None:
        templar = Templar(DictLoader({URL: "${brand}"}), globals_={"brand": "Acme"})
        templar.configure(globals_={"brand": "Initech"}, context_lines=5)
        assert templar.config.context_lines == 5
        assert await templar.render_into(URL, {}, Element("div")) == "Initech"

    def test_configure_rejects_unknown_option(self) -> None:
        with pytest.raises(ConfigurationError, match="bogus"):
            Templar(DictLoader()).configure(bogus=True)


class TestCaches:
    @pytest.mark.asyncio
    async def test_text_fetched_once(self) -> None:
        loader = CountingLoader({URL: "${n}"})
        templar = Templar(loader)
        for n in range(3):
            await templar.render_into(URL, {"n": n}, Element("div"))
        assert loader.calls == [URL]
        assert len(templar.units) == 1

    def test_new_content_compiles_new_unit_only(self) -> None:
        templar = Templar(DictLoader())
        first = templar.get_unit(URL, "v1")
        again = templar.get_unit(URL, "v1")
        second = templar.get_unit(URL, "v2")
        assert first is again
        assert second is not first
        assert len(templar.units) == 2
        assert templar.texts == {}

    @pytest.mark.asyncio
    async def test_invalidate_forgets_text_and_units(self) -> None:
        loader = CountingLoader({URL: "a", "other.html": "b"})
        templar = Templar(loader)
        await templar.render_into(URL, {}, Element("div"))
        await templar.render_into("other.html", {}, Element("div"))
        templar.invalidate(URL)
        assert URL not in templar.texts
        assert [key[0] for key in templar.units] == ["other.html"]
        await templar.render_into(URL, {}, Element("div"))
        assert loader.calls.count(URL) == 2

    @pytest.mark.asyncio
    async def test_clear(self) -> None:
        templar = Templar(DictLoader({URL: "a"}))
        await templar.render_into(URL, {}, Element("div"))
        templar.clear()
        assert not templar.texts
        assert not templar.units

    @pytest.mark.asyncio
    async def test_failed_retrieval_not_cached(self) -> None:
        loader = DictLoader()
        templar = Templar(loader)
        with pytest.raises(RetrievalError):
            await templar.fetch_template(URL)
        loader.mapping[URL] = "now here"
        assert await templar.fetch_template(URL) == "now here"


class TestReadyCallbacks:
    @pytest.mark.asyncio
    async def test_run_after_commit_in_order(self) -> None:
        seen: list[str] = []
        target = Element("div")
        templar = Templar(
            DictLoader({
                URL: (
                    "<p>done</p>"
                    "<% ready(lambda: seen.append('first:' + query('p').text_content)) %>"
                    "<% ready(lambda: seen.append('second')) %>"
                ),
            }),
            globals_={"seen": seen},
        )
        await templar.render_into(URL, {}, target)
        assert seen == ["first:done", "second"]

    @pytest.mark.asyncio
    async def test_async_callback_awaited(self) -> None:
        seen: list[str] = []

        async def later() -> None:
            seen.append("async")

        templar = Templar(DictLoader({URL: "<% ready(later) %>"}), globals_={"later": later})
        await templar.render_into(URL, {}, Element("div"))
        assert seen == ["async"]

    @pytest.mark.asyncio
    async def test_failing_callback_is_logged_and_skipped(self, caplog: pytest.LogCaptureFixture) -> None:
        seen: list[str] = []
        templar = Templar(
            DictLoader({URL: "<% ready(lambda: 1 / 0) %><% ready(lambda: seen.append('ok')) %>"}),
            globals_={"seen": seen},
        )
        await templar.render_into(URL, {}, Element("div"))
        assert seen == ["ok"]
        assert "ready() callback error" in caplog.text


class TestFailures:
    @pytest.mark.asyncio
    async def test_runtime_error_logged_with_context(self, caplog: pytest.LogCaptureFixture) -> None:
        target = Element("div")
        target.set_inner_html("<p>kept</p>")
        templar = Templar(DictLoader({URL: "<h1>ok</h1>\n<p>${usernme}</p>\n<footer/>"}))
        with pytest.raises(NameError):
            await templar.render_into(URL, {"username": "ada"}, target)
        assert "Runtime error in http://localhost/views/page.html (line 2)" in caplog.text
        assert "> 2 | <p>${usernme}</p>" in caplog.text
        assert "'username': 'ada'" in caplog.text
        assert target.inner_html == "<p>kept</p>"

    @pytest.mark.asyncio
    async def test_retrieval_error_propagates(self) -> None:
        with pytest.raises(RetrievalError, match="Can't load template"):
            await Templar(DictLoader()).render_into(URL, {}, Element("div"))

    @pytest.mark.asyncio
    async def test_compile_error_propagates(self) -> None:
        with pytest.raises(CompileError):
            await Templar(DictLoader({URL: "<% if x: %>"})).render_into(URL, {}, Element("div"))
