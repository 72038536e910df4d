"""
Тесты для модуля fetcher.py
"""
import httpx
import pytest

from bookmark_sync.fetcher import ContentFetcher, resolve_favicon
from tests.conftest import with_config

LONG_TEXT = "Python is a programming language that lets you work quickly. " * 10

SAMPLE_HTML = f"""
<!DOCTYPE html>
<html>
<head>
    <title>Test Page</title>
    <style>body {{ color: red; }}</style>
    <script>var tracking = "should not appear";</script>
</head>
<body>
    <main>
        <h1>Main Content</h1>
        <p>{LONG_TEXT}</p>
    </main>
    <noscript>Enable JavaScript</noscript>
</body>
</html>
"""


def make_fetcher(config, handler):
    return ContentFetcher(config, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestContentFetcher:
    """Тесты для класса ContentFetcher"""

    def test_url_validation(self, config):
        fetcher = ContentFetcher(config)

        assert fetcher._validate_url("https://example.com")
        assert fetcher._validate_url("http://example.com")
        assert fetcher._validate_url("https://www.example.com/path?query=value")

        assert not fetcher._validate_url("ftp://example.com")
        assert not fetcher._validate_url("javascript:alert('xss')")
        assert not fetcher._validate_url("file:///etc/passwd")
        assert not fetcher._validate_url("not-a-url")
        assert not fetcher._validate_url("")

    def test_text_extraction(self, config):
        text = ContentFetcher(config).extract_text(SAMPLE_HTML)

        assert "Main Content" in text
        assert "Python is a programming language" in text
        assert "tracking" not in text
        assert "color: red" not in text
        assert "Enable JavaScript" not in text
        assert "  " not in text

    def test_reader_targets(self):
        assert ContentFetcher._reader_targets("https://example.com/docs/page") == [
            "https://example.com/docs/page",
            "https://example.com",
        ]
        assert ContentFetcher._reader_targets("https://example.com/") == ["https://example.com/"]

    @pytest.mark.asyncio
    async def test_direct_fetch(self, config):
        requested = []

        def handler(request):
            requested.append(request.url.host)
            return httpx.Response(200, text=SAMPLE_HTML, headers={"content-type": "text/html; charset=utf-8"})

        async with make_fetcher(config, handler) as fetcher:
            text = await fetcher.fetch_content("https://example.com/page")

        assert "Python is a programming language" in text
        assert requested == ["example.com"]

    @pytest.mark.asyncio
    async def test_direct_fetch_capped(self, config):
        config = with_config(config, content_max_chars=150)

        def handler(request):
            return httpx.Response(200, text=SAMPLE_HTML, headers={"content-type": "text/html"})

        async with make_fetcher(config, handler) as fetcher:
            text = await fetcher.fetch_content("https://example.com/page")

        assert len(text) == 150

    @pytest.mark.asyncio
    async def test_reader_fallback_with_auth(self, config):
        """Короткая страница: переход к прокси-читателю с ключом"""
        calls = []

        def handler(request):
            calls.append((request.url.host, request.headers.get("Authorization")))
            if request.url.host == "reader.test":
                assert request.url.path == "/https://example.com/page"
                return httpx.Response(200, text=LONG_TEXT)
            return httpx.Response(200, text="<p>tiny</p>", headers={"content-type": "text/html"})

        async with make_fetcher(config, handler) as fetcher:
            text = await fetcher.fetch_content("https://example.com/page")

        assert text.startswith("Python is a programming language")
        assert calls == [("example.com", None), ("reader.test", "Bearer reader_key")]

    @pytest.mark.asyncio
    async def test_reader_fallback_order(self, config):
        """Порядок: прямой запрос, читатель с ключом и без для URL, затем для корня сайта"""
        calls = []

        def handler(request):
            if request.url.host == "reader.test":
                target = str(request.url)[len("https://reader.test/"):]
                calls.append((target, "auth" if "Authorization" in request.headers else "free"))
                if target == "https://example.com" and "Authorization" not in request.headers:
                    return httpx.Response(200, text=LONG_TEXT)
                return httpx.Response(451)
            calls.append(("direct", None))
            return httpx.Response(404, text="missing", headers={"content-type": "text/html"})

        async with make_fetcher(config, handler) as fetcher:
            text = await fetcher.fetch_content("https://example.com/page")

        assert text
        assert calls == [
            ("direct", None),
            ("https://example.com/page", "auth"),
            ("https://example.com/page", "free"),
            ("https://example.com", "auth"),
            ("https://example.com", "free"),
        ]

    @pytest.mark.asyncio
    async def test_reader_without_key_skips_auth(self, config):
        config = with_config(config, reader_api_key="")
        auth_headers = []

        def handler(request):
            if request.url.host == "reader.test":
                auth_headers.append(request.headers.get("Authorization"))
                return httpx.Response(200, text=LONG_TEXT)
            raise httpx.ConnectTimeout("timeout", request=request)

        async with make_fetcher(config, handler) as fetcher:
            text = await fetcher.fetch_content("https://example.com/page")

        assert text
        assert auth_headers == [None]

    @pytest.mark.asyncio
    async def test_non_html_rejected(self, config):
        def handler(request):
            if request.url.host == "reader.test":
                return httpx.Response(200, text="short")
            return httpx.Response(200, content=b"%PDF-1.4", headers={"content-type": "application/pdf"})

        async with make_fetcher(config, handler) as fetcher:
            assert await fetcher.fetch_content("https://example.com/file.pdf") == ""

    @pytest.mark.asyncio
    async def test_invalid_url(self, config):
        def handler(request):
            raise AssertionError("запрос не должен выполняться")

        async with make_fetcher(config, handler) as fetcher:
            assert await fetcher.fetch_content("javascript:alert(1)") == ""


def test_resolve_favicon():
    template = "https://www.google.com/s2/favicons?domain={domain}&sz=64"

    assert resolve_favicon("https://docs.python.org/3/", template) == (
        "https://www.google.com/s2/favicons?domain=docs.python.org&sz=64"
    )
    assert resolve_favicon("not a url", template) is False
