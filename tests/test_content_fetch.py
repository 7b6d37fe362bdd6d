import httpx

from hivemind.config import HTTP_MAX_BYTES
from hivemind.content_fetch import ContentFetcher, extract_main_text

PARAGRAPH = "A sirene escolar possui 72 músicas pré-gravadas e entrada USB para atualização."

PAGE = f"""
<html><head><title>Sirene</title></head>
<body>
<nav>Menu Home Contato</nav>
<article><h1>Sirene Musical SX72</h1><p>{PARAGRAPH}</p><p>{PARAGRAPH}</p></article>
</body></html>
"""


def test_extract_main_text_keeps_content():
    text = extract_main_text(PAGE)
    assert "72 músicas" in text
    assert "<p>" not in text


async def test_reader_text_is_used_first():
    hosts = []

    def handler(request):
        hosts.append(request.url.host)
        return httpx.Response(200, text="Sirene SX72   com 72 músicas")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        text = await ContentFetcher(http_client=http).fetch_readable("https://fab.com.br/sx72", 1000)
    assert text == "Sirene SX72 com 72 músicas"
    assert hosts == ["r.jina.ai"]


async def test_reader_failure_falls_back_to_direct_fetch():
    def handler(request):
        if request.url.host == "r.jina.ai":
            return httpx.Response(502)
        return httpx.Response(200, text=PAGE)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        text = await ContentFetcher(http_client=http).fetch_readable("https://fab.com.br/sx72", 10_000)
    assert text is not None
    assert "72 músicas" in text


async def test_result_is_clamped():
    def handler(request):
        return httpx.Response(200, text="x" * 500)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        text = await ContentFetcher(http_client=http).fetch_readable("https://fab.com.br", 100)
    assert len(text) == 100


async def test_oversized_and_failed_fetches_return_none():
    def big(request):
        return httpx.Response(200, content=b"a" * (HTTP_MAX_BYTES + 1))

    def missing(request):
        return httpx.Response(404)

    for handler in (big, missing):
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            assert await ContentFetcher(http_client=http).fetch_readable("https://fab.com.br", 100) is None


async def test_non_http_urls_are_ignored():
    assert await ContentFetcher().fetch_readable("ftp://fab.com.br", 100) is None
    assert await ContentFetcher().fetch_readable("", 100) is None
