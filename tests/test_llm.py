import httpx
import pytest

from fakes import RecordingTracer
from hivemind.config import ProviderDescriptor
from hivemind.errors import MalformedOutputError, ProviderUnavailableError
from hivemind.llm import CompletionClient, user_message


def _desc(name, key="k"):
    return ProviderDescriptor(name=name, model=f"{name}-model", base_url=f"https://{name}.test/v1", api_key=key)


def _answer(content):
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


async def test_first_provider_serves():
    seen = []

    def handler(request):
        seen.append(request)
        return _answer("ok")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        client = CompletionClient([_desc("a", "k1"), _desc("b")], http_client=http)
        result = await client.complete(user_message("hi"))

    assert result.text == "ok"
    assert result.provider == "a"
    assert result.model == "a-model"
    assert len(seen) == 1
    assert seen[0].url.path == "/v1/chat/completions"
    assert seen[0].headers["Authorization"] == "Bearer k1"


async def test_falls_back_on_http_error():
    def handler(request):
        if request.url.host == "a.test":
            return httpx.Response(500, text="boom")
        return _answer("from b")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        client = CompletionClient([_desc("a"), _desc("b")], http_client=http)
        result = await client.complete(user_message("hi"))
    assert result.provider == "b"
    assert result.text == "from b"


async def test_empty_choices_move_to_next_provider():
    def handler(request):
        if request.url.host == "a.test":
            return httpx.Response(200, json={"choices": []})
        return _answer("b")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        client = CompletionClient([_desc("a"), _desc("b")], http_client=http)
        assert (await client.complete(user_message("hi"))).provider == "b"


async def test_descriptor_without_credential_is_skipped(monkeypatch):
    monkeypatch.delenv("HIVEMIND_TEST_MISSING_KEY", raising=False)
    hosts = []

    def handler(request):
        hosts.append(request.url.host)
        return _answer("ok")

    keyless = ProviderDescriptor(
        name="a", model="m", base_url="https://a.test/v1", api_key_env="HIVEMIND_TEST_MISSING_KEY"
    )
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        client = CompletionClient([keyless, _desc("b")], http_client=http)
        result = await client.complete(user_message("hi"))
    assert result.provider == "b"
    assert hosts == ["b.test"]


async def test_empty_chain_raises():
    client = CompletionClient([])
    with pytest.raises(ProviderUnavailableError):
        await client.complete(user_message("hi"))


async def test_every_provider_failing_raises_with_attempts():
    def handler(request):
        return httpx.Response(503)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        client = CompletionClient([_desc("a"), _desc("b")], http_client=http)
        with pytest.raises(ProviderUnavailableError) as exc:
            await client.complete(user_message("hi"))
    assert len(exc.value.attempts) == 2


async def test_complete_json_parses_fenced_output():
    def handler(request):
        return _answer('Aqui está:\n```json\n{"found": true}\n```')

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        client = CompletionClient([_desc("a")], http_client=http)
        data, result = await client.complete_json(user_message("hi"), agent="scout")
    assert data == {"found": True}
    assert result.provider == "a"


async def test_complete_json_malformed_output():
    def handler(request):
        return _answer("sem json")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        client = CompletionClient([_desc("a")], http_client=http)
        with pytest.raises(MalformedOutputError):
            await client.complete_json(user_message("hi"))


async def test_tracer_receives_exchange():
    tracer = RecordingTracer()

    def handler(request):
        return _answer("ok")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        client = CompletionClient([_desc("a")], http_client=http).with_tracer(tracer)
        await client.complete(user_message("hi"), agent="judge")
    assert tracer.kinds("ai") == [("ai", "judge", "a")]
