"""Chat-completion client with an ordered provider fallback chain.

Every configured provider speaks the OpenAI chat-completions dialect, so a
single httpx call path serves all of them. Descriptors are tried in order;
the result records which one actually answered.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

import httpx
from loguru import logger

from .config import HTTP_CONNECT_TIMEOUT, LLM_TIMEOUT, ProviderDescriptor
from .errors import ProviderError, ProviderUnavailableError
from .structured_output import require_structured_output
from .tracing import Tracer, guard

Message = Dict[str, str]


@dataclass(frozen=True)
class CompletionResult:
    text: str
    provider: str
    model: str


def user_message(prompt: str) -> List[Message]:
    return [{"role": "user", "content": prompt}]


def _prompt_text(messages: Sequence[Message]) -> str:
    return "\n\n".join(f"[{m.get('role', 'user')}] {m.get('content', '')}" for m in messages)


class CompletionClient:
    """
    ``complete`` walks the chain until one descriptor answers.

    A descriptor without a resolvable credential or base URL is skipped;
    transport errors, non-2xx answers and empty choices move on to the next
    one. When nobody answers, ``ProviderUnavailableError`` carries the
    attempt log. An empty chain therefore always raises, which is how the
    agents end up on their deterministic fallbacks.
    """

    def __init__(
        self,
        providers: Sequence[ProviderDescriptor] = (),
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = LLM_TIMEOUT,
        tracer: Optional[Tracer] = None,
        temperature: float = 0.1,
    ):
        self._providers: List[ProviderDescriptor] = list(providers)
        self._http = http_client
        self._timeout = httpx.Timeout(timeout, connect=HTTP_CONNECT_TIMEOUT)
        self._tracer = guard(tracer)
        self._temperature = temperature

    @property
    def providers(self) -> List[ProviderDescriptor]:
        return list(self._providers)

    def with_tracer(self, tracer: Optional[Tracer]) -> "CompletionClient":
        return CompletionClient(
            self._providers,
            http_client=self._http,
            timeout=self._timeout.read or LLM_TIMEOUT,
            tracer=tracer,
            temperature=self._temperature,
        )

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http is not None:
            yield self._http
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    async def _post(
        self, client: httpx.AsyncClient, desc: ProviderDescriptor, base_url: str, api_key: str, messages: Sequence[Message]
    ) -> str:
        payload: Dict[str, Any] = {
            "model": desc.model,
            "messages": list(messages),
            "temperature": self._temperature,
        }
        r = await client.post(
            f"{base_url}/chat/completions",
            json=payload,
            headers={"Authorization": f"Bearer {api_key}"},
        )
        if r.status_code >= 400:
            raise ProviderError(f"HTTP {r.status_code}")
        try:
            body = r.json()
        except ValueError as exc:
            raise ProviderError(f"non-JSON body: {exc}") from exc
        choices = body.get("choices") or []
        if not choices:
            raise ProviderError("empty choices")
        content = (choices[0].get("message") or {}).get("content") or ""
        if not content.strip():
            raise ProviderError("empty content")
        return content

    async def complete(self, messages: Sequence[Message], agent: str = "pipeline") -> CompletionResult:
        attempts: List[str] = []
        async with self._client() as client:
            for desc in self._providers:
                api_key = desc.resolve_api_key()
                if not api_key:
                    attempts.append(f"{desc.name}: no credential")
                    continue
                base_url = desc.resolve_base_url()
                if not base_url:
                    attempts.append(f"{desc.name}: no base url")
                    continue
                try:
                    text = await self._post(client, desc, base_url, api_key, messages)
                except (httpx.HTTPError, ProviderError) as exc:
                    logger.warning("[{}] provider {} failed: {}", agent, desc.name, exc)
                    attempts.append(f"{desc.name}: {exc}")
                    continue
                logger.debug("[{}] served by {}/{}", agent, desc.name, desc.model)
                self._tracer.ai_exchange(agent, _prompt_text(messages), text, desc.name)
                return CompletionResult(text=text, provider=desc.name, model=desc.model)

        self._tracer.error(agent, f"no provider answered ({'; '.join(attempts) or 'empty chain'})")
        raise ProviderUnavailableError(attempts)

    async def complete_json(
        self, messages: Sequence[Message], agent: str = "pipeline"
    ) -> Tuple[Dict[str, Any], CompletionResult]:
        """``complete`` + structured-output parsing. Raises MalformedOutputError."""
        result = await self.complete(messages, agent=agent)
        return require_structured_output(result.text), result
