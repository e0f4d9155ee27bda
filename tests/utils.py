from __future__ import annotations

import json
from typing import Any, Dict, Iterable, Iterator, List, Optional

from src.forge.config import ForgeConfig
from src.forge.domain.catalog import TEMPLATES
from src.forge.domain.models import GenerationRequest
from src.forge.security.rate_limit import InMemoryCounterStore, RateLimiter
from src.forge.services.generation import GenerationGateway
from src.forge.services.model_router import ModelRouter, ProviderKeyResolver

FRAGMENT_JSON = json.dumps(
    {
        "commentary": "A counter app.",
        "template": "nextjs-developer",
        "title": "Counter",
        "description": "Click to count.",
        "additional_dependencies": [],
        "has_additional_dependencies": False,
        "install_dependencies_command": "",
        "port": 3000,
        "file_path": "pages/index.tsx",
        "code": "export default function Home() { return <button>0</button> }",
    }
)


def chunked(text: str, size: int = 7) -> List[str]:
    return [text[i : i + size] for i in range(0, len(text), size)]


def request_body(provider_id: str = "openai", model_id: str = "gpt-4o", api_key: Optional[str] = None) -> Dict[str, Any]:
    config: Dict[str, Any] = {"model": model_id}
    if api_key:
        config["apiKey"] = api_key
    return {
        "messages": [{"role": "user", "content": [{"type": "text", "text": "Build a counter"}]}],
        "userID": "user-1",
        "teamID": "team-1",
        "template": {"nextjs-developer": TEMPLATES["nextjs-developer"].model_dump()},
        "model": {"id": model_id, "provider": provider_id.title(), "providerId": provider_id, "name": model_id},
        "config": config,
    }


def make_request(**kwargs: Any) -> GenerationRequest:
    return GenerationRequest.model_validate(request_body(**kwargs))


class FakeClient:
    def __init__(self, chunks: Iterable[Any]) -> None:
        self.provider = "fake"
        self._chunks = list(chunks)
        self.calls: List[Dict[str, Any]] = []

    def stream(self, system: str, messages: Any, params: Dict[str, Any]) -> Iterator[str]:
        self.calls.append({"system": system, "messages": messages, "params": params})
        for chunk in self._chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


class FakeClientFactory:
    def __init__(self, chunks: Iterable[Any]) -> None:
        self.client = FakeClient(chunks)
        self.created: List[Any] = []

    def __call__(self, selection, credential, model_name, timeout):
        self.created.append((selection, credential, model_name, timeout))
        return self.client


def make_gateway(
    chunks: Iterable[Any] = (),
    *,
    env: Optional[Dict[str, str]] = None,
    max_requests: int = 60,
    window_seconds: int = 600,
    store: Optional[InMemoryCounterStore] = None,
):
    env = {"OPENAI_API_KEY": "sk-server"} if env is None else env
    factory = FakeClientFactory(chunks)
    config = ForgeConfig(max_requests=max_requests, window_seconds=window_seconds)
    limiter = RateLimiter(store or InMemoryCounterStore())
    gateway = GenerationGateway(
        config,
        limiter,
        ProviderKeyResolver(env=env),
        router=ModelRouter(env=env),
        client_factory=factory,
    )
    return gateway, factory


def ndjson_lines(body: bytes) -> List[Dict[str, Any]]:
    return [json.loads(line) for line in body.decode("utf-8").splitlines() if line.strip()]
