import json

import httpx
import openai
import pytest

from src.forge.domain.errors import UpstreamError
from src.forge.domain.models import ImagePart, Message, TextPart
from src.forge.services import llm_clients
from src.forge.services.llm_clients import AnthropicClient, OllamaClient, OpenAICompatibleClient, get_model_client
from src.forge.services.model_router import Credential, ModelRouter

from .test_transport import FakeResponse, FakeSession

ROUTER = ModelRouter(env={})
MESSAGES = [
    Message(role="user", content=[TextPart(text="hello"), ImagePart(image="data:image/png;base64,QUJD")]),
    Message(role="assistant", content=[TextPart(text="hi")]),
]


def _sse(*events):
    return [f"data: {json.dumps(e)}" for e in events]


def test_factory_picks_client_by_api_style():
    cred = Credential(provider_id="x", api_key="k", source="request")
    assert isinstance(get_model_client(ROUTER.resolve_provider("anthropic"), cred, "m"), AnthropicClient)
    assert isinstance(get_model_client(ROUTER.resolve_provider("ollama"), cred, "m"), OllamaClient)
    assert isinstance(get_model_client(ROUTER.resolve_provider("groq"), cred, "m"), OpenAICompatibleClient)


def test_anthropic_stream_yields_text_deltas():
    client = AnthropicClient(ROUTER.resolve_provider("anthropic"), "sk-ant", "claude")
    lines = _sse(
        {"type": "message_start"},
        {"type": "content_block_delta", "delta": {"type": "text_delta", "text": '{"ti'}},
        {"type": "content_block_delta", "delta": {"type": "text_delta", "text": 'tle": "x"}'}},
        {"type": "message_stop"},
    )
    session = FakeSession(FakeResponse(lines=["event: ping"] + lines))
    client._session = session
    assert "".join(client.stream("sys", MESSAGES, {"temperature": 0.1})) == '{"title": "x"}'
    url, kwargs = session.posts[0]
    assert url.endswith("/messages")
    assert kwargs["headers"]["x-api-key"] == "sk-ant"
    assert kwargs["json"]["system"] == "sys"
    assert kwargs["json"]["temperature"] == 0.1
    image_block = kwargs["json"]["messages"][0]["content"][1]
    assert image_block["source"] == {"type": "base64", "media_type": "image/png", "data": "QUJD"}


def test_anthropic_in_stream_overload_maps_to_529():
    client = AnthropicClient(ROUTER.resolve_provider("anthropic"), "k", "claude")
    lines = _sse({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}})
    client._session = FakeSession(FakeResponse(lines=lines))
    with pytest.raises(UpstreamError) as info:
        list(client.stream("sys", MESSAGES, {}))
    assert info.value.status_code == 529


def test_anthropic_http_error_keeps_status_and_message():
    client = AnthropicClient(ROUTER.resolve_provider("anthropic"), "bad", "claude")
    resp = FakeResponse(status_code=401, body={"type": "error", "error": {"type": "authentication_error", "message": "invalid x-api-key"}})
    client._session = FakeSession(resp)
    with pytest.raises(UpstreamError) as info:
        list(client.stream("sys", MESSAGES, {}))
    assert info.value.status_code == 401
    assert info.value.message == "invalid x-api-key"


def test_ollama_stream_reads_ndjson():
    client = OllamaClient(ROUTER.resolve_provider("ollama"), "qwen")
    lines = [
        json.dumps({"message": {"content": '{"a"'}, "done": False}),
        json.dumps({"message": {"content": ": 1}"}, "done": True}),
    ]
    session = FakeSession(FakeResponse(lines=lines))
    client._session = session
    assert "".join(client.stream("sys", MESSAGES, {"max_tokens": 10})) == '{"a": 1}'
    _url, kwargs = session.posts[0]
    assert kwargs["json"]["format"] == "json"
    assert kwargs["json"]["options"] == {"num_predict": 10}
    assert kwargs["json"]["messages"][1]["images"] == ["QUJD"]


def test_openai_messages_keep_images_for_user_turns():
    out = OpenAICompatibleClient._to_openai_messages("sys", MESSAGES)
    assert out[0] == {"role": "system", "content": "sys"}
    assert out[1]["content"][1] == {"type": "image_url", "image_url": {"url": "data:image/png;base64,QUJD"}}
    assert out[2] == {"role": "assistant", "content": "hi"}


class _Chunk:
    def __init__(self, content):
        self.content = content


class _FakeChat:
    def __init__(self, items):
        self.items = items

    def stream(self, messages):
        for item in self.items:
            if isinstance(item, Exception):
                raise item
            yield _Chunk(item)


def test_openai_compatible_stream_and_status_mapping(monkeypatch):
    client = OpenAICompatibleClient(ROUTER.resolve_provider("openai"), "sk", "gpt-4o")
    monkeypatch.setattr(client, "_llm", lambda params: _FakeChat(['{"a"', "", ": 1}"]))
    assert "".join(client.stream("sys", MESSAGES, {})) == '{"a": 1}'

    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    err = openai.RateLimitError("Rate limit reached", response=httpx.Response(429, request=request), body=None)
    monkeypatch.setattr(client, "_llm", lambda params: _FakeChat([err]))
    with pytest.raises(UpstreamError) as info:
        list(client.stream("sys", MESSAGES, {}))
    assert info.value.status_code == 429


def test_sessions_never_retry():
    session = llm_clients._build_session()
    adapter = session.get_adapter("https://api.anthropic.com")
    assert adapter.max_retries.total == 0
