from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple

import openai
import requests
from langchain_openai import ChatOpenAI
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..domain.errors import UpstreamError
from ..domain.models import CodePart, ImagePart, Message, TextPart
from .model_router import Credential, ProviderSelection

LOG = logging.getLogger("forge.llm")

DEFAULT_TIMEOUT: Tuple[int, int] = (5, 120)
ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_DEFAULT_MAX_TOKENS = 8192

# Anthropic reports some failures as in-stream events rather than HTTP codes.
_ANTHROPIC_ERROR_STATUS = {
    "rate_limit_error": 429,
    "overloaded_error": 529,
    "authentication_error": 401,
    "permission_error": 403,
    "api_error": 500,
}


class StreamingClient(Protocol):
    provider: str

    def stream(self, system: str, messages: List[Message], params: Dict[str, Any]) -> Iterator[str]:
        """Yield text deltas as the provider produces them."""
        ...


def _build_session() -> requests.Session:
    # A retried stream could duplicate output already forwarded, so never retry.
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=Retry(total=0, raise_on_status=False), pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def _part_text(part: Any) -> str:
    if isinstance(part, (TextPart, CodePart)):
        return part.text
    return ""


def _split_data_url(url: str) -> Optional[Tuple[str, str]]:
    if not url.startswith("data:") or ";base64," not in url:
        return None
    header, data = url.split(";base64,", 1)
    return header[len("data:"):] or "image/png", data


def _error_text(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text or resp.reason or f"HTTP {resp.status_code}"
    err = data.get("error") if isinstance(data, dict) else None
    if isinstance(err, dict):
        return str(err.get("message") or err)
    if err:
        return str(err)
    return json.dumps(data)


class OpenAICompatibleClient:
    """Hosted providers that speak the OpenAI chat-completions protocol."""

    def __init__(self, selection: ProviderSelection, api_key: Optional[str], model: str, timeout: Tuple[int, int] = DEFAULT_TIMEOUT) -> None:
        self.provider = selection.name
        self.model = model
        self._base_url = selection.base_url
        self._api_key = api_key
        self._timeout = timeout

    def _llm(self, params: Dict[str, Any]) -> ChatOpenAI:
        kwargs: Dict[str, Any] = {}
        for name in ("temperature", "top_p", "max_tokens", "frequency_penalty", "presence_penalty"):
            if params.get(name) is not None:
                kwargs[name] = params[name]
        return ChatOpenAI(
            api_key=self._api_key,
            base_url=self._base_url,
            model=self.model,
            max_retries=0,
            timeout=float(self._timeout[1]),
            streaming=True,
            **kwargs,
        )

    @staticmethod
    def _to_openai_messages(system: str, messages: List[Message]) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = [{"role": "system", "content": system}]
        for msg in messages:
            parts: List[Dict[str, Any]] = []
            for part in msg.content:
                if isinstance(part, ImagePart):
                    parts.append({"type": "image_url", "image_url": {"url": part.image}})
                else:
                    parts.append({"type": "text", "text": _part_text(part)})
            if msg.role != "user" or all(p["type"] == "text" for p in parts):
                out.append({"role": msg.role, "content": "\n".join(p["text"] for p in parts if p["type"] == "text")})
            else:
                out.append({"role": msg.role, "content": parts})
        return out

    def stream(self, system: str, messages: List[Message], params: Dict[str, Any]) -> Iterator[str]:
        LOG.debug("openai_compatible_stream", extra={"provider": self.provider, "model": self.model, "base_url": self._base_url})
        llm = self._llm(params)
        try:
            for chunk in llm.stream(self._to_openai_messages(system, messages)):
                content = chunk.content
                if isinstance(content, list):
                    content = "".join(c.get("text", "") for c in content if isinstance(c, dict))
                if content:
                    yield content
        except openai.APIStatusError as exc:
            raise UpstreamError(exc.message, status_code=exc.status_code, provider=self.provider) from exc
        except openai.APIError as exc:
            raise UpstreamError(str(exc), provider=self.provider) from exc


class AnthropicClient:
    def __init__(self, selection: ProviderSelection, api_key: Optional[str], model: str, timeout: Tuple[int, int] = DEFAULT_TIMEOUT) -> None:
        self.provider = selection.name
        self.model = model
        self.base_url = selection.base_url
        self._api_key = api_key or ""
        self._timeout = timeout
        self._session = _build_session()

    @staticmethod
    def _to_anthropic_messages(messages: List[Message]) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for msg in messages:
            if msg.role == "system":
                continue
            blocks: List[Dict[str, Any]] = []
            for part in msg.content:
                if isinstance(part, ImagePart):
                    inline = _split_data_url(part.image)
                    if inline:
                        media_type, data = inline
                        blocks.append({"type": "image", "source": {"type": "base64", "media_type": media_type, "data": data}})
                    else:
                        blocks.append({"type": "image", "source": {"type": "url", "url": part.image}})
                else:
                    text = _part_text(part)
                    if text:
                        blocks.append({"type": "text", "text": text})
            if blocks:
                out.append({"role": msg.role, "content": blocks})
        return out

    def stream(self, system: str, messages: List[Message], params: Dict[str, Any]) -> Iterator[str]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "system": system,
            "messages": self._to_anthropic_messages(messages),
            "max_tokens": params.get("max_tokens") or ANTHROPIC_DEFAULT_MAX_TOKENS,
            "stream": True,
        }
        for name in ("temperature", "top_p", "top_k"):
            if params.get(name) is not None:
                payload[name] = params[name]
        headers = {"x-api-key": self._api_key, "anthropic-version": ANTHROPIC_VERSION, "content-type": "application/json"}
        LOG.debug("anthropic_stream", extra={"model": self.model, "base_url": self.base_url})
        try:
            with self._session.post(
                f"{self.base_url}/messages", json=payload, headers=headers, timeout=self._timeout, stream=True
            ) as resp:
                if resp.status_code >= 400:
                    raise UpstreamError(_error_text(resp), status_code=resp.status_code, provider=self.provider)
                for raw_line in resp.iter_lines():
                    if not raw_line:
                        continue
                    line = raw_line.decode("utf-8") if isinstance(raw_line, bytes) else raw_line
                    if not line.startswith("data:"):
                        continue
                    try:
                        event = json.loads(line[5:].strip())
                    except json.JSONDecodeError:
                        continue
                    kind = event.get("type")
                    if kind == "content_block_delta":
                        text = (event.get("delta") or {}).get("text") or ""
                        if text:
                            yield text
                    elif kind == "message_stop":
                        break
                    elif kind == "error":
                        err = event.get("error") or {}
                        raise UpstreamError(
                            err.get("message") or "stream error",
                            status_code=_ANTHROPIC_ERROR_STATUS.get(err.get("type") or "", 500),
                            provider=self.provider,
                        )
        except requests.exceptions.RequestException as exc:
            raise UpstreamError(str(exc), provider=self.provider) from exc


class OllamaClient:
    def __init__(self, selection: ProviderSelection, model: str, timeout: Tuple[int, int] = DEFAULT_TIMEOUT) -> None:
        self.provider = selection.name
        self.model = model
        self.base_url = selection.base_url
        self._timeout = timeout
        self._session = _build_session()

    @staticmethod
    def _to_ollama_messages(system: str, messages: List[Message]) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = [{"role": "system", "content": system}]
        for msg in messages:
            texts: List[str] = []
            images: List[str] = []
            for part in msg.content:
                if isinstance(part, ImagePart):
                    inline = _split_data_url(part.image)
                    if inline:
                        images.append(inline[1])
                else:
                    texts.append(_part_text(part))
            entry: Dict[str, Any] = {"role": msg.role, "content": "\n".join(t for t in texts if t)}
            if images:
                entry["images"] = images
            out.append(entry)
        return out

    def stream(self, system: str, messages: List[Message], params: Dict[str, Any]) -> Iterator[str]:
        options = {k: params[k] for k in ("temperature", "top_p", "top_k") if params.get(k) is not None}
        if params.get("max_tokens") is not None:
            options["num_predict"] = params["max_tokens"]
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": self._to_ollama_messages(system, messages),
            "format": "json",
            "stream": True,
        }
        if options:
            payload["options"] = options
        LOG.debug("ollama_stream", extra={"model": self.model, "base_url": self.base_url})
        try:
            with self._session.post(f"{self.base_url}/api/chat", json=payload, timeout=self._timeout, stream=True) as resp:
                if resp.status_code >= 400:
                    raise UpstreamError(_error_text(resp), status_code=resp.status_code, provider=self.provider)
                for raw_line in resp.iter_lines():
                    if not raw_line:
                        continue
                    try:
                        data = json.loads(raw_line.decode("utf-8"))
                    except json.JSONDecodeError:
                        continue
                    if data.get("error"):
                        raise UpstreamError(str(data["error"]), provider=self.provider)
                    token = (data.get("message") or {}).get("content") or ""
                    if token:
                        yield token
                    if data.get("done"):
                        break
        except requests.exceptions.RequestException as exc:
            raise UpstreamError(str(exc), provider=self.provider) from exc


def get_model_client(
    selection: ProviderSelection,
    credential: Credential,
    model_name: str,
    timeout: Tuple[int, int] = DEFAULT_TIMEOUT,
) -> StreamingClient:
    LOG.info("Using provider name=%s model=%s base_url=%s", selection.name, model_name, selection.base_url)
    if selection.api_style == "anthropic":
        return AnthropicClient(selection, credential.api_key, model_name, timeout)
    if selection.api_style == "ollama":
        return OllamaClient(selection, model_name, timeout)
    return OpenAICompatibleClient(selection, credential.api_key, model_name, timeout)
