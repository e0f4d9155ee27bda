"""Generation gateway: one streamed structured-generation call per request.

Order of gates for a request:

1. rate limit, skipped when the caller brings their own provider key;
2. credential resolution, which rejects before any upstream traffic;
3. a single upstream attempt. The first chunk is awaited before the HTTP
   response is committed so early failures keep their real status code.
   Afterwards each chunk is turned into a cumulative fragment snapshot and
   forwarded immediately as one NDJSON line.

Failures after the response has started are reported in-band as a final
``{"error", "message", "incident_id"}`` line.
"""

from __future__ import annotations

import enum
import json
import logging
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

from ..config import ForgeConfig
from ..domain.errors import GatewayError, RateLimitedError, UpstreamFailure, classify_exception, new_incident_id
from ..domain.models import GenerationRequest
from ..observability.metrics import GENERATION_OUTCOMES
from ..security.rate_limit import RateLimiter
from .llm_clients import StreamingClient, get_model_client
from .model_router import Credential, ModelRouter, ProviderKeyResolver, ProviderSelection
from .partial_json import parse_partial
from .prompt import to_prompt

logger = logging.getLogger("forge.gateway")

ClientFactory = Callable[[ProviderSelection, Credential, str, Tuple[int, int]], StreamingClient]

NDJSON_MEDIA_TYPE = "application/x-ndjson"


class GatewayState(enum.Enum):
    IDLE = "idle"
    RATE_LIMIT_CHECK = "rate_limit_check"
    KEY_RESOLUTION = "key_resolution"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


def _ndjson(payload: Dict[str, Any]) -> bytes:
    return (json.dumps(payload, ensure_ascii=False, separators=(",", ":")) + "\n").encode("utf-8")


class GenerationStream:
    """Iterator of NDJSON-encoded fragment snapshots for one request."""

    media_type = NDJSON_MEDIA_TYPE

    def __init__(self, gateway: "GenerationGateway", tokens: Iterator[str], first_chunk: Optional[str]) -> None:
        self._gateway = gateway
        self._tokens = tokens
        self._first = first_chunk
        self.state = GatewayState.STREAMING
        self.incident_id: Optional[str] = None

    def __iter__(self) -> Iterator[bytes]:
        text = ""
        last: Optional[Dict[str, Any]] = None
        try:
            chunk = self._first
            while chunk is not None:
                text += chunk
                snapshot = parse_partial(text)
                if snapshot is not None and snapshot != last:
                    last = snapshot
                    yield _ndjson(snapshot)
                chunk = next(self._tokens, None)
            if last is None:
                raise ValueError("No object generated: the model response did not contain a JSON object")
            self.state = GatewayState.COMPLETED
            GENERATION_OUTCOMES.labels(outcome="completed").inc()
        except Exception as exc:
            failure = self._gateway.fail(exc)
            self.state = GatewayState.FAILED
            self.incident_id = failure.incident_id
            yield _ndjson(failure.to_body().model_dump(exclude_none=True))
        finally:
            close = getattr(self._tokens, "close", None)
            if close is not None:
                close()


class GenerationGateway:
    def __init__(
        self,
        config: ForgeConfig,
        rate_limiter: RateLimiter,
        key_resolver: ProviderKeyResolver,
        router: Optional[ModelRouter] = None,
        client_factory: ClientFactory = get_model_client,
    ) -> None:
        self._config = config
        self._rate_limiter = rate_limiter
        self._key_resolver = key_resolver
        self._router = router or ModelRouter()
        self._client_factory = client_factory

    def fail(self, exc: BaseException) -> UpstreamFailure:
        """Classify ``exc`` and tag it with a fresh incident id."""

        kind = classify_exception(exc)
        incident_id = new_incident_id()
        logger.error("Error [%s]: %s (%s)", incident_id, exc, kind.value, exc_info=exc)
        GENERATION_OUTCOMES.labels(outcome=kind.value).inc()
        return UpstreamFailure(kind, incident_id)

    def _reject(self, error: GatewayError, state: GatewayState) -> GatewayError:
        GENERATION_OUTCOMES.labels(outcome=error.code).inc()
        logger.info("generation_rejected state=%s code=%s", state.value, error.code)
        return error

    def open_stream(self, request: GenerationRequest, identity: str) -> GenerationStream:
        """Run the gates and start the upstream call.

        Raises
        ------
        GatewayError
            ``RateLimitedError``, ``ApiKeyMissing`` or ``UpstreamFailure`` when
            the request cannot be streamed.
        """

        config = request.config
        logger.info(
            "generation_request user=%s team=%s model=%s provider=%s",
            request.user_id,
            request.team_id,
            request.model.id,
            request.model.provider_id,
        )

        state = GatewayState.RATE_LIMIT_CHECK
        if not config.api_key:
            decision = self._rate_limiter.check(identity, self._config.max_requests, self._config.window_seconds)
            if not decision.allowed:
                raise self._reject(RateLimitedError(decision), state)

        state = GatewayState.KEY_RESOLUTION
        try:
            credential = self._key_resolver.resolve(request.model, config.api_key)
        except GatewayError as exc:
            raise self._reject(exc, state)

        state = GatewayState.STREAMING
        try:
            selection = self._router.resolve_provider(request.model.provider_id, config.base_url)
        except KeyError as exc:
            raise self.fail(RuntimeError(f"Unknown provider: {request.model.provider_id}")) from exc

        model_name = config.model or request.model.id
        try:
            client = self._client_factory(selection, credential, model_name, self._config.llm_timeout)
            tokens = iter(client.stream(to_prompt(request.template), request.messages, config.generation_params()))
            first_chunk = next(tokens, None)
            if first_chunk is None:
                raise ValueError("No object generated: the provider closed the stream without output")
        except Exception as exc:
            raise self.fail(exc) from exc

        logger.debug("generation_streaming state=%s provider=%s model=%s", state.value, selection.name, model_name)
        return GenerationStream(self, tokens, first_chunk)
