"""Client-side chat session: one active generation at a time.

A new submission cancels the stream in flight and starts a fresh one.
Snapshots from a cancelled run are dropped; whatever was already applied
stays in the conversation.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from ..config import ForgeConfig
from ..domain.models import (
    ImagePart,
    Message,
    ModelConfig,
    ModelSelector,
    SandboxResult,
    TemplateSpec,
    TextPart,
)
from ..infrastructure.build_store import BuildStore, InMemoryBuildStore
from ..services.streaming import CancellableStream
from .preview import PreviewOrchestrator
from .reconciler import ClientError, Conversation, PartialObjectReconciler, describe_error
from .transport import GenerationTransport, HttpGenerationTransport, HttpSandboxClient, TransportError

logger = logging.getLogger("forge.session")


class SessionBusy(RuntimeError):
    """Raised when a submission arrives while a preview is being materialized."""


class GenerationRun:
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    def __init__(
        self,
        stream: CancellableStream[Dict[str, Any]],
        reconciler: PartialObjectReconciler,
        lock: threading.Lock,
        on_finish: Optional[Callable[["GenerationRun"], None]] = None,
        on_error: Optional[Callable[[ClientError], None]] = None,
    ) -> None:
        self._stream = stream
        self._reconciler = reconciler
        self._lock = lock
        self._on_finish = on_finish
        self._on_error = on_error
        self._thread: Optional[threading.Thread] = None
        self.status = self.STREAMING
        self.error: Optional[ClientError] = None

    @property
    def reconciler(self) -> PartialObjectReconciler:
        return self._reconciler

    def cancel(self) -> None:
        self._stream.cancel()
        if self.status == self.STREAMING:
            self.status = self.CANCELLED

    def run(self) -> None:
        try:
            for snapshot in self._stream:
                with self._lock:
                    # cancel() may land between next() and here
                    if self._stream.cancelled:
                        break
                    self._reconciler.apply(snapshot)
        except TransportError as exc:
            if self._stream.cancelled:
                # a replaced run must not report over its successor
                self.status = self.CANCELLED
                logger.debug("generation_error_after_cancel: %s", exc)
                return
            self.error = describe_error(str(exc))
            self.status = self.FAILED
            self._stream.cancel()
            logger.warning("generation_failed code=%s message=%s", self.error.code, self.error.message)
            if self._on_error is not None:
                self._on_error(self.error)
            return
        finally:
            self._stream.close()

        if self._stream.cancelled:
            self.status = self.CANCELLED
            return
        self.status = self.COMPLETED
        if self._on_finish is not None:
            self._on_finish(self)

    def start(self, background: bool = True) -> "GenerationRun":
        if not background:
            self.run()
            return self
        self._thread = threading.Thread(target=self.run, name="forge-generation", daemon=True)
        self._thread.start()
        return self

    def wait(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)


class ChatSession:
    def __init__(
        self,
        transport: GenerationTransport,
        orchestrator: Optional[PreviewOrchestrator],
        *,
        template: Dict[str, TemplateSpec],
        model: ModelSelector,
        config: Optional[ModelConfig] = None,
        user_id: Optional[str] = None,
        team_id: Optional[str] = None,
        access_token: Optional[str] = None,
        background: bool = True,
    ) -> None:
        self.transport = transport
        self.orchestrator = orchestrator
        self.template = template
        self.model = model
        self.config = config or ModelConfig()
        self.user_id = user_id
        self.team_id = team_id
        self.access_token = access_token
        self.background = background

        self.conversation = Conversation()
        self.error: Optional[ClientError] = None
        self.previewing = False
        self._run: Optional[GenerationRun] = None
        self._lock = threading.Lock()

    @property
    def messages(self) -> List[Message]:
        return self.conversation.messages

    @property
    def is_streaming(self) -> bool:
        return self._run is not None and self._run.status == GenerationRun.STREAMING

    @property
    def current_run(self) -> Optional[GenerationRun]:
        return self._run

    def _payload(self) -> Dict[str, Any]:
        messages = [m.model_dump(by_alias=True, exclude={"object", "result"}, exclude_none=True) for m in self.messages]
        return {
            "messages": messages,
            "userID": self.user_id,
            "teamID": self.team_id,
            "template": {k: v.model_dump(by_alias=True, exclude_none=True) for k, v in self.template.items()},
            "model": self.model.model_dump(by_alias=True),
            "config": self.config.model_dump(by_alias=True, exclude_none=True),
        }

    def _start(self) -> GenerationRun:
        self.error = None
        self.conversation.result = None
        reconciler = PartialObjectReconciler(self.conversation)
        stream: CancellableStream[Dict[str, Any]] = CancellableStream(self.transport.open(self._payload()))
        run = GenerationRun(stream, reconciler, self._lock, on_finish=self._on_finish, on_error=self._on_error)
        self._run = run
        return run.start(background=self.background)

    def submit(self, text: str, images: Optional[List[str]] = None) -> GenerationRun:
        """Send a user message; an active stream is cancelled and replaced."""

        if self.previewing:
            raise SessionBusy("A preview is still being prepared")
        self.stop()
        content: List[Any] = [TextPart(text=text)]
        for image in images or []:
            content.append(ImagePart(image=image))
        with self._lock:
            self.conversation.add_message(Message(role="user", content=content))
        return self._start()

    def retry(self) -> GenerationRun:
        if self.previewing:
            raise SessionBusy("A preview is still being prepared")
        self.stop()
        return self._start()

    def stop(self) -> None:
        if self._run is not None:
            self._run.cancel()

    def undo(self) -> None:
        """Drop the last exchange (up to one user and one assistant message)."""

        self.stop()
        with self._lock:
            msgs = self.conversation.messages
            if msgs and msgs[-1].role == "assistant":
                msgs.pop()
            if msgs and msgs[-1].role == "user":
                msgs.pop()
            self.conversation.fragment = None
            self.conversation.result = None

    def clear(self) -> None:
        self.stop()
        with self._lock:
            self.conversation = Conversation()
        self.error = None

    def _on_error(self, error: ClientError) -> None:
        self.error = error

    def _on_finish(self, run: GenerationRun) -> None:
        if self.orchestrator is None or not run.reconciler.state:
            return
        try:
            fragment = run.reconciler.freeze()
        except ValidationError as exc:
            self.error = describe_error(f"Generated fragment is invalid: {exc}")
            logger.warning("fragment_invalid: %s", exc)
            return
        self.previewing = True
        try:
            self.orchestrator.materialize(
                fragment,
                user_id=self.user_id,
                team_id=self.team_id,
                access_token=self.access_token,
                on_result=self._show_result,
            )
        except Exception as exc:
            self.error = describe_error(str(exc))
            logger.warning("sandbox_failed: %s", exc)
        finally:
            self.previewing = False

    def _show_result(self, result: SandboxResult) -> None:
        with self._lock:
            self.conversation.result = result
            last = self.conversation.last_message()
            if last is not None and last.role == "assistant":
                self.conversation.update_last(result=result)


def build_session(
    gateway_url: str,
    *,
    template: Dict[str, TemplateSpec],
    model: ModelSelector,
    config: Optional[ForgeConfig] = None,
    model_config: Optional[ModelConfig] = None,
    build_store: Optional[BuildStore] = None,
    **identity: Optional[str],
) -> ChatSession:
    """Wire a session to a running gateway and the configured sandbox endpoint."""

    config = config or ForgeConfig.from_env()
    orchestrator = PreviewOrchestrator(
        HttpSandboxClient(config.sandbox_url),
        build_store if build_store is not None else InMemoryBuildStore(),
        min_duration_ms=config.preview_min_ms,
        tick_ms=config.preview_tick_ms,
    )
    return ChatSession(
        HttpGenerationTransport(gateway_url),
        orchestrator,
        template=template,
        model=model,
        config=model_config,
        user_id=identity.get("user_id"),
        team_id=identity.get("team_id"),
        access_token=identity.get("access_token"),
    )
