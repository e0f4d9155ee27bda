"""Sandbox materialization with a staged, minimum-duration loading indicator.

The phase labels are cosmetic: they advance on a fixed tick and know nothing
about what the sandbox is actually doing. The indicator stays visible for at
least ``min_duration_ms`` from the start of the request and clears as soon as
possible after that once the real result is in.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Sequence

from ..domain.models import Fragment, SandboxResult
from ..infrastructure.build_store import BuildStore
from .transport import SandboxClient

logger = logging.getLogger("forge.preview")

PREVIEW_PHASES: Sequence[str] = (
    "Provisioning sandbox",
    "Installing dependencies",
    "Writing files",
    "Starting server",
    "Almost ready",
)

# Templates whose sandbox has no browsable URL.
NO_URL_TEMPLATES = frozenset({"code-interpreter-v1"})

Scheduler = Callable[[float, Callable[[], None]], Any]


def clear_delay(elapsed_ms: float, min_duration_ms: float) -> float:
    return max(0.0, min_duration_ms - elapsed_ms)


def phase_at(elapsed_ms: float, tick_ms: int, phases: Sequence[str] = PREVIEW_PHASES) -> str:
    return phases[int(max(0.0, elapsed_ms) // tick_ms) % len(phases)]


def _timer_scheduler(delay_s: float, fn: Callable[[], None]) -> None:
    if delay_s <= 0:
        fn()
        return
    timer = threading.Timer(delay_s, fn)
    timer.daemon = True
    timer.start()


class LoadingIndicator:
    def __init__(self, min_duration_ms: int = 3000, tick_ms: int = 800, phases: Sequence[str] = PREVIEW_PHASES) -> None:
        self.min_duration_ms = min_duration_ms
        self.tick_ms = tick_ms
        self.phases = tuple(phases)
        self.visible = False
        self.started_at_ms: Optional[float] = None
        self.clear_at_ms: Optional[float] = None

    def start(self, now_ms: float) -> None:
        self.visible = True
        self.started_at_ms = now_ms
        self.clear_at_ms = None

    def label(self, now_ms: float) -> str:
        return phase_at(now_ms - (self.started_at_ms or now_ms), self.tick_ms, self.phases)

    def schedule_clear(self, result_at_ms: float, scheduler: Scheduler) -> float:
        """Arrange for the indicator to hide; returns the delay in ms."""

        elapsed = result_at_ms - (self.started_at_ms or result_at_ms)
        delay = clear_delay(elapsed, self.min_duration_ms)
        self.clear_at_ms = result_at_ms + delay
        scheduler(delay / 1000.0, self.hide)
        return delay

    def hide(self) -> None:
        self.visible = False


class PhaseTicker:
    """Reports the current phase label on every tick until stopped."""

    def __init__(self, indicator: LoadingIndicator, on_phase: Callable[[str], None], clock: Callable[[], float]) -> None:
        self._indicator = indicator
        self._on_phase = on_phase
        self._clock = clock
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="forge-preview-ticker", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def _run(self) -> None:
        interval = self._indicator.tick_ms / 1000.0
        while not self._stop.is_set():
            self._on_phase(self._indicator.label(self._clock() * 1000.0))
            self._stop.wait(interval)


class PreviewOrchestrator:
    def __init__(
        self,
        sandbox: SandboxClient,
        build_store: Optional[BuildStore] = None,
        *,
        min_duration_ms: int = 3000,
        tick_ms: int = 800,
        phases: Sequence[str] = PREVIEW_PHASES,
        clock: Callable[[], float] = time.monotonic,
        scheduler: Scheduler = _timer_scheduler,
        on_phase: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._sandbox = sandbox
        self._build_store = build_store
        self._min_duration_ms = min_duration_ms
        self._tick_ms = tick_ms
        self._phases = tuple(phases)
        self._clock = clock
        self._scheduler = scheduler
        self._on_phase = on_phase
        self.indicator = LoadingIndicator(min_duration_ms, tick_ms, self._phases)

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def materialize(
        self,
        fragment: Fragment,
        *,
        user_id: Optional[str] = None,
        team_id: Optional[str] = None,
        access_token: Optional[str] = None,
        on_result: Optional[Callable[[SandboxResult], None]] = None,
    ) -> SandboxResult:
        indicator = LoadingIndicator(self._min_duration_ms, self._tick_ms, self._phases)
        self.indicator = indicator
        indicator.start(self._now_ms())
        ticker = PhaseTicker(indicator, self._on_phase, self._clock) if self._on_phase else None
        if ticker:
            ticker.start()
        try:
            result = self._sandbox.create(fragment, user_id=user_id, team_id=team_id, access_token=access_token)
        except Exception:
            indicator.hide()
            raise
        finally:
            if ticker:
                ticker.stop()

        delay = indicator.schedule_clear(self._now_ms(), self._scheduler)
        logger.info("sandbox_created sbx_id=%s template=%s clear_in_ms=%.0f", result.sbx_id, result.template, delay)
        if on_result is not None:
            on_result(result)
        self.persist_build(fragment, result, user_id=user_id, team_id=team_id)
        return result

    def persist_build(
        self,
        fragment: Fragment,
        result: SandboxResult,
        *,
        user_id: Optional[str] = None,
        team_id: Optional[str] = None,
    ) -> Optional[str]:
        """Best effort: failures are logged and never reach the caller."""

        if self._build_store is None:
            return None
        try:
            record: Dict[str, Any] = {
                "user_id": user_id,
                "team_id": team_id,
                "template": fragment.template,
                "title": fragment.title,
                "description": fragment.description,
                "file_path": fragment.file_path,
                "sbx_id": result.sbx_id,
                "url": result.url if result.template not in NO_URL_TEMPLATES else None,
            }
            build_id = self._build_store.insert_build(record)
            files = [{"file_path": path, "content": content} for path, content in fragment.files()]
            if build_id and files:
                self._build_store.insert_files(build_id, files)
            logger.info("build_persisted build_id=%s files=%d", build_id, len(files))
            return build_id
        except Exception as exc:
            logger.warning("Build persistence skipped or failed: %s", exc)
            return None
