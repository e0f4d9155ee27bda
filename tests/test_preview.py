import pytest

from src.forge.client.preview import (
    PREVIEW_PHASES,
    LoadingIndicator,
    PreviewOrchestrator,
    clear_delay,
    phase_at,
)
from src.forge.domain.models import Fragment, SandboxResult
from src.forge.infrastructure.build_store import InMemoryBuildStore


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now


class FakeSandbox:
    def __init__(self, clock, latency_s, template=None, fail=False):
        self.clock = clock
        self.latency_s = latency_s
        self.template = template
        self.fail = fail
        self.calls = 0

    def create(self, fragment, *, user_id=None, team_id=None, access_token=None):
        self.calls += 1
        self.clock.now += self.latency_s
        if self.fail:
            raise RuntimeError("sandbox down")
        return SandboxResult(sbxId="sbx-9", url="https://sbx-9.example", template=self.template or fragment.template)


class RecordingScheduler:
    def __init__(self):
        self.calls = []

    def __call__(self, delay_s, fn):
        self.calls.append((delay_s, fn))


FRAGMENT = Fragment(
    template="streamlit-developer",
    title="Chart",
    description="Plots things",
    file_path="app.py",
    code="import streamlit as st",
)


def _orchestrator(latency_s, *, store=None, template=None, fail=False):
    clock = FakeClock()
    scheduler = RecordingScheduler()
    sandbox = FakeSandbox(clock, latency_s, template=template, fail=fail)
    orch = PreviewOrchestrator(sandbox, store, min_duration_ms=3000, tick_ms=800, clock=clock, scheduler=scheduler)
    return orch, sandbox, scheduler


@pytest.mark.parametrize("elapsed,expected", [(0, 3000), (500, 2500), (3000, 0), (4000, 0)])
def test_clear_delay(elapsed, expected):
    assert clear_delay(elapsed, 3000) == expected


def test_fast_result_holds_indicator_until_minimum():
    orch, sandbox, scheduler = _orchestrator(0.5)
    result = orch.materialize(FRAGMENT)
    assert sandbox.calls == 1
    assert result.sbx_id == "sbx-9"
    delay_s, hide = scheduler.calls[0]
    assert delay_s == pytest.approx(2.5)
    assert orch.indicator.clear_at_ms - orch.indicator.started_at_ms == pytest.approx(3000)
    assert orch.indicator.visible is True
    hide()
    assert orch.indicator.visible is False


def test_slow_result_clears_immediately():
    orch, _, scheduler = _orchestrator(4.0)
    orch.materialize(FRAGMENT)
    assert scheduler.calls[0][0] == 0
    assert orch.indicator.clear_at_ms - orch.indicator.started_at_ms == pytest.approx(4000)


def test_result_callback_runs_before_clear():
    orch, _, scheduler = _orchestrator(0.1)
    seen = []
    orch.materialize(FRAGMENT, on_result=lambda r: seen.append((r.sbx_id, orch.indicator.visible)))
    assert seen == [("sbx-9", True)]


def test_sandbox_failure_hides_indicator_and_raises():
    orch, _, scheduler = _orchestrator(0.1, fail=True)
    with pytest.raises(RuntimeError):
        orch.materialize(FRAGMENT)
    assert orch.indicator.visible is False
    assert scheduler.calls == []


def test_phases_cycle_on_fixed_tick():
    assert phase_at(0, 800) == PREVIEW_PHASES[0]
    assert phase_at(799, 800) == PREVIEW_PHASES[0]
    assert phase_at(800, 800) == PREVIEW_PHASES[1]
    assert phase_at(800 * len(PREVIEW_PHASES), 800) == PREVIEW_PHASES[0]
    indicator = LoadingIndicator(tick_ms=800)
    indicator.start(1_000)
    assert indicator.label(2_700) == PREVIEW_PHASES[2]


def test_build_is_persisted_with_files():
    store = InMemoryBuildStore()
    orch, _, _ = _orchestrator(0.2, store=store)
    orch.materialize(FRAGMENT, user_id="u1", team_id="t1")
    assert store.count() == 1
    build_id = next(iter(store._builds))
    build = store.get(build_id)
    assert build["url"] == "https://sbx-9.example"
    assert build["user_id"] == "u1"
    assert build["files"] == [{"file_path": "app.py", "content": "import streamlit as st"}]


def test_code_interpreter_builds_have_no_url():
    store = InMemoryBuildStore()
    orch, _, _ = _orchestrator(0.2, store=store, template="code-interpreter-v1")
    orch.materialize(FRAGMENT)
    build = store.get(next(iter(store._builds)))
    assert build["url"] is None
    assert build["sbx_id"] == "sbx-9"


class _BrokenStore:
    def insert_build(self, record):
        raise ConnectionError("db offline")

    def insert_files(self, build_id, files):
        raise AssertionError("not reached")


def test_persistence_failure_never_reaches_caller(caplog):
    orch, _, _ = _orchestrator(0.2, store=_BrokenStore())
    with caplog.at_level("WARNING", logger="forge.preview"):
        result = orch.materialize(FRAGMENT)
    assert result.sbx_id == "sbx-9"
    assert any("db offline" in r.getMessage() for r in caplog.records)


def test_phase_callback_reports_labels():
    labels = []
    clock = FakeClock()
    sandbox = FakeSandbox(clock, 0.0)
    orch = PreviewOrchestrator(sandbox, clock=clock, scheduler=RecordingScheduler(), on_phase=labels.append, tick_ms=10)
    orch.materialize(FRAGMENT)
    assert all(label in PREVIEW_PHASES for label in labels)
