import asyncio
import html
import sys
from pathlib import Path
import json
import pytest

# Ensure repo root is on sys.path so `import pagepersona...` works in tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from pagepersona.jobs import JobStage  # noqa: E402


def pretty_json(obj) -> str:
    return json.dumps(obj, indent=2, ensure_ascii=False, sort_keys=True)


class FakeClock:
    """Manually advanced clock (seconds) for TTL and rate-limit window tests."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransformer:
    """Stands in for ContentTransformer: reports the same stages, no network or model call.
    Set gate to an asyncio.Event to hold the run mid-pipeline, or error to make it fail."""

    def __init__(self):
        self.calls = []
        self.gate = None
        self.error = None

    async def transform(self, source, persona_id, report):
        self.calls.append((source, persona_id))
        if not source.is_text:
            await report(JobStage.FETCH, 10)
        await report(JobStage.CLEAN, 30)
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        await report(JobStage.MODEL_CALL, 60)
        if self.error is not None:
            raise self.error
        return {
            "original_content": {"title": "", "url": "" if source.is_text else source.value, "content": source.value[:500], "word_count": len(source.value.split())},
            "transformed_content": f"[{persona_id}] {source.value[:50]}",
            "persona": {"id": persona_id},
            "usage": None,
        }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_transformer():
    return FakeTransformer()


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    """Attach the request/response pairs a test stored on item._api_logs to the pytest-html report."""
    outcome = yield
    rep = outcome.get_result()
    api_logs = getattr(item, "_api_logs", None)
    if rep.when != "call" or not api_logs:
        return
    try:
        from pytest_html import extras as html_extras
    except ImportError:
        return

    extras = getattr(rep, "extras", [])
    for entry in api_logs:
        body = pretty_json({"request": entry.get("request", {}), "response": entry.get("response", {})})
        extras.append(html_extras.html(f"<h4>{html.escape(entry.get('title', 'API Call'))}</h4><pre>{html.escape(body)}</pre>"))
    rep.extras = extras
