from datetime import datetime, timezone
import json
import httpx
import pytest
from fastapi.testclient import TestClient

from gates.rate_limit import RateLimiter
from gates.verification import RecaptchaVerifier
from notifications.reminders import ReminderDispatcher
from observability import metrics
from state.repository import InMemoryStore
from tests.fixtures import app_settings, single_volunteer_roster


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def siteverify():
    """reCAPTCHA stub: token "good" passes; "score-<n>" returns that score."""
    calls: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        form = dict(httpx.QueryParams(request.content.decode()))
        calls.append(form)
        token = form.get("response", "")
        if token.startswith("score-"):
            return httpx.Response(200, json={"success": True, "score": float(token[6:])})
        return httpx.Response(200, json={"success": token == "good"})

    client = httpx.Client(transport=httpx.MockTransport(handler))
    yield client, calls
    client.close()


@pytest.fixture
def resend():
    """Resend stub recording every email payload."""
    sent: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(json.loads(request.content))
        return httpx.Response(200, json={"id": f"email-{len(sent)}"})

    client = httpx.Client(transport=httpx.MockTransport(handler))
    yield client, sent
    client.close()


@pytest.fixture
def make_client(store, resend):
    """Build a TestClient over a fresh app; keyword arguments override settings."""
    from main import create_app

    def _make(roster=None, now=None, verifier=None, limiter=None, **overrides):
        settings = app_settings(**overrides)
        app = create_app(
            settings=settings,
            store=store,
            roster=roster or single_volunteer_roster(),
            verifier=verifier or RecaptchaVerifier(None),
            limiter=limiter or RateLimiter(settings.rate_limit_max, settings.rate_limit_window_seconds),
            dispatcher=ReminderDispatcher("re_test", settings.from_email, tz=settings.timezone, client=resend[0]),
            clock=lambda: now or datetime(2026, 2, 2, 14, 0, tzinfo=timezone.utc),
        )
        return TestClient(app)

    return _make
