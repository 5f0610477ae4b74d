import asyncio
import json

import httpx

from monitor import HealthMonitor, main

HEALTH_URL = "http://scoutpro.test/api/health"
SLACK_URL = "https://hooks.slack.test/services/T/B/X"


class Ticker:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _transport(health_status=200, health_body=None, fail=False):
    """Fake network: answers the health URL and records Slack posts."""
    posts = []

    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == SLACK_URL:
            posts.append(json.loads(request.content))
            return httpx.Response(200, text="ok")
        if fail:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(health_status, json=health_body or {"status": "OK"})

    return httpx.MockTransport(handler), posts


def _monitor(transport, clock=None):
    return HealthMonitor(HEALTH_URL, slack_webhook=SLACK_URL, transport=transport, clock=clock or Ticker())


def test_healthy_backend_sends_no_alert():
    transport, posts = _transport(200, {"status": "OK", "database": "connected"})
    monitor = _monitor(transport)

    assert asyncio.run(monitor.run_once()) is True
    assert posts == []


def test_unreachable_backend_is_critical():
    transport, posts = _transport(fail=True)
    monitor = _monitor(transport)

    assert asyncio.run(monitor.check())["status"] == "DOWN"
    assert asyncio.run(monitor.run_once()) is False
    assert len(posts) == 1
    assert posts[0]["text"].startswith("Scout Pro Alert [CRITICAL]: Backend unreachable")


def test_database_error_is_reported():
    transport, posts = _transport(503, {"status": "ERROR", "database": "error"})
    monitor = _monitor(transport)

    assert asyncio.run(monitor.run_once()) is False
    assert "database=error" in posts[0]["text"]
    assert "[ERROR]" in posts[0]["text"]


def test_uploads_warning_keeps_backend_up():
    transport, posts = _transport(200, {"status": "WARNING", "uploadsDirectory": "error"})
    monitor = _monitor(transport)

    assert asyncio.run(monitor.run_once()) is True
    assert posts[0]["text"] == "Scout Pro Alert [WARNING]: Uploads directory is error"


def test_repeated_alerts_respect_cooldown():
    transport, posts = _transport(fail=True)
    ticker = Ticker()
    monitor = _monitor(transport, clock=ticker)

    asyncio.run(monitor.run_once())
    ticker.now += 60
    asyncio.run(monitor.run_once())
    assert len(posts) == 1

    ticker.now += 300
    asyncio.run(monitor.run_once())
    assert len(posts) == 2


def test_recovery_resets_cooldown():
    ticker = Ticker()
    down, posts = _transport(fail=True)
    monitor = _monitor(down, clock=ticker)
    asyncio.run(monitor.run_once())

    monitor.transport = _transport()[0]
    asyncio.run(monitor.run_once())
    monitor.transport = down
    asyncio.run(monitor.run_once())

    assert len(posts) == 2


def test_main_once_exit_code(monkeypatch):
    async def unhealthy(self):
        return False

    monkeypatch.setattr(HealthMonitor, "run_once", unhealthy)
    monkeypatch.delenv("SLACK_WEBHOOK_URL", raising=False)

    assert main(["--once", "--url", HEALTH_URL]) == 1
