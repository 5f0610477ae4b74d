"""
Scout Pro Health Monitor
Polls the API health endpoint and raises operational alerts.

Alerts are logged and, when SLACK_WEBHOOK_URL is set, posted to Slack. The
same issue is alerted at most once per cooldown window.

Usage:
    python monitor.py                 # poll every 60s
    python monitor.py --once          # single check, exit code 1 when unhealthy
    python monitor.py --url http://localhost:5000/api/health --interval 30
"""

import argparse
import asyncio
import logging
import os
import sys
import time
from typing import Callable, Dict, Optional

import httpx

from scout_config import configure_logging

logger = logging.getLogger("scoutpro.monitor")

DEFAULT_HEALTH_URL = "http://localhost:5000/api/health"
TIMEOUT = 10.0
ALERT_COOLDOWN = 300  # 5 minutes between alerts for the same issue


class HealthMonitor:
    def __init__(
        self,
        health_url: str = DEFAULT_HEALTH_URL,
        slack_webhook: Optional[str] = None,
        cooldown: int = ALERT_COOLDOWN,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.health_url = health_url
        self.slack_webhook = slack_webhook
        self.cooldown = cooldown
        self.transport = transport
        self.clock = clock
        self._last_alert: Dict[str, float] = {}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=TIMEOUT, transport=self.transport)

    async def check(self) -> dict:
        """Fetch the health document. Never raises; failures come back as status DOWN."""
        try:
            async with self._client() as client:
                resp = await client.get(self.health_url)
        except httpx.HTTPError as exc:
            return {"status": "DOWN", "http_status": None, "error": str(exc)}
        try:
            body = resp.json()
        except ValueError:
            body = {}
        status = body.get("status") or ("OK" if resp.status_code == 200 else "ERROR")
        if resp.status_code >= 500 and status == "OK":
            status = "ERROR"
        return {"status": status, "http_status": resp.status_code, **{k: v for k, v in body.items() if k != "status"}}

    async def alert(self, issue: str, message: str, severity: str) -> bool:
        """Send one alert unless the same issue fired within the cooldown."""
        now = self.clock()
        last = self._last_alert.get(issue)
        if last is not None and now - last < self.cooldown:
            logger.debug("Alert for %s suppressed (cooldown)", issue)
            return False
        self._last_alert[issue] = now
        logger.warning("ALERT [%s]: %s", severity, message)

        if self.slack_webhook:
            payload = {"text": f"Scout Pro Alert [{severity}]: {message}"}
            try:
                async with self._client() as client:
                    resp = await client.post(self.slack_webhook, json=payload)
                    resp.raise_for_status()
            except httpx.HTTPError as exc:
                logger.error("Slack alert failed: %s", exc)
        return True

    async def run_once(self) -> bool:
        result = await self.check()
        status = result["status"]
        if status == "DOWN":
            await self.alert("backend", f"Backend unreachable at {self.health_url}: {result['error']}", "CRITICAL")
            return False
        if status == "ERROR":
            await self.alert(
                "backend",
                f"Backend unhealthy (HTTP {result['http_status']}, database={result.get('database')})",
                "ERROR",
            )
            return False
        if status == "WARNING":
            await self.alert(
                "uploads", f"Uploads directory is {result.get('uploadsDirectory', 'unknown')}", "WARNING"
            )
        else:
            self._last_alert.clear()
            logger.info("Backend is healthy (HTTP %s)", result["http_status"])
        return True

    async def run_forever(self, interval: float) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(interval)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Scout Pro health monitor")
    parser.add_argument("--url", default=os.getenv("HEALTH_URL", DEFAULT_HEALTH_URL))
    parser.add_argument("--interval", type=float, default=60.0)
    parser.add_argument("--once", action="store_true", help="check once and exit")
    args = parser.parse_args(argv)

    configure_logging()
    monitor = HealthMonitor(args.url, slack_webhook=os.getenv("SLACK_WEBHOOK_URL") or None)
    if args.once:
        return 0 if asyncio.run(monitor.run_once()) else 1
    try:
        asyncio.run(monitor.run_forever(args.interval))
    except KeyboardInterrupt:
        logger.info("Monitor stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
