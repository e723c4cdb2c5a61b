"""
Attempt analytics.

Sinks are notified after every attempt. Delivery is fire-and-forget: a sink
that is down or slow must never hold up or break a schedule.
"""

import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Optional, Protocol

import aiohttp

from nexus_scheduler.trading.outcomes import Classification

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttemptReport:
    wallet: str
    chain: str
    action_type: str
    success: bool
    classification: str
    detail: Optional[str] = None
    params: dict = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class AnalyticsSink(Protocol):
    def notify(self, report: AttemptReport) -> None: ...


class HttpAnalyticsSink:
    """POSTs each report as JSON to an analytics endpoint."""

    def __init__(self, url: str, timeout: float = 5.0):
        self.url = url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None
        self._tasks: set = set()

    def notify(self, report: AttemptReport) -> None:
        task = asyncio.get_running_loop().create_task(self._post(report))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _post(self, report: AttemptReport) -> bool:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        payload = asdict(report)
        payload["jailed"] = report.classification == Classification.JAILED.value
        payload["cooldown"] = report.classification == Classification.COOLDOWN.value
        try:
            async with self._session.post(self.url, json=payload) as resp:
                return resp.status < 400
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug("Failed to report to analytics: %s", e)
            return False

    async def close(self):
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._session is not None:
            await self._session.close()


class OutcomeStats:
    """
    In-memory outcome counters per action type and chain, plus per crime
    type so the best-paying crime can be compared against its jail rate.
    """

    def __init__(self):
        self.by_action: dict = defaultdict(lambda: defaultdict(int))
        self.by_crime_type: dict = defaultdict(lambda: defaultdict(int))
        self.last_attempt: dict[str, float] = {}

    def notify(self, report: AttemptReport) -> None:
        key = f"{report.action_type}:{report.chain}"
        counts = self.by_action[key]
        counts["attempts"] += 1
        counts[report.classification] += 1
        self.last_attempt[key] = report.timestamp

        crime_type = report.params.get("crime_type")
        if report.action_type == "crime" and crime_type is not None:
            per_type = self.by_crime_type[crime_type]
            per_type["attempts"] += 1
            per_type[report.classification] += 1

    def success_rate(self, action_type: str, chain: str) -> float:
        counts = self.by_action.get(f"{action_type}:{chain}")
        if not counts or counts["attempts"] == 0:
            return 0.0
        return counts[Classification.SUCCESS.value] / counts["attempts"]

    def summary(self) -> dict:
        return {
            key: {
                "attempts": counts["attempts"],
                "success_rate": f"{counts[Classification.SUCCESS.value] / counts['attempts']:.1%}",
                "jails": counts[Classification.JAILED.value],
            }
            for key, counts in self.by_action.items()
            if counts["attempts"]
        }
