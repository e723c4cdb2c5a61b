"""
Scheduler for one (wallet, chain, action) tuple.

State machine:

    IDLE -> SCHEDULED -> RUNNING -> SCHEDULED ...
                            \\-> STOPPED (stop requested while running)

Each tick takes the wallet/chain lock, runs one attempt, asks the retry
policy for the next delay and re-arms. Stopping is cooperative: an attempt
that is already running always finishes, because it may have a transaction
in flight.
"""

import asyncio
import logging
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Optional

from nexus_scheduler.analytics import AnalyticsSink, AttemptReport
from nexus_scheduler.config import ChainConfig
from nexus_scheduler.scheduling.timers import Clock, LoopClock, TimerHandle
from nexus_scheduler.strategies.retry_policy import RetryPolicy
from nexus_scheduler.trading.actions import GameAction
from nexus_scheduler.trading.executor import ActionExecutor
from nexus_scheduler.trading.outcomes import ActionOutcome, Classification
from nexus_scheduler.trading.tx_queue import DEFAULT_LOCK_TIMEOUT, LockTimeout, WalletChainLock
from nexus_scheduler.wallets import WalletIdentity

logger = logging.getLogger(__name__)

HISTORY_SIZE = 100


class ScheduleState(Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    STOPPED = "stopped"


class WalletScheduler:
    def __init__(self, wallet: WalletIdentity, chain: ChainConfig, action: GameAction,
                 executor: ActionExecutor, lock: WalletChainLock, policy: RetryPolicy,
                 clock: Optional[Clock] = None, sinks: tuple = (),
                 lock_timeout: float = DEFAULT_LOCK_TIMEOUT):
        self.wallet = wallet
        self.chain = chain
        self.action = action
        self.executor = executor
        self.lock = lock
        self.policy = policy
        self.clock = clock or LoopClock()
        self.sinks: tuple[AnalyticsSink, ...] = tuple(sinks)
        self.lock_timeout = lock_timeout

        self.state = ScheduleState.IDLE
        self.next_run_at: Optional[float] = None
        self.attempts = 0
        self.last_outcome: Optional[ActionOutcome] = None
        self.history: deque = deque(maxlen=HISTORY_SIZE)
        self._timer: Optional[TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._stop_requested = False

    @property
    def tag(self) -> str:
        return f"[{self.chain.name.upper()}:{self.wallet.name}:{self.action.name}]"

    @property
    def running(self) -> bool:
        """True while the schedule is alive (armed or mid-attempt, not stopping)."""
        return (self.state in (ScheduleState.SCHEDULED, ScheduleState.RUNNING)
                and not self._stop_requested)

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        if self.state not in (ScheduleState.IDLE, ScheduleState.STOPPED):
            return False
        self._stop_requested = False
        delay = self.policy.initial_delay(self.action.name)
        logger.info("%s starting in %.0fs (staggered start to prevent nonce conflicts)",
                    self.tag, delay)
        self._arm(delay)
        return True

    def stop(self):
        if self.state is ScheduleState.SCHEDULED:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self.next_run_at = None
            self.state = ScheduleState.STOPPED
            logger.info("%s stopped", self.tag)
        elif self.state is ScheduleState.RUNNING:
            self._stop_requested = True
            logger.info("%s stop requested, letting the in-flight attempt finish", self.tag)
        elif self.state is ScheduleState.IDLE:
            self.state = ScheduleState.STOPPED

    async def wait_idle(self):
        """Wait for an in-flight attempt, if any, to settle."""
        if self.busy:
            await asyncio.shield(self._task)

    def _arm(self, delay: float):
        self.next_run_at = self.clock.now() + delay
        self._timer = self.clock.call_later(delay, self._fire)
        self.state = ScheduleState.SCHEDULED

    def _fire(self):
        self._timer = None
        self.next_run_at = None
        self.state = ScheduleState.RUNNING
        self._task = asyncio.get_running_loop().create_task(self._run_once())

    async def _attempt(self) -> ActionOutcome:
        return await self.executor.attempt(self.wallet, self.chain, self.action)

    async def _run_once(self):
        try:
            outcome = await self.lock.run_exclusive(
                self.wallet.name, self.chain.name, self._attempt, timeout=self.lock_timeout
            )
        except LockTimeout as e:
            # a stuck submission looks the same as a slow one
            outcome = ActionOutcome.failure(Classification.TRANSIENT_NETWORK, str(e))
        except Exception as e:
            logger.exception("%s attempt raised unexpectedly", self.tag)
            outcome = ActionOutcome.failure(Classification.UNKNOWN_ERROR, f"{type(e).__name__}: {e}")

        self._record(outcome)

        if self._stop_requested:
            self._stop_requested = False
            self.state = ScheduleState.STOPPED
            logger.info("%s stopped after in-flight attempt (%s)", self.tag, outcome.label)
            return

        delay = self.policy.next_delay(self.action.name, outcome)
        self._arm(delay)
        next_run = datetime.fromtimestamp(self.next_run_at).isoformat(timespec="seconds")
        logger.info("%s next run %s (in %.1f minutes) - %s",
                    self.tag, next_run, delay / 60, outcome.label)

    def _record(self, outcome: ActionOutcome):
        self.attempts += 1
        self.last_outcome = outcome
        self.history.append((self.clock.now(), outcome))

        report = AttemptReport(
            wallet=self.wallet.name,
            chain=self.chain.name,
            action_type=self.action.name,
            success=outcome.succeeded,
            classification=outcome.classification.value,
            detail=outcome.detail,
            params=dict(self.action.last_params),
        )
        for sink in self.sinks:
            try:
                sink.notify(report)
            except Exception as e:
                logger.warning("%s analytics sink %s failed: %s", self.tag, type(sink).__name__, e)

    def summary(self) -> dict:
        return {
            "wallet": self.wallet.name,
            "chain": self.chain.name,
            "action": self.action.name,
            "state": self.state.value,
            "running": self.running,
            "next_run_at": self.next_run_at,
            "attempts": self.attempts,
            "last_outcome": self.last_outcome.label if self.last_outcome else None,
        }
