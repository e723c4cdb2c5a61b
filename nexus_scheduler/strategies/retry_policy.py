"""
Retry Policy - how long to wait before the next attempt.

Each action type has its own table. The game enforces a cooldown per
action; successful and premature attempts wait that cooldown plus a safety
buffer so the next attempt never lands on the boundary. Other outcomes use
much shorter or much longer retries depending on whether the blocker is
likely to clear on its own:

- jailed: jail is short and its length is unknown here, check back soon
- not active / wrong location: needs a human, don't burn fees retrying
- gas too high: re-check often enough to catch a dip
- reverted: contract rejected it, may be transient game state
- transient network: infrastructure hiccup, retry quickly
"""

import random
from dataclasses import dataclass
from typing import Optional

from nexus_scheduler.trading.outcomes import ActionOutcome, Classification

MINUTE = 60
HOUR = 60 * MINUTE

SAFETY_BUFFER = 1 * MINUTE
HINT_BUFFER = 5 * MINUTE


@dataclass(frozen=True)
class RetryTable:
    cooldown: float  # the game's own minimum between attempts
    jailed: float = 5 * MINUTE
    wrong_location: float = 6 * HOUR
    not_active: float = 6 * HOUR
    gas_too_high: float = 5 * MINUTE
    reverted: float = 15 * MINUTE
    transient_network: float = 2 * MINUTE
    success_variance: float = 0.0  # extra random wait added on the normal cadence
    initial_jitter: tuple = (0.0, 90.0)

    @property
    def nominal(self) -> float:
        return self.cooldown + SAFETY_BUFFER


RETRY_TABLES = {
    "crime": RetryTable(
        cooldown=15 * MINUTE,
        success_variance=5 * MINUTE,
        initial_jitter=(5.0, 60.0),
    ),
    "nickcar": RetryTable(
        cooldown=30 * MINUTE,
        wrong_location=60 * MINUTE,  # auto-travel failed
        initial_jitter=(0.0, 60.0),
    ),
    "killskill": RetryTable(cooldown=45 * MINUTE),
    "travel": RetryTable(cooldown=64 * MINUTE),
}


class RetryPolicy:
    """Maps an outcome to the delay (seconds) before the next attempt."""

    def __init__(self, tables: Optional[dict] = None, rng: Optional[random.Random] = None):
        self.tables = dict(tables or RETRY_TABLES)
        self.rng = rng or random.Random()

    def table(self, action_type: str) -> RetryTable:
        try:
            return self.tables[action_type]
        except KeyError:
            raise ValueError(f"No retry table for action type: {action_type}") from None

    def nominal_cooldown(self, action_type: str) -> float:
        return self.table(action_type).cooldown

    def initial_delay(self, action_type: str) -> float:
        """First run after a (re)start, jittered so wallets don't all fire together."""
        low, high = self.table(action_type).initial_jitter
        return self.rng.uniform(low, high)

    def next_delay(self, action_type: str, outcome: ActionOutcome) -> float:
        table = self.table(action_type)
        cls = outcome.classification
        hint = outcome.next_action_hint

        if cls is Classification.JAILED:
            return table.jailed
        if cls is Classification.WRONG_LOCATION:
            if hint is not None:
                return hint.wait_seconds + HINT_BUFFER
            return table.wrong_location
        if cls is Classification.NOT_ACTIVE:
            return table.not_active
        if cls is Classification.GAS_TOO_HIGH:
            return table.gas_too_high
        if cls is Classification.REVERTED:
            return table.reverted
        if cls is Classification.TRANSIENT_NETWORK:
            return table.transient_network

        # success, cooldown, unknown: back on the normal cadence
        delay = table.nominal
        if table.success_variance > 0:
            delay += self.rng.uniform(0, table.success_variance)
        if hint is not None:
            delay = max(delay, hint.wait_seconds + HINT_BUFFER)
        return delay
