"""
Transaction queue - serializes signed actions per wallet/chain.

Two scripts that submit for the same account at the same time race on the
account nonce and one of them gets rejected. Every attempt for a wallet on
a chain therefore runs through one queue, whatever the action type.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 60.0


class LockTimeout(Exception):
    """The caller stopped waiting; the work itself may still be running."""


@dataclass
class _LockState:
    tail: Optional[asyncio.Future] = None  # settles when the last queued call settles
    pending: int = 0


class WalletChainLock:
    """
    Per-key async FIFO.

    For a given key the Nth call does not start until the (N-1)th has
    settled. Waiting for a turn is unbounded; ``timeout`` only bounds the
    caller's wait once its function has started. A caller that times out
    gets LockTimeout while the function keeps running in the background and
    still holds the key, so the next call waits for it. Different keys never
    wait on each other.
    """

    def __init__(self):
        self._states: dict[str, _LockState] = {}

    @staticmethod
    def _key(wallet: str, chain: str) -> str:
        return f"{wallet.lower()}:{chain.lower()}"

    async def run_exclusive(self, wallet: str, chain: str,
                            fn: Callable[[], Awaitable[Any]],
                            timeout: float = DEFAULT_LOCK_TIMEOUT) -> Any:
        key = self._key(wallet, chain)
        state = self._states.setdefault(key, _LockState())

        previous = state.tail
        done = asyncio.get_running_loop().create_future()
        state.tail = done
        state.pending += 1

        def release(_=None):
            state.pending -= 1
            done.set_result(None)

        if previous is not None:
            try:
                await asyncio.shield(previous)
            except asyncio.CancelledError:
                # the caller left the queue; hand the turn on when it comes
                previous.add_done_callback(release)
                raise

        task = asyncio.ensure_future(fn())
        task.add_done_callback(release)
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            logger.warning("[%s] transaction lock timeout after %.1fs; "
                           "attempt continues in background", key, timeout)
            task.add_done_callback(self._log_detached)
            raise LockTimeout(f"Transaction lock timeout for {key} after {timeout:.1f}s") from None

    @staticmethod
    def _log_detached(task: asyncio.Future):
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Detached attempt failed: %s", exc)

    async def drain(self):
        """Wait until no key has queued or running work, detached work included."""
        while True:
            tails = [s.tail for s in self._states.values() if s.tail is not None and not s.tail.done()]
            if not tails:
                return
            await asyncio.gather(*(asyncio.shield(t) for t in tails))

    def is_pending(self, wallet: str, chain: str) -> bool:
        return self.pending_count(wallet, chain) > 0

    def pending_count(self, wallet: str, chain: str) -> int:
        state = self._states.get(self._key(wallet, chain))
        return state.pending if state else 0

    def active_queues(self) -> list[dict]:
        """All wallet/chain keys with queued or running work."""
        active = []
        for key, state in self._states.items():
            if state.pending > 0:
                wallet, chain = key.rsplit(":", 1)
                active.append({"wallet": wallet, "chain": chain, "pending": state.pending})
        return active
