"""
Gas price reads for the configured chains.

The oracle is a plain read with no cache. Callers decide what an unknown
price means; the executor treats it as "proceed".
"""

import asyncio
import logging
from typing import Optional

import aiohttp
import schedule
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import Web3Exception

from nexus_scheduler.config import ChainConfig

logger = logging.getLogger(__name__)

WEI_PER_GWEI = 10**9


class GasOracleError(Exception):
    """The gas price could not be read."""


class GasOracle:
    """Reads the current network gas price over JSON-RPC."""

    def __init__(self, request_timeout: float = 10.0):
        self.request_timeout = request_timeout
        self._clients: dict[str, AsyncWeb3] = {}

    def _client(self, chain: ChainConfig) -> AsyncWeb3:
        client = self._clients.get(chain.rpc_url)
        if client is None:
            client = AsyncWeb3(AsyncHTTPProvider(
                chain.rpc_url,
                request_kwargs={"timeout": aiohttp.ClientTimeout(total=self.request_timeout)},
            ))
            self._clients[chain.rpc_url] = client
        return client

    async def current_gas_price(self, chain: ChainConfig) -> int:
        """Current gas price in wei."""
        try:
            return int(await self._client(chain).eth.gas_price)
        except (Web3Exception, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise GasOracleError(f"[{chain.name}] gas price read failed: {e}") from e


class GasReporter:
    """
    Hourly gas report for monitoring.

    Uses a private ``schedule.Scheduler`` so nothing leaks into the module
    level default scheduler. ``run_pending`` is ticked by the fleet's
    housekeeping loop; each due run spawns an async report task.
    """

    def __init__(self, oracle: GasOracle, chains: list[ChainConfig], interval_hours: int = 1):
        self.oracle = oracle
        self.chains = chains
        self.jobs = schedule.Scheduler()
        self.jobs.every(interval_hours).hours.do(self._spawn_report)
        self._tasks: set = set()

    def run_pending(self):
        self.jobs.run_pending()

    def _spawn_report(self):
        task = asyncio.get_running_loop().create_task(self.report())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def report(self) -> dict[str, Optional[float]]:
        """Log and return current gas (gwei) per chain; None when unreadable."""
        readings: dict[str, Optional[float]] = {}
        for chain in self.chains:
            try:
                price = await self.oracle.current_gas_price(chain)
            except GasOracleError as e:
                logger.warning("%s", e)
                readings[chain.name] = None
                continue
            gwei = price / WEI_PER_GWEI
            readings[chain.name] = gwei
            logger.info(
                "Gas report %s: %.2f gwei (limit: %s gwei)",
                chain.name.upper(), gwei, chain.max_gas_price_gwei or "none",
            )
        return readings
