"""
The Fleet - every wallet, every chain, every action.

Composition root of the scheduler:
1. Discover wallets
2. Start one WalletScheduler per (action, chain, wallet)
3. Answer start/stop/status for the API layer
4. Tick housekeeping (gas report) until shutdown
5. Stop everything cleanly

All schedulers share one WalletChainLock, which is what keeps a crime and
a nick car attempt for the same wallet from racing on the nonce.
"""

import asyncio
import logging
import random
from dataclasses import replace
from typing import Iterable, Optional

from nexus_scheduler.analytics import HttpAnalyticsSink, OutcomeStats
from nexus_scheduler.chain.gas_oracle import GasOracle, GasReporter
from nexus_scheduler.chain.location import LocationReader
from nexus_scheduler.chain.signer import ForgeSigner
from nexus_scheduler.config import ACTION_TYPES, SUPPORTED_CHAINS, AppConfig
from nexus_scheduler.scheduling.timers import Clock
from nexus_scheduler.scheduling.wallet_scheduler import WalletScheduler
from nexus_scheduler.strategies.retry_policy import MINUTE, RETRY_TABLES, RetryPolicy
from nexus_scheduler.trading.actions import build_action
from nexus_scheduler.trading.classifier import OutcomeClassifier, RuleSet
from nexus_scheduler.trading.executor import ActionExecutor
from nexus_scheduler.trading.tx_queue import WalletChainLock
from nexus_scheduler.wallets import KeystoreDirectory, WalletIdentity

logger = logging.getLogger(__name__)


class FleetScheduler:
    """
    Starts, stops and reports on every scheduled tuple.

    A tuple is at most one live WalletScheduler: starting it again while
    it runs is refused rather than creating a second timer.
    """

    HOUSEKEEPING_INTERVAL = 1.0

    def __init__(self, config: AppConfig, executor: ActionExecutor,
                 lock: Optional[WalletChainLock] = None,
                 policy: Optional[RetryPolicy] = None,
                 clock: Optional[Clock] = None,
                 sinks: tuple = (),
                 rng: Optional[random.Random] = None,
                 keystores: Optional[KeystoreDirectory] = None):
        self.config = config
        self.keystores = keystores
        self.executor = executor
        self.lock = lock or WalletChainLock()
        self.rng = rng or random.Random()
        self.policy = policy or RetryPolicy(self._retry_tables(config), rng=self.rng)
        self.clock = clock
        self.sinks = tuple(sinks)
        self.entries: dict[tuple[str, str, str], WalletScheduler] = {}
        # stopped schedulers whose last attempt is still in flight
        self._retired: set[WalletScheduler] = set()

    @staticmethod
    def _retry_tables(config: AppConfig) -> dict:
        tables = dict(RETRY_TABLES)
        tables["crime"] = replace(
            tables["crime"], success_variance=config.actions.crime_variance_minutes * MINUTE
        )
        return tables

    @classmethod
    def from_config(cls, config: AppConfig) -> "FleetScheduler":
        """Wire the production collaborators."""
        keystores = KeystoreDirectory(config.wallets.keystore_path)
        rules = RuleSet.load(config.scheduler.classifier_rules_path) \
            if config.scheduler.classifier_rules_path else RuleSet()
        executor = ActionExecutor(
            signer=ForgeSigner(config.signer),
            gas_oracle=GasOracle(),
            classifier=OutcomeClassifier(rules),
            location=LocationReader(),
            resolve_address=keystores.resolve_address,
        )
        sinks = [OutcomeStats()]
        if config.scheduler.analytics_api_url:
            sinks.append(HttpAnalyticsSink(config.scheduler.analytics_api_url))
        return cls(config, executor, sinks=tuple(sinks), keystores=keystores)

    @property
    def stats(self) -> Optional[OutcomeStats]:
        return next((s for s in self.sinks if isinstance(s, OutcomeStats)), None)

    def start(self, action_type: str, chain: str, wallet: WalletIdentity, **options) -> dict:
        if action_type not in ACTION_TYPES:
            return {"success": False, "error": f"Invalid scheduler type: {action_type}"}
        if not chain or chain.lower() not in SUPPORTED_CHAINS:
            return {"success": False, "error": f"Invalid chain - must be {' or '.join(SUPPORTED_CHAINS)}"}
        chain = chain.lower()

        key = (action_type, chain, wallet.name)
        if key in self.entries and self.entries[key].running:
            return {
                "success": False,
                "error": f"{chain.upper()} {action_type} scheduler already running for wallet {wallet.name}",
            }

        try:
            action = build_action(action_type, self.config.signer, self.config.actions,
                                  rng=self.rng, **options)
        except (TypeError, ValueError) as e:
            return {"success": False, "error": str(e)}

        scheduler = WalletScheduler(
            wallet=wallet,
            chain=self.config.chain(chain),
            action=action,
            executor=self.executor,
            lock=self.lock,
            policy=self.policy,
            clock=self.clock,
            sinks=self.sinks,
            lock_timeout=self.config.scheduler.lock_timeout_seconds,
        )
        self.entries[key] = scheduler
        scheduler.start()
        logger.info("%s scheduler started for %s on %s", action_type, wallet.name, chain)
        return {
            "success": True,
            "chain": chain,
            "wallet": wallet.name,
            "cooldown_minutes": self.policy.table(action_type).nominal / 60,
        }

    def _matching(self, action_type: str, chain: Optional[str], wallet: Optional[str]) -> list:
        return [
            key for key in self.entries
            if key[0] == action_type
            and (chain is None or key[1] == chain.lower())
            and (wallet is None or key[2] == wallet)
        ]

    def stop(self, action_type: str, chain: Optional[str] = None,
             wallet: Optional[str] = None) -> dict:
        """Stop one tuple, every wallet on a chain, or the whole action."""
        if action_type not in ACTION_TYPES:
            return {"success": False, "error": f"Invalid scheduler type: {action_type}"}

        stopped = []
        for key in self._matching(action_type, chain, wallet):
            self._retire(self.entries.pop(key))
            stopped.append({"chain": key[1], "wallet": key[2]})

        if stopped:
            logger.info("%s scheduler stopped: %s", action_type, stopped)
            return {"success": True, "stopped": stopped}
        return {"success": False, "error": "No scheduler running for that chain/wallet"}

    def _retire(self, scheduler: WalletScheduler):
        scheduler.stop()
        self._retired = {s for s in self._retired if s.busy}
        if scheduler.busy:
            self._retired.add(scheduler)

    def stop_all(self):
        for key in list(self.entries):
            self._retire(self.entries.pop(key))

    def status(self, action_type: str, chain: Optional[str] = None,
               wallet: Optional[str] = None) -> dict:
        if action_type not in ACTION_TYPES:
            return {"error": f"Invalid scheduler type: {action_type}"}

        if chain and wallet:
            entry = self.entries.get((action_type, chain.lower(), wallet))
            if entry is None:
                return {"running": False, "next_run_at": None, "chain": chain, "wallet": wallet}
            return entry.summary()

        if chain:
            active = [k[2] for k in self._matching(action_type, chain, None)
                      if self.entries[k].running]
            return {"chain": chain, "running": bool(active), "active_wallets": active,
                    "count": len(active)}

        wallets = {
            c: [k[2] for k in self._matching(action_type, c, wallet) if self.entries[k].running]
            for c in SUPPORTED_CHAINS
        }
        result = {
            **{c: bool(w) for c, w in wallets.items()},
            "running": any(wallets.values()),
            "wallets": wallets,
        }
        if wallet:
            result["wallet"] = wallet
        return result

    def all_status(self) -> dict:
        return {action_type: self.status(action_type) for action_type in ACTION_TYPES}

    def lock_view(self) -> list[dict]:
        return self.lock.active_queues()

    async def start_all(self, wallets: Iterable[WalletIdentity],
                        action_types: Optional[Iterable[str]] = None,
                        chains: Optional[Iterable[str]] = None,
                        stagger: Optional[float] = None) -> dict:
        """
        Boot every (wallet, action, chain) tuple.

        Starts are spaced by a fixed small delay so the boot burst itself
        does not line everything up; per-tuple jitter does the rest.
        """
        action_types = list(action_types or self.config.scheduler.autostart_actions)
        chains = list(chains or self.config.scheduler.autostart_chains)
        if stagger is None:
            stagger = self.config.scheduler.autostart_stagger_seconds

        results = {"started": [], "failed": [], "skipped": []}
        for wallet in wallets:
            for action_type in action_types:
                for chain in chains:
                    item = {"wallet": wallet.name, "action": action_type, "chain": chain}
                    if self.status(action_type, chain, wallet.name).get("running"):
                        results["skipped"].append({**item, "reason": "already running"})
                        continue

                    result = self.start(action_type, chain, wallet)
                    if result["success"]:
                        results["started"].append(item)
                    else:
                        results["failed"].append({**item, "error": result["error"]})
                        logger.warning("Failed to auto-start %s", item, extra={"error": result["error"]})

                    if stagger > 0:
                        await asyncio.sleep(stagger)

        logger.info("Auto-start complete: %d started, %d failed, %d skipped",
                    len(results["started"]), len(results["failed"]), len(results["skipped"]))
        return results

    async def wait_idle(self):
        """Let every in-flight attempt settle, stopped schedules included."""
        schedulers = list(self.entries.values()) + list(self._retired)
        await asyncio.gather(*(s.wait_idle() for s in schedulers))
        self._retired = {s for s in self._retired if s.busy}

    async def run_forever(self, stop_event: asyncio.Event,
                          reporter: Optional[GasReporter] = None):
        """Tick housekeeping until ``stop_event`` is set, then stop every schedule."""
        try:
            while not stop_event.is_set():
                if reporter is not None:
                    reporter.run_pending()
                try:
                    await asyncio.wait_for(stop_event.wait(), self.HOUSEKEEPING_INTERVAL)
                except asyncio.TimeoutError:
                    pass
        finally:
            logger.info("Shutting down scheduler service, stopping %d schedule(s)...", len(self.entries))
            self.stop_all()
            await self.wait_idle()
            # attempts that outlived their lock timeout still hold a key
            await self.lock.drain()
            for sink in self.sinks:
                close = getattr(sink, "close", None)
                if close is not None:
                    await close()
