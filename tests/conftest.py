"""
Shared fixtures and fakes.

Nothing here talks to an RPC node or runs forge: the signer, gas oracle and
location reader are replaced by in-memory fakes, and timers run on a manual
clock that only moves when a test advances it.
"""

import asyncio
from typing import Callable, Optional

import pytest

from nexus_scheduler.chain.gas_oracle import GasOracleError
from nexus_scheduler.chain.location import LocationError
from nexus_scheduler.chain.signer import SignerResult
from nexus_scheduler.config import (
    ACTION_TYPES, SUPPORTED_CHAINS, ActionSettings, AppConfig, ChainConfig,
    SchedulerConfig, SignerConfig, WalletConfig,
)
from nexus_scheduler.wallets import WalletIdentity

GWEI = 10**9


class _ManualTimer:
    def __init__(self, when: float, callback: Callable[[], None]):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualClock:
    """Clock whose time only moves on ``advance``."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.t = start
        self.timers: list[_ManualTimer] = []

    def now(self) -> float:
        return self.t

    def call_later(self, delay: float, callback: Callable[[], None]) -> _ManualTimer:
        timer = _ManualTimer(self.t + max(delay, 0.0), callback)
        self.timers.append(timer)
        return timer

    def pending(self) -> list[_ManualTimer]:
        return [t for t in self.timers if not t.cancelled]

    def advance(self, seconds: float):
        target = self.t + seconds
        while True:
            due = [t for t in self.pending() if t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self.timers.remove(timer)
            self.t = max(self.t, timer.when)
            timer.callback()
        self.t = target


class FakeSigner:
    """
    Records every request. Results are popped from ``results`` in order;
    once empty every submit succeeds. An exception in ``results`` is raised.
    """

    def __init__(self, results: Optional[list] = None, delay: float = 0.0,
                 gate: Optional[asyncio.Event] = None):
        self.results = list(results or [])
        self.delay = delay
        self.gate = gate
        self.calls = []
        self.started = asyncio.Event()
        self.finished = 0

    async def submit(self, wallet, chain, request):
        self.calls.append((wallet, chain, request))
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        self.finished += 1
        result = self.results.pop(0) if self.results else SignerResult("Script ran successfully.", "", 0)
        if isinstance(result, Exception):
            raise result
        return result


class FakeGasOracle:
    def __init__(self, price_gwei: Optional[float] = 1, fail: bool = False):
        self.price_gwei = price_gwei
        self.fail = fail
        self.calls = 0

    async def current_gas_price(self, chain) -> int:
        self.calls += 1
        if self.fail:
            raise GasOracleError(f"[{chain.name}] gas price read failed: connection refused")
        return int(self.price_gwei * GWEI)


class FakeLocation:
    def __init__(self, city: int = 0, fail: bool = False):
        self.city = city
        self.fail = fail
        self.calls = 0

    async def player_city(self, address, chain) -> int:
        self.calls += 1
        if self.fail:
            raise LocationError(f"[{chain.name}] city lookup failed for {address}")
        return self.city


def failed(text: str, returncode: int = 1) -> SignerResult:
    return SignerResult(stdout="", stderr=text, returncode=returncode)


@pytest.fixture
def pls() -> ChainConfig:
    return ChainConfig(
        name="pls",
        rpc_url="http://pls.rpc.invalid",
        max_gas_price_gwei=100,
        gas_price_gwei=30,
        map_contract="0x" + "ab" * 20,
        script_prefix="PLS",
    )


@pytest.fixture
def bnb() -> ChainConfig:
    return ChainConfig(
        name="bnb",
        rpc_url="http://bnb.rpc.invalid",
        max_gas_price_gwei=5,
        gas_price_gwei=3,
        map_contract="0x" + "cd" * 20,
        script_prefix="BNB",
    )


@pytest.fixture
def wallet() -> WalletIdentity:
    return WalletIdentity(name="wallet1", credential_ref="hunter2", address="0x" + "11" * 20)


@pytest.fixture
def other_wallet() -> WalletIdentity:
    return WalletIdentity(name="wallet2", credential_ref="hunter2", address="0x" + "22" * 20)


@pytest.fixture
def signer_config(tmp_path) -> SignerConfig:
    return SignerConfig(
        foundry_bin=str(tmp_path / "bin"),
        crime_scripts_dir="/opt/crime-scripts",
        travel_scripts_dir="/opt/travel-scripts",
        timeout_seconds=5,
    )


@pytest.fixture
def settings() -> ActionSettings:
    return ActionSettings(
        crime_type=2,
        randomize_crimes=False,
        crime_variance_minutes=5,
        kill_skill_train_type=1,
        start_city=0,
        end_city=1,
        travel_type=0,
        item_id=0,
    )


@pytest.fixture
def app_config(pls, bnb, signer_config, settings, tmp_path) -> AppConfig:
    return AppConfig(
        chains={"pls": pls, "bnb": bnb},
        signer=signer_config,
        actions=settings,
        wallets=WalletConfig(keystore_path=str(tmp_path / "keystores"), global_password="hunter2"),
        scheduler=SchedulerConfig(
            lock_timeout_seconds=60,
            autostart_stagger_seconds=0,
            autostart_actions=ACTION_TYPES,
            autostart_chains=SUPPORTED_CHAINS,
            analytics_api_url="",
            classifier_rules_path=None,
        ),
        log_level="DEBUG",
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()
