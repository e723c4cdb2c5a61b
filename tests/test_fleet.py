import asyncio
import random
from dataclasses import replace

import pytest

from nexus_scheduler.analytics import HttpAnalyticsSink, OutcomeStats
from nexus_scheduler.chain.signer import ForgeSigner
from nexus_scheduler.fleet import FleetScheduler
from nexus_scheduler.trading.executor import ActionExecutor

from tests.conftest import FakeGasOracle, FakeLocation, FakeSigner


@pytest.fixture
def signer():
    return FakeSigner()


@pytest.fixture
def fleet(app_config, signer, clock):
    executor = ActionExecutor(
        signer=signer,
        gas_oracle=FakeGasOracle(price_gwei=1),
        location=FakeLocation(city=0),
    )
    return FleetScheduler(app_config, executor, clock=clock,
                          sinks=(OutcomeStats(),), rng=random.Random(3))


def test_start_reports_cooldown(fleet, wallet):
    result = fleet.start("crime", "PLS", wallet)

    assert result == {"success": True, "chain": "pls", "wallet": "wallet1", "cooldown_minutes": 16.0}


def test_start_is_idempotent(fleet, wallet):
    fleet.start("crime", "pls", wallet)
    again = fleet.start("crime", "pls", wallet)

    assert again["success"] is False
    assert "already running" in again["error"]
    assert len(fleet.entries) == 1


def test_same_wallet_other_chain_or_action_is_separate(fleet, wallet):
    assert fleet.start("crime", "pls", wallet)["success"]
    assert fleet.start("crime", "bnb", wallet)["success"]
    assert fleet.start("nickcar", "pls", wallet)["success"]
    assert len(fleet.entries) == 3


@pytest.mark.parametrize("action_type, chain, error", [
    ("heist", "pls", "Invalid scheduler type"),
    ("crime", "eth", "Invalid chain"),
    ("crime", "", "Invalid chain"),
])
def test_start_rejects_bad_input(fleet, wallet, action_type, chain, error):
    result = fleet.start(action_type, chain, wallet)

    assert result["success"] is False
    assert error in result["error"]
    assert fleet.entries == {}


def test_start_rejects_bad_options(fleet, wallet):
    result = fleet.start("travel", "pls", wallet, travel_type="fast")

    assert result["success"] is False
    assert fleet.entries == {}


def test_stop_then_restart(fleet, wallet, clock):
    fleet.start("killskill", "pls", wallet)

    stopped = fleet.stop("killskill", "pls", "wallet1")
    assert stopped == {"success": True, "stopped": [{"chain": "pls", "wallet": "wallet1"}]}
    assert clock.pending() == []

    assert fleet.start("killskill", "pls", wallet)["success"]


def test_stop_whole_chain(fleet, wallet, other_wallet):
    fleet.start("crime", "pls", wallet)
    fleet.start("crime", "pls", other_wallet)
    fleet.start("crime", "bnb", wallet)

    result = fleet.stop("crime", "pls")

    assert len(result["stopped"]) == 2
    assert list(fleet.entries) == [("crime", "bnb", "wallet1")]


def test_stop_nothing_running(fleet):
    result = fleet.stop("travel", "pls", "wallet1")

    assert result["success"] is False
    assert result["error"] == "No scheduler running for that chain/wallet"


def test_status(fleet, wallet, other_wallet):
    fleet.start("crime", "pls", wallet)
    fleet.start("crime", "pls", other_wallet)

    one = fleet.status("crime", "pls", "wallet1")
    assert one["running"] is True
    assert one["next_run_at"] is not None
    assert one["state"] == "scheduled"

    missing = fleet.status("crime", "bnb", "wallet1")
    assert missing["running"] is False
    assert missing["next_run_at"] is None

    chain = fleet.status("crime", "pls")
    assert chain["active_wallets"] == ["wallet1", "wallet2"]
    assert chain["count"] == 2

    overall = fleet.status("crime")
    assert overall["pls"] is True and overall["bnb"] is False
    assert overall["running"] is True

    assert fleet.all_status()["travel"]["running"] is False
    assert "error" in fleet.status("heist")


def test_status_for_one_wallet_across_chains(fleet, wallet, other_wallet):
    fleet.start("crime", "pls", wallet)
    fleet.start("crime", "bnb", other_wallet)

    mine = fleet.status("crime", wallet="wallet1")

    assert mine["wallet"] == "wallet1"
    assert mine["pls"] is True and mine["bnb"] is False
    assert mine["wallets"] == {"pls": ["wallet1"], "bnb": []}

    assert fleet.status("crime", wallet="wallet3")["running"] is False


@pytest.mark.asyncio
async def test_start_all_then_skips(fleet, wallet, other_wallet):
    first = await fleet.start_all([wallet, other_wallet], ["crime", "travel"])

    assert len(first["started"]) == 8
    assert first["failed"] == []

    second = await fleet.start_all([wallet, other_wallet], ["crime", "travel"])
    assert second["started"] == []
    assert len(second["skipped"]) == 8
    assert second["skipped"][0]["reason"] == "already running"


@pytest.mark.asyncio
async def test_start_all_reports_failures(fleet, wallet):
    result = await fleet.start_all([wallet], ["crime"], ["pls", "eth"])

    assert len(result["started"]) == 1
    assert result["failed"][0]["chain"] == "eth"


@pytest.mark.asyncio
async def test_start_all_spaces_out_starts(fleet, wallet, monkeypatch):
    loop = asyncio.get_running_loop()
    started_at = []
    start = fleet.start

    def timed_start(*args, **kwargs):
        started_at.append(loop.time())
        return start(*args, **kwargs)

    monkeypatch.setattr(fleet, "start", timed_start)

    result = await fleet.start_all([wallet], ["crime", "killskill"], stagger=0.02)

    assert len(result["started"]) == 4
    gaps = [b - a for a, b in zip(started_at, started_at[1:])]
    assert len(gaps) == 3
    assert all(gap >= 0.018 for gap in gaps)


@pytest.mark.asyncio
async def test_attempts_reach_stats(fleet, wallet, signer, clock):
    fleet.start("crime", "pls", wallet)
    fleet.start("crime", "bnb", wallet)

    clock.advance(120)
    await fleet.wait_idle()

    assert len(signer.calls) == 2
    assert fleet.stats.by_action["crime:pls"]["attempts"] == 1
    assert fleet.stats.success_rate("crime", "bnb") == 1.0
    assert fleet.stats.by_crime_type[2]["success"] == 2


@pytest.mark.asyncio
async def test_run_forever_stops_everything(fleet, wallet, other_wallet, clock):
    await fleet.start_all([wallet, other_wallet])
    assert len(fleet.entries) == 16

    stop = asyncio.Event()
    stop.set()
    await fleet.run_forever(stop)

    assert fleet.entries == {}
    assert clock.pending() == []


def test_crime_variance_follows_config(app_config, signer, clock):
    app_config.actions = replace(app_config.actions, crime_variance_minutes=0)
    executor = ActionExecutor(signer=signer, gas_oracle=FakeGasOracle())

    fleet = FleetScheduler(app_config, executor, clock=clock)

    assert fleet.policy.table("crime").success_variance == 0


def test_from_config_wires_production_parts(app_config):
    app_config.scheduler = replace(app_config.scheduler, analytics_api_url="http://analytics.invalid/attempts")

    fleet = FleetScheduler.from_config(app_config)

    assert isinstance(fleet.executor.signer, ForgeSigner)
    assert fleet.keystores.path.name == "keystores"
    assert [type(s) for s in fleet.sinks] == [OutcomeStats, HttpAnalyticsSink]
    assert fleet.stats is fleet.sinks[0]


def test_lock_view_starts_empty(fleet):
    assert fleet.lock_view() == []


def _fleet_with(app_config, signer, clock, lock_timeout=None):
    if lock_timeout is not None:
        app_config.scheduler = replace(app_config.scheduler, lock_timeout_seconds=lock_timeout)
    executor = ActionExecutor(signer=signer, gas_oracle=FakeGasOracle(), location=FakeLocation())
    return FleetScheduler(app_config, executor, clock=clock,
                          sinks=(OutcomeStats(),), rng=random.Random(3))


@pytest.mark.asyncio
async def test_shutdown_waits_for_attempt_past_its_lock_timeout(app_config, wallet, clock):
    signer = FakeSigner(delay=0.3)
    fleet = _fleet_with(app_config, signer, clock, lock_timeout=0.05)
    fleet.start("killskill", "pls", wallet)

    clock.advance(120)
    await fleet.wait_idle()

    # the scheduler gave up waiting but the submission is still out
    assert fleet.stats.by_action["killskill:pls"]["attempts"] == 1
    assert fleet.lock.pending_count("wallet1", "pls") == 1
    assert signer.finished == 0

    stop = asyncio.Event()
    stop.set()
    await fleet.run_forever(stop)

    assert signer.finished == 1
    assert fleet.lock.pending_count("wallet1", "pls") == 0


@pytest.mark.asyncio
async def test_shutdown_waits_for_attempt_of_stopped_schedule(app_config, wallet, clock):
    gate = asyncio.Event()
    signer = FakeSigner(gate=gate)
    fleet = _fleet_with(app_config, signer, clock)
    fleet.start("killskill", "pls", wallet)

    clock.advance(120)
    await signer.started.wait()
    assert fleet.stop("killskill", "pls", "wallet1")["success"]
    assert fleet.entries == {}

    stop = asyncio.Event()
    stop.set()
    shutdown = asyncio.create_task(fleet.run_forever(stop))
    await asyncio.sleep(0.05)
    assert not shutdown.done()

    gate.set()
    await shutdown

    assert signer.finished == 1
    assert fleet.stats.by_action["killskill:pls"]["attempts"] == 1
    assert fleet.lock_view() == []
