import random

import pytest

from nexus_scheduler.strategies.retry_policy import (
    HINT_BUFFER, HOUR, MINUTE, RETRY_TABLES, RetryPolicy,
)
from nexus_scheduler.trading.outcomes import ActionOutcome, Classification, NextActionHint


@pytest.fixture
def policy():
    return RetryPolicy(rng=random.Random(42))


@pytest.mark.parametrize("action_type", list(RETRY_TABLES))
def test_success_never_waits_less_than_cooldown(policy, action_type):
    cooldown = policy.nominal_cooldown(action_type)
    for _ in range(200):
        assert policy.next_delay(action_type, ActionOutcome.success()) >= cooldown


def test_crime_success_stays_within_variance(policy):
    delays = [policy.next_delay("crime", ActionOutcome.success()) for _ in range(200)]
    assert min(delays) >= 16 * MINUTE
    assert max(delays) <= 21 * MINUTE


@pytest.mark.parametrize("action_type", list(RETRY_TABLES))
def test_jail_retries_sooner_than_cooldown(policy, action_type):
    outcome = ActionOutcome.failure(Classification.JAILED, "You are in jail")
    assert policy.next_delay(action_type, outcome) < policy.nominal_cooldown(action_type)


def test_not_active_backs_off_for_hours(policy):
    outcome = ActionOutcome.failure(Classification.NOT_ACTIVE, "Player not active")
    assert policy.next_delay("killskill", outcome) >= 6 * HOUR


def test_short_retries(policy):
    gas = ActionOutcome.failure(Classification.GAS_TOO_HIGH)
    rpc = ActionOutcome.failure(Classification.TRANSIENT_NETWORK)
    reverted = ActionOutcome.failure(Classification.REVERTED)

    assert policy.next_delay("crime", gas) == 5 * MINUTE
    assert policy.next_delay("crime", rpc) == 2 * MINUTE
    assert policy.next_delay("nickcar", reverted) == 15 * MINUTE


def test_cooldown_and_unknown_return_to_cadence(policy):
    for cls in (Classification.COOLDOWN, Classification.UNKNOWN_ERROR):
        delay = policy.next_delay("killskill", ActionOutcome.failure(cls))
        assert delay == RETRY_TABLES["killskill"].nominal


def test_wrong_location_uses_hint_when_travel_started(policy):
    hint = NextActionHint(wait_seconds=4 * HOUR, reason="traveling to New York")
    outcome = ActionOutcome.failure(Classification.WRONG_LOCATION, hint=hint)
    assert policy.next_delay("nickcar", outcome) == 4 * HOUR + HINT_BUFFER


def test_wrong_location_without_hint_uses_table(policy):
    outcome = ActionOutcome.failure(Classification.WRONG_LOCATION, "auto-travel failed")
    assert policy.next_delay("nickcar", outcome) == 60 * MINUTE


def test_travel_success_waits_for_arrival(policy):
    hint = NextActionHint(wait_seconds=4 * HOUR, reason="traveling to Chicago")
    outcome = ActionOutcome.success(hint=hint)
    assert policy.next_delay("travel", outcome) == 4 * HOUR + HINT_BUFFER


def test_short_hint_does_not_shorten_cooldown(policy):
    hint = NextActionHint(wait_seconds=1, reason="almost there")
    delay = policy.next_delay("killskill", ActionOutcome.success(hint=hint))
    assert delay == RETRY_TABLES["killskill"].nominal


@pytest.mark.parametrize("action_type", list(RETRY_TABLES))
def test_initial_delay_within_jitter(policy, action_type):
    low, high = RETRY_TABLES[action_type].initial_jitter
    for _ in range(50):
        assert low <= policy.initial_delay(action_type) <= high


def test_unknown_action_type(policy):
    with pytest.raises(ValueError):
        policy.next_delay("heist", ActionOutcome.success())
