"""
Game actions.

One class per action type. An action knows which Foundry script to run and
with which arguments, and may carry a small amount of per-wallet state
(travel remembers where it is heading next). Each scheduled tuple owns its
own action instance.
"""

import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from nexus_scheduler.chain.location import (
    BASE_CITIES, LocationError, LocationReader, city_name,
)
from nexus_scheduler.chain.signer import SignRequest, SignerError, SignerResult
from nexus_scheduler.config import ActionSettings, ChainConfig, SignerConfig
from nexus_scheduler.trading.outcomes import (
    ActionOutcome, Classification, NextActionHint,
)
from nexus_scheduler.wallets import WalletIdentity

logger = logging.getLogger(__name__)

HOUR = 60 * 60

# Travel type -> time on the road
TRAVEL_DURATIONS = {0: 4 * HOUR, 1: 2 * HOUR, 2: 1 * HOUR}
TRAVEL_NAMES = {0: "train", 1: "car", 2: "airplane"}

CRIME_NAMES = {0: "Vendor", 1: "Train", 2: "Bank", 3: "Police"}
TRAIN_NAMES = {0: "Free (bottles)", 1: "$5000 (range)", 2: "$30000 (trainer)"}

# Where nick car sends a player that is outside the base cities
DEFAULT_TARGET_CITY = 0
DEFAULT_TRAVEL_TYPE = 0  # train is the cheapest
DEFAULT_ITEM_ID = 0


@dataclass
class ActionServices:
    """What an action may use during its pre-step."""
    location: LocationReader
    resolve_address: Callable[[WalletIdentity], Awaitable[Optional[str]]]
    submit: Callable[[WalletIdentity, ChainConfig, SignRequest], Awaitable[SignerResult]]


class GameAction:
    name = ""
    script_name = ""
    uses_gas_bid = False
    uses_travel_scripts = False

    def __init__(self, signer_config: SignerConfig):
        self.signer_config = signer_config
        self.last_params: dict = {}

    def script(self, chain: ChainConfig) -> str:
        contract = f"{chain.script_prefix}{self.script_name}"
        return f"script/{contract}.s.sol:{contract}"

    def _cwd(self) -> str:
        if self.uses_travel_scripts:
            return self.signer_config.travel_scripts_dir
        return self.signer_config.crime_scripts_dir

    def _request(self, chain: ChainConfig, sig: Optional[str] = None,
                 args: tuple = ()) -> SignRequest:
        return SignRequest(
            script=self.script(chain),
            cwd=self._cwd(),
            sig=sig,
            args=args,
            gas_price_wei=chain.gas_price_wei if self.uses_gas_bid and chain.gas_price_gwei > 0 else None,
        )

    async def prepare(self, wallet: WalletIdentity, chain: ChainConfig,
                      services: ActionServices) -> Optional[ActionOutcome]:
        """Pre-step run inside the wallet lock. An outcome ends the attempt."""
        return None

    def build_request(self, wallet: WalletIdentity, chain: ChainConfig) -> SignRequest:
        raise NotImplementedError

    def record(self, outcome: ActionOutcome) -> ActionOutcome:
        """Observe the outcome; may return it enriched."""
        return outcome


class CrimeAction(GameAction):
    name = "crime"
    script_name = "Crime"

    def __init__(self, signer_config: SignerConfig, crime_type: int = 0,
                 randomize: bool = False, rng: Optional[random.Random] = None):
        super().__init__(signer_config)
        self.crime_type = crime_type
        self.randomize = randomize
        self.rng = rng or random.Random()

    def build_request(self, wallet, chain):
        crime_type = self.rng.randint(0, 3) if self.randomize else self.crime_type
        self.last_params = {"crime_type": crime_type}
        logger.info("[%s:%s] Executing crime type %d %s", chain.name, wallet.name,
                    crime_type, "(random)" if self.randomize else "(fixed)")
        return self._request(chain, "run(uint8)", (crime_type,))


class KillSkillAction(GameAction):
    name = "killskill"
    script_name = "KillSkill"

    def __init__(self, signer_config: SignerConfig, train_type: int = 0):
        super().__init__(signer_config)
        self.train_type = train_type

    def build_request(self, wallet, chain):
        self.last_params = {"train_type": self.train_type}
        logger.info("[%s:%s] Training kill skill (%s)", chain.name, wallet.name,
                    TRAIN_NAMES.get(self.train_type, self.train_type))
        return self._request(chain, "run(uint8)", (self.train_type,))


def _travel_request(action: GameAction, chain: ChainConfig, destination: int,
                    travel_type: int, item_id: int) -> SignRequest:
    contract = f"{chain.script_prefix}Travel"
    return SignRequest(
        script=f"script/{contract}.s.sol:{contract}",
        cwd=action.signer_config.travel_scripts_dir,
        sig="run(uint8,uint8,uint256)",
        args=(destination, travel_type, item_id),
        gas_price_wei=chain.gas_price_wei if chain.gas_price_gwei > 0 else None,
    )


class NickCarAction(GameAction):
    """
    Steal a car. Only possible in the base cities; a player found anywhere
    else is sent to New York by train first and the attempt is reported as
    WRONG_LOCATION with the travel time as a hint.
    """
    name = "nickcar"
    script_name = "NickCar"
    uses_gas_bid = True

    async def prepare(self, wallet, chain, services):
        address = await services.resolve_address(wallet)
        if not address:
            return None
        try:
            city = await services.location.player_city(address, chain)
        except LocationError as e:
            logger.warning("[%s:%s] Could not detect city, attempting anyway: %s",
                           chain.name, wallet.name, e)
            return None

        if city in BASE_CITIES:
            logger.debug("[%s:%s] City: %s (%d)", chain.name, wallet.name, city_name(city), city)
            return None

        logger.info("[%s:%s] In %s (city %d) - traveling to %s",
                    chain.name, wallet.name, city_name(city), city, city_name(DEFAULT_TARGET_CITY))
        request = _travel_request(self, chain, DEFAULT_TARGET_CITY, DEFAULT_TRAVEL_TYPE, DEFAULT_ITEM_ID)
        try:
            result = await services.submit(wallet, chain, request)
        except SignerError as e:
            result = SignerResult(stdout="", stderr=str(e), returncode=-1)

        if not result.ok:
            logger.error("[%s:%s] Auto-travel failed: %s", chain.name, wallet.name, result.text[:100])
            return ActionOutcome.failure(
                Classification.WRONG_LOCATION,
                detail=f"in {city_name(city)}; auto-travel failed",
            )
        return ActionOutcome.failure(
            Classification.WRONG_LOCATION,
            detail=f"in {city_name(city)}",
            hint=NextActionHint(
                wait_seconds=TRAVEL_DURATIONS[DEFAULT_TRAVEL_TYPE],
                reason=f"traveling to {city_name(DEFAULT_TARGET_CITY)}",
            ),
        )

    def build_request(self, wallet, chain):
        self.last_params = {}
        logger.info("[%s:%s] Attempting to nick car", chain.name, wallet.name)
        return self._request(chain)


class TravelAction(GameAction):
    """
    Shuttle between two cities. On its first run the action looks up where
    the player is and picks the leg that makes sense from there; after each
    successful trip the destination flips. A failed trip retries the same
    destination.
    """
    name = "travel"
    script_name = "Travel"
    uses_gas_bid = True
    uses_travel_scripts = True

    def __init__(self, signer_config: SignerConfig, start_city: int = 0, end_city: int = 1,
                 travel_type: int = 0, item_id: int = 0):
        if travel_type not in TRAVEL_DURATIONS:
            raise ValueError(f"Invalid travel type {travel_type}: must be 0 (train), 1 (car) or 2 (airplane)")
        super().__init__(signer_config)
        self.start_city = start_city
        self.end_city = end_city
        self.travel_type = travel_type
        self.item_id = item_id
        self.destination = start_city
        self.position_checked = False

    async def prepare(self, wallet, chain, services):
        if self.position_checked:
            return None
        self.position_checked = True
        address = await services.resolve_address(wallet)
        if not address:
            return None
        try:
            city = await services.location.player_city(address, chain)
        except LocationError as e:
            logger.warning("[%s:%s] Could not detect city, starting normal loop: %s",
                           chain.name, wallet.name, e)
            return None
        logger.info("[%s:%s] Current city: %s (%d)", chain.name, wallet.name, city_name(city), city)
        self.destination = self.end_city if city == self.start_city else self.start_city
        return None

    def build_request(self, wallet, chain):
        self.last_params = {"destination": self.destination, "travel_type": self.travel_type}
        logger.info("[%s:%s] Traveling to %s by %s", chain.name, wallet.name,
                    city_name(self.destination), TRAVEL_NAMES.get(self.travel_type, self.travel_type))
        return _travel_request(self, chain, self.destination, self.travel_type, self.item_id)

    def record(self, outcome):
        if not outcome.succeeded:
            return outcome
        arrived = self.destination
        self.destination = self.end_city if arrived == self.start_city else self.start_city
        return ActionOutcome.success(
            detail=outcome.detail,
            hint=NextActionHint(
                wait_seconds=TRAVEL_DURATIONS[self.travel_type],
                reason=f"traveling to {city_name(arrived)}",
            ),
        )


def build_action(action_type: str, signer_config: SignerConfig,
                 settings: ActionSettings, rng: Optional[random.Random] = None,
                 **options) -> GameAction:
    """Action instance for one scheduled tuple; ``options`` override settings."""
    if action_type == "crime":
        return CrimeAction(
            signer_config,
            crime_type=int(options.get("crime_type", settings.crime_type)),
            randomize=bool(options.get("randomize", settings.randomize_crimes)),
            rng=rng,
        )
    if action_type == "nickcar":
        return NickCarAction(signer_config)
    if action_type == "killskill":
        return KillSkillAction(
            signer_config,
            train_type=int(options.get("train_type", settings.kill_skill_train_type)),
        )
    if action_type == "travel":
        return TravelAction(
            signer_config,
            start_city=int(options.get("start_city", settings.start_city)),
            end_city=int(options.get("end_city", settings.end_city)),
            travel_type=int(options.get("travel_type", settings.travel_type)),
            item_id=int(options.get("item_id", settings.item_id)),
        )
    raise ValueError(f"Invalid scheduler type: {action_type}")
