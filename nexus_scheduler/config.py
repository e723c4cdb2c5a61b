"""
Configuration for the Nexus scheduler.

Every value can be overridden from the environment or a .env file.
Chain settings are read once at startup and never mutated afterwards.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

SUPPORTED_CHAINS = ("pls", "bnb")
ACTION_TYPES = ("crime", "nickcar", "killskill", "travel")


class ConfigError(ValueError):
    """Raised when a configured value cannot be used."""


def _csv(value: str) -> tuple:
    return tuple(part.strip().lower() for part in value.split(",") if part.strip())


@dataclass(frozen=True)
class ChainConfig:
    name: str
    rpc_url: str
    max_gas_price_gwei: int  # 0 disables the ceiling
    gas_price_gwei: int  # bid passed to the signer, 0 lets the tool decide
    map_contract: str
    script_prefix: str

    @property
    def max_gas_price_wei(self) -> int:
        return self.max_gas_price_gwei * 10**9

    @property
    def gas_price_wei(self) -> int:
        return self.gas_price_gwei * 10**9


def pls_chain() -> ChainConfig:
    return ChainConfig(
        name="pls",
        rpc_url=os.getenv("PLS_RPC_URL", "https://rpc-pulsechain.g4mm4.io"),
        max_gas_price_gwei=int(os.getenv("PLS_MAX_GAS_PRICE_GWEI", "2000000")),
        gas_price_gwei=int(os.getenv("PLS_GAS_PRICE_GWEI", "30")),
        map_contract=os.getenv("PLS_MAP_CONTRACT", "0xE571Aa670EDeEBd88887eb5687576199652A714F"),
        script_prefix="PLS",
    )


def bnb_chain() -> ChainConfig:
    return ChainConfig(
        name="bnb",
        rpc_url=os.getenv("BNB_RPC_URL", "https://bsc-dataseed.bnbchain.org"),
        max_gas_price_gwei=int(os.getenv("BNB_MAX_GAS_PRICE_GWEI", "5")),
        gas_price_gwei=int(os.getenv("BNB_GAS_PRICE_GWEI", "3")),
        map_contract=os.getenv("BNB_MAP_CONTRACT", "0x1c88060e4509c59b4064A7a9818f64AeC41ef19E"),
        script_prefix="BNB",
    )


@dataclass
class SignerConfig:
    foundry_bin: str = os.getenv("FOUNDRY_BIN", str(Path.home() / ".foundry" / "bin"))
    crime_scripts_dir: str = os.getenv("CRIME_SCRIPTS_DIR", "./foundry-crime-scripts")
    travel_scripts_dir: str = os.getenv("TRAVEL_SCRIPTS_DIR", "./foundry-travel-scripts")
    timeout_seconds: float = float(os.getenv("SIGNER_TIMEOUT_SECONDS", "120"))


@dataclass
class ActionSettings:
    crime_type: int = int(os.getenv("CRIME_TYPE", "0"))
    randomize_crimes: bool = os.getenv("RANDOMIZE_CRIMES", "false").lower() == "true"
    crime_variance_minutes: int = int(os.getenv("CRIME_TIME_VARIANCE_MINUTES", "5"))
    kill_skill_train_type: int = int(os.getenv("KILL_SKILL_TRAIN_TYPE", "0"))
    start_city: int = int(os.getenv("START_CITY", "0"))
    end_city: int = int(os.getenv("END_CITY", "1"))
    travel_type: int = int(os.getenv("TRAVEL_TYPE", "0"))
    item_id: int = int(os.getenv("ITEM_IDS", "0"))


@dataclass
class WalletConfig:
    keystore_path: str = os.getenv(
        "KEYSTORE_PATH", str(Path.home() / ".foundry" / "keystores")
    )
    global_password: str = os.getenv("GLOBAL_PASSWORD", "")


@dataclass
class SchedulerConfig:
    lock_timeout_seconds: float = float(os.getenv("LOCK_TIMEOUT_SECONDS", "60"))
    autostart_stagger_seconds: float = float(os.getenv("AUTOSTART_STAGGER_SECONDS", "0.1"))
    autostart_actions: tuple = _csv(os.getenv("AUTOSTART_ACTIONS", ",".join(ACTION_TYPES)))
    autostart_chains: tuple = _csv(os.getenv("AUTOSTART_CHAINS", ",".join(SUPPORTED_CHAINS)))
    analytics_api_url: str = os.getenv("ANALYTICS_API_URL", "")
    classifier_rules_path: Optional[str] = os.getenv("CLASSIFIER_RULES_PATH") or None


@dataclass
class AppConfig:
    chains: dict = field(default_factory=lambda: {"pls": pls_chain(), "bnb": bnb_chain()})
    signer: SignerConfig = field(default_factory=SignerConfig)
    actions: ActionSettings = field(default_factory=ActionSettings)
    wallets: WalletConfig = field(default_factory=WalletConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    def chain(self, name: str) -> ChainConfig:
        try:
            return self.chains[name.lower()]
        except KeyError:
            raise ConfigError(f"Invalid chain - must be one of {', '.join(SUPPORTED_CHAINS)}") from None

    def validate(self):
        """Reject settings the game contracts would refuse anyway."""
        for name in self.scheduler.autostart_actions:
            if name not in ACTION_TYPES:
                raise ConfigError(f"Unknown action type in AUTOSTART_ACTIONS: {name}")
        for name in self.scheduler.autostart_chains:
            if name not in SUPPORTED_CHAINS:
                raise ConfigError(f"Unknown chain in AUTOSTART_CHAINS: {name}")
        if self.actions.travel_type not in (0, 1, 2):
            raise ConfigError("TRAVEL_TYPE must be 0 (train), 1 (car) or 2 (airplane)")
        for city in (self.actions.start_city, self.actions.end_city):
            # nick car only works in the base cities, so travel is restricted to them
            if city not in range(6):
                raise ConfigError(f"Invalid travel city {city}. Only base cities 0-5 are allowed.")
        if self.actions.crime_variance_minutes < 0:
            raise ConfigError("CRIME_TIME_VARIANCE_MINUTES cannot be negative")
