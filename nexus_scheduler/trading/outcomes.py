"""
Outcome model for a single action attempt.

Every attempt ends in exactly one Classification. The scheduler never
inspects raw tool output, only these values.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Classification(Enum):
    SUCCESS = "success"
    JAILED = "jail"
    COOLDOWN = "cooldown"
    WRONG_LOCATION = "wrong_location"
    NOT_ACTIVE = "not_active"
    GAS_TOO_HIGH = "gas_too_high"
    REVERTED = "reverted"
    TRANSIENT_NETWORK = "rpc"
    UNKNOWN_ERROR = "error"


@dataclass(frozen=True)
class NextActionHint:
    """Tells the retry policy how long a follow-up condition will take."""
    wait_seconds: float
    reason: str


@dataclass(frozen=True)
class ActionOutcome:
    succeeded: bool
    classification: Classification
    detail: Optional[str] = None
    next_action_hint: Optional[NextActionHint] = None

    def __post_init__(self):
        if self.succeeded != (self.classification is Classification.SUCCESS):
            raise ValueError(
                f"succeeded={self.succeeded} is inconsistent with {self.classification.name}"
            )

    @classmethod
    def success(cls, detail: Optional[str] = None,
                hint: Optional[NextActionHint] = None) -> "ActionOutcome":
        return cls(True, Classification.SUCCESS, detail, hint)

    @classmethod
    def failure(cls, classification: Classification, detail: Optional[str] = None,
                hint: Optional[NextActionHint] = None) -> "ActionOutcome":
        return cls(False, classification, detail, hint)

    @property
    def label(self) -> str:
        if self.next_action_hint:
            return f"{self.classification.value} ({self.next_action_hint.reason})"
        return self.classification.value
