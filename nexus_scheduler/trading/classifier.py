"""
Text classification of signer output.

The signing tool reports game-state blockers as free text, sometimes with a
zero exit status. Rules are ordered: the first matching rule wins. Rule sets
carry a version so a changed message format can ship as a new rule file
instead of a code change.
"""

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from nexus_scheduler.trading.outcomes import Classification


@dataclass(frozen=True)
class ClassificationRule:
    classification: Classification
    patterns: tuple  # case-insensitive regular expressions

    def matches(self, text: str) -> bool:
        return any(re.search(p, text, re.IGNORECASE) for p in self.patterns)


DEFAULT_FAILURE_RULES = (
    ClassificationRule(Classification.JAILED, ("jail",)),
    ClassificationRule(Classification.COOLDOWN, ("cooldown", r"cannot \w+ yet")),
    ClassificationRule(Classification.NOT_ACTIVE, ("not active",)),
    ClassificationRule(Classification.REVERTED, ("revert",)),
    ClassificationRule(
        Classification.TRANSIENT_NETWORK,
        ("-32000", "internal_error", "failed to send transaction"),
    ),
)

# Scanned on exit status 0: the call went through but the game refused it.
DEFAULT_OUTPUT_RULES = (
    ClassificationRule(Classification.JAILED, ("jail",)),
    ClassificationRule(Classification.COOLDOWN, ("cooldown",)),
)


@dataclass(frozen=True)
class RuleSet:
    version: str = "1"
    failure_rules: tuple = DEFAULT_FAILURE_RULES
    output_rules: tuple = DEFAULT_OUTPUT_RULES

    @classmethod
    def from_dict(cls, data: dict) -> "RuleSet":
        """
        Build a rule set from its JSON form:

            {"version": "2",
             "failure": [{"classification": "jail", "patterns": ["jail"]}, ...],
             "output": [...]}

        Classification names are the enum values (``jail``, ``cooldown``,
        ``rpc`` ...). A missing section keeps the built-in rules.
        """
        def parse(entries):
            return tuple(
                ClassificationRule(Classification(e["classification"]), tuple(e["patterns"]))
                for e in entries
            )

        return cls(
            version=str(data.get("version", "1")),
            failure_rules=parse(data["failure"]) if "failure" in data else DEFAULT_FAILURE_RULES,
            output_rules=parse(data["output"]) if "output" in data else DEFAULT_OUTPUT_RULES,
        )

    @classmethod
    def load(cls, path: Union[str, Path]) -> "RuleSet":
        with open(path) as f:
            return cls.from_dict(json.load(f))


class OutcomeClassifier:
    """Maps raw tool text to a Classification."""

    def __init__(self, rules: Optional[RuleSet] = None):
        self.rules = rules or RuleSet()

    @property
    def version(self) -> str:
        return self.rules.version

    def classify_failure(self, text: str) -> Classification:
        """Classify the text of a failed submission. Never returns SUCCESS."""
        for rule in self.rules.failure_rules:
            if rule.matches(text or ""):
                return rule.classification
        return Classification.UNKNOWN_ERROR

    def classify_output(self, stdout: str, stderr: str = "") -> Classification:
        """Classify the output of a submission that exited cleanly."""
        text = f"{stdout or ''}\n{stderr or ''}"
        for rule in self.rules.output_rules:
            if rule.matches(text):
                return rule.classification
        return Classification.SUCCESS
