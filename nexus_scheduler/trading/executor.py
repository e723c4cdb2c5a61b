"""
Action Executor - one signed attempt for one wallet on one chain.

Handles:
- The gas ceiling check before anything is signed
- The action's pre-step (city checks, auto-travel)
- Submitting through the signer
- Turning whatever came back into an ActionOutcome

Every attempt may broadcast an irreversible transaction. The executor
itself does not serialize; callers run it inside the wallet/chain lock.
"""

import logging
from typing import Awaitable, Callable, Optional

from nexus_scheduler.chain.gas_oracle import GasOracle, GasOracleError, WEI_PER_GWEI
from nexus_scheduler.chain.location import LocationReader
from nexus_scheduler.chain.signer import Signer, SignerError
from nexus_scheduler.config import ChainConfig
from nexus_scheduler.trading.actions import ActionServices, GameAction
from nexus_scheduler.trading.classifier import OutcomeClassifier
from nexus_scheduler.trading.outcomes import ActionOutcome, Classification
from nexus_scheduler.wallets import WalletIdentity

logger = logging.getLogger(__name__)


async def _no_address(wallet: WalletIdentity) -> Optional[str]:
    return wallet.address


class ActionExecutor:
    """
    Runs single action attempts.

    The oracle, signer and location reader are injected so the executor can
    be driven entirely by fakes in tests.
    """

    def __init__(self, signer: Signer, gas_oracle: GasOracle,
                 classifier: Optional[OutcomeClassifier] = None,
                 location: Optional[LocationReader] = None,
                 resolve_address: Optional[Callable[[WalletIdentity], Awaitable[Optional[str]]]] = None):
        self.signer = signer
        self.gas_oracle = gas_oracle
        self.classifier = classifier or OutcomeClassifier()
        self.services = ActionServices(
            location=location or LocationReader(),
            resolve_address=resolve_address or _no_address,
            submit=signer.submit,
        )

    async def attempt(self, wallet: WalletIdentity, chain: ChainConfig,
                      action: GameAction) -> ActionOutcome:
        tag = f"[{chain.name.upper()}:{wallet.name}]"

        gas_check = await self._check_gas(chain, tag)
        if gas_check is not None:
            return gas_check

        outcome = await action.prepare(wallet, chain, self.services)
        if outcome is None:
            outcome = await self._submit(wallet, chain, action, tag)
        outcome = action.record(outcome)

        if outcome.succeeded:
            logger.info("%s %s SUCCESS", tag, action.name)
        elif outcome.classification is Classification.UNKNOWN_ERROR:
            logger.error("%s %s FAILED: %s", tag, action.name, (outcome.detail or "")[:300])
        else:
            logger.warning("%s %s: %s", tag, action.name, outcome.label)
        return outcome

    async def _check_gas(self, chain: ChainConfig, tag: str) -> Optional[ActionOutcome]:
        """GAS_TOO_HIGH when the ceiling is exceeded; None to proceed."""
        if chain.max_gas_price_gwei <= 0:
            return None
        try:
            price = await self.gas_oracle.current_gas_price(chain)
        except GasOracleError as e:
            # unknown price does not block the attempt
            logger.warning("%s gas price unknown, proceeding with degraded confidence: %s", tag, e)
            return None

        if price > chain.max_gas_price_wei:
            gwei = price / WEI_PER_GWEI
            detail = f"Gas price too high: {gwei:.0f} gwei > {chain.max_gas_price_gwei} gwei limit"
            logger.info("%s %s - skipping", tag, detail)
            return ActionOutcome.failure(Classification.GAS_TOO_HIGH, detail)
        return None

    async def _submit(self, wallet: WalletIdentity, chain: ChainConfig,
                      action: GameAction, tag: str) -> ActionOutcome:
        request = action.build_request(wallet, chain)
        try:
            result = await self.signer.submit(wallet, chain, request)
        except SignerError as e:
            text = str(e)
            return ActionOutcome.failure(self.classifier.classify_failure(text), text)

        if result.ok:
            classification = self.classifier.classify_output(result.stdout, result.stderr)
            if classification is Classification.SUCCESS:
                return ActionOutcome.success(result.stdout[-300:] or None)
            return ActionOutcome.failure(classification, result.text[:300])

        text = result.text
        return ActionOutcome.failure(self.classifier.classify_failure(text), text)
