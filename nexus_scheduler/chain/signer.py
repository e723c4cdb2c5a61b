"""
Signing provider.

The scheduler core only needs "sign and broadcast this action for this
wallet, tell me what happened". ForgeSigner does that by running a Foundry
script with the wallet's keystore account.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Optional, Protocol

from nexus_scheduler.config import ChainConfig, SignerConfig
from nexus_scheduler.wallets import WalletIdentity

logger = logging.getLogger(__name__)


class SignerError(Exception):
    """The signing tool could not be run or did not finish."""


@dataclass(frozen=True)
class SignRequest:
    script: str  # e.g. "script/PLSCrime.s.sol:PLSCrime"
    cwd: str
    sig: Optional[str] = None  # e.g. "run(uint8)"
    args: tuple = ()
    gas_price_wei: Optional[int] = None


@dataclass
class SignerResult:
    stdout: str
    stderr: str
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def text(self) -> str:
        return f"{self.stdout}\n{self.stderr}".strip()


class Signer(Protocol):
    async def submit(self, wallet: WalletIdentity, chain: ChainConfig,
                     request: SignRequest) -> SignerResult: ...


class ForgeSigner:
    """Runs ``forge script --broadcast`` as a subprocess."""

    def __init__(self, config: SignerConfig):
        self.config = config

    def _forge(self) -> str:
        candidate = os.path.join(self.config.foundry_bin, "forge")
        return candidate if os.path.exists(candidate) else "forge"

    def build_argv(self, wallet: WalletIdentity, chain: ChainConfig,
                   request: SignRequest) -> list[str]:
        argv = [
            self._forge(), "script", request.script,
            "--rpc-url", chain.rpc_url,
            "--broadcast",
            "--account", wallet.name,
            "--password", wallet.credential_ref,
        ]
        if request.gas_price_wei:
            argv += ["--with-gas-price", str(request.gas_price_wei)]
        if request.sig:
            argv += ["--sig", request.sig, *(str(a) for a in request.args)]
        return argv

    async def submit(self, wallet: WalletIdentity, chain: ChainConfig,
                     request: SignRequest) -> SignerResult:
        argv = self.build_argv(wallet, chain, request)
        logger.debug("[%s:%s] forge script %s %s", chain.name, wallet.name,
                     request.script, " ".join(str(a) for a in request.args))
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=request.cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SignerError(f"could not start forge: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self.config.timeout_seconds
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise SignerError(
                f"forge script timed out after {self.config.timeout_seconds:.0f}s"
            ) from None

        return SignerResult(
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
            returncode=proc.returncode,
        )
