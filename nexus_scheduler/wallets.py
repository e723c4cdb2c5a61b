"""
Wallet discovery.

Wallets are Foundry keystore files. The keystore name is what the signer
passes to ``--account``; the password is the credential reference.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from eth_account import Account
from web3 import Web3

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WalletIdentity:
    name: str
    credential_ref: str
    address: Optional[str] = None

    def __repr__(self) -> str:
        # keep passwords out of logs and tracebacks
        return f"WalletIdentity(name={self.name!r}, address={self.address!r})"


class KeystoreDirectory:
    """Enumerates the keystores in a directory."""

    def __init__(self, path):
        self.path = Path(path)
        self._addresses: dict[str, str] = {}

    def keystore_names(self) -> list[str]:
        if not self.path.is_dir():
            logger.warning("Keystore directory not found: %s", self.path)
            return []
        names = sorted(
            f.name for f in self.path.iterdir()
            if f.is_file() and not f.name.startswith(".")
        )
        logger.info("Auto-discovered %d keystore(s): %s", len(names), ", ".join(names))
        return names

    def list_wallets(self, password: str) -> list[WalletIdentity]:
        """Every keystore as a wallet, all unlocked with the same password."""
        return [
            WalletIdentity(name=name, credential_ref=password,
                           address=self._address_from_file(name))
            for name in self.keystore_names()
        ]

    def _address_from_file(self, name: str) -> Optional[str]:
        if name in self._addresses:
            return self._addresses[name]
        try:
            with open(self.path / name) as f:
                raw = json.load(f).get("address")
        except (OSError, ValueError, AttributeError):
            return None
        if not raw:
            return None
        address = Web3.to_checksum_address(raw if raw.startswith("0x") else f"0x{raw}")
        self._addresses[name] = address
        return address

    async def resolve_address(self, wallet: WalletIdentity) -> Optional[str]:
        """
        Address of a wallet.

        Keystores that do not carry a plaintext address are decrypted, which
        runs scrypt and is slow, so it happens off the event loop and the
        result is cached.
        """
        if wallet.address:
            return wallet.address
        if wallet.name in self._addresses:
            return self._addresses[wallet.name]
        try:
            address = await asyncio.to_thread(self._decrypt_address, wallet)
        except (OSError, ValueError) as e:
            logger.error("Failed to get address for %s: %s", wallet.name, str(e)[:80])
            return None
        self._addresses[wallet.name] = address
        return address

    def _decrypt_address(self, wallet: WalletIdentity) -> str:
        with open(self.path / wallet.name) as f:
            keystore = json.load(f)
        key = Account.decrypt(keystore, wallet.credential_ref)
        return Account.from_key(key).address
