"""
Player location lookups on the game's MAP contract.

Nick car only works in the base cities (0-5); travel needs to know where a
player starts. Both read the city through a raw eth_call.
"""

import asyncio

import aiohttp
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import Web3Exception

from nexus_scheduler.config import ChainConfig

# getPlayerCity(address)
PLAYER_CITY_SELECTOR = "0x7c5dc38a"

CITY_NAMES = {
    0: "New York", 1: "Chicago", 2: "Las Vegas",
    3: "Detroit", 4: "Los Angeles", 5: "Miami",
    6: "Atlantic City", 7: "Philadelphia", 8: "Boston",
    9: "San Francisco", 10: "Houston",
}

BASE_CITIES = frozenset(range(6))


def city_name(city_id: int) -> str:
    return CITY_NAMES.get(city_id, f"City {city_id}")


class LocationError(Exception):
    """The player's city could not be read."""


def player_city_calldata(address: str) -> str:
    padded = address.lower().replace("0x", "").rjust(64, "0")
    return f"{PLAYER_CITY_SELECTOR}{padded}"


class LocationReader:
    def __init__(self, request_timeout: float = 10.0):
        self.request_timeout = request_timeout
        self._clients: dict[str, AsyncWeb3] = {}

    def _client(self, chain: ChainConfig) -> AsyncWeb3:
        if chain.rpc_url not in self._clients:
            self._clients[chain.rpc_url] = AsyncWeb3(AsyncHTTPProvider(
                chain.rpc_url,
                request_kwargs={"timeout": aiohttp.ClientTimeout(total=self.request_timeout)},
            ))
        return self._clients[chain.rpc_url]

    async def player_city(self, address: str, chain: ChainConfig) -> int:
        """City id the player is currently in."""
        w3 = self._client(chain)
        try:
            raw = await w3.eth.call({
                "to": AsyncWeb3.to_checksum_address(chain.map_contract),
                "data": player_city_calldata(address),
            })
        except (Web3Exception, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise LocationError(f"[{chain.name}] city lookup failed for {address}: {e}") from e
        return int.from_bytes(bytes(raw), "big") if raw else 0
