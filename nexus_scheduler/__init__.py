"""
Nexus - keeps a fleet of game wallets busy on PulseChain and BNB Chain.

Every (wallet, chain, action) tuple gets its own timer. Crimes, car thefts,
kill skill training and travel fire on their in-game cooldowns, and no two
transactions for the same wallet on the same chain are ever in flight at once.
"""

__version__ = "0.1.0"
