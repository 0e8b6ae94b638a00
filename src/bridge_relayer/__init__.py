"""
Bridge Relayer package.

Relays lock, burn and governance events between two EVM chains with
confirmation gating and a persistent idempotency ledger.
"""

from .config import RelayerConfig
from .dispatcher import ActionDispatcher
from .ledger import IdempotencyLedger
from .models import BurnedEvent, EventKind, LockedEvent, ProposalPassedEvent
from .relayer import BridgeRelayer
from .scanner import ChainScanner

__all__ = [
    "RelayerConfig",
    "BridgeRelayer",
    "ActionDispatcher",
    "IdempotencyLedger",
    "ChainScanner",
    "EventKind",
    "LockedEvent",
    "BurnedEvent",
    "ProposalPassedEvent",
]
__version__ = "0.1.0"
