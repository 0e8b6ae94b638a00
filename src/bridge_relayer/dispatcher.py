"""
Cross-chain action dispatcher.

This module turns decoded bridge events into state-changing calls on the
opposite chain, using the idempotency ledger to make sure each source event
is acted upon at most once.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from web3 import Web3
from web3.types import HexBytes, TxReceipt

from .ledger import IDEMPOTENT_SETTLEMENT, IdempotencyLedger
from .models import BurnedEvent, LockedEvent, ProposalPassedEvent, RelayEvent

if TYPE_CHECKING:
    from .utils.chain_client import ChainClient

logger = logging.getLogger(__name__)


class ActionDispatcher:
    """
    Relays bridge events to the destination chain.

    Ledger reads and writes run in a worker thread, as the chain calls do.
    """

    # Revert reason of the bridge contracts' own replay guard
    ALREADY_PROCESSED_REASON: str = "Nonce already processed"

    def __init__(self, ledger: IdempotencyLedger, chain_a: "ChainClient", chain_b: "ChainClient") -> None:
        """Initialize the dispatcher.

        Args:
            ledger: Idempotency ledger shared by all handlers
            chain_a: Client for the chain holding BridgeLock and GovernanceEmergency
            chain_b: Client for the chain holding BridgeMint and GovernanceVoting
        """
        self.ledger = ledger
        self.chain_a = chain_a
        self.chain_b = chain_b

        # Metrics tracking
        self.relayed = 0
        self.idempotent = 0
        self.skipped = 0
        self.failed = 0

    async def handle(self, event: RelayEvent) -> None:
        """
        Relay one event unless the ledger already records it.

        Args:
            event: Decoded bridge event

        Raises:
            SQLAlchemyError: If the ledger cannot be read or written
        """
        match event:
            case LockedEvent(user=user, amount=amount, nonce=nonce):
                await self._relay(event, self.chain_b, "BridgeMint", "mintWrapped", user, amount, nonce)
            case BurnedEvent(user=user, amount=amount, nonce=nonce):
                await self._relay(event, self.chain_a, "BridgeLock", "unlock", user, amount, nonce)
            case ProposalPassedEvent():
                # Proposal payload is not interpreted: every passed proposal pauses the bridge
                await self._relay(event, self.chain_a, "GovernanceEmergency", "pauseBridge")
            case _:
                logger.warning(f"No handler for event {event!r}")

    async def _relay(
        self,
        event: RelayEvent,
        destination: "ChainClient",
        contract_name: str,
        function_name: str,
        *args: Any
    ) -> None:
        chain_id = event.source_chain_id
        relay_key = event.relay_key

        logger.info(f"[{event.kind.value}] {event}")

        if await asyncio.to_thread(self.ledger.has_processed, chain_id, relay_key):
            self.skipped += 1
            logger.info(f"  -> {relay_key} already processed")
            return

        try:
            logger.info(f"  -> Calling {contract_name}.{function_name} on {destination.name}...")
            tx_hash: HexBytes = await destination.send_transaction(contract_name, function_name, *args)
            tx_hex = Web3.to_hex(tx_hash)
            logger.info(f"  -> {function_name} tx sent: {tx_hex}")

            receipt: TxReceipt = await destination.wait_for_confirmation(tx_hash)
            logger.info(f"  -> {function_name} confirmed in block {receipt.get('blockNumber')}")
        except Exception as e:
            if self.ALREADY_PROCESSED_REASON in str(e):
                logger.info(
                    f"  -> {contract_name}: nonce already processed (idempotent), marking {relay_key} in ledger"
                )
                await asyncio.to_thread(
                    self.ledger.mark_processed, chain_id, relay_key, IDEMPOTENT_SETTLEMENT
                )
                self.idempotent += 1
            else:
                self.failed += 1
                logger.error(f"  -> Error calling {function_name} for {relay_key}: {e}")
            return

        await asyncio.to_thread(self.ledger.mark_processed, chain_id, relay_key, tx_hex)
        self.relayed += 1

    def get_stats(self) -> dict[str, int]:
        """
        Get current dispatcher statistics.

        Returns:
            Dictionary with event counters
        """
        return {
            'relayed': self.relayed,
            'idempotent': self.idempotent,
            'skipped': self.skipped,
            'failed': self.failed
        }
