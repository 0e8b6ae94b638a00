"""
Bridge Relayer implementation.

This module contains the main relayer service: it waits for both chains,
drains the confirmed backlog, then tails new blocks on both chains and
hands every discovered event to the dispatcher.
"""

import asyncio
import logging

from .config import RelayerConfig
from .dispatcher import ActionDispatcher
from .exceptions import ChainNotReadyError
from .ledger import IdempotencyLedger
from .models import EventKind
from .readiness import ChainReadinessProber
from .scanner import ChainScanner, EventSubscription
from .utils.chain_client import ChainClient

logger = logging.getLogger(__name__)


class BridgeRelayer:
    """
    Relayer context: owns the chain clients, the ledger, the per-chain
    scanners and the dispatcher, and drives their lifecycle.

    Only one instance may run against the same signing key at a time; two
    instances could both submit an action before either records it.
    """

    def __init__(
        self,
        config: RelayerConfig,
        chain_a: ChainClient | None = None,
        chain_b: ChainClient | None = None,
        ledger: IdempotencyLedger | None = None
    ):
        """
        Initialize the Bridge Relayer.

        Args:
            config: Relayer configuration
            chain_a: Client for chain A (built from config when omitted)
            chain_b: Client for chain B (built from config when omitted)
            ledger: Idempotency ledger (opened at config.db_path when omitted)
        """
        self.config = config
        self.running = False

        self.chain_a = chain_a or ChainClient(config.chain_a, secret=config.private_key)
        self.chain_b = chain_b or ChainClient(config.chain_b, secret=config.private_key)
        self.ledger = ledger or IdempotencyLedger(config.db_path)

        monitoring = config.monitoring
        self.prober = ChainReadinessProber(
            max_retries=monitoring.readiness_max_retries,
            interval=monitoring.readiness_interval
        )
        self.dispatcher = ActionDispatcher(self.ledger, self.chain_a, self.chain_b)

        self.scanner_a = ChainScanner(
            client=self.chain_a,
            subscriptions=[EventSubscription("BridgeLock", EventKind.LOCKED)],
            confirmation_depth=monitoring.confirmation_depth,
            start_block=config.chain_a.start_block
        )
        self.scanner_b = ChainScanner(
            client=self.chain_b,
            subscriptions=[
                EventSubscription("BridgeMint", EventKind.BURNED),
                EventSubscription("GovernanceVoting", EventKind.PROPOSAL_PASSED),
            ],
            confirmation_depth=monitoring.confirmation_depth,
            start_block=config.chain_b.start_block
        )

        # Async coordination
        self.shutdown_event = asyncio.Event()

    @classmethod
    def from_env(cls) -> "BridgeRelayer":
        """
        Create a BridgeRelayer instance from environment variables.

        Raises:
            ValueError: If required environment variables are missing
        """
        config = RelayerConfig.from_env()
        config.log_config()
        return cls(config)

    async def _wait_for_shutdown(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds; True if shutdown was requested meanwhile."""
        try:
            await asyncio.wait_for(self.shutdown_event.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def start(self) -> bool:
        """
        Wait for both chains, then run recovery.

        A failed readiness probe restarts the sequence after the configured
        restart delay instead of giving up.

        Returns:
            True once recovery has run, False if shutdown was requested first
        """
        while not self.shutdown_event.is_set():
            try:
                reported = await self.prober.wait_for_chains(
                    [self.chain_a, self.chain_b], stop_event=self.shutdown_event
                )
            except ChainNotReadyError as e:
                if self.shutdown_event.is_set():
                    return False
                delay = self.config.monitoring.restart_delay
                logger.error(f"Error starting relayer: {e}. Restarting in {delay}s")
                if await self._wait_for_shutdown(delay):
                    return False
                continue

            for client in (self.chain_a, self.chain_b):
                if reported.get(client.name) != client.chain_id:
                    logger.warning(
                        f"{client.name} reports chain id {reported.get(client.name)}, "
                        f"deployment record says {client.chain_id}"
                    )

            await self.recover()
            return True
        return False

    async def recover(self) -> None:
        """Scan the confirmed backlog of both chains before live tailing."""
        logger.info("Recovering: scanning for missed events...")
        results = await asyncio.gather(
            self.scanner_a.recover(self.dispatcher.handle),
            self.scanner_b.recover(self.dispatcher.handle)
        )
        if all(results):
            logger.info("Recovery complete.")
        else:
            logger.warning("Recovery incomplete, live tail will retry the remaining ranges")

    async def _tail_chain(self, client: ChainClient, scanner: ChainScanner) -> None:
        """Advance a chain's scanner on every new head until shutdown."""
        async for head in client.watch_heads(self.config.monitoring.polling_interval, self.shutdown_event):
            await scanner.advance(head, self.dispatcher.handle)

    async def _periodic_status_logger(self) -> None:
        """Log status periodically while running."""
        while self.running:
            if await self._wait_for_shutdown(self.config.monitoring.status_interval):
                return
            stats = self.dispatcher.get_stats()
            logger.info(
                f"Status: {stats['relayed']} relayed, {stats['idempotent']} idempotent, "
                f"{stats['skipped']} skipped, {stats['failed']} failed; "
                f"{self.chain_a.name} at block {self.scanner_a.last_scanned_block}, "
                f"{self.chain_b.name} at block {self.scanner_b.last_scanned_block}"
            )

    async def _check_task_health(self, tasks: dict[str, asyncio.Task]) -> bool:
        """Check if any critical task has failed."""
        for name, task in tasks.items():
            if task.done() and name != "status":  # status task can end normally
                try:
                    await task
                except Exception as e:
                    logger.error(f"{name} task failed: {e}", exc_info=True)
                return False
        return True

    async def _cleanup_tasks(self, tasks: dict[str, asyncio.Task]) -> None:
        """Cancel all running tasks."""
        for task in tasks.values():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass  # Expected when cancelling

    async def _watch(self) -> None:
        """Tail both chains until shutdown or a critical task failure."""
        tasks: dict[str, asyncio.Task] = {}
        try:
            tasks = {
                self.chain_a.name: asyncio.create_task(self._tail_chain(self.chain_a, self.scanner_a)),
                self.chain_b.name: asyncio.create_task(self._tail_chain(self.chain_b, self.scanner_b)),
                "status": asyncio.create_task(self._periodic_status_logger())
            }

            logger.info(
                f"Relayer listening on {self.chain_a.name} (ChainId {self.chain_a.chain_id}) "
                f"and {self.chain_b.name} (ChainId {self.chain_b.chain_id})"
            )

            while self.running:
                if await self._wait_for_shutdown(1.0):
                    break
                if not await self._check_task_health(tasks):
                    logger.error("Critical task failure")
                    break
        finally:
            await self._cleanup_tasks(tasks)

    async def run(self) -> None:
        """Main loop for the relayer service."""
        self.running = True
        logger.info("Starting Relayer Service...")

        try:
            while self.running and not self.shutdown_event.is_set():
                if not await self.start():
                    break

                await self._watch()

                if self.running and not self.shutdown_event.is_set():
                    delay = self.config.monitoring.restart_delay
                    logger.error(f"Restarting relayer in {delay}s")
                    if await self._wait_for_shutdown(delay):
                        break
        except Exception as e:
            logger.error(f"Error in main loop: {e}", exc_info=True)
            raise
        finally:
            self.running = False
            self.ledger.close()
            logger.info("Bridge Relayer stopped")

    def stop(self) -> None:
        """Stop the relayer service."""
        logger.info("Shutting down relayer...")
        self.running = False
        self.shutdown_event.set()
