"""Confirmation-gated block range scanning for one chain."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

from web3.types import EventData

from .exceptions import EventDecodeError
from .models import EventKind, RelayEvent, decode_event

EventHandler = Callable[[RelayEvent], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class EventSubscription:
    """An event of a deployed contract that the scanner fetches."""
    contract_name: str
    kind: EventKind

    @property
    def event_name(self) -> str:
        return self.kind.value


class LogSource(Protocol):
    name: str
    chain_id: int

    async def get_block_number(self) -> int: ...

    async def get_logs(
        self, contract_name: str, event_name: str, from_block: int, to_block: int
    ) -> list[EventData]: ...


class ChainScanner:
    """
    Scans confirmed block ranges of one chain and hands decoded events to a
    handler in emission order.

    The cursor (`last_scanned_block`) only moves forward, and only after every
    log of the range was fetched and handled.
    """

    def __init__(
        self,
        client: LogSource,
        subscriptions: list[EventSubscription],
        confirmation_depth: int = 3,
        start_block: int = 0
    ):
        """
        Initialize the scanner.

        Args:
            client: Chain client used to read heads and logs
            subscriptions: Events to fetch for each range
            confirmation_depth: Blocks kept between the head and the scanned range
            start_block: First block considered by recovery
        """
        self.client = client
        self.subscriptions = subscriptions
        self.confirmation_depth = confirmation_depth
        self.start_block = start_block
        self.last_scanned_block = start_block - 1

        # Setup logging
        self.logger = logging.getLogger(f"{__name__}.{client.name}")

    def safe_head(self, head: int) -> int:
        """Highest block number considered final for the given head."""
        return head - self.confirmation_depth

    async def scan_range(self, from_block: int, to_block: int, handler: EventHandler) -> bool:
        """
        Fetch, order and dispatch all subscribed events in an inclusive range.

        Args:
            from_block: First block of the range
            to_block: Last block of the range (already confirmation-gated)
            handler: Coroutine called once per event, sequentially

        Returns:
            True if the whole range was handled, False if it must be retried
        """
        if to_block < from_block:
            return True

        events: list[RelayEvent] = []
        try:
            for subscription in self.subscriptions:
                logs = await self.client.get_logs(
                    subscription.contract_name,
                    subscription.event_name,
                    from_block,
                    to_block
                )
                for log in logs:
                    try:
                        events.append(decode_event(subscription.kind, log, self.client.chain_id))
                    except EventDecodeError as e:
                        self.logger.warning(f"Skipping undecodable {subscription.event_name} log: {e}")
        except Exception as e:
            self.logger.error(f"Error querying logs ({from_block}-{to_block}): {e}")
            return False

        events.sort(key=lambda event: event.position)

        if events:
            self.logger.info(f"Found {len(events)} events in blocks {from_block}-{to_block}")

        for event in events:
            try:
                await handler(event)
            except Exception as e:
                self.logger.error(
                    f"Handler failed for {event.relay_key} in block {event.block_number}, "
                    f"abandoning range {from_block}-{to_block}: {e}",
                    exc_info=True
                )
                return False

        return True

    async def advance(self, head: int, handler: EventHandler) -> None:
        """
        Scan newly confirmed blocks for a new chain head.

        Args:
            head: Current chain head
            handler: Coroutine called once per event
        """
        target = self.safe_head(head)
        if target <= self.last_scanned_block:
            return

        from_block = self.last_scanned_block + 1
        if await self.scan_range(from_block, target, handler):
            self.last_scanned_block = target

    async def recover(self, handler: EventHandler) -> bool:
        """
        Scan everything from the start block through the current safe head.

        On failure the cursor stays where it was, so the next live tick
        retries the whole backlog.

        Returns:
            True if the backlog was fully scanned
        """
        try:
            head = await self.client.get_block_number()
        except Exception as e:
            self.logger.error(f"Recovery could not read block number: {e}")
            return False

        target = max(self.start_block - 1, self.safe_head(head))
        self.logger.info(
            f"Recovery: current block {head}, scanning {self.start_block} up to {target}"
        )

        if not await self.scan_range(self.start_block, target, handler):
            self.logger.error("Recovery scan incomplete, will retry from live tail")
            return False

        self.last_scanned_block = max(self.last_scanned_block, target)
        return True

    def get_status(self) -> dict[str, Any]:
        """
        Get current status of the scanner.

        Returns:
            Dictionary with status information
        """
        return {
            "chain": self.client.name,
            "chain_id": self.client.chain_id,
            "last_scanned_block": self.last_scanned_block,
            "confirmation_depth": self.confirmation_depth,
            "events": [f"{s.contract_name}.{s.event_name}" for s in self.subscriptions],
        }
