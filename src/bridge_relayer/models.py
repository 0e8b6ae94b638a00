"""Data models for the Bridge Relayer.

Each event kind the relayer consumes has its own immutable dataclass. Raw
logs are decoded explicitly against the expected argument schema; logs that
do not fit are rejected with EventDecodeError instead of being passed on as
loosely shaped dictionaries.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

from web3 import Web3

from .exceptions import EventDecodeError


class EventKind(Enum):
    """Event kinds relayed across the bridge, valued by their ABI event name."""
    LOCKED = "Locked"
    BURNED = "Burned"
    PROPOSAL_PASSED = "ProposalPassed"


@dataclass(frozen=True, slots=True)
class BridgeEvent:
    """Fields shared by every decoded bridge event.

    Attributes:
        source_chain_id: Chain ID where the event was emitted
        block_number: Block number where the event was emitted
        log_index: Index of the log entry in the block
        transaction_hash: Hash of the emitting transaction (0x-prefixed)
    """

    source_chain_id: int
    block_number: int
    log_index: int
    transaction_hash: str

    kind: ClassVar[EventKind]

    @property
    def position(self) -> tuple[int, int]:
        """Emission order within the chain."""
        return (self.block_number, self.log_index)

    @property
    def relay_key(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class TokenTransferEvent(BridgeEvent):
    """Lock or burn of bridged tokens, identified by a per-contract nonce."""

    user: str
    amount: int
    nonce: int

    KEY_PREFIX: ClassVar[str] = ""

    @property
    def relay_key(self) -> str:
        return f"{self.KEY_PREFIX}-{self.nonce}"

    def __str__(self) -> str:
        return (
            f"{self.kind.value}(user={self.user}, amount={self.amount}, "
            f"nonce={self.nonce}, block={self.block_number})"
        )


@dataclass(frozen=True, slots=True)
class LockedEvent(TokenTransferEvent):
    """Tokens locked on chain A, to be minted on chain B."""

    kind: ClassVar[EventKind] = EventKind.LOCKED
    KEY_PREFIX: ClassVar[str] = "LOCK"


@dataclass(frozen=True, slots=True)
class BurnedEvent(TokenTransferEvent):
    """Wrapped tokens burned on chain B, to be unlocked on chain A."""

    kind: ClassVar[EventKind] = EventKind.BURNED
    KEY_PREFIX: ClassVar[str] = "BURN"


@dataclass(frozen=True, slots=True)
class ProposalPassedEvent(BridgeEvent):
    """Governance proposal passed on chain B.

    The payload is kept as opaque bytes; every passed proposal results in an
    emergency pause of the bridge.
    """

    proposal_id: int
    data: bytes

    kind: ClassVar[EventKind] = EventKind.PROPOSAL_PASSED

    @property
    def relay_key(self) -> str:
        return f"GOV-{self.proposal_id}"

    def __str__(self) -> str:
        return (
            f"ProposalPassed(id={self.proposal_id}, "
            f"data={len(self.data)} bytes, block={self.block_number})"
        )


RelayEvent = LockedEvent | BurnedEvent | ProposalPassedEvent


def decode_event(kind: EventKind, log: Mapping[str, Any], source_chain_id: int) -> RelayEvent:
    """Decode a web3 event log into the dataclass for its kind.

    Args:
        kind: Expected event kind of the log
        log: EventData returned by ``contract.events.<Event>.get_logs``
        source_chain_id: Chain ID of the chain the log was fetched from

    Returns:
        LockedEvent, BurnedEvent or ProposalPassedEvent

    Raises:
        EventDecodeError: If the log does not match the expected schema
    """
    args = log.get('args')
    if not isinstance(args, Mapping):
        raise EventDecodeError(f"{kind.value} log has no decoded args")

    common = {
        "source_chain_id": source_chain_id,
        "block_number": _uint(log, 'blockNumber', kind),
        "log_index": _uint(log, 'logIndex', kind),
        "transaction_hash": _hex(log.get('transactionHash'), kind),
    }

    match kind:
        case EventKind.LOCKED | EventKind.BURNED:
            user = args.get('user')
            if not isinstance(user, str) or not Web3.is_address(user):
                raise EventDecodeError(f"{kind.value} log has invalid user: {user!r}")
            event_cls = LockedEvent if kind is EventKind.LOCKED else BurnedEvent
            return event_cls(
                **common,
                user=Web3.to_checksum_address(user),
                amount=_uint(args, 'amount', kind),
                nonce=_uint(args, 'nonce', kind),
            )
        case EventKind.PROPOSAL_PASSED:
            if 'data' not in args:
                raise EventDecodeError("ProposalPassed log has no data")
            data = args['data']
            if not isinstance(data, (bytes, bytearray)):
                raise EventDecodeError(f"ProposalPassed log has invalid data: {type(data).__name__}")
            return ProposalPassedEvent(
                **common,
                proposal_id=_uint(args, 'proposalId', kind),
                data=bytes(data),
            )
        case _:
            raise EventDecodeError(f"Unsupported event kind: {kind}")


def _uint(source: Mapping[str, Any], name: str, kind: EventKind) -> int:
    value = source.get(name)
    # bool is an int subclass and never a valid uint here
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise EventDecodeError(f"{kind.value} log has invalid {name}: {value!r}")
    return value


def _hex(value: Any, kind: EventKind) -> str:
    match value:
        case bytes() | bytearray():
            return Web3.to_hex(value)
        case str() if value:
            return value
        case _:
            raise EventDecodeError(f"{kind.value} log has invalid transactionHash: {value!r}")
