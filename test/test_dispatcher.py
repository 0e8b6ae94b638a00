"""Unit tests for the ActionDispatcher."""

import threading
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError
from web3 import Web3
from web3.exceptions import ContractLogicError

from bridge_relayer.dispatcher import ActionDispatcher
from bridge_relayer.ledger import IDEMPOTENT_SETTLEMENT
from bridge_relayer.models import EventKind, decode_event
from conftest import CHAIN_A_ID, CHAIN_B_ID, USER, make_log


def locked(nonce: int, amount: int = 10, block: int = 1, log_index: int = 0):
    return decode_event(
        EventKind.LOCKED, make_log(block, log_index, user=USER, amount=amount, nonce=nonce), CHAIN_A_ID
    )


def burned(nonce: int, amount: int = 5, block: int = 1):
    return decode_event(
        EventKind.BURNED, make_log(block, 0, user=USER, amount=amount, nonce=nonce), CHAIN_B_ID
    )


def proposal(proposal_id: int, data: bytes = b"\xde\xad"):
    return decode_event(
        EventKind.PROPOSAL_PASSED, make_log(1, 0, proposalId=proposal_id, data=data), CHAIN_B_ID
    )


@pytest.fixture
def dispatcher(ledger, chain_a, chain_b):
    return ActionDispatcher(ledger, chain_a, chain_b)


class TestActionDispatcher:
    """Test suite for ActionDispatcher class."""

    @pytest.mark.asyncio
    async def test_locked_mints_on_chain_b(self, dispatcher, ledger, chain_a, chain_b):
        await dispatcher.handle(locked(nonce=7, amount=10))

        assert chain_b.sent == [
            ("BridgeMint", "mintWrapped", (Web3.to_checksum_address(USER), 10, 7))
        ]
        assert chain_a.sent == []
        assert ledger.has_processed(CHAIN_A_ID, "LOCK-7")
        assert ledger.get_settlement_ref(CHAIN_A_ID, "LOCK-7") == Web3.to_hex(
            Web3.keccak(text="chain-b-1")
        )
        assert dispatcher.get_stats()['relayed'] == 1

    @pytest.mark.asyncio
    async def test_duplicate_delivery_submits_once(self, dispatcher, chain_b):
        event = locked(nonce=3)

        await dispatcher.handle(event)
        await dispatcher.handle(event)

        assert len(chain_b.sent) == 1
        stats = dispatcher.get_stats()
        assert stats['relayed'] == 1
        assert stats['skipped'] == 1

    @pytest.mark.asyncio
    async def test_burned_unlocks_on_chain_a(self, dispatcher, ledger, chain_a, chain_b):
        await dispatcher.handle(burned(nonce=2, amount=5))

        assert chain_a.sent == [
            ("BridgeLock", "unlock", (Web3.to_checksum_address(USER), 5, 2))
        ]
        assert chain_b.sent == []
        assert ledger.has_processed(CHAIN_B_ID, "BURN-2")

    @pytest.mark.asyncio
    async def test_proposal_pauses_bridge_regardless_of_payload(self, dispatcher, ledger, chain_a):
        await dispatcher.handle(proposal(1, data=b""))
        await dispatcher.handle(proposal(2, data=b"\x00" * 64))

        assert chain_a.sent == [
            ("GovernanceEmergency", "pauseBridge", ()),
            ("GovernanceEmergency", "pauseBridge", ()),
        ]
        assert ledger.has_processed(CHAIN_B_ID, "GOV-1")
        assert ledger.has_processed(CHAIN_B_ID, "GOV-2")

    @pytest.mark.asyncio
    async def test_lock_and_burn_with_same_nonce_are_distinct(self, dispatcher, chain_a, chain_b):
        await dispatcher.handle(locked(nonce=1))
        await dispatcher.handle(burned(nonce=1))

        assert len(chain_a.sent) == 1
        assert len(chain_b.sent) == 1

    @pytest.mark.asyncio
    async def test_already_processed_revert_is_recorded_with_sentinel(self, dispatcher, ledger, chain_b):
        chain_b.send_error = ContractLogicError("execution reverted: Nonce already processed")

        await dispatcher.handle(locked(nonce=9))

        assert ledger.get_settlement_ref(CHAIN_A_ID, "LOCK-9") == IDEMPOTENT_SETTLEMENT
        assert dispatcher.get_stats()['idempotent'] == 1
        assert dispatcher.get_stats()['failed'] == 0

        # Redelivery short-circuits at the ledger, nothing is resubmitted
        chain_b.send_error = None
        await dispatcher.handle(locked(nonce=9))
        assert chain_b.sent == []

    @pytest.mark.asyncio
    async def test_other_failure_leaves_event_unprocessed(self, dispatcher, ledger, chain_b):
        chain_b.send_error = ValueError("insufficient funds for gas * price + value")

        await dispatcher.handle(locked(nonce=4))

        assert not ledger.has_processed(CHAIN_A_ID, "LOCK-4")
        assert dispatcher.get_stats()['failed'] == 1

        # The next delivery retries and succeeds
        chain_b.send_error = None
        await dispatcher.handle(locked(nonce=4))
        assert ledger.has_processed(CHAIN_A_ID, "LOCK-4")
        assert len(chain_b.sent) == 1

    @pytest.mark.asyncio
    async def test_reverted_receipt_is_not_recorded(self, dispatcher, ledger, chain_a):
        chain_a.receipt_status = 0

        await dispatcher.handle(burned(nonce=6))

        assert len(chain_a.sent) == 1
        assert not ledger.has_processed(CHAIN_B_ID, "BURN-6")
        assert dispatcher.get_stats()['failed'] == 1

    @pytest.mark.asyncio
    async def test_ledger_read_error_propagates(self, chain_a, chain_b):
        broken_ledger = MagicMock()
        broken_ledger.has_processed.side_effect = OperationalError("SELECT", {}, Exception("disk I/O error"))
        dispatcher = ActionDispatcher(broken_ledger, chain_a, chain_b)

        with pytest.raises(OperationalError):
            await dispatcher.handle(locked(nonce=1))

        assert chain_b.sent == []

    @pytest.mark.asyncio
    async def test_ledger_write_error_propagates(self, chain_a, chain_b):
        broken_ledger = MagicMock()
        broken_ledger.has_processed.return_value = False
        broken_ledger.mark_processed.side_effect = OperationalError("INSERT", {}, Exception("disk full"))
        dispatcher = ActionDispatcher(broken_ledger, chain_a, chain_b)

        with pytest.raises(OperationalError):
            await dispatcher.handle(locked(nonce=1))

        assert dispatcher.get_stats()['relayed'] == 0

    @pytest.mark.asyncio
    async def test_ledger_calls_run_off_the_event_loop(self, ledger, chain_a, chain_b):
        loop_thread = threading.get_ident()
        ledger_threads = []

        def recording(method):
            def wrapper(*args):
                ledger_threads.append(threading.get_ident())
                return method(*args)
            return wrapper

        ledger_spy = MagicMock(wraps=ledger)
        ledger_spy.has_processed.side_effect = recording(ledger.has_processed)
        ledger_spy.mark_processed.side_effect = recording(ledger.mark_processed)
        dispatcher = ActionDispatcher(ledger_spy, chain_a, chain_b)

        await dispatcher.handle(locked(nonce=4))

        assert len(ledger_threads) == 2
        assert loop_thread not in ledger_threads
        assert ledger.has_processed(CHAIN_A_ID, "LOCK-4")
