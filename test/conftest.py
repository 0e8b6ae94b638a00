"""Shared fixtures and an in-memory chain double for the relayer tests."""

import asyncio
from collections import defaultdict
from typing import Any

import pytest
from web3 import Web3
from web3.types import HexBytes

from bridge_relayer.config import ChainConfig, ChainDeployment, MonitoringConfig, RelayerConfig
from bridge_relayer.exceptions import TransactionFailedError
from bridge_relayer.ledger import IdempotencyLedger

CHAIN_A_ID = 31337
CHAIN_B_ID = 31338

USER = "0x" + "aa" * 20
PRIVATE_KEY = "0x" + "11" * 32

CHAIN_A_CONTRACTS = {
    "BridgeLock": "0x5FbDB2315678afecb367f032d93F642f64180aa3",
    "GovernanceEmergency": "0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512",
}
CHAIN_B_CONTRACTS = {
    "BridgeMint": "0x9fE46736679d2D9a65F0992F2272dE9f3c7fa6e0",
    "GovernanceVoting": "0xCf7Ed3AccA5a467e9e704C703E8D87F634fB0Fc9",
}


def make_log(block_number: int, log_index: int = 0, **args: Any) -> dict[str, Any]:
    """Build an EventData-shaped log."""
    return {
        'args': args,
        'blockNumber': block_number,
        'logIndex': log_index,
        'transactionHash': HexBytes(Web3.keccak(text=f"tx-{block_number}-{log_index}")),
        'address': '0x0000000000000000000000000000000000000000',
    }


class FakeChainClient:
    """In-memory stand-in for ChainClient."""

    def __init__(self, name: str, chain_id: int, head: int = 0):
        self.name = name
        self.chain_id = chain_id
        self.head = head

        self.logs: dict[tuple[str, str], list[dict[str, Any]]] = defaultdict(list)
        self.log_queries: list[tuple[str, str, int, int]] = []
        self.sent: list[tuple[str, str, tuple[Any, ...]]] = []

        # Failure injection
        self.chain_id_failures = 0
        self.log_failures = 0
        self.send_error: Exception | None = None
        self.receipt_status = 1

        self.probe_calls = 0
        self.head_sequence: list[int] = []
        self.sent_when_watch_started: int | None = None

    def add_log(self, contract_name: str, event_name: str, log: dict[str, Any]) -> None:
        self.logs[(contract_name, event_name)].append(log)

    async def get_chain_id(self) -> int:
        self.probe_calls += 1
        if self.chain_id_failures > 0:
            self.chain_id_failures -= 1
            raise ConnectionError(f"{self.name} connection refused")
        return self.chain_id

    async def get_block_number(self) -> int:
        return self.head

    async def get_logs(self, contract_name: str, event_name: str, from_block: int, to_block: int):
        self.log_queries.append((contract_name, event_name, from_block, to_block))
        if self.log_failures > 0:
            self.log_failures -= 1
            raise TimeoutError("eth_getLogs timed out")
        return [
            log for log in self.logs[(contract_name, event_name)]
            if from_block <= log['blockNumber'] <= to_block
        ]

    async def send_transaction(self, contract_name: str, function_name: str, *args: Any) -> HexBytes:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((contract_name, function_name, args))
        return HexBytes(Web3.keccak(text=f"{self.name}-{len(self.sent)}"))

    async def wait_for_confirmation(self, tx_hash: HexBytes) -> dict[str, Any]:
        if self.receipt_status != 1:
            raise TransactionFailedError(Web3.to_hex(tx_hash), f"status={self.receipt_status}")
        return {'status': 1, 'blockNumber': self.head + 1, 'transactionHash': tx_hash}

    async def watch_heads(self, interval: float, stop_event: asyncio.Event):
        if self.sent_when_watch_started is None:
            self.sent_when_watch_started = len(self.sent)
        for head in self.head_sequence:
            if stop_event.is_set():
                return
            self.head = head
            yield head
            await asyncio.sleep(0)
        await stop_event.wait()


@pytest.fixture
def chain_a():
    return FakeChainClient("chain-a", CHAIN_A_ID)


@pytest.fixture
def chain_b():
    return FakeChainClient("chain-b", CHAIN_B_ID)


@pytest.fixture
def ledger(tmp_path):
    ledger = IdempotencyLedger(str(tmp_path / "data" / "processed_nonces.db"))
    yield ledger
    ledger.close()


@pytest.fixture
def relayer_config(tmp_path):
    """RelayerConfig with fast timings for lifecycle tests."""
    return RelayerConfig(
        chain_a=ChainConfig(
            name="chain-a",
            rpc_url="http://127.0.0.1:8545",
            deployment=ChainDeployment(chain_id=CHAIN_A_ID, addresses=dict(CHAIN_A_CONTRACTS)),
        ),
        chain_b=ChainConfig(
            name="chain-b",
            rpc_url="http://127.0.0.1:9545",
            deployment=ChainDeployment(chain_id=CHAIN_B_ID, addresses=dict(CHAIN_B_CONTRACTS)),
        ),
        private_key=PRIVATE_KEY,
        db_path=str(tmp_path / "data" / "processed_nonces.db"),
        monitoring=MonitoringConfig(
            confirmation_depth=3,
            polling_interval=0.01,
            readiness_max_retries=2,
            readiness_interval=0,
            restart_delay=0.01,
        ),
    )
