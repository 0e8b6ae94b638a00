import asyncio
import json
import logging
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import HTTPProvider, LegacyWebSocketProvider, Web3
from web3.contract import Contract
from web3.middleware import SignAndSendRawMiddlewareBuilder
from web3.types import EventData, HexBytes, TxReceipt

from ..config import ChainConfig
from ..exceptions import TransactionFailedError

logger = logging.getLogger(__name__)


class ChainClient:
    """
    Access to one bridged chain: liveness, head, logs and transactions.

    Blocking web3 calls are run in a worker thread so that the two chains
    can be watched from the same event loop without stalling each other.
    """

    def __init__(self, chain: ChainConfig, secret: str = "", w3: Web3 | None = None):
        """
        Initialize the ChainClient.

        Args:
            chain: Chain configuration (endpoint and deployment record)
            secret: Private key used to sign transactions (optional for read-only use)
            w3: Pre-built Web3 instance, used instead of connecting to chain.rpc_url
        """
        self.name = chain.name
        self.chain_id = chain.chain_id
        self.deployment = chain.deployment
        self.rpc_url = chain.rpc_url
        self.w3 = w3 if w3 is not None else self.setup_web3_middleware(chain.rpc_url, secret)
        self._contracts: dict[str, Contract] = {}

    @staticmethod
    def setup_web3_middleware(rpc_url: str, secret: str) -> Web3:
        provider = (
            LegacyWebSocketProvider(rpc_url)
            if rpc_url.startswith(("ws:", "wss:"))
            else HTTPProvider(rpc_url)
        )
        w3 = Web3(provider)
        if secret:
            account: LocalAccount = Account.from_key(secret)
            w3.middleware_onion.add(SignAndSendRawMiddlewareBuilder.build(account))
            w3.eth.default_account = account.address
        return w3

    @staticmethod
    def get_contract_abi(contract_name: str) -> list:
        """Fetches ABI of the given contract from the contracts folder"""
        contract_path = (
            Path(__file__).parent.parent / "contracts" / f"{contract_name}.json"
        ).resolve()

        with contract_path.open() as file:
            contract_data = json.load(file)

        return contract_data["abi"]

    def contract(self, contract_name: str) -> Contract:
        """Contract instance for a deployed contract on this chain."""
        if contract_name not in self._contracts:
            self._contracts[contract_name] = self.w3.eth.contract(
                address=self.deployment.address_of(contract_name),
                abi=self.get_contract_abi(contract_name),
            )
        return self._contracts[contract_name]

    async def get_chain_id(self) -> int:
        """Basic liveness query: the chain ID reported by the endpoint."""
        return await asyncio.to_thread(lambda: self.w3.eth.chain_id)

    async def get_block_number(self) -> int:
        return await asyncio.to_thread(lambda: self.w3.eth.block_number)

    async def get_logs(
        self,
        contract_name: str,
        event_name: str,
        from_block: int,
        to_block: int
    ) -> list[EventData]:
        """
        Fetch decoded logs of one event in an inclusive block range.

        Args:
            contract_name: Deployed contract emitting the event
            event_name: ABI name of the event
            from_block: First block of the range
            to_block: Last block of the range

        Returns:
            Decoded event logs as returned by web3
        """
        contract = self.contract(contract_name)
        if not hasattr(contract.events, event_name):
            raise ValueError(f"Event {event_name} not found in {contract_name} ABI")
        event_obj = getattr(contract.events, event_name)
        logs = await asyncio.to_thread(
            event_obj.get_logs, from_block=from_block, to_block=to_block
        )
        return list(logs)

    async def send_transaction(self, contract_name: str, function_name: str, *args: Any) -> HexBytes:
        """
        Submit a state-changing contract call signed by the relayer account.

        Returns:
            Transaction hash

        Raises:
            ContractLogicError: If the node rejects the call (revert on estimation)
        """
        function = getattr(self.contract(contract_name).functions, function_name)
        tx_hash = await asyncio.to_thread(
            function(*args).transact,
            {'from': self.w3.eth.default_account}
        )
        logger.debug(f"[{self.name}] {contract_name}.{function_name} sent: {Web3.to_hex(tx_hash)}")
        return tx_hash

    async def wait_for_confirmation(self, tx_hash: HexBytes) -> TxReceipt:
        """
        Wait until the transaction is mined in a block.

        Raises:
            TransactionFailedError: If the transaction was mined but reverted
        """
        receipt: TxReceipt = await asyncio.to_thread(
            self.w3.eth.wait_for_transaction_receipt, tx_hash
        )
        if (status := receipt.get('status', 0)) != 1:
            raise TransactionFailedError(Web3.to_hex(tx_hash), f"status={status}")
        return receipt

    async def watch_heads(self, interval: float, stop_event: asyncio.Event) -> AsyncIterator[int]:
        """
        Yield each new chain head, polling every `interval` seconds.

        A failed poll is logged and retried on the next tick. The generator
        returns once `stop_event` is set.

        Args:
            interval: Seconds between polls
            stop_event: Set to end the stream
        """
        last_head: int | None = None
        while not stop_event.is_set():
            try:
                head = await self.get_block_number()
            except Exception as e:
                logger.warning(f"[{self.name}] Error polling block number: {e}")
            else:
                if last_head is None or head > last_head:
                    last_head = head
                    yield head

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    def get_status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "chain_id": self.chain_id,
            "rpc_url": self.rpc_url,
            "contracts": dict(self.deployment.addresses),
        }
