"""
Startup gate that waits for both chain endpoints to answer.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

from .exceptions import ChainNotReadyError

logger = logging.getLogger(__name__)


class ProbedChain(Protocol):
    name: str

    async def get_chain_id(self) -> int: ...


@dataclass
class ProbeRound:
    """Shared state of one `wait_for_chains` call."""
    chain_count: int
    exhausted: set[str] = field(default_factory=set)
    answered: asyncio.Event = field(default_factory=asyncio.Event)
    gave_up: asyncio.Event = field(default_factory=asyncio.Event)


class ChainReadinessProber:
    """
    Retries a liveness query against each chain until it answers.

    Each chain is probed on its own retry clock. Startup only fails when every
    chain used up its retry budget without any of them answering; once one
    chain is ready, the others keep being probed past their budget.
    """

    def __init__(self, max_retries: int = 30, interval: float = 1.0):
        """
        Args:
            max_retries: Probe attempts per chain before it counts as exhausted
            interval: Seconds to wait after a failed probe
        """
        self.max_retries = max_retries
        self.interval = interval

    async def _probe(
        self,
        chain: ProbedChain,
        probe_round: ProbeRound,
        stop_event: asyncio.Event | None
    ) -> int | None:
        """
        Probe one chain until it answers, the round is given up, or shutdown.

        Returns:
            The chain ID reported by the endpoint, or None if it never answered
        """
        attempt = 0
        while not probe_round.gave_up.is_set():
            if stop_event is not None and stop_event.is_set():
                return None

            attempt += 1
            try:
                chain_id = await chain.get_chain_id()
            except Exception as e:
                logger.info(f"Waiting for {chain.name}... ({attempt}/{self.max_retries}): {e}")
                if attempt >= self.max_retries:
                    probe_round.exhausted.add(chain.name)
                    if (
                        not probe_round.answered.is_set()
                        and len(probe_round.exhausted) == probe_round.chain_count
                    ):
                        probe_round.gave_up.set()
                        return None
                    if attempt == self.max_retries:
                        logger.warning(f"{chain.name} exceeded its retry budget, still probing")
                await asyncio.sleep(self.interval)
            else:
                logger.info(f"{chain.name} (ChainId {chain_id}) is ready")
                probe_round.answered.set()
                return chain_id
        return None

    async def wait_for_chains(
        self,
        chains: list[ProbedChain],
        stop_event: asyncio.Event | None = None
    ) -> dict[str, int]:
        """
        Block until every chain answers its liveness query.

        Args:
            chains: Chains to probe concurrently
            stop_event: Ends probing early when set

        Returns:
            Mapping of chain name to the chain ID it reported

        Raises:
            ChainNotReadyError: If no chain answered before every retry budget
                was spent, or probing was stopped before all chains answered
        """
        logger.info("Waiting for chains to be ready...")
        probe_round = ProbeRound(chain_count=len(chains))
        results = await asyncio.gather(
            *(self._probe(chain, probe_round, stop_event) for chain in chains)
        )

        failed = [chain.name for chain, chain_id in zip(chains, results) if chain_id is None]
        if failed:
            raise ChainNotReadyError(failed)

        return {chain.name: chain_id for chain, chain_id in zip(chains, results)}
