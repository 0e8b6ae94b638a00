"""Exception types raised by the Bridge Relayer."""


class RelayerError(Exception):
    """Base class for relayer errors."""


class ChainNotReadyError(RelayerError):
    """Raised when chain endpoints do not become ready during startup."""

    def __init__(self, chains: list[str]) -> None:
        self.chains = chains
        super().__init__(f"Chains not ready after max retries: {', '.join(chains)}")


class TransactionFailedError(RelayerError):
    """Raised when a submitted transaction is mined with a failed status."""

    def __init__(self, tx_hash: str, reason: str = "") -> None:
        self.tx_hash = tx_hash
        self.reason = reason
        message = f"Transaction {tx_hash} failed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class EventDecodeError(RelayerError):
    """Raised when a log does not match the schema of its event kind."""
