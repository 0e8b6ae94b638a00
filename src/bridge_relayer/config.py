"""Configuration management for the Bridge Relayer.

This module provides type-safe configuration dataclasses with validation.
Configuration is loaded from environment variables and from the deployment
records written by the contract deployment step, with sensible defaults
where appropriate.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar
from urllib.parse import urlparse

from dotenv import load_dotenv
from web3 import Web3

# Get logger for this module
logger = logging.getLogger(__name__)


def load_environment(env_path: Path) -> bool:
    """Load variables from a .env file without overriding the process environment.

    Returns:
        True if the file existed and defined at least one variable
    """
    loaded = load_dotenv(env_path, override=False)
    if loaded:
        logger.info(f"Loaded environment from {env_path}")
    return loaded


@dataclass(frozen=True, slots=True)
class ChainDeployment:
    """Deployment record for one chain.

    Attributes:
        chain_id: Chain ID the contracts were deployed to
        addresses: Mapping of logical contract name to checksummed address
    """

    chain_id: int
    addresses: dict[str, str] = field(default_factory=dict)

    def address_of(self, contract_name: str) -> str:
        """Return the address of a deployed contract.

        Raises:
            ValueError: If the contract is not part of this deployment
        """
        try:
            return self.addresses[contract_name]
        except KeyError:
            raise ValueError(
                f"Contract {contract_name} not found in deployment for chain {self.chain_id}"
            ) from None

    @classmethod
    def from_file(cls, path: Path, required: tuple[str, ...] = ()) -> "ChainDeployment":
        """Load a deployment record from a JSON file.

        The file maps contract names to addresses and carries the chain ID
        under the ``ChainId`` key (string or integer).

        Args:
            path: Path to the deployment JSON file
            required: Contract names that must be present

        Returns:
            ChainDeployment with checksummed addresses

        Raises:
            ValueError: If the file is missing, malformed or incomplete
        """
        try:
            with path.open() as file:
                data: dict[str, Any] = json.load(file)
        except FileNotFoundError:
            raise ValueError(f"Deployment file not found: {path}") from None
        except json.JSONDecodeError as e:
            raise ValueError(f"Deployment file {path} is not valid JSON: {e}") from None

        if not isinstance(data, dict):
            raise ValueError(f"Deployment file {path} must contain a JSON object")

        raw_chain_id = data.get("ChainId")
        try:
            chain_id = int(raw_chain_id)
        except (TypeError, ValueError):
            raise ValueError(
                f"Deployment file {path} has invalid or missing ChainId: {raw_chain_id!r}"
            ) from None

        addresses: dict[str, str] = {}
        for name, value in data.items():
            if name == "ChainId" or not isinstance(value, str):
                continue
            if Web3.is_address(value):
                addresses[name] = Web3.to_checksum_address(value)

        missing = [name for name in required if name not in addresses]
        if missing:
            raise ValueError(
                f"Deployment file {path} is missing contract addresses: {', '.join(missing)}"
            )

        return cls(chain_id=chain_id, addresses=addresses)


@dataclass(frozen=True, slots=True)
class ChainConfig:
    """Configuration for one of the two bridged chains.

    Attributes:
        name: Short label used in logs ("chain-a", "chain-b")
        rpc_url: HTTP(S) or WS(S) JSON-RPC endpoint
        deployment: Contract addresses and chain ID for this chain
        start_block: First block scanned by recovery
    """

    name: str
    rpc_url: str
    deployment: ChainDeployment
    start_block: int = 0

    def __post_init__(self) -> None:
        """Validate chain configuration."""
        if not self.rpc_url:
            raise ValueError(f"RPC URL is required for {self.name}")

        parsed = urlparse(self.rpc_url)
        if parsed.scheme not in ('http', 'https', 'ws', 'wss'):
            raise ValueError(
                f"Invalid RPC URL scheme for {self.name}: {parsed.scheme}. "
                "Expected http, https, ws, or wss"
            )

        if self.start_block < 0:
            raise ValueError(f"Start block must be non-negative, got {self.start_block}")

    @property
    def chain_id(self) -> int:
        return self.deployment.chain_id


@dataclass(frozen=True, slots=True)
class MonitoringConfig:
    """Configuration for block monitoring and startup behaviour."""
    confirmation_depth: int = 3  # blocks kept between the head and the scanned range
    polling_interval: float = 2.0  # seconds between head polls
    readiness_max_retries: int = 30  # liveness probes per chain before giving up
    readiness_interval: float = 1.0  # seconds between liveness probes
    restart_delay: float = 5.0  # seconds before restarting after a failed startup
    status_interval: int = 30  # seconds between status log lines

    def __post_init__(self) -> None:
        """Validate monitoring configuration."""
        if self.confirmation_depth < 0:
            raise ValueError(f"Confirmation depth must be non-negative, got {self.confirmation_depth}")
        if self.confirmation_depth > 64:
            raise ValueError(f"Confirmation depth too high (max 64), got {self.confirmation_depth}")

        if self.polling_interval <= 0:
            raise ValueError(f"Polling interval must be positive, got {self.polling_interval}")
        if self.polling_interval > 300:
            raise ValueError(f"Polling interval too long (max 300s), got {self.polling_interval}")

        if self.readiness_max_retries <= 0:
            raise ValueError(f"Readiness retries must be positive, got {self.readiness_max_retries}")
        if self.readiness_interval < 0:
            raise ValueError(f"Readiness interval must be non-negative, got {self.readiness_interval}")

        if self.restart_delay < 0:
            raise ValueError(f"Restart delay must be non-negative, got {self.restart_delay}")


@dataclass(frozen=True, slots=True)
class RelayerConfig:
    """Main configuration for the Bridge Relayer.

    Attributes:
        chain_a: Chain holding BridgeLock and GovernanceEmergency
        chain_b: Chain holding BridgeMint and GovernanceVoting
        private_key: Signing key used on both chains
        db_path: Location of the idempotency ledger file
        monitoring: Confirmation, polling and retry settings
    """

    chain_a: ChainConfig
    chain_b: ChainConfig
    private_key: str
    db_path: str = "./data/processed_nonces.db"
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    CHAIN_A_CONTRACTS: ClassVar[tuple[str, ...]] = ("BridgeLock", "GovernanceEmergency")
    CHAIN_B_CONTRACTS: ClassVar[tuple[str, ...]] = ("BridgeMint", "GovernanceVoting")

    def __post_init__(self) -> None:
        """Validate relayer configuration."""
        if not self.private_key:
            raise ValueError("DEPLOYER_PRIVATE_KEY environment variable is required")

        # Basic private key validation (64 hex chars, optionally with 0x prefix)
        key = self.private_key.removeprefix('0x')
        if len(key) != 64:
            raise ValueError(
                f"Invalid private key length. Expected 64 hex characters, got {len(key)}"
            )
        try:
            int(key, 16)
        except ValueError:
            raise ValueError("Invalid private key format. Must be hexadecimal") from None

        if not self.db_path:
            raise ValueError("DB_PATH must not be empty")

    @classmethod
    def from_env(cls) -> "RelayerConfig":
        """Load configuration from environment variables.

        Returns:
            RelayerConfig instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        chain_a_rpc_url = os.environ.get("CHAIN_A_RPC_URL", "")
        if not chain_a_rpc_url:
            raise ValueError(
                "CHAIN_A_RPC_URL environment variable is required. "
                "Example: http://127.0.0.1:8545"
            )

        chain_b_rpc_url = os.environ.get("CHAIN_B_RPC_URL", "")
        if not chain_b_rpc_url:
            raise ValueError(
                "CHAIN_B_RPC_URL environment variable is required. "
                "Example: http://127.0.0.1:9545"
            )

        deployments_dir = Path(os.environ.get("DEPLOYMENTS_DIR", "."))
        deployment_a = ChainDeployment.from_file(
            deployments_dir / "deployments_chain_a.json", cls.CHAIN_A_CONTRACTS
        )
        deployment_b = ChainDeployment.from_file(
            deployments_dir / "deployments_chain_b.json", cls.CHAIN_B_CONTRACTS
        )

        chain_a = ChainConfig(
            name="chain-a",
            rpc_url=chain_a_rpc_url,
            deployment=deployment_a,
            start_block=_int_env("CHAIN_A_START_BLOCK", 0),
        )
        chain_b = ChainConfig(
            name="chain-b",
            rpc_url=chain_b_rpc_url,
            deployment=deployment_b,
            start_block=_int_env("CHAIN_B_START_BLOCK", 0),
        )

        monitoring_config = MonitoringConfig(
            confirmation_depth=_int_env("CONFIRMATION_DEPTH", 3),
            polling_interval=_float_env("POLLING_INTERVAL", 2.0),
            readiness_max_retries=_int_env("READINESS_MAX_RETRIES", 30),
            readiness_interval=_float_env("READINESS_INTERVAL", 1.0),
            restart_delay=_float_env("RESTART_DELAY", 5.0),
        )

        return cls(
            chain_a=chain_a,
            chain_b=chain_b,
            private_key=os.environ.get("DEPLOYER_PRIVATE_KEY", ""),
            db_path=os.environ.get("DB_PATH", "./data/processed_nonces.db"),
            monitoring=monitoring_config,
        )

    def log_config(self) -> None:
        """Log the configuration in a readable format (hiding sensitive data)."""
        logger.info("=" * 60)
        logger.info("Bridge Relayer Configuration")
        logger.info("=" * 60)

        for chain in (self.chain_a, self.chain_b):
            logger.info(f"{chain.name}:")
            logger.info(f"  RPC URL: {chain.rpc_url}")
            logger.info(f"  Chain ID: {chain.chain_id}")
            logger.info(f"  Start Block: {chain.start_block}")
            for name, address in sorted(chain.deployment.addresses.items()):
                logger.info(f"  {name}: {address}")

        logger.info("Monitoring Settings:")
        logger.info(f"  Confirmation Depth: {self.monitoring.confirmation_depth} blocks")
        logger.info(f"  Polling Interval: {self.monitoring.polling_interval} seconds")
        logger.info(f"  Readiness Retries: {self.monitoring.readiness_max_retries}")
        logger.info(f"  Restart Delay: {self.monitoring.restart_delay} seconds")

        logger.info("Storage:")
        logger.info(f"  Ledger: {self.db_path}")
        logger.info(f"  Private Key: {'[SET]' if self.private_key else '[NOT SET]'}")
        logger.info("=" * 60)


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
