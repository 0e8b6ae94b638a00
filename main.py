#!/usr/bin/env python3
"""Entry point for the Bridge Relayer service."""

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


# Get logger for this module
logger = logging.getLogger(__name__)

from bridge_relayer.config import load_environment
from bridge_relayer.relayer import BridgeRelayer

# Variables already set in the process environment take precedence
ENV_FILE = Path(__file__).parent / ".env"


async def main() -> None:
    """Main entry point for the Bridge Relayer."""
    load_environment(ENV_FILE)

    parser = argparse.ArgumentParser(
        description="Bridge Relayer - relay lock, burn and governance events between two chains",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  CHAIN_A_RPC_URL        - RPC endpoint for chain A (BridgeLock, GovernanceEmergency)
  CHAIN_B_RPC_URL        - RPC endpoint for chain B (BridgeMint, GovernanceVoting)
  DEPLOYER_PRIVATE_KEY   - Private key for signing transactions on both chains
  DEPLOYMENTS_DIR        - Directory with deployments_chain_a.json / deployments_chain_b.json
  DB_PATH                - Ledger database file (default: ./data/processed_nonces.db)
  CONFIRMATION_DEPTH     - Blocks to wait before acting on an event (default: 3)
  POLLING_INTERVAL       - Seconds between block polls (default: 2)
  LOG_LEVEL              - Logging level (can be overridden with --log-level)

Variables may also be placed in a .env file next to this script.
        """
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    args = parser.parse_args()

    setup_logging(args.log_level)

    try:
        relayer = BridgeRelayer.from_env()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        logger.error("Required environment variables:")
        logger.error("  - CHAIN_A_RPC_URL: Chain A RPC endpoint")
        logger.error("  - CHAIN_B_RPC_URL: Chain B RPC endpoint")
        logger.error("  - DEPLOYER_PRIVATE_KEY: Private key for signing transactions")
        logger.error("  - DEPLOYMENTS_DIR: Directory holding the deployment records")
        sys.exit(1)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, relayer.stop)

    try:
        await relayer.run()
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
