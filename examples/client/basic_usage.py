"""
Basic usage example of GatewayClient.

This example connects to a gateway, sends one chat message to the companion
session and prints the completed reply. Start a local gateway first with
``homeslice dev-gateway``.
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add the project root to the path to import homeslice
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from homeslice import ClientConfig, ConfigLoader


async def run(message: str) -> str:
    client = ConfigLoader(ClientConfig(log_level=logging.INFO)).build_client()
    try:
        return await asyncio.wait_for(client.ask(message), 60)
    finally:
        await client.disconnect()


def main() -> None:
    # Configure logging
    logging.basicConfig(level=logging.INFO)
    logger = logging.getLogger(__name__)

    try:
        reply = asyncio.run(run("What's for dinner?"))
        logger.info("Reply: %s", reply)
    except Exception:
        logger.exception("Error")
        sys.exit(1)


if __name__ == "__main__":
    main()
