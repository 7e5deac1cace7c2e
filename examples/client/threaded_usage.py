"""
Threaded usage example of GatewayRunner.

This example runs the gateway client on a background event loop thread,
subscribes to an alert session and sends chat messages from the main thread
while alerts are drained from the queue.
"""

import logging
import queue
import sys
from pathlib import Path

# Add the project root to the path to import homeslice
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from homeslice import ChatResult, ClientConfig, ConfigLoader, GatewayRunner

ALERT_SESSION = "agent:main:telegram:123"


def on_reply(result: ChatResult) -> None:
    """Runs on the client's loop thread."""
    logger = logging.getLogger(__name__)
    if result.ok:
        logger.info("Companion replied: %s", result.text)
    else:
        logger.error("Chat failed: %s", result.error)


def main() -> None:
    # Configure logging
    logging.basicConfig(level=logging.INFO)
    logger = logging.getLogger(__name__)

    loader = ConfigLoader(ClientConfig(alert_session_keys=[ALERT_SESSION]))
    runner = GatewayRunner(loader.build_client())
    runner.start_in_thread()

    try:
        runner.connect_for_alerts().result(timeout=10)

        for message in ("Hello!", "Any plans tonight?"):
            result = runner.send(message, on_result=on_reply).result(timeout=60)
            if not result.ok:
                break

        # Drain alerts for a while
        for _i in range(12):
            try:
                logger.info("Alert: %s", runner.alerts.get(timeout=5))
            except queue.Empty:
                logger.info("No alerts yet")

        logger.info("Threaded usage example completed")
    except Exception:
        logger.exception("Error")
        sys.exit(1)
    finally:
        runner.stop_thread()


if __name__ == "__main__":
    main()
