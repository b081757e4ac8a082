"""Main entry point for the outbound gateway."""

import asyncio
import logging
import sys

from outbound_gateway.core.config import load_config
from outbound_gateway.core.gateway import Gateway


async def main() -> None:
    """Main entry point."""
    logger = logging.getLogger("outbound_gateway")
    try:
        config = load_config()

        gateway = Gateway(config)
        logger.info("Initializing outbound gateway...")
        await gateway.run_forever()

    except Exception as e:
        logging.basicConfig(stream=sys.stderr)
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)


def run() -> None:
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
