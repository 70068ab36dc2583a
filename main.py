#!/usr/bin/env python3
"""Command Center backend - startup script."""

import logging

from config import load_config
from presentation import create_app


def main():
    """Main entry point."""
    config = load_config()
    config.setup_logging()
    logger = logging.getLogger(__name__)

    app = create_app(config)

    logger.info(f"Starting Command Center API on http://{config.server.host}:{config.server.port}")
    try:
        app.run(
            host=config.server.host,
            port=config.server.port,
            debug=config.server.debug,
            use_reloader=False  # Reloader would start a second event loop thread
        )
    except KeyboardInterrupt:
        logger.info("Shutting down server...")


if __name__ == '__main__':
    main()
