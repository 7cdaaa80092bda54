import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

import uvicorn

# Import chainalert package which automatically registers all components
import chainalert  # noqa: F401
from chainalert.config import Config
from chainalert.core.builder import AlertServiceBuilder
from chainalert.logger import logger, setup_logger
from chainalert.server import create_app


class GracefulExit(SystemExit):
    """Custom exception for handling graceful shutdown"""
    code = 1


def handle_signal(signum, frame):
    """
    Signal handler for graceful shutdown

    Args:
        signum: Signal number received
        frame: Current stack frame
    """
    logger.info(f"Received signal {signum}")
    raise GracefulExit()


async def run_service(config_path: Optional[str] = None) -> None:
    """
    Main function to run the alert service and its HTTP endpoints

    Args:
        config_path: Optional path to the configuration file
    """
    # Initialize configuration
    config = Config(config_path)

    # Setup logging based on configuration
    setup_logger(config.get("logging", {}))

    try:
        # Build the service using builder pattern
        builder = AlertServiceBuilder(config)
        service = (builder
                   .build_clients()
                   .build_notifier()
                   .build_processor()
                   .build_webhooks()
                   .build_collectors()
                   .build())

        server_settings = builder.settings.server
        server = uvicorn.Server(
            uvicorn.Config(
                create_app(service),
                host=server_settings.host,
                port=server_settings.port,
                log_config=None,
            )
        )

        # The app lifespan starts and stops the service
        logger.info(f"Starting chainalert on {server_settings.host}:{server_settings.port}...")
        await server.serve()
    except Exception as e:
        import traceback
        logger.error(f"Error running chainalert: {e}")
        logger.error(traceback.format_exc())
        raise


def main():
    """
    Entry point for the command line interface

    Handles:
    1. Signal registration for graceful shutdown
    2. Configuration file loading
    3. Main application execution
    4. Error handling and exit codes
    """
    # Register signal handlers for graceful shutdown
    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    # Handle configuration file path from command line
    config_path = None
    if len(sys.argv) > 1:
        config_path = Path(sys.argv[1])
        if not config_path.exists():
            logger.error(f"Config file not found: {config_path}")
            sys.exit(1)

    try:
        # Run the main application
        asyncio.run(run_service(config_path))
    except GracefulExit:
        # Normal shutdown
        sys.exit(0)
    except Exception as e:
        # Fatal error
        logger.critical(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
