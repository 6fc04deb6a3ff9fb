import logging

import uvicorn

from rover_relay.config import config


def main() -> None:
    # Configure logging for the entire application
    logging.basicConfig(
        level=logging.INFO,
        format="%(levelname)s:     %(name)s - %(message)s",
    )

    # Set log level for our app modules
    logging.getLogger("rover_relay").setLevel(logging.INFO)

    # uvicorn handles SIGINT/SIGTERM and runs the app's shutdown hook,
    # which stops the uplink and closes the device session.
    uvicorn.run(
        "rover_relay.web.server:app",
        host=config.server.host,
        port=config.server.port,
        reload=config.server.reload,
        log_level="info",
    )


if __name__ == "__main__":
    main()
