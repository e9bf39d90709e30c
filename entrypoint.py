import uvicorn
import os
from logging_config import setup_logging

# Setup logging before importing app
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)

from app import app
from constants import HOST, PORT, WS_PING_INTERVAL, WS_PING_TIMEOUT
from logging_config import get_logger

logger = get_logger(__name__)


def main():
    logger.info(f"Starting signaling server on {HOST}:{PORT}")
    # uvicorn's websocket pings detect dead clients and trigger disconnect cleanup
    uvicorn.run(app, host=HOST, port=PORT, ws_ping_interval=WS_PING_INTERVAL, ws_ping_timeout=WS_PING_TIMEOUT)


if __name__ == "__main__":
    main()
