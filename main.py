"""
Main entrypoint: FastAPI server with the warm-cache sync worker running in the
API lifespan (daemon thread).

On SIGINT/SIGTERM the server shuts down, the lifespan signals the worker to
stop and joins it.

Env: ALCHEMY_API_KEY (sync is disabled without it), SNAPSHOT_DIR, PAYOUTS_DB_URL
or PAYOUTS_DB_PATH, API_HOST, API_PORT, WARM_SYNC_INTERVAL_SEC, LOG_LEVEL.

API only: uvicorn backend_payouts.api_server.app:app --host 0.0.0.0 --port 8000
"""

import os

# Configure structured logging before other imports that may log
from backend_payouts.payouts_logging import get_logger

logger = get_logger("main")


def main() -> None:
    """Run the FastAPI server in the main thread."""
    from backend_payouts.config.settings import get_settings

    settings = get_settings()
    if not settings.alchemy_api_key:
        logger.warning("main_no_api_key", message="ALCHEMY_API_KEY not set; serving snapshots only, no warm sync")

    from backend_payouts.api_server.app import app
    import uvicorn

    logger.info("main_server_starting", host=settings.api_host, port=settings.api_port)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=os.getenv("LOG_LEVEL", "info").lower())


if __name__ == "__main__":
    main()
