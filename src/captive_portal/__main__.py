"""Run the portal auth server: ``python -m captive_portal``."""

import logging

import uvicorn

from captive_portal.servers import create_app
from captive_portal.utils.environment import env_int, env_str
from captive_portal.utils.logging import setup_logging

logger = logging.getLogger("captive-portal.main")


def main() -> None:
    setup_logging(env_str("PORTAL_LOG_LEVEL", "INFO"))
    host = env_str("PORTAL_HOST", "127.0.0.1")
    port = env_int("PORTAL_PORT", 5000)
    logger.info(f"Starting captive portal auth server on {host}:{port}")
    uvicorn.run(create_app(), host=host, port=port, log_config=None)


if __name__ == "__main__":
    main()
