"""
PlanGate runner - Main entry point.
"""

import logging
import sys

from runner.src.config import get_settings
from runner.src.worker import run_worker

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)

def main():
    """Main entry point."""
    settings = get_settings()

    logger.info("Starting PlanGate runner")
    logger.info(f"Redis URL: {settings.redis_url}")
    logger.info(f"Default step timeout: {settings.default_step_timeout}s")

    if settings.default_step_timeout <= 0:
        logger.error("DEFAULT_STEP_TIMEOUT must be positive")
        sys.exit(1)

    # Start worker
    logger.info("Starting worker...")
    run_worker()

if __name__ == "__main__":
    main()
