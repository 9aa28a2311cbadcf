"""
apidesk - admin runtime

Usage:
    python -m apidesk

Environment Variables:
    APIDESK_ENVIRONMENT - development, staging, production or testing
    APIDESK_BASE_URL - Backend origin for endpoint and auth calls
    APIDESK_LOG_LEVEL - Logging level (default: INFO)
    APIDESK_LOG_FILE_PATH - Rotating log file (default: none)
    APIDESK_STORAGE_PATH - JSON file for session and log storage (default: in memory)
    APIDESK_ENDPOINTS_FILE_PATH - Static endpoint catalog (default: data/endpoints.json)
"""

import logging
import sys

# Set up basic logging first
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger('apidesk')

def main():
    """Main entry point for apidesk"""
    from .core import ConfigurationError, ServiceCreationError
    from .services.admin_application import create_application

    try:
        logger.info("Starting apidesk...")

        app = create_application()
        summary = app.run_sync()

        if summary is not None:
            for category in summary['categories']:
                logger.info(f"  category: {category}")

    except (ConfigurationError, ServiceCreationError) as e:
        logger.error(f"Application failed to start: {e}")
        sys.exit(1)

if __name__ == "__main__":
    main()
