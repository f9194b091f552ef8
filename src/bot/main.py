"""Bridge entry point."""

import logging
import sys

from src.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
)
# httpx logs every request at INFO, including the bot token in the URL.
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def main() -> None:
    """Validate configuration and start Telegram polling plus the webhook server."""
    missing = settings.missing_required()
    if missing:
        logger.error("Missing required environment variables:")
        for name in missing:
            logger.error("- %s", name)
        sys.exit(1)

    from src.bot.telegram.app import create_app

    logger.info("Starting Telegram ↔ Intercom bridge...")
    app = create_app()
    app.run_polling()


if __name__ == "__main__":
    main()
