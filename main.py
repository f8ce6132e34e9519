import sys

from dotenv import load_dotenv
from loguru import logger

from scheduling.api.clinic_server import run_server
from scheduling.config import get_settings

load_dotenv()


def configure_logging() -> None:
    settings = get_settings()
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level.upper())


if __name__ == "__main__":
    configure_logging()
    logger.info("Starting clinic scheduling API")
    run_server()
