import sys

from dotenv import load_dotenv
from loguru import logger

from clinic_agenda.api.scheduling_server import run_server
from clinic_agenda.config import get_settings

load_dotenv()


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
    )


if __name__ == "__main__":
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info(f"Starting agenda for {settings.clinic_name} ({settings.clinic_timezone})")
    run_server()
