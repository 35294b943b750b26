import logging
import sys

from photo_attendance.config import settings

handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
if settings.LOG_FILE:
    handlers.append(logging.FileHandler(settings.LOG_FILE, mode="a", encoding="utf-8"))

# Configure standard logger
logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=handlers,
)


def get_logger(name: str):
    return logging.getLogger(name)


logger = get_logger("photo_attendance")
