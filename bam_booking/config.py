# config.py
import logging
import os
from dotenv import load_dotenv

load_dotenv()

# Database / auth
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./bam_booking.db")
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 30))

# Bookable time domain (school hours, 30 minute grid)
OPEN_TIME = os.getenv("OPEN_TIME", "08:00")
CLOSE_TIME = os.getenv("CLOSE_TIME", "17:00")
SLOT_MINUTES = int(os.getenv("SLOT_MINUTES", 30))

# Scheduling policy
FAIR_USE_THRESHOLD = int(os.getenv("FAIR_USE_THRESHOLD", 2))
PENDING_BLOCKS_ADMISSION = os.getenv("PENDING_BLOCKS_ADMISSION", "true").lower() in ("1", "true", "yes")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def configure_logging(level: str = LOG_LEVEL):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
