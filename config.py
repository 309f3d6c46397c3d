# config.py

import os
from dotenv import load_dotenv
from pydantic import BaseModel

# Load environment variables from the .env file
load_dotenv()


def _database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    host = os.getenv("DATABASE_HOST")
    if host:
        # "mysql+pymysql://<user>:<password>@<host>:<port>/<dbname>"
        return "mysql+pymysql://{}:{}@{}:{}/{}".format(
            os.getenv("DATABASE_USER"),
            os.getenv("DATABASE_PASSWORD"),
            host,
            os.getenv("DATABASE_PORT", "3306"),
            os.getenv("DATABASE_NAME"),
        )
    return "sqlite:///./trip_ledger.db"


class Settings(BaseModel):
    """Application settings, read from the environment."""

    APP_NAME: str = os.getenv("APP_NAME", "Trip Ledger API")
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    DATABASE_URL: str = _database_url()

    # Insert an expense and its splits in one transaction. Set to false to
    # commit the expense before the splits.
    LEDGER_ATOMIC_INSERTS: bool = os.getenv("LEDGER_ATOMIC_INSERTS", "true").lower() == "true"

    DEFAULT_CURRENCY: str = os.getenv("DEFAULT_CURRENCY", "USD")
    JOIN_CODE_LENGTH: int = int(os.getenv("JOIN_CODE_LENGTH", "6"))
    JOIN_CODE_ALPHABET: str = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


settings = Settings()
