# Giglet configuration
# One Settings object per process. Built from the environment (and .env)
# at startup, then passed to whatever needs it. Nothing else reads os.environ.

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

DEFAULT_DB_FILE = os.path.join(os.path.dirname(__file__), "giglet.db")
LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _env_float(name, default):
    raw = os.environ.get(name, "")
    try:
        return float(raw) if raw else default
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _env_int(name, default):
    raw = os.environ.get(name, "")
    try:
        return int(raw) if raw else default
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    env: str = "dev"
    db_path: str = DEFAULT_DB_FILE
    api_token: str = ""
    log_file: str = ""
    log_level: str = "INFO"

    # Money
    platform_fee_pct: float = 15.0
    high_payout_threshold: float = 500.0

    # API safety
    rate_limit_requests: int = 120
    rate_limit_window_sec: int = 60

    # Stripe (stub mode when the key is missing)
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    public_url: str = "http://localhost:3000"

    @property
    def auth_required(self) -> bool:
        return self.env not in {"dev", "development", "test"}

    @property
    def stripe_enabled(self) -> bool:
        return self.stripe_secret_key.startswith("sk_")

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """Read GIGLET_* variables. Loads .env first unless told not to."""
        if dotenv:
            load_dotenv()
        return cls(
            env=os.environ.get("GIGLET_ENV", "dev").lower(),
            db_path=os.environ.get("GIGLET_DB_PATH", DEFAULT_DB_FILE),
            api_token=os.environ.get("GIGLET_API_TOKEN", ""),
            log_file=os.environ.get("GIGLET_LOG_FILE", ""),
            log_level=os.environ.get("GIGLET_LOG_LEVEL", "INFO").upper(),
            platform_fee_pct=_env_float("GIGLET_PLATFORM_FEE_PCT", 15.0),
            high_payout_threshold=_env_float("GIGLET_HIGH_PAYOUT_THRESHOLD", 500.0),
            rate_limit_requests=_env_int("GIGLET_RATE_LIMIT_REQUESTS", 120),
            rate_limit_window_sec=_env_int("GIGLET_RATE_LIMIT_WINDOW_SEC", 60),
            stripe_secret_key=os.environ.get("GIGLET_STRIPE_SECRET_KEY", ""),
            stripe_webhook_secret=os.environ.get("GIGLET_STRIPE_WEBHOOK_SECRET", ""),
            public_url=os.environ.get("GIGLET_PUBLIC_URL", "http://localhost:3000").rstrip("/"),
        )


def setup_logging(settings: Settings) -> logging.Logger:
    """Console always, file when configured. Safe to call more than once."""
    logger = logging.getLogger("giglet")
    if logger.handlers:
        return logger

    level = getattr(logging, settings.log_level, logging.INFO)
    logger.setLevel(level)
    fmt = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

    ch = logging.StreamHandler()
    ch.setLevel(level)
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    if settings.log_file:
        fh = logging.FileHandler(settings.log_file)
        fh.setLevel(level)
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    return logger
