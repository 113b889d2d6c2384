"""
Application Configuration - Environment Variable Management.
Loads and validates configuration from .env file.
"""
import os
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from creditgate.pricing import SurgeConfig

logger = logging.getLogger(__name__)

# Load .env from project root
PROJECT_ROOT = Path(__file__).parent.parent
ENV_FILE = PROJECT_ROOT / ".env"

if ENV_FILE.exists():
    load_dotenv(ENV_FILE)
    logger.info(f"Loaded environment from {ENV_FILE}")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class LedgerConfig:
    """Credit ledger configuration."""
    default_balance: float = 1000.0
    min_admission_credits: float = 1.0


@dataclass
class QueueConfig:
    """Queue engine configuration."""
    engine: str = "celery"
    broker_url: str = "redis://localhost:6379/0"
    result_backend: str = "redis://localhost:6379/1"
    queue_name: str = "document-processing"
    retry_limit: int = 3
    retry_delay_seconds: float = 2.0
    expire_in_hours: float = 1.0

    @property
    def uses_celery(self) -> bool:
        return self.engine == "celery"


@dataclass
class AppConfig:
    """Main Application Configuration."""
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    surge: SurgeConfig = field(default_factory=SurgeConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    storage_backend: str = "sqlite"
    database_path: str = "data/creditgate.db"
    admin_secret: Optional[str] = None  # MUST be set via ADMIN_SECRET env var
    debug: bool = False

    def __post_init__(self):
        """Validate critical configuration."""
        if self.storage_backend not in ("sqlite", "memory"):
            raise ValueError(f"Unsupported STORAGE_BACKEND: {self.storage_backend}")
        if self.queue.engine not in ("celery", "memory"):
            raise ValueError(f"Unsupported QUEUE_ENGINE: {self.queue.engine}")

        if not self.admin_secret:
            logger.warning("ADMIN_SECRET not set - admin endpoints will be disabled")
        elif len(self.admin_secret) < 32:
            logger.warning("ADMIN_SECRET should be at least 32 characters for security")

    def validate(self) -> dict:
        """Validate configuration and return status."""
        return {
            "storage": {
                "backend": self.storage_backend,
                "path": self.database_path if self.storage_backend == "sqlite" else None,
            },
            "queue": {
                "engine": self.queue.engine,
                "queue_name": self.queue.queue_name,
                "retry_limit": self.queue.retry_limit,
                "expire_in_hours": self.queue.expire_in_hours,
            },
            "surge": {
                "enabled": self.surge.enabled,
                "window": f"{self.surge.surge_month:02d}/{self.surge.surge_start_day:02d}"
                          f"-{self.surge.surge_month:02d}/{self.surge.surge_end_day:02d}",
                "multiplier": self.surge.surge_multiplier,
            },
            "admin_enabled": bool(self.admin_secret),
        }

    def log_status(self):
        """Log configuration status (without exposing secrets)."""
        status = self.validate()

        logger.info("=" * 50)
        logger.info("Configuration Status:")
        logger.info(f"  Storage: {status['storage']['backend']}")
        logger.info(f"  Queue engine: {status['queue']['engine']} ({status['queue']['queue_name']})")
        logger.info(f"  Default balance: {self.ledger.default_balance}")
        logger.info(
            f"  Surge: {'ON' if status['surge']['enabled'] else 'OFF'} "
            f"{status['surge']['window']} x{status['surge']['multiplier']}"
        )
        logger.info(f"  Admin API: {'ENABLED' if status['admin_enabled'] else 'DISABLED'}")
        logger.info("=" * 50)


def load_queue_config() -> QueueConfig:
    """Queue engine settings from the environment. Shared by the API and the Celery app."""
    return QueueConfig(
        engine=os.getenv("QUEUE_ENGINE", "celery").lower(),
        broker_url=os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0"),
        result_backend=os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1"),
        queue_name=os.getenv("QUEUE_NAME", "document-processing"),
        retry_limit=int(os.getenv("QUEUE_RETRY_LIMIT", "3")),
        retry_delay_seconds=float(os.getenv("QUEUE_RETRY_DELAY_SECONDS", "2")),
        expire_in_hours=float(os.getenv("QUEUE_EXPIRE_IN_HOURS", "1")),
    )


def load_config() -> AppConfig:
    """Load configuration from environment variables."""
    ledger_config = LedgerConfig(
        default_balance=float(os.getenv("DEFAULT_CREDIT_BALANCE", "1000")),
        min_admission_credits=float(os.getenv("MIN_ADMISSION_CREDITS", "1")),
    )

    surge_config = SurgeConfig(
        enabled=_env_bool("SURGE_ENABLED", "true"),
        surge_month=int(os.getenv("SURGE_MONTH", "6")),
        surge_start_day=int(os.getenv("SURGE_START_DAY", "15")),
        surge_end_day=int(os.getenv("SURGE_END_DAY", "30")),
        surge_multiplier=float(os.getenv("SURGE_MULTIPLIER", "2.0")),
        normal_multiplier=float(os.getenv("NORMAL_MULTIPLIER", "1.0")),
        reason=os.getenv("SURGE_REASON", "Peak reporting season"),
    )

    return AppConfig(
        ledger=ledger_config,
        surge=surge_config,
        queue=load_queue_config(),
        storage_backend=os.getenv("STORAGE_BACKEND", "sqlite").lower(),
        database_path=os.getenv("DATABASE_PATH", "data/creditgate.db"),
        admin_secret=os.getenv("ADMIN_SECRET"),  # No default - must be explicitly set
        debug=os.getenv("DEBUG", "false").lower() == "true",
    )
