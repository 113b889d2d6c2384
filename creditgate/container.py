"""
Composition root.
Builds the ledger, calculator, queue facade, resolver and settlement
handler from one AppConfig.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from creditgate.admission import JobAdmissionResolver
from creditgate.config import AppConfig, load_config
from creditgate.credits import CreditLedger
from creditgate.persistence import (
    Database,
    BaseLedgerRepository,
    InMemoryLedgerRepository,
    SQLiteLedgerRepository,
    SQLiteJobRepository,
    STORAGE_BACKEND_MEMORY,
)
from creditgate.pricing import SurgePricingCalculator
from creditgate.queue import BaseQueueEngine, InMemoryQueueEngine, QueueFacade
from creditgate.settlement import CompletionSettlementHandler

logger = logging.getLogger(__name__)


class ServiceContainer:
    """One wired object graph. Tests build as many as they need."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        engine: Optional[BaseQueueEngine] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config or load_config()
        self.clock = clock

        # the Celery engine mirrors jobs into SQLite even with in-memory credits
        needs_database = (
            self.config.storage_backend != STORAGE_BACKEND_MEMORY
            or (engine is None and self.config.queue.uses_celery)
        )
        self.database: Optional[Database] = None
        if needs_database:
            self.database = Database(self.config.database_path)

        self.ledger = CreditLedger(
            self._build_ledger_repository(),
            default_balance=self.config.ledger.default_balance,
        )
        self.calculator = SurgePricingCalculator(self.config.surge)

        self.engine = engine or self._build_engine()
        self.facade = QueueFacade(self.engine, queue_name=self.config.queue.queue_name)

        self.resolver = JobAdmissionResolver(
            ledger=self.ledger,
            calculator=self.calculator,
            facade=self.facade,
            queue_config=self.config.queue,
            min_admission_credits=self.config.ledger.min_admission_credits,
            clock=clock,
        )
        self.settlement = CompletionSettlementHandler(
            ledger=self.ledger,
            calculator=self.calculator,
            clock=clock,
        )

        logger.info(
            f"ServiceContainer built: storage={self.config.storage_backend}, "
            f"engine={type(self.engine).__name__}"
        )

    def _build_ledger_repository(self) -> BaseLedgerRepository:
        if self.config.storage_backend == STORAGE_BACKEND_MEMORY:
            return InMemoryLedgerRepository()
        return SQLiteLedgerRepository(self.database)

    def _build_engine(self) -> BaseQueueEngine:
        if not self.config.queue.uses_celery:
            return InMemoryQueueEngine()

        from creditgate.celery_app import celery_app, configure_celery
        from creditgate.queue.celery_engine import CeleryQueueEngine

        configure_celery(celery_app, self.config.queue)
        return CeleryQueueEngine(celery_app, SQLiteJobRepository(self.database))

    @property
    def celery_engine(self):
        """The Celery engine, for worker-side task hooks."""
        from creditgate.queue.celery_engine import CeleryQueueEngine

        if not isinstance(self.engine, CeleryQueueEngine):
            raise RuntimeError("Container is not configured with the Celery queue engine")
        return self.engine

    def ensure_queue(self) -> QueueFacade:
        """Initialize the queue facade on first use."""
        if not self.facade.is_initialized:
            self.facade.initialize()
        return self.facade

    def shutdown(self) -> None:
        self.facade.stop()
        if self.database is not None:
            self.database.close()


_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """Get or create the process-wide container."""
    global _container
    if _container is None:
        _container = ServiceContainer()
    return _container


def reset_container() -> None:
    """Shut down and drop the process-wide container (for testing)."""
    global _container
    if _container is not None:
        _container.shutdown()
    _container = None
