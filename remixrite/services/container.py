"""
Builds the service graph once at startup from ``remixrite.config``.
"""

import structlog
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from remixrite import config
from remixrite.core.concurrency import BoundedExecutor
from remixrite.core.database import Database, PostgresContentStore, PostgresSettlementStore, get_database_stats
from remixrite.core.memory import (
    InMemoryContentStore,
    InMemoryDatabase,
    InMemoryLedgerClient,
    InMemorySettlementStore,
    InMemoryStorage,
)
from remixrite.core.storage import StorageClient
from remixrite.services.catalog import ClipCatalogService
from remixrite.services.enrichment import RemixQueryService
from remixrite.services.ledger import HttpLedgerClient, LedgerRegistrar
from remixrite.services.pipeline import RemixPipeline
from remixrite.services.resolver import ContentResolver
from remixrite.services.royalty import RoyaltyCalculator
from remixrite.services.settlement import SettlementRecorder
from remixrite.services.tagging import OpenAITagGenerator

logger = structlog.get_logger()

@dataclass
class ServiceContainer:
    pipeline: RemixPipeline
    queries: RemixQueryService
    catalog: ClipCatalogService
    content_store: Any
    settlement_store: Any
    storage: Any
    ledger: Any
    database: Optional[Database] = None
    store_executor: Optional[BoundedExecutor] = None
    backend: str = "memory"
    extras: Dict[str, Any] = field(default_factory=dict)

    def health(self) -> Dict[str, Any]:
        components: Dict[str, Any] = {"backend": self.backend}
        if self.database is not None:
            components["database"] = {"available": self.database.check_connection()}
            components["stats"] = get_database_stats(self.database)
        else:
            components["database"] = {"available": True, "backend": "memory"}
        components["storage"] = self.storage.health_check()
        if hasattr(self.ledger, "health_check"):
            components["ledger"] = self.ledger.health_check()
        components["pipeline"] = self.pipeline.describe_config()
        return components

    def close(self):
        self.pipeline.resolver.executor.shutdown()
        if self.store_executor is not None:
            self.store_executor.shutdown()
        if self.database is not None:
            self.database.close()

def store_thread_budget(max_connections: int, resolver_concurrency: int) -> int:
    """
    Threads left for non-lookup store calls once clip lookups have their share.

    Lookups and other store calls run on separate executors whose sizes add
    up to the pool size, so no call ever waits on an exhausted pool.
    """
    budget = max_connections - resolver_concurrency
    if budget < 1:
        raise ValueError(
            f"DB_MAX_CONNECTIONS ({max_connections}) must be greater than "
            f"RESOLVER_CONCURRENCY ({resolver_concurrency})")
    return budget

def wire_services(content_store, settlement_store, storage, ledger, tagger,
                  database: Optional[Database] = None, backend: str = "memory",
                  calculator: Optional[RoyaltyCalculator] = None,
                  max_connections: Optional[int] = None,
                  resolver_concurrency: int = config.RESOLVER_CONCURRENCY) -> ServiceContainer:
    """Assemble the services around already-constructed adapters."""
    if max_connections is None:
        max_connections = database.max_connections if database is not None else config.DB_MAX_CONNECTIONS
    store_executor = BoundedExecutor(store_thread_budget(max_connections, resolver_concurrency), "store")

    resolver = ContentResolver(content_store, concurrency=resolver_concurrency)
    registrar = LedgerRegistrar(ledger)
    calculator = calculator or RoyaltyCalculator()
    recorder = SettlementRecorder(settlement_store, executor=store_executor)

    pipeline = RemixPipeline(resolver, storage, tagger, registrar, calculator, recorder)
    queries = RemixQueryService(content_store, settlement_store, resolver, executor=store_executor)
    catalog = ClipCatalogService(content_store, storage, tagger, registrar, store_executor=store_executor)

    return ServiceContainer(
        pipeline=pipeline,
        queries=queries,
        catalog=catalog,
        content_store=content_store,
        settlement_store=settlement_store,
        storage=storage,
        ledger=ledger,
        database=database,
        store_executor=store_executor,
        backend=backend,
    )

def build_services(backend: str = config.BACKEND) -> ServiceContainer:
    """Construct every adapter for ``backend`` ("postgres" or "memory")."""
    tagger = OpenAITagGenerator()

    if backend == "memory":
        memory = InMemoryDatabase()
        container = wire_services(InMemoryContentStore(memory), InMemorySettlementStore(memory),
                                  InMemoryStorage(), InMemoryLedgerClient(), tagger, backend=backend)
        container.extras["memory"] = memory
        logger.info("Services initialized", backend=backend)
        return container

    if backend != "postgres":
        raise ValueError(f"Unknown backend: {backend}")

    database = Database()
    database.initialize()
    container = wire_services(PostgresContentStore(database), PostgresSettlementStore(database),
                              StorageClient(), HttpLedgerClient(), tagger,
                              database=database, backend=backend)
    logger.info("Services initialized",
               backend=backend,
               storage_backend="GCS" if config.USE_GCS else "Pinata",
               tagger_available=tagger.available)
    return container
