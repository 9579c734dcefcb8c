import asyncio
import structlog
from decimal import Decimal
from typing import List, Optional

from remixrite import config
from remixrite.core.concurrency import BoundedExecutor, bounded_gather, call_with_timeout
from remixrite.core.errors import PersistenceError, RemixNotFoundError
from remixrite.models.api import EarningsResponse
from remixrite.models.remix import EnrichedRemix, Remix
from remixrite.services.resolver import ContentResolver, ContentStore
from remixrite.services.settlement import SettlementStore

logger = structlog.get_logger()

class RemixQueryService:
    """
    Read side: remixes joined with their parent clips and distribution rows.

    Listing is best effort per remix for parent resolution, but any store
    failure (listing or distribution fetch) fails the whole request.
    """

    def __init__(self, content_store: ContentStore, settlement_store: SettlementStore,
                 resolver: ContentResolver, concurrency: int = config.ENRICH_CONCURRENCY,
                 timeout: float = config.STORE_TIMEOUT_SECONDS, executor: Optional[BoundedExecutor] = None):
        self.content_store = content_store
        self.settlement_store = settlement_store
        self.resolver = resolver
        self.concurrency = concurrency
        self.timeout = timeout
        self.executor = executor

    async def _store_call(self, func, *args, operation: str):
        try:
            return await call_with_timeout(func, *args, timeout=self.timeout, executor=self.executor)
        except asyncio.TimeoutError as e:
            logger.error("Store call timed out", operation=operation)
            raise PersistenceError(f"Timed out trying to {operation}") from e

    async def list_remixes(self, creator_id: Optional[str] = None) -> List[EnrichedRemix]:
        if creator_id:
            remixes = await self._store_call(self.content_store.list_by_creator, creator_id,
                                             operation="list remixes by creator")
        else:
            remixes = await self._store_call(self.content_store.list_all, operation="list remixes")

        enriched = await bounded_gather(remixes, self.enrich, self.concurrency)
        logger.info("Remixes listed", creator_id=creator_id, count=len(enriched))
        return enriched

    async def get_remix(self, remix_id: str) -> EnrichedRemix:
        remix = await self._store_call(self.content_store.get_remix, remix_id, operation="get remix")
        if remix is None:
            raise RemixNotFoundError(f"Remix {remix_id} not found")
        return await self.enrich(remix)

    async def enrich(self, remix: Remix) -> EnrichedRemix:
        clips, distributions = await asyncio.gather(
            self.resolver.resolve_present(remix.original_clip_ids),
            self._store_call(self.settlement_store.distributions_for, remix.id,
                             operation="get royalty distributions"),
        )
        if len(clips) < len(remix.original_clip_ids):
            logger.debug("Some parent clips no longer resolve",
                        remix_id=remix.id,
                        expected=len(remix.original_clip_ids),
                        resolved=len(clips))
        return EnrichedRemix(**remix.model_dump(), original_clips=clips, royalty_distributions=distributions)

    async def owner_earnings(self, owner_address: str) -> EarningsResponse:
        distributions = await self._store_call(self.settlement_store.distributions_for_owner, owner_address,
                                               operation="get owner earnings")
        total = sum((d.amount for d in distributions), Decimal("0"))
        return EarningsResponse(owner_address=owner_address, total=total, distributions=distributions)
