import asyncio
import structlog
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

from remixrite import config
from remixrite.core.concurrency import BoundedExecutor, call_with_timeout
from remixrite.core.errors import PartialSettlementError, PersistenceOutcomeUnknownError
from remixrite.models.remix import DistributionDraft, Remix, RemixDraft, RoyaltyDistribution, RoyaltyShare

logger = structlog.get_logger()

class SettlementStore(Protocol):
    def insert_remix(self, draft: RemixDraft) -> Remix: ...
    def insert_distribution(self, row: DistributionDraft) -> RoyaltyDistribution: ...
    def distributions_for(self, remix_id: str) -> List[RoyaltyDistribution]: ...
    def distributions_for_owner(self, owner_address: str) -> List[RoyaltyDistribution]: ...

@dataclass
class Settlement:
    remix: Remix
    distributions: List[RoyaltyDistribution] = field(default_factory=list)

class SettlementRecorder:
    """
    Persists a remix and then its distribution rows.

    The ledger has already committed by the time this runs, so a failed
    distribution write never removes the remix row. Both writes are idempotent,
    so calling ``commit`` again with the same draft fills in only what is missing.
    """

    def __init__(self, store: SettlementStore, timeout: float = config.STORE_TIMEOUT_SECONDS,
                 executor: Optional[BoundedExecutor] = None):
        self.store = store
        self.timeout = timeout
        self.executor = executor

    async def commit(self, draft: RemixDraft, shares: Sequence[RoyaltyShare]) -> Settlement:
        """
        Raises:
            PersistenceError: the remix row could not be written
            PersistenceOutcomeUnknownError: the remix insert timed out and may still commit;
                its details carry the remix id to reconcile
            PartialSettlementError: the remix row exists but some distributions failed
        """
        try:
            remix = await call_with_timeout(self.store.insert_remix, draft, timeout=self.timeout,
                                            executor=self.executor)
        except asyncio.TimeoutError as e:
            logger.error("Remix insert timed out, outcome unknown", remix_id=draft.id)
            raise PersistenceOutcomeUnknownError(
                f"Timed out writing remix {draft.id}; it may still be recorded",
                details={"remix_id": draft.id}) from e

        written: List[RoyaltyDistribution] = []
        failed: List[Dict[str, Any]] = []
        for share in shares:
            row = DistributionDraft(remix_id=remix.id, clip_id=share.clip_id,
                                    owner_address=share.owner_address, amount=share.amount)
            try:
                written.append(await call_with_timeout(self.store.insert_distribution, row,
                                                       timeout=self.timeout, executor=self.executor))
            except Exception as e:
                logger.error("Royalty distribution write failed",
                            remix_id=remix.id, clip_id=share.clip_id,
                            owner_address=share.owner_address, error=str(e) or type(e).__name__)
                failed.append({
                    "clip_id": share.clip_id,
                    "owner_address": share.owner_address,
                    "amount": str(share.amount),
                    "error": str(e) or type(e).__name__,
                })

        if failed:
            raise PartialSettlementError(
                f"Remix {remix.id} recorded but {len(failed)} of {len(shares)} royalty distributions failed",
                remix=remix, distributions=written, failed=failed)

        logger.info("Settlement recorded", remix_id=remix.id, distributions=len(written))
        return Settlement(remix=remix, distributions=written)
