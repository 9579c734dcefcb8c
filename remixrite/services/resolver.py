import asyncio
import structlog
from typing import List, Optional, Protocol, Sequence, Tuple

from remixrite import config
from remixrite.core.concurrency import BoundedExecutor, bounded_gather, call_with_timeout
from remixrite.core.utils import dedupe_ids, is_valid_owner_address
from remixrite.models.clip import Clip
from remixrite.models.remix import Remix

logger = structlog.get_logger()

class ContentStore(Protocol):
    def find(self, clip_id: str) -> Optional[Clip]: ...
    def search(self, query: Optional[str] = None, kind: Optional[str] = None, limit: int = 50) -> List[Clip]: ...
    def insert_clip(self, clip: Clip) -> Clip: ...
    def list_by_creator(self, creator_id: str) -> List[Remix]: ...
    def list_all(self) -> List[Remix]: ...
    def get_remix(self, remix_id: str) -> Optional[Remix]: ...

class ContentResolver:
    """
    Looks clips up concurrently, at most ``concurrency`` at a time.

    A lookup that errors, times out, or returns a clip with a malformed owner
    address counts as absent; it never aborts the batch.

    Lookups run on ``executor``. When none is shared in, the resolver gets its
    own with ``concurrency`` threads, so timed-out lookups still hold a slot.
    """

    def __init__(self, store: ContentStore, concurrency: int = config.RESOLVER_CONCURRENCY,
                 timeout: float = config.STORE_TIMEOUT_SECONDS, executor: Optional[BoundedExecutor] = None):
        self.store = store
        self.concurrency = concurrency
        self.timeout = timeout
        self.executor = executor or BoundedExecutor(concurrency, "resolver")

    async def resolve(self, ids: Sequence[str]) -> List[Tuple[str, Optional[Clip]]]:
        return await bounded_gather(dedupe_ids(ids), self._lookup, self.concurrency)

    async def resolve_present(self, ids: Sequence[str]) -> List[Clip]:
        """Resolved clips only, in first-seen input order."""
        return [clip for _, clip in await self.resolve(ids) if clip is not None]

    async def _lookup(self, clip_id: str) -> Tuple[str, Optional[Clip]]:
        try:
            clip = await call_with_timeout(self.store.find, clip_id, timeout=self.timeout,
                                           executor=self.executor)
        except asyncio.TimeoutError:
            logger.warning("Clip lookup timed out", clip_id=clip_id, timeout=self.timeout)
            return clip_id, None
        except Exception as e:
            logger.warning("Clip lookup failed", clip_id=clip_id, error=str(e))
            return clip_id, None

        if clip is None:
            logger.debug("Clip not found", clip_id=clip_id)
            return clip_id, None

        if not is_valid_owner_address(clip.owner_address):
            logger.warning("Clip rejected: invalid owner address",
                          clip_id=clip_id, owner_address=clip.owner_address)
            return clip_id, None

        return clip_id, clip
