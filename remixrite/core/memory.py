"""
In-memory adapters for local development (REMIXRITE_BACKEND=memory) and tests.

They honour the same contracts as the Postgres, storage and ledger adapters,
including idempotent writes, and expose a few switches for injecting failures.
"""

import hashlib
import threading
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set

from remixrite.core.errors import PersistenceError, UploadError
from remixrite.core.storage import UploadResult
from remixrite.core.utils import calculate_content_hash, new_id, utcnow
from remixrite.models.clip import Clip, ClipMetadata, LicenseTerms
from remixrite.models.remix import DistributionDraft, Remix, RemixDraft, RoyaltyDistribution

class InMemoryDatabase:
    """Tables shared by the in-memory content and settlement stores."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.clips: Dict[str, Clip] = {}
        self.remixes: Dict[str, Remix] = {}
        self.distributions: Dict[tuple, RoyaltyDistribution] = {}

class InMemoryContentStore:
    def __init__(self, database: Optional[InMemoryDatabase] = None) -> None:
        self.database = database or InMemoryDatabase()
        self.failing_clip_ids: Set[str] = set()
        self.unavailable = False
        self.lookups: List[str] = []

    def _check(self) -> None:
        if self.unavailable:
            raise PersistenceError("content store unavailable")

    def find(self, clip_id: str) -> Optional[Clip]:
        self.lookups.append(clip_id)
        self._check()
        if clip_id in self.failing_clip_ids:
            raise PersistenceError(f"lookup failed for {clip_id}")
        return self.database.clips.get(clip_id)

    def search(self, query: Optional[str] = None, kind: Optional[str] = None, limit: int = 50) -> List[Clip]:
        self._check()
        clips = list(self.database.clips.values())
        if query:
            needle = query.lower()
            clips = [c for c in clips if needle in c.title.lower() or needle in (c.metadata.artist or "").lower()]
        if kind:
            clips = [c for c in clips if c.metadata.kind == kind]
        return clips[:limit]

    def insert_clip(self, clip: Clip) -> Clip:
        self._check()
        stored = clip.model_copy(update={"created_at": clip.created_at or utcnow()})
        with self.database.lock:
            self.database.clips[stored.id] = stored
        return stored

    def list_by_creator(self, creator_id: str) -> List[Remix]:
        return [r for r in self.list_all() if r.creator_id == creator_id]

    def list_all(self) -> List[Remix]:
        self._check()
        return sorted(self.database.remixes.values(), key=lambda r: r.created_at, reverse=True)

    def get_remix(self, remix_id: str) -> Optional[Remix]:
        self._check()
        return self.database.remixes.get(remix_id)

class InMemorySettlementStore:
    def __init__(self, database: Optional[InMemoryDatabase] = None) -> None:
        self.database = database or InMemoryDatabase()
        self.failing_distribution_clip_ids: Set[str] = set()
        self.fail_remix_insert = False
        self.fail_distribution_reads = False
        self.remix_inserts = 0
        self.distribution_inserts = 0

    def insert_remix(self, draft: RemixDraft) -> Remix:
        if self.fail_remix_insert:
            raise PersistenceError("remix insert failed")
        with self.database.lock:
            self.remix_inserts += 1
            existing = self.database.remixes.get(draft.id)
            if existing is not None:
                return existing
            remix = Remix(**draft.model_dump(), created_at=utcnow())
            self.database.remixes[remix.id] = remix
            return remix

    def insert_distribution(self, row: DistributionDraft) -> RoyaltyDistribution:
        if row.clip_id in self.failing_distribution_clip_ids:
            raise PersistenceError(f"distribution insert failed for {row.clip_id}")
        with self.database.lock:
            if row.remix_id not in self.database.remixes:
                raise PersistenceError(f"remix {row.remix_id} does not exist")
            key = (row.remix_id, row.clip_id)
            existing = self.database.distributions.get(key)
            if existing is not None:
                return existing
            self.distribution_inserts += 1
            distribution = RoyaltyDistribution(**row.model_dump(), id=new_id(), timestamp=utcnow())
            self.database.distributions[key] = distribution
            return distribution

    def distributions_for(self, remix_id: str) -> List[RoyaltyDistribution]:
        if self.fail_distribution_reads:
            raise PersistenceError("distribution read failed")
        return [d for (rid, _), d in self.database.distributions.items() if rid == remix_id]

    def distributions_for_owner(self, owner_address: str) -> List[RoyaltyDistribution]:
        owner = owner_address.lower()
        return [d for d in self.database.distributions.values() if d.owner_address.lower() == owner]

class InMemoryStorage:
    def __init__(self) -> None:
        self.objects: Dict[str, bytes] = {}
        self.fail = False

    def upload(self, artifact: bytes, name: str, tags: Optional[Dict[str, str]] = None,
               media_type: str = "remix") -> UploadResult:
        if self.fail:
            raise UploadError("storage backend rejected the upload")
        content_hash = calculate_content_hash(artifact)
        self.objects[content_hash] = artifact
        return UploadResult(content_hash=content_hash, url=f"memory://{content_hash}",
                            storage_uri=f"memory://{content_hash}")

    def health_check(self) -> Dict[str, Any]:
        return {"memory": {"available": True, "objects": len(self.objects)}}

def _address(seed: str) -> str:
    return "0x" + hashlib.sha256(seed.encode("utf-8")).hexdigest()[:40]

class InMemoryLedgerClient:
    """
    Ledger double. Derivative links are deduped by idempotency key, the same
    guarantee the real ledger gives.

    ``fail_steps`` holds method names that should raise; ``fail_times`` limits
    how many calls fail before succeeding (None means always).
    """

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.metadata: Dict[str, Dict[str, Any]] = {}
        self.assets: Dict[str, str] = {}
        self.licenses: Dict[str, LicenseTerms] = {}
        self.links: Dict[str, Dict[str, Any]] = {}
        self.calls: Dict[str, int] = {}
        self.fail_steps: Set[str] = set()
        self.fail_times: Optional[int] = None
        self._failures = 0

    def _enter(self, step: str) -> None:
        with self.lock:
            self.calls[step] = self.calls.get(step, 0) + 1
            if step in self.fail_steps and (self.fail_times is None or self._failures < self.fail_times):
                self._failures += 1
                raise ConnectionError(f"ledger rejected {step}")

    def upload_metadata(self, metadata: Dict[str, Any]) -> str:
        self._enter("upload_metadata")
        uri = f"ipfs://metadata-{len(self.metadata) + 1}"
        self.metadata[uri] = metadata
        return uri

    def register_asset(self, token_contract: str, token_id: str, metadata_uri: str) -> str:
        self._enter("register_asset")
        asset_id = _address(f"{token_contract}:{token_id}")
        self.assets[asset_id] = metadata_uri
        return asset_id

    def attach_license(self, asset_id: str, terms: LicenseTerms) -> str:
        self._enter("attach_license")
        license_id = str(len(self.licenses) + 1)
        self.licenses[license_id] = terms
        return license_id

    def register_derivative(self, child_asset_id: str, parent_asset_ids: List[str], idempotency_key: str) -> str:
        self._enter("register_derivative")
        with self.lock:
            existing = self.links.get(idempotency_key)
            if existing is not None:
                return existing["tx_hash"]
            tx_hash = "0x" + hashlib.sha256(idempotency_key.encode("utf-8")).hexdigest()
            self.links[idempotency_key] = {
                "child": child_asset_id,
                "parents": list(parent_asset_ids),
                "tx_hash": tx_hash,
            }
            return tx_hash

    def health_check(self) -> Dict[str, Any]:
        return {"available": True, "assets": len(self.assets)}

class StaticTagGenerator:
    """Tagger double returning fixed answers, or raising when ``fail`` is set."""

    def __init__(self, tags: Optional[List[str]] = None, titles: Optional[List[str]] = None) -> None:
        self.tags = tags if tags is not None else ["remix", "mashup"]
        self.titles = titles if titles is not None else ["Generated Remix"]
        self.fail = False

    def generate_tags(self, title: str, description: str, kind: str) -> List[str]:
        if self.fail:
            raise RuntimeError("tagger down")
        return list(self.tags)

    def generate_title(self, original_titles, style, mood) -> List[str]:
        if self.fail:
            raise RuntimeError("tagger down")
        return list(self.titles)

def seed_clip(database: InMemoryDatabase, title: str, owner_address: str, kind: str = "audio",
              clip_id: Optional[str] = None, royalty_rate: Optional[Decimal] = None) -> Clip:
    """Insert a ready-made clip, as the upload workflow would have."""
    clip = Clip(
        id=clip_id or new_id(),
        title=title,
        source_url=f"memory://{title.lower().replace(' ', '-')}",
        metadata=ClipMetadata(kind=kind, artist="Seed", tags=[kind]),
        owner_address=owner_address,
        ledger_asset_id=_address(f"asset:{title}:{owner_address}"),
        license_terms=LicenseTerms.default(royalty_rate) if royalty_rate is not None else None,
        created_at=utcnow(),
    )
    database.clips[clip.id] = clip
    return clip
