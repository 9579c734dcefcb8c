"""
Remix creation: resolve parents, describe, upload, register on the ledger,
split the fee and record the settlement.

Stages run strictly in order because each consumes the previous stage's
output. Tag and title generation are the only work that overlaps. Adapters
are passed in once at startup; the pipeline keeps no state between requests.
"""

import asyncio
import base64
import binascii
import json
import structlog
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from remixrite import config
from remixrite.core.concurrency import call_with_timeout
from remixrite.core.errors import (
    LedgerOutcomeUnknownError,
    LedgerRegistrationError,
    PartialSettlementError,
    PersistenceError,
    RemixNotFoundError,
    ResolutionError,
    UploadError,
    ValidationError,
)
from remixrite.core.storage import UploadResult
from remixrite.core.utils import dedupe_ids, new_id, utcnow
from remixrite.models.api import RemixRequest
from remixrite.models.clip import Clip
from remixrite.models.remix import EnrichedRemix, RemixDraft, RoyaltyDistribution
from remixrite.services.ledger import LedgerRegistrar, Registration, RegistrationAttempt, build_ledger_metadata
from remixrite.services.resolver import ContentResolver
from remixrite.services.royalty import RoyaltyCalculator
from remixrite.services.settlement import Settlement, SettlementRecorder
from remixrite.services.tagging import TagGenerator, fallback_tags, fallback_titles

logger = structlog.get_logger()

REMIX_KIND = "video"

class RemixPipeline:
    def __init__(self, resolver: ContentResolver, uploader: Any, tagger: TagGenerator,
                 registrar: LedgerRegistrar, calculator: RoyaltyCalculator, recorder: SettlementRecorder,
                 fee: Decimal = config.REMIX_FEE,
                 upload_timeout: float = config.UPLOAD_TIMEOUT_SECONDS,
                 ledger_timeout: float = config.LEDGER_STAGE_TIMEOUT_SECONDS,
                 tagger_timeout: float = config.TAGGER_TIMEOUT_SECONDS):
        self.resolver = resolver
        self.uploader = uploader
        self.tagger = tagger
        self.registrar = registrar
        self.calculator = calculator
        self.recorder = recorder
        self.fee = calculator.validate_fee(fee)
        self.upload_timeout = upload_timeout
        self.ledger_timeout = ledger_timeout
        self.tagger_timeout = tagger_timeout

    async def create_remix(self, request: RemixRequest) -> EnrichedRemix:
        """
        Run the whole creation pipeline for one request.

        Raises:
            ValidationError: empty clip list or missing creator
            ResolutionError: none of the clip ids resolved
            UploadError / LedgerRegistrationError: the stage failed; nothing was persisted
            PartialSettlementError: the remix row exists but some distributions did not get written
            PersistenceError: the remix row could not be written
            PersistenceOutcomeUnknownError: the remix write timed out; details carry the id to reconcile
        """
        clip_ids, creator_id = self._validate(request)
        started = time.time()
        log = logger.bind(creator_id=creator_id)
        log.info("Remix creation started", requested_clips=len(clip_ids))

        parents = await self._resolve(clip_ids)
        log.info("Parent clips resolved", requested=len(clip_ids), resolved=len(parents))

        title, tags = await self._describe(request, parents)
        artifact = self._build_artifact(parents, request)
        upload = await self._upload(artifact, title, creator_id, parents)

        registration = await self._register(parents, request, title, tags, upload, creator_id)
        shares = self.calculator.split(parents, self.fee)

        draft = RemixDraft(
            id=new_id(),
            creator_id=creator_id,
            original_clip_ids=[clip.id for clip in parents],
            output_url=upload.url,
            ledger_tx_hash=registration.tx_reference,
            ledger_asset_id=registration.asset_id,
            title=title,
            content_hash=upload.content_hash,
            tags=tags,
            fee=self.fee,
        )

        try:
            settlement = await self.recorder.commit(draft, shares)
        except PartialSettlementError as e:
            e.remix = self._assemble(Settlement(remix=e.remix, distributions=e.distributions), parents)
            raise

        log.info("Remix created",
                 remix_id=settlement.remix.id,
                 ledger_asset_id=registration.asset_id,
                 distributions=len(settlement.distributions),
                 processing_time_ms=round((time.time() - started) * 1000, 1))
        return self._assemble(settlement, parents)

    async def reconcile(self, remix_id: str) -> EnrichedRemix:
        """
        Write any distribution rows missing for an already-recorded remix.

        The split is recomputed from the remix's stored fee and parents, so
        every parent must still resolve.
        """
        try:
            remix = await call_with_timeout(self.resolver.store.get_remix, remix_id, timeout=self.resolver.timeout,
                                            executor=self.resolver.executor)
        except asyncio.TimeoutError as e:
            raise PersistenceError(f"Timed out loading remix {remix_id}") from e
        if remix is None:
            raise RemixNotFoundError(f"Remix {remix_id} not found")

        parents = await self.resolver.resolve_present(remix.original_clip_ids)
        if len(parents) != len(remix.original_clip_ids):
            raise ResolutionError(
                f"Cannot reconcile remix {remix_id}: "
                f"{len(remix.original_clip_ids) - len(parents)} parent clips no longer resolve")

        shares = self.calculator.split(parents, remix.fee)
        draft = RemixDraft(**remix.model_dump(exclude={"created_at"}))
        settlement = await self.recorder.commit(draft, shares)
        logger.info("Remix settlement reconciled", remix_id=remix_id, distributions=len(settlement.distributions))
        return self._assemble(settlement, parents)

    def _validate(self, request: RemixRequest) -> Tuple[List[str], str]:
        clip_ids = dedupe_ids(request.clip_ids or [])
        if not clip_ids:
            raise ValidationError("At least one clip ID is required")
        creator_id = (request.creator_id or "").strip()
        if not creator_id:
            raise ValidationError("Creator ID is required")
        return clip_ids, creator_id

    async def _resolve(self, clip_ids: Sequence[str]) -> List[Clip]:
        parents = await self.resolver.resolve_present(clip_ids)
        if not parents:
            raise ResolutionError("No valid clips found")
        return parents

    async def _describe(self, request: RemixRequest, parents: Sequence[Clip]) -> Tuple[str, List[str]]:
        original_titles = [clip.title for clip in parents]
        provisional_title = request.title or fallback_titles(original_titles, request.style, request.mood)[0]
        description = request.description or f"Remix created from {len(parents)} original clips"

        async def _title() -> str:
            if request.title:
                return request.title
            titles = await self._best_effort(
                self.tagger.generate_title, original_titles, request.style, request.mood,
                fallback=fallback_titles(original_titles, request.style, request.mood))
            return titles[0]

        title, tags = await asyncio.gather(
            _title(),
            self._best_effort(self.tagger.generate_tags, provisional_title, description, REMIX_KIND,
                              fallback=fallback_tags(provisional_title, description, REMIX_KIND)),
        )
        return title, tags

    async def _best_effort(self, func, *args, fallback: List[str]) -> List[str]:
        try:
            result = await call_with_timeout(func, *args, timeout=self.tagger_timeout)
        except Exception as e:
            logger.warning("Tag generator failed, using fallback",
                          operation=getattr(func, "__name__", "tagger"), error=str(e) or type(e).__name__)
            return fallback
        return result or fallback

    def _build_artifact(self, parents: Sequence[Clip], request: RemixRequest) -> bytes:
        """
        Produce the stored artifact. Media processing is out of scope: a
        base64 payload is stored as-is, anything else becomes a JSON manifest.
        """
        if request.remix_data:
            try:
                return base64.b64decode(request.remix_data, validate=True)
            except (binascii.Error, ValueError):
                pass

        manifest = {
            "type": "remix",
            "originalClips": [
                {"id": clip.id, "title": clip.title, "url": clip.source_url} for clip in parents
            ],
            "style": request.style,
            "mood": request.mood,
            "instructions": request.remix_data,
            "processedAt": utcnow().isoformat(),
        }
        return json.dumps(manifest, sort_keys=True).encode("utf-8")

    async def _upload(self, artifact: bytes, title: str, creator_id: str, parents: Sequence[Clip]) -> UploadResult:
        tags = {
            "type": "remix",
            "creator": creator_id,
            "originalClips": ",".join(clip.id for clip in parents),
            "platform": "RemixRite",
        }
        try:
            return await call_with_timeout(self.uploader.upload, artifact, title, tags, timeout=self.upload_timeout)
        except UploadError:
            raise
        except asyncio.TimeoutError as e:
            raise UploadError(f"Artifact upload timed out after {self.upload_timeout}s") from e
        except Exception as e:
            logger.error("Artifact upload failed", error=str(e))
            raise UploadError(f"Artifact upload failed: {e}") from e

    async def _register(self, parents: Sequence[Clip], request: RemixRequest, title: str, tags: List[str],
                        upload: UploadResult, creator_id: str) -> Registration:
        metadata = build_ledger_metadata(
            title,
            request.description or "Remix created from original works",
            upload.url,
            {
                "originalClips": [clip.id for clip in parents],
                "creator": creator_id,
                "style": request.style,
                "mood": request.mood,
                "tags": tags,
                "contentHash": upload.content_hash,
            },
        )
        parent_asset_ids = [clip.ledger_asset_id for clip in parents]
        attempt = RegistrationAttempt(metadata=metadata, parent_asset_ids=parent_asset_ids)

        # The ledger call is side-effecting: never abandon it mid-flight.
        task = asyncio.ensure_future(
            asyncio.to_thread(self.registrar.register_derivative, parent_asset_ids, metadata, attempt))
        try:
            return await asyncio.wait_for(asyncio.shield(task), self.ledger_timeout)
        except asyncio.TimeoutError as e:
            step = (attempt.pending or attempt.step).value
            logger.error("Ledger registration timed out", step=step, last_completed_step=attempt.last_completed.value)
            raise LedgerRegistrationError(
                f"Ledger registration timed out at {step}",
                step=step, last_completed=attempt.last_completed.value) from e
        except asyncio.CancelledError as e:
            step = (attempt.pending or attempt.step).value
            logger.warning("Request cancelled during ledger registration, outcome unknown",
                          step=step, asset_id=attempt.asset_id)
            raise LedgerOutcomeUnknownError(
                f"Request cancelled while ledger registration was at {step}; outcome unknown",
                step=step, last_completed=attempt.last_completed.value) from e

    def _assemble(self, settlement: Settlement, parents: Sequence[Clip]) -> EnrichedRemix:
        distributions: List[RoyaltyDistribution] = list(settlement.distributions)
        return EnrichedRemix(**settlement.remix.model_dump(), original_clips=list(parents),
                             royalty_distributions=distributions)

    def describe_config(self) -> Dict[str, Any]:
        return {
            "fee": str(self.fee),
            "strategy": type(self.calculator.strategy).__name__,
            "resolver_concurrency": self.resolver.concurrency,
        }
