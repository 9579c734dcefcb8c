import asyncio
import structlog
from typing import Any, List, Optional

from remixrite import config
from remixrite.core.concurrency import BoundedExecutor, call_with_timeout
from remixrite.core.errors import LedgerRegistrationError, PersistenceError, UploadError, ValidationError
from remixrite.core.utils import is_valid_owner_address, new_id
from remixrite.models.clip import Clip, ClipMetadata, LicenseTerms, MediaKind
from remixrite.services.ledger import LedgerRegistrar, RegistrationAttempt, build_ledger_metadata
from remixrite.services.resolver import ContentStore
from remixrite.services.tagging import TagGenerator, fallback_tags

logger = structlog.get_logger()

class ClipCatalogService:
    """Uploads original clips (registering them with default license terms) and searches the catalog."""

    def __init__(self, store: ContentStore, uploader: Any, tagger: TagGenerator, registrar: LedgerRegistrar,
                 royalty_rate=config.DEFAULT_ROYALTY_RATE,
                 store_timeout: float = config.STORE_TIMEOUT_SECONDS,
                 upload_timeout: float = config.UPLOAD_TIMEOUT_SECONDS,
                 ledger_timeout: float = config.LEDGER_STAGE_TIMEOUT_SECONDS,
                 tagger_timeout: float = config.TAGGER_TIMEOUT_SECONDS,
                 store_executor: Optional[BoundedExecutor] = None):
        self.store = store
        self.store_executor = store_executor
        self.uploader = uploader
        self.tagger = tagger
        self.registrar = registrar
        self.royalty_rate = royalty_rate
        self.store_timeout = store_timeout
        self.upload_timeout = upload_timeout
        self.ledger_timeout = ledger_timeout
        self.tagger_timeout = tagger_timeout

    async def search(self, query: Optional[str] = None, kind: Optional[str] = None, limit: int = 50) -> List[Clip]:
        if kind and kind not in {k.value for k in MediaKind}:
            raise ValidationError(f"Unsupported clip type: {kind}")
        try:
            return await call_with_timeout(self.store.search, query, kind, limit, timeout=self.store_timeout,
                                           executor=self.store_executor)
        except asyncio.TimeoutError as e:
            raise PersistenceError("Timed out searching clips") from e

    async def upload_clip(self, data: bytes, filename: str, kind: str, owner_address: str,
                          title: Optional[str] = None, description: Optional[str] = None) -> Clip:
        if not is_valid_owner_address(owner_address):
            raise ValidationError("Owner address must be 0x followed by 40 hex characters")
        if kind not in {k.value for k in MediaKind}:
            raise ValidationError("Unsupported file type. Please use MP3, WAV, MP4, AVI, or MOV files.")
        if not data:
            raise ValidationError("No file provided")

        title = title or filename
        description = description or f"{kind} content uploaded to RemixRite"
        log = logger.bind(owner_address=owner_address, filename=filename)

        try:
            upload = await call_with_timeout(
                self.uploader.upload, data, title,
                {"type": kind, "owner": owner_address, "platform": "RemixRite"},
                kind, timeout=self.upload_timeout)
        except UploadError:
            raise
        except Exception as e:
            log.error("Clip upload failed", error=str(e) or type(e).__name__)
            raise UploadError(f"Clip upload failed: {e}") from e

        try:
            tags = await call_with_timeout(self.tagger.generate_tags, title, description, kind,
                                           timeout=self.tagger_timeout)
        except Exception as e:
            log.warning("Tag generation failed, using fallback", error=str(e) or type(e).__name__)
            tags = fallback_tags(title, description, kind)

        metadata = build_ledger_metadata(title, description, upload.url, {
            "fileType": kind,
            "fileSize": len(data),
            "tags": tags,
            "contentHash": upload.content_hash,
        })
        license_terms = LicenseTerms.default(self.royalty_rate)
        attempt = RegistrationAttempt(metadata=metadata)
        try:
            registration = await call_with_timeout(self.registrar.register_original, metadata, license_terms,
                                                   attempt, timeout=self.ledger_timeout)
        except asyncio.TimeoutError as e:
            step = (attempt.pending or attempt.step).value
            raise LedgerRegistrationError(f"Ledger registration timed out at {step}", step=step,
                                          last_completed=attempt.last_completed.value) from e

        clip = Clip(
            id=new_id(),
            title=title,
            source_url=upload.url,
            metadata=ClipMetadata(kind=kind, artist="User Upload", tags=tags,
                                  fileSize=len(data), contentHash=upload.content_hash),
            owner_address=owner_address,
            ledger_asset_id=registration.asset_id,
            license_terms=license_terms,
        )
        try:
            stored = await call_with_timeout(self.store.insert_clip, clip, timeout=self.store_timeout,
                                            executor=self.store_executor)
        except asyncio.TimeoutError as e:
            raise PersistenceError("Timed out writing clip") from e

        log.info("Clip uploaded", clip_id=stored.id, ledger_asset_id=stored.ledger_asset_id)
        return stored
