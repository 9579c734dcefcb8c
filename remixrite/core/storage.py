import json
import mimetypes
import structlog
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import requests
from google.cloud import storage
from google.cloud.exceptions import GoogleCloudError
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from remixrite import config
from remixrite.core.errors import UploadError
from remixrite.core.utils import calculate_content_hash, create_media_storage_path, format_file_size, new_id

logger = structlog.get_logger()

@dataclass(frozen=True)
class UploadResult:
    """Content address plus a URL the artifact can be fetched from."""
    content_hash: str
    url: str
    storage_uri: str

class StorageClient:
    """
    Artifact uploader with GCS, Pinata (IPFS) and local backends.

    Retries are this client's concern: the Pinata session retries transient
    HTTP failures, and pinning identical bytes yields the same CID.
    """

    def __init__(self, use_gcs: bool = config.USE_GCS, use_pinata: bool = config.USE_PINATA,
                 bucket_name: str = config.GCS_BUCKET_NAME,
                 pinata_endpoint: str = config.PINATA_ENDPOINT,
                 pinata_api_key: str = config.PINATA_API_KEY,
                 pinata_api_secret: str = config.PINATA_API_SECRET,
                 ipfs_gateway: str = config.IPFS_GATEWAY,
                 local_root: str = "uploads",
                 timeout: float = config.UPLOAD_TIMEOUT_SECONDS):
        self.use_gcs = use_gcs
        self.use_pinata = use_pinata
        self.bucket_name = bucket_name
        self.pinata_endpoint = pinata_endpoint.rstrip("/")
        self.pinata_api_key = pinata_api_key
        self.pinata_api_secret = pinata_api_secret
        self.ipfs_gateway = ipfs_gateway.rstrip("/")
        self.local_root = Path(local_root)
        self.timeout = timeout
        self.gcs_client = None
        self.session = None

        if self.use_gcs:
            try:
                self._initialize_gcs()
            except Exception as e:
                logger.error("Failed to initialize GCS client", error=str(e))
                logger.warning("GCS initialization failed, continuing without GCS storage")

        if self.use_pinata:
            if self.pinata_api_key and self.pinata_api_secret:
                self._initialize_pinata_session()
            else:
                logger.warning("Pinata API credentials not found, IPFS uploads disabled")

        logger.info("Storage client initialized",
                   gcs_enabled=self.gcs_client is not None,
                   pinata_enabled=self.session is not None)

    def _initialize_gcs(self):
        """Initialize Google Cloud Storage client."""
        self.gcs_client = storage.Client()
        bucket = self.gcs_client.bucket(self.bucket_name)
        if not bucket.exists():
            logger.warning("GCS bucket does not exist", bucket_name=self.bucket_name)
        else:
            logger.info("GCS client initialized successfully", bucket_name=self.bucket_name)

    def _initialize_pinata_session(self):
        """Initialize HTTP session for Pinata with retry logic."""
        self.session = requests.Session()

        retry_strategy = Retry(
            total=3,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=frozenset({"GET", "POST"}),
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)
        self.session.headers.update({
            "pinata_api_key": self.pinata_api_key,
            "pinata_secret_api_key": self.pinata_api_secret,
        })

        logger.info("Pinata HTTP session initialized", endpoint=self.pinata_endpoint)

    def upload(self, artifact: bytes, name: str, tags: Optional[Dict[str, str]] = None,
               media_type: str = "remix") -> UploadResult:
        """
        Upload an artifact to the configured backend.

        Args:
            artifact: Raw bytes of the derived work
            name: Human-readable name stored with the artifact
            tags: Key/value metadata stored with the artifact
            media_type: Storage folder / category

        Returns:
            UploadResult with the content hash and a retrievable URL

        Raises:
            UploadError: if the configured backend rejects the upload
        """
        tags = tags or {}
        logger.info("Starting artifact upload",
                   name=name,
                   file_size_human=format_file_size(len(artifact)),
                   media_type=media_type)

        if self.gcs_client is not None:
            try:
                return self._upload_to_gcs(artifact, name, tags, media_type)
            except Exception as e:
                logger.error("GCS upload failed", name=name, error=str(e))
                if self.session is None:
                    raise UploadError(f"GCS upload failed: {e}") from e
                logger.info("Falling back to Pinata storage")

        if self.session is not None:
            try:
                return self._upload_to_pinata(artifact, name, tags)
            except Exception as e:
                logger.error("Pinata upload failed", name=name, error=str(e))
                raise UploadError(f"All storage backends failed. Last error: {e}") from e

        if self.use_gcs or self.use_pinata:
            raise UploadError("No storage backend could be initialized")

        logger.warning("No storage backends configured, using local storage")
        try:
            return self._upload_to_local(artifact, name, media_type)
        except OSError as e:
            raise UploadError(f"Local upload failed: {e}") from e

    def _upload_to_gcs(self, artifact: bytes, name: str, tags: Dict[str, str], media_type: str) -> UploadResult:
        """Upload artifact to Google Cloud Storage."""
        content_hash = calculate_content_hash(artifact)
        storage_path = create_media_storage_path(content_hash[:16], name, media_type)

        bucket = self.gcs_client.bucket(self.bucket_name)
        blob = bucket.blob(storage_path)
        blob.metadata = {
            **{key: str(value) for key, value in tags.items()},
            "name": name,
            "content_hash": content_hash,
            "upload_timestamp": str(int(time.time())),
        }

        start_time = time.time()
        try:
            blob.upload_from_string(artifact, content_type=self._get_content_type(name), timeout=self.timeout)
        except GoogleCloudError as e:
            logger.error("GCS API error during upload",
                        name=name, error=str(e), error_code=getattr(e, 'code', None))
            raise
        upload_time = time.time() - start_time

        storage_uri = f"gs://{self.bucket_name}/{storage_path}"
        logger.info("GCS upload completed successfully",
                   name=name,
                   storage_uri=storage_uri,
                   upload_time_seconds=round(upload_time, 2))

        return UploadResult(
            content_hash=content_hash,
            url=f"https://storage.googleapis.com/{self.bucket_name}/{storage_path}",
            storage_uri=storage_uri,
        )

    def _upload_to_pinata(self, artifact: bytes, name: str, tags: Dict[str, str]) -> UploadResult:
        """Pin artifact to IPFS through Pinata."""
        pinata_metadata = {"name": name, "keyvalues": {key: str(value) for key, value in tags.items()}}

        start_time = time.time()
        try:
            response = self.session.post(
                f"{self.pinata_endpoint}/pinning/pinFileToIPFS",
                files={"file": (name, artifact, self._get_content_type(name) or "application/octet-stream")},
                data={
                    "pinataMetadata": json.dumps(pinata_metadata),
                    "pinataOptions": json.dumps({"cidVersion": 1}),
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error("Pinata HTTP error during upload",
                        name=name, error=str(e),
                        status_code=getattr(getattr(e, "response", None), "status_code", None))
            raise
        upload_time = time.time() - start_time

        cid = response.json().get("IpfsHash")
        if not cid:
            raise UploadError("Pinata upload succeeded but no IpfsHash returned")

        logger.info("Pinata upload completed successfully",
                   name=name, cid=cid, upload_time_seconds=round(upload_time, 2))

        return UploadResult(content_hash=cid, url=f"{self.ipfs_gateway}/{cid}", storage_uri=f"ipfs://{cid}")

    def _upload_to_local(self, artifact: bytes, name: str, media_type: str) -> UploadResult:
        """Write artifact under the local uploads directory."""
        content_hash = calculate_content_hash(artifact)
        local_path = self.local_root / create_media_storage_path(new_id(), name, media_type)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        local_path.write_bytes(artifact)

        logger.info("Local upload completed successfully", name=name, path=str(local_path))
        return UploadResult(
            content_hash=content_hash,
            url=local_path.resolve().as_uri(),
            storage_uri=f"local://{local_path}",
        )

    def _get_content_type(self, filename: str) -> Optional[str]:
        content_type, _ = mimetypes.guess_type(filename)
        return content_type

    def health_check(self) -> Dict[str, Any]:
        """Report which backends are usable."""
        health: Dict[str, Any] = {}

        if self.use_gcs:
            try:
                available = self.gcs_client is not None and self.gcs_client.bucket(self.bucket_name).exists()
                health["gcs"] = {"available": bool(available), "bucket": self.bucket_name}
            except Exception as e:
                health["gcs"] = {"available": False, "error": str(e)}

        if self.use_pinata:
            if self.session is None:
                health["pinata"] = {"available": False, "error": "not_configured"}
            else:
                try:
                    response = self.session.get(f"{self.pinata_endpoint}/data/testAuthentication", timeout=10)
                    health["pinata"] = {"available": response.ok, "status_code": response.status_code}
                except requests.exceptions.RequestException as e:
                    health["pinata"] = {"available": False, "error": str(e)}

        if not health:
            health["local"] = {"available": True, "root": str(self.local_root)}

        return health
