"""
Provenance ledger registration.

A registration attempt walks a fixed sequence of ledger calls:

    Idle -> MetadataStaged -> AssetRegistered -> LicenseAttached -> DerivativeLinked -> Committed
                                                                          \\-> Failed

Remixes skip LicenseAttached; fresh clip uploads stop after it. Each step
either advances the attempt or moves it to Failed, recording the last step
that succeeded. Only the derivative-link step is re-submitted, because the
ledger dedupes it by a stable fingerprint of (asset id, parent ids).
"""

import hashlib
import structlog
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

import requests

from remixrite import config
from remixrite.core.errors import LedgerRegistrationError
from remixrite.core.utils import new_id, utcnow
from remixrite.models.clip import LicenseTerms

logger = structlog.get_logger()

PLATFORM = "RemixRite"

class RegistrationStep(str, Enum):
    IDLE = "idle"
    METADATA_STAGED = "metadata_staged"
    ASSET_REGISTERED = "asset_registered"
    LICENSE_ATTACHED = "license_attached"
    DERIVATIVE_LINKED = "derivative_linked"
    COMMITTED = "committed"
    FAILED = "failed"

@dataclass
class RegistrationAttempt:
    """Per-attempt state. ``step`` is the last step reached; ``pending`` the one in flight."""
    metadata: Dict[str, Any]
    parent_asset_ids: List[str] = field(default_factory=list)
    step: RegistrationStep = RegistrationStep.IDLE
    pending: Optional[RegistrationStep] = None
    last_completed: RegistrationStep = RegistrationStep.IDLE
    metadata_uri: Optional[str] = None
    asset_id: Optional[str] = None
    license_terms_id: Optional[str] = None
    tx_reference: Optional[str] = None
    fingerprint: Optional[str] = None
    error: Optional[str] = None

    def advance(self, step: RegistrationStep):
        self.step = step
        self.last_completed = step
        self.pending = None

    def fail(self, error: str):
        self.error = error
        self.step = RegistrationStep.FAILED

@dataclass(frozen=True)
class Registration:
    asset_id: str
    tx_reference: Optional[str] = None
    fingerprint: Optional[str] = None
    license_terms_id: Optional[str] = None

class LedgerClient(Protocol):
    def upload_metadata(self, metadata: Dict[str, Any]) -> str: ...
    def register_asset(self, token_contract: str, token_id: str, metadata_uri: str) -> str: ...
    def attach_license(self, asset_id: str, terms: LicenseTerms) -> str: ...
    def register_derivative(self, child_asset_id: str, parent_asset_ids: List[str], idempotency_key: str) -> str: ...

def build_ledger_metadata(title: str, description: str, media_url: str,
                          attributes: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "title": title,
        "description": description,
        "mediaUrl": media_url,
        "attributes": {
            **(attributes or {}),
            "createdAt": utcnow().isoformat(),
            "platform": PLATFORM,
        },
    }

def derivative_fingerprint(asset_id: str, parent_asset_ids: List[str]) -> str:
    """Stable pairing key for a derivative link; parent order does not matter."""
    material = asset_id + "|" + ",".join(sorted(parent_asset_ids))
    return hashlib.sha256(material.encode("utf-8")).hexdigest()

class HttpLedgerClient:
    """REST client for the provenance ledger. Every call carries an explicit timeout."""

    def __init__(self, endpoint: str = config.LEDGER_ENDPOINT, api_key: str = config.LEDGER_API_KEY,
                 timeout: float = config.LEDGER_TIMEOUT_SECONDS, session: Optional[requests.Session] = None):
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        if api_key:
            self.session.headers.update({"X-Api-Key": api_key})

    def _post(self, path: str, payload: Dict[str, Any], result_key: str,
              headers: Optional[Dict[str, str]] = None) -> str:
        response = self.session.post(f"{self.endpoint}{path}", json=payload, headers=headers, timeout=self.timeout)
        response.raise_for_status()
        value = response.json().get(result_key)
        if not value:
            raise ValueError(f"Ledger response from {path} is missing '{result_key}'")
        return value

    def upload_metadata(self, metadata: Dict[str, Any]) -> str:
        return self._post("/metadata", metadata, "metadataURI")

    def register_asset(self, token_contract: str, token_id: str, metadata_uri: str) -> str:
        return self._post("/ip-assets", {
            "tokenContract": token_contract,
            "tokenId": token_id,
            "metadataURI": metadata_uri,
        }, "ipId")

    def attach_license(self, asset_id: str, terms: LicenseTerms) -> str:
        return self._post(f"/ip-assets/{asset_id}/license-terms", {
            "transferable": terms.transferable,
            "royaltyRate": float(terms.royalty_rate),
            "mintingFee": str(terms.minting_fee),
            "commercialUse": terms.commercial_use,
            "derivativesAllowed": terms.derivatives_allowed,
            "commercialAttribution": terms.commercial_attribution,
            "commercialRevShare": float(terms.royalty_rate),
            "derivativeRevShare": float(terms.royalty_rate),
            "currency": terms.currency,
        }, "licenseTermsId")

    def register_derivative(self, child_asset_id: str, parent_asset_ids: List[str], idempotency_key: str) -> str:
        return self._post("/derivatives", {
            "childIpId": child_asset_id,
            "parentIpIds": parent_asset_ids,
            "royaltyContext": "0x",
        }, "txHash", headers={"Idempotency-Key": idempotency_key})

    def health_check(self) -> Dict[str, Any]:
        try:
            response = self.session.get(f"{self.endpoint}/health", timeout=min(self.timeout, 10))
            return {"available": response.ok, "status_code": response.status_code}
        except requests.exceptions.RequestException as e:
            return {"available": False, "error": str(e)}

class LedgerRegistrar:
    """Drives registration attempts against a ``LedgerClient``."""

    def __init__(self, client: LedgerClient, token_contract: str = config.LEDGER_NFT_CONTRACT,
                 link_attempts: int = config.LEDGER_LINK_ATTEMPTS):
        self.client = client
        self.token_contract = token_contract
        self.link_attempts = max(1, link_attempts)

    def register_derivative(self, parent_asset_ids: List[str], metadata: Dict[str, Any],
                            attempt: Optional[RegistrationAttempt] = None) -> Registration:
        """
        Register a remix as a new asset and link it to its parents.

        ``attempt`` may be supplied by the caller to observe progress while
        the registration runs in another thread.

        Raises:
            LedgerRegistrationError: naming the step that failed
        """
        if not parent_asset_ids:
            raise LedgerRegistrationError("A derivative needs at least one parent asset",
                                          step=RegistrationStep.IDLE.value,
                                          last_completed=RegistrationStep.IDLE.value)

        attempt = attempt or RegistrationAttempt(metadata=metadata)
        attempt.metadata = metadata
        attempt.parent_asset_ids = list(parent_asset_ids)

        self._stage_and_register(attempt)

        attempt.fingerprint = derivative_fingerprint(attempt.asset_id, attempt.parent_asset_ids)
        attempt.tx_reference = self._link_with_resubmission(attempt)
        attempt.advance(RegistrationStep.DERIVATIVE_LINKED)
        attempt.advance(RegistrationStep.COMMITTED)

        logger.info("Derivative registered on ledger",
                   asset_id=attempt.asset_id,
                   tx_reference=attempt.tx_reference,
                   parent_count=len(attempt.parent_asset_ids))
        return Registration(asset_id=attempt.asset_id, tx_reference=attempt.tx_reference,
                            fingerprint=attempt.fingerprint)

    def register_original(self, metadata: Dict[str, Any], license_terms: LicenseTerms,
                          attempt: Optional[RegistrationAttempt] = None) -> Registration:
        """Register a freshly uploaded clip and attach its license terms."""
        attempt = attempt or RegistrationAttempt(metadata=metadata)
        attempt.metadata = metadata

        self._stage_and_register(attempt)
        attempt.license_terms_id = self._run_step(
            attempt, RegistrationStep.LICENSE_ATTACHED,
            self.client.attach_license, attempt.asset_id, license_terms)
        attempt.advance(RegistrationStep.COMMITTED)

        logger.info("Original asset registered on ledger",
                   asset_id=attempt.asset_id, license_terms_id=attempt.license_terms_id)
        return Registration(asset_id=attempt.asset_id, license_terms_id=attempt.license_terms_id)

    def _stage_and_register(self, attempt: RegistrationAttempt):
        attempt.metadata_uri = self._run_step(
            attempt, RegistrationStep.METADATA_STAGED,
            self.client.upload_metadata, attempt.metadata)
        attempt.asset_id = self._run_step(
            attempt, RegistrationStep.ASSET_REGISTERED,
            self.client.register_asset, self.token_contract, new_id(), attempt.metadata_uri)

    def _run_step(self, attempt: RegistrationAttempt, step: RegistrationStep,
                  call: Callable[..., str], *args) -> str:
        attempt.pending = step
        try:
            result = call(*args)
        except Exception as e:
            self._fail(attempt, step, e)
        attempt.advance(step)
        logger.debug("Ledger step completed", step=step.value)
        return result

    def _link_with_resubmission(self, attempt: RegistrationAttempt) -> str:
        step = RegistrationStep.DERIVATIVE_LINKED
        attempt.pending = step
        last_error = None
        for attempt_number in range(1, self.link_attempts + 1):
            try:
                return self.client.register_derivative(attempt.asset_id, attempt.parent_asset_ids,
                                                       attempt.fingerprint)
            except Exception as e:
                last_error = e
                logger.warning("Derivative link failed",
                              asset_id=attempt.asset_id,
                              fingerprint=attempt.fingerprint,
                              attempt=attempt_number,
                              error=str(e))
        self._fail(attempt, step, last_error)

    def _fail(self, attempt: RegistrationAttempt, step: RegistrationStep, error: Exception):
        last_completed = attempt.last_completed
        attempt.fail(str(error))
        logger.error("Ledger registration failed",
                    failed_step=step.value,
                    last_completed_step=last_completed.value,
                    asset_id=attempt.asset_id,
                    error=str(error))
        raise LedgerRegistrationError(
            f"Ledger registration failed at {step.value}: {error}",
            step=step.value,
            last_completed=last_completed.value,
        ) from error
