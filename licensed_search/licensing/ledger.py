"""
Copyright.sh ledger client

Three operations share one HTTP client:

- ``check_license``: license directory lookup, unauthenticated, fail-open.
- ``acquire_license``: exchanges a payment declaration for a licensed URL.
- ``log_usage``: reports consumed tokens per URL after a fetch batch.

Each call carries its own timeout. Acquisition and usage logging require the
ledger API key and raise; the directory lookup never raises.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from ..config.settings import LedgerConfig
from ..errors import ConfigurationError, LicensedSearchError, TransportError, UpstreamError, describe_error
from .cache import NullCache, VerdictCache
from .models import (
    AI_LICENSE_TYPE,
    AcquisitionGrant,
    Distribution,
    LicenseStage,
    LicenseVerdict,
    PaymentMethod,
    UsageBatch,
)

logger = logging.getLogger(__name__)

LICENSES_PATH = "/api/v1/licenses/"
ACQUIRE_PATH = "/api/v1/licenses/acquire"
USAGE_LOG_PATH = "/api/v1/usage/log"

API_KEY_HEADER = "X-API-Key"


class LedgerService:
    """Client for the ledger's license directory, acquisition and usage endpoints"""

    def __init__(self, config: LedgerConfig, cache=None, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        if cache is None:
            if config.enable_cache:
                cache = VerdictCache(default_ttl=config.cache_ttl_seconds,
                                     max_entries=config.cache_max_entries)
            else:
                cache = NullCache()
        self.cache = cache

        self._client = client
        self._owns_client = client is None

    @property
    def has_credential(self) -> bool:
        return bool(self.config.api_key)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.api_url,
                headers={"Content-Type": "application/json"},
                verify=self.config.verify_tls,
            )
        return self._client

    def _auth_headers(self) -> Dict[str, str]:
        return {API_KEY_HEADER: self.config.api_key} if self.config.api_key else {}

    def _require_credential(self, operation: str):
        if not self.config.api_key:
            raise ConfigurationError(f"COPYRIGHTSH_LEDGER_API_KEY is required for {operation}")

    async def _request(self, method: str, path: str, timeout_ms: int, **kwargs) -> httpx.Response:
        """Send one request; map transport failures and non-2xx answers to our errors.

        ``timeout_ms`` bounds the whole call, body included; httpx's own
        timeout only bounds each connect/read/write step.
        """
        client = self._get_client()
        timeout = timeout_ms / 1000.0
        try:
            response = await asyncio.wait_for(
                client.request(method, path, timeout=timeout, headers=self._auth_headers(), **kwargs),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise TransportError(f"{self.config.api_url}{path}",
                                 f"ledger timeout after {timeout_ms}ms ({e.__class__.__name__})") from e
        except httpx.HTTPError as e:
            raise TransportError(f"{self.config.api_url}{path}", f"{e.__class__.__name__}: {e}") from e

        if not response.is_success:
            raise UpstreamError("ledger", response.text[:500] or response.reason_phrase,
                                status_code=response.status_code)
        return response

    @staticmethod
    def _select_record(data: Any) -> Optional[Dict[str, Any]]:
        records = data if isinstance(data, list) else [data]
        records = [record for record in records if isinstance(record, dict)]
        if not records:
            return None
        # Non-AI license types fall back to the first record.
        for record in records:
            if record.get("license_type") == AI_LICENSE_TYPE:
                return record
        return records[0]

    async def check_license(self, url: str) -> LicenseVerdict:
        """Look up the license status of ``url``. Never raises."""
        if not self.config.enable_tracking:
            return LicenseVerdict.unknown(url)

        cached = await self.cache.get(url)
        if cached is not None:
            return cached

        try:
            response = await self._request(
                "GET", LICENSES_PATH, self.config.license_check_timeout_ms, params={"url": url}
            )
            record = self._select_record(response.json())
        except (LicensedSearchError, ValueError) as e:
            logger.warning(f"License check degraded to unknown for {url}: {e}")
            return LicenseVerdict.unknown(url, error=describe_error(e))

        if record is None:
            logger.debug(f"No license record for {url}")
            return LicenseVerdict.unknown(url)

        verdict = LicenseVerdict.from_record(url, record)
        await self.cache.set(url, verdict, ttl=self.config.cache_ttl_seconds)
        logger.debug(f"License verdict for {url}: {verdict.action}")
        return verdict

    async def acquire_license(
        self,
        url: str,
        stage: LicenseStage,
        distribution: Distribution,
        estimated_tokens: int,
        payment_method: PaymentMethod = "account_balance",
        payment_proof: Optional[str] = None,
        payment_amount: Optional[float] = None,
    ) -> AcquisitionGrant:
        """Request a licensed URL for ``url``. Single attempt, no retry."""
        self._require_credential(ACQUIRE_PATH)
        if payment_method == "x402" and not payment_proof:
            raise ValueError("payment_proof is required when payment_method is 'x402'")

        body = {
            "url": url,
            "estimated_tokens": estimated_tokens,
            "stage": stage,
            "distribution": distribution,
            "payment_method": payment_method,
        }
        if payment_proof is not None:
            body["payment_proof"] = payment_proof
        if payment_amount is not None:
            body["payment_amount"] = payment_amount

        logger.info(f"Acquiring license for {url} ({stage}/{distribution}, ~{estimated_tokens} tokens)")
        response = await self._request(
            "POST", ACQUIRE_PATH, self.config.license_acquire_timeout_ms, json=body
        )
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError("ledger", f"acquisition response is not JSON: {e}") from e
        return AcquisitionGrant.from_response(data)

    async def log_usage(self, batch: UsageBatch) -> None:
        """Report consumed tokens for one request batch."""
        self._require_credential(USAGE_LOG_PATH)
        await self._request(
            "POST", USAGE_LOG_PATH, self.config.usage_log_timeout_ms, json=batch.to_payload()
        )
        logger.info(f"Usage logged: gen_id={batch.generation_id}, hits={len(batch.hits)}")

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
        await self.cache.close()
