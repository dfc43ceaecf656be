"""
Licensed fetch engine

Turns one URL into a LicensedFetchResult:

    START -> DIRECT_FETCH -> DONE
                          -> PAYMENT_REQUIRED -> ACQUIRING -> RETRY_FETCH -> DONE
                                                           -> ACQUIRE_FAILED -> DONE

Only a 402 carrying the x402 payment scheme enters the payment branch; any
other 402 is an ordinary failed fetch. Acquisition pays from the account
balance; x402 payment proofs are accepted by the ledger client but never
built here. No failure escapes ``fetch``: every path ends in exactly one
result record.
"""

import enum
import logging

from ..errors import LicensedSearchError, ProtocolMismatch, TransportError, describe_error
from ..search.fetcher import ContentFetcher, FetchedPage
from .ledger import LedgerService
from .models import AcquireOutcome, Distribution, LicensedFetchResult, LicenseStage
from .x402 import PAYMENT_REQUIRED, parse_x402

logger = logging.getLogger(__name__)

ACCOUNT_BALANCE = "account_balance"


class FetchState(enum.Enum):
    START = "start"
    DIRECT_FETCH = "direct_fetch"
    PAYMENT_REQUIRED = "payment_required"
    ACQUIRING = "acquiring"
    RETRY_FETCH = "retry_fetch"
    ACQUIRE_FAILED = "acquire_failed"
    DONE = "done"


def _from_page(page: FetchedPage, requested_url: str) -> LicensedFetchResult:
    return LicensedFetchResult(
        requested_url=requested_url,
        final_url=page.final_url,
        http_status=page.status,
        content_type=page.content_type,
        content_text=page.text,
    )


class LicensedFetcher:
    """Drives the direct fetch / x402 acquisition / licensed retry sequence"""

    def __init__(self, ledger: LedgerService, content_fetcher: ContentFetcher):
        self.ledger = ledger
        self.content_fetcher = content_fetcher

    def _transition(self, url: str, state: FetchState, detail: str = ""):
        logger.debug(f"[{url}] -> {state.name}{f' ({detail})' if detail else ''}")

    async def fetch(
        self,
        url: str,
        stage: LicenseStage = "infer",
        distribution: Distribution = "private",
        estimated_tokens: int = 1500,
        max_chars: int = 200000,
    ) -> LicensedFetchResult:
        self._transition(url, FetchState.START)

        self._transition(url, FetchState.DIRECT_FETCH)
        try:
            page = await self.content_fetcher.fetch(url, max_chars)
        except TransportError as e:
            logger.warning(f"Direct fetch failed for {url}: {e}")
            self._transition(url, FetchState.DONE, "transport error")
            return LicensedFetchResult(
                requested_url=url,
                final_url=url,
                http_status=0,
                error=describe_error(e),
            )

        result = _from_page(page, url)
        if page.status != PAYMENT_REQUIRED:
            self._transition(url, FetchState.DONE, f"HTTP {page.status}{', truncated' if page.truncated else ''}")
            return result

        try:
            hints = parse_x402(page.status, page.headers, page.text)
        except ProtocolMismatch as e:
            logger.info(f"402 without x402 signaling for {url}, not a licensing event")
            result.error = describe_error(e)
            self._transition(url, FetchState.DONE, "non-x402 402")
            return result

        self._transition(url, FetchState.PAYMENT_REQUIRED, f"price={hints.price}, payto={hints.payto}")
        result.payment_required = True
        result.x402_hints = hints

        self._transition(url, FetchState.ACQUIRING)
        result.payment_attempted = True
        try:
            grant = await self.ledger.acquire_license(
                url=url,
                stage=stage,
                distribution=distribution,
                estimated_tokens=estimated_tokens,
                payment_method=ACCOUNT_BALANCE,
            )
        except LicensedSearchError as e:
            logger.warning(f"License acquisition failed for {url}: {e}")
            result.error = f"license acquisition failed: {describe_error(e)}"
            self._transition(url, FetchState.ACQUIRE_FAILED)
            self._transition(url, FetchState.DONE)
            return result

        outcome = AcquireOutcome.from_grant(grant)
        result.acquire_outcome = outcome

        self._transition(url, FetchState.RETRY_FETCH, grant.licensed_url)
        try:
            licensed_page = await self.content_fetcher.fetch(grant.licensed_url, max_chars)
        except TransportError as e:
            logger.warning(f"Licensed retry failed for {url}: {e}")
            result.error = f"licensed retry failed: {describe_error(e)}"
            self._transition(url, FetchState.DONE, "retry transport error")
            return result

        retried = _from_page(licensed_page, url)
        retried.payment_required = True
        retried.payment_attempted = True
        retried.x402_hints = hints
        retried.acquire_outcome = outcome
        self._transition(url, FetchState.DONE, f"licensed HTTP {licensed_page.status}")
        return retried
