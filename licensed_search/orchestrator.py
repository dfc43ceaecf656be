import asyncio
import logging
from typing import Any, Dict, List, Optional

from .errors import LicensedSearchError, describe_error
from .licensing.fetcher import LicensedFetcher
from .licensing.ledger import LedgerService
from .licensing.models import LicensedFetchResult, LicenseVerdict, UsageBatch, UsageHit
from .schemas import SearchToolArgs
from .search.exa_client import ExaSearchClient
from .utils.tokens import TokenEstimator

logger = logging.getLogger(__name__)


class SearchOrchestrator:
    """
    Runs one licensed search request from upstream query to composed response.

    License checks for all result URLs run concurrently. Licensed fetches go
    through a worker pool whose size defaults to 1, so payments and ledger
    acquisitions happen one URL at a time. A single usage batch is reported
    per request.
    """

    def __init__(
        self,
        search_client: ExaSearchClient,
        ledger: LedgerService,
        licensed_fetcher: LicensedFetcher,
        token_estimator: TokenEstimator,
        fetch_concurrency: int = 1,
        default_max_chars: int = 200000,
    ):
        if fetch_concurrency < 1:
            raise ValueError("fetch_concurrency must be >= 1")
        if default_max_chars < 1:
            raise ValueError("default_max_chars must be >= 1")
        self.search_client = search_client
        self.ledger = ledger
        self.licensed_fetcher = licensed_fetcher
        self.tokens = token_estimator
        self.fetch_concurrency = fetch_concurrency
        self.default_max_chars = default_max_chars

    async def search(self, args: SearchToolArgs) -> Dict[str, Any]:
        """
        Execute a search request.

        Search API failures propagate; licensing, fetch and usage-log
        failures are reported inside the response.
        """
        search_resp = await self.search_client.search(
            query=args.query,
            num_results=args.num_results,
            type=args.type,
            include_domains=args.include_domains,
            exclude_domains=args.exclude_domains,
            text=False,
        )
        results = search_resp.results
        urls = list(dict.fromkeys(result.url for result in results if result.url))
        logger.info(f"Recherche: '{args.query}' -> {len(results)} résultats, {len(urls)} URLs uniques")

        licenses = await self.check_licenses(urls)

        fetched_by_url: Optional[Dict[str, LicensedFetchResult]] = None
        usage_log: Optional[Dict[str, Any]] = None

        if args.fetch:
            fetched_by_url = await self.fetch_all(urls, args)
            hits = self.collect_hits(urls, fetched_by_url)
            if hits:
                usage_log = await self.record_usage(hits)

        enriched = []
        for result in results:
            item = result.to_dict()
            verdict = licenses.get(result.url)
            item["license"] = verdict.to_dict() if verdict is not None else None
            if fetched_by_url is not None:
                fetched = fetched_by_url.get(result.url)
                item["fetched"] = fetched.to_dict() if fetched is not None else None
            enriched.append(item)

        response: Dict[str, Any] = {
            "query": args.query,
            "search": {
                "num_results": args.num_results,
                "type": args.type,
                "request_id": search_resp.request_id,
            },
            "results": enriched,
        }
        if usage_log is not None:
            response["usage_log"] = usage_log
        return response

    async def check_licenses(self, urls: List[str]) -> Dict[str, LicenseVerdict]:
        """Check every URL concurrently; results are keyed by URL, not position."""
        licenses: Dict[str, LicenseVerdict] = {}

        async def check(url: str):
            licenses[url] = await self.ledger.check_license(url)

        await asyncio.gather(*(check(url) for url in urls))
        return licenses

    async def fetch_all(self, urls: List[str], args: SearchToolArgs) -> Dict[str, LicensedFetchResult]:
        """Run the licensed fetch engine over ``urls`` through a bounded worker pool."""
        semaphore = asyncio.Semaphore(self.fetch_concurrency)
        max_chars = args.max_chars if args.max_chars is not None else self.default_max_chars

        async def bounded_fetch(url: str) -> LicensedFetchResult:
            async with semaphore:
                return await self.licensed_fetcher.fetch(
                    url,
                    stage=args.stage,
                    distribution=args.distribution,
                    estimated_tokens=args.estimated_tokens,
                    max_chars=max_chars,
                )

        fetched = await asyncio.gather(*(bounded_fetch(url) for url in urls))
        paid = sum(1 for result in fetched if result.payment_attempted)
        logger.info(f"{len(fetched)} URLs récupérées ({paid} avec tentative de paiement)")
        return dict(zip(urls, fetched))

    def collect_hits(self, urls: List[str], fetched_by_url: Dict[str, LicensedFetchResult]) -> List[UsageHit]:
        """Usage hits for successful, non-empty fetches, in result order."""
        hits = []
        for url in urls:
            fetched = fetched_by_url.get(url)
            if fetched is None or not fetched.content_text or not fetched.is_success:
                continue
            tokens = self.tokens.estimate(fetched.content_text)
            if tokens > 0:
                hits.append(UsageHit(url=url, tokens=tokens))
        return hits

    async def record_usage(self, hits: List[UsageHit]) -> Dict[str, Any]:
        """Send the usage batch once; a failure is reported, never retried."""
        batch = UsageBatch.new(hits)
        try:
            await self.ledger.log_usage(batch)
        except LicensedSearchError as e:
            logger.warning(f"Usage log failed for gen_id={batch.generation_id}: {e}")
            return {
                "ok": False,
                "error": describe_error(e),
                "gen_id": batch.generation_id,
                "hits": len(hits),
            }
        return {"ok": True, "gen_id": batch.generation_id, "hits": len(hits)}
