import asyncio

import httpx

from licensed_search.config.settings import LedgerConfig
from licensed_search.licensing.fetcher import LicensedFetcher
from licensed_search.licensing.ledger import LedgerService
from licensed_search.orchestrator import SearchOrchestrator
from licensed_search.search.exa_client import ExaSearchClient
from licensed_search.search.fetcher import ContentFetcher

LEDGER_URL = "https://ledger.test"
EXA_URL = "https://exa.test"


class Router:
    """Routes mocked requests by (method, host, path) and records every call."""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, method, url, handler):
        parsed = httpx.URL(url)
        self.routes[(method, parsed.host, parsed.path)] = handler

    def __call__(self, request):
        self.calls.append(request)
        handler = self.routes.get((request.method, request.url.host, request.url.path))
        if handler is None:
            return httpx.Response(404, text="no route")
        return handler(request)

    def calls_to(self, method, path):
        return [call for call in self.calls if call.method == method and call.url.path == path]


def respond(status, **kwargs):
    return lambda request: httpx.Response(status, **kwargs)


def raise_timeout(request):
    raise httpx.ReadTimeout("timed out", request=request)


class FakeTokenEstimator:
    """One token per whitespace-separated word"""

    def estimate(self, text):
        return len(text.split()) if text else 0

    def cleanup(self):
        pass


def make_ledger_config(**overrides):
    config = LedgerConfig(api_url=LEDGER_URL, api_key="ledger-key")
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


def make_ledger(router, cache=None, **overrides):
    client = httpx.AsyncClient(base_url=LEDGER_URL, transport=httpx.MockTransport(router))
    return LedgerService(make_ledger_config(**overrides), cache=cache, client=client)


def make_content_fetcher(router, timeout_ms=1000):
    client = httpx.AsyncClient(transport=httpx.MockTransport(router), follow_redirects=True)
    return ContentFetcher(timeout_ms=timeout_ms, client=client)


def make_search_client(router):
    client = httpx.AsyncClient(base_url=EXA_URL, transport=httpx.MockTransport(router))
    return ExaSearchClient(api_key="exa-key", base_url=EXA_URL, client=client)




def make_orchestrator(router, tokens, licensed_fetcher=None, fetch_concurrency=1, default_max_chars=200000,
                      **ledger_overrides):
    ledger = make_ledger(router, **ledger_overrides)
    if licensed_fetcher is None:
        licensed_fetcher = LicensedFetcher(ledger, make_content_fetcher(router))
    return SearchOrchestrator(
        search_client=make_search_client(router),
        ledger=ledger,
        licensed_fetcher=licensed_fetcher,
        token_estimator=tokens,
        fetch_concurrency=fetch_concurrency,
        default_max_chars=default_max_chars,
    )


def drip(status, body, delay, **kwargs):
    """Handler whose response body arrives one byte every ``delay`` seconds"""
    async def chunks():
        for byte in body:
            await asyncio.sleep(delay)
            yield bytes([byte])

    return lambda request: httpx.Response(status, content=chunks(), **kwargs)


def endless(status, chunk=b"x" * 1000, **kwargs):
    """Handler whose response body never ends"""
    async def chunks():
        while True:
            await asyncio.sleep(0)
            yield chunk

    return lambda request: httpx.Response(status, content=chunks(), **kwargs)
