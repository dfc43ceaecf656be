import json
import time

import httpx
import pytest

from licensed_search.errors import ConfigurationError, TransportError, UpstreamError
from licensed_search.licensing.cache import VerdictCache
from licensed_search.licensing.ledger import ACQUIRE_PATH, LICENSES_PATH, USAGE_LOG_PATH
from licensed_search.licensing.models import UsageBatch, UsageHit

from .helpers import LEDGER_URL, drip, make_ledger, raise_timeout, respond

LICENSES = f"{LEDGER_URL}{LICENSES_PATH}"
ACQUIRE = f"{LEDGER_URL}{ACQUIRE_PATH}"
USAGE_LOG = f"{LEDGER_URL}{USAGE_LOG_PATH}"

PAGE = "https://news.example/article"


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def opt_in_record(**overrides):
    record = {
        "id": 42,
        "license_type": "ai-license",
        "opt_in_status": "opt-in",
        "rate_per_token": 0.002,
        "wallet_id": "0xpublisher",
    }
    record.update(overrides)
    return record


# check_license

@pytest.mark.asyncio
async def test_check_license_maps_opt_in_record(router):
    router.add("GET", LICENSES, respond(200, json=[opt_in_record()]))
    ledger = make_ledger(router)

    verdict = await ledger.check_license(PAGE)

    assert verdict.found is True
    assert verdict.action == "allow"
    assert verdict.price == 0.002
    assert verdict.payto == "0xpublisher"
    assert verdict.license_version_id == 42
    assert router.calls[0].url.params["url"] == PAGE


@pytest.mark.asyncio
async def test_check_license_maps_opt_out_to_deny(router):
    router.add("GET", LICENSES, respond(200, json=[opt_in_record(opt_in_status="opt-out")]))
    verdict = await make_ledger(router).check_license(PAGE)

    assert verdict.found is True
    assert verdict.action == "deny"


@pytest.mark.asyncio
async def test_check_license_prefers_ai_license_record(router):
    records = [
        opt_in_record(id=1, license_type="cc-by", opt_in_status="opt-out"),
        opt_in_record(id=2),
    ]
    router.add("GET", LICENSES, respond(200, json=records))

    verdict = await make_ledger(router).check_license(PAGE)

    assert verdict.license_version_id == 2
    assert verdict.action == "allow"


@pytest.mark.asyncio
async def test_check_license_unrecognised_status_is_unknown(router):
    router.add("GET", LICENSES, respond(200, json=[opt_in_record(opt_in_status="pending")]))
    verdict = await make_ledger(router).check_license(PAGE)

    assert verdict.found is False
    assert verdict.action == "unknown"


@pytest.mark.asyncio
async def test_check_license_without_record_is_unknown(router):
    router.add("GET", LICENSES, respond(200, json=[]))
    verdict = await make_ledger(router).check_license(PAGE)

    assert verdict.action == "unknown"
    assert verdict.error is None


@pytest.mark.asyncio
async def test_tracking_disabled_makes_no_call(router):
    router.add("GET", LICENSES, respond(200, json=[opt_in_record()]))
    ledger = make_ledger(router, enable_tracking=False)

    verdict = await ledger.check_license(PAGE)

    assert verdict.action == "unknown"
    assert router.calls == []


@pytest.mark.asyncio
async def test_check_license_timeout_degrades_to_unknown(router):
    router.add("GET", LICENSES, raise_timeout)
    verdict = await make_ledger(router).check_license(PAGE)

    assert verdict.action == "unknown"
    assert verdict.found is False
    assert verdict.error.startswith("TransportError:")
    assert "timeout" in verdict.error


@pytest.mark.asyncio
async def test_check_license_server_error_degrades_to_unknown(router):
    router.add("GET", LICENSES, respond(500, text="boom"))
    verdict = await make_ledger(router).check_license(PAGE)

    assert verdict.action == "unknown"
    assert "HTTP 500" in verdict.error


@pytest.mark.asyncio
async def test_check_license_invalid_json_degrades_to_unknown(router):
    router.add("GET", LICENSES, respond(200, text="<html>"))
    verdict = await make_ledger(router).check_license(PAGE)

    assert verdict.action == "unknown"
    assert verdict.error is not None


@pytest.mark.asyncio
async def test_cached_verdict_skips_second_lookup(router):
    router.add("GET", LICENSES, respond(200, json=[opt_in_record()]))
    clock = FakeClock()
    ledger = make_ledger(router, cache=VerdictCache(default_ttl=300, clock=clock),
                         enable_cache=True, cache_ttl_seconds=300)

    first = await ledger.check_license(PAGE)
    clock.now += 100
    second = await ledger.check_license(PAGE)

    assert first == second
    assert len(router.calls_to("GET", LICENSES_PATH)) == 1

    clock.now += 200
    await ledger.check_license(PAGE)
    assert len(router.calls_to("GET", LICENSES_PATH)) == 2


@pytest.mark.asyncio
async def test_degraded_verdict_is_not_cached(router):
    responses = iter([httpx.Response(500), httpx.Response(200, json=[opt_in_record()])])
    router.add("GET", LICENSES, lambda request: next(responses))
    ledger = make_ledger(router, cache=VerdictCache(clock=FakeClock()), enable_cache=True)

    assert (await ledger.check_license(PAGE)).action == "unknown"
    assert (await ledger.check_license(PAGE)).action == "allow"


# acquire_license

@pytest.mark.asyncio
async def test_acquire_license_sends_declaration(router):
    grant_body = {
        "licensed_url": "https://news.example/article?lic=abc",
        "license_version_id": 42,
        "license_sig": "sig",
        "expires_at": "2026-01-01T00:00:00Z",
        "cost": 0.003,
        "currency": "USD",
        "license_status": "active",
    }
    router.add("POST", ACQUIRE, respond(200, json=grant_body))
    ledger = make_ledger(router)

    grant = await ledger.acquire_license(PAGE, stage="infer", distribution="private", estimated_tokens=1500)

    request = router.calls[0]
    assert request.headers["X-API-Key"] == "ledger-key"
    assert json.loads(request.content) == {
        "url": PAGE,
        "estimated_tokens": 1500,
        "stage": "infer",
        "distribution": "private",
        "payment_method": "account_balance",
    }
    assert grant.licensed_url == grant_body["licensed_url"]
    assert grant.cost == 0.003
    assert grant.status == "active"


@pytest.mark.asyncio
async def test_acquire_license_includes_payment_proof(router):
    router.add("POST", ACQUIRE, respond(200, json={"licensed_url": "https://x.test/l"}))
    ledger = make_ledger(router)

    await ledger.acquire_license(PAGE, "train", "public", 10, payment_method="x402",
                                 payment_proof="proof", payment_amount=1.5)

    body = json.loads(router.calls[0].content)
    assert body["payment_method"] == "x402"
    assert body["payment_proof"] == "proof"
    assert body["payment_amount"] == 1.5


@pytest.mark.asyncio
async def test_acquire_license_x402_requires_proof(router):
    with pytest.raises(ValueError):
        await make_ledger(router).acquire_license(PAGE, "infer", "private", 10, payment_method="x402")
    assert router.calls == []


@pytest.mark.asyncio
async def test_acquire_license_requires_credential(router):
    ledger = make_ledger(router, api_key=None)

    with pytest.raises(ConfigurationError, match="COPYRIGHTSH_LEDGER_API_KEY"):
        await ledger.acquire_license(PAGE, "infer", "private", 1500)
    assert router.calls == []


@pytest.mark.asyncio
async def test_acquire_license_non_2xx_raises_upstream_error(router):
    router.add("POST", ACQUIRE, respond(402, json={"detail": "insufficient balance"}))

    with pytest.raises(UpstreamError) as excinfo:
        await make_ledger(router).acquire_license(PAGE, "infer", "private", 1500)
    assert excinfo.value.status_code == 402


@pytest.mark.asyncio
async def test_acquire_license_timeout_raises_transport_error(router):
    router.add("POST", ACQUIRE, raise_timeout)

    with pytest.raises(TransportError, match="8000ms"):
        await make_ledger(router).acquire_license(PAGE, "infer", "private", 1500)


@pytest.mark.asyncio
async def test_acquire_license_without_licensed_url_is_upstream_error(router):
    router.add("POST", ACQUIRE, respond(200, json={"status": "ok"}))

    with pytest.raises(UpstreamError, match="licensed_url"):
        await make_ledger(router).acquire_license(PAGE, "infer", "private", 1500)


# log_usage

@pytest.mark.asyncio
async def test_log_usage_posts_batch(router):
    router.add("POST", USAGE_LOG, respond(200, json={"ok": True}))
    batch = UsageBatch.new([UsageHit(PAGE, 120), UsageHit("https://b.example/", 30)])

    await make_ledger(router).log_usage(batch)

    request = router.calls[0]
    assert request.headers["X-API-Key"] == "ledger-key"
    assert json.loads(request.content) == {
        "gen_id": batch.generation_id,
        "hits": [{"url": PAGE, "tokens": 120}, {"url": "https://b.example/", "tokens": 30}],
    }


@pytest.mark.asyncio
async def test_log_usage_requires_credential(router):
    ledger = make_ledger(router, api_key="")

    with pytest.raises(ConfigurationError):
        await ledger.log_usage(UsageBatch.new([UsageHit(PAGE, 1)]))
    assert router.calls == []


@pytest.mark.asyncio
async def test_log_usage_server_error_raises(router):
    router.add("POST", USAGE_LOG, respond(503))

    with pytest.raises(UpstreamError):
        await make_ledger(router).log_usage(UsageBatch.new([UsageHit(PAGE, 1)]))


@pytest.mark.asyncio
async def test_slow_license_lookup_stays_within_budget(router):
    router.add("GET", LICENSES, drip(200, b'[{"id": 1, "opt_in_status": "opt-in"}]', delay=0.1,
                                     headers={"content-type": "application/json"}))
    ledger = make_ledger(router, license_check_timeout_ms=300)

    start = time.monotonic()
    verdict = await ledger.check_license(PAGE)
    elapsed = time.monotonic() - start

    assert elapsed < 1.0
    assert verdict.action == "unknown"
    assert "ledger timeout after 300ms" in verdict.error


@pytest.mark.asyncio
async def test_slow_acquisition_stays_within_budget(router):
    router.add("POST", ACQUIRE, drip(200, b'{"licensed_url": "https://x.test/l"}', delay=0.1))
    ledger = make_ledger(router, license_acquire_timeout_ms=300)

    start = time.monotonic()
    with pytest.raises(TransportError, match="300ms"):
        await ledger.acquire_license(PAGE, "infer", "private", 1500)
    assert time.monotonic() - start < 1.0
