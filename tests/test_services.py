#!/usr/bin/env python3
"""Price, fee and broadcast collaborator tests using httpx.MockTransport"""

import asyncio
from decimal import Decimal

import httpx
import pytest

from conftest import MAINNET_ADDRESS
from walletchat.schemas.core import BroadcastRequest
from walletchat.services.broadcast_service import RecordingBroadcastService
from walletchat.services.fee_service import FeeService
from walletchat.services.price_service import PriceService
from walletchat.utils.errors import BroadcastError, PriceUnavailableError


def run(coro):
    return asyncio.run(coro)


class Recorder:
    """MockTransport handler returning canned responses and counting calls."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        status, body = self.responses[min(len(self.calls), len(self.responses)) - 1]
        return httpx.Response(status, json=body)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestPriceService:

    def service(self, recorder, **kwargs):
        return PriceService(url_template="https://prices.test/BTC-{currency}", transport=httpx.MockTransport(recorder),
                            max_retries=1, backoff=0, **kwargs)

    def test_parses_spot_price(self):
        recorder = Recorder((200, {"data": {"amount": "65000.12", "currency": "USD"}}))
        price = run(self.service(recorder).get_price("usd"))
        assert price == Decimal("65000.12")
        assert str(recorder.calls[0].url) == "https://prices.test/BTC-USD"

    def test_price_is_cached_per_currency(self):
        clock = FakeClock()
        recorder = Recorder((200, {"data": {"amount": "50000"}}))
        service = self.service(recorder, cache_seconds=60, clock=clock)

        async def scenario():
            await service.get_price("USD")
            await service.get_price("USD")
            clock.now += 61
            await service.get_price("USD")

        run(scenario())
        assert len(recorder.calls) == 2

    def test_client_error_is_not_retried(self):
        recorder = Recorder((404, {"errors": ["not found"]}))
        with pytest.raises(PriceUnavailableError) as exc_info:
            run(self.service(recorder).get_price("XYZ"))
        assert exc_info.value.status_code == 404
        assert len(recorder.calls) == 1

    def test_server_error_is_retried(self):
        recorder = Recorder((503, {}), (200, {"data": {"amount": "50000"}}))
        assert run(self.service(recorder).get_price("USD")) == Decimal("50000")
        assert len(recorder.calls) == 2

    def test_garbage_payload(self):
        recorder = Recorder((200, {"data": {}}))
        with pytest.raises(PriceUnavailableError):
            run(self.service(recorder).get_price("USD"))

    def test_conversions(self):
        recorder = Recorder((200, {"data": {"amount": "30000"}}))
        service = self.service(recorder)
        # 100 / 30000 truncated to whole satoshis
        assert run(service.convert_to_btc(Decimal("100"), "USD")) == Decimal("0.00333333")
        assert run(service.convert_from_btc(Decimal("0.5"), "USD")) == Decimal("15000.00")


class TestFeeService:

    def service(self, recorder):
        return FeeService(url="https://fees.test/recommended", transport=httpx.MockTransport(recorder),
                          max_retries=0, backoff=0)

    def test_maps_recommended_fees(self):
        recorder = Recorder((200, {"fastestFee": 25, "halfHourFee": 12, "hourFee": 6, "economyFee": 3}))
        estimates = run(self.service(recorder).get_estimates())
        assert (estimates.slow, estimates.medium, estimates.fast) == (6, 12, 25)
        assert not estimates.is_fallback

    def test_falls_back_when_unavailable(self):
        estimates = run(self.service(Recorder((500, {}))).get_estimates())
        assert estimates.is_fallback
        assert estimates == FeeService.fallback()

    def test_falls_back_on_bad_payload(self):
        estimates = run(self.service(Recorder((200, {"fastestFee": 25}))).get_estimates())
        assert estimates.is_fallback


class TestRecordingBroadcastService:

    def test_records_and_returns_txid(self):
        service = RecordingBroadcastService()
        result = run(service.broadcast(BroadcastRequest(address=MAINNET_ADDRESS, amount_sats=10_000, fee_rate=5)))
        assert len(result.txid) == 64
        assert service.call_count == 1

    def test_configured_failure(self):
        service = RecordingBroadcastService(fail_with=BroadcastError("bad sig", kind="signing_failed"))
        with pytest.raises(BroadcastError) as exc_info:
            run(service.broadcast(BroadcastRequest(address=MAINNET_ADDRESS, amount_sats=10_000, fee_rate=5)))
        assert exc_info.value.kind == "signing_failed"
        assert service.call_count == 1

    def test_unknown_kind_becomes_network(self):
        assert BroadcastError("boom", kind="weird").kind == "network"
