"""
Mobile Money Top-Up Tests.

Provider client against a mocked transport, the circuit breaker around
it, and the pending top-up lifecycle up to the webhook confirmation.
"""

import json
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import select

from backend.app.core.exceptions import ProviderError
from backend.app.core.reliability import CircuitBreaker
from backend.app.domain.settlement.settlement_service import SettlementService
from backend.app.models.billing_enums import TransactionStatus
from backend.app.models.transaction import Transaction
from backend.app.models.user import User
from backend.app.services.momo_client import MomoClient, to_msisdn


def _client(handler, breaker=None) -> MomoClient:
    return MomoClient(
        base_url="https://momo.test",
        api_key="test-key",
        breaker=breaker or CircuitBreaker(name="momo-test", failure_threshold=3, reset_timeout=30),
        transport=httpx.MockTransport(handler),
    )


def _accepting(requests):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(202)

    return handler


@pytest.mark.parametrize("number", ["76123456", "+26876123456", "26876123456", "076123456"])
def test_to_msisdn(number):
    assert to_msisdn(number) == "26876123456"


class TestMomoClient:

    @pytest.mark.asyncio
    async def test_collection_request(self):
        requests = []
        client = _client(_accepting(requests))

        await client.request_to_pay("76123456", Decimal("50.00"), "MOMO123", description="Top-up")

        [request] = requests
        assert request.url.path == "/collection/v1_0/requesttopay"
        assert request.headers["Authorization"] == "Bearer test-key"
        assert request.headers["X-Reference-Id"] == "MOMO123"
        body = json.loads(request.content)
        assert body["amount"] == "50.00"
        assert body["currency"] == "SZL"
        assert body["payer"] == {"partyIdType": "MSISDN", "partyId": "26876123456"}

    @pytest.mark.asyncio
    async def test_rejection_is_terminal(self):
        client = _client(lambda request: httpx.Response(400, json={"reason": "PAYER_NOT_FOUND"}))

        with pytest.raises(ProviderError) as exc_info:
            await client.request_to_pay("76123456", Decimal("5"), "MOMO1")

        assert exc_info.value.retryable is False
        assert client.breaker.failures == 0

    @pytest.mark.asyncio
    async def test_outage_is_retryable(self):
        client = _client(lambda request: httpx.Response(503))

        with pytest.raises(ProviderError) as exc_info:
            await client.request_to_pay("76123456", Decimal("5"), "MOMO1")

        assert exc_info.value.retryable is True
        assert client.breaker.failures == 1

    @pytest.mark.asyncio
    async def test_connection_error_is_retryable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ProviderError) as exc_info:
            await _client(handler).request_to_pay("76123456", Decimal("5"), "MOMO1")
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_breaker_opens_after_repeated_outages(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        client = _client(handler, CircuitBreaker(name="momo-test", failure_threshold=2, reset_timeout=60))
        for _ in range(2):
            with pytest.raises(ProviderError):
                await client.request_to_pay("76123456", Decimal("5"), "MOMO1")

        with pytest.raises(ProviderError, match="temporarily unavailable"):
            await client.request_to_pay("76123456", Decimal("5"), "MOMO1")
        assert len(calls) == 2
        assert client.breaker.state == "OPEN"


class TestMomoTopUp:

    @pytest.mark.asyncio
    async def test_initiation_opens_pending_transaction(self, session_factory, make_user, reload):
        user = await make_user(balance="10.00")
        requests = []

        result = await SettlementService.initiate_momo_topup(
            session_factory, _client(_accepting(requests)), user.id, "76123456", Decimal("50.00")
        )

        assert result.success
        assert result.details["status"] == "pending"
        reference = result.details["reference"]
        assert reference.startswith("MOMO")
        txn = await reload(Transaction, result.transaction_id)
        assert txn.status == TransactionStatus.PENDING
        assert txn.reference == reference
        assert (await reload(User, user.id)).wallet_balance == Decimal("10.00")
        assert requests[0].headers["X-Reference-Id"] == reference

    @pytest.mark.asyncio
    async def test_invalid_phone_rejected_before_provider(self, session_factory, make_user):
        user = await make_user()
        requests = []

        result = await SettlementService.initiate_momo_topup(
            session_factory, _client(_accepting(requests)), user.id, "12345", Decimal("50.00")
        )

        assert result.error_code == "ERR_VALIDATION_001"
        assert result.message == "Invalid Eswatini phone number format"
        assert requests == []
        async with session_factory() as db:
            assert (await db.execute(select(Transaction))).scalars().all() == []

    @pytest.mark.asyncio
    async def test_provider_failure_fails_pending_transaction(self, session_factory, make_user, reload):
        user = await make_user(balance="10.00")

        result = await SettlementService.initiate_momo_topup(
            session_factory, _client(lambda request: httpx.Response(503)), user.id, "76123456", Decimal("50.00")
        )

        assert not result.success
        assert result.retryable is True
        assert result.error_code == "ERR_PROVIDER_001"
        assert result.details["reference"].startswith("MOMO")
        txn = await reload(Transaction, result.transaction_id)
        assert txn.status == TransactionStatus.FAILED
        assert (await reload(User, user.id)).wallet_balance == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_webhook_confirmation_credits_wallet(self, session_factory, make_user, reload):
        user = await make_user(balance="10.00")
        started = await SettlementService.initiate_momo_topup(
            session_factory, _client(_accepting([])), user.id, "76123456", Decimal("50.00")
        )
        reference = started.details["reference"]

        result = await SettlementService.handle_momo_webhook(session_factory, reference, True, Decimal("50.00"))

        assert result.success
        assert result.transaction_id == started.transaction_id
        assert result.details == {"reference": reference, "status": "completed"}
        assert (await reload(User, user.id)).wallet_balance == Decimal("60.00")

        # Provider retries the callback
        replay = await SettlementService.handle_momo_webhook(session_factory, reference, True, Decimal("50.00"))
        assert replay.success
        assert (await reload(User, user.id)).wallet_balance == Decimal("60.00")

    @pytest.mark.asyncio
    async def test_webhook_decline(self, session_factory, make_user, reload):
        user = await make_user(balance="10.00")
        started = await SettlementService.initiate_momo_topup(
            session_factory, _client(_accepting([])), user.id, "76123456", Decimal("50.00")
        )

        result = await SettlementService.handle_momo_webhook(
            session_factory, started.details["reference"], False, Decimal("50.00")
        )

        assert result.details["status"] == "failed"
        assert (await reload(User, user.id)).wallet_balance == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_webhook_unknown_reference(self, session_factory):
        result = await SettlementService.handle_momo_webhook(session_factory, "MOMO404", True, Decimal("1"))
        assert result.error_code == "ERR_NOT_FOUND_001"
