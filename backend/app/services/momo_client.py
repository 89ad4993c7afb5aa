"""
Mobile money provider client.

Asks the provider to collect a payment from a subscriber's phone. The
provider confirms asynchronously through the momo webhook, keyed by the
reference sent here.
"""

import logging
from decimal import Decimal
from typing import Optional

import httpx

from backend.app.core.config import settings
from backend.app.core.exceptions import ProviderError
from backend.app.core.reliability import CircuitBreaker, CircuitOpenError, momo_circuit_breaker

logger = logging.getLogger(__name__)


def to_msisdn(phone_number: str) -> str:
    """Normalize a validated Eswatini number to international form (268XXXXXXXX)."""
    digits = "".join(ch for ch in phone_number if ch.isdigit())
    return f"268{digits[-8:]}"


class MomoClient:

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        breaker: CircuitBreaker = momo_circuit_breaker,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.breaker = breaker
        self.transport = transport

    async def _post_collection(self, payload: dict, reference: str) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "X-Reference-Id": reference,
        }
        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
            response = await client.post("/collection/v1_0/requesttopay", json=payload, headers=headers)
        if response.status_code >= 500:
            # Counted by the breaker
            response.raise_for_status()
        return response

    async def request_to_pay(self, phone_number: str, amount: Decimal, reference: str, description: str = "") -> None:
        """
        Submit a collection request.

        Raises:
            ProviderError: retryable for outages and open circuit, terminal
                when the provider rejects the request
        """
        payload = {
            "amount": str(amount),
            "currency": settings.currency,
            "externalId": reference,
            "payer": {"partyIdType": "MSISDN", "partyId": to_msisdn(phone_number)},
            "payerMessage": description or "Wallet top-up",
            "payeeNote": reference,
        }
        try:
            response = await self.breaker.call(self._post_collection, payload, reference)
        except CircuitOpenError:
            logger.warning("Momo circuit open, rejecting collection", extra={"reference": reference})
            raise ProviderError("Mobile money provider temporarily unavailable")
        except httpx.HTTPError as exc:
            logger.error("Momo request failed", extra={"reference": reference, "error": str(exc)})
            raise ProviderError()

        if response.status_code >= 400:
            logger.warning(
                "Momo rejected collection",
                extra={"reference": reference, "status_code": response.status_code},
            )
            raise ProviderError("Mobile money payment was rejected", retryable=False)

        logger.info("Momo collection requested", extra={"reference": reference, "amount": str(amount)})


def get_momo_client() -> MomoClient:
    """FastAPI dependency; overridden in tests with a mock transport."""
    return MomoClient(
        base_url=settings.momo_api_url,
        api_key=settings.momo_api_key,
        timeout=settings.momo_timeout_seconds,
    )
