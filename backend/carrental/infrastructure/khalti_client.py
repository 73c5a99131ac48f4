"""
Khalti payment gateway client.
Separated from business logic for clean architecture.

Error mapping:
  - timeouts, connection errors and 5xx responses -> GatewayUnavailable
    (retryable; the caller must not treat them as a failed payment)
  - other 4xx responses -> GatewayRejected (terminal for this attempt)
"""

from typing import Optional

import httpx

from carrental.core.config import get_settings
from carrental.core.errors import GatewayRejected, GatewayUnavailable
from carrental.core.logging import get_logger
from carrental.core.metrics import record_gateway_call
from carrental.services.interfaces.payment_gateway import (
    InitiatedPayment,
    LookedUpPayment,
    PaymentGateway,
    VerifiedPayment,
)

logger = get_logger(__name__)


class KhaltiGateway(PaymentGateway):
    """Khalti v2 API over a shared httpx.AsyncClient."""

    def __init__(
        self,
        secret_key: str,
        base_url: str,
        website_url: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.website_url = website_url
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Key {secret_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls) -> "KhaltiGateway":
        settings = get_settings()
        return cls(
            secret_key=settings.KHALTI_SECRET_KEY,
            base_url=settings.KHALTI_API_BASE,
            website_url=settings.WEBSITE_URL,
            timeout=settings.KHALTI_TIMEOUT_SECONDS,
        )

    async def _post(self, operation: str, path: str, payload: dict) -> dict:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.TimeoutException as e:
            record_gateway_call(operation, "unavailable")
            logger.warning("gateway_timeout", operation=operation, error=str(e))
            raise GatewayUnavailable(f"Payment gateway timed out during {operation}")
        except httpx.TransportError as e:
            record_gateway_call(operation, "unavailable")
            logger.warning("gateway_unreachable", operation=operation, error=str(e))
            raise GatewayUnavailable(f"Payment gateway unreachable during {operation}")

        if response.status_code >= 500:
            record_gateway_call(operation, "unavailable")
            logger.warning("gateway_server_error", operation=operation, status_code=response.status_code)
            raise GatewayUnavailable(f"Payment gateway error ({response.status_code}) during {operation}")

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.is_error:
            record_gateway_call(operation, "rejected")
            detail = data.get("detail") if isinstance(data, dict) else None
            logger.info(
                "gateway_rejected",
                operation=operation,
                status_code=response.status_code,
                detail=detail,
            )
            raise GatewayRejected(detail or f"Payment gateway declined {operation}")

        record_gateway_call(operation, "ok")
        return data if isinstance(data, dict) else {}

    async def initiate(
        self,
        *,
        amount_paisa: int,
        purchase_order_id: str,
        purchase_order_name: str,
        return_url: str,
        customer_info: dict,
    ) -> InitiatedPayment:
        payload = {
            "return_url": return_url,
            "website_url": self.website_url,
            "amount": amount_paisa,
            "purchase_order_id": purchase_order_id,
            "purchase_order_name": purchase_order_name,
            "customer_info": customer_info,
            "product_details": [
                {
                    "identity": purchase_order_id,
                    "name": purchase_order_name,
                    "total_price": amount_paisa,
                    "quantity": 1,
                    "unit_price": amount_paisa,
                }
            ],
        }
        data = await self._post("initiate", "/epayment/initiate/", payload)
        if not data.get("pidx"):
            record_gateway_call("initiate", "rejected")
            raise GatewayRejected("Payment gateway did not return a payment session")
        return InitiatedPayment(pidx=data["pidx"], payment_url=data.get("payment_url", ""), raw=data)

    async def verify(self, token: str, amount_paisa: int) -> VerifiedPayment:
        data = await self._post("verify", "/payment/verify/", {"token": token, "amount": amount_paisa})
        return VerifiedPayment(idx=data.get("idx"), raw=data)

    async def lookup(self, pidx: str) -> LookedUpPayment:
        data = await self._post("lookup", "/epayment/lookup/", {"pidx": pidx})
        return LookedUpPayment(
            pidx=data.get("pidx", pidx),
            status=data.get("status", ""),
            transaction_id=data.get("transaction_id"),
            total_amount=data.get("total_amount"),
            raw=data,
        )

    async def close(self) -> None:
        await self._client.aclose()
