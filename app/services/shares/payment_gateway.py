from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

import httpx
from fastapi import Depends
from starlette.requests import HTTPConnection

from app.core.deps import get_settings
from app.core.settings import Settings


class PaymentGatewayError(RuntimeError):
    pass


def to_minor_units(amount: Decimal | int | float | str) -> int:
    """499.00 → 49900 (paise/cents)."""
    value = Decimal(str(amount)) * 100
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentGatewayService:
    """
    Client for the payment provider's order API.
    - Orders API: create an order the checkout widget pays against
    - Basic auth with key id / key secret
    The shared http client is owned by the app lifespan.
    """

    def __init__(self, http: httpx.AsyncClient, settings: Settings):
        self.http = http
        self.base_url = settings.PAYMENT_BASE_URL.rstrip("/")
        self.key_id = settings.PAYMENT_KEY_ID
        self.key_secret = settings.PAYMENT_KEY_SECRET
        self.name = settings.PAYMENT_GATEWAY_NAME
        self.default_timeout = settings.HTTP_TIMEOUT_SECONDS

    # =========================================================
    # ORDERS
    # =========================================================
    async def create_order(
        self,
        *,
        amount_minor: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if not self.key_id or not self.key_secret:
            raise PaymentGatewayError("Payment gateway credentials are not configured.")

        payload = {
            "amount": amount_minor,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        try:
            resp = await self.http.post(
                f"{self.base_url}/v1/orders",
                json=payload,
                auth=(self.key_id, self.key_secret),
                timeout=self.default_timeout,
            )
        except httpx.HTTPError as e:
            raise PaymentGatewayError(f"Gateway unreachable: {e}") from e

        if resp.status_code not in (200, 201):
            raise PaymentGatewayError(f"Create order failed: {resp.status_code} {resp.text}")

        data = resp.json()
        if not data.get("id"):
            raise PaymentGatewayError("Gateway response has no order id.")
        return data


def get_payment_gateway(
    conn: HTTPConnection, settings: Settings = Depends(get_settings)
) -> PaymentGatewayService:
    return PaymentGatewayService(conn.app.state.http, settings)
