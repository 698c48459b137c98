"""Thin client for the hosted payment gateway's initiate endpoint."""

import logging
from typing import Any

import httpx

from telehealth.core import config
from telehealth.core.errors import UpstreamError

logger = logging.getLogger(__name__)


async def initiate_payment(
    payload: dict[str, Any],
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    """Forward ``payload`` to the gateway and return its JSON response."""
    headers = {
        "Authorization": f"Key {config.PAYMENT_GATEWAY_SECRET_KEY}",
        "Content-Type": "application/json",
    }

    try:
        async with httpx.AsyncClient(
            timeout=config.PAYMENT_GATEWAY_TIMEOUT_SECONDS,
            transport=transport,
        ) as http_client:
            response = await http_client.post(config.PAYMENT_GATEWAY_URL, json=payload, headers=headers)
    except httpx.HTTPError as exc:
        logger.error("Payment gateway request failed: %s", exc)
        raise UpstreamError("Payment gateway is unreachable") from exc

    if response.status_code not in (200, 201):
        logger.error("Payment gateway rejected initiation (%s): %s", response.status_code, response.text[:500])
        raise UpstreamError(f"Payment gateway error (status {response.status_code})")

    try:
        return response.json()
    except ValueError as exc:
        raise UpstreamError("Invalid response from payment gateway") from exc
