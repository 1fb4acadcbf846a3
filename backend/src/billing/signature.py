"""
Webhook signature verification.

Deliveries carry a Stripe-Signature header (``t=<ts>,v1=<hmac>``). The
stripe SDK verifies it against the raw body, accepts any v1 entry during
secret rotation, and rejects timestamps older than the tolerance.
"""

import logging
from typing import Any, Optional

import stripe

from src.billing.errors import WebhookSignatureError
from src.config.settings import WEBHOOK_TOLERANCE_SECONDS

logger = logging.getLogger(__name__)


def construct_webhook_event(
    payload: bytes,
    header: Optional[str],
    secret: str,
    tolerance_seconds: int = WEBHOOK_TOLERANCE_SECONDS,
) -> Any:
    """
    Verify a signed webhook body and decode it.

    Args:
        payload: Raw request body, exactly as received
        header: Signature header value
        secret: Shared webhook signing secret
        tolerance_seconds: Maximum accepted age of the signature

    Returns:
        The decoded provider event

    Raises:
        WebhookSignatureError: If the header is missing, malformed, too old or does not match
        ValueError: If the verified body is not valid JSON
    """
    if not header:
        raise WebhookSignatureError("Missing signature header")

    try:
        return stripe.Webhook.construct_event(
            payload=payload,
            sig_header=header,
            secret=secret,
            tolerance=tolerance_seconds,
        )
    except stripe.SignatureVerificationError as e:
        logger.warning("Webhook signature rejected", extra={"reason": str(e)})
        raise WebhookSignatureError(str(e)) from e
