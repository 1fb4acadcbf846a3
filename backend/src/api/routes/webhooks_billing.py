"""
Billing provider webhook handler.

SECURITY:
- Every delivery MUST carry a valid Stripe-Signature header
- The signature is checked against the raw body before it is parsed
- No user authentication (requests come from the provider, not users)

Processing errors that may be transient (database) answer 500 so the
provider redelivers; redelivery is safe because events are deduplicated
by id. Stale and duplicate events answer 200.
"""

import logging

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.billing.errors import WebhookSignatureError
from src.billing.events import InvalidBillingEventError, parse_provider_event
from src.billing.lifecycle import ReconciliationOutcome, SubscriptionLifecycle
from src.billing.signature import construct_webhook_event
from src.config.settings import WEBHOOK_TOLERANCE_SECONDS, get_billing_webhook_secret
from src.database.session import get_db_session
from src.platform.errors import AppError, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

_RESPONSE_STATUS = {
    ReconciliationOutcome.APPLIED: "processed",
    ReconciliationOutcome.DUPLICATE: "duplicate",
    ReconciliationOutcome.STALE: "stale",
    ReconciliationOutcome.UNMATCHED: "ignored",
}


@router.post("/billing")
async def handle_billing_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db_session),
):
    body = await request.body()

    try:
        event = construct_webhook_event(
            body,
            stripe_signature,
            get_billing_webhook_secret(),
            tolerance_seconds=WEBHOOK_TOLERANCE_SECONDS,
        )
    except WebhookSignatureError as e:
        logger.warning("Invalid billing webhook signature", extra={"reason": str(e)})
        raise ValidationError("Invalid webhook signature", code="INVALID_SIGNATURE")
    except ValueError:
        logger.error("Invalid billing webhook JSON payload")
        raise ValidationError("Invalid JSON payload")

    try:
        snapshot = parse_provider_event(event)
    except InvalidBillingEventError as e:
        logger.error("Malformed billing event", extra={"error": str(e)})
        raise ValidationError(str(e))

    if snapshot is None:
        return {"status": "ignored"}

    logger.info(
        "Received billing webhook",
        extra={"event_id": snapshot.event_id, "event_type": snapshot.event_type},
    )

    try:
        result = SubscriptionLifecycle(db).apply_billing_event(snapshot)
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "Failed to apply billing event",
            extra={"event_id": snapshot.event_id, "event_type": snapshot.event_type},
        )
        raise AppError(
            code="WEBHOOK_PROCESSING_FAILED",
            message="Billing event could not be processed",
        )

    return {"status": _RESPONSE_STATUS[result.outcome], "event_id": result.event_id}
