from __future__ import annotations

import json
import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from vocalizz_shared.config import Settings, get_settings
from vocalizz_shared.db import session_scope
from vocalizz_shared.errors import PaymentEventError
from vocalizz_shared.payments import apply_payment_event
from vocalizz_shared.provider import verify_provider_signature
from vocalizz_shared.reconciler import on_provider_notification

from ..deps import get_storage
from ..metrics import JOB_COMPENSATIONS_TOTAL
from ..response import ok
from ..schemas import ProviderWebhookPayload

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/api/v1/webhooks', tags=['webhooks'])


def _error_text(error) -> str | None:
    if error is None or error == '':
        return None
    if isinstance(error, dict):
        return str(error.get('detail') or error.get('message') or json.dumps(error))
    return str(error)


@router.post('/provider')
async def provider_webhook(request: Request, storage=Depends(get_storage)):
    body = await request.body()
    if not verify_provider_signature(get_settings().provider_webhook_secret, request.headers, body):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='invalid_signature')
    try:
        payload = ProviderWebhookPayload.model_validate_json(body)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='invalid_payload') from exc

    with session_scope() as db:
        result = on_provider_notification(
            db,
            payload.id,
            payload.status,
            payload.output,
            error=_error_text(payload.error),
            storage=storage,
        )
    if result.applied and result.status == 'failed':
        JOB_COMPENSATIONS_TOTAL.labels(source='webhook').inc()
    return ok(
        request_id=request.state.request_id,
        data={'jobId': result.job_id, 'status': result.status, 'applied': result.applied},
        message=result.message,
    )


def construct_stripe_event(body: bytes, signature: str | None, settings: Settings) -> dict:
    if settings.stripe_webhook_secret:
        try:
            stripe.Webhook.construct_event(body, signature or '', settings.stripe_webhook_secret)
        except ValueError as exc:
            raise PaymentEventError('invalid payload') from exc
        except stripe.SignatureVerificationError as exc:
            raise PaymentEventError('invalid signature') from exc
    elif settings.app_env != 'development':
        raise PaymentEventError('stripe webhook secret not configured')
    try:
        event = json.loads(body)
    except ValueError as exc:
        raise PaymentEventError('invalid payload') from exc
    if not isinstance(event, dict):
        raise PaymentEventError('invalid payload')
    return event


@router.post('/stripe')
async def stripe_webhook(request: Request):
    settings = get_settings()
    body = await request.body()
    event = construct_stripe_event(body, request.headers.get('stripe-signature'), settings)
    with session_scope() as db:
        result = apply_payment_event(db, event, settings=settings)
    logger.info('stripe event handled event_type=%s applied=%s', result.event_type, result.applied)
    return ok(
        request_id=request.state.request_id,
        data={'eventType': result.event_type, 'applied': result.applied, 'userId': result.user_id},
        message=result.message,
    )
