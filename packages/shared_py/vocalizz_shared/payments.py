from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .errors import PaymentEventError
from .ledger import apply_credit_delta, find_entry, get_account, set_tier
from .models import Account
from .pricing import Tier

logger = logging.getLogger(__name__)


@dataclass
class PaymentResult:
    event_type: str
    applied: bool
    user_id: str | None = None
    message: str = ''


def subscription_plans(settings: Settings) -> dict[str, tuple[Tier, int]]:
    return {
        settings.stripe_price_standard: (Tier.STANDARD, 20),
        settings.stripe_price_premium: (Tier.PREMIUM, 100),
    }


def credit_packs(settings: Settings) -> dict[str, int]:
    return {
        settings.stripe_price_pack_10: 10,
        settings.stripe_price_pack_50: 50,
    }


def _first_price_id(container: Any) -> str:
    lines = ((container or {}).get('data') or []) if isinstance(container, dict) else []
    if not lines:
        return ''
    price = lines[0].get('price') or {}
    return str(price.get('id') or '').strip()


def _account_by_customer(db: Session, customer_id: str) -> Account:
    account = db.query(Account).filter(Account.stripe_customer_id == customer_id).first()
    if account is None:
        raise PaymentEventError(f'no account for customer {customer_id}')
    return account


def _top_up(db: Session, *, event_id: str, user_id: str, credits: int, entry_type: str, price_id: str) -> bool:
    key = f'stripe:{event_id}'
    if find_entry(db, key) is not None:
        return False
    apply_credit_delta(
        db,
        user_id=user_id,
        delta_credits=credits,
        entry_type=entry_type,
        idempotency_key=key,
        description=f'stripe:{price_id}',
        metadata_json={'eventId': event_id, 'priceId': price_id},
    )
    return True


def apply_payment_event(db: Session, event: dict[str, Any], *, settings: Settings | None = None) -> PaymentResult:
    """Map a Stripe event onto tier changes and credit top-ups.

    Credit grants are keyed on the event id, so Stripe retries are harmless.
    """
    settings = settings or get_settings()
    event_id = str(event.get('id') or '').strip()
    event_type = str(event.get('type') or '').strip()
    data = ((event.get('data') or {}).get('object')) or {}
    if not event_id:
        raise PaymentEventError('event id missing')

    plans = subscription_plans(settings)
    packs = credit_packs(settings)

    if event_type == 'checkout.session.completed':
        user_id = str((data.get('metadata') or {}).get('user_id') or '').strip()
        if not user_id:
            raise PaymentEventError('checkout session has no user_id metadata')
        get_account(db, user_id)
        price_id = _first_price_id(data.get('line_items')) or str((data.get('price') or {}).get('id') or '').strip()
        if price_id in plans:
            tier, credits = plans[price_id]
            account = set_tier(db, user_id, tier)
            customer_id = str(data.get('customer') or '').strip()
            if customer_id:
                account.stripe_customer_id = customer_id
                db.flush()
            applied = _top_up(db, event_id=event_id, user_id=user_id, credits=credits, entry_type='subscription', price_id=price_id)
            logger.info('subscription started user_id=%s tier=%s credits=%s applied=%s', user_id, tier.value, credits, applied)
            return PaymentResult(event_type, applied, user_id, f'tier set to {tier.value}')
        if price_id in packs:
            applied = _top_up(db, event_id=event_id, user_id=user_id, credits=packs[price_id], entry_type='purchase', price_id=price_id)
            logger.info('credit pack purchased user_id=%s credits=%s applied=%s', user_id, packs[price_id], applied)
            return PaymentResult(event_type, applied, user_id, f'{packs[price_id]} credits added')
        logger.warning('checkout completed for unknown price price_id=%s event_id=%s', price_id, event_id)
        return PaymentResult(event_type, False, user_id, 'unknown price id')

    if event_type == 'invoice.payment_succeeded':
        price_id = _first_price_id(data.get('lines'))
        if price_id not in plans:
            return PaymentResult(event_type, False, None, 'not a subscription invoice')
        if str(data.get('billing_reason') or '') == 'subscription_create':
            # Initial invoice; the checkout session already granted the first period.
            return PaymentResult(event_type, False, None, 'initial invoice')
        account = _account_by_customer(db, str(data.get('customer') or '').strip())
        _, credits = plans[price_id]
        applied = _top_up(db, event_id=event_id, user_id=account.user_id, credits=credits, entry_type='subscription', price_id=price_id)
        logger.info('subscription renewed user_id=%s credits=%s applied=%s', account.user_id, credits, applied)
        return PaymentResult(event_type, applied, account.user_id, f'{credits} credits added')

    if event_type == 'customer.subscription.deleted':
        account = _account_by_customer(db, str(data.get('customer') or '').strip())
        account = set_tier(db, account.user_id, Tier.BASIC)
        logger.info('subscription ended user_id=%s tier=%s pending=%s', account.user_id, account.tier, account.pending_tier)
        if account.pending_tier is not None:
            return PaymentResult(event_type, True, account.user_id, 'downgrade to basic deferred until running jobs finish')
        return PaymentResult(event_type, True, account.user_id, 'tier set to basic')

    return PaymentResult(event_type, False, None, f'ignored {event_type}')
