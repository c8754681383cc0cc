"""
Merchant-initiated billing operations: subscribe, cancel, overview.

Local state only changes after Shopify confirms. Shopify ``userErrors`` come
back as caller errors with their messages joined; nothing is retried.
"""
import logging
import math
from datetime import timedelta

from django.conf import settings
from django.utils import timezone

from popup_app.models import AuditLog
from popup_app.outcomes import Outcome
from ..models import Subscription
from ..plans import PLANS, DEFAULT_PLAN_ID, get_plan, available_plans
from ..serializers import SubscriptionSerializer
from .billing_client import BillingError, user_error_message

logger = logging.getLogger(__name__)


def billing_return_url(shop):
    return f"{settings.SHOPIFY_APP_URL}/billing?shop={shop.shop_domain}"


def create_subscription(store, shop, client, plan_id=DEFAULT_PLAN_ID, test=False, request_meta=None):
    if store.get_active_subscription(shop):
        return Outcome.caller_error('Shop already has an active subscription')
    if store.get_pending_subscription(shop):
        return Outcome.caller_error('Shop already has a pending subscription awaiting approval')

    plan_id = plan_id if plan_id in PLANS else DEFAULT_PLAN_ID
    plan = get_plan(plan_id)

    try:
        result = client.create_subscription(
            name=plan['name'],
            price=plan['price'],
            currency=plan['currency'],
            interval=plan['interval'],
            return_url=billing_return_url(shop),
            trial_days=plan['trial_days'],
            test=test,
        )
    except BillingError as e:
        logger.error("Subscription creation failed for %s: %s", shop.shop_domain, e)
        return Outcome.failure(f"Failed to create subscription: {e}")

    user_errors = result.get('userErrors') or []
    if user_errors:
        return Outcome.caller_error(f"Subscription creation failed: {user_error_message(user_errors)}")

    app_subscription = result.get('appSubscription')
    if not app_subscription:
        return Outcome.failure('Failed to create subscription')

    trial_days = app_subscription.get('trialDays')
    subscription = store.create_subscription(
        shop,
        shopify_subscription_id=app_subscription['id'],
        name=app_subscription.get('name') or plan['name'],
        status=Subscription.STATUS_PENDING,
        price=plan['price'],
        currency=plan['currency'],
        interval=plan['interval'],
        trial_end=timezone.now() + timedelta(days=trial_days) if trial_days else None,
        test=test,
    )

    store.create_audit_log(
        shop,
        AuditLog.ACTION_SUBSCRIPTION_CREATED,
        resource='subscription',
        resource_id=subscription.id,
        details={
            'plan_id': plan_id,
            'price': str(plan['price']),
            'currency': plan['currency'],
            'trial_days': plan['trial_days'],
            'test': test,
            'shopify_subscription_id': subscription.shopify_subscription_id,
        },
        request_meta=request_meta,
    )

    return Outcome.ok(
        subscription=SubscriptionSerializer(subscription).data,
        confirmation_url=result.get('confirmationUrl'),
    )


def cancel_subscription(store, shop, client, request_meta=None):
    active = store.get_active_subscription(shop)
    if active is None:
        return Outcome.not_found('No active subscription found')

    try:
        result = client.cancel_subscription(active.shopify_subscription_id)
    except BillingError as e:
        logger.error("Subscription cancellation failed for %s: %s", shop.shop_domain, e)
        return Outcome.failure(f"Failed to cancel subscription: {e}")

    user_errors = result.get('userErrors') or []
    if user_errors:
        return Outcome.caller_error(f"Subscription cancellation failed: {user_error_message(user_errors)}")

    updated = store.update_subscription_status(active.shopify_subscription_id, Subscription.STATUS_CANCELLED)

    store.create_audit_log(
        shop,
        AuditLog.ACTION_SUBSCRIPTION_CANCELLED,
        resource='subscription',
        resource_id=active.id,
        details={
            'shopify_subscription_id': active.shopify_subscription_id,
            'reason': 'user_initiated',
        },
        request_meta=request_meta,
    )

    return Outcome.ok(subscription={
        'id': updated.id,
        'status': updated.status,
        'cancelled_at': updated.updated_at.isoformat(),
    })


def trial_info(subscription, now=None):
    if subscription is None or subscription.trial_end is None:
        return None
    now = now or timezone.now()
    remaining = (subscription.trial_end - now).total_seconds() / 86400
    return {
        'trial_end': subscription.trial_end.isoformat(),
        'days_remaining': max(0, math.ceil(remaining)),
    }


def billing_overview(store, shop, client):
    try:
        shopify_subscriptions = client.list_subscriptions()
    except BillingError as e:
        logger.error("Could not list subscriptions for %s: %s", shop.shop_domain, e)
        return Outcome.failure('Failed to load billing information')

    active = store.get_active_subscription(shop)
    return Outcome.ok(data={
        'current_subscription': SubscriptionSerializer(active).data if active else None,
        'shopify_subscriptions': shopify_subscriptions,
        'available_plans': available_plans(),
        'has_active_subscription': active is not None,
        'trial_info': trial_info(active),
    })
