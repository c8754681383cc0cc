"""
Folds app_subscriptions/update webhooks into local Subscription rows.

Shopify is the source of truth. Each delivery overwrites the local status
(last write wins, keyed by the AppSubscription gid), so a redelivered event
leaves the status unchanged; its audit entries are written again.
"""
import logging

from django.utils import timezone

from popup_app.models import AuditLog
from popup_app.outcomes import Outcome
from ..models import Subscription

logger = logging.getLogger(__name__)

# Shopify AppSubscriptionStatus (lower-cased) -> local status
PROVIDER_STATUS_MAP = {
    'pending': Subscription.STATUS_PENDING,
    'active': Subscription.STATUS_ACTIVE,
    'cancelled': Subscription.STATUS_CANCELLED,
    'expired': Subscription.STATUS_EXPIRED,
    'frozen': Subscription.STATUS_FROZEN,
    'paused': Subscription.STATUS_PAUSED,
    'declined': Subscription.STATUS_CANCELLED,
}
FALLBACK_STATUS = Subscription.STATUS_PENDING


def map_provider_status(provider_status):
    status = PROVIDER_STATUS_MAP.get((provider_status or '').strip().lower())
    if status is None:
        logger.warning(
            "Unrecognized Shopify subscription status %r, falling back to %s",
            provider_status, FALLBACK_STATUS,
            extra={'provider_status': provider_status, 'fallback_status': FALLBACK_STATUS},
        )
        return FALLBACK_STATUS
    return status


def reconcile_subscription_update(store, event, request_meta=None):
    """
    Apply one ``SubscriptionUpdate`` event.

    Returns ``Outcome.ignored`` when the subscription is unknown locally so the
    webhook is still acknowledged and Shopify stops retrying.
    """
    subscription = store.find_subscription(event.subscription_id)
    if subscription is None:
        logger.warning("Subscription update webhook received for unknown subscription: %s", event.subscription_id)
        return Outcome.ignored('unknown subscription')

    old_status = subscription.status
    new_status = map_provider_status(event.status)

    updated = store.update_subscription_status(
        event.subscription_id,
        new_status,
        current_period_end=event.billing_on,
    )
    if updated is None:
        # Purged between the lookup and the write (e.g. a concurrent uninstall)
        logger.warning("Subscription %s disappeared before its status could be updated", event.subscription_id)
        return Outcome.ignored('unknown subscription')

    store.create_audit_log(
        subscription.shop,
        AuditLog.ACTION_SUBSCRIPTION_UPDATED,
        resource='subscription',
        resource_id=subscription.id,
        details={
            'shopify_subscription_id': event.subscription_id,
            'old_status': old_status,
            'new_status': new_status,
            'billing_on': event.billing_on.isoformat() if event.billing_on else None,
            'webhook_data': event.raw,
        },
        request_meta=request_meta,
    )

    if old_status == Subscription.STATUS_PENDING and new_status == Subscription.STATUS_ACTIVE:
        store.create_audit_log(
            subscription.shop,
            AuditLog.ACTION_SUBSCRIPTION_ACTIVATED,
            resource='subscription',
            resource_id=subscription.id,
            details={
                'shopify_subscription_id': event.subscription_id,
                'activated_at': timezone.now().isoformat(),
                'plan': subscription.name,
                'price': str(subscription.price),
            },
        )
        logger.info("Subscription activated for shop: %s", subscription.shop.shop_domain)
    elif new_status == Subscription.STATUS_CANCELLED:
        store.create_audit_log(
            subscription.shop,
            AuditLog.ACTION_SUBSCRIPTION_CANCELLED_BY_SHOPIFY,
            resource='subscription',
            resource_id=subscription.id,
            details={
                'shopify_subscription_id': event.subscription_id,
                'cancelled_at': timezone.now().isoformat(),
                'reason': 'shopify_webhook',
            },
        )
        logger.info("Subscription cancelled by Shopify for shop: %s", subscription.shop.shop_domain)

    if new_status == Subscription.STATUS_ACTIVE:
        _supersede_other_active(store, subscription)

    return Outcome.ok(
        message='Subscription updated successfully',
        subscription={
            'id': updated.id,
            'status': updated.status,
            'updated_at': updated.updated_at.isoformat(),
        },
    )


def _supersede_other_active(store, subscription):
    """Keep at most one ACTIVE subscription per shop: the one Shopify just activated."""
    shop = subscription.shop
    for other in store.cancel_other_active_subscriptions(shop, subscription.shopify_subscription_id):
        logger.warning(
            "Shop %s had another active subscription %s; cancelled in favour of %s",
            shop.shop_domain, other.shopify_subscription_id, subscription.shopify_subscription_id,
        )
        store.create_audit_log(
            shop,
            AuditLog.ACTION_SUBSCRIPTION_CANCELLED,
            resource='subscription',
            resource_id=other.id,
            details={
                'shopify_subscription_id': other.shopify_subscription_id,
                'old_status': other.status,
                'reason': 'superseded',
                'superseded_by': subscription.shopify_subscription_id,
            },
        )
