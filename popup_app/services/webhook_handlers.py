"""
Handlers for verified, parsed webhook events.

Every handler returns an ``Outcome``. Unknown shops and malformed payloads are
acknowledged (``Outcome.ignored``) so Shopify does not keep retrying them.
"""
import logging

from django.db import DatabaseError
from django.utils import timezone

from ..models import AuditLog
from ..outcomes import Outcome
from .popup_settings import THEME_INFO_KEY, THEME_CHANGE_NOTIFICATION_KEY
from .webhook_events import (
    AppUninstalled, ShopUpdate, ThemePublished, SubscriptionUpdate, MalformedWebhook,
)
from subscriptions.services.reconciler import reconcile_subscription_update

logger = logging.getLogger(__name__)


def handle_app_uninstalled(store, event, request_meta=None):
    shop = store.find_shop_by_domain(event.shop_domain)
    if shop is None:
        logger.warning("App uninstalled webhook received for unknown shop: %s", event.shop_domain)
        return Outcome.ignored('unknown shop')

    # Logged before the purge; if the purge fails this entry and the failure
    # entry below are what remains.
    store.create_audit_log(
        shop,
        AuditLog.ACTION_APP_UNINSTALLED,
        resource='app',
        details={
            'shop_domain': event.shop_domain,
            'webhook_id': event.webhook_id,
            'uninstalled_at': timezone.now().isoformat(),
        },
        request_meta=request_meta,
    )

    try:
        store.delete_sessions_by_shop(event.shop_domain)
        store.cleanup_shop_data(shop)
    except DatabaseError as e:
        logger.exception("Failed to cleanup shop data for %s", event.shop_domain)
        try:
            store.create_audit_log(
                shop,
                AuditLog.ACTION_CLEANUP_FAILED,
                resource='app',
                details={'shop_domain': event.shop_domain, 'error': str(e)},
            )
        except DatabaseError:
            logger.exception("Failed to log cleanup error for %s", event.shop_domain)
        return Outcome.ok(message='App uninstalled, data cleanup failed')

    logger.info("Successfully cleaned up data for uninstalled shop: %s", event.shop_domain)
    return Outcome.ok(message='App uninstalled and data cleaned up')


def handle_shop_update(store, event, request_meta=None):
    if store.find_shop_by_domain(event.shop_domain) is None:
        logger.warning("Shop update webhook received for unknown shop: %s", event.shop_domain)
        return Outcome.ignored('unknown shop')

    shop, _ = store.create_or_update_shop(event.shop_domain, **event.profile)
    store.create_audit_log(
        shop,
        AuditLog.ACTION_SHOP_UPDATED,
        resource='shop',
        resource_id=shop.id,
        details={
            'updated_fields': list(event.updated_fields),
            'webhook_id': event.webhook_id,
            'updated_at': event.updated_at,
        },
        request_meta=request_meta,
    )
    logger.info("Successfully updated shop: %s", event.shop_domain)
    return Outcome.ok(message='Shop updated successfully')


def handle_theme_published(store, event, request_meta=None):
    shop = store.find_shop_by_domain(event.shop_domain)
    if shop is None:
        logger.warning("Theme publish webhook received for unknown shop: %s", event.shop_domain)
        return Outcome.ignored('unknown shop')

    if not event.is_main:
        return Outcome.ok(message='Theme publish processed successfully')

    published_at = timezone.now().isoformat()
    store.create_audit_log(
        shop,
        AuditLog.ACTION_THEME_PUBLISHED,
        resource='theme',
        resource_id=event.theme_id,
        details={
            'theme_id': event.theme_id,
            'theme_name': event.theme_name,
            'role': event.role,
            'published_at': published_at,
            'webhook_data': {
                'id': event.theme_id,
                'name': event.theme_name,
                'role': event.role,
                'created_at': event.created_at,
                'updated_at': event.updated_at,
            },
        },
        request_meta=request_meta,
    )

    theme_info = dict(store.get_shop_settings(shop, THEME_INFO_KEY) or {})
    theme_info.update({
        'main_theme_id': event.theme_id,
        'main_theme_name': event.theme_name,
        'last_published': published_at,
    })
    store.update_shop_settings(shop, THEME_INFO_KEY, theme_info)
    logger.info("Main theme published for shop %s: %s (ID: %s)", event.shop_domain, event.theme_name, event.theme_id)

    # Picked up by the dashboard; losing it must not fail the webhook.
    try:
        store.update_shop_settings(shop, THEME_CHANGE_NOTIFICATION_KEY, {
            'theme_id': event.theme_id,
            'theme_name': event.theme_name,
            'changed_at': published_at,
            'acknowledged': False,
        })
    except DatabaseError:
        logger.exception("Failed to set theme change notification for %s", event.shop_domain)

    return Outcome.ok(message='Theme publish processed successfully')


def handle_subscription_update(store, event, request_meta=None):
    return reconcile_subscription_update(store, event, request_meta=request_meta)


def handle_malformed(store, event, request_meta=None):
    logger.warning("Discarding malformed %s webhook: %s %s", event.topic, event.reason, event.errors or '')
    return Outcome.ignored(event.reason)


HANDLERS = {
    AppUninstalled: handle_app_uninstalled,
    ShopUpdate: handle_shop_update,
    ThemePublished: handle_theme_published,
    SubscriptionUpdate: handle_subscription_update,
    MalformedWebhook: handle_malformed,
}


def handle_webhook(store, event, request_meta=None):
    return HANDLERS[type(event)](store, event, request_meta=request_meta)
