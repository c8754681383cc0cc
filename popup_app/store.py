"""
Persistence helpers shared by the services.

A single ``Store`` is built when the app registry is ready
(``PopupAppConfig.store``) and handed to every service call. Tests build
their own, or a subclass that fails on purpose.
"""
import logging

from django.db import transaction
from django.utils import timezone

from .models import Shop, Session, Setting, AuditLog
from subscriptions.models import Subscription

logger = logging.getLogger(__name__)


class Store:

    # Shops

    def find_shop_by_domain(self, domain):
        return Shop.objects.filter(shop_domain=domain).first()

    def create_or_update_shop(self, domain, **attributes):
        attributes.setdefault('myshopify_domain', domain)
        return Shop.objects.update_or_create(shop_domain=domain, defaults=attributes)

    # Sessions

    def find_session(self, session_id):
        return Session.objects.filter(id=session_id).first()

    def store_session(self, session_id, **fields):
        session, _ = Session.objects.update_or_create(id=session_id, defaults=fields)
        return session

    def delete_sessions_by_shop(self, shop_domain):
        count, _ = Session.objects.filter(shop=shop_domain).delete()
        return count

    def cleanup_expired_sessions(self, now=None):
        count, _ = Session.objects.filter(expires__lt=now or timezone.now()).delete()
        return count

    # Subscriptions

    def get_active_subscription(self, shop):
        return (
            Subscription.objects.filter(shop=shop, status=Subscription.STATUS_ACTIVE)
            .order_by('-created_at')
            .first()
        )

    def get_pending_subscription(self, shop):
        return (
            Subscription.objects.filter(shop=shop, status=Subscription.STATUS_PENDING)
            .order_by('-created_at')
            .first()
        )

    def cancel_other_active_subscriptions(self, shop, keep_subscription_id):
        """
        Cancel every ACTIVE subscription of ``shop`` except ``keep_subscription_id``.
        Returns the rows that were cancelled, with their old status.
        """
        others = list(
            Subscription.objects.filter(shop=shop, status=Subscription.STATUS_ACTIVE)
            .exclude(shopify_subscription_id=keep_subscription_id)
        )
        if others:
            Subscription.objects.filter(id__in=[s.id for s in others]).update(
                status=Subscription.STATUS_CANCELLED, updated_at=timezone.now(),
            )
        return others

    def find_subscription(self, shopify_subscription_id):
        return (
            Subscription.objects.select_related('shop')
            .filter(shopify_subscription_id=shopify_subscription_id)
            .first()
        )

    def create_subscription(self, shop, **fields):
        return Subscription.objects.create(shop=shop, **fields)

    def update_subscription_status(self, shopify_subscription_id, status, current_period_end=None):
        """
        Overwrite the status in one UPDATE keyed by the external id (last write wins).
        """
        changes = {'status': status, 'updated_at': timezone.now()}
        if current_period_end is not None:
            changes['current_period_end'] = current_period_end
        Subscription.objects.filter(shopify_subscription_id=shopify_subscription_id).update(**changes)
        return self.find_subscription(shopify_subscription_id)

    # Settings

    def get_shop_settings(self, shop, key=None):
        if key:
            setting = Setting.objects.filter(shop=shop, key=key).first()
            return setting.value if setting else None
        return {s.key: s.value for s in Setting.objects.filter(shop=shop)}

    def update_shop_settings(self, shop, key, value):
        setting, _ = Setting.objects.update_or_create(shop=shop, key=key, defaults={'value': value})
        return setting

    # Audit log

    def create_audit_log(self, shop, action, resource=None, resource_id=None, details=None, request_meta=None):
        request_meta = request_meta or {}
        return AuditLog.objects.create(
            shop=shop,
            action=action,
            resource=resource,
            resource_id=str(resource_id) if resource_id is not None else None,
            details=details,
            user_agent=request_meta.get('user_agent'),
            ip_address=request_meta.get('ip_address'),
        )

    def audit_logs(self, shop):
        return AuditLog.objects.filter(shop=shop).order_by('-created_at', '-id')

    def prune_audit_logs(self, before):
        count, _ = AuditLog.objects.filter(created_at__lt=before).delete()
        return count

    # Purge

    def cleanup_shop_data(self, shop):
        """
        Remove every shop-scoped row, children first, then the shop itself.
        """
        with transaction.atomic():
            AuditLog.objects.filter(shop=shop).delete()
            Setting.objects.filter(shop=shop).delete()
            Subscription.objects.filter(shop=shop).delete()
            shop.delete()
        logger.info("Purged data for shop %s", shop.shop_domain)
