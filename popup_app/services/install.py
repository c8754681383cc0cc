import logging

from ..models import AuditLog, Session
from ..serializers import ShopWebhookSerializer
from .popup_settings import POPUP_SETTINGS_KEY, DEFAULT_POPUP_SETTINGS
from .shopify_api import register_webhooks

logger = logging.getLogger(__name__)


def begin_install(store, shop_domain, state):
    """Remember the OAuth nonce on the shop's offline session row."""
    return store.store_session(
        Session.offline_id(shop_domain),
        shop=shop_domain,
        state=state,
        is_online=False,
    )


def state_matches(store, shop_domain, state):
    session = store.find_session(Session.offline_id(shop_domain))
    return bool(state) and session is not None and session.state == state


def complete_install(store, shop_domain, access_token, scope, shop_info=None, request_meta=None):
    """
    Persist the offline session and shop profile after a successful token
    exchange. Webhook registration is best-effort.
    """
    store.store_session(
        Session.offline_id(shop_domain),
        shop=shop_domain,
        state='',
        is_online=False,
        scope=scope,
        access_token=access_token,
    )

    profile = {}
    serializer = ShopWebhookSerializer(data=shop_info or {})
    if serializer.is_valid():
        profile = serializer.profile()
    else:
        logger.warning("Ignoring unusable shop profile for %s: %s", shop_domain, serializer.errors)
    profile['myshopify_domain'] = shop_domain

    shop, created = store.create_or_update_shop(shop_domain, **profile)

    if store.get_shop_settings(shop, POPUP_SETTINGS_KEY) is None:
        store.update_shop_settings(shop, POPUP_SETTINGS_KEY, dict(DEFAULT_POPUP_SETTINGS))

    webhooks = register_webhooks(shop_domain, access_token)

    store.create_audit_log(
        shop,
        AuditLog.ACTION_APP_INSTALLED,
        resource='app',
        details={
            'shop': shop_domain,
            'scope': scope,
            'reinstall': not created,
            'webhooks_registered': [w['topic'] for w in webhooks if w['success']],
        },
        request_meta=request_meta,
    )
    logger.info("App installed for shop %s", shop_domain)
    return shop
