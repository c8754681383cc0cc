"""
OAuth install flow and Admin API helpers used during install.
"""
import logging
import secrets

import requests
import shopify
from django.conf import settings
from pyactiveresource.connection import Error as ResourceError

from .webhook_events import WEBHOOK_TOPICS

logger = logging.getLogger(__name__)

MYSHOPIFY_SUFFIX = '.myshopify.com'
CALLBACK_PATH = '/api/auth/callback/'


def is_valid_shop_domain(shop_domain):
    if not shop_domain or not shop_domain.endswith(MYSHOPIFY_SUFFIX):
        return False
    name = shop_domain[:-len(MYSHOPIFY_SUFFIX)]
    return bool(name) and all(c.isalnum() or c == '-' for c in name)


def _setup():
    shopify.Session.setup(api_key=settings.SHOPIFY_API_KEY, secret=settings.SHOPIFY_API_SECRET)


def new_oauth_state():
    return secrets.token_urlsafe(24)


def build_permission_url(shop_domain, state):
    _setup()
    session = shopify.Session(shop_domain, settings.SHOPIFY_API_VERSION)
    return session.create_permission_url(
        redirect_uri=f"{settings.SHOPIFY_APP_URL}{CALLBACK_PATH}",
        scope=settings.SHOPIFY_SCOPES,
        state=state,
    )


def exchange_code(shop_domain, params):
    """
    Validate the callback query (HMAC, timestamp) and trade the code for an
    offline access token. Raises ``shopify.ValidationException`` when the
    query does not verify.
    """
    _setup()
    session = shopify.Session(shop_domain, settings.SHOPIFY_API_VERSION)
    access_token = session.request_token(params)
    scope = getattr(session, 'access_scopes', None) or ','.join(settings.SHOPIFY_SCOPES)
    return access_token, str(scope)


def fetch_shop_info(shop_domain, access_token):
    """Shop resource as a dict, or None when the Admin API call fails."""
    session = shopify.Session(shop_domain, settings.SHOPIFY_API_VERSION, access_token)
    shopify.ShopifyResource.activate_session(session)
    try:
        return shopify.Shop.current().to_dict()
    except ResourceError as e:
        logger.error("Could not fetch shop info for %s: %s", shop_domain, e)
        return None
    finally:
        shopify.ShopifyResource.clear_session()


def webhook_address(topic):
    return f"{settings.SHOPIFY_APP_URL}/api/webhooks/{topic}/"


def register_webhooks(shop_domain, access_token, topics=WEBHOOK_TOPICS):
    """
    Subscribe the shop to every handled topic. Failures are logged and
    reported per topic, never raised.
    """
    url = f"https://{shop_domain}/admin/api/{settings.SHOPIFY_API_VERSION}/webhooks.json"
    headers = {"X-Shopify-Access-Token": access_token}
    results = []
    for topic in topics:
        payload = {"webhook": {"topic": topic, "address": webhook_address(topic), "format": "json"}}
        try:
            r = requests.post(url, json=payload, headers=headers, timeout=15)
            r.raise_for_status()
            results.append({'topic': topic, 'success': True})
        except requests.RequestException as e:
            logger.error("Failed to register webhook %s for %s: %s", topic, shop_domain, e)
            results.append({'topic': topic, 'success': False, 'error': str(e)})
    return results
