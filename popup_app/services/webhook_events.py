"""
Parsing boundary for inbound Shopify webhooks.

``parse_webhook`` is the only place raw webhook JSON is read. It returns one
of the event dataclasses below; anything it cannot turn into a known event
comes back as ``MalformedWebhook`` so handlers never look up unchecked keys.
"""
import json
from dataclasses import dataclass, field

from ..serializers import ShopWebhookSerializer, ThemeWebhookSerializer, field_errors
from subscriptions.serializers import AppSubscriptionWebhookSerializer, subscription_gid


TOPIC_APP_UNINSTALLED = 'app/uninstalled'
TOPIC_SHOP_UPDATE = 'shop/update'
TOPIC_THEMES_PUBLISH = 'themes/publish'
TOPIC_APP_SUBSCRIPTIONS_UPDATE = 'app_subscriptions/update'

WEBHOOK_TOPICS = (
    TOPIC_APP_UNINSTALLED,
    TOPIC_SHOP_UPDATE,
    TOPIC_THEMES_PUBLISH,
    TOPIC_APP_SUBSCRIPTIONS_UPDATE,
)


@dataclass(frozen=True)
class AppUninstalled:
    shop_domain: str
    webhook_id: int = None


@dataclass(frozen=True)
class ShopUpdate:
    shop_domain: str
    profile: dict
    updated_fields: tuple
    webhook_id: int = None
    updated_at: str = None


@dataclass(frozen=True)
class ThemePublished:
    shop_domain: str
    theme_id: int
    theme_name: str
    role: str
    created_at: str = None
    updated_at: str = None

    @property
    def is_main(self):
        return self.role == 'main'


@dataclass(frozen=True)
class SubscriptionUpdate:
    subscription_id: str  # gid://shopify/AppSubscription/<n>
    status: str  # provider vocabulary, lower-cased
    name: str = None
    billing_on: object = None  # aware datetime
    raw: dict = field(default_factory=dict)


@dataclass(frozen=True)
class MalformedWebhook:
    topic: str
    reason: str
    errors: list = field(default_factory=list)


def _parse_shop(payload):
    serializer = ShopWebhookSerializer(data=payload)
    if not serializer.is_valid():
        return None, field_errors(serializer.errors)
    return serializer, None


def _parse_app_uninstalled(topic, payload, headers):
    serializer, errors = _parse_shop(payload)
    if errors:
        return MalformedWebhook(topic, 'Invalid shop payload', errors)
    return AppUninstalled(shop_domain=serializer.shop_domain, webhook_id=serializer.validated_data.get('id'))


def _parse_shop_update(topic, payload, headers):
    serializer, errors = _parse_shop(payload)
    if errors:
        return MalformedWebhook(topic, 'Invalid shop payload', errors)
    return ShopUpdate(
        shop_domain=serializer.shop_domain,
        profile=serializer.profile(),
        updated_fields=tuple(sorted(payload)),
        webhook_id=serializer.validated_data.get('id'),
        updated_at=serializer.validated_data.get('updated_at'),
    )


def _parse_theme_publish(topic, payload, headers):
    shop_domain = headers.get('X-Shopify-Shop-Domain')
    if not shop_domain:
        return MalformedWebhook(topic, 'Missing shop domain in webhook headers')
    serializer = ThemeWebhookSerializer(data=payload)
    if not serializer.is_valid():
        return MalformedWebhook(topic, 'Invalid theme payload', field_errors(serializer.errors))
    data = serializer.validated_data
    return ThemePublished(
        shop_domain=shop_domain,
        theme_id=data['id'],
        theme_name=data['name'],
        role=data['role'],
        created_at=data.get('created_at'),
        updated_at=data.get('updated_at'),
    )


def _parse_subscription_update(topic, payload, headers):
    serializer = AppSubscriptionWebhookSerializer(data=payload)
    if not serializer.is_valid():
        return MalformedWebhook(topic, 'Invalid subscription payload', field_errors(serializer.errors))
    data = serializer.validated_data
    return SubscriptionUpdate(
        subscription_id=subscription_gid(data['id']),
        status=data['status'].strip().lower(),
        name=data.get('name'),
        billing_on=data.get('billing_on'),
        raw={
            'id': data['id'],
            'name': data.get('name'),
            'status': data['status'],
            'created_at': data.get('created_at'),
            'updated_at': data.get('updated_at'),
        },
    )


_PARSERS = {
    TOPIC_APP_UNINSTALLED: _parse_app_uninstalled,
    TOPIC_SHOP_UPDATE: _parse_shop_update,
    TOPIC_THEMES_PUBLISH: _parse_theme_publish,
    TOPIC_APP_SUBSCRIPTIONS_UPDATE: _parse_subscription_update,
}


def parse_webhook(topic, body, headers):
    """
    Turn an already verified webhook body into a typed event.

    ``headers`` only needs ``.get``; Django's ``request.headers`` is
    case-insensitive.
    """
    parser = _PARSERS.get(topic)
    if parser is None:
        return MalformedWebhook(topic, 'Unsupported webhook topic')

    try:
        payload = json.loads(body)
    except ValueError:
        return MalformedWebhook(topic, 'Invalid JSON body')
    if not isinstance(payload, dict):
        return MalformedWebhook(topic, 'Webhook body is not a JSON object')

    return parser(topic, payload, headers)
