"""
Popup settings updates and the custom-colour entitlement check.

Only shops whose subscription is exactly ACTIVE may keep their own colours.
Everyone else gets a soft restriction: the colours are reset to the defaults,
the update still succeeds, and the response lists what was overridden.
"""
from dataclasses import dataclass

from django.utils import timezone

from ..models import AuditLog
from ..outcomes import Outcome
from ..serializers import PopupSettingsSerializer, field_errors
from subscriptions.models import Subscription

POPUP_SETTINGS_KEY = 'popup_settings'
THEME_INFO_KEY = 'theme_info'
THEME_CHANGE_NOTIFICATION_KEY = 'theme_change_notification'

DEFAULT_COLORS = {
    'bgColor': '#ffffff',
    'textColor': '#333333',
    'linkColor': '#007ace',
}

DEFAULT_POPUP_SETTINGS = {
    'message': (
        'We use cookies to enhance your browsing experience and analyze our traffic. '
        'By continuing to use our site, you consent to our use of cookies.'
    ),
    'linkUrl': '/pages/privacy-policy',
    'position': 'bottom',
    'maxWidth': 400,
    'padding': 20,
    'zIndex': 9999,
    'dismissible': True,
    **DEFAULT_COLORS,
}

CUSTOM_COLORS_FEATURE = 'custom_colors'
UPGRADE_WARNING = 'Some advanced styling options require an active subscription'


@dataclass(frozen=True)
class GateDecision:
    settings: dict
    entitled: bool
    restricted_features: tuple = ()


def is_entitled(subscription):
    return subscription is not None and subscription.status == Subscription.STATUS_ACTIVE


def gate_popup_settings(subscription, settings):
    """
    Decide what gets persisted for an already validated settings payload.
    """
    if is_entitled(subscription):
        return GateDecision(settings=dict(settings), entitled=True)
    restricted = dict(settings)
    restricted.update(DEFAULT_COLORS)
    return GateDecision(settings=restricted, entitled=False, restricted_features=(CUSTOM_COLORS_FEATURE,))


def update_popup_settings(store, shop, payload, request_meta=None):
    serializer = PopupSettingsSerializer(data=payload)
    if not serializer.is_valid():
        return Outcome.caller_error('Invalid settings data', details=field_errors(serializer.errors))

    decision = gate_popup_settings(store.get_active_subscription(shop), serializer.validated_data)
    store.update_shop_settings(shop, POPUP_SETTINGS_KEY, decision.settings)

    details = {'updated_settings': decision.settings}
    if decision.entitled:
        details['has_subscription'] = True
    else:
        details['restricted_features'] = list(decision.restricted_features)
        details['subscription_required'] = True
    store.create_audit_log(
        shop,
        AuditLog.ACTION_SETTINGS_UPDATED,
        resource=POPUP_SETTINGS_KEY,
        details=details,
        request_meta=request_meta,
    )

    if decision.entitled:
        return Outcome.ok(data=decision.settings, message='Settings updated successfully')
    return Outcome.ok(
        data=decision.settings,
        warning=UPGRADE_WARNING,
        restricted_features=list(decision.restricted_features),
    )


def popup_settings_overview(store, shop):
    return {
        'popup_settings': store.get_shop_settings(shop, POPUP_SETTINGS_KEY) or dict(DEFAULT_POPUP_SETTINGS),
        'theme_info': store.get_shop_settings(shop, THEME_INFO_KEY),
        'theme_change_notification': store.get_shop_settings(shop, THEME_CHANGE_NOTIFICATION_KEY),
    }


def acknowledge_theme_change(store, shop, now=None):
    notification = store.get_shop_settings(shop, THEME_CHANGE_NOTIFICATION_KEY)
    if not notification:
        return Outcome.ok(message='No theme change notification to acknowledge')
    notification = dict(notification)
    notification['acknowledged'] = True
    notification['acknowledged_at'] = (now or timezone.now()).isoformat()
    store.update_shop_settings(shop, THEME_CHANGE_NOTIFICATION_KEY, notification)
    return Outcome.ok(message='Theme change notification acknowledged')
