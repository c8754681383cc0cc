import json
from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from io import StringIO
from unittest.mock import patch

import jwt
from django.apps import apps
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.core.management import call_command
from django.db import DatabaseError
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from subscriptions.models import Subscription
from .models import Shop, Session, Setting, AuditLog
from .services.popup_settings import (
    DEFAULT_COLORS, DEFAULT_POPUP_SETTINGS, gate_popup_settings, update_popup_settings,
)
from .services.verification import sign_payload, verify_webhook_signature
from .services.webhook_events import (
    parse_webhook, AppUninstalled, ShopUpdate, ThemePublished, SubscriptionUpdate, MalformedWebhook,
)
from .store import Store

SHOP_DOMAIN = "test-shop.myshopify.com"


def custom_settings(**overrides):
    data = {
        'message': 'We use cookies.',
        'linkUrl': '/pages/privacy-policy',
        'position': 'bottom',
        'maxWidth': 400,
        'padding': 20,
        'zIndex': 9999,
        'dismissible': True,
        'bgColor': '#000000',
        'textColor': '#eeeeee',
        'linkColor': '#ff0000',
    }
    data.update(overrides)
    return data


def create_shop_with_session(domain=SHOP_DOMAIN):
    shop = Shop.objects.create(shop_domain=domain, myshopify_domain=domain, name="Test Shop")
    session = Session.objects.create(
        id=Session.offline_id(domain),
        shop=domain,
        access_token="shpat_test",
        scope="read_themes",
    )
    return shop, session


class WebhookVerificationTest(TestCase):
    body = b'{"id": 1, "domain": "test-shop.myshopify.com"}'
    secret = "webhook-secret"

    def test_valid_signature(self):
        self.assertTrue(verify_webhook_signature(self.body, sign_payload(self.body, self.secret), self.secret))

    def test_tampered_body_is_rejected(self):
        signature = sign_payload(self.body, self.secret)
        self.assertFalse(verify_webhook_signature(self.body + b" ", signature, self.secret))

    def test_wrong_secret_is_rejected(self):
        signature = sign_payload(self.body, "other-secret")
        self.assertFalse(verify_webhook_signature(self.body, signature, self.secret))

    def test_missing_signature_or_secret(self):
        self.assertFalse(verify_webhook_signature(self.body, None, self.secret))
        self.assertFalse(verify_webhook_signature(self.body, "", self.secret))
        self.assertFalse(verify_webhook_signature(self.body, sign_payload(self.body, self.secret), ""))


class ParseWebhookTest(TestCase):

    def test_app_uninstalled(self):
        event = parse_webhook('app/uninstalled', json.dumps({"id": 7, "myshopify_domain": SHOP_DOMAIN}), {})
        self.assertEqual(event, AppUninstalled(shop_domain=SHOP_DOMAIN, webhook_id=7))

    def test_shop_update_profile(self):
        body = json.dumps({"domain": SHOP_DOMAIN, "name": "Renamed", "iana_timezone": "Europe/Paris", "city": None})
        event = parse_webhook('shop/update', body, {})
        self.assertIsInstance(event, ShopUpdate)
        self.assertEqual(event.profile, {"name": "Renamed", "iana_timezone": "Europe/Paris"})
        self.assertEqual(event.updated_fields, ("city", "domain", "iana_timezone", "name"))

    def test_theme_publish_reads_shop_from_header(self):
        body = json.dumps({"id": 42, "name": "Dawn", "role": "main"})
        event = parse_webhook('themes/publish', body, {'X-Shopify-Shop-Domain': SHOP_DOMAIN})
        self.assertIsInstance(event, ThemePublished)
        self.assertTrue(event.is_main)
        self.assertEqual(event.shop_domain, SHOP_DOMAIN)

    def test_theme_publish_without_header(self):
        event = parse_webhook('themes/publish', json.dumps({"id": 42, "name": "Dawn", "role": "main"}), {})
        self.assertIsInstance(event, MalformedWebhook)

    def test_subscription_update_nested_payload(self):
        body = json.dumps({"app_subscription": {
            "admin_graphql_api_id": "gid://shopify/AppSubscription/123",
            "name": "Privacy Popup Basic",
            "status": "ACTIVE",
            "billing_on": "2026-11-18",
        }})
        event = parse_webhook('app_subscriptions/update', body, {})
        self.assertIsInstance(event, SubscriptionUpdate)
        self.assertEqual(event.subscription_id, "gid://shopify/AppSubscription/123")
        self.assertEqual(event.status, "active")
        self.assertEqual(event.billing_on, datetime(2026, 11, 18, tzinfo=dt_timezone.utc))

    def test_numeric_subscription_id_becomes_gid(self):
        event = parse_webhook('app_subscriptions/update', json.dumps({"id": 123, "status": "active"}), {})
        self.assertEqual(event.subscription_id, "gid://shopify/AppSubscription/123")

    def test_malformed_bodies(self):
        self.assertEqual(parse_webhook('orders/create', b'{}', {}).reason, 'Unsupported webhook topic')
        self.assertEqual(parse_webhook('shop/update', b'not json', {}).reason, 'Invalid JSON body')
        self.assertEqual(parse_webhook('shop/update', b'[1, 2]', {}).reason, 'Webhook body is not a JSON object')
        event = parse_webhook('shop/update', json.dumps({"name": "No domain"}), {})
        self.assertIsInstance(event, MalformedWebhook)
        self.assertEqual(event.reason, 'Invalid shop payload')
        event = parse_webhook('app_subscriptions/update', json.dumps({"id": 1, "status": "active", "billing_on": "soon"}), {})
        self.assertEqual(event.errors, [{'field': 'billing_on', 'message': 'Invalid billing date'}])


class WebhookAPITest(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.shop, self.session = create_shop_with_session()

    def post_webhook(self, topic, payload, signature=None, **headers):
        body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
        if signature is None:
            signature = sign_payload(body, settings.SHOPIFY_API_SECRET)
        if signature:
            headers['HTTP_X_SHOPIFY_HMAC_SHA256'] = signature
        return self.client.post(f'/api/webhooks/{topic}/', body, content_type='application/json', **headers)

    def test_missing_signature(self):
        response = self.post_webhook('app/uninstalled', {"domain": SHOP_DOMAIN}, signature='')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data['error'], 'Missing webhook signature')
        self.assertTrue(Shop.objects.filter(shop_domain=SHOP_DOMAIN).exists())

    def test_invalid_signature(self):
        response = self.post_webhook('app/uninstalled', {"domain": SHOP_DOMAIN}, signature='bm90LXRoZS1zaWduYXR1cmU=')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data['error'], 'Invalid webhook signature')
        self.assertTrue(Shop.objects.filter(shop_domain=SHOP_DOMAIN).exists())

    def test_malformed_payload_is_acknowledged(self):
        response = self.post_webhook('shop/update', b'not json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['reason'], 'Invalid JSON body')

    def test_unsupported_topic_is_acknowledged(self):
        response = self.post_webhook('orders/create', {"id": 1})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['reason'], 'Unsupported webhook topic')

    def test_app_uninstalled_purges_shop(self):
        Setting.objects.create(shop=self.shop, key='popup_settings', value=DEFAULT_POPUP_SETTINGS)
        Subscription.objects.create(
            shop=self.shop, shopify_subscription_id="gid://shopify/AppSubscription/1",
            name="Privacy Popup Basic", status=Subscription.STATUS_ACTIVE, price=Decimal('4.99'),
        )
        AuditLog.objects.create(shop=self.shop, action=AuditLog.ACTION_SETTINGS_UPDATED)

        response = self.post_webhook('app/uninstalled', {"id": 1, "domain": SHOP_DOMAIN})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['success'])
        self.assertFalse(Shop.objects.filter(shop_domain=SHOP_DOMAIN).exists())
        self.assertFalse(Session.objects.filter(shop=SHOP_DOMAIN).exists())
        self.assertEqual(Setting.objects.count(), 0)
        self.assertEqual(Subscription.objects.count(), 0)
        self.assertEqual(AuditLog.objects.count(), 0)

    def test_app_uninstalled_purge_failure_keeps_audit_trail(self):
        class FailingStore(Store):
            def cleanup_shop_data(self, shop):
                raise DatabaseError("disk full")

        with patch.object(apps.get_app_config('popup_app'), 'store', FailingStore()):
            response = self.post_webhook('app/uninstalled', {"id": 1, "domain": SHOP_DOMAIN})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['success'])
        actions = list(AuditLog.objects.filter(shop=self.shop).order_by('id').values_list('action', flat=True))
        self.assertEqual(actions, [AuditLog.ACTION_APP_UNINSTALLED, AuditLog.ACTION_CLEANUP_FAILED])
        failure = AuditLog.objects.get(action=AuditLog.ACTION_CLEANUP_FAILED)
        self.assertEqual(failure.details['error'], 'disk full')

    def test_app_uninstalled_unknown_shop(self):
        response = self.post_webhook('app/uninstalled', {"domain": "gone.myshopify.com"})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['reason'], 'unknown shop')

    def test_shop_update(self):
        response = self.post_webhook('shop/update', {
            "id": 99, "domain": SHOP_DOMAIN, "name": "Renamed Shop", "currency": "EUR",
        })
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.shop.refresh_from_db()
        self.assertEqual(self.shop.name, "Renamed Shop")
        self.assertEqual(self.shop.currency, "EUR")
        log = AuditLog.objects.get(shop=self.shop, action=AuditLog.ACTION_SHOP_UPDATED)
        self.assertEqual(log.details['webhook_id'], 99)
        self.assertIn('name', log.details['updated_fields'])

    def test_shop_update_unknown_shop_is_not_created(self):
        response = self.post_webhook('shop/update', {"domain": "new.myshopify.com", "name": "New"})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(Shop.objects.filter(shop_domain="new.myshopify.com").exists())

    def test_main_theme_publish(self):
        Setting.objects.create(shop=self.shop, key='theme_info', value={'extension_enabled': True})

        response = self.post_webhook(
            'themes/publish', {"id": 42, "name": "Dawn", "role": "main"},
            HTTP_X_SHOPIFY_SHOP_DOMAIN=SHOP_DOMAIN,
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        theme_info = Setting.objects.get(shop=self.shop, key='theme_info').value
        self.assertEqual(theme_info['main_theme_id'], 42)
        self.assertEqual(theme_info['main_theme_name'], "Dawn")
        self.assertTrue(theme_info['extension_enabled'])
        notification = Setting.objects.get(shop=self.shop, key='theme_change_notification').value
        self.assertFalse(notification['acknowledged'])
        self.assertTrue(AuditLog.objects.filter(shop=self.shop, action=AuditLog.ACTION_THEME_PUBLISHED).exists())

    def test_non_main_theme_publish_is_ignored(self):
        response = self.post_webhook(
            'themes/publish', {"id": 43, "name": "Draft", "role": "unpublished"},
            HTTP_X_SHOPIFY_SHOP_DOMAIN=SHOP_DOMAIN,
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(Setting.objects.filter(shop=self.shop).exists())
        self.assertFalse(AuditLog.objects.filter(shop=self.shop).exists())

    def test_subscription_update_activates(self):
        Subscription.objects.create(
            shop=self.shop, shopify_subscription_id="gid://shopify/AppSubscription/5",
            name="Privacy Popup Basic", price=Decimal('4.99'),
        )
        response = self.post_webhook('app_subscriptions/update', {"app_subscription": {
            "admin_graphql_api_id": "gid://shopify/AppSubscription/5",
            "name": "Privacy Popup Basic",
            "status": "ACTIVE",
        }})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['subscription']['status'], Subscription.STATUS_ACTIVE)


class SettingsGateTest(TestCase):
    def setUp(self):
        self.store = Store()
        self.shop, _ = create_shop_with_session()

    def subscribe(self, status):
        return Subscription.objects.create(
            shop=self.shop, shopify_subscription_id=f"gid://shopify/AppSubscription/{status}",
            name="Privacy Popup Basic", status=status, price=Decimal('4.99'),
        )

    def test_gate_without_subscription_resets_colors(self):
        decision = gate_popup_settings(None, custom_settings())
        self.assertFalse(decision.entitled)
        self.assertEqual(decision.restricted_features, ('custom_colors',))
        for key, value in DEFAULT_COLORS.items():
            self.assertEqual(decision.settings[key], value)
        self.assertEqual(decision.settings['message'], 'We use cookies.')

    def test_active_subscription_keeps_custom_colors(self):
        outcome = update_popup_settings(self.store, self.shop, custom_settings())
        self.assertEqual(outcome.data['restricted_features'], ['custom_colors'])

        self.subscribe(Subscription.STATUS_ACTIVE)
        outcome = update_popup_settings(self.store, self.shop, custom_settings())
        self.assertTrue(outcome.is_ok)
        self.assertEqual(outcome.data['data']['bgColor'], '#000000')
        self.assertNotIn('warning', outcome.data)
        stored = Setting.objects.get(shop=self.shop, key='popup_settings').value
        self.assertEqual(stored['linkColor'], '#ff0000')

    def test_pending_subscription_is_not_entitled(self):
        self.subscribe(Subscription.STATUS_PENDING)
        outcome = update_popup_settings(self.store, self.shop, custom_settings())
        self.assertTrue(outcome.is_ok)
        self.assertIn('warning', outcome.data)
        stored = Setting.objects.get(shop=self.shop, key='popup_settings').value
        self.assertEqual(stored['bgColor'], '#ffffff')
        self.assertEqual(stored['textColor'], '#333333')
        self.assertEqual(stored['linkColor'], '#007ace')

    def test_every_update_is_audited(self):
        update_popup_settings(self.store, self.shop, custom_settings())
        self.subscribe(Subscription.STATUS_ACTIVE)
        update_popup_settings(self.store, self.shop, custom_settings())
        logs = AuditLog.objects.filter(shop=self.shop, action=AuditLog.ACTION_SETTINGS_UPDATED).order_by('id')
        self.assertEqual(logs.count(), 2)
        self.assertTrue(logs[0].details['subscription_required'])
        self.assertTrue(logs[1].details['has_subscription'])

    def test_invalid_settings_are_rejected(self):
        outcome = update_popup_settings(self.store, self.shop, custom_settings(bgColor='red', maxWidth=5000))
        self.assertEqual(outcome.http_status, 400)
        fields = {error['field'] for error in outcome.details}
        self.assertEqual(fields, {'bgColor', 'maxWidth'})
        self.assertFalse(Setting.objects.filter(shop=self.shop).exists())
        self.assertFalse(AuditLog.objects.filter(shop=self.shop).exists())

    def test_numeric_strings_and_truthy_values_are_rejected(self):
        outcome = update_popup_settings(
            self.store, self.shop, custom_settings(maxWidth="400", padding=20.5, zIndex=True, dismissible="true"),
        )
        self.assertEqual(outcome.http_status, 400)
        fields = {error['field'] for error in outcome.details}
        self.assertEqual(fields, {'maxWidth', 'padding', 'zIndex', 'dismissible'})
        self.assertFalse(Setting.objects.filter(shop=self.shop).exists())

    def test_link_url_accepts_absolute_and_relative(self):
        self.assertTrue(update_popup_settings(self.store, self.shop, custom_settings(linkUrl='https://example.com/p')).is_ok)
        outcome = update_popup_settings(self.store, self.shop, custom_settings(linkUrl='privacy'))
        self.assertEqual(outcome.details, [{'field': 'linkUrl', 'message': 'Must be a valid URL or relative path'}])


class SettingsAPITest(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.shop, self.session = create_shop_with_session()
        self.client.force_authenticate(user=self.session)

    def test_get_defaults(self):
        response = self.client.get('/api/settings/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['popup_settings'], DEFAULT_POPUP_SETTINGS)
        self.assertIsNone(response.data['data']['theme_change_notification'])

    def test_post_settings_without_subscription(self):
        response = self.client.post('/api/settings/', custom_settings(), format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['restricted_features'], ['custom_colors'])
        self.assertEqual(response.data['data']['bgColor'], '#ffffff')

    def test_post_invalid_settings(self):
        response = self.client.post('/api/settings/', custom_settings(position='middle'), format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Invalid settings data')
        self.assertEqual(response.data['details'][0]['field'], 'position')

    def test_acknowledge_theme_notification(self):
        Setting.objects.create(shop=self.shop, key='theme_change_notification', value={
            'theme_id': 42, 'theme_name': 'Dawn', 'acknowledged': False,
        })
        response = self.client.patch('/api/settings/theme-notification/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        notification = Setting.objects.get(shop=self.shop, key='theme_change_notification').value
        self.assertTrue(notification['acknowledged'])

    def test_missing_shop(self):
        self.shop.delete()
        response = self.client.get('/api/settings/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class SessionTokenAuthTest(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.shop, self.session = create_shop_with_session()

    def token(self, secret=None, **overrides):
        now = datetime.now(dt_timezone.utc)
        payload = {
            "iss": f"https://{SHOP_DOMAIN}/admin",
            "dest": f"https://{SHOP_DOMAIN}",
            "aud": settings.SHOPIFY_API_KEY,
            "sub": "123",
            "exp": now + timedelta(minutes=10),
            "nbf": now - timedelta(seconds=5),
            "iat": now,
            "jti": "00000000-0000-0000-0000-000000000000",
        }
        payload.update(overrides)
        return jwt.encode(payload, secret or settings.SHOPIFY_API_SECRET, algorithm='HS256')

    def test_valid_token(self):
        self.client.credentials(HTTP_AUTHORIZATION='Bearer ' + self.token())
        response = self.client.get('/api/settings/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_missing_token(self):
        response = self.client.get('/api/settings/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data['status'], 'error')

    def test_bad_signature(self):
        self.client.credentials(HTTP_AUTHORIZATION='Bearer ' + self.token(secret='not-the-api-secret-0123456789abcdef0123'))
        response = self.client.get('/api/settings/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data['message'], 'Invalid token')

    def test_expired_token(self):
        past = datetime.now(dt_timezone.utc) - timedelta(hours=1)
        self.client.credentials(HTTP_AUTHORIZATION='Bearer ' + self.token(exp=past, nbf=past - timedelta(minutes=1), iat=past))
        response = self.client.get('/api/settings/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data['message'], 'Token has expired')

    def test_wrong_audience(self):
        self.client.credentials(HTTP_AUTHORIZATION='Bearer ' + self.token(aud='another-app'))
        response = self.client.get('/api/settings/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_no_stored_session(self):
        self.session.delete()
        self.client.credentials(HTTP_AUTHORIZATION='Bearer ' + self.token())
        response = self.client.get('/api/settings/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data['message'], 'No active session found')


class AuditLogAPITest(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.shop, self.session = create_shop_with_session()
        self.client.force_authenticate(user=self.session)
        other, _ = create_shop_with_session("other.myshopify.com")
        AuditLog.objects.create(shop=other, action=AuditLog.ACTION_SETTINGS_UPDATED)
        for _ in range(3):
            AuditLog.objects.create(shop=self.shop, action=AuditLog.ACTION_SETTINGS_UPDATED, resource='popup_settings')
        AuditLog.objects.create(shop=self.shop, action=AuditLog.ACTION_THEME_PUBLISHED, resource='theme')

    def test_list_only_own_logs(self):
        response = self.client.get('/api/audit-logs/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['pagination']['total'], 4)
        self.assertEqual(len(response.data['logs']), 4)

    def test_filter_and_limit(self):
        response = self.client.get('/api/audit-logs/?action=settings_updated&limit=2')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['pagination']['total'], 3)
        self.assertEqual(response.data['pagination']['totalPages'], 2)
        self.assertEqual(len(response.data['logs']), 2)

    def test_filter_by_resource(self):
        response = self.client.get('/api/audit-logs/?resource=theme')
        self.assertEqual([log['action'] for log in response.data['logs']], [AuditLog.ACTION_THEME_PUBLISHED])


class CleanupTest(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.shop, self.session = create_shop_with_session()
        now = timezone.now()
        Session.objects.create(id="expired", shop=SHOP_DOMAIN, expires=now - timedelta(days=1))
        Session.objects.create(id="valid", shop=SHOP_DOMAIN, expires=now + timedelta(days=1))
        AuditLog.objects.create(shop=self.shop, action=AuditLog.ACTION_SHOP_UPDATED, created_at=now - timedelta(days=91))
        AuditLog.objects.create(shop=self.shop, action=AuditLog.ACTION_SHOP_UPDATED, created_at=now - timedelta(days=10))

    def assert_cleaned(self):
        self.assertFalse(Session.objects.filter(id="expired").exists())
        self.assertTrue(Session.objects.filter(id="valid").exists())
        self.assertTrue(Session.objects.filter(id=self.session.id).exists())
        self.assertEqual(AuditLog.objects.count(), 1)

    def test_management_command(self):
        out = StringIO()
        call_command('cleanup', stdout=out)
        self.assertIn("Removed 1 expired sessions and 1 old audit logs", out.getvalue())
        self.assert_cleaned()

    def test_cron_endpoint_requires_secret(self):
        response = self.client.get('/api/cron/cleanup/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        response = self.client.get('/api/cron/cleanup/', HTTP_AUTHORIZATION='Bearer wrong')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(AuditLog.objects.count(), 2)

    def test_cron_endpoint(self):
        response = self.client.get('/api/cron/cleanup/', HTTP_AUTHORIZATION=f'Bearer {settings.CRON_SECRET}')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['results']['expired_sessions'], 1)
        self.assertEqual(response.data['results']['old_audit_logs'], 1)
        self.assert_cleaned()


class InstallFlowTest(TestCase):
    def setUp(self):
        self.client = APIClient()

    def test_install_rejects_bad_domain(self):
        response = self.client.get('/api/auth/?shop=evil.example.com')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        response = self.client.get('/api/auth/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    @patch('popup_app.views.build_permission_url', return_value='https://test-shop.myshopify.com/admin/oauth/authorize')
    def test_install_redirects_and_stores_state(self, mock_url):
        response = self.client.get(f'/api/auth/?shop={SHOP_DOMAIN}')
        self.assertEqual(response.status_code, 302)
        self.assertEqual(response['Location'], 'https://test-shop.myshopify.com/admin/oauth/authorize')
        session = Session.objects.get(id=Session.offline_id(SHOP_DOMAIN))
        self.assertEqual(mock_url.call_args[0], (SHOP_DOMAIN, session.state))
        self.assertFalse(session.is_authenticated)

    def test_callback_rejects_unknown_state(self):
        Session.objects.create(id=Session.offline_id(SHOP_DOMAIN), shop=SHOP_DOMAIN, state="expected")
        response = self.client.get(f'/api/auth/callback/?shop={SHOP_DOMAIN}&state=forged&code=abc')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    @patch('popup_app.services.install.register_webhooks', return_value=[{'topic': 'app/uninstalled', 'success': True}])
    @patch('popup_app.views.fetch_shop_info')
    @patch('popup_app.views.exchange_code', return_value=('shpat_new', 'read_themes'))
    def test_callback_completes_install(self, mock_exchange, mock_shop_info, mock_register):
        mock_shop_info.return_value = {
            "id": 1, "domain": "shop.example.com", "myshopify_domain": SHOP_DOMAIN,
            "name": "Test Shop", "email": "owner@example.com", "currency": "USD",
        }
        Session.objects.create(id=Session.offline_id(SHOP_DOMAIN), shop=SHOP_DOMAIN, state="nonce")

        response = self.client.get(f'/api/auth/callback/?shop={SHOP_DOMAIN}&state=nonce&code=abc&host=aG9zdA')

        self.assertEqual(response.status_code, 302)
        self.assertEqual(
            response['Location'],
            f"https://popup.example.com/dashboard?shop={SHOP_DOMAIN}&host=aG9zdA",
        )
        session = Session.objects.get(id=Session.offline_id(SHOP_DOMAIN))
        self.assertEqual(session.access_token, 'shpat_new')
        self.assertEqual(session.state, '')
        shop = Shop.objects.get(shop_domain=SHOP_DOMAIN)
        self.assertEqual(shop.email, "owner@example.com")
        self.assertEqual(
            Setting.objects.get(shop=shop, key='popup_settings').value,
            DEFAULT_POPUP_SETTINGS,
        )
        log = AuditLog.objects.get(shop=shop, action=AuditLog.ACTION_APP_INSTALLED)
        self.assertEqual(log.details['webhooks_registered'], ['app/uninstalled'])
        mock_register.assert_called_once_with(SHOP_DOMAIN, 'shpat_new')


class HealthCheckTest(TestCase):
    def test_health(self):
        response = APIClient().get('/api/health/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'healthy')


class AppStartupTest(TestCase):

    @override_settings(SHOPIFY_API_SECRET='')
    def test_refuses_to_start_without_api_secret(self):
        config = apps.get_app_config('popup_app')
        with patch.object(config, 'store', config.store):
            with self.assertRaises(ImproperlyConfigured):
                config.ready()

    def test_ready_builds_store(self):
        self.assertIsInstance(apps.get_app_config('popup_app').store, Store)
