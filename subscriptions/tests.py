import json
from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from unittest.mock import patch, MagicMock

from django.test import TestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from popup_app.models import Shop, Session, AuditLog
from popup_app.outcomes import OutcomeKind
from popup_app.services.webhook_events import SubscriptionUpdate
from popup_app.store import Store
from .models import Subscription
from .services.billing import create_subscription, cancel_subscription, trial_info
from .services.billing_client import ShopifyBillingClient, BillingError
from .services.reconciler import map_provider_status, reconcile_subscription_update

SHOP_DOMAIN = "sub-test.myshopify.com"
GID = "gid://shopify/AppSubscription/1001"


def created_payload(gid=GID, user_errors=None):
    return {
        'appSubscription': None if user_errors else {
            'id': gid, 'name': 'Privacy Popup Basic', 'status': 'PENDING', 'trialDays': 7, 'test': False,
        },
        'confirmationUrl': None if user_errors else 'https://sub-test.myshopify.com/admin/charges/confirm',
        'userErrors': user_errors or [],
    }


class ProviderStatusMapTest(TestCase):

    def test_known_statuses(self):
        self.assertEqual(map_provider_status('active'), Subscription.STATUS_ACTIVE)
        self.assertEqual(map_provider_status('ACTIVE'), Subscription.STATUS_ACTIVE)
        self.assertEqual(map_provider_status('frozen'), Subscription.STATUS_FROZEN)
        self.assertEqual(map_provider_status('expired'), Subscription.STATUS_EXPIRED)

    def test_declined_maps_to_cancelled(self):
        self.assertEqual(map_provider_status('declined'), Subscription.STATUS_CANCELLED)

    def test_unknown_status_falls_back_to_pending_with_warning(self):
        with self.assertLogs('subscriptions.services.reconciler', level='WARNING') as logs:
            self.assertEqual(map_provider_status('on_hold'), Subscription.STATUS_PENDING)
        self.assertIn('on_hold', logs.output[0])


class ReconcilerTest(TestCase):
    def setUp(self):
        self.store = Store()
        self.shop = Shop.objects.create(shop_domain=SHOP_DOMAIN)
        self.subscription = Subscription.objects.create(
            shop=self.shop, shopify_subscription_id=GID,
            name="Privacy Popup Basic", price=Decimal('4.99'),
        )

    def actions(self):
        return list(AuditLog.objects.filter(shop=self.shop).order_by('id').values_list('action', flat=True))

    def test_pending_to_active_writes_two_entries(self):
        outcome = reconcile_subscription_update(self.store, SubscriptionUpdate(subscription_id=GID, status='active'))

        self.assertEqual(outcome.kind, OutcomeKind.OK)
        self.subscription.refresh_from_db()
        self.assertEqual(self.subscription.status, Subscription.STATUS_ACTIVE)
        self.assertEqual(self.actions(), [AuditLog.ACTION_SUBSCRIPTION_UPDATED, AuditLog.ACTION_SUBSCRIPTION_ACTIVATED])
        updated = AuditLog.objects.get(action=AuditLog.ACTION_SUBSCRIPTION_UPDATED)
        self.assertEqual(updated.details['old_status'], Subscription.STATUS_PENDING)
        self.assertEqual(updated.details['new_status'], Subscription.STATUS_ACTIVE)

    def test_redelivery_is_idempotent_on_status(self):
        event = SubscriptionUpdate(subscription_id=GID, status='active')
        reconcile_subscription_update(self.store, event)
        reconcile_subscription_update(self.store, event)

        self.subscription.refresh_from_db()
        self.assertEqual(self.subscription.status, Subscription.STATUS_ACTIVE)
        self.assertEqual(self.actions(), [
            AuditLog.ACTION_SUBSCRIPTION_UPDATED,
            AuditLog.ACTION_SUBSCRIPTION_ACTIVATED,
            AuditLog.ACTION_SUBSCRIPTION_UPDATED,
        ])

    def test_declined_cancels(self):
        reconcile_subscription_update(self.store, SubscriptionUpdate(subscription_id=GID, status='declined'))

        self.subscription.refresh_from_db()
        self.assertEqual(self.subscription.status, Subscription.STATUS_CANCELLED)
        self.assertEqual(self.actions(), [
            AuditLog.ACTION_SUBSCRIPTION_UPDATED,
            AuditLog.ACTION_SUBSCRIPTION_CANCELLED_BY_SHOPIFY,
        ])
        entry = AuditLog.objects.get(action=AuditLog.ACTION_SUBSCRIPTION_CANCELLED_BY_SHOPIFY)
        self.assertEqual(entry.details['reason'], 'shopify_webhook')

    def test_unknown_provider_status(self):
        self.subscription.status = Subscription.STATUS_ACTIVE
        self.subscription.save()

        with self.assertLogs('subscriptions.services.reconciler', level='WARNING'):
            reconcile_subscription_update(self.store, SubscriptionUpdate(subscription_id=GID, status='mystery'))

        self.subscription.refresh_from_db()
        self.assertEqual(self.subscription.status, Subscription.STATUS_PENDING)
        self.assertEqual(self.actions(), [AuditLog.ACTION_SUBSCRIPTION_UPDATED])

    def test_billing_on_sets_current_period_end(self):
        billing_on = datetime(2026, 11, 18, tzinfo=dt_timezone.utc)
        reconcile_subscription_update(
            self.store, SubscriptionUpdate(subscription_id=GID, status='active', billing_on=billing_on),
        )
        self.subscription.refresh_from_db()
        self.assertEqual(self.subscription.current_period_end, billing_on)

    def test_billing_on_updates_period_end_without_status_change(self):
        first = datetime(2026, 11, 18, tzinfo=dt_timezone.utc)
        second = datetime(2026, 12, 18, tzinfo=dt_timezone.utc)
        Subscription.objects.filter(id=self.subscription.id).update(
            status=Subscription.STATUS_ACTIVE, current_period_end=first,
        )

        reconcile_subscription_update(
            self.store, SubscriptionUpdate(subscription_id=GID, status='active', billing_on=second),
        )

        self.subscription.refresh_from_db()
        self.assertEqual(self.subscription.status, Subscription.STATUS_ACTIVE)
        self.assertEqual(self.subscription.current_period_end, second)
        self.assertEqual(self.actions(), [AuditLog.ACTION_SUBSCRIPTION_UPDATED])

    def test_activation_cancels_other_active_subscription(self):
        older = Subscription.objects.create(
            shop=self.shop, shopify_subscription_id="gid://shopify/AppSubscription/900",
            name="Privacy Popup Premium", status=Subscription.STATUS_ACTIVE, price=Decimal('9.99'),
        )

        with self.assertLogs('subscriptions.services.reconciler', level='WARNING') as logs:
            reconcile_subscription_update(self.store, SubscriptionUpdate(subscription_id=GID, status='active'))

        self.assertIn("gid://shopify/AppSubscription/900", logs.output[0])
        older.refresh_from_db()
        self.subscription.refresh_from_db()
        self.assertEqual(older.status, Subscription.STATUS_CANCELLED)
        self.assertEqual(self.subscription.status, Subscription.STATUS_ACTIVE)
        self.assertEqual(
            Subscription.objects.filter(shop=self.shop, status=Subscription.STATUS_ACTIVE).count(), 1,
        )
        entry = AuditLog.objects.get(action=AuditLog.ACTION_SUBSCRIPTION_CANCELLED)
        self.assertEqual(entry.resource_id, str(older.id))
        self.assertEqual(entry.details['reason'], 'superseded')
        self.assertEqual(entry.details['superseded_by'], GID)

    def test_subscription_purged_mid_update_is_acknowledged(self):
        class PurgingStore(Store):
            def update_subscription_status(self, shopify_subscription_id, status, current_period_end=None):
                Subscription.objects.filter(shopify_subscription_id=shopify_subscription_id).delete()
                return super().update_subscription_status(shopify_subscription_id, status, current_period_end)

        with self.assertLogs('subscriptions.services.reconciler', level='WARNING'):
            outcome = reconcile_subscription_update(
                PurgingStore(), SubscriptionUpdate(subscription_id=GID, status='active'),
            )

        self.assertEqual(outcome.kind, OutcomeKind.IGNORED)
        self.assertEqual(outcome.http_status, 200)
        self.assertEqual(self.actions(), [])

    def test_unknown_subscription_is_acknowledged(self):
        with self.assertLogs('subscriptions.services.reconciler', level='WARNING'):
            outcome = reconcile_subscription_update(
                self.store, SubscriptionUpdate(subscription_id="gid://shopify/AppSubscription/404", status='active'),
            )

        self.assertEqual(outcome.kind, OutcomeKind.IGNORED)
        self.assertEqual(outcome.http_status, 200)
        self.assertEqual(self.actions(), [])
        self.subscription.refresh_from_db()
        self.assertEqual(self.subscription.status, Subscription.STATUS_PENDING)


class BillingServiceTest(TestCase):
    def setUp(self):
        self.store = Store()
        self.shop = Shop.objects.create(shop_domain=SHOP_DOMAIN)
        self.billing = MagicMock(spec=ShopifyBillingClient)

    def activate(self):
        return Subscription.objects.create(
            shop=self.shop, shopify_subscription_id=GID, name="Privacy Popup Basic",
            status=Subscription.STATUS_ACTIVE, price=Decimal('4.99'),
        )

    def test_create_subscription(self):
        self.billing.create_subscription.return_value = created_payload()

        outcome = create_subscription(self.store, self.shop, self.billing, plan_id='premium', test=True)

        self.assertTrue(outcome.is_ok)
        self.assertEqual(outcome.data['confirmation_url'], 'https://sub-test.myshopify.com/admin/charges/confirm')
        kwargs = self.billing.create_subscription.call_args.kwargs
        self.assertEqual(kwargs['price'], Decimal('9.99'))
        self.assertEqual(kwargs['trial_days'], 7)
        self.assertEqual(kwargs['return_url'], f"https://popup.example.com/billing?shop={SHOP_DOMAIN}")
        subscription = Subscription.objects.get(shopify_subscription_id=GID)
        self.assertEqual(subscription.status, Subscription.STATUS_PENDING)
        self.assertTrue(subscription.test)
        self.assertIsNotNone(subscription.trial_end)
        self.assertTrue(AuditLog.objects.filter(shop=self.shop, action=AuditLog.ACTION_SUBSCRIPTION_CREATED).exists())

    def test_unknown_plan_falls_back_to_basic(self):
        self.billing.create_subscription.return_value = created_payload()
        create_subscription(self.store, self.shop, self.billing, plan_id='platinum')
        self.assertEqual(self.billing.create_subscription.call_args.kwargs['price'], Decimal('4.99'))

    def test_create_refused_when_already_active(self):
        self.activate()
        outcome = create_subscription(self.store, self.shop, self.billing)
        self.assertEqual(outcome.kind, OutcomeKind.CALLER_ERROR)
        self.assertEqual(outcome.error, 'Shop already has an active subscription')
        self.billing.create_subscription.assert_not_called()

    def test_create_refused_while_pending(self):
        self.billing.create_subscription.return_value = created_payload()
        self.assertTrue(create_subscription(self.store, self.shop, self.billing).is_ok)

        outcome = create_subscription(self.store, self.shop, self.billing)

        self.assertEqual(outcome.kind, OutcomeKind.CALLER_ERROR)
        self.assertEqual(outcome.error, 'Shop already has a pending subscription awaiting approval')
        self.assertEqual(self.billing.create_subscription.call_count, 1)
        self.assertEqual(Subscription.objects.filter(shop=self.shop).count(), 1)

    def test_create_user_errors_are_surfaced(self):
        self.billing.create_subscription.return_value = created_payload(user_errors=[
            {'field': ['returnUrl'], 'message': 'Return URL is invalid'},
            {'field': ['name'], 'message': 'Name is too long'},
        ])

        outcome = create_subscription(self.store, self.shop, self.billing)

        self.assertEqual(outcome.kind, OutcomeKind.CALLER_ERROR)
        self.assertEqual(outcome.error, 'Subscription creation failed: Return URL is invalid, Name is too long')
        self.assertEqual(Subscription.objects.count(), 0)
        self.assertEqual(AuditLog.objects.count(), 0)

    def test_create_transport_failure(self):
        self.billing.create_subscription.side_effect = BillingError("connection reset")
        outcome = create_subscription(self.store, self.shop, self.billing)
        self.assertEqual(outcome.kind, OutcomeKind.OPERATIONAL_FAILURE)
        self.assertEqual(outcome.http_status, 500)
        self.assertEqual(Subscription.objects.count(), 0)

    def test_cancel_without_active_subscription(self):
        outcome = cancel_subscription(self.store, self.shop, self.billing)
        self.assertEqual(outcome.kind, OutcomeKind.NOT_FOUND)
        self.assertEqual(outcome.error, 'No active subscription found')
        self.billing.cancel_subscription.assert_not_called()

    def test_cancel_user_errors_leave_subscription_active(self):
        subscription = self.activate()
        self.billing.cancel_subscription.return_value = {
            'appSubscription': None,
            'userErrors': [{'field': ['id'], 'message': 'Subscription not found'}],
        }

        outcome = cancel_subscription(self.store, self.shop, self.billing)

        self.assertEqual(outcome.error, 'Subscription cancellation failed: Subscription not found')
        subscription.refresh_from_db()
        self.assertEqual(subscription.status, Subscription.STATUS_ACTIVE)
        self.assertEqual(AuditLog.objects.count(), 0)

    def test_cancel(self):
        subscription = self.activate()
        self.billing.cancel_subscription.return_value = {
            'appSubscription': {'id': GID, 'status': 'CANCELLED'},
            'userErrors': [],
        }

        outcome = cancel_subscription(self.store, self.shop, self.billing)

        self.assertTrue(outcome.is_ok)
        self.billing.cancel_subscription.assert_called_once_with(GID)
        subscription.refresh_from_db()
        self.assertEqual(subscription.status, Subscription.STATUS_CANCELLED)
        entry = AuditLog.objects.get(action=AuditLog.ACTION_SUBSCRIPTION_CANCELLED)
        self.assertEqual(entry.details['reason'], 'user_initiated')

    def test_trial_info(self):
        now = timezone.now()
        subscription = Subscription(trial_end=now + timedelta(days=2, hours=3))
        self.assertEqual(trial_info(subscription, now=now)['days_remaining'], 3)
        subscription.trial_end = now - timedelta(days=1)
        self.assertEqual(trial_info(subscription, now=now)['days_remaining'], 0)
        self.assertIsNone(trial_info(None))


@patch('subscriptions.services.billing_client.shopify')
class BillingClientTest(TestCase):

    def test_create_subscription_variables(self, mock_shopify):
        mock_shopify.GraphQL.return_value.execute.return_value = json.dumps({
            'data': {'appSubscriptionCreate': created_payload()},
        })
        client = ShopifyBillingClient(SHOP_DOMAIN, 'shpat_test', api_version='2024-04')

        result = client.create_subscription(
            name='Privacy Popup Basic', price=Decimal('4.99'), currency='USD',
            interval='EVERY_30_DAYS', return_url='https://popup.example.com/billing', trial_days=7,
        )

        self.assertEqual(result['appSubscription']['id'], GID)
        query, variables = mock_shopify.GraphQL.return_value.execute.call_args[0]
        pricing = variables['lineItems'][0]['plan']['appRecurringPricingDetails']
        self.assertEqual(pricing['price'], {'amount': 4.99, 'currencyCode': 'USD'})
        self.assertEqual(variables['trialDays'], 7)
        mock_shopify.ShopifyResource.clear_session.assert_called_once_with()

    def test_graphql_errors_raise(self, mock_shopify):
        mock_shopify.GraphQL.return_value.execute.return_value = json.dumps({
            'errors': [{'message': 'Access denied'}],
        })
        client = ShopifyBillingClient(SHOP_DOMAIN, 'shpat_test', api_version='2024-04')
        with self.assertRaises(BillingError):
            client.cancel_subscription(GID)

    def test_list_subscriptions(self, mock_shopify):
        mock_shopify.GraphQL.return_value.execute.return_value = json.dumps({'data': {
            'currentAppInstallation': {'appSubscriptions': {'edges': [
                {'node': {'id': GID, 'status': 'ACTIVE'}},
            ]}},
        }})
        client = ShopifyBillingClient(SHOP_DOMAIN, 'shpat_test', api_version='2024-04')
        self.assertEqual(client.list_subscriptions(), [{'id': GID, 'status': 'ACTIVE'}])


class SubscriptionAPITest(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.shop = Shop.objects.create(shop_domain=SHOP_DOMAIN, name="Sub Shop")
        self.session = Session.objects.create(
            id=Session.offline_id(SHOP_DOMAIN), shop=SHOP_DOMAIN, access_token="shpat_test",
        )
        self.client.force_authenticate(user=self.session)

    @patch('subscriptions.views.ShopifyBillingClient')
    def test_subscribe(self, mock_client_class):
        mock_client_class.return_value.create_subscription.return_value = created_payload()

        response = self.client.post('/api/billing/subscribe/', {"planId": "basic"}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['confirmation_url'], 'https://sub-test.myshopify.com/admin/charges/confirm')
        self.assertEqual(response.data['subscription']['status'], Subscription.STATUS_PENDING)
        mock_client_class.assert_called_once_with(SHOP_DOMAIN, "shpat_test")

    @patch('subscriptions.views.ShopifyBillingClient')
    def test_subscribe_user_errors(self, mock_client_class):
        mock_client_class.return_value.create_subscription.return_value = created_payload(
            user_errors=[{'field': None, 'message': 'Billing is not available'}],
        )
        response = self.client.post('/api/billing/subscribe/', {"planId": "basic"}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Subscription creation failed: Billing is not available')
        self.assertFalse(Subscription.objects.exists())

    @patch('subscriptions.views.ShopifyBillingClient')
    def test_cancel_without_subscription(self, mock_client_class):
        response = self.client.post('/api/billing/cancel/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'No active subscription found')

    @patch('subscriptions.views.ShopifyBillingClient')
    def test_overview(self, mock_client_class):
        mock_client_class.return_value.list_subscriptions.return_value = []
        Subscription.objects.create(
            shop=self.shop, shopify_subscription_id=GID, name="Privacy Popup Basic",
            status=Subscription.STATUS_ACTIVE, price=Decimal('4.99'),
        )

        response = self.client.get('/api/billing/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        data = response.data['data']
        self.assertTrue(data['has_active_subscription'])
        self.assertEqual(data['current_subscription']['shopify_subscription_id'], GID)
        self.assertEqual([plan['id'] for plan in data['available_plans']], ['basic', 'premium'])

    @patch('subscriptions.views.ShopifyBillingClient')
    def test_overview_provider_failure(self, mock_client_class):
        mock_client_class.return_value.list_subscriptions.side_effect = BillingError("timeout")
        response = self.client.get('/api/billing/')
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
