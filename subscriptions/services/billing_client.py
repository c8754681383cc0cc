"""
Shopify Billing API calls (GraphQL Admin API through the ShopifyAPI package).

Each call is a single round-trip with no retry. ``userErrors`` are returned to
the caller as data; transport failures and top-level GraphQL ``errors`` raise
``BillingError``.
"""
import json
import logging
import urllib.error
from contextlib import contextmanager

import shopify
from django.conf import settings

logger = logging.getLogger(__name__)

APP_SUBSCRIPTION_CREATE = """
mutation AppSubscriptionCreate($name: String!, $lineItems: [AppSubscriptionLineItemInput!]!, $returnUrl: URL!, $trialDays: Int, $test: Boolean) {
  appSubscriptionCreate(name: $name, returnUrl: $returnUrl, lineItems: $lineItems, trialDays: $trialDays, test: $test) {
    userErrors {
      field
      message
    }
    appSubscription {
      id
      name
      status
      currentPeriodEnd
      trialDays
      test
    }
    confirmationUrl
  }
}
"""

APP_SUBSCRIPTION_CANCEL = """
mutation AppSubscriptionCancel($id: ID!) {
  appSubscriptionCancel(id: $id) {
    userErrors {
      field
      message
    }
    appSubscription {
      id
      status
    }
  }
}
"""

APP_SUBSCRIPTIONS_LIST = """
query {
  currentAppInstallation {
    appSubscriptions(first: 10) {
      edges {
        node {
          id
          name
          status
          currentPeriodEnd
          trialDays
          test
          lineItems {
            id
            plan {
              pricingDetails {
                ... on AppRecurringPricing {
                  price {
                    amount
                    currencyCode
                  }
                  interval
                }
              }
            }
          }
        }
      }
    }
  }
}
"""


class BillingError(Exception):
    """The Billing API call itself failed (network, HTTP or GraphQL error)."""


def user_error_message(user_errors):
    return ', '.join(error.get('message', '') for error in user_errors)


class ShopifyBillingClient:

    def __init__(self, shop_domain, access_token, api_version=None):
        self.shop_domain = shop_domain
        self.access_token = access_token
        self.api_version = api_version or settings.SHOPIFY_API_VERSION

    @contextmanager
    def _session(self):
        session = shopify.Session(self.shop_domain, self.api_version, self.access_token)
        shopify.ShopifyResource.activate_session(session)
        try:
            yield
        finally:
            shopify.ShopifyResource.clear_session()

    def execute(self, query, variables=None):
        with self._session():
            try:
                result = shopify.GraphQL().execute(query, variables)
            except urllib.error.URLError as e:
                logger.error("Shopify GraphQL request failed for %s: %s", self.shop_domain, e)
                raise BillingError(str(e)) from e

        try:
            data = json.loads(result)
        except ValueError as e:
            raise BillingError("Invalid response from Shopify") from e

        if data.get('errors'):
            raise BillingError(json.dumps(data['errors']))
        return data.get('data') or {}

    def create_subscription(self, name, price, currency, interval, return_url, trial_days=None, test=False):
        """
        Returns the ``appSubscriptionCreate`` payload
        (``appSubscription``, ``confirmationUrl``, ``userErrors``).
        """
        variables = {
            "name": name,
            "returnUrl": return_url,
            "trialDays": trial_days,
            "test": test,
            "lineItems": [{
                "plan": {
                    "appRecurringPricingDetails": {
                        "price": {
                            "amount": float(price),
                            "currencyCode": currency,
                        },
                        "interval": interval,
                    }
                }
            }],
        }
        data = self.execute(APP_SUBSCRIPTION_CREATE, variables)
        return data.get('appSubscriptionCreate') or {}

    def cancel_subscription(self, subscription_id):
        data = self.execute(APP_SUBSCRIPTION_CANCEL, {"id": subscription_id})
        return data.get('appSubscriptionCancel') or {}

    def list_subscriptions(self):
        data = self.execute(APP_SUBSCRIPTIONS_LIST)
        installation = data.get('currentAppInstallation') or {}
        edges = (installation.get('appSubscriptions') or {}).get('edges', [])
        return [edge['node'] for edge in edges]
