from django.conf import settings
from rest_framework import viewsets
from rest_framework.decorators import action

from popup_app.utils import request_metadata
from popup_app.views import ShopScopedMixin, get_store
from .serializers import SubscribeSerializer
from .services.billing import create_subscription, cancel_subscription, billing_overview
from .services.billing_client import ShopifyBillingClient


class SubscriptionViewSet(ShopScopedMixin, viewsets.ViewSet):
    """
    Billing for the authenticated shop. Every call goes to the Shopify
    Billing API with the shop's offline access token.
    """

    def get_billing_client(self):
        session = self.request.user
        return ShopifyBillingClient(session.shop, session.access_token)

    def list(self, request):
        """
        Current local subscription, Shopify's view of the app subscriptions
        and the plans on offer.
        """
        shop = self.get_shop()
        return billing_overview(get_store(), shop, self.get_billing_client()).to_response()

    @action(detail=False, methods=['post'])
    def subscribe(self, request):
        """
        Create an AppSubscription and return its confirmation URL.
        Body: { "planId": "basic" | "premium", "test": false }
        """
        shop = self.get_shop()
        serializer = SubscribeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        outcome = create_subscription(
            get_store(),
            shop,
            self.get_billing_client(),
            plan_id=serializer.validated_data['planId'],
            test=serializer.validated_data['test'] or settings.SHOPIFY_BILLING_TEST,
            request_meta=request_metadata(request),
        )
        return outcome.to_response()

    @action(detail=False, methods=['post'])
    def cancel(self, request):
        shop = self.get_shop()
        outcome = cancel_subscription(
            get_store(),
            shop,
            self.get_billing_client(),
            request_meta=request_metadata(request),
        )
        return outcome.to_response()
