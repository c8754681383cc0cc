from datetime import datetime, time, timezone as dt_timezone

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime
from rest_framework import serializers
from .models import Subscription

GID_PREFIX = 'gid://shopify/AppSubscription/'


def subscription_gid(value):
    """Normalize a numeric AppSubscription id to its GraphQL gid form."""
    value = str(value)
    return value if value.startswith('gid://') else f"{GID_PREFIX}{value}"


class SubscriptionSerializer(serializers.ModelSerializer):
    class Meta:
        model = Subscription
        fields = [
            'id', 'shopify_subscription_id', 'name', 'status', 'price', 'currency',
            'interval', 'trial_end', 'current_period_end', 'test', 'created_at', 'updated_at',
        ]


class SubscribeSerializer(serializers.Serializer):
    planId = serializers.CharField(required=False, default='basic')
    test = serializers.BooleanField(required=False, default=False)


class AppSubscriptionWebhookSerializer(serializers.Serializer):
    """
    Payload of the app_subscriptions/update topic.

    Shopify nests the resource under ``app_subscription`` and identifies it by
    ``admin_graphql_api_id``; a flat body carrying ``id`` is accepted as well.
    """
    id = serializers.CharField()
    name = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    status = serializers.CharField(allow_blank=True)
    billing_on = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    created_at = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    updated_at = serializers.CharField(required=False, allow_null=True, allow_blank=True)

    def to_internal_value(self, data):
        if isinstance(data, dict) and isinstance(data.get('app_subscription'), dict):
            data = dict(data['app_subscription'])
            if data.get('admin_graphql_api_id'):
                data['id'] = data['admin_graphql_api_id']
        return super().to_internal_value(data)

    def validate_billing_on(self, value):
        if not value:
            return None
        try:
            parsed = parse_datetime(value)
            day = None if parsed else parse_date(value)
        except ValueError:
            parsed = day = None
        if parsed is None:
            if day is None:
                raise serializers.ValidationError('Invalid billing date')
            return datetime.combine(day, time.min, tzinfo=dt_timezone.utc)
        if timezone.is_naive(parsed):
            parsed = timezone.make_aware(parsed, dt_timezone.utc)
        return parsed
