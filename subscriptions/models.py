from django.db import models
from django.utils import timezone
from popup_app.models import Shop


class Subscription(models.Model):
    """
    One Shopify app subscription bound to one shop.

    Shopify is the source of truth for the status; this row is a cache of it
    that is only ever status-mutated, never deleted outside a shop purge.
    """
    STATUS_PENDING = 'PENDING'
    STATUS_ACTIVE = 'ACTIVE'
    STATUS_CANCELLED = 'CANCELLED'
    STATUS_EXPIRED = 'EXPIRED'
    STATUS_FROZEN = 'FROZEN'
    STATUS_PAUSED = 'PAUSED'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),  # Waiting for merchant approval
        (STATUS_ACTIVE, 'Active'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_EXPIRED, 'Expired'),
        (STATUS_FROZEN, 'Frozen'),
        (STATUS_PAUSED, 'Paused'),
    ]

    shop = models.ForeignKey(Shop, on_delete=models.CASCADE, related_name='subscriptions')

    shopify_subscription_id = models.CharField(max_length=255, unique=True)  # gid://shopify/AppSubscription/<n>
    name = models.CharField(max_length=255)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)

    price = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=3, default="USD")
    interval = models.CharField(max_length=50, default="EVERY_30_DAYS")

    trial_end = models.DateTimeField(null=True, blank=True)
    current_period_end = models.DateTimeField(null=True, blank=True)
    test = models.BooleanField(default=False)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.shop} - {self.name} ({self.status})"

    class Meta:
        db_table = 'subscriptions'
        indexes = [
            models.Index(fields=['shop', 'status', 'created_at'], name='sub_shop_status_idx'),
        ]
