from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.utils import timezone


class Shop(models.Model):
    """
    One merchant's installed instance, keyed by storefront domain.
    """
    shop_domain = models.CharField(max_length=255, unique=True, db_index=True)
    myshopify_domain = models.CharField(max_length=255, null=True, blank=True)
    name = models.CharField(max_length=255, null=True, blank=True)
    email = models.CharField(max_length=255, null=True, blank=True)

    # Locale / billing metadata synced from Shopify
    currency = models.CharField(max_length=3, null=True, blank=True)
    primary_locale = models.CharField(max_length=20, null=True, blank=True)
    iana_timezone = models.CharField(max_length=100, null=True, blank=True)
    plan_name = models.CharField(max_length=100, null=True, blank=True)
    plan_display_name = models.CharField(max_length=100, null=True, blank=True)

    country = models.CharField(max_length=100, null=True, blank=True)
    city = models.CharField(max_length=100, null=True, blank=True)
    phone = models.CharField(max_length=50, null=True, blank=True)
    money_format = models.CharField(max_length=100, null=True, blank=True)
    password_enabled = models.BooleanField(null=True, blank=True)
    has_storefront = models.BooleanField(null=True, blank=True)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.shop_domain}: {self.name}"

    class Meta:
        db_table = 'shops'


class Session(models.Model):
    """
    Stored Shopify OAuth session. Offline sessions use the id ``offline_<shop>``.
    """
    id = models.CharField(max_length=255, primary_key=True)
    shop = models.CharField(max_length=255, db_index=True)  # domain, not a foreign key
    state = models.CharField(max_length=255, blank=True, default='')
    is_online = models.BooleanField(default=False)
    scope = models.TextField(null=True, blank=True)
    expires = models.DateTimeField(null=True, blank=True, db_index=True)
    access_token = models.TextField(blank=True, default='')

    user_id = models.BigIntegerField(null=True, blank=True)
    first_name = models.CharField(max_length=255, null=True, blank=True)
    last_name = models.CharField(max_length=255, null=True, blank=True)
    email = models.CharField(max_length=255, null=True, blank=True)
    account_owner = models.BooleanField(default=False)
    locale = models.CharField(max_length=20, null=True, blank=True)
    collaborator = models.BooleanField(null=True, blank=True)
    email_verified = models.BooleanField(null=True, blank=True)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    @staticmethod
    def offline_id(shop_domain):
        return f"offline_{shop_domain}"

    @property
    def is_authenticated(self):
        return bool(self.access_token)

    def __str__(self):
        return self.id

    class Meta:
        db_table = 'sessions'


class Setting(models.Model):
    """
    One JSON blob per shop per named key (popup_settings, theme_info, ...).
    """
    shop = models.ForeignKey(Shop, on_delete=models.CASCADE, related_name='settings')
    key = models.CharField(max_length=100)
    value = models.JSONField(encoder=DjangoJSONEncoder)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.shop_id}:{self.key}"

    class Meta:
        db_table = 'settings'
        constraints = [
            models.UniqueConstraint(fields=['shop', 'key'], name='unique_shop_setting_key'),
        ]


class AuditLog(models.Model):
    """
    Append-only record of a notable action.
    """
    ACTION_APP_INSTALLED = 'app_installed'
    ACTION_APP_UNINSTALLED = 'app_uninstalled'
    ACTION_CLEANUP_FAILED = 'cleanup_failed'
    ACTION_SHOP_UPDATED = 'shop_updated'
    ACTION_THEME_PUBLISHED = 'theme_published'
    ACTION_SETTINGS_UPDATED = 'settings_updated'
    ACTION_SUBSCRIPTION_CREATED = 'subscription_created'
    ACTION_SUBSCRIPTION_UPDATED = 'subscription_updated'
    ACTION_SUBSCRIPTION_ACTIVATED = 'subscription_activated'
    ACTION_SUBSCRIPTION_CANCELLED = 'subscription_cancelled'
    ACTION_SUBSCRIPTION_CANCELLED_BY_SHOPIFY = 'subscription_cancelled_by_shopify'

    shop = models.ForeignKey(Shop, on_delete=models.CASCADE, related_name='audit_logs')
    action = models.CharField(max_length=100, db_index=True)
    resource = models.CharField(max_length=100, null=True, blank=True)
    resource_id = models.CharField(max_length=255, null=True, blank=True)
    details = models.JSONField(null=True, blank=True, encoder=DjangoJSONEncoder)

    user_agent = models.CharField(max_length=500, null=True, blank=True)
    ip_address = models.CharField(max_length=100, null=True, blank=True)

    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    def __str__(self):
        return f"{self.action} ({self.shop_id})"

    class Meta:
        db_table = 'audit_logs'
        indexes = [
            models.Index(fields=['shop', 'action', 'created_at'], name='audit_shop_action_idx'),
            models.Index(fields=['shop', 'created_at'], name='audit_shop_created_idx'),
        ]
