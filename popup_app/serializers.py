from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import URLValidator
from rest_framework import serializers
from .models import AuditLog

HEX_COLOR_REGEX = r'^#[0-9A-Fa-f]{6}$'
POSITION_CHOICES = ['top', 'bottom', 'left', 'right']


class StrictIntegerField(serializers.IntegerField):
    """Only JSON numbers; numeric strings such as "400" are rejected."""

    def to_internal_value(self, data):
        if isinstance(data, bool) or not isinstance(data, (int, float)):
            self.fail('invalid')
        return super().to_internal_value(data)


class StrictBooleanField(serializers.BooleanField):
    """Only JSON true/false; "true", 1 and friends are rejected."""

    def to_internal_value(self, data):
        if not isinstance(data, bool):
            self.fail('invalid')
        return data


class PopupSettingsSerializer(serializers.Serializer):
    """
    Structure of the ``popup_settings`` blob rendered by the storefront widget.
    Keys are camelCase because the blob is handed to the widget as-is.
    """
    message = serializers.CharField(min_length=1, max_length=1000, trim_whitespace=False)
    linkUrl = serializers.CharField(max_length=2048)
    position = serializers.ChoiceField(choices=POSITION_CHOICES)
    maxWidth = StrictIntegerField(min_value=200, max_value=800)
    padding = StrictIntegerField(min_value=10, max_value=50)
    zIndex = StrictIntegerField(min_value=1, max_value=99999)
    dismissible = StrictBooleanField()
    bgColor = serializers.RegexField(HEX_COLOR_REGEX, error_messages={'invalid': 'Must be a valid hex color'})
    textColor = serializers.RegexField(HEX_COLOR_REGEX, error_messages={'invalid': 'Must be a valid hex color'})
    linkColor = serializers.RegexField(HEX_COLOR_REGEX, error_messages={'invalid': 'Must be a valid hex color'})

    def validate_linkUrl(self, value):
        if value.startswith('/'):
            return value
        try:
            URLValidator()(value)
        except DjangoValidationError:
            raise serializers.ValidationError('Must be a valid URL or relative path')
        return value


def field_errors(errors, prefix=''):
    """
    Flatten DRF's nested ``serializer.errors`` into ``[{"field", "message"}]``.
    """
    flat = []
    for name, messages in errors.items():
        path = f"{prefix}{name}"
        if isinstance(messages, dict):
            flat.extend(field_errors(messages, prefix=f"{path}."))
            continue
        for message in messages:
            flat.append({'field': path, 'message': str(message)})
    return flat


class ShopWebhookSerializer(serializers.Serializer):
    """
    Shop resource as delivered by the shop/update and app/uninstalled topics
    (and by the Admin REST ``shop.json`` endpoint during install).
    """
    id = serializers.IntegerField(required=False, allow_null=True)
    domain = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    myshopify_domain = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    name = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    email = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    currency = serializers.CharField(required=False, allow_null=True, allow_blank=True, max_length=3)
    primary_locale = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    iana_timezone = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    plan_name = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    plan_display_name = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    country = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    city = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    phone = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    money_format = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    password_enabled = serializers.BooleanField(required=False, allow_null=True)
    has_storefront = serializers.BooleanField(required=False, allow_null=True)
    updated_at = serializers.CharField(required=False, allow_null=True, allow_blank=True)

    # Payload key -> Shop model field
    PROFILE_FIELDS = {
        'myshopify_domain': 'myshopify_domain',
        'name': 'name',
        'email': 'email',
        'currency': 'currency',
        'primary_locale': 'primary_locale',
        'iana_timezone': 'iana_timezone',
        'plan_name': 'plan_name',
        'plan_display_name': 'plan_display_name',
        'country': 'country',
        'city': 'city',
        'phone': 'phone',
        'money_format': 'money_format',
        'password_enabled': 'password_enabled',
        'has_storefront': 'has_storefront',
    }

    def validate(self, attrs):
        if not (attrs.get('myshopify_domain') or attrs.get('domain')):
            raise serializers.ValidationError('Missing shop domain in webhook')
        return attrs

    @property
    def shop_domain(self):
        data = self.validated_data
        return data.get('myshopify_domain') or data['domain']

    def profile(self):
        data = self.validated_data
        return {
            model_field: data[key]
            for key, model_field in self.PROFILE_FIELDS.items()
            if key in data and data[key] is not None
        }


class ThemeWebhookSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    name = serializers.CharField(allow_blank=True)
    role = serializers.CharField()
    created_at = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    updated_at = serializers.CharField(required=False, allow_null=True, allow_blank=True)


class AuditLogSerializer(serializers.ModelSerializer):
    class Meta:
        model = AuditLog
        fields = ['id', 'action', 'resource', 'resource_id', 'details', 'user_agent', 'ip_address', 'created_at']
