from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured


class PopupAppConfig(AppConfig):
    name = 'popup_app'
    verbose_name = 'Privacy Popup'

    def ready(self):
        # Without the shared secret no webhook or session token can be
        # authenticated, so refuse to boot instead of accepting unsigned data.
        if not settings.SHOPIFY_API_SECRET:
            raise ImproperlyConfigured('SHOPIFY_API_SECRET must be set')

        from .store import Store
        self.store = Store()
