from .settings import *  # noqa: F401,F403

SECRET_KEY = 'test-secret-key'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

SHOPIFY_API_KEY = 'test-api-key'
SHOPIFY_API_SECRET = 'test-api-secret-0123456789abcdef01234567'
SHOPIFY_APP_URL = 'https://popup.example.com'
CRON_SECRET = 'test-cron-secret'
