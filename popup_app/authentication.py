import jwt
from django.apps import apps
from django.conf import settings
from rest_framework import authentication
from rest_framework import exceptions

from .models import Session


def shop_domain_from_payload(payload):
    dest = payload.get('dest') or ''
    return dest.replace('https://', '').replace('http://', '').rstrip('/')


class ShopifyAuthentication(authentication.BaseAuthentication):
    """
    Authenticates embedded-app requests carrying a Shopify session token.

    ``request.user`` becomes the shop's offline ``Session`` (it holds the
    access token used for Admin API calls) and ``request.auth`` the decoded
    token payload.
    """

    keyword = 'Bearer'

    def authenticate(self, request):
        auth_header = request.META.get('HTTP_AUTHORIZATION')
        if not auth_header:
            return None

        parts = auth_header.split(' ')
        if len(parts) != 2 or parts[0] != self.keyword:
            return None
        token = parts[1]

        try:
            payload = jwt.decode(
                token,
                settings.SHOPIFY_API_SECRET,
                algorithms=['HS256'],
                audience=settings.SHOPIFY_API_KEY,
            )
        except jwt.ExpiredSignatureError:
            raise exceptions.AuthenticationFailed('Token has expired')
        except jwt.InvalidTokenError:
            raise exceptions.AuthenticationFailed('Invalid token')

        shop_domain = shop_domain_from_payload(payload)
        if not shop_domain:
            raise exceptions.AuthenticationFailed('Invalid token')

        store = apps.get_app_config('popup_app').store
        session = store.find_session(Session.offline_id(shop_domain))
        if session is None or not session.is_authenticated:
            raise exceptions.AuthenticationFailed('No active session found')

        return (session, payload)

    def authenticate_header(self, request):
        return self.keyword
