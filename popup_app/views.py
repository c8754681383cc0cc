import hmac
import logging
from urllib.parse import urlencode

import shopify
from django.apps import apps
from django.conf import settings
from django.db import connection, DatabaseError
from django.http import HttpResponseRedirect
from django.utils import timezone
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import viewsets, status, permissions
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from .serializers import AuditLogSerializer
from .services.cleanup import run_cleanup
from .services.install import begin_install, state_matches, complete_install
from .services.popup_settings import (
    update_popup_settings, popup_settings_overview, acknowledge_theme_change,
)
from .services.shopify_api import (
    is_valid_shop_domain, new_oauth_state, build_permission_url, exchange_code, fetch_shop_info,
)
from .utils import request_metadata

logger = logging.getLogger(__name__)


def get_store():
    return apps.get_app_config('popup_app').store


class ShopScopedMixin:
    """
    Resolves the Shop of the authenticated session (``request.user`` is the
    shop's offline Session).
    """

    def get_shop(self):
        shop = get_store().find_shop_by_domain(self.request.user.shop)
        if shop is None:
            raise NotFound('Shop not found')
        return shop


class HealthCheckView(APIView):
    authentication_classes = []
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        try:
            with connection.cursor() as cursor:
                cursor.execute("SELECT 1")
        except DatabaseError as e:
            logger.error("Health check failed: %s", e)
            return Response({
                "status": "unhealthy",
                "timestamp": timezone.now().isoformat(),
                "database": {"status": "disconnected"},
            }, status=status.HTTP_503_SERVICE_UNAVAILABLE)

        return Response({
            "status": "healthy",
            "timestamp": timezone.now().isoformat(),
            "database": {"status": "connected"},
        })


class InstallView(APIView):
    """
    Starts the OAuth install: stores a nonce and redirects to Shopify's
    permission screen.
    """
    authentication_classes = []
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        shop_domain = request.query_params.get('shop')
        if not shop_domain:
            return Response({"error": "Missing shop parameter"}, status=status.HTTP_400_BAD_REQUEST)
        if not is_valid_shop_domain(shop_domain):
            return Response({"error": "Invalid shop domain"}, status=status.HTTP_400_BAD_REQUEST)

        state = new_oauth_state()
        begin_install(get_store(), shop_domain, state)
        return HttpResponseRedirect(build_permission_url(shop_domain, state))


class AuthCallbackView(APIView):
    authentication_classes = []
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        params = request.query_params.dict()
        shop_domain = params.get('shop')
        if not is_valid_shop_domain(shop_domain):
            return Response({"error": "Invalid shop domain"}, status=status.HTTP_400_BAD_REQUEST)

        store = get_store()
        if not state_matches(store, shop_domain, params.get('state')):
            return Response({"error": "Invalid OAuth state"}, status=status.HTTP_400_BAD_REQUEST)

        try:
            access_token, scope = exchange_code(shop_domain, params)
        except shopify.ValidationException as e:
            logger.warning("OAuth callback rejected for %s: %s", shop_domain, e)
            return Response({"error": "Authentication failed"}, status=status.HTTP_400_BAD_REQUEST)

        shop_info = fetch_shop_info(shop_domain, access_token)
        complete_install(
            store, shop_domain, access_token, scope,
            shop_info=shop_info,
            request_meta=request_metadata(request),
        )

        query = urlencode({'shop': shop_domain, 'host': params.get('host', '')})
        return HttpResponseRedirect(f"{settings.SHOPIFY_APP_URL}/dashboard?{query}")


class PopupSettingsViewSet(ShopScopedMixin, viewsets.ViewSet):
    """
    Popup settings of the authenticated shop.
    """

    def list(self, request):
        shop = self.get_shop()
        return Response({"success": True, "data": popup_settings_overview(get_store(), shop)})

    def create(self, request):
        shop = self.get_shop()
        outcome = update_popup_settings(get_store(), shop, request.data, request_meta=request_metadata(request))
        return outcome.to_response()

    @action(detail=False, methods=['patch'], url_path='theme-notification')
    def theme_notification(self, request):
        shop = self.get_shop()
        return acknowledge_theme_change(get_store(), shop).to_response()


class AuditLogPagination(PageNumberPagination):
    page_size = 50
    page_size_query_param = 'limit'
    max_page_size = 200

    def get_paginated_response(self, data):
        return Response({
            'logs': data,
            'pagination': {
                'page': self.page.number,
                'limit': self.page.paginator.per_page,
                'total': self.page.paginator.count,
                'totalPages': self.page.paginator.num_pages,
            },
        })


class AuditLogViewSet(ShopScopedMixin, viewsets.ReadOnlyModelViewSet):
    serializer_class = AuditLogSerializer
    pagination_class = AuditLogPagination
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['action', 'resource']

    def get_queryset(self):
        return get_store().audit_logs(self.get_shop())


class CleanupView(APIView):
    """
    Cron entry point for the maintenance cleanup, guarded by ``CRON_SECRET``.
    """
    authentication_classes = []
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        expected = f"Bearer {settings.CRON_SECRET}"
        provided = request.headers.get('Authorization') or ''
        if not settings.CRON_SECRET or not hmac.compare_digest(provided.encode(), expected.encode()):
            return Response({"error": "Unauthorized"}, status=status.HTTP_401_UNAUTHORIZED)

        results = run_cleanup(get_store())
        return Response({
            "success": True,
            "message": "Cleanup completed successfully",
            "results": results,
        })
