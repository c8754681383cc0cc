from django.urls import path, re_path, include
from rest_framework.routers import DefaultRouter
from .views import (
    HealthCheckView, InstallView, AuthCallbackView,
    PopupSettingsViewSet, AuditLogViewSet, CleanupView,
)
from .views_webhooks import WebhookView

router = DefaultRouter()
router.register(r'settings', PopupSettingsViewSet, basename='settings')
router.register(r'audit-logs', AuditLogViewSet, basename='audit-log')

urlpatterns = [
    path('health/', HealthCheckView.as_view(), name='health'),
    path('auth/', InstallView.as_view(), name='auth-install'),
    path('auth/callback/', AuthCallbackView.as_view(), name='auth-callback'),
    path('cron/cleanup/', CleanupView.as_view(), name='cron-cleanup'),
    re_path(r'^webhooks/(?P<topic>[\w/]+?)/?$', WebhookView.as_view(), name='webhook'),
    path('', include(router.urls)),
]
