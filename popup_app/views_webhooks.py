import logging

from django.conf import settings
from django.db import DatabaseError
from rest_framework import status, permissions
from rest_framework.response import Response
from rest_framework.views import APIView

from .services.verification import SIGNATURE_HEADER, verify_webhook_signature
from .services.webhook_events import parse_webhook
from .services.webhook_handlers import handle_webhook
from .utils import request_metadata
from .views import get_store

logger = logging.getLogger(__name__)


class WebhookView(APIView):
    """
    Single ingress for every Shopify webhook topic.

    The raw body is verified before anything parses it; Shopify signs the
    exact bytes it sent.
    """
    authentication_classes = []
    permission_classes = [permissions.AllowAny]

    def post(self, request, topic):
        body = request.body
        signature = request.headers.get(SIGNATURE_HEADER)
        if not signature:
            logger.warning("Webhook %s received without signature", topic)
            return Response({"error": "Missing webhook signature"}, status=status.HTTP_401_UNAUTHORIZED)
        if not verify_webhook_signature(body, signature, settings.SHOPIFY_API_SECRET):
            logger.warning("Webhook %s received with invalid signature", topic)
            return Response({"error": "Invalid webhook signature"}, status=status.HTTP_401_UNAUTHORIZED)

        event = parse_webhook(topic, body, request.headers)
        try:
            outcome = handle_webhook(get_store(), event, request_meta=request_metadata(request))
        except DatabaseError:
            logger.exception("Webhook %s processing failed", topic)
            return Response({"error": "Webhook processing failed"}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        return outcome.to_response()
