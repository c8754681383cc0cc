import logging
from datetime import timedelta

from django.conf import settings
from django.utils import timezone

logger = logging.getLogger(__name__)


def run_cleanup(store, now=None):
    """
    Drop expired sessions and audit entries past the retention window.
    Returns the number of rows removed for each.
    """
    now = now or timezone.now()
    cutoff = now - timedelta(days=settings.AUDIT_LOG_RETENTION_DAYS)

    expired_sessions = store.cleanup_expired_sessions(now=now)
    old_audit_logs = store.prune_audit_logs(before=cutoff)

    logger.info(
        "Cleanup removed %s expired sessions and %s audit logs older than %s",
        expired_sessions, old_audit_logs, cutoff.isoformat(),
    )
    return {
        'expired_sessions': expired_sessions,
        'old_audit_logs': old_audit_logs,
        'timestamp': now.isoformat(),
    }
