from django.apps import apps
from django.core.management.base import BaseCommand

from popup_app.services.cleanup import run_cleanup


class Command(BaseCommand):
    help = 'Delete expired sessions and audit logs past the retention window'

    def handle(self, *args, **options):
        result = run_cleanup(apps.get_app_config('popup_app').store)
        self.stdout.write(self.style.SUCCESS(
            f"Removed {result['expired_sessions']} expired sessions and "
            f"{result['old_audit_logs']} old audit logs"
        ))
