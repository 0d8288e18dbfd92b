import sys

from django.apps import AppConfig
from django.conf import settings


class CombosConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "combos"
    verbose_name = "Keyword Combo Intelligence"

    def ready(self):
        if not getattr(settings, "AUTO_REFRESH_ENABLED", True):
            return
        # Don't start the scheduler during management commands or test runs
        skip_commands = {
            "migrate", "makemigrations", "collectstatic", "createsuperuser",
            "shell", "test", "check",
        }
        if any(cmd in sys.argv for cmd in skip_commands) or "pytest" in sys.argv[0]:
            return

        from .scheduler import start_scheduler

        start_scheduler()
