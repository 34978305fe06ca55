__all__ = ["main", "AlertConfig", "AlertSnapshot", "TimeEntry", "ClickUpClient", "refresh_single_alert", "refresh_all_alerts"]
from .models import AlertConfig, AlertSnapshot, TimeEntry
from .clickup_client import ClickUpClient
from .refresh import refresh_single_alert, refresh_all_alerts
from .cli import main
__version__ = "0.1.0"
