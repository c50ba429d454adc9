"""Push webhooks and the scheduled check."""

from sitesync.triggers.scheduler import ScheduledCheck
from sitesync.triggers.webhook import WebhookHandler, WebhookResponse, verify_signature

__all__ = ["ScheduledCheck", "WebhookHandler", "WebhookResponse", "verify_signature"]
