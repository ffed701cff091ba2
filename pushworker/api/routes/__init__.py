from . import cron, notifications

__all__ = ["cron", "notifications"]
