"""
Notifier -- outbound admin notification boundary.

Fire-and-forget: callers log and swallow delivery failures so that a dead
mailer never blocks a state transition.  Email transport lives outside the
kernel; the default implementation only writes a structured log line.
"""

from typing import Protocol, runtime_checkable

from amana_kernel.logging_config import get_logger

logger = get_logger("domain.notifier")


@runtime_checkable
class Notifier(Protocol):
    def notify_admins(self, subject: str, message: str) -> None:
        ...


class LoggingNotifier:
    """Default notifier: records the notification in the structured log."""

    def notify_admins(self, subject: str, message: str) -> None:
        logger.warning(
            "admin_notification",
            extra={"subject": subject, "body": message},
        )
