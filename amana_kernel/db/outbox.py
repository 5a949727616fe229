"""
Module: amana_kernel.db.outbox
Responsibility: hold admin notifications until the session commits.

Services queue an alert with ``defer_notification``.  The ``after_commit``
listener delivers the queue once the outermost transaction commits; when
that transaction ends any other way the queue is discarded, so an alert
never describes a write that was rolled back.  A rolled-back sweep that
is retried on the next tick alerts once, after the retry commits.

Delivery failures are logged and swallowed; the commit has already
happened.
"""

from sqlalchemy import event
from sqlalchemy.orm import Session

from amana_kernel.domain.notifier import Notifier
from amana_kernel.logging_config import get_logger

logger = get_logger("db.outbox")

_PENDING_KEY = "amana_pending_notifications"


def defer_notification(session: Session, notifier: Notifier, subject: str, message: str) -> None:
    session.info.setdefault(_PENDING_KEY, []).append((notifier, subject, message))


def pending_notifications(session: Session) -> list[tuple[str, str]]:
    """(subject, message) pairs waiting for the next commit."""
    return [(subject, message) for _, subject, message in session.info.get(_PENDING_KEY, ())]


def _deliver_after_commit(session: Session) -> None:
    # Savepoint releases are not the commit the alert waits for
    if session.get_nested_transaction() is not None:
        return
    for notifier, subject, message in session.info.pop(_PENDING_KEY, ()):
        try:
            notifier.notify_admins(subject, message)
        except Exception:
            logger.exception("admin_notification_failed", extra={"subject": subject})


def _discard_on_end(session: Session, transaction) -> None:
    if transaction.parent is not None:
        return
    dropped = session.info.pop(_PENDING_KEY, None)
    if dropped:
        logger.info("admin_notifications_discarded", extra={"count": len(dropped)})


def register_outbox_listeners() -> None:
    """Attach the delivery listeners to every Session.  Safe to call more than once."""
    for event_name, fn in (
        ("after_commit", _deliver_after_commit),
        ("after_transaction_end", _discard_on_end),
    ):
        if not event.contains(Session, event_name, fn):
            event.listen(Session, event_name, fn)


register_outbox_listeners()
